"""결제 웹훅 컨슈머.

Gateway 가 서명 검증을 마친 웹훅을 TOPIC_PAYMENT_WEBHOOK 으로 넣으면 여기서 정산한다.
같은 웹훅이 여러 번 들어와도 정산은 한 번만 효과를 낸다.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

import pydantic

from common.eventbus.config import get_brokers, get_group_id
from common.eventbus.core import Event
from common.eventbus.kafka import KafkaEventBus
from common.eventbus.topics import TOPIC_PAYMENT_WEBHOOK
from common.mongo.client import get_database

from ..config import get_config
from ..errors import ValidationError
from ..models.payment import WebhookPayload
from ..repositories.credit_repository import CreditTransactionRepository
from ..repositories.payment_repository import PaymentRepository
from ..repositories.subscription_repository import SubscriptionRepository
from ..services.credit_service import CreditService
from ..services.notifier import LedgerEventPublisher
from ..services.settlement_service import SettlementService
from ..services.subscription_service import SubscriptionService


logger = logging.getLogger(__name__)


def _handle_event(evt: Event, *, service: SettlementService) -> None:
    payload = evt.payload
    if not isinstance(payload, dict):
        logger.error("unexpected payload type for event %s: %r", evt.id, type(payload))
        return

    try:
        webhook = WebhookPayload.model_validate(payload)
    except pydantic.ValidationError:
        # 스키마가 깨진 메시지는 재시도해도 달라지지 않는다.
        logger.exception("failed to decode payment webhook id=%s payload=%r", evt.id, payload)
        return

    logger.info(
        "received payment webhook id=%s processor=%s payment_id=%s order_id=%s status=%s",
        evt.id,
        webhook.processor,
        webhook.payment_id,
        webhook.order_id,
        webhook.status,
    )

    try:
        result = service.settle_payment_webhook(webhook)
    except ValidationError as exc:
        logger.error("rejected payment webhook id=%s: %s", evt.id, exc.message)
        return

    logger.info(
        "payment webhook settled id=%s payment_id=%s outcome=%s",
        evt.id,
        result.payment.id,
        result.outcome,
    )


def build_settlement_service(bus: KafkaEventBus | None) -> SettlementService:
    config = get_config()
    db = get_database()
    publisher = LedgerEventPublisher(bus)
    credit_service = CreditService(
        CreditTransactionRepository(db),
        publisher=publisher,
        settings=config.ledger,
        packages=config.credit_packages,
    )
    subscription_service = SubscriptionService(
        SubscriptionRepository(db),
        credit_service,
        tiers=config.tiers,
        settings=config.billing,
    )
    return SettlementService(
        PaymentRepository(db),
        credit_service,
        subscription_service,
        publisher=publisher,
    )


def run_payment_webhook_consumer(
    stop_flag: list[bool],
    settlement_factory: Callable[[KafkaEventBus], SettlementService] | None = None,
) -> None:
    logger.info("payment-webhook-consumer starting up")

    brokers = get_brokers()
    group_id = get_group_id()

    bus = KafkaEventBus(brokers)
    service = (settlement_factory or build_settlement_service)(bus)

    try:
        logger.info(
            "subscribing to topic=%s group_id=%s", TOPIC_PAYMENT_WEBHOOK.base, group_id
        )
        bus.subscribe(
            group_id=group_id,
            topic=TOPIC_PAYMENT_WEBHOOK,
            handler=lambda evt: _handle_event(evt, service=service),
            stop_flag=stop_flag,
        )
    finally:
        bus.close()
        logger.info("payment-webhook-consumer stopped")
