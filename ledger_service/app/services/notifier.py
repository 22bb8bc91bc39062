from __future__ import annotations

import logging
import uuid
from dataclasses import asdict
from datetime import datetime, timezone

from fastapi import Depends

from common.eventbus.core import EventPublisher
from common.eventbus.helpers import new_json_event
from common.eventbus.kafka import get_kafka_event_bus
from common.eventbus.topics import TOPIC_CREDIT
from common.events.credit import (
    CreditEventType,
    CreditGrantedEvent,
    CreditUsedEvent,
    PaymentSettledEvent,
)

from ..models.credit import CreditTransaction
from ..models.payment import Payment


logger = logging.getLogger(__name__)


EVENT_SOURCE = "credit-ledger"


class LedgerEventPublisher:
    """원장 변경 알림 발행기.

    원장/결제 쓰기가 끝난 뒤에만 호출되며, 발행 실패는 로그만 남기고 호출자에게 전파하지 않는다.
    이벤트 버스가 설정되지 않았으면(None) 아무것도 하지 않는다.
    """

    def __init__(
        self, event_bus: EventPublisher | None, *, source: str = EVENT_SOURCE
    ) -> None:
        self._event_bus = event_bus
        self._source = source

    @property
    def enabled(self) -> bool:
        return self._event_bus is not None

    def credit_granted(self, tx: CreditTransaction) -> None:
        event_id = str(uuid.uuid4())
        evt = CreditGrantedEvent(
            id=event_id,
            type=CreditEventType.CREDIT_GRANTED,
            timestamp=datetime.now(timezone.utc).isoformat(),
            source=self._source,
            version="1.0",
            user_id=tx.user_id,
            transaction_id=tx.id or "",
            amount=tx.amount,
            balance_after=tx.balance_after,
            credit_source=str(tx.source),
            description=tx.description,
        )
        self._publish(event_id, asdict(evt))

    def credit_used(self, tx: CreditTransaction) -> None:
        event_id = str(uuid.uuid4())
        evt = CreditUsedEvent(
            id=event_id,
            type=CreditEventType.CREDIT_USED,
            timestamp=datetime.now(timezone.utc).isoformat(),
            source=self._source,
            version="1.0",
            user_id=tx.user_id,
            transaction_id=tx.id or "",
            amount=-tx.amount,
            balance_after=tx.balance_after,
            credit_source=str(tx.source),
            description=tx.description,
        )
        self._publish(event_id, asdict(evt))

    def payment_settled(
        self, payment: Payment, tx: CreditTransaction | None = None
    ) -> None:
        event_id = str(uuid.uuid4())
        evt = PaymentSettledEvent(
            id=event_id,
            type=CreditEventType.PAYMENT_SETTLED,
            timestamp=datetime.now(timezone.utc).isoformat(),
            source=self._source,
            version="1.0",
            user_id=payment.user_id,
            payment_id=payment.id or "",
            status=str(payment.status),
            payment_type=str(payment.type),
            amount=payment.amount,
            currency=payment.currency,
            credits_granted=tx.amount if tx is not None else 0,
            transaction_id=tx.id if tx is not None else None,
        )
        self._publish(event_id, asdict(evt))

    def _publish(self, event_id: str, payload: dict) -> None:
        if self._event_bus is None:
            return
        try:
            wrapped = new_json_event(payload=payload, event_id=event_id)
            self._event_bus.publish(TOPIC_CREDIT.base, wrapped)
        except Exception:  # noqa: BLE001
            logger.exception(
                "failed to publish ledger event id=%s type=%s user_id=%s",
                event_id,
                payload.get("type"),
                payload.get("user_id"),
            )
            return

        logger.info(
            "published ledger event id=%s type=%s user_id=%s",
            event_id,
            payload.get("type"),
            payload.get("user_id"),
        )


def get_ledger_event_publisher(
    event_bus: EventPublisher | None = Depends(get_kafka_event_bus),
) -> LedgerEventPublisher:
    """FastAPI DI용 LedgerEventPublisher 팩토리."""

    return LedgerEventPublisher(event_bus)
