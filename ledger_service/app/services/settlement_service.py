"""결제 웹훅 정산 서비스.

웹훅은 최소 한 번 이상, 순서 없이 도착할 수 있다. 정산은 다음 규칙으로 정확히 한 번의 효과만 낸다.

- 결제 상태 변경은 pending/processing 일 때만 성공하는 조건부 갱신이다.
- 크레딧 적립은 payment:<id> 멱등 키로 원장에 한 번만 기록된다.
- 이미 종결된 결제에 대한 재전달은 아무것도 바꾸지 않는다. 단, completed 결제의 후속 효과
  (크레딧 적립, 구독 활성화)가 이전 전달에서 빠졌다면 다시 시도한다.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any

from fastapi import Depends

from common.mongo.types import utcnow

from ..errors import AmbiguousPaymentError, NotFoundError, ValidationError
from ..models.credit import CreditSource, CreditTransaction, RelatedIds, TransactionType
from ..models.payment import (
    OPEN_STATUSES,
    Payment,
    PaymentStatus,
    PaymentType,
    SettlementOutcome,
    SettlementResult,
    WebhookPayload,
)
from ..models.subscription import SubscriptionStatus
from ..repositories.interfaces import PaymentRepositoryInterface
from .credit_service import CreditService, get_credit_service
from .notifier import LedgerEventPublisher, get_ledger_event_publisher
from .payment_service import get_payment_repository
from .subscription_service import SubscriptionService, get_subscription_service


logger = logging.getLogger(__name__)


COMPLETED_WEBHOOK_STATUSES = frozenset({"completed", "approved"})
CLOSED_WEBHOOK_STATUSES: dict[str, tuple[PaymentStatus, SettlementOutcome]] = {
    "failed": (PaymentStatus.FAILED, SettlementOutcome.FAILED),
    "cancelled": (PaymentStatus.CANCELLED, SettlementOutcome.CANCELLED),
    "canceled": (PaymentStatus.CANCELLED, SettlementOutcome.CANCELLED),
}
AMOUNT_TOLERANCE = 0.005


class SettlementService:
    """대행사 웹훅을 결제 레코드에 반영한다."""

    def __init__(
        self,
        payment_repo: PaymentRepositoryInterface,
        credit_service: CreditService,
        subscription_service: SubscriptionService | None = None,
        *,
        publisher: LedgerEventPublisher | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._payment_repo = payment_repo
        self._credit_service = credit_service
        self._subscription_service = subscription_service
        self._publisher = publisher or LedgerEventPublisher(None)
        self._clock = clock

    def settle_payment_webhook(self, payload: WebhookPayload) -> SettlementResult:
        if not payload.payment_id and not payload.order_id:
            raise ValidationError("webhook must carry paymentId or orderId")
        if not payload.processor:
            raise ValidationError("webhook processor is required")

        payment = self._locate(payload)
        status = payload.status.strip().lower()
        logger.info(
            "webhook received payment_id=%s processor=%s event=%s status=%s",
            payment.id,
            payload.processor,
            payload.event,
            status,
        )

        if payment.is_terminal:
            return self._acknowledge_terminal(payment)

        if status in COMPLETED_WEBHOOK_STATUSES:
            return self._complete(payment, payload)

        closed = CLOSED_WEBHOOK_STATUSES.get(status)
        if closed is not None:
            return self._close(payment, payload, *closed)

        logger.info(
            "ignoring webhook status payment_id=%s status=%s", payment.id, status
        )
        return SettlementResult(payment=payment, outcome=SettlementOutcome.IGNORED)

    # 내부 -----------------------------------------------------------------
    def _locate(self, payload: WebhookPayload) -> Payment:
        matches = self._payment_repo.find_by_external_ids(
            payload.processor, payload.payment_id, payload.order_id
        )
        if not matches:
            raise NotFoundError(
                f"payment not found (processor={payload.processor} "
                f"payment_id={payload.payment_id} order_id={payload.order_id})"
            )

        ids = {payment.id for payment in matches}
        if len(ids) > 1:
            logger.error(
                "webhook ids match multiple payments processor=%s payment_ids=%s",
                payload.processor,
                sorted(str(i) for i in ids),
            )
            raise AmbiguousPaymentError(
                f"paymentId={payload.payment_id} and orderId={payload.order_id} "
                "resolve to different payments"
            )
        return matches[0]

    def _external_id_fields(
        self, payment: Payment, payload: WebhookPayload
    ) -> dict[str, Any]:
        fields: dict[str, Any] = {}
        if payload.payment_id and not payment.external_payment_id:
            fields["external_payment_id"] = payload.payment_id
        if payload.order_id and not payment.external_order_id:
            fields["external_order_id"] = payload.order_id
        return fields

    def _complete(self, payment: Payment, payload: WebhookPayload) -> SettlementResult:
        now = self._clock()
        fields = self._external_id_fields(payment, payload)
        fields["processed_at"] = now

        updated = self._payment_repo.transition(
            payment.id or "", OPEN_STATUSES, PaymentStatus.COMPLETED, now, fields
        )
        if updated is None:
            # 동시에 도착한 다른 전달이 먼저 종결시킴
            return self._acknowledge_terminal(self._reload(payment))

        if payload.amount and abs(payload.amount - updated.amount) > AMOUNT_TOLERANCE:
            logger.warning(
                "webhook amount mismatch payment_id=%s expected=%.2f received=%.2f",
                updated.id,
                updated.amount,
                payload.amount,
            )

        logger.info(
            "payment completed payment_id=%s user_id=%s type=%s",
            updated.id,
            updated.user_id,
            updated.type,
        )
        tx = self._apply_completion(updated)
        self._publisher.payment_settled(updated, tx)
        return SettlementResult(
            payment=updated, outcome=SettlementOutcome.COMPLETED, transaction=tx
        )

    def _close(
        self,
        payment: Payment,
        payload: WebhookPayload,
        target: PaymentStatus,
        outcome: SettlementOutcome,
    ) -> SettlementResult:
        now = self._clock()
        updated = self._payment_repo.transition(
            payment.id or "",
            OPEN_STATUSES,
            target,
            now,
            self._external_id_fields(payment, payload),
        )
        if updated is None:
            return self._acknowledge_terminal(self._reload(payment))

        logger.info(
            "payment closed payment_id=%s user_id=%s status=%s",
            updated.id,
            updated.user_id,
            target,
        )
        self._publisher.payment_settled(updated)
        return SettlementResult(payment=updated, outcome=outcome)

    def _acknowledge_terminal(self, payment: Payment) -> SettlementResult:
        tx: CreditTransaction | None = None
        if payment.status == PaymentStatus.COMPLETED and self._grants_credits(payment):
            tx = self._credit_service.find_by_idempotency_key(payment.idempotency_key)
            if tx is None:
                logger.warning(
                    "completed payment has no credit grant, retrying payment_id=%s",
                    payment.id,
                )
                tx = self._apply_completion(payment)
        elif payment.status == PaymentStatus.COMPLETED and payment.subscription_id:
            # activate 는 active 구독에 대해 멱등하므로 매번 다시 보장한다.
            self._apply_completion(payment)

        logger.info(
            "duplicate webhook acknowledged payment_id=%s status=%s",
            payment.id,
            payment.status,
        )
        return SettlementResult(
            payment=payment, outcome=SettlementOutcome.DUPLICATE, transaction=tx
        )

    @staticmethod
    def _grants_credits(payment: Payment) -> bool:
        return payment.type == PaymentType.CREDITS and bool(payment.credits_purchased)

    def _apply_completion(self, payment: Payment) -> CreditTransaction | None:
        if self._grants_credits(payment):
            credits = payment.credits_purchased or 0
            return self._credit_service.add_credits(
                payment.user_id,
                credits,
                type=TransactionType.PURCHASED,
                source=CreditSource.PURCHASE,
                description=f"Purchased {credits} credits",
                related=RelatedIds(
                    payment_id=payment.id, project_id=payment.project_id
                ),
                metadata={"processor": payment.processor, "amount": payment.amount},
                idempotency_key=payment.idempotency_key,
            )

        if (
            payment.type == PaymentType.SUBSCRIPTION
            and payment.subscription_id
            and self._subscription_service is not None
        ):
            subscription = self._subscription_service.get_subscription(
                payment.subscription_id
            )
            if subscription.status in (
                SubscriptionStatus.PENDING,
                SubscriptionStatus.ACTIVE,
            ):
                self._subscription_service.activate(subscription.id or "")
            else:
                logger.warning(
                    "subscription payment settled for inactive subscription "
                    "payment_id=%s subscription_id=%s status=%s",
                    payment.id,
                    subscription.id,
                    subscription.status,
                )
        return None

    def _reload(self, payment: Payment) -> Payment:
        current = self._payment_repo.find_by_id(payment.id or "")
        if current is None:
            raise NotFoundError(f"payment not found ({payment.id})")
        return current


def get_settlement_service(
    payment_repo: PaymentRepositoryInterface = Depends(get_payment_repository),
    credit_service: CreditService = Depends(get_credit_service),
    subscription_service: SubscriptionService = Depends(get_subscription_service),
    publisher: LedgerEventPublisher = Depends(get_ledger_event_publisher),
) -> SettlementService:
    """FastAPI DI용 SettlementService 팩토리."""

    return SettlementService(
        payment_repo,
        credit_service,
        subscription_service,
        publisher=publisher,
    )
