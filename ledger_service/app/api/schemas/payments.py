from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from common.types.datetime import OptionalUtcDateTime, UtcDateTime

from ...models.payment import (
    Payment,
    PaymentStatus,
    PaymentType,
    SettlementOutcome,
    SettlementResult,
)
from .credits import CreditTransactionResponse


class CreditPurchaseRequest(BaseModel):
    user_id: str
    credits: int
    processor: str = "paypal"


class CreatePaymentRequest(BaseModel):
    user_id: str
    amount: float
    type: PaymentType
    processor: str = "paypal"
    currency: str = "USD"
    description: str = ""
    credits_purchased: int | None = None
    project_id: str | None = None
    subscription_id: str | None = None
    external_payment_id: str | None = None
    external_order_id: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class AttachExternalIdsRequest(BaseModel):
    """대행사 주문 생성 후 돌려받은 외부 ID."""

    external_payment_id: str | None = None
    external_order_id: str | None = None


class PaymentResponse(BaseModel):
    id: str | None
    user_id: str
    type: PaymentType
    amount: float
    currency: str
    status: PaymentStatus
    processor: str
    external_payment_id: str | None = None
    external_order_id: str | None = None
    credits_purchased: int | None = None
    subscription_id: str | None = None
    project_id: str | None = None
    description: str = ""
    processed_at: OptionalUtcDateTime = None
    refunded_at: OptionalUtcDateTime = None
    created_at: UtcDateTime
    updated_at: UtcDateTime

    @classmethod
    def from_domain(cls, payment: Payment) -> "PaymentResponse":
        return cls(
            id=payment.id,
            user_id=payment.user_id,
            type=payment.type,
            amount=payment.amount,
            currency=payment.currency,
            status=payment.status,
            processor=payment.processor,
            external_payment_id=payment.external_payment_id,
            external_order_id=payment.external_order_id,
            credits_purchased=payment.credits_purchased,
            subscription_id=payment.subscription_id,
            project_id=payment.project_id,
            description=payment.description,
            processed_at=payment.processed_at,
            refunded_at=payment.refunded_at,
            created_at=payment.created_at,
            updated_at=payment.updated_at,
        )


class SettlementResponse(BaseModel):
    """웹훅 처리 결과. 대행사 재전달을 멈추기 위해 중복/무시도 200 으로 응답한다."""

    received: bool = True
    outcome: SettlementOutcome
    payment: PaymentResponse
    transaction: CreditTransactionResponse | None = None

    @classmethod
    def from_domain(cls, result: SettlementResult) -> "SettlementResponse":
        return cls(
            outcome=result.outcome,
            payment=PaymentResponse.from_domain(result.payment),
            transaction=(
                CreditTransactionResponse.from_domain(result.transaction)
                if result.transaction is not None
                else None
            ),
        )
