from __future__ import annotations

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field

from .credit import CreditTransaction


class PaymentStatus(StrEnum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"
    CANCELLED = "cancelled"


class PaymentType(StrEnum):
    ONE_TIME = "one_time"
    SUBSCRIPTION = "subscription"
    CREDITS = "credits"


OPEN_STATUSES: frozenset[PaymentStatus] = frozenset(
    {PaymentStatus.PENDING, PaymentStatus.PROCESSING}
)
TERMINAL_STATUSES: frozenset[PaymentStatus] = frozenset(
    {
        PaymentStatus.COMPLETED,
        PaymentStatus.FAILED,
        PaymentStatus.CANCELLED,
        PaymentStatus.REFUNDED,
    }
)


class Payment(BaseModel):
    """결제 도메인 모델.

    구매 의도 요청으로 생성되고, 이후 상태 변경은 정산 처리기만 수행한다.
    """

    id: str | None = None
    user_id: str
    type: PaymentType
    amount: float = Field(ge=0)
    currency: str = "USD"
    status: PaymentStatus = PaymentStatus.PENDING
    processor: str = "paypal"
    external_payment_id: str | None = None
    external_order_id: str | None = None
    credits_purchased: int | None = None
    subscription_id: str | None = None
    project_id: str | None = None
    description: str = ""
    metadata: dict = Field(default_factory=dict)
    processed_at: datetime | None = None
    refunded_at: datetime | None = None
    created_at: datetime
    updated_at: datetime

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def idempotency_key(self) -> str:
        """이 결제로 인한 원장 적립의 멱등 키."""
        return f"payment:{self.id}"


class WebhookPayload(BaseModel):
    """결제 대행사 웹훅 페이로드 (서명 검증은 상위에서 끝난 상태)."""

    model_config = ConfigDict(populate_by_name=True)

    event: str = ""
    payment_id: str | None = Field(default=None, alias="paymentId")
    order_id: str | None = Field(default=None, alias="orderId")
    status: str
    amount: float = 0
    processor: str


class SettlementOutcome(StrEnum):
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    DUPLICATE = "duplicate"  # 이미 종결된 결제에 대한 재전달
    IGNORED = "ignored"  # 처리 대상이 아닌 status 값


class SettlementResult(BaseModel):
    payment: Payment
    outcome: SettlementOutcome
    transaction: CreditTransaction | None = None
