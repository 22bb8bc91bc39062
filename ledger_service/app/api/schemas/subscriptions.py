from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel

from common.types.datetime import OptionalUtcDateTime, UtcDateTime

from ...config import SubscriptionTier
from ...models.subscription import BillingCycleReport, Subscription, SubscriptionStatus


class TierResponse(BaseModel):
    name: str
    monthly_price: float
    credits_per_month: int
    additional_credit_price: float
    description: str

    @classmethod
    def from_config(cls, tier: SubscriptionTier) -> "TierResponse":
        return cls(
            name=tier.name,
            monthly_price=tier.monthly_price,
            credits_per_month=tier.credits_per_month,
            additional_credit_price=tier.additional_credit_price,
            description=tier.description,
        )


class SubscribeRequest(BaseModel):
    user_id: str
    tier: str
    processor: str | None = None


class SubscriptionResponse(BaseModel):
    id: str | None
    user_id: str
    tier: str
    status: SubscriptionStatus
    monthly_price: float
    credits_per_month: int
    start_date: UtcDateTime
    next_billing_date: OptionalUtcDateTime = None
    cancelled_at: OptionalUtcDateTime = None
    payment_processor: str | None = None

    @classmethod
    def from_domain(cls, subscription: Subscription) -> "SubscriptionResponse":
        return cls(
            id=subscription.id,
            user_id=subscription.user_id,
            tier=subscription.tier,
            status=subscription.status,
            monthly_price=subscription.monthly_price,
            credits_per_month=subscription.credits_per_month,
            start_date=subscription.start_date,
            next_billing_date=subscription.next_billing_date,
            cancelled_at=subscription.cancelled_at,
            payment_processor=subscription.payment_processor,
        )


class BillingCycleRequest(BaseModel):
    """외부 스케줄러가 호출한다. now 가 없으면 서버 시간을 사용한다."""

    now: datetime | None = None


class BillingCycleResponse(BaseModel):
    processed: int
    granted: int
    skipped: int
    failed: int
    granted_credits: int
    failed_subscription_ids: list[str]

    @classmethod
    def from_domain(cls, report: BillingCycleReport) -> "BillingCycleResponse":
        return cls(**report.model_dump())
