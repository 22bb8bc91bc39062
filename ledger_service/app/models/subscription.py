from __future__ import annotations

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, Field


class SubscriptionStatus(StrEnum):
    PENDING = "pending"
    ACTIVE = "active"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class Subscription(BaseModel):
    """유저 구독 도메인 모델.

    유저당 active 구독은 최대 하나이며, 유료 티어는 결제 정산 전까지 pending 상태로 남는다.
    """

    id: str | None = None
    user_id: str
    tier: str
    status: SubscriptionStatus = SubscriptionStatus.PENDING
    monthly_price: float = 0
    credits_per_month: int = Field(ge=0)
    start_date: datetime
    next_billing_date: datetime | None = None
    cancelled_at: datetime | None = None
    payment_processor: str | None = None
    external_subscription_id: str | None = None
    created_at: datetime
    updated_at: datetime

    @property
    def is_active(self) -> bool:
        return self.status == SubscriptionStatus.ACTIVE


class BillingCycleReport(BaseModel):
    """빌링 사이클 1회 실행 결과 요약."""

    processed: int = 0  # 대상 구독 수
    granted: int = 0  # 새로 지급된 주기 수
    skipped: int = 0  # 이미 지급돼 있던 주기 수
    failed: int = 0
    granted_credits: int = 0
    failed_subscription_ids: list[str] = Field(default_factory=list)
