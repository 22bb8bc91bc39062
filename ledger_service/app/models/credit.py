"""크레딧 원장 도메인 모델.

유저별 잔액은 별도 필드가 아니라 append-only 트랜잭션 로그로 표현한다.
가장 최근 트랜잭션의 balance_after 가 현재 잔액이며, 트랜잭션은 한 번 쓰면 수정하지 않는다.
"""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, Field


class TransactionType(StrEnum):
    EARNED = "earned"
    PURCHASED = "purchased"
    USED = "used"
    REFUNDED = "refunded"
    BONUS = "bonus"


class CreditSource(StrEnum):
    FREE_TIER = "free_tier"
    SUBSCRIPTION = "subscription"
    PURCHASE = "purchase"
    REFERRAL = "referral"
    PROMOTION = "promotion"
    APP_DEVELOPMENT = "app_development"
    REFUND = "refund"
    MENTORSHIP = "mentorship"
    SERVICE = "service"


class RelatedIds(BaseModel):
    """트랜잭션이 참조하는 외부 엔티티 ID 묶음."""

    payment_id: str | None = None
    subscription_id: str | None = None
    project_id: str | None = None


class CreditTransaction(BaseModel):
    """원장 트랜잭션 도메인 모델 (불변)."""

    id: str | None = None
    user_id: str
    sequence: int = Field(ge=1)  # 유저별 순번, (user_id, sequence) 유니크
    type: TransactionType
    amount: int  # 적립은 양수, 사용은 음수
    balance_after: int = Field(ge=0)
    source: CreditSource
    description: str
    related_payment_id: str | None = None
    related_subscription_id: str | None = None
    related_project_id: str | None = None
    idempotency_key: str | None = None
    metadata: dict = Field(default_factory=dict)
    created_at: datetime


class BalanceCheck(BaseModel):
    """캐시된 잔액(최신 balance_after)과 전체 합계 비교 결과."""

    user_id: str
    balance: int
    calculated_balance: int
    transaction_count: int

    @property
    def consistent(self) -> bool:
        return self.balance == self.calculated_balance


class AdjustAction(StrEnum):
    ADD = "add"
    SET = "set"
    REMOVE = "remove"
