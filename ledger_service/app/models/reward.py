"""리워드(클레임) 도메인 모델.

리워드 출처는 닫힌 합 타입(RewardSource)으로 표현하고, 각 변형이 자신의 reward_key 를 결정한다.
reward_key 는 (user_id, reward_key) 유니크 제약과 원장 멱등 키로 그대로 쓰인다.
"""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field

from common.mongo.types import ensure_utc_datetime

from ..errors import ValidationError
from .credit import CreditSource, CreditTransaction


class FreeTierReward(BaseModel):
    kind: Literal["free_tier"] = "free_tier"

    @property
    def reward_key(self) -> str:
        return "free_tier"

    @property
    def credit_source(self) -> CreditSource:
        return CreditSource.FREE_TIER


class OfferReward(BaseModel):
    kind: Literal["offer"] = "offer"
    offer_id: str

    @property
    def reward_key(self) -> str:
        return f"offer:{self.offer_id}"

    @property
    def credit_source(self) -> CreditSource:
        return CreditSource.PROMOTION


class ReferralReward(BaseModel):
    kind: Literal["referral"] = "referral"
    referred_user_id: str

    @property
    def reward_key(self) -> str:
        return f"referral:{self.referred_user_id}"

    @property
    def credit_source(self) -> CreditSource:
        return CreditSource.REFERRAL


class PromotionReward(BaseModel):
    kind: Literal["promotion"] = "promotion"
    campaign: str

    @property
    def reward_key(self) -> str:
        return f"promotion:{self.campaign}"

    @property
    def credit_source(self) -> CreditSource:
        return CreditSource.PROMOTION


class GameReward(BaseModel):
    """게임 플레이 규칙 달성 보상. 진행도를 쌓아 completed 가 된 뒤에만 수령할 수 있다."""

    kind: Literal["game"] = "game"
    game_id: str
    rule_key: str

    @property
    def reward_key(self) -> str:
        return f"game:{self.game_id}:{self.rule_key}"

    @property
    def credit_source(self) -> CreditSource:
        return CreditSource.APP_DEVELOPMENT


class SubscriptionCycleReward(BaseModel):
    """구독 주기 지급. 클레임 컬렉션을 거치지 않고 원장 멱등 키로만 중복을 막는다."""

    kind: Literal["subscription_cycle"] = "subscription_cycle"
    subscription_id: str
    period_start: datetime

    @property
    def reward_key(self) -> str:
        # Mongo 는 밀리초까지만 저장하므로 초 단위 UTC 로 고정한다.
        start = ensure_utc_datetime(self.period_start).strftime("%Y-%m-%dT%H:%M:%SZ")
        return f"subscription:{self.subscription_id}:{start}"

    @property
    def credit_source(self) -> CreditSource:
        return CreditSource.SUBSCRIPTION


RewardSource = Annotated[
    Union[
        FreeTierReward,
        OfferReward,
        ReferralReward,
        PromotionReward,
        GameReward,
        SubscriptionCycleReward,
    ],
    Field(discriminator="kind"),
]


def parse_reward_key(reward_key: str) -> RewardSource:
    """클레임 API 로 들어온 reward_key 문자열을 리워드 변형으로 해석한다.

    구독 주기 키는 빌링 사이클 전용, game 키는 진행도 추적 전용이라 여기서는 받지 않는다.
    """

    key = (reward_key or "").strip()
    if key == "free_tier":
        return FreeTierReward()

    kind, sep, value = key.partition(":")
    value = value.strip()
    if not sep or not value:
        raise ValidationError(f"unknown reward key: {reward_key!r}")
    if kind == "offer":
        return OfferReward(offer_id=value)
    if kind == "referral":
        return ReferralReward(referred_user_id=value)
    if kind == "promotion":
        return PromotionReward(campaign=value)
    raise ValidationError(f"unknown reward key: {reward_key!r}")


class ClaimStatus(StrEnum):
    PENDING = "pending"
    COMPLETED = "completed"
    CLAIMED = "claimed"


class ClaimProgress(BaseModel):
    current: float = Field(default=0, ge=0)
    target: float = Field(gt=0)
    percentage: float = Field(default=0, ge=0, le=100)

    @classmethod
    def of(cls, current: float, target: float) -> "ClaimProgress":
        current = max(0.0, current)
        return cls(
            current=current,
            target=target,
            percentage=min(100.0, current / target * 100),
        )

    @property
    def is_complete(self) -> bool:
        return self.percentage >= 100


class RewardClaim(BaseModel):
    """유저별 리워드 수령 기록. (user_id, reward_key) 당 하나만 존재한다.

    즉시 지급형 리워드는 pending -> claimed 로 바로 넘어가고,
    진행도형 리워드(게임)는 pending -> completed -> claimed 순서를 밟는다.
    reward_title 은 게임 제목처럼 원본에서 복사해 둔 표시용 값이다.
    """

    id: str | None = None
    user_id: str
    reward_key: str
    reward: RewardSource
    reward_title: str = ""
    description: str = ""
    status: ClaimStatus = ClaimStatus.PENDING
    credits_awarded: int = Field(gt=0)
    progress: ClaimProgress | None = None
    transaction_id: str | None = None
    completed_at: datetime | None = None
    claimed_at: datetime | None = None
    created_at: datetime
    updated_at: datetime


class OfferStatus(StrEnum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    EXPIRED = "expired"


class Offer(BaseModel):
    id: str | None = None
    title: str
    description: str = ""
    type: str = "other"  # game | app | website | other
    url: str = ""
    credits_reward: int = Field(gt=0)
    status: OfferStatus = OfferStatus.ACTIVE
    max_claims: int | None = None
    current_claims: int = 0
    metadata: dict = Field(default_factory=dict)
    expires_at: datetime | None = None
    created_at: datetime
    updated_at: datetime

    def is_available(self, now: datetime) -> bool:
        if self.status != OfferStatus.ACTIVE:
            return False
        if self.expires_at is not None and self.expires_at <= now:
            return False
        return True

    @property
    def remaining_claims(self) -> int | None:
        if self.max_claims is None:
            return None
        return max(0, self.max_claims - self.current_claims)


class ClaimResult(BaseModel):
    """클레임 시도 결과. 중복은 예외 대신 accepted=False 로 돌려준다."""

    accepted: bool
    reason: str | None = None
    claim: RewardClaim | None = None
    transaction: CreditTransaction | None = None
