"""게임 크레딧 적립 설정 모델.

게임 개발자가 게임별 적립 규칙(플레이 시간, 업적, 마일스톤 등)을 등록하고,
플레이어의 진행도가 규칙을 채우면 해당 규칙의 크레딧을 수령할 수 있다.
"""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, Field, model_validator

from .reward import ClaimStatus, RewardClaim


class GameEarningType(StrEnum):
    PLAYTIME = "playtime"
    ACHIEVEMENT = "achievement"
    MILESTONE = "milestone"
    DAILY_LOGIN = "daily_login"
    COMPLETION = "completion"


class GameRequirement(BaseModel):
    playtime_hours: float | None = Field(default=None, gt=0)
    achievement_id: str | None = None
    milestone: str | None = None
    description: str


class GameEarningRule(BaseModel):
    key: str = ""
    type: GameEarningType
    credits: int = Field(gt=0)
    requirement: GameRequirement
    max_claims: int | None = Field(default=None, gt=0)  # 전체 플레이어 합산 수령 상한

    @model_validator(mode="after")
    def _default_key(self) -> "GameEarningRule":
        if not self.key:
            req = self.requirement
            suffix = req.achievement_id or req.milestone
            if suffix is None and req.playtime_hours is not None:
                suffix = f"{req.playtime_hours:g}h"
            self.key = f"{self.type}:{suffix}" if suffix else str(self.type)
        return self

    @property
    def target(self) -> float:
        return self.requirement.playtime_hours or 1

    def progress_for(
        self,
        type: GameEarningType,
        value: float | None = None,
        achievement_id: str | None = None,
        milestone: str | None = None,
    ) -> float | None:
        """보고된 이벤트가 이 규칙에 해당하면 현재 진행 값을, 아니면 None 을 반환한다."""

        if type != self.type:
            return None
        req = self.requirement
        if type == GameEarningType.PLAYTIME:
            if req.playtime_hours is None or value is None:
                return None
            return value
        if type == GameEarningType.ACHIEVEMENT:
            return 1 if req.achievement_id and achievement_id == req.achievement_id else None
        if type == GameEarningType.MILESTONE:
            return 1 if req.milestone and milestone == req.milestone else None
        return 1


class GameCreditConfig(BaseModel):
    id: str | None = None
    game_id: str
    game_title: str
    enabled: bool = True
    developer_id: str
    earning_rules: list[GameEarningRule] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime

    def rule(self, key: str) -> GameEarningRule | None:
        return next((r for r in self.earning_rules if r.key == key), None)


class GameProgress(BaseModel):
    """유저 한 명 기준의 게임별 적립 현황."""

    config: GameCreditConfig
    earnings: list[RewardClaim] = Field(default_factory=list)

    @property
    def available_credits(self) -> int:
        return sum(
            e.credits_awarded for e in self.earnings if e.status == ClaimStatus.COMPLETED
        )
