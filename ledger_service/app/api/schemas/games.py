from __future__ import annotations

from pydantic import BaseModel, Field

from common.types.datetime import OptionalUtcDateTime, UtcDateTime

from ...models.game import (
    GameCreditConfig,
    GameEarningRule,
    GameEarningType,
    GameProgress,
)
from ...models.reward import ClaimProgress, ClaimStatus, GameReward, RewardClaim


class GameEarningResponse(BaseModel):
    earning_id: str | None
    game_id: str | None = None
    game_title: str
    rule_key: str | None = None
    description: str
    status: ClaimStatus
    credits: int
    progress: ClaimProgress | None = None
    completed_at: OptionalUtcDateTime = None
    claimed_at: OptionalUtcDateTime = None

    @classmethod
    def from_domain(cls, earning: RewardClaim) -> "GameEarningResponse":
        reward = earning.reward
        is_game = isinstance(reward, GameReward)
        return cls(
            earning_id=earning.id,
            game_id=reward.game_id if is_game else None,
            game_title=earning.reward_title,
            rule_key=reward.rule_key if is_game else None,
            description=earning.description,
            status=earning.status,
            credits=earning.credits_awarded,
            progress=earning.progress,
            completed_at=earning.completed_at,
            claimed_at=earning.claimed_at,
        )


class GameCreditConfigResponse(BaseModel):
    id: str | None
    game_id: str
    game_title: str
    enabled: bool
    developer_id: str
    earning_rules: list[GameEarningRule]
    created_at: UtcDateTime
    updated_at: UtcDateTime

    @classmethod
    def from_domain(cls, config: GameCreditConfig) -> "GameCreditConfigResponse":
        return cls(**config.model_dump())


class GameProgressResponse(BaseModel):
    game: GameCreditConfigResponse
    earnings: list[GameEarningResponse]
    available_credits: int

    @classmethod
    def from_domain(cls, progress: GameProgress) -> "GameProgressResponse":
        return cls(
            game=GameCreditConfigResponse.from_domain(progress.config),
            earnings=[GameEarningResponse.from_domain(e) for e in progress.earnings],
            available_credits=progress.available_credits,
        )


class SaveGameConfigRequest(BaseModel):
    developer_id: str
    game_id: str
    game_title: str | None = None
    enabled: bool | None = None
    earning_rules: list[GameEarningRule] | None = None


class TrackGameProgressRequest(BaseModel):
    user_id: str
    game_id: str
    type: GameEarningType
    value: float | None = Field(default=None, ge=0)
    achievement_id: str | None = None
    milestone: str | None = None


class TrackGameProgressResponse(BaseModel):
    results: list[GameEarningResponse]


class ClaimGameEarningRequest(BaseModel):
    user_id: str
    earning_id: str
