"""게임 크레딧 적립 서비스.

게임 개발자가 등록한 적립 규칙에 플레이어의 진행 보고를 맞춰 보고,
규칙마다 하나의 진행도형 리워드(GameReward)를 ClaimService 로 관리한다.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime

from fastapi import Depends
from pymongo.database import Database

from common.mongo.client import get_database
from common.mongo.types import utcnow

from ..errors import (
    ConcurrentUpdateError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from ..models.game import (
    GameCreditConfig,
    GameEarningRule,
    GameEarningType,
    GameProgress,
)
from ..models.reward import ClaimResult, ClaimStatus, GameReward, RewardClaim
from ..repositories.game_config_repository import GameCreditConfigRepository
from ..repositories.interfaces import GameCreditConfigRepositoryInterface
from .claim_service import ClaimService, ensure_accepted, get_claim_service


logger = logging.getLogger(__name__)


REQUIRED_REQUIREMENT_FIELD = {
    GameEarningType.PLAYTIME: "playtime_hours",
    GameEarningType.ACHIEVEMENT: "achievement_id",
    GameEarningType.MILESTONE: "milestone",
}


def game_reward_prefix(game_id: str) -> str:
    return f"game:{game_id}:"


class GameCreditService:
    def __init__(
        self,
        config_repo: GameCreditConfigRepositoryInterface,
        claim_service: ClaimService,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._config_repo = config_repo
        self._claim_service = claim_service
        self._clock = clock

    # 설정 -----------------------------------------------------------------
    def save_config(
        self,
        developer_id: str,
        game_id: str,
        *,
        game_title: str | None = None,
        enabled: bool | None = None,
        earning_rules: list[GameEarningRule] | None = None,
    ) -> GameCreditConfig:
        """게임 적립 설정을 만들거나 갱신한다.

        게임 제목은 처음 만들 때 한 번 복사해 두고, 이후 적립 기록에도 그대로 실린다.
        다른 개발자의 설정은 바꿀 수 없다.
        """
        if not developer_id:
            raise ValidationError("developer_id is required")
        if not game_id or ":" in game_id:
            raise ValidationError(f"invalid game_id: {game_id!r}")
        if earning_rules is not None:
            _validate_rules(earning_rules)

        now = self._clock()
        existing = self._config_repo.find_by_game(game_id)
        if existing is None:
            if not game_title:
                raise ValidationError("game_title is required for a new game config")
            created = self._config_repo.insert(
                GameCreditConfig(
                    game_id=game_id,
                    game_title=game_title,
                    enabled=True if enabled is None else enabled,
                    developer_id=developer_id,
                    earning_rules=earning_rules or [],
                    created_at=now,
                    updated_at=now,
                )
            )
            if created is not None:
                logger.info(
                    "game credit config created game_id=%s developer_id=%s rules=%d",
                    game_id,
                    developer_id,
                    len(created.earning_rules),
                )
                return created
            existing = self._config_repo.find_by_game(game_id)
            if existing is None:
                raise ConcurrentUpdateError(f"game config {game_id} changed concurrently")

        if existing.developer_id != developer_id:
            raise UnauthorizedError(
                f"game {game_id} is configured by another developer"
            )
        updated = self._config_repo.update(game_id, enabled, earning_rules, now)
        if updated is None:
            raise NotFoundError(f"game config not found ({game_id})")
        logger.info(
            "game credit config updated game_id=%s enabled=%s rules=%d",
            game_id,
            updated.enabled,
            len(updated.earning_rules),
        )
        return updated

    def list_developer_configs(self, developer_id: str) -> list[GameCreditConfig]:
        return self._config_repo.list_by_developer(developer_id)

    # 플레이어 -------------------------------------------------------------
    def list_games(self, user_id: str) -> list[GameProgress]:
        """적립 가능한 게임 목록과 유저의 진행 중 / 수령 가능 기록."""
        return [
            GameProgress(
                config=config,
                earnings=self._claim_service.list_claims(
                    user_id,
                    game_reward_prefix(config.game_id),
                    [ClaimStatus.PENDING, ClaimStatus.COMPLETED],
                ),
            )
            for config in self._config_repo.list_enabled()
        ]

    def track_progress(
        self,
        user_id: str,
        game_id: str,
        type: GameEarningType,
        *,
        value: float | None = None,
        achievement_id: str | None = None,
        milestone: str | None = None,
    ) -> list[RewardClaim]:
        config = self._config_repo.find_by_game(game_id)
        if config is None or not config.enabled:
            raise NotFoundError(f"game not configured for credit earning ({game_id})")

        results: list[RewardClaim] = []
        for rule in config.earning_rules:
            current = rule.progress_for(type, value, achievement_id, milestone)
            if current is None:
                continue

            reward = GameReward(game_id=config.game_id, rule_key=rule.key)
            if rule.max_claims is not None and self._claim_service.is_cap_reached(
                reward.reward_key, rule.max_claims
            ):
                continue

            results.append(
                self._claim_service.track_progress(
                    user_id,
                    reward,
                    rule.credits,
                    current,
                    rule.target,
                    title=config.game_title,
                    description=rule.requirement.description,
                )
            )

        logger.info(
            "game progress tracked user_id=%s game_id=%s type=%s matched=%d",
            user_id,
            game_id,
            type,
            len(results),
        )
        return results

    def claim_earning(self, user_id: str, earning_id: str) -> ClaimResult:
        """completed 적립 기록의 크레딧을 수령한다.

        중복 수령은 AlreadyClaimedError, 규칙 상한 도달은 MaxClaimsReachedError.
        """
        earning = self._claim_service.get_claim(user_id, earning_id)
        reward = earning.reward
        if not isinstance(reward, GameReward):
            raise NotFoundError(f"game earning not found ({earning_id})")

        config = self._config_repo.find_by_game(reward.game_id)
        rule = config.rule(reward.rule_key) if config is not None else None
        metadata: dict = {"game_id": reward.game_id, "rule_key": reward.rule_key}
        if rule is not None:
            metadata["earning_type"] = str(rule.type)

        result = self._claim_service.claim_completed(
            earning,
            max_claims=rule.max_claims if rule is not None else None,
            description=f"Earned credits from {earning.reward_title}: {earning.description}",
            metadata=metadata,
        )
        ensure_accepted(result, user_id, earning.reward_key)
        return result


def _validate_rules(rules: list[GameEarningRule]) -> None:
    seen: set[str] = set()
    for rule in rules:
        if rule.key in seen:
            raise ValidationError(f"duplicate earning rule key: {rule.key}")
        seen.add(rule.key)

        field = REQUIRED_REQUIREMENT_FIELD.get(rule.type)
        if field and getattr(rule.requirement, field) is None:
            raise ValidationError(f"{rule.type} rule requires requirement.{field}")


def get_game_config_repository(
    db: Database = Depends(get_database),
) -> GameCreditConfigRepositoryInterface:
    """FastAPI DI용 GameCreditConfigRepository 팩토리."""

    return GameCreditConfigRepository(db)


def get_game_credit_service(
    repo: GameCreditConfigRepositoryInterface = Depends(get_game_config_repository),
    claim_service: ClaimService = Depends(get_claim_service),
) -> GameCreditService:
    """FastAPI DI용 GameCreditService 팩토리."""

    return GameCreditService(repo, claim_service)
