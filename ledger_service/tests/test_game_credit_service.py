from __future__ import annotations

import threading
from dataclasses import dataclass

import pytest

from ledger_service.app.errors import (
    AlreadyClaimedError,
    MaxClaimsReachedError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from ledger_service.app.models.credit import CreditSource
from ledger_service.app.models.game import (
    GameCreditConfig,
    GameEarningRule,
    GameEarningType,
    GameRequirement,
)
from ledger_service.app.models.reward import ClaimStatus, GameReward
from ledger_service.app.services.claim_service import (
    ClaimService,
    claim_idempotency_key,
)
from ledger_service.app.services.credit_service import CreditService
from ledger_service.app.services.game_credit_service import GameCreditService
from ledger_service.tests.fakes import (
    FakeCreditTransactionRepository,
    FakeGameCreditConfigRepository,
    FakeOfferRepository,
    FakeRewardClaimRepository,
    FakeRewardCounterRepository,
    FixedClock,
)


PLAYTIME_RULE = GameEarningRule(
    type=GameEarningType.PLAYTIME,
    credits=50,
    requirement=GameRequirement(playtime_hours=10, description="Play for 10 hours"),
)
BOSS_RULE = GameEarningRule(
    type=GameEarningType.ACHIEVEMENT,
    credits=30,
    requirement=GameRequirement(achievement_id="boss", description="Defeat the boss"),
    max_claims=1,
)


@dataclass
class GameFixture:
    service: GameCreditService
    claims: ClaimService
    credits: CreditService
    claim_repo: FakeRewardClaimRepository
    counters: FakeRewardCounterRepository
    configs: FakeGameCreditConfigRepository
    clock: FixedClock


def _build_fixture() -> GameFixture:
    clock = FixedClock()
    credits = CreditService(FakeCreditTransactionRepository(), clock=clock)
    claim_repo = FakeRewardClaimRepository()
    counters = FakeRewardCounterRepository()
    claims = ClaimService(
        claim_repo, FakeOfferRepository(), counters, credits, clock=clock
    )
    configs = FakeGameCreditConfigRepository()
    service = GameCreditService(configs, claims, clock=clock)
    service.save_config(
        "dev-1",
        "game-1",
        game_title="Space Game",
        earning_rules=[PLAYTIME_RULE, BOSS_RULE],
    )
    return GameFixture(service, claims, credits, claim_repo, counters, configs, clock)


def _complete_playtime(fx: GameFixture, user_id: str = "user-1") -> str:
    [earning] = fx.service.track_progress(
        user_id, "game-1", GameEarningType.PLAYTIME, value=10
    )
    assert earning.status == ClaimStatus.COMPLETED
    return earning.id or ""


def _defeat_boss(fx: GameFixture, user_id: str) -> str:
    [earning] = fx.service.track_progress(
        user_id, "game-1", GameEarningType.ACHIEVEMENT, achievement_id="boss"
    )
    return earning.id or ""


def test_rule_keys_default_from_requirement() -> None:
    assert PLAYTIME_RULE.key == "playtime:10h"
    assert BOSS_RULE.key == "achievement:boss"
    assert GameReward(game_id="game-1", rule_key=BOSS_RULE.key).reward_key == (
        "game:game-1:achievement:boss"
    )


def test_playtime_progress_keeps_highest_value_until_completed() -> None:
    fx = _build_fixture()

    [first] = fx.service.track_progress("user-1", "game-1", GameEarningType.PLAYTIME, value=4)
    [second] = fx.service.track_progress("user-1", "game-1", GameEarningType.PLAYTIME, value=2)

    assert first.status == ClaimStatus.PENDING
    assert second.id == first.id
    assert second.progress is not None
    assert (second.progress.current, second.progress.percentage) == (4, 40)

    fx.clock.advance(hours=1)
    [done] = fx.service.track_progress("user-1", "game-1", GameEarningType.PLAYTIME, value=12)

    assert done.status == ClaimStatus.COMPLETED
    assert done.completed_at == fx.clock()
    assert done.progress is not None
    assert done.progress.percentage == 100
    assert fx.credits.get_balance("user-1") == 0


def test_list_games_reports_claimable_credits_with_cached_title() -> None:
    fx = _build_fixture()
    _complete_playtime(fx)

    [game] = fx.service.list_games("user-1")

    assert game.config.game_title == "Space Game"
    assert game.available_credits == 50
    assert [e.reward_title for e in game.earnings] == ["Space Game"]


def test_claim_earning_credits_once() -> None:
    fx = _build_fixture()
    earning_id = _complete_playtime(fx)

    result = fx.service.claim_earning("user-1", earning_id)

    assert result.accepted is True
    assert result.transaction is not None
    assert result.transaction.source == CreditSource.APP_DEVELOPMENT
    assert result.transaction.description == (
        "Earned credits from Space Game: Play for 10 hours"
    )
    assert result.transaction.metadata["earning_type"] == "playtime"
    assert result.claim is not None
    assert result.claim.status == ClaimStatus.CLAIMED

    with pytest.raises(AlreadyClaimedError):
        fx.service.claim_earning("user-1", earning_id)
    assert fx.credits.get_balance("user-1") == 50
    [game] = fx.service.list_games("user-1")
    assert game.available_credits == 0


def test_claimed_earning_is_not_reopened_by_more_progress() -> None:
    fx = _build_fixture()
    earning_id = _complete_playtime(fx)
    fx.service.claim_earning("user-1", earning_id)

    [earning] = fx.service.track_progress(
        "user-1", "game-1", GameEarningType.PLAYTIME, value=20
    )

    assert earning.id == earning_id
    assert earning.status == ClaimStatus.CLAIMED
    assert fx.credits.get_balance("user-1") == 50


def test_claiming_unfinished_earning_is_rejected() -> None:
    fx = _build_fixture()
    [earning] = fx.service.track_progress(
        "user-1", "game-1", GameEarningType.PLAYTIME, value=3
    )

    with pytest.raises(ValidationError):
        fx.service.claim_earning("user-1", earning.id or "")
    assert fx.credits.get_balance("user-1") == 0


def test_other_users_earning_is_not_found() -> None:
    fx = _build_fixture()
    earning_id = _complete_playtime(fx, "user-1")

    with pytest.raises(NotFoundError):
        fx.service.claim_earning("user-2", earning_id)


def test_capped_rule_pays_only_max_claims_players() -> None:
    fx = _build_fixture()
    first = _defeat_boss(fx, "user-1")
    second = _defeat_boss(fx, "user-2")

    fx.service.claim_earning("user-1", first)
    with pytest.raises(MaxClaimsReachedError):
        fx.service.claim_earning("user-2", second)

    assert fx.credits.get_balance("user-1") == 30
    assert fx.credits.get_balance("user-2") == 0
    assert fx.counters.get_count("game:game-1:achievement:boss") == 1
    # 상한이 찬 규칙은 더 이상 새 진행을 만들지 않는다.
    assert fx.service.track_progress(
        "user-3", "game-1", GameEarningType.ACHIEVEMENT, achievement_id="boss"
    ) == []


def test_interrupted_claim_is_finished_without_taking_another_slot() -> None:
    fx = _build_fixture()
    earning_id = _defeat_boss(fx, "user-1")
    # 이전 시도가 원장 적립 후 claimed 전환 전에 중단됨
    earlier = fx.credits.add_credits(
        "user-1",
        30,
        source=CreditSource.APP_DEVELOPMENT,
        description="boss",
        idempotency_key=claim_idempotency_key("user-1", "game:game-1:achievement:boss"),
    )

    result = fx.service.claim_earning("user-1", earning_id)

    assert result.transaction is not None
    assert result.transaction.id == earlier.id
    assert fx.credits.get_balance("user-1") == 30
    assert fx.counters.get_count("game:game-1:achievement:boss") == 0


def test_concurrent_progress_reports_create_one_earning() -> None:
    fx = _build_fixture()

    def work() -> None:
        fx.service.track_progress("user-1", "game-1", GameEarningType.PLAYTIME, value=10)

    threads = [threading.Thread(target=work) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    earnings = fx.claim_repo.list_by_prefix(
        "user-1", "game:game-1:", [ClaimStatus.PENDING, ClaimStatus.COMPLETED]
    )
    assert len(earnings) == 1
    assert earnings[0].status == ClaimStatus.COMPLETED


def test_non_matching_report_tracks_nothing() -> None:
    fx = _build_fixture()

    results = fx.service.track_progress(
        "user-1", "game-1", GameEarningType.ACHIEVEMENT, achievement_id="dragon"
    )

    assert results == []


def test_tracking_requires_enabled_game_config() -> None:
    fx = _build_fixture()
    with pytest.raises(NotFoundError):
        fx.service.track_progress("user-1", "game-9", GameEarningType.PLAYTIME, value=1)

    fx.service.save_config("dev-1", "game-1", enabled=False)

    with pytest.raises(NotFoundError):
        fx.service.track_progress("user-1", "game-1", GameEarningType.PLAYTIME, value=1)


def test_save_config_updates_rules_but_keeps_cached_title() -> None:
    fx = _build_fixture()

    updated = fx.service.save_config(
        "dev-1", "game-1", game_title="Renamed", earning_rules=[PLAYTIME_RULE]
    )

    assert updated.game_title == "Space Game"
    assert [r.key for r in updated.earning_rules] == ["playtime:10h"]
    assert [c.game_id for c in fx.service.list_developer_configs("dev-1")] == ["game-1"]


def test_save_config_rejects_other_developer() -> None:
    fx = _build_fixture()

    with pytest.raises(UnauthorizedError):
        fx.service.save_config("dev-2", "game-1", enabled=False)


@pytest.mark.parametrize(
    "rules",
    [
        [PLAYTIME_RULE, PLAYTIME_RULE],
        [
            GameEarningRule(
                type=GameEarningType.PLAYTIME,
                credits=5,
                requirement=GameRequirement(description="no hours"),
            )
        ],
    ],
)
def test_save_config_rejects_invalid_rules(rules: list[GameEarningRule]) -> None:
    fx = _build_fixture()

    with pytest.raises(ValidationError):
        fx.service.save_config("dev-1", "game-2", game_title="Other", earning_rules=rules)


def test_new_config_requires_title() -> None:
    fx = _build_fixture()

    with pytest.raises(ValidationError):
        fx.service.save_config("dev-1", "game-2")
    assert fx.configs.find_by_game("game-2") is None


def test_game_reward_cannot_skip_progress_through_claim() -> None:
    fx = _build_fixture()

    with pytest.raises(ValidationError):
        fx.claims.claim("user-1", GameReward(game_id="game-1", rule_key="playtime:10h"), 50)


def test_config_model_looks_up_rule_by_key() -> None:
    fx = _build_fixture()
    config = fx.configs.find_by_game("game-1")

    assert isinstance(config, GameCreditConfig)
    assert config.rule("achievement:boss") == BOSS_RULE
    assert config.rule("missing") is None
