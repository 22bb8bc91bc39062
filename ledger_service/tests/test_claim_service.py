from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import timedelta

import pytest

from ledger_service.app.config import ClaimSettings
from ledger_service.app.errors import (
    AlreadyClaimedError,
    MaxClaimsReachedError,
    NotFoundError,
    ValidationError,
)
from ledger_service.app.models.credit import CreditSource
from ledger_service.app.models.reward import (
    ClaimResult,
    ClaimStatus,
    FreeTierReward,
    Offer,
    OfferStatus,
    PromotionReward,
    RewardClaim,
)
from ledger_service.app.services.claim_service import (
    REASON_ALREADY_CLAIMED,
    REASON_MAX_CLAIMS_REACHED,
    ClaimService,
    claim_idempotency_key,
)
from ledger_service.app.services.credit_service import CreditService
from ledger_service.tests.fakes import (
    FakeCreditTransactionRepository,
    FakeOfferRepository,
    FakeRewardClaimRepository,
    FakeRewardCounterRepository,
    FixedClock,
)


@dataclass
class ClaimFixture:
    service: ClaimService
    credits: CreditService
    ledger: FakeCreditTransactionRepository
    claims: FakeRewardClaimRepository
    offers: FakeOfferRepository
    counters: FakeRewardCounterRepository
    clock: FixedClock


def _build_fixture() -> ClaimFixture:
    clock = FixedClock()
    ledger = FakeCreditTransactionRepository()
    claims = FakeRewardClaimRepository()
    offers = FakeOfferRepository()
    counters = FakeRewardCounterRepository()
    credits = CreditService(ledger, clock=clock)
    service = ClaimService(
        claims,
        offers,
        counters,
        credits,
        settings=ClaimSettings(free_tier_credits=100, pending_timeout_seconds=60),
        clock=clock,
    )
    return ClaimFixture(service, credits, ledger, claims, offers, counters, clock)


def _add_offer(fx: ClaimFixture, **overrides) -> Offer:
    now = fx.clock()
    data = {
        "title": "Try our game",
        "credits_reward": 25,
        "max_claims": None,
        "created_at": now,
        "updated_at": now,
    }
    data.update(overrides)
    return fx.offers.insert(Offer(**data))


def _run_concurrently(count: int, target) -> None:
    threads = [threading.Thread(target=target, args=(i,)) for i in range(count)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()


def test_give_free_credits_grants_configured_amount_once() -> None:
    fx = _build_fixture()

    tx = fx.service.give_free_credits("user-1")

    assert tx.amount == 100
    assert tx.source == CreditSource.FREE_TIER
    assert tx.idempotency_key == claim_idempotency_key("user-1", "free_tier")
    claim = fx.claims.find("user-1", "free_tier")
    assert claim is not None
    assert claim.status == ClaimStatus.CLAIMED
    assert claim.transaction_id == tx.id


def test_give_free_credits_twice_raises_already_claimed() -> None:
    fx = _build_fixture()
    fx.service.give_free_credits("user-1")

    with pytest.raises(AlreadyClaimedError):
        fx.service.give_free_credits("user-1")

    assert fx.credits.get_balance("user-1") == 100
    assert len(fx.ledger.for_user("user-1")) == 1


def test_claim_returns_rejection_instead_of_raising_for_duplicate() -> None:
    fx = _build_fixture()
    fx.service.claim("user-1", PromotionReward(campaign="spring"), 10)

    result = fx.service.claim("user-1", PromotionReward(campaign="spring"), 10)

    assert result.accepted is False
    assert result.reason == REASON_ALREADY_CLAIMED
    assert result.transaction is None
    assert fx.credits.get_balance("user-1") == 10


def test_same_user_claiming_concurrently_is_credited_once() -> None:
    fx = _build_fixture()
    results: list[ClaimResult] = []
    lock = threading.Lock()

    def work(_: int) -> None:
        result = fx.service.claim(
            "user-1", PromotionReward(campaign="launch"), 30, max_claims=5
        )
        with lock:
            results.append(result)

    _run_concurrently(10, work)

    assert sum(1 for r in results if r.accepted) == 1
    assert fx.credits.get_balance("user-1") == 30
    # 중복으로 거절된 시도는 예약한 슬롯을 반납한다.
    assert fx.counters.counts["promotion:launch"] == 1


def test_capped_offer_accepts_exactly_max_claims_under_contention() -> None:
    fx = _build_fixture()
    offer = _add_offer(fx, max_claims=5)
    accepted: list[str] = []
    rejected: list[str] = []
    lock = threading.Lock()

    def work(i: int) -> None:
        user_id = f"user-{i}"
        try:
            fx.service.claim_offer(user_id, offer.id or "")
        except MaxClaimsReachedError:
            with lock:
                rejected.append(user_id)
            return
        with lock:
            accepted.append(user_id)

    _run_concurrently(10, work)

    assert len(accepted) == 5
    assert len(rejected) == 5
    assert fx.offers.items[offer.id or ""].current_claims == 5
    for user_id in accepted:
        assert fx.credits.get_balance(user_id) == 25
    for user_id in rejected:
        assert fx.credits.get_balance(user_id) == 0


def test_capped_reward_key_rejects_with_reason_once_full() -> None:
    fx = _build_fixture()
    for i in range(2):
        assert fx.service.claim_reward(f"user-{i}", "promotion:beta", 5, 2).accepted

    result = fx.service.claim_reward("user-9", "promotion:beta", 5, 2)

    assert result.accepted is False
    assert result.reason == REASON_MAX_CLAIMS_REACHED


def test_claim_offer_records_offer_title_in_description() -> None:
    fx = _build_fixture()
    offer = _add_offer(fx, title="Install the app")

    result = fx.service.claim_offer("user-1", offer.id or "")

    assert result.transaction is not None
    assert result.transaction.description == "Earned credits from: Install the app"
    assert result.transaction.source == CreditSource.PROMOTION


def test_claim_offer_raises_not_found_for_expired_offer() -> None:
    fx = _build_fixture()
    offer = _add_offer(fx, expires_at=fx.clock() - timedelta(days=1))

    with pytest.raises(NotFoundError):
        fx.service.claim_offer("user-1", offer.id or "")


def test_claim_offer_raises_not_found_for_inactive_offer() -> None:
    fx = _build_fixture()
    offer = _add_offer(fx, status=OfferStatus.INACTIVE)

    with pytest.raises(NotFoundError):
        fx.service.claim_offer("user-1", offer.id or "")


def test_list_offers_hides_unavailable_offers() -> None:
    fx = _build_fixture()
    visible = _add_offer(fx, title="visible")
    _add_offer(fx, title="expired", expires_at=fx.clock() - timedelta(seconds=1))

    offers = fx.service.list_offers()

    assert [o.id for o in offers] == [visible.id]


def test_stale_pending_claim_is_resumed_without_double_credit() -> None:
    fx = _build_fixture()
    stale_at = fx.clock() - timedelta(minutes=5)
    fx.claims.insert_pending(
        RewardClaim(
            user_id="user-1",
            reward_key="free_tier",
            reward=FreeTierReward(),
            credits_awarded=100,
            created_at=stale_at,
            updated_at=stale_at,
        )
    )
    # 이전 시도가 원장 적립까지는 끝낸 상태
    earlier = fx.credits.add_credits(
        "user-1",
        100,
        source=CreditSource.FREE_TIER,
        description="welcome",
        idempotency_key=claim_idempotency_key("user-1", "free_tier"),
    )

    tx = fx.service.give_free_credits("user-1")

    assert tx.id == earlier.id
    assert fx.credits.get_balance("user-1") == 100
    claim = fx.claims.find("user-1", "free_tier")
    assert claim is not None
    assert claim.status == ClaimStatus.CLAIMED


def test_fresh_pending_claim_is_left_to_its_owner() -> None:
    fx = _build_fixture()
    now = fx.clock()
    fx.claims.insert_pending(
        RewardClaim(
            user_id="user-1",
            reward_key="free_tier",
            reward=FreeTierReward(),
            credits_awarded=100,
            created_at=now,
            updated_at=now,
        )
    )

    result = fx.service.claim("user-1", FreeTierReward(), 100)

    assert result.accepted is False
    assert result.reason == REASON_ALREADY_CLAIMED
    assert fx.credits.get_balance("user-1") == 0


def test_claim_referral_rejects_self_referral() -> None:
    fx = _build_fixture()

    with pytest.raises(ValidationError):
        fx.service.claim_referral("user-1", "user-1", 50)


def test_claim_referral_credits_referrer_once_per_referred_user() -> None:
    fx = _build_fixture()

    result = fx.service.claim_referral("user-1", "user-2", 50)

    assert result.accepted is True
    assert result.transaction is not None
    assert result.transaction.source == CreditSource.REFERRAL
    with pytest.raises(AlreadyClaimedError):
        fx.service.claim_referral("user-1", "user-2", 50)


@pytest.mark.parametrize("reward_key", ["", "unknown:1", "subscription:sub-1:2026", "offer:"])
def test_claim_reward_rejects_unknown_reward_keys(reward_key: str) -> None:
    fx = _build_fixture()

    with pytest.raises(ValidationError):
        fx.service.claim_reward("user-1", reward_key, 10)


def test_claim_rejects_non_positive_credits() -> None:
    fx = _build_fixture()

    with pytest.raises(ValidationError):
        fx.service.claim("user-1", FreeTierReward(), 0)


def test_counter_slot_without_max_claims_is_a_validation_error() -> None:
    fx = _build_fixture()

    with pytest.raises(ValidationError):
        fx.service._reserve_slot(PromotionReward(campaign="spring"), None)
    assert fx.counters.counts == {}
