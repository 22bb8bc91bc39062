"""리워드 클레임 서비스.

(user_id, reward_key) 유니크 레코드로 1회 수령을, 조건부 카운터 증가로 전역 수령 상한을 보장한다.
처리 순서는 다음과 같다.

1. (상한이 있으면) 슬롯 예약: current_claims < max_claims 인 경우에만 원자적으로 +1
2. pending 클레임 insert. 유니크 충돌이면 예약한 슬롯을 반납하고 already_claimed
3. 클레임 키를 멱등 키로 원장에 적립
4. 클레임을 claimed 로 전환

3 과 4 사이에서 프로세스가 죽으면 pending 클레임이 남는다. pending 이 충분히 오래되면
다음 시도가 이를 이어받아 같은 멱등 키로 적립을 마무리한다.

진행도형 리워드(게임)는 track_progress 로 pending -> completed 를 먼저 밟고,
claim_completed 가 같은 멱등 키와 카운터 상한으로 completed -> claimed 를 처리한다.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta

from fastapi import Depends
from pymongo.database import Database

from common.mongo.client import get_database
from common.mongo.types import utcnow

from ..config import AppConfig, ClaimSettings, get_config
from ..errors import (
    AlreadyClaimedError,
    ConcurrentUpdateError,
    MaxClaimsReachedError,
    NotFoundError,
    ValidationError,
)
from ..models.credit import CreditTransaction, TransactionType
from ..models.reward import (
    ClaimProgress,
    ClaimResult,
    ClaimStatus,
    FreeTierReward,
    GameReward,
    Offer,
    OfferReward,
    ReferralReward,
    RewardClaim,
    RewardSource,
    SubscriptionCycleReward,
    parse_reward_key,
)
from ..repositories.claim_repository import (
    OfferRepository,
    RewardClaimRepository,
    RewardCounterRepository,
)
from ..repositories.interfaces import (
    OfferRepositoryInterface,
    RewardClaimRepositoryInterface,
    RewardCounterRepositoryInterface,
)
from .credit_service import CreditService, get_credit_service


logger = logging.getLogger(__name__)


REASON_ALREADY_CLAIMED = "already_claimed"
REASON_MAX_CLAIMS_REACHED = "max_claims_reached"


def claim_idempotency_key(user_id: str, reward_key: str) -> str:
    return f"claim:{user_id}:{reward_key}"


def ensure_accepted(
    result: ClaimResult, user_id: str, reward_key: str
) -> CreditTransaction:
    """거절된 클레임 결과를 도메인 예외로 바꾼다."""
    if result.accepted and result.transaction is not None:
        return result.transaction
    if result.reason == REASON_MAX_CLAIMS_REACHED:
        raise MaxClaimsReachedError(f"reward {reward_key} has reached maximum claims")
    raise AlreadyClaimedError(f"reward {reward_key} already claimed by user {user_id}")


class ClaimService:
    """리워드 1회 수령 / 전역 N회 수령 관리."""

    def __init__(
        self,
        claim_repo: RewardClaimRepositoryInterface,
        offer_repo: OfferRepositoryInterface,
        counter_repo: RewardCounterRepositoryInterface,
        credit_service: CreditService,
        *,
        settings: ClaimSettings | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._claim_repo = claim_repo
        self._offer_repo = offer_repo
        self._counter_repo = counter_repo
        self._credit_service = credit_service
        self._settings = settings or ClaimSettings()
        self._clock = clock

    def claim(
        self,
        user_id: str,
        reward: RewardSource,
        credits_awarded: int,
        *,
        max_claims: int | None = None,
        title: str = "",
        description: str | None = None,
        metadata: dict | None = None,
    ) -> ClaimResult:
        """리워드 수령을 시도한다. 중복/상한 도달은 예외 대신 accepted=False 로 돌려준다."""

        if not user_id:
            raise ValidationError("user_id is required")
        if credits_awarded <= 0:
            raise ValidationError(
                f"credits_awarded must be positive, got {credits_awarded}"
            )
        if isinstance(reward, SubscriptionCycleReward):
            raise ValidationError("subscription cycle credits are granted by billing")
        if isinstance(reward, GameReward):
            raise ValidationError("game rewards are claimed after their progress completes")
        if max_claims is not None and max_claims <= 0:
            raise ValidationError(f"max_claims must be positive, got {max_claims}")

        reward_key = reward.reward_key
        now = self._clock()

        existing = self._claim_repo.find(user_id, reward_key)
        if existing is not None:
            return self._resolve_existing(existing, title, description, metadata)

        capped = max_claims is not None or isinstance(reward, OfferReward)
        if capped and not self._reserve_slot(reward, max_claims):
            logger.info(
                "reward cap reached user_id=%s reward_key=%s max_claims=%s",
                user_id,
                reward_key,
                max_claims,
            )
            return ClaimResult(accepted=False, reason=REASON_MAX_CLAIMS_REACHED)

        pending = RewardClaim(
            user_id=user_id,
            reward_key=reward_key,
            reward=reward,
            reward_title=title or reward_key,
            status=ClaimStatus.PENDING,
            credits_awarded=credits_awarded,
            created_at=now,
            updated_at=now,
        )
        inserted = self._claim_repo.insert_pending(pending)
        if inserted is None:
            if capped:
                self._release_slot(reward)
            logger.info(
                "reward already claimed user_id=%s reward_key=%s", user_id, reward_key
            )
            return ClaimResult(accepted=False, reason=REASON_ALREADY_CLAIMED)

        return self._complete(inserted, description, metadata)

    # 편의 연산 -------------------------------------------------------------
    def give_free_credits(
        self,
        user_id: str,
        amount: int | None = None,
        description: str | None = None,
    ) -> CreditTransaction:
        """가입 무료 크레딧. 유저당 한 번만 지급되며 두 번째 호출은 AlreadyClaimedError."""

        credits = amount if amount is not None else self._settings.free_tier_credits
        result = self.claim(
            user_id,
            FreeTierReward(),
            credits,
            title="Free tier welcome credits",
            description=description or self._settings.free_tier_description,
        )
        return ensure_accepted(result, user_id, "free_tier")

    def claim_offer(self, user_id: str, offer_id: str) -> ClaimResult:
        result = self._claim_offer(user_id, offer_id)
        ensure_accepted(result, user_id, f"offer:{offer_id}")
        return result

    def _claim_offer(self, user_id: str, offer_id: str) -> ClaimResult:
        offer = self._offer_repo.find_by_id(offer_id)
        if offer is None or not offer.is_available(self._clock()):
            raise NotFoundError(f"offer not found or not available ({offer_id})")

        return self.claim(
            user_id,
            OfferReward(offer_id=offer.id or offer_id),
            offer.credits_reward,
            max_claims=offer.max_claims,
            title=offer.title,
            description=f"Earned credits from: {offer.title}",
            metadata={"offer_id": offer.id, "offer_type": offer.type},
        )

    def claim_referral(
        self, referrer_id: str, referred_user_id: str, credits: int
    ) -> ClaimResult:
        if referrer_id == referred_user_id:
            raise ValidationError("users cannot refer themselves")
        result = self.claim(
            referrer_id,
            ReferralReward(referred_user_id=referred_user_id),
            credits,
            title="Referral bonus",
            description=f"Referral bonus for inviting {referred_user_id}",
        )
        ensure_accepted(result, referrer_id, f"referral:{referred_user_id}")
        return result

    def claim_reward(
        self,
        user_id: str,
        reward_key: str,
        amount: int,
        max_claims: int | None = None,
    ) -> ClaimResult:
        """reward_key 문자열로 들어온 범용 클레임 요청."""
        reward = parse_reward_key(reward_key)
        if isinstance(reward, OfferReward):
            return self._claim_offer(user_id, reward.offer_id)
        return self.claim(user_id, reward, amount, max_claims=max_claims)

    def list_offers(self) -> list[Offer]:
        return self._offer_repo.list_available(self._clock())

    def create_offer(self, offer: Offer) -> Offer:
        if offer.max_claims is not None and offer.max_claims <= 0:
            raise ValidationError(f"max_claims must be positive, got {offer.max_claims}")
        created = self._offer_repo.insert(offer)
        logger.info(
            "offer created offer_id=%s credits_reward=%d max_claims=%s",
            created.id,
            created.credits_reward,
            created.max_claims,
        )
        return created

    # 진행도형 리워드 ---------------------------------------------------------
    def track_progress(
        self,
        user_id: str,
        reward: RewardSource,
        credits_awarded: int,
        current: float,
        target: float,
        *,
        title: str = "",
        description: str = "",
    ) -> RewardClaim:
        """진행도형 리워드의 진행 값을 기록한다.

        진행 값은 지금까지 보고된 최댓값으로 유지되므로 같은 보고가 반복돼도 결과가 같다.
        목표에 도달하면 pending -> completed 로 바뀌고, completed / claimed 기록은 그대로 돌려준다.
        """
        if not user_id:
            raise ValidationError("user_id is required")
        if credits_awarded <= 0:
            raise ValidationError(
                f"credits_awarded must be positive, got {credits_awarded}"
            )
        if target <= 0:
            raise ValidationError(f"progress target must be positive, got {target}")

        now = self._clock()
        existing = self._claim_repo.find(user_id, reward.reward_key)
        if existing is None:
            progress = ClaimProgress.of(current, target)
            completed = progress.is_complete
            inserted = self._claim_repo.insert_pending(
                RewardClaim(
                    user_id=user_id,
                    reward_key=reward.reward_key,
                    reward=reward,
                    reward_title=title or reward.reward_key,
                    description=description,
                    status=ClaimStatus.COMPLETED if completed else ClaimStatus.PENDING,
                    credits_awarded=credits_awarded,
                    progress=progress,
                    completed_at=now if completed else None,
                    created_at=now,
                    updated_at=now,
                )
            )
            if inserted is not None:
                logger.info(
                    "reward progress started user_id=%s reward_key=%s status=%s percentage=%.1f",
                    user_id,
                    inserted.reward_key,
                    inserted.status,
                    progress.percentage,
                )
                return inserted
            # 같은 기록을 동시에 만든 요청이 있음
            existing = self._claim_repo.find(user_id, reward.reward_key)
            if existing is None:
                raise ConcurrentUpdateError(
                    f"reward claim {reward.reward_key} changed concurrently"
                )

        return self._advance_progress(existing, current, now)

    def _advance_progress(
        self, claim: RewardClaim, current: float, now: datetime
    ) -> RewardClaim:
        if claim.status != ClaimStatus.PENDING or claim.progress is None:
            return claim

        progress = ClaimProgress.of(
            max(claim.progress.current, current), claim.progress.target
        )
        updated = self._claim_repo.update_progress(
            claim.id or "", progress, now if progress.is_complete else None, now
        )
        if updated is None:
            # 다른 요청이 먼저 completed 로 전환함
            return self._claim_repo.find(claim.user_id, claim.reward_key) or claim

        if updated.status == ClaimStatus.COMPLETED:
            logger.info(
                "reward progress completed user_id=%s reward_key=%s claim_id=%s",
                updated.user_id,
                updated.reward_key,
                updated.id,
            )
        return updated

    def claim_completed(
        self,
        claim: RewardClaim,
        *,
        max_claims: int | None = None,
        description: str | None = None,
        metadata: dict | None = None,
    ) -> ClaimResult:
        """completed 상태의 진행도형 리워드를 수령한다 (completed -> claimed).

        상한 슬롯은 아직 원장에 적립되지 않은 경우에만 예약한다. 이전 시도가 적립까지 마치고
        claimed 전환 전에 중단됐다면 같은 멱등 키로 마무리만 한다.
        """
        if claim.status == ClaimStatus.CLAIMED:
            return ClaimResult(accepted=False, reason=REASON_ALREADY_CLAIMED, claim=claim)
        if claim.status != ClaimStatus.COMPLETED:
            raise ValidationError(f"reward {claim.reward_key} is not completed yet")
        if max_claims is not None and max_claims <= 0:
            raise ValidationError(f"max_claims must be positive, got {max_claims}")

        key = claim_idempotency_key(claim.user_id, claim.reward_key)
        resumed = self._credit_service.find_by_idempotency_key(key) is not None
        if max_claims is not None and not resumed:
            if not self._counter_repo.try_reserve(claim.reward_key, max_claims):
                logger.info(
                    "reward cap reached user_id=%s reward_key=%s max_claims=%s",
                    claim.user_id,
                    claim.reward_key,
                    max_claims,
                )
                return ClaimResult(
                    accepted=False, reason=REASON_MAX_CLAIMS_REACHED, claim=claim
                )

        return self._complete(claim, description, metadata)

    def get_claim(self, user_id: str, claim_id: str) -> RewardClaim:
        claim = self._claim_repo.find_by_id(claim_id)
        if claim is None or claim.user_id != user_id:
            raise NotFoundError(f"reward claim not found ({claim_id})")
        return claim

    def list_claims(
        self, user_id: str, reward_key_prefix: str, statuses: list[ClaimStatus]
    ) -> list[RewardClaim]:
        return self._claim_repo.list_by_prefix(user_id, reward_key_prefix, statuses)

    def is_cap_reached(self, reward_key: str, max_claims: int) -> bool:
        return self._counter_repo.get_count(reward_key) >= max_claims

    # 내부 -----------------------------------------------------------------
    def _resolve_existing(
        self,
        existing: RewardClaim,
        title: str,
        description: str | None,
        metadata: dict | None,
    ) -> ClaimResult:
        if existing.status != ClaimStatus.PENDING:
            return ClaimResult(
                accepted=False, reason=REASON_ALREADY_CLAIMED, claim=existing
            )

        stale_before = self._clock() - timedelta(
            seconds=self._settings.pending_timeout_seconds
        )
        taken = self._claim_repo.take_over_pending(
            existing.id or "", stale_before, self._clock()
        )
        if taken is None:
            # 다른 요청이 진행 중이거나 이미 완료됨
            return ClaimResult(
                accepted=False, reason=REASON_ALREADY_CLAIMED, claim=existing
            )

        logger.warning(
            "resuming stale pending claim user_id=%s reward_key=%s claim_id=%s",
            taken.user_id,
            taken.reward_key,
            taken.id,
        )
        return self._complete(taken, description, metadata)

    def _complete(
        self,
        claim: RewardClaim,
        description: str | None,
        metadata: dict | None,
    ) -> ClaimResult:
        reward = claim.reward
        tx = self._credit_service.add_credits(
            claim.user_id,
            claim.credits_awarded,
            type=TransactionType.EARNED,
            source=reward.credit_source,
            description=description or f"Reward: {claim.reward_title}",
            metadata={**(metadata or {}), "reward_key": claim.reward_key},
            idempotency_key=claim_idempotency_key(claim.user_id, claim.reward_key),
        )

        claimed = self._claim_repo.mark_claimed(claim.id or "", tx.id, self._clock())
        logger.info(
            "reward claimed user_id=%s reward_key=%s credits=%d transaction_id=%s",
            claim.user_id,
            claim.reward_key,
            claim.credits_awarded,
            tx.id,
        )
        return ClaimResult(accepted=True, claim=claimed or claim, transaction=tx)

    def _reserve_slot(self, reward: RewardSource, max_claims: int | None) -> bool:
        if isinstance(reward, OfferReward):
            return self._offer_repo.try_reserve_claim(reward.offer_id, max_claims)
        if max_claims is None:
            raise ValidationError(f"max_claims is required for {reward.reward_key}")
        return self._counter_repo.try_reserve(reward.reward_key, max_claims)

    def _release_slot(self, reward: RewardSource) -> None:
        if isinstance(reward, OfferReward):
            self._offer_repo.release_claim(reward.offer_id)
        else:
            self._counter_repo.release(reward.reward_key)


def get_reward_claim_repository(
    db: Database = Depends(get_database),
) -> RewardClaimRepositoryInterface:
    """FastAPI DI용 RewardClaimRepository 팩토리."""

    return RewardClaimRepository(db)


def get_offer_repository(
    db: Database = Depends(get_database),
) -> OfferRepositoryInterface:
    return OfferRepository(db)


def get_reward_counter_repository(
    db: Database = Depends(get_database),
) -> RewardCounterRepositoryInterface:
    return RewardCounterRepository(db)


def get_claim_service(
    claim_repo: RewardClaimRepositoryInterface = Depends(get_reward_claim_repository),
    offer_repo: OfferRepositoryInterface = Depends(get_offer_repository),
    counter_repo: RewardCounterRepositoryInterface = Depends(
        get_reward_counter_repository
    ),
    credit_service: CreditService = Depends(get_credit_service),
    config: AppConfig = Depends(get_config),
) -> ClaimService:
    """FastAPI DI용 ClaimService 팩토리."""

    return ClaimService(
        claim_repo,
        offer_repo,
        counter_repo,
        credit_service,
        settings=config.claims,
    )
