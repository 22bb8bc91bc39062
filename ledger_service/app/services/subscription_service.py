"""구독 서비스.

상태 전이: pending -> active (첫 결제 정산), active -> cancelled (명시적 해지), active -> expired.
각 빌링 주기의 크레딧은 (subscription_id, period_start) 멱등 키로 원장에 한 번만 적립된다.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta

from fastapi import Depends
from pymongo.database import Database

from common.mongo.client import get_database
from common.mongo.types import ensure_utc_datetime, utcnow

from ..config import AppConfig, BillingSettings, SubscriptionTier, get_config
from ..errors import NotFoundError, ValidationError
from ..models.credit import CreditTransaction, RelatedIds, TransactionType
from ..models.reward import SubscriptionCycleReward
from ..models.subscription import (
    BillingCycleReport,
    Subscription,
    SubscriptionStatus,
)
from ..repositories.interfaces import SubscriptionRepositoryInterface
from ..repositories.subscription_repository import SubscriptionRepository
from .credit_service import CreditService, get_credit_service


logger = logging.getLogger(__name__)


BILLING_BATCH_SIZE = 500


class SubscriptionService:
    """구독 상태 머신과 빌링 사이클."""

    def __init__(
        self,
        subscription_repo: SubscriptionRepositoryInterface,
        credit_service: CreditService,
        *,
        tiers: dict[str, SubscriptionTier],
        settings: BillingSettings | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._subscription_repo = subscription_repo
        self._credit_service = credit_service
        self._tiers = dict(tiers)
        self._settings = settings or BillingSettings()
        self._clock = clock

    @property
    def _period(self) -> timedelta:
        return timedelta(days=self._settings.period_days)

    def list_tiers(self) -> list[SubscriptionTier]:
        return list(self._tiers.values())

    def get_subscription(self, subscription_id: str) -> Subscription:
        subscription = self._subscription_repo.find_by_id(subscription_id)
        if subscription is None:
            raise NotFoundError(f"subscription not found ({subscription_id})")
        return subscription

    def get_active(self, user_id: str) -> Subscription | None:
        active = self._subscription_repo.list_by_user(
            user_id, [SubscriptionStatus.ACTIVE]
        )
        return active[0] if active else None

    def subscribe(
        self, user_id: str, tier: str, processor: str | None = None
    ) -> Subscription:
        """새 구독을 만든다.

        - 무료 티어는 즉시 active 가 되고 첫 주기 크레딧을 받는다.
        - 유료 티어는 pending 으로 생성되며, 결제 정산 시 activate 된다.
        """
        if not user_id:
            raise ValidationError("user_id is required")
        tier_config = self._tiers.get(tier)
        if tier_config is None:
            raise ValidationError(f"invalid subscription tier: {tier}")

        now = self._clock()
        subscription = Subscription(
            user_id=user_id,
            tier=tier_config.name,
            status=SubscriptionStatus.PENDING,
            monthly_price=tier_config.monthly_price,
            credits_per_month=tier_config.credits_per_month,
            start_date=now,
            payment_processor=processor,
            created_at=now,
            updated_at=now,
        )
        created = self._subscription_repo.insert(subscription)
        logger.info(
            "subscription created subscription_id=%s user_id=%s tier=%s",
            created.id,
            user_id,
            tier_config.name,
        )

        if tier_config.is_free:
            return self.activate(created.id or "", now)
        return created

    def activate(
        self, subscription_id: str, now: datetime | None = None
    ) -> Subscription:
        """pending 구독을 active 로 전환하고 첫 주기 크레딧을 지급한다.

        이미 active 라면 첫 주기 지급만 (멱등하게) 보장한다.
        """
        now = now or self._clock()
        subscription = self.get_subscription(subscription_id)

        if subscription.status == SubscriptionStatus.ACTIVE:
            self._grant_period(subscription, subscription.start_date)
            return subscription
        if subscription.status != SubscriptionStatus.PENDING:
            raise ValidationError(
                f"cannot activate subscription in status {subscription.status}"
            )

        # 유저당 active 구독은 하나
        for other in self._subscription_repo.list_by_user(
            subscription.user_id, [SubscriptionStatus.ACTIVE]
        ):
            if other.id != subscription.id:
                self.cancel(other.id or "")

        activated = self._subscription_repo.transition(
            subscription_id,
            [SubscriptionStatus.PENDING],
            SubscriptionStatus.ACTIVE,
            now,
            {"start_date": now, "next_billing_date": now + self._period},
        )
        if activated is None:
            # 동시 활성화: 먼저 성공한 쪽의 상태를 따른다.
            current = self.get_subscription(subscription_id)
            if current.status != SubscriptionStatus.ACTIVE:
                raise ValidationError(
                    f"cannot activate subscription in status {current.status}"
                )
            self._grant_period(current, current.start_date)
            return current

        logger.info(
            "subscription activated subscription_id=%s user_id=%s tier=%s",
            activated.id,
            activated.user_id,
            activated.tier,
        )
        self._grant_period(activated, activated.start_date)
        return activated

    def cancel(self, subscription_id: str) -> Subscription:
        """active 구독을 해지한다. active 가 아니면 아무것도 하지 않고 현재 상태를 반환한다."""
        subscription = self.get_subscription(subscription_id)
        if subscription.status != SubscriptionStatus.ACTIVE:
            return subscription

        now = self._clock()
        cancelled = self._subscription_repo.transition(
            subscription_id,
            [SubscriptionStatus.ACTIVE],
            SubscriptionStatus.CANCELLED,
            now,
            {"cancelled_at": now},
        )
        if cancelled is None:
            return self.get_subscription(subscription_id)

        logger.info(
            "subscription cancelled subscription_id=%s user_id=%s",
            subscription_id,
            cancelled.user_id,
        )
        return cancelled

    def expire(self, subscription_id: str) -> Subscription:
        subscription = self.get_subscription(subscription_id)
        if subscription.status != SubscriptionStatus.ACTIVE:
            return subscription

        expired = self._subscription_repo.transition(
            subscription_id,
            [SubscriptionStatus.ACTIVE],
            SubscriptionStatus.EXPIRED,
            self._clock(),
        )
        if expired is None:
            return self.get_subscription(subscription_id)
        logger.info("subscription expired subscription_id=%s", subscription_id)
        return expired

    def run_billing_cycle(self, now: datetime | None = None) -> BillingCycleReport:
        """next_billing_date 가 지난 active 구독에 주기 크레딧을 지급한다.

        밀린 주기는 하나씩 따라잡고, 구독 하나의 실패는 기록만 하고 다음 구독으로 넘어간다.
        """
        # tz 없는 now 는 UTC 로 간주한다 (저장된 청구일은 tz-aware).
        now = ensure_utc_datetime(now or self._clock())
        report = BillingCycleReport()

        due = self._subscription_repo.list_due(now, BILLING_BATCH_SIZE)
        for subscription in due:
            report.processed += 1
            try:
                self._bill(subscription, now, report)
            except Exception:  # noqa: BLE001
                report.failed += 1
                report.failed_subscription_ids.append(subscription.id or "")
                logger.exception(
                    "billing failed subscription_id=%s user_id=%s",
                    subscription.id,
                    subscription.user_id,
                )

        logger.info(
            "billing cycle finished processed=%d granted=%d skipped=%d failed=%d",
            report.processed,
            report.granted,
            report.skipped,
            report.failed,
        )
        return report

    def _bill(
        self, subscription: Subscription, now: datetime, report: BillingCycleReport
    ) -> None:
        billing_date = subscription.next_billing_date
        periods = 0
        while billing_date is not None and billing_date <= now:
            if periods >= self._settings.max_catch_up_periods:
                logger.warning(
                    "billing catch-up limit reached subscription_id=%s next_billing_date=%s",
                    subscription.id,
                    billing_date.isoformat(),
                )
                break

            tx, created = self._grant_period(subscription, billing_date)
            if created:
                report.granted += 1
                report.granted_credits += tx.amount if tx is not None else 0
            else:
                report.skipped += 1

            next_date = billing_date + self._period
            advanced = self._subscription_repo.advance_billing_date(
                subscription.id or "", billing_date, next_date, now
            )
            if not advanced:
                # 다른 실행이 먼저 전진시켰거나 구독 상태가 바뀜
                logger.info(
                    "billing date already advanced subscription_id=%s", subscription.id
                )
                break
            billing_date = next_date
            periods += 1

    def _grant_period(
        self, subscription: Subscription, period_start: datetime
    ) -> tuple[CreditTransaction | None, bool]:
        """한 주기의 크레딧을 지급한다. (트랜잭션, 이번 호출에서 새로 기록했는지)를 반환한다."""
        if subscription.credits_per_month <= 0:
            return None, False

        reward = SubscriptionCycleReward(
            subscription_id=subscription.id or "", period_start=period_start
        )
        key = reward.reward_key
        existing = self._credit_service.find_by_idempotency_key(key)
        if existing is not None:
            return existing, False

        tx = self._credit_service.add_credits(
            subscription.user_id,
            subscription.credits_per_month,
            type=TransactionType.EARNED,
            source=reward.credit_source,
            description=f"Monthly credits for {subscription.tier} subscription",
            related=RelatedIds(subscription_id=subscription.id),
            metadata={"period_start": period_start.isoformat()},
            idempotency_key=key,
        )
        return tx, True


def get_subscription_repository(
    db: Database = Depends(get_database),
) -> SubscriptionRepositoryInterface:
    """FastAPI DI용 SubscriptionRepository 팩토리."""

    return SubscriptionRepository(db)


def get_subscription_service(
    repo: SubscriptionRepositoryInterface = Depends(get_subscription_repository),
    credit_service: CreditService = Depends(get_credit_service),
    config: AppConfig = Depends(get_config),
) -> SubscriptionService:
    """FastAPI DI용 SubscriptionService 팩토리."""

    return SubscriptionService(
        repo,
        credit_service,
        tiers=config.tiers,
        settings=config.billing,
    )
