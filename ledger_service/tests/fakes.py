"""서비스 테스트용 가짜 저장소 구현.

Mongo 유니크 인덱스와 조건부 갱신이 보장하는 원자성을 lock 으로 흉내 낸다.
"""

from __future__ import annotations

import itertools
import threading
from collections.abc import Iterable
from datetime import datetime, timedelta, timezone
from typing import Any

from common.eventbus.core import Event

from ledger_service.app.errors import LedgerWriteConflict, ValidationError
from ledger_service.app.models.credit import CreditTransaction
from ledger_service.app.models.payment import Payment, PaymentStatus
from ledger_service.app.models.game import GameCreditConfig, GameEarningRule
from ledger_service.app.models.reward import (
    ClaimProgress,
    ClaimStatus,
    Offer,
    RewardClaim,
)
from ledger_service.app.models.subscription import Subscription, SubscriptionStatus
from ledger_service.app.repositories.interfaces import (
    CreditTransactionRepositoryInterface,
    GameCreditConfigRepositoryInterface,
    OfferRepositoryInterface,
    PaymentRepositoryInterface,
    RewardClaimRepositoryInterface,
    RewardCounterRepositoryInterface,
    SubscriptionRepositoryInterface,
)


class FixedClock:
    """테스트에서 시간을 직접 움직이기 위한 시계."""

    def __init__(self, now: datetime | None = None) -> None:
        self.now = now or datetime(2026, 1, 1, 9, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class FakeEventBus:
    def __init__(self) -> None:
        self.published: list[tuple[str, Event]] = []

    def publish(self, topic: str, event: Event) -> None:
        self.published.append((topic, event))

    def types(self) -> list[str]:
        return [evt.payload["type"] for _, evt in self.published]


class FakeCreditTransactionRepository(CreditTransactionRepositoryInterface):
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._ids = itertools.count(1)
        self.items: list[CreditTransaction] = []
        self.append_calls = 0

    def get_latest(self, user_id: str) -> CreditTransaction | None:
        with self._lock:
            own = [tx for tx in self.items if tx.user_id == user_id]
        return max(own, key=lambda tx: tx.sequence) if own else None

    def append(self, tx: CreditTransaction) -> CreditTransaction:
        with self._lock:
            self.append_calls += 1
            for existing in self.items:
                if existing.user_id == tx.user_id and existing.sequence == tx.sequence:
                    raise LedgerWriteConflict(f"sequence {tx.sequence} taken")
                if tx.idempotency_key and existing.idempotency_key == tx.idempotency_key:
                    raise LedgerWriteConflict(f"key {tx.idempotency_key} taken")
            stored = tx.model_copy(update={"id": f"tx-{next(self._ids)}"})
            self.items.append(stored)
            return stored

    def find_by_idempotency_key(self, key: str) -> CreditTransaction | None:
        with self._lock:
            return next((tx for tx in self.items if tx.idempotency_key == key), None)

    def sum_amounts(self, user_id: str) -> tuple[int, int]:
        with self._lock:
            own = [tx for tx in self.items if tx.user_id == user_id]
        return sum(tx.amount for tx in own), len(own)

    def list_by_user(
        self, user_id: str, page: int, page_size: int
    ) -> tuple[list[CreditTransaction], int]:
        with self._lock:
            own = sorted(
                (tx for tx in self.items if tx.user_id == user_id),
                key=lambda tx: tx.sequence,
                reverse=True,
            )
        start = (max(page, 1) - 1) * page_size
        return own[start : start + page_size], len(own)

    def for_user(self, user_id: str) -> list[CreditTransaction]:
        with self._lock:
            return sorted(
                (tx for tx in self.items if tx.user_id == user_id),
                key=lambda tx: tx.sequence,
            )


class FakePaymentRepository(PaymentRepositoryInterface):
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._ids = itertools.count(1)
        self.items: dict[str, Payment] = {}

    def insert(self, payment: Payment) -> Payment:
        with self._lock:
            for existing in self.items.values():
                if existing.processor != payment.processor:
                    continue
                if payment.external_payment_id and (
                    existing.external_payment_id == payment.external_payment_id
                ):
                    raise ValidationError("duplicate external payment id")
            stored = payment.model_copy(update={"id": f"pay-{next(self._ids)}"})
            self.items[stored.id or ""] = stored
            return stored

    def find_by_id(self, payment_id: str) -> Payment | None:
        with self._lock:
            return self.items.get(payment_id)

    def find_by_external_ids(
        self,
        processor: str,
        external_payment_id: str | None,
        external_order_id: str | None,
    ) -> list[Payment]:
        with self._lock:
            return [
                p
                for p in self.items.values()
                if p.processor == processor
                and (
                    (external_payment_id and p.external_payment_id == external_payment_id)
                    or (external_order_id and p.external_order_id == external_order_id)
                )
            ]

    def transition(
        self,
        payment_id: str,
        from_statuses: Iterable[PaymentStatus],
        to_status: PaymentStatus,
        now: datetime,
        fields: dict[str, Any] | None = None,
    ) -> Payment | None:
        with self._lock:
            current = self.items.get(payment_id)
            if current is None or current.status not in set(from_statuses):
                return None
            updated = current.model_copy(
                update={**(fields or {}), "status": to_status, "updated_at": now}
            )
            self.items[payment_id] = updated
            return updated

    def set_external_ids(
        self,
        payment_id: str,
        external_payment_id: str | None,
        external_order_id: str | None,
        now: datetime,
    ) -> Payment | None:
        with self._lock:
            current = self.items.get(payment_id)
            if current is None:
                return None
            update: dict[str, Any] = {"updated_at": now}
            if external_payment_id:
                update["external_payment_id"] = external_payment_id
            if external_order_id:
                update["external_order_id"] = external_order_id
            updated = current.model_copy(update=update)
            self.items[payment_id] = updated
            return updated

    def list_by_user(
        self, user_id: str, page: int, page_size: int
    ) -> tuple[list[Payment], int]:
        with self._lock:
            own = [p for p in self.items.values() if p.user_id == user_id]
        own.sort(key=lambda p: p.created_at, reverse=True)
        start = (max(page, 1) - 1) * page_size
        return own[start : start + page_size], len(own)


class FakeRewardClaimRepository(RewardClaimRepositoryInterface):
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._ids = itertools.count(1)
        self.items: dict[tuple[str, str], RewardClaim] = {}

    def insert_pending(self, claim: RewardClaim) -> RewardClaim | None:
        key = (claim.user_id, claim.reward_key)
        with self._lock:
            if key in self.items:
                return None
            stored = claim.model_copy(update={"id": f"claim-{next(self._ids)}"})
            self.items[key] = stored
            return stored

    def find(self, user_id: str, reward_key: str) -> RewardClaim | None:
        with self._lock:
            return self.items.get((user_id, reward_key))

    def _by_id(self, claim_id: str) -> tuple[tuple[str, str], RewardClaim] | None:
        for key, claim in self.items.items():
            if claim.id == claim_id:
                return key, claim
        return None

    def take_over_pending(
        self, claim_id: str, stale_before: datetime, now: datetime
    ) -> RewardClaim | None:
        with self._lock:
            found = self._by_id(claim_id)
            if found is None:
                return None
            key, claim = found
            if claim.status != ClaimStatus.PENDING or claim.updated_at >= stale_before:
                return None
            taken = claim.model_copy(update={"updated_at": now})
            self.items[key] = taken
            return taken

    def mark_claimed(
        self, claim_id: str, transaction_id: str | None, now: datetime
    ) -> RewardClaim | None:
        with self._lock:
            found = self._by_id(claim_id)
            if found is None:
                return None
            key, claim = found
            claimed = claim.model_copy(
                update={
                    "status": ClaimStatus.CLAIMED,
                    "transaction_id": transaction_id,
                    "claimed_at": now,
                    "updated_at": now,
                }
            )
            self.items[key] = claimed
            return claimed

    def find_by_id(self, claim_id: str) -> RewardClaim | None:
        with self._lock:
            found = self._by_id(claim_id)
        return found[1] if found else None

    def update_progress(
        self,
        claim_id: str,
        progress: ClaimProgress,
        completed_at: datetime | None,
        now: datetime,
    ) -> RewardClaim | None:
        with self._lock:
            found = self._by_id(claim_id)
            if found is None or found[1].status != ClaimStatus.PENDING:
                return None
            key, claim = found
            update: dict[str, Any] = {"progress": progress, "updated_at": now}
            if completed_at is not None:
                update["status"] = ClaimStatus.COMPLETED
                update["completed_at"] = completed_at
            updated = claim.model_copy(update=update)
            self.items[key] = updated
            return updated

    def list_by_prefix(
        self, user_id: str, reward_key_prefix: str, statuses: Iterable[ClaimStatus]
    ) -> list[RewardClaim]:
        wanted = set(statuses)
        with self._lock:
            return [
                c
                for c in self.items.values()
                if c.user_id == user_id
                and c.reward_key.startswith(reward_key_prefix)
                and c.status in wanted
            ]


class FakeOfferRepository(OfferRepositoryInterface):
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._ids = itertools.count(1)
        self.items: dict[str, Offer] = {}

    def insert(self, offer: Offer) -> Offer:
        with self._lock:
            stored = offer.model_copy(update={"id": f"offer-{next(self._ids)}"})
            self.items[stored.id or ""] = stored
            return stored

    def find_by_id(self, offer_id: str) -> Offer | None:
        with self._lock:
            return self.items.get(offer_id)

    def list_available(self, now: datetime) -> list[Offer]:
        with self._lock:
            return [o for o in self.items.values() if o.is_available(now)]

    def try_reserve_claim(self, offer_id: str, max_claims: int | None) -> bool:
        with self._lock:
            offer = self.items.get(offer_id)
            if offer is None:
                return False
            if max_claims is not None and offer.current_claims >= max_claims:
                return False
            self.items[offer_id] = offer.model_copy(
                update={"current_claims": offer.current_claims + 1}
            )
            return True

    def release_claim(self, offer_id: str) -> None:
        with self._lock:
            offer = self.items.get(offer_id)
            if offer is not None and offer.current_claims > 0:
                self.items[offer_id] = offer.model_copy(
                    update={"current_claims": offer.current_claims - 1}
                )


class FakeRewardCounterRepository(RewardCounterRepositoryInterface):
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.counts: dict[str, int] = {}

    def try_reserve(self, reward_key: str, max_claims: int) -> bool:
        with self._lock:
            count = self.counts.get(reward_key, 0)
            if count >= max_claims:
                return False
            self.counts[reward_key] = count + 1
            return True

    def release(self, reward_key: str) -> None:
        with self._lock:
            if self.counts.get(reward_key, 0) > 0:
                self.counts[reward_key] -= 1

    def get_count(self, reward_key: str) -> int:
        with self._lock:
            return self.counts.get(reward_key, 0)


class FakeGameCreditConfigRepository(GameCreditConfigRepositoryInterface):
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._ids = itertools.count(1)
        self.items: dict[str, GameCreditConfig] = {}

    def insert(self, config: GameCreditConfig) -> GameCreditConfig | None:
        with self._lock:
            if config.game_id in self.items:
                return None
            stored = config.model_copy(update={"id": f"game-config-{next(self._ids)}"})
            self.items[config.game_id] = stored
            return stored

    def find_by_game(self, game_id: str) -> GameCreditConfig | None:
        with self._lock:
            return self.items.get(game_id)

    def update(
        self,
        game_id: str,
        enabled: bool | None,
        earning_rules: list[GameEarningRule] | None,
        now: datetime,
    ) -> GameCreditConfig | None:
        with self._lock:
            current = self.items.get(game_id)
            if current is None:
                return None
            update: dict[str, Any] = {"updated_at": now}
            if enabled is not None:
                update["enabled"] = enabled
            if earning_rules is not None:
                update["earning_rules"] = list(earning_rules)
            updated = current.model_copy(update=update)
            self.items[game_id] = updated
            return updated

    def list_enabled(self) -> list[GameCreditConfig]:
        with self._lock:
            return [c for c in self.items.values() if c.enabled]

    def list_by_developer(self, developer_id: str) -> list[GameCreditConfig]:
        with self._lock:
            return [c for c in self.items.values() if c.developer_id == developer_id]


class FakeSubscriptionRepository(SubscriptionRepositoryInterface):
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._ids = itertools.count(1)
        self.items: dict[str, Subscription] = {}

    def insert(self, subscription: Subscription) -> Subscription:
        with self._lock:
            stored = subscription.model_copy(update={"id": f"sub-{next(self._ids)}"})
            self.items[stored.id or ""] = stored
            return stored

    def find_by_id(self, subscription_id: str) -> Subscription | None:
        with self._lock:
            return self.items.get(subscription_id)

    def list_by_user(
        self, user_id: str, statuses: Iterable[SubscriptionStatus]
    ) -> list[Subscription]:
        wanted = set(statuses)
        with self._lock:
            return [
                s
                for s in self.items.values()
                if s.user_id == user_id and s.status in wanted
            ]

    def transition(
        self,
        subscription_id: str,
        from_statuses: Iterable[SubscriptionStatus],
        to_status: SubscriptionStatus,
        now: datetime,
        fields: dict[str, Any] | None = None,
    ) -> Subscription | None:
        with self._lock:
            current = self.items.get(subscription_id)
            if current is None or current.status not in set(from_statuses):
                return None
            updated = current.model_copy(
                update={**(fields or {}), "status": to_status, "updated_at": now}
            )
            self.items[subscription_id] = updated
            return updated

    def list_due(self, now: datetime, limit: int) -> list[Subscription]:
        with self._lock:
            due = [
                s
                for s in self.items.values()
                if s.status == SubscriptionStatus.ACTIVE
                and s.next_billing_date is not None
                and s.next_billing_date <= now
            ]
        due.sort(key=lambda s: s.next_billing_date)  # type: ignore[arg-type, return-value]
        return due[:limit]

    def advance_billing_date(
        self,
        subscription_id: str,
        expected: datetime,
        next_billing_date: datetime,
        now: datetime,
    ) -> bool:
        with self._lock:
            current = self.items.get(subscription_id)
            if (
                current is None
                or current.status != SubscriptionStatus.ACTIVE
                or current.next_billing_date != expected
            ):
                return False
            self.items[subscription_id] = current.model_copy(
                update={"next_billing_date": next_billing_date, "updated_at": now}
            )
            return True
