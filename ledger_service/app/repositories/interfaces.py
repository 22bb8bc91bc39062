from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime
from typing import Any, Protocol

from ..models.credit import CreditTransaction
from ..models.payment import Payment, PaymentStatus
from ..models.game import GameCreditConfig, GameEarningRule
from ..models.reward import ClaimProgress, ClaimStatus, Offer, RewardClaim
from ..models.subscription import Subscription, SubscriptionStatus


class CreditTransactionRepositoryInterface(Protocol):
    """원장(credit_transactions) 저장소가 따라야 할 계약.

    - append 는 (user_id, sequence) 또는 idempotency_key 유니크 제약에 걸리면
      LedgerWriteConflict 를 발생시키고 아무것도 쓰지 않는다.
    - 트랜잭션은 수정/삭제 연산을 제공하지 않는다.
    """

    def get_latest(
        self, user_id: str
    ) -> CreditTransaction | None:  # pragma: no cover - Protocol
        ...

    def append(
        self, tx: CreditTransaction
    ) -> CreditTransaction:  # pragma: no cover - Protocol
        ...

    def find_by_idempotency_key(
        self, key: str
    ) -> CreditTransaction | None:  # pragma: no cover - Protocol
        ...

    def sum_amounts(
        self, user_id: str
    ) -> tuple[int, int]:  # pragma: no cover - Protocol
        """(amount 합계, 트랜잭션 개수)를 반환한다."""
        ...

    def list_by_user(
        self, user_id: str, page: int, page_size: int
    ) -> tuple[list[CreditTransaction], int]:  # pragma: no cover - Protocol
        ...


class PaymentRepositoryInterface(Protocol):
    """payments 저장소 계약.

    상태 변경은 transition 의 조건부 갱신으로만 일어나며,
    현재 상태가 from_statuses 에 없으면 None 을 반환한다.
    """

    def insert(self, payment: Payment) -> Payment:  # pragma: no cover - Protocol
        ...

    def find_by_id(
        self, payment_id: str
    ) -> Payment | None:  # pragma: no cover - Protocol
        ...

    def find_by_external_ids(
        self,
        processor: str,
        external_payment_id: str | None,
        external_order_id: str | None,
    ) -> list[Payment]:  # pragma: no cover - Protocol
        ...

    def transition(
        self,
        payment_id: str,
        from_statuses: Iterable[PaymentStatus],
        to_status: PaymentStatus,
        now: datetime,
        fields: dict[str, Any] | None = None,
    ) -> Payment | None:  # pragma: no cover - Protocol
        ...

    def set_external_ids(
        self,
        payment_id: str,
        external_payment_id: str | None,
        external_order_id: str | None,
        now: datetime,
    ) -> Payment | None:  # pragma: no cover - Protocol
        ...

    def list_by_user(
        self, user_id: str, page: int, page_size: int
    ) -> tuple[list[Payment], int]:  # pragma: no cover - Protocol
        ...


class RewardClaimRepositoryInterface(Protocol):
    """reward_claims 저장소 계약. (user_id, reward_key) 유니크."""

    def insert_pending(
        self, claim: RewardClaim
    ) -> RewardClaim | None:  # pragma: no cover - Protocol
        """유니크 제약에 걸리면 None 을 반환한다."""
        ...

    def find(
        self, user_id: str, reward_key: str
    ) -> RewardClaim | None:  # pragma: no cover - Protocol
        ...

    def take_over_pending(
        self, claim_id: str, stale_before: datetime, now: datetime
    ) -> RewardClaim | None:  # pragma: no cover - Protocol
        """updated_at 이 stale_before 이전인 pending 클레임을 원자적으로 선점한다."""
        ...

    def mark_claimed(
        self, claim_id: str, transaction_id: str | None, now: datetime
    ) -> RewardClaim | None:  # pragma: no cover - Protocol
        ...

    def find_by_id(
        self, claim_id: str
    ) -> RewardClaim | None:  # pragma: no cover - Protocol
        ...

    def update_progress(
        self,
        claim_id: str,
        progress: ClaimProgress,
        completed_at: datetime | None,
        now: datetime,
    ) -> RewardClaim | None:  # pragma: no cover - Protocol
        """pending 클레임의 진행도를 갱신한다. completed_at 이 있으면 completed 로 전환한다."""
        ...

    def list_by_prefix(
        self, user_id: str, reward_key_prefix: str, statuses: Iterable[ClaimStatus]
    ) -> list[RewardClaim]:  # pragma: no cover - Protocol
        ...


class OfferRepositoryInterface(Protocol):
    def insert(self, offer: Offer) -> Offer:  # pragma: no cover - Protocol
        ...

    def find_by_id(
        self, offer_id: str
    ) -> Offer | None:  # pragma: no cover - Protocol
        ...

    def list_available(
        self, now: datetime
    ) -> list[Offer]:  # pragma: no cover - Protocol
        ...

    def try_reserve_claim(
        self, offer_id: str, max_claims: int | None
    ) -> bool:  # pragma: no cover - Protocol
        """current_claims < max_claims 일 때만 1 증가시킨다 (원자적)."""
        ...

    def release_claim(self, offer_id: str) -> None:  # pragma: no cover - Protocol
        ...


class RewardCounterRepositoryInterface(Protocol):
    """오퍼가 아닌 리워드의 전역 수령 상한 카운터."""

    def try_reserve(
        self, reward_key: str, max_claims: int
    ) -> bool:  # pragma: no cover - Protocol
        ...

    def release(self, reward_key: str) -> None:  # pragma: no cover - Protocol
        ...

    def get_count(self, reward_key: str) -> int:  # pragma: no cover - Protocol
        ...


class GameCreditConfigRepositoryInterface(Protocol):
    """game_credit_configs 저장소 계약. game_id 유니크."""

    def insert(
        self, config: GameCreditConfig
    ) -> GameCreditConfig | None:  # pragma: no cover - Protocol
        """같은 game_id 설정이 이미 있으면 None 을 반환한다."""
        ...

    def find_by_game(
        self, game_id: str
    ) -> GameCreditConfig | None:  # pragma: no cover - Protocol
        ...

    def update(
        self,
        game_id: str,
        enabled: bool | None,
        earning_rules: list[GameEarningRule] | None,
        now: datetime,
    ) -> GameCreditConfig | None:  # pragma: no cover - Protocol
        ...

    def list_enabled(self) -> list[GameCreditConfig]:  # pragma: no cover - Protocol
        ...

    def list_by_developer(
        self, developer_id: str
    ) -> list[GameCreditConfig]:  # pragma: no cover - Protocol
        ...


class SubscriptionRepositoryInterface(Protocol):
    def insert(
        self, subscription: Subscription
    ) -> Subscription:  # pragma: no cover - Protocol
        ...

    def find_by_id(
        self, subscription_id: str
    ) -> Subscription | None:  # pragma: no cover - Protocol
        ...

    def list_by_user(
        self, user_id: str, statuses: Iterable[SubscriptionStatus]
    ) -> list[Subscription]:  # pragma: no cover - Protocol
        ...

    def transition(
        self,
        subscription_id: str,
        from_statuses: Iterable[SubscriptionStatus],
        to_status: SubscriptionStatus,
        now: datetime,
        fields: dict[str, Any] | None = None,
    ) -> Subscription | None:  # pragma: no cover - Protocol
        ...

    def list_due(
        self, now: datetime, limit: int
    ) -> list[Subscription]:  # pragma: no cover - Protocol
        """active 이면서 next_billing_date <= now 인 구독."""
        ...

    def advance_billing_date(
        self,
        subscription_id: str,
        expected: datetime,
        next_billing_date: datetime,
        now: datetime,
    ) -> bool:  # pragma: no cover - Protocol
        """next_billing_date 가 expected 와 같을 때만 갱신한다 (compare-and-set)."""
        ...


class UserDirectoryInterface(Protocol):
    """세션/이메일 식별자를 user_id 로 해석하는 외부 협력자."""

    def resolve_user_id(
        self, session_or_email: str
    ) -> str:  # pragma: no cover - Protocol
        ...
