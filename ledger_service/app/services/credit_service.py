"""크레딧 서비스 (append-only 원장 모델).

잔액 변경은 모두 이 서비스를 거쳐 원장에 트랜잭션으로 기록된다.
동시 쓰기는 (user_id, sequence) 유니크 인덱스를 이용한 낙관적 append 로 직렬화한다.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Callable
from datetime import datetime
from decimal import Decimal
from typing import Any

from fastapi import Depends
from pymongo.database import Database

from common.mongo.client import get_database
from common.mongo.types import utcnow

from ..config import AppConfig, CreditPackage, LedgerSettings, get_config
from ..errors import (
    ConcurrentUpdateError,
    InsufficientBalanceError,
    LedgerWriteConflict,
    ValidationError,
)
from ..models.credit import (
    AdjustAction,
    BalanceCheck,
    CreditSource,
    CreditTransaction,
    RelatedIds,
    TransactionType,
)
from ..repositories.credit_repository import CreditTransactionRepository
from ..repositories.interfaces import CreditTransactionRepositoryInterface
from .notifier import LedgerEventPublisher, get_ledger_event_publisher


logger = logging.getLogger(__name__)


BASE_TOKEN_RATE = Decimal("0.01")
PROVIDER_TOKEN_RATES: dict[str, Decimal] = {
    "ollama": Decimal("0.005"),
    "local": Decimal("0.005"),
    "openai": Decimal("0.01"),
    "anthropic": Decimal("0.015"),
    "google": Decimal("0.008"),
}

CREDIT_TYPES = frozenset(
    {
        TransactionType.EARNED,
        TransactionType.PURCHASED,
        TransactionType.REFUNDED,
        TransactionType.BONUS,
    }
)


class CreditService:
    """원장 읽기/쓰기 비즈니스 로직.

    - 잔액 = 가장 최근 트랜잭션의 balance_after (없으면 0)
    - 차감 후 잔액이 음수가 되는 트랜잭션은 기록하지 않는다.
    - idempotency_key 가 같은 적립은 한 번만 기록되고, 이후 호출은 기존 트랜잭션을 돌려준다.
    """

    def __init__(
        self,
        transaction_repo: CreditTransactionRepositoryInterface,
        *,
        publisher: LedgerEventPublisher | None = None,
        settings: LedgerSettings | None = None,
        packages: list[CreditPackage] | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._transaction_repo = transaction_repo
        self._publisher = publisher or LedgerEventPublisher(None)
        self._settings = settings or LedgerSettings()
        self._packages = list(packages or [])
        self._clock = clock

    # 조회 ---------------------------------------------------------------
    def get_balance(self, user_id: str) -> int:
        _require_user_id(user_id)
        latest = self._transaction_repo.get_latest(user_id)
        if latest is None:
            return 0
        return latest.balance_after

    def calculate_balance(self, user_id: str) -> int:
        """원장 전체 amount 합계 (검증용)."""
        _require_user_id(user_id)
        total, _ = self._transaction_repo.sum_amounts(user_id)
        return total

    def verify_balance(self, user_id: str) -> BalanceCheck:
        _require_user_id(user_id)
        balance = self.get_balance(user_id)
        total, count = self._transaction_repo.sum_amounts(user_id)
        check = BalanceCheck(
            user_id=user_id,
            balance=balance,
            calculated_balance=total,
            transaction_count=count,
        )
        if not check.consistent:
            logger.error(
                "ledger balance mismatch user_id=%s balance=%d calculated=%d",
                user_id,
                balance,
                total,
            )
        return check

    def get_history(
        self, user_id: str, page: int = 1, page_size: int = 20
    ) -> tuple[list[CreditTransaction], int]:
        """원장 이력 조회 (최신순)."""
        _require_user_id(user_id)
        return self._transaction_repo.list_by_user(user_id, page, page_size)

    def find_by_idempotency_key(self, key: str) -> CreditTransaction | None:
        return self._transaction_repo.find_by_idempotency_key(key)

    # 쓰기 ---------------------------------------------------------------
    def add_credits(
        self,
        user_id: str,
        amount: int,
        *,
        type: TransactionType = TransactionType.EARNED,
        source: CreditSource,
        description: str,
        related: RelatedIds | None = None,
        metadata: dict[str, Any] | None = None,
        idempotency_key: str | None = None,
    ) -> CreditTransaction:
        """잔액을 amount 만큼 늘리는 트랜잭션을 기록한다.

        idempotency_key 로 이미 기록된 트랜잭션이 있으면 새로 쓰지 않고 그것을 반환한다.
        """
        _require_user_id(user_id)
        if amount <= 0:
            raise ValidationError(f"credit amount must be positive, got {amount}")
        if type not in CREDIT_TYPES:
            raise ValidationError(f"transaction type {type} cannot add credits")

        if idempotency_key:
            existing = self._find_existing(user_id, idempotency_key)
            if existing is not None:
                logger.info(
                    "credit already recorded user_id=%s idempotency_key=%s transaction_id=%s",
                    user_id,
                    idempotency_key,
                    existing.id,
                )
                return existing

        tx, created = self._append(
            user_id=user_id,
            delta=amount,
            type=type,
            source=source,
            description=description,
            related=related,
            metadata=metadata,
            idempotency_key=idempotency_key,
        )
        if created:
            logger.info(
                "credits added user_id=%s amount=%d source=%s balance_after=%d",
                user_id,
                amount,
                source,
                tx.balance_after,
            )
            self._publisher.credit_granted(tx)
        return tx

    def use_credits(
        self,
        user_id: str,
        amount: int,
        *,
        source: CreditSource = CreditSource.APP_DEVELOPMENT,
        description: str,
        related: RelatedIds | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> CreditTransaction:
        """잔액을 amount 만큼 차감한다. 잔액이 부족하면 InsufficientBalanceError."""
        _require_user_id(user_id)
        if amount <= 0:
            raise ValidationError(f"debit amount must be positive, got {amount}")

        tx, _ = self._append(
            user_id=user_id,
            delta=-amount,
            type=TransactionType.USED,
            source=source,
            description=description,
            related=related,
            metadata=metadata,
            idempotency_key=None,
        )
        logger.info(
            "credits used user_id=%s amount=%d source=%s balance_after=%d",
            user_id,
            amount,
            source,
            tx.balance_after,
        )
        self._publisher.credit_used(tx)
        return tx

    def refund_credits(
        self,
        user_id: str,
        amount: int,
        *,
        description: str,
        related: RelatedIds | None = None,
        metadata: dict[str, Any] | None = None,
        idempotency_key: str | None = None,
    ) -> CreditTransaction:
        """보상 트랜잭션으로 크레딧을 돌려준다. 기존 트랜잭션은 수정하지 않는다."""
        return self.add_credits(
            user_id,
            amount,
            type=TransactionType.REFUNDED,
            source=CreditSource.REFUND,
            description=description,
            related=related,
            metadata=metadata,
            idempotency_key=idempotency_key,
        )

    def adjust_balance(
        self,
        user_id: str,
        *,
        action: AdjustAction,
        amount: int,
        admin_id: str,
        description: str | None = None,
    ) -> tuple[int, CreditTransaction | None]:
        """관리자 잔액 조정. (조정 전 잔액, 기록된 트랜잭션)을 반환한다.

        set 은 현재 잔액과의 차이만큼 적립 또는 차감하며, 차이가 0이면 아무것도 쓰지 않는다.
        """
        _require_user_id(user_id)
        if amount <= 0 and action != AdjustAction.SET:
            raise ValidationError(f"adjust amount must be positive, got {amount}")
        if amount < 0:
            raise ValidationError(f"target balance must not be negative, got {amount}")

        previous = self.get_balance(user_id)
        metadata: dict[str, Any] = {"admin_id": admin_id, "action": f"admin_{action}"}

        if action == AdjustAction.ADD:
            tx = self.add_credits(
                user_id,
                amount,
                type=TransactionType.EARNED,
                source=CreditSource.PROMOTION,
                description=description or f"Admin added {amount} credits",
                metadata=metadata,
            )
            return previous, tx

        if action == AdjustAction.REMOVE:
            tx = self.use_credits(
                user_id,
                amount,
                source=CreditSource.SERVICE,
                description=description or f"Admin removed {amount} credits",
                metadata=metadata,
            )
            return previous, tx

        difference = amount - previous
        metadata["previous_balance"] = previous
        if difference > 0:
            tx = self.add_credits(
                user_id,
                difference,
                type=TransactionType.EARNED,
                source=CreditSource.PROMOTION,
                description=description or f"Admin set balance to {amount} credits",
                metadata=metadata,
            )
            return previous, tx
        if difference < 0:
            tx = self.use_credits(
                user_id,
                -difference,
                source=CreditSource.SERVICE,
                description=description or f"Admin adjusted balance to {amount} credits",
                metadata=metadata,
            )
            return previous, tx
        return previous, None

    # 가격 -----------------------------------------------------------------
    def credit_packages(self) -> list[CreditPackage]:
        return list(self._packages)

    def find_package(self, credits: int) -> CreditPackage | None:
        for package in self._packages:
            if package.credits == credits:
                return package
        return None

    @staticmethod
    def tokens_to_credits(tokens: int, provider: str | None = None) -> int:
        """LLM 토큰 사용량을 크레딧으로 환산한다 (올림)."""
        if tokens < 0:
            raise ValidationError(f"tokens must not be negative, got {tokens}")
        rate = BASE_TOKEN_RATE
        if provider:
            rate = PROVIDER_TOKEN_RATES.get(provider.lower(), BASE_TOKEN_RATE)
        return math.ceil(Decimal(tokens) * rate)

    # 내부 -----------------------------------------------------------------
    def _find_existing(self, user_id: str, idempotency_key: str) -> CreditTransaction | None:
        existing = self._transaction_repo.find_by_idempotency_key(idempotency_key)
        if existing is not None and existing.user_id != user_id:
            raise ValidationError(
                f"idempotency key {idempotency_key} already used by another user"
            )
        return existing

    def _append(
        self,
        *,
        user_id: str,
        delta: int,
        type: TransactionType,
        source: CreditSource,
        description: str,
        related: RelatedIds | None,
        metadata: dict[str, Any] | None,
        idempotency_key: str | None,
    ) -> tuple[CreditTransaction, bool]:
        """최신 트랜잭션을 읽고 다음 sequence 로 append 한다. (트랜잭션, 신규 여부)를 반환한다.

        다른 작성자가 같은 sequence 를 먼저 커밋하면 새로 읽어서 다시 시도한다.
        """
        related = related or RelatedIds()
        attempts = max(1, self._settings.max_write_attempts)

        for attempt in range(1, attempts + 1):
            latest = self._transaction_repo.get_latest(user_id)
            prior = latest.balance_after if latest is not None else 0
            sequence = latest.sequence + 1 if latest is not None else 1

            balance_after = prior + delta
            if balance_after < 0:
                raise InsufficientBalanceError(user_id, -delta, prior)

            tx = CreditTransaction(
                user_id=user_id,
                sequence=sequence,
                type=type,
                amount=delta,
                balance_after=balance_after,
                source=source,
                description=description,
                related_payment_id=related.payment_id,
                related_subscription_id=related.subscription_id,
                related_project_id=related.project_id,
                idempotency_key=idempotency_key,
                metadata=dict(metadata or {}),
                created_at=self._clock(),
            )

            try:
                return self._transaction_repo.append(tx), True
            except LedgerWriteConflict:
                if idempotency_key:
                    existing = self._find_existing(user_id, idempotency_key)
                    if existing is not None:
                        return existing, False
                logger.debug(
                    "ledger append conflict user_id=%s sequence=%d attempt=%d",
                    user_id,
                    sequence,
                    attempt,
                )

        logger.warning(
            "ledger append gave up user_id=%s attempts=%d", user_id, attempts
        )
        raise ConcurrentUpdateError(
            f"too many concurrent ledger writes for user {user_id}"
        )


def _require_user_id(user_id: str) -> None:
    if not user_id or not str(user_id).strip():
        raise ValidationError("user_id is required")


def get_credit_transaction_repository(
    db: Database = Depends(get_database),
) -> CreditTransactionRepositoryInterface:
    """FastAPI DI용 CreditTransactionRepository 팩토리."""

    return CreditTransactionRepository(db)


def get_credit_service(
    repo: CreditTransactionRepositoryInterface = Depends(
        get_credit_transaction_repository
    ),
    publisher: LedgerEventPublisher = Depends(get_ledger_event_publisher),
    config: AppConfig = Depends(get_config),
) -> CreditService:
    """FastAPI DI용 CreditService 팩토리."""

    return CreditService(
        repo,
        publisher=publisher,
        settings=config.ledger,
        packages=config.credit_packages,
    )
