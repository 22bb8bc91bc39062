from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from common.types.datetime import UtcDateTime

from ...config import CreditPackage
from ...models.credit import (
    AdjustAction,
    BalanceCheck,
    CreditSource,
    CreditTransaction,
    TransactionType,
)


class CreditTransactionResponse(BaseModel):
    """원장 트랜잭션 응답."""

    id: str | None
    sequence: int
    type: TransactionType
    amount: int
    balance_after: int
    source: CreditSource
    description: str
    related_payment_id: str | None = None
    related_subscription_id: str | None = None
    related_project_id: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: UtcDateTime

    @classmethod
    def from_domain(cls, tx: CreditTransaction) -> "CreditTransactionResponse":
        return cls(
            id=tx.id,
            sequence=tx.sequence,
            type=tx.type,
            amount=tx.amount,
            balance_after=tx.balance_after,
            source=tx.source,
            description=tx.description,
            related_payment_id=tx.related_payment_id,
            related_subscription_id=tx.related_subscription_id,
            related_project_id=tx.related_project_id,
            metadata=tx.metadata,
            created_at=tx.created_at,
        )


class BalanceResponse(BaseModel):
    user_id: str
    balance: int


class AddCreditsRequest(BaseModel):
    """크레딧 적립 요청 (내부 서비스 간 호출)."""

    amount: int
    type: TransactionType = TransactionType.EARNED
    source: CreditSource
    description: str
    payment_id: str | None = None
    subscription_id: str | None = None
    project_id: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    idempotency_key: str | None = None


class UseCreditsRequest(BaseModel):
    """크레딧 차감 요청. 잔액 부족 시 402."""

    amount: int
    source: CreditSource = CreditSource.APP_DEVELOPMENT
    description: str
    project_id: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class FreeCreditsRequest(BaseModel):
    amount: int | None = None
    description: str | None = None


class AdjustBalanceRequest(BaseModel):
    """관리자 잔액 조정 요청."""

    action: AdjustAction
    amount: int
    admin_id: str
    description: str | None = None


class AdjustBalanceResponse(BaseModel):
    user_id: str
    action: AdjustAction
    amount: int
    previous_balance: int
    new_balance: int
    transaction: CreditTransactionResponse | None = None


class BalanceCheckResponse(BaseModel):
    user_id: str
    balance: int
    calculated_balance: int
    transaction_count: int
    consistent: bool

    @classmethod
    def from_domain(cls, check: BalanceCheck) -> "BalanceCheckResponse":
        return cls(
            user_id=check.user_id,
            balance=check.balance,
            calculated_balance=check.calculated_balance,
            transaction_count=check.transaction_count,
            consistent=check.consistent,
        )


class CreditPackageResponse(BaseModel):
    credits: int
    price: float
    bonus: int
    total_credits: int

    @classmethod
    def from_config(cls, package: CreditPackage) -> "CreditPackageResponse":
        return cls(
            credits=package.credits,
            price=package.price,
            bonus=package.bonus,
            total_credits=package.total_credits,
        )


class PricingResponse(BaseModel):
    packages: list[CreditPackageResponse]
    estimated_credits: int | None = None  # tokens 쿼리가 있을 때만
