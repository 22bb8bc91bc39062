"""원장 트랜잭션 MongoDB 도큐먼트.

트랜잭션 하나가 도큐먼트 하나이므로, 쓰기는 전부 반영되거나 전혀 반영되지 않는다.
"""

from __future__ import annotations

from typing import Any

from common.mongo.types import (
    BaseDocument,
    build_document_data_from_domain,
    from_object_id,
)

from ...models.credit import CreditSource, CreditTransaction, TransactionType


class CreditTransactionDocument(BaseDocument):
    """MongoDB credit_transactions 컬렉션 도큐먼트 모델."""

    user_id: str
    sequence: int
    type: str
    amount: int
    balance_after: int
    source: str
    description: str
    related_payment_id: str | None = None
    related_subscription_id: str | None = None
    related_project_id: str | None = None
    idempotency_key: str | None = None
    metadata: dict[str, Any] = {}

    @classmethod
    def from_domain(cls, tx: CreditTransaction) -> "CreditTransactionDocument":
        data = build_document_data_from_domain(tx)
        return cls.model_validate(data)

    def to_domain(self) -> CreditTransaction:
        return CreditTransaction(
            id=from_object_id(self.id),
            user_id=self.user_id,
            sequence=self.sequence,
            type=TransactionType(self.type),
            amount=self.amount,
            balance_after=self.balance_after,
            source=CreditSource(self.source),
            description=self.description,
            related_payment_id=self.related_payment_id,
            related_subscription_id=self.related_subscription_id,
            related_project_id=self.related_project_id,
            idempotency_key=self.idempotency_key,
            metadata=self.metadata or {},
            created_at=self.created_at,
        )
