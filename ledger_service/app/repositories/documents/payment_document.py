from __future__ import annotations

from typing import Any

from common.mongo.types import (
    BaseDocument,
    MongoDateTime,
    OptionalMongoDateTime,
    build_document_data_from_domain,
    from_object_id,
)

from ...models.payment import Payment, PaymentStatus, PaymentType


class PaymentDocument(BaseDocument):
    """MongoDB payments 컬렉션 도큐먼트 모델."""

    user_id: str
    type: str
    amount: float
    currency: str
    status: str
    processor: str
    external_payment_id: str | None = None
    external_order_id: str | None = None
    credits_purchased: int | None = None
    subscription_id: str | None = None
    project_id: str | None = None
    description: str = ""
    metadata: dict[str, Any] = {}
    processed_at: OptionalMongoDateTime = None
    refunded_at: OptionalMongoDateTime = None
    updated_at: MongoDateTime

    @classmethod
    def from_domain(cls, payment: Payment) -> "PaymentDocument":
        data = build_document_data_from_domain(payment)
        return cls.model_validate(data)

    def to_domain(self) -> Payment:
        return Payment(
            id=from_object_id(self.id),
            user_id=self.user_id,
            type=PaymentType(self.type),
            amount=self.amount,
            currency=self.currency,
            status=PaymentStatus(self.status),
            processor=self.processor,
            external_payment_id=self.external_payment_id,
            external_order_id=self.external_order_id,
            credits_purchased=self.credits_purchased,
            subscription_id=self.subscription_id,
            project_id=self.project_id,
            description=self.description,
            metadata=self.metadata or {},
            processed_at=self.processed_at,
            refunded_at=self.refunded_at,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )
