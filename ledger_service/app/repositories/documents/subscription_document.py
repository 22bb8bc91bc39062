from __future__ import annotations

from common.mongo.types import (
    BaseDocument,
    MongoDateTime,
    OptionalMongoDateTime,
    build_document_data_from_domain,
    from_object_id,
)

from ...models.subscription import Subscription, SubscriptionStatus


class SubscriptionDocument(BaseDocument):
    """MongoDB subscriptions 컬렉션 도큐먼트 모델."""

    user_id: str
    tier: str
    status: str
    monthly_price: float = 0
    credits_per_month: int
    start_date: MongoDateTime
    next_billing_date: OptionalMongoDateTime = None
    cancelled_at: OptionalMongoDateTime = None
    payment_processor: str | None = None
    external_subscription_id: str | None = None
    updated_at: MongoDateTime

    @classmethod
    def from_domain(cls, subscription: Subscription) -> "SubscriptionDocument":
        data = build_document_data_from_domain(subscription)
        return cls.model_validate(data)

    def to_domain(self) -> Subscription:
        return Subscription(
            id=from_object_id(self.id),
            user_id=self.user_id,
            tier=self.tier,
            status=SubscriptionStatus(self.status),
            monthly_price=self.monthly_price,
            credits_per_month=self.credits_per_month,
            start_date=self.start_date,
            next_billing_date=self.next_billing_date,
            cancelled_at=self.cancelled_at,
            payment_processor=self.payment_processor,
            external_subscription_id=self.external_subscription_id,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )
