from __future__ import annotations

from typing import Any

from common.mongo.types import (
    BaseDocument,
    MongoDateTime,
    OptionalMongoDateTime,
    build_document_data_from_domain,
    from_object_id,
)

from ...models.reward import Offer, OfferStatus


class OfferDocument(BaseDocument):
    """MongoDB offers 컬렉션 도큐먼트 모델."""

    title: str
    description: str = ""
    type: str = "other"
    url: str = ""
    credits_reward: int
    status: str
    max_claims: int | None = None
    current_claims: int = 0
    metadata: dict[str, Any] = {}
    expires_at: OptionalMongoDateTime = None
    updated_at: MongoDateTime

    @classmethod
    def from_domain(cls, offer: Offer) -> "OfferDocument":
        data = build_document_data_from_domain(offer)
        return cls.model_validate(data)

    def to_domain(self) -> Offer:
        return Offer(
            id=from_object_id(self.id),
            title=self.title,
            description=self.description,
            type=self.type,
            url=self.url,
            credits_reward=self.credits_reward,
            status=OfferStatus(self.status),
            max_claims=self.max_claims,
            current_claims=self.current_claims,
            metadata=self.metadata or {},
            expires_at=self.expires_at,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )
