from __future__ import annotations

from typing import Any

from common.mongo.types import (
    BaseDocument,
    MongoDateTime,
    OptionalMongoDateTime,
    build_document_data_from_domain,
    from_object_id,
)

from ...models.reward import RewardClaim


class RewardClaimDocument(BaseDocument):
    """MongoDB reward_claims 컬렉션 도큐먼트 모델.

    reward 는 kind 태그를 포함한 서브 도큐먼트로 저장하고,
    reward_title 은 조회 화면용 비정규화 값이고, progress 는 진행도형 리워드에만 있다.
    """

    user_id: str
    reward_key: str
    reward: dict[str, Any]
    reward_title: str = ""
    description: str = ""
    status: str
    credits_awarded: int
    progress: dict[str, Any] | None = None
    transaction_id: str | None = None
    completed_at: OptionalMongoDateTime = None
    claimed_at: OptionalMongoDateTime = None
    updated_at: MongoDateTime

    @classmethod
    def from_domain(cls, claim: RewardClaim) -> "RewardClaimDocument":
        data = build_document_data_from_domain(claim)
        return cls.model_validate(data)

    def to_domain(self) -> RewardClaim:
        return RewardClaim.model_validate(
            {
                "id": from_object_id(self.id),
                "user_id": self.user_id,
                "reward_key": self.reward_key,
                "reward": self.reward,
                "reward_title": self.reward_title,
                "description": self.description,
                "status": self.status,
                "credits_awarded": self.credits_awarded,
                "progress": self.progress,
                "transaction_id": self.transaction_id,
                "completed_at": self.completed_at,
                "claimed_at": self.claimed_at,
                "created_at": self.created_at,
                "updated_at": self.updated_at,
            }
        )
