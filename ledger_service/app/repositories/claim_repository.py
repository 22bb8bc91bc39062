"""리워드 클레임 / 오퍼 / 전역 카운터 저장소.

- reward_claims: (user_id, reward_key) 유니크 인덱스가 1회 수령을 보장한다.
- offers / reward_counters: current_claims < max_claims 조건부 $inc 로 상한을 넘지 않는다.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from datetime import datetime
from typing import Any

from bson.errors import InvalidId
from pymongo import DESCENDING, ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from common.mongo.retry import retry_read
from common.mongo.types import to_object_id, utcnow

from .documents.claim_document import RewardClaimDocument
from .documents.offer_document import OfferDocument
from .indexes import OFFERS, REWARD_CLAIMS, REWARD_COUNTERS
from .interfaces import (
    OfferRepositoryInterface,
    RewardClaimRepositoryInterface,
    RewardCounterRepositoryInterface,
)
from ..models.reward import ClaimProgress, ClaimStatus, Offer, OfferStatus, RewardClaim


class RewardClaimRepository(RewardClaimRepositoryInterface):
    """reward_claims 컬렉션에 대한 MongoDB 접근 레이어."""

    def __init__(self, database: Database) -> None:
        self._db = database
        self._col = database[REWARD_CLAIMS]

    @staticmethod
    def _from_document(doc: dict) -> RewardClaim:
        return RewardClaimDocument.model_validate(doc).to_domain()

    def insert_pending(self, claim: RewardClaim) -> RewardClaim | None:
        document = RewardClaimDocument.from_domain(claim)
        payload = document.to_mongo_record()
        try:
            result = self._col.insert_one(payload)
        except DuplicateKeyError:
            # 같은 유저가 같은 reward_key 를 이미 가지고 있음
            return None
        return claim.model_copy(update={"id": str(result.inserted_id)})

    def find(self, user_id: str, reward_key: str) -> RewardClaim | None:
        doc = retry_read(
            lambda: self._col.find_one({"user_id": user_id, "reward_key": reward_key}),
            description="find reward claim",
        )
        if not doc:
            return None
        return self._from_document(doc)

    def take_over_pending(
        self, claim_id: str, stale_before: datetime, now: datetime
    ) -> RewardClaim | None:
        doc = self._col.find_one_and_update(
            {
                "_id": to_object_id(claim_id),
                "status": str(ClaimStatus.PENDING),
                "updated_at": {"$lt": stale_before},
            },
            {"$set": {"updated_at": now}},
            return_document=ReturnDocument.AFTER,
        )
        if not doc:
            return None
        return self._from_document(doc)

    def mark_claimed(
        self, claim_id: str, transaction_id: str | None, now: datetime
    ) -> RewardClaim | None:
        doc = self._col.find_one_and_update(
            {"_id": to_object_id(claim_id)},
            {
                "$set": {
                    "status": str(ClaimStatus.CLAIMED),
                    "transaction_id": transaction_id,
                    "claimed_at": now,
                    "updated_at": now,
                }
            },
            return_document=ReturnDocument.AFTER,
        )
        if not doc:
            return None
        return self._from_document(doc)

    def find_by_id(self, claim_id: str) -> RewardClaim | None:
        try:
            oid = to_object_id(claim_id)
        except (InvalidId, TypeError):
            return None
        doc = retry_read(
            lambda: self._col.find_one({"_id": oid}), description="find reward claim"
        )
        if not doc:
            return None
        return self._from_document(doc)

    def update_progress(
        self,
        claim_id: str,
        progress: ClaimProgress,
        completed_at: datetime | None,
        now: datetime,
    ) -> RewardClaim | None:
        fields: dict[str, Any] = {"progress": progress.model_dump(), "updated_at": now}
        if completed_at is not None:
            fields["status"] = str(ClaimStatus.COMPLETED)
            fields["completed_at"] = completed_at
        doc = self._col.find_one_and_update(
            {"_id": to_object_id(claim_id), "status": str(ClaimStatus.PENDING)},
            {"$set": fields},
            return_document=ReturnDocument.AFTER,
        )
        if not doc:
            return None
        return self._from_document(doc)

    def list_by_prefix(
        self, user_id: str, reward_key_prefix: str, statuses: Iterable[ClaimStatus]
    ) -> list[RewardClaim]:
        query = {
            "user_id": user_id,
            "reward_key": {"$regex": f"^{re.escape(reward_key_prefix)}"},
            "status": {"$in": [str(s) for s in statuses]},
        }
        docs = retry_read(
            lambda: list(self._col.find(query, sort=[("created_at", DESCENDING)])),
            description="list reward claims",
        )
        return [self._from_document(doc) for doc in docs]


class OfferRepository(OfferRepositoryInterface):
    """offers 컬렉션에 대한 MongoDB 접근 레이어."""

    def __init__(self, database: Database) -> None:
        self._db = database
        self._col = database[OFFERS]

    @staticmethod
    def _from_document(doc: dict) -> Offer:
        return OfferDocument.model_validate(doc).to_domain()

    def insert(self, offer: Offer) -> Offer:
        document = OfferDocument.from_domain(offer)
        payload = document.to_mongo_record()
        result = self._col.insert_one(payload)
        return offer.model_copy(update={"id": str(result.inserted_id)})

    def find_by_id(self, offer_id: str) -> Offer | None:
        try:
            oid = to_object_id(offer_id)
        except (InvalidId, TypeError):
            return None
        doc = retry_read(lambda: self._col.find_one({"_id": oid}), description="find offer")
        if not doc:
            return None
        return self._from_document(doc)

    def list_available(self, now: datetime) -> list[Offer]:
        """active 이고 만료되지 않은 오퍼 목록 (최신순)."""
        docs = retry_read(
            lambda: list(
                self._col.find(
                    {
                        "status": str(OfferStatus.ACTIVE),
                        "$or": [
                            {"expires_at": {"$exists": False}},
                            {"expires_at": None},
                            {"expires_at": {"$gt": now}},
                        ],
                    },
                    sort=[("created_at", DESCENDING)],
                )
            ),
            description="list offers",
        )
        return [self._from_document(doc) for doc in docs]

    def try_reserve_claim(self, offer_id: str, max_claims: int | None) -> bool:
        query: dict[str, Any] = {"_id": to_object_id(offer_id)}
        if max_claims is not None:
            query["current_claims"] = {"$lt": max_claims}
        result = self._col.update_one(
            query,
            {"$inc": {"current_claims": 1}, "$set": {"updated_at": utcnow()}},
        )
        return result.modified_count == 1

    def release_claim(self, offer_id: str) -> None:
        self._col.update_one(
            {"_id": to_object_id(offer_id), "current_claims": {"$gt": 0}},
            {"$inc": {"current_claims": -1}, "$set": {"updated_at": utcnow()}},
        )


class RewardCounterRepository(RewardCounterRepositoryInterface):
    """reward_counters 컬렉션. reward_key 당 하나의 카운터 도큐먼트."""

    def __init__(self, database: Database) -> None:
        self._db = database
        self._col = database[REWARD_COUNTERS]

    def try_reserve(self, reward_key: str, max_claims: int) -> bool:
        """카운터가 max_claims 미만일 때만 1 증가시킨다.

        - 도큐먼트가 없으면 upsert 로 count=1 인 카운터를 만든다.
        - 도큐먼트가 있지만 이미 상한이면 필터가 매칭되지 않아 upsert 가 insert 를 시도하고,
          reward_key 유니크 인덱스 충돌(DuplicateKeyError)로 끝난다 -> 상한 도달.
        """
        if max_claims <= 0:
            return False

        now = utcnow()
        try:
            result = self._col.update_one(
                {"reward_key": reward_key, "count": {"$lt": max_claims}},
                {
                    "$inc": {"count": 1},
                    "$set": {"updated_at": now},
                    "$setOnInsert": {"reward_key": reward_key, "created_at": now},
                },
                upsert=True,
            )
        except DuplicateKeyError:
            return False

        return result.upserted_id is not None or result.modified_count > 0

    def release(self, reward_key: str) -> None:
        self._col.update_one(
            {"reward_key": reward_key, "count": {"$gt": 0}},
            {"$inc": {"count": -1}, "$set": {"updated_at": utcnow()}},
        )

    def get_count(self, reward_key: str) -> int:
        doc = retry_read(
            lambda: self._col.find_one({"reward_key": reward_key}, {"count": 1}),
            description="get reward counter",
        )
        return int(doc.get("count", 0)) if doc else 0
