from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime
from typing import Any

from bson.errors import InvalidId
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.database import Database

from common.mongo.retry import retry_read
from common.mongo.types import to_object_id

from .documents.subscription_document import SubscriptionDocument
from .indexes import SUBSCRIPTIONS
from .interfaces import SubscriptionRepositoryInterface
from ..models.subscription import Subscription, SubscriptionStatus


class SubscriptionRepository(SubscriptionRepositoryInterface):
    """subscriptions 컬렉션에 대한 MongoDB 접근 레이어."""

    def __init__(self, database: Database) -> None:
        self._db = database
        self._col = database[SUBSCRIPTIONS]

    @staticmethod
    def _from_document(doc: dict) -> Subscription:
        return SubscriptionDocument.model_validate(doc).to_domain()

    def insert(self, subscription: Subscription) -> Subscription:
        document = SubscriptionDocument.from_domain(subscription)
        payload = document.to_mongo_record()
        result = self._col.insert_one(payload)
        return subscription.model_copy(update={"id": str(result.inserted_id)})

    def find_by_id(self, subscription_id: str) -> Subscription | None:
        try:
            oid = to_object_id(subscription_id)
        except (InvalidId, TypeError):
            return None
        doc = retry_read(
            lambda: self._col.find_one({"_id": oid}), description="find subscription"
        )
        if not doc:
            return None
        return self._from_document(doc)

    def list_by_user(
        self, user_id: str, statuses: Iterable[SubscriptionStatus]
    ) -> list[Subscription]:
        status_values = [str(s) for s in statuses]
        docs = retry_read(
            lambda: list(
                self._col.find(
                    {"user_id": user_id, "status": {"$in": status_values}},
                    sort=[("created_at", DESCENDING)],
                )
            ),
            description="list subscriptions by user",
        )
        return [self._from_document(doc) for doc in docs]

    def transition(
        self,
        subscription_id: str,
        from_statuses: Iterable[SubscriptionStatus],
        to_status: SubscriptionStatus,
        now: datetime,
        fields: dict[str, Any] | None = None,
    ) -> Subscription | None:
        update = dict(fields or {})
        update.update({"status": str(to_status), "updated_at": now})
        doc = self._col.find_one_and_update(
            {
                "_id": to_object_id(subscription_id),
                "status": {"$in": [str(s) for s in from_statuses]},
            },
            {"$set": update},
            return_document=ReturnDocument.AFTER,
        )
        if not doc:
            return None
        return self._from_document(doc)

    def list_due(self, now: datetime, limit: int) -> list[Subscription]:
        docs = retry_read(
            lambda: list(
                self._col.find(
                    {
                        "status": str(SubscriptionStatus.ACTIVE),
                        "next_billing_date": {"$lte": now},
                    },
                    sort=[("next_billing_date", ASCENDING)],
                    limit=limit,
                )
            ),
            description="list due subscriptions",
        )
        return [self._from_document(doc) for doc in docs]

    def advance_billing_date(
        self,
        subscription_id: str,
        expected: datetime,
        next_billing_date: datetime,
        now: datetime,
    ) -> bool:
        result = self._col.update_one(
            {
                "_id": to_object_id(subscription_id),
                "status": str(SubscriptionStatus.ACTIVE),
                "next_billing_date": expected,
            },
            {"$set": {"next_billing_date": next_billing_date, "updated_at": now}},
        )
        return result.modified_count == 1
