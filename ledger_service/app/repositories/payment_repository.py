from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime
from typing import Any

from bson.errors import InvalidId
from pymongo import DESCENDING, ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from common.mongo.retry import retry_read
from common.mongo.types import to_object_id

from .documents.payment_document import PaymentDocument
from .indexes import PAYMENTS
from .interfaces import PaymentRepositoryInterface
from ..errors import ValidationError
from ..models.payment import Payment, PaymentStatus


class PaymentRepository(PaymentRepositoryInterface):
    """payments 컬렉션에 대한 MongoDB 접근 레이어."""

    def __init__(self, database: Database) -> None:
        self._db = database
        self._col = database[PAYMENTS]

    @staticmethod
    def _from_document(doc: dict) -> Payment:
        return PaymentDocument.model_validate(doc).to_domain()

    def insert(self, payment: Payment) -> Payment:
        document = PaymentDocument.from_domain(payment)
        payload = document.to_mongo_record()
        try:
            result = self._col.insert_one(payload)
        except DuplicateKeyError as exc:
            raise ValidationError(
                f"external payment id already registered (processor={payment.processor})"
            ) from exc
        return payment.model_copy(update={"id": str(result.inserted_id)})

    def find_by_id(self, payment_id: str) -> Payment | None:
        try:
            oid = to_object_id(payment_id)
        except (InvalidId, TypeError):
            return None
        doc = retry_read(
            lambda: self._col.find_one({"_id": oid}), description="find payment"
        )
        if not doc:
            return None
        return self._from_document(doc)

    def find_by_external_ids(
        self,
        processor: str,
        external_payment_id: str | None,
        external_order_id: str | None,
    ) -> list[Payment]:
        """대행사 범위 안에서 외부 결제 ID 또는 주문 ID 가 일치하는 결제를 찾는다."""
        clauses: list[dict[str, Any]] = []
        if external_payment_id:
            clauses.append({"external_payment_id": external_payment_id})
        if external_order_id:
            clauses.append({"external_order_id": external_order_id})
        if not clauses:
            return []

        docs = retry_read(
            lambda: list(
                self._col.find({"processor": processor, "$or": clauses}, limit=3)
            ),
            description="find payment by external ids",
        )
        return [self._from_document(doc) for doc in docs]

    def transition(
        self,
        payment_id: str,
        from_statuses: Iterable[PaymentStatus],
        to_status: PaymentStatus,
        now: datetime,
        fields: dict[str, Any] | None = None,
    ) -> Payment | None:
        """현재 상태가 from_statuses 중 하나일 때만 to_status 로 바꾼다."""
        update = dict(fields or {})
        update.update({"status": str(to_status), "updated_at": now})
        doc = self._col.find_one_and_update(
            {
                "_id": to_object_id(payment_id),
                "status": {"$in": [str(s) for s in from_statuses]},
            },
            {"$set": update},
            return_document=ReturnDocument.AFTER,
        )
        if not doc:
            return None
        return self._from_document(doc)

    def set_external_ids(
        self,
        payment_id: str,
        external_payment_id: str | None,
        external_order_id: str | None,
        now: datetime,
    ) -> Payment | None:
        update: dict[str, Any] = {"updated_at": now}
        if external_payment_id:
            update["external_payment_id"] = external_payment_id
        if external_order_id:
            update["external_order_id"] = external_order_id
        try:
            oid = to_object_id(payment_id)
        except (InvalidId, TypeError):
            return None
        try:
            doc = self._col.find_one_and_update(
                {"_id": oid},
                {"$set": update},
                return_document=ReturnDocument.AFTER,
            )
        except DuplicateKeyError as exc:
            raise ValidationError(
                f"external ids already attached to another payment (payment_id={payment_id})"
            ) from exc
        if not doc:
            return None
        return self._from_document(doc)

    def list_by_user(
        self, user_id: str, page: int, page_size: int
    ) -> tuple[list[Payment], int]:
        if page <= 0:
            page = 1
        if page_size <= 0 or page_size > 100:
            page_size = 20

        skip = (page - 1) * page_size
        total = self._col.count_documents({"user_id": user_id})
        cursor = self._col.find(
            {"user_id": user_id},
            sort=[("created_at", DESCENDING), ("_id", DESCENDING)],
            skip=skip,
            limit=page_size,
        )
        return [self._from_document(raw) for raw in cursor], total
