"""원장 저장소 구현체 (append-only).

잔액은 유저별 가장 최근 트랜잭션의 balance_after 이며,
(user_id, sequence) 유니크 인덱스가 동시 append 중 하나만 커밋되도록 보장한다.
"""

from __future__ import annotations

from pymongo import DESCENDING
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from common.mongo.retry import retry_read

from .documents.credit_document import CreditTransactionDocument
from .indexes import CREDIT_TRANSACTIONS
from .interfaces import CreditTransactionRepositoryInterface
from ..errors import LedgerWriteConflict
from ..models.credit import CreditTransaction


class CreditTransactionRepository(CreditTransactionRepositoryInterface):
    """credit_transactions 컬렉션에 대한 MongoDB 접근 레이어."""

    def __init__(self, database: Database) -> None:
        self._db = database
        self._col = database[CREDIT_TRANSACTIONS]

    @staticmethod
    def _from_document(doc: dict) -> CreditTransaction:
        return CreditTransactionDocument.model_validate(doc).to_domain()

    def get_latest(self, user_id: str) -> CreditTransaction | None:
        doc = retry_read(
            lambda: self._col.find_one(
                {"user_id": user_id}, sort=[("sequence", DESCENDING)]
            ),
            description="get latest ledger entry",
        )
        if not doc:
            return None
        return self._from_document(doc)

    def append(self, tx: CreditTransaction) -> CreditTransaction:
        """트랜잭션 한 건을 기록한다.

        같은 sequence 또는 같은 idempotency_key 가 이미 있으면 LedgerWriteConflict.
        """
        document = CreditTransactionDocument.from_domain(tx)
        payload = document.to_mongo_record()
        try:
            result = self._col.insert_one(payload)
        except DuplicateKeyError as exc:
            raise LedgerWriteConflict(
                f"ledger append rejected (user_id={tx.user_id} sequence={tx.sequence})"
            ) from exc
        return tx.model_copy(update={"id": str(result.inserted_id)})

    def find_by_idempotency_key(self, key: str) -> CreditTransaction | None:
        doc = retry_read(
            lambda: self._col.find_one({"idempotency_key": key}),
            description="find ledger entry by idempotency key",
        )
        if not doc:
            return None
        return self._from_document(doc)

    def sum_amounts(self, user_id: str) -> tuple[int, int]:
        pipeline = [
            {"$match": {"user_id": user_id}},
            {
                "$group": {
                    "_id": "$user_id",
                    "total": {"$sum": "$amount"},
                    "count": {"$sum": 1},
                }
            },
        ]
        rows = retry_read(
            lambda: list(self._col.aggregate(pipeline)),
            description="sum ledger amounts",
        )
        if not rows:
            return 0, 0
        return int(rows[0]["total"]), int(rows[0]["count"])

    def list_by_user(
        self, user_id: str, page: int, page_size: int
    ) -> tuple[list[CreditTransaction], int]:
        """사용자의 원장 이력 조회 (최신순)."""
        if page <= 0:
            page = 1
        if page_size <= 0 or page_size > 100:
            page_size = 20

        skip = (page - 1) * page_size

        total = self._col.count_documents({"user_id": user_id})
        cursor = self._col.find(
            {"user_id": user_id},
            sort=[("sequence", DESCENDING)],
            skip=skip,
            limit=page_size,
        )

        items: list[CreditTransaction] = []
        for raw in cursor:
            items.append(self._from_document(raw))

        return items, total
