"""credit-ledger 컬렉션 인덱스 정의.

유니크 인덱스가 동시성 제어의 기본 수단이므로, 서비스 시작 시 한 번 반드시 생성되어야 한다.
"""

from __future__ import annotations

import logging

from pymongo import ASCENDING, DESCENDING, IndexModel
from pymongo.database import Database


logger = logging.getLogger(__name__)


CREDIT_TRANSACTIONS = "credit_transactions"
PAYMENTS = "payments"
REWARD_CLAIMS = "reward_claims"
REWARD_COUNTERS = "reward_counters"
OFFERS = "offers"
GAME_CREDIT_CONFIGS = "game_credit_configs"
SUBSCRIPTIONS = "subscriptions"
USERS = "users"


LEDGER_INDEXES: dict[str, list[IndexModel]] = {
    CREDIT_TRANSACTIONS: [
        IndexModel(
            [("user_id", ASCENDING), ("sequence", ASCENDING)],
            unique=True,
            name="uniq_user_sequence",
        ),
        IndexModel(
            [("user_id", ASCENDING), ("created_at", DESCENDING)],
            name="idx_user_created",
        ),
        IndexModel(
            [("idempotency_key", ASCENDING)],
            unique=True,
            partialFilterExpression={"idempotency_key": {"$type": "string"}},
            name="uniq_idempotency_key",
        ),
        IndexModel([("related_payment_id", ASCENDING)], name="idx_related_payment"),
        IndexModel(
            [("related_subscription_id", ASCENDING)], name="idx_related_subscription"
        ),
    ],
    PAYMENTS: [
        IndexModel(
            [("user_id", ASCENDING), ("created_at", DESCENDING)],
            name="idx_user_created",
        ),
        IndexModel([("status", ASCENDING)], name="idx_status"),
        # 대행사별로 외부 ID 는 결제 하나에만 매칭된다.
        IndexModel(
            [("processor", ASCENDING), ("external_payment_id", ASCENDING)],
            unique=True,
            partialFilterExpression={"external_payment_id": {"$type": "string"}},
            name="uniq_processor_external_payment",
        ),
        IndexModel(
            [("processor", ASCENDING), ("external_order_id", ASCENDING)],
            unique=True,
            partialFilterExpression={"external_order_id": {"$type": "string"}},
            name="uniq_processor_external_order",
        ),
    ],
    REWARD_CLAIMS: [
        IndexModel(
            [("user_id", ASCENDING), ("reward_key", ASCENDING)],
            unique=True,
            name="uniq_user_reward",
        ),
        IndexModel([("user_id", ASCENDING), ("status", ASCENDING)], name="idx_user_status"),
    ],
    REWARD_COUNTERS: [
        IndexModel([("reward_key", ASCENDING)], unique=True, name="uniq_reward_key"),
    ],
    OFFERS: [
        IndexModel([("status", ASCENDING), ("type", ASCENDING)], name="idx_status_type"),
    ],
    GAME_CREDIT_CONFIGS: [
        IndexModel([("game_id", ASCENDING)], unique=True, name="uniq_game"),
        IndexModel(
            [("developer_id", ASCENDING), ("enabled", ASCENDING)],
            name="idx_developer_enabled",
        ),
        IndexModel([("enabled", ASCENDING)], name="idx_enabled"),
    ],
    SUBSCRIPTIONS: [
        IndexModel([("user_id", ASCENDING), ("status", ASCENDING)], name="idx_user_status"),
        IndexModel(
            [("status", ASCENDING), ("next_billing_date", ASCENDING)],
            name="idx_status_next_billing",
        ),
        IndexModel(
            [("external_subscription_id", ASCENDING)],
            name="idx_external_subscription",
        ),
    ],
}


def ensure_ledger_indexes(database: Database) -> None:
    """모든 원장 컬렉션 인덱스를 생성한다 (이미 있으면 no-op)."""

    for collection, indexes in LEDGER_INDEXES.items():
        names = database[collection].create_indexes(indexes)
        logger.info("ensured indexes collection=%s names=%s", collection, names)
