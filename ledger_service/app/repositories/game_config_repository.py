from __future__ import annotations

from datetime import datetime
from typing import Any

from pymongo import DESCENDING, ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from common.mongo.retry import retry_read

from .documents.game_config_document import GameCreditConfigDocument
from .indexes import GAME_CREDIT_CONFIGS
from .interfaces import GameCreditConfigRepositoryInterface
from ..models.game import GameCreditConfig, GameEarningRule


class GameCreditConfigRepository(GameCreditConfigRepositoryInterface):
    """game_credit_configs 컬렉션에 대한 MongoDB 접근 레이어."""

    def __init__(self, database: Database) -> None:
        self._db = database
        self._col = database[GAME_CREDIT_CONFIGS]

    @staticmethod
    def _from_document(doc: dict) -> GameCreditConfig:
        return GameCreditConfigDocument.model_validate(doc).to_domain()

    def insert(self, config: GameCreditConfig) -> GameCreditConfig | None:
        document = GameCreditConfigDocument.from_domain(config)
        try:
            result = self._col.insert_one(document.to_mongo_record())
        except DuplicateKeyError:
            return None
        return config.model_copy(update={"id": str(result.inserted_id)})

    def find_by_game(self, game_id: str) -> GameCreditConfig | None:
        doc = retry_read(
            lambda: self._col.find_one({"game_id": game_id}),
            description="find game credit config",
        )
        if not doc:
            return None
        return self._from_document(doc)

    def update(
        self,
        game_id: str,
        enabled: bool | None,
        earning_rules: list[GameEarningRule] | None,
        now: datetime,
    ) -> GameCreditConfig | None:
        fields: dict[str, Any] = {"updated_at": now}
        if enabled is not None:
            fields["enabled"] = enabled
        if earning_rules is not None:
            fields["earning_rules"] = [rule.model_dump() for rule in earning_rules]
        doc = self._col.find_one_and_update(
            {"game_id": game_id},
            {"$set": fields},
            return_document=ReturnDocument.AFTER,
        )
        if not doc:
            return None
        return self._from_document(doc)

    def list_enabled(self) -> list[GameCreditConfig]:
        docs = retry_read(
            lambda: list(
                self._col.find({"enabled": True}, sort=[("created_at", DESCENDING)])
            ),
            description="list enabled game credit configs",
        )
        return [self._from_document(doc) for doc in docs]

    def list_by_developer(self, developer_id: str) -> list[GameCreditConfig]:
        docs = retry_read(
            lambda: list(
                self._col.find(
                    {"developer_id": developer_id}, sort=[("created_at", DESCENDING)]
                )
            ),
            description="list game credit configs by developer",
        )
        return [self._from_document(doc) for doc in docs]
