from __future__ import annotations

from typing import Any

from common.mongo.types import (
    BaseDocument,
    MongoDateTime,
    build_document_data_from_domain,
    from_object_id,
)

from ...models.game import GameCreditConfig


class GameCreditConfigDocument(BaseDocument):
    """MongoDB game_credit_configs 컬렉션 도큐먼트 모델. game_id 당 하나."""

    game_id: str
    game_title: str
    enabled: bool = True
    developer_id: str
    earning_rules: list[dict[str, Any]] = []
    updated_at: MongoDateTime

    @classmethod
    def from_domain(cls, config: GameCreditConfig) -> "GameCreditConfigDocument":
        data = build_document_data_from_domain(config)
        return cls.model_validate(data)

    def to_domain(self) -> GameCreditConfig:
        return GameCreditConfig.model_validate(
            {
                "id": from_object_id(self.id),
                "game_id": self.game_id,
                "game_title": self.game_title,
                "enabled": self.enabled,
                "developer_id": self.developer_id,
                "earning_rules": self.earning_rules,
                "created_at": self.created_at,
                "updated_at": self.updated_at,
            }
        )
