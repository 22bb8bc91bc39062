from __future__ import annotations

from pymongo.database import Database

from common.mongo.retry import retry_read
from common.mongo.types import is_object_id, to_object_id

from .indexes import USERS
from .interfaces import UserDirectoryInterface
from ..errors import NotFoundError, ValidationError


class UserDirectory(UserDirectoryInterface):
    """users 컬렉션을 읽기 전용으로 조회해 세션 식별자를 user_id 로 해석한다.

    유저 도큐먼트는 인증 서비스가 관리하며, 원장은 _id 문자열만 사용한다.
    """

    def __init__(self, database: Database) -> None:
        self._db = database
        self._col = database[USERS]

    def resolve_user_id(self, session_or_email: str) -> str:
        identifier = (session_or_email or "").strip()
        if not identifier:
            raise ValidationError("user identifier is required")

        if is_object_id(identifier):
            query = {"_id": to_object_id(identifier)}
        else:
            query = {"email": identifier.lower()}

        doc = retry_read(
            lambda: self._col.find_one(query, projection={"_id": 1}),
            description="resolve user id",
        )
        if not doc:
            raise NotFoundError(f"user not found ({identifier})")
        return str(doc["_id"])
