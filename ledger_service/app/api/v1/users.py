from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from pymongo.database import Database

from common.mongo.client import get_database

from ...repositories.interfaces import UserDirectoryInterface
from ...repositories.user_repository import UserDirectory


router = APIRouter(prefix="/users", tags=["users"])


def get_user_directory(
    db: Database = Depends(get_database),
) -> UserDirectoryInterface:
    """FastAPI DI용 UserDirectory 팩토리."""
    return UserDirectory(db)


class ResolveUserResponse(BaseModel):
    user_id: str


@router.get("/resolve")
def resolve_user(
    identifier: str,
    directory: Annotated[UserDirectoryInterface, Depends(get_user_directory)],
) -> ResolveUserResponse:
    """세션 user id 또는 이메일을 원장 user_id 로 해석한다."""
    return ResolveUserResponse(user_id=directory.resolve_user_id(identifier))
