from __future__ import annotations

from fastapi import APIRouter

from common.mongo.client import get_default_handle


router = APIRouter()


@router.get("/health", summary="헬스 체크")
async def health() -> dict[str, str]:
    mongo = "connected" if get_default_handle().started else "not_started"
    return {"status": "ok", "mongo": mongo}
