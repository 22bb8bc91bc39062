"""게임 크레딧 적립 라우터."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends

from ...services.game_credit_service import GameCreditService, get_game_credit_service
from ..schemas.games import (
    ClaimGameEarningRequest,
    GameCreditConfigResponse,
    GameEarningResponse,
    GameProgressResponse,
    SaveGameConfigRequest,
    TrackGameProgressRequest,
    TrackGameProgressResponse,
)
from ..schemas.rewards import ClaimResponse


router = APIRouter(prefix="/games", tags=["games"])


@router.get("/credits")
def list_games(
    user_id: str,
    game_service: Annotated[GameCreditService, Depends(get_game_credit_service)],
) -> list[GameProgressResponse]:
    """적립 가능한 게임과 유저별 진행 현황 (available_credits 는 수령 가능 합계)."""
    return [GameProgressResponse.from_domain(g) for g in game_service.list_games(user_id)]


@router.post("/credits/track")
def track_progress(
    req: TrackGameProgressRequest,
    game_service: Annotated[GameCreditService, Depends(get_game_credit_service)],
) -> TrackGameProgressResponse:
    earnings = game_service.track_progress(
        req.user_id,
        req.game_id,
        req.type,
        value=req.value,
        achievement_id=req.achievement_id,
        milestone=req.milestone,
    )
    return TrackGameProgressResponse(
        results=[GameEarningResponse.from_domain(e) for e in earnings]
    )


@router.post("/credits/claim")
def claim_earning(
    req: ClaimGameEarningRequest,
    game_service: Annotated[GameCreditService, Depends(get_game_credit_service)],
) -> ClaimResponse:
    """completed 기록만 수령할 수 있다. 진행 중이면 400, 중복/상한은 409."""
    result = game_service.claim_earning(req.user_id, req.earning_id)
    return ClaimResponse.from_domain(result)


@router.get("/credits/config")
def list_configs(
    developer_id: str,
    game_service: Annotated[GameCreditService, Depends(get_game_credit_service)],
) -> list[GameCreditConfigResponse]:
    return [
        GameCreditConfigResponse.from_domain(c)
        for c in game_service.list_developer_configs(developer_id)
    ]


@router.post("/credits/config")
def save_config(
    req: SaveGameConfigRequest,
    game_service: Annotated[GameCreditService, Depends(get_game_credit_service)],
) -> GameCreditConfigResponse:
    config = game_service.save_config(
        req.developer_id,
        req.game_id,
        game_title=req.game_title,
        enabled=req.enabled,
        earning_rules=req.earning_rules,
    )
    return GameCreditConfigResponse.from_domain(config)
