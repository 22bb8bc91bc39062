"""오퍼 / 리워드 클레임 라우터."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, status

from common.mongo.types import utcnow

from ...models.reward import Offer
from ...services.claim_service import ClaimService, get_claim_service
from ..schemas.rewards import (
    ClaimOfferRequest,
    ClaimResponse,
    ClaimRewardRequest,
    CreateOfferRequest,
    OfferResponse,
    ReferralClaimRequest,
)


offers_router = APIRouter(prefix="/offers", tags=["offers"])
rewards_router = APIRouter(prefix="/rewards", tags=["rewards"])


@offers_router.get("")
def list_offers(
    claim_service: Annotated[ClaimService, Depends(get_claim_service)],
) -> list[OfferResponse]:
    """active 이고 만료되지 않은 오퍼 목록."""
    return [OfferResponse.from_domain(o) for o in claim_service.list_offers()]


@offers_router.post("", status_code=status.HTTP_201_CREATED)
def create_offer(
    req: CreateOfferRequest,
    claim_service: Annotated[ClaimService, Depends(get_claim_service)],
) -> OfferResponse:
    now = utcnow()
    offer = claim_service.create_offer(
        Offer(
            title=req.title,
            description=req.description,
            type=req.type,
            url=req.url,
            credits_reward=req.credits_reward,
            max_claims=req.max_claims,
            expires_at=req.expires_at,
            metadata=req.metadata,
            created_at=now,
            updated_at=now,
        )
    )
    return OfferResponse.from_domain(offer)


@offers_router.post("/{offer_id}/claim")
def claim_offer(
    offer_id: str,
    req: ClaimOfferRequest,
    claim_service: Annotated[ClaimService, Depends(get_claim_service)],
) -> ClaimResponse:
    """오퍼 크레딧 수령. 중복은 409 already_claimed, 상한 도달은 409 max_claims_reached."""
    result = claim_service.claim_offer(req.user_id, offer_id)
    return ClaimResponse.from_domain(result)


@rewards_router.post("/claim")
def claim_reward(
    req: ClaimRewardRequest,
    claim_service: Annotated[ClaimService, Depends(get_claim_service)],
) -> ClaimResponse:
    """reward_key 기반 범용 클레임. 거절도 200 으로 accepted=false 와 reason 을 돌려준다."""
    result = claim_service.claim_reward(
        req.user_id, req.reward_key, req.amount, req.max_claims
    )
    return ClaimResponse.from_domain(result)


@rewards_router.post("/referral")
def claim_referral(
    req: ReferralClaimRequest,
    claim_service: Annotated[ClaimService, Depends(get_claim_service)],
) -> ClaimResponse:
    result = claim_service.claim_referral(
        req.referrer_id, req.referred_user_id, req.credits
    )
    return ClaimResponse.from_domain(result)
