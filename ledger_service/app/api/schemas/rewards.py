from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from common.types.datetime import OptionalUtcDateTime, UtcDateTime

from ...models.reward import ClaimResult, Offer, OfferStatus
from .credits import CreditTransactionResponse


class OfferResponse(BaseModel):
    id: str | None
    title: str
    description: str
    type: str
    url: str
    credits_reward: int
    status: OfferStatus
    max_claims: int | None = None
    current_claims: int
    remaining_claims: int | None = None
    expires_at: OptionalUtcDateTime = None
    created_at: UtcDateTime

    @classmethod
    def from_domain(cls, offer: Offer) -> "OfferResponse":
        return cls(
            id=offer.id,
            title=offer.title,
            description=offer.description,
            type=offer.type,
            url=offer.url,
            credits_reward=offer.credits_reward,
            status=offer.status,
            max_claims=offer.max_claims,
            current_claims=offer.current_claims,
            remaining_claims=offer.remaining_claims,
            expires_at=offer.expires_at,
            created_at=offer.created_at,
        )


class CreateOfferRequest(BaseModel):
    title: str
    description: str = ""
    type: str = "other"
    url: str = ""
    credits_reward: int = Field(gt=0)
    max_claims: int | None = None
    expires_at: OptionalUtcDateTime = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class ClaimOfferRequest(BaseModel):
    user_id: str


class ClaimRewardRequest(BaseModel):
    """reward_key 예: free_tier, referral:<user_id>, promotion:<campaign>, offer:<offer_id>."""

    user_id: str
    reward_key: str
    amount: int
    max_claims: int | None = None


class ReferralClaimRequest(BaseModel):
    referrer_id: str
    referred_user_id: str
    credits: int


class ClaimResponse(BaseModel):
    accepted: bool
    reason: str | None = None
    reward_key: str | None = None
    reward_title: str | None = None
    credits_awarded: int = 0
    claimed_at: OptionalUtcDateTime = None
    transaction: CreditTransactionResponse | None = None

    @classmethod
    def from_domain(cls, result: ClaimResult) -> "ClaimResponse":
        claim = result.claim
        return cls(
            accepted=result.accepted,
            reason=result.reason,
            reward_key=claim.reward_key if claim else None,
            reward_title=claim.reward_title if claim else None,
            credits_awarded=claim.credits_awarded if claim and result.accepted else 0,
            claimed_at=claim.claimed_at if claim else None,
            transaction=(
                CreditTransactionResponse.from_domain(result.transaction)
                if result.transaction is not None
                else None
            ),
        )
