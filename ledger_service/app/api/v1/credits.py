"""크레딧 원장 내부 API 라우터.

Gateway 에서 호출하는 내부 API. 인증/인가는 Gateway 에서 끝난 상태로 user_id 를 받는다.
"""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, status

from ...models.credit import RelatedIds
from ...services.claim_service import ClaimService, get_claim_service
from ...services.credit_service import CreditService, get_credit_service
from ..schemas.common import PaginatedResponse
from ..schemas.credits import (
    AddCreditsRequest,
    AdjustBalanceRequest,
    AdjustBalanceResponse,
    BalanceCheckResponse,
    BalanceResponse,
    CreditPackageResponse,
    CreditTransactionResponse,
    FreeCreditsRequest,
    PricingResponse,
    UseCreditsRequest,
)


router = APIRouter(prefix="/credits", tags=["credits"])


@router.get("/pricing")
def get_pricing(
    credit_service: Annotated[CreditService, Depends(get_credit_service)],
    tokens: int | None = None,
    provider: str | None = None,
) -> PricingResponse:
    """구매 가능한 크레딧 패키지 목록. tokens 가 주어지면 예상 차감 크레딧도 함께 반환한다."""
    estimated = (
        credit_service.tokens_to_credits(tokens, provider) if tokens is not None else None
    )
    return PricingResponse(
        packages=[
            CreditPackageResponse.from_config(p) for p in credit_service.credit_packages()
        ],
        estimated_credits=estimated,
    )


@router.get("/{user_id}")
def get_balance(
    user_id: str,
    credit_service: Annotated[CreditService, Depends(get_credit_service)],
) -> BalanceResponse:
    return BalanceResponse(user_id=user_id, balance=credit_service.get_balance(user_id))


@router.get("/{user_id}/history")
def get_credit_history(
    user_id: str,
    credit_service: Annotated[CreditService, Depends(get_credit_service)],
    page: int = 1,
    page_size: int = 20,
) -> PaginatedResponse[CreditTransactionResponse]:
    """원장 이력 조회 (최신순)."""
    items, total = credit_service.get_history(user_id, page, page_size)
    return PaginatedResponse(
        items=[CreditTransactionResponse.from_domain(tx) for tx in items],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.post("/{user_id}/add", status_code=status.HTTP_201_CREATED)
def add_credits(
    user_id: str,
    req: AddCreditsRequest,
    credit_service: Annotated[CreditService, Depends(get_credit_service)],
) -> CreditTransactionResponse:
    tx = credit_service.add_credits(
        user_id,
        req.amount,
        type=req.type,
        source=req.source,
        description=req.description,
        related=RelatedIds(
            payment_id=req.payment_id,
            subscription_id=req.subscription_id,
            project_id=req.project_id,
        ),
        metadata=req.metadata,
        idempotency_key=req.idempotency_key,
    )
    return CreditTransactionResponse.from_domain(tx)


@router.post("/{user_id}/use", status_code=status.HTTP_201_CREATED)
def use_credits(
    user_id: str,
    req: UseCreditsRequest,
    credit_service: Annotated[CreditService, Depends(get_credit_service)],
) -> CreditTransactionResponse:
    """크레딧 차감. 잔액 부족 시 402."""
    tx = credit_service.use_credits(
        user_id,
        req.amount,
        source=req.source,
        description=req.description,
        related=RelatedIds(project_id=req.project_id),
        metadata=req.metadata,
    )
    return CreditTransactionResponse.from_domain(tx)


@router.post("/{user_id}/free", status_code=status.HTTP_201_CREATED)
def give_free_credits(
    user_id: str,
    claim_service: Annotated[ClaimService, Depends(get_claim_service)],
    req: FreeCreditsRequest | None = None,
) -> CreditTransactionResponse:
    """가입 무료 크레딧. 두 번째 요청은 409 already_claimed."""
    req = req or FreeCreditsRequest()
    tx = claim_service.give_free_credits(user_id, req.amount, req.description)
    return CreditTransactionResponse.from_domain(tx)


@router.post("/{user_id}/adjust")
def adjust_balance(
    user_id: str,
    req: AdjustBalanceRequest,
    credit_service: Annotated[CreditService, Depends(get_credit_service)],
) -> AdjustBalanceResponse:
    """관리자 잔액 조정 (add / set / remove)."""
    previous, tx = credit_service.adjust_balance(
        user_id,
        action=req.action,
        amount=req.amount,
        admin_id=req.admin_id,
        description=req.description,
    )
    return AdjustBalanceResponse(
        user_id=user_id,
        action=req.action,
        amount=req.amount,
        previous_balance=previous,
        new_balance=tx.balance_after if tx is not None else previous,
        transaction=CreditTransactionResponse.from_domain(tx) if tx else None,
    )


@router.get("/{user_id}/verify")
def verify_balance(
    user_id: str,
    credit_service: Annotated[CreditService, Depends(get_credit_service)],
) -> BalanceCheckResponse:
    return BalanceCheckResponse.from_domain(credit_service.verify_balance(user_id))
