from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, status

from ...models.payment import WebhookPayload
from ...services.payment_service import PaymentService, get_payment_service
from ...services.settlement_service import SettlementService, get_settlement_service
from ..schemas.common import PaginatedResponse
from ..schemas.payments import (
    AttachExternalIdsRequest,
    CreatePaymentRequest,
    CreditPurchaseRequest,
    PaymentResponse,
    SettlementResponse,
)


router = APIRouter(prefix="/payments", tags=["payments"])


@router.post("/purchase", status_code=status.HTTP_201_CREATED)
def create_credit_purchase(
    req: CreditPurchaseRequest,
    payment_service: Annotated[PaymentService, Depends(get_payment_service)],
) -> PaymentResponse:
    """크레딧 패키지 구매 의도를 pending 결제로 기록한다."""
    payment = payment_service.create_credit_purchase(
        req.user_id, req.credits, req.processor
    )
    return PaymentResponse.from_domain(payment)


@router.post("", status_code=status.HTTP_201_CREATED)
def create_payment(
    req: CreatePaymentRequest,
    payment_service: Annotated[PaymentService, Depends(get_payment_service)],
) -> PaymentResponse:
    payment = payment_service.create_payment(
        req.user_id,
        amount=req.amount,
        type=req.type,
        processor=req.processor,
        currency=req.currency,
        description=req.description,
        credits_purchased=req.credits_purchased,
        project_id=req.project_id,
        subscription_id=req.subscription_id,
        external_payment_id=req.external_payment_id,
        external_order_id=req.external_order_id,
        metadata=req.metadata,
    )
    return PaymentResponse.from_domain(payment)


@router.post("/webhook")
def settle_payment_webhook(
    payload: WebhookPayload,
    settlement_service: Annotated[SettlementService, Depends(get_settlement_service)],
) -> SettlementResponse:
    """대행사 웹훅 (서명 검증은 Gateway 에서 끝난 상태)."""
    result = settlement_service.settle_payment_webhook(payload)
    return SettlementResponse.from_domain(result)


@router.get("/user/{user_id}")
def list_user_payments(
    user_id: str,
    payment_service: Annotated[PaymentService, Depends(get_payment_service)],
    page: int = 1,
    page_size: int = 20,
) -> PaginatedResponse[PaymentResponse]:
    items, total = payment_service.list_payments(user_id, page, page_size)
    return PaginatedResponse(
        items=[PaymentResponse.from_domain(p) for p in items],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.get("/{payment_id}")
def get_payment(
    payment_id: str,
    payment_service: Annotated[PaymentService, Depends(get_payment_service)],
) -> PaymentResponse:
    return PaymentResponse.from_domain(payment_service.get_payment(payment_id))


@router.post("/{payment_id}/external-ids")
def attach_external_ids(
    payment_id: str,
    req: AttachExternalIdsRequest,
    payment_service: Annotated[PaymentService, Depends(get_payment_service)],
) -> PaymentResponse:
    payment = payment_service.attach_external_ids(
        payment_id,
        external_payment_id=req.external_payment_id,
        external_order_id=req.external_order_id,
    )
    return PaymentResponse.from_domain(payment)
