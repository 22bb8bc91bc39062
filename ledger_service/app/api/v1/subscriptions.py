from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, status

from ...services.subscription_service import (
    SubscriptionService,
    get_subscription_service,
)
from ..schemas.subscriptions import (
    BillingCycleRequest,
    BillingCycleResponse,
    SubscribeRequest,
    SubscriptionResponse,
    TierResponse,
)


router = APIRouter(prefix="/subscriptions", tags=["subscriptions"])


@router.get("/tiers")
def list_tiers(
    subscription_service: Annotated[
        SubscriptionService, Depends(get_subscription_service)
    ],
) -> list[TierResponse]:
    return [TierResponse.from_config(t) for t in subscription_service.list_tiers()]


@router.post("", status_code=status.HTTP_201_CREATED)
def subscribe(
    req: SubscribeRequest,
    subscription_service: Annotated[
        SubscriptionService, Depends(get_subscription_service)
    ],
) -> SubscriptionResponse:
    """무료 티어는 즉시 active, 유료 티어는 결제 정산 전까지 pending."""
    subscription = subscription_service.subscribe(req.user_id, req.tier, req.processor)
    return SubscriptionResponse.from_domain(subscription)


@router.get("/user/{user_id}")
def get_active_subscription(
    user_id: str,
    subscription_service: Annotated[
        SubscriptionService, Depends(get_subscription_service)
    ],
) -> SubscriptionResponse | None:
    active = subscription_service.get_active(user_id)
    return SubscriptionResponse.from_domain(active) if active else None


@router.post("/billing-cycle")
def run_billing_cycle(
    subscription_service: Annotated[
        SubscriptionService, Depends(get_subscription_service)
    ],
    req: BillingCycleRequest | None = None,
) -> BillingCycleResponse:
    """외부 스케줄러가 주기적으로 호출하는 빌링 사이클."""
    now = req.now if req is not None else None
    report = subscription_service.run_billing_cycle(now)
    return BillingCycleResponse.from_domain(report)


@router.post("/{subscription_id}/cancel")
def cancel_subscription(
    subscription_id: str,
    subscription_service: Annotated[
        SubscriptionService, Depends(get_subscription_service)
    ],
) -> SubscriptionResponse:
    """해지는 멱등하다. 이미 해지된 구독은 현재 상태를 그대로 반환한다."""
    return SubscriptionResponse.from_domain(
        subscription_service.cancel(subscription_id)
    )


@router.post("/{subscription_id}/expire")
def expire_subscription(
    subscription_id: str,
    subscription_service: Annotated[
        SubscriptionService, Depends(get_subscription_service)
    ],
) -> SubscriptionResponse:
    return SubscriptionResponse.from_domain(
        subscription_service.expire(subscription_id)
    )
