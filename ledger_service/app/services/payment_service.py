from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime

from fastapi import Depends
from pymongo.database import Database

from common.mongo.client import get_database
from common.mongo.types import utcnow

from ..config import AppConfig, CreditPackage, get_config
from ..errors import NotFoundError, ValidationError
from ..models.payment import Payment, PaymentStatus, PaymentType
from ..repositories.interfaces import PaymentRepositoryInterface
from ..repositories.payment_repository import PaymentRepository


logger = logging.getLogger(__name__)


DEFAULT_PROCESSOR = "paypal"


class PaymentService:
    """결제 의도(pending Payment) 생성과 조회.

    생성 이후의 상태 변경은 SettlementService 만 수행한다.
    """

    def __init__(
        self,
        payment_repo: PaymentRepositoryInterface,
        *,
        packages: list[CreditPackage] | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._payment_repo = payment_repo
        self._packages = list(packages or [])
        self._clock = clock

    def create_credit_purchase(
        self, user_id: str, credits: int, processor: str = DEFAULT_PROCESSOR
    ) -> Payment:
        """크레딧 패키지 구매 의도를 기록한다. 보너스 크레딧은 credits_purchased 에 합산된다."""

        package = next((p for p in self._packages if p.credits == credits), None)
        if package is None:
            raise ValidationError(f"invalid credit package: {credits}")

        bonus_text = f" (+{package.bonus} bonus)" if package.bonus else ""
        return self.create_payment(
            user_id,
            amount=package.price,
            type=PaymentType.CREDITS,
            processor=processor,
            description=f"Purchase {package.credits} credits{bonus_text}",
            credits_purchased=package.total_credits,
            metadata={"package_credits": package.credits, "bonus": package.bonus},
        )

    def create_payment(
        self,
        user_id: str,
        *,
        amount: float,
        type: PaymentType,
        processor: str = DEFAULT_PROCESSOR,
        currency: str = "USD",
        description: str = "",
        credits_purchased: int | None = None,
        project_id: str | None = None,
        subscription_id: str | None = None,
        external_payment_id: str | None = None,
        external_order_id: str | None = None,
        metadata: dict | None = None,
    ) -> Payment:
        if not user_id:
            raise ValidationError("user_id is required")
        if amount <= 0:
            raise ValidationError(f"payment amount must be positive, got {amount}")
        if not processor:
            raise ValidationError("processor is required")
        if type == PaymentType.CREDITS and not credits_purchased:
            raise ValidationError("credits payment requires credits_purchased")
        if type == PaymentType.SUBSCRIPTION and not subscription_id:
            raise ValidationError("subscription payment requires subscription_id")

        now = self._clock()
        payment = Payment(
            user_id=user_id,
            type=type,
            amount=amount,
            currency=currency,
            status=PaymentStatus.PENDING,
            processor=processor,
            external_payment_id=external_payment_id or None,
            external_order_id=external_order_id or None,
            credits_purchased=credits_purchased,
            subscription_id=subscription_id,
            project_id=project_id,
            description=description,
            metadata=dict(metadata or {}),
            created_at=now,
            updated_at=now,
        )
        created = self._payment_repo.insert(payment)
        logger.info(
            "payment created payment_id=%s user_id=%s type=%s amount=%.2f processor=%s",
            created.id,
            user_id,
            type,
            amount,
            processor,
        )
        return created

    def attach_external_ids(
        self,
        payment_id: str,
        *,
        external_payment_id: str | None = None,
        external_order_id: str | None = None,
    ) -> Payment:
        """대행사가 돌려준 외부 ID 를 결제에 기록한다 (웹훅 매칭용)."""
        if not external_payment_id and not external_order_id:
            raise ValidationError("external_payment_id or external_order_id is required")

        updated = self._payment_repo.set_external_ids(
            payment_id, external_payment_id, external_order_id, self._clock()
        )
        if updated is None:
            raise NotFoundError(f"payment not found ({payment_id})")
        return updated

    def get_payment(self, payment_id: str) -> Payment:
        payment = self._payment_repo.find_by_id(payment_id)
        if payment is None:
            raise NotFoundError(f"payment not found ({payment_id})")
        return payment

    def list_payments(
        self, user_id: str, page: int = 1, page_size: int = 20
    ) -> tuple[list[Payment], int]:
        return self._payment_repo.list_by_user(user_id, page, page_size)


def get_payment_repository(
    db: Database = Depends(get_database),
) -> PaymentRepositoryInterface:
    """FastAPI DI용 PaymentRepository 팩토리."""

    return PaymentRepository(db)


def get_payment_service(
    repo: PaymentRepositoryInterface = Depends(get_payment_repository),
    config: AppConfig = Depends(get_config),
) -> PaymentService:
    """FastAPI DI용 PaymentService 팩토리."""

    return PaymentService(repo, packages=config.credit_packages)
