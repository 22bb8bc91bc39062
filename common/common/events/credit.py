"""원장 관련 이벤트 정의."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Self


class CreditEventType:
    """원장 이벤트 타입 상수."""

    CREDIT_GRANTED = "credit.granted"
    CREDIT_USED = "credit.used"
    PAYMENT_SETTLED = "payment.settled"


@dataclass(slots=True)
class CreditGrantedEvent:
    """크레딧 적립 이벤트.

    무료 지급, 구매, 구독 주기, 리워드 클레임, 환불 등으로 잔액이 늘면 발행된다.
    """

    id: str
    type: str
    timestamp: str
    source: str
    version: str
    user_id: str
    transaction_id: str
    amount: int
    balance_after: int
    credit_source: str  # free_tier | subscription | purchase | ...
    description: str

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Self:
        return cls(
            id=str(data["id"]),
            type=str(data["type"]),
            timestamp=str(data["timestamp"]),
            source=str(data["source"]),
            version=str(data.get("version", "1.0")),
            user_id=str(data["user_id"]),
            transaction_id=str(data["transaction_id"]),
            amount=int(data["amount"]),
            balance_after=int(data["balance_after"]),
            credit_source=str(data["credit_source"]),
            description=str(data.get("description", "")),
        )


@dataclass(slots=True)
class CreditUsedEvent:
    """크레딧 사용 이벤트. amount 는 차감된 양(양수)이다."""

    id: str
    type: str
    timestamp: str
    source: str
    version: str
    user_id: str
    transaction_id: str
    amount: int
    balance_after: int
    credit_source: str
    description: str

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Self:
        return cls(
            id=str(data["id"]),
            type=str(data["type"]),
            timestamp=str(data["timestamp"]),
            source=str(data["source"]),
            version=str(data.get("version", "1.0")),
            user_id=str(data["user_id"]),
            transaction_id=str(data["transaction_id"]),
            amount=int(data["amount"]),
            balance_after=int(data["balance_after"]),
            credit_source=str(data["credit_source"]),
            description=str(data.get("description", "")),
        )


@dataclass(slots=True)
class PaymentSettledEvent:
    """결제 정산 이벤트.

    웹훅으로 결제가 종결 상태(completed/failed/cancelled)에 도달하면 발행된다.
    """

    id: str
    type: str
    timestamp: str
    source: str
    version: str
    user_id: str
    payment_id: str
    status: str
    payment_type: str
    amount: float
    currency: str
    credits_granted: int
    transaction_id: str | None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Self:
        return cls(
            id=str(data["id"]),
            type=str(data["type"]),
            timestamp=str(data["timestamp"]),
            source=str(data["source"]),
            version=str(data.get("version", "1.0")),
            user_id=str(data["user_id"]),
            payment_id=str(data["payment_id"]),
            status=str(data["status"]),
            payment_type=str(data["payment_type"]),
            amount=float(data["amount"]),
            currency=str(data.get("currency", "USD")),
            credits_granted=int(data.get("credits_granted", 0)),
            transaction_id=data.get("transaction_id"),
        )
