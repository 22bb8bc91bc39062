from __future__ import annotations

from .core import Topic


# 원장 변경 알림 (credit.granted / credit.used / payment.settled)
TOPIC_CREDIT = Topic("credit-ledger.credit")
# 수신 측에서 서명 검증을 마친 결제 웹훅 페이로드
TOPIC_PAYMENT_WEBHOOK = Topic("credit-ledger.payment.webhook")

ALL_TOPICS: list[Topic] = [
    TOPIC_CREDIT,
    TOPIC_PAYMENT_WEBHOOK,
]
