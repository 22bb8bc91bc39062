from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol


# 핸들러 실패 시 이동하는 재시도 토픽 단계별 지연(초). 단계 수가 곧 최대 재시도 횟수다.
RetryDelays: list[float] = [
    30.0,
    120.0,
    600.0,
    1800.0,
    3600.0,
]


class MaxRetryExceededError(Exception):
    """최대 재시도 횟수를 초과한 경우 사용되는 예외."""


@dataclass(slots=True)
class Event:
    """Kafka 메시지의 메타데이터와 페이로드를 표현하는 이벤트.

    payload 는 JSON 직렬화 가능한 dict 를 담고, 인코딩/디코딩은 Kafka I/O 레이어가 맡는다.
    결제 웹훅처럼 at-least-once 로 전달되는 메시지는 id 를 멱등 키로 사용할 수 있다.
    """

    id: str
    payload: Any
    retry: int = 0
    max_retry: int = 0
    last_error: str | None = None

    def __post_init__(self) -> None:
        if self.max_retry <= 0 or self.max_retry > len(RetryDelays):
            self.max_retry = len(RetryDelays)


@dataclass(frozen=True, slots=True)
class Topic:
    base: str

    def dlq(self) -> str:
        return f"{self.base}.dlq"

    def get_retry_topics(self) -> list[str]:
        return [
            f"{self.base}.retry.{index}" for index in range(1, len(RetryDelays) + 1)
        ]

    def get_retry_topic(self, retry_count: int) -> str:
        if retry_count <= 0 or retry_count > len(RetryDelays):
            raise MaxRetryExceededError()
        return f"{self.base}.retry.{retry_count}"


class EventPublisher(Protocol):
    """이벤트 발행자가 따라야 할 최소 계약 (KafkaEventBus, 테스트용 Fake 등)."""

    def publish(self, topic: str, event: Event) -> None:  # pragma: no cover - Protocol
        ...
