from __future__ import annotations

import logging
import time
from typing import Callable, TypeVar

from pymongo.errors import AutoReconnect, ExecutionTimeout


logger = logging.getLogger(__name__)

T = TypeVar("T")

# 멱등 조회에만 적용하는 재시도 횟수/간격.
DEFAULT_READ_ATTEMPTS = 3
DEFAULT_READ_BACKOFF_SECONDS = 0.05

TRANSIENT_READ_ERRORS: tuple[type[Exception], ...] = (AutoReconnect, ExecutionTimeout)


def retry_read(
    operation: Callable[[], T],
    *,
    attempts: int = DEFAULT_READ_ATTEMPTS,
    backoff_seconds: float = DEFAULT_READ_BACKOFF_SECONDS,
    description: str = "mongo read",
) -> T:
    """일시적인 저장소 오류에 대해 조회를 제한된 횟수만큼 재시도한다.

    쓰기에는 사용하지 않는다. 쓰기 실패는 부분 적용 없이 그대로 호출자에게 전달한다.
    마지막 시도까지 실패하면 원래 예외를 다시 발생시킨다.
    """

    if attempts <= 0:
        attempts = 1

    for attempt in range(1, attempts + 1):
        try:
            return operation()
        except TRANSIENT_READ_ERRORS as exc:
            if attempt >= attempts:
                logger.error(
                    "%s failed after %d attempts: %s", description, attempt, exc
                )
                raise
            logger.warning(
                "%s failed (attempt %d/%d), retrying: %s",
                description,
                attempt,
                attempts,
                exc,
            )
            time.sleep(backoff_seconds * attempt)

    raise AssertionError("unreachable")  # pragma: no cover
