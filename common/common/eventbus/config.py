from __future__ import annotations

import os


BROKERS_ENV = "KAFKA_BOOTSTRAP_SERVERS"
GROUP_ID_ENV = "KAFKA_GROUP_ID"


def get_brokers() -> str:
    value = os.getenv(BROKERS_ENV)
    if not value:
        raise RuntimeError(f"{BROKERS_ENV} environment variable is required")
    return value


def get_optional_brokers() -> str | None:
    """브로커 설정이 없으면 None 을 반환한다.

    알림 발행은 선택 기능이므로, Kafka 가 구성되지 않은 환경에서도 원장 서비스는 동작해야 한다.
    """

    value = os.getenv(BROKERS_ENV, "").strip()
    return value or None


def get_group_id() -> str:
    value = os.getenv(GROUP_ID_ENV)
    if not value:
        raise RuntimeError(f"{GROUP_ID_ENV} environment variable is required")
    return value
