import json
import logging
import os
import sys


# 로그 레코드에 extra 로 실려 오는 원장 관련 컨텍스트 필드.
LEDGER_CONTEXT_KEYS = (
    "request_id",
    "user_id",
    "payment_id",
    "subscription_id",
    "reward_key",
    "idempotency_key",
    "method",
    "path",
    "status",
    "duration",
)


def setup_logger(
    name: str = "credit-ledger", level: str | None = None
) -> logging.Logger:
    """애플리케이션 전역 로거를 설정하고 반환한다.

    Args:
        name: 로거 이름 (기본값: credit-ledger). SERVICE_NAME 환경변수가 우선한다.
        level: 로그 레벨 (기본값: None -> 환경변수 LOG_LEVEL 또는 INFO 사용)

    Returns:
        설정된 logging.Logger 인스턴스
    """
    if level is None:
        level = os.getenv("LOG_LEVEL", "INFO")

    log_level = getattr(logging, level.upper(), logging.INFO)

    service_name = os.getenv("SERVICE_NAME", name)
    logger = logging.getLogger(service_name)
    logger.setLevel(log_level)

    # 재호출 시 핸들러가 중복 등록되지 않도록 비운다.
    if logger.handlers:
        logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(log_level)
    handler.setFormatter(JsonFormatter(service_name=service_name))
    logger.addHandler(handler)

    # 서비스 모듈 로거(ledger_service.*, common.*)는 루트 로거로 전파되므로
    # 루트에도 같은 핸들러를 붙인다.
    root_logger = logging.getLogger()
    if not root_logger.handlers:
        root_logger.addHandler(handler)
        root_logger.setLevel(log_level)

    return logger


def get_logger(name: str) -> logging.Logger:
    """모듈별 로거를 가져온다."""
    return logging.getLogger(name)


class JsonFormatter(logging.Formatter):
    """구조화 로그 수집을 위한 JSON 포맷터.

    - datetime, level, logger, message 필드를 기본으로 포함한다.
    - LEDGER_CONTEXT_KEYS 중 extra 로 전달된 값이 있으면 그대로 싣는다.
    - 예외 정보가 있으면 exc_info 필드에 문자열로 추가한다.
    """

    def __init__(self, service_name: str | None = None) -> None:
        super().__init__(datefmt="%Y-%m-%dT%H:%M:%S")
        self._service_name = service_name

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        log_record: dict[str, object] = {
            "datetime": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for key in LEDGER_CONTEXT_KEYS:
            if hasattr(record, key):
                log_record[key] = getattr(record, key)

        service_name = (
            getattr(record, "service_name", None)
            or self._service_name
            or os.getenv("SERVICE_NAME")
        )
        if service_name:
            log_record["service_name"] = service_name

        if record.exc_info:
            log_record["exc_info"] = self.formatException(record.exc_info)

        return json.dumps(log_record, ensure_ascii=False, default=str)
