from __future__ import annotations

import logging
import os
import threading
from contextlib import asynccontextmanager

from fastapi import FastAPI

from common.eventbus.kafka import close_kafka_event_bus
from common.logger import setup_logger
from common.mongo.client import MongoHandle, configure_default_handle

from .api.errors import register_exception_handlers
from .api.health import router as health_router
from .api.v1 import api_router
from .event_handlers.payment_webhook_handler import run_payment_webhook_consumer
from .repositories.indexes import ensure_ledger_indexes


logger = logging.getLogger(__name__)


WEBHOOK_CONSUMER_ENV = "LEDGER_WEBHOOK_CONSUMER_ENABLED"


def _webhook_consumer_enabled() -> bool:
    return os.getenv(WEBHOOK_CONSUMER_ENV, "").strip().lower() in {"1", "true", "yes"}


@asynccontextmanager
async def lifespan(app: FastAPI):  # pragma: no cover - framework hook
    """애플리케이션 생명주기 동안 연결과 백그라운드 작업을 관리한다.

    - MongoDB 연결 (기동 시 유니크 인덱스 보장)
    - 결제 웹훅 Kafka 컨슈머 스레드 (LEDGER_WEBHOOK_CONSUMER_ENABLED 일 때만)
    """

    handle = configure_default_handle(
        MongoHandle(index_initializer=ensure_ledger_indexes)
    )
    handle.start()

    webhook_stop_flag = [False]
    webhook_thread: threading.Thread | None = None
    if _webhook_consumer_enabled():
        webhook_thread = threading.Thread(
            target=run_payment_webhook_consumer,
            args=(webhook_stop_flag,),
            name="payment-webhook-consumer",
            daemon=True,
        )
        webhook_thread.start()

    try:
        yield
    finally:
        webhook_stop_flag[0] = True
        if webhook_thread is not None:
            webhook_thread.join(timeout=10.0)
        close_kafka_event_bus()
        handle.stop()


def create_app() -> FastAPI:
    setup_logger(name="credit-ledger")
    app = FastAPI(
        title="Credit Ledger Service",
        version="0.1.0",
        lifespan=lifespan,
    )

    register_exception_handlers(app)
    app.include_router(health_router)
    app.include_router(api_router, prefix="/api/v1")

    return app


app = create_app()


def main() -> None:
    """명령행에서 실행할 수 있도록 uvicorn 런처를 제공한다."""

    import uvicorn

    port = int(os.getenv("LEDGER_SERVICE_PORT", "8005"))
    uvicorn.run("ledger_service.app.main:app", host="0.0.0.0", port=port, reload=False)


if __name__ == "__main__":  # pragma: no cover - CLI entrypoint
    main()
