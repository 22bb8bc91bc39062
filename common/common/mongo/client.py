from __future__ import annotations

import logging
import threading
from typing import Callable, Optional

from pymongo import MongoClient
from pymongo.database import Database

from .config import get_mongo_db_name, get_mongo_timeout_ms, get_mongo_uri


logger = logging.getLogger(__name__)


IndexInitializer = Callable[[Database], None]


class MongoHandle:
    """지연 초기화되는 MongoDB 연결 핸들.

    - 프로세스 전역 싱글톤 대신, 애플리케이션 lifespan 에서 명시적으로
      start()/stop() 하고 의존성 주입으로 전달한다.
    - 최초 접근 시 연결을 열고 ping 으로 검증한 뒤, 전달받은 인덱스 초기화 함수를
      한 번만 실행한다.
    - 모든 연산에 MONGO_TIMEOUT_MS 상한을 적용해 무기한 대기를 막는다.
    """

    def __init__(
        self,
        *,
        uri: str | None = None,
        db_name: str | None = None,
        timeout_ms: int | None = None,
        index_initializer: IndexInitializer | None = None,
    ) -> None:
        self._uri = uri
        self._db_name = db_name
        self._timeout_ms = timeout_ms
        self._index_initializer = index_initializer
        self._client: Optional[MongoClient] = None
        self._db: Optional[Database] = None
        self._lock = threading.Lock()

    @property
    def started(self) -> bool:
        return self._client is not None

    def start(self) -> Database:
        """연결을 열고 기본 Database 를 반환한다. 이미 열려 있으면 그대로 반환한다."""

        if self._db is not None:
            return self._db

        with self._lock:
            if self._db is not None:
                return self._db

            uri = self._uri or get_mongo_uri()
            timeout_ms = self._timeout_ms or get_mongo_timeout_ms()
            client: MongoClient = MongoClient(
                uri,
                serverSelectionTimeoutMS=timeout_ms,
                connectTimeoutMS=timeout_ms,
                timeoutMS=timeout_ms,
                retryReads=True,
                retryWrites=True,
                tz_aware=True,
            )

            try:
                client.admin.command("ping")
            except Exception as exc:  # noqa: BLE001
                client.close()
                raise RuntimeError(f"failed to connect to MongoDB: {exc}") from exc

            db_name = self._db_name or get_mongo_db_name()
            try:
                db = client[db_name] if db_name else client.get_default_database()
            except Exception as exc:  # noqa: BLE001
                client.close()
                raise RuntimeError(
                    "MongoDB database name must be specified via MONGO_DB_NAME or in MONGO_URI (mongodb://.../db_name)",
                ) from exc

            if self._index_initializer is not None:
                try:
                    self._index_initializer(db)
                except Exception as exc:  # noqa: BLE001
                    # 유니크 인덱스가 없으면 원장 불변식을 보장할 수 없으므로 치명적 오류다.
                    logger.error("failed to ensure MongoDB indexes: %s", exc)
                    client.close()
                    raise

            self._client = client
            self._db = db
            logger.info(
                "MongoDB connected and indexes ensured (db=%s timeout_ms=%d)",
                db.name,
                timeout_ms,
            )
            return db

    def database(self) -> Database:
        """기본 Database 를 반환한다. 아직 열리지 않았다면 지연 연결한다."""

        if self._db is None:
            return self.start()
        return self._db

    def stop(self) -> None:
        with self._lock:
            if self._client is None:
                return
            self._client.close()
            self._client = None
            self._db = None
            logger.info("MongoDB connection closed")


_default_handle: Optional[MongoHandle] = None
_default_lock = threading.Lock()


def configure_default_handle(handle: MongoHandle) -> MongoHandle:
    """FastAPI 의존성(get_database)이 사용할 기본 핸들을 등록한다."""

    global _default_handle
    with _default_lock:
        _default_handle = handle
    return handle


def get_default_handle() -> MongoHandle:
    global _default_handle
    if _default_handle is None:
        with _default_lock:
            if _default_handle is None:
                _default_handle = MongoHandle()
    return _default_handle


def get_database() -> Database:
    """FastAPI DI용 기본 Database 팩토리."""

    return get_default_handle().database()
