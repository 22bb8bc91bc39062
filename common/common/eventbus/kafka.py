from __future__ import annotations

import json
import logging
import threading
from dataclasses import asdict
from typing import Callable, Optional

from confluent_kafka import Consumer, KafkaError, Producer

from .config import get_optional_brokers
from .core import Event, MaxRetryExceededError, RetryDelays, Topic
from .helpers import event_from_dict

logger = logging.getLogger(__name__)


class KafkaEventBus:
    """Kafka 기반 EventBus 구현.

    - publish: 이벤트 id 를 메시지 키로 사용한다.
    - subscribe: 핸들러가 실패하면 retry.N 토픽으로, 재시도를 모두 소진하면 DLQ 로 보낸다.
      재시도/DLQ 발행까지 성공해야 오프셋을 커밋한다.
    """

    def __init__(self, brokers: str) -> None:
        self._producer = Producer({"bootstrap.servers": brokers})
        self._brokers = brokers

    def close(self) -> None:
        self._producer.flush()

    # 발행 -----------------------------------------------------------------
    def publish(self, topic: str, event: Event) -> None:
        payload = json.dumps(asdict(event), ensure_ascii=False, default=str).encode(
            "utf-8"
        )

        def _delivery_callback(err, msg) -> None:  # type: ignore[no-untyped-def]
            if err is not None:
                logger.error("failed to deliver message to %s: %s", msg.topic(), err)

        self._producer.produce(
            topic=topic,
            value=payload,
            key=event.id.encode("utf-8"),
            callback=_delivery_callback,
        )
        self._producer.poll(0)

    # 구독 -----------------------------------------------------------------
    def subscribe(
        self,
        group_id: str,
        topic: Topic,
        handler: Callable[[Event], None],
        *,
        poll_timeout: float = 0.1,
        stop_flag: list[bool] | None = None,
    ) -> None:
        consumer = Consumer(
            {
                "bootstrap.servers": self._brokers,
                "group.id": group_id,
                "auto.offset.reset": "earliest",
                "enable.auto.commit": False,
            }
        )
        consumer.subscribe([topic.base])

        try:
            logger.info(
                "Kafka consumer started. group_id=%s topic=%s", group_id, topic.base
            )
            while not (stop_flag and stop_flag[0]):
                msg = consumer.poll(poll_timeout)
                if msg is None:
                    continue
                if msg.error():
                    if msg.error().code() != KafkaError._PARTITION_EOF:
                        logger.error("consumer error: %s", msg.error())
                    continue

                try:
                    evt = event_from_dict(json.loads(msg.value()))
                except Exception as exc:  # noqa: BLE001
                    # 복원 불가능한 메시지는 재시도해도 의미가 없으므로 건너뛴다.
                    logger.error(
                        "invalid event payload on topic %s: %s", msg.topic(), exc
                    )
                    consumer.commit(message=msg, asynchronous=False)
                    continue

                try:
                    handler(evt)
                except Exception as exc:  # noqa: BLE001
                    if not self._route_failure(topic, evt, exc):
                        continue  # 커밋하지 않음 -> 다시 처리 시도

                try:
                    consumer.commit(message=msg, asynchronous=False)
                except Exception as exc:  # noqa: BLE001
                    logger.error("offset commit error: %s", exc)
        finally:
            consumer.close()

    def _route_failure(self, topic: Topic, evt: Event, exc: Exception) -> bool:
        """실패한 이벤트를 재시도 토픽 또는 DLQ 로 보낸다. 발행에 성공하면 True."""

        evt.last_error = str(exc)
        next_retry = evt.retry + 1
        try:
            destination = topic.get_retry_topic(next_retry)
        except MaxRetryExceededError:
            destination = topic.dlq()
            logger.error(
                "event %s exceeded max retry (%d), sending to DLQ %s: %s",
                evt.id,
                len(RetryDelays),
                destination,
                exc,
            )
        else:
            evt.retry = next_retry
            logger.warning(
                "event %s failed, scheduling retry %d/%d to %s: %s",
                evt.id,
                evt.retry,
                evt.max_retry,
                destination,
                exc,
            )

        try:
            self.publish(destination, evt)
        except Exception as pub_exc:  # noqa: BLE001
            logger.error(
                "failed to publish event %s to %s: %s", evt.id, destination, pub_exc
            )
            return False
        return True


_bus: Optional[KafkaEventBus] = None
_bus_lock = threading.Lock()


def get_kafka_event_bus() -> KafkaEventBus | None:
    """프로세스 공용 KafkaEventBus 를 지연 생성한다.

    KAFKA_BOOTSTRAP_SERVERS 가 설정되지 않았으면 None 을 반환한다.
    """

    global _bus
    if _bus is not None:
        return _bus

    brokers = get_optional_brokers()
    if brokers is None:
        return None

    with _bus_lock:
        if _bus is None:
            _bus = KafkaEventBus(brokers)
    return _bus


def close_kafka_event_bus() -> None:
    global _bus
    with _bus_lock:
        if _bus is not None:
            _bus.close()
            _bus = None
