from __future__ import annotations

import pytest

from common.eventbus.core import Event
from common.eventbus.topics import TOPIC_PAYMENT_WEBHOOK

from ledger_service.app.errors import NotFoundError, ValidationError
from ledger_service.app.event_handlers import payment_webhook_handler
from ledger_service.app.models.payment import (
    Payment,
    PaymentType,
    SettlementOutcome,
    SettlementResult,
    WebhookPayload,
)
from ledger_service.tests.fakes import FixedClock


class FakeSettlementService:
    def __init__(self) -> None:
        self.received: list[WebhookPayload] = []
        self.raise_error: Exception | None = None

    def settle_payment_webhook(self, payload: WebhookPayload) -> SettlementResult:
        if self.raise_error is not None:
            raise self.raise_error
        self.received.append(payload)
        now = FixedClock()()
        payment = Payment(
            id="pay-1",
            user_id="user-1",
            type=PaymentType.CREDITS,
            amount=9.99,
            credits_purchased=50,
            created_at=now,
            updated_at=now,
        )
        return SettlementResult(payment=payment, outcome=SettlementOutcome.COMPLETED)


class FakeKafkaEventBus:
    instances: list["FakeKafkaEventBus"] = []
    next_event: Event | None = None

    def __init__(self, brokers: str) -> None:
        self.brokers = brokers
        self.subscribe_calls: list[dict] = []
        self.closed = False
        self.__class__.instances.append(self)

    def subscribe(self, *, group_id, topic, handler, stop_flag) -> None:
        self.subscribe_calls.append(
            {
                "group_id": group_id,
                "topic": topic,
                "handler": handler,
                "stop_flag": stop_flag,
            }
        )
        if self.__class__.next_event is not None:
            handler(self.__class__.next_event)

    def publish(self, topic: str, event: Event) -> None:  # pragma: no cover
        pass

    def close(self) -> None:
        self.closed = True


@pytest.fixture(autouse=True)
def reset_fake_kafka_event_bus_state() -> None:
    FakeKafkaEventBus.instances = []
    FakeKafkaEventBus.next_event = None


def _run_consumer_once(
    monkeypatch: pytest.MonkeyPatch,
    *,
    event: Event | None,
    service: FakeSettlementService | None = None,
) -> tuple[FakeSettlementService, FakeKafkaEventBus, list[bool]]:
    local_service = service or FakeSettlementService()
    FakeKafkaEventBus.next_event = event
    monkeypatch.setattr(payment_webhook_handler, "get_brokers", lambda: "kafka:9092")
    monkeypatch.setattr(payment_webhook_handler, "get_group_id", lambda: "ledger-group")
    monkeypatch.setattr(payment_webhook_handler, "KafkaEventBus", FakeKafkaEventBus)

    stop_flag = [False]
    payment_webhook_handler.run_payment_webhook_consumer(
        stop_flag, lambda bus: local_service  # type: ignore[arg-type, return-value]
    )

    assert len(FakeKafkaEventBus.instances) == 1
    return local_service, FakeKafkaEventBus.instances[0], stop_flag


def _webhook_payload(**overrides) -> dict:
    payload = {
        "event": "PAYMENT.CAPTURE.COMPLETED",
        "paymentId": "CAPTURE-1",
        "orderId": "ORDER-1",
        "status": "COMPLETED",
        "amount": 9.99,
        "processor": "paypal",
    }
    payload.update(overrides)
    return payload


def test_consumer_settles_webhook_payload(monkeypatch: pytest.MonkeyPatch) -> None:
    event = Event(id="evt-1", payload=_webhook_payload())
    service, bus, stop_flag = _run_consumer_once(monkeypatch, event=event)

    assert len(service.received) == 1
    webhook = service.received[0]
    assert webhook.payment_id == "CAPTURE-1"
    assert webhook.order_id == "ORDER-1"
    assert webhook.processor == "paypal"

    subscribe_call = bus.subscribe_calls[0]
    assert subscribe_call["group_id"] == "ledger-group"
    assert subscribe_call["topic"].base == TOPIC_PAYMENT_WEBHOOK.base
    assert subscribe_call["stop_flag"] is stop_flag
    assert bus.closed is True


def test_consumer_ignores_payload_that_is_not_dict(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    service, bus, _ = _run_consumer_once(
        monkeypatch, event=Event(id="evt-2", payload="not-a-dict")
    )

    assert service.received == []
    assert bus.closed is True


def test_consumer_drops_payload_missing_required_fields(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    event = Event(id="evt-3", payload={"paymentId": "CAPTURE-1"})
    service, _, _ = _run_consumer_once(monkeypatch, event=event)

    assert service.received == []


def test_consumer_drops_webhook_rejected_as_invalid(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    service = FakeSettlementService()
    service.raise_error = ValidationError("webhook must carry paymentId or orderId")

    _run_consumer_once(
        monkeypatch, event=Event(id="evt-4", payload=_webhook_payload()), service=service
    )

    assert FakeKafkaEventBus.instances[0].closed is True


def test_consumer_propagates_unknown_payment_for_retry(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    service = FakeSettlementService()
    service.raise_error = NotFoundError("payment not found")

    with pytest.raises(NotFoundError):
        _run_consumer_once(
            monkeypatch,
            event=Event(id="evt-5", payload=_webhook_payload()),
            service=service,
        )

    assert FakeKafkaEventBus.instances[0].closed is True


def test_consumer_subscribes_and_closes_bus_without_event(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    service, bus, _ = _run_consumer_once(monkeypatch, event=None)

    assert service.received == []
    assert bus.brokers == "kafka:9092"
    assert len(bus.subscribe_calls) == 1
    assert bus.closed is True
