from __future__ import annotations

import threading
from dataclasses import dataclass

import pytest

from ledger_service.app.config import CreditPackage, LedgerSettings
from ledger_service.app.errors import (
    ConcurrentUpdateError,
    InsufficientBalanceError,
    LedgerWriteConflict,
    ValidationError,
)
from ledger_service.app.models.credit import (
    AdjustAction,
    CreditSource,
    CreditTransaction,
    TransactionType,
)
from ledger_service.app.services.credit_service import CreditService
from ledger_service.app.services.notifier import LedgerEventPublisher
from ledger_service.tests.fakes import (
    FakeCreditTransactionRepository,
    FakeEventBus,
    FixedClock,
)


@dataclass
class CreditFixture:
    service: CreditService
    repo: FakeCreditTransactionRepository
    bus: FakeEventBus
    clock: FixedClock


def _build_fixture(max_write_attempts: int = 1000) -> CreditFixture:
    repo = FakeCreditTransactionRepository()
    bus = FakeEventBus()
    clock = FixedClock()
    service = CreditService(
        repo,
        publisher=LedgerEventPublisher(bus),
        settings=LedgerSettings(max_write_attempts=max_write_attempts),
        packages=[CreditPackage(credits=100, price=5.0), CreditPackage(500, 20.0, 50)],
        clock=clock,
    )
    return CreditFixture(service=service, repo=repo, bus=bus, clock=clock)


def _grant(service: CreditService, user_id: str, amount: int, **kwargs) -> CreditTransaction:
    return service.add_credits(
        user_id,
        amount,
        source=kwargs.pop("source", CreditSource.PROMOTION),
        description=kwargs.pop("description", "test grant"),
        **kwargs,
    )


def test_get_balance_is_zero_for_user_without_transactions() -> None:
    fx = _build_fixture()

    assert fx.service.get_balance("user-1") == 0


def test_add_credits_starts_sequence_at_one_and_tracks_balance() -> None:
    fx = _build_fixture()

    first = _grant(fx.service, "user-1", 100)
    second = _grant(fx.service, "user-1", 20)

    assert (first.sequence, first.balance_after) == (1, 100)
    assert (second.sequence, second.balance_after) == (2, 120)
    assert fx.service.get_balance("user-1") == 120
    assert fx.service.get_balance("user-2") == 0


def test_add_credits_rejects_non_positive_amount() -> None:
    fx = _build_fixture()

    with pytest.raises(ValidationError):
        _grant(fx.service, "user-1", 0)
    with pytest.raises(ValidationError):
        _grant(fx.service, "user-1", -5)

    assert fx.repo.items == []


def test_add_credits_rejects_debit_transaction_type() -> None:
    fx = _build_fixture()

    with pytest.raises(ValidationError):
        _grant(fx.service, "user-1", 10, type=TransactionType.USED)


def test_use_credits_records_negative_amount() -> None:
    fx = _build_fixture()
    _grant(fx.service, "user-1", 100)

    tx = fx.service.use_credits("user-1", 30, description="build app")

    assert tx.amount == -30
    assert tx.type == TransactionType.USED
    assert tx.source == CreditSource.APP_DEVELOPMENT
    assert tx.balance_after == 70


def test_use_credits_raises_insufficient_balance_and_writes_nothing() -> None:
    fx = _build_fixture()
    _grant(fx.service, "user-1", 50)

    with pytest.raises(InsufficientBalanceError) as exc_info:
        fx.service.use_credits("user-1", 51, description="too much")

    assert exc_info.value.requested == 51
    assert exc_info.value.available == 50
    assert fx.service.get_balance("user-1") == 50
    assert len(fx.repo.for_user("user-1")) == 1


def test_add_credits_with_same_idempotency_key_records_once() -> None:
    fx = _build_fixture()

    first = _grant(fx.service, "user-1", 100, idempotency_key="payment:abc")
    again = _grant(fx.service, "user-1", 100, idempotency_key="payment:abc")

    assert again.id == first.id
    assert fx.service.get_balance("user-1") == 100
    assert fx.bus.types() == ["credit.granted"]


def test_add_credits_rejects_idempotency_key_owned_by_another_user() -> None:
    fx = _build_fixture()
    _grant(fx.service, "user-1", 100, idempotency_key="payment:abc")

    with pytest.raises(ValidationError):
        _grant(fx.service, "user-2", 100, idempotency_key="payment:abc")


def test_concurrent_add_credits_serialize_into_contiguous_sequences() -> None:
    fx = _build_fixture()
    workers, per_worker, amount = 8, 25, 4
    errors: list[BaseException] = []

    def work() -> None:
        try:
            for _ in range(per_worker):
                _grant(fx.service, "user-1", amount)
        except BaseException as exc:  # noqa: BLE001
            errors.append(exc)

    threads = [threading.Thread(target=work) for _ in range(workers)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    ledger = fx.repo.for_user("user-1")
    assert [tx.sequence for tx in ledger] == list(range(1, workers * per_worker + 1))
    assert fx.service.get_balance("user-1") == workers * per_worker * amount
    for prev, cur in zip(ledger, ledger[1:]):
        assert cur.balance_after == prev.balance_after + cur.amount


def test_concurrent_use_credits_never_overdraws() -> None:
    fx = _build_fixture()
    _grant(fx.service, "user-1", 100)
    succeeded: list[CreditTransaction] = []
    rejected: list[InsufficientBalanceError] = []
    lock = threading.Lock()

    def work() -> None:
        try:
            tx = fx.service.use_credits("user-1", 10, description="debit")
        except InsufficientBalanceError as exc:
            with lock:
                rejected.append(exc)
            return
        with lock:
            succeeded.append(tx)

    threads = [threading.Thread(target=work) for _ in range(20)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(succeeded) == 10
    assert len(rejected) == 10
    assert fx.service.get_balance("user-1") == 0
    assert all(tx.balance_after >= 0 for tx in fx.repo.for_user("user-1"))


class AlwaysConflictingRepository(FakeCreditTransactionRepository):
    def append(self, tx: CreditTransaction) -> CreditTransaction:
        self.append_calls += 1
        raise LedgerWriteConflict("always")


def test_add_credits_gives_up_after_max_write_attempts() -> None:
    repo = AlwaysConflictingRepository()
    service = CreditService(repo, settings=LedgerSettings(max_write_attempts=3))

    with pytest.raises(ConcurrentUpdateError):
        service.add_credits(
            "user-1", 10, source=CreditSource.PROMOTION, description="grant"
        )

    assert repo.append_calls == 3


def test_verify_balance_matches_sum_of_amounts() -> None:
    fx = _build_fixture()
    _grant(fx.service, "user-1", 100)
    fx.service.use_credits("user-1", 30, description="debit")
    _grant(fx.service, "user-1", 5)

    check = fx.service.verify_balance("user-1")

    assert check.balance == 75
    assert check.calculated_balance == 75
    assert check.transaction_count == 3
    assert check.consistent is True


def test_get_history_returns_newest_first() -> None:
    fx = _build_fixture()
    for amount in (1, 2, 3):
        _grant(fx.service, "user-1", amount)

    items, total = fx.service.get_history("user-1", page=1, page_size=2)

    assert total == 3
    assert [tx.sequence for tx in items] == [3, 2]


def test_refund_credits_appends_compensating_transaction() -> None:
    fx = _build_fixture()
    _grant(fx.service, "user-1", 100)
    fx.service.use_credits("user-1", 40, description="debit")

    tx = fx.service.refund_credits("user-1", 40, description="build failed")

    assert tx.type == TransactionType.REFUNDED
    assert tx.source == CreditSource.REFUND
    assert tx.balance_after == 100
    assert len(fx.repo.for_user("user-1")) == 3


def test_adjust_balance_set_writes_only_the_difference() -> None:
    fx = _build_fixture()
    _grant(fx.service, "user-1", 100)

    previous, tx = fx.service.adjust_balance(
        "user-1", action=AdjustAction.SET, amount=40, admin_id="admin-1"
    )

    assert previous == 100
    assert tx is not None
    assert tx.amount == -60
    assert tx.metadata["admin_id"] == "admin-1"
    assert fx.service.get_balance("user-1") == 40


def test_adjust_balance_set_to_current_balance_writes_nothing() -> None:
    fx = _build_fixture()
    _grant(fx.service, "user-1", 100)

    previous, tx = fx.service.adjust_balance(
        "user-1", action=AdjustAction.SET, amount=100, admin_id="admin-1"
    )

    assert (previous, tx) == (100, None)
    assert len(fx.repo.for_user("user-1")) == 1


def test_adjust_balance_remove_cannot_overdraw() -> None:
    fx = _build_fixture()
    _grant(fx.service, "user-1", 10)

    with pytest.raises(InsufficientBalanceError):
        fx.service.adjust_balance(
            "user-1", action=AdjustAction.REMOVE, amount=11, admin_id="admin-1"
        )


def test_use_credits_publishes_used_event_with_positive_amount() -> None:
    fx = _build_fixture()
    _grant(fx.service, "user-1", 100)

    fx.service.use_credits("user-1", 25, description="debit")

    _, evt = fx.bus.published[-1]
    assert evt.payload["type"] == "credit.used"
    assert evt.payload["amount"] == 25
    assert evt.payload["balance_after"] == 75


def test_publish_failure_does_not_fail_the_write() -> None:
    class BrokenBus:
        def publish(self, topic, event) -> None:
            raise RuntimeError("kafka down")

    repo = FakeCreditTransactionRepository()
    service = CreditService(repo, publisher=LedgerEventPublisher(BrokenBus()))

    tx = service.add_credits(
        "user-1", 10, source=CreditSource.PROMOTION, description="grant"
    )

    assert tx.balance_after == 10


@pytest.mark.parametrize(
    ("tokens", "provider", "expected"),
    [
        (0, None, 0),
        (150, "openai", 2),
        (1000, "anthropic", 15),
        (1000, "Ollama", 5),
        (1000, "unknown", 10),
    ],
)
def test_tokens_to_credits_rounds_up(tokens: int, provider: str | None, expected: int) -> None:
    assert CreditService.tokens_to_credits(tokens, provider) == expected


def test_find_package_matches_base_credits() -> None:
    fx = _build_fixture()

    package = fx.service.find_package(500)

    assert package is not None
    assert package.total_credits == 550
    assert fx.service.find_package(42) is None
