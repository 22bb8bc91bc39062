from __future__ import annotations


class LedgerError(Exception):
    """Base exception for all credit-ledger errors.

    Every subclass carries a stable ``code`` that callers (HTTP handlers,
    webhook consumers) can rely on instead of parsing messages.
    """

    code = "ledger_error"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.code)
        self.message = message or self.code


class ValidationError(LedgerError):
    """Malformed input (zero/negative amount, unknown package, missing ids)."""

    code = "validation_error"


class NotFoundError(LedgerError):
    """User, payment, offer or subscription does not exist."""

    code = "not_found"


class InsufficientBalanceError(LedgerError):
    """A debit would drive the balance below zero."""

    code = "insufficient_balance"

    def __init__(self, user_id: str, requested: int, available: int) -> None:
        super().__init__(
            f"insufficient credits (user_id={user_id} requested={requested} available={available})"
        )
        self.user_id = user_id
        self.requested = requested
        self.available = available


class AlreadyClaimedError(LedgerError):
    """The reward key has already been consumed by this user."""

    code = "already_claimed"


class MaxClaimsReachedError(LedgerError):
    """A capped reward has no claims left."""

    code = "max_claims_reached"


class UnauthorizedError(LedgerError):
    """Caller lacks rights; normally enforced by the collaborator before the core."""

    code = "unauthorized"


class AmbiguousPaymentError(LedgerError):
    """Webhook identifiers resolve to more than one payment."""

    code = "ambiguous_payment"


class ConcurrentUpdateError(LedgerError):
    """Optimistic ledger append kept losing to concurrent writers."""

    code = "concurrent_update"


class LedgerWriteConflict(Exception):
    """Raised by the ledger store when a unique index rejects an append.

    Internal to the store/service boundary; never surfaced to callers.
    """
