# Overview: Error taxonomy raised by the ledger engine and translated by the routes.

"""
Ledger errors.

Every failure the engine can report derives from LedgerError. Routes map
status_code onto the HTTP response; retryable tells callers whether the same
request may simply be sent again (BusyError) or has to be corrected first.

InvariantViolationError is the one "should never happen" case: it means a
balance went negative past every guard. It aborts the unit of work and is
surfaced as an internal error, never corrected silently.
"""

from __future__ import annotations


class LedgerError(Exception):
    status_code = 400
    retryable = False

    def __init__(self, message: str | None = None):
        super().__init__(message or self.default_message())

    @classmethod
    def default_message(cls) -> str:
        return cls.__name__

    def to_dict(self) -> dict:
        return {
            "error": str(self),
            "code": type(self).__name__,
            "retryable": self.retryable,
        }


class ValidationError(LedgerError, ValueError):
    """400-level input problem."""


class MinimumSpendingNotMet(ValidationError):
    @classmethod
    def default_message(cls) -> str:
        return "Minimum spending not met"


class NotARedemption(ValidationError):
    @classmethod
    def default_message(cls) -> str:
        return "Transaction is not a redemption"


class NotFoundError(LedgerError):
    status_code = 404


class UserNotFound(NotFoundError):
    @classmethod
    def default_message(cls) -> str:
        return "User not found"


class TransactionNotFound(NotFoundError):
    @classmethod
    def default_message(cls) -> str:
        return "Transaction not found"


class RelatedTransactionNotFound(NotFoundError):
    @classmethod
    def default_message(cls) -> str:
        return "Related transaction not found"


class PromotionNotFound(NotFoundError):
    @classmethod
    def default_message(cls) -> str:
        return "Promotion not found"


class EventNotFound(NotFoundError):
    @classmethod
    def default_message(cls) -> str:
        return "Event not found"


class ConflictError(LedgerError):
    """409-level business rule conflict."""
    status_code = 409


class PromotionAlreadyUsed(ConflictError):
    @classmethod
    def default_message(cls) -> str:
        return "Promotion already used"


class AlreadyProcessed(ConflictError):
    @classmethod
    def default_message(cls) -> str:
        return "Transaction has already been processed"


class SelfTransfer(ConflictError):
    @classmethod
    def default_message(cls) -> str:
        return "Cannot transfer points to yourself"


class AuthenticationError(LedgerError):
    """Missing, unknown, expired or revoked credentials."""
    status_code = 401

    @classmethod
    def default_message(cls) -> str:
        return "Authentication required"


class AuthorizationError(LedgerError):
    status_code = 403

    @classmethod
    def default_message(cls) -> str:
        return "Not authorized"


class InsufficientBalanceError(LedgerError):
    status_code = 400


class InsufficientPoints(InsufficientBalanceError):
    @classmethod
    def default_message(cls) -> str:
        return "Insufficient points"


class InsufficientEventPoints(InsufficientBalanceError):
    @classmethod
    def default_message(cls) -> str:
        return "Not enough points remaining for this event"


class InvariantViolationError(LedgerError):
    status_code = 500

    @classmethod
    def default_message(cls) -> str:
        return "Ledger invariant violated"


class BusyError(LedgerError):
    """The unit of work could not finish within its lock timeout."""
    status_code = 503
    retryable = True

    @classmethod
    def default_message(cls) -> str:
        return "Ledger is busy, retry the request"
