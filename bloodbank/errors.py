"""Error taxonomy and the result type returned by core mutations."""

from dataclasses import dataclass
from enum import Enum
from typing import Any


class BloodBankError(Exception):
    """Base class for every error raised by the blood bank core."""


class ValidationError(BloodBankError, ValueError):
    """Malformed quantity, date or enum value. Raised before any mutation."""


class NotFoundError(BloodBankError, LookupError):
    """No matching record, request, test or profile."""


class PreconditionFailed(BloodBankError):
    """Insufficient units, already blocked, blocked stock, and the like."""


class StorageError(BloodBankError):
    """The durable write failed; the operation was not applied."""


class Failure(str, Enum):
    NOT_FOUND = "not_found"
    BLOCKED = "blocked"
    INSUFFICIENT_UNITS = "insufficient_units"
    ALREADY_BLOCKED = "already_blocked"
    NOT_BLOCKED = "not_blocked"
    ALREADY_COMPLETED = "already_completed"
    TYPE_KNOWN = "type_known"


_FAILURE_MESSAGES = {
    Failure.NOT_FOUND: "no matching entry",
    Failure.BLOCKED: "stock is blocked",
    Failure.INSUFFICIENT_UNITS: "insufficient units",
    Failure.ALREADY_BLOCKED: "stock is already blocked",
    Failure.NOT_BLOCKED: "stock is not blocked",
    Failure.ALREADY_COMPLETED: "test already completed",
    Failure.TYPE_KNOWN: "blood type already known",
}


@dataclass(frozen=True)
class Outcome:
    """Result of a core operation whose failures are ordinary logic.

    Truthy on success. ``value`` carries whatever the operation produced
    (the updated record, the completed test, ...).
    """

    ok: bool
    failure: Failure | None = None
    value: Any = None
    detail: str = ""

    def __bool__(self) -> bool:
        return self.ok

    @classmethod
    def success(cls, value: Any = None) -> "Outcome":
        return cls(ok=True, value=value)

    @classmethod
    def fail(cls, failure: Failure, detail: str = "") -> "Outcome":
        return cls(ok=False, failure=failure, detail=detail or _FAILURE_MESSAGES[failure])

    def raise_for_failure(self) -> "Outcome":
        """Raise NotFoundError / PreconditionFailed for a failed outcome."""
        if self.ok:
            return self
        if self.failure is Failure.NOT_FOUND:
            raise NotFoundError(self.detail)
        raise PreconditionFailed(self.detail)
