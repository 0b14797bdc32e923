"""Error taxonomy for the purchasing service.

Every error carries a ``kind`` tag that callers and the HTTP surface use to
distinguish failures:

    invalid-argument     malformed or out-of-range input
    not-found            missing purchase, account link or payment method
    failed-precondition  wrong state for the requested transition
    aborted              record carries a persisted error, or CAS contention
    cancelled            purchase already cancelled
    already-exists       transition already completed
    unavailable          out-of-band channel missing or failing
    unknown              gateway or unexpected failure

The classes extend Protean's exception hierarchy so that code catching
``ValidationError`` / ``ObjectNotFoundError`` / ``InvalidOperationError``
keeps working against this service.
"""

from protean.exceptions import InvalidOperationError, ObjectNotFoundError, ValidationError


class PurchaseError(Exception):
    """Base class for all purchasing errors."""

    kind = "unknown"
    status_code = 500

    def __init__(self, message: str, field: str | None = None) -> None:
        Exception.__init__(self, message)
        self.message = message
        self.field = field
        self.messages = {field or self.kind: [message]}
        self.traceback = None

    def __str__(self) -> str:
        return self.message

    def to_dict(self) -> dict:
        return {"kind": self.kind, "message": self.message}


class InvalidArgumentError(PurchaseError, ValidationError):
    kind = "invalid-argument"
    status_code = 400


class NotFoundError(PurchaseError, ObjectNotFoundError):
    kind = "not-found"
    status_code = 404


class FailedPreconditionError(PurchaseError, InvalidOperationError):
    kind = "failed-precondition"
    status_code = 412


class AbortedError(PurchaseError, InvalidOperationError):
    kind = "aborted"
    status_code = 409


class ContentionError(AbortedError):
    """Compare-and-set retries exhausted while writing a record."""


class CancelledError(PurchaseError, InvalidOperationError):
    kind = "cancelled"
    status_code = 409


class AlreadyExistsError(PurchaseError, InvalidOperationError):
    kind = "already-exists"
    status_code = 409


class UnavailableError(PurchaseError):
    kind = "unavailable"
    status_code = 503


class GatewayError(PurchaseError):
    """Failure reported by the payment gateway."""

    def __init__(self, message: str, code: str | None = None) -> None:
        super().__init__(message)
        self.code = code


def classify(exc: Exception) -> PurchaseError:
    """Wrap an arbitrary exception so it carries a kind."""
    if isinstance(exc, PurchaseError):
        return exc
    return PurchaseError(str(exc) or exc.__class__.__name__)
