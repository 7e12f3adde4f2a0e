from typing import Optional


class BillingError(RuntimeError):
    """
    Base for every reconciliation failure.

    `operation` names the step that failed (e.g. "invoice_paid.apply_plan"),
    `cause` keeps the underlying exception when there is one, and `retryable`
    tells the webhook layer whether asking Stripe to redeliver can help.
    """

    retryable = False

    def __init__(self, message: str, *, operation: Optional[str] = None, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.operation = operation
        self.cause = cause

    def __str__(self) -> str:
        msg = super().__str__()
        if self.operation:
            msg = f"{self.operation}: {msg}"
        if self.cause is not None:
            msg = f"{msg} ({type(self.cause).__name__}: {self.cause})"
        return msg


class MalformedPayload(BillingError):
    """Event envelope or object does not have the expected shape."""


class UserNotFound(BillingError):
    """No resolution strategy produced a user id."""


class AmbiguousPayload(UserNotFound):
    """Payload has no metadata id and no Stripe reference to look one up with."""


class NoMatchingRecord(BillingError):
    """A targeted update affected zero rows."""


class NoSuchUser(NoMatchingRecord):
    """The users row for a resolved id does not exist."""


class PersistenceError(BillingError):
    """Wraps a database failure with the operation that hit it."""

    retryable = True
