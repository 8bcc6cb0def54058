"""Registration error types."""

from enum import Enum


class FailureCause(str, Enum):
    """Why a deposit did not succeed."""

    CREDENTIALS = "credentials"
    OWNERSHIP = "ownership"
    RATE_LIMITED = "rate_limited"
    SERVER_ERROR = "server_error"
    NETWORK_ERROR = "network_error"
    REJECTED = "rejected"
    NOT_CONFIGURED = "not_configured"

    @property
    def is_configuration_error(self) -> bool:
        """Operator must fix secrets or prefix ownership; retrying will not help."""
        return self in (
            FailureCause.CREDENTIALS,
            FailureCause.OWNERSHIP,
            FailureCause.NOT_CONFIGURED,
        )


class DepositValidationError(Exception):
    """Raised when a record lacks fields the registration authority requires."""

    def __init__(self, reasons: list[str]):
        self.reasons = reasons
        super().__init__("; ".join(reasons))


class TransientDepositError(Exception):
    """A deposit attempt failed in a way that may succeed if retried."""

    def __init__(
        self,
        cause: FailureCause,
        reason: str,
        retry_after: float | None = None,
    ):
        self.cause = cause
        self.reason = reason
        self.retry_after = retry_after
        self.attempts = 0
        super().__init__(reason)
