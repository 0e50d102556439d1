"""
Exception base classes shared by every app.

Services raise these for conditions a caller is expected to handle and
convert them to a ServiceResult with ``ServiceResult.from_exception``,
which keeps the error code and details.

Hierarchy:
    BaseApplicationError
    ├── NotFoundError - Record missing or not visible to the caller
    ├── ConflictError - Record is in the wrong state or locked elsewhere
    └── ExternalServiceError - A third-party call failed

Usage:
    from core.exceptions import NotFoundError

    raise NotFoundError(
        f"PayoutRequest {payout_id} not found",
        error_code="PAYOUTREQUEST_NOT_FOUND",
        details={"payout_id": str(payout_id)},
    )
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from typing import Any


class BaseApplicationError(Exception):
    """
    Error with a machine-readable code and structured context.

    Attributes:
        message: Text safe to show to the API client
        error_code: Stable code clients and views branch on
        details: Ids, amounts or states that explain the failure
    """

    default_error_code: str = "APPLICATION_ERROR"

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.default_error_code
        self.details = dict(details) if details else {}

    def to_dict(self) -> dict[str, Any]:
        """Payload for an error response; ``details`` only when non-empty."""
        payload: dict[str, Any] = {"error": self.message, "error_code": self.error_code}
        if self.details:
            payload["details"] = self.details
        return payload

    def __str__(self) -> str:
        return f"[{self.error_code}] {self.message}"

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(message={self.message!r}, "
            f"error_code={self.error_code!r}, details={self.details!r})"
        )


class NotFoundError(BaseApplicationError):
    default_error_code: str = "NOT_FOUND"


class ConflictError(BaseApplicationError):
    """
    The operation does not fit the record's current state.

    Covers refused state transitions and lock contention; views answer
    these with 409.
    """

    default_error_code: str = "CONFLICT"


class ExternalServiceError(BaseApplicationError):
    """
    A call to an outside service failed.

    ``message`` is shown to clients, so put provider internals in the log
    rather than in the message.
    """

    default_error_code: str = "EXTERNAL_SERVICE_ERROR"
