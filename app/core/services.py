"""
Service layer primitives.

Settlement operations return a ServiceResult instead of raising for
outcomes a client is expected to see: a refused refund, a wrong
completion code, a gateway that is down. Views turn the result into a
response; ``error_code`` decides the HTTP status. Bugs and database
failures still raise.

Usage:
    from core.services import BaseService, ServiceResult

    class PayoutService(BaseService):
        @classmethod
        def request_payout(cls, technician, amount_paise) -> ServiceResult[dict]:
            if amount_paise < settings.PAYOUT_MIN_THRESHOLD_PAISE:
                return ServiceResult.failure(
                    "Amount below payout threshold",
                    error_code="INSUFFICIENT_BALANCE",
                    details={"minimum_paise": settings.PAYOUT_MIN_THRESHOLD_PAISE},
                )
            ...
            return ServiceResult.success({"payout_id": str(payout.id)})
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Generic, TypeVar

if TYPE_CHECKING:
    from typing import Any

T = TypeVar("T")


@dataclass
class ServiceResult(Generic[T]):
    """
    Outcome of a service call.

    Attributes:
        success: True when the operation took effect (or was already done)
        data: Payload on success
        error: Client-facing message on failure
        error_code: Stable failure code, mapped to a status by the views
        errors: Per-field messages for input problems
        details: Extra failure context such as remaining attempts or balances
    """

    success: bool
    data: T | None = None
    error: str | None = None
    error_code: str | None = None
    errors: dict[str, list[str]] | None = None
    details: dict[str, Any] | None = None

    @classmethod
    def success(cls, data: T) -> ServiceResult[T]:
        return cls(success=True, data=data)

    @classmethod
    def failure(
        cls,
        error: str,
        error_code: str | None = None,
        errors: dict[str, list[str]] | None = None,
        details: dict[str, Any] | None = None,
    ) -> ServiceResult[T]:
        """
        Example:
            return ServiceResult.failure(
                "Completion code expired",
                error_code="OTP_EXPIRED_OR_EXHAUSTED",
            )
        """
        return cls(
            success=False,
            error=error,
            error_code=error_code,
            errors=errors,
            details=details,
        )

    @classmethod
    def from_exception(cls, exc: Exception, error_code: str | None = None) -> ServiceResult[T]:
        """
        Failure built from a caught exception.

        Application errors keep their own code and details. Anything else
        is reported under its upper-cased class name.
        """
        code = error_code or getattr(exc, "error_code", None) or type(exc).__name__.upper()
        return cls(
            success=False,
            error=getattr(exc, "message", str(exc)),
            error_code=code,
            details=getattr(exc, "details", None) or None,
        )

    def to_response(self) -> dict[str, Any]:
        """Response body; empty optional fields are left out."""
        if self.success:
            return {"success": True, "data": self.data}

        body: dict[str, Any] = {"success": False, "error": self.error}
        for key in ("error_code", "errors", "details"):
            value = getattr(self, key)
            if value:
                body[key] = value
        return body

    def __bool__(self) -> bool:
        return self.success


class BaseService:
    """
    Stateless service namespace.

    Operations are classmethods. Expected failures come back as a
    ServiceResult; unexpected ones raise.
    """

    @classmethod
    def get_logger(cls) -> logging.Logger:
        """Logger named ``<module>.<ServiceClass>``."""
        return logging.getLogger(f"{cls.__module__}.{cls.__name__}")
