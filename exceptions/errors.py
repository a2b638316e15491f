"""
Custom exception classes for the application.

Every error carries a stable code so the dashboard can render a specific
message instead of a generic failure.
"""

from typing import Optional, Any
from datetime import datetime, timezone


class AppError(Exception):
    """
    Base exception for all application errors.

    All custom exceptions inherit from this.

    Attributes:
        code: Error code (e.g., "ITEM_NOT_MERGEABLE")
        message: Human-readable message
        status_code: HTTP status code
        details: Additional context
    """

    def __init__(
        self,
        code: str,
        message: str,
        status_code: int = 500,
        details: Optional[dict[str, Any]] = None
    ):
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        self.timestamp = datetime.now(timezone.utc).isoformat()
        super().__init__(message)

    def to_dict(self) -> dict:
        """Convert to API response format."""
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "details": self.details,
                "timestamp": self.timestamp
            }
        }


class NotFoundError(AppError):
    """Resource not found (404)."""

    def __init__(
        self,
        resource: str,
        identifier: str,
        code: Optional[str] = None
    ):
        super().__init__(
            code=code or f"{resource.upper()}_NOT_FOUND",
            message=f"{resource} not found",
            status_code=404,
            details={"id": identifier}
        )


class ValidationError(AppError):
    """Validation failed (422)."""

    def __init__(
        self,
        message: str,
        code: str = "VALIDATION_ERROR",
        details: Optional[dict] = None
    ):
        super().__init__(
            code=code,
            message=message,
            status_code=422,
            details=details
        )


class ConflictError(AppError):
    """Conflict with existing resource (409)."""

    def __init__(
        self,
        message: str,
        code: str = "CONFLICT",
        details: Optional[dict] = None
    ):
        super().__init__(
            code=code,
            message=message,
            status_code=409,
            details=details
        )


class ExternalServiceError(AppError):
    """External service failure (503)."""

    def __init__(
        self,
        service: str,
        message: str,
        code: Optional[str] = None,
        details: Optional[dict] = None
    ):
        super().__init__(
            code=code or f"{service.upper()}_ERROR",
            message=message,
            status_code=503,
            details={"service": service, **(details or {})}
        )


# ===================
# STORE ERRORS
# ===================

class StoreUnavailableError(ExternalServiceError):
    """Document store could not be reached. Callers retry with backoff."""

    def __init__(self, operation: str, message: str, table: Optional[str] = None):
        super().__init__(
            service="store",
            code="STORE_UNAVAILABLE",
            message=f"Store {operation} failed: {message}",
            details={"operation": operation, "table": table}
        )


class ConcurrentModificationError(ConflictError):
    """A conditional write lost against another operator."""

    def __init__(self, resource: str, identifier: str):
        super().__init__(
            code="CONCURRENT_MODIFICATION",
            message=f"{resource} was modified by another operation, reload and retry",
            details={"resource": resource, "id": identifier}
        )


# ===================
# NOT FOUND ERRORS
# ===================

class ReplacementQueueNotFoundError(NotFoundError):
    """Replacement queue not found."""

    def __init__(self, queue_id: str):
        super().__init__(
            resource="Replacement queue",
            identifier=queue_id,
            code="REPLACEMENT_QUEUE_NOT_FOUND"
        )


class ReplacementItemNotFoundError(NotFoundError):
    """Replacement item not found."""

    def __init__(self, item_id: str):
        super().__init__(
            resource="Replacement item",
            identifier=item_id,
            code="REPLACEMENT_ITEM_NOT_FOUND"
        )


class OrderNotFoundError(NotFoundError):
    """Order not found."""

    def __init__(self, order_id: str):
        super().__init__(
            resource="Order",
            identifier=order_id,
            code="ORDER_NOT_FOUND"
        )


# ===================
# REPLACEMENT ERRORS
# ===================

class InvalidDeficitError(ValidationError):
    """Deficit report cannot become a replacement item."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(
            code="INVALID_DEFICIT",
            message=message,
            details=details
        )


class InvalidTransitionError(ValidationError):
    """Illegal replacement item status change."""

    def __init__(self, current_status: str, new_status: str, reason: Optional[str] = None):
        super().__init__(
            code="INVALID_TRANSITION",
            message=f"Cannot transition from {current_status} to {new_status}",
            details={
                "current_status": current_status,
                "new_status": new_status,
                "reason": reason or "Status can only move forward; merged, completed and cancelled are terminal"
            }
        )


class ItemNotMergeableError(ConflictError):
    """Replacement items cannot be merged into the target order."""

    def __init__(self, reason: str, item_ids: list[str], order_id: Optional[str] = None):
        super().__init__(
            code="ITEM_NOT_MERGEABLE",
            message=f"Items cannot be merged: {reason}",
            details={"reason": reason, "item_ids": item_ids, "order_id": order_id}
        )


class NoUrgentItemsError(ValidationError):
    """Queue has no urgent pending items to synthesize an order from."""

    def __init__(self, queue_id: str):
        super().__init__(
            code="NO_URGENT_ITEMS",
            message="Queue has no urgent pending items",
            details={"queue_id": queue_id}
        )
