"""
Custom exceptions module.
"""

from exceptions.errors import (
    # Base exceptions
    AppError,
    NotFoundError,
    ValidationError,
    ConflictError,
    ExternalServiceError,

    # Store
    StoreUnavailableError,
    ConcurrentModificationError,

    # Not found
    ReplacementQueueNotFoundError,
    ReplacementItemNotFoundError,
    OrderNotFoundError,

    # Replacements
    InvalidDeficitError,
    InvalidTransitionError,
    ItemNotMergeableError,
    NoUrgentItemsError,
)

__all__ = [
    # Base
    "AppError",
    "NotFoundError",
    "ValidationError",
    "ConflictError",
    "ExternalServiceError",

    # Store
    "StoreUnavailableError",
    "ConcurrentModificationError",

    # Not found
    "ReplacementQueueNotFoundError",
    "ReplacementItemNotFoundError",
    "OrderNotFoundError",

    # Replacements
    "InvalidDeficitError",
    "InvalidTransitionError",
    "ItemNotMergeableError",
    "NoUrgentItemsError",
]
