"""
Pydantic models for validation and serialization.
"""

from models.base import (
    BaseSchema,
    TimestampMixin,
    Actor,
)
from models.order import (
    OrderStatus,
    DayOfWeek,
    OrderItem,
    Order,
    TemplateItem,
    Template,
    URGENT_REPLACEMENT_ORIGIN,
)
from models.replacement import (
    ReplacementPriority,
    ReplacementStatus,
    TERMINAL_STATUSES,
    OPEN_STATUSES,
    is_terminal,
    is_valid_replacement_transition,
    DeficitReport,
    ReplacementItem,
    ReplacementQueue,
    QueueListResponse,
    ReplacementStatusUpdate,
    MergeRequest,
    UrgentOrderRequest,
    ReceivedLine,
    ReceptionReport,
    MergeResult,
    UrgentOrderResponse,
    AutoMergeResult,
    BranchMergeFailure,
    AutoMergeAllResult,
)

__all__ = [
    # Base
    "BaseSchema",
    "TimestampMixin",
    "Actor",

    # Orders
    "OrderStatus",
    "DayOfWeek",
    "OrderItem",
    "Order",
    "TemplateItem",
    "Template",
    "URGENT_REPLACEMENT_ORIGIN",

    # Replacements
    "ReplacementPriority",
    "ReplacementStatus",
    "TERMINAL_STATUSES",
    "OPEN_STATUSES",
    "is_terminal",
    "is_valid_replacement_transition",
    "DeficitReport",
    "ReplacementItem",
    "ReplacementQueue",
    "QueueListResponse",
    "ReplacementStatusUpdate",
    "MergeRequest",
    "UrgentOrderRequest",
    "ReceivedLine",
    "ReceptionReport",
    "MergeResult",
    "UrgentOrderResponse",
    "AutoMergeResult",
    "BranchMergeFailure",
    "AutoMergeAllResult",
]
