"""
Replacement queue schemas for validation and serialization.

A replacement item is one deficit unit of a product at a branch. Status and
priority are independent axes: an urgent item still starts pending.
"""

from pydantic import Field
from typing import Optional
from enum import Enum
from datetime import datetime

from models.base import BaseSchema, TimestampMixin, Actor


class ReplacementPriority(str, Enum):
    """Triage priority of a deficit."""
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


class ReplacementStatus(str, Enum):
    """Replacement item lifecycle status."""
    PENDING = "pending"
    URGENT = "urgent"
    IN_QUEUE = "in_queue"
    MERGED = "merged"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset({
    ReplacementStatus.MERGED,
    ReplacementStatus.COMPLETED,
    ReplacementStatus.CANCELLED,
})

# Statuses whose quantity is still owed to the branch
OPEN_STATUSES = frozenset({
    ReplacementStatus.PENDING,
    ReplacementStatus.IN_QUEUE,
})

# Status order for transition validation (lower index = earlier in flow)
STATUS_ORDER = {
    ReplacementStatus.PENDING: 0,
    ReplacementStatus.URGENT: 1,
    ReplacementStatus.IN_QUEUE: 2,
    ReplacementStatus.MERGED: 3,
    ReplacementStatus.COMPLETED: 3,
    ReplacementStatus.CANCELLED: 3,
}


def is_terminal(status: ReplacementStatus) -> bool:
    """Merged, completed and cancelled items never change again."""
    return status in TERMINAL_STATUSES


def is_valid_replacement_transition(current: ReplacementStatus, new: ReplacementStatus) -> bool:
    """
    Check if a replacement status transition is valid.

    Rules:
    - Can skip forward (pending → merged is OK)
    - Cannot go backward or stay put (in_queue → pending is NOT OK)
    - merged, completed and cancelled are terminal
    """
    if is_terminal(current):
        return False

    return STATUS_ORDER[new] > STATUS_ORDER[current]


# ===================
# DEFICIT INPUT
# ===================

class DeficitReport(BaseSchema):
    """
    Shortfall reported by order reception or a factory denial.

    Urgency is signalled by the caller: requested_priority wins, otherwise
    critical escalates to urgent and nothing_received to high.
    """

    branch_id: str = Field(..., description="Branch owed the goods")
    branch_name: Optional[str] = Field(None, description="Branch display name")
    product_id: str = Field(..., description="Product id")
    product_name: str = Field(default="", description="Product display name")
    unit: str = Field(default="", description="Unit of measure")
    quantity: int = Field(..., description="Missing quantity")
    reason: str = Field(default="", description="Why the deficit occurred")
    source_order_id: Optional[str] = Field(None, description="Order whose reception produced the deficit")
    source_order_number: Optional[str] = None

    critical: bool = Field(default=False, description="Product flagged critical by the caller")
    nothing_received: bool = Field(default=False, description="Zero units of the line arrived")
    requested_priority: Optional[ReplacementPriority] = Field(
        None,
        description="Explicit priority chosen by the caller"
    )


# ===================
# REPLACEMENT ITEM
# ===================

class ReplacementItem(BaseSchema):
    """One deficit tracked in a branch queue."""

    id: Optional[str] = Field(None, description="Store-generated id")
    queue_id: Optional[str] = None
    branch_id: str
    product_id: str
    product_name: str = ""
    unit: str = ""
    quantity: int = Field(..., gt=0)
    priority: ReplacementPriority = ReplacementPriority.NORMAL
    status: ReplacementStatus = ReplacementStatus.PENDING
    reason: str = ""

    reported_at: datetime
    reported_by: Optional[str] = None
    reported_by_name: Optional[str] = None
    source_order_id: Optional[str] = None
    source_order_number: Optional[str] = None

    merged_at: Optional[datetime] = None
    merged_into_order_id: Optional[str] = None
    merged_by: Optional[str] = None
    queued_order_id: Optional[str] = None
    completed_at: Optional[datetime] = None
    completed_by: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    cancel_reason: Optional[str] = None
    updated_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return is_terminal(self.status)

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_STATUSES

    @property
    def is_urgent_pending(self) -> bool:
        return (
            self.priority == ReplacementPriority.URGENT
            and self.status == ReplacementStatus.PENDING
        )

    def carried_by_other_order(self, order_id: str) -> bool:
        """True when an urgent order other than order_id already carries this item."""
        return bool(self.queued_order_id) and self.queued_order_id != order_id


# ===================
# REPLACEMENT QUEUE
# ===================

class ReplacementQueue(BaseSchema, TimestampMixin):
    """
    Per-branch backlog of deficits, items in report order.

    The urgent/pending/completed classes are evaluated independently, so a
    queue may show up in more than one dashboard view.
    """

    id: str
    branch_id: str
    branch_name: Optional[str] = None
    items: list[ReplacementItem] = Field(default_factory=list)

    @property
    def is_urgent(self) -> bool:
        return any(item.is_urgent_pending for item in self.items)

    @property
    def is_pending(self) -> bool:
        return any(item.is_open for item in self.items)

    @property
    def is_completed(self) -> bool:
        return all(
            item.status in (ReplacementStatus.COMPLETED, ReplacementStatus.MERGED)
            for item in self.items
        )

    def find_item(self, item_id: str) -> Optional[ReplacementItem]:
        for item in self.items:
            if item.id == item_id:
                return item
        return None


class QueueListResponse(BaseSchema):
    """All queues plus the dashboard views computed over them."""

    data: list[ReplacementQueue]
    total: int
    urgent_queue_ids: list[str] = Field(default_factory=list)
    pending_queue_ids: list[str] = Field(default_factory=list)
    completed_queue_ids: list[str] = Field(default_factory=list)

    @classmethod
    def create(cls, queues: list[ReplacementQueue]) -> "QueueListResponse":
        return cls(
            data=queues,
            total=len(queues),
            urgent_queue_ids=[q.id for q in queues if q.is_urgent],
            pending_queue_ids=[q.id for q in queues if q.is_pending],
            completed_queue_ids=[q.id for q in queues if q.is_completed],
        )


# ===================
# OPERATOR REQUESTS
# ===================

class ReplacementStatusUpdate(BaseSchema):
    """Move a replacement item forward."""

    status: ReplacementStatus = Field(..., description="New status")
    actor: Optional[Actor] = None
    reason: Optional[str] = Field(None, max_length=500, description="Cancellation reason")


class MergeRequest(BaseSchema):
    """Fold selected replacement items into a draft order."""

    target_order_id: str = Field(..., min_length=1)
    item_ids: list[str] = Field(..., min_length=1)
    actor: Actor


class UrgentOrderRequest(BaseSchema):
    """Synthesize an urgent factory order from a queue."""

    actor: Actor


class ReceivedLine(BaseSchema):
    """Reception outcome of one order line."""

    line_id: str = Field(..., min_length=1, description="Order line id")
    received_quantity: int = Field(default=0, ge=0)
    denied: bool = Field(default=False, description="Factory denied the line")
    reason: Optional[str] = Field(None, max_length=500)


class ReceptionReport(BaseSchema):
    """Reception of an order, reported line by line."""

    order_id: str = Field(..., min_length=1)
    lines: list[ReceivedLine] = Field(..., min_length=1)
    actor: Actor
    critical_product_ids: list[str] = Field(default_factory=list)


# ===================
# RESULTS
# ===================

class MergeResult(BaseSchema):
    """Outcome of a merge call."""

    queue_id: str
    order_id: str
    merged_item_ids: list[str] = Field(default_factory=list)
    skipped_item_ids: list[str] = Field(
        default_factory=list,
        description="Items already merged into this order (retry no-ops)"
    )
    merged_quantity: int = 0


class UrgentOrderResponse(BaseSchema):
    """Id of the synthesized (or recovered) urgent order."""

    order_id: str


class AutoMergeResult(BaseSchema):
    """Outcome of one branch sweep."""

    branch_id: str
    merged_count: int = 0
    target_order_id: Optional[str] = None
    item_ids: list[str] = Field(default_factory=list)


class BranchMergeFailure(BaseSchema):
    """Error captured for one branch during a global sweep."""

    branch_id: str
    code: str
    message: str


class AutoMergeAllResult(BaseSchema):
    """Per-branch results and aggregated errors of a global sweep."""

    results: list[AutoMergeResult] = Field(default_factory=list)
    errors: list[BranchMergeFailure] = Field(default_factory=list)
    merged_count: int = 0
