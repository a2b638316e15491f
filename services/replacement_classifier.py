"""
Replacement item classifier.

Turns a deficit report into a ReplacementItem. Pure construction, no store
access. Priority comes from the caller's urgency signal only; the free-text
reason is never inspected.
"""

from datetime import datetime, timezone
from typing import Optional

from models.base import Actor
from models.replacement import (
    DeficitReport,
    ReplacementItem,
    ReplacementPriority,
    ReplacementStatus,
)
from exceptions import InvalidDeficitError


def resolve_priority(deficit: DeficitReport) -> ReplacementPriority:
    """
    Priority policy.

    - requested_priority, when given, is used as-is
    - critical product → urgent
    - nothing received at all → high
    - otherwise normal
    """
    if deficit.requested_priority is not None:
        return deficit.requested_priority
    if deficit.critical:
        return ReplacementPriority.URGENT
    if deficit.nothing_received:
        return ReplacementPriority.HIGH
    return ReplacementPriority.NORMAL


def classify(deficit: DeficitReport, reported_by: Optional[Actor] = None) -> ReplacementItem:
    """
    Build a pending ReplacementItem from a deficit.

    Args:
        deficit: Shortfall reported by reception or a factory denial
        reported_by: User reporting the shortfall

    Returns:
        Unsaved ReplacementItem (id is None until enqueued)

    Raises:
        InvalidDeficitError: If quantity <= 0 or ids are blank
    """
    if deficit.quantity <= 0:
        raise InvalidDeficitError(
            "Deficit quantity must be greater than zero",
            details={"quantity": deficit.quantity, "product_id": deficit.product_id}
        )
    if not deficit.product_id or not deficit.branch_id:
        raise InvalidDeficitError(
            "Deficit requires a product and a branch",
            details={"product_id": deficit.product_id, "branch_id": deficit.branch_id}
        )

    return ReplacementItem(
        branch_id=deficit.branch_id,
        product_id=deficit.product_id,
        product_name=deficit.product_name,
        unit=deficit.unit,
        quantity=deficit.quantity,
        priority=resolve_priority(deficit),
        status=ReplacementStatus.PENDING,
        reason=deficit.reason,
        reported_at=datetime.now(timezone.utc),
        reported_by=reported_by.id if reported_by else None,
        reported_by_name=reported_by.name if reported_by else None,
        source_order_id=deficit.source_order_id,
        source_order_number=deficit.source_order_number,
    )
