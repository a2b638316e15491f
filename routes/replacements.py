"""
Replacement queue API routes.

Dashboard calls for queues, merges, urgent orders and auto-merge sweeps.
Errors come back in the AppError JSON format with a specific code.
"""

from fastapi import APIRouter, Query
from fastapi.responses import JSONResponse
from typing import Optional
import structlog

from models.replacement import (
    DeficitReport,
    ReceptionReport,
    ReplacementItem,
    ReplacementQueue,
    ReplacementPriority,
    ReplacementStatus,
    ReplacementStatusUpdate,
    QueueListResponse,
    MergeRequest,
    MergeResult,
    UrgentOrderRequest,
    UrgentOrderResponse,
    AutoMergeResult,
    AutoMergeAllResult,
)
from services.replacement_queue_service import get_replacement_queue_service
from services.reception_service import get_reception_service
from services.merge_service import get_merge_service
from services.urgent_order_service import get_urgent_order_service
from services.auto_merge_service import get_auto_merge_service
from exceptions import AppError

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/replacements", tags=["Replacements"])


# ===================
# EXCEPTION HANDLER
# ===================

def handle_error(e: Exception) -> JSONResponse:
    """Convert exception to JSON response."""
    if isinstance(e, AppError):
        return JSONResponse(
            status_code=e.status_code,
            content=e.to_dict()
        )
    # Unexpected error
    logger.error("unexpected_error", error=str(e), type=type(e).__name__)
    return JSONResponse(
        status_code=500,
        content={
            "error": {
                "code": "INTERNAL_ERROR",
                "message": "An unexpected error occurred"
            }
        }
    )


# ===================
# QUEUES
# ===================

@router.get("", response_model=QueueListResponse)
async def list_queues():
    """
    List every branch queue with items.

    Also returns the urgent / pending / completed views; a queue can appear
    in more than one.
    """
    try:
        service = get_replacement_queue_service()
        return QueueListResponse.create(service.get_all_queues())

    except Exception as e:
        return handle_error(e)


@router.get("/queues/{queue_id}", response_model=ReplacementQueue)
async def get_queue(queue_id: str):
    """
    Get one queue.

    Raises:
        404: Queue not found
    """
    try:
        service = get_replacement_queue_service()
        return service.get_queue(queue_id)

    except Exception as e:
        return handle_error(e)


@router.get("/items", response_model=list[ReplacementItem])
async def list_items(
    branch_id: Optional[str] = Query(None, description="Filter by branch"),
    priority: Optional[ReplacementPriority] = Query(None, description="Filter by priority"),
    status: Optional[ReplacementStatus] = Query(None, description="Filter by status")
):
    """List replacement items by branch, priority and status."""
    try:
        service = get_replacement_queue_service()
        return service.list_items(branch_id=branch_id, priority=priority, status=status)

    except Exception as e:
        return handle_error(e)


# ===================
# DEFICITS
# ===================

@router.post("/deficits", response_model=ReplacementItem, status_code=201)
async def report_deficit(data: DeficitReport):
    """
    Classify and enqueue one deficit.

    Raises:
        422: Invalid deficit (quantity <= 0)
    """
    try:
        service = get_reception_service()
        return service.report_deficit(data)

    except Exception as e:
        return handle_error(e)


@router.post("/receptions", response_model=list[ReplacementItem], status_code=201)
async def report_reception(data: ReceptionReport):
    """
    Report an order reception; short and denied lines become replacement items.

    Raises:
        404: Order not found
        422: Lines do not belong to the order
    """
    try:
        service = get_reception_service()
        return service.report_reception(data)

    except Exception as e:
        return handle_error(e)


@router.patch("/items/{item_id}/status", response_model=ReplacementItem)
async def update_item_status(item_id: str, data: ReplacementStatusUpdate):
    """
    Move an item forward (e.g. completed, cancelled).

    Raises:
        404: Item not found
        422: Invalid transition (merged and in_queue are set by merges and urgent orders only)
    """
    try:
        service = get_replacement_queue_service()
        return service.update_status(item_id, data.status, data.actor, data.reason)

    except Exception as e:
        return handle_error(e)


# ===================
# BRANCHES
# ===================

@router.get("/branches/{branch_id}/opportunities", response_model=list[str])
async def get_merge_opportunities(branch_id: str):
    """Draft order ids the branch's pending items can be merged into."""
    try:
        service = get_merge_service()
        return service.find_opportunities(branch_id)

    except Exception as e:
        return handle_error(e)


@router.get("/branches/{branch_id}/pending-products", response_model=dict[str, int])
async def get_pending_products(branch_id: str):
    """Pending quantity per product, to pre-fill a new order."""
    try:
        service = get_replacement_queue_service()
        return service.pending_products(branch_id)

    except Exception as e:
        return handle_error(e)


@router.post("/branches/{branch_id}/auto-merge", response_model=AutoMergeResult)
async def auto_merge_branch(branch_id: str):
    """Merge the branch's eligible items into its first valid draft."""
    try:
        service = get_auto_merge_service()
        return service.auto_merge(branch_id)

    except Exception as e:
        return handle_error(e)


# ===================
# MERGE / URGENT
# ===================

@router.post("/queues/{queue_id}/merge", response_model=MergeResult)
async def merge_items(queue_id: str, data: MergeRequest):
    """
    Merge selected items into a draft order.

    Re-sending a merge that already succeeded is a no-op.

    Raises:
        404: Queue or order not found
        409: Items not mergeable / order modified concurrently
    """
    try:
        service = get_merge_service()
        return service.merge(queue_id, data.target_order_id, data.item_ids, data.actor)

    except Exception as e:
        return handle_error(e)


@router.post("/queues/{queue_id}/urgent-order", response_model=UrgentOrderResponse, status_code=201)
async def create_urgent_order(queue_id: str, data: UrgentOrderRequest):
    """
    Create a factory order from the queue's urgent pending items.

    Raises:
        404: Queue not found
        422: No urgent items
    """
    try:
        service = get_urgent_order_service()
        order_id = service.create_urgent_order(queue_id, data.actor)
        return UrgentOrderResponse(order_id=order_id)

    except Exception as e:
        return handle_error(e)


@router.post("/auto-merge", response_model=AutoMergeAllResult)
async def auto_merge_all():
    """Auto-merge every branch; failures are reported per branch."""
    try:
        service = get_auto_merge_service()
        return service.auto_merge_all()

    except Exception as e:
        return handle_error(e)
