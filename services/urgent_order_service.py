"""
Urgent order service.

Turns every urgent + pending item of a queue into a new order addressed to
the factory. The items move to in_queue (not completed) and point at the
order that now carries them; fulfilment continues through the normal order
lifecycle.
"""

from datetime import datetime, timezone
from typing import Optional
import structlog

from config import settings
from models.base import Actor
from models.order import Order, OrderItem, OrderStatus, URGENT_REPLACEMENT_ORIGIN
from models.replacement import ReplacementItem, ReplacementQueue, ReplacementStatus
from services.replacement_queue_service import get_replacement_queue_service
from services.order_service import get_order_service, fold_item_into_lines, claim_unit
from exceptions import NoUrgentItemsError

logger = structlog.get_logger(__name__)


def urgent_note(items: list[ReplacementItem]) -> str:
    names = ", ".join(item.product_name or item.product_id for item in items)
    return f"[REPOSICIÓN URGENTE] Items faltantes: {names}"


class UrgentOrderService:
    """
    Urgent order synthesis.
    """

    def __init__(self):
        self.queue_service = get_replacement_queue_service()
        self.order_service = get_order_service()

    def _build_order(self, queue: ReplacementQueue, items: list[ReplacementItem], actor: Actor) -> dict:
        now = datetime.now(timezone.utc)
        status = OrderStatus(settings.urgent_order_status)

        lines: list[OrderItem] = []
        for item in items:
            lines = fold_item_into_lines(lines, item)

        return {
            "order_number": f"REP-{int(now.timestamp() * 1000)}",
            "from_branch_id": queue.branch_id,
            "from_branch_name": queue.branch_name,
            "to_branch_id": settings.factory_branch_id,
            "to_branch_name": settings.factory_branch_name,
            "status": status.value,
            "items": [line.model_dump(mode="json") for line in lines],
            "notes": urgent_note(items),
            "parent_order_id": items[0].source_order_id,
            "allowed_send_days": [],
            "created_at": now.isoformat(),
            "created_by": actor.id,
            "created_by_name": actor.name,
            "sent_at": now.isoformat() if status == OrderStatus.SENT else None,
            "replacement_item_ids": [item.id for item in items],
            "replacement_queue_id": queue.id,
            "origin": URGENT_REPLACEMENT_ORIGIN,
            "version": 0,
        }

    def _queue_into(self, order: Order, items: list[ReplacementItem]) -> list[ReplacementItem]:
        """
        Move items to in_queue on an order, backing out the ones lost to
        another operator.

        Returns:
            Items now carried by the order
        """
        carried: list[ReplacementItem] = []
        lost: list[ReplacementItem] = []
        for item in items:
            updated = self.queue_service.transition(
                item,
                ReplacementStatus.IN_QUEUE,
                {"queued_order_id": order.id}
            )
            if updated is not None:
                carried.append(updated)
            else:
                lost.append(item)

        if lost:
            order = self.order_service.remove_replacement_lines(order.id, lost)
            if not carried and not order.replacement_item_ids:
                self.order_service.cancel(order, "Items de reposición resueltos por otra operación")

        return carried

    def create_urgent_order(self, queue_id: str, actor: Actor) -> str:
        """
        Create an order for the queue's urgent pending items.

        Items already carried by an earlier urgent order from this queue
        (a previous attempt that failed half way) are settled on that order
        instead of being ordered twice.

        Args:
            queue_id: Queue id
            actor: User creating the order

        Returns:
            Id of the order now carrying the items

        Raises:
            ReplacementQueueNotFoundError: If queue doesn't exist
            NoUrgentItemsError: If nothing is urgent and pending
        """
        logger.info("creating_urgent_order", queue_id=queue_id, actor=actor.id)

        queue = self.queue_service.get_queue(queue_id)
        selected = [item for item in queue.items if item.is_urgent_pending]
        if not selected:
            logger.info("no_urgent_items", queue_id=queue_id)
            raise NoUrgentItemsError(queue_id)

        carrier_by_item = self.order_service.get_carriers(queue.branch_id, [item.id for item in selected])

        fresh: list[ReplacementItem] = []
        deferred: list[str] = []
        recovered: dict[str, tuple[Order, list[ReplacementItem]]] = {}
        units: dict[str, str] = {}
        for item in selected:
            carrier = carrier_by_item.get(item.id)
            if carrier is None:
                if claim_unit(units, item):
                    fresh.append(item)
                else:
                    deferred.append(item.id)
            elif carrier.origin == URGENT_REPLACEMENT_ORIGIN:
                recovered.setdefault(carrier.id, (carrier, []))[1].append(item)
            else:
                # Half-merged into a draft; the merge retry settles it
                deferred.append(item.id)

        if deferred:
            logger.info("urgent_items_deferred", queue_id=queue.id, item_ids=deferred)

        result_order_id: Optional[str] = None

        if fresh:
            order = self.order_service.create(self._build_order(queue, fresh, actor))
            if self._queue_into(order, fresh):
                result_order_id = order.id

        for carrier, items in recovered.values():
            logger.info("urgent_order_recovered", order_id=carrier.id, item_ids=[i.id for i in items])
            if self._queue_into(carrier, items) and result_order_id is None:
                result_order_id = carrier.id

        self.queue_service.touch_queue(queue.id)

        if result_order_id is None:
            raise NoUrgentItemsError(queue_id)

        logger.info(
            "urgent_order_created",
            queue_id=queue.id,
            order_id=result_order_id,
            item_count=len(selected)
        )

        return result_order_id


# Singleton instance
_urgent_order_service: Optional[UrgentOrderService] = None


def get_urgent_order_service() -> UrgentOrderService:
    """Get or create UrgentOrderService instance."""
    global _urgent_order_service
    if _urgent_order_service is None:
        _urgent_order_service = UrgentOrderService()
    return _urgent_order_service
