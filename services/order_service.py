"""
Order access for the replacement engine.

Reads draft/urgent orders and templates, and rewrites order lines when
replacement items are folded in or backed out. Every rewrite is conditioned
on the order version that was read.
"""

from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4
import structlog

from models.order import (
    Order,
    OrderItem,
    OrderStatus,
    Template,
)
from models.replacement import ReplacementItem
from services.item_store import get_item_store
from exceptions import OrderNotFoundError, ConcurrentModificationError

logger = structlog.get_logger(__name__)

# Attempts for compensating rewrites that race with other writers
COMPENSATION_ATTEMPTS = 3


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


# ===================
# LINE HELPERS
# ===================

def fold_item_into_lines(lines: list[OrderItem], item: ReplacementItem) -> list[OrderItem]:
    """
    Add a replacement item to order lines.

    Sums into the existing line for the product; appends a new line
    otherwise. Never produces two lines for one product.
    """
    folded = [line.model_copy() for line in lines]
    for line in folded:
        if line.product_id == item.product_id:
            line.quantity += item.quantity
            return folded

    folded.append(OrderItem(
        id=str(uuid4()),
        product_id=item.product_id,
        product_name=item.product_name,
        quantity=item.quantity,
        unit=item.unit,
        status="pending",
    ))
    return folded


def remove_item_from_lines(lines: list[OrderItem], item: ReplacementItem) -> list[OrderItem]:
    """Back a replacement item's quantity out of order lines."""
    remaining = []
    for line in lines:
        if line.product_id == item.product_id:
            quantity = line.quantity - item.quantity
            if quantity <= 0:
                continue
            line = line.model_copy(update={"quantity": quantity})
        remaining.append(line)
    return remaining


def line_units(order: Order) -> dict[str, str]:
    """Unit of each product already on the order; lines without a unit are left out."""
    return {line.product_id: line.unit for line in order.items if line.unit}


def claim_unit(units: dict[str, str], item: ReplacementItem) -> bool:
    """
    Check an item's unit against the units of an order being built.

    Records the item's unit for its product when none is known yet, so
    later items of the same batch are checked against it. Blank units are
    compatible with anything.

    Returns:
        False if the product is already carried in a different unit
    """
    current = units.get(item.product_id)
    if not item.unit:
        return True
    if current is None:
        units[item.product_id] = item.unit
        return True
    return current == item.unit


def _dump_lines(lines: list[OrderItem]) -> list[dict]:
    return [line.model_dump(mode="json") for line in lines]


class OrderService:
    """
    Order reads and conditional rewrites.

    Only the merge executor and the urgent order synthesizer write through
    this service.
    """

    def __init__(self):
        self.store = get_item_store()
        self.table = "orders"
        self.templates_table = "templates"

    # ===================
    # READ OPERATIONS
    # ===================

    def get_by_id(self, order_id: str) -> Order:
        """
        Get an order by id.

        Raises:
            OrderNotFoundError: If order doesn't exist
        """
        row = self.store.get(self.table, order_id)
        if not row:
            raise OrderNotFoundError(order_id)
        return Order.model_validate(row)

    def get_drafts_for_branch(self, branch_id: str) -> list[Order]:
        """Draft orders placed by a branch, oldest first."""
        rows = self.store.query(
            self.table,
            {"status": OrderStatus.DRAFT, "from_branch_id": branch_id},
            order_by="created_at"
        )
        return [Order.model_validate(row) for row in rows]

    def get_carriers(self, branch_id: str, item_ids: list[str]) -> dict[str, Order]:
        """
        Active orders of a branch whose replacement marker lists the items.

        Args:
            branch_id: Branch placing the orders
            item_ids: Replacement item ids to look up

        Returns:
            Item id -> oldest non-cancelled order carrying it
        """
        if not item_ids:
            return {}

        rows = self.store.query(
            self.table,
            {"from_branch_id": branch_id},
            order_by="created_at",
            overlaps={"replacement_item_ids": item_ids}
        )

        wanted = set(item_ids)
        carriers: dict[str, Order] = {}
        for row in rows:
            order = Order.model_validate(row)
            if order.status == OrderStatus.CANCELLED:
                continue
            for item_id in order.replacement_item_ids:
                if item_id in wanted:
                    carriers.setdefault(item_id, order)
        return carriers

    def get_template(self, template_id: str) -> Optional[Template]:
        row = self.store.get(self.templates_table, template_id)
        return Template.model_validate(row) if row else None

    # ===================
    # WRITE OPERATIONS
    # ===================

    def create(self, data: dict) -> Order:
        """Insert a new order document."""
        row = self.store.insert(self.table, data)
        logger.info(
            "order_created",
            order_id=row["id"],
            order_number=row.get("order_number"),
            from_branch_id=row.get("from_branch_id"),
            item_count=len(row.get("items") or [])
        )
        return Order.model_validate(row)

    def _rewrite(self, order: Order, patch: dict) -> Order:
        patch = {**patch, "version": order.version + 1, "updated_at": _now()}
        row = self.store.update(
            self.table,
            order.id,
            patch,
            conditional_on={"version": order.version, "status": order.status}
        )
        if row is None:
            logger.warning("order_rewrite_conflict", order_id=order.id, version=order.version)
            raise ConcurrentModificationError("Order", order.id)
        return Order.model_validate(row)

    def add_replacement_lines(
        self,
        order: Order,
        items: list[ReplacementItem],
        note: Optional[str] = None
    ) -> Order:
        """
        Fold items into the order and record them in the durable marker.

        Raises:
            ConcurrentModificationError: If the order changed since it was read
        """
        lines = order.items
        for item in items:
            lines = fold_item_into_lines(lines, item)

        markers = order.replacement_item_ids + [item.id for item in items]
        notes = order.notes
        if note:
            notes = f"{notes}\n\n{note}" if notes else note

        updated = self._rewrite(order, {
            "items": _dump_lines(lines),
            "replacement_item_ids": markers,
            "notes": notes,
        })

        logger.info(
            "replacement_lines_added",
            order_id=order.id,
            item_ids=[item.id for item in items],
            version=updated.version
        )
        return updated

    def remove_replacement_lines(self, order_id: str, items: list[ReplacementItem]) -> Order:
        """
        Back items out of an order after they were resolved elsewhere.

        Re-reads and retries on version conflicts; only items still present
        in the marker are removed, so a repeat call is harmless.
        """
        for attempt in range(1, COMPENSATION_ATTEMPTS + 1):
            order = self.get_by_id(order_id)
            present = [item for item in items if item.id in order.replacement_item_ids]
            if not present:
                return order

            lines = order.items
            for item in present:
                lines = remove_item_from_lines(lines, item)
            removed_ids = {item.id for item in present}
            markers = [i for i in order.replacement_item_ids if i not in removed_ids]

            try:
                updated = self._rewrite(order, {
                    "items": _dump_lines(lines),
                    "replacement_item_ids": markers,
                })
            except ConcurrentModificationError:
                logger.warning("replacement_lines_removal_retry", order_id=order_id, attempt=attempt)
                continue

            logger.info("replacement_lines_removed", order_id=order_id, item_ids=sorted(removed_ids))
            return updated

        raise ConcurrentModificationError("Order", order_id)

    def cancel(self, order: Order, reason: str) -> Order:
        """Cancel an order the engine created but could not populate."""
        updated = self._rewrite(order, {
            "status": OrderStatus.CANCELLED.value,
            "cancelled_at": _now(),
            "cancel_reason": reason,
        })
        logger.info("order_cancelled", order_id=order.id, reason=reason)
        return updated


# Singleton instance
_order_service: Optional[OrderService] = None


def get_order_service() -> OrderService:
    """Get or create OrderService instance."""
    global _order_service
    if _order_service is None:
        _order_service = OrderService()
    return _order_service
