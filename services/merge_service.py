"""
Merge service: finds draft orders that can absorb pending replacement items
and folds the items into them.

The store has no multi-document transaction, so a merge writes the order
first (lines plus the replacement_item_ids marker) and only then marks the
items merged. Re-running a merge after a failure between the two steps
reuses the marker instead of counting the items twice.
"""

from typing import Optional
import structlog

from models.base import Actor
from models.order import Order, OrderStatus
from models.replacement import (
    MergeResult,
    ReplacementItem,
    ReplacementQueue,
    ReplacementStatus,
)
from services.replacement_queue_service import get_replacement_queue_service
from services.order_service import get_order_service, line_units, claim_unit
from exceptions import ItemNotMergeableError

logger = structlog.get_logger(__name__)


def merge_note(items: list[ReplacementItem]) -> str:
    names = ", ".join(item.product_name or item.product_id for item in items)
    return f"[REPOSICIÓN] Items agregados automáticamente: {names}"


def _carried_elsewhere(item: ReplacementItem, order: Order, carriers: dict[str, Order]) -> bool:
    if item.id in order.replacement_item_ids:
        return False
    carrier = carriers.get(item.id)
    return carrier is not None and carrier.id != order.id


class MergeService:
    """
    Merge opportunity detection and merge execution.
    """

    def __init__(self):
        self.queue_service = get_replacement_queue_service()
        self.order_service = get_order_service()

    # ===================
    # DETECTION
    # ===================

    @staticmethod
    def mergeable_items(
        order: Order,
        queue: ReplacementQueue,
        carriers: Optional[dict[str, Order]] = None
    ) -> list[ReplacementItem]:
        """
        Items of the queue that can be folded into this order right now.

        Open (pending/in_queue), not carried by a different order (queued on
        an urgent order or listed in another order's marker) and in the same
        unit as the product's line, or as an earlier item of the batch when
        the order has no line for it yet.

        Args:
            order: Candidate draft
            queue: Queue with its items
            carriers: Result of carriers_for(queue); markers are ignored when omitted
        """
        carriers = carriers or {}
        units = line_units(order)
        selected = []
        for item in queue.items:
            if not item.is_open or item.carried_by_other_order(order.id):
                continue
            if _carried_elsewhere(item, order, carriers):
                continue
            if not claim_unit(units, item):
                continue
            selected.append(item)
        return selected

    def carriers_for(self, queue: ReplacementQueue) -> dict[str, Order]:
        """Orders whose marker already lists one of the queue's open items."""
        open_ids = [item.id for item in queue.items if item.is_open and not item.queued_order_id]
        return self.order_service.get_carriers(queue.branch_id, open_ids)

    def _template_allows(self, order: Order) -> bool:
        if not order.template_id:
            return True

        template = self.order_service.get_template(order.template_id)
        if template is None or not template.active:
            return False
        if template.destination_branch_ids and order.to_branch_id not in template.destination_branch_ids:
            return False
        # A draft that can never be sent would strand the items
        return bool(order.allowed_send_days or template.allowed_send_days)

    def find_targets(
        self,
        queue: ReplacementQueue,
        carriers: Optional[dict[str, Order]] = None
    ) -> list[Order]:
        """Valid draft targets for a queue, oldest first."""
        if not any(item.is_open and not item.queued_order_id for item in queue.items):
            return []

        if carriers is None:
            carriers = self.carriers_for(queue)

        targets = []
        for order in self.order_service.get_drafts_for_branch(queue.branch_id):
            if order.status != OrderStatus.DRAFT:
                continue
            if not self.mergeable_items(order, queue, carriers):
                continue
            if not self._template_allows(order):
                logger.debug("draft_rejected_by_template", order_id=order.id, template_id=order.template_id)
                continue
            targets.append(order)
        return targets

    def find_opportunities(self, branch_id: str) -> list[str]:
        """
        Draft order ids of a branch that pending items could be merged into.

        Returns an empty list when the branch has no draft or nothing to
        merge; no order is created.
        """
        logger.debug("finding_merge_opportunities", branch_id=branch_id)

        queue = self.queue_service.get_queue_for_branch(branch_id)
        if queue is None:
            return []

        order_ids = [order.id for order in self.find_targets(queue)]

        logger.info(
            "merge_opportunities_found",
            branch_id=branch_id,
            count=len(order_ids)
        )
        return order_ids

    # ===================
    # EXECUTION
    # ===================

    def merge(
        self,
        queue_id: str,
        target_order_id: str,
        item_ids: list[str],
        actor: Actor
    ) -> MergeResult:
        """
        Fold replacement items into a draft order and mark them merged.

        A request whose items are all merged into the order already is a
        no-op whatever the order's status. A sent order only accepts items
        its marker already lists.

        Args:
            queue_id: Queue the items belong to
            target_order_id: Draft order of the same branch
            item_ids: Items to merge
            actor: User (or system) performing the merge

        Returns:
            MergeResult with merged and skipped (already merged) items

        Raises:
            ReplacementQueueNotFoundError: If queue doesn't exist
            OrderNotFoundError: If order doesn't exist
            ItemNotMergeableError: If any item cannot be merged
            ConcurrentModificationError: If the order changed while merging
        """
        requested = list(dict.fromkeys(item_ids))

        logger.info(
            "merging_replacement_items",
            queue_id=queue_id,
            order_id=target_order_id,
            item_ids=requested,
            actor=actor.id
        )

        queue = self.queue_service.get_queue(queue_id)
        order = self.order_service.get_by_id(target_order_id)

        missing = [item_id for item_id in requested if queue.find_item(item_id) is None]
        if missing:
            raise ItemNotMergeableError("items do not belong to the queue", missing, order.id)

        items = [queue.find_item(item_id) for item_id in requested]
        skipped = [
            item.id for item in items
            if item.status == ReplacementStatus.MERGED and item.merged_into_order_id == order.id
        ]
        if len(skipped) == len(items):
            logger.info("merge_noop", queue_id=queue_id, order_id=order.id, skipped=skipped)
            return MergeResult(queue_id=queue.id, order_id=order.id, skipped_item_ids=skipped)

        candidates = [item for item in items if item.id not in skipped]

        if order.from_branch_id != queue.branch_id:
            raise ItemNotMergeableError("target order belongs to another branch", requested, order.id)

        # A sent order may still finish items its marker already lists
        finishing = all(item.id in order.replacement_item_ids for item in candidates)
        if order.status == OrderStatus.CANCELLED or (order.status != OrderStatus.DRAFT and not finishing):
            raise ItemNotMergeableError("target order is no longer a draft", requested, order.id)

        carriers = self.order_service.get_carriers(
            queue.branch_id,
            [item.id for item in candidates if item.is_open and item.id not in order.replacement_item_ids]
        )
        units = line_units(order)

        to_merge: list[ReplacementItem] = []
        rejected: list[str] = []
        for item in candidates:
            if (
                not item.is_open
                or item.carried_by_other_order(order.id)
                or _carried_elsewhere(item, order, carriers)
                or not claim_unit(units, item)
            ):
                rejected.append(item.id)
            else:
                to_merge.append(item)

        if rejected:
            raise ItemNotMergeableError(
                "items are already resolved, carried by another order or conflict with a line unit",
                rejected,
                order.id
            )

        # Step 1: order write, marker included
        unmarked = [item for item in to_merge if item.id not in order.replacement_item_ids]
        if unmarked:
            order = self.order_service.add_replacement_lines(order, unmarked, merge_note(unmarked))

        # Step 2: item transitions, each conditioned on the status read above
        merged: list[ReplacementItem] = []
        lost: list[ReplacementItem] = []
        for item in to_merge:
            updated = self.queue_service.transition(
                item,
                ReplacementStatus.MERGED,
                {"merged_into_order_id": order.id},
                actor
            )
            if updated is not None:
                merged.append(updated)
                continue

            current = self.queue_service.get_item(item.id)
            if current.status == ReplacementStatus.MERGED and current.merged_into_order_id == order.id:
                skipped.append(item.id)
            else:
                lost.append(item)

        if lost:
            self.order_service.remove_replacement_lines(order.id, lost)

        self.queue_service.touch_queue(queue.id)

        if lost:
            raise ItemNotMergeableError(
                "items were resolved by another operation",
                [item.id for item in lost],
                order.id
            )

        merged_quantity = sum(item.quantity for item in merged)

        logger.info(
            "replacement_items_merged",
            queue_id=queue.id,
            order_id=order.id,
            merged=len(merged),
            skipped=len(skipped),
            quantity=merged_quantity
        )

        return MergeResult(
            queue_id=queue.id,
            order_id=order.id,
            merged_item_ids=[item.id for item in merged],
            skipped_item_ids=skipped,
            merged_quantity=merged_quantity,
        )


# Singleton instance
_merge_service: Optional[MergeService] = None


def get_merge_service() -> MergeService:
    """Get or create MergeService instance."""
    global _merge_service
    if _merge_service is None:
        _merge_service = MergeService()
    return _merge_service
