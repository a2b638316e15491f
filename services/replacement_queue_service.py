"""
Replacement queue service.

Owns the per-branch queues: listing, enqueueing and forward-only status
transitions. Every write that moves an item forward is conditioned on the
status the caller read, so two operators can never both win the same
transition.
"""

from collections import defaultdict
from datetime import datetime, timezone
from typing import Optional
import structlog

from models.base import Actor
from models.replacement import (
    ReplacementItem,
    ReplacementQueue,
    ReplacementPriority,
    ReplacementStatus,
    is_valid_replacement_transition,
)
from services.item_store import get_item_store
from exceptions import (
    InvalidTransitionError,
    ReplacementQueueNotFoundError,
    ReplacementItemNotFoundError,
)

logger = structlog.get_logger(__name__)

# Set only by merges and urgent orders, which also record the order
ORDER_LINKED_STATUSES = (ReplacementStatus.MERGED, ReplacementStatus.IN_QUEUE)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class ReplacementQueueService:
    """
    Replacement queue business logic.

    One queue row per branch in replacement_queues; one row per deficit in
    replacement_items, keyed by branch_id and queue_id.
    """

    def __init__(self):
        self.store = get_item_store()
        self.queues_table = "replacement_queues"
        self.items_table = "replacement_items"

    # ===================
    # READ OPERATIONS
    # ===================

    def _build_queue(self, row: dict, items: list[ReplacementItem]) -> ReplacementQueue:
        return ReplacementQueue(
            id=row["id"],
            branch_id=row["branch_id"],
            branch_name=row.get("branch_name"),
            items=items,
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
        )

    def _load_items(self, branch_id: str) -> list[ReplacementItem]:
        rows = self.store.query(
            self.items_table,
            {"branch_id": branch_id},
            order_by="reported_at"
        )
        return [ReplacementItem.model_validate(row) for row in rows]

    def get_all_queues(self) -> list[ReplacementQueue]:
        """
        Get every branch queue with its items.

        Branches with zero items are omitted. Newest queues first; items
        keep report order.

        Returns:
            List of ReplacementQueue snapshots
        """
        logger.info("getting_replacement_queues")

        queue_rows = self.store.query(self.queues_table, order_by="created_at")
        item_rows = self.store.query(self.items_table, order_by="reported_at")

        items_by_branch: dict[str, list[ReplacementItem]] = defaultdict(list)
        for row in item_rows:
            items_by_branch[row["branch_id"]].append(ReplacementItem.model_validate(row))

        queues = []
        seen_branches = set()
        for row in queue_rows:
            branch_id = row["branch_id"]
            # Oldest queue row wins if a branch ever got two
            if branch_id in seen_branches:
                continue
            seen_branches.add(branch_id)

            items = items_by_branch.get(branch_id)
            if not items:
                continue
            queues.append(self._build_queue(row, items))

        orphaned = set(items_by_branch) - seen_branches
        if orphaned:
            logger.warning("replacement_items_without_queue", branch_ids=sorted(orphaned))

        queues.reverse()

        logger.info(
            "replacement_queues_retrieved",
            count=len(queues),
            items=len(item_rows)
        )

        return queues

    def get_queue(self, queue_id: str) -> ReplacementQueue:
        """
        Get a queue by id.

        Raises:
            ReplacementQueueNotFoundError: If queue doesn't exist
        """
        logger.debug("getting_replacement_queue", queue_id=queue_id)

        row = self.store.get(self.queues_table, queue_id)
        if not row:
            raise ReplacementQueueNotFoundError(queue_id)

        return self._build_queue(row, self._load_items(row["branch_id"]))

    def get_queue_for_branch(self, branch_id: str) -> Optional[ReplacementQueue]:
        """Get the queue of a branch, or None if the branch never reported a deficit."""
        rows = self.store.query(
            self.queues_table,
            {"branch_id": branch_id},
            order_by="created_at"
        )
        if not rows:
            return None

        return self._build_queue(rows[0], self._load_items(branch_id))

    def get_item(self, item_id: str) -> ReplacementItem:
        """
        Get a replacement item by id.

        Raises:
            ReplacementItemNotFoundError: If item doesn't exist
        """
        row = self.store.get(self.items_table, item_id)
        if not row:
            raise ReplacementItemNotFoundError(item_id)
        return ReplacementItem.model_validate(row)

    def list_items(
        self,
        branch_id: Optional[str] = None,
        priority: Optional[ReplacementPriority] = None,
        status: Optional[ReplacementStatus] = None
    ) -> list[ReplacementItem]:
        """
        Query items by branch, priority and/or status.

        Returns:
            Matching items in report order
        """
        filters = {}
        if branch_id:
            filters["branch_id"] = branch_id
        if priority:
            filters["priority"] = priority
        if status:
            filters["status"] = status

        rows = self.store.query(self.items_table, filters, order_by="reported_at")
        return [ReplacementItem.model_validate(row) for row in rows]

    def pending_products(self, branch_id: str) -> dict[str, int]:
        """
        Pending quantity per product for a branch.

        Used to pre-fill a new order with what the branch is still owed.
        """
        totals: dict[str, int] = defaultdict(int)
        for item in self.list_items(branch_id=branch_id, status=ReplacementStatus.PENDING):
            totals[item.product_id] += item.quantity
        return dict(totals)

    # ===================
    # WRITE OPERATIONS
    # ===================

    def _ensure_queue_row(self, branch_id: str, branch_name: Optional[str]) -> dict:
        rows = self.store.query(
            self.queues_table,
            {"branch_id": branch_id},
            order_by="created_at"
        )
        if rows:
            return rows[0]

        now = _now()
        row = self.store.insert(self.queues_table, {
            "branch_id": branch_id,
            "branch_name": branch_name,
            "created_at": now,
            "updated_at": now,
        })
        logger.info("replacement_queue_created", queue_id=row["id"], branch_id=branch_id)
        return row

    def touch_queue(self, queue_id: str) -> None:
        """Bump the queue's updated_at after its items changed."""
        self.store.update(self.queues_table, queue_id, {"updated_at": _now()})

    def enqueue(self, item: ReplacementItem, branch_name: Optional[str] = None) -> ReplacementItem:
        """
        Append a classified item to its branch queue.

        The item is stored pending whatever its priority; urgency lives on
        the priority axis only.

        Args:
            item: Item built by the classifier
            branch_name: Display name used if the branch queue is created now

        Returns:
            Stored item with id and queue_id

        Raises:
            InvalidTransitionError: If the item is already terminal
        """
        if item.is_terminal:
            raise InvalidTransitionError(item.status.value, ReplacementStatus.PENDING.value)

        logger.info(
            "enqueuing_replacement_item",
            branch_id=item.branch_id,
            product_id=item.product_id,
            quantity=item.quantity,
            priority=item.priority.value
        )

        queue_row = self._ensure_queue_row(item.branch_id, branch_name)

        data = item.model_dump(mode="json", exclude={"id"})
        data.update({
            "queue_id": queue_row["id"],
            "status": ReplacementStatus.PENDING.value,
            "updated_at": _now(),
        })
        row = self.store.insert(self.items_table, data)
        self.touch_queue(queue_row["id"])

        logger.info(
            "replacement_item_enqueued",
            item_id=row["id"],
            queue_id=queue_row["id"],
            branch_id=item.branch_id
        )

        return ReplacementItem.model_validate(row)

    def transition(
        self,
        item: ReplacementItem,
        new_status: ReplacementStatus,
        extra: Optional[dict] = None,
        actor: Optional[Actor] = None
    ) -> Optional[ReplacementItem]:
        """
        Conditionally move an item forward.

        The write only lands if the stored status still equals item.status.
        Terminal timestamps are written here and nowhere else.

        Returns:
            Updated item, or None if another writer moved it first

        Raises:
            InvalidTransitionError: If the transition is not forward
        """
        if not is_valid_replacement_transition(item.status, new_status):
            raise InvalidTransitionError(item.status.value, new_status.value)

        now = _now()
        patch = {"status": new_status.value, "updated_at": now}
        if new_status == ReplacementStatus.MERGED:
            patch["merged_at"] = now
            patch["merged_by"] = actor.id if actor else None
        elif new_status == ReplacementStatus.COMPLETED:
            patch["completed_at"] = now
            patch["completed_by"] = actor.id if actor else None
        elif new_status == ReplacementStatus.CANCELLED:
            patch["cancelled_at"] = now
        patch.update(extra or {})

        row = self.store.update(
            self.items_table,
            item.id,
            patch,
            conditional_on={"status": item.status}
        )
        if row is None:
            logger.warning(
                "replacement_transition_lost",
                item_id=item.id,
                expected_status=item.status.value,
                new_status=new_status.value
            )
            return None

        return ReplacementItem.model_validate(row)

    def update_status(
        self,
        item_id: str,
        new_status: ReplacementStatus,
        actor: Optional[Actor] = None,
        reason: Optional[str] = None
    ) -> ReplacementItem:
        """
        Move an item forward through its lifecycle.

        Args:
            item_id: Item id
            new_status: Target status
            actor: User performing the change
            reason: Stored as cancel_reason when cancelling

        Returns:
            Updated item

        Raises:
            ReplacementItemNotFoundError: If item doesn't exist
            InvalidTransitionError: If not forward, merged/in_queue, or lost to a concurrent change
        """
        logger.info("updating_replacement_status", item_id=item_id, new_status=new_status.value)

        item = self.get_item(item_id)
        if new_status in ORDER_LINKED_STATUSES:
            raise InvalidTransitionError(
                item.status.value,
                new_status.value,
                reason="merged and in_queue are only set when an order takes the item"
            )

        extra = {}
        if new_status == ReplacementStatus.CANCELLED and reason:
            extra["cancel_reason"] = reason

        updated = self.transition(item, new_status, extra, actor)
        if updated is None:
            current = self.get_item(item_id)
            raise InvalidTransitionError(
                current.status.value,
                new_status.value,
                reason="Item was changed by another operation"
            )

        if updated.queue_id:
            self.touch_queue(updated.queue_id)

        logger.info(
            "replacement_status_updated",
            item_id=item_id,
            from_status=item.status.value,
            to_status=new_status.value
        )

        return updated

    def mark_completed(self, item_id: str, actor: Actor) -> ReplacementItem:
        """Close an item fulfilled outside the merge/urgent flows."""
        return self.update_status(item_id, ReplacementStatus.COMPLETED, actor)

    def cancel(self, item_id: str, actor: Actor, reason: Optional[str] = None) -> ReplacementItem:
        """Drop an item the branch no longer needs."""
        return self.update_status(item_id, ReplacementStatus.CANCELLED, actor, reason)


# Singleton instance
_replacement_queue_service: Optional[ReplacementQueueService] = None


def get_replacement_queue_service() -> ReplacementQueueService:
    """Get or create ReplacementQueueService instance."""
    global _replacement_queue_service
    if _replacement_queue_service is None:
        _replacement_queue_service = ReplacementQueueService()
    return _replacement_queue_service
