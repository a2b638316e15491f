"""
Unit tests for ReplacementQueueService.

Run: pytest tests/unit/test_replacement_queue_service.py -v
"""

import pytest
from datetime import datetime, timezone

from services.replacement_queue_service import get_replacement_queue_service
from models.base import Actor
from models.replacement import (
    ReplacementItem,
    ReplacementPriority,
    ReplacementStatus,
)
from exceptions import (
    InvalidTransitionError,
    ReplacementQueueNotFoundError,
    ReplacementItemNotFoundError,
)
from tests.factories import ReplacementItemFactory, QueueFactory


ACTOR = Actor(id="user-1", name="Ana")


@pytest.fixture
def queue_data(mock_supabase):
    """Two branch queues; centro has two items, norte has none."""
    centro = QueueFactory.create(id="q-centro", branch_id="centro")
    norte = QueueFactory.create(id="q-norte", branch_id="norte", branch_name="Sucursal Norte")
    items = [
        ReplacementItemFactory.create(id="i1", queue_id="q-centro", product_id="P1", quantity=4),
        ReplacementItemFactory.create(id="i2", queue_id="q-centro", product_id="P1", quantity=2),
        ReplacementItemFactory.create(id="i3", queue_id="q-centro", product_id="P2", status="merged"),
    ]
    mock_supabase.set_table_data("replacement_queues", [centro, norte])
    mock_supabase.set_table_data("replacement_items", items)
    return mock_supabase


def _new_item(**overrides) -> ReplacementItem:
    data = {
        "branch_id": "sur",
        "product_id": "P9",
        "product_name": "Azúcar",
        "unit": "kg",
        "quantity": 3,
        "reported_at": datetime.now(timezone.utc),
    }
    data.update(overrides)
    return ReplacementItem(**data)


# ===================
# READ TESTS
# ===================

class TestReads:
    """Tests for queue reads."""

    def test_get_all_queues_omits_empty_branches(self, queue_data):
        """Queues with zero items are left out."""
        queues = get_replacement_queue_service().get_all_queues()

        assert [q.id for q in queues] == ["q-centro"]
        assert [i.id for i in queues[0].items] == ["i1", "i2", "i3"]

    def test_get_all_queues_newest_first(self, queue_data):
        """Newer queues come first."""
        queue_data.rows("replacement_items").append(
            ReplacementItemFactory.create(id="n1", queue_id="q-norte", branch_id="norte")
        )

        queues = get_replacement_queue_service().get_all_queues()

        assert [q.id for q in queues] == ["q-norte", "q-centro"]

    def test_duplicate_queue_rows_keep_oldest(self, queue_data):
        """A branch with two queue rows is listed once, under the oldest row."""
        queue_data.rows("replacement_queues").append(
            QueueFactory.create(id="q-centro-dup", branch_id="centro", created_at="2030-01-01T00:00:00+00:00")
        )

        queues = get_replacement_queue_service().get_all_queues()

        assert [q.id for q in queues] == ["q-centro"]

    def test_get_queue_not_found(self, queue_data):
        """Unknown queue id raises."""
        with pytest.raises(ReplacementQueueNotFoundError):
            get_replacement_queue_service().get_queue("missing")

    def test_get_queue_for_branch_without_queue(self, queue_data):
        """Branches that never reported a deficit have no queue."""
        assert get_replacement_queue_service().get_queue_for_branch("sur") is None

    def test_list_items_filters(self, queue_data):
        """Items can be filtered by status."""
        items = get_replacement_queue_service().list_items(
            branch_id="centro",
            status=ReplacementStatus.MERGED
        )

        assert [i.id for i in items] == ["i3"]

    def test_pending_products_sums_per_product(self, queue_data):
        """Pending quantities are summed per product; merged items excluded."""
        totals = get_replacement_queue_service().pending_products("centro")

        assert totals == {"P1": 6}


# ===================
# ENQUEUE TESTS
# ===================

class TestEnqueue:
    """Tests for enqueue()."""

    def test_creates_branch_queue_on_first_deficit(self, queue_data):
        """A branch without a queue gets one."""
        service = get_replacement_queue_service()

        stored = service.enqueue(_new_item(), "Sucursal Sur")

        queue = service.get_queue_for_branch("sur")
        assert queue is not None
        assert queue.branch_name == "Sucursal Sur"
        assert stored.queue_id == queue.id
        assert [i.id for i in queue.items] == [stored.id]

    def test_reuses_existing_queue(self, queue_data):
        """Further deficits land in the same queue."""
        stored = get_replacement_queue_service().enqueue(_new_item(branch_id="centro"))

        assert stored.queue_id == "q-centro"
        assert len(queue_data.rows("replacement_queues")) == 2

    def test_urgent_item_is_stored_pending(self, queue_data):
        """Urgency is a priority, not a status."""
        stored = get_replacement_queue_service().enqueue(
            _new_item(priority=ReplacementPriority.URGENT)
        )

        assert stored.status == ReplacementStatus.PENDING
        assert stored.priority == ReplacementPriority.URGENT

    def test_rejects_terminal_item(self, queue_data):
        """A terminal item cannot be enqueued."""
        with pytest.raises(InvalidTransitionError):
            get_replacement_queue_service().enqueue(_new_item(status=ReplacementStatus.COMPLETED))


# ===================
# STATUS UPDATE TESTS
# ===================

class TestUpdateStatus:
    """Tests for forward-only status updates."""

    def test_complete_item(self, queue_data):
        """Completing records who and when."""
        item = get_replacement_queue_service().mark_completed("i1", ACTOR)

        assert item.status == ReplacementStatus.COMPLETED
        assert item.completed_by == "user-1"
        assert item.completed_at is not None

    def test_cancel_stores_reason(self, queue_data):
        """Cancellation keeps the reason."""
        item = get_replacement_queue_service().cancel("i2", ACTOR, "Ya no se necesita")

        assert item.status == ReplacementStatus.CANCELLED
        assert item.cancel_reason == "Ya no se necesita"
        assert item.cancelled_at is not None

    def test_terminal_item_rejected(self, queue_data):
        """A merged item cannot be completed."""
        with pytest.raises(InvalidTransitionError) as exc_info:
            get_replacement_queue_service().update_status("i3", ReplacementStatus.COMPLETED, ACTOR)

        assert exc_info.value.code == "INVALID_TRANSITION"
        assert queue_data.find("replacement_items", "i3")["status"] == "merged"

    def test_backward_transition_rejected(self, queue_data):
        """in_queue cannot go back to pending."""
        queue_data.find("replacement_items", "i1")["status"] = "in_queue"

        with pytest.raises(InvalidTransitionError):
            get_replacement_queue_service().update_status("i1", ReplacementStatus.PENDING, ACTOR)

    def test_merged_needs_a_merge(self, queue_data):
        """A plain update cannot mark an item merged without an order."""
        with pytest.raises(InvalidTransitionError) as exc_info:
            get_replacement_queue_service().update_status("i1", ReplacementStatus.MERGED, ACTOR)

        assert exc_info.value.details["current_status"] == "pending"
        row = queue_data.find("replacement_items", "i1")
        assert row["status"] == "pending"
        assert row.get("merged_into_order_id") is None

    def test_in_queue_needs_an_urgent_order(self, queue_data):
        """A plain update cannot queue an item without an order."""
        with pytest.raises(InvalidTransitionError):
            get_replacement_queue_service().update_status("i1", ReplacementStatus.IN_QUEUE, ACTOR)

        row = queue_data.find("replacement_items", "i1")
        assert row["status"] == "pending"
        assert row.get("queued_order_id") is None

    def test_missing_item(self, queue_data):
        """Unknown item id raises."""
        with pytest.raises(ReplacementItemNotFoundError):
            get_replacement_queue_service().update_status("missing", ReplacementStatus.COMPLETED)

    def test_transition_lost_to_concurrent_writer(self, queue_data):
        """transition() returns None when the stored status moved on."""
        service = get_replacement_queue_service()
        stale = service.get_item("i1")
        queue_data.find("replacement_items", "i1")["status"] = "completed"

        assert service.transition(stale, ReplacementStatus.MERGED, {"merged_into_order_id": "o1"}) is None
        assert queue_data.find("replacement_items", "i1")["status"] == "completed"
