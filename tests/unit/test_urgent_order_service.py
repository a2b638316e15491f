"""
Unit tests for UrgentOrderService.

Run: pytest tests/unit/test_urgent_order_service.py -v
"""

import pytest

from config import settings
from services.urgent_order_service import get_urgent_order_service
from services.merge_service import get_merge_service
from models.base import Actor
from models.order import URGENT_REPLACEMENT_ORIGIN
from exceptions import NoUrgentItemsError, ReplacementQueueNotFoundError, ItemNotMergeableError
from tests.factories import ReplacementItemFactory, QueueFactory, OrderFactory


ACTOR = Actor(id="user-1", name="Ana")


@pytest.fixture
def centro_queue(mock_supabase):
    """Sucursal Centro owed 5 units of P1 (urgent) and 2 of P2 (normal)."""
    mock_supabase.set_table_data("replacement_queues", [
        QueueFactory.create(id="q-centro", branch_id="centro", branch_name="Sucursal Centro"),
    ])
    mock_supabase.set_table_data("replacement_items", [
        ReplacementItemFactory.create_urgent(id="i1", queue_id="q-centro", product_id="P1",
                                             product_name="Harina", quantity=5,
                                             source_order_id="ord-100"),
        ReplacementItemFactory.create(id="i2", queue_id="q-centro", product_id="P2",
                                      product_name="Azúcar", quantity=2),
    ])
    mock_supabase.set_table_data("orders", [])
    return mock_supabase


# ===================
# CREATE TESTS
# ===================

class TestCreateUrgentOrder:
    """Tests for create_urgent_order()."""

    def test_sucursal_centro_scenario(self, centro_queue):
        """One urgent item yields a factory order carrying exactly it."""
        order_id = get_urgent_order_service().create_urgent_order("q-centro", ACTOR)

        order = centro_queue.find("orders", order_id)
        assert order["from_branch_id"] == "centro"
        assert order["from_branch_name"] == "Sucursal Centro"
        assert order["to_branch_id"] == settings.factory_branch_id
        assert order["status"] == "sent"
        assert order["sent_at"] is not None
        assert order["order_number"].startswith("REP-")
        assert [(line["product_id"], line["quantity"]) for line in order["items"]] == [("P1", 5)]
        assert order["notes"] == "[REPOSICIÓN URGENTE] Items faltantes: Harina"
        assert order["parent_order_id"] == "ord-100"
        assert order["replacement_item_ids"] == ["i1"]
        assert order["origin"] == URGENT_REPLACEMENT_ORIGIN
        assert order["created_by"] == "user-1"

    def test_items_move_to_in_queue(self, centro_queue):
        """Urgent items are queued on the new order, not completed."""
        order_id = get_urgent_order_service().create_urgent_order("q-centro", ACTOR)

        item = centro_queue.find("replacement_items", "i1")
        assert item["status"] == "in_queue"
        assert item["queued_order_id"] == order_id
        assert centro_queue.find("replacement_items", "i2")["status"] == "pending"

    def test_same_product_items_share_one_line(self, centro_queue):
        """Two urgent deficits of one product become a single line."""
        centro_queue.rows("replacement_items").append(
            ReplacementItemFactory.create_urgent(id="i3", queue_id="q-centro", product_id="P1",
                                                 product_name="Harina", quantity=4)
        )

        order_id = get_urgent_order_service().create_urgent_order("q-centro", ACTOR)

        order = centro_queue.find("orders", order_id)
        assert [(line["product_id"], line["quantity"]) for line in order["items"]] == [("P1", 9)]

    def test_second_unit_of_a_product_stays_pending(self, centro_queue):
        """Urgent items of one product in two units are not summed."""
        centro_queue.rows("replacement_items").append(
            ReplacementItemFactory.create_urgent(id="i3", queue_id="q-centro", product_id="P1",
                                                 product_name="Harina", quantity=1, unit="bolsa")
        )

        order_id = get_urgent_order_service().create_urgent_order("q-centro", ACTOR)

        order = centro_queue.find("orders", order_id)
        assert [(line["product_id"], line["quantity"], line["unit"]) for line in order["items"]] == [("P1", 5, "kg")]
        assert order["replacement_item_ids"] == ["i1"]
        assert centro_queue.find("replacement_items", "i3")["status"] == "pending"

    def test_item_listed_on_a_draft_is_not_ordered_again(self, centro_queue):
        """A half-finished merge keeps the item out of the urgent order."""
        centro_queue.rows("orders").append(OrderFactory.create_draft(
            id="draft-1", lines=[("P1", 5, "kg")], replacement_item_ids=["i1"]
        ))

        with pytest.raises(NoUrgentItemsError):
            get_urgent_order_service().create_urgent_order("q-centro", ACTOR)

        assert [row["id"] for row in centro_queue.rows("orders")] == ["draft-1"]
        assert centro_queue.find("replacement_items", "i1")["status"] == "pending"

    def test_status_is_configurable(self, centro_queue, monkeypatch):
        """The synthesized order can start as a draft."""
        monkeypatch.setattr(settings, "urgent_order_status", "draft")

        order_id = get_urgent_order_service().create_urgent_order("q-centro", ACTOR)

        order = centro_queue.find("orders", order_id)
        assert order["status"] == "draft"
        assert order["sent_at"] is None

    def test_no_urgent_items_creates_no_order(self, centro_queue):
        """Without urgent pending items nothing is written."""
        centro_queue.find("replacement_items", "i1")["priority"] = "high"

        with pytest.raises(NoUrgentItemsError) as exc_info:
            get_urgent_order_service().create_urgent_order("q-centro", ACTOR)

        assert exc_info.value.code == "NO_URGENT_ITEMS"
        assert centro_queue.rows("orders") == []

    def test_second_call_has_nothing_left(self, centro_queue):
        """Once queued, the items are no longer urgent pending."""
        service = get_urgent_order_service()
        service.create_urgent_order("q-centro", ACTOR)

        with pytest.raises(NoUrgentItemsError):
            service.create_urgent_order("q-centro", ACTOR)

        assert len(centro_queue.rows("orders")) == 1

    def test_unknown_queue(self, centro_queue):
        """Missing queue raises."""
        with pytest.raises(ReplacementQueueNotFoundError):
            get_urgent_order_service().create_urgent_order("missing", ACTOR)

    def test_queued_items_are_not_merge_candidates(self, centro_queue):
        """A draft cannot absorb an item the urgent order already carries."""
        get_urgent_order_service().create_urgent_order("q-centro", ACTOR)
        centro_queue.rows("orders").append(OrderFactory.create_draft(id="draft-1"))

        result = get_merge_service().find_opportunities("centro")

        assert result == ["draft-1"]
        with pytest.raises(ItemNotMergeableError):
            get_merge_service().merge("q-centro", "draft-1", ["i1"], ACTOR)


# ===================
# RECOVERY TESTS
# ===================

class TestUrgentOrderRecovery:
    """Tests for retries after partial failures and lost races."""

    def test_retry_reuses_order_that_already_carries_item(self, centro_queue):
        """An earlier urgent order with the marker is settled, not duplicated."""
        centro_queue.rows("orders").append(OrderFactory.create(
            id="urgent-1",
            status="sent",
            lines=[("P1", 5, "kg")],
            replacement_item_ids=["i1"],
            replacement_queue_id="q-centro",
            origin=URGENT_REPLACEMENT_ORIGIN,
        ))

        order_id = get_urgent_order_service().create_urgent_order("q-centro", ACTOR)

        assert order_id == "urgent-1"
        assert len(centro_queue.rows("orders")) == 1
        assert centro_queue.find("replacement_items", "i1")["queued_order_id"] == "urgent-1"

    def test_cancelled_earlier_order_is_ignored(self, centro_queue):
        """A cancelled urgent order does not count as a carrier."""
        centro_queue.rows("orders").append(OrderFactory.create(
            id="urgent-old",
            status="cancelled",
            replacement_item_ids=["i1"],
            replacement_queue_id="q-centro",
            origin=URGENT_REPLACEMENT_ORIGIN,
        ))

        order_id = get_urgent_order_service().create_urgent_order("q-centro", ACTOR)

        assert order_id != "urgent-old"
        assert len(centro_queue.rows("orders")) == 2

    def test_all_items_lost_cancels_new_order(self, centro_queue, monkeypatch):
        """If another operator resolves every item first, the new order is cancelled."""
        service = get_urgent_order_service()
        original = service.queue_service.transition

        def racing(item, new_status, extra=None, actor=None):
            centro_queue.find("replacement_items", item.id)["status"] = "completed"
            return original(item, new_status, extra, actor)

        monkeypatch.setattr(service.queue_service, "transition", racing)

        with pytest.raises(NoUrgentItemsError):
            service.create_urgent_order("q-centro", ACTOR)

        [order] = centro_queue.rows("orders")
        assert order["status"] == "cancelled"
        assert order["items"] == []
        assert order["replacement_item_ids"] == []
