"""
Reception intake.

Converts short receptions and factory denials into replacement items.
"""

from typing import Iterable, Optional
import structlog

from models.base import Actor
from models.order import Order
from models.replacement import (
    DeficitReport,
    ReceivedLine,
    ReceptionReport,
    ReplacementItem,
)
from services.replacement_classifier import classify
from services.replacement_queue_service import get_replacement_queue_service
from services.order_service import get_order_service
from exceptions import InvalidDeficitError

logger = structlog.get_logger(__name__)


class ReceptionService:
    """
    Deficit reporting entry point for the reception workflow.
    """

    def __init__(self):
        self.queue_service = get_replacement_queue_service()
        self.order_service = get_order_service()

    def report_deficit(self, deficit: DeficitReport, actor: Optional[Actor] = None) -> ReplacementItem:
        """Classify a single deficit and enqueue it."""
        item = classify(deficit, actor)
        return self.queue_service.enqueue(item, deficit.branch_name)

    def _deficits_for(
        self,
        order: Order,
        lines: list[ReceivedLine],
        critical: set[str]
    ) -> list[DeficitReport]:
        by_line_id = {line.id: line for line in order.items}
        unknown = [received.line_id for received in lines if received.line_id not in by_line_id]
        if unknown:
            raise InvalidDeficitError(
                "Reception lines do not belong to the order",
                details={"order_id": order.id, "line_ids": unknown}
            )

        deficits = []
        for received in lines:
            line = by_line_id[received.line_id]

            if received.denied:
                quantity = line.quantity
                reason = "Denegado por fábrica"
                if received.reason:
                    reason = f"{reason}: {received.reason}"
                nothing_received = True
            elif received.received_quantity < line.quantity:
                quantity = line.quantity - received.received_quantity
                reason = f"Recepción parcial: se recibieron {received.received_quantity} de {line.quantity}"
                nothing_received = received.received_quantity == 0
            else:
                continue

            if quantity <= 0:
                continue

            deficits.append(DeficitReport(
                branch_id=order.from_branch_id,
                branch_name=order.from_branch_name,
                product_id=line.product_id,
                product_name=line.product_name,
                unit=line.unit,
                quantity=quantity,
                reason=reason,
                source_order_id=order.id,
                source_order_number=order.order_number,
                critical=line.product_id in critical,
                nothing_received=nothing_received,
            ))
        return deficits

    def report_shortfalls(
        self,
        order: Order,
        lines: list[ReceivedLine],
        actor: Actor,
        critical_product_ids: Iterable[str] = ()
    ) -> list[ReplacementItem]:
        """
        Enqueue one replacement item per short or denied line.

        Every deficit is classified before anything is written, so a bad
        line rejects the whole report.

        Returns:
            Stored replacement items, in line order
        """
        deficits = self._deficits_for(order, lines, set(critical_product_ids))
        items = [classify(deficit, actor) for deficit in deficits]

        stored = [self.queue_service.enqueue(item, order.from_branch_name) for item in items]

        logger.info(
            "reception_shortfalls_reported",
            order_id=order.id,
            branch_id=order.from_branch_id,
            lines=len(lines),
            deficits=len(stored)
        )
        return stored

    def report_reception(self, report: ReceptionReport) -> list[ReplacementItem]:
        """Load the order and report its shortfalls."""
        order = self.order_service.get_by_id(report.order_id)
        return self.report_shortfalls(order, report.lines, report.actor, report.critical_product_ids)


# Singleton instance
_reception_service: Optional[ReceptionService] = None


def get_reception_service() -> ReceptionService:
    """Get or create ReceptionService instance."""
    global _reception_service
    if _reception_service is None:
        _reception_service = ReceptionService()
    return _reception_service
