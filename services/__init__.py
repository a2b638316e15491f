"""
Business logic services.

Each service handles one domain area.
"""

from services.item_store import ItemStore, get_item_store
from services.replacement_classifier import classify, resolve_priority
from services.replacement_queue_service import (
    ReplacementQueueService,
    get_replacement_queue_service,
)
from services.order_service import OrderService, get_order_service
from services.merge_service import MergeService, get_merge_service
from services.urgent_order_service import UrgentOrderService, get_urgent_order_service
from services.auto_merge_service import AutoMergeService, get_auto_merge_service
from services.reception_service import ReceptionService, get_reception_service

__all__ = [
    "ItemStore",
    "get_item_store",
    "classify",
    "resolve_priority",
    "ReplacementQueueService",
    "get_replacement_queue_service",
    "OrderService",
    "get_order_service",
    "MergeService",
    "get_merge_service",
    "UrgentOrderService",
    "get_urgent_order_service",
    "AutoMergeService",
    "get_auto_merge_service",
    "ReceptionService",
    "get_reception_service",
]
