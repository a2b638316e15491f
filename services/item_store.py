"""
Document store adapter for replacement queues, items, orders and templates.

Wraps the Supabase client with point reads, filtered queries, inserts and
conditional updates. Transport failures surface as StoreUnavailableError so
callers can tell an outage apart from a business rule.
"""

from typing import Any, Optional
from enum import Enum
import structlog

from config import get_supabase_client
from exceptions import StoreUnavailableError

logger = structlog.get_logger(__name__)


def _filter_value(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    return value


class ItemStore:
    """
    Thin persistence layer over PostgREST tables.

    Filters map a column to a value (equality) or to a list/tuple/set of
    values (membership). The store offers no multi-row transactions.
    """

    def __init__(self):
        self.db = get_supabase_client()

    def _apply_filters(self, query, filters: Optional[dict[str, Any]]):
        for column, value in (filters or {}).items():
            if isinstance(value, (list, tuple, set, frozenset)):
                query = query.in_(column, [_filter_value(v) for v in value])
            else:
                query = query.eq(column, _filter_value(value))
        return query

    # ===================
    # READ OPERATIONS
    # ===================

    def get(self, table: str, record_id: str) -> Optional[dict]:
        """
        Point read by id.

        Returns:
            Row dict, or None if it does not exist
        """
        try:
            result = (
                self.db.table(table)
                .select("*")
                .eq("id", record_id)
                .limit(1)
                .execute()
            )
        except Exception as e:
            logger.error("store_get_failed", table=table, id=record_id, error=str(e), error_type=type(e).__name__)
            raise StoreUnavailableError("select", str(e), table=table) from e

        return result.data[0] if result.data else None

    def query(
        self,
        table: str,
        filters: Optional[dict[str, Any]] = None,
        order_by: Optional[str] = None,
        desc: bool = False,
        overlaps: Optional[dict[str, list]] = None
    ) -> list[dict]:
        """
        Filtered query.

        Args:
            table: Table name
            filters: Column filters (value = equality, collection = membership)
            order_by: Optional column to sort by
            desc: Sort descending
            overlaps: Array columns that must share at least one value with the list

        Returns:
            List of row dicts
        """
        try:
            query = self._apply_filters(self.db.table(table).select("*"), filters)
            for column, values in (overlaps or {}).items():
                query = query.ov(column, list(values))
            if order_by:
                query = query.order(order_by, desc=desc)
            result = query.execute()
        except Exception as e:
            logger.error("store_query_failed", table=table, filters=filters, error=str(e), error_type=type(e).__name__)
            raise StoreUnavailableError("select", str(e), table=table) from e

        return result.data or []

    # ===================
    # WRITE OPERATIONS
    # ===================

    def insert(self, table: str, data: dict) -> dict:
        """
        Insert a row and return it with its store-generated id.
        """
        try:
            result = self.db.table(table).insert(data).execute()
        except Exception as e:
            logger.error("store_insert_failed", table=table, error=str(e), error_type=type(e).__name__)
            raise StoreUnavailableError("insert", str(e), table=table) from e

        if not result.data:
            raise StoreUnavailableError("insert", "no row returned", table=table)
        return result.data[0]

    def update(
        self,
        table: str,
        record_id: str,
        patch: dict,
        conditional_on: Optional[dict[str, Any]] = None
    ) -> Optional[dict]:
        """
        Update one row, optionally only while conditional_on still matches.

        Returns:
            Updated row, or None when the row is missing or the condition
            no longer holds (another writer got there first)
        """
        try:
            query = self.db.table(table).update(patch).eq("id", record_id)
            query = self._apply_filters(query, conditional_on)
            result = query.execute()
        except Exception as e:
            logger.error("store_update_failed", table=table, id=record_id, error=str(e), error_type=type(e).__name__)
            raise StoreUnavailableError("update", str(e), table=table) from e

        if not result.data:
            logger.debug("store_conditional_update_missed", table=table, id=record_id, conditional_on=conditional_on)
            return None
        return result.data[0]


# Singleton instance
_item_store: Optional[ItemStore] = None


def get_item_store() -> ItemStore:
    """Get or create ItemStore instance."""
    global _item_store
    if _item_store is None:
        _item_store = ItemStore()
    return _item_store
