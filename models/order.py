"""
Order and template schemas.

Orders and templates are owned by the ordering workflow; the replacement
engine reads them and writes draft/urgent orders through its own services.
"""

from pydantic import Field
from typing import Optional
from enum import Enum
from datetime import datetime

from models.base import BaseSchema, TimestampMixin


class OrderStatus(str, Enum):
    """Order lifecycle status."""
    DRAFT = "draft"
    SENT = "sent"
    ASSEMBLING = "assembling"
    IN_TRANSIT = "in_transit"
    RECEIVED = "received"
    CANCELLED = "cancelled"


class DayOfWeek(str, Enum):
    """Days on which a template's orders may be sent."""
    MONDAY = "monday"
    TUESDAY = "tuesday"
    WEDNESDAY = "wednesday"
    THURSDAY = "thursday"
    FRIDAY = "friday"
    SATURDAY = "saturday"
    SUNDAY = "sunday"


URGENT_REPLACEMENT_ORIGIN = "urgent_replacement"


class OrderItem(BaseSchema):
    """One order line."""

    id: str = Field(..., description="Line id")
    product_id: str = Field(..., min_length=1, description="Product id")
    product_name: str = Field(default="", description="Product display name")
    quantity: int = Field(..., ge=0, description="Quantity ordered")
    unit: str = Field(default="", description="Unit of measure")
    status: str = Field(default="pending", description="Line status")


class Order(BaseSchema, TimestampMixin):
    """
    Order document.

    replacement_item_ids lists the replacement items whose quantity is
    already reflected in the lines; version guards concurrent rewrites.
    """

    id: str = Field(..., description="Order id")
    order_number: Optional[str] = Field(None, description="Human order number")
    from_branch_id: str = Field(..., description="Branch placing the order")
    from_branch_name: Optional[str] = None
    to_branch_id: str = Field(default="", description="Branch preparing the order")
    to_branch_name: Optional[str] = None
    status: OrderStatus = Field(..., description="Current status")
    items: list[OrderItem] = Field(default_factory=list)
    notes: Optional[str] = None
    template_id: Optional[str] = None
    allowed_send_days: list[DayOfWeek] = Field(default_factory=list)
    parent_order_id: Optional[str] = None
    created_by: Optional[str] = None
    created_by_name: Optional[str] = None
    sent_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancel_reason: Optional[str] = None

    # Replacement engine bookkeeping
    replacement_item_ids: list[str] = Field(default_factory=list)
    replacement_queue_id: Optional[str] = None
    origin: Optional[str] = None
    version: int = Field(default=0, ge=0)

    def line_for(self, product_id: str) -> Optional[OrderItem]:
        """Return the line carrying a product, if any."""
        for line in self.items:
            if line.product_id == product_id:
                return line
        return None


class TemplateItem(BaseSchema):
    """Template line."""
    product_id: str
    product_name: str = ""
    quantity: int = 0
    unit: str = ""


class Template(BaseSchema, TimestampMixin):
    """Reusable order template with legal destinations and send days."""

    id: str
    name: str = ""
    description: Optional[str] = None
    items: list[TemplateItem] = Field(default_factory=list)
    branch_id: Optional[str] = None
    active: bool = True
    destination_branch_ids: list[str] = Field(default_factory=list)
    allowed_send_days: list[DayOfWeek] = Field(default_factory=list)
