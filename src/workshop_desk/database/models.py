"""Data models for the database layer.

Money fields hold major units (pounds) and durations hold hours; the
repository converts to and from the stored integer units.
"""

from dataclasses import dataclass, field
from typing import Optional


@dataclass
class Business:
    id: Optional[int] = None
    name: str = ""
    email: str = ""
    phone: str = ""
    address: str = ""
    is_active: int = 1
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


@dataclass
class User:
    id: Optional[int] = None
    business_id: Optional[int] = None
    username: str = ""
    full_name: str = ""
    email: str = ""
    role: str = "staff"
    is_active: int = 1
    created_at: Optional[str] = None


@dataclass
class Customer:
    id: Optional[int] = None
    business_id: Optional[int] = None
    name: str = ""
    email: str = ""
    phone: str = ""
    address: str = ""
    notes: str = ""
    created_at: Optional[str] = None


@dataclass
class Equipment:
    id: Optional[int] = None
    business_id: Optional[int] = None
    customer_id: Optional[int] = None
    make_model: str = ""
    serial_number: str = ""
    purchase_date: Optional[str] = None
    notes: str = ""
    created_at: Optional[str] = None


@dataclass
class Job:
    id: Optional[int] = None
    business_id: Optional[int] = None
    job_number: str = ""
    customer_id: Optional[int] = None
    equipment_id: Optional[int] = None
    equipment_description: str = ""
    assigned_to: Optional[int] = None
    status: Optional[str] = None  # None -> derived from assigned_to on create
    description: str = ""
    estimated_hours: Optional[float] = None
    task_details: str = ""
    customer_notified: int = 0
    payment_status: str = "unpaid"
    payment_amount: Optional[float] = None
    payment_method: Optional[str] = None
    invoice_number: str = ""
    payment_notes: str = ""
    paid_at: Optional[str] = None
    payment_recorded_by: Optional[int] = None
    created_at: Optional[str] = None
    completed_at: Optional[str] = None
    # Joined fields (not stored directly)
    customer_name: str = field(default="", repr=False)

    @property
    def is_paid(self) -> bool:
        return self.payment_status == "paid"


@dataclass
class WorkCompleted:
    id: Optional[int] = None
    business_id: Optional[int] = None
    job_id: Optional[int] = None
    work_description: str = ""
    category: str = ""
    labor_hours: float = 0.0
    parts_used: str = ""
    parts_cost: Optional[float] = None
    notes: str = ""
    completed_by: Optional[int] = None
    created_at: Optional[str] = None


@dataclass
class Order:
    id: Optional[int] = None
    business_id: Optional[int] = None
    order_number: str = ""
    customer_id: Optional[int] = None
    customer_name: str = ""
    customer_email: str = ""
    customer_phone: str = ""
    related_job_id: Optional[int] = None
    status: str = "not_ordered"
    supplier_name: str = ""
    tracking_number: str = ""
    estimated_total_cost: Optional[float] = None
    actual_total_cost: Optional[float] = None
    deposit_amount: Optional[float] = None
    notes: str = ""
    order_date: Optional[str] = None
    expected_delivery_date: Optional[str] = None
    actual_delivery_date: Optional[str] = None
    created_by: Optional[int] = None
    updated_by: Optional[int] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    completed_at: Optional[str] = None
    cancelled_at: Optional[str] = None

    @property
    def is_closed(self) -> bool:
        return self.status in ("completed", "cancelled")


@dataclass
class OrderItem:
    id: Optional[int] = None
    business_id: Optional[int] = None
    order_id: Optional[int] = None
    item_name: str = ""
    item_sku: str = ""
    item_type: str = "part"
    quantity: int = 1
    unit_price: Optional[float] = None
    total_price: Optional[float] = None
    notes: str = ""
    created_at: Optional[str] = None


@dataclass
class OrderStatusHistory:
    id: Optional[int] = None
    business_id: Optional[int] = None
    order_id: Optional[int] = None
    previous_status: Optional[str] = None
    new_status: str = ""
    change_reason: Optional[str] = None
    notes: Optional[str] = None
    metadata: Optional[dict] = None
    changed_by: Optional[int] = None
    created_at: Optional[str] = None


@dataclass
class PartOnOrder:
    id: Optional[int] = None
    business_id: Optional[int] = None
    part_name: str = ""
    part_number: str = ""
    supplier: str = ""
    customer_name: str = ""
    customer_email: str = ""
    customer_phone: str = ""
    job_id: Optional[int] = None
    quantity: int = 1
    estimated_cost: Optional[float] = None
    actual_cost: Optional[float] = None
    status: str = "ordered"
    is_arrived: int = 0
    is_customer_notified: int = 0
    order_date: Optional[str] = None
    expected_delivery_date: Optional[str] = None
    actual_delivery_date: Optional[str] = None
    notes: str = ""
    created_by: Optional[int] = None
    updated_by: Optional[int] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


@dataclass
class PartOrderUpdate:
    id: Optional[int] = None
    business_id: Optional[int] = None
    part_order_id: Optional[int] = None
    update_type: str = ""
    previous_status: Optional[str] = None
    new_status: Optional[str] = None
    notes: Optional[str] = None
    created_by: Optional[int] = None
    created_at: Optional[str] = None


@dataclass
class CallbackRequest:
    id: Optional[int] = None
    business_id: Optional[int] = None
    customer_id: Optional[int] = None
    customer_name: str = ""
    phone_number: str = ""
    subject: str = ""
    details: str = ""
    assigned_to: Optional[int] = None
    status: str = "pending"
    priority: str = "medium"
    notes: str = ""
    requested_at: Optional[str] = None
    completed_at: Optional[str] = None
    deleted_at: Optional[str] = None


@dataclass
class Activity:
    id: Optional[int] = None
    business_id: Optional[int] = None
    user_id: Optional[int] = None
    activity_type: str = ""
    description: str = ""
    entity_type: str = ""
    entity_id: Optional[int] = None
    timestamp: Optional[str] = None
    metadata: Optional[dict] = None


@dataclass(frozen=True)
class LedgerEvent:
    """A committed change, handed to repository listeners."""
    business_id: int
    user_id: Optional[int]
    activity_type: str
    entity_type: str
    entity_id: Optional[int]
    description: str
    metadata: Optional[dict] = None
