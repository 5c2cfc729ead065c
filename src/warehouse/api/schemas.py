"""Pydantic request/response schemas for the Warehouse API."""

from __future__ import annotations

from datetime import date, datetime

from pydantic import BaseModel, Field

# --- Inventory Request Schemas ---


class RegisterBinRequest(BaseModel):
    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "bin_code": "A-01-03",
                    "zone_name": "A",
                    "aisle": 1,
                    "shelf": 3,
                    "max_capacity": 200,
                    "bin_type": "standard",
                }
            ]
        }
    }

    bin_code: str = Field(..., max_length=50)
    zone_name: str = Field(..., max_length=50)
    aisle: int = Field(0, ge=0)
    shelf: int = Field(0, ge=0)
    max_capacity: int = Field(..., ge=1)
    bin_type: str = Field("standard", max_length=30)


class ReceiveStockRequest(BaseModel):
    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "sku": "TSHIRT-BLK-M",
                    "bin_id": "bin-a-01-03",
                    "quantity": 48,
                    "reference": "PO-2024-0113",
                    "expires_on": None,
                }
            ]
        }
    }

    sku: str = Field(..., max_length=100)
    bin_id: str
    quantity: int = Field(..., ge=1)
    reference: str | None = Field(None, max_length=100)
    expires_on: date | None = None


class AdjustStockRequest(BaseModel):
    sku: str = Field(..., max_length=100)
    bin_id: str
    delta: int
    reason: str = Field(..., min_length=1, max_length=500)


class MoveStockRequest(BaseModel):
    sku: str = Field(..., max_length=100)
    from_bin_id: str
    to_bin_id: str
    quantity: int = Field(..., ge=1)
    reason: str | None = Field(None, max_length=500)


class AcknowledgeAlertRequest(BaseModel):
    acknowledged_by: str = Field(..., max_length=100)


# --- Order Request Schemas ---


class OrderLineRequest(BaseModel):
    sku: str = Field(..., max_length=100)
    quantity: int = Field(..., ge=1)


class AcceptOrderRequest(BaseModel):
    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "order_reference": "ORD-100234",
                    "lines": [{"sku": "TSHIRT-BLK-M", "quantity": 2}, {"sku": "MUG-WHT", "quantity": 1}],
                    "priority_level": 2,
                    "special_instructions": "Gift wrap",
                }
            ]
        }
    }

    order_reference: str = Field(..., max_length=100)
    lines: list[OrderLineRequest] = Field(..., min_length=1)
    priority_level: int = Field(3, ge=1)
    special_instructions: str | None = None
    created_at: datetime | None = None


class CancelOrderRequest(BaseModel):
    override: bool = False
    reason: str | None = Field(None, max_length=500)


# --- Picking Request Schemas ---


class GeneratePickListRequest(BaseModel):
    order_ids: list[str] | None = None
    allocation_ids: list[str] | None = None
    list_name: str | None = Field(None, max_length=200)


class GenerateBatchRequest(BaseModel):
    order_ids: list[str] = Field(..., min_length=1)
    name_prefix: str | None = Field(None, max_length=150)


class StartSessionRequest(BaseModel):
    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "pick_list_ids": ["pl-001", "pl-002"],
                    "picker_id": "picker-07",
                    "session_name": "Morning wave",
                    "session_type": "Batch",
                }
            ]
        }
    }

    pick_list_ids: list[str] = Field(..., min_length=1)
    picker_id: str | None = Field(None, max_length=100)
    session_name: str | None = Field(None, max_length=200)
    session_type: str | None = Field(None, max_length=20)


class RecordPickRequest(BaseModel):
    pick_item_id: str
    quantity: int = Field(..., ge=1)
    picker_id: str | None = Field(None, max_length=100)


class ShortPickRequest(BaseModel):
    pick_item_id: str
    quantity_found: int = Field(..., ge=0)
    notes: str | None = Field(None, max_length=500)
    picker_id: str | None = Field(None, max_length=100)


class CancelSessionRequest(BaseModel):
    reason: str | None = Field(None, max_length=500)


class ExpireAllocationsRequest(BaseModel):
    as_of: datetime | None = None


# --- Response Schemas ---


class StatusResponse(BaseModel):
    status: str = "ok"


class OrderIdResponse(BaseModel):
    order_id: str


class StockPositionResponse(BaseModel):
    sku: str
    bin_id: str
    on_hand: int
    allocated: int
    available: int
    expires_on: date | None = None


class BinResponse(BaseModel):
    bin_id: str
    bin_code: str
    zone_name: str
    aisle: int
    shelf: int
    max_capacity: int
    occupied: int
    free_capacity: int
    bin_type: str
    is_active: bool
    positions: list[StockPositionResponse] = []


class MovementResponse(BaseModel):
    movement_id: str
    sku: str
    quantity: int
    movement_type: str
    from_bin_id: str | None = None
    to_bin_id: str | None = None
    reason: str | None = None
    reference: str | None = None
    occurred_at: datetime


class AlertResponse(BaseModel):
    alert_id: str
    sku: str
    bin_id: str | None = None
    previous_available: int
    current_available: int
    threshold: int
    alert_level: str
    is_acknowledged: bool
    acknowledged_by: str | None = None
    detected_at: datetime | None = None


class AllocationLineResponse(BaseModel):
    sku: str
    requested: int
    allocated: int
    shortfall: int
    status: str
    bins: list[str] = []


class AllocationResultResponse(BaseModel):
    order_id: str
    status: str
    fully_allocated: bool
    already_allocated: bool = False
    lines: list[AllocationLineResponse]


class AllocationResponse(BaseModel):
    allocation_id: str
    sku: str
    bin_id: str
    quantity_allocated: int
    quantity_picked: int
    status: str
    pick_list_id: str | None = None
    expires_at: datetime | None = None


class OrderLineResponse(BaseModel):
    sku: str
    quantity: int


class OrderResponse(BaseModel):
    order_id: str
    order_reference: str
    priority_level: int
    status: str
    estimated_pick_time_minutes: int | None = None
    lines: list[OrderLineResponse]
    allocations: list[AllocationResponse]
    pick_started_at: datetime | None = None
    pick_completed_at: datetime | None = None
    cancelled_at: datetime | None = None
    cancellation_reason: str | None = None
    created_at: datetime | None = None


class PickSourceResponse(BaseModel):
    order_id: str
    allocation_id: str
    quantity: int
    picked: int


class PickItemResponse(BaseModel):
    pick_item_id: str
    pick_sequence: int
    bin_id: str
    bin_code: str | None = None
    zone_name: str | None = None
    aisle: int | None = None
    shelf: int | None = None
    sku: str
    quantity_requested: int
    quantity_picked: int
    status: str
    sources: list[PickSourceResponse]
    notes: str | None = None


class PickListResponse(BaseModel):
    pick_list_id: str
    list_name: str
    status: str
    pick_session_id: str | None = None
    total_items: int
    total_quantity: int
    estimated_time_seconds: int
    zone_count: int
    is_batch: bool
    order_ids: list[str]
    items: list[PickItemResponse]


class PickSessionResponse(BaseModel):
    pick_session_id: str
    session_name: str
    session_type: str
    status: str
    pick_list_ids: list[str]
    total_orders: int
    total_items: int
    total_pick_lists: int
    units_picked: int
    efficiency_score: float | None = None
    assigned_picker_id: str | None = None
    started_at: datetime | None = None
    first_pick_at: datetime | None = None
    completed_at: datetime | None = None


class PickResultResponse(BaseModel):
    session: PickSessionResponse
    pick_list_id: str
    pick_list_status: str
    item: PickItemResponse
    orders: list[OrderResponse]


class ExpireAllocationsResponse(BaseModel):
    status: str = "ok"
    expired_count: int = 0


class QueueEntryResponse(BaseModel):
    order_id: str
    order_reference: str
    priority_level: int
    status: str
    line_count: int
    units_requested: int
    accepted_at: datetime | None = None
    updated_at: datetime | None = None


class SessionHistoryResponse(BaseModel):
    pick_session_id: str
    session_name: str
    session_type: str
    status: str
    assigned_picker_id: str | None = None
    total_items: int
    units_picked: int
    efficiency_score: float | None = None
    started_at: datetime | None = None
    closed_at: datetime | None = None
