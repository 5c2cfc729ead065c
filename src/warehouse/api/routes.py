"""FastAPI endpoints for the Warehouse domain.

Single-aggregate operations go through Protean commands. Allocation, picking
and cancellation span several aggregates and the inventory ledger, so those
endpoints call the warehouse services directly.
"""

import json

from fastapi import APIRouter
from protean.utils.globals import current_domain

from warehouse.alert.alert import LowStockAlert
from warehouse.alert.alerting import AcknowledgeLowStockAlert
from warehouse.allocation.engine import AllocationResult, summarize
from warehouse.api.schemas import (
    AcceptOrderRequest,
    AcknowledgeAlertRequest,
    AdjustStockRequest,
    AlertResponse,
    AllocationLineResponse,
    AllocationResponse,
    AllocationResultResponse,
    BinResponse,
    CancelOrderRequest,
    CancelSessionRequest,
    ExpireAllocationsRequest,
    ExpireAllocationsResponse,
    GenerateBatchRequest,
    GeneratePickListRequest,
    MovementResponse,
    MoveStockRequest,
    OrderIdResponse,
    OrderLineResponse,
    OrderResponse,
    PickItemResponse,
    PickListResponse,
    PickResultResponse,
    PickSessionResponse,
    PickSourceResponse,
    QueueEntryResponse,
    ReceiveStockRequest,
    RecordPickRequest,
    RegisterBinRequest,
    SessionHistoryResponse,
    ShortPickRequest,
    StartSessionRequest,
    StockPositionResponse,
)
from warehouse.exceptions import OrderAlreadyAllocated
from warehouse.order.acceptance import AcceptOrder, RecordOrderPacked, RecordOrderShipped
from warehouse.order.expiry import ExpireAllocations
from warehouse.order.order import FulfillmentOrder
from warehouse.picking.generation import GeneratePickLists
from warehouse.picking.pick_list import PickList
from warehouse.projections.fulfillment_queue import FulfillmentQueue
from warehouse.projections.session_history import PickSessionHistory
from warehouse.services import get_services
from warehouse.session.scheduler import PickOutcome
from warehouse.session.session import PickSession

inventory_router = APIRouter(prefix="/inventory", tags=["inventory"])
order_router = APIRouter(prefix="/orders", tags=["orders"])
pick_list_router = APIRouter(prefix="/pick-lists", tags=["pick-lists"])
session_router = APIRouter(prefix="/sessions", tags=["sessions"])
maintenance_router = APIRouter(prefix="/maintenance", tags=["maintenance"])


# ---------------------------------------------------------------------------
# Serialisers
# ---------------------------------------------------------------------------
def _position_response(position) -> StockPositionResponse:
    return StockPositionResponse(
        sku=position.sku,
        bin_id=position.bin_id,
        on_hand=position.on_hand,
        allocated=position.allocated,
        available=position.available,
        expires_on=position.expires_on,
    )


def _bin_response(slot, positions=()) -> BinResponse:
    return BinResponse(
        bin_id=slot.bin_id,
        bin_code=slot.bin_code,
        zone_name=slot.zone_name,
        aisle=slot.aisle,
        shelf=slot.shelf,
        max_capacity=slot.max_capacity,
        occupied=slot.occupied,
        free_capacity=slot.free_capacity,
        bin_type=slot.bin_type,
        is_active=slot.is_active,
        positions=[_position_response(p) for p in positions],
    )


def _alert_response(alert: LowStockAlert) -> AlertResponse:
    return AlertResponse(
        alert_id=str(alert.id),
        sku=alert.sku,
        bin_id=str(alert.bin_id) if alert.bin_id else None,
        previous_available=alert.previous_available,
        current_available=alert.current_available,
        threshold=alert.threshold,
        alert_level=alert.alert_level,
        is_acknowledged=bool(alert.is_acknowledged),
        acknowledged_by=alert.acknowledged_by,
        detected_at=alert.detected_at,
    )


def _allocation_result_response(result: AllocationResult) -> AllocationResultResponse:
    return AllocationResultResponse(
        order_id=result.order_id,
        status=result.status,
        fully_allocated=result.fully_allocated,
        already_allocated=result.already_allocated,
        lines=[
            AllocationLineResponse(
                sku=line.sku,
                requested=line.requested,
                allocated=line.allocated,
                shortfall=line.shortfall,
                status=line.status,
                bins=list(line.bins),
            )
            for line in result.lines
        ],
    )


def _order_response(order: FulfillmentOrder) -> OrderResponse:
    return OrderResponse(
        order_id=str(order.id),
        order_reference=order.order_reference,
        priority_level=order.priority_level,
        status=order.status,
        estimated_pick_time_minutes=order.estimated_pick_time_minutes,
        lines=[OrderLineResponse(sku=line.sku, quantity=line.quantity) for line in order.lines or []],
        allocations=[
            AllocationResponse(
                allocation_id=str(a.id),
                sku=a.sku,
                bin_id=str(a.bin_id),
                quantity_allocated=a.quantity_allocated,
                quantity_picked=a.quantity_picked or 0,
                status=a.status,
                pick_list_id=str(a.pick_list_id) if a.pick_list_id else None,
                expires_at=a.expires_at,
            )
            for a in order.allocations or []
        ],
        pick_started_at=order.pick_started_at,
        pick_completed_at=order.pick_completed_at,
        cancelled_at=order.cancelled_at,
        cancellation_reason=order.cancellation_reason,
        created_at=order.created_at,
    )


def _item_response(item) -> PickItemResponse:
    return PickItemResponse(
        pick_item_id=str(item.id),
        pick_sequence=item.pick_sequence,
        bin_id=str(item.bin_id),
        bin_code=item.bin_code,
        zone_name=item.zone_name,
        aisle=item.aisle,
        shelf=item.shelf,
        sku=item.sku,
        quantity_requested=item.quantity_requested,
        quantity_picked=item.quantity_picked or 0,
        status=item.status,
        sources=[PickSourceResponse(**source) for source in item.source_list()],
        notes=item.notes,
    )


def _pick_list_response(pick_list: PickList) -> PickListResponse:
    return PickListResponse(
        pick_list_id=str(pick_list.id),
        list_name=pick_list.list_name,
        status=pick_list.status,
        pick_session_id=str(pick_list.pick_session_id) if pick_list.pick_session_id else None,
        total_items=pick_list.total_items,
        total_quantity=pick_list.total_quantity,
        estimated_time_seconds=pick_list.estimated_time_seconds,
        zone_count=pick_list.zone_count,
        is_batch=bool(pick_list.is_batch),
        order_ids=pick_list.order_id_list(),
        items=[_item_response(item) for item in pick_list.sorted_items()],
    )


def _session_response(session: PickSession) -> PickSessionResponse:
    return PickSessionResponse(
        pick_session_id=str(session.id),
        session_name=session.session_name,
        session_type=session.session_type,
        status=session.status,
        pick_list_ids=session.pick_list_id_list(),
        total_orders=session.total_orders,
        total_items=session.total_items,
        total_pick_lists=session.total_pick_lists,
        units_picked=session.units_picked or 0,
        efficiency_score=session.efficiency_score,
        assigned_picker_id=session.assigned_picker_id,
        started_at=session.started_at,
        first_pick_at=session.first_pick_at,
        completed_at=session.completed_at,
    )


def _pick_result_response(outcome: PickOutcome) -> PickResultResponse:
    return PickResultResponse(
        session=_session_response(outcome.session),
        pick_list_id=str(outcome.pick_list.id),
        pick_list_status=outcome.pick_list.status,
        item=_item_response(outcome.item),
        orders=[_order_response(order) for order in outcome.orders],
    )


# ---------------------------------------------------------------------------
# Inventory
# ---------------------------------------------------------------------------
@inventory_router.post("/bins", status_code=201, response_model=BinResponse)
async def register_bin(body: RegisterBinRequest) -> BinResponse:
    slot = get_services().ledger.register_bin(
        bin_code=body.bin_code,
        zone_name=body.zone_name,
        aisle=body.aisle,
        shelf=body.shelf,
        max_capacity=body.max_capacity,
        bin_type=body.bin_type,
    )
    return _bin_response(slot)


@inventory_router.get("/bins/{bin_id}", response_model=BinResponse)
async def get_bin(bin_id: str) -> BinResponse:
    ledger = get_services().ledger
    return _bin_response(ledger.get_bin(bin_id), ledger.positions(bin_id=bin_id))


@inventory_router.put("/bins/{bin_id}/deactivate", response_model=BinResponse)
async def deactivate_bin(bin_id: str) -> BinResponse:
    return _bin_response(get_services().ledger.deactivate_bin(bin_id))


@inventory_router.post("/receive", response_model=StockPositionResponse)
async def receive_stock(body: ReceiveStockRequest) -> StockPositionResponse:
    position = get_services().ledger.receive(
        sku=body.sku,
        bin_id=body.bin_id,
        quantity=body.quantity,
        reference=body.reference,
        expires_on=body.expires_on,
    )
    return _position_response(position)


@inventory_router.post("/adjust", response_model=StockPositionResponse)
async def adjust_stock(body: AdjustStockRequest) -> StockPositionResponse:
    position = get_services().ledger.adjust(body.sku, body.bin_id, body.delta, body.reason)
    return _position_response(position)


@inventory_router.post("/move", response_model=list[StockPositionResponse])
async def move_stock(body: MoveStockRequest) -> list[StockPositionResponse]:
    source, target = get_services().ledger.move(
        body.sku, body.from_bin_id, body.to_bin_id, body.quantity, body.reason
    )
    return [_position_response(source), _position_response(target)]


@inventory_router.get("/movements", response_model=list[MovementResponse])
async def list_movements(sku: str | None = None, bin_id: str | None = None) -> list[MovementResponse]:
    return [
        MovementResponse(
            movement_id=m.movement_id,
            sku=m.sku,
            quantity=m.quantity,
            movement_type=m.movement_type,
            from_bin_id=m.from_bin_id,
            to_bin_id=m.to_bin_id,
            reason=m.reason,
            reference=m.reference,
            occurred_at=m.occurred_at,
        )
        for m in get_services().ledger.movements(sku=sku, bin_id=bin_id)
    ]


@inventory_router.get("/alerts", response_model=list[AlertResponse])
async def list_alerts(include_acknowledged: bool = False) -> list[AlertResponse]:
    query = current_domain.repository_for(LowStockAlert)._dao.query
    if not include_acknowledged:
        query = query.filter(is_acknowledged=False)
    alerts = sorted(query.all().items, key=lambda a: a.detected_at, reverse=True)
    return [_alert_response(alert) for alert in alerts]


@inventory_router.put("/alerts/{alert_id}/acknowledge", response_model=AlertResponse)
async def acknowledge_alert(alert_id: str, body: AcknowledgeAlertRequest) -> AlertResponse:
    command = AcknowledgeLowStockAlert(alert_id=alert_id, acknowledged_by=body.acknowledged_by)
    current_domain.process(command, asynchronous=False)
    return _alert_response(current_domain.repository_for(LowStockAlert).get(alert_id))


# ---------------------------------------------------------------------------
# Orders
# ---------------------------------------------------------------------------
@order_router.post("", status_code=201, response_model=OrderIdResponse)
async def accept_order(body: AcceptOrderRequest) -> OrderIdResponse:
    command = AcceptOrder(
        order_reference=body.order_reference,
        lines=json.dumps([line.model_dump() for line in body.lines]),
        priority_level=body.priority_level,
        special_instructions=body.special_instructions,
        created_at=body.created_at,
    )
    result = current_domain.process(command, asynchronous=False)
    return OrderIdResponse(order_id=result)


@order_router.get("/queue", response_model=list[QueueEntryResponse])
async def fulfillment_queue(status: str | None = None) -> list[QueueEntryResponse]:
    query = current_domain.repository_for(FulfillmentQueue)._dao.query
    if status:
        query = query.filter(status=status)
    rows = sorted(query.all().items, key=lambda r: (r.priority_level, r.accepted_at))
    return [
        QueueEntryResponse(
            order_id=str(r.order_id),
            order_reference=r.order_reference,
            priority_level=r.priority_level,
            status=r.status,
            line_count=r.line_count,
            units_requested=r.units_requested,
            accepted_at=r.accepted_at,
            updated_at=r.updated_at,
        )
        for r in rows
    ]


@order_router.get("/{order_id}", response_model=OrderResponse)
async def get_order(order_id: str) -> OrderResponse:
    return _order_response(current_domain.repository_for(FulfillmentOrder).get(order_id))


@order_router.post("/{order_id}/allocate", response_model=AllocationResultResponse)
async def allocate_order(order_id: str) -> AllocationResultResponse:
    """Reserve bin stock for the order.

    Repeating the call for an order that already holds its stock is a no-op
    that returns the current allocation.
    """
    try:
        result = get_services().engine.allocate(order_id)
    except OrderAlreadyAllocated:
        order = current_domain.repository_for(FulfillmentOrder).get(order_id)
        result = summarize(order, already_allocated=True)
    return _allocation_result_response(result)


@order_router.post("/{order_id}/cancel", response_model=OrderResponse)
async def cancel_order(order_id: str, body: CancelOrderRequest | None = None) -> OrderResponse:
    body = body or CancelOrderRequest()
    order = get_services().state_machine.cancel(order_id, override=body.override, reason=body.reason)
    return _order_response(order)


@order_router.put("/{order_id}/packed", response_model=OrderResponse)
async def record_packed(order_id: str) -> OrderResponse:
    current_domain.process(RecordOrderPacked(order_id=order_id), asynchronous=False)
    return _order_response(current_domain.repository_for(FulfillmentOrder).get(order_id))


@order_router.put("/{order_id}/shipped", response_model=OrderResponse)
async def record_shipped(order_id: str) -> OrderResponse:
    current_domain.process(RecordOrderShipped(order_id=order_id), asynchronous=False)
    return _order_response(current_domain.repository_for(FulfillmentOrder).get(order_id))


# ---------------------------------------------------------------------------
# Pick lists
# ---------------------------------------------------------------------------
def _generated(pick_list_ids: list[str]) -> list[PickListResponse]:
    repo = current_domain.repository_for(PickList)
    return [_pick_list_response(repo.get(pick_list_id)) for pick_list_id in pick_list_ids]


@pick_list_router.post("/generate", status_code=201, response_model=PickListResponse)
async def generate_pick_list(body: GeneratePickListRequest) -> PickListResponse:
    command = GeneratePickLists(
        order_ids=json.dumps(body.order_ids) if body.order_ids else None,
        allocation_ids=json.dumps(body.allocation_ids) if body.allocation_ids else None,
        list_name=body.list_name,
        batch=False,
    )
    result = current_domain.process(command, asynchronous=False)
    return _generated(result)[0]


@pick_list_router.post("/generate-batch", status_code=201, response_model=list[PickListResponse])
async def generate_batch_pick_lists(body: GenerateBatchRequest) -> list[PickListResponse]:
    command = GeneratePickLists(
        order_ids=json.dumps(body.order_ids),
        list_name=body.name_prefix,
        batch=True,
    )
    result = current_domain.process(command, asynchronous=False)
    return _generated(result)


@pick_list_router.get("/{pick_list_id}", response_model=PickListResponse)
async def get_pick_list(pick_list_id: str) -> PickListResponse:
    return _pick_list_response(current_domain.repository_for(PickList).get(pick_list_id))


# ---------------------------------------------------------------------------
# Pick sessions
# ---------------------------------------------------------------------------
@session_router.post("/start", status_code=201, response_model=PickSessionResponse)
async def start_session(body: StartSessionRequest) -> PickSessionResponse:
    session = get_services().scheduler.start_session(
        body.pick_list_ids,
        picker_id=body.picker_id,
        session_name=body.session_name,
        session_type=body.session_type,
    )
    return _session_response(session)


@session_router.get("/history", response_model=list[SessionHistoryResponse])
async def session_history(picker_id: str | None = None) -> list[SessionHistoryResponse]:
    query = current_domain.repository_for(PickSessionHistory)._dao.query
    if picker_id:
        query = query.filter(assigned_picker_id=picker_id)
    rows = sorted(query.all().items, key=lambda r: r.started_at, reverse=True)
    return [
        SessionHistoryResponse(
            pick_session_id=str(r.pick_session_id),
            session_name=r.session_name,
            session_type=r.session_type,
            status=r.status,
            assigned_picker_id=r.assigned_picker_id,
            total_items=r.total_items,
            units_picked=r.units_picked or 0,
            efficiency_score=r.efficiency_score,
            started_at=r.started_at,
            closed_at=r.closed_at,
        )
        for r in rows
    ]


@session_router.get("/{session_id}", response_model=PickSessionResponse)
async def get_session(session_id: str) -> PickSessionResponse:
    return _session_response(get_services().scheduler.get(session_id))


@session_router.post("/{session_id}/pick", response_model=PickResultResponse)
async def record_pick(session_id: str, body: RecordPickRequest) -> PickResultResponse:
    outcome = get_services().scheduler.record_pick(
        session_id, body.pick_item_id, body.quantity, picker_id=body.picker_id
    )
    return _pick_result_response(outcome)


@session_router.post("/{session_id}/short-pick", response_model=PickResultResponse)
async def report_short_pick(session_id: str, body: ShortPickRequest) -> PickResultResponse:
    outcome = get_services().scheduler.report_short_pick(
        session_id, body.pick_item_id, body.quantity_found, notes=body.notes, picker_id=body.picker_id
    )
    return _pick_result_response(outcome)


@session_router.post("/{session_id}/complete", response_model=PickSessionResponse)
async def complete_session(session_id: str) -> PickSessionResponse:
    return _session_response(get_services().scheduler.complete_session(session_id))


@session_router.post("/{session_id}/cancel", response_model=PickSessionResponse)
async def cancel_session(session_id: str, body: CancelSessionRequest | None = None) -> PickSessionResponse:
    reason = body.reason if body else None
    return _session_response(get_services().scheduler.cancel_session(session_id, reason))


# ---------------------------------------------------------------------------
# Maintenance endpoints for periodic background jobs
# ---------------------------------------------------------------------------
@maintenance_router.post("/expire-allocations", response_model=ExpireAllocationsResponse)
async def expire_allocations(body: ExpireAllocationsRequest | None = None) -> ExpireAllocationsResponse:
    """Release reserved allocations past their expiry.

    Designed to be called periodically by an external scheduler (e.g., every 5 minutes).
    """
    command = ExpireAllocations(as_of=body.as_of if body else None)
    expired = current_domain.process(command, asynchronous=False)
    return ExpireAllocationsResponse(expired_count=expired or 0)
