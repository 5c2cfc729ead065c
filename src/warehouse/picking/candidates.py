"""Collect pick candidates from orders or allocation ids.

Only reserved allocations that are not already on an open pick list carry a
quantity; everything else is offered with zero quantity so the generator
logs and skips it.
"""

from protean.exceptions import ValidationError
from protean.utils.globals import current_domain

from warehouse.ledger.ledger import InventoryLedger
from warehouse.order.order import AllocationStatus, FulfillmentOrder, OrderStatus
from warehouse.picking.generator import PickCandidate
from warehouse.picking.pick_list import OPEN_LIST_STATUSES, PickList

_PICKABLE_ORDER_STATUSES = (
    OrderStatus.ALLOCATED.value,
    OrderStatus.ALLOCATED_PARTIAL.value,
    OrderStatus.PICKING.value,
)


def claimed_allocation_ids() -> set[str]:
    """Allocation ids already sitting on a draft or in-progress pick list."""
    repo = current_domain.repository_for(PickList)
    claimed = set()
    for status in OPEN_LIST_STATUSES:
        for pick_list in repo._dao.query.filter(status=status).all().items:
            claimed.update(pick_list.allocation_ids())
    return claimed


def _candidate(order, allocation, ledger: InventoryLedger, claimed: set[str]) -> PickCandidate:
    slot = ledger.get_bin(allocation.bin_id)
    eligible = allocation.status == AllocationStatus.RESERVED.value and str(allocation.id) not in claimed
    return PickCandidate(
        order_id=str(order.id),
        allocation_id=str(allocation.id),
        sku=allocation.sku,
        bin_id=slot.bin_id,
        bin_code=slot.bin_code,
        zone_name=slot.zone_name,
        aisle=slot.aisle,
        shelf=slot.shelf,
        quantity=allocation.unpicked if eligible else 0,
        priority=order.priority_level,
        order_created_at=order.created_at,
    )


def candidates_for_orders(order_ids: list[str], ledger: InventoryLedger) -> list[PickCandidate]:
    repo = current_domain.repository_for(FulfillmentOrder)
    claimed = claimed_allocation_ids()
    candidates = []
    for order_id in order_ids:
        order = repo.get(order_id)
        for allocation in order.allocations or []:
            candidates.append(_candidate(order, allocation, ledger, claimed))
    return candidates


def candidates_for_allocations(allocation_ids: list[str], ledger: InventoryLedger) -> list[PickCandidate]:
    wanted = {str(a) for a in allocation_ids}
    repo = current_domain.repository_for(FulfillmentOrder)
    claimed = claimed_allocation_ids()
    candidates = []
    for status in _PICKABLE_ORDER_STATUSES:
        for order in repo._dao.query.filter(status=status).all().items:
            for allocation in order.allocations or []:
                if str(allocation.id) in wanted:
                    candidates.append(_candidate(order, allocation, ledger, claimed))

    missing = wanted - {c.allocation_id for c in candidates}
    if missing:
        raise ValidationError({"allocation_ids": [f"Unknown or unpickable allocations: {', '.join(sorted(missing))}"]})
    return candidates
