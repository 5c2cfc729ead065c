"""AllocationEngine — maps order demand onto ledger reservations.

Allocation requests are queued and drained in (priority level, creation
time, arrival) order by one drainer at a time, so when two orders compete
for the last units of a SKU the higher-priority, older order is served
first regardless of which request thread arrived first.

Bins are tried soonest stock expiry first (undated stock last), then by
smallest surplus over the remaining demand: bins that can cover the rest
alone come first, tightest fit first, followed by the largest partial bins.
"""

import heapq
import itertools
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta

import structlog
from protean.utils.globals import current_domain

from warehouse.config import WarehouseSettings, get_settings
from warehouse.exceptions import InsufficientInventory, InvalidStateTransition, OrderAlreadyAllocated
from warehouse.ledger.ledger import InventoryLedger
from warehouse.ledger.port import BinSlot, StockPosition
from warehouse.locking import KeyedLocks
from warehouse.order.order import (
    ALLOCATED_STATUSES,
    COVERING_ALLOCATION_STATUSES,
    LIVE_ALLOCATION_STATUSES,
    FulfillmentOrder,
    OrderStatus,
)
from warehouse.utils.time import as_utc, utcnow

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class AllocationLine:
    """Outcome for one requested SKU."""

    sku: str
    requested: int
    allocated: int
    shortfall: int
    bins: tuple[str, ...] = ()

    @property
    def status(self) -> str:
        if self.shortfall == 0:
            return "Allocated"
        if self.allocated == 0:
            return "Unallocated"
        return "Partial"


@dataclass(frozen=True)
class AllocationResult:
    order_id: str
    status: str
    lines: tuple[AllocationLine, ...]
    already_allocated: bool = False

    @property
    def fully_allocated(self) -> bool:
        return all(line.shortfall == 0 for line in self.lines)


@dataclass(order=True)
class _QueuedRequest:
    priority_level: int
    created_at: datetime
    ticket: int
    order_id: str = field(compare=False)


class AllocationQueue:
    """Thread-safe priority queue of pending allocation requests."""

    def __init__(self):
        self._heap: list[_QueuedRequest] = []
        self._lock = threading.Lock()
        self._tickets = itertools.count(1)

    def push(self, order_id: str, priority_level: int, created_at: datetime) -> int:
        with self._lock:
            ticket = next(self._tickets)
            heapq.heappush(self._heap, _QueuedRequest(priority_level, as_utc(created_at), ticket, order_id))
            return ticket

    def pop(self) -> _QueuedRequest | None:
        with self._lock:
            return heapq.heappop(self._heap) if self._heap else None

    def __len__(self) -> int:
        with self._lock:
            return len(self._heap)


def summarize(order: FulfillmentOrder, already_allocated: bool = False) -> AllocationResult:
    lines = []
    for line in order.lines or []:
        covered = order.covered_for(line.sku)
        bins = tuple(
            sorted(
                {
                    str(a.bin_id)
                    for a in (order.allocations or [])
                    if a.sku == line.sku and a.status in COVERING_ALLOCATION_STATUSES
                }
            )
        )
        lines.append(
            AllocationLine(
                sku=line.sku,
                requested=line.quantity,
                allocated=min(covered, line.quantity),
                shortfall=max(line.quantity - covered, 0),
                bins=bins,
            )
        )
    return AllocationResult(
        order_id=str(order.id),
        status=order.status,
        lines=tuple(sorted(lines, key=lambda x: x.sku)),
        already_allocated=already_allocated,
    )


class AllocationEngine:
    def __init__(
        self,
        ledger: InventoryLedger,
        settings: WarehouseSettings | None = None,
        order_locks: KeyedLocks | None = None,
    ):
        self.ledger = ledger
        self.settings = settings or get_settings()
        self.order_locks = order_locks or KeyedLocks()
        self.queue = AllocationQueue()
        self._drain_lock = threading.Lock()
        self._outcomes: dict[int, tuple[int, AllocationResult | Exception]] = {}
        self._outcomes_lock = threading.Lock()
        self._served = itertools.count(1)
        self._expiry_listeners: list[Callable[[list[tuple[FulfillmentOrder, list[str]]]], None]] = []

    def on_expired(self, listener: Callable[[list[tuple[FulfillmentOrder, list[str]]]], None]) -> None:
        """Register a callback run once per sweep with each touched order and its expired allocation ids."""
        self._expiry_listeners.append(listener)

    # -------------------------------------------------------------------
    # Queue front door
    # -------------------------------------------------------------------
    def submit(self, order_id: str) -> int:
        """Queue an allocation request; returns a ticket for collecting the outcome."""
        order = current_domain.repository_for(FulfillmentOrder).get(order_id)
        return self.queue.push(str(order.id), order.priority_level, order.created_at)

    def drain(self, now: datetime | None = None) -> int:
        """Process queued requests in priority order; returns how many were handled."""
        handled = 0
        with self._drain_lock:
            while (request := self.queue.pop()) is not None:
                try:
                    outcome = self._allocate_one(request.order_id, now or utcnow())
                except Exception as exc:
                    # Re-raised to whichever caller submitted the request
                    outcome = exc
                with self._outcomes_lock:
                    self._outcomes[request.ticket] = (next(self._served), outcome)
                handled += 1
        return handled

    def collect(self, ticket: int) -> AllocationResult:
        """Return a drained request's result, re-raising its guard error if it had one."""
        with self._outcomes_lock:
            _, outcome = self._outcomes.pop(ticket)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    def allocate(self, order_id: str, now: datetime | None = None) -> AllocationResult:
        """Allocate one order, waiting behind any higher-priority requests already queued."""
        order = current_domain.repository_for(FulfillmentOrder).get(order_id)
        self._guard(order)
        ticket = self.submit(order_id)
        self.drain(now)
        return self.collect(ticket)

    def allocate_many(self, order_ids: list[str], now: datetime | None = None) -> list[AllocationResult]:
        """Queue several orders and drain once; results come back in service order."""
        tickets = [self.submit(order_id) for order_id in order_ids]
        self.drain(now)
        with self._outcomes_lock:
            served = sorted((self._outcomes.pop(ticket) for ticket in tickets), key=lambda item: item[0])

        results = []
        for _, outcome in served:
            if isinstance(outcome, OrderAlreadyAllocated):
                order = current_domain.repository_for(FulfillmentOrder).get(outcome.order_id)
                results.append(summarize(order, already_allocated=True))
            elif isinstance(outcome, Exception):
                raise outcome
            else:
                results.append(outcome)
        return results

    # -------------------------------------------------------------------
    # Allocation
    # -------------------------------------------------------------------
    def _guard(self, order: FulfillmentOrder) -> None:
        status = OrderStatus(order.status)
        if status == OrderStatus.CANCELLED:
            raise InvalidStateTransition(
                "order",
                status.value,
                OrderStatus.ALLOCATED.value,
                [OrderStatus.PENDING.value, OrderStatus.ALLOCATED_PARTIAL.value],
            )
        if status in ALLOCATED_STATUSES:
            raise OrderAlreadyAllocated(str(order.id), status.value)

    def _allocate_one(self, order_id: str, now: datetime) -> AllocationResult:
        with self.order_locks.hold(order_id):
            repo = current_domain.repository_for(FulfillmentOrder)
            order = repo.get(order_id)
            self._guard(order)

            expires_at = now + timedelta(minutes=self.settings.allocation_expiry_minutes)
            taken = []
            try:
                for line in order.lines or []:
                    remaining = order.shortfall_for(line.sku)
                    if remaining == 0:
                        continue
                    for slot, _position in self.candidate_bins(line.sku, remaining):
                        if remaining == 0:
                            break
                        handle = self._reserve_from(line.sku, slot.bin_id, remaining)
                        if handle is None:
                            continue
                        taken.append(handle)
                        order.add_allocation(line.sku, slot.bin_id, handle.quantity, handle.handle_id, expires_at, now)
                        remaining -= handle.quantity
                    if remaining > 0:
                        logger.warning(
                            "Allocation shortfall",
                            order_id=order_id,
                            sku=line.sku,
                            requested=line.quantity,
                            shortfall=remaining,
                        )

                order.settle_allocation(now)
                repo.add(order)
            except Exception:
                for handle in taken:
                    self.ledger.release(handle)
                raise

            logger.info(
                "Order allocated",
                order_id=order_id,
                status=order.status,
                priority=order.priority_level,
                reservations=len(taken),
            )
            return summarize(order)

    def candidate_bins(self, sku: str, demand: int) -> list[tuple[BinSlot, StockPosition]]:
        active = {b.bin_id: b for b in self.ledger.bins(active_only=True)}
        candidates = [
            (active[p.bin_id], p) for p in self.ledger.positions(sku=sku) if p.bin_id in active and p.available > 0
        ]

        def sort_key(candidate):
            slot, position = candidate
            surplus = position.available - demand
            return (
                position.expires_on is None,
                position.expires_on or date.max,
                surplus < 0,
                abs(surplus),
                slot.bin_code,
            )

        return sorted(candidates, key=sort_key)

    def _reserve_from(self, sku: str, bin_id: str, wanted: int):
        """Reserve as much of ``wanted`` as the bin can give, re-reading after lost races."""
        for _ in range(self.settings.ledger_max_retries):
            available = self.ledger.get_available(sku, bin_id)
            if available <= 0:
                return None
            try:
                return self.ledger.reserve(sku, bin_id, min(available, wanted))
            except InsufficientInventory as exc:
                if exc.contended:
                    logger.warning("Bin skipped under contention", sku=sku, bin_id=bin_id)
                    return None
                logger.debug("Bin drained while allocating, re-reading", sku=sku, bin_id=bin_id)
        return None

    # -------------------------------------------------------------------
    # Reclaiming reservations
    # -------------------------------------------------------------------
    def expire(self, now: datetime | None = None) -> list[str]:
        """Release every reserved, never-picked allocation past its expiry.

        A picking order whose last waiting allocation expires is closed out:
        it becomes Picked when something was picked, otherwise it is cancelled.
        """
        now = as_utc(now) if now else utcnow()
        repo = current_domain.repository_for(FulfillmentOrder)
        expired_ids = []
        touched: list[tuple[FulfillmentOrder, list[str]]] = []

        candidates = []
        for status in (OrderStatus.ALLOCATED, OrderStatus.ALLOCATED_PARTIAL, OrderStatus.PICKING):
            candidates.extend(repo._dao.query.filter(status=status.value).all().items)

        for candidate in candidates:
            if not candidate.expired_allocations(now):
                continue
            with self.order_locks.hold(str(candidate.id)):
                order = repo.get(candidate.id)
                stale = order.expired_allocations(now)
                for allocation in stale:
                    self.ledger.release(allocation.reservation_id)
                    order.expire_allocation(str(allocation.id), now)
                    expired_ids.append(str(allocation.id))
                    logger.info(
                        "Allocation expired",
                        order_id=str(order.id),
                        allocation_id=str(allocation.id),
                        sku=allocation.sku,
                        bin_id=allocation.bin_id,
                        quantity=allocation.quantity_allocated,
                    )
                if stale:
                    self._close_out_picking(order, now)
                    repo.add(order)
                    touched.append((order, [str(allocation.id) for allocation in stale]))

        logger.info("Allocation expiry sweep complete", expired_count=len(expired_ids))
        if touched:
            for listener in self._expiry_listeners:
                try:
                    listener(touched)
                except Exception:
                    logger.exception("Expiry listener failed", orders=len(touched))
        return expired_ids

    def _close_out_picking(self, order: FulfillmentOrder, now: datetime) -> None:
        if OrderStatus(order.status) != OrderStatus.PICKING:
            return
        if order.picking_finished():
            order.complete_picking(now)
            logger.info("Order picked", order_id=str(order.id))
        elif order.picking_abandoned():
            self.cancel(order, "allocation expired", now)
            order.cancel("allocation expired", override=True, now=now)
            logger.info("Order cancelled", order_id=str(order.id), override=True, reason="allocation expired")

    def cancel(self, order: FulfillmentOrder, reason: str = "order cancelled", now: datetime | None = None) -> int:
        """Release every allocation on the order. The caller persists the order.

        Returns the number of allocations released; a second call releases none.
        """
        now = now or utcnow()
        released = 0
        for allocation in order.allocations or []:
            if allocation.status not in COVERING_ALLOCATION_STATUSES:
                continue
            self.ledger.release(allocation.reservation_id)
            order.release_allocation(str(allocation.id), reason, now)
            released += 1
        if released:
            logger.info("Order allocations released", order_id=str(order.id), count=released, reason=reason)
        return released

    # -------------------------------------------------------------------
    # Picking feedback
    # -------------------------------------------------------------------
    def consume(self, order: FulfillmentOrder, allocation_id: str, quantity: int, now: datetime | None = None) -> None:
        """Picked units leave the bin for good. The caller persists the order."""
        allocation = order.allocation(allocation_id)
        order.record_allocation_pick(allocation_id, quantity, now)
        self.ledger.consume(allocation.reservation_id, quantity)

    def release_allocation(
        self, order: FulfillmentOrder, allocation_id: str, reason: str, now: datetime | None = None
    ) -> int:
        """Give an allocation's unpicked units back to the bin. The caller persists the order."""
        allocation = order.allocation(allocation_id)
        if allocation.status not in LIVE_ALLOCATION_STATUSES:
            return 0
        returned = order.release_allocation(allocation_id, reason, now)
        self.ledger.release(allocation.reservation_id)
        return returned

    def close_short(
        self, order: FulfillmentOrder, allocation_id: str, now: datetime | None = None, reason: str = "short pick"
    ) -> int:
        """Stop an allocation at what was picked and return the rest to the bin."""
        allocation = order.allocation(allocation_id)
        returned = order.close_short(allocation_id, now, reason)
        if returned:
            self.ledger.release(allocation.reservation_id)
        return returned
