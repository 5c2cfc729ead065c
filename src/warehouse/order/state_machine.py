"""FulfillmentOrderStateMachine — drives order transitions that span components.

The legal graph lives on the FulfillmentOrder aggregate. This service loads
the order under its lock, validates the transition before anything is
touched, performs the side effects (releasing allocations on cancel) and
persists the result.
"""

from collections.abc import Callable
from datetime import datetime

import structlog
from protean.utils.globals import current_domain

from warehouse.allocation.engine import AllocationEngine
from warehouse.locking import KeyedLocks
from warehouse.order.order import AllocationStatus, FulfillmentOrder, OrderStatus
from warehouse.utils.time import utcnow

logger = structlog.get_logger(__name__)


class FulfillmentOrderStateMachine:
    def __init__(self, engine: AllocationEngine, order_locks: KeyedLocks | None = None):
        self.engine = engine
        self.order_locks = order_locks or engine.order_locks
        self._cancel_listeners: list[Callable[[FulfillmentOrder], None]] = []

    def on_cancelled(self, listener: Callable[[FulfillmentOrder], None]) -> None:
        """Register a callback run after an order is cancelled, outside the order lock."""
        self._cancel_listeners.append(listener)

    def get(self, order_id: str) -> FulfillmentOrder:
        return current_domain.repository_for(FulfillmentOrder).get(order_id)

    def begin_picking(
        self,
        order_id: str,
        pick_list_id: str,
        allocation_ids: list[str],
        estimated_seconds: int = 0,
        now: datetime | None = None,
    ) -> FulfillmentOrder:
        with self.order_locks.hold(order_id):
            repo = current_domain.repository_for(FulfillmentOrder)
            order = repo.get(order_id)
            order.begin_picking(pick_list_id, allocation_ids, estimated_seconds, now or utcnow())
            repo.add(order)
            return order

    def apply_picks(
        self, order_id: str, picks: list[tuple[str, int]], now: datetime | None = None
    ) -> FulfillmentOrder:
        """Record picked units against allocations and consume them from the ledger.

        Moves the order to PICKED once none of its allocations is waiting.
        """
        now = now or utcnow()
        with self.order_locks.hold(order_id):
            repo = current_domain.repository_for(FulfillmentOrder)
            order = repo.get(order_id)
            for allocation_id, quantity in picks:
                if order.allocation(allocation_id).status != AllocationStatus.PICKING.value:
                    logger.warning(
                        "Pick for closed allocation ignored",
                        order_id=order_id,
                        allocation_id=allocation_id,
                        quantity=quantity,
                    )
                    continue
                self.engine.consume(order, allocation_id, quantity, now)
            self._advance(order, now)
            repo.add(order)
            return order

    def close_short(
        self, order_id: str, allocation_ids: list[str], reason: str = "short pick", now: datetime | None = None
    ) -> FulfillmentOrder:
        """Stop picking allocations at what was found, returning the rest to the ledger."""
        now = now or utcnow()
        with self.order_locks.hold(order_id):
            repo = current_domain.repository_for(FulfillmentOrder)
            order = repo.get(order_id)
            for allocation_id in allocation_ids:
                self.engine.close_short(order, allocation_id, now, reason)
            self._advance(order, now)
            repo.add(order)
            return order

    def _advance(self, order: FulfillmentOrder, now: datetime) -> None:
        if OrderStatus(order.status) == OrderStatus.PICKING and order.picking_finished():
            order.complete_picking(now)
            logger.info("Order picked", order_id=str(order.id))

    def complete_picking(self, order_id: str, now: datetime | None = None) -> FulfillmentOrder:
        with self.order_locks.hold(order_id):
            repo = current_domain.repository_for(FulfillmentOrder)
            order = repo.get(order_id)
            order.complete_picking(now or utcnow())
            repo.add(order)
            return order

    def mark_packed(self, order_id: str, now: datetime | None = None) -> FulfillmentOrder:
        with self.order_locks.hold(order_id):
            repo = current_domain.repository_for(FulfillmentOrder)
            order = repo.get(order_id)
            order.mark_packed(now or utcnow())
            repo.add(order)
            return order

    def mark_shipped(self, order_id: str, now: datetime | None = None) -> FulfillmentOrder:
        with self.order_locks.hold(order_id):
            repo = current_domain.repository_for(FulfillmentOrder)
            order = repo.get(order_id)
            order.mark_shipped(now or utcnow())
            repo.add(order)
            return order

    def cancel(
        self,
        order_id: str,
        override: bool = False,
        reason: str | None = None,
        now: datetime | None = None,
    ) -> FulfillmentOrder:
        """Cancel an order and release its allocations. Cancelling twice is a no-op."""
        now = now or utcnow()
        with self.order_locks.hold(order_id):
            repo = current_domain.repository_for(FulfillmentOrder)
            order = repo.get(order_id)
            if OrderStatus(order.status) == OrderStatus.CANCELLED:
                logger.info("Order already cancelled", order_id=order_id)
                return order

            # Fails with InvalidStateTransition before anything is released
            order.assert_can_transition(OrderStatus.CANCELLED, override=override)
            self.engine.cancel(order, reason or "order cancelled", now)
            order.cancel(reason, override=override, now=now)
            repo.add(order)

        logger.info("Order cancelled", order_id=order_id, override=override, reason=reason)
        # The cancel is stored by now; listener failures are logged, not raised
        for listener in self._cancel_listeners:
            try:
                listener(order)
            except Exception:
                logger.exception("Cancel listener failed", order_id=order_id)
        return order
