"""PickSessionScheduler — groups pick lists into sessions and records picker scans.

Several pickers may scan items of one session at the same time. Scans on the
same item are applied with an optimistic compare-and-set on the item's
picked quantity: the scan reads the quantity, then re-checks it under the
pick list's lock and retries if another scan got there first.

Locks are always taken pick list first, then session, then order.
Cancelling orders (which withdraws them from open pick lists) only happens
after every lock has been released.
"""

from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

import structlog
from protean.exceptions import ObjectNotFoundError, ValidationError
from protean.utils.globals import current_domain

from warehouse.config import WarehouseSettings, get_settings
from warehouse.exceptions import ConcurrentModification, InvalidStateTransition
from warehouse.locking import KeyedLocks
from warehouse.order.order import AllocationStatus, FulfillmentOrder, OrderStatus
from warehouse.order.state_machine import FulfillmentOrderStateMachine
from warehouse.picking.pick_list import OPEN_LIST_STATUSES, PickList, PickListStatus
from warehouse.session.session import OPEN_SESSION_STATUSES, PickSession, SessionType
from warehouse.utils.time import utcnow

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class PickOutcome:
    """Authoritative state after a scan or short pick."""

    session: PickSession
    pick_list: PickList
    pick_item_id: str
    orders: tuple[FulfillmentOrder, ...]
    shares: tuple[dict, ...] = ()

    @property
    def item(self):
        return self.pick_list.item(self.pick_item_id)


def _by_order(rows: list[dict], quantity_key: str) -> OrderedDict[str, list[tuple[str, int]]]:
    grouped: OrderedDict[str, list[tuple[str, int]]] = OrderedDict()
    for row in rows:
        grouped.setdefault(row["order_id"], []).append((row["allocation_id"], row[quantity_key]))
    return grouped


class PickSessionScheduler:
    def __init__(
        self,
        state_machine: FulfillmentOrderStateMachine,
        settings: WarehouseSettings | None = None,
        list_locks: KeyedLocks | None = None,
        session_locks: KeyedLocks | None = None,
    ):
        self.state_machine = state_machine
        self.settings = settings or get_settings()
        self.list_locks = list_locks or KeyedLocks()
        self.session_locks = session_locks or KeyedLocks()

    def get(self, session_id: str) -> PickSession:
        return current_domain.repository_for(PickSession).get(session_id)

    # -------------------------------------------------------------------
    # Starting
    # -------------------------------------------------------------------
    def start_session(
        self,
        pick_list_ids: list[str],
        picker_id: str | None = None,
        session_name: str | None = None,
        session_type: str | None = None,
        now: datetime | None = None,
    ) -> PickSession:
        """Start draft pick lists as one session and move their orders into picking."""
        pick_list_ids = list(OrderedDict.fromkeys(str(i) for i in pick_list_ids))
        if not pick_list_ids:
            raise ValidationError({"pick_list_ids": ["A session needs at least one pick list"]})
        now = now or utcnow()

        list_repo = current_domain.repository_for(PickList)
        session_repo = current_domain.repository_for(PickSession)
        order_repo = current_domain.repository_for(FulfillmentOrder)

        with self.list_locks.hold_all(pick_list_ids):
            pick_lists = [list_repo.get(list_id) for list_id in pick_list_ids]
            listed_order_ids = {order_id for pick_list in pick_lists for order_id in pick_list.order_id_list()}

            with self.state_machine.order_locks.hold_all(listed_order_ids):
                # Validate everything before the first mutation
                work: list[tuple[PickList, str, list[str]]] = []
                for pick_list in pick_lists:
                    if pick_list.status != PickListStatus.DRAFT.value:
                        raise InvalidStateTransition(
                            "pick list",
                            pick_list.status,
                            PickListStatus.IN_PROGRESS.value,
                            [PickListStatus.DRAFT.value],
                        )
                    for order_id in pick_list.order_id_list():
                        order = order_repo.get(order_id)
                        if OrderStatus(order.status) == OrderStatus.CANCELLED:
                            continue
                        allocation_ids = [
                            a for a in pick_list.allocation_ids_for(order_id) if self._still_listed(pick_list, a)
                        ]
                        if not allocation_ids:
                            continue
                        for allocation_id in allocation_ids:
                            status = order.allocation(allocation_id).status
                            if status != AllocationStatus.RESERVED.value:
                                raise ValidationError(
                                    {
                                        "pick_list_ids": [
                                            f"Allocation {allocation_id} on pick list {pick_list.id} is {status}; "
                                            "regenerate the pick list"
                                        ]
                                    }
                                )
                        if OrderStatus(order.status) != OrderStatus.PICKING:
                            order.assert_can_transition(OrderStatus.PICKING)
                        work.append((pick_list, order_id, allocation_ids))

                order_ids = {order_id for _, order_id, _ in work}
                kind = session_type or (SessionType.BATCH.value if len(order_ids) > 1 else SessionType.SINGLE.value)
                session = PickSession.start(
                    session_name=session_name or f"Session {now:%Y-%m-%d %H:%M}",
                    session_type=kind,
                    pick_list_ids=pick_list_ids,
                    total_orders=len(order_ids),
                    total_items=sum(p.total_items or 0 for p in pick_lists),
                    picker_id=picker_id,
                    now=now,
                )

                # Orders first: the session and lists are only stored once every order moved
                for pick_list, order_id, allocation_ids in work:
                    self.state_machine.begin_picking(
                        order_id, str(pick_list.id), allocation_ids, pick_list.estimated_time_seconds or 0, now
                    )

                session_repo.add(session)
                for pick_list in pick_lists:
                    pick_list.start(str(session.id), picker_id, now)
                    pick_list.complete_if_done(now)
                    list_repo.add(pick_list)

        logger.info(
            "Pick session started",
            session_id=str(session.id),
            session_type=session.session_type,
            pick_lists=session.total_pick_lists,
            orders=session.total_orders,
            items=session.total_items,
            picker_id=picker_id,
        )
        return session

    @staticmethod
    def _still_listed(pick_list: PickList, allocation_id: str) -> bool:
        """False for sources withdrawn from the list before it started."""
        for item in pick_list.items or []:
            for source in item.source_list():
                if source["allocation_id"] == allocation_id and source["quantity"] > 0:
                    return True
        return False

    # -------------------------------------------------------------------
    # Scans
    # -------------------------------------------------------------------
    def _locate(self, session: PickSession, pick_item_id: str) -> str:
        list_repo = current_domain.repository_for(PickList)
        for list_id in session.pick_list_id_list():
            pick_list = list_repo.get(list_id)
            if any(str(item.id) == str(pick_item_id) for item in pick_list.items or []):
                return list_id
        raise ValidationError(
            {"pick_item_id": [f"Pick item {pick_item_id} is not part of pick session {session.id}"]}
        )

    def record_pick(
        self,
        session_id: str,
        pick_item_id: str,
        quantity: int,
        picker_id: str | None = None,
        now: datetime | None = None,
    ) -> PickOutcome:
        """Apply a barcode scan of ``quantity`` units to a pick item.

        The session and pick list are stored only after every order accepted
        its share, so a rejected pick leaves no counters behind.
        """
        if quantity < 1:
            raise ValidationError({"quantity": ["Picked quantity must be positive"]})
        now = now or utcnow()
        session = self.get(session_id)
        session.assert_open()
        list_id = self._locate(session, pick_item_id)
        list_repo = current_domain.repository_for(PickList)
        session_repo = current_domain.repository_for(PickSession)

        for attempt in range(1, self.settings.pick_max_retries + 1):
            seen = list_repo.get(list_id).item(pick_item_id).quantity_picked or 0
            with self.list_locks.hold(list_id), self.session_locks.hold(session_id):
                pick_list = list_repo.get(list_id)
                if (pick_list.item(pick_item_id).quantity_picked or 0) != seen:
                    logger.debug("Pick scan raced, retrying", pick_item_id=pick_item_id, attempt=attempt)
                    continue

                session = session_repo.get(session_id)
                session.assert_open()
                shares = pick_list.record_pick(pick_item_id, quantity, picker_id or session.assigned_picker_id, now)
                orders = tuple(
                    self.state_machine.apply_picks(order_id, picks, now)
                    for order_id, picks in _by_order(shares, "quantity").items()
                )
                session.record_work(quantity, now)
                session_repo.add(session)
                list_repo.add(pick_list)

            logger.info(
                "Item picked",
                session_id=session_id,
                pick_list_id=list_id,
                pick_item_id=pick_item_id,
                quantity=quantity,
                list_status=pick_list.status,
            )
            return PickOutcome(session, pick_list, str(pick_item_id), orders, tuple(shares))

        logger.warning("Pick scan gave up", pick_item_id=pick_item_id, attempts=self.settings.pick_max_retries)
        raise ConcurrentModification("pick item", str(pick_item_id), self.settings.pick_max_retries)

    def report_short_pick(
        self,
        session_id: str,
        pick_item_id: str,
        quantity_found: int,
        notes: str | None = None,
        picker_id: str | None = None,
        now: datetime | None = None,
    ) -> PickOutcome:
        """Close an item below its requested quantity and release what could not be found."""
        now = now or utcnow()
        session = self.get(session_id)
        session.assert_open()
        list_id = self._locate(session, pick_item_id)
        list_repo = current_domain.repository_for(PickList)
        session_repo = current_domain.repository_for(PickSession)

        with self.list_locks.hold(list_id), self.session_locks.hold(session_id):
            pick_list = list_repo.get(list_id)
            session = session_repo.get(session_id)
            session.assert_open()
            shares, shorted = pick_list.short_pick(
                pick_item_id, quantity_found, notes, picker_id or session.assigned_picker_id, now
            )

            picked = _by_order(shares, "quantity")
            short = _by_order(shorted, "missing")
            orders = []
            for order_id in OrderedDict.fromkeys([*picked, *short]):
                if order_id in picked:
                    self.state_machine.apply_picks(order_id, picked[order_id], now)
                orders.append(
                    self.state_machine.close_short(
                        order_id, [allocation_id for allocation_id, _ in short.get(order_id, [])], now=now
                    )
                )
            session.record_work(quantity_found, now)
            session_repo.add(session)
            list_repo.add(pick_list)

        logger.warning(
            "Item short picked",
            session_id=session_id,
            pick_item_id=pick_item_id,
            quantity_found=quantity_found,
            shorted=[row["allocation_id"] for row in shorted],
            notes=notes,
        )
        orders = self._cancel_abandoned(orders, "nothing picked", now)
        return PickOutcome(session, pick_list, str(pick_item_id), tuple(orders), tuple(shares))

    # -------------------------------------------------------------------
    # Closing
    # -------------------------------------------------------------------
    def complete_session(self, session_id: str, now: datetime | None = None) -> PickSession:
        now = now or utcnow()
        with self.session_locks.hold(session_id):
            repo = current_domain.repository_for(PickSession)
            session = repo.get(session_id)
            if not session.complete(now):
                logger.info("Pick session already completed", session_id=session_id)
                return session
            repo.add(session)

        logger.info(
            "Pick session completed",
            session_id=session_id,
            items=session.total_items,
            units_picked=session.units_picked,
            efficiency_score=session.efficiency_score,
        )
        return session

    def cancel_session(self, session_id: str, reason: str | None = None, now: datetime | None = None) -> PickSession:
        """Cancel the session, its open pick lists, and release every unpicked unit."""
        now = now or utcnow()
        reason = reason or "pick session cancelled"
        list_ids = self.get(session_id).pick_list_id_list()
        list_repo = current_domain.repository_for(PickList)
        orders = []
        with self.list_locks.hold_all(list_ids):
            with self.session_locks.hold(session_id):
                session_repo = current_domain.repository_for(PickSession)
                session = session_repo.get(session_id)
                if not session.cancel(reason, now):
                    logger.info("Pick session already cancelled", session_id=session_id)
                    return session
                session_repo.add(session)

            unpicked = []
            for list_id in list_ids:
                pick_list = list_repo.get(list_id)
                if pick_list.status not in OPEN_LIST_STATUSES:
                    continue
                unpicked.extend(pick_list.cancel(reason, now))
                list_repo.add(pick_list)

            for order_id, rows in _by_order(unpicked, "missing").items():
                orders.append(
                    self.state_machine.close_short(order_id, [allocation_id for allocation_id, _ in rows], reason, now)
                )

        logger.info("Pick session cancelled", session_id=session_id, reason=reason, orders=len(orders))
        self._cancel_abandoned(orders, reason, now)
        return session

    def _cancel_abandoned(self, orders: list[FulfillmentOrder], reason: str, now: datetime) -> list[FulfillmentOrder]:
        """Cancel picking orders left with nothing picked and nothing left to pick."""
        result = []
        for order in orders:
            if order.picking_abandoned():
                order = self.state_machine.cancel(str(order.id), override=True, reason=reason, now=now)
            result.append(order)
        return result

    # -------------------------------------------------------------------
    # Withdrawing work from open pick lists
    # -------------------------------------------------------------------
    def withdraw_order(self, order: FulfillmentOrder) -> None:
        """Stop picking a cancelled order on every open pick list that services it."""
        order_id = str(order.id)
        list_ids = self._open_list_ids([order])
        for list_id in sorted(list_ids):
            self._withdraw_from(list_id, lambda pick_list: pick_list.withdraw_order(order_id))

    def withdraw_expired(self, touched: list[tuple[FulfillmentOrder, list[str]]]) -> None:
        """Drop expired allocations from open pick lists.

        Orders the sweep cancelled are withdrawn whole. Each list is
        loaded and stored once however many of its orders were touched.
        """
        cancelled = {str(order.id) for order, _ in touched if OrderStatus(order.status) == OrderStatus.CANCELLED}
        expired = [allocation_id for _, allocation_ids in touched for allocation_id in allocation_ids]

        def withdraw(pick_list: PickList) -> bool:
            changed = pick_list.withdraw_allocations(expired)
            for order_id in cancelled & set(pick_list.order_id_list()):
                changed = pick_list.withdraw_order(order_id) or changed
            return changed

        for list_id in sorted(self._open_list_ids([order for order, _ in touched])):
            self._withdraw_from(list_id, withdraw)

    def _open_list_ids(self, orders: list[FulfillmentOrder]) -> set[str]:
        list_repo = current_domain.repository_for(PickList)
        order_ids = {str(order.id) for order in orders}
        list_ids = {a.pick_list_id for order in orders for a in (order.allocations or []) if a.pick_list_id}
        for status in OPEN_LIST_STATUSES:
            for pick_list in list_repo._dao.query.filter(status=status).all().items:
                if order_ids & set(pick_list.order_id_list()):
                    list_ids.add(str(pick_list.id))
        return list_ids

    def _withdraw_from(self, list_id: str, withdraw: Callable[[PickList], bool]) -> None:
        list_repo = current_domain.repository_for(PickList)
        with self.list_locks.hold(list_id):
            try:
                pick_list = list_repo.get(list_id)
            except ObjectNotFoundError:
                logger.warning("Pick list to withdraw from not found", pick_list_id=list_id)
                return
            items_before = pick_list.total_items or 0
            if not withdraw(pick_list):
                return
            list_repo.add(pick_list)
            skipped = items_before - (pick_list.total_items or 0)
            if skipped and pick_list.pick_session_id:
                self._drop_session_items(pick_list.pick_session_id, skipped)
        logger.info(
            "Work withdrawn from pick list",
            pick_list_id=list_id,
            skipped_items=skipped,
            list_status=pick_list.status,
        )

    def _drop_session_items(self, session_id: str, count: int) -> None:
        with self.session_locks.hold(session_id):
            repo = current_domain.repository_for(PickSession)
            session = repo.get(session_id)
            if session.status in OPEN_SESSION_STATUSES:
                session.drop_items(count)
                repo.add(session)
