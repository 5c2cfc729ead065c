"""InventoryLedger — authoritative on-hand and allocated quantity per (SKU, bin).

Every mutation is an optimistic read → validate → compare-and-swap cycle
against the ledger store. Business rule violations are raised immediately;
version conflicts are retried up to ``ledger_max_retries`` times.

Low-stock signals are emitted after the write has been committed, outside
any store lock.
"""

from dataclasses import replace
from datetime import date
from uuid import uuid4

import structlog
from protean.exceptions import ObjectNotFoundError, ValidationError

from warehouse.config import WarehouseSettings, get_settings
from warehouse.exceptions import ConcurrentModification, InsufficientInventory, InvalidAdjustment
from warehouse.ledger.port import (
    AlertSink,
    BinSlot,
    LedgerStore,
    LowStockSignal,
    ReservationHandle,
    StockMovement,
    StockPosition,
    Write,
)
from warehouse.utils.time import utcnow

logger = structlog.get_logger(__name__)

_CONFLICT = object()


def stock_level(available: int, threshold: int) -> str | None:
    """Alert level for a SKU-wide available quantity, or None when healthy."""
    if available <= 0:
        return "Out_Of_Stock"
    if available <= threshold // 2:
        return "Critical"
    if available <= threshold:
        return "Low"
    return None


class InventoryLedger:
    def __init__(
        self,
        store: LedgerStore,
        settings: WarehouseSettings | None = None,
        alert_sink: AlertSink | None = None,
    ):
        self.store = store
        self.settings = settings or get_settings()
        self.alert_sink = alert_sink

    # -------------------------------------------------------------------
    # Bins
    # -------------------------------------------------------------------
    def register_bin(
        self,
        bin_code: str,
        zone_name: str,
        aisle: int,
        shelf: int,
        max_capacity: int,
        bin_type: str = "standard",
        bin_id: str | None = None,
    ) -> BinSlot:
        if max_capacity < 1:
            raise ValidationError({"max_capacity": ["Bin capacity must be at least 1"]})
        if aisle < 0 or shelf < 0:
            raise ValidationError({"location": ["Aisle and shelf must be non-negative"]})
        if any(b.bin_code == bin_code for b in self.store.bins()):
            raise ValidationError({"bin_code": [f"Bin code {bin_code} is already registered"]})

        slot = BinSlot(
            bin_id=bin_id or str(uuid4()),
            bin_code=bin_code,
            zone_name=zone_name,
            aisle=aisle,
            shelf=shelf,
            max_capacity=max_capacity,
            bin_type=bin_type,
        )
        if not self.store.compare_and_swap([Write(slot, 0)]):
            raise ValidationError({"bin_id": [f"Bin {slot.bin_id} already exists"]})
        logger.info("Bin registered", bin_id=slot.bin_id, bin_code=bin_code, zone=zone_name)
        return self.get_bin(slot.bin_id)

    def deactivate_bin(self, bin_id: str) -> BinSlot:
        def attempt():
            slot = self.get_bin(bin_id)
            if slot.occupied > 0:
                raise InvalidAdjustment(
                    f"Bin {slot.bin_code} still holds {slot.occupied} units and cannot be deactivated",
                    bin_id=bin_id,
                )
            if not slot.is_active:
                return slot
            updated = replace(slot, is_active=False)
            if self.store.compare_and_swap([Write(updated, slot.version)]):
                return self.get_bin(bin_id)
            return _CONFLICT

        return self._retry("bin", bin_id, attempt)

    def get_bin(self, bin_id: str) -> BinSlot:
        slot = self.store.load_bin(bin_id)
        if slot is None:
            raise ObjectNotFoundError(f"Bin with id {bin_id} does not exist")
        return slot

    def bins(self, active_only: bool = False) -> list[BinSlot]:
        return [b for b in self.store.bins() if b.is_active or not active_only]

    # -------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------
    def position(self, sku: str, bin_id: str) -> StockPosition:
        return self.store.load_position(sku, bin_id) or StockPosition(sku=sku, bin_id=bin_id)

    def positions(self, sku: str | None = None, bin_id: str | None = None) -> list[StockPosition]:
        return self.store.positions(sku=sku, bin_id=bin_id)

    def get_available(self, sku: str, bin_id: str) -> int:
        return self.position(sku, bin_id).available

    def total_available(self, sku: str) -> int:
        return sum(p.available for p in self.store.positions(sku=sku))

    def get_reservation(self, handle_id: str) -> ReservationHandle:
        handle = self.store.load_reservation(handle_id)
        if handle is None:
            raise ObjectNotFoundError(f"Reservation with id {handle_id} does not exist")
        return handle

    def movements(self, sku: str | None = None, bin_id: str | None = None) -> list[StockMovement]:
        return self.store.movements(sku=sku, bin_id=bin_id)

    # -------------------------------------------------------------------
    # Physical stock
    # -------------------------------------------------------------------
    def receive(
        self,
        sku: str,
        bin_id: str,
        quantity: int,
        reference: str | None = None,
        expires_on: date | None = None,
    ) -> StockPosition:
        """Book a goods receipt into a bin."""
        if quantity < 1:
            raise InvalidAdjustment("Received quantity must be positive", sku=sku, bin_id=bin_id)

        def attempt():
            slot = self.get_bin(bin_id)
            if not slot.is_active:
                raise InvalidAdjustment(f"Bin {slot.bin_code} is inactive", sku=sku, bin_id=bin_id)
            if quantity > slot.free_capacity:
                raise InvalidAdjustment(
                    f"Bin {slot.bin_code} has room for {slot.free_capacity} more units, cannot receive {quantity}",
                    sku=sku,
                    bin_id=bin_id,
                )
            current = self.position(sku, bin_id)
            soonest = current.expires_on
            if expires_on is not None and (soonest is None or expires_on < soonest):
                soonest = expires_on
            updated = replace(current, on_hand=current.on_hand + quantity, expires_on=soonest, updated_at=utcnow())
            writes = [
                Write(replace(slot, occupied=slot.occupied + quantity), slot.version),
                Write(updated, current.version),
            ]
            if self.store.compare_and_swap(writes):
                return self.position(sku, bin_id)
            return _CONFLICT

        position = self._retry("position", f"{sku}@{bin_id}", attempt)
        self._record_movement(sku, quantity, "receipt", to_bin_id=bin_id, reference=reference)
        logger.info("Stock received", sku=sku, bin_id=bin_id, quantity=quantity, on_hand=position.on_hand)
        return position

    def adjust(self, sku: str, bin_id: str, delta: int, reason: str) -> StockPosition:
        """Correct on-hand quantity (cycle counts, damage, write-offs)."""
        if delta == 0:
            raise InvalidAdjustment("Adjustment delta cannot be zero", sku=sku, bin_id=bin_id)
        if not reason or not reason.strip():
            raise InvalidAdjustment("Adjustments require a reason", sku=sku, bin_id=bin_id)

        before_total = self.total_available(sku)

        def attempt():
            slot = self.get_bin(bin_id)
            current = self.position(sku, bin_id)
            new_on_hand = current.on_hand + delta
            if new_on_hand < 0:
                raise InvalidAdjustment(
                    f"Adjustment of {delta} would leave {sku} in bin {slot.bin_code} at {new_on_hand} on hand",
                    sku=sku,
                    bin_id=bin_id,
                )
            if new_on_hand < current.allocated:
                raise InvalidAdjustment(
                    f"Adjustment of {delta} would leave {sku} in bin {slot.bin_code} below its "
                    f"{current.allocated} allocated units",
                    sku=sku,
                    bin_id=bin_id,
                )
            if delta > 0 and delta > slot.free_capacity:
                raise InvalidAdjustment(
                    f"Bin {slot.bin_code} has room for {slot.free_capacity} more units, cannot add {delta}",
                    sku=sku,
                    bin_id=bin_id,
                )
            writes = [
                Write(replace(slot, occupied=slot.occupied + delta), slot.version),
                Write(replace(current, on_hand=new_on_hand, updated_at=utcnow()), current.version),
            ]
            if self.store.compare_and_swap(writes):
                return self.position(sku, bin_id)
            return _CONFLICT

        position = self._retry("position", f"{sku}@{bin_id}", attempt)
        self._record_movement(
            sku,
            abs(delta),
            "adjustment",
            from_bin_id=bin_id if delta < 0 else None,
            to_bin_id=bin_id if delta > 0 else None,
            reason=reason,
        )
        logger.info("Stock adjusted", sku=sku, bin_id=bin_id, delta=delta, reason=reason, on_hand=position.on_hand)
        if delta < 0:
            self._signal_if_low(sku, bin_id, before_total)
        return position

    def move(self, sku: str, from_bin_id: str, to_bin_id: str, quantity: int, reason: str | None = None):
        """Transfer unallocated stock between two bins."""
        if quantity < 1:
            raise InvalidAdjustment("Moved quantity must be positive", sku=sku, bin_id=from_bin_id)
        if from_bin_id == to_bin_id:
            raise InvalidAdjustment("Source and target bin must differ", sku=sku, bin_id=from_bin_id)

        def attempt():
            source_slot = self.get_bin(from_bin_id)
            target_slot = self.get_bin(to_bin_id)
            if not target_slot.is_active:
                raise InvalidAdjustment(f"Bin {target_slot.bin_code} is inactive", sku=sku, bin_id=to_bin_id)
            source = self.position(sku, from_bin_id)
            if source.available < quantity:
                raise InvalidAdjustment(
                    f"Bin {source_slot.bin_code} has only {source.available} unallocated {sku}",
                    sku=sku,
                    bin_id=from_bin_id,
                )
            if quantity > target_slot.free_capacity:
                raise InvalidAdjustment(
                    f"Bin {target_slot.bin_code} has room for {target_slot.free_capacity} more units",
                    sku=sku,
                    bin_id=to_bin_id,
                )
            target = self.position(sku, to_bin_id)
            now = utcnow()
            soonest = target.expires_on
            if source.expires_on is not None and (soonest is None or source.expires_on < soonest):
                soonest = source.expires_on
            writes = [
                Write(replace(source_slot, occupied=source_slot.occupied - quantity), source_slot.version),
                Write(replace(target_slot, occupied=target_slot.occupied + quantity), target_slot.version),
                Write(replace(source, on_hand=source.on_hand - quantity, updated_at=now), source.version),
                Write(
                    replace(target, on_hand=target.on_hand + quantity, expires_on=soonest, updated_at=now),
                    target.version,
                ),
            ]
            if self.store.compare_and_swap(writes):
                return self.position(sku, from_bin_id), self.position(sku, to_bin_id)
            return _CONFLICT

        result = self._retry("position", f"{sku}@{from_bin_id}", attempt)
        self._record_movement(sku, quantity, "transfer", from_bin_id=from_bin_id, to_bin_id=to_bin_id, reason=reason)
        logger.info("Stock moved", sku=sku, from_bin_id=from_bin_id, to_bin_id=to_bin_id, quantity=quantity)
        return result

    # -------------------------------------------------------------------
    # Reservations
    # -------------------------------------------------------------------
    def reserve(self, sku: str, bin_id: str, quantity: int) -> ReservationHandle:
        """Hold ``quantity`` of available stock; all-or-nothing."""
        if quantity < 1:
            raise ValidationError({"quantity": ["Reserved quantity must be positive"]})

        before_total = self.total_available(sku)
        handle_id = str(uuid4())
        last_seen = 0

        for attempt in range(1, self.settings.ledger_max_retries + 1):
            current = self.position(sku, bin_id)
            last_seen = current.available
            if current.available < quantity:
                raise InsufficientInventory(sku, bin_id, quantity, current.available)

            handle = ReservationHandle(
                handle_id=handle_id,
                sku=sku,
                bin_id=bin_id,
                quantity=quantity,
                remaining=quantity,
                created_at=utcnow(),
            )
            writes = [
                Write(replace(current, allocated=current.allocated + quantity, updated_at=utcnow()), current.version),
                Write(handle, 0),
            ]
            if self.store.compare_and_swap(writes):
                logger.debug("Stock reserved", sku=sku, bin_id=bin_id, quantity=quantity, handle_id=handle_id)
                self._signal_if_low(sku, bin_id, before_total)
                return self.get_reservation(handle_id)
            logger.debug("Reserve conflict, retrying", sku=sku, bin_id=bin_id, attempt=attempt)

        logger.warning(
            "Reserve gave up under contention",
            sku=sku,
            bin_id=bin_id,
            quantity=quantity,
            attempts=self.settings.ledger_max_retries,
        )
        raise InsufficientInventory(sku, bin_id, quantity, last_seen, contended=True)

    def release(self, handle: ReservationHandle | str) -> bool:
        """Return the unconsumed part of a reservation to available stock.

        Releasing an already released handle changes nothing and returns False.
        """
        handle_id = getattr(handle, "handle_id", handle)

        def attempt():
            current_handle = self.get_reservation(handle_id)
            if current_handle.released:
                return False
            writes = [Write(replace(current_handle, released=True, remaining=0), current_handle.version)]
            if current_handle.remaining > 0:
                position = self.position(current_handle.sku, current_handle.bin_id)
                writes.append(
                    Write(
                        replace(
                            position,
                            allocated=max(position.allocated - current_handle.remaining, 0),
                            updated_at=utcnow(),
                        ),
                        position.version,
                    )
                )
            if self.store.compare_and_swap(writes):
                logger.debug(
                    "Reservation released",
                    handle_id=handle_id,
                    sku=current_handle.sku,
                    bin_id=current_handle.bin_id,
                    quantity=current_handle.remaining,
                )
                return True
            return _CONFLICT

        return self._retry("reservation", handle_id, attempt)

    def consume(self, handle: ReservationHandle | str, quantity: int) -> ReservationHandle:
        """Remove picked units from the bin: on-hand, allocated and occupancy all drop."""
        handle_id = getattr(handle, "handle_id", handle)
        if quantity < 1:
            raise ValidationError({"quantity": ["Consumed quantity must be positive"]})

        def attempt():
            current_handle = self.get_reservation(handle_id)
            if current_handle.released:
                raise InvalidAdjustment(
                    f"Reservation {handle_id} was already released",
                    sku=current_handle.sku,
                    bin_id=current_handle.bin_id,
                )
            if quantity > current_handle.remaining:
                raise InvalidAdjustment(
                    f"Cannot pick {quantity} against reservation {handle_id} holding {current_handle.remaining}",
                    sku=current_handle.sku,
                    bin_id=current_handle.bin_id,
                )
            slot = self.get_bin(current_handle.bin_id)
            position = self.position(current_handle.sku, current_handle.bin_id)
            writes = [
                Write(replace(current_handle, remaining=current_handle.remaining - quantity), current_handle.version),
                Write(
                    replace(
                        position,
                        on_hand=position.on_hand - quantity,
                        allocated=position.allocated - quantity,
                        updated_at=utcnow(),
                    ),
                    position.version,
                ),
                Write(replace(slot, occupied=slot.occupied - quantity), slot.version),
            ]
            if self.store.compare_and_swap(writes):
                return self.get_reservation(handle_id)
            return _CONFLICT

        updated = self._retry("reservation", handle_id, attempt)
        self._record_movement(updated.sku, quantity, "pick", from_bin_id=updated.bin_id, reference=handle_id)
        return updated

    # -------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------
    def _retry(self, resource: str, key: str, attempt):
        for attempt_number in range(1, self.settings.ledger_max_retries + 1):
            outcome = attempt()
            if outcome is not _CONFLICT:
                return outcome
            logger.debug("Ledger write conflict, retrying", resource=resource, key=key, attempt=attempt_number)
        raise ConcurrentModification(resource, key, self.settings.ledger_max_retries)

    def _record_movement(self, sku: str, quantity: int, movement_type: str, **details) -> None:
        self.store.append_movement(
            StockMovement(
                movement_id=str(uuid4()),
                sku=sku,
                quantity=quantity,
                movement_type=movement_type,
                occurred_at=utcnow(),
                **details,
            )
        )

    def _signal_if_low(self, sku: str, bin_id: str, before_total: int) -> None:
        if self.alert_sink is None:
            return
        threshold = self.settings.low_stock_threshold
        after_total = self.total_available(sku)
        level = stock_level(after_total, threshold)
        if level is None or after_total >= before_total or level == stock_level(before_total, threshold):
            return
        signal = LowStockSignal(
            sku=sku,
            bin_id=bin_id,
            previous_available=before_total,
            current_available=after_total,
            threshold=threshold,
            level=level,
            detected_at=utcnow(),
        )
        logger.info("Low stock detected", sku=sku, bin_id=bin_id, available=after_total, level=level)
        # The write is committed; delivery failures are only logged
        try:
            self.alert_sink.emit(signal)
        except Exception:
            logger.exception("Low stock alert delivery failed", sku=sku, level=level)
