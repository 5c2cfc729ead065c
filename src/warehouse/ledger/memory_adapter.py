"""In-memory ledger store for development and tests.

Keys are spread over a fixed set of lock stripes, so writers touching
different (SKU, bin) pairs rarely wait on each other.
"""

import threading
from collections.abc import Sequence
from dataclasses import replace

from warehouse.ledger.port import (
    BinSlot,
    LedgerStore,
    ReservationHandle,
    StockMovement,
    StockPosition,
    Write,
)


class MemoryLedgerStore(LedgerStore):
    def __init__(self, stripes: int = 64):
        self._stripes = [threading.Lock() for _ in range(stripes)]
        self._records: dict[tuple, BinSlot | StockPosition | ReservationHandle] = {}
        self._movements: list[StockMovement] = []
        self._movement_lock = threading.Lock()

    def _stripe_for(self, key: tuple) -> int:
        return hash(key) % len(self._stripes)

    def _load(self, key: tuple):
        with self._stripes[self._stripe_for(key)]:
            return self._records.get(key)

    def load_bin(self, bin_id: str) -> BinSlot | None:
        return self._load(("bin", bin_id))

    def load_position(self, sku: str, bin_id: str) -> StockPosition | None:
        return self._load(("position", sku, bin_id))

    def load_reservation(self, handle_id: str) -> ReservationHandle | None:
        return self._load(("reservation", handle_id))

    def _snapshot(self) -> list:
        # dict.copy() is atomic under the GIL; values are immutable.
        return list(self._records.copy().values())

    def bins(self) -> list[BinSlot]:
        return sorted(
            (r for r in self._snapshot() if isinstance(r, BinSlot)),
            key=lambda b: (b.zone_name, b.aisle, b.shelf, b.bin_code),
        )

    def positions(self, sku: str | None = None, bin_id: str | None = None) -> list[StockPosition]:
        return sorted(
            (
                r
                for r in self._snapshot()
                if isinstance(r, StockPosition)
                and (sku is None or r.sku == sku)
                and (bin_id is None or r.bin_id == bin_id)
            ),
            key=lambda p: (p.sku, p.bin_id),
        )

    def compare_and_swap(self, writes: Sequence[Write]) -> bool:
        stripe_ids = sorted({self._stripe_for(w.record.key) for w in writes})
        acquired = []
        try:
            for stripe_id in stripe_ids:
                self._stripes[stripe_id].acquire()
                acquired.append(stripe_id)

            for write in writes:
                current = self._records.get(write.record.key)
                current_version = current.version if current is not None else 0
                if current_version != write.expected_version:
                    return False

            for write in writes:
                self._records[write.record.key] = replace(write.record, version=write.expected_version + 1)
            return True
        finally:
            for stripe_id in reversed(acquired):
                self._stripes[stripe_id].release()

    def append_movement(self, movement: StockMovement) -> None:
        with self._movement_lock:
            self._movements.append(movement)

    def movements(self, sku: str | None = None, bin_id: str | None = None) -> list[StockMovement]:
        with self._movement_lock:
            history = list(self._movements)
        return [
            m
            for m in history
            if (sku is None or m.sku == sku) and (bin_id is None or bin_id in (m.from_bin_id, m.to_bin_id))
        ]

    def clear(self) -> None:
        for stripe in self._stripes:
            stripe.acquire()
        try:
            self._records.clear()
        finally:
            for stripe in reversed(self._stripes):
                stripe.release()
        with self._movement_lock:
            self._movements.clear()
