"""Ledger storage port — abstract interface for bin and stock bookkeeping.

The ledger service programs against this port; adapters are swapped via
configuration. Every record carries a version, and all writes go through
``compare_and_swap`` so that concurrent callers never overwrite each other.
"""

from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date, datetime


@dataclass(frozen=True)
class BinSlot:
    """A physical storage location and its occupancy."""

    bin_id: str
    bin_code: str
    zone_name: str
    aisle: int
    shelf: int
    max_capacity: int
    occupied: int = 0
    bin_type: str = "standard"
    is_active: bool = True
    version: int = 0

    @property
    def key(self) -> tuple:
        return ("bin", self.bin_id)

    @property
    def free_capacity(self) -> int:
        return self.max_capacity - self.occupied


@dataclass(frozen=True)
class StockPosition:
    """On-hand and allocated quantity of one SKU in one bin."""

    sku: str
    bin_id: str
    on_hand: int = 0
    allocated: int = 0
    expires_on: date | None = None
    updated_at: datetime | None = None
    version: int = 0

    @property
    def key(self) -> tuple:
        return ("position", self.sku, self.bin_id)

    @property
    def available(self) -> int:
        return max(self.on_hand - self.allocated, 0)


@dataclass(frozen=True)
class ReservationHandle:
    """Quantity held against a stock position until it is picked or released."""

    handle_id: str
    sku: str
    bin_id: str
    quantity: int
    remaining: int
    released: bool = False
    created_at: datetime | None = None
    version: int = 0

    @property
    def key(self) -> tuple:
        return ("reservation", self.handle_id)


@dataclass(frozen=True)
class StockMovement:
    """Append-only record of a change to physical stock."""

    movement_id: str
    sku: str
    quantity: int
    movement_type: str  # receipt | adjustment | transfer | pick
    from_bin_id: str | None = None
    to_bin_id: str | None = None
    reason: str | None = None
    reference: str | None = None
    occurred_at: datetime | None = None


@dataclass(frozen=True)
class LowStockSignal:
    """Emitted when a SKU's warehouse-wide availability drops into a lower alert level."""

    sku: str
    bin_id: str
    previous_available: int
    current_available: int
    threshold: int
    level: str  # Low | Critical | Out_Of_Stock
    detected_at: datetime


@dataclass(frozen=True)
class Write:
    """One record to store, valid only if the stored version still equals ``expected_version``.

    An ``expected_version`` of 0 means the record must not exist yet.
    """

    record: BinSlot | StockPosition | ReservationHandle
    expected_version: int


class LedgerStore(ABC):
    """Abstract interface for ledger storage adapters."""

    @abstractmethod
    def load_bin(self, bin_id: str) -> BinSlot | None: ...

    @abstractmethod
    def load_position(self, sku: str, bin_id: str) -> StockPosition | None: ...

    @abstractmethod
    def load_reservation(self, handle_id: str) -> ReservationHandle | None: ...

    @abstractmethod
    def bins(self) -> list[BinSlot]: ...

    @abstractmethod
    def positions(self, sku: str | None = None, bin_id: str | None = None) -> list[StockPosition]: ...

    @abstractmethod
    def compare_and_swap(self, writes: Sequence[Write]) -> bool:
        """Atomically apply all writes, or none of them.

        Returns False without changing anything if any stored version differs
        from the write's expected version. Stored records get
        ``expected_version + 1`` as their new version.
        """
        ...

    @abstractmethod
    def append_movement(self, movement: StockMovement) -> None: ...

    @abstractmethod
    def movements(self, sku: str | None = None, bin_id: str | None = None) -> list[StockMovement]: ...

    @abstractmethod
    def clear(self) -> None:
        """Drop all data (test and development resets)."""
        ...


class AlertSink(ABC):
    """Receives low-stock signals from the ledger."""

    @abstractmethod
    def emit(self, signal: LowStockSignal) -> None: ...
