"""Recording alert sink — collects low-stock signals in memory for tests and local runs."""

import threading

from warehouse.ledger.port import AlertSink, LowStockSignal


class RecordingAlertSink(AlertSink):
    def __init__(self):
        self._lock = threading.Lock()
        self.signals: list[LowStockSignal] = []

    def emit(self, signal: LowStockSignal) -> None:
        with self._lock:
            self.signals.append(signal)

    def for_sku(self, sku: str) -> list[LowStockSignal]:
        with self._lock:
            return [s for s in self.signals if s.sku == sku]

    def clear(self) -> None:
        with self._lock:
            self.signals.clear()
