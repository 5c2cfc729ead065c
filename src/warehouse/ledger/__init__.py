"""Ledger storage abstraction — pluggable backing store for bin and stock records."""

import os

_store_instance = None


def get_ledger_store():
    """Return the configured ledger store (singleton).

    Uses MemoryLedgerStore by default. Configure via the WAREHOUSE_LEDGER_STORE
    environment variable.
    """
    global _store_instance
    if _store_instance is None:
        adapter = os.environ.get("WAREHOUSE_LEDGER_STORE", "memory")
        if adapter == "memory":
            from warehouse.ledger.memory_adapter import MemoryLedgerStore

            _store_instance = MemoryLedgerStore()
        else:
            raise ValueError(f"Unknown ledger store: {adapter}")
    return _store_instance


def reset_ledger_store():
    """Reset the store singleton (useful for testing)."""
    global _store_instance
    _store_instance = None
