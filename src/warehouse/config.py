"""Operational tunables for the warehouse services.

Protean infrastructure (database, broker, event store) is configured in
``domain.toml``. The values here shape allocation, picking and alerting
behaviour and are read from ``WAREHOUSE_*`` environment variables.
"""

import os
from dataclasses import dataclass


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from exc


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got {raw!r}") from exc


@dataclass(frozen=True)
class WarehouseSettings:
    allocation_expiry_minutes: int = 30
    ledger_max_retries: int = 8
    pick_max_retries: int = 5
    low_stock_threshold: int = 10
    per_item_pick_seconds: int = 45
    zone_transition_seconds: int = 120
    batch_overlap_threshold: float = 0.5
    ledger_store: str = "memory"
    alert_sink: str = "domain"

    def __post_init__(self):
        if self.allocation_expiry_minutes < 1:
            raise ValueError("allocation_expiry_minutes must be at least 1")
        if self.ledger_max_retries < 1 or self.pick_max_retries < 1:
            raise ValueError("retry bounds must be at least 1")
        if not 0.0 < self.batch_overlap_threshold <= 1.0:
            raise ValueError("batch_overlap_threshold must be within (0, 1]")

    @classmethod
    def from_env(cls) -> "WarehouseSettings":
        return cls(
            allocation_expiry_minutes=_env_int("WAREHOUSE_ALLOCATION_EXPIRY_MINUTES", 30),
            ledger_max_retries=_env_int("WAREHOUSE_LEDGER_MAX_RETRIES", 8),
            pick_max_retries=_env_int("WAREHOUSE_PICK_MAX_RETRIES", 5),
            low_stock_threshold=_env_int("WAREHOUSE_LOW_STOCK_THRESHOLD", 10),
            per_item_pick_seconds=_env_int("WAREHOUSE_PER_ITEM_PICK_SECONDS", 45),
            zone_transition_seconds=_env_int("WAREHOUSE_ZONE_TRANSITION_SECONDS", 120),
            batch_overlap_threshold=_env_float("WAREHOUSE_BATCH_OVERLAP_THRESHOLD", 0.5),
            ledger_store=os.environ.get("WAREHOUSE_LEDGER_STORE", "memory"),
            alert_sink=os.environ.get("WAREHOUSE_ALERT_SINK", "domain"),
        )


_settings_instance = None


def get_settings() -> WarehouseSettings:
    """Return the process-wide settings, read from the environment once."""
    global _settings_instance
    if _settings_instance is None:
        _settings_instance = WarehouseSettings.from_env()
    return _settings_instance


def reset_settings():
    """Forget cached settings (useful for testing)."""
    global _settings_instance
    _settings_instance = None
