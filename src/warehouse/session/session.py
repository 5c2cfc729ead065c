"""PickSession aggregate — a batch of pick lists worked by one picker.

A session is created in Planning, becomes Active when the first pick is
recorded, and closes as Completed (with an efficiency score) or Cancelled.
Totals are denormalised at start so history views never re-read the lists.
"""

import json
from datetime import datetime
from enum import Enum

from protean.fields import DateTime, Float, Integer, String, Text

from warehouse.domain import warehouse
from warehouse.exceptions import InvalidStateTransition, SessionNotActive
from warehouse.session.events import (
    PickSessionActivated,
    PickSessionCancelled,
    PickSessionCompleted,
    PickSessionStarted,
)
from warehouse.utils.time import as_utc, utcnow

# Sessions completed within a second still get a finite score
MIN_ELAPSED_MINUTES = 1 / 60


class SessionType(Enum):
    SINGLE = "Single"
    BATCH = "Batch"
    WAVE = "Wave"


class SessionStatus(Enum):
    PLANNING = "Planning"
    ACTIVE = "Active"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"


OPEN_SESSION_STATUSES = {SessionStatus.PLANNING.value, SessionStatus.ACTIVE.value}


@warehouse.aggregate
class PickSession:
    session_name = String(required=True, max_length=200)
    session_type = String(
        max_length=20,
        choices=SessionType,
        default=SessionType.SINGLE.value,
    )
    status = String(
        max_length=20,
        choices=SessionStatus,
        default=SessionStatus.PLANNING.value,
    )
    pick_list_ids = Text()  # JSON list of pick list IDs
    total_orders = Integer(default=0)
    total_items = Integer(default=0)
    total_pick_lists = Integer(default=0)
    units_picked = Integer(default=0)
    efficiency_score = Float()
    assigned_picker_id = String(max_length=100)
    started_at = DateTime()
    first_pick_at = DateTime()
    completed_at = DateTime()
    cancelled_at = DateTime()
    cancellation_reason = String(max_length=500)
    notes = String(max_length=500)

    @classmethod
    def start(
        cls,
        session_name: str,
        session_type: str,
        pick_list_ids: list[str],
        total_orders: int,
        total_items: int,
        picker_id: str | None = None,
        now: datetime | None = None,
    ):
        now = now or utcnow()
        session = cls(
            session_name=session_name,
            session_type=session_type,
            status=SessionStatus.PLANNING.value,
            pick_list_ids=json.dumps(pick_list_ids),
            total_orders=total_orders,
            total_items=total_items,
            total_pick_lists=len(pick_list_ids),
            units_picked=0,
            assigned_picker_id=picker_id,
            started_at=now,
        )
        session.raise_(
            PickSessionStarted(
                pick_session_id=str(session.id),
                session_name=session_name,
                session_type=session.session_type,
                pick_list_ids=session.pick_list_ids,
                total_orders=total_orders,
                total_items=total_items,
                total_pick_lists=session.total_pick_lists,
                assigned_picker_id=picker_id,
                started_at=now,
            )
        )
        return session

    def pick_list_id_list(self) -> list[str]:
        return json.loads(self.pick_list_ids or "[]")

    def assert_open(self) -> None:
        if self.status not in OPEN_SESSION_STATUSES:
            raise SessionNotActive(str(self.id), self.status)

    def record_work(self, units: int, now: datetime | None = None) -> None:
        """Count picked units; the first recorded pick activates the session."""
        self.assert_open()
        now = now or utcnow()
        self.units_picked = (self.units_picked or 0) + units
        if self.status == SessionStatus.PLANNING.value:
            self.status = SessionStatus.ACTIVE.value
            self.first_pick_at = now
            self.raise_(PickSessionActivated(pick_session_id=str(self.id), first_pick_at=now))

    def drop_items(self, count: int) -> None:
        """Stop counting pick items skipped after the session started."""
        if count > 0 and self.status in OPEN_SESSION_STATUSES:
            self.total_items = max((self.total_items or 0) - count, 0)

    def elapsed_minutes(self, now: datetime) -> float:
        elapsed = (as_utc(now) - as_utc(self.started_at)).total_seconds() / 60
        return max(elapsed, MIN_ELAPSED_MINUTES)

    def complete(self, now: datetime | None = None) -> bool:
        """Close the session and score it. Returns False when it was already completed."""
        if self.status == SessionStatus.COMPLETED.value:
            return False
        if self.status != SessionStatus.ACTIVE.value:
            raise SessionNotActive(str(self.id), self.status)

        now = now or utcnow()
        elapsed = self.elapsed_minutes(now)
        self.status = SessionStatus.COMPLETED.value
        self.completed_at = now
        self.efficiency_score = round(self.total_items / elapsed, 2)
        self.raise_(
            PickSessionCompleted(
                pick_session_id=str(self.id),
                session_name=self.session_name,
                session_type=self.session_type,
                assigned_picker_id=self.assigned_picker_id,
                total_orders=self.total_orders,
                total_items=self.total_items,
                total_pick_lists=self.total_pick_lists,
                units_picked=self.units_picked or 0,
                elapsed_minutes=round(elapsed, 2),
                efficiency_score=self.efficiency_score,
                started_at=self.started_at,
                completed_at=now,
            )
        )
        return True

    def cancel(self, reason: str | None = None, now: datetime | None = None) -> bool:
        """Abandon the session. Returns False when it was already cancelled."""
        if self.status == SessionStatus.CANCELLED.value:
            return False
        if self.status == SessionStatus.COMPLETED.value:
            raise InvalidStateTransition(
                "pick session",
                self.status,
                SessionStatus.CANCELLED.value,
                sorted(OPEN_SESSION_STATUSES),
            )
        now = now or utcnow()
        self.status = SessionStatus.CANCELLED.value
        self.cancelled_at = now
        self.cancellation_reason = reason
        self.raise_(
            PickSessionCancelled(
                pick_session_id=str(self.id),
                reason=reason,
                units_picked=self.units_picked or 0,
                cancelled_at=now,
            )
        )
        return True
