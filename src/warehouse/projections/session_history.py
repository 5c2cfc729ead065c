"""Pick session history — started, active and closed sessions with their scores."""

from protean.core.projector import on
from protean.fields import DateTime, Float, Identifier, Integer, String
from protean.utils.globals import current_domain

from warehouse.domain import warehouse
from warehouse.session.events import (
    PickSessionActivated,
    PickSessionCancelled,
    PickSessionCompleted,
    PickSessionStarted,
)
from warehouse.session.session import PickSession


@warehouse.projection
class PickSessionHistory:
    pick_session_id: Identifier(identifier=True, required=True)
    session_name: String(required=True)
    session_type: String(required=True)
    status: String(required=True)
    assigned_picker_id: String()
    total_orders: Integer(default=0)
    total_items: Integer(default=0)
    total_pick_lists: Integer(default=0)
    units_picked: Integer(default=0)
    efficiency_score: Float()
    started_at: DateTime()
    first_pick_at: DateTime()
    closed_at: DateTime()


@warehouse.projector(projector_for=PickSessionHistory, aggregates=[PickSession])
class PickSessionHistoryProjector:
    @on(PickSessionStarted)
    def on_session_started(self, event):
        current_domain.repository_for(PickSessionHistory).add(
            PickSessionHistory(
                pick_session_id=event.pick_session_id,
                session_name=event.session_name,
                session_type=event.session_type,
                status="Planning",
                assigned_picker_id=event.assigned_picker_id,
                total_orders=event.total_orders,
                total_items=event.total_items,
                total_pick_lists=event.total_pick_lists,
                started_at=event.started_at,
            )
        )

    @on(PickSessionActivated)
    def on_session_activated(self, event):
        repo = current_domain.repository_for(PickSessionHistory)
        row = repo.get(event.pick_session_id)
        row.status = "Active"
        row.first_pick_at = event.first_pick_at
        repo.add(row)

    @on(PickSessionCompleted)
    def on_session_completed(self, event):
        repo = current_domain.repository_for(PickSessionHistory)
        row = repo.get(event.pick_session_id)
        row.status = "Completed"
        row.units_picked = event.units_picked
        row.efficiency_score = event.efficiency_score
        row.closed_at = event.completed_at
        repo.add(row)

    @on(PickSessionCancelled)
    def on_session_cancelled(self, event):
        repo = current_domain.repository_for(PickSessionHistory)
        row = repo.get(event.pick_session_id)
        row.status = "Cancelled"
        row.units_picked = event.units_picked
        row.closed_at = event.cancelled_at
        repo.add(row)
