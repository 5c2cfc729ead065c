from datetime import UTC, datetime, timedelta

import pytest
from protean.exceptions import ValidationError
from warehouse.exceptions import InvalidStateTransition, SessionNotActive
from warehouse.session.events import PickSessionActivated, PickSessionCompleted
from warehouse.session.session import PickSession, SessionStatus

T0 = datetime(2026, 3, 2, 9, 0, tzinfo=UTC)


def _make_session(total_items=12):
    return PickSession.start(
        session_name="Morning wave",
        session_type="Batch",
        pick_list_ids=["pl-1", "pl-2"],
        total_orders=3,
        total_items=total_items,
        picker_id="picker-7",
        now=T0,
    )


class TestStart:
    def test_start_in_planning(self):
        session = _make_session()
        assert session.status == SessionStatus.PLANNING.value
        assert session.pick_list_id_list() == ["pl-1", "pl-2"]
        assert session.total_pick_lists == 2
        assert session.units_picked == 0

    def test_unknown_session_type_rejected(self):
        with pytest.raises(ValidationError):
            PickSession.start("Odd", "Relay", ["pl-1"], 1, 1, now=T0)


class TestActivation:
    def test_first_pick_activates(self):
        session = _make_session()
        session.record_work(2, now=T0 + timedelta(minutes=1))

        assert session.status == SessionStatus.ACTIVE.value
        assert session.units_picked == 2
        assert len([e for e in session._events if isinstance(e, PickSessionActivated)]) == 1

    def test_later_picks_only_count_units(self):
        session = _make_session()
        session.record_work(2, now=T0)
        session.record_work(3, now=T0)
        assert session.units_picked == 5
        assert len([e for e in session._events if isinstance(e, PickSessionActivated)]) == 1


class TestCompletion:
    def test_planning_session_cannot_complete(self):
        session = _make_session()
        with pytest.raises(SessionNotActive):
            session.complete(now=T0)

    def test_efficiency_is_items_per_minute(self):
        session = _make_session(total_items=12)
        session.record_work(12, now=T0)
        assert session.complete(now=T0 + timedelta(minutes=4)) is True

        assert session.status == SessionStatus.COMPLETED.value
        assert session.efficiency_score == 3.0
        completed = [e for e in session._events if isinstance(e, PickSessionCompleted)]
        assert completed[0].elapsed_minutes == 4.0

    def test_instant_completion_has_finite_score(self):
        session = _make_session(total_items=1)
        session.record_work(1, now=T0)
        session.complete(now=T0)
        assert session.efficiency_score == 60.0

    def test_complete_twice_is_a_no_op(self):
        session = _make_session()
        session.record_work(1, now=T0)
        session.complete(now=T0 + timedelta(minutes=1))
        assert session.complete(now=T0 + timedelta(minutes=2)) is False

    def test_completed_session_rejects_work(self):
        session = _make_session()
        session.record_work(1, now=T0)
        session.complete(now=T0 + timedelta(minutes=1))
        with pytest.raises(SessionNotActive):
            session.record_work(1, now=T0)


class TestCancellation:
    def test_cancel_planning_session(self):
        session = _make_session()
        assert session.cancel("picker unavailable", now=T0) is True
        assert session.status == SessionStatus.CANCELLED.value
        assert session.cancellation_reason == "picker unavailable"

    def test_cancel_twice_is_a_no_op(self):
        session = _make_session()
        session.cancel(now=T0)
        assert session.cancel(now=T0) is False

    def test_completed_session_cannot_be_cancelled(self):
        session = _make_session()
        session.record_work(1, now=T0)
        session.complete(now=T0 + timedelta(minutes=1))
        with pytest.raises(InvalidStateTransition):
            session.cancel(now=T0)
