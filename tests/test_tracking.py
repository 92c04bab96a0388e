import asyncio
from datetime import datetime

import pytest

from timebank.events import EventBus, LedgerEvent, NoticeCenter, NoticeType
from timebank.exceptions import InvalidTransitionError
from timebank.ledger import LedgerStore
from timebank.models import DEFAULT_USER_ID, Activity, TrackingMode
from timebank.storage import MemoryStorage
from timebank.timeutils import to_millis
from timebank.tracking import (
    NO_TIME_AVAILABLE_MESSAGE,
    TrackingStateMachine,
    UsageCountdown,
)


class FlakyStorage(MemoryStorage):
    def __init__(self) -> None:
        super().__init__()
        self.broken = False

    def save(self, blob) -> None:
        if self.broken:
            raise OSError("quota exceeded")
        super().save(blob)


def seed(store: LedgerStore, activity_id: str, started: datetime, duration: int, used: int = 0) -> None:
    start = to_millis(started)
    store.add_activity(
        Activity(
            id=activity_id,
            user_id=DEFAULT_USER_ID,
            description=activity_id,
            start_time=start,
            end_time=start + duration,
            duration=duration,
            used_duration=used,
        )
    )


@pytest.fixture
def store() -> LedgerStore:
    return LedgerStore(MemoryStorage())


def make_machine(store, clock, **kwargs) -> TrackingStateMachine:
    return TrackingStateMachine(store, DEFAULT_USER_ID, clock=clock, **kwargs)


def test_tracking_ninety_seconds_stores_activity(store, clock) -> None:
    events = EventBus()
    seen = []
    events.subscribe(LedgerEvent.ACTIVITY_STOPPED, lambda event, payload: seen.append(payload))
    machine = make_machine(store, clock, events=events)
    started_at = to_millis(clock.now)

    assert machine.start_tracking().accepted
    assert machine.mode is TrackingMode.TRACKING
    clock.advance(90_000)
    assert machine.current_duration() == 90_000
    result = machine.stop_tracking("Homework")

    activity = result.activity
    assert result.accepted and result.persisted
    assert activity.duration == 90_000
    assert activity.start_time == started_at
    assert activity.description == "Homework"
    assert activity.used_duration == 0
    assert activity.is_available_for_deposit
    assert activity.week_number == 23 and activity.year == 2024
    assert machine.mode is TrackingMode.IDLE
    assert [item.id for item in store.get_activities(DEFAULT_USER_ID)] == [activity.id]
    assert seen == [{"userId": DEFAULT_USER_ID, "activityId": activity.id, "duration": 90_000}]


def test_blank_description_becomes_unnamed(store, clock) -> None:
    machine = make_machine(store, clock)
    machine.start_tracking()
    machine.set_activity_description("   ")
    clock.advance(1_000)

    result = machine.stop_tracking()

    assert result.activity.description == "Unnamed activity"


def test_modes_are_mutually_exclusive(store, clock) -> None:
    seed(store, "a", clock.now, 60_000)
    machine = make_machine(store, clock)

    machine.start_tracking()
    rejected = machine.start_time_usage()
    assert not rejected.accepted
    assert isinstance(rejected.error, InvalidTransitionError)
    assert machine.start_tracking().accepted is False

    machine.stop_tracking("Chores")
    assert machine.start_time_usage().accepted
    assert machine.start_tracking().accepted is False
    assert machine.mode is TrackingMode.USING
    with pytest.raises(InvalidTransitionError):
        machine.start_tracking().raise_for_error()


def test_usage_without_available_time_is_rejected(store, clock) -> None:
    notices = NoticeCenter()
    seed(store, "spent", clock.now, 10_000, used=10_000)
    machine = make_machine(store, clock, notices=notices)

    result = machine.start_time_usage()

    assert not result.accepted
    assert str(result.error) == NO_TIME_AVAILABLE_MESSAGE
    assert machine.mode is TrackingMode.IDLE
    assert store.get_tracking_state() is None
    assert len(notices.pending(notice_type=NoticeType.NO_TIME_AVAILABLE)) == 1


def test_usage_consumes_in_list_order(store, clock) -> None:
    seed(store, "A", clock.now, 300_000)
    seed(store, "B", clock.now, 200_000)
    machine = make_machine(store, clock)

    started = machine.start_time_usage()
    assert started.activity.id == "A"
    assert machine.state.current_usage_activity_id == "A"
    clock.advance(400_000)
    result = machine.stop_time_usage()

    first, second = store.get_activities(DEFAULT_USER_ID)
    assert result.consumed == 400_000
    assert (first.used_duration, first.is_available_for_deposit) == (300_000, False)
    assert (second.used_duration, second.is_available_for_deposit) == (100_000, True)
    assert machine.mode is TrackingMode.IDLE


def test_usage_never_overdraws_activities(store, clock) -> None:
    seed(store, "A", clock.now, 50_000)
    machine = make_machine(store, clock)
    machine.start_time_usage()
    clock.advance(80_000)

    result = machine.stop_time_usage()

    (activity,) = store.get_activities(DEFAULT_USER_ID)
    assert result.consumed == 50_000
    assert activity.used_duration == activity.duration


def test_tick_forces_stop_when_balance_is_used_up(store, clock) -> None:
    events = EventBus()
    notices = NoticeCenter()
    exhausted = []
    events.subscribe(LedgerEvent.BALANCE_EXHAUSTED, lambda event, payload: exhausted.append(payload))
    seed(store, "A", clock.now, 60_000)
    machine = make_machine(store, clock, events=events, notices=notices)
    machine.start_time_usage()

    clock.advance(30_000)
    assert machine.tick() is None
    assert machine.remaining_usage() == 30_000

    clock.advance(45_000)
    result = machine.tick()

    assert result is not None and result.accepted
    assert result.consumed == 60_000
    assert machine.mode is TrackingMode.IDLE
    assert store.get_activity(DEFAULT_USER_ID, "A").is_available_for_deposit is False
    assert exhausted == [{"userId": DEFAULT_USER_ID, "consumed": 60_000}]
    assert notices.pending(notice_type=NoticeType.BALANCE_EXHAUSTED)


def test_running_session_resumes_from_persisted_state(store, clock) -> None:
    machine = make_machine(store, clock)
    machine.start_tracking()
    clock.advance(5_000)

    resumed = make_machine(store, clock)

    assert resumed.mode is TrackingMode.TRACKING
    assert resumed.current_duration() == 5_000


def test_failed_save_is_reported_as_warning(clock) -> None:
    storage = FlakyStorage()
    store = LedgerStore(storage)
    notices = NoticeCenter()
    machine = make_machine(store, clock, notices=notices)
    machine.start_tracking()
    clock.advance(2_000)
    storage.broken = True

    result = machine.stop_tracking("Piano")

    assert result.accepted
    assert result.warning is not None
    assert not result.persisted
    assert [item.description for item in store.get_activities(DEFAULT_USER_ID)] == ["Piano"]
    assert notices.pending(notice_type=NoticeType.PERSISTENCE_WARNING)


def test_listener_errors_do_not_break_transitions(store, clock) -> None:
    events = EventBus()

    def explode(event, payload):
        raise RuntimeError("speaker unplugged")

    events.subscribe(LedgerEvent.ACTIVITY_STOPPED, explode)
    machine = make_machine(store, clock, events=events)
    machine.start_tracking()
    clock.advance(1_000)

    assert machine.stop_tracking("Reading").accepted


def test_countdown_stops_usage_when_time_runs_out(store, clock) -> None:
    seed(store, "A", clock.now, 60_000)
    machine = make_machine(store, clock)
    machine.start_time_usage()
    clock.advance(61_000)
    countdown = UsageCountdown(machine, interval=0.01)

    async def run():
        task = countdown.start()
        return await asyncio.wait_for(task, timeout=2)

    result = asyncio.run(run())

    assert result is countdown.result
    assert result.consumed == 60_000
    assert machine.mode is TrackingMode.IDLE
    assert not countdown.running


def test_countdown_can_be_cancelled(store, clock) -> None:
    seed(store, "A", clock.now, 60_000)
    machine = make_machine(store, clock)
    machine.start_time_usage()
    countdown = UsageCountdown(machine, interval=0.01)

    async def run():
        countdown.start()
        await asyncio.sleep(0.03)
        assert countdown.running
        await countdown.stop()

    asyncio.run(run())

    assert not countdown.running
    assert countdown.result is None
    assert machine.mode is TrackingMode.USING
