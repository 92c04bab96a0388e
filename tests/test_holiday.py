from datetime import datetime

import pytest

from timebank.events import EventBus, LedgerEvent, NoticeCenter, NoticeType
from timebank.exceptions import ActivityNotFoundError, DepositNotFoundError, InvalidTransitionError
from timebank.holiday import HolidayTransferProtocol
from timebank.ledger import LedgerStore
from timebank.models import DEFAULT_USER_ID, Activity
from timebank.storage import MemoryStorage
from timebank.timeutils import to_millis


@pytest.fixture
def store() -> LedgerStore:
    return LedgerStore(MemoryStorage())


def seed(store: LedgerStore, activity_id: str, duration: int, used: int = 0, available: bool = True) -> Activity:
    start = to_millis(datetime(2024, 6, 5, 9))
    return store.add_activity(
        Activity(
            id=activity_id,
            user_id=DEFAULT_USER_ID,
            description="Homework",
            start_time=start,
            end_time=start + duration,
            duration=duration,
            used_duration=used,
            is_available_for_deposit=available,
            week_number=23,
            year=2024,
        )
    )


def test_transfer_creates_bonus_deposit(store, clock) -> None:
    events = EventBus()
    received = []
    for event in (LedgerEvent.DEPOSIT_ADDED, LedgerEvent.ACTIVITY_LIST_CHANGED, LedgerEvent.TRANSFER_SUCCEEDED):
        events.subscribe(event, lambda name, payload: received.append(name))
    notices = NoticeCenter()
    protocol = HolidayTransferProtocol(store, events=events, notices=notices, clock=clock)
    seed(store, "a1", 90_000)

    result = protocol.transfer_to_holiday(DEFAULT_USER_ID, "a1")

    deposit = result.deposit
    assert result.accepted and result.persisted
    assert deposit.activity_id == "a1"
    assert deposit.deposited_duration == 90_000
    assert deposit.accumulated_bonus == 9_000
    assert deposit.total_value == 99_000
    assert deposit.deposit_timestamp == to_millis(clock.now)
    assert store.get_activities(DEFAULT_USER_ID) == []
    assert [item.id for item in store.get_deposits(DEFAULT_USER_ID)] == [deposit.id]
    assert received == [
        LedgerEvent.DEPOSIT_ADDED,
        LedgerEvent.ACTIVITY_LIST_CHANGED,
        LedgerEvent.TRANSFER_SUCCEEDED,
    ]
    assert notices.pending(notice_type=NoticeType.TRANSFER_COMPLETE)


def test_transfer_uses_configured_bonus_percentage(store, clock) -> None:
    store.update_user_settings(DEFAULT_USER_ID, holiday_bonus_percentage=25)
    seed(store, "a1", 90_000, used=30_000)
    protocol = HolidayTransferProtocol(store, clock=clock)

    deposit = protocol.transfer_to_holiday(DEFAULT_USER_ID, "a1").deposit

    assert deposit.deposited_duration == 60_000
    assert deposit.accumulated_bonus == 15_000


def test_transfer_rejects_unavailable_and_unknown_activities(store, clock) -> None:
    seed(store, "used", 10_000, used=10_000, available=False)
    protocol = HolidayTransferProtocol(store, clock=clock)

    unavailable = protocol.transfer_to_holiday(DEFAULT_USER_ID, "used")
    missing = protocol.transfer_to_holiday(DEFAULT_USER_ID, "ghost")

    assert not unavailable.accepted
    assert isinstance(unavailable.error, InvalidTransitionError)
    assert isinstance(missing.error, ActivityNotFoundError)
    assert [item.id for item in store.get_activities(DEFAULT_USER_ID)] == ["used"]
    assert store.get_deposits(DEFAULT_USER_ID) == []


def test_cancel_round_trip_restores_activity(store, clock) -> None:
    original = seed(store, "a1", 90_000, used=30_000)
    protocol = HolidayTransferProtocol(store, clock=clock)
    deposit = protocol.transfer_to_holiday(DEFAULT_USER_ID, "a1").deposit
    prompts = []

    def approve(prompt) -> bool:
        prompts.append(prompt)
        return True

    result = protocol.cancel_deposit(DEFAULT_USER_ID, deposit.id, approve)

    (restored,) = store.get_activities(DEFAULT_USER_ID)
    assert result.accepted
    assert prompts[0].title == "Cancel Holiday Deposit?"
    assert prompts[0].forfeited_bonus == 6_000
    assert "00:00:06" in prompts[0].message
    assert restored.id == original.id
    assert restored.description == original.description
    assert restored.duration == original.duration
    assert restored.used_duration == original.used_duration
    assert restored.is_available_for_deposit
    assert store.get_deposits(DEFAULT_USER_ID) == []


def test_declined_cancellation_changes_nothing(store, clock) -> None:
    events = EventBus()
    canceled = []
    events.subscribe(LedgerEvent.DEPOSIT_CANCELED, lambda name, payload: canceled.append(payload))
    seed(store, "a1", 90_000)
    protocol = HolidayTransferProtocol(store, events=events, clock=clock)
    deposit = protocol.transfer_to_holiday(DEFAULT_USER_ID, "a1").deposit

    result = protocol.cancel_deposit(DEFAULT_USER_ID, deposit.id, lambda prompt: False)

    assert not result.accepted
    assert result.error is None
    assert [item.id for item in store.get_deposits(DEFAULT_USER_ID)] == [deposit.id]
    assert store.get_activities(DEFAULT_USER_ID) == []
    assert canceled == []


def test_cancel_unknown_deposit_reports_not_found(store, clock) -> None:
    protocol = HolidayTransferProtocol(store, clock=clock)

    result = protocol.cancel_deposit(DEFAULT_USER_ID, "ghost", lambda prompt: True)

    assert isinstance(result.error, DepositNotFoundError)
    with pytest.raises(DepositNotFoundError):
        result.raise_for_error()
