import json
from datetime import datetime

import pytest

from timebank.api import ApiExporter
from timebank.events import LedgerEvent
from timebank.exceptions import InvalidTransitionError, UserNotFoundError
from timebank.models import DEFAULT_USER_ID, TrackingMode
from timebank.ops import StructuredLogger
from timebank.service import TimeBank
from timebank.storage import MemoryStorage


@pytest.fixture
def bank(clock) -> TimeBank:
    bank = TimeBank(MemoryStorage(), clock=clock)
    bank.select_user(DEFAULT_USER_ID)
    return bank


def earn(bank: TimeBank, clock, milliseconds: int, description: str = "Homework"):
    bank.start_tracking().raise_for_error()
    clock.advance(milliseconds)
    return bank.stop_tracking(description).raise_for_error()


def test_current_user_must_be_selected(clock) -> None:
    bank = TimeBank(MemoryStorage(), clock=clock)

    with pytest.raises(InvalidTransitionError):
        bank.current_user_id()
    with pytest.raises(UserNotFoundError):
        bank.select_user("ghost")

    bank.select_user(DEFAULT_USER_ID)
    assert bank.current_user_id() == DEFAULT_USER_ID


def test_earn_spend_and_summarise(bank, clock) -> None:
    earn(bank, clock, 90_000)
    bank.start_time_usage().raise_for_error()
    clock.advance(30_000)
    assert bank.stop_time_usage().consumed == 30_000

    wallet = bank.wallet_summary()

    assert wallet.available_today == 60_000
    assert wallet.accumulated_today == 90_000
    assert wallet.holiday_balance == 0
    assert wallet.weekend_bonus == 0
    assert not wallet.weekly_bonus_eligible
    assert [activity.description for activity in wallet.today_activities] == ["Homework"]


def test_holiday_transfer_through_facade(bank, clock) -> None:
    activity = earn(bank, clock, 90_000).activity

    result = bank.transfer_to_holiday(activity.id).raise_for_error()
    wallet = bank.wallet_summary()

    assert wallet.available_today == 0
    assert wallet.holiday_balance == 99_000
    assert wallet.deposit_expirations[result.deposit.id] == datetime(2024, 6, 9, 23, 59, 59, 999999)

    bank.cancel_deposit(result.deposit.id, lambda prompt: True).raise_for_error()
    assert bank.wallet_summary().available_today == 90_000


def test_auto_deposit_moves_new_activities_to_holiday(bank, clock) -> None:
    received = []
    bank.events.subscribe(LedgerEvent.DEPOSIT_ADDED, lambda name, payload: received.append(payload))
    bank.update_settings(auto_deposit_to_holiday=True)

    result = earn(bank, clock, 60_000)

    assert bank.store.get_activities(DEFAULT_USER_ID) == []
    (deposit,) = bank.store.get_deposits(DEFAULT_USER_ID)
    assert deposit.activity_id == result.activity.id
    assert deposit.total_value == 66_000
    assert received[0]["depositId"] == deposit.id


def test_weekend_bonus_hidden_when_carry_over_disabled(bank) -> None:
    bank.update_settings(weekend_time_to_next_week=False)

    assert bank.wallet_summary().weekend_bonus is None


def test_user_switch_refused_while_session_runs(bank, clock) -> None:
    other = bank.add_user("Ben")
    bank.start_tracking()

    with pytest.raises(InvalidTransitionError):
        bank.select_user(other)
    with pytest.raises(InvalidTransitionError):
        bank.delete_user(DEFAULT_USER_ID)

    clock.advance(1_000)
    bank.stop_tracking()
    bank.select_user(other)
    assert bank.tracker().user_id == other
    assert bank.tracker().mode is TrackingMode.IDLE


def test_deleting_users(bank) -> None:
    other = bank.add_user("Ben")

    assert bank.delete_user(DEFAULT_USER_ID) is False
    assert bank.delete_user(other) is True
    assert [user.id for user in bank.users()] == [DEFAULT_USER_ID]


def test_summary_lists_every_user(bank, clock) -> None:
    bank.add_user("Ben", nickname="Benny")
    earn(bank, clock, 3_600_000)

    summary = bank.summary()

    assert summary.splitlines()[0] == "TimeBank summary:"
    assert "- Kid 1: today 01:00:00 of 01:00:00, holiday 00:00:00" in summary
    assert "- Benny:" in summary


def test_logger_records_operations(clock, tmp_path) -> None:
    log_path = tmp_path / "logs" / "timebank.jsonl"
    bank = TimeBank(MemoryStorage(), log_path=log_path, clock=clock)
    bank.select_user(DEFAULT_USER_ID)
    earn(bank, clock, 5_000)

    assert bank.logger.tail(event="tracking_stopped")[-1]["duration"] == 5_000
    assert log_path.read_text(encoding="utf-8").count("\n") == len(bank.logger.tail(limit=1000))


def test_shared_logger_is_used(clock) -> None:
    logger = StructuredLogger()
    bank = TimeBank(MemoryStorage(), logger=logger, clock=clock)

    assert bank.logger is logger
    assert logger.tail(event="default_user_created")


def test_exporter_renders_wallet_json(bank, clock) -> None:
    earn(bank, clock, 90_000)
    exporter = ApiExporter()

    payload = json.loads(exporter.to_json(exporter.wallet_snapshot(bank.wallet_summary())))

    assert payload["availableTodayFormatted"] == "00:01:30"
    assert payload["activities"][0]["remaining"] == 90_000
    assert payload["deposits"] == []
