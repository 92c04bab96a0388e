"""Wallet calculations over activities and deposits.

Every function here is a pure query: collections are read, never mutated, and
the current moment is passed in so day-bounded figures are reproducible.
"""

from __future__ import annotations

import math
from datetime import datetime, timedelta
from typing import Iterable, List, Optional, Sequence, Union

from .models import Activity, TimeDeposit
from .timeutils import (
    day_window,
    from_millis,
    is_valid_millis,
    is_weekend,
    weekend_end,
)

Transferable = Union[Activity, TimeDeposit]

WEEKLY_BONUS_MIN_DAYS = 5


def remaining_time(activity: Activity) -> int:
    """Return ``max(0, duration - used_duration)``."""

    return max(0, activity.duration - activity.used_duration)


def _today_bounds(now: Optional[datetime]) -> tuple[int, int]:
    return day_window(now or datetime.now())


def _started_within(activity: Activity, start: int, end: int) -> bool:
    return is_valid_millis(activity.start_time) and start <= activity.start_time < end


def total_available_today(activities: Iterable[Activity], now: Optional[datetime] = None) -> int:
    """Sum the unspent time of today's activities that are still available.

    Activities started on another day, or already moved out of the today pool,
    do not count. Malformed durations contribute zero.
    """

    start, end = _today_bounds(now)
    total = 0
    for activity in activities:
        if not activity.is_available_for_deposit or not _started_within(activity, start, end):
            continue
        if not (is_valid_millis(activity.duration) and is_valid_millis(activity.used_duration)):
            continue
        total += int(remaining_time(activity))
    return total


def total_accumulated_today(activities: Iterable[Activity], now: Optional[datetime] = None) -> int:
    """Sum the full duration of every activity started today, spent or not."""

    start, end = _today_bounds(now)
    return sum(
        int(activity.duration)
        for activity in activities
        if _started_within(activity, start, end) and is_valid_millis(activity.duration)
    )


def total_available(activities: Iterable[Activity]) -> int:
    """Unspent time across every available activity regardless of its day."""

    return sum(
        int(remaining_time(activity))
        for activity in activities
        if activity.is_available_for_deposit
        and is_valid_millis(activity.duration)
        and is_valid_millis(activity.used_duration)
    )


def today_activities(activities: Iterable[Activity], now: Optional[datetime] = None) -> List[Activity]:
    """Return today's activities, most recent first."""

    start, end = _today_bounds(now)
    selected = [activity for activity in activities if _started_within(activity, start, end)]
    return sorted(selected, key=lambda activity: activity.start_time, reverse=True)


def find_next_available_activity(activities: Iterable[Activity]) -> Optional[Activity]:
    """Return the first activity, in list order, with time left to spend."""

    for activity in activities:
        if activity.is_available_for_deposit and activity.used_duration < activity.duration:
            return activity
    return None


def can_transfer_to_holiday(entity: Transferable) -> bool:
    return entity.is_available_for_deposit is True


def deposit_bonus(deposited_duration: int, bonus_percentage: float) -> int:
    """Return ``floor(deposited_duration * bonus_percentage / 100)``, never negative."""

    if deposited_duration <= 0 or bonus_percentage <= 0:
        return 0
    if not (math.isfinite(deposited_duration) and math.isfinite(bonus_percentage)):
        return 0
    return math.floor(deposited_duration * bonus_percentage / 100)


def deposit_total_value(deposit: TimeDeposit) -> int:
    return deposit.deposited_duration + deposit.accumulated_bonus


def holiday_wallet_balance(deposits: Iterable[TimeDeposit]) -> int:
    """Deposited time plus bonus across the holiday wallet."""

    return sum(deposit_total_value(deposit) for deposit in deposits)


def today_deposits(deposits: Iterable[TimeDeposit], now: Optional[datetime] = None) -> List[TimeDeposit]:
    """Return deposits made today, most recent first."""

    start, end = _today_bounds(now)
    selected = [deposit for deposit in deposits if start <= deposit.deposit_timestamp < end]
    return sorted(selected, key=lambda deposit: deposit.deposit_timestamp, reverse=True)


def weekend_bonus(deposits: Iterable[TimeDeposit], bonus_percentage: float) -> int:
    """Bonus the weekend deposits would earn at ``bonus_percentage``.

    Informational only; nothing is credited.
    """

    return sum(
        deposit_bonus(deposit.deposited_duration, bonus_percentage)
        for deposit in deposits
        if is_weekend(from_millis(deposit.deposit_timestamp))
    )


def deposit_expiration(deposit: TimeDeposit, weekend_time_to_next_week: bool) -> datetime:
    """Return when a deposit stops counting towards the current week.

    Deposits expire at the end of the weekend of the week they were made in.
    A weekend deposit is carried to the end of the following weekend when
    ``weekend_time_to_next_week`` is enabled.
    """

    deposited_at = from_millis(deposit.deposit_timestamp)
    if weekend_time_to_next_week and is_weekend(deposited_at):
        return weekend_end(deposited_at + timedelta(days=7))
    return weekend_end(deposited_at)


def is_eligible_for_weekly_bonus(deposits: Sequence[TimeDeposit]) -> bool:
    """True when deposits were made on at least five different weekdays."""

    days = {from_millis(deposit.deposit_timestamp).weekday() for deposit in deposits}
    return len(days) >= WEEKLY_BONUS_MIN_DAYS


__all__ = [
    "WEEKLY_BONUS_MIN_DAYS",
    "can_transfer_to_holiday",
    "deposit_bonus",
    "deposit_expiration",
    "deposit_total_value",
    "find_next_available_activity",
    "holiday_wallet_balance",
    "is_eligible_for_weekly_bonus",
    "remaining_time",
    "today_activities",
    "today_deposits",
    "total_accumulated_today",
    "total_available",
    "total_available_today",
    "weekend_bonus",
]
