"""Domain models used by the TimeBank package."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional
from uuid import uuid4

from .timeutils import coerce_millis, is_valid_millis

DEFAULT_USER_ID = "1"
DEFAULT_USER_NAME = "Kid 1"
UNNAMED_ACTIVITY = "Unnamed activity"


class TrackingMode(str, Enum):
    """The mutually exclusive modes of a tracking session."""

    IDLE = "idle"
    TRACKING = "tracking"
    USING = "using"


@dataclass(slots=True)
class Activity:
    """A completed work session whose duration can be spent or deposited."""

    id: str
    user_id: str
    description: str
    start_time: int
    end_time: int
    duration: int
    used_duration: int = 0
    is_available_for_deposit: bool = True
    week_number: int = 0
    year: int = 0

    def __post_init__(self) -> None:
        if self.used_duration < 0:
            raise ValueError("used_duration cannot be negative.")

    @property
    def remaining(self) -> int:
        """Return the duration that has not been spent yet."""

        return max(0, self.duration - self.used_duration)

    def consume(self, budget: int) -> int:
        """Spend up to ``budget`` milliseconds and return the amount consumed.

        The activity stops being available once it has been fully used.
        """

        available = self.duration - self.used_duration
        if available <= 0:
            self.is_available_for_deposit = False
            return 0
        spent = min(max(budget, 0), available)
        self.used_duration += spent
        if self.used_duration >= self.duration:
            self.is_available_for_deposit = False
        return spent

    def as_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "userId": self.user_id,
            "description": self.description,
            "startTime": self.start_time,
            "endTime": self.end_time,
            "duration": self.duration,
            "usedDuration": self.used_duration,
            "isAvailableForDeposit": self.is_available_for_deposit,
            "weekNumber": self.week_number,
            "year": self.year,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "Activity":
        return cls(
            id=str(payload.get("id") or new_id()),
            user_id=str(payload.get("userId", "")),
            description=str(payload.get("description") or ""),
            start_time=coerce_millis(payload.get("startTime")),
            end_time=coerce_millis(payload.get("endTime")),
            duration=coerce_millis(payload.get("duration")),
            used_duration=max(coerce_millis(payload.get("usedDuration")), 0),
            is_available_for_deposit=bool(payload.get("isAvailableForDeposit", True)),
            week_number=coerce_millis(payload.get("weekNumber")),
            year=coerce_millis(payload.get("year")),
        )


@dataclass(slots=True)
class TimeDeposit:
    """Time moved out of the activity log into the holiday wallet."""

    id: str
    activity_id: str
    user_id: str
    description: str
    start_time: int
    end_time: int
    duration: int
    deposited_duration: int
    accumulated_bonus: int
    deposit_timestamp: int
    week_number: int = 0
    year: int = 0
    used_duration: int = 0
    is_available_for_deposit: bool = True

    def __post_init__(self) -> None:
        if self.accumulated_bonus < 0:
            raise ValueError("accumulated_bonus cannot be negative.")
        if self.deposited_duration < 0:
            raise ValueError("deposited_duration cannot be negative.")

    @property
    def total_value(self) -> int:
        """Deposited time plus the bonus earned on it."""

        return self.deposited_duration + self.accumulated_bonus

    def as_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "activityId": self.activity_id,
            "userId": self.user_id,
            "description": self.description,
            "startTime": self.start_time,
            "endTime": self.end_time,
            "duration": self.duration,
            "usedDuration": self.used_duration,
            "depositedDuration": self.deposited_duration,
            "accumulatedBonus": self.accumulated_bonus,
            "depositTimestamp": self.deposit_timestamp,
            "weekNumber": self.week_number,
            "year": self.year,
            "isAvailableForDeposit": self.is_available_for_deposit,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "TimeDeposit":
        deposit_id = str(payload.get("id") or new_id())
        return cls(
            id=deposit_id,
            activity_id=str(payload.get("activityId") or deposit_id),
            user_id=str(payload.get("userId", "")),
            description=str(payload.get("description") or ""),
            start_time=coerce_millis(payload.get("startTime")),
            end_time=coerce_millis(payload.get("endTime")),
            duration=coerce_millis(payload.get("duration")),
            deposited_duration=max(coerce_millis(payload.get("depositedDuration")), 0),
            accumulated_bonus=max(coerce_millis(payload.get("accumulatedBonus")), 0),
            deposit_timestamp=coerce_millis(payload.get("depositTimestamp")),
            week_number=coerce_millis(payload.get("weekNumber")),
            year=coerce_millis(payload.get("year")),
            used_duration=max(coerce_millis(payload.get("usedDuration")), 0),
            is_available_for_deposit=bool(payload.get("isAvailableForDeposit", True)),
        )


def _coerce_percentage(value: Any, default: float) -> float:
    """Return ``value`` as a non-negative number, or ``default`` when it is unusable."""

    if isinstance(value, str):
        try:
            value = float(value.strip())
        except ValueError:
            return default
    if not is_valid_millis(value) or value < 0:
        return default
    return value


@dataclass(slots=True)
class UserSettings:
    """Guardian-controlled wallet options for a single user."""

    auto_deposit_to_holiday: bool = False
    weekend_time_to_next_week: bool = True
    holiday_bonus_percentage: float = 10
    weekly_bonus_percentage: float = 5

    def __post_init__(self) -> None:
        if self.holiday_bonus_percentage < 0 or self.weekly_bonus_percentage < 0:
            raise ValueError("Bonus percentages cannot be negative.")

    def as_dict(self) -> Dict[str, Any]:
        return {
            "autoDepositToHoliday": self.auto_deposit_to_holiday,
            "weekendTimeToNextWeek": self.weekend_time_to_next_week,
            "holidayBonusPercentage": self.holiday_bonus_percentage,
            "weeklyBonusPercentage": self.weekly_bonus_percentage,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "UserSettings":
        defaults = cls()
        return cls(
            auto_deposit_to_holiday=bool(payload.get("autoDepositToHoliday", defaults.auto_deposit_to_holiday)),
            weekend_time_to_next_week=bool(
                payload.get("weekendTimeToNextWeek", defaults.weekend_time_to_next_week)
            ),
            holiday_bonus_percentage=_coerce_percentage(
                payload.get("holidayBonusPercentage"), defaults.holiday_bonus_percentage
            ),
            weekly_bonus_percentage=_coerce_percentage(
                payload.get("weeklyBonusPercentage"), defaults.weekly_bonus_percentage
            ),
        )


@dataclass(slots=True)
class ScheduleEntry:
    """A weekly window in which a child may spend time."""

    day: str
    start_time: str
    end_time: str
    enabled: bool = True

    def as_dict(self) -> Dict[str, Any]:
        return {
            "day": self.day,
            "startTime": self.start_time,
            "endTime": self.end_time,
            "enabled": self.enabled,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "ScheduleEntry":
        return cls(
            day=str(payload.get("day", "")),
            start_time=str(payload.get("startTime", "")),
            end_time=str(payload.get("endTime", "")),
            enabled=bool(payload.get("enabled", True)),
        )


@dataclass(slots=True)
class User:
    """A child configured by a guardian, owning activities and deposits."""

    id: str
    name: str
    nickname: str = ""
    time_balance: int = 0
    schedule: List[ScheduleEntry] = field(default_factory=list)
    activity_log: List[Activity] = field(default_factory=list)
    deposits: List[TimeDeposit] = field(default_factory=list)
    settings: Optional[UserSettings] = None

    def as_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "nickname": self.nickname,
            "timeBalance": self.time_balance,
            "schedule": [entry.as_dict() for entry in self.schedule],
            "activityLog": [activity.as_dict() for activity in self.activity_log],
            "deposits": [deposit.as_dict() for deposit in self.deposits],
        }
        if self.settings is not None:
            payload["settings"] = self.settings.as_dict()
        return payload

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "User":
        settings = payload.get("settings")
        return cls(
            id=str(payload.get("id") or new_id()),
            name=str(payload.get("name", "")),
            nickname=str(payload.get("nickname") or ""),
            time_balance=coerce_millis(payload.get("timeBalance")),
            schedule=[ScheduleEntry.from_dict(item) for item in payload.get("schedule") or []],
            activity_log=[Activity.from_dict(item) for item in payload.get("activityLog") or []],
            deposits=[TimeDeposit.from_dict(item) for item in payload.get("deposits") or []],
            settings=UserSettings.from_dict(settings) if isinstance(settings, Mapping) else None,
        )


@dataclass(slots=True)
class TrackingState:
    """Session state persisted so a reload can resume a running timer."""

    is_tracking: bool = False
    is_using_time: bool = False
    start_time: Optional[int] = None
    usage_start_time: Optional[int] = None
    current_activity_description: str = ""
    current_usage_activity_id: Optional[str] = None

    def __post_init__(self) -> None:
        if self.is_tracking and self.is_using_time:
            raise ValueError("Tracking and using time are mutually exclusive.")

    @property
    def mode(self) -> TrackingMode:
        if self.is_tracking:
            return TrackingMode.TRACKING
        if self.is_using_time:
            return TrackingMode.USING
        return TrackingMode.IDLE

    def copy(self) -> "TrackingState":
        return replace(self)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "isTracking": self.is_tracking,
            "isUsingTime": self.is_using_time,
            "startTime": self.start_time,
            "usageStartTime": self.usage_start_time,
            "currentActivityDescription": self.current_activity_description,
            "currentUsageActivityId": self.current_usage_activity_id,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "TrackingState":
        is_tracking = bool(payload.get("isTracking", False))
        is_using = bool(payload.get("isUsingTime", False)) and not is_tracking
        start_time = payload.get("startTime")
        usage_start = payload.get("usageStartTime")
        return cls(
            is_tracking=is_tracking,
            is_using_time=is_using,
            start_time=coerce_millis(start_time) if start_time is not None else None,
            usage_start_time=coerce_millis(usage_start) if usage_start is not None else None,
            current_activity_description=str(payload.get("currentActivityDescription") or ""),
            current_usage_activity_id=payload.get("currentUsageActivityId"),
        )


@dataclass(slots=True)
class AppState:
    """The whole persisted state graph."""

    users: List[User] = field(default_factory=list)
    current_user_id: Optional[str] = None
    tracking_state: Optional[TrackingState] = None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "users": [user.as_dict() for user in self.users],
            "currentUserId": self.current_user_id,
            "trackingState": self.tracking_state.as_dict() if self.tracking_state else None,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "AppState":
        tracking = payload.get("trackingState")
        return cls(
            users=[User.from_dict(item) for item in payload.get("users") or []],
            current_user_id=payload.get("currentUserId"),
            tracking_state=TrackingState.from_dict(tracking) if tracking else None,
        )


def new_id() -> str:
    return str(uuid4())


def default_user() -> User:
    """Return a fresh copy of the protected default user."""

    return User(
        id=DEFAULT_USER_ID,
        name=DEFAULT_USER_NAME,
        nickname=DEFAULT_USER_NAME,
        settings=UserSettings(),
    )


__all__ = [
    "DEFAULT_USER_ID",
    "DEFAULT_USER_NAME",
    "UNNAMED_ACTIVITY",
    "Activity",
    "AppState",
    "ScheduleEntry",
    "TimeDeposit",
    "TrackingMode",
    "TrackingState",
    "User",
    "UserSettings",
    "default_user",
    "new_id",
]
