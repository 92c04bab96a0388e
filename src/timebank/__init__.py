"""TimeBank package for tracking, spending and banking children's earned time."""

from .api import ApiExporter
from .events import EventBus, LedgerEvent, Notice, NoticeCenter, NoticeLevel, NoticeType
from .exceptions import (
    ActivityNotFoundError,
    DepositNotFoundError,
    InvalidTransitionError,
    NotFoundError,
    PersistenceError,
    TimeBankError,
    UserNotFoundError,
)
from .holiday import CancellationPrompt, HolidayTransferProtocol, TransferResult
from .ledger import LedgerStore
from .models import (
    DEFAULT_USER_ID,
    Activity,
    AppState,
    ScheduleEntry,
    TimeDeposit,
    TrackingMode,
    TrackingState,
    User,
    UserSettings,
)
from .ops import StructuredLogger
from .service import TimeBank, WalletSummary
from .storage import JsonFileStorage, MemoryStorage, StateStorage
from .tracking import TrackingStateMachine, TransitionResult, UsageCountdown

__all__ = [
    "Activity",
    "ActivityNotFoundError",
    "ApiExporter",
    "AppState",
    "CancellationPrompt",
    "DEFAULT_USER_ID",
    "DepositNotFoundError",
    "EventBus",
    "HolidayTransferProtocol",
    "InvalidTransitionError",
    "JsonFileStorage",
    "LedgerEvent",
    "LedgerStore",
    "MemoryStorage",
    "NotFoundError",
    "Notice",
    "NoticeCenter",
    "NoticeLevel",
    "NoticeType",
    "PersistenceError",
    "ScheduleEntry",
    "StateStorage",
    "StructuredLogger",
    "TimeBank",
    "TimeBankError",
    "TimeDeposit",
    "TrackingMode",
    "TrackingState",
    "TrackingStateMachine",
    "TransferResult",
    "TransitionResult",
    "UsageCountdown",
    "User",
    "UserNotFoundError",
    "UserSettings",
    "WalletSummary",
]
