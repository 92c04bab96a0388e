"""High level service wiring the ledger, wallet, tracking and holiday components."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Iterable, List, Mapping, Optional, Tuple

from .events import EventBus, NoticeCenter
from .exceptions import InvalidTransitionError, PersistenceError
from .holiday import Confirm, HolidayTransferProtocol, TransferResult
from .ledger import LedgerStore
from .models import Activity, ScheduleEntry, TimeDeposit, TrackingMode, User, UserSettings
from .ops import StructuredLogger
from .storage import MemoryStorage, StateStorage
from .timeutils import format_duration
from .tracking import Clock, TrackingStateMachine, TransitionResult, UsageCountdown
from .wallet import (
    deposit_expiration,
    holiday_wallet_balance,
    is_eligible_for_weekly_bonus,
    today_activities,
    total_accumulated_today,
    total_available_today,
    weekend_bonus,
)


@dataclass(slots=True)
class WalletSummary:
    """Display aggregates for one user's today and holiday wallets."""

    user_id: str
    available_today: int
    accumulated_today: int
    holiday_balance: int
    weekend_bonus: Optional[int]
    weekly_bonus_eligible: bool
    today_activities: List[Activity] = field(default_factory=list)
    holiday_deposits: List[TimeDeposit] = field(default_factory=list)
    deposit_expirations: dict = field(default_factory=dict)


class TimeBank:
    """Session context: built once and handed to every UI collaborator."""

    __slots__ = (
        "_logger",
        "_clock",
        "events",
        "notices",
        "store",
        "holiday",
        "_tracker",
    )

    def __init__(
        self,
        storage: StateStorage | None = None,
        *,
        logger: StructuredLogger | None = None,
        log_path: Path | None = None,
        clock: Clock = datetime.now,
    ) -> None:
        self._logger = logger or StructuredLogger(path=log_path)
        self._clock = clock
        self.events = EventBus(logger=self._logger)
        self.notices = NoticeCenter()
        self.store = LedgerStore(storage if storage is not None else MemoryStorage(), logger=self._logger)
        self.holiday = HolidayTransferProtocol(
            self.store,
            events=self.events,
            notices=self.notices,
            logger=self._logger,
            clock=clock,
        )
        self._tracker: Optional[TrackingStateMachine] = None

    @property
    def logger(self) -> StructuredLogger:
        return self._logger

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------
    def users(self) -> Tuple[User, ...]:
        return self.store.get_users()

    def add_user(
        self,
        name: str,
        nickname: str = "",
        schedule: Iterable[ScheduleEntry | Mapping[str, Any]] = (),
    ) -> str:
        return self.store.add_user(name, nickname, schedule)

    def update_user(self, data: Mapping[str, Any]) -> bool:
        return self.store.update_user(data)

    def delete_user(self, user_id: str) -> bool:
        if self._tracker is not None and self._tracker.user_id == user_id:
            if self._tracker.mode is not TrackingMode.IDLE:
                raise InvalidTransitionError("Finish the running session before removing this user.")
            self._tracker = None
        return self.store.delete_user(user_id)

    def select_user(self, user_id: str) -> None:
        """Make ``user_id`` the current user.

        Switching is refused while another user's session is running because
        the tracking state is shared by the whole session.
        """

        current = self.store.get_current_user_id()
        if current != user_id and self._tracker is not None and self._tracker.mode is not TrackingMode.IDLE:
            raise InvalidTransitionError("Finish the running session before switching users.")
        self.store.set_current_user_id(user_id)
        if self._tracker is not None and self._tracker.user_id != user_id:
            self._tracker = None

    def current_user_id(self) -> str:
        user_id = self.store.get_current_user_id()
        if user_id is None:
            raise InvalidTransitionError("No user has been selected.")
        return user_id

    def settings(self, user_id: str | None = None) -> UserSettings:
        return self.store.get_user_settings(user_id or self.current_user_id())

    def update_settings(self, user_id: str | None = None, **changes: Any) -> UserSettings:
        return self.store.update_user_settings(user_id or self.current_user_id(), **changes)

    # ------------------------------------------------------------------
    # Tracking and usage
    # ------------------------------------------------------------------
    def tracker(self) -> TrackingStateMachine:
        """Return the state machine of the current user."""

        user_id = self.current_user_id()
        if self._tracker is None or self._tracker.user_id != user_id:
            self._tracker = TrackingStateMachine(
                self.store,
                user_id,
                events=self.events,
                notices=self.notices,
                logger=self._logger,
                clock=self._clock,
            )
        return self._tracker

    def start_tracking(self) -> TransitionResult:
        return self.tracker().start_tracking()

    def stop_tracking(self, description: str | None = None) -> TransitionResult:
        """Stop tracking and, when the user opted in, bank the new activity for the holidays."""

        result = self.tracker().stop_tracking(description)
        if result.accepted and result.activity is not None:
            self._auto_deposit(result.activity)
        return result

    def start_time_usage(self) -> TransitionResult:
        return self.tracker().start_time_usage()

    def stop_time_usage(self) -> TransitionResult:
        return self.tracker().stop_time_usage()

    def tick(self) -> Optional[TransitionResult]:
        return self.tracker().tick()

    def countdown(self, *, interval: float = 1.0) -> UsageCountdown:
        return UsageCountdown(self.tracker(), interval=interval)

    def _auto_deposit(self, activity: Activity) -> Optional[TransferResult]:
        try:
            settings = self.store.get_user_settings(activity.user_id)
        except PersistenceError:
            # Defaults are already in memory; the second read does not persist.
            settings = self.store.get_user_settings(activity.user_id)
        if not settings.auto_deposit_to_holiday:
            return None
        result = self.holiday.transfer_to_holiday(activity.user_id, activity.id)
        self._logger.log("auto_deposit", user=activity.user_id, activity=activity.id, accepted=result.accepted)
        return result

    # ------------------------------------------------------------------
    # Holiday wallet
    # ------------------------------------------------------------------
    def transfer_to_holiday(self, activity_id: str, *, user_id: str | None = None) -> TransferResult:
        return self.holiday.transfer_to_holiday(user_id or self.current_user_id(), activity_id)

    def cancel_deposit(
        self,
        deposit_id: str,
        confirm: Confirm,
        *,
        user_id: str | None = None,
    ) -> TransferResult:
        return self.holiday.cancel_deposit(user_id or self.current_user_id(), deposit_id, confirm)

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------
    def wallet_summary(self, user_id: str | None = None, *, now: datetime | None = None) -> WalletSummary:
        user_id = user_id or self.current_user_id()
        moment = now or self._clock()
        user = self.store.require_user(user_id)
        settings = user.settings or UserSettings()
        activities = user.activity_log
        deposits = user.deposits
        return WalletSummary(
            user_id=user_id,
            available_today=total_available_today(activities, moment),
            accumulated_today=total_accumulated_today(activities, moment),
            holiday_balance=holiday_wallet_balance(deposits),
            weekend_bonus=(
                weekend_bonus(deposits, settings.weekly_bonus_percentage)
                if settings.weekend_time_to_next_week
                else None
            ),
            weekly_bonus_eligible=is_eligible_for_weekly_bonus(deposits),
            today_activities=today_activities(activities, moment),
            holiday_deposits=list(deposits),
            deposit_expirations={
                deposit.id: deposit_expiration(deposit, settings.weekend_time_to_next_week)
                for deposit in deposits
            },
        )

    def summary(self, *, now: datetime | None = None) -> str:
        lines = ["TimeBank summary:"]
        for user in self.store.get_users():
            wallet = self.wallet_summary(user.id, now=now)
            lines.append(
                f"- {user.nickname or user.name}: today {format_duration(wallet.available_today)}"
                f" of {format_duration(wallet.accumulated_today)}, holiday {format_duration(wallet.holiday_balance)}"
            )
        return "\n".join(lines)


__all__ = ["TimeBank", "WalletSummary"]
