"""Ledger store: the single owner of persisted TimeBank state."""

from __future__ import annotations

import copy
from dataclasses import replace
from typing import Any, Iterable, List, Mapping, Optional, Sequence, Tuple

from .exceptions import (
    ActivityNotFoundError,
    DepositNotFoundError,
    PersistenceError,
    UserNotFoundError,
)
from .models import (
    DEFAULT_USER_ID,
    Activity,
    AppState,
    ScheduleEntry,
    TimeDeposit,
    TrackingState,
    User,
    UserSettings,
    default_user,
    new_id,
)
from .ops import StructuredLogger
from .storage import StateStorage

_SETTINGS_FIELDS = {
    "auto_deposit_to_holiday",
    "weekend_time_to_next_week",
    "holiday_bonus_percentage",
    "weekly_bonus_percentage",
}


class LedgerStore:
    """Own the per-user state graph and persist it after every mutation.

    Readers receive copies; the only way to change stored activities, deposits
    or settings is through the methods of this class. Each mutation writes the
    whole state blob. When the write fails the in-memory change is kept and
    :class:`~timebank.exceptions.PersistenceError` is raised to the caller.

    After a failed load the stored blob is never overwritten: changes stay in
    memory and every write raises until :meth:`load` succeeds again.
    """

    __slots__ = ("_storage", "_logger", "_state", "load_error", "save_error")

    def __init__(self, storage: StateStorage, *, logger: StructuredLogger | None = None) -> None:
        self._storage = storage
        self._logger = logger or StructuredLogger()
        self._state = AppState()
        self.load_error: Optional[PersistenceError] = None
        self.save_error: Optional[PersistenceError] = None
        self.load()

    # ------------------------------------------------------------------
    # Loading and persistence
    # ------------------------------------------------------------------
    def load(self) -> AppState:
        """Read the blob from storage, falling back to the initial state."""

        try:
            blob = self._storage.load()
            state = AppState.from_dict(blob) if blob else AppState()
        except Exception as exc:
            self.load_error = exc if isinstance(exc, PersistenceError) else PersistenceError(str(exc))
            self._logger.error("state_load_failed", error=repr(exc))
            self._state = AppState()
            self._ensure_default_user(persist=False)
            return self._state
        self.load_error = None
        self._state = state
        self._ensure_default_user(persist=True)
        return self._state

    def snapshot(self) -> dict:
        """Return the serialisable state blob."""

        return self._state.as_dict()

    def _persist(self, action: str) -> None:
        if self.load_error is not None:
            self._logger.warning("state_save_skipped", action=action, error=str(self.load_error))
            self.save_error = PersistenceError(
                f"Not saving after '{action}': the stored state could not be read ({self.load_error})."
            )
            raise self.save_error
        try:
            self._storage.save(self._state.as_dict())
        except Exception as exc:
            self._logger.error("state_save_failed", action=action, error=repr(exc))
            if isinstance(exc, PersistenceError):
                self.save_error = exc
                raise
            self.save_error = PersistenceError(f"Saving state after '{action}' failed: {exc}")
            raise self.save_error from exc
        self.save_error = None

    def _ensure_default_user(self, *, persist: bool) -> None:
        if any(user.id == DEFAULT_USER_ID for user in self._state.users):
            return
        self._state.users.insert(0, default_user())
        self._logger.log("default_user_created", user=DEFAULT_USER_ID)
        if persist:
            try:
                self._persist("ensure_default_user")
            except PersistenceError as exc:
                # The user exists in memory; callers see the failure in save_error.
                self.save_error = exc

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------
    def _find_user(self, user_id: str) -> Optional[User]:
        for user in self._state.users:
            if user.id == user_id:
                return user
        return None

    def _require_user(self, user_id: str) -> User:
        user = self._find_user(user_id)
        if user is None:
            raise UserNotFoundError(f"User '{user_id}' does not exist.")
        return user

    def get_users(self) -> Tuple[User, ...]:
        return tuple(copy.deepcopy(user) for user in self._state.users)

    def get_user(self, user_id: str) -> Optional[User]:
        user = self._find_user(user_id)
        return copy.deepcopy(user) if user is not None else None

    def require_user(self, user_id: str) -> User:
        return copy.deepcopy(self._require_user(user_id))

    def has_user(self, user_id: str) -> bool:
        return self._find_user(user_id) is not None

    def add_user(
        self,
        name: str,
        nickname: str = "",
        schedule: Iterable[ScheduleEntry | Mapping[str, Any]] = (),
    ) -> str:
        """Create a user with empty logs and default settings and return its id."""

        if not name.strip():
            raise ValueError("A user needs a name.")
        user = User(
            id=new_id(),
            name=name.strip(),
            nickname=nickname.strip(),
            schedule=_coerce_schedule(schedule),
            settings=UserSettings(),
        )
        self._state.users.append(user)
        self._logger.log("user_created", user=user.id, name=user.name)
        self._persist("add_user")
        return user.id

    def update_user(self, data: Mapping[str, Any]) -> bool:
        """Replace the editable fields of the user identified by ``data["id"]``.

        ``timeBalance`` is always carried over from the stored user, and the
        owned activity log and deposits cannot be replaced through this call.
        """

        user = self._find_user(str(data.get("id", "")))
        if user is None:
            return False
        if "name" in data:
            name = str(data["name"]).strip()
            if not name:
                raise ValueError("A user needs a name.")
            user.name = name
        if "nickname" in data:
            user.nickname = str(data["nickname"] or "").strip()
        if "schedule" in data:
            user.schedule = _coerce_schedule(data["schedule"] or ())
        if data.get("settings") is not None:
            settings = data["settings"]
            user.settings = settings if isinstance(settings, UserSettings) else UserSettings.from_dict(settings)
        self._logger.log("user_updated", user=user.id)
        self._persist("update_user")
        return True

    def delete_user(self, user_id: str) -> bool:
        """Remove a user together with its activities and deposits.

        The default user is protected; deleting it returns ``False``.
        """

        if user_id == DEFAULT_USER_ID:
            self._logger.warning("delete_default_user_refused", user=user_id)
            return False
        remaining = [user for user in self._state.users if user.id != user_id]
        if len(remaining) == len(self._state.users):
            return False
        self._state.users = remaining
        if self._state.current_user_id == user_id:
            self._state.current_user_id = None
        self._logger.log("user_deleted", user=user_id)
        self._persist("delete_user")
        return True

    def set_current_user_id(self, user_id: Optional[str]) -> None:
        if user_id is not None:
            self._require_user(user_id)
        self._state.current_user_id = user_id
        self._persist("set_current_user")

    def get_current_user_id(self) -> Optional[str]:
        return self._state.current_user_id or None

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------
    def get_user_settings(self, user_id: str) -> UserSettings:
        """Return the user's settings, materialising defaults on first access."""

        user = self._require_user(user_id)
        if user.settings is None:
            user.settings = UserSettings()
            self._logger.log("settings_defaulted", user=user_id)
            self._persist("default_settings")
        return replace(user.settings)

    def update_user_settings(self, user_id: str, **changes: Any) -> UserSettings:
        unknown = set(changes) - _SETTINGS_FIELDS
        if unknown:
            raise ValueError(f"Unknown settings: {', '.join(sorted(unknown))}")
        user = self._require_user(user_id)
        user.settings = replace(user.settings or UserSettings(), **changes)
        self._logger.log("settings_updated", user=user_id, **changes)
        self._persist("update_settings")
        return replace(user.settings)

    # ------------------------------------------------------------------
    # Activities
    # ------------------------------------------------------------------
    def get_activities(self, user_id: str) -> List[Activity]:
        user = self._find_user(user_id)
        if user is None:
            return []
        return [replace(activity) for activity in user.activity_log or []]

    def get_activity(self, user_id: str, activity_id: str) -> Activity:
        user = self._require_user(user_id)
        return replace(_find_activity(user, activity_id))

    def add_activity(self, activity: Activity) -> Activity:
        user = self._require_user(activity.user_id)
        stored = replace(activity)
        user.activity_log.append(stored)
        self._logger.log(
            "activity_added",
            user=user.id,
            activity=stored.id,
            duration=stored.duration,
        )
        self._persist("add_activity")
        return replace(stored)

    def update_activity(self, activity: Activity) -> bool:
        """Replace a stored activity by id; unknown activities are ignored."""

        user = self._find_user(activity.user_id)
        if user is None:
            return False
        for index, existing in enumerate(user.activity_log):
            if existing.id == activity.id:
                user.activity_log[index] = replace(activity)
                self._persist("update_activity")
                return True
        return False

    def update_activities(self, user_id: str, activities: Sequence[Activity]) -> int:
        """Replace several activities with a single write; return how many matched."""

        user = self._require_user(user_id)
        by_id = {activity.id: activity for activity in activities}
        updated = 0
        for index, existing in enumerate(user.activity_log):
            if existing.id in by_id:
                user.activity_log[index] = replace(by_id[existing.id])
                updated += 1
        if updated:
            self._persist("update_activities")
        return updated

    # ------------------------------------------------------------------
    # Deposits
    # ------------------------------------------------------------------
    def get_deposits(self, user_id: str) -> List[TimeDeposit]:
        user = self._find_user(user_id)
        if user is None:
            return []
        return [replace(deposit) for deposit in user.deposits or []]

    def get_deposit(self, user_id: str, deposit_id: str) -> TimeDeposit:
        user = self._require_user(user_id)
        return replace(_find_deposit(user, deposit_id))

    def add_deposit(self, deposit: TimeDeposit) -> TimeDeposit:
        user = self._require_user(deposit.user_id)
        stored = replace(deposit)
        user.deposits.append(stored)
        self._logger.log("deposit_added", user=user.id, deposit=stored.id)
        self._persist("add_deposit")
        return replace(stored)

    def move_activity_to_deposit(self, deposit: TimeDeposit) -> TimeDeposit:
        """Remove ``deposit.activity_id`` from the log and store ``deposit`` instead."""

        user = self._require_user(deposit.user_id)
        activity = _find_activity(user, deposit.activity_id)
        stored = replace(deposit)
        user.activity_log.remove(activity)
        user.deposits.append(stored)
        self._logger.log(
            "activity_moved_to_deposit",
            user=user.id,
            activity=activity.id,
            deposit=stored.id,
            deposited=stored.deposited_duration,
            bonus=stored.accumulated_bonus,
        )
        self._persist("move_activity_to_deposit")
        return replace(stored)

    def move_deposit_to_activity(self, user_id: str, deposit_id: str, activity: Activity) -> Activity:
        """Remove a deposit and append ``activity`` back to the activity log."""

        user = self._require_user(user_id)
        deposit = _find_deposit(user, deposit_id)
        stored = replace(activity, user_id=user.id)
        user.deposits.remove(deposit)
        user.activity_log.append(stored)
        self._logger.log(
            "deposit_moved_to_activity",
            user=user.id,
            deposit=deposit.id,
            activity=stored.id,
            forfeited_bonus=deposit.accumulated_bonus,
        )
        self._persist("move_deposit_to_activity")
        return replace(stored)

    # ------------------------------------------------------------------
    # Tracking state
    # ------------------------------------------------------------------
    def get_tracking_state(self) -> Optional[TrackingState]:
        state = self._state.tracking_state
        return state.copy() if state is not None else None

    def save_tracking_state(self, state: TrackingState) -> None:
        self._state.tracking_state = state.copy()
        self._persist("save_tracking_state")


def _find_activity(user: User, activity_id: str) -> Activity:
    for activity in user.activity_log:
        if activity.id == activity_id:
            return activity
    raise ActivityNotFoundError(f"Activity '{activity_id}' does not exist for user '{user.id}'.")


def _find_deposit(user: User, deposit_id: str) -> TimeDeposit:
    for deposit in user.deposits:
        if deposit.id == deposit_id:
            return deposit
    raise DepositNotFoundError(f"Deposit '{deposit_id}' does not exist for user '{user.id}'.")


def _coerce_schedule(entries: Iterable[ScheduleEntry | Mapping[str, Any]]) -> List[ScheduleEntry]:
    return [
        replace(entry) if isinstance(entry, ScheduleEntry) else ScheduleEntry.from_dict(entry)
        for entry in entries
    ]


__all__ = ["LedgerStore"]
