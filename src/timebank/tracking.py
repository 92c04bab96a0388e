"""Tracking state machine: earning time, spending it and the usage countdown."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional, Tuple

from .events import EventBus, LedgerEvent, NoticeCenter, NoticeLevel, NoticeType
from .exceptions import InvalidTransitionError, PersistenceError, TimeBankError, UserNotFoundError
from .ledger import LedgerStore
from .models import UNNAMED_ACTIVITY, Activity, TrackingMode, TrackingState, new_id
from .ops import StructuredLogger
from .timeutils import to_millis, week_number
from .wallet import find_next_available_activity, total_available_today

Clock = Callable[[], datetime]

NO_TIME_AVAILABLE_MESSAGE = "No time available. Track an activity to earn some first."
BALANCE_EXHAUSTED_MESSAGE = "Time is up! All of today's time has been used."
PERSISTENCE_WARNING_MESSAGE = "Your progress could not be saved. It may be lost if the page is reloaded."


@dataclass(slots=True)
class TransitionResult:
    """Outcome of a state machine operation.

    ``error`` is set when the transition was rejected and nothing changed.
    ``warning`` is set when the transition happened but could not be persisted;
    the caller decides whether to roll back what it shows.
    """

    accepted: bool
    state: TrackingState
    activity: Optional[Activity] = None
    activities: Tuple[Activity, ...] = ()
    consumed: int = 0
    error: Optional[TimeBankError] = None
    warning: Optional[PersistenceError] = None

    @property
    def persisted(self) -> bool:
        return self.accepted and self.warning is None

    def raise_for_error(self) -> "TransitionResult":
        if self.error is not None:
            raise self.error
        return self


class TrackingStateMachine:
    """Drive one user's session through the Idle, Tracking and Using modes.

    The persisted :class:`~timebank.models.TrackingState` is read back on
    construction so a reload resumes a running session from its timestamps.
    """

    def __init__(
        self,
        store: LedgerStore,
        user_id: str,
        *,
        events: EventBus | None = None,
        notices: NoticeCenter | None = None,
        logger: StructuredLogger | None = None,
        clock: Clock = datetime.now,
    ) -> None:
        self._store = store
        self.user_id = user_id
        self._logger = logger or StructuredLogger()
        self._events = events or EventBus(logger=self._logger)
        self._notices = notices or NoticeCenter()
        self._clock = clock
        self._state = store.get_tracking_state() or TrackingState()

    @property
    def state(self) -> TrackingState:
        return self._state.copy()

    @property
    def mode(self) -> TrackingMode:
        return self._state.mode

    def _now(self) -> datetime:
        return self._clock()

    # ------------------------------------------------------------------
    # Earning
    # ------------------------------------------------------------------
    def start_tracking(self) -> TransitionResult:
        if self._state.is_using_time:
            return self._reject("Stop using time before tracking a new activity.")
        if self._state.is_tracking:
            return self._reject("An activity is already being tracked.")
        self._state.is_tracking = True
        self._state.start_time = to_millis(self._now())
        self._state.current_activity_description = ""
        self._logger.log("tracking_started", user=self.user_id, start=self._state.start_time)
        return self._accept(warning=self._save_state())

    def set_activity_description(self, description: str) -> TransitionResult:
        if not self._state.is_tracking:
            return self._reject("No activity is being tracked.")
        self._state.current_activity_description = description
        return self._accept(warning=self._save_state())

    def stop_tracking(self, description: str | None = None) -> TransitionResult:
        """Finish the running session and store it as a new activity."""

        if not self._state.is_tracking or self._state.start_time is None:
            return self._reject("No activity is being tracked.")
        if not self._store.has_user(self.user_id):
            return self._reject_missing_user()

        now = self._now()
        end_time = to_millis(now)
        start_time = self._state.start_time
        text = (description or self._state.current_activity_description or "").strip()
        activity = Activity(
            id=new_id(),
            user_id=self.user_id,
            description=text or UNNAMED_ACTIVITY,
            start_time=start_time,
            end_time=end_time,
            duration=max(end_time - start_time, 0),
            used_duration=0,
            is_available_for_deposit=True,
            week_number=week_number(now),
            year=now.year,
        )

        warning: Optional[PersistenceError] = None
        try:
            self._store.add_activity(activity)
        except PersistenceError as exc:
            warning = exc
        self._state.is_tracking = False
        self._state.start_time = None
        self._state.current_activity_description = ""
        warning = self._save_state() or warning

        self._logger.log(
            "tracking_stopped",
            user=self.user_id,
            activity=activity.id,
            duration=activity.duration,
        )
        payload = {"userId": self.user_id, "activityId": activity.id, "duration": activity.duration}
        self._events.publish(LedgerEvent.ACTIVITY_STOPPED, payload)
        self._events.publish(LedgerEvent.ACTIVITY_LIST_CHANGED, {"userId": self.user_id})
        return self._accept(activity=activity, warning=warning)

    # ------------------------------------------------------------------
    # Spending
    # ------------------------------------------------------------------
    def start_time_usage(self) -> TransitionResult:
        if self._state.is_tracking:
            return self._reject("Stop tracking before using time.")
        if self._state.is_using_time:
            return self._reject("Time is already being used.")
        if not self._store.has_user(self.user_id):
            return self._reject_missing_user()

        candidate = find_next_available_activity(self._store.get_activities(self.user_id))
        if candidate is None:
            self._notices.post(
                NoticeType.NO_TIME_AVAILABLE,
                NO_TIME_AVAILABLE_MESSAGE,
                level=NoticeLevel.WARNING,
                metadata={"user": self.user_id},
            )
            self._logger.log("usage_rejected", user=self.user_id, reason="no_time_available")
            return TransitionResult(
                accepted=False,
                state=self.state,
                error=InvalidTransitionError(NO_TIME_AVAILABLE_MESSAGE),
            )

        self._state.is_using_time = True
        self._state.usage_start_time = to_millis(self._now())
        self._state.current_usage_activity_id = candidate.id
        self._logger.log("usage_started", user=self.user_id, activity=candidate.id)
        return self._accept(activity=candidate, warning=self._save_state())

    def stop_time_usage(self, *, limit: int | None = None) -> TransitionResult:
        """Spend the elapsed usage time across available activities in list order.

        ``limit`` caps the amount spent; the countdown passes the available
        balance so usage never overdraws it.
        """

        if not self._state.is_using_time or self._state.usage_start_time is None:
            return self._reject("Time is not being used.")
        if not self._store.has_user(self.user_id):
            return self._reject_missing_user()

        elapsed = max(to_millis(self._now()) - self._state.usage_start_time, 0)
        if limit is not None:
            elapsed = min(elapsed, max(limit, 0))

        budget = elapsed
        touched: List[Activity] = []
        for activity in self._store.get_activities(self.user_id):
            if budget <= 0:
                break
            if not activity.is_available_for_deposit:
                continue
            budget -= activity.consume(budget)
            touched.append(activity)
        consumed = elapsed - budget

        warning: Optional[PersistenceError] = None
        if touched:
            try:
                self._store.update_activities(self.user_id, touched)
            except PersistenceError as exc:
                warning = exc
        self._state.is_using_time = False
        self._state.usage_start_time = None
        self._state.current_usage_activity_id = None
        warning = self._save_state() or warning

        self._logger.log(
            "usage_stopped",
            user=self.user_id,
            consumed=consumed,
            activities=[activity.id for activity in touched],
        )
        self._events.publish(LedgerEvent.ACTIVITY_LIST_CHANGED, {"userId": self.user_id})
        return self._accept(activities=tuple(touched), consumed=consumed, warning=warning)

    def remaining_usage(self) -> int:
        """Milliseconds left before the countdown forces usage to stop."""

        if not self._state.is_using_time or self._state.usage_start_time is None:
            return 0
        available = total_available_today(self._store.get_activities(self.user_id), self._now())
        return max(available - self.current_duration(), 0)

    def tick(self) -> Optional[TransitionResult]:
        """Force usage to stop once the elapsed time reaches today's balance.

        Returns the stop result when the countdown fired, ``None`` otherwise.
        """

        if not self._state.is_using_time or self._state.usage_start_time is None:
            return None
        now = self._now()
        available = total_available_today(self._store.get_activities(self.user_id), now)
        elapsed = to_millis(now) - self._state.usage_start_time
        if elapsed < available:
            return None

        self._logger.warning("usage_forced_stop", user=self.user_id, elapsed=elapsed, available=available)
        result = self.stop_time_usage(limit=available)
        self._notices.post(
            NoticeType.BALANCE_EXHAUSTED,
            BALANCE_EXHAUSTED_MESSAGE,
            level=NoticeLevel.WARNING,
            metadata={"user": self.user_id},
        )
        self._events.publish(
            LedgerEvent.BALANCE_EXHAUSTED,
            {"userId": self.user_id, "consumed": result.consumed},
        )
        return result

    def current_duration(self) -> int:
        """Elapsed milliseconds of the running tracking or usage session."""

        now = to_millis(self._now())
        if self._state.is_tracking and self._state.start_time is not None:
            return max(now - self._state.start_time, 0)
        if self._state.is_using_time and self._state.usage_start_time is not None:
            return max(now - self._state.usage_start_time, 0)
        return 0

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _save_state(self) -> Optional[PersistenceError]:
        try:
            self._store.save_tracking_state(self._state)
        except PersistenceError as exc:
            return exc
        return None

    def _accept(
        self,
        *,
        activity: Optional[Activity] = None,
        activities: Tuple[Activity, ...] = (),
        consumed: int = 0,
        warning: Optional[PersistenceError] = None,
    ) -> TransitionResult:
        if warning is not None:
            self._logger.warning("transition_not_persisted", user=self.user_id, error=str(warning))
            self._notices.post(
                NoticeType.PERSISTENCE_WARNING,
                PERSISTENCE_WARNING_MESSAGE,
                level=NoticeLevel.WARNING,
                metadata={"user": self.user_id},
            )
        return TransitionResult(
            accepted=True,
            state=self.state,
            activity=activity,
            activities=activities,
            consumed=consumed,
            warning=warning,
        )

    def _reject(self, message: str) -> TransitionResult:
        self._logger.log("transition_rejected", user=self.user_id, mode=self.mode.value, reason=message)
        self._notices.post(NoticeType.INVALID_ACTION, message, metadata={"user": self.user_id})
        return TransitionResult(accepted=False, state=self.state, error=InvalidTransitionError(message))

    def _reject_missing_user(self) -> TransitionResult:
        error = UserNotFoundError(f"User '{self.user_id}' does not exist.")
        self._logger.warning("transition_rejected", user=self.user_id, reason=str(error))
        return TransitionResult(accepted=False, state=self.state, error=error)


class UsageCountdown:
    """Run :meth:`TrackingStateMachine.tick` every ``interval`` seconds while time is used.

    At most one countdown task exists at a time: starting a new one cancels
    the previous task and stopping clears the handle.
    """

    def __init__(self, machine: TrackingStateMachine, *, interval: float = 1.0) -> None:
        self._machine = machine
        self._interval = interval
        self._task: Optional[asyncio.Task] = None
        self.result: Optional[TransitionResult] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> asyncio.Task:
        """Start ticking; must be called from inside a running event loop."""

        self.cancel()
        self.result = None
        self._task = asyncio.get_running_loop().create_task(self._run())
        return self._task

    def cancel(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _run(self) -> Optional[TransitionResult]:
        try:
            while self._machine.mode is TrackingMode.USING:
                await asyncio.sleep(self._interval)
                result = self._machine.tick()
                if result is not None:
                    self.result = result
                    return result
            return None
        finally:
            if self._task is asyncio.current_task():
                self._task = None


__all__ = [
    "BALANCE_EXHAUSTED_MESSAGE",
    "NO_TIME_AVAILABLE_MESSAGE",
    "PERSISTENCE_WARNING_MESSAGE",
    "Clock",
    "TrackingStateMachine",
    "TransitionResult",
    "UsageCountdown",
]
