"""Holiday transfer protocol: move unspent activity time into the holiday wallet."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from .events import EventBus, LedgerEvent, NoticeCenter, NoticeLevel, NoticeType
from .exceptions import InvalidTransitionError, NotFoundError, PersistenceError, TimeBankError
from .ledger import LedgerStore
from .models import Activity, TimeDeposit, new_id
from .ops import StructuredLogger
from .timeutils import format_duration, to_millis, week_number
from .tracking import PERSISTENCE_WARNING_MESSAGE, Clock
from .wallet import can_transfer_to_holiday, deposit_bonus


@dataclass(slots=True)
class CancellationPrompt:
    """What the confirmation dialog must tell the user before a reversal."""

    title: str
    message: str
    deposit: TimeDeposit
    forfeited_bonus: int


Confirm = Callable[[CancellationPrompt], bool]


@dataclass(slots=True)
class TransferResult:
    """Outcome of a transfer or a reversal."""

    accepted: bool
    deposit: Optional[TimeDeposit] = None
    activity: Optional[Activity] = None
    error: Optional[TimeBankError] = None
    warning: Optional[PersistenceError] = None

    @property
    def persisted(self) -> bool:
        return self.accepted and self.warning is None

    def raise_for_error(self) -> "TransferResult":
        if self.error is not None:
            raise self.error
        return self


def build_deposit(activity: Activity, bonus_percentage: float, *, now: datetime) -> TimeDeposit:
    """Create the deposit for the unspent remainder of ``activity``."""

    deposited = max(activity.duration - activity.used_duration, 0)
    return TimeDeposit(
        id=new_id(),
        activity_id=activity.id,
        user_id=activity.user_id,
        description=activity.description,
        start_time=activity.start_time,
        end_time=activity.end_time,
        duration=activity.duration,
        deposited_duration=deposited,
        accumulated_bonus=deposit_bonus(deposited, bonus_percentage),
        deposit_timestamp=to_millis(now),
        week_number=week_number(now),
        year=now.year,
        used_duration=0,
        is_available_for_deposit=True,
    )


def restore_activity(deposit: TimeDeposit) -> Activity:
    """Rebuild the source activity of ``deposit``; the bonus is not carried over.

    Time spent before the transfer (``duration - deposited_duration``) is added
    back to the deposit's own usage so the activity returns as it was.
    """

    spent_before = max(deposit.duration - deposit.deposited_duration, 0)
    used = min(spent_before + deposit.used_duration, deposit.duration)
    return Activity(
        id=deposit.activity_id,
        user_id=deposit.user_id,
        description=deposit.description,
        start_time=deposit.start_time,
        end_time=deposit.end_time,
        duration=deposit.duration,
        used_duration=used,
        is_available_for_deposit=used < deposit.duration,
        week_number=deposit.week_number,
        year=deposit.year,
    )


class HolidayTransferProtocol:
    """Move activities into the holiday wallet and back."""

    def __init__(
        self,
        store: LedgerStore,
        *,
        events: EventBus | None = None,
        notices: NoticeCenter | None = None,
        logger: StructuredLogger | None = None,
        clock: Clock = datetime.now,
    ) -> None:
        self._store = store
        self._logger = logger or StructuredLogger()
        self._events = events or EventBus(logger=self._logger)
        self._notices = notices or NoticeCenter()
        self._clock = clock

    def transfer_to_holiday(self, user_id: str, activity_id: str) -> TransferResult:
        """Replace an available activity with a bonus-carrying holiday deposit."""

        try:
            activity = self._store.get_activity(user_id, activity_id)
            settings = self._store.get_user_settings(user_id)
        except NotFoundError as exc:
            self._logger.warning("transfer_rejected", user=user_id, activity=activity_id, reason=str(exc))
            return TransferResult(accepted=False, error=exc)
        except PersistenceError as exc:
            # Defaults were materialised in memory; carry on and report it.
            settings = self._store.get_user_settings(user_id)
            activity = self._store.get_activity(user_id, activity_id)
            self._logger.warning("settings_not_persisted", user=user_id, error=str(exc))

        if not can_transfer_to_holiday(activity):
            error = InvalidTransitionError(f"Activity '{activity_id}' has no time left to deposit.")
            self._logger.warning("transfer_rejected", user=user_id, activity=activity_id, reason=str(error))
            return TransferResult(accepted=False, activity=activity, error=error)

        deposit = build_deposit(activity, settings.holiday_bonus_percentage, now=self._clock())
        warning: Optional[PersistenceError] = None
        try:
            self._store.move_activity_to_deposit(deposit)
        except PersistenceError as exc:
            warning = exc

        self._logger.log(
            "holiday_transfer",
            user=user_id,
            activity=activity.id,
            deposit=deposit.id,
            deposited=deposit.deposited_duration,
            bonus=deposit.accumulated_bonus,
        )
        self._notices.post(
            NoticeType.TRANSFER_COMPLETE,
            f"Saved {format_duration(deposit.total_value)} in the holiday wallet.",
            level=NoticeLevel.SUCCESS,
            metadata={"user": user_id},
        )
        self._report_warning(user_id, warning)
        payload = {"userId": user_id, "depositId": deposit.id, "activityId": activity.id}
        self._events.publish(LedgerEvent.DEPOSIT_ADDED, payload)
        self._events.publish(LedgerEvent.ACTIVITY_LIST_CHANGED, {"userId": user_id})
        self._events.publish(LedgerEvent.TRANSFER_SUCCEEDED, payload)
        return TransferResult(accepted=True, deposit=deposit, activity=activity, warning=warning)

    def cancellation_prompt(self, deposit: TimeDeposit) -> CancellationPrompt:
        bonus = format_duration(deposit.accumulated_bonus)
        return CancellationPrompt(
            title="Cancel Holiday Deposit?",
            message=(
                "Are you sure you want to cancel this holiday deposit? "
                f"You will lose {bonus} of bonus time!"
            ),
            deposit=deposit,
            forfeited_bonus=deposit.accumulated_bonus,
        )

    def cancel_deposit(self, user_id: str, deposit_id: str, confirm: Confirm) -> TransferResult:
        """Return a deposit to the activity log after ``confirm`` approves it.

        The accumulated bonus is forfeited.
        """

        try:
            deposit = self._store.get_deposit(user_id, deposit_id)
        except NotFoundError as exc:
            self._logger.warning("cancel_rejected", user=user_id, deposit=deposit_id, reason=str(exc))
            return TransferResult(accepted=False, error=exc)

        if not can_transfer_to_holiday(deposit):
            error = InvalidTransitionError(f"Deposit '{deposit_id}' can no longer be cancelled.")
            return TransferResult(accepted=False, deposit=deposit, error=error)

        if not confirm(self.cancellation_prompt(deposit)):
            self._logger.log("cancel_declined", user=user_id, deposit=deposit_id)
            return TransferResult(accepted=False, deposit=deposit)

        activity = restore_activity(deposit)
        warning: Optional[PersistenceError] = None
        try:
            self._store.move_deposit_to_activity(user_id, deposit_id, activity)
        except PersistenceError as exc:
            warning = exc

        self._logger.log(
            "holiday_deposit_canceled",
            user=user_id,
            deposit=deposit_id,
            activity=activity.id,
            forfeited_bonus=deposit.accumulated_bonus,
        )
        self._notices.post(
            NoticeType.DEPOSIT_CANCELED,
            "Holiday deposit cancelled; the time is back in today's wallet.",
            metadata={"user": user_id},
        )
        self._report_warning(user_id, warning)
        payload = {"userId": user_id, "depositId": deposit_id, "activityId": activity.id}
        self._events.publish(LedgerEvent.DEPOSIT_CANCELED, payload)
        self._events.publish(LedgerEvent.ACTIVITY_LIST_CHANGED, {"userId": user_id})
        return TransferResult(accepted=True, deposit=deposit, activity=activity, warning=warning)

    def _report_warning(self, user_id: str, warning: Optional[PersistenceError]) -> None:
        if warning is None:
            return
        self._logger.warning("transfer_not_persisted", user=user_id, error=str(warning))
        self._notices.post(
            NoticeType.PERSISTENCE_WARNING,
            PERSISTENCE_WARNING_MESSAGE,
            level=NoticeLevel.WARNING,
            metadata={"user": user_id},
        )


__all__ = [
    "CancellationPrompt",
    "Confirm",
    "HolidayTransferProtocol",
    "TransferResult",
    "build_deposit",
    "restore_activity",
]
