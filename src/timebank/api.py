"""JSON helpers for exposing TimeBank data to UI collaborators."""

from __future__ import annotations

import json
from datetime import datetime
from typing import Dict, Optional, TYPE_CHECKING

from .models import Activity, TimeDeposit, User
from .timeutils import format_duration
from .wallet import remaining_time

if TYPE_CHECKING:  # pragma: no cover
    from .holiday import TransferResult
    from .service import WalletSummary
    from .tracking import TrackingStateMachine, TransitionResult


class ApiExporter:
    """Convert TimeBank data structures to JSON friendly dictionaries."""

    def user_snapshot(self, user: User) -> Dict[str, object]:
        return {
            "id": user.id,
            "name": user.name,
            "nickname": user.nickname,
            "timeBalance": user.time_balance,
            "schedule": [entry.as_dict() for entry in user.schedule],
            "settings": user.settings.as_dict() if user.settings else None,
        }

    def wallet_snapshot(self, wallet: "WalletSummary") -> Dict[str, object]:
        return {
            "userId": wallet.user_id,
            "availableToday": wallet.available_today,
            "availableTodayFormatted": format_duration(wallet.available_today),
            "accumulatedToday": wallet.accumulated_today,
            "accumulatedTodayFormatted": format_duration(wallet.accumulated_today),
            "holidayBalance": wallet.holiday_balance,
            "holidayBalanceFormatted": format_duration(wallet.holiday_balance),
            "weekendBonus": wallet.weekend_bonus,
            "weeklyBonusEligible": wallet.weekly_bonus_eligible,
            "activities": [self._serialise_activity(activity) for activity in wallet.today_activities],
            "deposits": [
                self._serialise_deposit(deposit, wallet.deposit_expirations.get(deposit.id))
                for deposit in wallet.holiday_deposits
            ],
        }

    def tracking_snapshot(self, machine: "TrackingStateMachine") -> Dict[str, object]:
        elapsed = machine.current_duration()
        return {
            "mode": machine.mode.value,
            "state": machine.state.as_dict(),
            "elapsed": elapsed,
            "elapsedFormatted": format_duration(elapsed),
            "remainingUsage": machine.remaining_usage(),
        }

    def transition_snapshot(self, result: "TransitionResult") -> Dict[str, object]:
        return {
            "accepted": result.accepted,
            "state": result.state.as_dict(),
            "activity": self._serialise_activity(result.activity) if result.activity else None,
            "activities": [self._serialise_activity(activity) for activity in result.activities],
            "consumed": result.consumed,
            "error": str(result.error) if result.error else None,
            "warning": str(result.warning) if result.warning else None,
        }

    def transfer_snapshot(self, result: "TransferResult") -> Dict[str, object]:
        return {
            "accepted": result.accepted,
            "deposit": self._serialise_deposit(result.deposit) if result.deposit else None,
            "activity": self._serialise_activity(result.activity) if result.activity else None,
            "error": str(result.error) if result.error else None,
            "warning": str(result.warning) if result.warning else None,
        }

    def to_json(self, payload: Dict[str, object]) -> str:
        return json.dumps(payload, sort_keys=True)

    def _serialise_activity(self, activity: Activity) -> Dict[str, object]:
        payload = activity.as_dict()
        payload["remaining"] = remaining_time(activity)
        payload["durationFormatted"] = format_duration(activity.duration)
        return payload

    def _serialise_deposit(self, deposit: TimeDeposit, expires: Optional[datetime] = None) -> Dict[str, object]:
        payload = deposit.as_dict()
        payload["totalValue"] = deposit.total_value
        payload["totalValueFormatted"] = format_duration(deposit.total_value)
        payload["expiresAt"] = expires.isoformat() if expires else None
        return payload


__all__ = ["ApiExporter"]
