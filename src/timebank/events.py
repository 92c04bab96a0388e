"""Change notifications and user-facing notices for TimeBank."""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

from .ops import StructuredLogger


class LedgerEvent(str, Enum):
    """Named notifications observers can subscribe to."""

    ACTIVITY_STOPPED = "activityStopped"
    DEPOSIT_ADDED = "depositAdded"
    DEPOSIT_CANCELED = "depositCanceled"
    ACTIVITY_LIST_CHANGED = "activityListChanged"
    # Feedback hooks for sound/animation collaborators.
    TRANSFER_SUCCEEDED = "transferSucceeded"
    BALANCE_EXHAUSTED = "balanceExhausted"


Listener = Callable[[LedgerEvent, Dict[str, Any]], None]


class EventBus:
    """Synchronous publish/subscribe channel between the ledger and its observers.

    A failing listener is logged and skipped; it never aborts the ledger
    operation that published the event.
    """

    def __init__(self, *, logger: StructuredLogger | None = None) -> None:
        self._listeners: Dict[LedgerEvent, List[Listener]] = defaultdict(list)
        self._logger = logger or StructuredLogger()

    def subscribe(self, event: LedgerEvent | str, listener: Listener) -> None:
        self._listeners[LedgerEvent(event)].append(listener)

    def unsubscribe(self, event: LedgerEvent | str, listener: Listener) -> None:
        try:
            self._listeners[LedgerEvent(event)].remove(listener)
        except ValueError:
            pass

    def publish(self, event: LedgerEvent, payload: Optional[Mapping[str, Any]] = None) -> int:
        """Deliver ``event`` to every listener and return how many succeeded."""

        delivered = 0
        data = dict(payload or {})
        for listener in list(self._listeners[event]):
            try:
                listener(event, data)
            except Exception as exc:
                self._logger.error(
                    "listener_failed",
                    notification=event.value,
                    listener=getattr(listener, "__qualname__", repr(listener)),
                    error=repr(exc),
                )
                continue
            delivered += 1
        return delivered

    def listener_count(self, event: LedgerEvent | str) -> int:
        return len(self._listeners[LedgerEvent(event)])


class NoticeLevel(str, Enum):
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"


class NoticeType(str, Enum):
    NO_TIME_AVAILABLE = "no_time_available"
    BALANCE_EXHAUSTED = "balance_exhausted"
    PERSISTENCE_WARNING = "persistence_warning"
    TRANSFER_COMPLETE = "transfer_complete"
    DEPOSIT_CANCELED = "deposit_canceled"
    INVALID_ACTION = "invalid_action"


@dataclass(slots=True)
class Notice:
    """A message waiting to be shown to the child or guardian."""

    type: NoticeType
    level: NoticeLevel
    message: str
    metadata: Dict[str, str] = field(default_factory=dict)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def as_dict(self) -> Dict[str, str]:
        payload = {
            "type": self.type.value,
            "level": self.level.value,
            "message": self.message,
            "created_at": self.created_at.isoformat(),
        }
        payload.update(self.metadata)
        return payload


class NoticeCenter:
    """In-memory notice inbox drained by the UI layer."""

    def __init__(self) -> None:
        self._queue: List[Notice] = []
        self._shown: List[Notice] = []

    def post(
        self,
        notice_type: NoticeType,
        message: str,
        *,
        level: NoticeLevel = NoticeLevel.INFO,
        metadata: Optional[Mapping[str, str]] = None,
    ) -> Notice:
        notice = Notice(type=notice_type, level=level, message=message, metadata=dict(metadata or {}))
        self._queue.append(notice)
        return notice

    def pending(self, *, notice_type: NoticeType | None = None) -> Sequence[Notice]:
        if notice_type is None:
            return tuple(self._queue)
        return tuple(item for item in self._queue if item.type is notice_type)

    def pop_all(self) -> Sequence[Notice]:
        pending = tuple(self._queue)
        self._queue.clear()
        self._shown.extend(pending)
        return pending

    def history(self) -> Sequence[Notice]:
        return tuple(self._shown)


__all__ = [
    "EventBus",
    "LedgerEvent",
    "Listener",
    "Notice",
    "NoticeCenter",
    "NoticeLevel",
    "NoticeType",
]
