from datetime import datetime, timedelta

import pytest


class FakeClock:
    """Manually advanced replacement for ``datetime.now``."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, milliseconds: int) -> datetime:
        self.now = self.now + timedelta(milliseconds=milliseconds)
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    # Wednesday, ISO week 23 of 2024.
    return FakeClock(datetime(2024, 6, 5, 10, 0, 0))
