from collections.abc import Callable
from datetime import UTC, date, datetime, timedelta


def billing_cycle_for(moment: datetime | date, start_day: int) -> str:
    """Label of the billing cycle containing ``moment``.

    On or after ``start_day`` the cycle is the current month, before it the
    cycle started last month.
    """
    year, month = moment.year, moment.month
    if moment.day < start_day:
        month -= 1
        if month == 0:
            month = 12
            year -= 1
    return f"{year}-{month:02d}"


class BillingCalendar:
    """Clock-aware view of billing cycles and report dates (UTC)."""

    def __init__(self, start_day: int = 1, clock: Callable[[], datetime] | None = None):
        self.start_day = start_day
        self._clock = clock or (lambda: datetime.now(UTC))

    def now(self) -> datetime:
        return self._clock()

    def current_cycle(self) -> str:
        return billing_cycle_for(self.now(), self.start_day)

    def today(self) -> date:
        return self.now().date()

    def yesterday(self) -> str:
        return (self.today() - timedelta(days=1)).isoformat()
