"""Fiscal calendar and metric window arithmetic.

The fiscal year follows the calendar year. ``fiscal_year`` may be pinned in
settings (e.g. while a board is still closing out last year's awards);
otherwise it is the UTC year of "now".
"""

from dataclasses import dataclass
from datetime import datetime, timedelta

from app.models.base import to_naive_utc
from app.models.metric import MetricWindow

ROLLING_WINDOW_DAYS = 90


@dataclass(frozen=True)
class FiscalInfo:
    fiscal_year: int
    current_month: int
    months_remaining: int

    @property
    def starts_at(self) -> datetime:
        return datetime(self.fiscal_year, 1, 1)

    @property
    def ends_at(self) -> datetime:
        return datetime(self.fiscal_year + 1, 1, 1)


def fiscal_info(now: datetime, fiscal_year: int | None = None) -> FiscalInfo:
    now = to_naive_utc(now)
    year = fiscal_year or now.year
    if year < now.year:
        # Pinned to a past year: it is fully elapsed
        month = 12
    elif year > now.year:
        month = 0
    else:
        month = now.month
    return FiscalInfo(fiscal_year=year, current_month=month, months_remaining=12 - month)


def window_start(window: MetricWindow, now: datetime, fiscal_year: int | None = None) -> datetime | None:
    """Lower bound (naive UTC) of a window, or None when unbounded."""
    now = to_naive_utc(now)
    if window == MetricWindow.ROLLING_90D:
        return now - timedelta(days=ROLLING_WINDOW_DAYS)
    if window == MetricWindow.FISCAL_YTD:
        return fiscal_info(now, fiscal_year).starts_at
    if window == MetricWindow.CURRENT_MONTH:
        return datetime(now.year, now.month, 1)
    return None


def months_in_window(window: MetricWindow, now: datetime, fiscal_year: int | None = None) -> int | None:
    """Divisor turning a window total into a monthly pace; None when undefined."""
    if window == MetricWindow.ROLLING_90D:
        return ROLLING_WINDOW_DAYS // 30
    if window == MetricWindow.FISCAL_YTD:
        return fiscal_info(now, fiscal_year).current_month or None
    if window == MetricWindow.CURRENT_MONTH:
        return 1
    return None
