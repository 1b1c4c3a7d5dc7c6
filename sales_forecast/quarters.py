from dataclasses import dataclass
from typing import Tuple

from sales_forecast.config import QUARTER_WINDOWS, SEASONAL_PERIOD
from sales_forecast.exceptions import RangeError


@dataclass(frozen=True)
class QuarterWindow:
    """A contiguous block of week offsets within the 52-week year (inclusive)."""
    name: str
    first_week: int
    last_week: int

    @property
    def weeks(self) -> range:
        return range(self.first_week, self.last_week + 1)

    @property
    def week_range(self) -> Tuple[int, int]:
        return self.first_week, self.last_week

    def __len__(self):
        return self.last_week - self.first_week + 1


def build_quarters(windows: dict = QUARTER_WINDOWS, year_length: int = SEASONAL_PERIOD) -> Tuple[QuarterWindow, ...]:
    """
    Builds the quarter partition and checks that it covers every week of the
    year exactly once.

    Raises:
        RangeError: If the windows overlap, leave gaps or fall outside the year.
    """
    quarters = tuple(QuarterWindow(name, first, last) for name, (first, last) in windows.items())
    covered = sorted(week for quarter in quarters for week in quarter.weeks)
    if covered != list(range(1, year_length + 1)):
        raise RangeError(f"Quarter windows must partition weeks 1-{year_length} without gaps or overlaps.")
    return quarters


QUARTERS = build_quarters()


def get_quarter(name: str) -> QuarterWindow:
    """Looks up a quarter by name ('Q1'..'Q4', case-insensitive)."""
    for quarter in QUARTERS:
        if quarter.name.lower() == str(name).strip().lower():
            return quarter
    raise RangeError(f"Unknown quarter '{name}'. Expected one of: {', '.join(q.name for q in QUARTERS)}.")
