from dataclasses import dataclass
from typing import Iterable, Optional, Tuple

import numpy as np

from sales_forecast.exceptions import EmptyRangeError
from sales_forecast.model_prediction import ForecastResult


@dataclass(frozen=True)
class ForecastStatistics:
    total: float
    mean: float
    median: float

    def to_dict(self) -> dict:
        return {"total": self.total, "mean": self.mean, "median": self.median}


def summarize_values(values: Iterable[float]) -> ForecastStatistics:
    """
    Sum, mean and median of a collection of sales values.

    Raises:
        EmptyRangeError: If there are no values.
    """
    values = np.asarray(list(values), dtype=float)
    if values.size == 0:
        raise EmptyRangeError("The selected range contains no records.")
    return ForecastStatistics(
        total=float(values.sum()),
        mean=float(values.mean()),
        median=float(np.median(values))
    )


def summarize_forecast(result: ForecastResult, week_range: Optional[Tuple[int, int]] = None) -> ForecastStatistics:
    """
    Summarises the point forecasts of a ForecastResult.

    Args:
        result (ForecastResult): The forecast to summarise.
        week_range (tuple, optional): Inclusive (first_offset, last_offset) on
                                      week_offset. Defaults to the whole result.

    Returns:
        ForecastStatistics: Total, mean and median of the selected points.

    Raises:
        EmptyRangeError: If the range selects no records.
    """
    frame = result.frame
    if week_range is not None:
        first_offset, last_offset = week_range
        frame = frame[frame["week_offset"].between(first_offset, last_offset)]
        if frame.empty:
            raise EmptyRangeError(f"Week offsets {first_offset}-{last_offset} select no forecast records.")
    return summarize_values(frame["point"])
