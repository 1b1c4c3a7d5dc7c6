import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence

import numpy as np
import pandas as pd

from sales_forecast.config import SEASONAL_PERIOD
from sales_forecast.exceptions import NoDefinedGrowthError, RangeError
from sales_forecast.model_prediction import ForecastResult
from sales_forecast.quarters import QUARTERS, QuarterWindow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GrowthRecord:
    quarter: str
    actual_total: float
    forecast_total: float
    growth_pct: Optional[float]

    @property
    def is_defined(self) -> bool:
        return self.growth_pct is not None


@dataclass(frozen=True)
class GrowthComparison:
    records: List[GrowthRecord]
    highest: GrowthRecord
    lowest: GrowthRecord


def actual_year_window(actual: pd.Series, year_length: int = SEASONAL_PERIOD) -> pd.Series:
    """
    Last year of actual sales re-indexed by week offset 1..year_length.

    Offset k is the week exactly one year before forecast offset k, so a
    history shorter than a year leaves the earliest offsets without values.
    """
    window = actual.iloc[-year_length:]
    offsets = np.arange(year_length - len(window) + 1, year_length + 1)
    return pd.Series(window.to_numpy(dtype=float), index=pd.Index(offsets, name="week_offset"))


def quarter_growth(actual_by_offset: pd.Series, forecast: ForecastResult,
                   quarters: Sequence[QuarterWindow] = QUARTERS) -> List[GrowthRecord]:
    """
    Actual and forecast totals per quarter, with growth undefined on a zero
    baseline. Both totals cover only the quarter offsets that have actuals.
    """
    forecast_by_offset = forecast.frame.set_index("week_offset")["point"]
    records = []
    for quarter in quarters:
        offsets = actual_by_offset.index.intersection(pd.Index(quarter.weeks))
        actual_total = float(actual_by_offset.loc[offsets].sum())
        forecast_total = float(forecast_by_offset[forecast_by_offset.index.isin(offsets)].sum())
        growth_pct = None
        if actual_total != 0:
            growth_pct = (forecast_total - actual_total) / actual_total * 100
        records.append(GrowthRecord(quarter.name, actual_total, forecast_total, growth_pct))
    return records


def compare_growth(actual: pd.Series, forecast: ForecastResult,
                   quarters: Sequence[QuarterWindow] = QUARTERS) -> GrowthComparison:
    """
    Compares the last year of actual sales with a full-year forecast, quarter
    by quarter, and picks the quarters with the highest and lowest growth.

    Args:
        actual (pd.Series): Actual weekly sales up to "now".
        forecast (ForecastResult): Forecast covering the next 52 weeks.
        quarters (Sequence[QuarterWindow]): The quarter partition.

    Returns:
        GrowthComparison: Per-quarter records plus the extremes. Quarters with
                          zero actual sales are left out of the ranking.

    Raises:
        RangeError: If the forecast does not cover offsets 1..52.
        NoDefinedGrowthError: If every quarter has zero actual sales.
    """
    year_length = sum(len(q) for q in quarters)
    offsets = forecast.frame["week_offset"].tolist()
    if offsets != list(range(1, year_length + 1)):
        raise RangeError(f"Growth comparison needs a full {year_length}-week forecast, got {len(offsets)} weeks.")

    records = quarter_growth(actual_year_window(actual, year_length), forecast, quarters)
    defined = [record for record in records if record.is_defined]
    if not defined:
        raise NoDefinedGrowthError("No growth data available: every quarter has zero actual sales.")

    # max/min return the first extreme, so ties go to the earliest quarter
    highest = max(defined, key=lambda r: r.growth_pct)
    lowest = min(defined, key=lambda r: r.growth_pct)
    logger.info(f"Highest growth: {highest.quarter} ({highest.growth_pct:.2f}%), "
                f"lowest growth: {lowest.quarter} ({lowest.growth_pct:.2f}%).")
    return GrowthComparison(records=records, highest=highest, lowest=lowest)
