import logging
from dataclasses import dataclass
from typing import List, Tuple

import numpy as np
import pandas as pd
from scipy.stats import norm

from sales_forecast.config import DEFAULT_CONFIDENCE_LEVEL
from sales_forecast.exceptions import RangeError
from sales_forecast.model_selection import FittedModel

logger = logging.getLogger(__name__)


@dataclass
class ForecastDistribution:
    """Point forecasts and forecast-error standard deviations for a horizon."""
    mean: np.ndarray
    std: np.ndarray
    last_week: int

    @property
    def horizon(self) -> int:
        return len(self.mean)


@dataclass(eq=False)
class ForecastResult:
    """
    Forecast records ordered by week_offset, with prediction intervals at
    `confidence_level` percent.
    """
    entity: str
    confidence_level: float
    frame: pd.DataFrame
    model_label: str = ""
    show_intervals: bool = True

    def __len__(self):
        return len(self.frame)

    @property
    def points(self) -> np.ndarray:
        return self.frame["point"].to_numpy()

    def slice(self, first_offset: int, last_offset: int) -> "ForecastResult":
        """Keeps the records whose week_offset lies in [first_offset, last_offset]."""
        mask = self.frame["week_offset"].between(first_offset, last_offset)
        return ForecastResult(
            entity=self.entity,
            confidence_level=self.confidence_level,
            frame=self.frame[mask].reset_index(drop=True),
            model_label=self.model_label,
            show_intervals=self.show_intervals
        )

    def to_records(self) -> List[dict]:
        """Plain-python records; interval bounds are left out when show_intervals is off."""
        records = []
        for row in self.frame.itertuples(index=False):
            record = {"week_offset": int(row.week_offset), "week_index": int(row.week_index), "point": float(row.point)}
            if self.show_intervals:
                record["lower"] = float(row.lower)
                record["upper"] = float(row.upper)
            records.append(record)
        return records


class Forecaster:
    """
    Generates point forecasts and Gaussian prediction intervals from a fitted
    seasonal ARIMA model.
    """
    def forecast_distribution(self, model: FittedModel, horizon: int) -> ForecastDistribution:
        """
        Computes the forecast mean and standard error for each step ahead.

        Args:
            model (FittedModel): The selected model.
            horizon (int): Number of weeks to forecast (>= 1).

        Returns:
            ForecastDistribution: Mean and standard error per step.
        """
        if horizon < 1:
            raise RangeError(f"Forecast horizon must be at least 1 week, got {horizon}.")

        if model.is_constant:
            mean = np.full(horizon, model.constant_level, dtype=float)
            std = np.zeros(horizon)
        else:
            prediction = model.results.get_forecast(steps=horizon)
            mean = np.asarray(prediction.predicted_mean, dtype=float)
            variance = np.asarray(prediction.var_pred_mean, dtype=float)
            std = np.sqrt(np.clip(variance, 0, None))

        logger.info(f"Generated {horizon}-week forecast distribution from {model.describe()}.")
        return ForecastDistribution(mean=mean, std=std, last_week=model.last_week)

    def forecast(self, model: FittedModel, horizon: int,
                 confidence_level: float = DEFAULT_CONFIDENCE_LEVEL,
                 entity: str = "",
                 distribution: ForecastDistribution = None) -> ForecastResult:
        """
        Produces the forecast records for a horizon at a confidence level.

        A precomputed `distribution` can be passed to change the confidence
        level without touching the model again. Point forecasts never depend
        on the confidence level.

        Args:
            model (FittedModel): The selected model.
            horizon (int): Number of weeks to forecast.
            confidence_level (float): Interval coverage in percent, in (0, 100).
            entity (str): Store id the forecast belongs to.
            distribution (ForecastDistribution, optional): Cached output of
                forecast_distribution for at least `horizon` steps.

        Returns:
            ForecastResult: One record per week offset 1..horizon.
        """
        if distribution is None or distribution.horizon < horizon:
            distribution = self.forecast_distribution(model, horizon)

        lower, upper = self.interval_bounds(distribution.mean[:horizon], distribution.std[:horizon], confidence_level)
        offsets = np.arange(1, horizon + 1)
        # Sales cannot be negative; clipping keeps lower <= point <= upper
        frame = pd.DataFrame({
            "week_offset": offsets,
            "week_index": distribution.last_week + offsets,
            "point": np.clip(distribution.mean[:horizon], 0, None),
            "lower": np.clip(lower, 0, None),
            "upper": np.clip(upper, 0, None)
        })
        return ForecastResult(
            entity=entity,
            confidence_level=confidence_level,
            frame=frame,
            model_label=model.describe()
        )

    @staticmethod
    def interval_bounds(mean: np.ndarray, std: np.ndarray, confidence_level: float) -> Tuple[np.ndarray, np.ndarray]:
        """Two-sided normal interval mean +/- z * std at confidence_level percent."""
        if not 0 < confidence_level < 100:
            raise RangeError(f"Confidence level must be strictly between 0 and 100, got {confidence_level}.")
        z = norm.ppf(0.5 + confidence_level / 200)
        return mean - z * std, mean + z * std
