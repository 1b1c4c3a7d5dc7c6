import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError
from dataclasses import dataclass, field
from typing import List, Optional, Tuple, Union

from sales_forecast.config import (
    ALL_ENTITIES,
    DEFAULT_CONFIDENCE_LEVEL,
    ENABLE_QUERY_CACHE,
    MAX_CONCURRENT_FITS,
    QUERY_TIMEOUT_SECONDS,
    SEASONAL_PERIOD
)
from sales_forecast.data_processing import DataProcessor
from sales_forecast.exceptions import ModelFitError, NoDefinedGrowthError, RangeError
from sales_forecast.growth import GrowthRecord, actual_year_window, compare_growth, quarter_growth
from sales_forecast.model_prediction import ForecastDistribution, ForecastResult, Forecaster
from sales_forecast.model_selection import FittedModel, ModelSelector
from sales_forecast.quarters import get_quarter
from sales_forecast.summary import ForecastStatistics, summarize_forecast, summarize_values

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WeeklyQuery:
    """Forecast the next `horizon` weeks."""
    horizon: int

    def resolve(self) -> Tuple[int, Optional[Tuple[int, int]]]:
        if self.horizon < 1:
            raise RangeError(f"Forecast horizon must be at least 1 week, got {self.horizon}.")
        return self.horizon, None


@dataclass(frozen=True)
class QuarterlyQuery:
    """Forecast one quarter, sliced out of the full-year forecast."""
    quarter: str

    def resolve(self) -> Tuple[int, Optional[Tuple[int, int]]]:
        return SEASONAL_PERIOD, get_quarter(self.quarter).week_range


ForecastQuery = Union[WeeklyQuery, QuarterlyQuery]


@dataclass
class ComparisonResult:
    entity: str
    actual_mean: float
    actual_median: float
    forecast_mean: float
    forecast_median: float
    highest_growth_quarter: Optional[str]
    lowest_growth_quarter: Optional[str]
    growth_records: List[GrowthRecord] = field(default_factory=list)
    growth_available: bool = True
    message: str = ""

    def to_dict(self) -> dict:
        return {
            "store": self.entity,
            "actual_mean": self.actual_mean,
            "actual_median": self.actual_median,
            "forecast_mean": self.forecast_mean,
            "forecast_median": self.forecast_median,
            "highest_growth_quarter": self.highest_growth_quarter,
            "lowest_growth_quarter": self.lowest_growth_quarter,
            "growth_available": self.growth_available,
            "message": self.message,
            "quarters": [
                {
                    "quarter": r.quarter,
                    "actual_total": r.actual_total,
                    "forecast_total": r.forecast_total,
                    "growth_pct": r.growth_pct
                }
                for r in self.growth_records
            ]
        }


def canonical_entity(entity) -> str:
    entity = str(entity).strip()
    return ALL_ENTITIES if entity.lower() == ALL_ENTITIES.lower() else entity


class ForecastEngine:
    """
    Query interface over the forecasting core: forecasts, forecast statistics
    and quarter growth comparisons for one store or all stores.

    Fitted models and forecast distributions are memoised per store and
    "as of" week, so changing only the confidence level or slicing a
    different quarter never refits. Fits run on a bounded worker pool.
    """
    def __init__(self, data_processor: DataProcessor,
                 model_selector: ModelSelector = None,
                 forecaster: Forecaster = None,
                 max_workers: int = MAX_CONCURRENT_FITS,
                 query_timeout: float = QUERY_TIMEOUT_SECONDS,
                 enable_cache: bool = ENABLE_QUERY_CACHE):
        """
        Args:
            data_processor (DataProcessor): Holds the loaded observations.
            model_selector (ModelSelector, optional): Order search to use.
            forecaster (Forecaster, optional): Forecast generator to use.
            max_workers (int): Maximum number of model fits running at once.
            query_timeout (float): Seconds to wait for a fit before giving up.
            enable_cache (bool): Memoise fitted models and forecast distributions.
        """
        self.data_processor = data_processor
        self.model_selector = model_selector or ModelSelector()
        self.forecaster = forecaster or Forecaster()
        self.query_timeout = query_timeout
        self.enable_cache = enable_cache

        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="model-fit")
        self._lock = threading.Lock()
        self._models = {}
        self._distributions = {}
        logger.info(f"ForecastEngine initialised with {max_workers} fit workers and a {query_timeout}s timeout.")

    def fit_model(self, entity: str, as_of_week: int = None) -> FittedModel:
        """
        Builds the weekly series for a store and selects its model.

        Raises:
            InputDataError: If the series cannot be built.
            ModelFitError: If no model converges or the fit times out.
        """
        entity = canonical_entity(entity)
        key = (entity, as_of_week)
        with self._lock:
            if self.enable_cache and key in self._models:
                return self._models[key]

        series = self.data_processor.aggregate_to_weekly(entity, max_week=as_of_week)
        future = self._executor.submit(self.model_selector.select, series)
        try:
            model = future.result(timeout=self.query_timeout)
        except FuturesTimeoutError:
            future.cancel()
            raise ModelFitError(
                f"Model fit for store {entity} did not finish within {self.query_timeout} seconds."
            )

        if self.enable_cache:
            with self._lock:
                self._models[key] = model
        return model

    def forecast_distribution(self, entity: str, horizon: int, as_of_week: int = None) -> Tuple[FittedModel, ForecastDistribution]:
        entity = canonical_entity(entity)
        model = self.fit_model(entity, as_of_week)
        key = (entity, as_of_week)
        with self._lock:
            cached = self._distributions.get(key) if self.enable_cache else None
        if cached is not None and cached.horizon >= horizon:
            return model, cached

        distribution = self.forecaster.forecast_distribution(model, horizon)
        if self.enable_cache:
            with self._lock:
                self._distributions[key] = distribution
        return model, distribution

    def run_forecast(self, entity: str, query: ForecastQuery,
                     confidence_level: float = DEFAULT_CONFIDENCE_LEVEL,
                     show_intervals: bool = True,
                     as_of_week: int = None) -> ForecastResult:
        """
        Runs a weekly or quarterly forecast query.

        Quarterly queries always forecast the full year and slice the
        quarter out of it.

        Args:
            entity (str): Store id or 'All'.
            query (WeeklyQuery | QuarterlyQuery): What to forecast.
            confidence_level (float): Interval coverage in percent.
            show_intervals (bool): Whether serialised records include the bounds.
            as_of_week (int, optional): Use actuals up to this week only.

        Returns:
            ForecastResult: The forecast records.
        """
        horizon, week_range = query.resolve()
        entity = canonical_entity(entity)
        model, distribution = self.forecast_distribution(entity, horizon, as_of_week)
        result = self.forecaster.forecast(
            model,
            horizon,
            confidence_level=confidence_level,
            entity=entity,
            distribution=distribution
        )
        if week_range is not None:
            result = result.slice(*week_range)
        result.show_intervals = show_intervals
        return result

    def run_statistics(self, result: ForecastResult, week_range: Tuple[int, int] = None) -> ForecastStatistics:
        return summarize_forecast(result, week_range)

    def run_comparison(self, entity: str, as_of_week: int = None,
                       confidence_level: float = DEFAULT_CONFIDENCE_LEVEL) -> ComparisonResult:
        """
        Compares the last year of actual sales with the next year of forecasts.

        When no quarter has a non-zero actual baseline the result is still
        returned, with growth_available=False and no highest/lowest quarter.
        """
        entity = canonical_entity(entity)
        actual = self.data_processor.aggregate_to_weekly(entity, max_week=as_of_week)
        forecast = self.run_forecast(entity, WeeklyQuery(SEASONAL_PERIOD), confidence_level, as_of_week=as_of_week)

        actual_stats = summarize_values(actual.iloc[-SEASONAL_PERIOD:])
        forecast_stats = summarize_forecast(forecast)

        try:
            comparison = compare_growth(actual, forecast)
        except NoDefinedGrowthError as e:
            logger.warning(f"Store {entity}: {e}")
            return ComparisonResult(
                entity=entity,
                actual_mean=actual_stats.mean,
                actual_median=actual_stats.median,
                forecast_mean=forecast_stats.mean,
                forecast_median=forecast_stats.median,
                highest_growth_quarter=None,
                lowest_growth_quarter=None,
                growth_records=quarter_growth(actual_year_window(actual), forecast),
                growth_available=False,
                message=str(e)
            )

        return ComparisonResult(
            entity=entity,
            actual_mean=actual_stats.mean,
            actual_median=actual_stats.median,
            forecast_mean=forecast_stats.mean,
            forecast_median=forecast_stats.median,
            highest_growth_quarter=comparison.highest.quarter,
            lowest_growth_quarter=comparison.lowest.quarter,
            growth_records=comparison.records
        )

    def clear_cache(self):
        with self._lock:
            self._models.clear()
            self._distributions.clear()

    def close(self):
        self._executor.shutdown(wait=False, cancel_futures=True)
