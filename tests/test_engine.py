import threading
import pytest
import numpy as np
import pandas as pd
from unittest.mock import MagicMock

from sales_forecast.data_processing import DataProcessor
from sales_forecast.engine import ForecastEngine, WeeklyQuery, QuarterlyQuery, canonical_entity
from sales_forecast.model_selection import ModelSelector
from sales_forecast.exceptions import ModelFitError, RangeError, UnknownEntityError

@pytest.fixture
def data_processor(make_observations):
    dp = DataProcessor("dummy_path.csv")
    dp.set_observations(make_observations({
        "1": [500_000.0] * 104,
        "2": [500_000.0] * 104
    }))
    return dp

@pytest.fixture
def engine(data_processor):
    engine = ForecastEngine(data_processor=data_processor, max_workers=2, query_timeout=30)
    yield engine
    engine.close()

@pytest.fixture
def mocked_engine(data_processor, make_fitted_model):
    # Engine whose selector always returns a model backed by MockSARIMAXResults
    selector = MagicMock(spec=ModelSelector)
    selector.select.side_effect = lambda series: make_fitted_model(last_week=int(series.index[-1]))
    engine = ForecastEngine(data_processor=data_processor, model_selector=selector, max_workers=1)
    yield engine
    engine.close()

def test_queries_resolve_to_horizon_and_range():
    assert WeeklyQuery(8).resolve() == (8, None)
    assert QuarterlyQuery("Q2").resolve() == (52, (14, 26))
    with pytest.raises(RangeError):
        WeeklyQuery(0).resolve()
    with pytest.raises(RangeError):
        QuarterlyQuery("Q7").resolve()

def test_canonical_entity():
    assert canonical_entity("all") == "All"
    assert canonical_entity(" 12 ") == "12"
    assert canonical_entity(12) == "12"

def test_flat_aggregate_scenario(engine):
    # Two stores at $500,000 each: the aggregate is a flat $1,000,000 per week for 104 weeks
    result = engine.run_forecast("All", WeeklyQuery(8))
    statistics = engine.run_statistics(result)

    assert len(result) == 8
    assert statistics.total == pytest.approx(8_000_000.0, rel=1e-3)
    assert statistics.mean == pytest.approx(1_000_000.0, rel=1e-3)
    assert statistics.median == pytest.approx(1_000_000.0, rel=1e-3)

def test_single_observation_store_does_not_crash(make_observations):
    dp = DataProcessor("dummy_path.csv")
    dp.set_observations(make_observations({"3": [250.0]}))
    engine = ForecastEngine(data_processor=dp)
    try:
        result = engine.run_forecast("3", WeeklyQuery(4))
    finally:
        engine.close()

    assert len(result) == 4
    assert (result.frame["point"] == 250.0).all()
    assert result.frame["week_index"].tolist() == [2, 3, 4, 5]

def test_forecast_records_are_ordered_and_bounded(mocked_engine):
    for horizon in (1, 7, 52):
        result = mocked_engine.run_forecast("1", WeeklyQuery(horizon), confidence_level=90)
        frame = result.frame
        assert frame["week_offset"].tolist() == list(range(1, horizon + 1))
        assert (frame["lower"] <= frame["point"]).all()
        assert (frame["point"] <= frame["upper"]).all()

def test_quarterly_equals_sliced_full_year(mocked_engine):
    full_year = mocked_engine.run_forecast("All", WeeklyQuery(52), confidence_level=80)
    quarter = mocked_engine.run_forecast("All", QuarterlyQuery("Q3"), confidence_level=80)

    assert quarter.frame["week_offset"].tolist() == list(range(27, 40))
    pd.testing.assert_frame_equal(quarter.frame, full_year.slice(27, 39).frame)

def test_quarter_slice_not_refit_on_short_horizon(mocked_engine):
    quarter = mocked_engine.run_forecast("1", QuarterlyQuery("Q1"))
    weekly = mocked_engine.run_forecast("1", WeeklyQuery(13))

    # Same values for the first quarter whichever way it is requested
    np.testing.assert_allclose(quarter.points, weekly.points)
    np.testing.assert_allclose(quarter.frame["upper"], weekly.frame["upper"])

def test_confidence_change_does_not_refit(mocked_engine):
    first = mocked_engine.run_forecast("1", WeeklyQuery(12), confidence_level=80)
    second = mocked_engine.run_forecast("1", WeeklyQuery(12), confidence_level=95)

    assert mocked_engine.model_selector.select.call_count == 1
    model = mocked_engine.fit_model("1")
    assert model.results.forecast_calls == 1
    np.testing.assert_allclose(first.points, second.points)
    assert (second.frame["upper"] >= first.frame["upper"]).all()
    assert (second.frame["lower"] <= first.frame["lower"]).all()

def test_cache_disabled_refits(data_processor, make_fitted_model):
    selector = MagicMock(spec=ModelSelector)
    selector.select.side_effect = lambda series: make_fitted_model(last_week=int(series.index[-1]))
    engine = ForecastEngine(data_processor=data_processor, model_selector=selector, enable_cache=False)
    try:
        engine.run_forecast("1", WeeklyQuery(4))
        engine.run_forecast("1", WeeklyQuery(4))
    finally:
        engine.close()
    assert selector.select.call_count == 2

def test_as_of_week_is_part_of_cache_key(mocked_engine):
    latest = mocked_engine.run_forecast("1", WeeklyQuery(2))
    earlier = mocked_engine.run_forecast("1", WeeklyQuery(2), as_of_week=52)

    assert mocked_engine.model_selector.select.call_count == 2
    assert latest.frame["week_index"].tolist() == [105, 106]
    assert earlier.frame["week_index"].tolist() == [53, 54]

def test_show_intervals_flag(mocked_engine):
    result = mocked_engine.run_forecast("1", WeeklyQuery(3), show_intervals=False)
    assert "lower" not in result.to_records()[0]

def test_unknown_store(engine):
    with pytest.raises(UnknownEntityError):
        engine.run_forecast("42", WeeklyQuery(4))

def test_fit_timeout_is_reported_as_model_fit_error(data_processor):
    release = threading.Event()
    selector = MagicMock(spec=ModelSelector)
    selector.select.side_effect = lambda series: release.wait(5)
    engine = ForecastEngine(data_processor=data_processor, model_selector=selector, query_timeout=0.05)
    try:
        with pytest.raises(ModelFitError, match="did not finish"):
            engine.run_forecast("1", WeeklyQuery(4))
    finally:
        release.set()
        engine.close()

def test_model_fit_error_propagates(data_processor):
    selector = MagicMock(spec=ModelSelector)
    selector.select.side_effect = ModelFitError("No candidate model converged after 4 fits.")
    engine = ForecastEngine(data_processor=data_processor, model_selector=selector)
    try:
        with pytest.raises(ModelFitError, match="No candidate model converged"):
            engine.run_forecast("1", WeeklyQuery(4))
    finally:
        engine.close()

def test_comparison_excludes_zero_actual_quarter(make_observations, make_fitted_model):
    dp = DataProcessor("dummy_path.csv")
    sales = np.full(52, 100.0)
    sales[26:39] = 0.0  # Q3 has no sales
    dp.set_observations(make_observations({"5": sales.tolist()}))

    selector = MagicMock(spec=ModelSelector)
    selector.select.return_value = make_fitted_model(last_week=52, mean_start=120.0, slope=0.0)
    engine = ForecastEngine(data_processor=dp, model_selector=selector)
    try:
        comparison = engine.run_comparison("5")
    finally:
        engine.close()

    assert comparison.growth_available
    records = {r.quarter: r for r in comparison.growth_records}
    assert records["Q3"].growth_pct is None
    assert records["Q1"].growth_pct == pytest.approx(20.0)
    # Every defined quarter grows by 20%, so the earliest wins both rankings
    assert comparison.highest_growth_quarter == "Q1"
    assert comparison.lowest_growth_quarter == "Q1"
    assert comparison.forecast_mean == pytest.approx(120.0)
    assert comparison.actual_median == pytest.approx(100.0)

def test_comparison_without_growth_data(make_observations):
    dp = DataProcessor("dummy_path.csv")
    dp.set_observations(make_observations({"9": [0.0] * 60}))
    engine = ForecastEngine(data_processor=dp)
    try:
        comparison = engine.run_comparison("9")
    finally:
        engine.close()

    assert not comparison.growth_available
    assert comparison.highest_growth_quarter is None
    assert comparison.lowest_growth_quarter is None
    assert "No growth data available" in comparison.message
    assert all(r.growth_pct is None for r in comparison.growth_records)
    assert comparison.actual_mean == 0.0

def test_comparison_to_dict(engine):
    payload = engine.run_comparison("All").to_dict()
    assert payload["store"] == "All"
    assert len(payload["quarters"]) == 4
    assert payload["highest_growth_quarter"] == "Q1"
    assert payload["forecast_mean"] == pytest.approx(1_000_000.0)
