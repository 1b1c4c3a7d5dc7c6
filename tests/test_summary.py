import pytest
import numpy as np
import pandas as pd

from sales_forecast.model_prediction import ForecastResult
from sales_forecast.summary import summarize_forecast, summarize_values, ForecastStatistics
from sales_forecast.exceptions import EmptyRangeError

def forecast_from_points(points) -> ForecastResult:
    offsets = np.arange(1, len(points) + 1)
    frame = pd.DataFrame({
        "week_offset": offsets,
        "week_index": offsets + 100,
        "point": np.asarray(points, dtype=float),
        "lower": np.asarray(points, dtype=float) - 1,
        "upper": np.asarray(points, dtype=float) + 1
    })
    return ForecastResult(entity="1", confidence_level=95, frame=frame)

def test_summarize_whole_forecast():
    result = forecast_from_points([10.0, 20.0, 30.0, 100.0])

    statistics = summarize_forecast(result)

    assert statistics == ForecastStatistics(total=160.0, mean=40.0, median=25.0)

def test_summarize_sub_range():
    result = forecast_from_points(np.arange(1, 53, dtype=float))

    # Q2 covers offsets 14-26, whose points are 14..26
    statistics = summarize_forecast(result, week_range=(14, 26))

    assert statistics.total == pytest.approx(sum(range(14, 27)))
    assert statistics.mean == pytest.approx(20.0)
    assert statistics.median == pytest.approx(20.0)

def test_summarize_ignores_interval_bounds():
    result = forecast_from_points([5.0, 5.0])
    result.frame["lower"] = 0.0
    result.frame["upper"] = 1000.0
    assert summarize_forecast(result).total == 10.0

def test_summarize_is_order_invariant():
    result = forecast_from_points([3.0, 1.0, 4.0, 1.0, 5.0, 9.0, 2.0, 6.0])
    shuffled = ForecastResult(
        entity="1",
        confidence_level=95,
        frame=result.frame.sample(frac=1.0, random_state=0).reset_index(drop=True)
    )

    original = summarize_forecast(result, week_range=(2, 7))
    reordered = summarize_forecast(shuffled, week_range=(2, 7))

    assert original.total == pytest.approx(reordered.total)
    assert original.mean == pytest.approx(reordered.mean)
    assert original.median == pytest.approx(reordered.median)

def test_summarize_empty_range():
    result = forecast_from_points([1.0, 2.0, 3.0])
    with pytest.raises(EmptyRangeError):
        summarize_forecast(result, week_range=(10, 20))

def test_summarize_values_empty():
    with pytest.raises(EmptyRangeError):
        summarize_values([])

def test_statistics_to_dict():
    statistics = summarize_values([1.0, 2.0, 3.0])
    assert statistics.to_dict() == {"total": 6.0, "mean": 2.0, "median": 2.0}
