import numpy as np
import pandas as pd
import pytest
from types import SimpleNamespace

from sales_forecast.model_selection import FittedModel

# --- Simple mock SARIMAX results for forecasting tests ---
class MockSARIMAXResults:
    def __init__(self, mean_start: float = 100.0, slope: float = 1.0, variance_step: float = 4.0):
        # Forecast mean rises by `slope` per step, variance grows linearly with lead time
        self.mean_start = mean_start
        self.slope = slope
        self.variance_step = variance_step
        self.forecast_calls = 0

    def get_forecast(self, steps: int):
        self.forecast_calls += 1
        return SimpleNamespace(
            predicted_mean=self.mean_start + self.slope * np.arange(steps),
            var_pred_mean=self.variance_step * np.arange(1, steps + 1)
        )

@pytest.fixture
def make_fitted_model():
    """Factory for FittedModel instances backed by MockSARIMAXResults."""
    def _make(last_week: int = 104, **kwargs) -> FittedModel:
        return FittedModel(
            order=(1, 0, 0),
            seasonal_order=(0, 0, 0, 0),
            aicc=100.0,
            sigma2=4.0,
            n_obs=last_week,
            last_week=last_week,
            results=MockSARIMAXResults(**kwargs)
        )
    return _make

@pytest.fixture
def make_observations():
    """Factory for observation tables: {store_id: list of weekly sales starting at week 1}."""
    def _make(sales_by_store: dict) -> pd.DataFrame:
        rows = [
            {"entity_id": store, "week_index": week, "sales_amount": amount}
            for store, sales in sales_by_store.items()
            for week, amount in enumerate(sales, start=1)
        ]
        return pd.DataFrame(rows)
    return _make
