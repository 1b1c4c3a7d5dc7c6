import logging
import warnings
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

import numpy as np
import pandas as pd
from sklearn.metrics import mean_absolute_error, root_mean_squared_error
from statsmodels.stats.diagnostic import acorr_ljungbox
from statsmodels.tools.sm_exceptions import ConvergenceWarning, InterpolationWarning
from statsmodels.tsa.seasonal import STL
from statsmodels.tsa.statespace.sarimax import SARIMAX
from statsmodels.tsa.stattools import kpss

from sales_forecast.config import SARIMA_SEARCH_CONFIG, SEASONAL_PERIOD
from sales_forecast.exceptions import ModelFitError

logger = logging.getLogger(__name__)


@dataclass
class FittedModel:
    """
    A seasonal ARIMA fit bound to one weekly series snapshot.

    `results` is the statsmodels results object; it is None for the
    closed-form constant model used when the series never changes.
    """
    order: Tuple[int, int, int]
    seasonal_order: Tuple[int, int, int, int]
    aicc: float
    sigma2: float
    n_obs: int
    last_week: int
    results: object = None
    constant_level: Optional[float] = None
    candidates_evaluated: int = 0
    diagnostics: Dict[str, float] = field(default_factory=dict)

    @property
    def is_constant(self) -> bool:
        return self.results is None

    @property
    def is_seasonal(self) -> bool:
        P, D, Q, m = self.seasonal_order
        return m > 1 and (P + D + Q) > 0

    def describe(self) -> str:
        p, d, q = self.order
        P, D, Q, m = self.seasonal_order
        label = f"ARIMA({p},{d},{q})"
        if self.is_seasonal:
            label += f"({P},{D},{Q})[{m}]"
        return label


@dataclass
class CandidateFit:
    order: Tuple[int, int, int]
    seasonal_order: Tuple[int, int, int, int]
    converged: bool
    aicc: float = np.inf
    results: object = None
    message: str = ""

    @property
    def is_seasonal(self) -> bool:
        P, D, Q, m = self.seasonal_order
        return m > 1 and (P + D + Q) > 0


class ModelSelector:
    """
    Automatic seasonal ARIMA order selection.

    Differencing orders come from unit-root and seasonal-strength tests, the
    ARMA orders from a bounded stepwise search that keeps the candidate with
    the lowest AICc. Every call works only on its own list of evaluated
    candidates, so the same series always yields the same model.
    """
    def __init__(self, seasonal_period: int = SEASONAL_PERIOD, search_config: dict = SARIMA_SEARCH_CONFIG):
        """
        Args:
            seasonal_period (int): Length of the seasonal cycle in weeks.
            search_config (dict): Search bounds; see SARIMA_SEARCH_CONFIG.
        """
        self.seasonal_period = seasonal_period
        self.search_config = {**SARIMA_SEARCH_CONFIG, **search_config}

    def select(self, series: pd.Series) -> FittedModel:
        """
        Searches for and fits the best seasonal ARIMA model for a weekly series.

        Args:
            series (pd.Series): Weekly sales indexed by consecutive week_index.

        Returns:
            FittedModel: The selected model.

        Raises:
            ModelFitError: If the series is empty or no candidate converged.
        """
        if series is None or len(series) == 0:
            raise ModelFitError("Cannot fit a model to an empty series.")

        values = series.astype(float)
        if np.ptp(values.to_numpy()) == 0:
            return self._constant_model(values)

        seasonal = self.supports_seasonal(values)
        D = self.estimate_seasonal_differencing(values) if seasonal else 0
        d = self.estimate_differencing(self._seasonal_difference(values, D))
        logger.info(f"Differencing orders for {len(values)} weeks: d={d}, D={D} (seasonal search: {seasonal})")

        candidates: List[CandidateFit] = []
        if seasonal:
            candidates = self.stepwise_search(values, d, D, seasonal=True)

        best = self.best_candidate(candidates)
        if best is None:
            if seasonal:
                logger.warning("No seasonal candidate converged. Falling back to a non-seasonal search.")
            fallback = self.stepwise_search(values, d, 0, seasonal=False)
            candidates = candidates + fallback
            best = self.best_candidate(fallback)

        if best is None:
            raise ModelFitError(f"No candidate model converged after {len(candidates)} fits.")

        fitted = FittedModel(
            order=best.order,
            seasonal_order=best.seasonal_order,
            aicc=float(best.aicc),
            sigma2=self._sigma2(best.results),
            n_obs=len(values),
            last_week=int(values.index[-1]),
            results=best.results,
            candidates_evaluated=len(candidates),
            diagnostics=self.fit_diagnostics(values, best.results)
        )
        logger.info(f"Selected {fitted.describe()} with AICc {fitted.aicc:.2f} "
                    f"out of {fitted.candidates_evaluated} candidates.")
        return fitted

    def supports_seasonal(self, series: pd.Series) -> bool:
        # At least two full seasons are needed for seasonal terms to be identifiable
        return self.seasonal_period > 1 and len(series) >= 2 * self.seasonal_period

    def estimate_seasonal_differencing(self, series: pd.Series) -> int:
        """
        Seasonal differencing order from the STL seasonal strength
        1 - Var(remainder) / Var(seasonal + remainder).
        """
        if self.search_config["max_D"] < 1 or not self.supports_seasonal(series):
            return 0
        decomposition = STL(series.to_numpy(), period=self.seasonal_period).fit()
        detrended = decomposition.seasonal + decomposition.resid
        denominator = np.var(detrended)
        if denominator == 0:
            return 0
        strength = max(0.0, 1 - np.var(decomposition.resid) / denominator)
        logger.info(f"Seasonal strength: {strength:.3f}")
        return 1 if strength > self.search_config["seasonal_strength_threshold"] else 0

    def estimate_differencing(self, series: pd.Series) -> int:
        """Number of first differences needed according to repeated KPSS tests."""
        values = series.to_numpy(dtype=float)
        d = 0
        while d < self.search_config["max_d"]:
            if len(values) < 4 or np.ptp(values) == 0:
                break
            try:
                with warnings.catch_warnings():
                    warnings.simplefilter("ignore", InterpolationWarning)
                    _, p_value, _, _ = kpss(values, regression="c", nlags="auto")
            except ValueError as e:
                logger.info(f"KPSS test not applicable at d={d}: {e}")
                break
            if p_value >= self.search_config["kpss_alpha"]:
                break
            values = np.diff(values)
            d += 1
        return d

    def stepwise_search(self, series: pd.Series, d: int, D: int, seasonal: bool) -> List[CandidateFit]:
        """
        Stepwise search over (p, q, P, Q) with fixed differencing orders.

        Starts from four standard models and repeatedly moves to the first
        neighbouring order that lowers AICc, until no neighbour improves or
        `max_models` fits have been evaluated.

        Returns:
            List[CandidateFit]: Every evaluated candidate, in evaluation order.
        """
        cfg = self.search_config
        max_P = cfg["max_P"] if seasonal else 0
        max_Q = cfg["max_Q"] if seasonal else 0
        m = self.seasonal_period if seasonal else 0
        trend = "c" if d + D == 0 else "n"

        def clip(p, q, P, Q):
            return (min(p, cfg["max_p"]), min(q, cfg["max_q"]), min(P, max_P), min(Q, max_Q))

        evaluated: Dict[Tuple[int, int, int, int], CandidateFit] = {}

        def evaluate(key) -> Optional[CandidateFit]:
            if key in evaluated or len(evaluated) >= cfg["max_models"]:
                return None
            p, q, P, Q = key
            seasonal_order = (P, D, Q, m) if seasonal else (0, 0, 0, 0)
            evaluated[key] = self.fit_candidate(series, (p, d, q), seasonal_order, trend)
            return evaluated[key]

        for start in [(2, 2, 1, 1), (0, 0, 0, 0), (1, 0, 1, 0), (0, 1, 0, 1)]:
            evaluate(clip(*start))

        best = self.best_candidate(list(evaluated.values()))
        if best is None:
            return list(evaluated.values())

        steps = [
            (1, 0, 0, 0), (-1, 0, 0, 0), (0, 1, 0, 0), (0, -1, 0, 0),
            (0, 0, 1, 0), (0, 0, -1, 0), (0, 0, 0, 1), (0, 0, 0, -1),
            (1, 1, 0, 0), (-1, -1, 0, 0), (0, 0, 1, 1), (0, 0, -1, -1)
        ]
        improved = True
        while improved and len(evaluated) < cfg["max_models"]:
            improved = False
            p, q = best.order[0], best.order[2]
            P, Q = (best.seasonal_order[0], best.seasonal_order[2]) if seasonal else (0, 0)
            for dp, dq, dP, dQ in steps:
                key = (p + dp, q + dq, P + dP, Q + dQ)
                if min(key) < 0 or key != clip(*key):
                    continue
                candidate = evaluate(key)
                if candidate is not None and candidate.converged and candidate.aicc < best.aicc:
                    best = candidate
                    improved = True
                    break

        return list(evaluated.values())

    def fit_candidate(self, series: pd.Series, order: tuple, seasonal_order: tuple, trend: str = "n") -> CandidateFit:
        """Fits one candidate by maximum likelihood and reports whether it converged."""
        try:
            with warnings.catch_warnings():
                warnings.simplefilter("ignore", ConvergenceWarning)
                warnings.simplefilter("ignore", UserWarning)
                model = SARIMAX(
                    series.to_numpy(dtype=float),
                    order=order,
                    seasonal_order=seasonal_order,
                    trend=trend
                )
                results = model.fit(disp=False, maxiter=self.search_config["maxiter"])
        except (ValueError, np.linalg.LinAlgError) as e:
            logger.debug(f"Candidate {order}{seasonal_order} failed: {e}")
            return CandidateFit(order, seasonal_order, converged=False, message=str(e))

        converged = bool((results.mle_retvals or {}).get("converged", False))
        aicc = float(results.aicc)
        if not np.isfinite(aicc):
            converged = False
        logger.debug(f"Candidate {order}{seasonal_order}: AICc={aicc:.2f}, converged={converged}")
        return CandidateFit(order, seasonal_order, converged=converged, aicc=aicc, results=results)

    @staticmethod
    def best_candidate(candidates: List[CandidateFit]) -> Optional[CandidateFit]:
        """Lowest AICc among converged candidates; earlier candidates win ties."""
        converged = [c for c in candidates if c.converged]
        if not converged:
            return None
        return min(converged, key=lambda c: c.aicc)

    def fit_diagnostics(self, series: pd.Series, results) -> Dict[str, float]:
        """
        In-sample fit diagnostics: MAE, RMSE, MAPE and the Ljung-Box p-value
        of the residuals. Initial diffuse periods are skipped.
        """
        burn = int(getattr(results, "loglikelihood_burn", 0))
        actual = series.to_numpy(dtype=float)[burn:]
        fitted = np.asarray(results.fittedvalues, dtype=float)[burn:]
        if len(actual) < 3:
            return {}

        mape_actual = np.where(actual == 0, 1e-8, actual)
        diagnostics = {
            "mae": float(mean_absolute_error(actual, fitted)),
            "rmse": float(root_mean_squared_error(actual, fitted)),
            "mape": float(np.mean(np.abs((actual - fitted) / mape_actual)) * 100)
        }

        residuals = actual - fitted
        lags = max(1, min(10, len(residuals) // 5))
        ljung_box = acorr_ljungbox(residuals, lags=[lags], return_df=True)
        diagnostics["ljung_box_pvalue"] = float(ljung_box["lb_pvalue"].iloc[0])
        return diagnostics

    def _constant_model(self, series: pd.Series) -> FittedModel:
        level = float(series.iloc[0])
        logger.warning(f"Series of {len(series)} weeks is constant at {level:.2f}. Using a constant mean model.")
        return FittedModel(
            order=(0, 0, 0),
            seasonal_order=(0, 0, 0, 0),
            aicc=np.nan,
            sigma2=0.0,
            n_obs=len(series),
            last_week=int(series.index[-1]),
            constant_level=level,
            diagnostics={"mae": 0.0, "rmse": 0.0, "mape": 0.0}
        )

    def _seasonal_difference(self, series: pd.Series, D: int) -> pd.Series:
        if D == 0:
            return series
        return series.diff(self.seasonal_period).dropna()

    @staticmethod
    def _sigma2(results) -> float:
        params = dict(zip(results.model.param_names, np.asarray(results.params)))
        return float(params.get("sigma2", np.nan))
