"""
Typed failures raised by the forecasting engine.

Every error carries a human-readable reason so the presentation layer can
show an "unavailable" state instead of a number.
"""


class ForecastEngineError(Exception):
    """Base class for all forecasting engine errors."""


class InputDataError(ForecastEngineError):
    """The raw observations cannot produce a usable weekly series."""


class EmptySeriesError(InputDataError):
    pass


class UnknownEntityError(InputDataError):
    pass


class SeriesGapError(InputDataError):
    pass


class ModelFitError(ForecastEngineError):
    """No candidate model converged, or the fit ran out of time."""


class RangeError(ForecastEngineError):
    """A horizon, confidence level, quarter or statistics range is invalid."""


class EmptyRangeError(RangeError):
    pass


class GrowthUndefinedError(ForecastEngineError):
    pass


class NoDefinedGrowthError(GrowthUndefinedError):
    """All four quarters have zero actual sales."""
