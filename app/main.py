from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException, Security, Depends, Request
from fastapi.security import APIKeyHeader
from contextlib import asynccontextmanager
from pydantic import BaseModel, Field
import os
from typing import List, Literal, Optional, Tuple
import logging

from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_ipaddr
from slowapi.errors import RateLimitExceeded

from sales_forecast.data_processing import DataProcessor
from sales_forecast.engine import ForecastEngine, WeeklyQuery, QuarterlyQuery
from sales_forecast.exceptions import (
    ForecastEngineError,
    InputDataError,
    ModelFitError,
    RangeError,
    UnknownEntityError
)
from sales_forecast.config import (
    RAW_DATA_PATH,
    ALL_ENTITIES,
    DEFAULT_CONFIDENCE_LEVEL,
    MIN_CONFIDENCE_LEVEL,
    MAX_CONFIDENCE_LEVEL,
    FORECAST_STEPS
)

logger = logging.getLogger(__name__)
load_dotenv()

# Define the input data scheme using Pydantic
class ForecastRequest(BaseModel):
    store: str = ALL_ENTITIES
    mode: Literal["weekly", "quarterly"] = "weekly"
    horizon_weeks: int = Field(default=FORECAST_STEPS, ge=1)
    quarter: Optional[str] = None
    confidence_level: float = Field(default=DEFAULT_CONFIDENCE_LEVEL, ge=MIN_CONFIDENCE_LEVEL, le=MAX_CONFIDENCE_LEVEL)
    show_intervals: bool = True
    as_of_week: Optional[int] = Field(default=None, ge=1)

class StatisticsRequest(ForecastRequest):
    week_range: Optional[Tuple[int, int]] = None

# --- Authentication Configuration ---
API_KEY = os.environ.get("API_KEY")
api_key_header = APIKeyHeader(name="X-API-Key", auto_error=True)

# Dependency to validate the API key
async def get_api_key(api_key: str = Security(api_key_header)):
    if API_KEY and api_key == API_KEY:
        return api_key
    raise HTTPException(
        status_code=401, detail="Unauthorized: Invalid API Key"
    )

# --- Global forecasting engine, created on startup ---
global_engine: Optional[ForecastEngine] = None

@asynccontextmanager
async def lifespan(app: FastAPI):
    global global_engine # Declare intent to modify global variable

    logger.info("Loading sales data on application startup...")
    data_processor = DataProcessor(file_path=RAW_DATA_PATH)
    try:
        if data_processor.load_data() is not None:
            global_engine = ForecastEngine(data_processor=data_processor)
        else:
            logger.error("Sales data not loaded. Forecasts will be unavailable.")
    except InputDataError as e:
        logger.error(f"Sales data rejected: {e}. Forecasts will be unavailable.")

    yield

    logger.info("App shutting down...")
    if global_engine is not None:
        global_engine.close()

def get_engine() -> ForecastEngine:
    if global_engine is None:
        raise HTTPException(status_code=503, detail="Forecasting engine not initialised. Sales data unavailable.")
    return global_engine

app = FastAPI(title="Store Sales Forecast API", lifespan=lifespan)

# --- Rate Limiter Configuration ---
limiter = Limiter(key_func=get_ipaddr, default_limits=["30/minute"])
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

def to_http_exception(error: ForecastEngineError) -> HTTPException:
    """Maps engine failures onto an 'unavailable' response rather than a number."""
    if isinstance(error, UnknownEntityError):
        return HTTPException(status_code=404, detail=str(error))
    if isinstance(error, ModelFitError):
        return HTTPException(status_code=503, detail=f"Forecast unavailable: {error}")
    if isinstance(error, (InputDataError, RangeError)):
        return HTTPException(status_code=422, detail=str(error))
    return HTTPException(status_code=500, detail=str(error))

def build_query(data: ForecastRequest):
    if data.mode == "quarterly":
        if not data.quarter:
            raise RangeError("A quarter (Q1-Q4) is required in quarterly mode.")
        return QuarterlyQuery(quarter=data.quarter)
    return WeeklyQuery(horizon=data.horizon_weeks)

# --- Root endpoint for health check ---
@app.get("/")
@limiter.limit("5/minute")
async def root(request: Request):
    """Basic health check endpoint."""
    return {"message": "Welcome to the Store Sales Forecast API! Use /forecast, /statistics or /comparison/{store}."}

@app.get("/stores")
@limiter.limit("10/minute")
def list_stores(request: Request, engine: ForecastEngine = Depends(get_engine)) -> List[str]:
    """Store ids available for forecasting, starting with 'All'."""
    return [ALL_ENTITIES] + engine.data_processor.list_entities()

@app.post("/forecast")
@limiter.limit("10/minute")
def forecast_sales(request: Request, data: ForecastRequest,
                   api_key: str = Depends(get_api_key),
                   engine: ForecastEngine = Depends(get_engine)):
    """
    Weekly forecast for the next 'horizon_weeks' weeks, or one quarter of the
    next year in quarterly mode.

    Requires an API key in the 'X-API-Key' header.
    """
    try:
        result = engine.run_forecast(
            data.store,
            build_query(data),
            confidence_level=data.confidence_level,
            show_intervals=data.show_intervals,
            as_of_week=data.as_of_week
        )
    except ForecastEngineError as e:
        logger.error(f"Forecast failed for store {data.store}: {e}")
        raise to_http_exception(e)

    return {
        "store": result.entity,
        "model": result.model_label,
        "confidence_level": result.confidence_level,
        "forecast": result.to_records()
    }

@app.post("/statistics")
@limiter.limit("10/minute")
def forecast_statistics(request: Request, data: StatisticsRequest,
                        api_key: str = Depends(get_api_key),
                        engine: ForecastEngine = Depends(get_engine)):
    """Total, mean and median of the point forecasts for a forecast query."""
    try:
        result = engine.run_forecast(
            data.store,
            build_query(data),
            confidence_level=data.confidence_level,
            as_of_week=data.as_of_week
        )
        statistics = engine.run_statistics(result, data.week_range)
    except ForecastEngineError as e:
        logger.error(f"Statistics failed for store {data.store}: {e}")
        raise to_http_exception(e)

    return {"store": result.entity, **statistics.to_dict()}

@app.get("/comparison/{store}")
@limiter.limit("10/minute")
def compare_store(store: str, request: Request,
                  as_of_week: Optional[int] = None,
                  api_key: str = Depends(get_api_key),
                  engine: ForecastEngine = Depends(get_engine)):
    """
    Actual versus forecast means and medians, with the quarters of highest
    and lowest growth. Quarters are null when no growth data is available.
    """
    try:
        comparison = engine.run_comparison(store, as_of_week=as_of_week)
    except ForecastEngineError as e:
        logger.error(f"Comparison failed for store {store}: {e}")
        raise to_http_exception(e)

    return comparison.to_dict()
