import os

from dotenv import load_dotenv

load_dotenv()

SEASONAL_PERIOD = 52

# Bounds for the automatic seasonal ARIMA search
SARIMA_SEARCH_CONFIG = {
    "max_p": 2,
    "max_d": 2,
    "max_q": 2,
    "max_P": 1,
    "max_D": 1,
    "max_Q": 1,
    "max_models": 30,  # hard cap on candidate fits per search
    "maxiter": 50,
    "kpss_alpha": 0.05,
    "seasonal_strength_threshold": 0.64
}

QUARTER_WINDOWS = {
    "Q1": (1, 13),
    "Q2": (14, 26),
    "Q3": (27, 39),
    "Q4": (40, 52)
}

ALL_ENTITIES = "All"

# Raw data columns mapped onto entity_id, week_index and sales_amount
RAW_COLUMNS = {
    "Store": "entity_id",
    "Week": "week_index",
    "Weekly_Sales": "sales_amount"
}

DEFAULT_CONFIDENCE_LEVEL = 95
MIN_CONFIDENCE_LEVEL = 50
MAX_CONFIDENCE_LEVEL = 99

FORECAST_STEPS = 52
FORECASTS_DIR = "forecasts"
RAW_DATA_PATH = os.environ.get("RAW_DATA_PATH", "data/raw/store_weekly_sales.csv")

MAX_CONCURRENT_FITS = int(os.environ.get("MAX_CONCURRENT_FITS", 2))
QUERY_TIMEOUT_SECONDS = float(os.environ.get("QUERY_TIMEOUT_SECONDS", 300))
ENABLE_QUERY_CACHE = True
