import os
import logging

from sales_forecast.data_processing import DataProcessor
from sales_forecast.engine import ForecastEngine, WeeklyQuery
from sales_forecast.exceptions import ForecastEngineError
from sales_forecast.config import (
    RAW_DATA_PATH,
    FORECASTS_DIR,
    FORECAST_STEPS,
    ALL_ENTITIES
)

logging.basicConfig(
    level=logging.INFO,
    format='[%(asctime)s] - %(levelname)s - %(message)s', # Add %(name)s if needing to debug
    datefmt='%Y-%m-%d %H:%M:%S'
)
logger = logging.getLogger(__name__)

def main():
    """
    Runs the store sales forecasting pipeline for the aggregate of all stores:
    data loading, model selection, a full-year forecast saved to csv, and the
    actual versus forecast growth comparison.
    """
    logger.info("\n---Starting Store Sales Forecasting Pipeline")

    data_processor = DataProcessor(file_path=RAW_DATA_PATH)
    if data_processor.load_data() is None:
        logger.error("Cannot run pipeline: Raw data not loaded. Exiting.")
        return

    engine = ForecastEngine(data_processor=data_processor)
    try:
        forecast = engine.run_forecast(ALL_ENTITIES, WeeklyQuery(horizon=FORECAST_STEPS))
        statistics = engine.run_statistics(forecast)
        comparison = engine.run_comparison(ALL_ENTITIES)
    except ForecastEngineError as e:
        logger.error(f"Forecast unavailable for {ALL_ENTITIES} stores: {e}")
        return
    finally:
        engine.close()

    os.makedirs(FORECASTS_DIR, exist_ok=True)
    filename = os.path.join(FORECASTS_DIR, "all_stores_forecast.csv")
    forecast.frame.to_csv(filename, index=False)

    logger.info(f"Model: {forecast.model_label}")
    logger.info(f"Forecast total: {statistics.total:.2f}, mean: {statistics.mean:.2f}, median: {statistics.median:.2f}")
    if comparison.growth_available:
        logger.info(f"Highest growth quarter: {comparison.highest_growth_quarter}, "
                    f"lowest growth quarter: {comparison.lowest_growth_quarter}")
    else:
        logger.info(f"Growth comparison: {comparison.message}")

    logger.info("\n--Store Sales Forecasting Pipeline Completed ---")
    logger.info(f"Forecasts saved in: {filename}")

if __name__ == "__main__":
    main()
