import pandas as pd
import logging

from sales_forecast.config import RAW_COLUMNS, ALL_ENTITIES
from sales_forecast.exceptions import (
    InputDataError,
    EmptySeriesError,
    UnknownEntityError,
    SeriesGapError
)

logger = logging.getLogger(__name__)

OBSERVATION_COLUMNS = ["entity_id", "week_index", "sales_amount"]

class DataProcessor:
    """
    Class to handle loading and validation of the raw weekly observations and
    their aggregation into a gap-free weekly series per store (or all stores).
    """
    def __init__(self, file_path: str, raw_columns: dict = RAW_COLUMNS):
        """
        Args:
            file_path (str): The path to the raw weekly sales csv file.
            raw_columns (dict): Mapping of raw column names to the canonical
                                'entity_id', 'week_index' and 'sales_amount'.
        """
        self.file_path = file_path
        self.raw_columns = raw_columns
        self.df = None # To store the validated observations

    def load_data(self) -> pd.DataFrame:
        """
        Loads the raw sales data from the specified csv file and validates it.

        Returns:
            pd.DataFrame: The observations with canonical column names, or None
                          if the file could not be found or read.

        Raises:
            InputDataError: If the file was read but its content is invalid.
        """
        try:
            raw_df = pd.read_csv(self.file_path)
        except FileNotFoundError:
            logger.error(f"Error: File not found at {self.file_path}. Please check the path.", exc_info=True)
            return None
        except (pd.errors.ParserError, pd.errors.EmptyDataError, UnicodeDecodeError) as e:
            logger.error(f"An error occurred while reading {self.file_path}: {e}", exc_info=True)
            return None

        self.df = self.validate_observations(raw_df.rename(columns=self.raw_columns))
        logger.info(f"Data loaded successfully from {self.file_path}. "
                    f"{len(self.df)} observations for {self.df['entity_id'].nunique()} stores.")
        return self.df

    def set_observations(self, observations: pd.DataFrame) -> pd.DataFrame:
        """
        Installs an in-memory observation table that already uses the canonical
        column names.
        """
        self.df = self.validate_observations(observations)
        return self.df

    @staticmethod
    def validate_observations(df: pd.DataFrame) -> pd.DataFrame:
        """
        Checks the observation table and returns a cleaned copy.

        Args:
            df (pd.DataFrame): Table with 'entity_id', 'week_index' and 'sales_amount'.

        Returns:
            pd.DataFrame: Copy with string entity ids, integer weeks and float sales.

        Raises:
            InputDataError: On missing columns, non-numeric or out-of-range values,
                            or duplicated (entity_id, week_index) keys.
        """
        missing = set(OBSERVATION_COLUMNS) - set(df.columns)
        if missing:
            raise InputDataError(f"Observations missing required columns: {sorted(missing)}")

        observations = df[OBSERVATION_COLUMNS].copy()
        observations["entity_id"] = observations["entity_id"].astype(str).str.strip()
        observations["week_index"] = pd.to_numeric(observations["week_index"], errors="coerce")
        observations["sales_amount"] = pd.to_numeric(observations["sales_amount"], errors="coerce")

        if observations[["week_index", "sales_amount"]].isnull().any().any():
            raise InputDataError("Observations contain missing or non-numeric week or sales values.")
        if (observations["week_index"] % 1 != 0).any() or (observations["week_index"] < 1).any():
            raise InputDataError("Week index must be an integer greater than or equal to 1.")
        if (observations["sales_amount"] < 0).any():
            raise InputDataError("Sales amounts must be non-negative.")

        duplicated = observations.duplicated(subset=["entity_id", "week_index"])
        if duplicated.any():
            first = observations[duplicated].iloc[0]
            raise InputDataError(
                f"Found {int(duplicated.sum())} duplicated observations, "
                f"e.g. store {first['entity_id']} week {int(first['week_index'])}."
            )

        observations["week_index"] = observations["week_index"].astype(int)
        observations["sales_amount"] = observations["sales_amount"].astype(float)
        return observations.sort_values(["entity_id", "week_index"]).reset_index(drop=True)

    def list_entities(self) -> list:
        """Returns the sorted store ids, numeric ids in numeric order."""
        if self.df is None:
            return []
        entities = self.df["entity_id"].unique().tolist()
        return sorted(entities, key=lambda e: (0, int(e), e) if e.isdigit() else (1, 0, e))

    def aggregate_to_weekly(self, entity: str = ALL_ENTITIES, max_week: int = None) -> pd.Series:
        """
        Builds the weekly sales series for one store, or the sum over all stores.

        Args:
            entity (str, optional): A store id, or 'All' to aggregate every store.
                                    Defaults to 'All'.
            max_week (int, optional): Keep only weeks up to and including this
                                      index ("actual data up to now").

        Returns:
            pd.Series: Weekly sales indexed by consecutive 'week_index', ascending.

        Raises:
            InputDataError: If no data has been loaded.
            UnknownEntityError: If the store id matches no observations.
            EmptySeriesError: If nothing is left after filtering.
            SeriesGapError: If the resulting weeks are not consecutive.
        """
        if self.df is None:
            raise InputDataError("Data not loaded. Call load_data() first.")

        entity = str(entity).strip()
        if entity.lower() == ALL_ENTITIES.lower():
            df_filtered = self.df
            label = "all stores"
        else:
            df_filtered = self.df[self.df["entity_id"] == entity]
            if df_filtered.empty:
                raise UnknownEntityError(f"Unknown store '{entity}'.")
            label = f"store {entity}"

        if max_week is not None:
            df_filtered = df_filtered[df_filtered["week_index"] <= max_week]

        if df_filtered.empty:
            bound = f" up to week {max_week}" if max_week is not None else ""
            raise EmptySeriesError(f"No sales observations for {label}{bound}.")

        weekly_sales = df_filtered.groupby("week_index")["sales_amount"].sum().sort_index()
        weekly_sales.name = "sales_amount"

        expected_weeks = pd.RangeIndex(weekly_sales.index[0], weekly_sales.index[-1] + 1)
        if len(weekly_sales) != len(expected_weeks):
            missing_weeks = expected_weeks.difference(weekly_sales.index)
            raise SeriesGapError(
                f"Weekly series for {label} has {len(missing_weeks)} missing weeks "
                f"(first missing: week {missing_weeks[0]})."
            )

        logger.info(f"Weekly series prepared for {label}. Length: {len(weekly_sales)} weeks.")
        return weekly_sales
