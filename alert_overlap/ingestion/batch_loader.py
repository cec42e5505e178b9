import logging
from typing import Iterable, List, Mapping, Union

import duckdb
import pandas as pd

from alert_overlap.config import ConfigurationError, SegmentProfile
from alert_overlap.ingestion.schema import (
    FLAG_FRAUD,
    REQUIRED_COLUMNS,
    ROUNDED_COLUMNS,
    SCORE_COLUMNS,
    ScoredEvent,
)
from alert_overlap.storage.output_writer import with_retries

logger = logging.getLogger(__name__)


def load_scored_events(duckdb_path: str, table: str, retries: int = 0) -> pd.DataFrame:
    """
    Reads the full scored-event snapshot from DuckDB.

    The read is one unit: it is retried as a whole and either returns the
    complete table or raises SnapshotIOError.
    """
    def _read() -> pd.DataFrame:
        con = duckdb.connect(duckdb_path, read_only=True)
        try:
            return con.execute(f'SELECT * FROM "{table}"').df()
        finally:
            con.close()

    logger.info(f"Loading snapshot {table} from {duckdb_path}...")
    df = with_retries(_read, retries=retries, operation=f"read {table}")
    logger.info(f"Loaded {len(df):,} rows from {table}")
    return df


def validate_columns(df: pd.DataFrame, profile: SegmentProfile) -> None:
    """
    A required column that is absent from the source is a configuration
    defect, not a row-level anomaly: the run stops before anything is written.
    """
    required = [*REQUIRED_COLUMNS, profile.segment_column]
    missing = [c for c in required if c not in df.columns]
    if missing:
        raise ConfigurationError(f"Source snapshot is missing required columns: {missing}")


def normalize_types(df: pd.DataFrame) -> pd.DataFrame:
    """
    Coerces scores to nullable Float64 (absent stays <NA>, never 0) and the
    fraud marker to nullable Int64. Non-numeric values become <NA>, and so
    does a non-integral marker such as 0.6: it is not a valid flag value.
    """
    df = df.copy()
    for col in [*SCORE_COLUMNS, *ROUNDED_COLUMNS]:
        if col in df.columns:
            df[col] = pd.to_numeric(df[col], errors="coerce").astype("Float64")

    flag = pd.to_numeric(df[FLAG_FRAUD], errors="coerce").astype("Float64")
    not_whole = ((flag != flag.round()) | (flag.abs() == float("inf"))).fillna(False).astype(bool)
    df[FLAG_FRAUD] = flag.mask(not_whole).astype("Int64")
    return df


def frame_from_events(events: Iterable[Union[ScoredEvent, Mapping]]) -> pd.DataFrame:
    """
    Builds a snapshot DataFrame from ScoredEvent objects (or plain dicts,
    which are validated into ScoredEvent first).
    """
    records: List[dict] = []
    for event in events:
        if not isinstance(event, ScoredEvent):
            event = ScoredEvent(**event)
        records.append(event.model_dump())

    if not records:
        return pd.DataFrame(columns=list(ScoredEvent.model_fields))
    return pd.DataFrame(records)
