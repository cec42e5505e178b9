"""
Output Writer

Persists the analysis tables back to DuckDB with overwrite semantics.

Critical Guarantee:
    All tables of one run are replaced inside a single transaction.
    If any write fails the transaction is rolled back, so the previous
    run's tables stay exactly as they were (never half old, half new).
"""
import logging
from typing import Callable, Dict, TypeVar

import duckdb
import pandas as pd

from alert_overlap.config import SnapshotIOError

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRYABLE_ERRORS = (duckdb.Error, OSError)


def with_retries(fn: Callable[[], T], retries: int, operation: str) -> T:
    """
    Runs fn as a whole unit up to retries + 1 times.

    Only storage errors are retried; anything else propagates immediately.
    Raises SnapshotIOError once attempts are exhausted.
    """
    attempts = retries + 1
    attempt = 1
    while True:
        try:
            return fn()
        except RETRYABLE_ERRORS as e:
            logger.warning(f"{operation} failed (attempt {attempt}/{attempts}): {e}")
            if attempt >= attempts:
                raise SnapshotIOError(f"{operation} failed after {attempts} attempt(s): {e}") from e
            attempt += 1


def _write_table(con: duckdb.DuckDBPyConnection, name: str, frame: pd.DataFrame) -> None:
    view_name = "_alert_overlap_frame"
    con.register(view_name, frame)
    try:
        con.execute(f'CREATE OR REPLACE TABLE "{name}" AS SELECT * FROM {view_name}')
    finally:
        con.unregister(view_name)


def write_views_atomically(duckdb_path: str, views: Dict[str, pd.DataFrame], retries: int = 0) -> None:
    """
    Replace every table in views (table name -> DataFrame) in one transaction.

    Args:
        duckdb_path: Output database file (created if missing)
        views: Table name -> contents, written in insertion order
        retries: Whole-operation retries on storage errors
    """
    def _write() -> None:
        con = duckdb.connect(duckdb_path)
        try:
            con.execute("BEGIN TRANSACTION")
            try:
                for name, frame in views.items():
                    _write_table(con, name, frame)
                con.execute("COMMIT")
            except BaseException:
                con.execute("ROLLBACK")
                raise
        finally:
            con.close()

    logger.info(f"Writing {len(views)} tables to {duckdb_path}...")
    with_retries(_write, retries=retries, operation=f"write {len(views)} tables")
    for name, frame in views.items():
        logger.info(f"   {name}: {len(frame):,} rows")
