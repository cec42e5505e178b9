import duckdb
import pandas as pd
from pathlib import Path


def save_to_duckdb(df: pd.DataFrame, db_path, table: str = "dse_prod_scores"):
    """Bulk-load a scored-event snapshot into DuckDB (replaces the table)."""
    db_path = Path(db_path)
    db_path.parent.mkdir(parents=True, exist_ok=True)

    print(f"🚀 Saving snapshot to DuckDB...")
    print(f"Output: {db_path} :: {table}")

    con = duckdb.connect(str(db_path))
    try:
        # CREATE OR REPLACE so the script can be re-run safely
        con.register("snapshot_df", df)
        con.execute(f'CREATE OR REPLACE TABLE "{table}" AS SELECT * FROM snapshot_df')
        con.unregister("snapshot_df")

        count = con.execute(f'SELECT count(*) FROM "{table}"').fetchone()[0]
        print(f"✅ Success! Saved {count} rows into '{table}' table.")
    finally:
        con.close()


if __name__ == "__main__":
    import sys
    sys.path.append(str(Path(__file__).parent.parent))
    from data_generation.generate_scores import generate_scored_events

    project_root = Path(__file__).parent.parent
    save_to_duckdb(generate_scored_events(), project_root / "data" / "processed" / "dse_prod_scores.duckdb")
