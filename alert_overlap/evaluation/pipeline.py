"""
Alert Overlap Analysis Pipeline

Recomputes every analysis table from a full snapshot of scored events.

Workflow:
1. Validate configuration (profile, thresholds, time zone, fractions)
2. Read the snapshot from DuckDB (whole-operation retries)
3. Keep recognized segments only, attach canonical keys
4. Split into shards; per shard:
   a. Attach thresholds, classify DSE / PROD alerts, label overlap
   b. Margins, rounded-score agreement, local hour
   c. Partial (segment, hour) counts + partial mismatch samples
5. Merge partials, roll up the grouped views, compute quantiles
6. Audit cross-view consistency
7. Replace all output tables in one transaction

Critical Guarantees:
1. IDEMPOTENT: same snapshot -> identical tables, whatever N_SHARDS is
2. ALL OR NOTHING: a failed run leaves the previous tables untouched
3. NO PARTIAL RUNS: configuration defects stop the run before any I/O

Usage:
    analysis = OverlapAnalysis(
        duckdb_path='data/processed/dse_prod_scores.duckdb',
        source_table='dse_prod_scores',
    )
    result = analysis.run()

    # or
    python -m alert_overlap.evaluation.pipeline --profile channel --shards 4
"""

import argparse
import logging
import sys
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

import pandas as pd
from tqdm import tqdm

from alert_overlap.config import (
    PROFILES,
    ConfigurationError,
    SnapshotIOError,
    get_profile,
    settings,
    validate_quantile_fractions,
    validate_timezone,
)
from alert_overlap.evaluation.alert_policy import AlertPolicy
from alert_overlap.evaluation.consistency_check import check_view_consistency
from alert_overlap.evaluation.metrics import (
    build_summary_views,
    merge_partial_counts,
    partial_counts,
    unbucketed_counts,
)
from alert_overlap.evaluation.quantiles import Samples, diagnostics_mismatch, merge_samples, mismatch_samples
from alert_overlap.evaluation.thresholds import ThresholdTable
from alert_overlap.features.enrichment import IS_FRAUD, enrich_events
from alert_overlap.features.time_utils import HOUR_OF_DAY_LOCAL
from alert_overlap.ingestion.batch_loader import load_scored_events, normalize_types, validate_columns
from alert_overlap.ingestion.segment_filter import SEGMENT_KEY, filter_segments
from alert_overlap.storage.output_writer import write_views_atomically

logger = logging.getLogger(__name__)

ANALYSIS_ROWS_TABLE = "analysis_rows_alerts"


@dataclass
class AnalysisResult:
    """Output tables of one run, in write order, plus run metadata."""
    tables: Dict[str, pd.DataFrame]
    metadata: Dict = field(default_factory=dict)

    def __getitem__(self, name: str) -> pd.DataFrame:
        return self.tables[name]


def shard_bounds(n_rows: int, n_shards: int) -> List[Tuple[int, int]]:
    """Contiguous [start, stop) row ranges, sizes differing by at most one."""
    n_shards = max(1, min(n_shards, n_rows)) if n_rows else 1
    base, extra = divmod(n_rows, n_shards)
    bounds = []
    start = 0
    for i in range(n_shards):
        stop = start + base + (1 if i < extra else 0)
        bounds.append((start, stop))
        start = stop
    return bounds


class OverlapAnalysis:
    """
    Batch comparison of DSE vs PROD alerting over one snapshot.

    Everything configurable comes from Settings unless overridden here.
    """

    def __init__(
        self,
        duckdb_path: Optional[str] = None,
        source_table: Optional[str] = None,
        output_path: Optional[str] = None,
        profile: Optional[str] = None,
        timezone: Optional[str] = None,
        quantile_fractions: Optional[Sequence[float]] = None,
        n_shards: Optional[int] = None,
        max_workers: Optional[int] = None,
        io_retries: Optional[int] = None,
        verbose: bool = False,
    ):
        """
        Validates configuration up front. Raises ConfigurationError before any
        snapshot is read.
        """
        self.duckdb_path = duckdb_path or settings.DUCKDB_PATH
        self.source_table = source_table or settings.SOURCE_TABLE
        self.output_path = output_path or (duckdb_path if duckdb_path else settings.output_path)
        self.profile = get_profile(profile or settings.SEGMENT_PROFILE)
        self.timezone = validate_timezone(timezone or settings.LOCAL_TIMEZONE)
        self.quantile_fractions = validate_quantile_fractions(
            list(quantile_fractions if quantile_fractions is not None else settings.QUANTILE_FRACTIONS)
        )
        self.n_shards = settings.N_SHARDS if n_shards is None else n_shards
        self.max_workers = settings.MAX_WORKERS if max_workers is None else max_workers
        self.io_retries = settings.IO_RETRIES if io_retries is None else io_retries
        self.verbose = verbose

        if self.n_shards < 1:
            raise ConfigurationError(f"n_shards must be >= 1, got {self.n_shards}")
        if self.max_workers < 1:
            raise ConfigurationError(f"max_workers must be >= 1, got {self.max_workers}")

        self.thresholds = ThresholdTable.from_profile(self.profile)
        self.policy = AlertPolicy()

    # ------------------------------------------------------------------
    # Per-shard work
    # ------------------------------------------------------------------

    def _process_shard(self, shard: pd.DataFrame) -> Tuple[pd.DataFrame, pd.DataFrame, Samples]:
        rows = enrich_events(shard, self.thresholds, self.timezone, self.policy)
        return rows, partial_counts(rows), mismatch_samples(rows)

    def _run_shards(self, events: pd.DataFrame) -> List[Tuple[pd.DataFrame, pd.DataFrame, Samples]]:
        shards = [events.iloc[start:stop] for start, stop in shard_bounds(len(events), self.n_shards)]

        if self.max_workers > 1 and len(shards) > 1:
            with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
                # map keeps shard order
                return list(pool.map(self._process_shard, shards))

        return [
            self._process_shard(shard)
            for shard in tqdm(shards, desc="Enriching shards", disable=not self.verbose)
        ]

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    def compute(self, snapshot: pd.DataFrame) -> AnalysisResult:
        """
        Pure part of the run: snapshot in, output tables out. No I/O.

        Raises:
            ConfigurationError: required source column missing
            AssertionError: overlap sets or grouped views inconsistent
        """
        validate_columns(snapshot, self.profile)
        events = filter_segments(normalize_types(snapshot), self.profile)

        results = self._run_shards(events)

        rows = pd.concat([r[0] for r in results], ignore_index=True)
        self.policy.verify_overlap_disjoint(rows)

        counts = merge_partial_counts(r[1] for r in results)
        samples = merge_samples(r[2] for r in results)

        key_column = self.profile.key_column
        views = build_summary_views(counts, key_column, self.profile.summary_table)
        check_view_consistency(
            views, key_column, self.profile.summary_table, unbucketed_counts(counts, key_column)
        )

        diagnostics = diagnostics_mismatch(samples, key_column, self.quantile_fractions)

        tables = {
            ANALYSIS_ROWS_TABLE: rows.drop(columns=[IS_FRAUD]),
            self.profile.summary_table: views[self.profile.summary_table],
            "summary_alert_overlap": views["summary_alert_overlap"],
            "summary_fraud_in_alerts": views["summary_fraud_in_alerts"],
            "diagnostics_mismatch": diagnostics,
            "hourly_distribution": views["hourly_distribution"],
        }

        metadata = {
            'source_rows': len(snapshot),
            'analysed_rows': len(rows),
            'dropped_rows': len(snapshot) - len(rows),
            'rows_without_hour': int(rows[HOUR_OF_DAY_LOCAL].isna().sum()),
            'segments': sorted(rows[SEGMENT_KEY].unique().tolist()),
            'shards': len(results),
            'profile': self.profile.name,
        }
        if metadata['rows_without_hour']:
            logger.info(f"{metadata['rows_without_hour']:,} rows have no parseable timestamp "
                        f"(kept, excluded from hourly_distribution)")

        return AnalysisResult(tables=tables, metadata=metadata)

    def run(self) -> AnalysisResult:
        """Read snapshot, compute, replace all output tables atomically."""
        if self.verbose:
            print(f"{'=' * 70}")
            print(f"ALERT OVERLAP ANALYSIS")
            print(f"{'=' * 70}")
            print(f"   Snapshot: {self.duckdb_path} :: {self.source_table}")
            print(f"   Profile:  {self.profile.name} ({', '.join(self.profile.canonical_keys())})")
            print(f"   Timezone: {self.timezone}")
            print(f"   Shards:   {self.n_shards} (workers: {self.max_workers})")

        snapshot = load_scored_events(self.duckdb_path, self.source_table, retries=self.io_retries)
        result = self.compute(snapshot)
        write_views_atomically(self.output_path, result.tables, retries=self.io_retries)

        if self.verbose:
            self._print_summary(result)

        return result

    def _print_summary(self, result: AnalysisResult):
        meta = result.metadata
        print(f"\n✅ Analysis complete")
        print(f"   Source rows:   {meta['source_rows']:,}")
        print(f"   Analysed rows: {meta['analysed_rows']:,} (dropped {meta['dropped_rows']:,} unrecognized)")
        print(f"   No local hour: {meta['rows_without_hour']:,}")

        overlap = result["summary_alert_overlap"]
        print(f"\n📊 Alert overlap:")
        for _, row in overlap.iterrows():
            pct = row["pct_both_over_all"]
            pct_text = "n/a" if pd.isna(pct) else f"{pct:.2%}"
            print(f"   {row[self.profile.key_column]:<15} n={row['n']:,} both={row['both_alerts']:,} "
                  f"dse_only={row['dse_only']:,} prod_only={row['prod_only']:,} (both {pct_text})")

        print(f"\n💾 Tables written to {self.output_path}:")
        for name, table in result.tables.items():
            print(f"   {name}: {len(table):,} rows")
        print(f"{'=' * 70}\n")


def configure_logging(level: str, log_file: Optional[str] = None):
    handlers = [logging.StreamHandler()]
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers,
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Compare DSE vs PROD alerting over a scored-event snapshot")
    parser.add_argument("--db", default=None, help="DuckDB file holding the snapshot")
    parser.add_argument("--source-table", default=None, help="Snapshot table name")
    parser.add_argument("--output-db", default=None, help="DuckDB file for output tables (default: --db)")
    parser.add_argument("--profile", default=None, choices=sorted(PROFILES), help="Segment profile")
    parser.add_argument("--shards", type=int, default=None, help="Number of shards")
    parser.add_argument("--workers", type=int, default=None, help="Worker threads for shards")
    parser.add_argument("--quiet", action="store_true", help="No console summary")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run the analysis once. Exit code 0 on success, 1 on a configuration or I/O failure."""
    args = build_parser().parse_args(argv)

    configure_logging(settings.LOG_LEVEL, settings.LOG_FILE)

    try:
        analysis = OverlapAnalysis(
            duckdb_path=args.db,
            source_table=args.source_table,
            output_path=args.output_db,
            profile=args.profile,
            n_shards=args.shards,
            max_workers=args.workers,
            verbose=not args.quiet,
        )
        analysis.run()
    except (ConfigurationError, SnapshotIOError) as e:
        logger.error(f"❌ Run failed: {e}")
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
