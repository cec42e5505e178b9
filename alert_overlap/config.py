"""
Configuration management using Pydantic Settings.
Loads run settings from environment variables or .env file.

Segment profiles (recognized labels + per-segment thresholds) are business
configuration, not logic. They live here as immutable pydantic models and are
picked at startup with SEGMENT_PROFILE.

Usage:
    # .env file
    DUCKDB_PATH=data/processed/dse_prod_scores.duckdb
    SEGMENT_PROFILE=portfolio
    N_SHARDS=4

    # In code
    from alert_overlap.config import settings, get_profile
    profile = get_profile(settings.SEGMENT_PROFILE)
"""
from typing import Dict, List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, ConfigDict, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ConfigurationError(ValueError):
    """Fatal pre-run defect: bad settings, missing thresholds, missing source columns."""


class SnapshotIOError(RuntimeError):
    """Reading the source snapshot or writing the output tables failed after all retries."""


class SegmentThreshold(BaseModel):
    """Thresholds for one segment, on the x1000 score scale."""
    model_config = ConfigDict(frozen=True)

    th_raw_x1000: int = Field(..., ge=0)
    th_mt_x1000: int = Field(..., ge=0)


class SegmentProfile(BaseModel):
    """
    One way of slicing the scored events into segments.

    labels maps an uppercased raw label to its canonical key. For portfolio
    names the key is the label itself; a channel-coded source can point several
    codes at one key.
    """
    model_config = ConfigDict(frozen=True)

    name: str
    segment_column: str = Field(..., description="Source column holding the raw segment label")
    key_column: str = Field(..., description="Name of the segment key column in summary tables")
    summary_table: str = Field(..., description="Output table for the by-segment summary")
    labels: Dict[str, str]
    thresholds: Dict[str, SegmentThreshold]

    def canonical_keys(self) -> List[str]:
        return sorted(set(self.labels.values()))


PORTFOLIO_PROFILE = SegmentProfile(
    name="portfolio",
    segment_column="Portfolio",
    key_column="portfolio",
    summary_table="summary_by_portfolio",
    labels={
        "HSBC DIGITAL": "HSBC DIGITAL",
        "FD DIGITAL": "FD DIGITAL",
        "CMB DIGITAL": "CMB DIGITAL",
    },
    thresholds={
        "HSBC DIGITAL": SegmentThreshold(th_raw_x1000=980, th_mt_x1000=765),
        "FD DIGITAL": SegmentThreshold(th_raw_x1000=950, th_mt_x1000=735),
        "CMB DIGITAL": SegmentThreshold(th_raw_x1000=935, th_mt_x1000=760),
    },
)

CHANNEL_PROFILE = SegmentProfile(
    name="channel",
    segment_column="customer_portfolio_channel",
    key_column="customer_portfolio_channel",
    summary_table="summary_by_channel",
    labels={"DG": "DG", "FD": "FD", "CMB": "CMB"},
    thresholds={
        "DG": SegmentThreshold(th_raw_x1000=980, th_mt_x1000=765),
        "FD": SegmentThreshold(th_raw_x1000=950, th_mt_x1000=735),
        "CMB": SegmentThreshold(th_raw_x1000=935, th_mt_x1000=760),
    },
)

PROFILES: Dict[str, SegmentProfile] = {
    PORTFOLIO_PROFILE.name: PORTFOLIO_PROFILE,
    CHANNEL_PROFILE.name: CHANNEL_PROFILE,
}


def get_profile(name: str) -> SegmentProfile:
    """Look up a segment profile by name (case-insensitive)."""
    try:
        return PROFILES[name.lower()]
    except KeyError:
        raise ConfigurationError(
            f"Unknown segment profile '{name}'. Expected one of {sorted(PROFILES)}"
        ) from None


def validate_timezone(name: str) -> str:
    """Fail fast if the civil time zone used for hour bucketing does not exist."""
    try:
        ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        raise ConfigurationError(f"Unknown time zone '{name}'") from None
    return name


def validate_quantile_fractions(fractions: List[float]) -> List[float]:
    if not fractions:
        raise ConfigurationError("QUANTILE_FRACTIONS must not be empty")
    for fraction in fractions:
        if fraction <= 0 or fraction > 1:
            raise ConfigurationError(f"Quantile fraction must be in (0, 1], got {fraction}")
    return sorted(fractions)


class Settings(BaseSettings):
    """
    Run configuration loaded from environment variables.

    Usage:
        # .env file
        SOURCE_TABLE=dse_prod_scores
        LOCAL_TIMEZONE=Europe/London

        # In code
        from alert_overlap.config import settings
        print(settings.SOURCE_TABLE)
    """
    # Input snapshot
    DUCKDB_PATH: str = "data/processed/dse_prod_scores.duckdb"
    SOURCE_TABLE: str = "dse_prod_scores"

    # Output tables (same database as the input unless set)
    OUTPUT_DUCKDB_PATH: Optional[str] = None

    # Segmentation and bucketing
    SEGMENT_PROFILE: str = "portfolio"
    LOCAL_TIMEZONE: str = "Europe/London"
    QUANTILE_FRACTIONS: List[float] = [0.10, 0.50, 0.90]

    # Sharding
    N_SHARDS: int = 1
    MAX_WORKERS: int = 1

    # Whole-operation retries for snapshot read / output write
    IO_RETRIES: int = 2

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FILE: Optional[str] = None

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @property
    def output_path(self) -> str:
        return self.OUTPUT_DUCKDB_PATH or self.DUCKDB_PATH


# Global settings instance
settings = Settings()
