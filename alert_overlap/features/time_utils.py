from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import pandas as pd

EVT_TS_UTC = "evt_ts_utc"
HOUR_OF_DAY_LOCAL = "hour_of_day_local"

# "2025-06-01 12:00:00 UTC", "2025-06-01T12:00:00 Europe/London"
ZONE_SUFFIX = (
    r"^(?P<stamp>\d{4}-\d{2}-\d{2}(?:[T ]\d{2}:\d{2}(?::\d{2}(?:\.\d+)?)?)?)"
    r"\s+(?P<zone>[A-Za-z][A-Za-z0-9_+\-]*(?:/[A-Za-z0-9_+\-]+)*)$"
)


def _parse_zone_suffixed(text: pd.Series) -> pd.Series:
    """
    Civil time followed by a zone name. Each value is localized in its own
    zone; an unknown zone, or a wall time skipped or repeated by DST, gives NaT.
    """
    out = pd.Series(pd.NaT, index=text.index, dtype="datetime64[ns, UTC]")
    parts = text.str.extract(ZONE_SUFFIX).dropna()

    for zone, group in parts.groupby("zone"):
        try:
            ZoneInfo(zone)
        except (ZoneInfoNotFoundError, ValueError):
            continue
        local = pd.to_datetime(group["stamp"].astype(str), errors="coerce", format="ISO8601")
        instants = local.dt.tz_localize(zone, ambiguous="NaT", nonexistent="NaT").dt.tz_convert("UTC")
        out.loc[group.index] = instants.astype("datetime64[ns, UTC]")
    return out


def parse_event_timestamps(raw: pd.Series) -> pd.Series:
    """
    Parses event_received_at into absolute UTC instants.

    Logic:
    1. ISO-8601 text; values without an offset are taken as UTC
    2. Values still unparsed are tried as civil time + zone name
       ("2025-06-01 12:00:00 UTC", "... Europe/London")
    3. Anything else unparseable (or null) becomes NaT. The row is kept.
    """
    if pd.api.types.is_datetime64_any_dtype(raw):
        parsed = pd.to_datetime(raw, utc=True)
    else:
        text = raw.astype("string").str.strip()
        parsed = pd.to_datetime(text, errors="coerce", utc=True, format="ISO8601")

        # empty or all-null input can come back untyped
        if not isinstance(parsed.dtype, pd.DatetimeTZDtype):
            parsed = pd.Series(pd.NaT, index=raw.index, dtype="datetime64[ns, UTC]")

        retry = parsed.isna() & text.notna()
        if retry.any():
            parsed = parsed.astype("datetime64[ns, UTC]")
            parsed.loc[retry] = _parse_zone_suffixed(text[retry])

    return parsed


def local_hour_of_day(instants_utc: pd.Series, timezone: str) -> pd.Series:
    """
    Hour of day (0-23) in a named civil time zone, as nullable Int64.

    Uses the zone's historical DST rules, not a fixed offset: 00:30Z is hour 0
    in Europe/London in January but hour 1 in July. NaT gives <NA>.
    """
    local = instants_utc.dt.tz_convert(timezone)
    return local.dt.hour.astype("Int64")


def to_naive_utc(instants_utc: pd.Series) -> pd.Series:
    """Drops the tz marker after conversion to UTC (storage-friendly TIMESTAMP)."""
    return instants_utc.dt.tz_convert("UTC").dt.tz_localize(None)
