from typing import Optional, Any
from pydantic import BaseModel, ConfigDict, field_validator

# --- Column names in the scored-event snapshot ---
# Scores are x1000 scaled. "dse_*" is the reference pipeline, the bare names are production.
LIFECYCLE_ID = "lifecycle_id"
CUSTOMER_ID = "customer_id"
EVENT_RECEIVED_AT = "event_received_at"

DSE_RAW = "dse_raw_score_X1000"
DSE_MT = "dse_mt_score_X1000"
PROD_RAW = "raw_score_X1000"
PROD_MT = "mt_score_X1000"

DSE_RAW_ROUNDED = "dse_raw_score_X1000_rounded"
DSE_MT_ROUNDED = "dse_mt_score_X1000_rounded"
PROD_RAW_ROUNDED = "raw_score_X1000_rounded"
PROD_MT_ROUNDED = "mt_score_X1000_rounded"

FLAG_FRAUD = "FLAG_FRAUD"
FRAUD_TYPE = "FRAUD_TYPE"
ACTUAL_FRAUD_REASON = "ACTUAL_FRAUD_REASON"

SCORE_COLUMNS = [DSE_RAW, DSE_MT, PROD_RAW, PROD_MT]
ROUNDED_COLUMNS = [DSE_RAW_ROUNDED, DSE_MT_ROUNDED, PROD_RAW_ROUNDED, PROD_MT_ROUNDED]

# (raw score, secondary score) per pipeline
PIPELINE_SCORES = {
    "dse": (DSE_RAW, DSE_MT),
    "prod": (PROD_RAW, PROD_MT),
}

# The segment label column is required too, but which one depends on the profile.
REQUIRED_COLUMNS = [LIFECYCLE_ID, CUSTOMER_ID, EVENT_RECEIVED_AT, *SCORE_COLUMNS, FLAG_FRAUD]

OPTIONAL_COLUMNS = [
    *ROUNDED_COLUMNS,
    FRAUD_TYPE,
    ACTUAL_FRAUD_REASON,
    "tbt_tran_amt",
    "decision",
    "Portfolio",
    "customer_portfolio_channel",
]


class ScoredEvent(BaseModel):
    """
    One row of the scored-event snapshot.

    Scores are optional: a missing score is a row-level anomaly, not a
    validation failure. Extra source columns are let through.
    """
    model_config = ConfigDict(extra="allow")

    # --- Identity ---
    lifecycle_id: str
    customer_id: str

    # --- Segment labels (one of them drives segmentation) ---
    Portfolio: Optional[str] = None
    customer_portfolio_channel: Optional[str] = None

    # Kept as text: unparseable values are handled downstream, not rejected here
    event_received_at: Optional[str] = None

    # --- Scores (x1000) ---
    dse_raw_score_X1000: Optional[float] = None
    dse_mt_score_X1000: Optional[float] = None
    raw_score_X1000: Optional[float] = None
    mt_score_X1000: Optional[float] = None

    dse_raw_score_X1000_rounded: Optional[float] = None
    dse_mt_score_X1000_rounded: Optional[float] = None
    raw_score_X1000_rounded: Optional[float] = None
    mt_score_X1000_rounded: Optional[float] = None

    # --- Labels ---
    FLAG_FRAUD: Optional[int] = None
    FRAUD_TYPE: Optional[str] = None
    ACTUAL_FRAUD_REASON: Optional[str] = None

    # --- Business fields ---
    tbt_tran_amt: Optional[float] = None
    decision: Optional[str] = None

    @field_validator("lifecycle_id", "customer_id", mode="before")
    @classmethod
    def force_string_id(cls, v: Any) -> str:
        return str(v)

    @field_validator("event_received_at", mode="before")
    @classmethod
    def timestamp_as_text(cls, v: Any) -> Optional[str]:
        if v is None:
            return None
        if hasattr(v, "isoformat"):
            return v.isoformat()
        return str(v)

    @field_validator("FLAG_FRAUD", mode="before")
    @classmethod
    def fraud_flag_as_int(cls, v: Any) -> Optional[int]:
        if v is None:
            return None
        if isinstance(v, bool):
            return int(v)
        try:
            value = float(v)
        except (TypeError, ValueError):
            return None
        # same rule as normalize_types: only whole numbers are flag values
        if not value.is_integer():
            return None
        return int(value)
