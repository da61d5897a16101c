"""Row normalization: raw spreadsheet cells -> typed referral records.

Per-cell coercion never raises. Unparseable dates and blank strings become
None, bad visit counts become 0, and a row is admitted only when
created_date and referring_doctor survive coercion. Rejected rows are dropped
from the output; NormalizationResult.dropped keeps the row numbers and the
missing fields for callers that want them.
"""

from __future__ import annotations

import math
import re
from dataclasses import asdict, dataclass, field, fields
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

import numpy as np
import pandas as pd

from referrals.columns import (
    DATE_FIELDS,
    DEFAULT_SYNONYMS,
    INTEGER_FIELDS,
    REQUIRED_FIELDS,
    STRING_FIELDS,
    ColumnMapping,
    resolve_columns,
)

# Spreadsheet serial day 0 (1900 date system, leap-year bug included).
EXCEL_EPOCH = "1899-12-30"
# Words the date parser resolves against the clock.
RELATIVE_DATE_WORDS = frozenset({"now", "today", "tomorrow", "yesterday"})
# A four-digit year, or a short year closing a numeric d/m/y date.
_YEAR_PATTERN = re.compile(r"\d{4}|\d{1,2}[/.-]\d{1,2}[/.-]\d{2}(?!\d)")


class IngestError(ValueError):
    """Batch-level failure: the table cannot be normalized at all."""


class EmptyTableError(IngestError):
    """The table has no header row to resolve."""


@dataclass(frozen=True)
class ReferralRecord:
    created_date: Optional[str] = None
    referring_doctor: Optional[str] = None
    referring_doctor_npi: Optional[str] = None
    facility: Optional[str] = None
    primary_insurance: Optional[str] = None
    discipline: Optional[str] = None
    therapist: Optional[str] = None
    arrived_visits: int = 0
    scheduled_visits: int = 0
    initial_eval_date: Optional[str] = None
    first_scheduled_date: Optional[str] = None
    first_arrived_date: Optional[str] = None
    discharge_date: Optional[str] = None
    case_status: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


RECORD_COLUMNS: List[str] = [f.name for f in fields(ReferralRecord)]


@dataclass(frozen=True)
class DroppedRow:
    row_number: int  # 1-based, counting data rows only
    missing: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class NormalizationResult:
    records: List[ReferralRecord]
    mapping: ColumnMapping
    total_rows: int = 0
    dropped: List[DroppedRow] = field(default_factory=list)

    @property
    def admitted_count(self) -> int:
        return len(self.records)

    @property
    def dropped_count(self) -> int:
        return len(self.dropped)

    def to_frame(self) -> pd.DataFrame:
        return records_frame(self.records)


def records_frame(records: Iterable[ReferralRecord]) -> pd.DataFrame:
    return pd.DataFrame([r.to_dict() for r in records], columns=RECORD_COLUMNS)


# ---------------- Cell coercion ----------------
def is_blank(value: object) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    try:
        return bool(pd.isna(value))
    except (TypeError, ValueError):
        return False


def _calendar_date(ts: pd.Timestamp, tz: Optional[str]) -> pd.Timestamp:
    if ts.tzinfo is None:
        return ts
    if tz:
        try:
            return ts.tz_convert(tz)
        except (KeyError, ValueError):
            # unknown zone name; read the date in host-local time instead
            pass
    return pd.Timestamp(ts.to_pydatetime().astimezone())


def _has_explicit_year(text: str) -> bool:
    if text.lower() in RELATIVE_DATE_WORDS:
        return False
    return _YEAR_PATTERN.search(text) is not None


def to_iso_date(value: object, tz: Optional[str] = None) -> Optional[str]:
    """Parse a cell as a calendar date and format it as YYYY-MM-DD.

    Naive values keep their wall-clock date. Aware values are read in `tz`,
    or in the host-local zone when `tz` is None. Numbers are spreadsheet
    serial days. Strings must carry a year; "today" or a bare month name
    would otherwise resolve against the clock.
    """
    if is_blank(value) or isinstance(value, (bool, np.bool_)):
        return None
    try:
        if isinstance(value, (int, float, np.integer, np.floating)):
            ts = pd.Timestamp(EXCEL_EPOCH) + pd.to_timedelta(float(value), unit="D")
        elif isinstance(value, str):
            text = value.strip()
            if not _has_explicit_year(text):
                return None
            ts = pd.to_datetime(text, errors="coerce")
        else:
            ts = pd.to_datetime(value, errors="coerce")
    except (TypeError, ValueError, OverflowError):
        return None
    if not isinstance(ts, (pd.Timestamp, datetime)) or pd.isna(ts):
        return None
    ts = _calendar_date(pd.Timestamp(ts), tz)
    return f"{ts.year:04d}-{ts.month:02d}-{ts.day:02d}"


def to_clean_str(value: object) -> Optional[str]:
    if is_blank(value):
        return None
    if isinstance(value, (float, np.floating)) and float(value).is_integer():
        # 1234567890.0 from a numeric NPI column
        value = int(value)
    text = str(value).strip()
    return text or None


def to_count(value: object) -> int:
    if is_blank(value) or isinstance(value, (bool, np.bool_)):
        return 0
    if isinstance(value, str):
        value = value.strip()
    try:
        num = float(pd.to_numeric(value, errors="coerce"))
    except (TypeError, ValueError, OverflowError):
        return 0
    if math.isnan(num) or math.isinf(num) or num < 0:
        return 0
    return int(num)


# ---------------- Rows ----------------
def _pick(mapping: ColumnMapping, row: Mapping[Any, Any], key: str) -> object:
    header = mapping.header_for(key)
    if header is None:
        return None
    return row.get(header)


def _coerce_row(mapping: ColumnMapping, row: Mapping[Any, Any], tz: Optional[str]) -> ReferralRecord:
    values: Dict[str, Any] = {}
    for key in DATE_FIELDS:
        values[key] = to_iso_date(_pick(mapping, row, key), tz)
    for key in STRING_FIELDS:
        values[key] = to_clean_str(_pick(mapping, row, key))
    for key in INTEGER_FIELDS:
        values[key] = to_count(_pick(mapping, row, key))
    if values["created_date"] is None:
        values["created_date"] = values["initial_eval_date"]
    return ReferralRecord(**values)


def _missing_required(record: ReferralRecord) -> List[str]:
    return [key for key in REQUIRED_FIELDS if getattr(record, key) is None]


def normalize_row(
    mapping: ColumnMapping,
    row: Mapping[Any, Any],
    tz: Optional[str] = None,
) -> Optional[ReferralRecord]:
    """Coerce one raw row; None when the row is not admissible."""
    record = _coerce_row(mapping, row, tz)
    if _missing_required(record):
        return None
    return record


def normalize_rows(
    headers: Sequence[object],
    rows: Iterable[Mapping[Any, Any]],
    tz: Optional[str] = None,
    synonyms: Mapping[str, Sequence[str]] = DEFAULT_SYNONYMS,
) -> NormalizationResult:
    if not headers:
        raise EmptyTableError("No header row found in the uploaded table")

    mapping = resolve_columns(headers, synonyms)
    records: List[ReferralRecord] = []
    dropped: List[DroppedRow] = []
    total = 0
    for total, row in enumerate(rows, start=1):
        record = _coerce_row(mapping, row, tz)
        missing = _missing_required(record)
        if missing:
            dropped.append(DroppedRow(row_number=total, missing=missing))
            continue
        records.append(record)
    return NormalizationResult(records=records, mapping=mapping, total_rows=total, dropped=dropped)
