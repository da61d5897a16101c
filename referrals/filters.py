from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date
from typing import Any, Dict, Iterable, List, Optional

import pandas as pd

from referrals.normalizer import RECORD_COLUMNS

ALL = "ALL"
_LEADING_INT = re.compile(r"\s*[+-]?\d+")


@dataclass(frozen=True)
class LatestFilters:
    """Substring filters for the latest-data endpoint."""

    facility: str = ""
    discipline: str = ""
    status: str = ""
    limit: Optional[int] = None


@dataclass(frozen=True)
class DashboardFilters:
    """Exact-match dashboard filters; "ALL" disables a filter."""

    discipline: str = ALL
    facility: str = ALL
    insurance: str = ALL


def _as_positive_int(value: object) -> Optional[int]:
    # leading digits count, so "5abc" reads as 5
    match = _LEADING_INT.match(str(value)) if value is not None else None
    if match is None:
        return None
    out = int(match.group(0))
    return out if out > 0 else None


def _choice(value: object) -> str:
    text = str(value).strip() if value is not None else ""
    return text if text and text.upper() != ALL else ALL


def normalize_latest_filters(raw: dict) -> LatestFilters:
    return LatestFilters(
        facility=(raw.get("facility") or "").strip(),
        discipline=(raw.get("discipline") or "").strip(),
        status=(raw.get("status") or "").strip(),
        limit=_as_positive_int(raw.get("limit")),
    )


def normalize_dashboard_filters(raw: dict) -> DashboardFilters:
    discipline = _choice(raw.get("discipline"))
    return DashboardFilters(
        discipline=discipline.upper(),
        facility=_choice(raw.get("facility")),
        insurance=_choice(raw.get("insurance")),
    )


def records_to_frame(records: Iterable[Dict[str, Any]]) -> pd.DataFrame:
    df = pd.DataFrame(list(records))
    for col in RECORD_COLUMNS:
        if col not in df.columns:
            df[col] = None
    return df


def _contains(series: pd.Series, needle: str) -> pd.Series:
    return series.astype("string").str.lower().str.contains(needle.lower(), regex=False, na=False).astype(bool)


def apply_latest_filters(df: pd.DataFrame, filters: LatestFilters) -> pd.DataFrame:
    out = df
    if out.empty:
        return out
    for col, needle in [("facility", filters.facility), ("discipline", filters.discipline), ("case_status", filters.status)]:
        if needle and col in out.columns:
            out = out[_contains(out[col], needle)]
    if filters.limit:
        out = out.head(filters.limit)
    return out


def apply_dashboard_filters(df: pd.DataFrame, filters: DashboardFilters) -> pd.DataFrame:
    out = df
    if out.empty:
        return out
    if filters.discipline != ALL and "discipline" in out.columns:
        out = out[out["discipline"].astype("string").str.upper().eq(filters.discipline).fillna(False).astype(bool)]
    if filters.facility != ALL and "facility" in out.columns:
        out = out[out["facility"].eq(filters.facility)]
    if filters.insurance != ALL and "primary_insurance" in out.columns:
        out = out[out["primary_insurance"].eq(filters.insurance)]
    return out


def filter_options(df: pd.DataFrame) -> Dict[str, List[str]]:
    def _distinct(col: str, upper: bool = False) -> List[str]:
        if df.empty or col not in df.columns:
            return []
        values = df[col].dropna().astype(str)
        values = values[values.str.len() > 0]
        if upper:
            values = values.str.upper()
        return values.unique().tolist()

    return {
        # discipline keeps first-seen order; the others are sorted
        "discipline": [ALL] + _distinct("discipline", upper=True),
        "facility": [ALL] + sorted(_distinct("facility")),
        "insurance": [ALL] + sorted(_distinct("primary_insurance")),
    }


def export_columns(df: pd.DataFrame) -> List[str]:
    extra = sorted(c for c in df.columns if c not in RECORD_COLUMNS)
    return list(RECORD_COLUMNS) + extra


def records_to_csv(df: pd.DataFrame) -> str:
    cols = export_columns(df)
    out = df.reindex(columns=cols)
    return out.to_csv(index=False)


def export_filename(scope: str, today: Optional[date] = None) -> str:
    stamp = (today or date.today()).isoformat()
    return f"referrals_{scope}_{stamp}.csv"
