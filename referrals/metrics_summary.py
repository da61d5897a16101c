from __future__ import annotations

from dataclasses import asdict
from typing import Any, Dict, List, Optional

import pandas as pd

from referrals.charts import monthly_referrals_chart
from referrals.filters import DashboardFilters, apply_dashboard_filters, filter_options

TOP_DOCTORS_N = 10


def _pct(part: int, total: int) -> float:
    return round(part / total * 100, 1) if total else 0.0


def _count_present(df: pd.DataFrame, col: str) -> int:
    if col not in df.columns:
        return 0
    return int(df[col].notna().sum())


def compute_kpis(df: pd.DataFrame) -> Optional[Dict[str, Any]]:
    if df.empty:
        return None
    total = int(len(df))

    doctors = df.get("referring_doctor", pd.Series(dtype=object)).dropna().astype(str).str.strip()
    unique_doctors = int(doctors[doctors.str.len() > 0].nunique())

    discipline = df.get("discipline", pd.Series(dtype=object)).astype("string").str.upper()
    pt = int(discipline.eq("PT").fillna(False).sum())
    ot = int(discipline.eq("OT").fillna(False).sum())

    scheduled = _count_present(df, "first_scheduled_date")
    arrived = _count_present(df, "first_arrived_date")

    created = pd.to_datetime(df.get("created_date", pd.Series(dtype=object)), errors="coerce").dropna()
    span_start = span_end = None
    per_day = None
    if not created.empty:
        start, end = created.min(), created.max()
        days = max(1, int((end - start).days) + 1)
        per_day = round(total / days, 1)
        span_start, span_end = start.date().isoformat(), end.date().isoformat()

    return {
        "total": total,
        "unique_doctors": unique_doctors,
        "pt": pt,
        "ot": ot,
        "scheduled": scheduled,
        "scheduled_pct": _pct(scheduled, total),
        "arrived": arrived,
        "arrived_pct": _pct(arrived, total),
        "per_day": per_day,
        "span_start": span_start,
        "span_end": span_end,
    }


def compute_top_doctors(df: pd.DataFrame, top_n: int = TOP_DOCTORS_N) -> List[Dict[str, Any]]:
    if df.empty:
        return []
    doctors = df.get("referring_doctor", pd.Series(index=df.index, dtype=object))
    names = doctors.fillna("Unknown").astype(str).str.strip().replace("", "Unknown")
    counts = names.value_counts(sort=False).reset_index()
    counts.columns = ["referring_doctor", "count"]
    # stable: ties keep first-seen order
    counts = counts.sort_values("count", ascending=False, kind="stable").head(top_n)
    return [{"referring_doctor": str(name), "count": int(n)} for name, n in counts.itertuples(index=False, name=None)]


def referrals_by_month(df: pd.DataFrame) -> pd.DataFrame:
    if df.empty or "created_date" not in df.columns:
        return pd.DataFrame(columns=["month", "referrals"])
    created = pd.to_datetime(df["created_date"], errors="coerce").dropna()
    if created.empty:
        return pd.DataFrame(columns=["month", "referrals"])
    months = created.dt.to_period("M").astype(str)
    return months.value_counts().sort_index().rename_axis("month").reset_index(name="referrals")


def compute_summary(df: pd.DataFrame, filters: DashboardFilters) -> Dict[str, Any]:
    filtered = apply_dashboard_filters(df, filters)

    charts: Dict[str, Any] = {}
    monthly = referrals_by_month(filtered)
    if not monthly.empty:
        charts["referrals_by_month"] = monthly_referrals_chart(monthly)

    return {
        "filters": asdict(filters),
        "total_rows": int(len(df)),
        "filtered_rows": int(len(filtered)),
        "kpis": compute_kpis(filtered),
        "top_doctors": compute_top_doctors(filtered),
        "options": filter_options(df),
        "charts": charts,
    }
