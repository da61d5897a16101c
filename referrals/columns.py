"""Column resolution: spreadsheet headers -> canonical referral fields.

Headers and synonyms are compared on their normalized form (lowercase, ASCII
letters and digits only), so "Case Facility", "CASEFACILITY" and
"case_facility" are the same header.

Public API:
  normalize_header(text) -> str
  resolve_columns(headers, synonyms=DEFAULT_SYNONYMS) -> ColumnMapping
  available_columns(headers) -> list[str]
  validate_required_columns(headers) -> (bool, list[str])
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Iterable, List, Mapping, Optional, Sequence, Tuple

import pandas as pd


@dataclass(frozen=True)
class CanonicalField:
    key: str
    type: str  # "date" | "string" | "integer"
    synonyms: Tuple[str, ...]
    required: bool = False


# Schema order is also the resolution and CSV export order.
CANONICAL_FIELDS: Tuple[CanonicalField, ...] = (
    CanonicalField(
        "created_date",
        "date",
        ("Created Date", "created_date", "Created", "Case Created", "Date Created"),
        required=True,
    ),
    CanonicalField(
        "referring_doctor",
        "string",
        ("Referring Doctor", "Doctor", "Physician", "Referrer", "Referring Physician"),
        required=True,
    ),
    CanonicalField("referring_doctor_npi", "string", ("Referring Doctor NPI", "NPI", "Doctor NPI", "Physician NPI")),
    CanonicalField("facility", "string", ("Case Facility", "Facility", "Location", "Clinic", "Center")),
    CanonicalField("primary_insurance", "string", ("Primary Insurance", "Insurance", "Plan", "Payer")),
    CanonicalField("discipline", "string", ("Discipline", "Dept", "Department", "Therapy Type", "Treatment Type")),
    CanonicalField(
        "therapist",
        "string",
        ("Case Therapist", "Therapist", "Provider", "Clinician", "Treating Therapist"),
    ),
    CanonicalField("arrived_visits", "integer", ("Arrived Visits", "Completed Visits", "Visits Completed")),
    CanonicalField("scheduled_visits", "integer", ("Scheduled Visits", "Total Visits", "Visits Scheduled")),
    CanonicalField(
        "initial_eval_date",
        "date",
        ("Date of Initial Eval", "Initial Eval", "IE Date", "Initial Eval Date", "Eval Date", "Evaluation Date"),
    ),
    CanonicalField(
        "first_scheduled_date",
        "date",
        ("Date of First Scheduled Visit", "First Scheduled Date", "First Visit Date"),
    ),
    CanonicalField(
        "first_arrived_date",
        "date",
        ("Date of First Arrived Visit", "First Arrived Date", "First Treatment Date"),
    ),
    CanonicalField("discharge_date", "date", ("Discharge Date", "End Date", "Completion Date")),
    CanonicalField("case_status", "string", ("Case Status", "Status", "Treatment Status")),
)

FIELD_KEYS: Tuple[str, ...] = tuple(f.key for f in CANONICAL_FIELDS)
FIELDS_BY_KEY: Mapping[str, CanonicalField] = MappingProxyType({f.key: f for f in CANONICAL_FIELDS})
REQUIRED_FIELDS: Tuple[str, ...] = tuple(f.key for f in CANONICAL_FIELDS if f.required)
DATE_FIELDS: Tuple[str, ...] = tuple(f.key for f in CANONICAL_FIELDS if f.type == "date")
STRING_FIELDS: Tuple[str, ...] = tuple(f.key for f in CANONICAL_FIELDS if f.type == "string")
INTEGER_FIELDS: Tuple[str, ...] = tuple(f.key for f in CANONICAL_FIELDS if f.type == "integer")

DEFAULT_SYNONYMS: Mapping[str, Tuple[str, ...]] = MappingProxyType({f.key: f.synonyms for f in CANONICAL_FIELDS})

_NON_ALNUM = re.compile(r"[^a-z0-9]")


def normalize_header(text: object) -> str:
    if text is None:
        return ""
    try:
        if pd.isna(text):
            return ""
    except (TypeError, ValueError):
        pass
    return _NON_ALNUM.sub("", str(text).lower())


@dataclass(frozen=True)
class ColumnMapping:
    """Canonical field key -> header found in one input table."""

    bindings: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "bindings", MappingProxyType(dict(self.bindings)))

    def __contains__(self, key: object) -> bool:
        return key in self.bindings

    def __len__(self) -> int:
        return len(self.bindings)

    def header_for(self, key: str) -> Optional[str]:
        return self.bindings.get(key)

    def keys(self) -> List[str]:
        return [k for k in FIELD_KEYS if k in self.bindings] + [k for k in self.bindings if k not in FIELDS_BY_KEY]

    def missing_required(self) -> List[str]:
        return [k for k in REQUIRED_FIELDS if k not in self.bindings]

    def unmatched_headers(self, headers: Iterable[object]) -> List[str]:
        bound = set(self.bindings.values())
        return [str(h) for h in headers if h not in bound]

    def as_dict(self) -> dict:
        return {k: self.bindings[k] for k in self.keys()}


def resolve_columns(
    headers: Sequence[object],
    synonyms: Mapping[str, Sequence[str]] = DEFAULT_SYNONYMS,
) -> ColumnMapping:
    """Bind each canonical field to the first header matching its synonyms.

    Headers are scanned in their original order and the first one equal to
    any of the field's synonyms wins. A header may be bound to more than one
    field when it matches several fields' synonyms.
    """
    normalized = [normalize_header(h) for h in headers]
    bindings = {}
    for key, candidates in synonyms.items():
        targets = {t for t in (normalize_header(c) for c in candidates) if t}
        idx = next((i for i, n in enumerate(normalized) if n in targets), None)
        if idx is not None:
            bindings[key] = headers[idx]
    return ColumnMapping(bindings)


def available_columns(headers: Sequence[object]) -> List[str]:
    return resolve_columns(headers).keys()


def validate_required_columns(headers: Sequence[object]) -> Tuple[bool, List[str]]:
    missing = resolve_columns(headers).missing_required()
    return not missing, missing
