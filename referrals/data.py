from __future__ import annotations

import io
import logging
from dataclasses import dataclass, field
from pathlib import PurePath
from typing import Any, Dict, List, Optional, Sequence

import pandas as pd
from charset_normalizer import from_bytes

from referrals.columns import REQUIRED_FIELDS, resolve_columns
from referrals.config import Settings, get_settings
from referrals.normalizer import IngestError, NormalizationResult, is_blank, normalize_rows


logger = logging.getLogger(__name__)

ACCEPTED_EXTENSIONS = (".xlsx", ".xls", ".csv")
ACCEPTED_CONTENT_TYPES = (
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "application/vnd.ms-excel",
    "text/csv",
)
HEADER_SEARCH_ROWS = 10


class TableDecodeError(IngestError):
    """The uploaded bytes could not be read as a spreadsheet or CSV."""


@dataclass(frozen=True)
class DecodedTable:
    headers: List[str] = field(default_factory=list)
    rows: List[Dict[str, Any]] = field(default_factory=list)
    sheet: Optional[str] = None


def file_extension(filename: str) -> str:
    return PurePath(filename or "").suffix.lower()


def accepted_file(filename: str, content_type: Optional[str] = None) -> bool:
    return file_extension(filename) in ACCEPTED_EXTENSIONS or (content_type or "") in ACCEPTED_CONTENT_TYPES


def decode_text(raw: bytes) -> str:
    match = from_bytes(raw).best()
    encoding = match.encoding if match is not None else "utf-8"
    if raw.startswith(b"\xef\xbb\xbf") and encoding.lower().replace("-", "_") in ("utf_8", "utf8"):
        encoding = "utf-8-sig"
    try:
        return raw.decode(encoding)
    except (LookupError, UnicodeDecodeError):
        return raw.decode("utf-8", errors="replace")


def find_header_row(raw: pd.DataFrame, search_rows: int = HEADER_SEARCH_ROWS) -> int:
    """First row that resolves a required field; title rows above it are skipped."""
    for idx in range(min(search_rows, len(raw))):
        mapping = resolve_columns(raw.iloc[idx].tolist())
        if any(key in mapping for key in REQUIRED_FIELDS):
            return idx
    return 0


def clean_headers(values: Sequence[object]) -> List[str]:
    headers: List[str] = []
    seen: Dict[str, int] = {}
    for i, value in enumerate(values):
        name = "" if is_blank(value) else str(value).strip()
        if not name:
            name = f"Unnamed: {i}"
        if name in seen:
            base = name
            while name in seen:
                seen[base] += 1
                name = f"{base}.{seen[base]}"
        seen[name] = 0
        headers.append(name)
    return headers


def frame_to_table(raw: pd.DataFrame, sheet: Optional[str] = None) -> DecodedTable:
    raw = raw.dropna(how="all")
    if raw.empty:
        return DecodedTable(sheet=sheet)
    raw = raw.reset_index(drop=True)
    header_row = find_header_row(raw)
    headers = clean_headers(raw.iloc[header_row].tolist())
    body = raw.iloc[header_row + 1 :]
    rows: List[Dict[str, Any]] = []
    for values in body.itertuples(index=False, name=None):
        if all(is_blank(v) for v in values):
            continue
        rows.append({h: (None if is_blank(v) else v) for h, v in zip(headers, values)})
    return DecodedTable(headers=headers, rows=rows, sheet=sheet)


def read_table(raw: bytes, filename: str) -> DecodedTable:
    ext = file_extension(filename)
    if ext not in ACCEPTED_EXTENSIONS:
        raise TableDecodeError(f"Unsupported file extension: {ext or '(none)'}")
    if not raw:
        return DecodedTable()
    try:
        if ext == ".csv":
            text = decode_text(raw)
            frame = pd.read_csv(
                io.StringIO(text),
                header=None,
                dtype=str,
                keep_default_na=False,
                skip_blank_lines=True,
            )
            return frame_to_table(frame)
        with pd.ExcelFile(io.BytesIO(raw)) as book:
            sheet = book.sheet_names[0] if book.sheet_names else None
            if sheet is None:
                return DecodedTable()
            frame = book.parse(sheet, header=None, dtype=object)
        return frame_to_table(frame, sheet=str(sheet))
    except pd.errors.EmptyDataError:
        return DecodedTable()
    except Exception as exc:
        logger.warning("could not decode %s: %s", filename, exc)
        raise TableDecodeError(f"Failed to read {filename}: {exc}") from exc


def ingest_upload(raw: bytes, filename: str, settings: Optional[Settings] = None) -> NormalizationResult:
    """Decode an uploaded file and normalize its rows into referral records."""
    settings = settings or get_settings()
    table = read_table(raw, filename)
    result = normalize_rows(table.headers, table.rows, tz=settings.timezone)
    logger.info(
        "normalized %s: %d rows in, %d admitted, %d dropped, columns=%s",
        filename,
        result.total_rows,
        result.admitted_count,
        result.dropped_count,
        result.mapping.keys(),
    )
    return result
