from __future__ import annotations

import logging
import math
from datetime import datetime, timezone
from typing import Literal, Optional

import numpy as np
import pandas as pd
from fastapi import Depends, FastAPI, File, Header, Query, UploadFile
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response

from api.schemas import (
    CurrentDataStats,
    DroppedRowModel,
    HealthResponse,
    UploadInfoResponse,
    UploadRequirements,
    UploadResponse,
    UploadSummary,
)
from referrals.columns import FIELD_KEYS, REQUIRED_FIELDS
from referrals.config import get_settings
from referrals.data import ACCEPTED_EXTENSIONS, TableDecodeError, accepted_file, file_extension, ingest_upload
from referrals.filters import (
    DashboardFilters,
    apply_dashboard_filters,
    apply_latest_filters,
    export_filename,
    normalize_dashboard_filters,
    normalize_latest_filters,
    records_to_csv,
    records_to_frame,
)
from referrals.metrics_summary import compute_summary
from referrals.normalizer import EmptyTableError
from referrals.storage import DataStorage


settings = get_settings()
app = FastAPI(title="Referral Dashboard API", version="0.1.0")
logger = logging.getLogger(__name__)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

SAMPLE_ROWS = 3
DROPPED_DETAIL_LIMIT = 50


def get_storage() -> DataStorage:
    return DataStorage(get_settings().data_dir)


def _json(data: object, status_code: int = 200) -> JSONResponse:
    """Return JSON with safe encoding for pandas/numpy objects."""

    def _safe_float(value: object) -> float | None:
        try:
            out = float(value)  # type: ignore[arg-type]
        except Exception:
            return None
        if math.isnan(out) or math.isinf(out):
            return None
        return out

    return JSONResponse(
        status_code=status_code,
        content=jsonable_encoder(
            data,
            custom_encoder={
                type(pd.NA): lambda _: None,
                np.integer: int,
                float: _safe_float,
                np.floating: _safe_float,
                np.bool_: bool,
                np.ndarray: lambda arr: arr.tolist(),
                pd.Timestamp: lambda ts: ts.isoformat(),
            },
        ),
    )


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


def _frame_records(df: pd.DataFrame) -> list:
    return df.astype(object).where(df.notna(), None).to_dict(orient="records")


def _dashboard_filters(
    discipline: str = Query(default="ALL"),
    facility: str = Query(default="ALL"),
    insurance: str = Query(default="ALL"),
) -> DashboardFilters:
    return normalize_dashboard_filters({"discipline": discipline, "facility": facility, "insurance": insurance})


@app.get("/health", response_model=HealthResponse)
def health():
    return {"ok": True}


@app.post("/ingest/upload")
async def upload(file: Optional[UploadFile] = File(default=None), storage: DataStorage = Depends(get_storage)):
    if file is None or not file.filename:
        return _error(400, "No file provided")

    if not accepted_file(file.filename, file.content_type):
        ext = file_extension(file.filename)
        return _error(
            400,
            f'Invalid file type. File type: "{file.content_type}", Extension: "{ext}". '
            "Please upload an Excel file (.xlsx, .xls) or CSV file.",
        )

    cfg = get_settings()
    try:
        raw = await file.read()
        if len(raw) > cfg.max_upload_bytes:
            return _error(413, f"File too large. Maximum size is {cfg.max_upload_bytes // (1024 * 1024)}MB.")

        try:
            result = ingest_upload(raw, file.filename, cfg)
        except (TableDecodeError, EmptyTableError) as exc:
            logger.warning("rejected upload %s: %s", file.filename, exc)
            return _error(400, "Failed to process the file. Please check the file format and try again.")

        stored = False
        message = "No referral rows found in the uploaded file; the previous dataset was kept"
        if result.records:
            storage.store(result.records, file.filename, dropped_count=result.dropped_count)
            stored = True
            message = "File uploaded and processed successfully"

        summary = UploadSummary(
            filename=file.filename,
            total_rows=result.admitted_count,
            input_rows=result.total_rows,
            dropped_rows=result.dropped_count,
            processed_at=datetime.now(timezone.utc).isoformat(),
            stored=stored,
            columns=result.mapping.as_dict(),
            sample_data=[r.to_dict() for r in result.records[:SAMPLE_ROWS]],
            dropped=[DroppedRowModel(row_number=d.row_number, missing=d.missing) for d in result.dropped[:DROPPED_DETAIL_LIMIT]],
        )
        return _json(UploadResponse(message=message, summary=summary).model_dump())
    except Exception as exc:
        logger.exception("upload failed")
        return JSONResponse(status_code=500, content={"error": str(exc), "type": type(exc).__name__})


@app.get("/ingest/upload")
def upload_info(storage: DataStorage = Depends(get_storage)):
    try:
        stats = storage.get_stats()
        cfg = get_settings()
        payload = UploadInfoResponse(
            upload_info=UploadRequirements(
                accepted_formats=list(ACCEPTED_EXTENSIONS),
                max_file_size=f"{cfg.max_upload_bytes // (1024 * 1024)}MB",
                required_columns=list(REQUIRED_FIELDS),
                optional_columns=[k for k in FIELD_KEYS if k not in REQUIRED_FIELDS],
            ),
            current_data=CurrentDataStats(
                has_data=storage.has_data(),
                total_rows=stats["total_rows"],
                last_updated=stats["last_updated"],
            ),
        )
        return _json(payload.model_dump())
    except Exception as exc:
        logger.exception("upload_info failed")
        return JSONResponse(status_code=500, content={"error": str(exc), "type": type(exc).__name__})


@app.get("/data/latest")
def latest(
    facility: str = Query(default=""),
    discipline: str = Query(default=""),
    status: str = Query(default=""),
    limit: Optional[str] = Query(default=None),
    storage: DataStorage = Depends(get_storage),
):
    try:
        stored = storage.get_latest()
        if stored is None:
            return _error(404, "No data available")
        f = normalize_latest_filters({"facility": facility, "discipline": discipline, "status": status, "limit": limit})
        df = records_to_frame(stored.data)
        filtered = apply_latest_filters(df, f)
        data = _frame_records(filtered)
        payload = {
            "metadata": stored.metadata.model_dump(),
            "data": data,
            "total_rows": len(data),
            "filtered_rows": len(data) if len(data) != len(stored.data) else None,
        }
        return _json(payload)
    except Exception as exc:
        logger.exception("latest failed")
        return JSONResponse(status_code=500, content={"error": str(exc), "type": type(exc).__name__})


@app.delete("/data/latest")
def clear_latest(
    authorization: Optional[str] = Header(default=None),
    storage: DataStorage = Depends(get_storage),
):
    secret = get_settings().ingest_secret
    if secret:
        provided = (authorization or "").replace("Bearer ", "", 1).strip()
        if not provided or provided != secret:
            return _error(401, "Unauthorized. Invalid or missing authentication token.")
    try:
        storage.clear()
        return _json({"message": "Data cleared successfully"})
    except Exception as exc:
        logger.exception("clear_latest failed")
        return JSONResponse(status_code=500, content={"error": str(exc), "type": type(exc).__name__})


@app.get("/data/summary")
def summary(filters: DashboardFilters = Depends(_dashboard_filters), storage: DataStorage = Depends(get_storage)):
    try:
        stored = storage.get_latest()
        if stored is None:
            return _error(404, "No data available")
        df = records_to_frame(stored.data)
        payload = compute_summary(df, filters)
        payload["metadata"] = stored.metadata.model_dump()
        return _json(payload)
    except Exception as exc:
        logger.exception("summary failed")
        return JSONResponse(status_code=500, content={"error": str(exc), "type": type(exc).__name__})


@app.get("/export")
def export_csv(
    scope: Literal["all", "filtered"] = Query(default="filtered"),
    filters: DashboardFilters = Depends(_dashboard_filters),
    storage: DataStorage = Depends(get_storage),
):
    stored = storage.get_latest()
    if stored is None:
        return _error(404, "No data available")
    df = records_to_frame(stored.data)
    if scope == "filtered":
        df = apply_dashboard_filters(df, filters)
    csv_bytes = records_to_csv(df).encode("utf-8")
    filename = export_filename(scope)
    return Response(content=csv_bytes, media_type="text/csv", headers={"Content-Disposition": f"attachment; filename={filename}"})
