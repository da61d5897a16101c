from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    ok: bool = True


class DroppedRowModel(BaseModel):
    row_number: int
    missing: List[str] = Field(default_factory=list)


class UploadSummary(BaseModel):
    filename: str
    total_rows: int
    input_rows: int
    dropped_rows: int
    processed_at: str
    stored: bool
    columns: Dict[str, str] = Field(default_factory=dict)
    sample_data: List[Dict[str, Any]] = Field(default_factory=list)
    dropped: List[DroppedRowModel] = Field(default_factory=list)


class UploadResponse(BaseModel):
    message: str
    summary: UploadSummary


class UploadRequirements(BaseModel):
    accepted_formats: List[str]
    max_file_size: str
    required_columns: List[str]
    optional_columns: List[str]


class CurrentDataStats(BaseModel):
    has_data: bool
    total_rows: int
    last_updated: Optional[str] = None


class UploadInfoResponse(BaseModel):
    upload_info: UploadRequirements
    current_data: CurrentDataStats

