from __future__ import annotations

import logging
import os
import tempfile
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

from pydantic import BaseModel, Field, ValidationError

from referrals.normalizer import ReferralRecord


logger = logging.getLogger(__name__)

STORAGE_VERSION = "1.0"
DATA_FILENAME = "latest.json"
METADATA_FILENAME = "metadata.json"

# One lock per process; uploads replace the dataset while readers may be mid-read.
_LOCK = threading.Lock()


class StorageMetadata(BaseModel):
    upload_date: str
    filename: str
    row_count: int = 0
    dropped_count: int = 0
    version: str = STORAGE_VERSION


class StoredDataset(BaseModel):
    metadata: StorageMetadata
    data: List[Dict[str, Any]] = Field(default_factory=list)


def _as_dict(record: Union[ReferralRecord, Dict[str, Any]]) -> Dict[str, Any]:
    return record.to_dict() if isinstance(record, ReferralRecord) else dict(record)


def _write_atomic(path: Path, text: str) -> None:
    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(text)
        os.replace(tmp, path)
    except BaseException:
        Path(tmp).unlink(missing_ok=True)
        raise


class DataStorage:
    """Most recent normalized dataset, kept as JSON files in `data_dir`."""

    def __init__(self, data_dir: Union[str, Path]):
        self.data_dir = Path(data_dir)
        self.data_file = self.data_dir / DATA_FILENAME
        self.metadata_file = self.data_dir / METADATA_FILENAME

    def store(
        self,
        records: Iterable[Union[ReferralRecord, Dict[str, Any]]],
        filename: str,
        *,
        dropped_count: int = 0,
    ) -> StorageMetadata:
        data = [_as_dict(r) for r in records]
        metadata = StorageMetadata(
            upload_date=datetime.now(timezone.utc).isoformat(),
            filename=filename,
            row_count=len(data),
            dropped_count=dropped_count,
        )
        stored = StoredDataset(metadata=metadata, data=data)
        with _LOCK:
            self.data_dir.mkdir(parents=True, exist_ok=True)
            _write_atomic(self.data_file, stored.model_dump_json(indent=2))
            _write_atomic(self.metadata_file, metadata.model_dump_json(indent=2))
        logger.info("stored %d records from %s", metadata.row_count, filename)
        return metadata

    def get_latest(self) -> Optional[StoredDataset]:
        with _LOCK:
            try:
                text = self.data_file.read_text(encoding="utf-8")
            except OSError:
                return None
        try:
            return StoredDataset.model_validate_json(text)
        except ValidationError:
            logger.warning("ignoring unreadable dataset file %s", self.data_file)
            return None

    def get_metadata(self) -> Optional[StorageMetadata]:
        with _LOCK:
            try:
                text = self.metadata_file.read_text(encoding="utf-8")
            except OSError:
                return None
        try:
            return StorageMetadata.model_validate_json(text)
        except ValidationError:
            logger.warning("ignoring unreadable metadata file %s", self.metadata_file)
            return None

    def has_data(self) -> bool:
        return self.data_file.exists()

    def clear(self) -> None:
        with _LOCK:
            self.data_file.unlink(missing_ok=True)
            self.metadata_file.unlink(missing_ok=True)
        logger.info("cleared stored dataset in %s", self.data_dir)

    def get_stats(self) -> Dict[str, Any]:
        metadata = self.get_metadata()
        return {
            "total_rows": metadata.row_count if metadata else 0,
            "last_updated": metadata.upload_date if metadata else None,
        }
