"""Local storage for uploaded files, JSON records and CSV exports."""

import csv
import io
import json
import os
import re
import tempfile
import uuid
from typing import Any, Dict, List, Optional

from fastapi import UploadFile

from app.core.config import settings
from app.core.exceptions import NotFoundError, ValidationError


_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,64}$")
_RECORD_KINDS = ("workbooks", "jobs", "analyses")


def _ensure_dir(path: str) -> None:
    os.makedirs(path, exist_ok=True)


def _uploads_root(data_dir: Optional[str] = None) -> str:
    return os.path.abspath(os.path.join(data_dir or settings.data_dir, "uploads"))


async def store_upload(file: UploadFile, data_dir: Optional[str] = None) -> str:
    """Stream an uploaded file to ``<data_dir>/uploads/<uuid>.csv``.

    Returns the absolute storage path.
    """
    filename = file.filename or "upload.csv"
    if ".." in filename or "/" in filename or "\\" in filename:
        raise ValidationError("Invalid filename: path traversal detected", field="file")

    root = _uploads_root(data_dir)
    _ensure_dir(root)
    dest_path = os.path.join(root, f"{uuid.uuid4()}.csv")

    size = 0
    with open(dest_path, "wb") as f:
        while True:
            chunk = await file.read(1024 * 1024)
            if not chunk:
                break
            size += len(chunk)
            if size > settings.max_upload_bytes:
                f.close()
                os.remove(dest_path)
                raise ValidationError(
                    f"File too large (max {settings.max_upload_bytes // (1024 * 1024)}MB)", field="file"
                )
            f.write(chunk)
    return dest_path


def resolve_upload(storage_path: str, data_dir: Optional[str] = None) -> str:
    """Return ``storage_path`` if it is an existing file inside the upload root."""
    root = _uploads_root(data_dir)
    path = os.path.abspath(storage_path)
    if not path.startswith(root + os.sep):
        raise ValidationError("Invalid storage path: outside upload root", field="storage_path")
    if not os.path.isfile(path):
        raise NotFoundError("Source file", storage_path)
    return path


class RecordStore:
    """JSON documents addressed by (kind, id), replaced atomically on write."""

    def __init__(self, data_dir: Optional[str] = None) -> None:
        self.root = os.path.abspath(os.path.join(data_dir or settings.data_dir, "records"))

    def _path(self, kind: str, record_id: str) -> str:
        if kind not in _RECORD_KINDS:
            raise ValueError(f"unknown record kind: {kind}")
        if not record_id or not _ID_PATTERN.match(record_id):
            raise ValidationError(f"Invalid {kind} id", field="id")
        return os.path.join(self.root, kind, f"{record_id}.json")

    def write(self, kind: str, record_id: str, payload: Dict[str, Any]) -> None:
        path = self._path(kind, record_id)
        directory = os.path.dirname(path)
        _ensure_dir(directory)
        fd, tmp_path = tempfile.mkstemp(dir=directory, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(payload, f)
            os.replace(tmp_path, path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise

    def read(self, kind: str, record_id: str) -> Optional[Dict[str, Any]]:
        path = self._path(kind, record_id)
        if not os.path.exists(path):
            return None
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)

    def require(self, kind: str, record_id: str, resource: str) -> Dict[str, Any]:
        record = self.read(kind, record_id)
        if record is None:
            raise NotFoundError(resource, record_id)
        return record


def rows_to_csv(rows: List[Dict[str, Any]], header_keys: List[str]) -> str:
    """Render rows as CSV text with a fixed header order."""
    buf = io.StringIO()
    writer = csv.DictWriter(buf, fieldnames=header_keys, extrasaction="ignore")
    writer.writeheader()
    for r in rows:
        writer.writerow(r)
    return buf.getvalue()

