"""
Append-only JSON array storage, one file per record kind per subject.

Layout:
    <base_dir>/<subject_id>/raw_media.json
    <base_dir>/<subject_id>/raw_polls.json
    ...

Each file holds a JSON array of records:
    {"id", "subject_id", "timestamp", "source"?, "kind"?, "payload"}

Appends read the whole array, add one record and write it back through a
temp file and an atomic rename. Writers for the same subject are serialized
by an in-process lock plus an fcntl lock on <subject_dir>/.lock.

Any OS-level failure is raised as StorageError, which is refresh-fatal.
"""

import fcntl
import json
import logging
import os
import re
import tempfile
import threading
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

from respect_monitor.pipeline.validate_poll import validate_raw_poll

logger = logging.getLogger(__name__)

DATA_DIR_ENV = "RESPECT_MONITOR_DATA_DIR"
DEFAULT_DATA_DIR = Path("data/pipeline")

RECORD_KINDS = (
    "raw_media",
    "raw_polls",
    "aggregates",
    "dominance_snapshots",
    "view_models",
)

_SAFE_SUBJECT = re.compile(r"^[A-Za-z0-9_-]+$")


class StorageError(Exception):
    """Raised when the store cannot be read or written."""
    pass


class InvalidRecordError(Exception):
    """Raised when a record fails validation before it is stored."""

    def __init__(self, message: str, errors: Optional[List[str]] = None):
        self.errors = errors or []
        super().__init__(message)


def _to_payload(payload: Any) -> Any:
    if hasattr(payload, "to_dict"):
        return payload.to_dict()
    return payload


def new_record_id(now: Optional[datetime] = None) -> str:
    stamp = (now or datetime.now(timezone.utc)).strftime("%Y%m%dT%H%M%S%fZ")
    return f"rec_{stamp}_{uuid.uuid4().hex[:8]}"


class JsonArrayStore:
    """Append-only store keyed by (record kind, subject id)."""

    _locks: Dict[str, threading.Lock] = {}
    _locks_guard = threading.Lock()

    def __init__(self, base_dir: Optional[Union[str, Path]] = None):
        if base_dir is None:
            base_dir = os.environ.get(DATA_DIR_ENV) or DEFAULT_DATA_DIR
        self.base_dir = Path(base_dir)

    def _subject_lock(self, subject_id: str) -> threading.Lock:
        key = str((self.base_dir / subject_id).resolve())
        with self._locks_guard:
            if key not in self._locks:
                self._locks[key] = threading.Lock()
            return self._locks[key]

    def _subject_dir(self, subject_id: str) -> Path:
        if not _SAFE_SUBJECT.match(subject_id or ""):
            raise StorageError(f"Invalid subject id for storage: {subject_id!r}")
        return self.base_dir / subject_id

    def path_for(self, kind: str, subject_id: str) -> Path:
        if kind not in RECORD_KINDS:
            raise ValueError(f"Unknown record kind: {kind}")
        return self._subject_dir(subject_id) / f"{kind}.json"

    def _read_array(self, path: Path) -> List[Dict[str, Any]]:
        if not path.exists():
            return []
        try:
            with open(path, "r") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            raise StorageError(f"Failed to read {path}: {e}") from e
        if not isinstance(data, list):
            raise StorageError(f"{path} does not contain a JSON array")
        return data

    def _write_array(self, path: Path, records: List[Dict[str, Any]]) -> None:
        fd, tmp_path = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.stem}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w") as f:
                json.dump(records, f, ensure_ascii=False, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    def append_record(
        self,
        kind: str,
        subject_id: str,
        payload: Any,
        source: Optional[str] = None,
        extra: Optional[Dict[str, Any]] = None,
    ) -> str:
        """
        Append one record.

        Args:
            kind: One of RECORD_KINDS
            subject_id: Subject the record belongs to
            payload: Dict or object with to_dict()
            source: Optional provenance tag (e.g. "import", "refresh")
            extra: Extra top-level fields (e.g. {"kind": "media_14d"})

        Returns:
            Stored record id

        Raises:
            StorageError: If the store cannot be read or written
        """
        path = self.path_for(kind, subject_id)
        record: Dict[str, Any] = {
            "id": new_record_id(),
            "subject_id": subject_id,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        if source is not None:
            record["source"] = source
        if extra:
            record.update(extra)
        record["payload"] = _to_payload(payload)

        try:
            json.dumps(record)
        except (TypeError, ValueError) as e:
            raise StorageError(f"Failed to serialize {kind} record: {e}") from e

        with self._subject_lock(subject_id):
            try:
                path.parent.mkdir(parents=True, exist_ok=True)
                with open(path.parent / ".lock", "a") as lock_file:
                    fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX)
                    try:
                        records = self._read_array(path)
                        records.append(record)
                        self._write_array(path, records)
                    finally:
                        fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)
            except OSError as e:
                raise StorageError(f"Failed to append to {path}: {e}") from e

        logger.debug(f"Appended {kind} record {record['id']} for {subject_id}")
        return record["id"]

    def get_records(
        self,
        kind: str,
        subject_id: str,
        filter_fn: Optional[Callable[[Dict[str, Any]], bool]] = None,
    ) -> List[Dict[str, Any]]:
        """Full records for a subject in stored order, optionally filtered."""
        records = self._read_array(self.path_for(kind, subject_id))
        return [
            r for r in records
            if isinstance(r, dict) and r.get("subject_id") == subject_id
            and (filter_fn is None or filter_fn(r))
        ]

    def get_all(self, kind: str, subject_id: str, record_kind: Optional[str] = None) -> List[Any]:
        """Every payload for a subject, in stored order."""
        filter_fn = (lambda r: r.get("kind") == record_kind) if record_kind else None
        return [r.get("payload") for r in self.get_records(kind, subject_id, filter_fn)]

    def get_latest(self, kind: str, subject_id: str, record_kind: Optional[str] = None) -> Optional[Any]:
        """Payload of the last stored record for a subject, or None."""
        payloads = self.get_all(kind, subject_id, record_kind)
        return payloads[-1] if payloads else None

    def append_raw_poll(self, subject_id: str, payload: Dict[str, Any], source: str = "import") -> str:
        """
        Validate and append a raw poll.

        Raises:
            InvalidRecordError: If the poll fails validation
            StorageError: If the store cannot be written
        """
        result = validate_raw_poll(payload)
        if not result.valid:
            raise InvalidRecordError(
                f"Invalid poll {payload.get('id', '?') if isinstance(payload, dict) else '?'}: "
                f"{'; '.join(result.errors)}",
                result.errors,
            )
        return self.append_record("raw_polls", subject_id, payload, source=source)
