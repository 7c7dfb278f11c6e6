"""Record store — read access to profile, job, and per-user collections."""

import json
import logging
from pathlib import Path
from typing import Protocol

logger = logging.getLogger(__name__)

COLLECTIONS = ("skills", "employment", "education", "projects", "certifications")

# Sort field, descending flag, and row limit per collection.
_ORDERING: dict[str, tuple[str, bool, int | None]] = {
    "skills": ("created_at", False, None),
    "employment": ("start_date", False, None),
    "education": ("graduation_date", False, None),
    "projects": ("created_at", True, 8),
    "certifications": ("date_earned", True, 8),
}


class RecordStoreError(Exception):
    """The backing store could not serve a read."""


class RecordStore(Protocol):
    """Read interface over the relational store, filterable by owning user."""

    def get_profile(self, user_id: str) -> dict | None: ...

    def get_job(self, job_id: int) -> dict | None: ...

    def list_records(self, collection: str, user_id: str) -> list[dict]: ...


class InMemoryRecordStore:
    """Dict-backed record store used for local development and tests.

    Expected layout::

        {
            "profiles": {"<user_id>": {...}},
            "jobs": {"<job_id>": {"user_id": "...", ...}},
            "skills": [{"user_id": "...", "skill_name": "..."}],
            "employment": [...], "education": [...],
            "projects": [...], "certifications": [...]
        }
    """

    def __init__(self, data: dict | None = None) -> None:
        data = data or {}
        self._profiles: dict[str, dict] = {
            str(k): dict(v) for k, v in (data.get("profiles") or {}).items()
        }
        self._jobs: dict[str, dict] = {
            str(k): dict(v) for k, v in (data.get("jobs") or {}).items()
        }
        self._collections: dict[str, list[dict]] = {
            name: [dict(row) for row in data.get(name) or []] for name in COLLECTIONS
        }

    @classmethod
    def from_file(cls, path: str | Path) -> "InMemoryRecordStore":
        """Load a store from a JSON seed file.

        Raises:
            FileNotFoundError: If the file does not exist.
            ValueError: If the file is not a JSON object.
        """
        file_path = Path(path)
        if not file_path.is_file():
            raise FileNotFoundError(f"Data file not found: {path}")
        data = json.loads(file_path.read_text(encoding="utf-8"))
        if not isinstance(data, dict):
            raise ValueError(f"Data file must contain a JSON object: {path}")
        logger.info("Loaded record store from %s", file_path.name)
        return cls(data)

    def get_profile(self, user_id: str) -> dict | None:
        profile = self._profiles.get(str(user_id))
        return dict(profile) if profile is not None else None

    def get_job(self, job_id: int) -> dict | None:
        job = self._jobs.get(str(job_id))
        if job is None:
            return None
        return {"id": job_id, **job}

    def list_records(self, collection: str, user_id: str) -> list[dict]:
        if collection not in self._collections:
            raise RecordStoreError(f"Unknown collection: {collection}")

        rows = [
            dict(row)
            for row in self._collections[collection]
            if str(row.get("user_id")) == str(user_id)
        ]
        sort_field, descending, limit = _ORDERING[collection]
        rows.sort(key=lambda r: str(r.get(sort_field) or ""), reverse=descending)
        return rows[:limit] if limit is not None else rows


def load_record_store(path: str | Path | None) -> RecordStore | None:
    """Return a record store for *path*, or None when nothing is configured."""
    if not path:
        return None
    return InMemoryRecordStore.from_file(path)
