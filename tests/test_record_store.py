"""Tests for the in-memory record store."""

import json

import pytest

from career_ai.record_store import (
    InMemoryRecordStore,
    RecordStoreError,
    load_record_store,
)


class TestInMemoryRecordStore:
    def test_get_profile(self, record_store) -> None:
        assert record_store.get_profile("u1")["first_name"] == "Ada"

    def test_missing_profile(self, record_store) -> None:
        assert record_store.get_profile("nobody") is None

    def test_get_job_includes_id(self, record_store) -> None:
        job = record_store.get_job(42)
        assert job["id"] == 42
        assert job["user_id"] == "u1"

    def test_missing_job(self, record_store) -> None:
        assert record_store.get_job(999) is None

    def test_list_filters_by_user(self, record_store) -> None:
        skills = record_store.list_records("skills", "u1")
        assert [s["skill_name"] for s in skills] == ["Python", "FastAPI", "SQL"]

    def test_list_unknown_collection(self, record_store) -> None:
        with pytest.raises(RecordStoreError):
            record_store.list_records("pets", "u1")

    def test_projects_newest_first_and_capped(self) -> None:
        store = InMemoryRecordStore(
            {
                "projects": [
                    {"user_id": "u1", "proj_name": f"p{i}", "created_at": f"2024-01-{i:02d}"}
                    for i in range(1, 11)
                ]
            }
        )
        projects = store.list_records("projects", "u1")
        assert len(projects) == 8
        assert projects[0]["proj_name"] == "p10"

    def test_returns_copies(self, record_store) -> None:
        record_store.get_profile("u1")["first_name"] = "Changed"
        assert record_store.get_profile("u1")["first_name"] == "Ada"


class TestFromFile:
    def test_loads_seed_file(self, seed_file) -> None:
        store = InMemoryRecordStore.from_file(seed_file)
        assert store.get_job(42)["company_name"] == "Acme"

    def test_missing_file(self, tmp_path) -> None:
        with pytest.raises(FileNotFoundError):
            InMemoryRecordStore.from_file(tmp_path / "nope.json")

    def test_rejects_non_object(self, tmp_path) -> None:
        path = tmp_path / "list.json"
        path.write_text(json.dumps([1, 2]), encoding="utf-8")
        with pytest.raises(ValueError):
            InMemoryRecordStore.from_file(path)


class TestLoadRecordStore:
    def test_none_when_unconfigured(self) -> None:
        assert load_record_store(None) is None

    def test_loads_path(self, seed_file) -> None:
        assert load_record_store(str(seed_file)).get_profile("u2") is not None
