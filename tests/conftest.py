"""Shared fixtures for the test suite."""

import copy
import json
from pathlib import Path

import pytest

from career_ai.artifact_store import InMemoryArtifactStore
from career_ai.config import AppConfig, ProviderConfig, RateLimitConfig
from career_ai.orchestrator import Orchestrator
from career_ai.provider import MockProvider
from career_ai.rate_limiter import SlidingWindowRateLimiter
from career_ai.record_store import InMemoryRecordStore

SEED = {
    "profiles": {
        "u1": {
            "first_name": "Ada",
            "last_name": "Lovelace",
            "professional_title": "Software Engineer",
            "summary": "Builds reliable backend systems.",
        },
        "u2": {"full_name": "Grace Hopper", "professional_title": "Compiler Engineer"},
    },
    "jobs": {
        "42": {
            "user_id": "u1",
            "job_title": "Senior Python Engineer",
            "company_name": "Acme",
            "industry": "Software",
            "job_description": "Build APIs with Python and FastAPI.",
        },
        "77": {
            "user_id": "u2",
            "job_title": "Compiler Engineer",
            "company_name": "Navy Labs",
        },
    },
    "skills": [
        {
            "user_id": "u1",
            "skill_name": "Python",
            "skill_category": "Technical",
            "created_at": "2024-01-01",
        },
        {
            "user_id": "u1",
            "skill_name": "FastAPI",
            "skill_category": "Technical",
            "created_at": "2024-01-02",
        },
        {
            "user_id": "u1",
            "skill_name": "SQL",
            "skill_category": "Technical",
            "created_at": "2024-01-03",
        },
        {"user_id": "u2", "skill_name": "COBOL", "created_at": "2024-01-01"},
    ],
    "employment": [
        {
            "id": 7,
            "user_id": "u1",
            "job_title": "Backend Developer",
            "company_name": "Initech",
            "start_date": "2020-01-01",
            "end_date": "2023-06-30",
            "job_description": "Built REST services in Python.",
        },
    ],
    "education": [],
    "projects": [],
    "certifications": [],
}


@pytest.fixture
def seed_data() -> dict:
    return copy.deepcopy(SEED)


@pytest.fixture
def record_store(seed_data: dict) -> InMemoryRecordStore:
    return InMemoryRecordStore(seed_data)


@pytest.fixture
def seed_file(tmp_path: Path, seed_data: dict) -> Path:
    path = tmp_path / "seed.json"
    path.write_text(json.dumps(seed_data), encoding="utf-8")
    return path


@pytest.fixture
def app_config() -> AppConfig:
    return AppConfig(
        provider=ProviderConfig(mode="mock", allowed_models=["big-model"]),
        rate_limit=RateLimitConfig(max_requests=5, window_s=60),
    )


@pytest.fixture
def make_orchestrator(record_store, app_config):
    """Factory building an orchestrator over the seed data.

    Components not passed in default to the mock provider, a fresh
    in-memory artifact store, and a 5-per-minute limiter.
    """

    def _make(**overrides) -> Orchestrator:
        parts = {
            "records": record_store,
            "artifacts": InMemoryArtifactStore(),
            "provider": MockProvider(),
            "rate_limiter": SlidingWindowRateLimiter(max_requests=5, window_seconds=60),
            "config": app_config,
        }
        parts.update(overrides)
        return Orchestrator(**parts)

    return _make
