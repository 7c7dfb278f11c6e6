"""Data aggregator — assembles the read-only context for a generation kind."""

import logging
from concurrent.futures import ThreadPoolExecutor

from career_ai.errors import (
    BackendUnavailableError,
    NotFoundError,
    OwnershipMismatchError,
)
from career_ai.models import AggregatedContext, GenerationKind
from career_ai.record_store import COLLECTIONS, RecordStore

logger = logging.getLogger(__name__)

# Enrichment collections fetched for each kind.
KIND_COLLECTIONS: dict[GenerationKind, tuple[str, ...]] = {
    GenerationKind.RESUME: COLLECTIONS,
    GenerationKind.EXPERIENCE_TAILORING: COLLECTIONS,
    GenerationKind.COVER_LETTER: COLLECTIONS,
    GenerationKind.JOB_MATCH: ("skills", "employment", "education", "projects"),
    GenerationKind.SKILLS_OPTIMIZATION: ("skills", "employment"),
    GenerationKind.COMPANY_RESEARCH: (),
}


def _fetch_collection(
    store: RecordStore, collection: str, user_id: str
) -> tuple[tuple[dict, ...], bool]:
    """Fetch one collection, degrading to an empty tuple on failure.

    Returns:
        The rows and a flag that is True when the fetch failed.
    """
    try:
        rows = store.list_records(collection, user_id)
    except Exception:
        logger.warning(
            "Collection %s unavailable for %s; continuing without it",
            collection,
            user_id,
            exc_info=True,
        )
        return (), True
    return tuple(rows or ()), False


def aggregate(
    store: RecordStore,
    kind: GenerationKind,
    user_id: str,
    job_id: int,
) -> AggregatedContext:
    """Fetch and validate everything needed to build a prompt for *kind*.

    The profile and the job are critical: a missing record raises
    ``NotFoundError`` and a store failure raises ``BackendUnavailableError``.
    A job owned by another user raises ``OwnershipMismatchError`` before any
    collection is read. Enrichment collections are fetched concurrently and
    a failing one is replaced by an empty tuple and listed in ``degraded``.

    Args:
        store: Read interface over the relational store.
        kind: Generation kind, selects the enrichment collections.
        user_id: Verified requesting user.
        job_id: Target job posting id.

    Returns:
        An AggregatedContext snapshot.
    """
    try:
        profile = store.get_profile(user_id)
    except Exception as exc:
        logger.warning("Profile query failed for %s: %s", user_id, exc)
        raise BackendUnavailableError("profile query failed") from exc
    if not profile:
        raise NotFoundError("profile not found")

    try:
        job = store.get_job(job_id)
    except Exception as exc:
        logger.warning("Job query failed for %s: %s", job_id, exc)
        raise BackendUnavailableError("job query failed") from exc
    if not job:
        raise NotFoundError("job not found")

    owner = job.get("user_id")
    if owner and str(owner) != str(user_id):
        logger.warning("Job %s does not belong to %s", job_id, user_id)
        raise OwnershipMismatchError("job does not belong to user")

    collections = KIND_COLLECTIONS.get(kind, ())
    fetched: dict[str, tuple[dict, ...]] = {}
    degraded: list[str] = []
    if collections:
        with ThreadPoolExecutor(max_workers=len(collections)) as pool:
            futures = {
                name: pool.submit(_fetch_collection, store, name, user_id)
                for name in collections
            }
            for name, future in futures.items():
                rows, failed = future.result()
                fetched[name] = rows
                if failed:
                    degraded.append(name)

    return AggregatedContext(
        kind=kind,
        user_id=user_id,
        job_id=job_id,
        profile=dict(profile),
        job=dict(job),
        skills=fetched.get("skills", ()),
        employment=fetched.get("employment", ()),
        education=fetched.get("education", ()),
        projects=fetched.get("projects", ()),
        certifications=fetched.get("certifications", ()),
        degraded=tuple(degraded),
    )
