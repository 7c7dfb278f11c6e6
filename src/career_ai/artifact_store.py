"""Artifact store — persistence and ownership-scoped reads of generated artifacts."""

import json
import logging
import threading
import uuid
from datetime import datetime, timezone
from typing import Protocol

import chromadb
from chromadb.utils import embedding_functions

from career_ai.config import ArtifactStoreConfig
from career_ai.errors import BackendUnavailableError, NotFoundError, PersistenceError
from career_ai.models import (
    Artifact,
    ArtifactDraft,
    ArtifactFilters,
    ArtifactSummary,
    GenerationKind,
)
from career_ai.prompts import truncate_text

logger = logging.getLogger(__name__)

PREVIEW_CHARS = 400
MAX_LIMIT = 100

# Content keys tried, in order, when building a listing preview.
_PREVIEW_PATHS = (
    ("summary",),
    ("sections", "opening"),
    ("description",),
    ("reasoning",),
    ("notes",),
)

# Module-level cache to avoid re-creating the embedding function repeatedly.
_embedding_fn_cache: dict[str, object] = {}


class ArtifactStore(Protocol):
    """Persists artifacts and serves them back to their owner only."""

    def persist(self, draft: ArtifactDraft) -> Artifact: ...

    def list(self, user_id: str, filters: ArtifactFilters) -> list[ArtifactSummary]: ...

    def get(self, user_id: str, artifact_id: str) -> Artifact: ...


def clamp_page(filters: ArtifactFilters) -> tuple[int, int]:
    """Return ``(limit, offset)`` with limit in 1..100 and offset >= 0."""
    limit = max(1, min(MAX_LIMIT, int(filters.limit)))
    return limit, max(0, int(filters.offset))


def make_preview(content: dict) -> str:
    """Short single-line rendering of *content* for listings."""
    for path in _PREVIEW_PATHS:
        value: object = content
        for key in path:
            value = value.get(key) if isinstance(value, dict) else None
        if isinstance(value, str) and value.strip():
            return truncate_text(value, PREVIEW_CHARS)
    return truncate_text(json.dumps(content, ensure_ascii=False), PREVIEW_CHARS)


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


def _encode(content: dict) -> str:
    try:
        return json.dumps(content, ensure_ascii=False)
    except (TypeError, ValueError) as exc:
        raise PersistenceError("artifact content is not serializable") from exc


def summarize(artifact: Artifact) -> ArtifactSummary:
    return ArtifactSummary(
        id=artifact.id,
        kind=artifact.kind,
        created_at=artifact.created_at,
        job_id=artifact.job_id,
        title=artifact.title,
        model_id=artifact.model_id,
        preview=make_preview(artifact.content),
    )


class InMemoryArtifactStore:
    """Process-local store. Content is kept as JSON text, like the real table."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._rows: dict[str, dict] = {}

    def persist(self, draft: ArtifactDraft) -> Artifact:
        artifact_id = draft.id or str(uuid.uuid4())
        document = _encode(draft.content)
        row = {
            "id": artifact_id,
            "user_id": draft.user_id,
            "job_id": draft.job_id,
            "kind": GenerationKind(draft.kind),
            "title": draft.title,
            "prompt_excerpt": draft.prompt_excerpt,
            "model_id": draft.model_id,
            "document": document,
            "metadata_json": _encode(draft.metadata),
            "created_at": _utc_now(),
        }
        with self._lock:
            if artifact_id in self._rows:
                raise PersistenceError(f"artifact {artifact_id} already exists")
            row["seq"] = len(self._rows)
            self._rows[artifact_id] = row
        logger.debug("Stored artifact %s for %s", artifact_id, draft.user_id)
        return self._to_artifact(row)

    def get(self, user_id: str, artifact_id: str) -> Artifact:
        with self._lock:
            row = self._rows.get(artifact_id)
        if row is None or row["user_id"] != user_id:
            raise NotFoundError("artifact not found")
        return self._to_artifact(row)

    def list(self, user_id: str, filters: ArtifactFilters) -> list[ArtifactSummary]:
        limit, offset = clamp_page(filters)
        needle = (filters.query or "").strip().lower()
        with self._lock:
            rows = [r for r in self._rows.values() if r["user_id"] == user_id]
        if filters.kind is not None:
            rows = [r for r in rows if r["kind"] == filters.kind]
        if filters.job_id is not None:
            rows = [r for r in rows if r["job_id"] == filters.job_id]
        if needle:
            rows = [
                r
                for r in rows
                if needle in (r["title"] or "").lower() or needle in r["document"].lower()
            ]
        rows.sort(key=lambda r: (r["created_at"], r["seq"]), reverse=True)
        return [summarize(self._to_artifact(r)) for r in rows[offset : offset + limit]]

    @staticmethod
    def _to_artifact(row: dict) -> Artifact:
        return Artifact(
            id=row["id"],
            user_id=row["user_id"],
            kind=row["kind"],
            content=json.loads(row["document"]),
            created_at=row["created_at"],
            job_id=row["job_id"],
            title=row["title"],
            prompt_excerpt=row["prompt_excerpt"],
            model_id=row["model_id"],
            metadata=json.loads(row["metadata_json"]),
        )


# ---------- ChromaDB ----------


def get_client(config: ArtifactStoreConfig | None = None) -> chromadb.PersistentClient:
    """Return a ChromaDB persistent client for the configured path."""
    cfg = config or ArtifactStoreConfig()
    return chromadb.PersistentClient(path=cfg.db_path)


def get_embedding_function(
    model_name: str = "all-MiniLM-L6-v2",
) -> embedding_functions.SentenceTransformerEmbeddingFunction:
    """Return a cached SentenceTransformer embedding function.

    The model is loaded only once per model name.
    """
    if model_name not in _embedding_fn_cache:
        _embedding_fn_cache[model_name] = (
            embedding_functions.SentenceTransformerEmbeddingFunction(
                model_name=model_name,
            )
        )
    return _embedding_fn_cache[model_name]  # type: ignore[return-value]


def get_or_create_collection(
    client: chromadb.PersistentClient,
    config: ArtifactStoreConfig | None = None,
) -> chromadb.Collection:
    """Get or create the artifacts collection with cosine similarity."""
    cfg = config or ArtifactStoreConfig()
    return client.get_or_create_collection(
        name=cfg.collection_name,
        embedding_function=get_embedding_function(cfg.embedding_model),
        metadata={"hnsw:space": "cosine"},
    )


def _where(user_id: str, filters: ArtifactFilters | None = None) -> dict:
    clauses: list[dict] = [{"user_id": user_id}]
    if filters is not None and filters.kind is not None:
        clauses.append({"kind": GenerationKind(filters.kind).value})
    if filters is not None and filters.job_id is not None:
        clauses.append({"job_id": filters.job_id})
    return clauses[0] if len(clauses) == 1 else {"$and": clauses}


class ChromaArtifactStore:
    """Artifacts kept in a ChromaDB collection.

    The document is the JSON-encoded content, which doubles as the text that
    ``query`` searches semantically. Scalar fields live in the metadata so
    ownership, kind, and job filters run as ``where`` clauses. ChromaDB does
    not accept ``None`` metadata values, so absent optional fields are
    simply left out.
    """

    def __init__(
        self,
        config: ArtifactStoreConfig | None = None,
        collection: chromadb.Collection | None = None,
    ) -> None:
        cfg = config or ArtifactStoreConfig()
        if collection is None:
            collection = get_or_create_collection(get_client(cfg), cfg)
        self._collection = collection

    def persist(self, draft: ArtifactDraft) -> Artifact:
        artifact_id = draft.id or str(uuid.uuid4())
        document = _encode(draft.content)
        created_at = _utc_now()
        metadata = {
            "user_id": draft.user_id,
            "kind": GenerationKind(draft.kind).value,
            "created_at": created_at,
            "metadata_json": _encode(draft.metadata),
            "job_id": draft.job_id,
            "title": draft.title,
            "model_id": draft.model_id,
            "prompt_excerpt": draft.prompt_excerpt,
        }
        metadata = {k: v for k, v in metadata.items() if v is not None}

        try:
            self._collection.add(
                ids=[artifact_id],
                documents=[document],
                metadatas=[metadata],
            )
        except Exception as exc:
            logger.exception("Failed to store artifact %s", artifact_id)
            raise PersistenceError("artifact store write failed") from exc

        logger.debug("Stored artifact %s for %s", artifact_id, draft.user_id)
        return self._to_artifact(artifact_id, document, metadata)

    def get(self, user_id: str, artifact_id: str) -> Artifact:
        try:
            res = self._collection.get(
                ids=[artifact_id],
                where=_where(user_id),
                include=["documents", "metadatas"],
            )
        except Exception as exc:
            logger.warning("Artifact lookup failed for %s: %s", artifact_id, exc)
            raise BackendUnavailableError("artifact store unavailable") from exc

        if not res.get("ids"):
            raise NotFoundError("artifact not found")
        return self._to_artifact(
            res["ids"][0], res["documents"][0], res["metadatas"][0]
        )

    def _search(self, text: str, where: dict, n_results: int) -> list[tuple]:
        available = self._collection.count()
        if not available:
            return []
        res = self._collection.query(
            query_texts=[text],
            n_results=min(n_results, available),
            where=where,
            include=["documents", "metadatas"],
        )
        return list(zip(res["ids"][0], res["documents"][0], res["metadatas"][0]))

    def list(self, user_id: str, filters: ArtifactFilters) -> list[ArtifactSummary]:
        limit, offset = clamp_page(filters)
        where = _where(user_id, filters)
        query_text = (filters.query or "").strip()
        try:
            if query_text:
                rows = self._search(query_text, where, limit + offset)
            else:
                res = self._collection.get(
                    where=where, include=["documents", "metadatas"]
                )
                rows = list(zip(res["ids"], res["documents"], res["metadatas"]))
        except Exception as exc:
            logger.warning("Artifact listing failed for %s: %s", user_id, exc)
            raise BackendUnavailableError("artifact store unavailable") from exc

        rows.sort(key=lambda r: (r[2].get("created_at", ""), r[0]), reverse=True)
        return [
            summarize(self._to_artifact(*row)) for row in rows[offset : offset + limit]
        ]

    @staticmethod
    def _to_artifact(artifact_id: str, document: str, metadata: dict) -> Artifact:
        return Artifact(
            id=artifact_id,
            user_id=metadata["user_id"],
            kind=GenerationKind(metadata["kind"]),
            content=json.loads(document),
            created_at=metadata["created_at"],
            job_id=metadata.get("job_id"),
            title=metadata.get("title"),
            prompt_excerpt=metadata.get("prompt_excerpt"),
            model_id=metadata.get("model_id"),
            metadata=json.loads(metadata.get("metadata_json") or "{}"),
        )


def get_artifact_store(config: ArtifactStoreConfig | None = None) -> ArtifactStore:
    """Return the artifact store selected by ``config.backend``."""
    cfg = config or ArtifactStoreConfig()
    if cfg.backend == "chroma":
        logger.info("Using ChromaDB artifact store at %s", cfg.db_path)
        return ChromaArtifactStore(cfg)
    return InMemoryArtifactStore()
