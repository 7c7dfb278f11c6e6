"""Tests for the artifact stores."""

import json
from unittest.mock import MagicMock, patch

import pytest

from career_ai.artifact_store import (
    ChromaArtifactStore,
    InMemoryArtifactStore,
    _embedding_fn_cache,
    clamp_page,
    get_artifact_store,
    get_embedding_function,
    make_preview,
)
from career_ai.config import ArtifactStoreConfig
from career_ai.errors import BackendUnavailableError, NotFoundError, PersistenceError
from career_ai.models import ArtifactDraft, ArtifactFilters, GenerationKind


def _draft(user_id: str = "u1", kind=GenerationKind.RESUME, **kwargs) -> ArtifactDraft:
    params = {
        "user_id": user_id,
        "kind": kind,
        "content": {"summary": "Seasoned engineer", "ordered_skills": ["Python"]},
        "job_id": 42,
        "title": "AI Resume for Dev",
        "model_id": "llama3.2:3b",
        "metadata": {"tokens": 12},
    }
    params.update(kwargs)
    return ArtifactDraft(**params)


class TestHelpers:
    @pytest.mark.parametrize(
        "limit, offset, expected",
        [(20, 0, (20, 0)), (0, -3, (1, 0)), (500, 5, (100, 5))],
    )
    def test_clamp_page(self, limit, offset, expected) -> None:
        assert clamp_page(ArtifactFilters(limit=limit, offset=offset)) == expected

    def test_preview_prefers_summary(self) -> None:
        assert make_preview({"summary": "Hello  world", "x": 1}) == "Hello world"

    def test_preview_uses_cover_letter_opening(self) -> None:
        assert make_preview({"sections": {"opening": "Dear team"}}) == "Dear team"

    def test_preview_is_bounded(self) -> None:
        assert len(make_preview({"summary": "w " * 1000})) == 400

    def test_preview_falls_back_to_json(self) -> None:
        assert make_preview({"roles": []}) == '{"roles": []}'


class TestInMemoryArtifactStore:
    def test_persist_assigns_id_and_timestamp(self) -> None:
        artifact = InMemoryArtifactStore().persist(_draft())
        assert artifact.id
        assert artifact.created_at.endswith("+00:00")
        assert artifact.kind is GenerationKind.RESUME

    def test_keeps_given_id(self) -> None:
        assert InMemoryArtifactStore().persist(_draft(id="fixed")).id == "fixed"

    def test_duplicate_id_fails(self) -> None:
        store = InMemoryArtifactStore()
        store.persist(_draft(id="fixed"))
        with pytest.raises(PersistenceError):
            store.persist(_draft(id="fixed"))

    def test_content_round_trips(self) -> None:
        store = InMemoryArtifactStore()
        content = {"summary": "Ünïcode ✓", "nested": {"b": [1, 2.5, None, True]}, "a": ""}
        saved = store.persist(_draft(content=content))
        loaded = store.get("u1", saved.id)
        assert json.dumps(loaded.content) == json.dumps(content)
        assert loaded.metadata == {"tokens": 12}

    def test_unserializable_content_fails(self) -> None:
        with pytest.raises(PersistenceError):
            InMemoryArtifactStore().persist(_draft(content={"bad": object()}))

    def test_foreign_id_is_not_found(self) -> None:
        store = InMemoryArtifactStore()
        saved = store.persist(_draft(user_id="u1"))
        with pytest.raises(NotFoundError):
            store.get("u2", saved.id)

    def test_unknown_id_is_not_found(self) -> None:
        with pytest.raises(NotFoundError):
            InMemoryArtifactStore().get("u1", "missing")

    def test_list_is_owner_scoped_newest_first(self) -> None:
        store = InMemoryArtifactStore()
        first = store.persist(_draft())
        second = store.persist(_draft())
        store.persist(_draft(user_id="u2"))

        items = store.list("u1", ArtifactFilters())
        assert [i.id for i in items] == [second.id, first.id]
        assert items[0].preview == "Seasoned engineer"

    def test_list_filters(self) -> None:
        store = InMemoryArtifactStore()
        store.persist(_draft())
        match = store.persist(
            _draft(kind=GenerationKind.JOB_MATCH, job_id=7, content={"reasoning": "Great fit"})
        )

        assert [i.id for i in store.list("u1", ArtifactFilters(kind=GenerationKind.JOB_MATCH))] == [match.id]
        assert [i.id for i in store.list("u1", ArtifactFilters(job_id=7))] == [match.id]
        assert [i.id for i in store.list("u1", ArtifactFilters(query="great"))] == [match.id]

    def test_list_pagination(self) -> None:
        store = InMemoryArtifactStore()
        ids = [store.persist(_draft()).id for _ in range(5)]
        page = store.list("u1", ArtifactFilters(limit=2, offset=1))
        assert [i.id for i in page] == [ids[3], ids[2]]


@pytest.fixture
def collection() -> MagicMock:
    return MagicMock()


@pytest.fixture
def chroma(collection) -> ChromaArtifactStore:
    return ChromaArtifactStore(collection=collection)


class TestChromaArtifactStore:
    def test_persist_writes_document_and_metadata(self, chroma, collection) -> None:
        artifact = chroma.persist(_draft(prompt_excerpt=None))

        kwargs = collection.add.call_args.kwargs
        assert kwargs["ids"] == [artifact.id]
        assert json.loads(kwargs["documents"][0]) == artifact.content
        meta = kwargs["metadatas"][0]
        assert meta["user_id"] == "u1"
        assert meta["kind"] == "resume"
        assert meta["job_id"] == 42
        assert "prompt_excerpt" not in meta
        assert json.loads(meta["metadata_json"]) == {"tokens": 12}

    def test_persist_failure(self, chroma, collection) -> None:
        collection.add.side_effect = RuntimeError("disk full")
        with pytest.raises(PersistenceError):
            chroma.persist(_draft())

    def test_get_is_owner_scoped(self, chroma, collection) -> None:
        collection.get.return_value = {
            "ids": ["a1"],
            "documents": ['{"summary": "x"}'],
            "metadatas": [
                {
                    "user_id": "u1",
                    "kind": "resume",
                    "created_at": "2025-01-01T00:00:00+00:00",
                    "metadata_json": "{}",
                }
            ],
        }

        artifact = chroma.get("u1", "a1")

        assert artifact.content == {"summary": "x"}
        assert artifact.job_id is None
        kwargs = collection.get.call_args.kwargs
        assert kwargs["ids"] == ["a1"]
        assert kwargs["where"] == {"user_id": "u1"}

    def test_get_missing(self, chroma, collection) -> None:
        collection.get.return_value = {"ids": [], "documents": [], "metadatas": []}
        with pytest.raises(NotFoundError):
            chroma.get("u2", "a1")

    def test_get_backend_failure(self, chroma, collection) -> None:
        collection.get.side_effect = RuntimeError("down")
        with pytest.raises(BackendUnavailableError):
            chroma.get("u1", "a1")

    def test_list_builds_where_and_sorts(self, chroma, collection) -> None:
        collection.get.return_value = {
            "ids": ["old", "new"],
            "documents": ['{"summary": "old"}', '{"summary": "new"}'],
            "metadatas": [
                {"user_id": "u1", "kind": "resume", "created_at": "2025-01-01T00:00:00+00:00"},
                {"user_id": "u1", "kind": "resume", "created_at": "2025-02-01T00:00:00+00:00"},
            ],
        }

        items = chroma.list("u1", ArtifactFilters(kind=GenerationKind.RESUME, job_id=42))

        assert [i.id for i in items] == ["new", "old"]
        assert collection.get.call_args.kwargs["where"] == {
            "$and": [{"user_id": "u1"}, {"kind": "resume"}, {"job_id": 42}]
        }

    def test_list_with_query_uses_semantic_search(self, chroma, collection) -> None:
        collection.count.return_value = 10
        collection.query.return_value = {
            "ids": [["a1"]],
            "documents": [['{"summary": "python"}']],
            "metadatas": [[{"user_id": "u1", "kind": "resume", "created_at": "2025-01-01"}]],
        }

        items = chroma.list("u1", ArtifactFilters(query="python", limit=5))

        assert [i.id for i in items] == ["a1"]
        kwargs = collection.query.call_args.kwargs
        assert kwargs["query_texts"] == ["python"]
        assert kwargs["n_results"] == 5
        assert kwargs["where"] == {"user_id": "u1"}

    def test_list_query_on_empty_collection(self, chroma, collection) -> None:
        collection.count.return_value = 0
        assert chroma.list("u1", ArtifactFilters(query="python")) == []
        collection.query.assert_not_called()


class TestFactories:
    def test_memory_backend_by_default(self) -> None:
        assert isinstance(get_artifact_store(ArtifactStoreConfig()), InMemoryArtifactStore)

    @patch("career_ai.artifact_store.get_or_create_collection")
    @patch("career_ai.artifact_store.get_client")
    def test_chroma_backend(self, mock_client, mock_collection) -> None:
        store = get_artifact_store(ArtifactStoreConfig(backend="chroma"))
        assert isinstance(store, ChromaArtifactStore)
        mock_client.assert_called_once()
        mock_collection.assert_called_once()

    @patch("career_ai.artifact_store.embedding_functions.SentenceTransformerEmbeddingFunction")
    def test_embedding_function_is_cached(self, mock_ef) -> None:
        _embedding_fn_cache.pop("cache-test-model", None)
        first = get_embedding_function("cache-test-model")
        second = get_embedding_function("cache-test-model")
        assert first is second
        mock_ef.assert_called_once_with(model_name="cache-test-model")
        _embedding_fn_cache.pop("cache-test-model", None)
