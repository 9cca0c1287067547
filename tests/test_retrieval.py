import pytest

from database import InMemoryStore
from errors import RetrievalUnavailable
from knowledge_base import KNOWLEDGE_BASE_VERSION, get_all_chunks
from models import ContextHints, KnowledgeChunk
from retrieval import RetrievalIndex, build_query, cosine_similarity, format_chunks_for_prompt, recruiting_phase

from conftest import FakeEmbedder


def chunk(chunk_id, title, content, keywords=None):
    return KnowledgeChunk(id=chunk_id, title=title, chapter="Test", content=content, keywords=keywords or [])


class TestCosine:
    def test_identical_vectors(self):
        assert cosine_similarity([1.0, 2.0], [1.0, 2.0]) == pytest.approx(1.0)

    def test_zero_vector_scores_zero(self):
        assert cosine_similarity([0.0, 0.0], [1.0, 2.0]) == 0.0

    def test_dimension_mismatch(self):
        with pytest.raises(ValueError):
            cosine_similarity([1.0], [1.0, 2.0])


class TestQuery:
    def test_context_hints_are_appended(self):
        query = build_query("how many coffee chats", ContextHints(month=1, priorities=["recruiting"]))
        assert query.startswith("how many coffee chats\n\nContext: ")
        assert "recruiting" in query

    def test_plain_query_is_unchanged(self):
        assert build_query("gym") == "gym"

    def test_recruiting_phase(self):
        assert recruiting_phase(9).startswith("Recruiting Phase 1")
        assert recruiting_phase(1).startswith("Recruiting Phase 2")
        assert recruiting_phase(7) is None

    def test_prompt_format(self):
        text = format_chunks_for_prompt([chunk("a", "Buffers", "Leave 15 minutes.")])
        assert text == "[1] Buffers (Test):\nLeave 15 minutes."


class TestIndex:
    @pytest.mark.asyncio
    async def test_top_k_by_similarity(self):
        chunks = [
            chunk("gym", "Workouts", "gym workout exercise recovery"),
            chunk("chat", "Coffee chats", "coffee chat networking alumni"),
            chunk("exam", "Exams", "exam study accounting"),
        ]
        index = RetrievalIndex(FakeEmbedder(), InMemoryStore(), chunks=chunks)

        results = await index.search("coffee chat with alumni", top_k=2)

        assert [c.id for c in results][0] == "chat"
        assert len(results) == 2
        assert all(c.embedding is None for c in results)

    @pytest.mark.asyncio
    async def test_equal_scores_keep_chunk_order(self):
        chunks = [
            chunk("first", "Buffers", "leave fifteen minutes between meetings"),
            chunk("second", "Buffers", "leave fifteen minutes between meetings"),
            chunk("other", "Exams", "exam study accounting"),
        ]
        index = RetrievalIndex(FakeEmbedder(), InMemoryStore(), chunks=chunks)

        scored = await index.search_scored("buffers between meetings", top_k=2)

        assert [c.id for c, _ in scored] == ["first", "second"]
        assert scored[0][1] == scored[1][1]

    @pytest.mark.asyncio
    async def test_embeddings_are_cached_per_version(self):
        store = InMemoryStore()
        first = FakeEmbedder()
        await RetrievalIndex(first, store).ensure_embeddings()
        generated = first.calls

        second = FakeEmbedder()
        index = RetrievalIndex(second, store)
        await index.ensure_embeddings()

        assert generated == len(get_all_chunks())
        assert second.calls == 0
        assert index.is_ready
        assert (await store.get("knowledge:embeddings"))["version"] == KNOWLEDGE_BASE_VERSION

    @pytest.mark.asyncio
    async def test_version_change_regenerates_every_vector(self):
        store = InMemoryStore()
        await RetrievalIndex(FakeEmbedder(), store).ensure_embeddings()

        embedder = FakeEmbedder()
        index = RetrievalIndex(embedder, store, base_version="2.0.0")
        await index.ensure_embeddings()

        assert embedder.calls == len(index.chunks)
        assert all(c.embedding_version == "2.0.0" for c in index.chunks)

    @pytest.mark.asyncio
    async def test_adding_a_document_changes_the_version(self):
        embedder = FakeEmbedder()
        index = RetrievalIndex(embedder, InMemoryStore(), chunks=[chunk("a", "A", "alpha")])
        await index.ensure_embeddings()
        before = index.version

        index.add_documents("notes", [chunk("notes:1", "Notes", "recruiting calendar notes")])

        assert index.version != before
        assert not index.is_ready
        results = await index.search("recruiting notes", top_k=1)
        assert results[0].id == "notes:1"
        assert results[0].document_id == "notes"

        assert index.remove_document("notes")
        assert index.version == before
        assert not index.remove_document("notes")

    @pytest.mark.asyncio
    async def test_embedding_failure_raises_retrieval_unavailable(self):
        embedder = FakeEmbedder()
        embedder.error = ConnectionError("embedding service down")
        index = RetrievalIndex(embedder, InMemoryStore())

        with pytest.raises(RetrievalUnavailable):
            await index.ensure_embeddings()
        assert not index.is_ready

    @pytest.mark.asyncio
    async def test_search_failure_returns_empty_list(self):
        embedder = FakeEmbedder()
        embedder.error = ConnectionError("embedding service down")
        index = RetrievalIndex(embedder, InMemoryStore())

        assert await index.search("anything") == []

    @pytest.mark.asyncio
    async def test_clear_cache_forces_regeneration(self):
        store = InMemoryStore()
        embedder = FakeEmbedder()
        index = RetrievalIndex(embedder, store, chunks=[chunk("a", "A", "alpha")])
        await index.ensure_embeddings()

        await index.clear_cache()
        await index.ensure_embeddings()

        assert embedder.calls == 2
