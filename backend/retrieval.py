"""
Nexus Scheduling Agent - Knowledge Retrieval Index
Cached chunk embeddings and cosine-similarity top-K search.
"""

import asyncio
import hashlib
import logging
import math
from typing import Dict, List, Optional, Sequence, Tuple

from database import KeyValueStore
from errors import RetrievalUnavailable
from knowledge_base import KNOWLEDGE_BASE_VERSION, get_all_chunks
from models import ContextHints, KnowledgeChunk
from providers import EmbeddingService

logger = logging.getLogger(__name__)


# ============================================
# HELPERS
# ============================================

def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    if len(a) != len(b):
        raise ValueError(f"vector dimensions differ ({len(a)} vs {len(b)})")
    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return dot / (norm_a * norm_b)


def embedding_text(chunk: KnowledgeChunk) -> str:
    return f"{chunk.title}\n{', '.join(chunk.keywords)}\n{chunk.content}"


def recruiting_phase(month: int) -> Optional[str]:
    if month in (8, 9, 10, 11):
        return "Recruiting Phase 1: consulting and investment banking season"
    if month in (12, 1, 2):
        return "Recruiting Phase 2: relationship building for tech and general management"
    if month in (3, 4, 5):
        return "Recruiting Phase 3: startups, venture capital and private equity"
    return None


def build_query(query: str, hints: Optional[ContextHints] = None) -> str:
    """Append context hints to the query as plain text."""
    if hints is None:
        return query
    parts = []
    if hints.month is not None:
        phase = recruiting_phase(hints.month)
        if phase:
            parts.append(phase)
    if hints.priorities:
        parts.append("Priorities: " + ", ".join(hints.priorities))
    if hints.recent_activities:
        parts.append("Recent activities: " + ", ".join(hints.recent_activities))
    if not parts:
        return query
    return f"{query}\n\nContext: {'. '.join(parts)}"


def format_chunks_for_prompt(chunks: Sequence[KnowledgeChunk]) -> str:
    if not chunks:
        return ""
    return "\n\n---\n\n".join(
        f"[{i}] {chunk.title} ({chunk.chapter}):\n{chunk.content}"
        for i, chunk in enumerate(chunks, start=1)
    )


# ============================================
# INDEX
# ============================================

class RetrievalIndex:
    """
    Built-in playbook chunks plus user documents, embedded once per version.

    The cached vectors are stored under ``cache_key`` together with the
    version they were computed for. Any version mismatch or missing chunk
    regenerates every vector; a partial set is never served.
    """

    def __init__(
        self,
        embedder: EmbeddingService,
        store: KeyValueStore,
        chunks: Optional[List[KnowledgeChunk]] = None,
        base_version: str = KNOWLEDGE_BASE_VERSION,
        cache_key: str = "knowledge:embeddings",
    ):
        self.embedder = embedder
        self.store = store
        self.base_version = base_version
        self.cache_key = cache_key
        self._builtin = chunks if chunks is not None else get_all_chunks()
        self._documents: Dict[str, List[KnowledgeChunk]] = {}
        self._lock = asyncio.Lock()
        self._ready = False

    # ----- contents -----

    @property
    def chunks(self) -> List[KnowledgeChunk]:
        result = list(self._builtin)
        for document_chunks in self._documents.values():
            result.extend(document_chunks)
        return result

    @property
    def version(self) -> str:
        if not self._documents:
            return self.base_version
        digest = hashlib.sha256()
        for document_id in sorted(self._documents):
            for chunk in self._documents[document_id]:
                digest.update(chunk.id.encode("utf-8"))
                digest.update(b"\0")
                digest.update(embedding_text(chunk).encode("utf-8"))
                digest.update(b"\0")
        return f"{self.base_version}+{digest.hexdigest()[:12]}"

    @property
    def is_ready(self) -> bool:
        return self._ready

    def document_ids(self) -> List[str]:
        return list(self._documents)

    def _invalidate(self) -> None:
        self._ready = False
        for chunk in self.chunks:
            chunk.embedding = None
            chunk.embedding_version = None

    def add_documents(self, document_id: str, chunks: List[KnowledgeChunk]) -> None:
        for chunk in chunks:
            chunk.document_id = document_id
        self._documents[document_id] = list(chunks)
        self._invalidate()
        logger.info(f"Added document {document_id} ({len(chunks)} chunks); index version is now {self.version}")

    def remove_document(self, document_id: str) -> bool:
        if document_id not in self._documents:
            return False
        del self._documents[document_id]
        self._invalidate()
        logger.info(f"Removed document {document_id}; index version is now {self.version}")
        return True

    async def clear_cache(self) -> None:
        await self.store.delete(self.cache_key)
        self._invalidate()

    # ----- embeddings -----

    async def ensure_embeddings(self) -> None:
        """Load or regenerate all vectors. Raises RetrievalUnavailable on any failure."""
        if self._ready:
            return
        async with self._lock:
            if self._ready:
                return
            version = self.version
            chunks = self.chunks
            try:
                vectors = await self._load_cached(version, chunks)
                if vectors is None:
                    logger.info(f"Generating embeddings for {len(chunks)} chunks (version {version})")
                    vectors = {}
                    for chunk in chunks:
                        vectors[chunk.id] = await self.embedder.embed(embedding_text(chunk))
                    await self.store.set(self.cache_key, {"version": version, "embeddings": vectors})
            except Exception as e:
                raise RetrievalUnavailable(f"Knowledge embeddings unavailable: {e}") from e

            if version != self.version:
                # Documents changed while embedding; the next call starts over
                return
            for chunk in chunks:
                chunk.embedding = vectors[chunk.id]
                chunk.embedding_version = version
            self._ready = True

    async def _load_cached(self, version: str, chunks: List[KnowledgeChunk]) -> Optional[Dict[str, List[float]]]:
        cached = await self.store.get(self.cache_key)
        if not cached or cached.get("version") != version:
            return None
        embeddings = cached.get("embeddings") or {}
        if any(chunk.id not in embeddings for chunk in chunks):
            return None
        logger.info(f"Loaded cached embeddings (version {version})")
        return embeddings

    # ----- search -----

    async def search_scored(
        self,
        query: str,
        top_k: int = 3,
        context_hints: Optional[ContextHints] = None,
    ) -> List[Tuple[KnowledgeChunk, float]]:
        try:
            await self.ensure_embeddings()
            query_vector = await self.embedder.embed(build_query(query, context_hints))
            version = self.version
            scored = [
                (cosine_similarity(query_vector, chunk.embedding), position, chunk)
                for position, chunk in enumerate(self.chunks)
                if chunk.embedding is not None and chunk.embedding_version == version
            ]
        except Exception as e:
            logger.warning(f"Knowledge search unavailable, replying without grounding: {e}")
            return []

        # Highest score first; equal scores keep chunk order
        scored.sort(key=lambda item: (-item[0], item[1]))
        return [
            (chunk.model_copy(update={"embedding": None}), score)
            for score, _, chunk in scored[:top_k]
        ]

    async def search(
        self,
        query: str,
        top_k: int = 3,
        context_hints: Optional[ContextHints] = None,
    ) -> List[KnowledgeChunk]:
        return [chunk for chunk, _ in await self.search_scored(query, top_k, context_hints)]
