"""
Shared fixtures: an in-memory vector store and deterministic embedders.

The letter embedder maps text to a 26-dim bag-of-letters vector, so cosine
similarity is predictable and no network is touched.
"""
from typing import Dict, List, Optional, Sequence

import pytest

from ragengine.infrastructure.rag import (
    Embedder,
    RAGConfig,
    RAGPipeline,
    StoreUnavailable,
    StoredDocument,
    VectorHit,
    cosine_similarity,
)


# ===========================================================================
# Embedding functions
# ===========================================================================

def letter_vector(text: str) -> List[float]:
    vector = [0.0] * 26
    for ch in text.lower():
        if "a" <= ch <= "z":
            vector[ord(ch) - ord("a")] += 1.0
    return vector


async def letter_embed(text: str) -> List[float]:
    return letter_vector(text)


async def poisoned_embed(text: str) -> List[float]:
    """Fails for any text containing 'poison'."""
    if "poison" in text.lower():
        raise RuntimeError("embedding backend rejected input")
    return letter_vector(text)


async def broken_embed(text: str) -> List[float]:
    raise RuntimeError("embedding backend down")


# ===========================================================================
# Stores
# ===========================================================================

class InMemoryStore:
    """VectorStoreAdapter over a dict, distances = 1 - cosine."""

    def __init__(self, embedder: Embedder):
        self.embedder = embedder
        self.documents: Dict[str, StoredDocument] = {}
        self.fail_query = False
        self.fail_list = False
        self.fail_write = False
        self.closed = False

    async def upsert(self, documents: Sequence[StoredDocument]) -> int:
        if self.fail_write:
            raise StoreUnavailable("store down")
        for doc in documents:
            self.documents[doc.id] = StoredDocument(doc.id, doc.content, dict(doc.metadata))
        return len(documents)

    async def delete(self, ids: Sequence[str]) -> int:
        if self.fail_write:
            raise StoreUnavailable("store down")
        return sum(1 for doc_id in ids if self.documents.pop(doc_id, None) is not None)

    async def query(self, query_text: str, n_results: int) -> List[VectorHit]:
        if self.fail_query:
            raise StoreUnavailable("store down")
        query_vector = (await self.embedder.embed_single(query_text)).vector
        hits = []
        for doc in self.documents.values():
            doc_vector = (await self.embedder.embed_single(doc.content)).vector
            distance = 1.0 - cosine_similarity(query_vector, doc_vector)
            hits.append(VectorHit(doc.id, doc.content, dict(doc.metadata), distance))
        hits.sort(key=lambda h: h.distance)
        return hits[:n_results]

    async def list_all(self) -> List[StoredDocument]:
        if self.fail_list:
            raise StoreUnavailable("store down")
        return list(self.documents.values())

    async def health_check(self) -> bool:
        return not self.fail_query

    async def close(self) -> None:
        self.closed = True


class ScriptedStore(InMemoryStore):
    """Returns a fixed vector ranking regardless of the query."""

    def __init__(self, embedder: Embedder, ranking: List[VectorHit]):
        super().__init__(embedder)
        self.ranking = ranking
        self.requested_n: Optional[int] = None

    async def query(self, query_text: str, n_results: int) -> List[VectorHit]:
        if self.fail_query:
            raise StoreUnavailable("store down")
        self.requested_n = n_results
        return list(self.ranking[:n_results])


# ===========================================================================
# Fixtures
# ===========================================================================

@pytest.fixture
def embedder() -> Embedder:
    return Embedder(letter_embed, model_name="letters")


@pytest.fixture
def store(embedder) -> InMemoryStore:
    return InMemoryStore(embedder)


@pytest.fixture
def pipeline(store, embedder) -> RAGPipeline:
    config = RAGConfig(chunk_max_size=1200, chunk_min_size=300)
    return RAGPipeline(store, embedder, config=config)
