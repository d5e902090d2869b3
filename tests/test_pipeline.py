"""
Unit Tests - RAG Pipeline
Write path, single-pass / hybrid / iterative retrieval and provenance recording.
"""
import json

import pytest

from ragengine.infrastructure.rag import (
    NO_RESULTS_MESSAGE,
    ChunkOptions,
    ConfigurationMissing,
    Embedder,
    ErrorKind,
    HybridQuery,
    IterativeQuery,
    RAGConfig,
    RAGPipeline,
    RetrievalContext,
    StoreUnavailable,
    StoredDocument,
    VectorHit,
)

from conftest import InMemoryStore, ScriptedStore


async def seed(pipeline, *docs):
    await pipeline.upsert([{"id": doc_id, "content": content, "metadata": meta} for doc_id, content, meta in docs])


# ===========================================================================
# Construction
# ===========================================================================

class TestConstruction:
    def test_missing_store_is_configuration_error(self, embedder):
        with pytest.raises(ConfigurationMissing):
            RAGPipeline(None, embedder)

    def test_missing_embedder_is_configuration_error(self, store):
        with pytest.raises(ConfigurationMissing):
            RAGPipeline(store, None)

    def test_missing_embed_fn_is_configuration_error(self):
        with pytest.raises(ConfigurationMissing):
            Embedder(None)


# ===========================================================================
# Write path
# ===========================================================================

class TestUpsert:
    async def test_upsert_is_idempotent_per_id(self, pipeline, store):
        await pipeline.upsert([{"id": "a", "content": "first"}])
        await pipeline.upsert([{"id": "a", "content": "second", "metadata": {"v": 2}}])

        assert list(store.documents) == ["a"]
        assert store.documents["a"].content == "second"
        assert store.documents["a"].metadata == {"v": 2}

    async def test_last_duplicate_in_batch_wins(self, pipeline, store):
        count = await pipeline.upsert([
            StoredDocument("a", "one"),
            StoredDocument("a", "two"),
        ])
        assert count == 1
        assert store.documents["a"].content == "two"

    async def test_metadata_is_sanitized(self, pipeline, store):
        await pipeline.upsert([{"id": "a", "content": "x", "metadata": {"tags": ["a", "b"], "n": 1}}])
        assert store.documents["a"].metadata == {"tags": "['a', 'b']", "n": 1}

    async def test_missing_id_is_rejected(self, pipeline):
        with pytest.raises(ValueError):
            await pipeline.upsert([{"content": "no id"}])

    async def test_empty_batch(self, pipeline):
        assert await pipeline.upsert([]) == 0

    async def test_store_failure_propagates_on_write(self, pipeline, store):
        store.fail_write = True
        with pytest.raises(StoreUnavailable):
            await pipeline.upsert([{"id": "a", "content": "x"}])


class TestChunkedUpsert:
    async def test_chunks_are_stored_with_parent_metadata(self, pipeline, store):
        text = "\n\n".join(["a" * 700, "b" * 700, "c" * 50])

        chunks = await pipeline.upsert_with_chunks(
            {"id": "manual", "content": text, "metadata": {"source": "handbook"}}
        )

        assert [c.chunk_id for c in chunks] == ["manual::chunk1", "manual::chunk2"]
        assert list(store.documents) == ["manual::chunk1", "manual::chunk2"]
        meta = store.documents["manual::chunk2"].metadata
        assert meta == {"source": "handbook", "chunkIndex": 2, "chunkTotal": 2, "parentId": "manual"}

    async def test_rechunking_into_fewer_chunks_removes_stale_ones(self, pipeline, store):
        await pipeline.upsert_with_chunks({"id": "p", "content": "\n\n".join(["a" * 700] * 3)})
        await seed(pipeline, ("p", "parent", {}), ("q::chunk2", "other parent", {"parentId": "q"}))

        chunks = await pipeline.upsert_with_chunks({"id": "p", "content": "short new version"})

        assert [c.chunk_id for c in chunks] == ["p::chunk1"]
        assert sorted(store.documents) == ["p", "p::chunk1", "q::chunk2"]
        assert store.documents["p::chunk1"].content == "short new version"
        assert store.documents["p::chunk1"].metadata["chunkTotal"] == 1

    async def test_options_override_sizes(self, pipeline, store):
        text = "\n\n".join(["a" * 100, "b" * 100])

        chunks = await pipeline.upsert_with_chunks(
            {"id": "p", "content": text}, ChunkOptions(max_size=150, min_size=0)
        )

        assert len(chunks) == 2

    async def test_embedding_chunking(self, pipeline, store):
        chunks = await pipeline.upsert_with_chunks(
            {"id": "p", "content": "One sentence. Another sentence."},
            ChunkOptions(max_size=20, min_size=0, use_embedding_chunking=True),
        )
        assert [c.text for c in chunks] == ["One sentence.", "Another sentence."]

    async def test_empty_document_writes_nothing(self, pipeline, store):
        assert await pipeline.upsert_with_chunks({"id": "p", "content": "  "}) == []
        assert store.documents == {}


class TestDelete:
    async def test_delete_removes_single_id_only(self, pipeline, store):
        await pipeline.upsert_with_chunks({"id": "p", "content": "x" * 10})
        await seed(pipeline, ("p", "parent", {}))

        await pipeline.delete("p")

        assert list(store.documents) == ["p::chunk1"]

    async def test_delete_with_chunks_cascades(self, pipeline, store):
        await pipeline.upsert_with_chunks(
            {"id": "p", "content": "\n\n".join(["a" * 700, "b" * 700])}
        )
        await seed(pipeline, ("p", "parent", {}), ("other", "unrelated", {}))

        deleted = await pipeline.delete_with_chunks("p")

        assert deleted == 3
        assert list(store.documents) == ["other"]

    async def test_list_documents(self, pipeline):
        await seed(pipeline, ("a", "alpha", {}), ("b", "beta", {}))
        assert [d.id for d in await pipeline.list_documents()] == ["a", "b"]


class TestUpsertHelpers:
    async def test_upsert_file(self, pipeline, store, tmp_path):
        path = tmp_path / "notes.txt"
        path.write_text("file contents", encoding="utf-8")

        document = await pipeline.upsert_file(path, metadata={"type": "notes"})

        assert document.id == str(path)
        assert store.documents[str(path)].metadata == {"type": "notes", "filePath": str(path)}

    async def test_upsert_context(self, pipeline, store):
        document = await pipeline.upsert_context({"user": "ana", "plan": "pro"}, doc_id="ctx-1")

        assert document.metadata["type"] == "generic-context"
        assert json.loads(store.documents["ctx-1"].content) == {"user": "ana", "plan": "pro"}

    async def test_upsert_context_generates_id(self, pipeline):
        document = await pipeline.upsert_context({"k": "v"}, metadata={"type": "session"})
        assert document.id.startswith("context-")
        assert document.metadata["type"] == "session"


# ===========================================================================
# Single-pass retrieval
# ===========================================================================

class TestRetrieve:
    async def test_renders_documents_block(self, pipeline):
        await seed(pipeline, ("doc-a", "a", {}), ("doc-b", "b", {}))

        result = await pipeline.retrieve("a", n_results=2)

        blocks = result.split("\n\n---\n\n")
        assert blocks[0] == "Document 1 (ID: doc-a, Distance: 0.0000):\na"
        assert blocks[1] == "Document 2 (ID: doc-b, Distance: 1.0000):\nb"

    async def test_no_results_sentinel(self, pipeline):
        assert await pipeline.retrieve("anything") == NO_RESULTS_MESSAGE

    async def test_explicit_zero_results_is_honored(self, pipeline):
        await seed(pipeline, ("a", "a", {"type": "faq"}))

        assert await pipeline.retrieve("a", n_results=0) == NO_RESULTS_MESSAGE
        assert await pipeline.retrieve_by_type("faq", "a", n_results=0) == []
        assert await pipeline.hybrid_retrieve("a", n_results=0) == []

    async def test_store_failure_becomes_error_string(self, pipeline, store):
        store.fail_query = True
        context = RetrievalContext()

        result = await pipeline.retrieve("cat", context=context)

        assert result == "Error retrieving documents: store down"
        assert context.entries[-1].status == "error"
        assert context.references == []

    async def test_embedding_failure_becomes_error_string(self, pipeline):
        await seed(pipeline, ("a", "alpha", {}))
        result = await pipeline.retrieve("   ")
        assert result.startswith("Error retrieving documents:")

    async def test_retrieve_result_is_structured(self, pipeline, store):
        store.fail_query = True
        result = await pipeline.retrieve_result("cat")
        assert not result.ok
        assert result.error_kind == ErrorKind.STORE_UNAVAILABLE

    async def test_references_recorded_once_per_id(self, pipeline):
        await seed(
            pipeline,
            ("cat", "cat", {"title": "Cats", "source": "wiki"}),
            ("dog", "dog", {}),
        )
        context = RetrievalContext()

        await pipeline.retrieve("cat", n_results=2, context=context)
        await pipeline.retrieve("cat", n_results=2, context=context)

        refs = [(r.id, r.title, r.source) for r in context.references]
        assert refs == [("cat", "Cats", "wiki"), ("dog", "Document 2", "Vector Knowledge Base")]
        assert [e.status for e in context.entries] == ["ok", "ok"]

    async def test_empty_result_adds_no_references(self, pipeline):
        context = RetrievalContext()
        await pipeline.retrieve("cat", context=context)
        assert context.references == []
        assert context.entries[0].status == "empty"

    async def test_retrieve_by_type(self, pipeline):
        await seed(
            pipeline,
            ("faq-1", "cat care", {"type": "faq"}),
            ("blog-1", "cat blog", {"type": "blog"}),
            ("faq-2", "cats", {"type": "faq"}),
        )

        results = await pipeline.retrieve_by_type("faq", "cat", n_results=5)

        assert {c.id for c in results} == {"faq-1", "faq-2"}


# ===========================================================================
# Hybrid retrieval
# ===========================================================================

def scripted_pipeline(embedder, ranking, documents, **config):
    store = ScriptedStore(embedder, ranking)
    for doc in documents:
        store.documents[doc.id] = doc
    return RAGPipeline(store, embedder, config=RAGConfig(**config)), store


class TestHybridRetrieve:
    async def test_rrf_scores_survive_rerank(self, embedder):
        docs = {
            "A": StoredDocument("A", "x marks A"),
            "B": StoredDocument("B", "nothing here"),
            "C": StoredDocument("C", "x marks C"),
        }
        ranking = [VectorHit(d, docs[d].content, {}, 0.1 * i) for i, d in enumerate("ABC", start=1)]
        pipeline, store = scripted_pipeline(embedder, ranking, [docs["C"], docs["B"], docs["A"]])

        results = await pipeline.hybrid_retrieve("x", n_results=2)

        assert len(results) == 2
        assert store.requested_n == 4
        expected = {"A": 1.5, "B": 0.5, "C": 1 / 3 + 1.0}
        for candidate in results:
            assert candidate.rrf == pytest.approx(expected[candidate.id])

    async def test_keyword_only_hit_is_found(self, pipeline):
        await seed(pipeline, ("a", "zzzz", {}), ("b", "contains needle", {}))

        results = await pipeline.hybrid_retrieve("needle", n_results=5)

        by_id = {c.id: c for c in results}
        assert "keyword" in by_id["b"].sources

    async def test_filters_apply(self, pipeline):
        await seed(pipeline, ("a", "cat", {"lang": "en"}), ("b", "cat", {"lang": "de"}))
        results = await pipeline.hybrid_retrieve("cat", filters={"lang": "de"})
        assert [c.id for c in results] == ["b"]

    async def test_single_source_failure_degrades(self, pipeline, store):
        await seed(pipeline, ("a", "needle", {}))
        store.fail_query = True
        context = RetrievalContext()

        results = await pipeline.hybrid_retrieve("needle", context=context)

        assert [c.id for c in results] == ["a"]
        statuses = [(e.type, e.status) for e in context.entries]
        assert ("vector", "error") in statuses
        assert ("hybrid", "ok") in statuses

    async def test_all_sources_failing_returns_empty(self, pipeline, store):
        store.fail_query = True
        store.fail_list = True
        context = RetrievalContext()

        results = await pipeline.hybrid_retrieve("needle", context=context)

        assert results == []
        assert context.entries[-1].type == "hybrid"
        assert context.entries[-1].status == "error"

    async def test_structured_failure(self, pipeline, store):
        store.fail_query = True
        store.fail_list = True
        result = await pipeline.hybrid_retrieve_result(HybridQuery(query="x"))
        assert result.error_kind == ErrorKind.STORE_UNAVAILABLE
        assert result.render() == "Error retrieving documents: store down"

    async def test_keyword_disabled(self, embedder):
        store = InMemoryStore(embedder)
        pipeline = RAGPipeline(store, embedder, config=RAGConfig(keyword_enabled=False))
        await seed(pipeline, ("a", "needle", {}))
        store.fail_query = True

        assert await pipeline.hybrid_retrieve("needle") == []


# ===========================================================================
# Iterative retrieval
# ===========================================================================

class TestIterativeRetrieve:
    @pytest.mark.parametrize("steps", [0, 1, 3])
    async def test_returns_exactly_k_contexts_on_empty_store(self, pipeline, steps):
        contexts = await pipeline.iterative_retrieve("anything", steps=steps)
        assert contexts == [""] * steps

    async def test_generated_text_becomes_next_query(self, pipeline):
        await seed(pipeline, ("cat", "cat", {}), ("dog", "dog", {}))
        calls = []

        async def generate(query, context):
            calls.append((query, context))
            return "dog"

        history = await pipeline.iterate(IterativeQuery(query="cat", steps=2, n_results=1), generate=generate)

        assert [h.query for h in history] == ["cat", "dog"]
        assert [h.candidate_ids for h in history] == [["cat"], ["dog"]]
        assert calls[0] == ("cat", "cat")

    async def test_generation_failure_keeps_current_query(self, pipeline):
        await seed(pipeline, ("cat", "cat", {}))

        async def failing(query, context):
            raise RuntimeError("model offline")

        context = RetrievalContext()
        history = await pipeline.iterate(IterativeQuery(query="cat", steps=3), generate=failing, context=context)

        assert [h.query for h in history] == ["cat", "cat", "cat"]
        assert all(h.error == "model offline" for h in history)
        assert any(e.type == "generation" for e in context.entries)

    async def test_default_generate_is_passthrough(self, pipeline):
        await seed(pipeline, ("cat", "cat food", {}))

        history = await pipeline.iterate(IterativeQuery(query="cat", steps=2, n_results=1))

        assert history[1].query == "cat cat food"

    async def test_references_accumulate_across_steps(self, pipeline):
        await seed(pipeline, ("cat", "cat", {}), ("dog", "dog", {}))

        async def generate(query, context):
            return "dog"

        context = RetrievalContext()
        await pipeline.iterative_retrieve("cat", steps=2, generate=generate, n_results=1, context=context)

        assert [r.id for r in context.references] == ["cat", "dog"]
        assert context.entries[-1].type == "iterative"


class TestStatus:
    async def test_status_reports_components(self, pipeline, store):
        status = await pipeline.status()
        assert status["components"]["store_health"] is True
        assert status["components"]["embed_model"] == "letters"

    async def test_status_reports_last_merge(self, pipeline):
        await seed(pipeline, ("a", "needle", {}), ("b", "other", {}))

        await pipeline.hybrid_retrieve("needle")

        stats = (await pipeline.status())["statistics"]["last_merge"]
        assert stats["total_candidates"] == 2
        assert stats["hybrid_count"] == 1

    async def test_close_closes_store(self, pipeline, store):
        await pipeline.close()
        assert store.closed
