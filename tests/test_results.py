"""
Unit Tests - Result rendering, metadata sanitization and provenance context
"""
from ragengine.infrastructure.rag import (
    NO_RESULTS_MESSAGE,
    ErrorKind,
    RankedCandidate,
    RetrievalContext,
    RetrievalResult,
    StoreUnavailable,
    format_documents,
    sanitize_metadata,
)
from ragengine.infrastructure.rag.prompt_builder import build_context


def candidate(doc_id, content="text", distance=0.25, **metadata):
    return RankedCandidate(id=doc_id, content=content, metadata=metadata, distance=distance)


class Unprintable:
    def __str__(self):
        raise RuntimeError("no string form")


class TestSanitizeMetadata:
    def test_scalars_are_kept(self):
        meta = {"s": "x", "i": 1, "f": 1.5, "b": True, "n": None}
        assert sanitize_metadata(meta) == meta

    def test_non_scalars_are_stringified(self):
        assert sanitize_metadata({"d": {"k": 1}, "l": [1, 2]}) == {"d": "{'k': 1}", "l": "[1, 2]"}

    def test_unconvertible_value_becomes_none(self):
        assert sanitize_metadata({"bad": Unprintable()}) == {"bad": None}

    def test_empty(self):
        assert sanitize_metadata(None) == {}


class TestRetrievalResult:
    def test_success_renders_documents(self):
        result = RetrievalResult.success([candidate("a", "alpha"), candidate("b", "beta", 0.5)])
        assert result.render() == (
            "Document 1 (ID: a, Distance: 0.2500):\nalpha"
            "\n\n---\n\n"
            "Document 2 (ID: b, Distance: 0.5000):\nbeta"
        )

    def test_empty_success_renders_sentinel(self):
        result = RetrievalResult.success([])
        assert result.render() == NO_RESULTS_MESSAGE

    def test_failure_from_exception(self):
        result = RetrievalResult.from_exception(StoreUnavailable("connection refused"))
        assert not result.ok
        assert result.error_kind == ErrorKind.STORE_UNAVAILABLE
        assert result.render() == "Error retrieving documents: connection refused"

    def test_configuration_missing_render(self):
        result = RetrievalResult.failure(ErrorKind.CONFIGURATION_MISSING, "no embedding endpoint")
        assert result.render() == "No document source configured. (no embedding endpoint)"

    def test_format_documents_empty(self):
        assert format_documents([]) == NO_RESULTS_MESSAGE


class TestBuildContext:
    def test_joins_contents(self):
        assert build_context([candidate("a", "one"), candidate("b", "two")]) == "one\n\ntwo"

    def test_empty(self):
        assert build_context([]) == ""


class TestRetrievalContext:
    def test_record_is_append_only(self):
        context = RetrievalContext()
        context.record("vector", "q1", "ok")
        context.record("hybrid", "q2", "error", "store down")

        assert [(e.type, e.query, e.status) for e in context.entries] == [
            ("vector", "q1", "ok"),
            ("hybrid", "q2", "error"),
        ]
        assert context.entries[1].detail == "store down"
        assert context.entries[0].timestamp

    def test_reference_defaults_and_dedup(self):
        context = RetrievalContext()
        added = context.add_references([candidate("a", title="Guide"), candidate("b", source="crm")])
        again = context.add_references([candidate("a"), candidate("c")])

        assert [(r.id, r.title, r.source) for r in added] == [
            ("a", "Guide", "Vector Knowledge Base"),
            ("b", "Document 2", "crm"),
        ]
        assert [r.id for r in again] == ["c"]
        assert context.has_reference("b")

    def test_to_dict(self):
        context = RetrievalContext()
        context.add_references([candidate("a")])
        data = context.to_dict()
        assert data["references"] == [
            {"id": "a", "title": "Document 1", "source": "Vector Knowledge Base", "distance": 0.25}
        ]
        assert data["entries"] == []
