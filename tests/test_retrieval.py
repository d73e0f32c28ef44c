"""Tests for two-phase retrieval."""

import pytest

from conftest import scored
from kb_rag.errors import ExternalServiceError
from kb_rag.retrieval import Empty, Failed, Hit, RetrievalEngine, merge_by_score


def _kbs(registry, count):
    return [registry.create_knowledge_base(f"kb{i}", "") for i in range(count)]


def test_targeted_hit_skips_global_search(engine, registry, vector_index):
    """Test a targeted hit returns without the global phase."""
    target, _, _ = _kbs(registry, 3)
    vector_index.results[target.id] = [scored("answer", 0.3, target.id)]

    docs = engine.retrieve("question", target.id)

    assert [doc.page_content for doc in docs] == ["answer"]
    assert vector_index.query_calls == [target.id]


def test_targeted_empty_queries_every_collection(engine, registry, vector_index):
    """Test an empty targeted search falls back to every collection."""
    kbs = _kbs(registry, 3)
    target = kbs[0]
    vector_index.results[kbs[1].id] = [scored("from kb1", 0.5, kbs[1].id)]

    docs = engine.retrieve("question", target.id)

    assert [doc.page_content for doc in docs] == ["from kb1"]
    assert vector_index.query_calls[0] == target.id
    assert vector_index.query_calls[1:] == [kb.id for kb in kbs]


def test_targeted_failure_falls_back(engine, registry, vector_index):
    """Test a failed targeted search falls back."""
    kbs = _kbs(registry, 2)
    vector_index.query_failures[kbs[0].id] = ExternalServiceError("vector_store", "unreachable")
    vector_index.results[kbs[1].id] = [scored("backup", 0.1, kbs[1].id)]

    docs = engine.retrieve("question", kbs[0].id)

    assert [doc.page_content for doc in docs] == ["backup"]


def test_targeted_failure_raises_without_fallback(embeddings, vector_index, registry):
    """Test a failed targeted search raises when fallback is off."""
    kb = registry.create_knowledge_base("kb", "")
    vector_index.query_failures[kb.id] = ExternalServiceError("vector_store", "unreachable")
    engine = RetrievalEngine(embeddings, vector_index, registry, fallback_on_error=False)

    with pytest.raises(ExternalServiceError):
        engine.retrieve("question", kb.id)


def test_global_results_sorted_ascending(engine, registry, vector_index):
    """Test global results are merged by ascending distance."""
    kbs = _kbs(registry, 3)
    vector_index.results[kbs[0].id] = [scored("a", 0.9, kbs[0].id), scored("b", 0.2, kbs[0].id)]
    vector_index.results[kbs[1].id] = [scored("c", 0.5, kbs[1].id)]
    vector_index.results[kbs[2].id] = [scored("d", 0.1, kbs[2].id), scored("e", 0.7, kbs[2].id)]

    results = engine.retrieve_scored("question", None, k=4)

    scores = [item.score for item in results]
    assert scores == sorted(scores)
    assert [item.document.page_content for item in results] == ["d", "b", "c", "e"]


def test_ties_keep_registry_order():
    """Test equal scores keep registry order."""
    first = scored("first", 0.4, "kb0")
    second = scored("second", 0.4, "kb1")
    third = scored("third", 0.1, "kb2")

    assert merge_by_score([first, second, third], 3) == [third, first, second]


def test_failing_collection_skipped(engine, registry, vector_index):
    """Test a failing collection is skipped in the global phase."""
    kbs = _kbs(registry, 3)
    vector_index.query_failures[kbs[1].id] = RuntimeError("boom")
    vector_index.results[kbs[0].id] = [scored("ok0", 0.3, kbs[0].id)]
    vector_index.results[kbs[2].id] = [scored("ok2", 0.2, kbs[2].id)]

    docs = engine.retrieve("question")

    assert [doc.page_content for doc in docs] == ["ok2", "ok0"]
    assert vector_index.query_calls == [kb.id for kb in kbs]


def test_all_failing_returns_empty(engine, registry, vector_index):
    """Test every collection failing yields no documents."""
    for kb in _kbs(registry, 2):
        vector_index.query_failures[kb.id] = RuntimeError("down")
    assert engine.retrieve("question") == []


def test_no_knowledge_bases_returns_empty(engine, vector_index):
    """Test retrieval without knowledge bases."""
    assert engine.retrieve("question", "unknown") == []
    assert vector_index.query_calls == ["unknown"]


def test_placeholder_collection_skips_targeted_phase(engine, registry, vector_index):
    """Test the placeholder collection goes straight to the global phase."""
    kb = registry.create_knowledge_base("kb", "")

    engine.retrieve("question", "private-knowledge-base")

    assert vector_index.query_calls == [kb.id]


def test_question_embedded_once(engine, registry, embeddings):
    """Test the question is embedded once per retrieval."""
    _kbs(registry, 3)
    engine.retrieve("what is A?")
    assert embeddings.text_calls == ["what is A?"]


def test_search_collection_outcomes(engine, vector_index):
    """Test search outcome tagging."""
    vector_index.results["hit"] = [scored("x", 0.1)]
    vector_index.query_failures["bad"] = RuntimeError("down")

    assert isinstance(engine.search_collection("hit", [0.0], 4), Hit)
    assert isinstance(engine.search_collection("empty", [0.0], 4), Empty)
    failed = engine.search_collection("bad", [0.0], 4)
    assert isinstance(failed, Failed)
    assert failed.reason == "down"
