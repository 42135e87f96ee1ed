import json
import math
import threading

import pytest

import folio_rag.retrieval.vector_store as vector_store_module
from folio_rag.common.errors import EmbeddingDimensionError, StoreUnavailableError
from folio_rag.retrieval.vector_store import (
    LocalVectorStore,
    cosine_similarity,
    create_vector_store,
)

QUERY = [1.0, 0.0]


def test_cosine_similarity_bounds_and_symmetry():
    a, b = [0.3, -1.2, 4.0], [2.0, 0.5, -0.7]
    assert cosine_similarity(a, b) == pytest.approx(cosine_similarity(b, a))
    assert -1.0 <= cosine_similarity(a, b) <= 1.0
    assert cosine_similarity(a, a) == pytest.approx(1.0)
    assert cosine_similarity(a, [-x for x in a]) == pytest.approx(-1.0)
    assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.0)


def test_cosine_similarity_zero_norm_is_zero():
    assert cosine_similarity([0.0, 0.0], [1.0, 2.0]) == 0.0
    assert cosine_similarity([1.0, 2.0], [0.0, 0.0]) == 0.0


def test_cosine_similarity_rejects_length_mismatch():
    with pytest.raises(ValueError):
        cosine_similarity([1.0, 2.0], [1.0, 2.0, 3.0])


def test_new_store_creates_empty_file(tmp_path):
    path = tmp_path / "nested" / "store.json"
    store = LocalVectorStore(path)

    assert path.exists()
    assert store.count() == 0
    assert store.search(QUERY, 0.0, 10) == []
    assert store.stats().total_chunks == 0


def test_missing_file_without_create_is_unavailable(tmp_path):
    with pytest.raises(StoreUnavailableError):
        LocalVectorStore(tmp_path / "missing.json", create_if_missing=False)


def test_corrupt_file_is_unavailable(tmp_path):
    path = tmp_path / "store.json"
    path.write_text("{not json", encoding="utf-8")
    with pytest.raises(StoreUnavailableError):
        LocalVectorStore(path)


def test_search_orders_filters_and_limits(local_store, make_chunk):
    """
    Results satisfy the threshold, are sorted by similarity descending, and
    never exceed the limit.
    """
    local_store.upsert_batch([
        make_chunk("A", 0, [0.6, 0.8]),
        make_chunk("A", 1, [0.0, 1.0]),
        make_chunk("A", 2, [1.0, 0.0]),
        make_chunk("A", 3, [0.8, 0.6]),
    ])

    results = local_store.search(QUERY, 0.5, 10)
    assert [r.chunk.chunk_index for r in results] == [2, 3, 0]
    assert [r.similarity for r in results] == pytest.approx([1.0, 0.8, 0.6])
    assert all(r.similarity >= 0.5 for r in results)

    assert [r.chunk.chunk_index for r in local_store.search(QUERY, 0.5, 2)] == [2, 3]
    assert local_store.search(QUERY, 0.5, 0) == []
    assert local_store.search(QUERY, 0.99, 10)[0].similarity_percent == 100


def test_ties_keep_insertion_order(local_store, make_chunk):
    local_store.upsert_batch([
        make_chunk("B", 0, [1.0, 1.0]),
        make_chunk("A", 0, [1.0, 1.0]),
        make_chunk("C", 0, [1.0, 1.0]),
    ])

    results = local_store.search([1.0, 1.0], 0.0, 10)
    assert [r.chunk.source_title for r in results] == ["B", "A", "C"]


def test_zero_vector_chunk_scores_zero(local_store, make_chunk):
    local_store.upsert_batch([make_chunk("A", 0, [0.0, 0.0])])

    assert local_store.search(QUERY, 0.1, 10) == []
    results = local_store.search(QUERY, 0.0, 10)
    assert results[0].similarity == 0.0


def test_upsert_is_idempotent_per_id(local_store, make_chunk):
    local_store.upsert_batch([make_chunk("A", 0, [1.0, 0.0], content="old content")])
    local_store.upsert_batch([make_chunk("A", 0, [1.0, 0.0], content="new content")])

    chunks = local_store.chunks()
    assert len(chunks) == 1
    assert chunks[0].content == "new content"


def test_store_persists_across_instances(tmp_path, make_chunk):
    path = tmp_path / "store.json"
    LocalVectorStore(path).upsert_batch([
        make_chunk("A", 0, [1.0, 0.0], file_type=".txt"),
        make_chunk("A", 1, [0.0, 1.0]),
    ])

    reopened = LocalVectorStore(path, create_if_missing=False)
    assert reopened.count() == 2
    top = reopened.search(QUERY, 0.5, 1)[0]
    assert top.chunk.chunk_index == 0
    assert top.chunk.metadata.extra == {"file_type": ".txt"}

    data = json.loads(path.read_text(encoding="utf-8"))
    assert len(data["chunks"]) == 2


def test_replace_source_swaps_only_that_source(local_store, make_chunk):
    local_store.upsert_batch([make_chunk("A", i, [1.0, float(i)]) for i in range(3)])
    local_store.upsert_batch([make_chunk("B", 0, [0.0, 1.0])])

    local_store.replace_source("A", [make_chunk("A", i, [1.0, 0.0], content=f"new {i}") for i in range(2)])

    stats = local_store.stats()
    assert stats.total_chunks == 3
    assert stats.total_sources == 2
    assert stats.per_source["A"].chunk_count == 2
    assert stats.per_source["B"].chunk_count == 1
    assert sorted(c.content for c in local_store.chunks() if c.source_title == "A") == ["new 0", "new 1"]


def test_replace_source_rejects_foreign_chunks(local_store, make_chunk):
    with pytest.raises(ValueError):
        local_store.replace_source("A", [make_chunk("B", 0, [1.0, 0.0])])


def test_delete_by_source_returns_removed_count(local_store, make_chunk):
    local_store.upsert_batch([make_chunk("A", i, [1.0, 0.0]) for i in range(3)])
    local_store.upsert_batch([make_chunk("B", 0, [1.0, 0.0])])

    assert local_store.delete_by_source("A") == 3
    assert local_store.delete_by_source("A") == 0
    assert local_store.count() == 1


def test_stats_aggregate_tokens(local_store, make_chunk):
    local_store.upsert_batch([
        make_chunk("A", 0, [1.0, 0.0], tokens=10),
        make_chunk("A", 1, [1.0, 0.0], tokens=15),
        make_chunk("B", 0, [1.0, 0.0], tokens=7),
    ])

    stats = local_store.stats().to_dict()
    assert stats["total_chunks"] == 3
    assert stats["total_sources"] == 2
    assert stats["per_source"]["A"] == {"chunk_count": 2, "total_tokens": 25}
    assert stats["per_source"]["B"] == {"chunk_count": 1, "total_tokens": 7}


def test_mixed_dimensions_are_rejected(local_store, make_chunk):
    local_store.upsert_batch([make_chunk("A", 0, [1.0, 0.0])])

    with pytest.raises(EmbeddingDimensionError):
        local_store.upsert_batch([make_chunk("B", 0, [1.0, 0.0, 0.0])])
    with pytest.raises(EmbeddingDimensionError):
        local_store.search([1.0, 0.0, 0.0], 0.0, 5)


def test_failed_write_leaves_state_untouched(local_store, make_chunk, monkeypatch):
    local_store.upsert_batch([make_chunk("A", 0, [1.0, 0.0])])
    before = local_store.path.read_text(encoding="utf-8")

    def boom(src, dst):
        raise OSError("disk full")

    monkeypatch.setattr(vector_store_module.os, "replace", boom)

    with pytest.raises(StoreUnavailableError):
        local_store.replace_source("A", [make_chunk("A", 0, [0.0, 1.0]), make_chunk("A", 1, [0.0, 1.0])])

    assert local_store.count() == 1
    assert local_store.chunks()[0].embedding == (1.0, 0.0)
    assert local_store.path.read_text(encoding="utf-8") == before
    assert [p.name for p in local_store.path.parent.iterdir()] == [local_store.path.name]


def test_similarity_matches_reference_cosine(local_store, make_chunk):
    vector = [0.3, 0.4, 0.5]
    query = [0.9, -0.1, 0.2]
    local_store.upsert_batch([make_chunk("A", 0, vector)])

    result = local_store.search(query, -1.0, 1)[0]
    expected = sum(a * b for a, b in zip(vector, query)) / (
        math.sqrt(sum(a * a for a in vector)) * math.sqrt(sum(b * b for b in query))
    )
    assert result.similarity == pytest.approx(expected)


def test_create_vector_store_selects_linear_scan(tmp_path):
    store = create_vector_store({"type": "linear_scan", "path": str(tmp_path / "s.json")})
    assert isinstance(store, LocalVectorStore)

    default = create_vector_store({"path": str(tmp_path / "d.json")})
    assert isinstance(default, LocalVectorStore)


def test_create_vector_store_rejects_unknown_kind():
    with pytest.raises(ValueError):
        create_vector_store({"type": "faiss"})


def _run_threads(targets, timeout=30.0):
    threads = [threading.Thread(target=t, daemon=True) for t in targets]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout)
    assert not any(thread.is_alive() for thread in threads)


def test_queries_never_see_half_replaced_source(local_store, make_chunk):
    versions = {
        "v1": [make_chunk("A", i, [1.0, 0.1 * i], content=f"v1 {i}") for i in range(3)],
        "v2": [make_chunk("A", i, [1.0, 0.1 * i], content=f"v2 {i}") for i in range(5)],
    }
    local_store.upsert_batch([make_chunk("B", 0, [0.0, 1.0])])
    local_store.replace_source("A", versions["v1"])

    done = threading.Event()
    errors = []
    snapshots = []

    def writer():
        try:
            for round_no in range(40):
                local_store.replace_source("A", versions["v2" if round_no % 2 == 0 else "v1"])
        except Exception as exc:
            errors.append(exc)
        finally:
            done.set()

    def reader():
        try:
            while not done.is_set():
                results = local_store.search(QUERY, 0.5, 100)
                snapshots.append([r.chunk.content for r in results])
        except Exception as exc:
            errors.append(exc)

    _run_threads([writer] + [reader] * 4)

    assert errors == []
    assert snapshots
    for contents in snapshots:
        labels = {content.split()[0] for content in contents}
        assert len(labels) == 1
        assert len(contents) == len(versions[labels.pop()])


def test_concurrent_searches_right_after_a_write(local_store, make_chunk):
    dim = 32
    local_store.upsert_batch([
        make_chunk("A", i, [((i * 31 + d * 17) % 97) / 97.0 + 0.01 for d in range(dim)])
        for i in range(400)
    ])
    query = [1.0] * dim
    readers = 8
    errors = []

    for round_no in range(20):
        # Every round starts from a freshly committed store.
        local_store.upsert_batch([make_chunk("B", round_no, [float(round_no + 1)] * dim)])
        barrier = threading.Barrier(readers)

        def reader():
            try:
                barrier.wait(timeout=10)
                assert len(local_store.search(query, -1.0, 10)) == 10
            except Exception as exc:
                errors.append(exc)

        _run_threads([reader] * readers)

    assert errors == []
