import threading
import time

import pytest

from folio_rag.app.container import build_container
from folio_rag.common.schemas import SourceDocument
from folio_rag.config import GlobalConfig
from folio_rag.pipelines.rag_pipeline import NO_CONTENT_ANSWER
from folio_rag.retrieval.vector_store import LocalVectorStore


class DummyLLM:
    def __init__(self):
        self.calls = []

    def generate(self, prompt, **kwargs):
        self.calls.append(prompt)
        return "Alpha is about the beginning."


def _axis_vector(text):
    return [1.0, 0.0] if "alpha" in text.lower() else [0.0, 1.0]


@pytest.fixture
def container(tmp_path, monkeypatch, stub_embedder):
    embedder = stub_embedder(_axis_vector)
    llm = DummyLLM()
    monkeypatch.setattr("folio_rag.retrieval.embedder.create_embedder", lambda cfg: embedder)
    monkeypatch.setattr("folio_rag.generation.llm_interface.create_llm", lambda cfg: llm)

    cfg = GlobalConfig(
        {
            "embedder": {"type": "openai_like", "model_name": "stub"},
            "generator_llm": {"model_name": "stub"},
            "vector_store": {"type": "local", "path": "store.json"},
            "chunking": {"target_size": 100, "overlap": 10},
            "retrieval": {"steps": [{"threshold": 0.5, "limit": 5}], "final_top_k": 3},
        },
        config_path=tmp_path / "config.yaml",
    )
    return build_container(cfg)


def test_components_are_cached(container):
    assert container.vector_store is container.vector_store
    assert container.pipeline.retriever is container.retriever
    assert container.retriever.embedder is container.embedder
    assert container.ingestion_pipeline.vector_store is container.vector_store


def test_concurrent_first_access_builds_one_store(tmp_path, monkeypatch):
    calls = []

    def slow_factory(cfg):
        calls.append(cfg)
        time.sleep(0.05)
        return object()

    monkeypatch.setattr("folio_rag.retrieval.vector_store.create_vector_store", slow_factory)
    container = build_container(
        GlobalConfig({"vector_store": {"type": "local"}}, config_path=tmp_path / "config.yaml")
    )
    barrier = threading.Barrier(8)
    seen = []

    def access():
        barrier.wait(timeout=5)
        seen.append(container.vector_store)

    threads = [threading.Thread(target=access) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(5)

    assert len(calls) == 1
    assert len(seen) == 8
    assert all(store is seen[0] for store in seen)


def test_warm_up_builds_retrieval_components(container):
    container.warm_up()

    built = vars(container)
    for name in ("vector_store", "embedder", "retriever", "ingestion_pipeline"):
        assert name in built
    assert "generator_llm" not in built


def test_wiring_follows_config(container, tmp_path):
    assert isinstance(container.vector_store, LocalVectorStore)
    assert container.vector_store.path == tmp_path / "store.json"
    assert container.ingestion_pipeline.target_size == 100
    assert container.ingestion_pipeline.overlap == 10
    assert container.retriever.final_top_k == 3
    assert container.prompt_name == "book_assistant"


def test_ingest_then_answer(container):
    text = "The alpha story opens on a quiet morning in a small harbour town. " * 4
    report = container.ingestion_pipeline.ingest([SourceDocument(title="Alpha", raw_text=text)])
    assert report.total_chunks_written >= 1

    answer = container.pipeline.run("Tell me about alpha")

    assert answer.answer == "Alpha is about the beginning."
    assert answer.sources[0].title == "Alpha"
    assert answer.confidence == 100


def test_unmatched_question_gets_fixed_answer(container):
    answer = container.pipeline.run("Something unrelated?")

    assert answer.answer == NO_CONTENT_ANSWER
    assert container.generator_llm.calls == []


def test_unknown_prompt_name_is_rejected(tmp_path):
    cfg = GlobalConfig(
        {"embedder": {"model_name": "m"}, "generator_llm": {"model_name": "m"}, "prompt_name": "missing"},
        config_path=tmp_path / "config.yaml",
    )
    with pytest.raises(ValueError):
        build_container(cfg).prompt_name
