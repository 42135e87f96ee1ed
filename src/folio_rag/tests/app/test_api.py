from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient

import folio_rag.app.api as api
from folio_rag.common.errors import (
    EmbeddingError,
    GenerationError,
    InputValidationError,
    StoreUnavailableError,
)
from folio_rag.pipelines.ingestion_pipeline import IngestionReport, SourceIngestionReport
from folio_rag.pipelines.rag_pipeline import AnswerResult, Citation


class DummyPipeline:
    def __init__(self, result=None, error=None):
        self.result = result
        self.error = error
        self.questions = []

    def run(self, question):
        self.questions.append(question)
        if self.error is not None:
            raise self.error
        return self.result


class DummyIngestion:
    def __init__(self):
        self.calls = []

    def ingest(self, sources, replace_existing=True):
        self.calls.append(([s.title for s in sources], replace_existing))
        return IngestionReport(
            sources=[SourceIngestionReport(title=s.title, chunks_planned=2, chunks_written=2) for s in sources]
        )


@pytest.fixture
def install(monkeypatch):
    def _install(pipeline=None, vector_store=None, ingestion_pipeline=None):
        container = SimpleNamespace(
            pipeline=pipeline or DummyPipeline(),
            vector_store=vector_store,
            ingestion_pipeline=ingestion_pipeline or DummyIngestion(),
        )
        monkeypatch.setattr(api.app.state, "container", container, raising=False)
        return TestClient(api.app)

    return _install


def test_health_reports_chunk_count(install, local_store, make_chunk):
    local_store.upsert_batch([make_chunk("A", i, [1.0, 0.0]) for i in range(3)])
    client = install(vector_store=local_store)

    resp = client.get("/health")

    assert resp.status_code == 200
    assert resp.json() == {"status": "ok", "chunks_loaded": 3}


def test_health_unavailable_store(install):
    class DownStore:
        def count(self):
            raise StoreUnavailableError("no connection")

    client = install(vector_store=DownStore())
    assert client.get("/health").status_code == 503


def test_stats(install, local_store, make_chunk):
    local_store.upsert_batch([make_chunk("A", 0, [1.0, 0.0], tokens=12)])
    client = install(vector_store=local_store)

    data = client.get("/v1/stats").json()

    assert data["total_chunks"] == 1
    assert data["per_source"]["A"] == {"chunk_count": 1, "total_tokens": 12}


def test_query_returns_answer(install):
    result = AnswerResult(
        answer="According to Source 1, it rains.",
        sources=[Citation(title="Alpha", chunk_index=1, similarity_percent=88, preview="It rains...")],
        confidence=88,
        chunks_found=1,
    )
    pipeline = DummyPipeline(result=result)
    client = install(pipeline=pipeline)

    resp = client.post("/v1/query", json={"question": "What is the weather?"})

    assert resp.status_code == 200
    body = resp.json()
    assert body["answer"] == result.answer
    assert body["confidence"] == 88
    assert body["chunks_found"] == 1
    assert body["sources"][0] == {
        "title": "Alpha",
        "chunk_index": 1,
        "similarity_percent": 88,
        "preview": "It rains...",
    }
    assert pipeline.questions == ["What is the weather?"]


@pytest.mark.parametrize(
    "error, status",
    [
        (InputValidationError("Question must not be empty."), 400),
        (EmbeddingError("provider down", transient=True), 503),
        (StoreUnavailableError("store down"), 503),
        (GenerationError("llm down"), 503),
    ],
)
def test_query_maps_errors_to_status(install, error, status):
    client = install(pipeline=DummyPipeline(error=error))

    resp = client.post("/v1/query", json={"question": "anything"})

    assert resp.status_code == status
    assert resp.json()["detail"]["error"] == type(error).__name__


def test_query_unexpected_error_is_500(install):
    client = install(pipeline=DummyPipeline(error=RuntimeError("boom")))
    assert client.post("/v1/query", json={"question": "anything"}).status_code == 500


def test_query_requires_question_field(install):
    client = install()
    assert client.post("/v1/query", json={}).status_code == 422


def test_ingest_endpoint(install):
    ingestion = DummyIngestion()
    client = install(ingestion_pipeline=ingestion)

    resp = client.post(
        "/v1/ingest",
        json={"sources": [{"title": "Alpha", "text": "Once upon a time."}], "replace_existing": False},
    )

    assert resp.status_code == 200
    assert resp.json()["total_chunks_written"] == 2
    assert ingestion.calls == [(["Alpha"], False)]


def test_startup_warms_container(monkeypatch, tmp_path):
    class RecordingContainer:
        def __init__(self, cfg):
            self.cfg = cfg
            self.warmed = False

        def warm_up(self):
            self.warmed = True

    monkeypatch.setenv("FOLIO_CONFIG", str(tmp_path / "config.yaml"))
    monkeypatch.setattr(api, "GlobalConfig", SimpleNamespace(load=lambda path: {"path": path}))
    monkeypatch.setattr(api, "build_container", RecordingContainer)
    monkeypatch.setattr(api.app.state, "container", None, raising=False)

    api.startup()

    container = api.app.state.container
    assert isinstance(container, RecordingContainer)
    assert container.warmed
    assert container.cfg == {"path": str(tmp_path / "config.yaml")}
