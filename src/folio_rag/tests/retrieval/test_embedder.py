import threading
import time
from types import SimpleNamespace

import pytest

from folio_rag.common.errors import EmbeddingDimensionError, EmbeddingError
from folio_rag.retrieval.embedder import (
    FATAL,
    OpenAILikeEmbedder,
    PERMANENT,
    TRANSIENT,
    _normalize_embedder_kind,
    classify_provider_error,
    create_embedder,
)


class FakeStatusError(Exception):
    """Provider error carrying an HTTP status code, like httpx/openai errors."""

    def __init__(self, status_code: int):
        super().__init__(f"HTTP {status_code}")
        self.status_code = status_code


def _recording_sleep():
    sleeps: list[float] = []

    async def fake_sleep(seconds):
        sleeps.append(seconds)

    return sleeps, fake_sleep


def _index_vector(text: str) -> list[float]:
    return [float(int(text)), 1.0]


def test_embed_preserves_order_and_sleeps_between_batches(stub_embedder):
    """
    Seven inputs with batch size 3 run as three batches, with a cooldown
    between consecutive batches but not after the last one.
    """
    sleeps, fake_sleep = _recording_sleep()
    embedder = stub_embedder(_index_vector, batch_size=3, batch_delay=1.5, sleep=fake_sleep)

    result = embedder.embed([str(i) for i in range(7)])

    assert result.requested_count == 7
    assert result.produced_count == 7
    assert result.is_complete
    assert result.indices == list(range(7))
    assert [v[0] for v in result.vectors] == [float(i) for i in range(7)]
    assert sleeps == [1.5, 1.5]


def test_embed_empty_input(stub_embedder):
    embedder = stub_embedder()
    result = embedder.embed([])

    assert result.requested_count == 0
    assert result.vectors == []
    assert embedder.calls == []


def test_calls_within_a_batch_run_concurrently(stub_embedder):
    """
    All three calls of a batch must be in flight at the same time; a barrier
    of three parties would otherwise time out.
    """
    barrier = threading.Barrier(3, timeout=5)

    def vector_fn(text):
        barrier.wait()
        return [1.0, 2.0]

    embedder = stub_embedder(vector_fn, batch_size=3)
    result = embedder.embed(["a", "b", "c"])

    assert result.failures == []
    assert result.produced_count == 3


def test_transient_failures_are_retried_with_linear_backoff(stub_embedder):
    attempts = {"n": 0}

    def vector_fn(text):
        attempts["n"] += 1
        if attempts["n"] <= 2:
            raise ConnectionError("connection reset")
        return [1.0, 0.0]

    sleeps, fake_sleep = _recording_sleep()
    embedder = stub_embedder(vector_fn, max_retries=3, retry_delay=0.5, sleep=fake_sleep)

    result = embedder.embed(["only"])

    assert result.produced_count == 1
    assert attempts["n"] == 3
    assert sleeps == [0.5, 1.0]


def test_transient_failures_exhaust_retries(stub_embedder):
    def vector_fn(text):
        raise FakeStatusError(503)

    embedder = stub_embedder(vector_fn, max_retries=2)
    result = embedder.embed(["x"])

    assert result.produced_count == 0
    assert len(result.failures) == 1
    assert result.failures[0].attempts == 3
    assert "FakeStatusError" in result.failures[0].error


def test_permanent_failure_is_isolated_and_not_retried(stub_embedder):
    """
    A malformed input fails on its own; the other inputs of the request are
    still embedded and returned in order.
    """
    def vector_fn(text):
        if text == "bad":
            raise ValueError("input rejected")
        return [float(len(text)), 1.0]

    embedder = stub_embedder(vector_fn, batch_size=3)
    result = embedder.embed(["good", "bad", "fine!"])

    assert result.produced_count == 2
    assert not result.is_complete
    assert result.indices == [0, 2]
    assert result.vector_for(1) is None
    assert result.vector_for(2) == [5.0, 1.0]
    assert [(f.index, f.attempts) for f in result.failures] == [(1, 1)]
    assert embedder.calls.count("bad") == 1


def test_malformed_vector_is_a_per_item_failure(stub_embedder):
    def vector_fn(text):
        return [] if text == "empty" else [1.0, 2.0]

    result = stub_embedder(vector_fn).embed(["ok", "empty"])

    assert result.indices == [0]
    assert result.failures[0].index == 1
    assert "MalformedResponse" in result.failures[0].error


def test_authentication_failure_is_fatal(stub_embedder):
    def vector_fn(text):
        raise FakeStatusError(401)

    embedder = stub_embedder(vector_fn)
    with pytest.raises(EmbeddingError):
        embedder.embed(["a", "b"])


def test_dimension_mismatch_raises(stub_embedder):
    def vector_fn(text):
        return [1.0, 2.0] if text == "first" else [1.0, 2.0, 3.0]

    embedder = stub_embedder(vector_fn, batch_size=1)
    with pytest.raises(EmbeddingDimensionError) as info:
        embedder.embed(["first", "second"])

    assert info.value.expected == 2
    assert info.value.actual == 3


def test_configured_dimension_is_enforced(stub_embedder):
    embedder = stub_embedder(lambda text: [1.0, 2.0], dimensions=3)
    with pytest.raises(EmbeddingDimensionError):
        embedder.embed(["x"])


def test_first_vector_fixes_dimension(stub_embedder):
    embedder = stub_embedder(lambda text: [0.5, 0.5, 0.5, 0.5])
    assert embedder.dimension is None
    embedder.embed(["x"])
    assert embedder.dimension == 4


def test_slow_call_times_out(stub_embedder):
    def vector_fn(text):
        time.sleep(0.5)
        return [1.0]

    embedder = stub_embedder(vector_fn, timeout=0.05, max_retries=0)
    result = embedder.embed(["slow"])

    assert result.produced_count == 0
    assert "TimeoutError" in result.failures[0].error


def test_embed_query_returns_vector(stub_embedder):
    embedder = stub_embedder(lambda text: [0.1, 0.2])
    assert embedder.embed_query("hello") == [0.1, 0.2]


def test_embed_query_raises_instead_of_returning_zero_vector(stub_embedder):
    def vector_fn(text):
        raise ValueError("bad request")

    with pytest.raises(EmbeddingError):
        stub_embedder(vector_fn).embed_query("hello")


@pytest.mark.parametrize(
    "exc, expected",
    [
        (ConnectionError("reset"), TRANSIENT),
        (TimeoutError(), TRANSIENT),
        (FakeStatusError(429), TRANSIENT),
        (FakeStatusError(500), TRANSIENT),
        (FakeStatusError(401), FATAL),
        (FakeStatusError(403), FATAL),
        (FakeStatusError(400), PERMANENT),
        (ValueError("bad input"), PERMANENT),
    ],
)
def test_classify_provider_error(exc, expected):
    assert classify_provider_error(exc) == expected


def test_classify_reads_status_from_response():
    exc = Exception("wrapped")
    exc.response = SimpleNamespace(status_code=502)
    assert classify_provider_error(exc) == TRANSIENT


def test_create_embedder_rejects_unknown_kind():
    with pytest.raises(ValueError):
        create_embedder({"type": "word2vec", "model_name": "x"})


def test_create_embedder_rejects_non_mapping():
    with pytest.raises(TypeError):
        create_embedder(["type", "huggingface"])


class DummyOpenAILikeEmbedding:
    """Stand-in for the LlamaIndex client recording constructor arguments."""

    def __init__(self, **kwargs):
        self.kwargs = kwargs

    def get_text_embedding(self, text):
        return [0.25, 0.5, 0.75]


def test_create_embedder_builds_openai_like_client(monkeypatch):
    monkeypatch.setattr(
        "llama_index.embeddings.openai_like.OpenAILikeEmbedding", DummyOpenAILikeEmbedding
    )
    embedder = create_embedder({
        "type": "OpenAILike",
        "model_name": "text-embedding-3-small",
        "api_key": "sk-test",
        "batch_size": 2,
        "batch_delay": 0,
        "timeout": 12,
    })
    try:
        assert isinstance(embedder, OpenAILikeEmbedder)
        assert embedder.batch_size == 2
        kwargs = embedder.embedder.kwargs
        assert kwargs["model_name"] == "text-embedding-3-small"
        assert kwargs["api_base"] == "https://api.openai.com/v1"
        assert kwargs["max_retries"] == 0
        assert kwargs["timeout"] == 12
        assert embedder.embed_query("hello") == [0.25, 0.5, 0.75]
    finally:
        embedder.close()


@pytest.mark.parametrize(
    "kind, expected",
    [
        ("OpenAILike", "openai_like"),
        ("openai-like", "openai_like"),
        ("HuggingFace", "huggingface"),
        ("hf", "hf"),
    ],
)
def test_embedder_kind_normalisation(kind, expected):
    assert _normalize_embedder_kind(kind) == expected
