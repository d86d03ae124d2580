import pytest

from src.search import BackendUnavailable, InvalidQueryError, SearchServiceConfig

from .conftest import StubBackend


@pytest.mark.asyncio
@pytest.mark.parametrize("queries", [[], ["", "   ", "\n\t"]])
async def test_blank_input_is_rejected_before_any_backend_call(make_service, queries):
    backend = StubBackend()
    service = make_service(backend)

    with pytest.raises(InvalidQueryError):
        await service.search_many(queries)
    with pytest.raises(InvalidQueryError):
        service.stream_many(queries)

    assert backend.calls == []


@pytest.mark.asyncio
async def test_blank_entries_are_dropped_and_queries_stripped(make_service):
    backend = StubBackend()
    service = make_service(backend)

    result = await service.search_many(["  cats ", "", "dogs"], top_k=1)

    assert sorted(backend.calls) == ["cats", "dogs"]
    assert len(result.outcomes) == 2


def test_single_string_is_not_treated_as_a_list_of_characters(make_service):
    with pytest.raises(InvalidQueryError):
        make_service(StubBackend()).validate_queries("cats")


@pytest.mark.parametrize("limit", [0, -1, 101, 2.5, True])
def test_out_of_range_limit_is_rejected(make_service, limit):
    with pytest.raises(InvalidQueryError):
        make_service(StubBackend()).validate_limit(limit)


def test_missing_limit_uses_configured_default(make_service):
    assert make_service(StubBackend(), default_limit=7).validate_limit(None) == 7


@pytest.mark.asyncio
async def test_success_and_failure_counts_sum_to_query_count(make_service):
    backend = StubBackend(failing={"b", "d"})
    service = make_service(backend)

    result = await service.search_many(["a", "b", "c", "d", "e"], top_k=2)

    assert len(result.outcomes) == 5
    assert len(result.failures) == 2
    assert sum(o.ok for o in result.outcomes) == 3
    assert len(backend.calls) == 5


@pytest.mark.asyncio
async def test_stream_dispatches_lazily_and_cancels_on_close(make_service):
    backend = StubBackend(delays={"fast": 0.01, "slow": 5.0})
    service = make_service(backend)

    stream = service.stream_many(["fast", "slow"], top_k=1)
    assert backend.calls == []

    first = await stream.__anext__()
    await stream.aclose()

    assert first.query == "fast"
    assert backend.cancelled == ["slow"]
    assert backend.in_flight == 0


@pytest.mark.asyncio
async def test_single_query_search_returns_backend_order(make_service):
    service = make_service(StubBackend())

    candidates = await service.search_by_query("  owl ", top_k=3)

    assert [c.id for c in candidates] == ["owl-0", "owl-1", "owl-2"]


@pytest.mark.asyncio
async def test_single_query_failure_is_raised(make_service):
    service = make_service(StubBackend(failing={"owl"}))

    with pytest.raises(BackendUnavailable):
        await service.search_by_query("owl")


def test_close_runs_hook_once():
    from src.search import SearchService

    closed = []
    service = SearchService(StubBackend(), on_close=lambda: closed.append(True))
    service.close()
    service.close()
    assert closed == [True]


def test_config_from_yaml_section_and_env(monkeypatch):
    monkeypatch.setenv("SEARCH_MAX_CONCURRENCY", "0")
    monkeypatch.setenv("SEARCH_TIMEOUT_SECONDS", "2.5")
    monkeypatch.delenv("SEARCH_DEFAULT_LIMIT", raising=False)
    monkeypatch.delenv("MILVUS_COLLECTION", raising=False)

    cfg = SearchServiceConfig.from_config(
        {"search": {"collection_name": "images", "default_limit": 4, "max_concurrency": 8}}
    )

    assert cfg.collection_name == "images"
    assert cfg.default_limit == 4
    assert cfg.max_concurrency == 0
    assert cfg.timeout_seconds == 2.5
    assert cfg.output_fields == ("id", "label", "image", "metadata")


def test_config_defaults_without_search_section(monkeypatch):
    for name in ("SEARCH_MAX_CONCURRENCY", "SEARCH_TIMEOUT_SECONDS", "SEARCH_DEFAULT_LIMIT"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("MILVUS_COLLECTION", "from-env")

    cfg = SearchServiceConfig.from_config({})

    assert cfg.collection_name == "from-env"
    assert cfg.max_concurrency == 16
    assert cfg.timeout_seconds == 10.0
