import base64

import pytest

from src.search import MalformedBackendResponse, SearchBackend
from src.vectorstore.data_store import DataVectorStore
from src.vectorstore.retriever import Retriever
from src.vectorstore.schemas import Candidate, format_candidate


class FakeEmbedder:
    def __init__(self):
        self.seen = []

    async def aembed_query(self, text):
        self.seen.append(text)
        return [0.1, 0.2, 0.3]


class FakeClient:
    """Stands in for pymilvus.MilvusClient."""

    def __init__(self, results=None, collections=("assets",)):
        self.results = results if results is not None else [[]]
        self.collections = set(collections)
        self.search_calls = []
        self.loaded = []
        self.closed = False

    def search(self, **kwargs):
        self.search_calls.append(kwargs)
        return self.results

    def has_collection(self, name):
        return name in self.collections

    def load_collection(self, collection_name):
        self.loaded.append(collection_name)

    def close(self):
        self.closed = True


HITS = [
    [
        {
            "id": "a1",
            "distance": 0.91,
            "entity": {"label": "bicycle", "image": "aW1n", "metadata": {"source": "x.png"}},
        },
        {"id": 7, "distance": "0.5", "entity": {"label": "wall", "metadata": '{"k": 1}'}},
    ]
]


def _retriever(results):
    client = FakeClient(results)
    return Retriever(store=DataVectorStore(client=client), embedder=FakeEmbedder()), client


def test_retriever_satisfies_backend_protocol():
    retriever, _ = _retriever(HITS)
    assert isinstance(retriever, SearchBackend)


@pytest.mark.asyncio
async def test_hits_are_mapped_in_backend_order():
    retriever, client = _retriever(HITS)

    items = await retriever.aretrieve("red bicycle", limit=2)

    assert items == [
        Candidate(id="a1", label="bicycle", image="aW1n", distance=0.91, metadata={"source": "x.png"}),
        Candidate(id="7", label="wall", image=None, distance=0.5, metadata={"k": 1}),
    ]
    call = client.search_calls[0]
    assert call["collection_name"] == "assets"
    assert call["data"] == [[0.1, 0.2, 0.3]]
    assert call["limit"] == 2
    assert call["anns_field"] == "embedding"
    assert call["output_fields"] == ["id", "label", "image", "metadata"]


@pytest.mark.asyncio
@pytest.mark.parametrize("results", [[], [[]], None])
async def test_empty_results(results):
    retriever, _ = _retriever(results)
    assert await retriever.aretrieve("nothing") == []


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "results",
    [
        [[{"distance": 0.1, "entity": {"label": "no id"}}]],
        [[{"id": "x", "distance": "far"}]],
        [[42]],
        [None],
    ],
)
async def test_uninterpretable_hits_raise_malformed(results):
    retriever, _ = _retriever(results)
    with pytest.raises(MalformedBackendResponse):
        await retriever.aretrieve("q")


@pytest.mark.asyncio
async def test_non_string_query_is_rejected():
    retriever, _ = _retriever(HITS)
    with pytest.raises(ValueError):
        await retriever.aretrieve(["a", "b"])


@pytest.mark.asyncio
async def test_raw_image_bytes_are_returned_as_base64():
    raw = bytes([0x89, 0x50, 0x4E, 0x47, 0xFF, 0x00])
    retriever, _ = _retriever([[{"id": "p1", "distance": 0.2, "entity": {"image": raw}}]])

    [item] = await retriever.aretrieve("png")

    assert item.image == "iVBOR/8A"
    assert base64.b64decode(item.image) == raw


def test_store_readiness_and_close():
    client = FakeClient()
    store = DataVectorStore(client=client, collection="assets")
    store.ensure_ready()
    store.close()
    assert client.loaded == ["assets"]
    assert client.closed


def test_missing_collection_fails_fast():
    store = DataVectorStore(client=FakeClient(collections=()), collection="assets")
    with pytest.raises(RuntimeError):
        store.ensure_ready()


def test_store_rejects_non_positive_limit():
    store = DataVectorStore(client=FakeClient())
    with pytest.raises(ValueError):
        store.search([[0.1]], limit=0)


def test_format_candidate():
    line = format_candidate(Candidate(id="1", label="cat", image="abcd", distance=0.12345))
    assert line == "id=1; dist=0.1235; label=cat; image=4 chars"
