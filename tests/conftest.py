"""Shared fixtures: a controllable clock, a temp store and in-memory fakes."""

import math

import pytest

from history_engine.capture.page import PageView
from history_engine.embeddings.base import AsyncBaseEmbedder
from history_engine.history.store import HistoryStore
from history_engine.vectorstore.base import BaseVectorIndex, SearchResult

T0 = 1_700_000_000_000


class FakeClock:
    def __init__(self, start=T0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, ms):
        self.now += ms


class FakePage(PageView):
    def __init__(self, text="Page body text", html="<html><body><p>Page body</p></body></html>"):
        self.text = text
        self.html = html
        self.screenshot_calls = 0
        self.html_calls = 0

    async def capture_screenshot(self, quality="medium"):
        self.screenshot_calls += 1
        return b"\x89PNG fake"

    async def get_page_text(self):
        return self.text

    async def get_page_html(self):
        self.html_calls += 1
        return self.html


class FakeEmbedder(AsyncBaseEmbedder):
    model = "fake-embedding"

    def __init__(self, dimension=4):
        self.dimension = dimension
        self.calls = []

    async def embed(self, text):
        self.calls.append(text)
        seed = sum(ord(c) for c in text) or 1
        return [float((seed * (i + 1)) % 97 + 1) for i in range(self.dimension)]

    async def embed_query(self, text):
        return await self.embed(text)

    async def embed_batch(self, texts):
        return [await self.embed(t) for t in texts]


class MemoryVectorIndex(BaseVectorIndex):
    def __init__(self, dimension=4):
        self.dimension = dimension
        self.max_elements = 10_000
        self.vectors = {}
        self.recovered = False

    def add_vector(self, visit_id, embedding):
        self.vectors[visit_id] = list(embedding)

    def search_with_scores(self, query_embedding, k=3):
        def distance(v):
            dot = sum(a * b for a, b in zip(query_embedding, v))
            norm = math.sqrt(sum(a * a for a in query_embedding)) * math.sqrt(sum(b * b for b in v))
            return 1.0 - dot / norm if norm else 1.0

        scored = [SearchResult(visit_id=i, distance=distance(v)) for i, v in self.vectors.items()]
        scored.sort(key=lambda r: r.distance)
        return scored[: max(k, 0)]

    def contains(self, visit_id):
        return visit_id in self.vectors

    def delete(self, visit_ids):
        for visit_id in visit_ids:
            self.vectors.pop(visit_id, None)

    def count(self):
        return len(self.vectors)

    def clear(self):
        self.vectors.clear()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(tmp_path, clock):
    s = HistoryStore(tmp_path / "browsing-history.db", clock=clock)
    yield s
    s.close()


@pytest.fixture
def page():
    return FakePage()


@pytest.fixture
def make_page():
    return FakePage


@pytest.fixture
def embedder():
    return FakeEmbedder()


@pytest.fixture
def vector_index():
    return MemoryVectorIndex()
