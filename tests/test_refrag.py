"""Tests for REFRAG chunk retrieval with selective expansion."""

import math
from datetime import timedelta

import pytest

from context_memory.errors import RefragDisabledError
from context_memory.models import Chunk, RetentionTier, ScoredChunk, SearchFilters, utcnow
from context_memory.refrag import RefragRetriever, expansion_count, format_for_llm, format_time_ago
from context_memory.storage.vector.models import CHUNK_COLLECTION, VectorPoint, chunk_payload

QUERY = "deployment plan"
QUERY_VECTOR = [1.0, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0]


def vector_with_similarity(similarity: float):
    return [similarity, math.sqrt(1 - similarity**2), 0.0, 0.0, 0.0, 0.0, 0.0, 0.0]


@pytest.fixture
def filters():
    return SearchFilters(user_id="user-1", org_id="org-1")


@pytest.fixture
def index_chunks(repository, vector_index):
    """Store an item with one chunk per (similarity, token_count) pair."""

    def _index(item, specs):
        repository.add_memory(item)
        chunks = [
            Chunk(
                id=Chunk.make_id(item.id, i),
                memory_id=item.id,
                index=i,
                content=f"{item.content} part {i}",
                token_count=tokens,
            )
            for i, (_, tokens) in enumerate(specs)
        ]
        repository.add_chunks(chunks)
        vector_index.upsert_embeddings(
            CHUNK_COLLECTION,
            [
                VectorPoint(
                    id=chunk.id,
                    vector=vector_with_similarity(similarity),
                    payload=chunk_payload(item, chunk),
                )
                for chunk, (similarity, _) in zip(chunks, specs)
            ],
        )
        return chunks

    return _index


@pytest.fixture
def retriever(embedder, repository, vector_index, settings):
    embedder.vectors[QUERY] = QUERY_VECTOR
    return RefragRetriever(embedder, repository, vector_index, settings)


@pytest.mark.parametrize("total,ratio,expected", [(50, 0.7, 15), (10, 0.0, 10), (10, 1.0, 0), (7, 0.5, 4)])
def test_expansion_count(total, ratio, expected):
    assert expansion_count(total, ratio) == expected


@pytest.mark.asyncio
async def test_fifty_candidates_split_15_35(retriever, index_chunks, make_memory, filters):
    """Ratio 0.70 over 50 ranked chunks keeps 15 verbatim and compresses 35."""
    rank = 0
    for m in range(10):
        specs = []
        for _ in range(5):
            specs.append((0.99 - rank * 0.009, rank + 1))
            rank += 1
        index_chunks(make_memory(f"memory {m}"), specs)

    result = await retriever.retrieve(QUERY, filters, compression_ratio=0.70)

    assert result.total_chunks == 50
    assert len(result.expanded) == 15
    assert len(result.compressed) == 35
    assert [s.chunk.token_count for s in result.expanded] == list(range(1, 16))
    assert result.original_tokens == sum(range(1, 51))
    assert result.expanded_tokens == sum(range(1, 16))
    assert result.token_savings == sum(range(16, 51))
    assert result.token_savings_percent == pytest.approx(
        sum(range(16, 51)) / sum(range(1, 51)) * 100
    )
    assert all(c.embedding for c in result.compressed)
    assert result.compressed[0].score < result.expanded[-1].score


@pytest.mark.asyncio
async def test_no_hits_returns_empty_result(retriever, filters):
    result = await retriever.retrieve(QUERY, filters)

    assert result.total_chunks == 0
    assert result.expanded == []
    assert result.token_savings_percent == 0.0


@pytest.mark.asyncio
async def test_cold_chunks_not_searched(retriever, index_chunks, make_memory, filters):
    index_chunks(make_memory("hot item"), [(0.9, 4)])
    index_chunks(make_memory("cold item", retention=RetentionTier.COLD), [(0.95, 4)])

    result = await retriever.retrieve(QUERY, filters, compression_ratio=0.0)

    assert [s.memory.content for s in result.expanded] == ["hot item"]


@pytest.mark.asyncio
async def test_disabled_raises(embedder, repository, vector_index, settings, filters):
    settings.refrag_enabled = False
    retriever = RefragRetriever(embedder, repository, vector_index, settings)

    with pytest.raises(RefragDisabledError):
        await retriever.retrieve(QUERY, filters)


@pytest.mark.asyncio
async def test_invalid_ratio(retriever, filters):
    with pytest.raises(ValueError):
        await retriever.retrieve(QUERY, filters, compression_ratio=1.5)


@pytest.mark.asyncio
async def test_unsupported_tier(retriever, filters):
    with pytest.raises(ValueError):
        await retriever.retrieve(QUERY, filters, include_tiers=[RetentionTier.COLD])


@pytest.mark.parametrize(
    "delta,label",
    [
        (timedelta(seconds=20), "just now"),
        (timedelta(minutes=1), "1 min ago"),
        (timedelta(minutes=5), "5 mins ago"),
        (timedelta(hours=3), "3 hours ago"),
        (timedelta(days=2), "2 days ago"),
        (timedelta(days=14), "2 weeks ago"),
        (timedelta(days=65), "2 months ago"),
    ],
)
def test_format_time_ago(delta, label):
    now = utcnow()
    assert format_time_ago(now - delta, now) == label


def test_format_for_llm_groups_by_memory(make_memory):
    now = utcnow()
    first = make_memory("first")
    second = make_memory("second")

    def scored(item, index, content, score, tokens=5):
        chunk = Chunk(
            id=Chunk.make_id(item.id, index),
            memory_id=item.id,
            index=index,
            content=content,
            token_count=tokens,
        )
        return ScoredChunk(chunk=chunk, score=score, memory=item)

    expanded = [
        scored(first, 1, "world", 0.9),
        scored(second, 0, "other", 0.8),
        scored(first, 0, "hello", 0.7),
    ]

    text = format_for_llm(expanded, max_tokens=100, now=now)

    assert text == (
        "[Context from just now, relevance: 80%]\nhello world\n\n"
        "[Context from just now, relevance: 80%]\nother"
    )


def test_format_for_llm_stops_at_budget(make_memory):
    item = make_memory("big")
    other = make_memory("small")
    expanded = [
        ScoredChunk(
            chunk=Chunk(id="c1", memory_id=item.id, index=0, content="big chunk", token_count=8),
            score=0.9,
            memory=item,
        ),
        ScoredChunk(
            chunk=Chunk(id="c2", memory_id=other.id, index=0, content="small", token_count=3),
            score=0.8,
            memory=other,
        ),
    ]

    assert format_for_llm(expanded, max_tokens=10).endswith("big chunk")
    assert format_for_llm(expanded, max_tokens=5) == ""
    assert format_for_llm([], max_tokens=10) == ""
