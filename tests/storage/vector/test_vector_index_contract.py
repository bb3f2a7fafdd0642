"""
Behaviour shared by every VectorIndex implementation.

Runs against the in-memory index and against Qdrant's local in-process
mode (no server needed).
"""

import uuid
from datetime import timedelta

import pytest

from context_memory.models import Chunk, RetentionTier, SearchFilters, utcnow
from context_memory.storage.protocols import VectorIndex
from context_memory.storage.vector.memory import InMemoryVectorIndex
from context_memory.storage.vector.models import (
    CHUNK_COLLECTION,
    MEMORY_COLLECTION,
    VectorPoint,
    chunk_payload,
    memory_payload,
)

DIM = 4
X = [1.0, 0.0, 0.0, 0.0]
Y = [0.0, 1.0, 0.0, 0.0]
NEAR_X = [0.8, 0.6, 0.0, 0.0]


def qdrant_index():
    qdrant_client = pytest.importorskip("qdrant_client")
    from context_memory.storage.vector.qdrant import QdrantVectorIndex

    return QdrantVectorIndex(dimension=DIM, client=qdrant_client.QdrantClient(":memory:"))


@pytest.fixture(params=["memory", "qdrant"])
def index(request):
    if request.param == "memory":
        return InMemoryVectorIndex(dimension=DIM)
    return qdrant_index()


@pytest.fixture
def add(index, make_memory):
    """Store a memory vector for a new item and return the item."""

    def _add(vector, **overrides):
        item = make_memory(id=str(uuid.uuid4()), **overrides)
        index.upsert_embedding(MEMORY_COLLECTION, item.id, vector, memory_payload(item))
        return item

    return _add


def user_filters(**overrides):
    return SearchFilters(user_id="user-1", org_id="org-1", **overrides)


def test_is_protocol(index):
    assert isinstance(index, VectorIndex)


def test_nearest_neighbors_ranked(index, add):
    exact = add(X)
    near = add(NEAR_X)
    add(Y)

    hits = index.nearest_neighbors(MEMORY_COLLECTION, X, limit=10, min_score=0.5)

    assert [hit.id for hit in hits] == [exact.id, near.id]
    assert hits[0].score == pytest.approx(1.0, abs=1e-4)
    assert hits[1].score == pytest.approx(0.8, abs=1e-4)
    assert hits[0].payload["memory_id"] == exact.id
    assert hits[0].vector is None


def test_limit_and_vectors(index, add):
    add(X)
    add(NEAR_X)

    hits = index.nearest_neighbors(MEMORY_COLLECTION, X, limit=1, with_vectors=True)

    assert len(hits) == 1
    assert hits[0].vector == pytest.approx(X, abs=1e-4)


def test_user_scope_excludes_others(index, add):
    mine = add(X)
    add(X, user_id="user-2")
    add(X, scope="org")

    hits = index.nearest_neighbors(MEMORY_COLLECTION, X, limit=10, filters=user_filters())

    assert [hit.id for hit in hits] == [mine.id]


def test_org_and_both_scopes(index, add):
    mine = add(X)
    shared = add(X, scope="org", user_id="user-2")
    add(X, scope="org", org_id="org-2")

    org_hits = index.nearest_neighbors(
        MEMORY_COLLECTION, X, limit=10, filters=user_filters(scope="org")
    )
    both_hits = index.nearest_neighbors(
        MEMORY_COLLECTION, X, limit=10, filters=user_filters(scope="both")
    )

    assert [hit.id for hit in org_hits] == [shared.id]
    assert {hit.id for hit in both_hits} == {mine.id, shared.id}


def test_agent_conversation_and_type_filters(index, add):
    target = add(X, agent_id="agent-2", conversation_id="conv-1", content_type="document")
    add(X, agent_id="agent-2", conversation_id="conv-2", content_type="document")
    add(X, agent_id="agent-1", conversation_id="conv-1", content_type="document")
    add(X, agent_id="agent-2", conversation_id="conv-1", content_type="decision")

    filters = user_filters(agent_id="agent-2", conversation_id="conv-1", content_types=["document"])
    hits = index.nearest_neighbors(MEMORY_COLLECTION, X, limit=10, filters=filters)

    assert [hit.id for hit in hits] == [target.id]


def test_date_range_filter(index, add):
    recent = add(X, age_days=1)
    add(X, age_days=60)

    filters = user_filters(start_date=utcnow() - timedelta(days=7))
    hits = index.nearest_neighbors(MEMORY_COLLECTION, X, limit=10, filters=filters)

    assert [hit.id for hit in hits] == [recent.id]


def test_retention_filter(index, add):
    hot = add(X)
    add(X, retention=RetentionTier.COLD)

    hits = index.nearest_neighbors(
        MEMORY_COLLECTION, X, limit=10, retention=[RetentionTier.HOT, RetentionTier.WARM]
    )

    assert [hit.id for hit in hits] == [hot.id]


def test_chunk_vectors_by_memory(index, make_memory):
    item = make_memory(id=str(uuid.uuid4()))
    chunks = [
        Chunk(id=Chunk.make_id(item.id, i), memory_id=item.id, index=i, content="c", token_count=1)
        for i in range(3)
    ]
    index.upsert_embeddings(
        CHUNK_COLLECTION,
        [VectorPoint(id=c.id, vector=X, payload=chunk_payload(item, c)) for c in chunks],
    )

    vectors = index.get_vectors_by_memory(CHUNK_COLLECTION, [item.id])
    assert set(vectors) == {c.id for c in chunks}
    assert index.count(CHUNK_COLLECTION) == 3
    assert index.count(MEMORY_COLLECTION) == 0

    index.delete_by_memory(CHUNK_COLLECTION, [item.id])
    assert index.count(CHUNK_COLLECTION) == 0


def test_get_and_delete_vectors(index, add):
    item = add(Y)

    assert index.get_vectors(MEMORY_COLLECTION, [item.id])[item.id] == pytest.approx(Y, abs=1e-4)

    index.delete_embeddings(MEMORY_COLLECTION, [item.id])
    assert index.get_vectors(MEMORY_COLLECTION, [item.id]) == {}


def test_update_payload_changes_filtering(index, add):
    item = add(X)

    index.update_payload(MEMORY_COLLECTION, [item.id], {"retention": RetentionTier.COLD.value})

    assert index.nearest_neighbors(MEMORY_COLLECTION, X, limit=10, retention=[RetentionTier.HOT]) == []


def test_empty_inputs_are_noops(index):
    index.upsert_embeddings(MEMORY_COLLECTION, [])
    index.delete_embeddings(MEMORY_COLLECTION, [])
    index.delete_by_memory(CHUNK_COLLECTION, [])
    assert index.get_vectors(MEMORY_COLLECTION, []) == {}
    assert index.get_vectors_by_memory(CHUNK_COLLECTION, []) == {}


def test_in_memory_rejects_wrong_dimension():
    index = InMemoryVectorIndex(dimension=DIM)

    with pytest.raises(ValueError, match="dimensions"):
        index.upsert_embedding(MEMORY_COLLECTION, "m1", [1.0, 0.0], {})
