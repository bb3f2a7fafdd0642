"""Integration tests for the Qdrant vector index against a running server."""

import uuid

import pytest

from context_memory.models import RetentionTier, SearchFilters
from context_memory.storage.vector.models import MEMORY_COLLECTION, memory_payload


@pytest.fixture
def index(skip_if_no_qdrant, test_prefix):
    pytest.importorskip("qdrant_client")
    from context_memory.storage.vector.qdrant import QdrantVectorIndex

    index = QdrantVectorIndex(host="localhost", port=6333, dimension=4, collection_prefix=test_prefix)
    yield index
    for collection in index.client.get_collections().collections:
        if collection.name.startswith(test_prefix):
            index.client.delete_collection(collection.name)


@pytest.mark.integration
def test_qdrant_search_with_filters(index, make_memory):
    mine = make_memory(id=str(uuid.uuid4()))
    other = make_memory(id=str(uuid.uuid4()), user_id="user-2")
    for item in (mine, other):
        index.upsert_embedding(MEMORY_COLLECTION, item.id, [1.0, 0.0, 0.0, 0.0], memory_payload(item))

    hits = index.nearest_neighbors(
        MEMORY_COLLECTION,
        [1.0, 0.0, 0.0, 0.0],
        limit=10,
        filters=SearchFilters(user_id="user-1", org_id="org-1"),
    )

    assert [hit.id for hit in hits] == [mine.id]
    assert hits[0].score == pytest.approx(1.0, abs=1e-4)


@pytest.mark.integration
def test_qdrant_retention_payload_update(index, make_memory):
    item = make_memory(id=str(uuid.uuid4()))
    index.upsert_embedding(MEMORY_COLLECTION, item.id, [0.0, 1.0, 0.0, 0.0], memory_payload(item))

    index.update_payload(MEMORY_COLLECTION, [item.id], {"retention": RetentionTier.COLD.value})

    hot = index.nearest_neighbors(
        MEMORY_COLLECTION, [0.0, 1.0, 0.0, 0.0], limit=10, retention=[RetentionTier.HOT]
    )
    assert hot == []
    assert index.count(MEMORY_COLLECTION) == 1
