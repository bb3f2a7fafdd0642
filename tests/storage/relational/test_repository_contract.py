"""
Behaviour shared by every MemoryRepository implementation.

Each test runs against the in-memory repository and against SQLAlchemy on
in-memory SQLite.
"""

import threading
from datetime import timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from context_memory.models import (
    AccessLog,
    Chunk,
    Conversation,
    Decision,
    RecordKind,
    RetentionTier,
    utcnow,
)
from context_memory.storage.protocols import MemoryRepository
from context_memory.storage.relational.memory import InMemoryMemoryRepository
from context_memory.storage.relational.sqlalchemy import SQLAlchemyMemoryRepository


def sqlalchemy_repository() -> SQLAlchemyMemoryRepository:
    # One shared connection so every thread sees the same in-memory database
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    repository = SQLAlchemyMemoryRepository(engine)
    repository.create_tables()
    return repository


@pytest.fixture(params=["memory", "sqlalchemy"])
def repo(request):
    if request.param == "memory":
        return InMemoryMemoryRepository()
    return sqlalchemy_repository()


def make_chunks(memory_id: str, count: int):
    return [
        Chunk(
            id=Chunk.make_id(memory_id, i),
            memory_id=memory_id,
            index=i,
            content=f"chunk {i}",
            token_count=2,
        )
        for i in range(count)
    ]


def test_is_protocol(repo):
    assert isinstance(repo, MemoryRepository)


def test_add_and_get_memory(repo, make_memory):
    item = make_memory(
        "I like pizza",
        metadata={"source": "chat", "tags": ["food", "pref"]},
        conversation_id="conv-1",
        importance=0.8,
    )

    assert repo.add_memory(item) == item.id

    loaded = repo.get_memory(item.id)
    assert loaded.content == "I like pizza"
    assert loaded.metadata == {"source": "chat", "tags": ["food", "pref"]}
    assert loaded.conversation_id == "conv-1"
    assert loaded.importance == 0.8
    assert loaded.retention == RetentionTier.HOT
    assert loaded.created_at == item.created_at
    assert loaded.created_at.tzinfo is not None


def test_get_missing_memory(repo):
    assert repo.get_memory("missing") is None
    assert repo.get_memories(["missing"]) == {}


def test_get_memories_and_existing_ids(repo, make_memory):
    items = [make_memory(f"memory {i}", id=f"m{i}") for i in range(3)]
    assert repo.add_memories(items) == 3

    assert set(repo.get_memories(["m0", "m2", "nope"])) == {"m0", "m2"}
    assert repo.existing_memory_ids(["m1", "nope"]) == {"m1"}


def test_update_memories(repo, make_memory):
    item = make_memory(id="m1")
    repo.add_memory(item)
    archived_at = utcnow()

    updated = repo.update_memories(
        {
            "m1": {
                "retention": RetentionTier.COLD,
                "archived_at": archived_at,
                "archive_ref": "manual://archive/x",
                "starred": True,
            },
            "missing": {"starred": True},
        }
    )

    assert updated == 1
    loaded = repo.get_memory("m1")
    assert loaded.retention == RetentionTier.COLD
    assert loaded.archived_at == archived_at
    assert loaded.archive_ref == "manual://archive/x"
    assert loaded.starred is True
    assert loaded.updated_at >= item.updated_at


def test_find_memories_filters_and_pages(repo, make_memory):
    repo.add_memories(
        [
            make_memory(id="a", age_days=40),
            make_memory(id="b", age_days=40, starred=True),
            make_memory(id="c", age_days=40, retention=RetentionTier.WARM),
            make_memory(id="d", age_days=1),
            make_memory(id="e", age_days=40, org_id="org-2"),
        ]
    )
    cutoff = utcnow() - timedelta(days=30)

    old_hot = repo.find_memories(
        retention=RetentionTier.HOT, created_before=cutoff, starred=False
    )
    assert [m.id for m in old_hot] == ["a", "e"]

    org_items = repo.find_memories(org_id="org-1")
    assert [m.id for m in org_items] == ["a", "b", "c", "d"]

    first_page = repo.find_memories(org_id="org-1", limit=2)
    second_page = repo.find_memories(org_id="org-1", after_id=first_page[-1].id, limit=2)
    assert [m.id for m in first_page + second_page] == ["a", "b", "c", "d"]

    recent = repo.find_memories(created_after=cutoff)
    assert [m.id for m in recent] == ["d"]


def test_count_by_retention(repo, make_memory):
    repo.add_memories(
        [
            make_memory(id="a"),
            make_memory(id="b", retention=RetentionTier.COLD),
            make_memory(id="c", retention=RetentionTier.COLD),
        ]
    )

    counts = repo.count_by_retention()

    assert counts[RetentionTier.HOT] == 1
    assert counts[RetentionTier.WARM] == 0
    assert counts[RetentionTier.COLD] == 2
    assert counts[RetentionTier.DELETED] == 0


def test_chunks_roundtrip(repo, make_memory):
    repo.add_memory(make_memory(id="m1"))
    chunks = make_chunks("m1", 3)

    assert repo.replace_chunks("m1", chunks) == 3

    loaded = repo.get_chunks(["m1"])
    assert [c.index for c in loaded] == [0, 1, 2]
    assert repo.get_chunks_by_id([chunks[1].id])[chunks[1].id].content == "chunk 1"
    assert repo.chunk_stats(["m1"]) == {"count": 3, "content_bytes": 21}


def test_replace_chunks_replaces(repo, make_memory):
    repo.add_memory(make_memory(id="m1"))
    repo.replace_chunks("m1", make_chunks("m1", 3))

    repo.replace_chunks("m1", make_chunks("m1", 1))

    assert len(repo.get_chunks(["m1"])) == 1


def test_delete_chunks(repo, make_memory):
    repo.add_memories([make_memory(id="m1"), make_memory(id="m2")])
    repo.add_chunks(make_chunks("m1", 2) + make_chunks("m2", 2))

    assert repo.delete_chunks(["m1"]) == 2
    assert repo.get_chunks(["m1"]) == []
    assert len(repo.get_chunks(["m2"])) == 2
    assert repo.chunk_stats([]) == {"count": 0, "content_bytes": 0}


def test_records_by_kind_org_and_range(repo):
    now = utcnow()
    repo.add_records(
        RecordKind.DECISIONS,
        [
            Decision(id="d1", org_id="org-1", direction="in", decision="allow", payload_hash="h", ts=now - timedelta(days=10)),
            Decision(id="d2", org_id="org-1", direction="in", decision="block", payload_hash="h", ts=now),
            Decision(id="d3", org_id="org-2", direction="in", decision="allow", payload_hash="h", ts=now),
        ],
    )
    repo.add_records(
        RecordKind.ACCESS_LOGS, [AccessLog(id="a1", user_id="user-1", org_id="org-1")]
    )

    assert [r.id for r in repo.find_records(RecordKind.DECISIONS, "org-1")] == ["d1", "d2"]
    recent = repo.find_records(RecordKind.DECISIONS, "org-1", start=now - timedelta(days=1))
    assert [r.id for r in recent] == ["d2"]
    assert isinstance(recent[0], Decision)
    assert [r.id for r in repo.find_records(RecordKind.DECISIONS, "org-1", ids=["d2"])] == ["d2"]
    assert repo.existing_record_ids(RecordKind.DECISIONS, ["d1", "a1"]) == {"d1"}

    deleted = repo.delete_records(RecordKind.DECISIONS, "org-1", end=now - timedelta(days=1))
    assert deleted == 1
    assert [r.id for r in repo.find_records(RecordKind.DECISIONS, "org-1")] == ["d2"]
    assert len(repo.find_records(RecordKind.ACCESS_LOGS, "org-1")) == 1


def test_batch_commits(repo, make_memory):
    with repo.batch():
        repo.add_memory(make_memory(id="m1"))
        repo.add_chunks(make_chunks("m1", 2))
        repo.update_memories({"m1": {"chunks_computed": True}})

    assert repo.get_memory("m1").chunks_computed is True
    assert len(repo.get_chunks(["m1"])) == 2


def test_batch_rolls_back_on_error(repo, make_memory):
    repo.add_memory(make_memory(id="m1"))

    with pytest.raises(RuntimeError):
        with repo.batch():
            repo.delete_chunks(["m1"])
            repo.update_memories({"m1": {"retention": RetentionTier.COLD}})
            repo.add_records(
                RecordKind.CONVERSATIONS,
                [Conversation(id="c1", user_id="user-1", org_id="org-1")],
            )
            raise RuntimeError("vector store failed")

    assert repo.get_memory("m1").retention == RetentionTier.HOT
    assert repo.find_records(RecordKind.CONVERSATIONS, "org-1") == []


def test_batch_isolated_from_other_threads(repo, make_memory):
    """A batch rolling back on one thread keeps writes made by other threads."""
    entered = threading.Event()
    release = threading.Event()
    errors = []

    def failing_batch():
        try:
            with repo.batch():
                repo.add_memory(make_memory(id="batch-1"))
                entered.set()
                release.wait(5)
                raise RuntimeError("transition failed")
        except RuntimeError as e:
            errors.append(e)

    batcher = threading.Thread(target=failing_batch)
    batcher.start()
    assert entered.wait(5)

    writer = threading.Thread(target=repo.add_memory, args=(make_memory(id="ingest-1"),))
    writer.start()
    writer.join(0.2)
    release.set()
    batcher.join(5)
    writer.join(5)

    assert len(errors) == 1
    assert repo.get_memory("batch-1") is None
    assert repo.get_memory("ingest-1") is not None
