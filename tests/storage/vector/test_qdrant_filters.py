"""Tests for translating search filters into Qdrant filters."""

from datetime import datetime, timezone

import pytest

pytest.importorskip("qdrant_client")

from qdrant_client.models import Filter  # noqa: E402

from context_memory.models import RetentionTier, SearchFilters  # noqa: E402
from context_memory.storage.vector.qdrant import build_filter  # noqa: E402


def test_no_filters():
    assert build_filter(None) is None


def test_retention_only():
    result = build_filter(None, [RetentionTier.HOT, RetentionTier.WARM])

    assert len(result.must) == 1
    assert result.must[0].key == "retention"
    assert result.must[0].match.any == ["hot", "warm"]


def test_user_scope():
    result = build_filter(SearchFilters(user_id="u1", org_id="o1"))

    own = result.must[0]
    assert isinstance(own, Filter)
    assert [(c.key, c.match.value) for c in own.must] == [("user_id", "u1"), ("scope", "user")]


def test_both_scope_uses_should():
    result = build_filter(SearchFilters(user_id="u1", org_id="o1", scope="both"))

    both = result.must[0]
    assert len(both.should) == 2
    assert [(c.key, c.match.value) for c in both.should[1].must] == [
        ("org_id", "o1"),
        ("scope", "org"),
    ]


def test_optional_conditions():
    start = datetime(2024, 1, 1, tzinfo=timezone.utc)
    filters = SearchFilters(
        user_id="u1",
        org_id="o1",
        agent_id="a1",
        conversation_id="c1",
        content_types=["document"],
        start_date=start,
    )

    result = build_filter(filters)

    keys = [getattr(c, "key", None) for c in result.must]
    assert keys == [None, "agent_id", "conversation_id", "content_type", "created_at"]
    assert result.must[-1].range.gte == start.timestamp()
    assert result.must[-1].range.lte is None
