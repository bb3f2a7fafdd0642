"""Tests for similarity/recency scoring and confidence tiers."""

import math
from datetime import timedelta

import pytest

from context_memory.errors import ConfigurationError
from context_memory.models import utcnow
from context_memory.scoring import ContextScorer


@pytest.fixture
def scorer():
    return ContextScorer()


def test_recency_at_age_zero(scorer):
    now = utcnow()

    recency, age = scorer.recency_score(now, now)

    assert recency == pytest.approx(1.0)
    assert age == 0.0


def test_recency_at_decay_days_is_e_inverse(scorer):
    now = utcnow()

    recency, age = scorer.recency_score(now - timedelta(days=30), now)

    assert recency == pytest.approx(math.exp(-1), abs=1e-6)
    assert age == pytest.approx(30.0)


def test_future_timestamp_clamped(scorer):
    now = utcnow()

    recency, age = scorer.recency_score(now + timedelta(days=2), now)

    assert recency == pytest.approx(1.0)
    assert age == 0.0


def test_final_score_weights(scorer):
    assert scorer.final_score(0.8, 0.5) == pytest.approx(0.8 * 0.7 + 0.5 * 0.3)


@pytest.mark.parametrize("similarity", [0.0, 0.25, 0.5, 1.0])
@pytest.mark.parametrize("recency", [0.0, 0.5, 1.0])
def test_final_score_stays_in_unit_interval(scorer, similarity, recency):
    assert 0.0 <= scorer.final_score(similarity, recency) <= 1.0


@pytest.mark.parametrize(
    "score,tier",
    [(0.9, "high"), (0.75, "high"), (0.7, "medium"), (0.6, "medium"), (0.55, "low"), (0.49, None)],
)
def test_assign_tier(scorer, score, tier):
    assert scorer.assign_tier(score) == tier


def test_score_preserves_order(scorer, make_memory):
    now = utcnow()
    old = make_memory("old", age_days=60)
    new = make_memory("new")

    scored = scorer.score([(old, 0.9), (new, 0.5)], now)

    assert [s.memory.content for s in scored] == ["old", "new"]
    assert scored[0].age_in_days == pytest.approx(60, abs=0.01)
    assert scored[1].recency_score == pytest.approx(1.0, abs=1e-3)


def test_invalid_weights_rejected():
    with pytest.raises(ConfigurationError):
        ContextScorer(similarity_weight=0.9, recency_weight=0.3)


def test_invalid_thresholds_rejected():
    with pytest.raises(ConfigurationError):
        ContextScorer(high_threshold=0.5, medium_threshold=0.6)


def test_from_settings(settings):
    scorer = ContextScorer.from_settings(settings)

    assert scorer.similarity_weight == settings.similarity_weight
    assert scorer.high_threshold == settings.high_tier_threshold
