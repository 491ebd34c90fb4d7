"""Tests for auto-approval scoring."""

import pytest

from foreman.core.auto_approval import AutoApprovalScorer, confidence_score, has_budget_impact
from foreman.types import GlobalAISettings


@pytest.fixture
def settings():
    return GlobalAISettings(team_id="team-acme", auto_approval_threshold=0.8)


@pytest.mark.parametrize("suggestion,expected", [
    ({"confidence": "high"}, 0.9),
    ({"confidence": "LOW"}, 0.5),
    ({}, 0.7),
    ({"confidence": "certain"}, 0.7),
    ({"confidence_score": 0.85, "confidence": "low"}, 0.85),
    ({"confidence_score": "0.6"}, 0.6),
])
def test_confidence_score(suggestion, expected):
    assert confidence_score(suggestion) == expected


def test_budget_impact():
    assert has_budget_impact({"budget_cost": 12.5}) is True
    assert has_budget_impact({"has_budget_impact": True}) is True
    assert has_budget_impact({"budget_cost": 0}) is False
    assert has_budget_impact({"budget_cost": "n/a"}) is False


def test_budget_impact_never_auto_approved(settings):
    scorer = AutoApprovalScorer()
    assert scorer.should_auto_approve({"confidence": "high", "budget_cost": 1}, settings) is False
    assert scorer.should_auto_approve({"confidence": "high"}, settings) is True


def test_threshold_is_inclusive():
    settings = GlobalAISettings(team_id="team-acme", auto_approval_threshold=0.7)
    assert AutoApprovalScorer().should_auto_approve({"confidence": "medium"}, settings) is True


def test_evaluate_suggestions_partitions_in_order(settings):
    suggestions = [
        {"title": "a", "confidence": "high"},
        {"title": "b", "confidence": "low"},
        {"title": "c", "confidence_score": 0.95},
        {"title": "d", "confidence": "high", "budget_cost": 3},
    ]
    result = AutoApprovalScorer().evaluate_suggestions(suggestions, settings)
    assert [s["title"] for s in result["auto_approved"]] == ["a", "c"]
    assert [s["title"] for s in result["needs_review"]] == ["b", "d"]
