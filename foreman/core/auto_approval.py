"""Auto-approval scoring for agent suggestions.

A suggestion is a plain dict produced by an agent, e.g.
``{"title": "...", "confidence": "high", "budget_cost": 0}``.
"""

from typing import Any

from foreman.types import GlobalAISettings

CONFIDENCE_SCORES = {
    "high": 0.9,
    "medium": 0.7,
    "low": 0.5,
}


def confidence_score(suggestion: dict) -> float:
    """Explicit ``confidence_score`` wins, else the ``confidence`` level, else medium."""
    explicit = suggestion.get("confidence_score")
    if isinstance(explicit, (int, float)) and not isinstance(explicit, bool):
        return float(explicit)
    if isinstance(explicit, str):
        try:
            return float(explicit)
        except ValueError:
            pass
    level = str(suggestion.get("confidence") or "medium").lower()
    return CONFIDENCE_SCORES.get(level, CONFIDENCE_SCORES["medium"])


def has_budget_impact(suggestion: dict) -> bool:
    if suggestion.get("has_budget_impact") is True:
        return True
    try:
        return float(suggestion.get("budget_cost") or 0) > 0
    except (TypeError, ValueError):
        return False


class AutoApprovalScorer:
    """Decides whether a suggestion can skip the approval inbox."""

    def should_auto_approve(self, suggestion: dict, settings: GlobalAISettings) -> bool:
        """Never for suggestions that spend budget; otherwise confidence vs. the team threshold."""
        if has_budget_impact(suggestion):
            return False
        return settings.meets_auto_approval_threshold(confidence_score(suggestion))

    def evaluate_suggestions(
        self, suggestions: list[dict], settings: GlobalAISettings,
    ) -> dict[str, list[Any]]:
        """Partition suggestions into ``auto_approved`` and ``needs_review``, order preserved."""
        result: dict[str, list[Any]] = {"auto_approved": [], "needs_review": []}
        for suggestion in suggestions:
            bucket = "auto_approved" if self.should_auto_approve(suggestion, settings) else "needs_review"
            result[bucket].append(suggestion)
        return result
