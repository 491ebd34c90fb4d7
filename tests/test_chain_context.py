"""Tests for ChainContext: copy-on-write updates, serialization, rendering."""

from foreman.core.chain_context import ChainContext


def _ctx():
    return (
        ChainContext.start("intake", {"trigger": "task.created"})
        .with_step_output(0, {"route": "design", "hours": 4}, "agent-dispatch")
        .with_step_output(1, {"summary": "ok", "secret": "x"}, "agent-pm")
    )


# ── Construction ──────────────────────────────────────────────────────────────


class TestConstruction:
    def test_start_seeds_metadata_and_accumulated(self):
        ctx = ChainContext.start("intake", {"trigger": "task.created"})
        assert ctx.metadata["chain_name"] == "intake"
        assert "started_at" in ctx.metadata
        assert ctx.accumulated_context == {"trigger": "task.created"}
        assert ctx.is_empty() is False

    def test_empty(self):
        assert ChainContext().is_empty() is True

    def test_storage_round_trip_restores_int_indices(self):
        stored = _ctx().to_storage()
        assert set(stored["steps"]) == {"0", "1"}
        restored = ChainContext.from_dict(stored)
        assert restored.output_for_step(0) == {"route": "design", "hours": 4}
        assert restored.completed_step_count() == 2

    def test_from_dict_none(self):
        assert ChainContext.from_dict(None).is_empty()


# ── Updates ───────────────────────────────────────────────────────────────────


class TestUpdates:
    def test_with_step_output_is_copy_on_write(self):
        base = ChainContext.start("intake")
        updated = base.with_step_output(0, {"a": 1})
        assert base.completed_step_count() == 0
        assert updated.output_for_step(0) == {"a": 1}

    def test_step_output_merged_into_accumulated(self):
        assert _ctx().accumulated_context["step_0"] == {"route": "design", "hours": 4}

    def test_last_writer_wins_for_same_index(self):
        ctx = _ctx().with_step_output(0, {"route": "build"})
        assert ctx.output_for_step(0) == {"route": "build"}

    def test_pause_and_resume_lifted_in_to_dict(self):
        ctx = _ctx().with_pause_reason("needs review").with_resume_data({"approved": True})
        data = ctx.to_dict()
        assert data["pause_reason"] == "needs review"
        assert data["resume_data"] == {"approved": True}
        assert "resumed_at" in ctx.metadata

    def test_filter_include_and_exclude(self):
        ctx = _ctx().filter(include=["summary", "secret", "route"], exclude=["secret"])
        assert ctx.output_for_step(1) == {"summary": "ok"}
        assert ctx.output_for_step(0) == {"route": "design"}
        assert ctx.metadata["filtered"] is True


# ── Queries ───────────────────────────────────────────────────────────────────


class TestQueries:
    def test_all_outputs_sorted(self):
        assert list(_ctx().all_outputs()) == [0, 1]

    def test_output_for_missing_step(self):
        assert _ctx().output_for_step(7) is None

    def test_evaluate_condition_uses_snapshot(self):
        assert _ctx().evaluate_condition('steps.0.output.route == "design"') is True

    def test_custom_evaluator(self):
        seen = []

        def evaluator(expression, snapshot):
            seen.append((expression, snapshot["metadata"]["chain_name"]))
            return True

        assert _ctx().evaluate_condition("anything", evaluator) is True
        assert seen == [("anything", "intake")]

    def test_prompt_string(self):
        text = _ctx().to_prompt_string()
        assert "## Previous Step Outputs" in text
        assert "### Step 0" in text
        assert "- **Route**: design" in text
        assert "## Accumulated Context" in text
        assert "- **Trigger**: task.created" in text

    def test_estimate_tokens(self):
        ctx = _ctx()
        assert ctx.estimate_tokens() == -(-len(ctx.to_prompt_string()) // 4)
        assert ChainContext().estimate_tokens() == 0
