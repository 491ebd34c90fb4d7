"""Tests for the AgentContext value object."""

import json
import math

from foreman.context.agent_context import AgentContext, estimate_payload_tokens, format_value


def test_empty_context():
    ctx = AgentContext()
    assert ctx.is_empty()
    assert ctx.estimate_tokens() == 0
    assert ctx.to_prompt_string() == ""


def test_metadata_alone_is_not_empty_but_costs_nothing():
    ctx = AgentContext().with_metadata(agent_id="a1")
    assert not ctx.is_empty()
    assert ctx.estimate_tokens() == 0


def test_with_methods_are_copy_on_write():
    base = AgentContext().with_project(name="Site")
    updated = base.with_project(status="active")
    assert base.project_context == {"name": "Site"}
    assert updated.project_context == {"name": "Site", "status": "active"}


def test_estimate_sums_tiers():
    ctx = AgentContext().with_project(name="Site").with_org(name="Acme")
    expected = math.ceil(len(json.dumps({"name": "Site"})) / 4) + math.ceil(len(json.dumps({"name": "Acme"})) / 4)
    assert ctx.estimate_tokens() == expected
    assert estimate_payload_tokens({}) == 0


def test_prompt_sections_in_order():
    ctx = (
        AgentContext()
        .with_project(name="Site", is_blocked=False)
        .with_client(name="Globex")
        .with_org(name="Acme")
        .with_metadata(entity_type="project")
    )
    text = ctx.to_prompt_string()
    positions = [text.index(h) for h in ("## Organization", "## Client", "## Project", "## Context Metadata")]
    assert positions == sorted(positions)
    assert "- **Is Blocked**: No" in text
    assert "- **Entity Type**: project" in text


def test_format_value():
    assert format_value(True) == "Yes"
    assert format_value(None) == "N/A"
    assert format_value({"a": 1}) == '{"a": 1}'
    assert format_value(3) == "3"


def test_to_dict_includes_token_estimate():
    ctx = AgentContext().with_client(name="Globex")
    data = ctx.to_dict()
    assert data["client_context"] == {"name": "Globex"}
    assert data["token_estimate"] == ctx.estimate_tokens()


def test_accessed_tiers():
    ctx = AgentContext().with_project(name="Site").with_org(name="Acme")
    assert ctx.accessed_tiers() == ["project_context", "org_context"]
