"""Tests for the chain and permission YAML loaders."""

import textwrap

import pytest

from foreman.config import load_chain_yaml, load_permissions_yaml
from foreman.exceptions import ChainDefinitionError
from foreman.types import ExecutionMode, GotoAction

CHAIN_YAML = """
name: intake
description: Route new tasks
steps:
  - agent_id: dispatcher
    workflow_kind: dispatch
    next_step_conditions:
      - condition: 'steps.0.output.route == "escalate"'
        action: goto
        target_step: 2
  - agent_id: pm-copilot
    execution_mode: Parallel
    step_group: review
    context_filter_rules:
      context_include: [summary]
  - agent_id: qa
    execution_mode: parallel
    step_group: review
    priority: high
"""


def _write(tmp_path, name, content):
    path = tmp_path / name
    path.write_text(textwrap.dedent(content))
    return path


class TestChainYAML:
    def test_loads_chain(self, tmp_path):
        chain = load_chain_yaml(_write(tmp_path, "intake.yaml", CHAIN_YAML), "team-acme")
        assert chain.team_id == "team-acme"
        assert chain.name == "intake"
        assert len(chain.steps) == 3
        rule = chain.steps[0].next_step_conditions[0]
        assert isinstance(rule.action, GotoAction)
        assert rule.action.target_step == 2
        assert chain.steps[1].execution_mode == ExecutionMode.PARALLEL
        assert chain.steps[1].context_filter_rules.context_include == ["summary"]
        assert chain.group_indices("review") == [1, 2]

    def test_unknown_keys_pass_through(self, tmp_path):
        chain = load_chain_yaml(_write(tmp_path, "intake.yaml", CHAIN_YAML), "team-acme")
        assert chain.steps[2].model_extra["priority"] == "high"

    def test_goto_out_of_range(self, tmp_path):
        path = _write(tmp_path, "bad.yaml", """
            name: bad
            steps:
              - agent_id: a
                next_step_conditions:
                  - action: goto
                    target_step: 7
            """)
        with pytest.raises(ChainDefinitionError) as exc_info:
            load_chain_yaml(path, "team-acme")
        assert exc_info.value.violations == ["step 0: goto target 7 out of range"]

    def test_parallel_without_group(self, tmp_path):
        path = _write(tmp_path, "bad.yaml", """
            name: bad
            steps:
              - agent_id: a
                execution_mode: parallel
            """)
        with pytest.raises(ChainDefinitionError) as exc_info:
            load_chain_yaml(path, "team-acme")
        assert exc_info.value.violations == ["step 0: parallel step has no step_group"]

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_chain_yaml(tmp_path / "nope.yaml", "team-acme")


class TestPermissionsYAML:
    def test_merges_over_defaults(self, tmp_path):
        path = _write(tmp_path, "perms.yaml", """
            category_permissions:
              invoices: can_access_financial_data
            category_approval_types:
              email: client_facing_content
            """)
        policy = load_permissions_yaml(path)
        assert policy.required_permission("invoices") == "can_access_financial_data"
        assert policy.required_permission("tasks") == "can_modify_tasks"
        assert policy.approval_action_type("email") == "client_facing_content"

    def test_replace_defaults(self, tmp_path):
        path = _write(tmp_path, "perms.yaml", """
            replace_defaults: true
            category_permissions:
              invoices: can_access_financial_data
            """)
        policy = load_permissions_yaml(path)
        assert policy.required_permission("tasks") is None
        assert policy.approval_action_type("email") is None
