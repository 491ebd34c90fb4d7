"""Load and validate chain definition / permission policy YAML files.

Chain files describe one chain:

    name: intake
    steps:
      - agent_id: dispatcher
        workflow_kind: dispatch
        next_step_conditions:
          - condition: 'steps.0.output.route == "escalate"'
            action: goto
            target_step: 2
      - agent_id: pm-copilot
        workflow_kind: plan

Permission files override the tool category mappings used by the gateway.
"""

from pathlib import Path
from typing import Union

import yaml

from foreman.config.schema import ChainYAML, PermissionsYAML
from foreman.exceptions import ChainDefinitionError
from foreman.tools.permissions import PermissionPolicy
from foreman.types import AgentChain, StepConfig


def _read_yaml(path: Union[str, Path]) -> dict:
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Config file not found: {p}")
    return yaml.safe_load(p.read_text()) or {}


def load_chain_yaml(path: Union[str, Path], team_id: str) -> AgentChain:
    """Load a chain file → AgentChain owned by ``team_id``.

    Args:
        path: Path to the chain YAML file.
        team_id: Team that will own the chain.

    Returns:
        Validated AgentChain (not persisted).

    Raises:
        ChainDefinitionError: if a goto target points outside the step list.
    """
    parsed = ChainYAML.model_validate(_read_yaml(path))
    steps = [StepConfig.model_validate(s.model_dump()) for s in parsed.steps]

    violations = []
    for index, step in enumerate(steps):
        for rule in step.next_step_conditions:
            target = getattr(rule.action, "target_step", None)
            if target is not None and not 0 <= target < len(steps):
                violations.append(f"step {index}: goto target {target} out of range")
        if step.execution_mode.value == "parallel" and not step.step_group:
            violations.append(f"step {index}: parallel step has no step_group")
    if violations:
        raise ChainDefinitionError(
            f"Chain '{parsed.name}' is invalid", violations=violations,
        )

    return AgentChain(
        team_id=team_id,
        name=parsed.name,
        description=parsed.description,
        steps=steps,
        enabled=parsed.enabled,
    )


def load_permissions_yaml(path: Union[str, Path]) -> PermissionPolicy:
    """Load a permission policy file → PermissionPolicy.

    Unless ``replace_defaults: true`` is set, entries are merged over
    the built-in category mappings.
    """
    parsed = PermissionsYAML.model_validate(_read_yaml(path))
    if parsed.replace_defaults:
        return PermissionPolicy(
            category_permissions=parsed.category_permissions,
            category_approval_types=parsed.category_approval_types,
        )
    base = PermissionPolicy()
    return PermissionPolicy(
        category_permissions={**base.category_permissions, **parsed.category_permissions},
        category_approval_types={**base.category_approval_types, **parsed.category_approval_types},
    )
