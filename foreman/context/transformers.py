"""Output transformations and dot-nested key filtering for prior step outputs.

A chain step may declare ``output_transformations``, applied in order to each
previous step's output before ``context_filter_rules`` are applied:

    - {"type": "flatten", "separator": "."}
    - {"type": "select_keys", "keys": ["summary", "score"]}
    - {"type": "rename_keys", "mappings": {"score": "confidence"}}
    - {"type": "summarize", "fields": {"n_items": "count:items",
                                       "total": "sum:items.*.hours",
                                       "head": "first:items",
                                       "tail": "last:items"}}

Unknown transformation types are ignored with a warning.
"""

import logging
from typing import Any, Optional

from foreman.core.conditions import resolve_path

logger = logging.getLogger(__name__)


class OutputTransformer:
    """Applies a list of transformation specs to a step output dict."""

    def apply(self, output: dict, transformations: list[dict]) -> dict:
        result = dict(output or {})
        for rule in transformations or []:
            kind = rule.get("type")
            handler = getattr(self, f"_{kind}", None) if kind else None
            if handler is None:
                logger.warning(f"Unknown output transformation '{kind}', skipping")
                continue
            result = handler(result, rule)
        return result

    # ── Transformations ──

    def _flatten(self, data: dict, rule: dict) -> dict:
        return flatten(data, rule.get("separator", "."))

    def _select_keys(self, data: dict, rule: dict) -> dict:
        keys = rule.get("keys") or []
        return {k: data[k] for k in keys if k in data}

    def _rename_keys(self, data: dict, rule: dict) -> dict:
        mappings = rule.get("mappings") or {}
        return {mappings.get(k, k): v for k, v in data.items()}

    def _summarize(self, data: dict, rule: dict) -> dict:
        summary = {}
        for name, expression in (rule.get("fields") or {}).items():
            summary[name] = summarize_value(data, expression)
        return summary


def flatten(data: dict, separator: str = ".", prefix: str = "") -> dict:
    """Collapse nested dicts into one level with joined keys. Lists are kept as values."""
    flat: dict[str, Any] = {}
    for key, value in data.items():
        full_key = f"{prefix}{separator}{key}" if prefix else str(key)
        if isinstance(value, dict) and value:
            flat.update(flatten(value, separator, full_key))
        else:
            flat[full_key] = value
    return flat


def summarize_value(data: dict, expression: str) -> Any:
    """Evaluate one ``op:path`` summary expression.

    ``count:path`` length of a list, ``sum:path.*.field`` sum of a numeric field
    across list items, ``first:path`` / ``last:path`` end items of a list.
    Anything unparseable yields None.
    """
    op, _, path = expression.partition(":")
    if not path:
        return None
    if op == "sum":
        return _sum_path(data, path)
    value = resolve_path(data, path)
    if op == "count":
        return len(value) if isinstance(value, (list, dict)) else 0
    if op == "first":
        return value[0] if isinstance(value, list) and value else None
    if op == "last":
        return value[-1] if isinstance(value, list) and value else None
    return None


def _sum_path(data: dict, path: str) -> float:
    if ".*." not in path:
        value = resolve_path(data, path)
        if isinstance(value, list):
            return sum(v for v in value if isinstance(v, (int, float)) and not isinstance(v, bool))
        return value if isinstance(value, (int, float)) and not isinstance(value, bool) else 0
    list_path, field = path.split(".*.", 1)
    items = resolve_path(data, list_path)
    if not isinstance(items, list):
        return 0
    total = 0
    for item in items:
        value = resolve_path(item, field) if isinstance(item, dict) else None
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            total += value
    return total


# ── Dot-nested include / exclude ──

def include_keys(data: dict, paths: list[str]) -> dict:
    """Keep only the given dot-nested paths, preserving nesting."""
    result: dict[str, Any] = {}
    for path in paths:
        head, _, rest = path.partition(".")
        if head not in data:
            continue
        if not rest:
            result[head] = data[head]
        elif isinstance(data[head], dict):
            nested = include_keys(data[head], [rest])
            if nested:
                existing = result.get(head)
                result[head] = _merge(existing, nested) if isinstance(existing, dict) else nested
    return result


def exclude_keys(data: dict, paths: list[str]) -> dict:
    """Drop the given dot-nested paths. Missing paths are ignored."""
    result = dict(data)
    for path in paths:
        head, _, rest = path.partition(".")
        if head not in result:
            continue
        if not rest:
            del result[head]
        elif isinstance(result[head], dict):
            result[head] = exclude_keys(result[head], [rest])
    return result


def _merge(left: dict, right: dict) -> dict:
    merged = dict(left)
    for key, value in right.items():
        if isinstance(merged.get(key), dict) and isinstance(value, dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def filter_output(
    output: dict,
    include: Optional[list[str]] = None,
    exclude: Optional[list[str]] = None,
) -> dict:
    """Include-list first (when given), then exclude-list."""
    result = include_keys(output, include) if include else dict(output)
    if exclude:
        result = exclude_keys(result, exclude)
    return result
