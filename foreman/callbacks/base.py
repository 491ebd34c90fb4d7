"""Base callback protocol for foreman lifecycle hooks.

Engines accept a list of async callables ``cb(event: str, data: dict)`` and
await each one in order after every state transition. Implement this
protocol to observe or instrument the orchestration core without modifying it.

Usage:
    class MyCallback(BaseCallback):
        async def on_chain_completed(self, data, **kw):
            print(f"Chain run {data['chain_run_id']} completed")

    engine = ChainEngine(..., callbacks=[MyCallback()])

Events:
    workflow_started, workflow_paused, workflow_resumed, workflow_completed,
    workflow_node_updated, chain_started, chain_step_completed, chain_paused,
    chain_resumed, chain_completed, chain_failed, parallel_group_dispatched,
    parallel_group_completed, approval_requested, approval_resolved,
    tool_executed, tool_denied, agent_run
"""

import inspect
import logging
from typing import Any, Awaitable, Callable, Iterable, Protocol, runtime_checkable

logger = logging.getLogger(__name__)

CallbackFn = Callable[[str, dict], Awaitable[None]]


@runtime_checkable
class ForemanCallback(Protocol):
    """Protocol every callback satisfies: one async dispatch entry point."""

    async def __call__(self, event: str, data: dict) -> None:
        ...


class BaseCallback:
    """Concrete base that routes ``event`` to an ``on_<event>`` method.

    Subclass this and implement only the hooks you need; unknown events
    are ignored.
    """

    async def __call__(self, event: str, data: dict) -> None:
        handler = getattr(self, f"on_{event}", None)
        if handler is not None:
            await handler(data)

    async def on_error(self, data: dict, **kwargs: Any) -> None:
        pass


async def emit(callbacks: Iterable[CallbackFn], event: str, data: dict) -> None:
    """Invoke every callback in order. Sync callables are accepted too.

    A failing callback is logged and never breaks the transition that fired it.
    """
    for cb in callbacks:
        try:
            result = cb(event, data)
            if inspect.isawaitable(result):
                await result
        except Exception as cb_exc:
            logger.warning(f"Callback error on '{event}': {cb_exc}")
