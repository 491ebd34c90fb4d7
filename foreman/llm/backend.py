"""Agent execution backend: turns an AgentContext plus input into agent output.

The core treats the backend as an opaque async function. ``LLMAgentBackend``
is the default implementation, a thin wrapper around litellm (Anthropic,
OpenAI, Ollama and 100+ other providers). Anything implementing the
``AgentBackend`` protocol can replace it, e.g. a fake in tests.
"""

import asyncio
import json
import logging
from typing import Any, Optional, Protocol, runtime_checkable

import litellm
from litellm import ModelResponse, Usage
from pydantic import BaseModel, Field

from foreman.config import config
from foreman.context.agent_context import AgentContext
from foreman.exceptions import AgentBackendError
from foreman.types import Agent

logger = logging.getLogger(__name__)


class AgentOutput(BaseModel):
    """What one backend call produced."""
    output: dict[str, Any] = Field(default_factory=dict)   # structured result merged into the chain
    text: str = ""
    tokens_used: int = 0
    cost: Optional[float] = None    # None lets the runner derive cost from tokens


@runtime_checkable
class AgentBackend(Protocol):
    async def run(self, agent: Agent, context: AgentContext, input: dict) -> AgentOutput:
        ...


SYSTEM_PROMPT = """You are {name}, an AI agent working inside a project-delivery platform.
{description}

Use the context below to complete the request. Respond with a single JSON object.

{context}"""


def _parse_output(content: str) -> dict:
    """Best-effort JSON parse of the model reply; plain text is wrapped."""
    text = content.strip()
    if text.startswith("```"):
        text = text.strip("`")
        if text.startswith("json"):
            text = text[4:]
    try:
        parsed = json.loads(text)
    except (json.JSONDecodeError, ValueError):
        return {"response": content}
    return parsed if isinstance(parsed, dict) else {"response": parsed}


class LLMAgentBackend:
    """litellm-backed agent backend."""

    def __init__(self, model: str = None, temperature: float = None, max_tokens: int = None):
        """
        Args:
            model:       litellm model string, e.g. "anthropic/claude-sonnet-4-20250514".
                         Defaults to config.default_llm_model.
            temperature: Override config.llm_temperature
            max_tokens:  Override config.llm_max_tokens
        """
        self.model = model or config.default_llm_model
        self.temperature = config.llm_temperature if temperature is None else temperature
        self.max_tokens = config.llm_max_tokens if max_tokens is None else max_tokens
        litellm.drop_params = True  # ignore unsupported params per provider

    def build_messages(self, agent: Agent, context: AgentContext, input: dict) -> list[dict]:
        system = SYSTEM_PROMPT.format(
            name=agent.name,
            description=agent.description,
            context=context.to_prompt_string() or "(no context available)",
        )
        return [
            {"role": "system", "content": system},
            {"role": "user", "content": json.dumps(input, default=str)},
        ]

    async def run(self, agent: Agent, context: AgentContext, input: dict) -> AgentOutput:
        """Call the model via litellm.acompletion().

        Raises:
            AgentBackendError: On any provider error or timeout
        """
        try:
            response = await asyncio.wait_for(
                litellm.acompletion(
                    model=self.model,
                    messages=self.build_messages(agent, context, input),
                    temperature=self.temperature,
                    max_tokens=self.max_tokens,
                    api_key=config.llm_api_key,
                ),
                timeout=config.llm_timeout_seconds,
            )
        except Exception as e:
            raise AgentBackendError(f"LLM call failed: {e}", details={"model": self.model, "agent_id": agent.id})

        content = response.choices[0].message.content or ""
        usage = response.usage
        tokens = (usage.prompt_tokens or 0) + (usage.completion_tokens or 0)
        return AgentOutput(
            output=_parse_output(content),
            text=content,
            tokens_used=tokens,
            cost=self._cost(usage.prompt_tokens or 0, usage.completion_tokens or 0),
        )

    def _cost(self, input_tokens: int, output_tokens: int) -> Optional[float]:
        """Provider price via litellm.completion_cost(); None when the model is unpriced."""
        try:
            _usage = Usage(
                prompt_tokens=input_tokens,
                completion_tokens=output_tokens,
                total_tokens=input_tokens + output_tokens,
            )
            _response = ModelResponse(model=self.model, usage=_usage)
            return litellm.completion_cost(completion_response=_response, model=self.model)
        except Exception as exc:
            logger.debug(f"No litellm price for model {self.model}: {exc}")
            return None
