"""Generation backend built on a pydantic-ai agent."""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, Optional

from pydantic_ai import Agent
from pydantic_ai.exceptions import ModelHTTPError, UnexpectedModelBehavior

from ..contracts import StepFailed
from .base import GenerationResult, TokenUsage

logger = logging.getLogger(__name__)

# Client errors that a retry may still fix.
_RETRYABLE_STATUS = {408, 409, 425, 429}

ITINERARY_INSTRUCTIONS = (
    "You are an itinerary architect. Answer with a single JSON object and no "
    "other text."
)


class AgentBackend:
    """Call a language model through :class:`pydantic_ai.Agent`.

    ``model`` is any model name pydantic-ai understands, e.g.
    ``"openai:gpt-4o-mini"`` or ``"test"`` for its offline test model.
    """

    def __init__(
        self,
        model: str,
        temperature: float = 0.7,
        max_tokens: Optional[int] = None,
        agent: Optional[Agent] = None,
    ) -> None:
        self.model = model
        self._defaults: Dict[str, Any] = {"temperature": temperature}
        if max_tokens is not None:
            self._defaults["max_tokens"] = max_tokens
        self._agent = agent or Agent(
            model,
            output_type=str,
            instructions=ITINERARY_INSTRUCTIONS,
            defer_model_check=True,
        )

    async def generate(
        self, prompt: str, model_parameters: Optional[Dict[str, Any]] = None
    ) -> GenerationResult:
        settings = {**self._defaults, **(model_parameters or {})}
        started = time.monotonic()
        try:
            result = await self._agent.run(prompt, model_settings=settings)
        except ModelHTTPError as exc:
            retryable = exc.status_code >= 500 or exc.status_code in _RETRYABLE_STATUS
            logger.warning(f"Model {self.model} returned HTTP {exc.status_code}")
            raise StepFailed(
                f"model request failed ({exc.status_code})", retryable=retryable
            ) from exc
        except UnexpectedModelBehavior as exc:
            raise StepFailed(f"unexpected model behaviour: {exc}") from exc

        latency = time.monotonic() - started
        text = result.output if isinstance(result.output, str) else str(result.output)
        if not text.strip():
            raise StepFailed("model returned empty text")

        usage = result.usage()
        token_usage = TokenUsage(
            prompt_tokens=usage.input_tokens,
            completion_tokens=usage.output_tokens,
            total_tokens=usage.total_tokens,
        )
        logger.info(
            f"Model {self.model} answered in {latency:.2f}s "
            f"({token_usage.total_tokens} tokens)"
        )
        return GenerationResult(
            text=text, token_usage=token_usage, latency=latency, model=self.model
        )
