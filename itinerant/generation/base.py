"""Generation backend interface."""

from __future__ import annotations

from typing import Any, Dict, Optional, Protocol

from pydantic import BaseModel


class TokenUsage(BaseModel):
    prompt_tokens: Optional[int] = None
    completion_tokens: Optional[int] = None
    total_tokens: Optional[int] = None


class GenerationResult(BaseModel):
    """Raw text returned by a model plus call metadata."""

    text: str
    token_usage: TokenUsage = TokenUsage()
    latency: float = 0.0
    model: Optional[str] = None


class GenerationBackend(Protocol):
    """Anything that can turn a prompt into text.

    Implementations raise :class:`~itinerant.contracts.StepFailed` with
    ``retryable=False`` for errors that retrying cannot fix.
    """

    async def generate(
        self, prompt: str, model_parameters: Optional[Dict[str, Any]] = None
    ) -> GenerationResult:
        """Return the model's answer to ``prompt``."""
