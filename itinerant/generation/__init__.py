"""Generation backends for itinerant."""

from __future__ import annotations

from typing import Optional

from ..config import ItinerantConfig, load_config
from .agent import AgentBackend
from .base import GenerationBackend, GenerationResult, TokenUsage
from .prompts import build_prompt


def get_backend(config: Optional[ItinerantConfig] = None) -> GenerationBackend:
    """Build the configured generation backend."""
    config = config or load_config()
    return AgentBackend(
        config.generation.model,
        temperature=config.generation.temperature,
        max_tokens=config.generation.max_tokens,
    )


__all__ = [
    "AgentBackend",
    "GenerationBackend",
    "GenerationResult",
    "TokenUsage",
    "build_prompt",
    "get_backend",
]
