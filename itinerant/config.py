from __future__ import annotations

import os
from typing import Literal, Optional

import yaml
from pydantic import BaseModel, Field

from .constants import (
    DEFAULT_NOT_FOUND_GRACE,
    DEFAULT_POLL_INTERVAL,
    DEFAULT_POLL_MAX_WAIT,
    RECORD_KEY_PREFIX,
)
from .utils.retry import RetryPolicy


class RedisConfig(BaseModel):
    """Configuration for Redis connections."""

    host: str = "localhost"
    port: int = 6379
    db: int = 0
    password: Optional[str] = None


class StoreConfig(BaseModel):
    """State store settings.

    ``url`` selects the backend: unset for in-memory, ``sqlite://path``,
    ``redis://...`` or ``postgresql://...``.
    """

    url: Optional[str] = None
    key_prefix: str = RECORD_KEY_PREFIX
    timeout: float = 5.0
    ttl_seconds: Optional[int] = None


class TransportConfig(BaseModel):
    """Transport configuration settings."""

    backend: Literal["inmemory", "redis"] = "inmemory"
    redis: RedisConfig = RedisConfig()


class PipelineConfig(BaseModel):
    """Step runner settings."""

    retry: RetryPolicy = RetryPolicy()
    step_timeout: float = 30.0
    generation_timeout: float = 120.0
    debug_dir: Optional[str] = None


class GenerationConfig(BaseModel):
    """Model used by the generation backend."""

    model: str = "openai:gpt-4o-mini"
    temperature: float = 0.7
    max_tokens: Optional[int] = None


class PollingConfig(BaseModel):
    """Client-side polling defaults."""

    interval: float = Field(default=DEFAULT_POLL_INTERVAL, gt=0)
    max_wait: float = Field(default=DEFAULT_POLL_MAX_WAIT, gt=0)
    not_found_grace: float = Field(default=DEFAULT_NOT_FOUND_GRACE, ge=0)
    status_base_url: Optional[str] = None


class ItinerantConfig(BaseModel):
    """Top-level configuration model."""

    store: StoreConfig = StoreConfig()
    transport: TransportConfig = TransportConfig()
    pipeline: PipelineConfig = PipelineConfig()
    generation: GenerationConfig = GenerationConfig()
    polling: PollingConfig = PollingConfig()


def load_config(path: Optional[str] = None) -> ItinerantConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to ITINERANT_CONFIG env
            variable or 'config.yaml' in the current directory.
    """

    config_path = path or os.getenv("ITINERANT_CONFIG", "config.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = ItinerantConfig(**data)
    else:
        config = ItinerantConfig()

    env_store_url = os.getenv("ITINERANT_STORE_URL")
    if env_store_url:
        config.store.url = env_store_url
    env_transport = os.getenv("ITINERANT_TRANSPORT")
    if env_transport:
        config.transport.backend = env_transport.lower()
    env_model = os.getenv("ITINERANT_MODEL")
    if env_model:
        config.generation.model = env_model
    return config
