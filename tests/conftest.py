"""Shared fixtures for itinerant tests."""

import asyncio
import json
from typing import Any, Dict, List, Optional

import pytest

from itinerant.execute import PipelineRunner
from itinerant.generation import GenerationResult, TokenUsage
from itinerant.models import TripParameters
from itinerant.persistence import InMemoryStateStore
from itinerant.state import WorkflowStateMachine
from itinerant.utils.retry import RetryPolicy

LISBON_OUTPUT = "Here is your trip!\n```json\n" + json.dumps(
    {
        "title": "Lisbon in Three Acts",
        "intro": "Tiles, trams and custard tarts.",
        "dailyPlans": [
            {
                "day": 1,
                "title": "Alfama wander",
                "location": "Alfama",
                "latitude": 38.7118,
                "longitude": -9.1300,
                "morning": {"activities": ["Castelo de Sao Jorge"]},
                "afternoon": {"activities": ["Fado museum"]},
                "evening": {"activities": ["Fado dinner"]},
                "signatureHighlight": "Sunset at Miradouro da Graca",
            },
            {
                "day": 2,
                "title": "Belem day",
                "location": "Belem",
                "coordinates": [38.6916, -9.2160],
                "morning": ["Jeronimos Monastery"],
                "afternoon": "Pasteis de Belem",
            },
        ],
        "travelTips": [
            {"title": "Trams", "description": "Ride tram 28 early."},
            "Wear good shoes on the hills.",
        ],
    }
) + "\n```\nEnjoy!"


class ScriptedBackend:
    """Generation backend that replays scripted answers.

    Each script entry is either the text to return or an exception to raise.
    """

    def __init__(self, *script: Any, delay: float = 0.0) -> None:
        self.script: List[Any] = list(script)
        self.delay = delay
        self.calls: List[str] = []

    async def generate(
        self, prompt: str, model_parameters: Optional[Dict[str, Any]] = None
    ) -> GenerationResult:
        self.calls.append(prompt)
        if self.delay:
            await asyncio.sleep(self.delay)
        entry = self.script.pop(0) if len(self.script) > 1 else self.script[0]
        if isinstance(entry, BaseException):
            raise entry
        return GenerationResult(
            text=entry,
            token_usage=TokenUsage(prompt_tokens=10, completion_tokens=20, total_tokens=30),
            latency=0.01,
            model="scripted",
        )


@pytest.fixture
def store():
    return InMemoryStateStore()


@pytest.fixture
def state(store):
    return WorkflowStateMachine(store)


@pytest.fixture
def no_wait():
    return RetryPolicy(max_attempts=3, base=0, jitter=0)


@pytest.fixture
def runner(state, no_wait):
    return PipelineRunner(state, retry_policy=no_wait)


@pytest.fixture
def lisbon():
    return TripParameters(destination="Lisbon", duration_days=3, interests=["food"])


@pytest.fixture
def lisbon_output():
    return LISBON_OUTPUT


@pytest.fixture
def scripted_backend():
    return ScriptedBackend
