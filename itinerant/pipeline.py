"""The itinerary pipeline: generate, normalize, then best-effort extras."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from .config import PipelineConfig
from .contracts import StepFailed
from .generation import GenerationBackend, GenerationResult, build_prompt
from .normalize import normalize
from .search import IndexEntry, ItineraryIndex
from .steps import JobContext, PipelineStep, best_effort, critical

logger = logging.getLogger(__name__)

GENERATE_STEP = "generate"
NORMALIZE_STEP = "normalize"
INDEX_STEP = "index"
DEBUG_DUMP_STEP = "debug-dump"


class ItineraryPipeline:
    """Builds the step list for one itinerary job.

    ``generate`` and ``normalize`` are critical. Indexing and the debug dump
    are best-effort and only run when an index or ``debug_dir`` is set.
    """

    def __init__(
        self,
        backend: GenerationBackend,
        index: Optional[ItineraryIndex] = None,
        config: Optional[PipelineConfig] = None,
        model_parameters: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.backend = backend
        self.index = index
        self.config = config or PipelineConfig()
        self.model_parameters = model_parameters

    def steps(self) -> List[PipelineStep]:
        steps = [
            critical(
                GENERATE_STEP, self.generate, timeout=self.config.generation_timeout
            ),
            critical(NORMALIZE_STEP, self.normalize),
        ]
        if self.index is not None:
            steps.append(best_effort(INDEX_STEP, self.add_to_index))
        if self.config.debug_dir:
            steps.append(best_effort(DEBUG_DUMP_STEP, self.debug_dump))
        return steps

    async def generate(self, context: JobContext) -> Tuple[JobContext, GenerationResult]:
        prompt = build_prompt(context.parameters)
        result = await self.backend.generate(prompt, self.model_parameters)
        logger.debug(f"Generated {len(result.text)} characters for {context.workflow_id}")
        return context.evolve(raw_output=result.text), result

    async def normalize(self, context: JobContext) -> Tuple[JobContext, Dict[str, Any]]:
        if context.raw_output is None:
            raise StepFailed("no generated text to normalize", retryable=False)
        document = normalize(context.raw_output, context.parameters)
        if document.parse_error:
            logger.warning(
                f"Workflow {context.workflow_id}: model output was not valid JSON "
                f"({document.parse_error}); using fallback content"
            )
        summary = {
            "days": len(document.days),
            "generated_days": document.generated_days,
            "padded_days": document.padded_days,
            "truncated_days": document.truncated_days,
            "parse_error": document.parse_error,
        }
        return context.evolve(document=document), summary

    async def add_to_index(self, context: JobContext) -> IndexEntry:
        if context.document is None:
            raise StepFailed("nothing to index", retryable=False)
        return await self.index.add(context.workflow_id, context.document)

    async def debug_dump(self, context: JobContext) -> str:
        path = Path(self.config.debug_dir) / f"{context.workflow_id}.json"
        payload = {
            "workflow_id": context.workflow_id,
            "session_id": context.session_id,
            "parameters": context.parameters.model_dump(mode="json"),
            "raw_output": context.raw_output,
            "document": (
                context.document.model_dump(mode="json") if context.document else None
            ),
        }
        await asyncio.to_thread(_write_json, path, payload)
        logger.info(f"Wrote debug artifact {path}")
        return str(path)


def _write_json(path: Path, payload: Dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, indent=2))
