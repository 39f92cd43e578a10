"""itinerant: durable itinerary generation jobs."""

from .contracts import JobMessage, WorkflowRecord, WorkflowStatus
from .dispatch import ItineraryDispatcher, TriggerReceipt
from .execute import PipelineRunner
from .models import Document, TripParameters
from .normalize import normalize
from .persistence import get_store
from .pipeline import ItineraryPipeline
from .polling import PollOutcome, StatusPoller
from .state import WorkflowStateMachine
from .steps import JobContext, PipelineStep, best_effort, critical
from .transports import get_transport
from .worker import JobWorker

__version__ = "0.1.0"
__all__ = [
    "Document",
    "ItineraryDispatcher",
    "ItineraryPipeline",
    "JobContext",
    "JobMessage",
    "JobWorker",
    "PipelineRunner",
    "PipelineStep",
    "PollOutcome",
    "StatusPoller",
    "TriggerReceipt",
    "TripParameters",
    "WorkflowRecord",
    "WorkflowStateMachine",
    "WorkflowStatus",
    "best_effort",
    "critical",
    "get_store",
    "get_transport",
    "normalize",
]
