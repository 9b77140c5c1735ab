"""Build-State Service Services"""

from .state_ledger import StateLedger
from .sequence_allocator import SequenceAllocator
from .validation_stages import ValidationStageRunner
from .status_reporter import StatusReporter
from .orchestrator import ValidationOrchestrator
from .event_ingestion import EventIngestion
from .pipeline_runner import PipelineRunner
from .scheduler import BuildStateScheduler

__all__ = [
    "StateLedger",
    "SequenceAllocator",
    "ValidationStageRunner",
    "StatusReporter",
    "ValidationOrchestrator",
    "EventIngestion",
    "PipelineRunner",
    "BuildStateScheduler",
]
