"""Build-State Service Models"""

from .build_state import (
    BuildState,
    BuildStateRecord,
    BuildStatus,
    DevRole,
    SignalSource,
    NO_BRANCH,
)
from .project import ProjectRegistry, ProjectRecord
from .validation import (
    PipelineOutcome,
    PipelineState,
    StageResult,
    ValidationReport,
    ValidationRequest,
)

__all__ = [
    "BuildState",
    "BuildStateRecord",
    "BuildStatus",
    "DevRole",
    "SignalSource",
    "NO_BRANCH",
    "ProjectRegistry",
    "ProjectRecord",
    "PipelineOutcome",
    "PipelineState",
    "StageResult",
    "ValidationReport",
    "ValidationRequest",
]
