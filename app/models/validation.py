"""
Validation Records

Stage results, the aggregated report and the pipeline outcome returned to
directly-triggered callers.
"""

from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any
import enum

from app.errors import StageValidationFailure
from app.models.build_state import DevRole


class PipelineState(str, enum.Enum):
    """Orchestrator states (terminal state is LEDGER_UPDATED)."""
    RECEIVED = "RECEIVED"
    AUTHENTICATED = "AUTHENTICATED"
    BRANCH_NAME_CHECKED = "BRANCH_NAME_CHECKED"
    STAGES_RUN = "STAGES_RUN"
    DEDUPED = "DEDUPED"
    REVIEWED = "REVIEWED"
    STATUS_REPORTED = "STATUS_REPORTED"
    LEDGER_UPDATED = "LEDGER_UPDATED"


class StageResult(BaseModel):
    """Outcome of one independent validation stage."""
    name: str
    valid: bool
    issues: List[str] = []
    details: Dict[str, Any] = {}


class ValidationReport(BaseModel):
    """Aggregate of all stage results."""
    stages: List[StageResult] = []

    @property
    def valid(self) -> bool:
        return all(stage.valid for stage in self.stages)

    @property
    def issues(self) -> List[str]:
        return [issue for stage in self.stages for issue in stage.issues]

    @property
    def language(self) -> Optional[str]:
        for stage in self.stages:
            runtime = stage.details.get("runtime")
            if runtime:
                return runtime
        return None

    def stage(self, name: str) -> Optional[StageResult]:
        for stage in self.stages:
            if stage.name == name:
                return stage
        return None

    def raise_for_issues(self) -> None:
        """
        Raises:
            StageValidationFailure: If any stage is invalid
        """
        if not self.valid:
            failed = [stage.name for stage in self.stages if not stage.valid]
            raise StageValidationFailure(
                f"{len(self.issues)} issue(s) in {', '.join(failed)}",
                metadata={"stages": failed, "issues": self.issues}
            )


class PipelineOutcome(BaseModel):
    """Structured result of one orchestrator run."""
    success: bool
    state: PipelineState
    project_id: str
    branch: str
    dev_role: Optional[str] = None
    issues: List[str] = []
    review_feedback: Optional[str] = None
    ledger_source: Optional[str] = None
    deduped: bool = False
    message: Optional[str] = None
    stages: List[StageResult] = Field(default_factory=list)


class ValidationRequest(BaseModel):
    """One pipeline trigger, from a pull request webhook or a direct call."""
    project_id: str
    branch: str
    webhook: bool = True
    repo_full_name: Optional[str] = None
    pr_number: Optional[int] = None
    commit_sha: Optional[str] = None
    success_source: Optional[str] = None
    delivery_id: Optional[str] = None
    dev_role: Optional[DevRole] = None
