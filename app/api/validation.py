"""
Direct Validation API

Admin-triggered validation runs (mentor "validate my branch" flow).

Endpoints:
- POST /validation/{project_id}/run - Run the pipeline and return its outcome
"""

from fastapi import APIRouter, Depends, HTTPException
from typing import Optional
from pydantic import BaseModel, Field, field_validator
import logging

from app.api.auth import get_services, verify_admin_key
from app.models.build_state import SEQUENCED_SOURCES
from app.models.validation import PipelineOutcome, ValidationRequest

router = APIRouter(prefix="/validation", tags=["validation"])

logger = logging.getLogger(__name__)


class ValidationRunRequest(BaseModel):
    """Request model for a direct validation run."""
    branch: str = Field(..., max_length=255, description="Branch to validate, e.g. '5-F'")
    pr_number: Optional[int] = Field(None, description="Pull request to comment on (resolved if omitted)")
    commit_sha: Optional[str] = Field(None, max_length=64, description="Commit to report status on (resolved if omitted)")
    success_source: Optional[str] = Field(None, description="Success family for the ledger row (default Mentor-Review)")

    @field_validator("success_source")
    @classmethod
    def _sequenced_family(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and value not in {s.value for s in SEQUENCED_SOURCES}:
            raise ValueError(f"success_source must be one of {sorted(s.value for s in SEQUENCED_SOURCES)}")
        return value


@router.post("/{project_id}/run", response_model=PipelineOutcome)
async def run_validation(
    project_id: str,
    body: ValidationRunRequest,
    services=Depends(get_services),
    _: bool = Depends(verify_admin_key)
):
    """
    Validate a branch now and return the structured outcome.

    Requires admin authentication.

    Example:
        POST /validation/kaiscout/run
        Authorization: Bearer <ADMIN_API_KEY>
        {"branch": "5-F"}
    """
    project = await services.projects.get(project_id)
    if project is None:
        raise HTTPException(status_code=404, detail=f"Project {project_id} not found")

    request = ValidationRequest(
        project_id=project_id,
        branch=body.branch,
        webhook=False,
        pr_number=body.pr_number,
        commit_sha=body.commit_sha,
        success_source=body.success_source,
    )

    outcome = await services.orchestrator.run(project, request)
    logger.info(f"Direct validation {project_id}/{body.branch}: success={outcome.success} state={outcome.state.value}")
    return outcome
