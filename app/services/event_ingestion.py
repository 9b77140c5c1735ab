"""
Event Ingestion

Classifies authenticated webhook events and turns them into ledger updates
or validation runs:

- push                           -> Github row
- pull_request closed + merged   -> Github-Merge row
- pull_request opened/sync/reopen -> validation run (background task)
- workflow_run failure on a PR   -> PR-Failed row
- Railway deploy events          -> Railway row
- anything else                  -> acknowledged and ignored
"""

import logging
from typing import Optional, Dict, Any

from app.models.build_state import BuildStateRecord, BuildStatus, NO_BRANCH, SignalSource
from app.models.events import PullRequestEvent, PushEvent, RailwayEvent, WorkflowRunEvent
from app.models.project import ProjectRecord
from app.models.validation import ValidationRequest
from app.services.branch_naming import parse_branch
from app.services.build_output import parse_build_output
from app.services.orchestrator import ValidationOrchestrator
from app.services.pipeline_runner import PipelineRunner
from app.services.project_registry import ProjectRegistryStore
from app.services.state_ledger import StateLedger

logger = logging.getLogger(__name__)

VALIDATION_ACTIONS = ("opened", "synchronize", "reopened")

RAILWAY_STATUS_MAP = {
    "SUCCESS": BuildStatus.SUCCESS,
    "DEPLOYED": BuildStatus.SUCCESS,
    "FAILED": BuildStatus.FAILED,
    "CRASHED": BuildStatus.FAILED,
    "REMOVED": BuildStatus.FAILED,
    "BUILDING": BuildStatus.IN_PROGRESS,
    "DEPLOYING": BuildStatus.IN_PROGRESS,
    "INITIALIZING": BuildStatus.IN_PROGRESS,
    "QUEUED": BuildStatus.IN_PROGRESS,
}


def map_railway_status(status: Optional[str]) -> BuildStatus:
    if not status:
        return BuildStatus.UNKNOWN
    return RAILWAY_STATUS_MAP.get(status.strip().upper(), BuildStatus.UNKNOWN)


def railway_status_text(event: RailwayEvent) -> Optional[str]:
    """Status from details, else the suffix of the event type ("Deployment.failed")."""
    if event.details and event.details.status:
        return event.details.status
    if "." in event.type:
        return event.type.rsplit(".", 1)[1]
    return None


def ledger_branch(branch: Optional[str], project: ProjectRecord) -> str:
    """Default-branch signals are recorded under the "no branch" sentinel."""
    if not branch or branch == project.default_branch:
        return NO_BRANCH
    return branch


class EventIngestion:
    """Routes webhook events to the ledger and the orchestrator."""

    def __init__(
        self,
        ledger: StateLedger,
        projects: ProjectRegistryStore,
        orchestrator: ValidationOrchestrator,
        runner: PipelineRunner
    ):
        self.ledger = ledger
        self.projects = projects
        self.orchestrator = orchestrator
        self.runner = runner

    # --- GitHub ---

    async def handle_github(self, event: str, payload: Dict[str, Any], delivery_id: Optional[str] = None) -> Dict[str, Any]:
        """
        Handle one GitHub event.

        Returns:
            Intake summary {"event", "action", "handled"}
        """
        action = payload.get("action")
        summary = {"event": event, "action": action, "handled": False}

        if event == "push":
            summary["handled"] = await self._handle_push(PushEvent.model_validate(payload))
        elif event == "pull_request":
            summary["handled"] = await self._handle_pull_request(PullRequestEvent.model_validate(payload), delivery_id)
        elif event == "workflow_run":
            summary["handled"] = await self._handle_workflow_run(WorkflowRunEvent.model_validate(payload))
        else:
            logger.info(f"Ignoring GitHub event '{event}' (delivery={delivery_id})")

        return summary

    async def _resolve_repository(self, full_name: str):
        resolved = await self.projects.find_by_repository(full_name)
        if resolved is None:
            logger.warning(f"Event for unregistered repository {full_name} ignored")
        return resolved

    async def _handle_push(self, event: PushEvent) -> bool:
        if event.deleted or event.branch is None:
            return False

        resolved = await self._resolve_repository(event.repository.full_name)
        if resolved is None:
            return False
        project, role = resolved

        parsed = parse_branch(event.branch)
        commit = event.head_commit

        await self.ledger.upsert(BuildStateRecord(
            project_id=project.project_id,
            source=SignalSource.GITHUB.value,
            webhook=True,
            branch=ledger_branch(event.branch, project),
            last_status=BuildStatus.SUCCESS,
            branch_status="Active",
            last_commit_id=commit.id if commit else event.after,
            last_commit_message=commit.message if commit else None,
            sprint_number=parsed[1] if parsed else None,
            dev_role=role,
            latest_event="PUSH",
            timestamp=commit.timestamp if commit else None,
        ))
        return True

    async def _handle_pull_request(self, event: PullRequestEvent, delivery_id: Optional[str]) -> bool:
        pull = event.pull_request

        if event.action == "closed" and pull.merged:
            return await self._record_merge(event)

        if event.action not in VALIDATION_ACTIONS:
            logger.info(f"Ignoring pull_request action '{event.action}' on {event.repository.full_name}#{event.number}")
            return False

        resolved = await self._resolve_repository(event.repository.full_name)
        if resolved is None:
            return False
        project, role = resolved

        request = ValidationRequest(
            project_id=project.project_id,
            branch=pull.head.ref,
            webhook=True,
            repo_full_name=event.repository.full_name,
            pr_number=pull.number,
            commit_sha=pull.head.sha,
            delivery_id=delivery_id,
            dev_role=role,
        )
        self.runner.submit(
            self.orchestrator.run(project, request),
            name=f"validate:{project.project_id}:{pull.head.ref}:{delivery_id or pull.head.sha[:7]}"
        )
        return True

    async def _record_merge(self, event: PullRequestEvent) -> bool:
        resolved = await self._resolve_repository(event.repository.full_name)
        if resolved is None:
            return False
        project, role = resolved

        pull = event.pull_request
        parsed = parse_branch(pull.head.ref)

        await self.ledger.upsert(BuildStateRecord(
            project_id=project.project_id,
            source=SignalSource.GITHUB_MERGE.value,
            webhook=True,
            branch=pull.head.ref,
            last_status=BuildStatus.SUCCESS,
            pr_status="Merged",
            branch_status="Merged",
            last_commit_id=pull.head.sha,
            last_merge_timestamp=pull.merged_at,
            sprint_number=parsed[1] if parsed else None,
            dev_role=role,
            latest_event="PULL_REQUEST_MERGED",
        ))
        return True

    async def _handle_workflow_run(self, event: WorkflowRunEvent) -> bool:
        run = event.workflow_run

        if event.action != "completed" or run.conclusion != "failure":
            return False
        if not run.head_branch or not (run.pull_requests or parse_branch(run.head_branch)):
            return False

        resolved = await self._resolve_repository(event.repository.full_name)
        if resolved is None:
            return False
        project, role = resolved

        parsed = parse_branch(run.head_branch)
        message = f"Workflow '{run.name or 'CI'}' failed"

        await self.ledger.upsert(BuildStateRecord(
            project_id=project.project_id,
            source=SignalSource.PR_FAILED.value,
            webhook=True,
            branch=run.head_branch,
            last_status=BuildStatus.FAILED,
            pr_status="Open" if run.pull_requests else None,
            last_commit_id=run.head_sha,
            error_message=message,
            error_summary=message,
            request_url=run.html_url,
            sprint_number=parsed[1] if parsed else None,
            dev_role=role,
            latest_event="WORKFLOW_FAILED",
        ))
        return True

    # --- Railway ---

    async def handle_railway(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        Handle one deploy platform event.

        Returns:
            Intake summary {"event", "status", "handled"}
        """
        event = RailwayEvent.model_validate(payload)
        status_text = railway_status_text(event)
        status = map_railway_status(status_text)
        summary = {"event": event.type, "status": status.value, "handled": False}

        service = event.service
        project = await self.projects.find_by_deploy_service(service.id, service.name)
        if project is None:
            logger.warning(f"Railway event for unknown service {service.name or service.id} ignored")
            return summary

        details = event.details
        record = BuildStateRecord(
            project_id=project.project_id,
            source=SignalSource.RAILWAY.value,
            webhook=True,
            branch=ledger_branch(details.branch if details else None, project),
            last_status=status,
            last_commit_id=details.commit_hash if details else None,
            last_commit_message=details.commit_message if details else None,
            service_name=service.name,
            latest_event=f"DEPLOY_{(status_text or 'UNKNOWN').upper()}",
            timestamp=event.timestamp,
        )

        if status == BuildStatus.FAILED:
            error_text = details.error_text if details else None
            parsed = parse_build_output(error_text)
            record = record.model_copy(update={
                "error_message": error_text,
                "last_output": error_text,
                "error_file": parsed.file if parsed else None,
                "error_line": parsed.line if parsed else None,
                "stack_trace": parsed.stack_trace if parsed else None,
                "error_summary": parsed.summary if parsed else None,
            })

        await self.ledger.upsert(record)
        summary["handled"] = True
        return summary
