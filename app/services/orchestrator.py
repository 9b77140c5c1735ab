"""
Validation Orchestrator

Drives one pull request through the validation pipeline:

    pending status
    -> branch naming check       (Branch-Naming row on violation)
    -> validation stages         (no row on failure)
    -> dedup window              (reuse recent feedback, no new row)
    -> review agent
    -> PR comment
    -> success status            (only after the comment)
    -> sequenced ledger row      (PR-Success supersedes PR-Failed)

Failures at any step post a failure status and stop. The whole run is
bounded by PIPELINE_DEADLINE_SECONDS; a timed-out or cancelled run still
posts a failure status so the commit is never left pending.
"""

import asyncio
import httpx
import logging
from typing import Optional, List

from app.config import get_settings
from app.errors import BranchNamingViolation, ConfigurationMissing, ReviewAgentFailure, StageValidationFailure
from app.models.build_state import (
    BuildStateRecord,
    BuildStatus,
    CANONICAL_SUCCESS_SOURCE,
    DevRole,
    SEQUENCED_SOURCES,
    SignalSource,
)
from app.models.project import ProjectRecord
from app.models.validation import PipelineOutcome, PipelineState, ValidationReport, ValidationRequest
from app.services.branch_naming import require_branch
from app.services.github_client import GitHubClient
from app.services.sequence_allocator import SequenceAllocator
from app.services.state_ledger import StateLedger
from app.services.status_reporter import StatusReporter, truncate_description
from app.services.validation_stages import ValidationStageRunner

logger = logging.getLogger(__name__)

MAX_SUMMARY_ISSUES = 3


def summarise_issues(issues: List[str], limit: int) -> str:
    """Failure description from the first few issues, fitted to limit."""
    shown = issues[:MAX_SUMMARY_ISSUES]
    text = "Validation failed: " + "; ".join(shown)
    if len(issues) > len(shown):
        text += f" (+{len(issues) - len(shown)} more)"
    return truncate_description(text, limit)


def format_review_comment(feedback: str, role: DevRole, sprint: int) -> str:
    return f"## Mentor review: sprint {sprint} ({role.value})\n\n{feedback}"


class _RunContext:
    """Mutable per-run state shared with the timeout/cancel handlers."""

    def __init__(self, request: ValidationRequest):
        self.request = request
        self.repo: Optional[str] = request.repo_full_name
        self.sha: Optional[str] = request.commit_sha
        self.pr_number: Optional[int] = request.pr_number
        self.state = PipelineState.AUTHENTICATED
        self.final_reported = False


class ValidationOrchestrator:
    """Runs the validation state machine for one trigger at a time."""

    def __init__(
        self,
        ledger: StateLedger,
        allocator: SequenceAllocator,
        stages: ValidationStageRunner,
        reporter: StatusReporter,
        github: GitHubClient,
        review_agent,
        task_board,
        deadline_seconds: Optional[float] = None,
        dedup_window_seconds: Optional[int] = None
    ):
        """
        Initialize orchestrator.

        Args:
            ledger: Build-state ledger
            allocator: Writer for sequenced success rows
            stages: Validation stage runner
            reporter: Commit status and comment poster
            github: GitHub client (diffs, PR and branch resolution)
            review_agent: Object with async review(diff, requirement_text, language) -> str
            task_board: Object with async lookup_item(project, item_id) -> Optional[str]
            deadline_seconds: Bound on a whole run
            dedup_window_seconds: Window in which a recent success is reused
        """
        settings = get_settings()
        self.ledger = ledger
        self.allocator = allocator
        self.stages = stages
        self.reporter = reporter
        self.github = github
        self.review_agent = review_agent
        self.task_board = task_board
        self.deadline_seconds = deadline_seconds or settings.PIPELINE_DEADLINE_SECONDS
        self.dedup_window_seconds = dedup_window_seconds if dedup_window_seconds is not None else settings.DEDUP_WINDOW_SECONDS
        self.description_limit = settings.STATUS_DESCRIPTION_LIMIT

    # --- Entry point ---

    async def run(self, project: ProjectRecord, request: ValidationRequest) -> PipelineOutcome:
        """
        Run the pipeline under the deadline.

        Raises:
            asyncio.CancelledError: Re-raised after the failure status is posted
        """
        ctx = _RunContext(request)
        logger.info(
            f"Pipeline start {project.project_id}/{request.branch} "
            f"(webhook={request.webhook}, delivery={request.delivery_id})"
        )

        try:
            return await asyncio.wait_for(self._run(project, ctx), timeout=self.deadline_seconds)

        except asyncio.TimeoutError:
            logger.error(
                f"Pipeline deadline of {self.deadline_seconds}s exceeded for "
                f"{project.project_id}/{request.branch} in state {ctx.state.value}"
            )
            await self._report_abort(ctx, "Validation timed out")
            return self._outcome(project, ctx, False, message="Validation deadline exceeded")

        except asyncio.CancelledError:
            logger.warning(f"Pipeline cancelled for {project.project_id}/{request.branch} in state {ctx.state.value}")
            await asyncio.shield(self._report_abort(ctx, "Validation was cancelled"))
            raise

        except Exception as e:
            logger.error(
                f"Pipeline error for {project.project_id}/{request.branch} in state {ctx.state.value}: {e}",
                exc_info=True
            )
            await self._report_abort(ctx, "Validation error")
            return self._outcome(project, ctx, False, message=f"Validation error: {e}")

    async def _report_abort(self, ctx: _RunContext, description: str) -> None:
        if ctx.final_reported:
            return
        ctx.final_reported = True
        await self.reporter.set_status(ctx.repo, ctx.sha, "failure", description)

    # --- State machine ---

    async def _run(self, project: ProjectRecord, ctx: _RunContext) -> PipelineOutcome:
        request = ctx.request

        # Branch naming
        try:
            role, sprint = require_branch(request.branch, self._expected_role(project, request))
        except BranchNamingViolation as e:
            await self._post_pending(ctx)
            return await self._reject_branch(project, ctx, e)

        await self._resolve_target(project, role, ctx)
        await self._post_pending(ctx)
        ctx.state = PipelineState.BRANCH_NAME_CHECKED

        # Validation stages
        report = await self.stages.run(project, request.branch, role)
        ctx.state = PipelineState.STAGES_RUN

        try:
            report.raise_for_issues()
        except StageValidationFailure as e:
            logger.warning(f"{project.project_id}/{request.branch}: {e}")
            await self._finish(ctx, "failure", summarise_issues(report.issues, self.description_limit))
            return self._outcome(
                project, ctx, False, role=role, issues=report.issues, report=report,
                message="Validation stages failed"
            )

        # Dedup
        recent = await self._recent_success(project, ctx)
        if recent is not None:
            ctx.state = PipelineState.DEDUPED
            logger.info(
                f"Reusing {recent.source} feedback for {project.project_id}/{request.branch} "
                f"(within {self.dedup_window_seconds}s)"
            )
            await self._finish(ctx, "success", "Validation passed (recent review reused)")
            return self._outcome(
                project, ctx, True, role=role, report=report,
                feedback=recent.review_feedback, ledger_source=recent.source, deduped=True
            )

        # Review
        try:
            feedback = await self._review(project, ctx, report)
        except (ReviewAgentFailure, ConfigurationMissing) as e:
            logger.error(f"Review failed for {project.project_id}/{request.branch}: {e}")
            await self._finish(ctx, "failure", f"Review failed: {e}")
            return self._outcome(project, ctx, False, role=role, report=report, message=str(e))

        ctx.state = PipelineState.REVIEWED

        await self.reporter.add_comment(ctx.repo, ctx.pr_number, format_review_comment(feedback, role, sprint))
        await self._finish(ctx, "success", "Validation passed and review posted")

        # Ledger
        appended = await self._record_success(project, ctx, role, sprint, feedback)
        if appended is not None:
            ctx.state = PipelineState.LEDGER_UPDATED

        return self._outcome(
            project, ctx, True, role=role, report=report, feedback=feedback,
            ledger_source=appended.source if appended else None
        )

    async def _resolve_target(self, project: ProjectRecord, role: DevRole, ctx: _RunContext) -> None:
        """Fill repo, head SHA and PR number for direct runs."""
        if not ctx.repo:
            ctx.repo = project.repo_full_name(role)
        if not ctx.repo or (ctx.sha and ctx.pr_number):
            return

        try:
            if not ctx.pr_number:
                pull = await self.github.find_open_pull_request(ctx.repo, ctx.request.branch)
                if pull:
                    ctx.pr_number = pull.get("number")
                    ctx.sha = ctx.sha or (pull.get("head") or {}).get("sha")

            if not ctx.sha:
                branch_info = await self.github.get_branch(ctx.repo, ctx.request.branch)
                if branch_info:
                    ctx.sha = (branch_info.get("commit") or {}).get("sha")
        except (httpx.HTTPError, ConfigurationMissing) as e:
            logger.warning(f"Could not resolve PR/commit for {ctx.repo}:{ctx.request.branch}: {e}")

    async def _post_pending(self, ctx: _RunContext) -> None:
        await self.reporter.set_status(ctx.repo, ctx.sha, "pending", "Validating pull request...")

    async def _reject_branch(self, project: ProjectRecord, ctx: _RunContext, error: BranchNamingViolation) -> PipelineOutcome:
        request = ctx.request
        message = str(error)
        logger.warning(f"{project.project_id}: {message}")

        await self._finish(ctx, "failure", message)

        await self.ledger.upsert(BuildStateRecord(
            project_id=project.project_id,
            source=SignalSource.BRANCH_NAMING.value,
            webhook=request.webhook,
            branch=request.branch,
            last_status=BuildStatus.FAILED,
            error_message=message,
            error_summary=message,
            branch_status="Invalid",
            last_commit_id=ctx.sha,
            latest_event="BRANCH_NAMING_FAILED",
        ))
        ctx.state = PipelineState.LEDGER_UPDATED
        return self._outcome(
            project, ctx, False, issues=[message],
            ledger_source=SignalSource.BRANCH_NAMING.value, message="Branch naming violation"
        )

    async def _recent_success(self, project: ProjectRecord, ctx: _RunContext) -> Optional[BuildStateRecord]:
        if self.dedup_window_seconds <= 0:
            return None

        # Any sequenced success counts, whichever path wrote it
        candidates = []
        for family in sorted(source.value for source in SEQUENCED_SOURCES):
            recent = await self.ledger.recent_in_family(
                project.project_id, ctx.request.branch, family, self.dedup_window_seconds
            )
            if recent is not None:
                candidates.append(recent)

        if not candidates:
            return None
        return max(candidates, key=lambda record: record.created_at)

    async def _review(self, project: ProjectRecord, ctx: _RunContext, report: ValidationReport) -> str:
        if not ctx.repo:
            raise ReviewAgentFailure("No repository to review")

        try:
            if ctx.pr_number:
                diff = await self.github.get_pull_request_diff(ctx.repo, ctx.pr_number)
            else:
                diff = await self.github.compare_diff(ctx.repo, project.default_branch, ctx.request.branch)
        except httpx.HTTPError as e:
            raise ReviewAgentFailure(f"Could not fetch diff: {e}") from e

        try:
            requirement_text = await self.task_board.lookup_item(project, ctx.request.branch)
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Requirement lookup failed for {project.project_id}/{ctx.request.branch}: {e}")
            requirement_text = None

        return await self.review_agent.review(diff, requirement_text, report.language)

    async def _record_success(
        self,
        project: ProjectRecord,
        ctx: _RunContext,
        role: DevRole,
        sprint: int,
        feedback: str
    ) -> Optional[BuildStateRecord]:
        request = ctx.request
        base = self._success_base(request)

        record = BuildStateRecord(
            project_id=project.project_id,
            source=base,
            webhook=request.webhook,
            branch=request.branch,
            last_status=BuildStatus.SUCCESS,
            review_feedback=feedback,
            pr_status="Open" if ctx.pr_number else None,
            branch_status="Active",
            last_commit_id=ctx.sha,
            sprint_number=sprint,
            dev_role=role,
            latest_event="PR_VALIDATED",
        )

        appended = await self.allocator.try_append(record, base)

        if appended is not None and base == CANONICAL_SUCCESS_SOURCE.value:
            await self.ledger.delete_family(project.project_id, request.branch, SignalSource.PR_FAILED.value)

        return appended

    async def _finish(self, ctx: _RunContext, state: str, description: str) -> None:
        ctx.final_reported = True
        await self.reporter.set_status(ctx.repo, ctx.sha, state, description)
        ctx.state = PipelineState.STATUS_REPORTED

    @staticmethod
    def _expected_role(project: ProjectRecord, request: ValidationRequest) -> Optional[DevRole]:
        """Role of the repository the request came from, if known."""
        if request.dev_role is not None:
            return request.dev_role
        if request.repo_full_name:
            return project.role_for_repo(request.repo_full_name)
        return None

    @staticmethod
    def _success_base(request: ValidationRequest) -> str:
        if request.webhook:
            return CANONICAL_SUCCESS_SOURCE.value
        return request.success_source or SignalSource.MENTOR_REVIEW.value

    @staticmethod
    def _outcome(
        project: ProjectRecord,
        ctx: _RunContext,
        success: bool,
        role: Optional[DevRole] = None,
        issues: Optional[List[str]] = None,
        report: Optional[ValidationReport] = None,
        feedback: Optional[str] = None,
        ledger_source: Optional[str] = None,
        deduped: bool = False,
        message: Optional[str] = None
    ) -> PipelineOutcome:
        return PipelineOutcome(
            success=success,
            state=ctx.state,
            project_id=project.project_id,
            branch=ctx.request.branch,
            dev_role=role.value if role else None,
            issues=issues if issues is not None else (report.issues if report else []),
            review_feedback=feedback,
            ledger_source=ledger_source,
            deduped=deduped,
            message=message,
            stages=report.stages if report else [],
        )
