import asyncio

import pytest

from app.errors import ReviewAgentFailure
from app.models.build_state import BuildStateRecord, BuildStatus
from app.models.validation import PipelineState, ValidationRequest
from app.services.orchestrator import summarise_issues


def _pr_request(branch: str = "5-F", **kwargs) -> ValidationRequest:
    values = dict(
        project_id="shop",
        branch=branch,
        webhook=True,
        repo_full_name="acme/shop-web",
        pr_number=12,
        commit_sha="abc1234",
        delivery_id="d-1",
    )
    values.update(kwargs)
    return ValidationRequest(**values)


async def _seed_failed_pr(ledger, branch: str) -> None:
    await ledger.upsert(BuildStateRecord(
        project_id="shop", source="PR-Failed", webhook=True, branch=branch,
        last_status=BuildStatus.FAILED, error_message="CI failed"
    ))


async def test_valid_frontend_pr_end_to_end(orchestrator, project, github, review_agent, ledger):
    await _seed_failed_pr(ledger, "5-F")
    await _seed_failed_pr(ledger, "6-F")

    outcome = await orchestrator.run(project, _pr_request())

    assert outcome.success
    assert outcome.state == PipelineState.LEDGER_UPDATED
    assert outcome.ledger_source == "PR-Success-1"
    assert outcome.dev_role == "Frontend"

    # pending first, comment strictly before success
    assert [c for c in github.calls if c[0] in ("status", "comment")] == [
        ("status", "pending"), ("comment", 12), ("status", "success")
    ]
    assert github.comments[0]["body"].startswith("## Mentor review: sprint 5 (Frontend)")

    assert review_agent.calls[0]["requirement_text"].startswith("Landing page")
    assert review_agent.calls[0]["language"] == "HTML/JavaScript"

    row = ledger.get("PR-Success-1", "5-F")
    assert row["review_feedback"] == review_agent.feedback
    assert row["webhook"] is True
    assert row["dev_role"] == "Frontend"
    assert row["sprint_number"] == 5

    # supersession only for this branch
    assert ledger.get("PR-Failed", "5-F") is None
    assert ledger.get("PR-Failed", "6-F") is not None


async def test_bad_branch_name_writes_branch_naming_row(orchestrator, project, github, review_agent, ledger):
    outcome = await orchestrator.run(project, _pr_request(branch="99-B"))

    assert not outcome.success
    assert outcome.ledger_source == "Branch-Naming"
    assert github.states == ["pending", "failure"]
    assert review_agent.calls == []

    row = ledger.get("Branch-Naming", "99-B")
    assert row["last_status"] == "FAILED"
    assert "99-B" in row["error_message"]
    assert ledger.sources() == ["Branch-Naming"]


async def test_stage_failure_posts_summary_and_writes_nothing(orchestrator, project, github, review_agent, ledger):
    project = project.model_copy(update={"db_connection_string": None, "webapi_url": None})

    outcome = await orchestrator.run(project, _pr_request(branch="3-B", repo_full_name="acme/shop-api"))

    assert not outcome.success
    assert outcome.state == PipelineState.STATUS_REPORTED
    assert "Database connection string is not configured" in outcome.issues
    assert github.states == ["pending", "failure"]
    assert len(github.statuses[-1]["description"]) <= 140
    assert review_agent.calls == []
    assert ledger.rows == {}


async def test_duplicate_delivery_within_window_is_deduped(orchestrator, project, github, review_agent, ledger, clock):
    first = await orchestrator.run(project, _pr_request())
    clock.advance(10)
    second = await orchestrator.run(project, _pr_request(delivery_id="d-2"))

    assert first.success and second.success
    assert second.deduped
    assert second.review_feedback == first.review_feedback
    assert second.ledger_source == "PR-Success-1"
    assert len(review_agent.calls) == 1
    assert len(github.comments) == 1
    assert github.states == ["pending", "success", "pending", "success"]
    assert ledger.sources(branch="5-F") == ["PR-Success-1"]


async def test_delivery_after_window_reviews_again(orchestrator, project, review_agent, ledger, clock):
    await orchestrator.run(project, _pr_request())
    clock.advance(31)
    outcome = await orchestrator.run(project, _pr_request(delivery_id="d-2"))

    assert not outcome.deduped
    assert outcome.ledger_source == "PR-Success-2"
    assert len(review_agent.calls) == 2
    assert ledger.sources(branch="5-F") == ["PR-Success-1", "PR-Success-2"]


async def test_review_failure_reports_failure_without_row(orchestrator, project, github, review_agent, ledger):
    review_agent.error = ReviewAgentFailure("model unavailable")

    outcome = await orchestrator.run(project, _pr_request())

    assert not outcome.success
    assert github.states == ["pending", "failure"]
    assert github.comments == []
    assert ledger.rows == {}


async def test_webhook_run_after_direct_run_reuses_mentor_review(orchestrator, project, github, review_agent, ledger, clock):
    direct = await orchestrator.run(project, ValidationRequest(project_id="shop", branch="5-F", webhook=False))
    clock.advance(5)
    outcome = await orchestrator.run(project, _pr_request(commit_sha="webhead5"))

    assert direct.ledger_source == "Mentor-Review-1"
    assert outcome.success
    assert outcome.deduped
    assert outcome.ledger_source == "Mentor-Review-1"
    assert outcome.review_feedback == direct.review_feedback
    assert len(review_agent.calls) == 1
    assert len(github.comments) == 1
    assert ledger.sources(branch="5-F") == ["Mentor-Review-1"]


async def test_concurrent_deliveries_allocate_gap_free_sequence(orchestrator, project, review_agent, ledger):
    outcomes = await asyncio.gather(
        orchestrator.run(project, _pr_request()),
        orchestrator.run(project, _pr_request(delivery_id="d-2")),
    )

    assert all(outcome.success for outcome in outcomes)
    assert len(review_agent.calls) <= 2

    sources = ledger.sources(branch="5-F")
    assert len(sources) in (1, 2)
    assert sources == [f"PR-Success-{n}" for n in range(1, len(sources) + 1)]


async def test_backend_branch_on_frontend_repository_is_rejected(orchestrator, project, github, review_agent, ledger):
    outcome = await orchestrator.run(project, _pr_request(branch="3-B"))

    assert not outcome.success
    assert outcome.ledger_source == "Branch-Naming"
    assert github.states == ["pending", "failure"]
    assert "frontend repository" in github.statuses[-1]["description"]
    assert review_agent.calls == []
    assert github.comments == []
    assert ledger.sources() == ["Branch-Naming"]


async def test_ledger_error_on_bad_branch_still_reports_failure(orchestrator, project, github, ledger, monkeypatch):
    async def failing_upsert(values):
        raise OSError("db down")

    monkeypatch.setattr(ledger, "_write_upsert", failing_upsert)

    outcome = await orchestrator.run(project, _pr_request(branch="99-B"))

    assert not outcome.success
    assert github.states == ["pending", "failure"]
    assert "db down" in outcome.message


async def test_unexpected_error_reports_failure_instead_of_raising(orchestrator, project, github, task_board, ledger, monkeypatch):
    async def broken_lookup(project, item_id):
        raise RuntimeError("board exploded")

    monkeypatch.setattr(task_board, "lookup_item", broken_lookup)

    outcome = await orchestrator.run(project, _pr_request())

    assert not outcome.success
    assert outcome.message == "Validation error: board exploded"
    assert github.states == ["pending", "failure"]
    assert github.statuses[-1]["description"] == "Validation error"
    assert github.comments == []
    assert ledger.rows == {}


async def test_requirement_lookup_value_error_is_tolerated(orchestrator, project, review_agent, task_board, monkeypatch):
    async def bad_payload(project, item_id):
        raise ValueError("unexpected card payload")

    monkeypatch.setattr(task_board, "lookup_item", bad_payload)

    outcome = await orchestrator.run(project, _pr_request())

    assert outcome.success
    assert review_agent.calls[0]["requirement_text"] is None


async def test_direct_run_resolves_pr_and_uses_mentor_review_family(orchestrator, project, github, ledger):
    await _seed_failed_pr(ledger, "5-F")
    request = ValidationRequest(project_id="shop", branch="5-F", webhook=False)

    outcome = await orchestrator.run(project, request)

    assert outcome.success
    assert outcome.ledger_source == "Mentor-Review-1"
    assert github.statuses[0]["sha"] == "webhead5"
    assert github.comments[0]["number"] == 12
    assert ledger.get("Mentor-Review-1", "5-F")["webhook"] is False
    # only PR-Success supersedes failed PR rows
    assert ledger.get("PR-Failed", "5-F") is not None


async def test_direct_run_without_pr_uses_compare_diff(orchestrator, project, github):
    github.pulls.clear()

    outcome = await orchestrator.run(project, ValidationRequest(
        project_id="shop", branch="5-F", webhook=False, success_source="PR-Success"
    ))

    assert outcome.success
    assert outcome.ledger_source == "PR-Success-1"
    assert ("compare", "main...5-F") in github.calls
    assert github.comments == []
    assert github.statuses[-1]["sha"] == "sha-5-F"


async def test_deadline_posts_failure(orchestrator, project, github, review_agent, ledger):
    review_agent.block = True
    orchestrator.deadline_seconds = 0.05

    outcome = await orchestrator.run(project, _pr_request())

    assert not outcome.success
    assert outcome.message == "Validation deadline exceeded"
    assert github.statuses[-1]["state"] == "failure"
    assert github.statuses[-1]["description"] == "Validation timed out"
    assert ledger.rows == {}


async def test_cancellation_posts_failure_and_propagates(orchestrator, project, github, review_agent):
    review_agent.block = True

    task = asyncio.create_task(orchestrator.run(project, _pr_request()))
    await asyncio.wait_for(review_agent.started.wait(), timeout=1)
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task

    assert github.statuses[-1]["state"] == "failure"
    assert github.statuses[-1]["description"] == "Validation was cancelled"


def test_summary_fits_description_limit():
    issues = [f"Issue number {n} with a fairly long explanation attached to it" for n in range(6)]

    text = summarise_issues(issues, 140)

    assert len(text) <= 140
    assert text.startswith("Validation failed: Issue number 0")
