import pytest

from app.models.build_state import BuildStatus, NO_BRANCH
from app.services.event_ingestion import map_railway_status


def _repo(full_name: str = "acme/shop-api") -> dict:
    return {"full_name": full_name, "default_branch": "main"}


def _pull_request_payload(action: str, branch: str = "5-F", merged: bool = False) -> dict:
    return {
        "action": action,
        "number": 12,
        "pull_request": {
            "number": 12,
            "state": "closed" if merged else "open",
            "head": {"ref": branch, "sha": "abc1234"},
            "base": {"ref": "main", "sha": "def5678"},
            "merged": merged,
            "merged_at": "2026-03-01T12:00:00Z" if merged else None,
        },
        "repository": _repo("acme/shop-web"),
    }


@pytest.mark.parametrize("status,expected", [
    ("SUCCESS", BuildStatus.SUCCESS),
    ("deployed", BuildStatus.SUCCESS),
    ("FAILED", BuildStatus.FAILED),
    ("CRASHED", BuildStatus.FAILED),
    ("REMOVED", BuildStatus.FAILED),
    ("BUILDING", BuildStatus.IN_PROGRESS),
    ("QUEUED", BuildStatus.IN_PROGRESS),
    ("SLEEPING", BuildStatus.UNKNOWN),
    (None, BuildStatus.UNKNOWN),
])
def test_railway_status_mapping(status, expected):
    assert map_railway_status(status) == expected


async def test_push_to_feature_branch(ingestion, ledger):
    summary = await ingestion.handle_github("push", {
        "ref": "refs/heads/3-B",
        "after": "abc1234",
        "head_commit": {"id": "abc1234", "message": "Add users endpoint"},
        "repository": _repo(),
    })

    assert summary["handled"]
    row = ledger.get("Github", "3-B")
    assert row["last_commit_message"] == "Add users endpoint"
    assert row["branch_status"] == "Active"
    assert row["dev_role"] == "Backend"
    assert row["webhook"] is True


async def test_push_to_default_branch_uses_sentinel(ingestion, ledger):
    await ingestion.handle_github("push", {
        "ref": "refs/heads/main",
        "after": "abc1234",
        "head_commit": {"id": "abc1234", "message": "Merge"},
        "repository": _repo(),
    })

    assert ledger.get("Github", NO_BRANCH) is not None


async def test_push_from_unknown_repository_is_ignored(ingestion, ledger):
    summary = await ingestion.handle_github("push", {
        "ref": "refs/heads/3-B",
        "repository": _repo("someone/else"),
    })

    assert not summary["handled"]
    assert ledger.rows == {}


async def test_merged_pull_request(ingestion, ledger):
    await ingestion.handle_github("pull_request", _pull_request_payload("closed", merged=True))

    row = ledger.get("Github-Merge", "5-F")
    assert row["last_status"] == "SUCCESS"
    assert row["pr_status"] == "Merged"
    assert row["last_merge_timestamp"] is not None


async def test_closed_without_merge_is_ignored(ingestion, ledger):
    summary = await ingestion.handle_github("pull_request", _pull_request_payload("closed"))

    assert not summary["handled"]
    assert ledger.rows == {}


async def test_opened_pull_request_runs_validation(ingestion, runner, github, ledger):
    summary = await ingestion.handle_github("pull_request", _pull_request_payload("opened"), delivery_id="d-1")

    assert summary["handled"]
    await runner.drain()

    assert github.states == ["pending", "success"]
    assert ledger.get("PR-Success-1", "5-F") is not None


async def test_backend_branch_on_frontend_repository_fails_validation(ingestion, runner, github, ledger):
    await ingestion.handle_github("pull_request", _pull_request_payload("opened", branch="3-B"), delivery_id="d-1")
    await runner.drain()

    assert github.states == ["pending", "failure"]
    assert ledger.get("Branch-Naming", "3-B") is not None
    assert ledger.get("PR-Success-1", "3-B") is None


async def test_failed_workflow_run_records_pr_failed(ingestion, ledger):
    await ingestion.handle_github("workflow_run", {
        "action": "completed",
        "workflow_run": {
            "name": "CI",
            "conclusion": "failure",
            "head_branch": "3-B",
            "head_sha": "abc1234",
            "html_url": "https://github.com/acme/shop-api/actions/runs/1",
            "pull_requests": [{"number": 7}],
        },
        "repository": _repo(),
    })

    row = ledger.get("PR-Failed", "3-B")
    assert row["last_status"] == "FAILED"
    assert row["error_message"] == "Workflow 'CI' failed"


async def test_successful_workflow_run_is_ignored(ingestion, ledger):
    summary = await ingestion.handle_github("workflow_run", {
        "action": "completed",
        "workflow_run": {"conclusion": "success", "head_branch": "3-B"},
        "repository": _repo(),
    })

    assert not summary["handled"]
    assert ledger.rows == {}


async def test_ping_is_ignored(ingestion):
    summary = await ingestion.handle_github("ping", {"zen": "Keep it logically awesome."})

    assert summary == {"event": "ping", "action": None, "handled": False}


async def test_railway_failure_is_parsed(ingestion, ledger):
    summary = await ingestion.handle_railway({
        "type": "Deployment.failed",
        "details": {
            "status": "FAILED",
            "branch": "main",
            "commitHash": "abc1234",
            "errorMessage": (
                "Error: Cannot find module 'pg'\n"
                "    at Module._resolveFilename (node:internal/modules/cjs/loader:1145:15)\n"
                "    at Object.<anonymous> (/app/src/db.js:1:12)\n"
            ),
        },
        "resource": {"service": {"id": "svc-1", "name": "webapi_shop"}},
    })

    assert summary["handled"]
    row = ledger.get("Railway", NO_BRANCH)
    assert row["last_status"] == "FAILED"
    assert row["error_file"] == "/app/src/db.js"
    assert row["error_line"] == 1
    assert row["error_summary"] == "Error: Cannot find module 'pg'"
    assert row["service_name"] == "webapi_shop"


async def test_railway_success_clears_previous_error(ingestion, ledger):
    failed = {
        "type": "Deployment.failed",
        "details": {"status": "FAILED", "errorMessage": "Build failed"},
        "resource": {"service": {"name": "webapi_shop"}},
    }
    await ingestion.handle_railway(failed)

    await ingestion.handle_railway({
        "type": "Deployment.deployed",
        "details": {"status": "SUCCESS"},
        "resource": {"service": {"name": "webapi_shop"}},
    })

    row = ledger.get("Railway", NO_BRANCH)
    assert row["last_status"] == "SUCCESS"
    assert row["error_message"] is None
    assert row["error_summary"] is None


async def test_railway_status_from_event_type(ingestion, ledger):
    await ingestion.handle_railway({"type": "Deployment.building", "resource": {"service": {"id": "svc-1"}}})

    assert ledger.get("Railway", NO_BRANCH)["last_status"] == "IN_PROGRESS"


async def test_railway_unknown_service_is_ignored(ingestion, ledger):
    summary = await ingestion.handle_railway({"type": "Deployment.failed", "resource": {"service": {"name": "other"}}})

    assert not summary["handled"]
    assert ledger.rows == {}
