"""
Webhook Event Payloads

Typed records for inbound webhook bodies. Decoded once at the API boundary;
unknown fields are ignored.
"""

from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, List
from datetime import datetime


# --- GitHub ---

class GitHubRepository(BaseModel):
    full_name: str
    html_url: Optional[str] = None
    default_branch: Optional[str] = None


class GitRef(BaseModel):
    ref: str
    sha: str


class PullRequest(BaseModel):
    number: int
    title: Optional[str] = None
    state: Optional[str] = None
    html_url: Optional[str] = None
    head: GitRef
    base: GitRef
    merged: Optional[bool] = False
    merged_at: Optional[datetime] = None


class PullRequestEvent(BaseModel):
    """X-GitHub-Event: pull_request"""
    action: str
    number: int
    pull_request: PullRequest
    repository: GitHubRepository


class Commit(BaseModel):
    id: str
    message: Optional[str] = None
    timestamp: Optional[datetime] = None


class PushEvent(BaseModel):
    """X-GitHub-Event: push"""
    ref: str
    after: Optional[str] = None
    deleted: bool = False
    head_commit: Optional[Commit] = None
    repository: GitHubRepository

    @property
    def branch(self) -> Optional[str]:
        prefix = "refs/heads/"
        if self.ref.startswith(prefix):
            return self.ref[len(prefix):]
        return None


class PullRequestRef(BaseModel):
    number: int


class WorkflowRun(BaseModel):
    name: Optional[str] = None
    status: Optional[str] = None
    conclusion: Optional[str] = None
    head_branch: Optional[str] = None
    head_sha: Optional[str] = None
    html_url: Optional[str] = None
    pull_requests: List[PullRequestRef] = []


class WorkflowRunEvent(BaseModel):
    """X-GitHub-Event: workflow_run"""
    action: str
    workflow_run: WorkflowRun
    repository: GitHubRepository


# --- Railway ---

class RailwayDetails(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: Optional[str] = None
    source: Optional[str] = None
    status: Optional[str] = None
    branch: Optional[str] = None
    commit_hash: Optional[str] = Field(None, alias="commitHash")
    commit_author: Optional[str] = Field(None, alias="commitAuthor")
    commit_message: Optional[str] = Field(None, alias="commitMessage")
    message: Optional[str] = None
    error: Optional[str] = None
    error_message: Optional[str] = Field(None, alias="errorMessage")
    reason: Optional[str] = None

    @property
    def error_text(self) -> Optional[str]:
        """First non-empty error description Railway sent."""
        for value in (self.error_message, self.error, self.reason, self.message):
            if value and value.strip():
                return value
        return None


class RailwayResource(BaseModel):
    id: Optional[str] = None
    name: Optional[str] = None


class RailwayEnvironment(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: Optional[str] = None
    name: Optional[str] = None
    is_ephemeral: Optional[bool] = Field(None, alias="isEphemeral")


class RailwayResources(BaseModel):
    workspace: Optional[RailwayResource] = None
    project: Optional[RailwayResource] = None
    environment: Optional[RailwayEnvironment] = None
    service: Optional[RailwayResource] = None
    deployment: Optional[RailwayResource] = None


class RailwayEvent(BaseModel):
    """Deploy platform webhook body."""
    type: str = ""
    details: Optional[RailwayDetails] = None
    resource: Optional[RailwayResources] = None
    severity: Optional[str] = None
    timestamp: Optional[datetime] = None

    @property
    def service(self) -> RailwayResource:
        if self.resource and self.resource.service:
            return self.resource.service
        return RailwayResource()
