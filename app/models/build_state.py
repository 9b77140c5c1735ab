"""
Build State Model

Ledger of the latest (or one historical) known state per
(project, signal source, webhook flag, branch) key.
"""

from sqlalchemy import Column, String, Integer, Boolean, Text, DateTime, Index, UniqueConstraint, func
from sqlalchemy.orm import declarative_base
from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime
import enum

Base = declarative_base()

# Explicit "no branch" marker. NULLs are mutually distinct under a unique
# constraint, which would let ON CONFLICT insert duplicates.
NO_BRANCH = ""


class BuildStatus(str, enum.Enum):
    """Last known status of a signal stream."""
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    IN_PROGRESS = "IN_PROGRESS"
    UNKNOWN = "UNKNOWN"


class DevRole(str, enum.Enum):
    """Developer role a branch belongs to."""
    BACKEND = "Backend"
    FRONTEND = "Frontend"

    @property
    def letter(self) -> str:
        return self.value[0]


class SignalSource(str, enum.Enum):
    """
    Origin/category of a ledger update.

    Sequenced sources are stored as "{value}-{n}" and never overwritten.
    """
    RAILWAY = "Railway"
    GITHUB = "Github"
    GITHUB_MERGE = "Github-Merge"
    BRANCH_NAMING = "Branch-Naming"
    PR_FAILED = "PR-Failed"
    PR_SUCCESS = "PR-Success"
    MENTOR_REVIEW = "Mentor-Review"

    @property
    def sequenced(self) -> bool:
        return self in SEQUENCED_SOURCES


SEQUENCED_SOURCES = frozenset({SignalSource.PR_SUCCESS, SignalSource.MENTOR_REVIEW})

# Success family whose rows supersede failed-PR rows
CANONICAL_SUCCESS_SOURCE = SignalSource.PR_SUCCESS


class BuildState(Base):
    """
    Build state ledger table.

    One row per non-sequenced stream, or an append-only family of rows
    named "{source}-{n}" for sequenced streams.
    """
    __tablename__ = "build_states"

    id = Column(Integer, primary_key=True, autoincrement=True)

    # Key
    project_id = Column(String(64), nullable=False, index=True)
    source = Column(String(64), nullable=False)
    webhook = Column(Boolean, nullable=False, server_default="false")
    branch = Column(String(255), nullable=False, server_default="")

    # Status
    last_status = Column(String(32), nullable=False, server_default=BuildStatus.UNKNOWN.value)
    last_output = Column(Text, nullable=True)
    latest_event = Column(String(100), nullable=True)

    # Error details
    error_message = Column(Text, nullable=True)
    error_file = Column(String(500), nullable=True)
    error_line = Column(Integer, nullable=True)
    stack_trace = Column(Text, nullable=True)
    error_summary = Column(Text, nullable=True)
    request_url = Column(String(500), nullable=True)
    request_method = Column(String(10), nullable=True)

    # Source control
    pr_status = Column(String(50), nullable=True)
    branch_status = Column(String(50), nullable=True)
    review_feedback = Column(Text, nullable=True)
    last_commit_id = Column(String(100), nullable=True)
    last_commit_message = Column(Text, nullable=True)
    last_merge_timestamp = Column(DateTime(timezone=True), nullable=True)
    sprint_number = Column(Integer, nullable=True)
    dev_role = Column(String(32), nullable=True)

    # Deploy platform
    service_name = Column(String(255), nullable=True)

    # Timestamps
    timestamp = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint('project_id', 'source', 'webhook', 'branch', name='uq_build_states_key'),
    )

    def __repr__(self):
        return f"<BuildState {self.project_id}/{self.source}/{self.branch or '-'} ({self.last_status})>"


# Index for dedup-window lookups
Index('ix_build_states_project_branch_created', BuildState.project_id, BuildState.branch, BuildState.created_at)

# Index for the stale IN_PROGRESS sweep
Index('ix_build_states_status_updated', BuildState.last_status, BuildState.updated_at)


class BuildStateRecord(BaseModel):
    """A ledger row as seen by the pipeline (decoded once from the database)."""

    project_id: str = Field(..., max_length=64)
    source: str = Field(..., max_length=64)
    webhook: bool = False
    branch: str = NO_BRANCH

    last_status: BuildStatus = BuildStatus.UNKNOWN
    last_output: Optional[str] = None
    latest_event: Optional[str] = None

    error_message: Optional[str] = None
    error_file: Optional[str] = None
    error_line: Optional[int] = None
    stack_trace: Optional[str] = None
    error_summary: Optional[str] = None
    request_url: Optional[str] = None
    request_method: Optional[str] = None

    pr_status: Optional[str] = None
    branch_status: Optional[str] = None
    review_feedback: Optional[str] = None
    last_commit_id: Optional[str] = None
    last_commit_message: Optional[str] = None
    last_merge_timestamp: Optional[datetime] = None
    sprint_number: Optional[int] = None
    dev_role: Optional[DevRole] = None

    service_name: Optional[str] = None

    timestamp: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def key(self) -> tuple:
        return (self.project_id, self.source, self.webhook, self.branch)


# Columns written on insert/upsert (everything except id and the server-managed timestamps)
WRITABLE_COLUMNS = (
    "project_id", "source", "webhook", "branch",
    "last_status", "last_output", "latest_event",
    "error_message", "error_file", "error_line", "stack_trace", "error_summary",
    "request_url", "request_method",
    "pr_status", "branch_status", "review_feedback",
    "last_commit_id", "last_commit_message", "last_merge_timestamp",
    "sprint_number", "dev_role", "service_name", "timestamp",
)

ERROR_COLUMNS = ("error_message", "error_file", "error_line", "stack_trace", "error_summary")
