"""
Project Registry Model

Project metadata owned by the mentoring platform. Read-only to this service:
repository URLs, deploy service identity and database coordinates.
"""

from sqlalchemy import Column, String, DateTime, func
from pydantic import BaseModel
from typing import Optional
from urllib.parse import urlparse

from app.models.build_state import Base, DevRole


class ProjectRegistry(Base):
    """
    Project registry table.

    One row per student project board.
    """
    __tablename__ = "project_registry"

    project_id = Column(String(64), primary_key=True)
    name = Column(String(128), nullable=False)
    backend_repo_url = Column(String(512), nullable=True)
    frontend_repo_url = Column(String(512), nullable=True)
    default_branch = Column(String(64), nullable=False, server_default="main")

    # Deploy platform
    deploy_service_id = Column(String(128), nullable=True, index=True)
    deploy_service_name = Column(String(255), nullable=True)
    webapi_url = Column(String(512), nullable=True)

    # Database coordinates
    db_connection_string = Column(String(1024), nullable=True)

    # Task board
    board_id = Column(String(128), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    def __repr__(self):
        return f"<ProjectRegistry {self.project_id}>"


class ProjectRecord(BaseModel):
    """Project coordinates used by the validation pipeline."""

    project_id: str
    name: str = ""
    backend_repo_url: Optional[str] = None
    frontend_repo_url: Optional[str] = None
    default_branch: str = "main"
    deploy_service_id: Optional[str] = None
    deploy_service_name: Optional[str] = None
    webapi_url: Optional[str] = None
    db_connection_string: Optional[str] = None
    board_id: Optional[str] = None

    def repo_url_for(self, role: DevRole) -> Optional[str]:
        if role == DevRole.BACKEND:
            return self.backend_repo_url
        return self.frontend_repo_url

    def repo_full_name(self, role: DevRole) -> Optional[str]:
        """Return "owner/repo" for the role's repository, if configured."""
        return repo_full_name(self.repo_url_for(role))

    def role_for_repo(self, full_name: str) -> Optional[DevRole]:
        """Which role a repository ("owner/repo") belongs to in this project."""
        wanted = full_name.lower()
        for role in DevRole:
            name = self.repo_full_name(role)
            if name and name.lower() == wanted:
                return role
        return None


def repo_full_name(repo_url: Optional[str]) -> Optional[str]:
    """
    Extract "owner/repo" from a GitHub URL.

    Accepts https URLs, ".git" suffixes and bare "owner/repo" strings.
    """
    if not repo_url:
        return None

    path = urlparse(repo_url).path if "://" in repo_url else repo_url
    if path.endswith(".git"):
        path = path[:-4]

    parts = [p for p in path.strip("/").split("/") if p]
    if len(parts) < 2:
        return None

    return f"{parts[-2]}/{parts[-1]}"
