"""
Project Registry Lookups

Read-only access to project coordinates. The registry is owned by the
mentoring platform; this service never writes it.
"""

import asyncpg
import logging
from typing import Optional, Tuple

from app.models.build_state import DevRole
from app.models.project import ProjectRecord

logger = logging.getLogger(__name__)

# Deploy services are named "webapi_{project_id}"
DEPLOY_SERVICE_PREFIX = "webapi_"

_COLUMNS = """
    project_id, name, backend_repo_url, frontend_repo_url, default_branch,
    deploy_service_id, deploy_service_name, webapi_url, db_connection_string, board_id
"""


class ProjectRegistryStore:
    """asyncpg-backed project lookups."""

    def __init__(self, db_pool: Optional[asyncpg.Pool]):
        self.db_pool = db_pool

    async def get(self, project_id: str) -> Optional[ProjectRecord]:
        async with self.db_pool.acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT {_COLUMNS} FROM project_registry WHERE project_id = $1",
                project_id
            )
        return ProjectRecord(**dict(row)) if row else None

    async def find_by_repository(self, full_name: str) -> Optional[Tuple[ProjectRecord, DevRole]]:
        """
        Resolve the project and role owning a repository.

        Args:
            full_name: "owner/repo" as reported by GitHub

        Returns:
            (project, role), or None if no project references the repository
        """
        pattern = f"%{full_name.lower()}%"
        async with self.db_pool.acquire() as conn:
            rows = await conn.fetch(f"""
                SELECT {_COLUMNS} FROM project_registry
                WHERE LOWER(backend_repo_url) LIKE $1
                   OR LOWER(frontend_repo_url) LIKE $1
            """, pattern)

        # LIKE is a prefilter; "owner/repo" must match exactly after parsing
        for row in rows:
            project = ProjectRecord(**dict(row))
            role = project.role_for_repo(full_name)
            if role is not None:
                return project, role

        logger.info(f"No project references repository {full_name}")
        return None

    async def find_by_deploy_service(
        self,
        service_id: Optional[str],
        service_name: Optional[str]
    ) -> Optional[ProjectRecord]:
        """Resolve a project by deploy service id, falling back to the "webapi_{project_id}" name."""
        if service_id:
            async with self.db_pool.acquire() as conn:
                row = await conn.fetchrow(
                    f"SELECT {_COLUMNS} FROM project_registry WHERE deploy_service_id = $1",
                    service_id
                )
            if row:
                return ProjectRecord(**dict(row))

        project_id = project_id_from_service_name(service_name)
        if project_id:
            return await self.get(project_id)

        return None


def project_id_from_service_name(service_name: Optional[str]) -> Optional[str]:
    if not service_name or not service_name.startswith(DEPLOY_SERVICE_PREFIX):
        return None
    return service_name[len(DEPLOY_SERVICE_PREFIX):] or None
