"""
Build State API

Admin-only read access to the build-state ledger.

Endpoints:
- GET /build-states/{project_id} - Ledger rows, newest first
"""

from fastapi import APIRouter, Depends, Query
from typing import Optional, List

from app.api.auth import get_services, verify_admin_key
from app.models.build_state import BuildStateRecord

router = APIRouter(prefix="/build-states", tags=["build-states"])


@router.get("/{project_id}", response_model=List[BuildStateRecord])
async def list_build_states(
    project_id: str,
    branch: Optional[str] = Query(None, description="Exact branch ('' for default-branch rows)"),
    source: Optional[str] = Query(None, description="Source family, e.g. 'PR-Success' or 'Railway'"),
    services=Depends(get_services),
    _: bool = Depends(verify_admin_key)
):
    """
    List ledger rows for a project.

    Requires admin authentication. `source` matches a whole family, so
    'PR-Success' returns PR-Success-1, PR-Success-2, ...
    """
    return await services.ledger.list_states(project_id, branch=branch, source=source)
