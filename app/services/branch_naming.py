"""
Branch Naming

Student branches are named "{sprint}-{role letter}" with sprint 1..20,
e.g. "5-F" (frontend, sprint 5) or "12-B" (backend, sprint 12).
"""

import re
from typing import Optional, Tuple

from app.errors import BranchNamingViolation
from app.models.build_state import DevRole

BACKEND_BRANCH_PATTERN = re.compile(r"^([1-9]|1[0-9]|20)-B$")
FRONTEND_BRANCH_PATTERN = re.compile(r"^([1-9]|1[0-9]|20)-F$")

_PATTERNS = (
    (DevRole.BACKEND, BACKEND_BRANCH_PATTERN),
    (DevRole.FRONTEND, FRONTEND_BRANCH_PATTERN),
)


def parse_branch(branch: Optional[str], role: Optional[DevRole] = None) -> Optional[Tuple[DevRole, int]]:
    """
    Parse a student branch name.

    Args:
        branch: Branch name
        role: If given, only that role's pattern is accepted

    Returns:
        (role, sprint number), or None if the name matches no accepted pattern
    """
    if not branch:
        return None

    for candidate, pattern in _PATTERNS:
        if role is not None and candidate != role:
            continue
        match = pattern.fullmatch(branch)
        if match:
            return candidate, int(match.group(1))

    return None


def naming_violation_message(branch: Optional[str], role: Optional[DevRole] = None) -> str:
    if role == DevRole.BACKEND:
        expected = "'<sprint>-B' for the backend repository"
    elif role == DevRole.FRONTEND:
        expected = "'<sprint>-F' for the frontend repository"
    else:
        expected = "'<sprint>-B' (backend) or '<sprint>-F' (frontend)"
    return (
        f"Branch '{branch or ''}' does not follow the naming convention: "
        f"expected {expected} with sprint 1-20"
    )


def require_branch(branch: Optional[str], role: Optional[DevRole] = None) -> Tuple[DevRole, int]:
    """
    Parse a branch name that must follow the convention.

    A repository of a known role only accepts that role's pattern.

    Raises:
        BranchNamingViolation: If the name matches no accepted pattern
    """
    parsed = parse_branch(branch, role)
    if parsed is None:
        raise BranchNamingViolation(
            naming_violation_message(branch, role),
            metadata={"branch": branch, "role": role.value if role else None}
        )
    return parsed
