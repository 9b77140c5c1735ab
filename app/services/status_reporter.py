"""
Status Reporter

Posts the tri-state commit status and review comments back to GitHub.

Both operations are best-effort: failures are logged as
NetworkSideEffectFailure and reported as False, never raised.
"""

import httpx
import logging
from typing import Optional

from app.config import get_settings
from app.errors import ConfigurationMissing, NetworkSideEffectFailure
from app.services.github_client import GitHubClient

logger = logging.getLogger(__name__)

STATUS_STATES = ("pending", "success", "failure")


def truncate_description(text: str, limit: int) -> str:
    """Fit text into the platform's description limit."""
    text = " ".join(text.split())
    if len(text) <= limit:
        return text
    return text[:limit - 3].rstrip() + "..."


class StatusReporter:
    """Best-effort status and comment poster."""

    def __init__(self, github: GitHubClient, context: Optional[str] = None, description_limit: Optional[int] = None):
        settings = get_settings()
        self.github = github
        self.context = context or settings.STATUS_CONTEXT
        self.description_limit = description_limit or settings.STATUS_DESCRIPTION_LIMIT

    async def set_status(self, repo: str, sha: str, state: str, description: str) -> bool:
        """
        Set the commit status.

        Args:
            repo: "owner/repo"
            sha: Commit SHA
            state: pending, success or failure
            description: Human summary (truncated to the platform limit)

        Returns:
            True if posted successfully
        """
        if state not in STATUS_STATES:
            raise ValueError(f"Unknown status state: {state}")

        if not repo or not sha:
            logger.warning(f"Cannot post '{state}' status: repo={repo!r} sha={sha!r}")
            return False

        try:
            await self.github.create_status(
                repo, sha, state, self.context,
                truncate_description(description, self.description_limit)
            )
            logger.info(f"Posted '{state}' status on {repo}@{sha[:7]}")
            return True
        except (httpx.HTTPError, ValueError, ConfigurationMissing) as e:
            self._log_failure(NetworkSideEffectFailure(
                f"Failed to post '{state}' status on {repo}@{sha[:7]}: {e}",
                metadata={"repo": repo, "sha": sha, "state": state}
            ))
            return False

    async def add_comment(self, repo: str, number: Optional[int], body: str) -> bool:
        """
        Comment on a pull request.

        Returns:
            True if posted successfully
        """
        if not repo or not number:
            logger.info(f"No pull request to comment on for {repo!r}")
            return False

        try:
            await self.github.create_comment(repo, number, body)
            logger.info(f"Posted review comment on {repo}#{number}")
            return True
        except (httpx.HTTPError, ValueError, ConfigurationMissing) as e:
            self._log_failure(NetworkSideEffectFailure(
                f"Failed to post review comment on {repo}#{number}: {e}",
                metadata={"repo": repo, "number": number}
            ))
            return False

    @staticmethod
    def _log_failure(error: NetworkSideEffectFailure) -> None:
        logger.error(f"{error} [category={error.category}, retryable={error.retryable}]")
