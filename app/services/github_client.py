"""
GitHub REST Client

Thin async wrapper over the GitHub REST API endpoints the pipeline needs:
repository/branch reachability, tree and file reads, diffs, commit statuses
and PR comments.

Read helpers return None on 404; every other HTTP error is raised as
httpx.HTTPStatusError so callers decide whether it is fatal.
"""

import base64
import httpx
import logging
from typing import Optional, List, Dict, Any

from app.config import get_settings
from app.errors import ConfigurationMissing
from app.services.http import HttpClientFactory, get_http_factory

logger = logging.getLogger(__name__)

DIFF_MEDIA_TYPE = "application/vnd.github.v3.diff"


class GitHubClient:
    """GitHub API access with an injected HTTP client factory."""

    def __init__(self, token: Optional[str] = None, http: Optional[HttpClientFactory] = None, base_url: Optional[str] = None):
        settings = get_settings()
        self.token = token if token is not None else settings.GITHUB_TOKEN
        self.http = http or get_http_factory()
        self.base_url = base_url or settings.GITHUB_API_URL

    def _headers(self, accept: str = "application/vnd.github+json") -> Dict[str, str]:
        if not self.token:
            raise ConfigurationMissing("GITHUB_TOKEN is not configured")
        return {
            "Authorization": f"Bearer {self.token}",
            "Accept": accept,
            "X-GitHub-Api-Version": "2022-11-28",
        }

    async def _get(self, path: str, accept: str = "application/vnd.github+json", params: Optional[Dict[str, Any]] = None) -> Optional[httpx.Response]:
        async with self.http.client(self.base_url, self._headers(accept)) as client:
            response = await client.get(path, params=params)

        if response.status_code == 404:
            return None
        response.raise_for_status()
        return response

    async def _post(self, path: str, payload: Dict[str, Any]) -> httpx.Response:
        async with self.http.client(self.base_url, self._headers()) as client:
            response = await client.post(path, json=payload)

        response.raise_for_status()
        return response

    # --- Reads ---

    async def get_repository(self, full_name: str) -> Optional[Dict[str, Any]]:
        response = await self._get(f"/repos/{full_name}")
        return response.json() if response else None

    async def get_branch(self, full_name: str, branch: str) -> Optional[Dict[str, Any]]:
        response = await self._get(f"/repos/{full_name}/branches/{branch}")
        return response.json() if response else None

    async def get_tree(self, full_name: str, ref: str) -> List[str]:
        """List every blob path in the repository at ref."""
        response = await self._get(f"/repos/{full_name}/git/trees/{ref}", params={"recursive": "1"})
        if not response:
            return []

        data = response.json()
        if data.get("truncated"):
            logger.warning(f"Tree for {full_name}@{ref} was truncated by GitHub")

        return [item["path"] for item in data.get("tree", []) if item.get("type") == "blob"]

    async def get_file(self, full_name: str, path: str, ref: str) -> Optional[str]:
        """Decoded text content of a file at ref, or None if absent."""
        response = await self._get(f"/repos/{full_name}/contents/{path}", params={"ref": ref})
        if not response:
            return None

        data = response.json()
        if isinstance(data, list) or data.get("encoding") != "base64":
            return None

        return base64.b64decode(data.get("content", "")).decode("utf-8", errors="replace")

    async def get_pull_request_diff(self, full_name: str, number: int) -> str:
        response = await self._get(f"/repos/{full_name}/pulls/{number}", accept=DIFF_MEDIA_TYPE)
        return response.text if response else ""

    async def compare_diff(self, full_name: str, base: str, head: str) -> str:
        response = await self._get(f"/repos/{full_name}/compare/{base}...{head}", accept=DIFF_MEDIA_TYPE)
        return response.text if response else ""

    async def find_open_pull_request(self, full_name: str, branch: str) -> Optional[Dict[str, Any]]:
        """Newest open PR whose head is branch, if any."""
        owner = full_name.split("/", 1)[0]
        response = await self._get(
            f"/repos/{full_name}/pulls",
            params={"head": f"{owner}:{branch}", "state": "open"}
        )
        pulls = response.json() if response else []
        return pulls[0] if pulls else None

    # --- Writes ---

    async def create_status(
        self,
        full_name: str,
        sha: str,
        state: str,
        context: str,
        description: str,
        target_url: Optional[str] = None
    ) -> Dict[str, Any]:
        payload = {"state": state, "context": context, "description": description}
        if target_url:
            payload["target_url"] = target_url

        response = await self._post(f"/repos/{full_name}/statuses/{sha}", payload)
        return response.json()

    async def create_comment(self, full_name: str, number: int, body: str) -> Dict[str, Any]:
        response = await self._post(f"/repos/{full_name}/issues/{number}/comments", {"body": body})
        return response.json()
