"""Version-controlled store backed by a GitHub repository.

Remote-queue jobs are handed to a GitHub Actions worker by committing the
upload under ``uploads/``; the worker commits ``results/<job_id>.json`` when it
is done. The same client also files issues for the notification side channel.

Requires environment variables:
    GITHUB_TOKEN: Fine-grained PAT with contents:write and issues:write scope
    GITHUB_REPO: owner/repo
    GITHUB_BRANCH: branch to commit to (default: main)
"""

import base64
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import httpx

from mediatrack.jobs.errors import RemoteStoreError, StoreNotConfiguredError

logger = logging.getLogger(__name__)


def upload_path(job_id: str, extension: str) -> str:
    """Repository path a remote-queue job's input is committed to."""
    return f"uploads/{job_id}{extension}"


def result_path(job_id: str) -> str:
    """Repository path the remote worker writes a job's result to."""
    return f"results/{job_id}.json"


class VersionedStore(ABC):
    """Overwrite-on-write, definite-not-found-on-read file store."""

    @abstractmethod
    async def write_file(self, path: str, data: bytes, message: str) -> None:
        ...

    @abstractmethod
    async def read_file(self, path: str) -> Optional[bytes]:
        """File content, or None if ``path`` does not exist."""
        ...


class GitHubStore(VersionedStore):
    """GitHub contents + issues API client."""

    def __init__(
        self,
        token: Optional[str] = None,
        repo: Optional[str] = None,
        branch: str = "main",
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.token = token
        self.repo = repo
        self.branch = branch
        self.enabled = bool(token and repo)

        if self.enabled:
            self._client = httpx.AsyncClient(
                base_url="https://api.github.com",
                headers={
                    "Authorization": f"Bearer {token}",
                    "Accept": "application/vnd.github+json",
                    "X-GitHub-Api-Version": "2022-11-28",
                },
                timeout=60.0,
                transport=transport,
            )
            logger.info(f"GitHub store enabled for {repo} (branch: {branch})")
        else:
            self._client = None
            logger.warning(
                "GITHUB_TOKEN/GITHUB_REPO not set — remote queue mode and issue "
                "notifications are disabled"
            )

    def _require_client(self) -> httpx.AsyncClient:
        if self._client is None:
            raise StoreNotConfiguredError(
                "GitHub store not configured (no GITHUB_TOKEN/GITHUB_REPO)"
            )
        return self._client

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        client = self._require_client()
        try:
            response = await client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            raise RemoteStoreError(f"GitHub HTTP error: {e}") from e
        return response

    @staticmethod
    def _raise_for_status(response: httpx.Response, action: str) -> None:
        if response.is_error:
            body = response.text[:500]
            raise RemoteStoreError(
                f"GitHub API error during {action}: {response.status_code} — {body}",
                status_code=response.status_code,
            )

    # ------------------------------------------------------------------
    # Contents
    # ------------------------------------------------------------------

    async def _get_contents(self, path: str) -> Optional[Dict[str, Any]]:
        response = await self._request(
            "GET",
            f"/repos/{self.repo}/contents/{path}",
            params={"ref": self.branch},
        )
        if response.status_code == 404:
            return None
        self._raise_for_status(response, f"read of {path}")
        return response.json()

    async def write_file(self, path: str, data: bytes, message: str) -> None:
        existing = await self._get_contents(path)
        payload = {
            "message": message,
            "content": base64.b64encode(data).decode("ascii"),
            "branch": self.branch,
        }
        if existing and existing.get("sha"):
            payload["sha"] = existing["sha"]

        response = await self._request(
            "PUT", f"/repos/{self.repo}/contents/{path}", json=payload
        )
        self._raise_for_status(response, f"commit of {path}")
        sha = response.json().get("commit", {}).get("sha", "")
        logger.info(f"Committed {path} to GitHub ({len(data)} bytes, SHA: {sha[:8]})")

    async def read_file(self, path: str) -> Optional[bytes]:
        contents = await self._get_contents(path)
        if contents is None:
            return None
        if contents.get("type") != "file":
            raise RemoteStoreError(f"{path} is not a file")
        encoded = contents.get("content")
        if encoded:
            return base64.b64decode(encoded)
        # Files over 1 MB come back without inline content
        response = await self._request(
            "GET",
            f"/repos/{self.repo}/contents/{path}",
            params={"ref": self.branch},
            headers={"Accept": "application/vnd.github.raw+json"},
        )
        self._raise_for_status(response, f"raw read of {path}")
        return response.content

    # ------------------------------------------------------------------
    # Repository + issues
    # ------------------------------------------------------------------

    async def repository_info(self) -> Dict[str, Any]:
        response = await self._request("GET", f"/repos/{self.repo}")
        self._raise_for_status(response, "repository lookup")
        data = response.json()
        return {
            "name": data.get("name"),
            "full_name": data.get("full_name"),
            "description": data.get("description"),
            "url": data.get("html_url"),
            "default_branch": data.get("default_branch"),
            "size": data.get("size"),
            "language": data.get("language"),
        }

    async def list_issues(self, state: str = "open") -> List[Dict[str, Any]]:
        response = await self._request(
            "GET",
            f"/repos/{self.repo}/issues",
            params={"state": state, "per_page": 100},
        )
        self._raise_for_status(response, "issue listing")
        return response.json()

    async def create_issue(
        self, title: str, body: str, labels: Optional[List[str]] = None
    ) -> Dict[str, Any]:
        response = await self._request(
            "POST",
            f"/repos/{self.repo}/issues",
            json={"title": title, "body": body, "labels": labels or []},
        )
        self._raise_for_status(response, "issue creation")
        data = response.json()
        logger.info(f"Issue created: {data.get('html_url')}")
        return data

    async def test_connection(self) -> bool:
        try:
            info = await self.repository_info()
        except RemoteStoreError as e:
            logger.error(f"GitHub connection failed: {e}")
            return False
        logger.info(f"GitHub connection successful: {info['full_name']}")
        return True

    async def close(self):
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
