"""Async GitHub REST client: the PRD document source and the issue source.

Only two calls are needed:

* ``fetch_text(path)``        -- ``GET /repos/{owner}/{repo}/contents/{path}``
* ``list_work_items(labels)`` -- ``GET /repos/{owner}/{repo}/issues``

Typical usage::

    github = GitHubClient(token, "acme/exporter")
    prd = await github.fetch_text("docs/prd.md")
    issues = await github.list_work_items(["feature"])
"""

from __future__ import annotations

import base64
import binascii
from typing import Any

import httpx

from prd_drift.parser.models import WorkItem, WorkItemState


class SourceError(OSError):
    """Raised when GitHub cannot be read (transport, auth, or API errors)."""


class DocumentNotFoundError(SourceError, FileNotFoundError):
    """Raised when the requested path is missing or is not a file."""


def split_repository(repository: str) -> tuple[str, str]:
    """Split ``'owner/name'`` into its parts.

    Raises:
        ValueError: If *repository* is not of the form ``owner/name``.
    """
    parts = repository.strip().split("/")
    if len(parts) != 2 or not all(parts):
        raise ValueError(f"repository must look like 'owner/name', got {repository!r}")
    return parts[0], parts[1]


class GitHubClient:
    """Reads the PRD and the issue list of one repository."""

    def __init__(
        self,
        token: str,
        repository: str,
        api_url: str = "https://api.github.com",
        timeout: int = 30,
        per_page: int = 100,
    ) -> None:
        self.owner, self.repo = split_repository(repository)
        self.token = token
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self.per_page = per_page

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _client(self) -> httpx.AsyncClient:
        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return httpx.AsyncClient(
            base_url=self.api_url,
            headers=headers,
            timeout=httpx.Timeout(self.timeout, connect=10.0),
        )

    @property
    def repository(self) -> str:
        return f"{self.owner}/{self.repo}"

    @staticmethod
    def _label_names(raw_labels: list[Any]) -> list[str]:
        """Labels come back as objects, but strings are accepted too."""
        names: list[str] = []
        for label in raw_labels:
            if isinstance(label, str):
                names.append(label)
            elif isinstance(label, dict):
                names.append(label.get("name") or "")
        return names

    @classmethod
    def _to_work_item(cls, issue: dict[str, Any]) -> WorkItem:
        assignee = issue.get("assignee") or {}
        return WorkItem(
            number=issue["number"],
            title=issue.get("title", ""),
            body=issue.get("body") or None,
            state=WorkItemState(issue.get("state", "open")),
            labels=cls._label_names(issue.get("labels", [])),
            created_at=issue.get("created_at", ""),
            closed_at=issue.get("closed_at"),
            assignee=assignee.get("login"),
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def fetch_text(self, path: str = "docs/prd.md") -> str:
        """Fetch a UTF-8 text file from the repository's default branch.

        Raises:
            DocumentNotFoundError: If *path* does not exist or is a directory.
            SourceError: On transport, auth, or decoding failures.
        """
        url = f"/repos/{self.owner}/{self.repo}/contents/{path.lstrip('/')}"
        try:
            async with self._client() as client:
                response = await client.get(url)
                if response.status_code == 404:
                    raise DocumentNotFoundError(f"Failed to fetch PRD from {path}: not found")
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPStatusError as exc:
            raise SourceError(
                f"Failed to fetch PRD from {path}: GitHub returned HTTP "
                f"{exc.response.status_code}"
            ) from exc
        except httpx.HTTPError as exc:
            raise SourceError(f"Failed to fetch PRD from {path}: {exc}") from exc
        except ValueError as exc:
            raise SourceError(f"Failed to fetch PRD from {path}: invalid JSON response") from exc

        if not isinstance(data, dict) or "content" not in data:
            raise DocumentNotFoundError(f"PRD file not found or is a directory: {path}")

        try:
            return base64.b64decode(data["content"]).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError) as exc:
            raise SourceError(f"Failed to decode PRD at {path}: {exc}") from exc

    async def list_work_items(self, labels: list[str] | None = None) -> list[WorkItem]:
        """List open and closed issues, excluding pull requests.

        Args:
            labels: Only return issues carrying all of these labels.

        Raises:
            SourceError: On transport or auth failures.
        """
        params: dict[str, Any] = {"state": "all", "per_page": self.per_page}
        if labels:
            params["labels"] = ",".join(labels)

        try:
            async with self._client() as client:
                response = await client.get(
                    f"/repos/{self.owner}/{self.repo}/issues", params=params
                )
                response.raise_for_status()
                issues = response.json()
        except httpx.HTTPStatusError as exc:
            raise SourceError(
                f"Failed to fetch GitHub issues: HTTP {exc.response.status_code}"
            ) from exc
        except httpx.HTTPError as exc:
            raise SourceError(f"Failed to fetch GitHub issues: {exc}") from exc
        except ValueError as exc:
            raise SourceError("Failed to fetch GitHub issues: invalid JSON response") from exc

        return [
            self._to_work_item(issue)
            for issue in issues
            if "pull_request" not in issue
        ]
