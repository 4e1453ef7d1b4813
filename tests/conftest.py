"""Shared pytest fixtures for the PRD drift test suite.

Provides reusable fixtures for:
- The sample PRD document
- Pre-built requirement records and work items
- A scripted classification oracle
- Canned model replies
- Mocked httpx clients
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from prd_drift.llm_client import UpstreamError
from prd_drift.parser.models import RequirementRecord, WorkItem, WorkItemState


# ---------------------------------------------------------------------------
# Sample documents
# ---------------------------------------------------------------------------

@pytest.fixture
def sample_prd_path() -> Path:
    """Path to the sample PRD fixture file."""
    path = Path(__file__).parent / "fixtures" / "sample-prd.md"
    assert path.exists(), f"Sample PRD fixture not found at {path}"
    return path


@pytest.fixture
def sample_prd_text(sample_prd_path: Path) -> str:
    """Raw text content of the sample PRD."""
    return sample_prd_path.read_text(encoding="utf-8")


@pytest.fixture
def csv_prd_text() -> str:
    """The two-requirement CSV export document."""
    return "## Core\n- Users can export data as CSV\n1. Admins can configure export schedule\n"


# ---------------------------------------------------------------------------
# Requirements & work items
# ---------------------------------------------------------------------------

@pytest.fixture
def requirements() -> list[RequirementRecord]:
    return [
        RequirementRecord(id="req-1", text="Users can export data as CSV", section="Core"),
        RequirementRecord(id="req-2", text="Admins can configure export schedule", section="Core"),
        RequirementRecord(id="req-5", text="Exports include column headers", section="Format"),
    ]


@pytest.fixture
def work_items() -> list[WorkItem]:
    return [
        WorkItem(
            number=5,
            title="Add CSV export",
            body="Implements CSV export from the reports page.",
            state=WorkItemState.CLOSED,
            labels=["feature"],
            created_at="2026-01-05T09:00:00Z",
            closed_at="2026-01-20T17:30:00Z",
            assignee="dana",
        ),
        WorkItem(
            number=8,
            title="Export scheduling",
            body=None,
            state=WorkItemState.OPEN,
            labels=["feature", "backend"],
            created_at="2026-02-01T10:00:00Z",
        ),
    ]


# ---------------------------------------------------------------------------
# Model replies
# ---------------------------------------------------------------------------

def _drift_entry(
    requirement_id: str,
    status: str = "delivered",
    matched: list[int] | None = None,
    risk: str = "low",
    description: str = "Delivered as planned",
) -> dict[str, Any]:
    return {
        "requirementId": requirement_id,
        "status": status,
        "matchedIssues": matched if matched is not None else [],
        "driftDescription": description,
        "riskLevel": risk,
    }


@pytest.fixture
def drift_entry():
    """Factory for one ``requirementsDrift`` entry."""
    return _drift_entry


@pytest.fixture
def reply_payload() -> dict[str, Any]:
    """A well-formed analysis payload covering the ``requirements`` fixture."""
    return {
        "completionPercentage": 33,
        "riskScore": 55,
        "timelineDrift": "2 weeks behind schedule",
        "weeksBehind": 2,
        "featuresBlocked": 1,
        "keyConcerns": ["Export scheduling not started"],
        "summary": "CSV export shipped; scheduling has not started.",
        "requirementsDrift": [
            _drift_entry("req-1", "delivered", [5], "low"),
            _drift_entry("req-2", "missing", [], "high", "No scheduling work found"),
            _drift_entry("req-5", "partial", [5], "medium", "Headers only on CSV"),
        ],
    }


@pytest.fixture
def fenced_reply():
    """Wrap a payload the way the model is asked to: prose plus a ```json fence."""
    def factory(payload: dict[str, Any]) -> str:
        return (
            "Here is my analysis of the repository.\n\n"
            f"```json\n{json.dumps(payload, indent=2)}\n```\n\n"
            "Let me know if you need more detail."
        )
    return factory


# ---------------------------------------------------------------------------
# Scripted oracle
# ---------------------------------------------------------------------------

class ScriptedOracle:
    """Oracle double that returns a canned reply and records prompts."""

    def __init__(self, reply: str = "", error: str | None = None) -> None:
        self.reply = reply
        self.error = error
        self.prompts: list[str] = []

    async def complete(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if self.error is not None:
            raise UpstreamError(self.error, provider="scripted")
        return self.reply


@pytest.fixture
def scripted_oracle():
    """Factory: ``scripted_oracle(reply=...)`` or ``scripted_oracle(error=...)``."""
    return ScriptedOracle


# ---------------------------------------------------------------------------
# Mock httpx
# ---------------------------------------------------------------------------

@pytest.fixture
def mock_http_client():
    """Factory for an ``httpx.AsyncClient`` stand-in usable as a context manager.

    Usage:
        client = mock_http_client(get=response)
        with patch("httpx.AsyncClient", return_value=client):
            ...
    """
    def factory(get: Any = None, post: Any = None) -> AsyncMock:
        client = AsyncMock()
        if get is not None:
            client.get = AsyncMock(side_effect=get) if isinstance(get, BaseException) else AsyncMock(return_value=get)
        if post is not None:
            client.post = AsyncMock(side_effect=post) if isinstance(post, BaseException) else AsyncMock(return_value=post)
        client.__aenter__ = AsyncMock(return_value=client)
        client.__aexit__ = AsyncMock(return_value=False)
        return client
    return factory


@pytest.fixture
def json_response():
    """Factory for a successful httpx response mock returning *data*."""
    def factory(data: Any, status_code: int = 200) -> MagicMock:
        response = MagicMock()
        response.status_code = status_code
        response.json.return_value = data
        response.raise_for_status = MagicMock()
        return response
    return factory
