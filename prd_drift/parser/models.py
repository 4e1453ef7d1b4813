"""Pydantic v2 models for PRD drift analysis.

Defines the requirement records extracted from a PRD, the work items read
from the issue tracker, and the drift report produced by the reconciler.
Report models carry camelCase aliases so ``model_dump(by_alias=True)``
yields the JSON shape consumed by dashboards.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


GENERAL_SECTION = "General"
USER_STORIES_SECTION = "User Stories"


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------

class DriftStatus(str, Enum):
    """Delivery status of a single requirement."""
    DELIVERED = "delivered"
    PARTIAL = "partial"
    IN_PROGRESS = "in_progress"
    MISSING = "missing"
    OUT_OF_SCOPE = "out_of_scope"


class RiskLevel(str, Enum):
    """Risk attached to a requirement's drift."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class WorkItemState(str, Enum):
    OPEN = "open"
    CLOSED = "closed"


# ---------------------------------------------------------------------------
# Inputs
# ---------------------------------------------------------------------------

class RequirementRecord(BaseModel):
    """One atomic requirement statement extracted from a PRD."""
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Position-derived id, e.g. 'req-12'")
    text: str = Field(..., description="Trimmed requirement statement")
    section: str = Field(
        default=GENERAL_SECTION, description="Nearest preceding heading"
    )


class WorkItem(BaseModel):
    """A tracked unit of delivery work (an issue), read-only."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    number: int = Field(..., description="Issue number, unique per tracker")
    title: str = Field(..., description="Issue title")
    body: Optional[str] = Field(default=None, description="Issue body, if any")
    state: WorkItemState = Field(default=WorkItemState.OPEN)
    labels: list[str] = Field(default_factory=list)
    created_at: str = Field(default="", alias="createdAt")
    closed_at: Optional[str] = Field(default=None, alias="closedAt")
    assignee: Optional[str] = Field(default=None, description="Assignee login")


# ---------------------------------------------------------------------------
# Drift report
# ---------------------------------------------------------------------------

class DriftAssessment(BaseModel):
    """The classification of one requirement against the work items."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    requirement: RequirementRecord
    status: DriftStatus
    matched_work_items: list[int] = Field(
        default_factory=list,
        alias="matchedIssues",
        description="Issue numbers the model matched to this requirement",
    )
    drift_description: str = Field(default="", alias="driftDescription")
    risk_level: RiskLevel = Field(..., alias="riskLevel")


class OverallAnalysis(BaseModel):
    """Drift report for one reconciliation run."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    completion_percentage: int = Field(..., ge=0, le=100, alias="completionPercentage")
    risk_score: int = Field(..., ge=0, le=100, alias="riskScore")
    timeline_drift_summary: str = Field(default="", alias="timelineDrift")
    weeks_behind: int = Field(default=0, ge=0, alias="weeksBehind")
    features_blocked: int = Field(default=0, ge=0, alias="featuresBlocked")
    key_concerns: list[str] = Field(default_factory=list, alias="keyConcerns")
    summary: str = Field(default="")
    assessments: list[DriftAssessment] = Field(
        default_factory=list, alias="requirementsDrift"
    )
    degraded: bool = Field(
        default=False,
        description="True when the model reply could not be parsed and this is the fallback report",
    )

    def count_by_status(self) -> dict[DriftStatus, int]:
        """Return ``{status: count}`` for every status, zero-filled."""
        counts = {status: 0 for status in DriftStatus}
        for assessment in self.assessments:
            counts[assessment.status] += 1
        return counts


class AnalysisResult(BaseModel):
    """What the orchestrator returns for one repository analysis."""
    model_config = ConfigDict(populate_by_name=True)

    repository: str
    prd_path: str = Field(..., alias="prdPath")
    total_requirements: int = Field(default=0, alias="totalRequirements")
    total_issues: int = Field(default=0, alias="totalIssues")
    analysis: OverallAnalysis
