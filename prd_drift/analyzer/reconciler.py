"""Drift reconciliation: requirements + work items -> drift report.

One call to :meth:`DriftReconciler.reconcile` builds the classification
prompt, awaits a single oracle completion, and turns the reply into an
``OverallAnalysis``. The reply is treated as untrusted text:

* a ```json fenced block is preferred, otherwise the whole reply is parsed;
* anything unparseable or off-schema yields the fallback report (no
  assessment is trusted, every requirement is reported missing/high risk);
* ids that do not resolve are mapped onto the first requirement;
* assessments are de-duplicated by requirement text, first one wins.

Oracle arithmetic (completion, risk score, blocked count) is passed through
as given, never recomputed.
"""

from __future__ import annotations

import json
import math
import re
from collections.abc import Sequence
from typing import Any, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator

from prd_drift.llm_client import CompletionOracle, UpstreamError
from prd_drift.parser.models import (
    DriftAssessment,
    DriftStatus,
    OverallAnalysis,
    RequirementRecord,
    RiskLevel,
    WorkItem,
)
from prd_drift.utils import console

from .prompt import build_analysis_prompt

_FENCED_JSON_PATTERN = re.compile(r"```(?:json)?\s*(\{.*?\})\s*```", re.DOTALL | re.IGNORECASE)

FALLBACK_TIMELINE = "Unable to analyse"
FALLBACK_DESCRIPTION = "Analysis failed"
FALLBACK_SUMMARY = "Failed to parse analysis from the classification model"
FALLBACK_CONCERN = "Analysis failed - unable to extract key concerns"


class DriftAnalysisError(Exception):
    """Raised when the classification model call itself fails.

    The message is the upstream provider's message, unchanged.
    """


class ReplyParseError(ValueError):
    """The model reply is not a usable drift analysis."""


# ---------------------------------------------------------------------------
# Reply schema
# ---------------------------------------------------------------------------


def _round_number(value: Any) -> Any:
    # bool is an int subclass; true/false is never a valid count.
    if isinstance(value, bool):
        raise ValueError("expected a number, got a boolean")
    if isinstance(value, float):
        if not math.isfinite(value):
            raise ValueError("expected a finite number")
        return int(round(value))
    return value


class _ReplyItem(BaseModel):
    requirement_id: Optional[str] = Field(default=None, alias="requirementId")
    status: DriftStatus
    matched_issues: list[int] = Field(default_factory=list, alias="matchedIssues")
    drift_description: str = Field(default="", alias="driftDescription")
    risk_level: RiskLevel = Field(..., alias="riskLevel")

    @field_validator("requirement_id", mode="before")
    @classmethod
    def _id_as_text(cls, value: Any) -> Any:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return value

    @field_validator("matched_issues", mode="before")
    @classmethod
    def _null_as_no_issues(cls, value: Any) -> Any:
        return [] if value is None else value

    @field_validator("drift_description", mode="before")
    @classmethod
    def _null_as_blank(cls, value: Any) -> Any:
        return "" if value is None else value


class _Reply(BaseModel):
    completion_percentage: int = Field(..., ge=0, le=100, alias="completionPercentage")
    risk_score: int = Field(..., ge=0, le=100, alias="riskScore")
    timeline_drift: str = Field(default="", alias="timelineDrift")
    weeks_behind: int = Field(default=0, ge=0, alias="weeksBehind")
    features_blocked: int = Field(default=0, ge=0, alias="featuresBlocked")
    key_concerns: list[str] = Field(default_factory=list, alias="keyConcerns")
    summary: str = Field(default="")
    requirements_drift: list[_ReplyItem] = Field(..., alias="requirementsDrift")

    @field_validator(
        "completion_percentage", "risk_score", "weeks_behind", "features_blocked",
        mode="before",
    )
    @classmethod
    def _integral(cls, value: Any) -> Any:
        return _round_number(value)

    @field_validator("weeks_behind", "features_blocked", mode="before")
    @classmethod
    def _null_as_zero(cls, value: Any) -> Any:
        return 0 if value is None else value

    @field_validator("key_concerns", mode="before")
    @classmethod
    def _null_as_no_concerns(cls, value: Any) -> Any:
        return [] if value is None else value

    @field_validator("timeline_drift", "summary", mode="before")
    @classmethod
    def _null_as_blank(cls, value: Any) -> Any:
        return "" if value is None else value


# ---------------------------------------------------------------------------
# Parsing helpers
# ---------------------------------------------------------------------------


def extract_json_payload(reply: str) -> str:
    """Return the contents of the first fenced JSON block, or the whole reply."""
    match = _FENCED_JSON_PATTERN.search(reply)
    if match:
        return match.group(1)
    return reply


def _load_reply(reply: str) -> _Reply:
    try:
        data = json.loads(extract_json_payload(reply))
    except json.JSONDecodeError as exc:
        raise ReplyParseError(f"reply is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise ReplyParseError(f"expected a JSON object, got {type(data).__name__}")
    try:
        return _Reply.model_validate(data)
    except ValidationError as exc:
        raise ReplyParseError(f"reply does not match the analysis schema: {exc}") from exc


def dedupe_by_text(assessments: Sequence[DriftAssessment]) -> list[DriftAssessment]:
    """Keep the first assessment for each distinct requirement text."""
    seen: set[str] = set()
    unique: list[DriftAssessment] = []
    for assessment in assessments:
        if assessment.requirement.text in seen:
            continue
        seen.add(assessment.requirement.text)
        unique.append(assessment)
    return unique


def _resolve(
    requirement_id: Optional[str],
    by_id: dict[str, RequirementRecord],
    requirements: Sequence[RequirementRecord],
) -> RequirementRecord:
    """Map a reply id back to its requirement.

    Unknown or missing ids fall back to the first requirement rather than
    dropping the entry. Whether such entries should be dropped instead is
    still open.
    """
    requirement = by_id.get(requirement_id)
    if requirement is not None:
        return requirement
    if not requirements:
        raise ReplyParseError(
            f"reply references {requirement_id!r} but no requirements were supplied"
        )
    console.print(
        f"[yellow]Model referenced unknown requirement id {requirement_id!r}; "
        f"attributing it to {requirements[0].id}.[/yellow]"
    )
    return requirements[0]


def parse_analysis_response(
    reply: str,
    requirements: Sequence[RequirementRecord],
) -> OverallAnalysis:
    """Parse a model reply into a drift report.

    Args:
        reply: Raw text returned by the oracle.
        requirements: The requirements the prompt was built from.

    Returns:
        The parsed report, or :func:`fallback_analysis` when the reply is
        unusable. Never raises for malformed replies.
    """
    try:
        parsed = _load_reply(reply)
        by_id: dict[str, RequirementRecord] = {}
        for req in requirements:
            by_id.setdefault(req.id, req)

        assessments = [
            DriftAssessment(
                requirement=_resolve(item.requirement_id, by_id, requirements),
                status=item.status,
                matched_work_items=item.matched_issues,
                drift_description=item.drift_description,
                risk_level=item.risk_level,
            )
            for item in parsed.requirements_drift
        ]
    except ReplyParseError as exc:
        console.print(f"[bold red]Could not parse drift analysis:[/bold red] {exc}")
        console.print("[dim]Raw response:[/dim]")
        console.print(reply, style="dim", markup=False, highlight=False)
        return fallback_analysis(requirements)

    return OverallAnalysis(
        completion_percentage=parsed.completion_percentage,
        risk_score=parsed.risk_score,
        timeline_drift_summary=parsed.timeline_drift,
        weeks_behind=parsed.weeks_behind,
        features_blocked=parsed.features_blocked,
        key_concerns=parsed.key_concerns,
        summary=parsed.summary,
        assessments=dedupe_by_text(assessments),
    )


def fallback_analysis(requirements: Sequence[RequirementRecord]) -> OverallAnalysis:
    """Worst-case report used when the model reply cannot be trusted."""
    assessments = [
        DriftAssessment(
            requirement=req,
            status=DriftStatus.MISSING,
            matched_work_items=[],
            drift_description=FALLBACK_DESCRIPTION,
            risk_level=RiskLevel.HIGH,
        )
        for req in requirements
    ]
    return OverallAnalysis(
        completion_percentage=0,
        risk_score=100,
        timeline_drift_summary=FALLBACK_TIMELINE,
        weeks_behind=0,
        features_blocked=0,
        key_concerns=[FALLBACK_CONCERN],
        summary=FALLBACK_SUMMARY,
        assessments=dedupe_by_text(assessments),
        degraded=True,
    )


# ---------------------------------------------------------------------------
# DriftReconciler
# ---------------------------------------------------------------------------


class DriftReconciler:
    """Classifies requirements against work items through one oracle call.

    Holds no per-call state, so one instance can serve concurrent
    reconciliations.
    """

    def __init__(self, oracle: CompletionOracle) -> None:
        self.oracle = oracle

    async def reconcile(
        self,
        requirements: Sequence[RequirementRecord],
        work_items: Sequence[WorkItem],
    ) -> OverallAnalysis:
        """Build the prompt, query the oracle once, and parse its reply.

        Raises:
            DriftAnalysisError: If the oracle call fails (auth, quota,
                transport, model error). Malformed replies never raise.
        """
        prompt = build_analysis_prompt(requirements, work_items)
        try:
            reply = await self.oracle.complete(prompt)
        except UpstreamError as exc:
            raise DriftAnalysisError(str(exc)) from exc
        return parse_analysis_response(reply, requirements)
