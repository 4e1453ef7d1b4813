"""Prompt construction for the drift classification request.

The prompt embeds the requirement list, the work-item list, and a fixed
instruction block that defines the classification contract and the JSON
reply schema parsed by :mod:`prd_drift.analyzer.reconciler`.
"""

from __future__ import annotations

import textwrap
from collections.abc import Sequence

from prd_drift.parser.models import RequirementRecord, WorkItem

BODY_PREVIEW_CHARS = 200
NO_DESCRIPTION = "No description"


_INSTRUCTIONS = textwrap.dedent("""\
    ## YOUR TASK:
    Analyse the drift between the PRD requirements and the actual GitHub issues (delivery).

    **IMPORTANT**: Each requirement must appear EXACTLY ONCE in your analysis, referenced by its id (e.g. "req-3"). Do not create duplicate entries for the same requirement.

    For each requirement, determine:
    1. **Status** (exactly one of):
       - delivered: requirement fully implemented and working as specified in the PRD
       - partial: requirement partially implemented (some functionality delivered, but not complete)
       - in_progress: requirement is actively being worked on (has related open issues)
       - missing: requirement not started or no evidence of work
       - out_of_scope: requirement explicitly removed from scope or marked as future work
    2. **Matched Issues**: Which GitHub issue numbers correspond to this requirement (if any)
    3. **Drift Description**: Explain any scope drift, timeline changes, or misalignment between what was planned and what was/is being delivered
    4. **Risk Level**: low (delivered or minor issues), medium (partial delivery or moderate concerns), high (missing, blocked, or critical drift). Use "low" for out_of_scope items.

    **IMPORTANT**: Be consistent with status assignments. If a requirement has a closed issue that addresses it, mark it as "delivered" unless there is clear evidence it is incomplete.

    Also provide:
    - **Completion Percentage**: Calculate as (number of "delivered" requirements / total requirements excluding "out_of_scope") x 100, rounded to an integer between 0 and 100. Only count requirements with status="delivered" as complete.
    - **Risk Score**: integer 0-100 (0 = no risk, 100 = critical risk). Base this on the count and severity of high-risk items.
    - **Timeline Drift**: Brief factual assessment (e.g. "3 weeks behind schedule" or "On track")
    - **Weeks Behind**: Approximate weeks behind schedule. Use the PRD timeline if available, otherwise estimate from the completion gap.
    - **Features Blocked**: Count of requirements with status "missing" or "partial" AND risk level "high" or "medium"
    - **Key Concerns**: Array of 3-5 brief concerns from high/medium risk requirements
    - **Summary**: 2-3 sentence overall assessment

    Return your analysis as JSON in a single ```json fenced block, in this exact format:
    ```json
    {
      "completionPercentage": 75,
      "riskScore": 35,
      "timelineDrift": "3 weeks behind schedule",
      "weeksBehind": 3,
      "featuresBlocked": 5,
      "keyConcerns": [
        "Scheduled exports feature not started (high priority)",
        "Custom export templates only partially implemented"
      ],
      "summary": "Overall delivery is progressing but with moderate drift from the original PRD.",
      "requirementsDrift": [
        {
          "requirementId": "req-1",
          "status": "delivered",
          "matchedIssues": [1, 5],
          "driftDescription": "Requirement delivered as planned",
          "riskLevel": "low"
        },
        {
          "requirementId": "req-2",
          "status": "partial",
          "matchedIssues": [7],
          "driftDescription": "PRD specified CSV export, but only PDF was delivered",
          "riskLevel": "medium"
        }
      ]
    }
    ```

    Be precise, objective, and focus on identifying genuine drift (not minor implementation details).""")


def format_requirements(requirements: Sequence[RequirementRecord]) -> str:
    """Render requirements as ``"<id>. [<section>] <text>"`` lines."""
    return "\n".join(f"{req.id}. [{req.section}] {req.text}" for req in requirements)


def _body_preview(body: str | None) -> str:
    if not body:
        return NO_DESCRIPTION
    return body[:BODY_PREVIEW_CHARS]


def format_work_items(work_items: Sequence[WorkItem]) -> str:
    """Render work items as blank-line separated blocks with a body preview."""
    blocks = []
    for item in work_items:
        blocks.append(
            f"#{item.number} [{item.state.value}] {item.title}\n"
            f"  Labels: {', '.join(item.labels)}\n"
            f"  Body: {_body_preview(item.body)}..."
        )
    return "\n\n".join(blocks)


def build_analysis_prompt(
    requirements: Sequence[RequirementRecord],
    work_items: Sequence[WorkItem],
) -> str:
    """Build the complete classification prompt.

    Args:
        requirements: Requirements extracted from the PRD.
        work_items: Issues read from the tracker.

    Returns:
        A single prompt string; both lists may be empty.
    """
    return "\n".join([
        "You are analysing PRD-to-delivery alignment for a product team.",
        "",
        "**IMPORTANT**: Use UK English spelling in all your responses "
        "(analyse, organisation, realise, prioritise, etc.).",
        "",
        "## PRD REQUIREMENTS:",
        format_requirements(requirements),
        "",
        "## GITHUB ISSUES (Delivery):",
        format_work_items(work_items),
        "",
        _INSTRUCTIONS,
    ])
