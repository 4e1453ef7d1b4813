"""Shared utility functions for PRD drift analysis.

Provides the Rich console used for all operator output, JSON I/O, duration
formatting, and the report renderer used by the CLI.
"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from prd_drift.parser.models import DriftStatus, OverallAnalysis, RiskLevel

console = Console()


# ---------------------------------------------------------------------------
# JSON I/O
# ---------------------------------------------------------------------------


def load_json(path: str | Path) -> dict[str, Any]:
    """Load and parse a JSON file.

    Raises:
        FileNotFoundError: If the file does not exist.
        json.JSONDecodeError: If the file is not valid JSON.
    """
    raw = Path(path).read_text(encoding="utf-8")
    data = json.loads(raw)
    if not isinstance(data, dict):
        return {"_root": data}
    return data


async def save_json(data: dict[str, Any] | list[Any], path: str | Path) -> None:
    """Save data as pretty-printed JSON.

    Parent directories are created automatically and the write runs in a
    worker thread so large reports do not block the event loop.
    """
    file_path = Path(path)
    file_path.parent.mkdir(parents=True, exist_ok=True)
    content = json.dumps(data, indent=2, ensure_ascii=False, default=str)
    await asyncio.to_thread(file_path.write_text, content, "utf-8")


# ---------------------------------------------------------------------------
# Formatting helpers
# ---------------------------------------------------------------------------


def format_duration(seconds: float) -> str:
    """Format a duration in seconds to a human-readable string.

    Examples::

        format_duration(3.7)    -> "3.7s"
        format_duration(65.2)   -> "1m 5s"
        format_duration(3661.0) -> "1h 1m 1s"
    """
    if seconds < 0:
        return "0.0s"

    hours = int(seconds // 3600)
    minutes = int((seconds % 3600) // 60)
    secs = seconds % 60

    parts: list[str] = []
    if hours > 0:
        parts.append(f"{hours}h")
    if minutes > 0:
        parts.append(f"{minutes}m")

    if hours > 0 or minutes > 0:
        parts.append(f"{int(secs)}s")
    else:
        parts.append(f"{secs:.1f}s")

    return " ".join(parts)


def truncate(text: str, limit: int = 80) -> str:
    """Shorten *text* to *limit* characters, marking the cut with an ellipsis."""
    if len(text) <= limit:
        return text
    return text[: max(limit - 3, 0)] + "..."


# ---------------------------------------------------------------------------
# Rich output helpers
# ---------------------------------------------------------------------------


STATUS_COLORS: dict[DriftStatus, str] = {
    DriftStatus.DELIVERED: "green",
    DriftStatus.PARTIAL: "yellow",
    DriftStatus.IN_PROGRESS: "cyan",
    DriftStatus.MISSING: "red",
    DriftStatus.OUT_OF_SCOPE: "dim",
}

RISK_COLORS: dict[RiskLevel, str] = {
    RiskLevel.LOW: "green",
    RiskLevel.MEDIUM: "yellow",
    RiskLevel.HIGH: "bold red",
}


def print_summary_table(data: dict[str, str], title: str = "Summary") -> None:
    """Print a two-column key/value summary table."""
    table = Table(title=title, show_header=True, header_style="bold cyan")
    table.add_column("Item", style="dim", no_wrap=True)
    table.add_column("Value")

    for key, value in data.items():
        table.add_row(key, str(value))

    console.print(table)
    console.print()


def print_success(message: str) -> None:
    """Print a green success message."""
    console.print(f"[bold green]{message}[/bold green]")


def print_error(message: str) -> None:
    """Print a red error message."""
    console.print(f"[bold red]{message}[/bold red]")


def print_warning(message: str) -> None:
    """Print a yellow warning message."""
    console.print(f"[bold yellow]{message}[/bold yellow]")


def build_assessment_table(analysis: OverallAnalysis) -> Table:
    """Return a table with one row per assessed requirement."""
    table = Table(title="Requirements Drift", show_header=True, header_style="bold cyan")
    table.add_column("Id", style="dim", no_wrap=True)
    table.add_column("Section")
    table.add_column("Requirement")
    table.add_column("Status", no_wrap=True)
    table.add_column("Risk", no_wrap=True)
    table.add_column("Issues", no_wrap=True)

    for assessment in analysis.assessments:
        status_color = STATUS_COLORS[assessment.status]
        risk_color = RISK_COLORS[assessment.risk_level]
        table.add_row(
            assessment.requirement.id,
            escape(assessment.requirement.section),
            escape(truncate(assessment.requirement.text, 60)),
            f"[{status_color}]{assessment.status.value}[/{status_color}]",
            f"[{risk_color}]{assessment.risk_level.value}[/{risk_color}]",
            ", ".join(f"#{n}" for n in assessment.matched_work_items) or "-",
        )
    return table


def print_analysis(analysis: OverallAnalysis, title: str = "PRD Drift") -> None:
    """Render a drift report: headline panel, assessment table, concerns."""
    border_style = "bold red" if analysis.degraded else "bright_cyan"
    headline = [
        f"Completion      : {analysis.completion_percentage}%",
        f"Risk score      : {analysis.risk_score}/100",
        f"Timeline        : {escape(analysis.timeline_drift_summary) or 'n/a'}",
        f"Weeks behind    : {analysis.weeks_behind}",
        f"Features blocked: {analysis.features_blocked}",
        "",
        escape(analysis.summary),
    ]
    if analysis.degraded:
        headline.insert(0, "[bold red]ANALYSIS DEGRADED -- model reply could not be parsed[/bold red]\n")

    console.print()
    console.print(Panel("\n".join(headline), title=f"[bold]{title}[/bold]", border_style=border_style))

    if analysis.assessments:
        console.print(build_assessment_table(analysis))

    if analysis.key_concerns:
        console.print("[bold]Key concerns[/bold]")
        for concern in analysis.key_concerns:
            console.print(f"  [yellow]![/yellow] {escape(concern)}")
    console.print()
