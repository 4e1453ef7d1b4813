"""Line-oriented requirement extraction from PRD markdown.

A single pass over the document's lines carries the current section
heading forward and emits a ``RequirementRecord`` for every bullet or
numbered item with enough text, and for every "As a ..., I want ..." user
story. Pure regex matching -- no AI calls.
"""

from __future__ import annotations

import asyncio
import re
from pathlib import Path

from .models import GENERAL_SECTION, USER_STORIES_SECTION, RequirementRecord


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_HEADER_PATTERN = re.compile(r"^#+\s+(.+)")
_BULLET_PATTERN = re.compile(r"^[-*]\s+(.+)")
_NUMBERED_PATTERN = re.compile(r"^\d+\.\s+(.+)")
_USER_STORY_PATTERN = re.compile(r"As a (.+), I want (.+)", re.IGNORECASE)

# Items this short are headings-in-disguise or noise ("- TBD", "1. Misc").
MIN_REQUIREMENT_LENGTH = 10


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _list_item_text(line: str) -> str | None:
    """Return the text of a bullet or numbered list item, or ``None``."""
    match = _BULLET_PATTERN.match(line) or _NUMBERED_PATTERN.match(line)
    if match is None:
        return None
    return match.group(1)


def _requirement_id(index: int) -> str:
    return f"req-{index}"


def _extract_line(
    index: int, line: str, current_section: str
) -> tuple[str, list[RequirementRecord]]:
    """Apply the extraction rules to one line.

    Returns the section in effect after this line and the records it emits.
    A heading only moves the section; list-item and user-story rules are
    evaluated independently, so one line can produce two records.
    """
    header = _HEADER_PATTERN.match(line)
    if header:
        return header.group(1).strip(), []

    records: list[RequirementRecord] = []

    item_text = _list_item_text(line)
    if item_text is not None:
        text = item_text.strip()
        if len(text) > MIN_REQUIREMENT_LENGTH:
            records.append(RequirementRecord(
                id=_requirement_id(index),
                text=text,
                section=current_section,
            ))

    if _USER_STORY_PATTERN.search(line):
        records.append(RequirementRecord(
            id=_requirement_id(index),
            text=line.strip(),
            section=USER_STORIES_SECTION,
        ))

    return current_section, records


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def extract_requirements(document_text: str) -> list[RequirementRecord]:
    """Extract requirement records from PRD text in document order.

    Args:
        document_text: Raw markdown-ish PRD content.

    Returns:
        The requirements found, in line order. Ids derive from the 0-based
        line index, so they are stable for a given document but not dense.
        Never raises; unrecognised content simply yields no records.
    """
    requirements: list[RequirementRecord] = []
    section = GENERAL_SECTION

    for index, line in enumerate(document_text.split("\n")):
        section, records = _extract_line(index, line, section)
        requirements.extend(records)

    return requirements


async def read_document(path: str | Path) -> str:
    """Read a local PRD file without blocking the event loop.

    Raises:
        FileNotFoundError: If *path* does not exist or is not a regular file.
        ValueError: If the file is not UTF-8 text.
    """
    file_path = Path(path)
    if not file_path.is_file():
        raise FileNotFoundError(f"PRD file not found: {path}")
    try:
        return await asyncio.to_thread(file_path.read_text, "utf-8")
    except UnicodeDecodeError as exc:
        raise ValueError(f"PRD file is not valid UTF-8 text: {path}") from exc
