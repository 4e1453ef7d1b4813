"""PRD requirement extraction.

Turns a product requirements document into an ordered list of requirement
records and defines the data model shared with the drift analyser.

Usage::

    from prd_drift.parser import extract_requirements

    requirements = extract_requirements(prd_text)
    for req in requirements:
        print(req.id, req.section, req.text)
"""

from prd_drift.parser.models import (
    AnalysisResult,
    DriftAssessment,
    DriftStatus,
    OverallAnalysis,
    RequirementRecord,
    RiskLevel,
    WorkItem,
    WorkItemState,
)
from prd_drift.parser.extractor import extract_requirements, read_document

__all__ = [
    "extract_requirements",
    "read_document",
    "AnalysisResult",
    "DriftAssessment",
    "DriftStatus",
    "OverallAnalysis",
    "RequirementRecord",
    "RiskLevel",
    "WorkItem",
    "WorkItemState",
]
