"""Drift analysis between PRD requirements and tracked work items.

Usage::

    from prd_drift.analyzer import DriftReconciler
    from prd_drift.llm_client import AnthropicOracle

    reconciler = DriftReconciler(AnthropicOracle(api_key=key))
    analysis = await reconciler.reconcile(requirements, work_items)
    print(analysis.completion_percentage, analysis.risk_score)
"""

from prd_drift.analyzer.prompt import build_analysis_prompt
from prd_drift.analyzer.reconciler import (
    DriftAnalysisError,
    DriftReconciler,
    fallback_analysis,
    parse_analysis_response,
)

__all__ = [
    "DriftReconciler",
    "DriftAnalysisError",
    "build_analysis_prompt",
    "fallback_analysis",
    "parse_analysis_response",
]
