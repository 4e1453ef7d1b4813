"""PRD Drift -- compare a product requirements document with delivery.

Extracts requirement statements from a PRD, reconciles them against the
issues in a GitHub repository with a language model, and reports which
requirements were delivered, are in flight, or have drifted.

Usage::

    from prd_drift.parser import extract_requirements
    from prd_drift.analyzer import DriftReconciler

    requirements = extract_requirements(prd_text)
    analysis = await DriftReconciler(oracle).reconcile(requirements, work_items)
"""

__version__ = "0.1.0"
