"""Tests for drift reconciliation (prd_drift.analyzer.reconciler).

Covers:
- Fenced and bare JSON replies
- Fallback report on unparseable or off-schema replies
- Unknown-id attribution and text de-duplication
- Optional-field defaults and numeric coercion
- DriftReconciler end to end with a scripted oracle
"""

from __future__ import annotations

import json

import pytest

from prd_drift.analyzer.reconciler import (
    FALLBACK_CONCERN,
    FALLBACK_DESCRIPTION,
    FALLBACK_SUMMARY,
    FALLBACK_TIMELINE,
    DriftAnalysisError,
    DriftReconciler,
    dedupe_by_text,
    extract_json_payload,
    fallback_analysis,
    parse_analysis_response,
)
from prd_drift.parser.extractor import extract_requirements
from prd_drift.parser.models import (
    DriftAssessment,
    DriftStatus,
    RequirementRecord,
    RiskLevel,
)


pytestmark = pytest.mark.unit


# ---------------------------------------------------------------------------
# extract_json_payload
# ---------------------------------------------------------------------------


class TestExtractJsonPayload:
    def test_fenced_block_preferred(self):
        reply = 'Some prose {"not": "this"}\n```json\n{"a": 1}\n```\ntrailing'
        assert extract_json_payload(reply) == '{"a": 1}'

    def test_plain_fence(self):
        assert extract_json_payload('```\n{"a": 1}\n```') == '{"a": 1}'

    def test_uppercase_language_tag(self):
        assert extract_json_payload('```JSON\n{"a": 1}\n```') == '{"a": 1}'

    def test_bare_reply_returned_whole(self):
        assert extract_json_payload('{"a": 1}') == '{"a": 1}'

    def test_first_fence_wins(self):
        reply = '```json\n{"a": 1}\n```\n```json\n{"a": 2}\n```'
        assert extract_json_payload(reply) == '{"a": 1}'


# ---------------------------------------------------------------------------
# parse_analysis_response: happy paths
# ---------------------------------------------------------------------------


class TestParseWellFormed:
    def test_fenced_reply(self, requirements, reply_payload, fenced_reply):
        analysis = parse_analysis_response(fenced_reply(reply_payload), requirements)
        assert analysis.degraded is False
        assert analysis.completion_percentage == 33
        assert analysis.risk_score == 55
        assert analysis.timeline_drift_summary == "2 weeks behind schedule"
        assert analysis.weeks_behind == 2
        assert analysis.features_blocked == 1
        assert analysis.key_concerns == ["Export scheduling not started"]
        assert [a.requirement.id for a in analysis.assessments] == ["req-1", "req-2", "req-5"]
        assert [a.status for a in analysis.assessments] == [
            DriftStatus.DELIVERED, DriftStatus.MISSING, DriftStatus.PARTIAL,
        ]
        assert analysis.assessments[0].matched_work_items == [5]
        assert analysis.assessments[1].risk_level is RiskLevel.HIGH

    def test_bare_json_reply(self, requirements, reply_payload):
        analysis = parse_analysis_response(json.dumps(reply_payload), requirements)
        assert analysis.degraded is False
        assert len(analysis.assessments) == 3

    def test_resolves_to_supplied_records(self, requirements, reply_payload):
        analysis = parse_analysis_response(json.dumps(reply_payload), requirements)
        assert analysis.assessments[2].requirement is requirements[2]

    def test_arithmetic_passed_through(self, requirements, reply_payload):
        # All three are "delivered" but the model claims 10%; it is not recomputed.
        for entry in reply_payload["requirementsDrift"]:
            entry["status"] = "delivered"
        reply_payload["completionPercentage"] = 10
        analysis = parse_analysis_response(json.dumps(reply_payload), requirements)
        assert analysis.completion_percentage == 10

    def test_empty_drift_list(self, requirements, reply_payload):
        reply_payload["requirementsDrift"] = []
        analysis = parse_analysis_response(json.dumps(reply_payload), requirements)
        assert analysis.degraded is False
        assert analysis.assessments == []


class TestOptionalFields:
    def test_missing_optionals_default(self, requirements, drift_entry):
        payload = {
            "completionPercentage": 0,
            "riskScore": 0,
            "requirementsDrift": [
                {"requirementId": "req-1", "status": "missing", "riskLevel": "high"},
            ],
        }
        analysis = parse_analysis_response(json.dumps(payload), requirements)
        assert analysis.degraded is False
        assert analysis.timeline_drift_summary == ""
        assert analysis.summary == ""
        assert analysis.weeks_behind == 0
        assert analysis.features_blocked == 0
        assert analysis.key_concerns == []
        assert analysis.assessments[0].matched_work_items == []
        assert analysis.assessments[0].drift_description == ""

    def test_null_optionals_default(self, requirements, drift_entry):
        entry = drift_entry("req-1")
        entry["matchedIssues"] = None
        entry["driftDescription"] = None
        payload = {
            "completionPercentage": 100,
            "riskScore": 0,
            "timelineDrift": None,
            "weeksBehind": None,
            "featuresBlocked": None,
            "keyConcerns": None,
            "summary": None,
            "requirementsDrift": [entry],
        }
        analysis = parse_analysis_response(json.dumps(payload), requirements)
        assert analysis.degraded is False
        assert analysis.weeks_behind == 0
        assert analysis.assessments[0].matched_work_items == []
        assert analysis.assessments[0].drift_description == ""

    def test_float_scores_rounded(self, requirements, reply_payload):
        reply_payload["completionPercentage"] = 66.7
        reply_payload["riskScore"] = 12.2
        reply_payload["weeksBehind"] = 1.5
        analysis = parse_analysis_response(json.dumps(reply_payload), requirements)
        assert analysis.completion_percentage == 67
        assert analysis.risk_score == 12
        assert analysis.weeks_behind == 2

    def test_numeric_requirement_id(self, reply_payload, drift_entry):
        reqs = [RequirementRecord(id="7", text="Numeric id requirement")]
        reply_payload["requirementsDrift"] = [drift_entry(7)]
        analysis = parse_analysis_response(json.dumps(reply_payload), reqs)
        assert analysis.degraded is False
        assert analysis.assessments[0].requirement is reqs[0]


# ---------------------------------------------------------------------------
# parse_analysis_response: fallback
# ---------------------------------------------------------------------------


class TestFallback:
    @pytest.mark.parametrize("reply", [
        "",
        "I could not analyse this repository.",
        "```json\n{broken json\n```",
        "[1, 2, 3]",
        '"just a string"',
    ])
    def test_unparseable_reply(self, requirements, reply):
        analysis = parse_analysis_response(reply, requirements)
        assert analysis.degraded is True
        assert analysis.completion_percentage == 0
        assert analysis.risk_score == 100

    @pytest.mark.parametrize("field, value", [
        ("completionPercentage", 150),
        ("completionPercentage", -5),
        ("riskScore", "high"),
        ("riskScore", True),
        ("weeksBehind", -1),
        ("requirementsDrift", "none"),
    ])
    def test_off_schema_reply(self, requirements, reply_payload, field, value):
        reply_payload[field] = value
        analysis = parse_analysis_response(json.dumps(reply_payload), requirements)
        assert analysis.degraded is True

    @pytest.mark.parametrize("missing", ["completionPercentage", "riskScore", "requirementsDrift"])
    def test_required_field_missing(self, requirements, reply_payload, missing):
        del reply_payload[missing]
        assert parse_analysis_response(json.dumps(reply_payload), requirements).degraded

    def test_unknown_status_discards_whole_reply(self, requirements, reply_payload):
        reply_payload["requirementsDrift"][1]["status"] = "done"
        analysis = parse_analysis_response(json.dumps(reply_payload), requirements)
        assert analysis.degraded is True
        assert all(a.status is DriftStatus.MISSING for a in analysis.assessments)

    def test_fallback_shape(self, requirements):
        analysis = parse_analysis_response("nope", requirements)
        assert analysis.timeline_drift_summary == FALLBACK_TIMELINE
        assert analysis.summary == FALLBACK_SUMMARY
        assert analysis.key_concerns == [FALLBACK_CONCERN]
        assert analysis.weeks_behind == 0
        assert analysis.features_blocked == 0
        assert [a.requirement for a in analysis.assessments] == requirements
        for assessment in analysis.assessments:
            assert assessment.status is DriftStatus.MISSING
            assert assessment.risk_level is RiskLevel.HIGH
            assert assessment.matched_work_items == []
            assert assessment.drift_description == FALLBACK_DESCRIPTION

    def test_fallback_with_no_requirements(self):
        analysis = fallback_analysis([])
        assert analysis.assessments == []
        assert analysis.degraded is True

    def test_fallback_dedupes_by_text(self):
        reqs = [
            RequirementRecord(id="req-1", text="Same requirement text", section="A"),
            RequirementRecord(id="req-4", text="Same requirement text", section="B"),
        ]
        analysis = fallback_analysis(reqs)
        assert [a.requirement.id for a in analysis.assessments] == ["req-1"]

    def test_reply_with_ids_but_no_requirements(self, reply_payload):
        assert parse_analysis_response(json.dumps(reply_payload), []).degraded is True


# ---------------------------------------------------------------------------
# Id resolution and de-duplication
# ---------------------------------------------------------------------------


class TestResolution:
    def test_unknown_id_attributed_to_first_requirement(
        self, requirements, reply_payload, drift_entry
    ):
        reply_payload["requirementsDrift"] = [drift_entry("req-99", "partial", [8], "medium")]
        analysis = parse_analysis_response(json.dumps(reply_payload), requirements)
        assert analysis.degraded is False
        assert len(analysis.assessments) == 1
        assert analysis.assessments[0].requirement is requirements[0]
        assert analysis.assessments[0].status is DriftStatus.PARTIAL

    def test_absent_id_attributed_to_first_requirement(
        self, requirements, reply_payload, drift_entry
    ):
        entry = drift_entry("ignored", "partial", [8], "medium")
        del entry["requirementId"]
        reply_payload["completionPercentage"] = 50
        reply_payload["requirementsDrift"] = [entry, drift_entry("req-2", "missing", [], "high")]
        analysis = parse_analysis_response(json.dumps(reply_payload), requirements)
        assert analysis.degraded is False
        assert analysis.completion_percentage == 50
        assert [(a.requirement.id, a.status) for a in analysis.assessments] == [
            ("req-1", DriftStatus.PARTIAL),
            ("req-2", DriftStatus.MISSING),
        ]

    def test_null_id_attributed_to_first_requirement(
        self, requirements, reply_payload, drift_entry
    ):
        reply_payload["completionPercentage"] = 50
        reply_payload["requirementsDrift"] = [
            drift_entry(None, "partial", [8], "medium"),
            drift_entry("req-2", "missing", [], "high"),
        ]
        analysis = parse_analysis_response(json.dumps(reply_payload), requirements)
        assert analysis.degraded is False
        assert analysis.completion_percentage == 50
        assert [(a.requirement.id, a.status) for a in analysis.assessments] == [
            ("req-1", DriftStatus.PARTIAL),
            ("req-2", DriftStatus.MISSING),
        ]

    def test_unknown_id_collapses_with_real_entry(
        self, requirements, reply_payload, drift_entry
    ):
        reply_payload["requirementsDrift"] = [
            drift_entry("req-1", "delivered"),
            drift_entry("bogus", "missing", risk="high"),
        ]
        analysis = parse_analysis_response(json.dumps(reply_payload), requirements)
        assert len(analysis.assessments) == 1
        assert analysis.assessments[0].status is DriftStatus.DELIVERED

    def test_duplicate_id_first_wins(self, requirements, reply_payload, drift_entry):
        reply_payload["requirementsDrift"] = [
            drift_entry("req-2", "in_progress", [8], "medium"),
            drift_entry("req-2", "missing", [], "high"),
        ]
        analysis = parse_analysis_response(json.dumps(reply_payload), requirements)
        assert len(analysis.assessments) == 1
        assert analysis.assessments[0].status is DriftStatus.IN_PROGRESS

    def test_shared_id_resolves_to_first_record(self, reply_payload, drift_entry):
        reqs = extract_requirements("## Personas\n- As a team lead, I want to share exports\n")
        reply_payload["requirementsDrift"] = [drift_entry("req-1")]
        analysis = parse_analysis_response(json.dumps(reply_payload), reqs)
        assert analysis.assessments[0].requirement.section == "Personas"

    def test_assessments_unique_by_text(self, sample_prd_text, reply_payload, drift_entry):
        reqs = extract_requirements(sample_prd_text)
        reply_payload["requirementsDrift"] = [drift_entry(r.id) for r in reqs] + [
            drift_entry("unknown-id")
        ]
        analysis = parse_analysis_response(json.dumps(reply_payload), reqs)
        texts = [a.requirement.text for a in analysis.assessments]
        assert len(texts) == len(set(texts))


class TestDedupeByText:
    def test_keeps_first(self):
        req = RequirementRecord(id="req-1", text="Duplicate text here")
        first = DriftAssessment(requirement=req, status=DriftStatus.DELIVERED, risk_level=RiskLevel.LOW)
        second = DriftAssessment(requirement=req, status=DriftStatus.MISSING, risk_level=RiskLevel.HIGH)
        assert dedupe_by_text([first, second]) == [first]

    def test_distinct_texts_kept_in_order(self):
        a = DriftAssessment(
            requirement=RequirementRecord(id="req-2", text="Second requirement"),
            status=DriftStatus.PARTIAL,
            risk_level=RiskLevel.MEDIUM,
        )
        b = DriftAssessment(
            requirement=RequirementRecord(id="req-1", text="First requirement"),
            status=DriftStatus.DELIVERED,
            risk_level=RiskLevel.LOW,
        )
        assert dedupe_by_text([a, b]) == [a, b]


# ---------------------------------------------------------------------------
# DriftReconciler
# ---------------------------------------------------------------------------


class TestDriftReconciler:
    @pytest.mark.asyncio
    async def test_reconcile_single_call(
        self, requirements, work_items, reply_payload, fenced_reply, scripted_oracle
    ):
        oracle = scripted_oracle(reply=fenced_reply(reply_payload))
        analysis = await DriftReconciler(oracle).reconcile(requirements, work_items)
        assert len(oracle.prompts) == 1
        assert "req-2. [Core] Admins can configure export schedule" in oracle.prompts[0]
        assert "#8 [open] Export scheduling" in oracle.prompts[0]
        assert analysis.risk_score == 55

    @pytest.mark.asyncio
    async def test_upstream_error_propagates_message(
        self, requirements, work_items, scripted_oracle
    ):
        oracle = scripted_oracle(error="invalid x-api-key")
        with pytest.raises(DriftAnalysisError, match="invalid x-api-key"):
            await DriftReconciler(oracle).reconcile(requirements, work_items)

    @pytest.mark.asyncio
    async def test_malformed_reply_does_not_raise(
        self, requirements, work_items, scripted_oracle
    ):
        oracle = scripted_oracle(reply="Sorry, I can't help with that.")
        analysis = await DriftReconciler(oracle).reconcile(requirements, work_items)
        assert analysis.degraded is True
        assert len(analysis.assessments) == len(requirements)

    @pytest.mark.asyncio
    async def test_csv_export_scenario(self, csv_prd_text, work_items, scripted_oracle):
        reqs = extract_requirements(csv_prd_text)
        assert [r.id for r in reqs] == ["req-1", "req-2"]
        reply = json.dumps({
            "completionPercentage": 50,
            "riskScore": 40,
            "timelineDrift": "1 week behind schedule",
            "weeksBehind": 1,
            "featuresBlocked": 1,
            "keyConcerns": ["Scheduling not delivered"],
            "summary": "Half delivered.",
            "requirementsDrift": [
                {"requirementId": "req-1", "status": "delivered", "matchedIssues": [5],
                 "driftDescription": "Delivered", "riskLevel": "low"},
                {"requirementId": "req-2", "status": "missing", "matchedIssues": [],
                 "driftDescription": "Not started", "riskLevel": "high"},
            ],
        })
        analysis = await DriftReconciler(scripted_oracle(reply=reply)).reconcile(reqs, work_items)
        assert analysis.completion_percentage == 50
        assert [(a.requirement.text, a.status) for a in analysis.assessments] == [
            ("Users can export data as CSV", DriftStatus.DELIVERED),
            ("Admins can configure export schedule", DriftStatus.MISSING),
        ]
        counts = analysis.count_by_status()
        assert counts[DriftStatus.DELIVERED] == 1
        assert counts[DriftStatus.MISSING] == 1

    @pytest.mark.asyncio
    async def test_empty_inputs(self, scripted_oracle, reply_payload):
        reply_payload["requirementsDrift"] = []
        oracle = scripted_oracle(reply=json.dumps(reply_payload))
        analysis = await DriftReconciler(oracle).reconcile([], [])
        assert analysis.assessments == []
        assert len(oracle.prompts) == 1
