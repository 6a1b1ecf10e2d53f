"""
End-to-end tests for IntakePipeline wired to in-process fakes
"""
import pytest

from fakes import FakeAdapter, FakeMinter, FakeThreadSync, FakeTrustAuthority
from intakeflow.components.contracts import ActionType, InputKind, TrustState
from intakeflow.components.routing import TRUST_UNEVALUATED_MARKER

COURT_MAIL = {
    "from": "clerk@court.example.gov",
    "to": "intake@firm.example.com",
    "subject": "Urgent: Court hearing tomorrow",
    "body": "The hearing in Smith v. Jones has been moved to 9am tomorrow.",
}

LAWSUIT_CLASSIFICATION = {
    "category": "lawsuit",
    "priority": "HIGH",
    "urgency_score": 0.8,
    "case_related": True,
    "related_entities": ["Smith", "Jones"],
    "jurisdiction": "CA",
    "reasoning": "court scheduling notice",
}


def _types(result):
    return [a.type for a in result.actions]


@pytest.mark.asyncio
async def test_court_mail_goes_to_case_management(make_pipeline, adapter, minter, thread_sync, audit_sink):
    adapter.respond("classifier_mail", LAWSUIT_CLASSIFICATION)
    adapter.respond("routing_refinement", {"cc_routes": ["calendar"], "special_handling": ["deadline"]})

    result = await make_pipeline().ingest(COURT_MAIL)

    assert result.kind is InputKind.EMAIL
    assert result.fallback is False
    assert result.degraded is False
    assert result.routing.primary_route == "case-management"
    assert result.routing.secondary_routes == ["calendar"]
    assert result.trust.state is TrustState.TRUSTED

    types = _types(result)
    assert types[0] is ActionType.ROUTE
    assert types.index(ActionType.ROUTE) < types.index(ActionType.MINT_ID) < types.index(ActionType.CREATE_THREAD)
    assert ActionType.ESCALATE not in types

    assert result.correlation_id == "INT-0001"
    assert minter.purposes == ["intake:email:lawsuit"]
    assert thread_sync.requests[0].parties == ["Smith", "Jones"]
    assert thread_sync.requests[0].correlation_id == "INT-0001"

    records = audit_sink.records
    assert len(records) == 1
    assert records[0].audit_id == result.audit_id
    assert records[0].correlation_id == "INT-0001"
    assert records[0].routing.primary_route == "case-management"


@pytest.mark.asyncio
async def test_trust_timeout_leaves_trust_unevaluated(make_pipeline, adapter, audit_sink):
    adapter.respond("classifier_mail", LAWSUIT_CLASSIFICATION)
    pipeline = make_pipeline(trust_authority=FakeTrustAuthority.unreachable())

    result = await pipeline.ingest(COURT_MAIL)

    assert result.trust.state is TrustState.UNEVALUATED
    assert result.trust.trusted is None
    assert result.trust.composite_score is None
    assert result.routing.primary_route == "case-management"
    assert result.routing.trust_state is TrustState.UNEVALUATED
    assert TRUST_UNEVALUATED_MARKER in result.routing.reasoning
    assert result.degraded is True
    assert result.fallback is False
    assert audit_sink.records[0].degraded is True


@pytest.mark.asyncio
async def test_classifier_failure_defaults_without_fallback(make_pipeline, adapter):
    adapter.respond("classifier_mail", RuntimeError("model backend down"))

    result = await make_pipeline().ingest(COURT_MAIL)

    assert result.fallback is False
    assert result.classification.category == "general"
    assert result.classification.priority.value == "NORMAL"
    assert result.classification.urgency_score == 0.5
    assert result.classification.defaulted is True
    assert result.degraded is True
    assert result.routing.primary_route == "intake"
    assert _types(result)[:2] == [ActionType.ROUTE, ActionType.MINT_ID]


@pytest.mark.asyncio
async def test_unrecognized_payload_is_stringified(make_pipeline, adapter, audit_sink):
    adapter.respond("classifier_generic", {"category": "general", "priority": "LOW"})
    raw = {"alpha": 1, "beta": [True, None]}

    result = await make_pipeline().ingest(raw)

    assert result.kind is InputKind.UNKNOWN
    assert result.fallback is False
    assert '"alpha": 1' in audit_sink.records[0].sanitized_envelope["content"]
    assert adapter.calls_for("classifier_generic")[0].startswith("Input kind: unknown")


@pytest.mark.asyncio
async def test_payload_with_mixed_key_types_is_processed_and_audited(make_pipeline, adapter, audit_sink):
    adapter.respond("classifier_generic", {"category": "general", "priority": "LOW"})

    result = await make_pipeline().ingest({1: "one", "zzz": "two"})

    assert result.kind is InputKind.UNKNOWN
    assert result.fallback is False
    assert result.audit_id is not None
    assert len(audit_sink.records) == 1
    assert '"zzz": "two"' in audit_sink.records[0].sanitized_envelope["content"]


@pytest.mark.asyncio
async def test_unreadable_optional_fields_do_not_force_fallback(make_pipeline, adapter, audit_sink):
    adapter.respond("classifier_generic", {"category": "general", "priority": "NORMAL"})

    result = await make_pipeline().ingest({"form_id": "intake", "fields": {"name": ["Ann", "Bob"]}, "timestamp": "yesterday"})

    assert result.kind is InputKind.FORM
    assert result.fallback is False
    assert len(audit_sink.records) == 1
    assert audit_sink.records[0].fallback is False


@pytest.mark.asyncio
async def test_critical_priority_escalates(make_pipeline, adapter):
    adapter.respond("classifier_generic", {"category": "emergency", "priority": "CRITICAL", "urgency_score": 0.99})
    sms = {"from": "+15551234567", "body": "There is a fire in the building"}

    result = await make_pipeline().ingest(sms)

    assert result.kind is InputKind.SMS
    assert result.routing.primary_route == "emergency"
    assert result.routing.priority_queue == "immediate"
    assert _types(result)[-1] is ActionType.ESCALATE


@pytest.mark.asyncio
async def test_untrusted_verdict_quarantines_and_skips_refinement(make_pipeline, adapter):
    adapter.respond("classifier_mail", LAWSUIT_CLASSIFICATION)
    adapter.respond("routing_refinement", {"cc_routes": ["calendar"]})
    pipeline = make_pipeline(trust_authority=FakeTrustAuthority.untrusted())

    result = await pipeline.ingest(COURT_MAIL)

    assert result.routing.primary_route == "quarantine"
    assert result.routing.trust_flags == ["spoofed-sender"]
    assert result.routing.secondary_routes == []
    assert adapter.calls_for("routing_refinement") == []
    assert result.trust.trusted is False


@pytest.mark.asyncio
async def test_failed_thread_sync_is_recorded_not_raised(make_pipeline, adapter, audit_sink):
    adapter.respond("classifier_mail", LAWSUIT_CLASSIFICATION)
    pipeline = make_pipeline(thread_sync=FakeThreadSync.failing())

    result = await pipeline.ingest(COURT_MAIL)

    thread = next(a for a in result.actions if a.type is ActionType.CREATE_THREAD)
    assert thread.payload["synced"] is False
    assert "502" in thread.payload["error"]
    assert result.fallback is False
    stored = next(a for a in audit_sink.records[0].actions if a.type is ActionType.CREATE_THREAD)
    assert stored.payload["synced"] is False


@pytest.mark.asyncio
async def test_minting_outage_uses_pending_identifier(make_pipeline, adapter):
    adapter.respond("classifier_mail", LAWSUIT_CLASSIFICATION)

    result = await make_pipeline(minter=FakeMinter.unavailable()).ingest(COURT_MAIL)

    assert result.correlation_id.startswith("pending-email-")
    mint = next(a for a in result.actions if a.type is ActionType.MINT_ID)
    assert mint.payload["pending"] is True


@pytest.mark.asyncio
async def test_malformed_payload_falls_back_and_is_audited(make_pipeline, adapter, audit_sink):
    result = await make_pipeline().ingest({"kind": "form", "fields": ["not", "an", "object"]})

    assert result.fallback is True
    assert result.degraded is True
    assert result.kind is InputKind.FORM
    assert result.routing.primary_route == "intake"
    assert _types(result) == [ActionType.ROUTE]
    assert result.actions[0].payload["destination"] == "intake"
    assert result.actions[0].payload["priority"] == "NORMAL"
    assert result.correlation_id.startswith("pending-form-")
    assert "form fields must be an object" in result.error
    assert adapter.calls == []

    record = audit_sink.records[0]
    assert record.fallback is True
    assert record.degraded is True
    assert record.audit_id == result.audit_id
    assert record.actions == result.actions


@pytest.mark.asyncio
async def test_unexpected_stage_error_becomes_fallback(make_pipeline, adapter, audit_sink):
    class ExplodingRefiner:
        name = "exploding"

        def applies_to(self, kind):
            raise RuntimeError("refiner registry corrupted")

    adapter.respond("classifier_mail", LAWSUIT_CLASSIFICATION)

    result = await make_pipeline(refiners=[ExplodingRefiner()]).ingest(COURT_MAIL)

    assert result.fallback is True
    assert result.kind is InputKind.EMAIL
    assert audit_sink.records[0].fallback is True


@pytest.mark.asyncio
async def test_refiner_failure_keeps_primary_route(make_pipeline, adapter):
    adapter.respond("classifier_mail", LAWSUIT_CLASSIFICATION)
    adapter.respond("routing_refinement", "no json here")

    result = await make_pipeline().ingest(COURT_MAIL)

    assert result.routing.primary_route == "case-management"
    assert result.routing.refinement_errors
    assert result.routing.refinement_errors[0].startswith("llm_routing_refiner:")


@pytest.mark.asyncio
async def test_audit_sink_failure_does_not_fail_the_run(make_pipeline, adapter):
    class BrokenSink:
        async def append(self, record):
            raise OSError("disk full")

    adapter.respond("classifier_mail", LAWSUIT_CLASSIFICATION)

    result = await make_pipeline(audit_sink=BrokenSink()).ingest(COURT_MAIL)

    assert result.audit_id is None
    assert result.routing.primary_route == "case-management"


@pytest.mark.asyncio
async def test_mail_attachments_are_analyzed(make_pipeline, adapter):
    adapter.respond("classifier_mail", LAWSUIT_CLASSIFICATION)
    adapter.respond("attachment_analysis", {"category": "court_filing", "importance": "high"})
    mail = dict(COURT_MAIL, attachments=[{"filename": "order.pdf", "content_type": "application/pdf"}])

    result = await make_pipeline().ingest(mail)

    assert result.attachments.has_attachments is True
    assert result.attachments.summary.highest_importance == "high"


@pytest.mark.asyncio
async def test_auto_response_cites_minted_identifier(make_pipeline, adapter):
    adapter.respond("classifier_mail", {"category": "inquiry", "priority": "LOW", "auto_response_eligible": True})
    adapter.respond("auto_response", lambda prompt: "Thanks, your reference is " + prompt.rsplit(": ", 1)[-1])
    mail = {"from": "someone@example.com", "subject": "Office hours?", "body": "When are you open?"}

    result = await make_pipeline().ingest(mail)

    reply = next(a for a in result.actions if a.type is ActionType.AUTO_RESPOND)
    assert reply.payload["reference"] == "INT-0001"
    assert reply.payload["body"] == "Thanks, your reference is INT-0001"
    assert reply.payload["subject"] == "Re: Office hours?"


@pytest.mark.asyncio
async def test_concurrent_runs_do_not_share_state(make_pipeline, adapter, audit_sink):
    import asyncio

    adapter.respond("classifier_mail", LAWSUIT_CLASSIFICATION)
    adapter.respond("classifier_generic", {"category": "billing"})
    pipeline = make_pipeline()

    mail, sms = await asyncio.gather(
        pipeline.ingest(COURT_MAIL),
        pipeline.ingest({"from": "+15551234567", "body": "invoice question"}),
    )

    assert mail.routing.primary_route == "case-management"
    assert sms.routing.primary_route == "billing"
    assert len(audit_sink.records) == 2
