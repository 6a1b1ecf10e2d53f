import pytest

from intakeflow.components.audit_logger import AuditLogger, redact_secrets
from intakeflow.components.contracts import (ClassificationResult, InputKind,
                                             RoutingDecision, TrustAssessment)
from intakeflow.components.normalizer import normalize
from intakeflow.core.intake_context import IntakeContext
from intakeflow.services.audit_sink import InMemoryAuditSink

ROUTING = RoutingDecision(primary_route="intake")


def test_redact_secrets_by_key_and_pattern():
    redacted = redact_secrets({
        "api_key": "abc123",
        "headers": {"Authorization": "Bearer xyz"},
        "note": "password=hunter2 please",
        "items": [{"token": "t"}, 3],
    })
    assert redacted["api_key"] == "***"
    assert redacted["headers"]["Authorization"] == "***"
    assert "hunter2" not in redacted["note"]
    assert redacted["items"] == [{"token": "***"}, 3]


@pytest.mark.asyncio
async def test_sanitized_envelope_is_bounded_and_raw_reduced_to_metadata():
    sink = InMemoryAuditSink()
    logger = AuditLogger(sink, IntakeContext(audit_content_limit=20))
    raw = {
        "from": "a@example.com",
        "subject": "Statement",
        "body": "x" * 200,
        "attachments": [{"filename": "a.pdf"}],
        "password": "hunter2",
    }
    envelope = normalize(InputKind.EMAIL, raw)

    record = await logger.record(
        InputKind.EMAIL, envelope, ClassificationResult(), TrustAssessment(), ROUTING, [], degraded=True
    )

    stored = record.sanitized_envelope
    assert len(stored["content"]) == 20
    assert stored["content_truncated"] is True
    assert stored["has_attachments"] is True
    assert stored["raw_size"] > 0
    assert "raw" not in stored
    assert "hunter2" not in str(stored)
    assert sink.records == [record]


@pytest.mark.asyncio
async def test_full_retention_keeps_redacted_raw():
    logger = AuditLogger(InMemoryAuditSink(), IntakeContext())
    raw = {"endpoint": "/x", "query": "y", "token": "secret-token"}
    envelope = normalize(InputKind.API, raw)

    record = await logger.record(InputKind.API, envelope, None, None, ROUTING, [], degraded=False, retain_raw=True)

    assert record.sanitized_envelope["raw"] == {"endpoint": "/x", "query": "y", "token": "***"}


@pytest.mark.asyncio
async def test_content_secrets_are_masked():
    logger = AuditLogger(InMemoryAuditSink(), IntakeContext())
    envelope = normalize(InputKind.CHAT, {"thread_id": "t", "message": "my api_key: sk-live-999"})
    record = await logger.record(InputKind.CHAT, envelope, None, None, ROUTING, [], degraded=False)
    assert "sk-live-999" not in record.sanitized_envelope["content"]


@pytest.mark.asyncio
async def test_fallback_record_without_envelope():
    sink = InMemoryAuditSink()
    logger = AuditLogger(sink, IntakeContext())

    record = await logger.record(
        InputKind.FORM, None, None, None, ROUTING, [],
        degraded=True, fallback=True, error="Cannot normalize form payload", raw={"fields": [1]},
        correlation_id="pending-form-1",
    )

    assert record.fallback is True
    assert record.degraded is True
    assert record.correlation_id == "pending-form-1"
    assert record.sanitized_envelope["kind"] == "form"
    assert "raw" not in record.sanitized_envelope


@pytest.mark.asyncio
async def test_records_are_immutable():
    from pydantic import ValidationError

    logger = AuditLogger(InMemoryAuditSink(), IntakeContext())
    envelope = normalize(InputKind.SMS, {"phone": "+15551234567", "body": "x"})
    record = await logger.record(InputKind.SMS, envelope, None, None, ROUTING, [], degraded=False)
    with pytest.raises(ValidationError):
        record.degraded = True
