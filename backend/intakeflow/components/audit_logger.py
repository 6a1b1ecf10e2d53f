"""
Audit Logger component.

Role: Build exactly one immutable AuditRecord per pipeline run, including
degraded and fallback runs, and append it to the audit sink.

Stored envelopes are sanitized: content is masked and bounded, secret-looking
keys are redacted, and the raw payload is reduced to metadata (size, presence
of attachments) unless full retention is requested.
"""

from __future__ import annotations

import re
from typing import Any, Dict, List, Optional

from intakeflow.components.contracts import (Action, AuditRecord,
                                             ClassificationResult, InputKind,
                                             NormalizedEnvelope,
                                             RoutingDecision, TrustAssessment)
from intakeflow.components.normalizer import stringify
from intakeflow.core.intake_context import IntakeContext
from intakeflow.core.logging_config import LoggingConfig, mask_sensitive
from intakeflow.services.audit_sink import AuditSink

logger = LoggingConfig.get_logger(__name__)

REDACTED = "***"
SECRET_KEY_RE = re.compile(
    r"(password|passwd|secret|token|api[_-]?key|authorization|credential|cookie|session[_-]?id|private[_-]?key)",
    re.IGNORECASE,
)


def redact_secrets(value: Any) -> Any:
    """Copy of ``value`` with secret-named keys replaced and strings masked"""
    if isinstance(value, dict):
        return {
            key: REDACTED if isinstance(key, str) and SECRET_KEY_RE.search(key) else redact_secrets(item)
            for key, item in value.items()
        }
    if isinstance(value, (list, tuple)):
        return [redact_secrets(item) for item in value]
    if isinstance(value, str):
        return mask_sensitive(value)
    if value is None or isinstance(value, (bool, int, float)):
        return value
    return mask_sensitive(str(value))


def _has_attachments(raw: Any) -> bool:
    return isinstance(raw, dict) and bool(raw.get("attachments"))


class AuditLogger:
    component_name = "audit_logger"

    def __init__(self, sink: AuditSink, context: IntakeContext):
        self.sink = sink
        self.context = context

    def _bounded(self, text: str) -> Dict[str, Any]:
        masked = mask_sensitive(text)
        limit = self.context.audit_content_limit
        return {
            "content": masked[:limit],
            "content_length": len(text),
            "content_truncated": len(masked) > limit,
        }

    def _raw_view(self, raw: Any, retain_raw: bool) -> Dict[str, Any]:
        view: Dict[str, Any] = {
            "raw_size": len(stringify(raw).encode("utf-8")),
            "has_attachments": _has_attachments(raw),
        }
        if retain_raw:
            view["raw"] = redact_secrets(raw)
        return view

    def sanitize(self, envelope: NormalizedEnvelope, retain_raw: bool = False) -> Dict[str, Any]:
        sanitized: Dict[str, Any] = {
            "kind": envelope.kind.value,
            "source": mask_sensitive(envelope.source),
            "received_at": envelope.received_at.isoformat(),
            "subject": mask_sensitive(envelope.subject) if envelope.subject else None,
            "sender": envelope.sender,
            "recipients": list(envelope.recipients),
            "attachments": [a.model_dump() for a in envelope.attachments],
            "metadata": redact_secrets(envelope.metadata),
        }
        sanitized.update(self._bounded(envelope.content))
        sanitized.update(self._raw_view(envelope.raw, retain_raw))
        return sanitized

    def sanitize_raw(self, kind: InputKind, raw: Any, retain_raw: bool = False) -> Dict[str, Any]:
        """Sanitized view for runs that never produced an envelope"""
        sanitized: Dict[str, Any] = {"kind": kind.value}
        sanitized.update(self._bounded(stringify(raw)))
        sanitized.update(self._raw_view(raw, retain_raw))
        return sanitized

    async def record(
        self,
        kind: InputKind,
        envelope: Optional[NormalizedEnvelope],
        classification: Optional[ClassificationResult],
        trust: Optional[TrustAssessment],
        routing: RoutingDecision,
        actions: List[Action],
        degraded: bool,
        fallback: bool = False,
        error: Optional[str] = None,
        raw: Any = None,
        retain_raw: Optional[bool] = None,
        correlation_id: Optional[str] = None,
    ) -> AuditRecord:
        """
        Build and append the audit record for one run.

        Raises whatever the sink raises; the caller decides how a lost
        audit write is reported.
        """
        retain = self.context.audit_retain_raw if retain_raw is None else retain_raw
        if envelope is not None:
            sanitized = self.sanitize(envelope, retain)
            correlation_id = correlation_id or envelope.correlation_id
        else:
            sanitized = self.sanitize_raw(kind, raw, retain)

        record = AuditRecord(
            correlation_id=correlation_id,
            kind=kind,
            sanitized_envelope=sanitized,
            classification=classification,
            trust=trust,
            routing=routing,
            actions=list(actions),
            degraded=degraded,
            fallback=fallback,
            error=mask_sensitive(error) if error else None,
        )
        await self.sink.append(record)
        logger.info(
            "Audit record appended",
            extra={
                "audit_id": record.audit_id,
                "primary_route": routing.primary_route,
                "degraded": degraded,
                "fallback": fallback,
            },
        )
        return record
