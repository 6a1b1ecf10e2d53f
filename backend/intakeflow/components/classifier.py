"""
Classifier component.

Role: Produce a structured ClassificationResult for an envelope.
Model role: Reasoning (AI analysis adapter, one prompt per schema variant).

The adapter answers in free text; the first syntactically valid JSON object
embedded in it is taken as the classification. Any failure yields the
default result, this stage never raises.
"""

from __future__ import annotations

import json
from typing import Any, Dict, List, Optional

from intakeflow.components.contracts import (ClassificationResult, InputKind,
                                             NormalizedEnvelope, Priority)
from intakeflow.components.prompt_repository import ComponentPromptRepository
from intakeflow.core.intake_context import IntakeContext
from intakeflow.core.llm_client import AnalysisAdapter
from intakeflow.core.logging_config import LoggingConfig
from intakeflow.core.metrics import intake_stage_degradations_total

logger = LoggingConfig.get_logger(__name__)

_TRUE_STRINGS = {"true", "yes", "y", "1"}


def extract_json_object(text: Optional[str]) -> Optional[Dict[str, Any]]:
    """Return the first valid JSON object embedded in ``text``"""
    if not text:
        return None
    decoder = json.JSONDecoder()
    start = text.find("{")
    while start != -1:
        try:
            obj, _ = decoder.raw_decode(text, start)
        except ValueError:
            obj = None
        if isinstance(obj, dict):
            return obj
        start = text.find("{", start + 1)
    return None


def coerce_text(value: Any, default: Optional[str] = None) -> Optional[str]:
    if value is None:
        return default
    text = str(value).strip()
    if not text or text.lower() in ("null", "none"):
        return default
    return text


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in _TRUE_STRINGS
    if isinstance(value, (int, float)):
        return value != 0
    return False


def coerce_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, (list, tuple, set)):
        return []
    seen: List[str] = []
    for item in value:
        text = coerce_text(item)
        if text and text not in seen:
            seen.append(text)
    return seen


def _as_score(value: Any) -> float:
    try:
        score = float(value)
    except (TypeError, ValueError):
        return 0.5
    if score != score:  # NaN
        return 0.5
    return min(1.0, max(0.0, score))


def _as_priority(value: Any) -> Priority:
    try:
        return Priority(str(value).strip().upper())
    except ValueError:
        return Priority.NORMAL


def _as_category(value: Any) -> str:
    text = coerce_text(value, "general")
    return text.lower().replace(" ", "_").replace("-", "_")


def coerce_classification(data: Dict[str, Any], variant: str) -> ClassificationResult:
    """Build a type-correct result from loosely typed adapter output"""
    fields: Dict[str, Any] = {
        "category": _as_category(data.get("category")),
        "priority": _as_priority(data.get("priority")),
        "urgency_score": _as_score(data.get("urgency_score", data.get("urgency", 0.5))),
        "case_related": _as_bool(data.get("case_related")),
        "related_entities": coerce_list(data.get("related_entities")),
        "jurisdiction": coerce_text(data.get("jurisdiction")),
        "action_required": coerce_text(data.get("action_required"), "acknowledgment"),
        "topics": coerce_list(data.get("topics")),
        "sentiment": coerce_text(data.get("sentiment"), "neutral").lower(),
        "compliance_flags": coerce_list(data.get("compliance_flags")),
        "reasoning": coerce_text(data.get("reasoning"), "classified"),
        "defaulted": False,
        "schema_variant": variant,
    }
    if variant == "mail":
        fields["related_entity_pattern"] = coerce_text(data.get("related_entity_pattern"))
        fields["routing_hint"] = coerce_text(data.get("routing_hint"))
        fields["auto_response_eligible"] = _as_bool(data.get("auto_response_eligible"))
    return ClassificationResult(**fields)


class Classifier:
    component_name = "classifier"

    def __init__(
        self,
        adapter: AnalysisAdapter,
        context: IntakeContext,
        prompt_repo: Optional[ComponentPromptRepository] = None,
    ):
        self.adapter = adapter
        self.context = context
        self.prompt_repo = prompt_repo or ComponentPromptRepository()

    @staticmethod
    def schema_variant(kind: InputKind) -> str:
        return "mail" if kind.is_mail_like else "generic"

    def build_prompt(self, kind: InputKind, envelope: NormalizedEnvelope) -> str:
        lines = [f"Input kind: {kind.value}", f"Source: {envelope.source}"]
        if envelope.subject:
            lines.append(f"Subject: {envelope.subject}")
        if envelope.attachments:
            lines.append("Attachments: " + ", ".join(a.filename for a in envelope.attachments))
        lines.append("")
        lines.append(envelope.content[: self.context.classifier_content_limit])
        return "\n".join(lines)

    def _default(self, variant: str) -> ClassificationResult:
        intake_stage_degradations_total.labels(stage=self.component_name).inc()
        return ClassificationResult(schema_variant=variant)

    async def classify(self, kind: InputKind, envelope: NormalizedEnvelope) -> ClassificationResult:
        variant = self.schema_variant(kind)
        try:
            system_prompt = self.prompt_repo.get_system_prompt(f"classifier_{variant}")
            text = await self.adapter.analyze(self.build_prompt(kind, envelope), system_prompt=system_prompt)
        except Exception as e:
            logger.warning(
                f"Classification failed, using defaults: {e}",
                extra={"input_kind": kind.value, "error_type": type(e).__name__},
            )
            return self._default(variant)

        data = extract_json_object(text)
        if data is None:
            logger.warning(
                "Classifier response had no JSON object, using defaults",
                extra={"input_kind": kind.value, "response_preview": (text or "")[:200]},
            )
            return self._default(variant)

        result = coerce_classification(data, variant)
        logger.debug(
            "Classified envelope",
            extra={
                "input_kind": kind.value,
                "category": result.category,
                "priority": result.priority.value,
            },
        )
        return result
