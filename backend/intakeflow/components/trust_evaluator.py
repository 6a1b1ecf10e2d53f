"""
Trust Evaluator component.

Role: Ask the external trust authority about an envelope and turn the answer
into a tri-state TrustAssessment. An unreachable or failing authority is the
UNEVALUATED state, never an exception.
"""

from __future__ import annotations

from typing import List, Protocol

from intakeflow.components.contracts import (ClassificationResult, InputKind,
                                             NormalizedEnvelope,
                                             TrustAssessment, TrustState)
from intakeflow.core.intake_context import IntakeContext
from intakeflow.core.logging_config import LoggingConfig
from intakeflow.core.metrics import intake_stage_degradations_total
from intakeflow.services.trust_authority_client import (TrustRequest,
                                                        TrustVerdict)

logger = LoggingConfig.get_logger(__name__)

AUTHORITY_UNAVAILABLE = "authority-unavailable"
AUTHORITY_MALFORMED = "authority-malformed-response"
AUTHORITY_SCORE_ONLY = "authority-score-only"


class TrustAuthority(Protocol):
    async def evaluate(self, request: TrustRequest) -> TrustVerdict:
        ...


class TrustEvaluator:
    component_name = "trust_evaluator"

    def __init__(self, authority: TrustAuthority, context: IntakeContext):
        self.authority = authority
        self.context = context

    @property
    def authority_name(self) -> str:
        return getattr(self.authority, "name", "trust_authority")

    def build_request(
        self, kind: InputKind, envelope: NormalizedEnvelope, classification: ClassificationResult
    ) -> TrustRequest:
        return TrustRequest(
            content=envelope.content[: self.context.trust_content_limit],
            source=envelope.source,
            kind=kind.value,
            category=classification.category,
            priority=classification.priority.value,
        )

    def _unevaluated(self, flag: str) -> TrustAssessment:
        intake_stage_degradations_total.labels(stage=self.component_name).inc()
        return TrustAssessment(
            state=TrustState.UNEVALUATED,
            composite_score=None,
            flags=[flag],
            authority=self.authority_name,
        )

    def _resolve(self, verdict: TrustVerdict) -> TrustAssessment:
        flags: List[str] = list(dict.fromkeys(verdict.flags))
        if verdict.trusted is not None:
            state = TrustState.TRUSTED if verdict.trusted else TrustState.UNTRUSTED
        elif verdict.score is not None:
            # Decision derived locally from the score when the verdict is absent
            state = TrustState.TRUSTED if verdict.score >= self.context.trust_threshold else TrustState.UNTRUSTED
            flags.append(AUTHORITY_SCORE_ONLY)
        else:
            logger.warning("Trust authority answered without score or verdict")
            return self._unevaluated(AUTHORITY_MALFORMED)

        return TrustAssessment(
            state=state,
            composite_score=verdict.score,
            flags=flags,
            authority=self.authority_name,
        )

    async def evaluate(
        self, kind: InputKind, envelope: NormalizedEnvelope, classification: ClassificationResult
    ) -> TrustAssessment:
        request = self.build_request(kind, envelope, classification)
        try:
            verdict = await self.authority.evaluate(request)
        except Exception as e:
            logger.warning(
                f"Trust authority unavailable, leaving trust unevaluated: {e}",
                extra={"input_kind": kind.value, "error_type": type(e).__name__},
            )
            return self._unevaluated(AUTHORITY_UNAVAILABLE)

        assessment = self._resolve(verdict)
        logger.debug(
            "Trust evaluated",
            extra={"trust_state": assessment.state.value, "composite_score": assessment.composite_score},
        )
        return assessment
