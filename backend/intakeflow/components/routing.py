"""
Decision Routing Center component.

Role: Combine classification and trust into a RoutingDecision.
Model role: Deterministic state machine, optional AI refinement for mail.

States come from TrustAssessment.state:
- UNTRUSTED   -> fixed quarantine route, the category table is skipped
- UNEVALUATED -> category table, reasoning marked "trust unevaluated"
- TRUSTED     -> category table

After the table decision, an ordered list of refiners may add secondary
routes, handling flags and a response-time estimate. Refiners never change
the primary route; a failing refiner is skipped and recorded.
"""

from __future__ import annotations

from typing import Dict, List, Optional, Protocol, Sequence

from pydantic import BaseModel, Field

from intakeflow.components.classifier import (coerce_list, coerce_text,
                                              extract_json_object)
from intakeflow.components.contracts import (ClassificationResult, InputKind,
                                             NormalizedEnvelope, Priority,
                                             RoutingDecision, TrustAssessment,
                                             TrustState)
from intakeflow.components.prompt_repository import ComponentPromptRepository
from intakeflow.core.intake_context import IntakeContext
from intakeflow.core.llm_client import AnalysisAdapter
from intakeflow.core.logging_config import LoggingConfig

logger = LoggingConfig.get_logger(__name__)

TRUST_UNEVALUATED_MARKER = "trust unevaluated"

CATEGORY_ROUTES: Dict[str, str] = {
    "document_submission": "documents",
    "court_notice": "case-management",
    "lawsuit": "case-management",
    "emergency": "emergency",
    "billing": "billing",
    "appointment": "calendar",
}


def priority_queue_for(classification: ClassificationResult) -> str:
    return "immediate" if classification.priority is Priority.CRITICAL else "normal"


class RoutingRefinement(BaseModel):
    secondary_routes: List[str] = Field(default_factory=list)
    special_handling: List[str] = Field(default_factory=list)
    estimated_response_time: Optional[str] = None


class RoutingRefiner(Protocol):
    name: str

    def applies_to(self, kind: InputKind) -> bool:
        ...

    async def refine(
        self,
        envelope: NormalizedEnvelope,
        classification: ClassificationResult,
        decision: RoutingDecision,
    ) -> RoutingRefinement:
        ...


class LLMRoutingRefiner:
    """Second-pass routing for mail: secondary destinations and handling flags"""

    name = "llm_routing_refiner"
    prompt_name = "routing_refinement"

    def __init__(
        self,
        adapter: AnalysisAdapter,
        context: IntakeContext,
        prompt_repo: Optional[ComponentPromptRepository] = None,
    ):
        self.adapter = adapter
        self.context = context
        self.prompt_repo = prompt_repo or ComponentPromptRepository()

    def applies_to(self, kind: InputKind) -> bool:
        return kind.is_mail_like

    def build_prompt(
        self,
        envelope: NormalizedEnvelope,
        classification: ClassificationResult,
        decision: RoutingDecision,
    ) -> str:
        return "\n".join([
            f"Primary destination: {decision.primary_route}",
            f"Category: {classification.category}",
            f"Priority: {classification.priority.value}",
            f"Routing hint: {classification.routing_hint or 'none'}",
            f"From: {envelope.sender or envelope.source}",
            f"Subject: {envelope.subject or ''}",
            "",
            envelope.content[: self.context.classifier_content_limit],
        ])

    async def refine(
        self,
        envelope: NormalizedEnvelope,
        classification: ClassificationResult,
        decision: RoutingDecision,
    ) -> RoutingRefinement:
        system_prompt = self.prompt_repo.get_system_prompt(self.prompt_name)
        text = await self.adapter.analyze(
            self.build_prompt(envelope, classification, decision), system_prompt=system_prompt
        )
        data = extract_json_object(text)
        if data is None:
            raise ValueError("refinement response contained no JSON object")
        return RoutingRefinement(
            secondary_routes=coerce_list(data.get("cc_routes", data.get("secondary_routes"))),
            special_handling=coerce_list(data.get("special_handling")),
            estimated_response_time=coerce_text(data.get("estimated_response_time")),
        )


class DecisionRoutingCenter:
    component_name = "routing"

    def __init__(self, context: IntakeContext, refiners: Sequence[RoutingRefiner] = ()):
        self.context = context
        self.refiners = list(refiners)

    def route_for_category(self, category: str) -> str:
        return CATEGORY_ROUTES.get(category, self.context.default_route)

    def _quarantine_reasoning(self, trust: TrustAssessment) -> str:
        threshold = self.context.trust_threshold
        score = trust.composite_score
        if score is None:
            comparison = f"no trust score reported (threshold {threshold:g})"
        elif score < threshold:
            comparison = f"trust score {score:g} is below threshold {threshold:g}"
        else:
            comparison = f"trust score {score:g} meets threshold {threshold:g} but the verdict overrides it"
        return f"Quarantined: {comparison} ({trust.authority} verdict untrusted)"

    def base_decision(
        self, kind: InputKind, classification: ClassificationResult, trust: TrustAssessment
    ) -> RoutingDecision:
        """Table decision without refinement; pure"""
        queue = priority_queue_for(classification)

        if trust.state is TrustState.UNTRUSTED:
            return RoutingDecision(
                primary_route=self.context.quarantine_route,
                priority_queue=queue,
                reasoning=self._quarantine_reasoning(trust),
                trust_flags=list(trust.flags),
                trust_state=trust.state,
            )

        route = self.route_for_category(classification.category)
        reasoning = f"{kind.value} with category '{classification.category}' routes to {route}"
        if classification.defaulted:
            reasoning += " (classification defaulted)"

        trust_flags: List[str] = []
        if trust.state is TrustState.UNEVALUATED:
            reasoning += f"; {TRUST_UNEVALUATED_MARKER}, apply stricter handling downstream"
            trust_flags = list(trust.flags)

        return RoutingDecision(
            primary_route=route,
            priority_queue=queue,
            reasoning=reasoning,
            trust_flags=trust_flags,
            trust_state=trust.state,
        )

    async def _refine(
        self,
        decision: RoutingDecision,
        kind: InputKind,
        envelope: NormalizedEnvelope,
        classification: ClassificationResult,
    ) -> RoutingDecision:
        secondary = list(decision.secondary_routes)
        handling = list(decision.special_handling)
        eta = decision.estimated_response_time
        errors = list(decision.refinement_errors)

        for refiner in self.refiners:
            if not refiner.applies_to(kind):
                continue
            try:
                refinement = await refiner.refine(envelope, classification, decision)
            except Exception as e:
                logger.warning(
                    f"Routing refiner {refiner.name} failed, keeping {decision.primary_route}: {e}",
                    extra={"refiner": refiner.name, "error_type": type(e).__name__},
                )
                errors.append(f"{refiner.name}: {e}")
                continue
            for route in refinement.secondary_routes:
                if route != decision.primary_route and route not in secondary:
                    secondary.append(route)
            for flag in refinement.special_handling:
                if flag not in handling:
                    handling.append(flag)
            eta = refinement.estimated_response_time or eta

        return decision.model_copy(update={
            "secondary_routes": secondary,
            "special_handling": handling,
            "estimated_response_time": eta,
            "refinement_errors": errors,
        })

    async def decide(
        self,
        kind: InputKind,
        envelope: NormalizedEnvelope,
        classification: ClassificationResult,
        trust: TrustAssessment,
    ) -> RoutingDecision:
        decision = self.base_decision(kind, classification, trust)
        if decision.quarantined or not self.refiners:
            return decision
        return await self._refine(decision, kind, envelope, classification)
