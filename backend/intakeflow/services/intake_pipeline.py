"""
Intake Pipeline: the single public entry point for inbound items
Combines: Type Detector → Normalizer → Classifier → Trust Evaluator →
Routing → Action Planner → Audit Logger
"""
import time
from typing import Any, Optional, Sequence

from intakeflow.components.action_planner import (ActionPlanner,
                                                  IdentifierMinter,
                                                  ThreadSync,
                                                  pending_identifier)
from intakeflow.components.attachment_analyzer import AttachmentAnalyzer
from intakeflow.components.audit_logger import AuditLogger
from intakeflow.components.classifier import Classifier
from intakeflow.components.contracts import (Action, ActionType,
                                             AttachmentReport,
                                             ClassificationResult, InputKind,
                                             IntakeResult, NormalizedEnvelope,
                                             Priority, RoutingDecision,
                                             TrustAssessment, TrustState)
from intakeflow.components.normalizer import Normalizer
from intakeflow.components.prompt_repository import ComponentPromptRepository
from intakeflow.components.routing import (DecisionRoutingCenter,
                                           LLMRoutingRefiner, RoutingRefiner)
from intakeflow.components.trust_evaluator import (TrustAuthority,
                                                   TrustEvaluator)
from intakeflow.components.type_detector import TypeDetector
from intakeflow.core.config import Settings, get_settings
from intakeflow.core.errors import NormalizationError
from intakeflow.core.intake_context import IntakeContext
from intakeflow.core.llm_client import AnalysisAdapter, LLMClient
from intakeflow.core.logging_config import LoggingConfig
from intakeflow.core.metrics import (intake_pipeline_duration_seconds,
                                     intake_requests_total,
                                     intake_stage_degradations_total)
from intakeflow.core.tracing import (add_span_attributes, get_tracer,
                                     stage_span)
from intakeflow.services.audit_sink import (AuditSink, DatabaseAuditSink,
                                            InMemoryAuditSink)
from intakeflow.services.minting_client import MintingClient
from intakeflow.services.thread_sync_client import ThreadSyncClient
from intakeflow.services.trust_authority_client import TrustAuthorityClient

logger = LoggingConfig.get_logger(__name__)

ATTACHMENT_KINDS = (InputKind.EMAIL, InputKind.DOCUMENT)


class IntakePipeline:
    """Stateless intake pipeline; one instance serves many concurrent runs"""

    def __init__(
        self,
        context: IntakeContext,
        adapter: AnalysisAdapter,
        trust_authority: TrustAuthority,
        audit_sink: AuditSink,
        minter: Optional[IdentifierMinter] = None,
        thread_sync: Optional[ThreadSync] = None,
        refiners: Optional[Sequence[RoutingRefiner]] = None,
        prompt_repo: Optional[ComponentPromptRepository] = None,
    ):
        """
        Initialize Intake Pipeline

        Args:
            context: Immutable pipeline configuration
            adapter: AI analysis adapter (classification, refinement, replies, attachments)
            trust_authority: External trust authority
            audit_sink: Append-only audit sink
            minter: Identifier minting service (pending identifiers when absent)
            thread_sync: Case/thread sync collaborator
            refiners: Routing refiners; defaults to the AI mail refiner
            prompt_repo: System prompt repository
        """
        prompt_repo = prompt_repo or ComponentPromptRepository()
        if refiners is None:
            refiners = [LLMRoutingRefiner(adapter, context, prompt_repo)]

        self.context = context
        self.audit_sink = audit_sink
        self.detector = TypeDetector()
        self.normalizer = Normalizer()
        self.classifier = Classifier(adapter, context, prompt_repo)
        self.trust_evaluator = TrustEvaluator(trust_authority, context)
        self.router = DecisionRoutingCenter(context, refiners)
        self.planner = ActionPlanner(context, minter, thread_sync, adapter, prompt_repo)
        self.attachment_analyzer = AttachmentAnalyzer(adapter, prompt_repo)
        self.audit_logger = AuditLogger(audit_sink, context)
        self.tracer = get_tracer(__name__)

    @classmethod
    def from_settings(
        cls, settings: Optional[Settings] = None, audit_sink: Optional[AuditSink] = None
    ) -> "IntakePipeline":
        settings = settings or get_settings()
        context = IntakeContext.from_settings(settings)
        if audit_sink is None:
            if settings.audit_sink == "memory":
                audit_sink = InMemoryAuditSink(settings.audit_memory_max_records)
            else:
                audit_sink = DatabaseAuditSink()
        return cls(
            context=context,
            adapter=LLMClient.from_settings(settings),
            trust_authority=TrustAuthorityClient.from_context(context),
            audit_sink=audit_sink,
            minter=MintingClient.from_context(context),
            thread_sync=ThreadSyncClient.from_context(context),
        )

    async def ingest(self, raw: Any, retain_raw: Optional[bool] = None) -> IntakeResult:
        """
        Run one inbound item through the whole pipeline.

        Never raises. Stage failures surface as defaults and flags; a payload
        that cannot be normalized (or any unexpected error after detection)
        yields a fallback result routed to the default destination. Every
        run, fallback included, writes one audit record.
        """
        with LoggingConfig.scoped_context(), self.tracer.start_as_current_span("intake_pipeline.ingest") as span:
            return await self._run(raw, retain_raw, span)

    async def _run(self, raw: Any, retain_raw: Optional[bool], span) -> IntakeResult:
        start = time.time()
        kind = InputKind.UNKNOWN
        try:
            with stage_span(self.tracer, "detect"):
                kind = self.detector.detect(raw)
            LoggingConfig.set_context(input_kind=kind.value)
            add_span_attributes(span, input_kind=kind.value)

            with stage_span(self.tracer, "normalize"):
                envelope = self.normalizer.normalize(kind, raw)
        except NormalizationError as e:
            logger.error(f"Normalization failed, using fallback route: {e}", exc_info=True)
            return await self._fallback(kind, raw, e, retain_raw, start)
        except Exception as e:
            logger.error(f"Unexpected error before normalization completed: {e}", exc_info=True)
            return await self._fallback(kind, raw, e, retain_raw, start)

        try:
            result = await self._process(kind, envelope, retain_raw)
        except Exception as e:
            logger.error(f"Unexpected pipeline error, using fallback route: {e}", exc_info=True)
            return await self._fallback(kind, raw, e, retain_raw, start, envelope.correlation_id)

        outcome = "degraded" if result.degraded else "normal"
        add_span_attributes(
            span,
            correlation_id=result.correlation_id,
            primary_route=result.routing.primary_route,
            outcome=outcome,
        )
        self._observe(kind, outcome, start)
        return result

    async def _process(
        self, kind: InputKind, envelope: NormalizedEnvelope, retain_raw: Optional[bool]
    ) -> IntakeResult:
        with stage_span(self.tracer, "classify"):
            classification = await self.classifier.classify(kind, envelope)

        with stage_span(self.tracer, "trust"):
            trust = await self.trust_evaluator.evaluate(kind, envelope, classification)

        with stage_span(self.tracer, "route"):
            routing = await self.router.decide(kind, envelope, classification, trust)

        with stage_span(self.tracer, "plan"):
            plan = self.planner.plan(classification, routing)
            outcome = await self.planner.carry_out(plan, kind, envelope)

        correlation_id = outcome.correlation_id
        envelope = envelope.model_copy(update={"correlation_id": correlation_id})
        LoggingConfig.set_context(correlation_id=correlation_id)

        attachments: Optional[AttachmentReport] = None
        if kind in ATTACHMENT_KINDS and envelope.attachments:
            with stage_span(self.tracer, "attachments", attachment_count=len(envelope.attachments)):
                attachments = await self.attachment_analyzer.analyze(envelope)

        degraded = classification.defaulted or trust.state is TrustState.UNEVALUATED
        audit_id = await self._audit(
            kind=kind,
            envelope=envelope,
            classification=classification,
            trust=trust,
            routing=routing,
            actions=outcome.plan.actions,
            degraded=degraded,
            retain_raw=retain_raw,
        )

        logger.info(
            "Intake processed",
            extra={
                "primary_route": routing.primary_route,
                "trust_state": trust.state.value,
                "degraded": degraded,
                "actions": [a.type.value for a in outcome.plan.actions],
            },
        )
        return IntakeResult(
            correlation_id=correlation_id,
            kind=kind,
            degraded=degraded,
            source=envelope.source,
            received_at=envelope.received_at,
            classification=classification,
            trust=trust,
            routing=routing,
            actions=outcome.plan.actions,
            attachments=attachments,
            audit_id=audit_id,
        )

    async def _fallback(
        self,
        kind: InputKind,
        raw: Any,
        error: Exception,
        retain_raw: Optional[bool],
        start: float,
        correlation_id: Optional[str] = None,
    ) -> IntakeResult:
        correlation_id = correlation_id or pending_identifier(kind)
        routing = RoutingDecision(
            primary_route=self.context.default_route,
            priority_queue="normal",
            reasoning=f"fallback after {type(error).__name__}; routed to default intake for manual review",
            trust_state=TrustState.UNEVALUATED,
        )
        actions = [Action(
            type=ActionType.ROUTE,
            payload={
                "destination": routing.primary_route,
                "priority_queue": routing.priority_queue,
                "priority": Priority.NORMAL.value,
            },
        )]
        audit_id = await self._audit(
            kind=kind,
            envelope=None,
            classification=None,
            trust=None,
            routing=routing,
            actions=actions,
            degraded=True,
            fallback=True,
            error=str(error),
            raw=raw,
            retain_raw=retain_raw,
            correlation_id=correlation_id,
        )
        self._observe(kind, "fallback", start)
        return IntakeResult(
            correlation_id=correlation_id,
            kind=kind,
            fallback=True,
            degraded=True,
            error=str(error),
            routing=routing,
            actions=actions,
            audit_id=audit_id,
        )

    async def _audit(
        self,
        kind: InputKind,
        envelope: Optional[NormalizedEnvelope],
        classification: Optional[ClassificationResult],
        trust: Optional[TrustAssessment],
        routing: RoutingDecision,
        actions: Sequence[Action],
        degraded: bool,
        fallback: bool = False,
        error: Optional[str] = None,
        raw: Any = None,
        retain_raw: Optional[bool] = None,
        correlation_id: Optional[str] = None,
    ) -> Optional[str]:
        with stage_span(self.tracer, "audit"):
            try:
                record = await self.audit_logger.record(
                    kind,
                    envelope,
                    classification,
                    trust,
                    routing,
                    list(actions),
                    degraded,
                    fallback=fallback,
                    error=error,
                    raw=raw,
                    retain_raw=retain_raw,
                    correlation_id=correlation_id,
                )
            except Exception as e:
                intake_stage_degradations_total.labels(stage=AuditLogger.component_name).inc()
                logger.error(f"Audit write failed: {e}", exc_info=True)
                return None
        return record.audit_id

    @staticmethod
    def _observe(kind: InputKind, outcome: str, start: float) -> None:
        intake_requests_total.labels(kind=kind.value, outcome=outcome).inc()
        intake_pipeline_duration_seconds.labels(kind=kind.value).observe(time.time() - start)
