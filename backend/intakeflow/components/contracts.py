"""
Contract models for the intake pipeline components.

Every entity is created fresh per pipeline run. Models that must not change
after creation (envelopes, assessments, audit records) are frozen; the
routing decision and action plan are rebuilt with ``model_copy`` when a later
step enriches them.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import (BaseModel, ConfigDict, Field, computed_field,
                      model_validator)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InputKind(str, Enum):
    """Closed set of inbound item kinds"""
    EMAIL = "email"
    DOCUMENT = "document"
    VOICE = "voice"
    IMAGE = "image"
    FORM = "form"
    WEBHOOK = "webhook"
    SMS = "sms"
    CHAT = "chat"
    API = "api"
    UNKNOWN = "unknown"

    @property
    def is_mail_like(self) -> bool:
        return self is InputKind.EMAIL


class Priority(str, Enum):
    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    NORMAL = "NORMAL"
    LOW = "LOW"


class AttachmentRef(BaseModel):
    model_config = ConfigDict(frozen=True)

    filename: str = "unnamed"
    size: Optional[int] = None
    content_type: Optional[str] = None


class NormalizedEnvelope(BaseModel):
    """Canonical, kind-independent representation of one inbound item"""

    model_config = ConfigDict(frozen=True)

    correlation_id: Optional[str] = None
    kind: InputKind
    source: str = "unknown"
    received_at: datetime = Field(default_factory=utcnow)
    content: str = ""
    raw: Any = None
    subject: Optional[str] = None
    sender: Optional[str] = None
    recipients: List[str] = Field(default_factory=list)
    attachments: List[AttachmentRef] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)


class ClassificationResult(BaseModel):
    """
    Structured classification of an envelope.

    The bare constructor yields the documented default used whenever the
    AI backend fails or returns nothing parseable.
    """

    category: str = "general"
    priority: Priority = Priority.NORMAL
    urgency_score: float = Field(default=0.5, ge=0.0, le=1.0)
    related_entity_pattern: Optional[str] = None
    case_related: bool = False
    related_entities: List[str] = Field(default_factory=list)
    jurisdiction: Optional[str] = None
    action_required: str = "acknowledgment"
    routing_hint: Optional[str] = None
    auto_response_eligible: bool = False
    topics: List[str] = Field(default_factory=list)
    sentiment: str = "neutral"
    compliance_flags: List[str] = Field(default_factory=list)
    reasoning: str = "defaulted"
    defaulted: bool = True
    schema_variant: str = "generic"

    @property
    def indicates_case_relation(self) -> bool:
        return self.case_related or bool(self.related_entity_pattern)


class TrustState(str, Enum):
    TRUSTED = "TRUSTED"
    UNTRUSTED = "UNTRUSTED"
    UNEVALUATED = "UNEVALUATED"


class TrustAssessment(BaseModel):
    model_config = ConfigDict(frozen=True)

    state: TrustState = TrustState.UNEVALUATED
    composite_score: Optional[float] = None
    flags: List[str] = Field(default_factory=list)
    authority: str = "unknown"

    @computed_field  # type: ignore[misc]
    @property
    def trusted(self) -> Optional[bool]:
        """Tri-state view: True, False, or None when never evaluated"""
        if self.state is TrustState.TRUSTED:
            return True
        if self.state is TrustState.UNTRUSTED:
            return False
        return None


class RoutingDecision(BaseModel):
    primary_route: str
    priority_queue: str = "normal"
    reasoning: str = ""
    trust_flags: List[str] = Field(default_factory=list)
    trust_state: TrustState = TrustState.UNEVALUATED
    secondary_routes: List[str] = Field(default_factory=list)
    special_handling: List[str] = Field(default_factory=list)
    estimated_response_time: Optional[str] = None
    refinement_errors: List[str] = Field(default_factory=list)

    @property
    def quarantined(self) -> bool:
        return self.trust_state is TrustState.UNTRUSTED


class ActionType(str, Enum):
    ROUTE = "ROUTE"
    MINT_ID = "MINT_ID"
    AUTO_RESPOND = "AUTO_RESPOND"
    CREATE_THREAD = "CREATE_THREAD"
    ESCALATE = "ESCALATE"


class Action(BaseModel):
    type: ActionType
    payload: Dict[str, Any] = Field(default_factory=dict)
    timing: str = "immediate"


class ActionPlan(BaseModel):
    actions: List[Action]

    @model_validator(mode="after")
    def route_comes_first(self) -> "ActionPlan":
        if not self.actions or self.actions[0].type is not ActionType.ROUTE:
            raise ValueError("an action plan must start with a ROUTE action")
        return self

    @property
    def types(self) -> List[ActionType]:
        return [a.type for a in self.actions]

    def find(self, action_type: ActionType) -> Optional[Action]:
        for action in self.actions:
            if action.type is action_type:
                return action
        return None


class AttachmentAnalysis(BaseModel):
    filename: str
    analyzed: bool
    category: Optional[str] = None
    importance: Optional[str] = None
    error: Optional[str] = None


class AttachmentSummary(BaseModel):
    total_files: int = 0
    categories: List[str] = Field(default_factory=list)
    highest_importance: str = "normal"


class AttachmentReport(BaseModel):
    has_attachments: bool = False
    count: int = 0
    analyses: List[AttachmentAnalysis] = Field(default_factory=list)
    summary: AttachmentSummary = Field(default_factory=AttachmentSummary)


class AuditRecord(BaseModel):
    """One immutable record per pipeline run"""

    model_config = ConfigDict(frozen=True)

    audit_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    correlation_id: Optional[str] = None
    kind: InputKind
    sanitized_envelope: Dict[str, Any] = Field(default_factory=dict)
    classification: Optional[ClassificationResult] = None
    trust: Optional[TrustAssessment] = None
    routing: RoutingDecision
    actions: List[Action] = Field(default_factory=list)
    degraded: bool = False
    fallback: bool = False
    error: Optional[str] = None
    recorded_at: datetime = Field(default_factory=utcnow)


class IntakeResult(BaseModel):
    """What the caller gets back from one ingest call"""

    correlation_id: Optional[str] = None
    kind: InputKind
    fallback: bool = False
    degraded: bool = False
    error: Optional[str] = None
    source: Optional[str] = None
    received_at: Optional[datetime] = None
    classification: Optional[ClassificationResult] = None
    trust: Optional[TrustAssessment] = None
    routing: RoutingDecision
    actions: List[Action] = Field(default_factory=list)
    attachments: Optional[AttachmentReport] = None
    audit_id: Optional[str] = None
