"""
Action Planner component.

Role: Map (classification, routing decision) to an ordered ActionPlan.

``plan`` is pure: identical inputs give identical plans. ROUTE is always
first, then MINT_ID, AUTO_RESPOND, CREATE_THREAD and ESCALATE in that
relative order when they apply.

``carry_out`` performs the collaborator-backed actions of a plan (minting,
reply drafting, thread sync). Each failure is written into that action's
payload as ``error``; the rest of the plan still runs.
"""

from __future__ import annotations

import secrets
import time
from typing import Any, Dict, List, Optional, Protocol

from pydantic import BaseModel

from intakeflow.components.contracts import (Action, ActionPlan, ActionType,
                                             ClassificationResult, InputKind,
                                             NormalizedEnvelope, Priority,
                                             RoutingDecision)
from intakeflow.components.prompt_repository import ComponentPromptRepository
from intakeflow.core.intake_context import IntakeContext
from intakeflow.core.llm_client import AnalysisAdapter
from intakeflow.core.logging_config import LoggingConfig
from intakeflow.services.thread_sync_client import (ThreadSyncRequest,
                                                    ThreadSyncResult)

logger = LoggingConfig.get_logger(__name__)


class IdentifierMinter(Protocol):
    async def mint(self, purpose: str) -> str:
        ...


class ThreadSync(Protocol):
    async def sync(self, request: ThreadSyncRequest) -> ThreadSyncResult:
        ...


class PlanOutcome(BaseModel):
    plan: ActionPlan
    correlation_id: str


def pending_identifier(kind: InputKind) -> str:
    """Locally generated stand-in when the minting service is unavailable"""
    return f"pending-{kind.value}-{int(time.time() * 1000)}-{secrets.token_hex(4)}"


class ActionPlanner:
    component_name = "action_planner"
    reply_prompt_name = "auto_response"

    def __init__(
        self,
        context: IntakeContext,
        minter: Optional[IdentifierMinter] = None,
        thread_sync: Optional[ThreadSync] = None,
        responder: Optional[AnalysisAdapter] = None,
        prompt_repo: Optional[ComponentPromptRepository] = None,
    ):
        self.context = context
        self.minter = minter
        self.thread_sync = thread_sync
        self.responder = responder
        self.prompt_repo = prompt_repo or ComponentPromptRepository()

    def auto_response_allowed(self, classification: ClassificationResult) -> bool:
        if not classification.auto_response_eligible:
            return False
        allowed = self.context.auto_response_categories
        return not allowed or classification.category in allowed

    def plan(self, classification: ClassificationResult, routing: RoutingDecision) -> ActionPlan:
        actions = [
            Action(
                type=ActionType.ROUTE,
                payload={
                    "destination": routing.primary_route,
                    "priority_queue": routing.priority_queue,
                    "priority": classification.priority.value,
                    "secondary_routes": list(routing.secondary_routes),
                },
            ),
            Action(type=ActionType.MINT_ID, payload={"category": classification.category}),
        ]

        if self.auto_response_allowed(classification):
            actions.append(Action(
                type=ActionType.AUTO_RESPOND,
                payload={"category": classification.category},
                timing="after_mint",
            ))

        if classification.indicates_case_relation:
            actions.append(Action(
                type=ActionType.CREATE_THREAD,
                payload={
                    "pattern": classification.related_entity_pattern,
                    "parties": list(classification.related_entities),
                    "jurisdiction": classification.jurisdiction,
                },
            ))

        if classification.priority is Priority.CRITICAL:
            actions.append(Action(
                type=ActionType.ESCALATE,
                payload={
                    "reason": "critical priority",
                    "destination": routing.primary_route,
                    "urgency_score": classification.urgency_score,
                },
            ))

        return ActionPlan(actions=actions)

    # ------------------------------------------------------------------
    # Execution of collaborator-backed actions
    # ------------------------------------------------------------------

    async def _mint(self, kind: InputKind, envelope: NormalizedEnvelope, payload: Dict[str, Any]) -> Dict[str, Any]:
        if envelope.correlation_id:
            return {**payload, "id": envelope.correlation_id, "pending": False, "confirmed": True}

        purpose = f"intake:{kind.value}:{payload.get('category', 'general')}"
        if self.minter is None:
            return {**payload, "purpose": purpose, "id": pending_identifier(kind), "pending": True,
                    "error": "no minting service configured"}
        try:
            identifier = await self.minter.mint(purpose)
        except Exception as e:
            logger.warning(f"Minting failed, using pending identifier: {e}", extra={"input_kind": kind.value})
            return {**payload, "purpose": purpose, "id": pending_identifier(kind), "pending": True, "error": str(e)}
        return {**payload, "purpose": purpose, "id": identifier, "pending": False}

    async def _draft_reply(
        self, envelope: NormalizedEnvelope, correlation_id: str, payload: Dict[str, Any], priority: str
    ) -> Dict[str, Any]:
        subject = f"Re: {envelope.subject}" if envelope.subject else "Re: your message"
        base = {**payload, "to": envelope.sender or envelope.source, "subject": subject, "reference": correlation_id}
        if self.responder is None:
            return {**base, "error": "no responder configured"}

        prompt = "\n".join([
            f"Sender: {envelope.sender or envelope.source}",
            f"Subject: {envelope.subject or ''}",
            f"Category: {payload.get('category')}",
            f"Priority: {priority}",
            f"Reference number: {correlation_id}",
        ])
        try:
            body = await self.responder.analyze(
                prompt, system_prompt=self.prompt_repo.get_system_prompt(self.reply_prompt_name)
            )
        except Exception as e:
            logger.warning(f"Auto-response drafting failed: {e}")
            return {**base, "error": str(e)}
        body = (body or "").strip()
        if not body:
            return {**base, "error": "empty reply draft"}
        return {**base, "body": body}

    async def _sync_thread(
        self, kind: InputKind, correlation_id: str, payload: Dict[str, Any]
    ) -> Dict[str, Any]:
        if self.thread_sync is None:
            return {**payload, "synced": False, "error": "no thread sync configured"}
        request = ThreadSyncRequest(
            pattern=payload.get("pattern"),
            parties=payload.get("parties") or [],
            jurisdiction=payload.get("jurisdiction"),
            kind=kind.value,
            correlation_id=correlation_id,
        )
        try:
            result = await self.thread_sync.sync(request)
        except Exception as e:
            logger.warning(f"Thread sync failed, thread left unsynced: {e}", extra={"input_kind": kind.value})
            return {**payload, "synced": False, "error": str(e)}
        if not result.synced:
            return {**payload, "synced": False, "error": result.reason or "thread sync declined"}
        return {**payload, "synced": True, "thread_id": result.thread_id, "room_id": result.room_id}

    async def carry_out(self, plan: ActionPlan, kind: InputKind, envelope: NormalizedEnvelope) -> PlanOutcome:
        """Run minting first so later actions can cite the correlation identifier"""
        payloads: List[Dict[str, Any]] = [dict(a.payload) for a in plan.actions]
        priority = plan.actions[0].payload.get("priority", Priority.NORMAL.value)

        correlation_id = envelope.correlation_id
        for index, action in enumerate(plan.actions):
            if action.type is ActionType.MINT_ID:
                payloads[index] = await self._mint(kind, envelope, payloads[index])
                correlation_id = payloads[index]["id"]
        if correlation_id is None:
            correlation_id = pending_identifier(kind)

        for index, action in enumerate(plan.actions):
            if action.type is ActionType.AUTO_RESPOND:
                payloads[index] = await self._draft_reply(envelope, correlation_id, payloads[index], priority)
            elif action.type is ActionType.CREATE_THREAD:
                payloads[index] = await self._sync_thread(kind, correlation_id, payloads[index])

        executed = ActionPlan(actions=[
            action.model_copy(update={"payload": payload}) for action, payload in zip(plan.actions, payloads)
        ])
        return PlanOutcome(plan=executed, correlation_id=correlation_id)
