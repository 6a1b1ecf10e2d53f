import re

import pytest

from fakes import FakeAdapter, FakeMinter, FakePromptRepository, FakeThreadSync
from intakeflow.components.action_planner import (ActionPlanner,
                                                  pending_identifier)
from intakeflow.components.contracts import (ActionType,
                                             ClassificationResult, InputKind,
                                             Priority, RoutingDecision)
from intakeflow.components.normalizer import normalize
from intakeflow.core.intake_context import IntakeContext
from intakeflow.services.thread_sync_client import ThreadSyncResult

ROUTING = RoutingDecision(primary_route="case-management", priority_queue="normal")
MAIL = normalize(InputKind.EMAIL, {"from": "client@example.com", "subject": "Hearing", "body": "tomorrow"})


def _classification(**fields):
    fields.setdefault("defaulted", False)
    return ClassificationResult(**fields)


def _planner(context=None, **collaborators):
    return ActionPlanner(context or IntakeContext(), prompt_repo=FakePromptRepository(), **collaborators)


def test_minimal_plan_is_route_then_mint():
    plan = _planner().plan(_classification(), ROUTING)
    assert plan.types == [ActionType.ROUTE, ActionType.MINT_ID]
    assert plan.actions[0].payload["destination"] == "case-management"


def test_full_plan_order():
    classification = _classification(
        priority=Priority.CRITICAL,
        auto_response_eligible=True,
        related_entity_pattern="2024-CV-0042",
    )
    plan = _planner().plan(classification, ROUTING)
    assert plan.types == [
        ActionType.ROUTE,
        ActionType.MINT_ID,
        ActionType.AUTO_RESPOND,
        ActionType.CREATE_THREAD,
        ActionType.ESCALATE,
    ]


@pytest.mark.parametrize("priority", list(Priority))
def test_escalate_only_for_critical(priority):
    plan = _planner().plan(_classification(priority=priority), ROUTING)
    assert (ActionType.ESCALATE in plan.types) == (priority is Priority.CRITICAL)


def test_case_related_flag_alone_creates_thread():
    plan = _planner().plan(_classification(case_related=True), ROUTING)
    assert ActionType.CREATE_THREAD in plan.types


def test_plan_is_pure():
    planner = _planner()
    classification = _classification(priority=Priority.CRITICAL, case_related=True, auto_response_eligible=True)
    assert planner.plan(classification, ROUTING) == planner.plan(classification, ROUTING)


def test_auto_response_allow_list():
    planner = _planner(IntakeContext(auto_response_categories=("inquiry",)))
    assert ActionType.AUTO_RESPOND in planner.plan(
        _classification(category="inquiry", auto_response_eligible=True), ROUTING
    ).types
    assert ActionType.AUTO_RESPOND not in planner.plan(
        _classification(category="lawsuit", auto_response_eligible=True), ROUTING
    ).types


def test_pending_identifier_format():
    assert re.fullmatch(r"pending-email-\d{13}-[0-9a-f]{8}", pending_identifier(InputKind.EMAIL))


@pytest.mark.asyncio
async def test_carry_out_mints_and_syncs_thread():
    minter = FakeMinter("INT-77")
    thread_sync = FakeThreadSync(ThreadSyncResult(synced=True, thread_id="thr-1", room_id="room-1"))
    planner = _planner(minter=minter, thread_sync=thread_sync)
    classification = _classification(category="lawsuit", related_entity_pattern="2024-CV-0042",
                                      related_entities=["Smith", "Jones"], jurisdiction="Cook County")

    outcome = await planner.carry_out(planner.plan(classification, ROUTING), InputKind.EMAIL, MAIL)

    assert outcome.correlation_id == "INT-77"
    assert minter.purposes == ["intake:email:lawsuit"]
    mint = outcome.plan.find(ActionType.MINT_ID)
    assert mint.payload["id"] == "INT-77" and mint.payload["pending"] is False

    thread = outcome.plan.find(ActionType.CREATE_THREAD)
    assert thread.payload["synced"] is True
    assert thread.payload["thread_id"] == "thr-1"
    assert thread.payload["room_id"] == "room-1"
    request = thread_sync.requests[0]
    assert request.pattern == "2024-CV-0042"
    assert request.parties == ["Smith", "Jones"]
    assert request.correlation_id == "INT-77"


@pytest.mark.asyncio
async def test_minting_outage_uses_pending_identifier():
    planner = _planner(minter=FakeMinter.unavailable())
    outcome = await planner.carry_out(planner.plan(_classification(), ROUTING), InputKind.SMS, MAIL)

    assert outcome.correlation_id.startswith("pending-sms-")
    mint = outcome.plan.find(ActionType.MINT_ID)
    assert mint.payload["pending"] is True
    assert "connection refused" in mint.payload["error"]


@pytest.mark.asyncio
async def test_thread_sync_failure_is_recorded_not_raised():
    planner = _planner(minter=FakeMinter(), thread_sync=FakeThreadSync.failing())
    classification = _classification(case_related=True, priority=Priority.CRITICAL)

    outcome = await planner.carry_out(planner.plan(classification, ROUTING), InputKind.EMAIL, MAIL)

    assert outcome.plan.types == [ActionType.ROUTE, ActionType.MINT_ID, ActionType.CREATE_THREAD, ActionType.ESCALATE]
    thread = outcome.plan.find(ActionType.CREATE_THREAD)
    assert thread.payload["synced"] is False
    assert "502" in thread.payload["error"]


@pytest.mark.asyncio
async def test_declined_sync_is_recorded():
    planner = _planner(thread_sync=FakeThreadSync(ThreadSyncResult(synced=False, reason="sync_disabled")))
    outcome = await planner.carry_out(planner.plan(_classification(case_related=True), ROUTING), InputKind.EMAIL, MAIL)
    assert outcome.plan.find(ActionType.CREATE_THREAD).payload["error"] == "sync_disabled"


@pytest.mark.asyncio
async def test_auto_response_draft_cites_reference():
    adapter = FakeAdapter().respond("auto_response", lambda prompt: f"Thanks. {prompt.splitlines()[-1]}")
    planner = _planner(minter=FakeMinter("INT-5"), responder=adapter)
    plan = planner.plan(_classification(auto_response_eligible=True), ROUTING)

    outcome = await planner.carry_out(plan, InputKind.EMAIL, MAIL)

    reply = outcome.plan.find(ActionType.AUTO_RESPOND)
    assert reply.payload["to"] == "client@example.com"
    assert reply.payload["subject"] == "Re: Hearing"
    assert reply.payload["reference"] == "INT-5"
    assert "INT-5" in reply.payload["body"]


@pytest.mark.asyncio
async def test_auto_response_failure_is_recorded():
    adapter = FakeAdapter().respond("auto_response", RuntimeError("model overloaded"))
    planner = _planner(minter=FakeMinter(), responder=adapter)
    outcome = await planner.carry_out(
        planner.plan(_classification(auto_response_eligible=True), ROUTING), InputKind.EMAIL, MAIL
    )
    reply = outcome.plan.find(ActionType.AUTO_RESPOND)
    assert reply.payload["error"] == "model overloaded"
    assert "body" not in reply.payload


@pytest.mark.asyncio
async def test_existing_correlation_id_is_confirmed():
    minter = FakeMinter()
    planner = _planner(minter=minter)
    envelope = MAIL.model_copy(update={"correlation_id": "CALLER-1"})
    outcome = await planner.carry_out(planner.plan(_classification(), ROUTING), InputKind.EMAIL, envelope)
    assert outcome.correlation_id == "CALLER-1"
    assert minter.purposes == []
