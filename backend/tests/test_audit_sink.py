"""
Tests for the audit sinks
"""
import threading

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from intakeflow.components.contracts import (Action, ActionType, AuditRecord,
                                             InputKind, RoutingDecision,
                                             TrustAssessment, TrustState)
from intakeflow.core.database import Base, get_session_local, init_db
from intakeflow.models.audit_log import AuditLogEntry
from intakeflow.services.audit_sink import DatabaseAuditSink, InMemoryAuditSink


def _record(correlation_id: str, route: str = "intake", **kwargs) -> AuditRecord:
    return AuditRecord(
        correlation_id=correlation_id,
        kind=InputKind.EMAIL,
        sanitized_envelope={"content": "hello", "raw_size": 5},
        trust=TrustAssessment(state=TrustState.UNEVALUATED, flags=["authority-unavailable"]),
        routing=RoutingDecision(primary_route=route),
        actions=[Action(type=ActionType.ROUTE, payload={"destination": route})],
        **kwargs,
    )


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.mark.asyncio
async def test_database_sink_round_trips_records(session_factory):
    sink = DatabaseAuditSink(session_factory)
    first = _record("INT-1", route="billing", degraded=True)
    await sink.append(first)
    await sink.append(_record("INT-2"))

    loaded = await sink.get("INT-1")

    assert loaded.audit_id == first.audit_id
    assert loaded.routing.primary_route == "billing"
    assert loaded.trust.state is TrustState.UNEVALUATED
    assert loaded.trust.trusted is None
    assert loaded.degraded is True
    assert loaded.actions[0].type is ActionType.ROUTE

    by_audit_id = await sink.get(first.audit_id)
    assert by_audit_id.correlation_id == "INT-1"
    assert await sink.get("missing") is None

    db = session_factory()
    try:
        row = db.query(AuditLogEntry).filter(AuditLogEntry.id == first.audit_id).one()
        assert row.primary_route == "billing"
        assert row.kind == "email"
    finally:
        db.close()


@pytest.mark.asyncio
async def test_database_sink_recent_is_limited(session_factory):
    sink = DatabaseAuditSink(session_factory)
    for i in range(5):
        await sink.append(_record(f"INT-{i}"))

    recent = await sink.recent(limit=3)

    assert len(recent) == 3


@pytest.mark.asyncio
async def test_database_sink_rejects_duplicate_audit_id(session_factory):
    sink = DatabaseAuditSink(session_factory)
    record = _record("INT-9")
    await sink.append(record)
    with pytest.raises(Exception):
        await sink.append(record)
    assert len(await sink.recent()) == 1


@pytest.mark.asyncio
async def test_memory_sink_newest_first():
    sink = InMemoryAuditSink()
    for i in range(3):
        await sink.append(_record(f"INT-{i}"))

    recent = await sink.recent(limit=2)

    assert [r.correlation_id for r in recent] == ["INT-2", "INT-1"]
    assert (await sink.get("INT-0")).correlation_id == "INT-0"


@pytest.mark.asyncio
async def test_database_sink_queries_run_off_the_event_loop_thread(session_factory):
    session_threads = []

    def tracking_factory():
        session_threads.append(threading.get_ident())
        return session_factory()

    sink = DatabaseAuditSink(tracking_factory)
    await sink.append(_record("INT-1"))
    await sink.recent()
    await sink.get("INT-1")

    assert len(session_threads) == 3
    assert threading.get_ident() not in session_threads


@pytest.mark.asyncio
async def test_memory_sink_drops_oldest_when_full():
    sink = InMemoryAuditSink(max_records=2)
    for i in range(3):
        await sink.append(_record(f"INT-{i}"))

    assert [r.correlation_id for r in sink.records] == ["INT-1", "INT-2"]
    assert await sink.get("INT-0") is None


def test_memory_sink_requires_positive_capacity():
    with pytest.raises(ValueError):
        InMemoryAuditSink(max_records=0)


@pytest.mark.asyncio
async def test_database_sink_defaults_to_configured_database():
    init_db()
    sink = DatabaseAuditSink()
    record = _record("INT-configured")
    await sink.append(record)

    assert (await sink.get(record.audit_id)).correlation_id == "INT-configured"
    assert get_session_local() is get_session_local()
