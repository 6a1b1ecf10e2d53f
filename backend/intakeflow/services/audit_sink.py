"""
Append-only audit sinks
"""
import asyncio
from collections import deque
from typing import Callable, Deque, List, Optional, Protocol, TypeVar

from sqlalchemy.orm import Session, sessionmaker

from intakeflow.components.contracts import AuditRecord
from intakeflow.core.database import get_session_local
from intakeflow.core.logging_config import LoggingConfig
from intakeflow.models.audit_log import AuditLogEntry

logger = LoggingConfig.get_logger(__name__)

T = TypeVar("T")

DEFAULT_MEMORY_RECORDS = 10000


class AuditSink(Protocol):
    async def append(self, record: AuditRecord) -> None:
        ...

    async def recent(self, limit: int = 50) -> List[AuditRecord]:
        ...

    async def get(self, correlation_id: str) -> Optional[AuditRecord]:
        ...


class InMemoryAuditSink:
    """
    Process-local sink for tests and single-instance development.

    Holds at most ``max_records`` records; the oldest are dropped first.
    """

    def __init__(self, max_records: int = DEFAULT_MEMORY_RECORDS):
        if max_records < 1:
            raise ValueError("max_records must be at least 1")
        self._records: Deque[AuditRecord] = deque(maxlen=max_records)

    @property
    def records(self) -> List[AuditRecord]:
        return list(self._records)

    async def append(self, record: AuditRecord) -> None:
        if len(self._records) == self._records.maxlen:
            logger.debug(f"In-memory audit sink full, dropping oldest record {self._records[0].audit_id}")
        self._records.append(record)

    async def recent(self, limit: int = 50) -> List[AuditRecord]:
        return list(reversed(self._records))[:limit]

    async def get(self, correlation_id: str) -> Optional[AuditRecord]:
        for record in reversed(self._records):
            if record.correlation_id == correlation_id or record.audit_id == correlation_id:
                return record
        return None


class DatabaseAuditSink:
    """
    Sink backed by the ``intake_audit_log`` table; rows are only ever inserted.

    SQLAlchemy sessions are synchronous, so every query runs in the default
    executor and the event loop stays free for other pipeline runs.
    """

    def __init__(self, session_factory: Optional[sessionmaker] = None):
        self._session_factory = session_factory

    def _session(self) -> Session:
        factory = self._session_factory or get_session_local()
        return factory()

    async def _run(self, work: Callable[[], T]) -> T:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, work)

    def _insert(self, record: AuditRecord) -> None:
        db = self._session()
        try:
            db.add(AuditLogEntry(
                id=record.audit_id,
                correlation_id=record.correlation_id,
                kind=record.kind.value,
                primary_route=record.routing.primary_route,
                degraded=record.degraded,
                fallback=record.fallback,
                error=record.error,
                record=record.model_dump(mode="json"),
                recorded_at=record.recorded_at,
            ))
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def _select_recent(self, limit: int) -> List[AuditRecord]:
        db = self._session()
        try:
            rows = (
                db.query(AuditLogEntry)
                .order_by(AuditLogEntry.recorded_at.desc())
                .limit(limit)
                .all()
            )
            return [AuditRecord.model_validate(row.to_dict()) for row in rows]
        finally:
            db.close()

    def _select_one(self, correlation_id: str) -> Optional[AuditRecord]:
        db = self._session()
        try:
            row = (
                db.query(AuditLogEntry)
                .filter(
                    (AuditLogEntry.correlation_id == correlation_id)
                    | (AuditLogEntry.id == correlation_id)
                )
                .order_by(AuditLogEntry.recorded_at.desc())
                .first()
            )
            return AuditRecord.model_validate(row.to_dict()) if row else None
        finally:
            db.close()

    async def append(self, record: AuditRecord) -> None:
        await self._run(lambda: self._insert(record))

    async def recent(self, limit: int = 50) -> List[AuditRecord]:
        return await self._run(lambda: self._select_recent(limit))

    async def get(self, correlation_id: str) -> Optional[AuditRecord]:
        return await self._run(lambda: self._select_one(correlation_id))
