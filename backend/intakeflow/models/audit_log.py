"""
Audit log model: one append-only row per intake pipeline run
"""
from datetime import datetime, timezone
from typing import Any, Dict

from sqlalchemy import JSON, Boolean, Column, DateTime, String, Text

from intakeflow.core.database import Base


class AuditLogEntry(Base):
    """
    Persisted AuditRecord.

    The full record is kept as JSON; the columns beside it exist for lookup
    and filtering only.
    """
    __tablename__ = "intake_audit_log"

    id = Column(String(36), primary_key=True)  # audit_id
    correlation_id = Column(String(128), nullable=True, index=True)
    kind = Column(String(32), nullable=False, index=True)
    primary_route = Column(String(128), nullable=False)
    degraded = Column(Boolean, nullable=False, default=False, index=True)
    fallback = Column(Boolean, nullable=False, default=False)
    error = Column(Text, nullable=True)
    record = Column(JSON, nullable=False)
    recorded_at = Column(DateTime(timezone=True), nullable=False, index=True,
                         default=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        """Stored record as a plain dictionary"""
        return dict(self.record)
