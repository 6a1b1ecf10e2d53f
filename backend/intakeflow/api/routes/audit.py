"""
API routes for reading the intake audit log
"""
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query

from intakeflow.api.dependencies import get_audit_sink
from intakeflow.components.contracts import AuditRecord
from intakeflow.services.audit_sink import AuditSink

router = APIRouter(prefix="/api/audit", tags=["audit"])


@router.get("", response_model=List[AuditRecord])
async def list_audit_records(
    limit: int = Query(50, ge=1, le=500),
    sink: AuditSink = Depends(get_audit_sink),
):
    """Most recent audit records, newest first"""
    return await sink.recent(limit)


@router.get("/{correlation_id}", response_model=AuditRecord)
async def get_audit_record(correlation_id: str, sink: AuditSink = Depends(get_audit_sink)):
    """Audit record for a correlation identifier (or audit id)"""
    record = await sink.get(correlation_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Audit record not found")
    return record
