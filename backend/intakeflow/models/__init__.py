"""
Database models
"""
from intakeflow.models.audit_log import AuditLogEntry

__all__ = ["AuditLogEntry"]
