"""
FastAPI dependency providers
"""
from functools import lru_cache

from intakeflow.services.audit_sink import AuditSink
from intakeflow.services.intake_pipeline import IntakePipeline


@lru_cache()
def get_pipeline() -> IntakePipeline:
    """Process-wide pipeline built from settings"""
    return IntakePipeline.from_settings()


def get_audit_sink() -> AuditSink:
    return get_pipeline().audit_sink
