"""
API routes for submitting inbound items
"""
from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, Query

from intakeflow.api.dependencies import get_pipeline
from intakeflow.components.contracts import IntakeResult
from intakeflow.components.type_detector import detect
from intakeflow.core.logging_config import LoggingConfig
from intakeflow.services.intake_pipeline import IntakePipeline

logger = LoggingConfig.get_logger(__name__)

router = APIRouter(prefix="/api/intake", tags=["intake"])


@router.post("", response_model=IntakeResult)
async def ingest(
    payload: Any = Body(...),
    retain_raw: Optional[bool] = Query(None, description="Keep the full (redacted) payload in the audit record"),
    pipeline: IntakePipeline = Depends(get_pipeline),
):
    """
    Run one inbound item through the intake pipeline.

    Always answers 200 with an intake result; degraded and fallback runs are
    reported through the ``degraded`` and ``fallback`` fields.
    """
    return await pipeline.ingest(payload, retain_raw=retain_raw)


@router.post("/detect")
async def detect_kind(payload: Any = Body(...)):
    """Detected input kind only, without running the pipeline"""
    return {"kind": detect(payload).value}
