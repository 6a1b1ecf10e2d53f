"""
Trust authority client
"""
from typing import Any, List, Optional

import httpx
from pydantic import BaseModel, Field

from intakeflow.core.errors import TrustAuthorityError
from intakeflow.core.intake_context import IntakeContext
from intakeflow.services.collaborator_client import CollaboratorClient


class TrustRequest(BaseModel):
    content: str
    source: str
    kind: str
    category: str
    priority: str


class TrustVerdict(BaseModel):
    """Authority answer; either field may be missing from a sloppy response"""
    score: Optional[float] = None
    trusted: Optional[bool] = None
    flags: List[str] = Field(default_factory=list)


def _parse_verdict(data: dict) -> TrustVerdict:
    score: Any = data.get("score", data.get("composite_score"))
    try:
        score = float(score) if score is not None else None
    except (TypeError, ValueError):
        score = None
    trusted = data.get("trusted")
    flags = data.get("flags") or []
    if isinstance(flags, str):
        flags = [flags]
    return TrustVerdict(
        score=score,
        trusted=trusted if isinstance(trusted, bool) else None,
        flags=[str(f) for f in flags if f] if isinstance(flags, list) else [],
    )


class TrustAuthorityClient(CollaboratorClient):
    """POST /v1/evaluate {content, source, kind, category, priority} -> {score, trusted, flags}"""

    error_type = TrustAuthorityError

    @classmethod
    def from_context(
        cls, context: IntakeContext, transport: Optional[httpx.AsyncBaseTransport] = None
    ) -> "TrustAuthorityClient":
        return cls(
            context.trust_authority_url,
            token=context.trust_authority_token,
            timeout=context.collaborator_timeout,
            transport=transport,
        )

    async def evaluate(self, request: TrustRequest) -> TrustVerdict:
        data = await self._post("/v1/evaluate", request.model_dump())
        return _parse_verdict(data)
