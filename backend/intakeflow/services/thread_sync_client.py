"""
Case/thread sync collaborator client
"""
from typing import List, Optional

import httpx
from pydantic import BaseModel, Field

from intakeflow.core.errors import ThreadSyncError
from intakeflow.core.intake_context import IntakeContext
from intakeflow.services.collaborator_client import CollaboratorClient


class ThreadSyncRequest(BaseModel):
    pattern: Optional[str] = None
    parties: List[str] = Field(default_factory=list)
    jurisdiction: Optional[str] = None
    kind: str
    correlation_id: Optional[str] = None


class ThreadSyncResult(BaseModel):
    synced: bool = False
    thread_id: Optional[str] = None
    room_id: Optional[str] = None
    reason: Optional[str] = None


def _opt_str(value) -> Optional[str]:
    return str(value) if value not in (None, "") else None


class ThreadSyncClient(CollaboratorClient):
    """POST /v1/thread {pattern, parties, jurisdiction, kind} -> {synced, thread_id, room_id}"""

    error_type = ThreadSyncError

    @classmethod
    def from_context(
        cls, context: IntakeContext, transport: Optional[httpx.AsyncBaseTransport] = None
    ) -> "ThreadSyncClient":
        return cls(
            context.thread_sync_url,
            token=context.thread_sync_token,
            timeout=context.collaborator_timeout,
            transport=transport,
        )

    async def sync(self, request: ThreadSyncRequest) -> ThreadSyncResult:
        data = await self._post("/v1/thread", request.model_dump())
        return ThreadSyncResult(
            synced=bool(data.get("synced")),
            thread_id=_opt_str(data.get("thread_id") or data.get("threadId")),
            room_id=_opt_str(data.get("room_id") or data.get("roomId")),
            reason=_opt_str(data.get("reason")),
        )
