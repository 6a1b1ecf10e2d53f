"""
Identifier minting service client
"""
from typing import Optional

import httpx

from intakeflow.core.errors import MintingError
from intakeflow.core.intake_context import IntakeContext
from intakeflow.services.collaborator_client import CollaboratorClient


class MintingClient(CollaboratorClient):
    """POST /v1/mint {purpose} -> {id}"""

    error_type = MintingError

    @classmethod
    def from_context(
        cls, context: IntakeContext, transport: Optional[httpx.AsyncBaseTransport] = None
    ) -> "MintingClient":
        return cls(
            context.minting_service_url,
            token=context.minting_token,
            timeout=context.collaborator_timeout,
            transport=transport,
        )

    async def mint(self, purpose: str) -> str:
        data = await self._post("/v1/mint", {"purpose": purpose})
        identifier = data.get("id") or data.get("identifier")
        if not isinstance(identifier, str) or not identifier.strip():
            raise self._fail("invalid", "minting response carried no identifier")
        return identifier.strip()
