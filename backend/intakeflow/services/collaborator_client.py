"""
Base HTTP client for external collaborators (minting, trust authority, thread sync)
"""
from typing import Any, Dict, Optional, Type

import httpx

from intakeflow.core.errors import CollaboratorError
from intakeflow.core.logging_config import LoggingConfig
from intakeflow.core.metrics import collaborator_requests_total

logger = LoggingConfig.get_logger(__name__)


class CollaboratorClient:
    """
    JSON-over-HTTP client with a bounded timeout.

    Timeouts, transport errors, non-2xx answers and non-object bodies all
    surface as ``error_type`` so callers handle a single exception type.
    """

    error_type: Type[CollaboratorError] = CollaboratorError

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        timeout: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self._transport = transport

    @property
    def name(self) -> str:
        return self.error_type.collaborator

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def _fail(self, status: str, message: str, status_code: Optional[int] = None) -> CollaboratorError:
        collaborator_requests_total.labels(collaborator=self.name, status=status).inc()
        logger.warning(
            f"{self.name} call failed: {message}",
            extra={"collaborator": self.name, "status_code": status_code},
        )
        return self.error_type(message, status_code=status_code)

    async def _post(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
                headers=self._headers(),
            ) as client:
                response = await client.post(path, json=payload)
                response.raise_for_status()
                data = response.json()
        except httpx.TimeoutException as e:
            raise self._fail("timeout", f"{self.name} timed out after {self.timeout}s") from e
        except httpx.HTTPStatusError as e:
            status_code = e.response.status_code
            raise self._fail("error", f"{self.name} returned HTTP {status_code}", status_code) from e
        except (httpx.HTTPError, ValueError) as e:
            raise self._fail("error", f"{self.name} unreachable: {e}") from e

        if not isinstance(data, dict):
            raise self._fail("invalid", f"{self.name} returned a non-object response")

        collaborator_requests_total.labels(collaborator=self.name, status="success").inc()
        return data
