"""
AI analysis backend client (Ollama-compatible chat API)
"""
import asyncio
import time
from typing import Any, Dict, List, Optional, Protocol

import httpx
from pydantic import BaseModel

from intakeflow.core.config import Settings, get_settings
from intakeflow.core.logging_config import LoggingConfig
from intakeflow.core.metrics import (llm_request_duration_seconds,
                                     llm_requests_total)

logger = LoggingConfig.get_logger(__name__)


class LLMResponse(BaseModel):
    """AI backend response model"""
    model: str
    response: str
    done: bool = False


class LLMError(Exception):
    """Raised when the AI backend cannot produce a response"""
    pass


class AnalysisAdapter(Protocol):
    """Anything that turns a prompt into free text"""

    async def analyze(self, prompt: str, system_prompt: Optional[str] = None) -> str:
        ...


def _strip_v1(url: str) -> str:
    url = url.rstrip("/")
    if url.endswith("/v1"):
        url = url[:-3]
    return url


class LLMClient:
    """
    Client for an Ollama-compatible AI backend.

    Every call is bounded by ``timeout``; timeouts are retried up to
    ``max_retries`` attempts and then surface as :class:`LLMError`.
    """

    def __init__(
        self,
        base_url: str,
        model: str,
        timeout: float = 30.0,
        temperature: float = 0.2,
        top_p: float = 0.8,
        num_ctx: int = 4096,
        max_retries: int = 2,
        retry_delay: float = 0.5,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = _strip_v1(base_url)
        self.model = model
        self.timeout = timeout
        self.temperature = temperature
        self.top_p = top_p
        self.num_ctx = num_ctx
        self.max_retries = max(1, max_retries)
        self.retry_delay = retry_delay
        self._transport = transport

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "LLMClient":
        settings = settings or get_settings()
        return cls(
            base_url=settings.llm_url,
            model=settings.llm_model,
            timeout=float(settings.llm_timeout_seconds),
            temperature=settings.llm_temperature,
            top_p=settings.llm_top_p,
            num_ctx=settings.llm_num_ctx,
            max_retries=settings.llm_max_retries,
        )

    def _client(self, timeout: float) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            transport=self._transport,
            limits=httpx.Limits(max_keepalive_connections=5, max_connections=10),
        )

    async def health_check(self) -> bool:
        """Check if the backend answers on /api/tags"""
        try:
            async with self._client(timeout=5.0) as client:
                response = await client.get("/api/tags")
                return response.status_code == 200
        except httpx.HTTPError:
            return False

    async def generate(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        history: Optional[List[Dict[str, str]]] = None,
        **kwargs: Any,
    ) -> LLMResponse:
        """
        Generate a response

        Args:
            prompt: User prompt
            system_prompt: System prompt for the model
            history: Prior chat messages
            **kwargs: Sampling overrides (temperature, top_p, num_ctx)

        Returns:
            LLMResponse object
        """
        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        if history:
            messages.extend(history)
        messages.append({"role": "user", "content": prompt})

        payload = {
            "model": self.model,
            "messages": messages,
            "stream": False,
            "options": {
                "temperature": kwargs.get("temperature", self.temperature),
                "top_p": kwargs.get("top_p", self.top_p),
                "num_ctx": kwargs.get("num_ctx", self.num_ctx),
            }
        }

        start = time.time()
        async with self._client(timeout=self.timeout) as client:
            for attempt in range(self.max_retries):
                try:
                    response = await client.post("/api/chat", json=payload)
                    response.raise_for_status()
                    data = response.json()
                    text = (data.get("message") or {}).get("content", "")
                    llm_requests_total.labels(model=self.model, status="success").inc()
                    llm_request_duration_seconds.labels(model=self.model).observe(time.time() - start)
                    return LLMResponse(model=self.model, response=text, done=data.get("done", True))
                except httpx.TimeoutException:
                    if attempt < self.max_retries - 1:
                        logger.debug(f"AI backend timeout, retrying (attempt {attempt + 1}/{self.max_retries})")
                        await asyncio.sleep(self.retry_delay * (attempt + 1))
                        continue
                    llm_requests_total.labels(model=self.model, status="timeout").inc()
                    raise LLMError(f"Request to {self.base_url} timed out after {self.max_retries} attempts")
                except httpx.HTTPStatusError as e:
                    llm_requests_total.labels(model=self.model, status="error").inc()
                    raise LLMError(f"HTTP error from {self.base_url}: {e.response.status_code}") from e
                except (httpx.HTTPError, ValueError) as e:
                    llm_requests_total.labels(model=self.model, status="error").inc()
                    raise LLMError(f"Error calling AI backend at {self.base_url}: {e}") from e

        raise LLMError(f"Failed to generate response after {self.max_retries} attempts")

    async def analyze(self, prompt: str, system_prompt: Optional[str] = None) -> str:
        """AnalysisAdapter entry point: free-text response only"""
        result = await self.generate(prompt, system_prompt=system_prompt)
        return result.response
