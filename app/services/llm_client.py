"""
Language-model client: one chat-completions call per generation.

``AzureOpenAIClient`` posts a system + user message pair to an Azure OpenAI
deployment and returns the assistant text.  Unlike best-effort extraction,
a failed call here is a failed request, so every transport or upstream
problem surfaces as ``GenerationFailed``.
"""
from __future__ import annotations

import logging
from typing import Optional, Protocol

import httpx

from app.config import settings
from app.exceptions import GenerationFailed, LanguageModelNotConfigured

logger = logging.getLogger(__name__)


class LanguageModel(Protocol):
    model_name: str

    @property
    def is_configured(self) -> bool: ...

    async def generate(self, system_prompt: str, user_prompt: str) -> str:
        """Return the model's text for the prompt pair."""
        ...


class AzureOpenAIClient:
    """Chat-completions client for an Azure OpenAI deployment."""

    def __init__(
        self,
        endpoint: Optional[str] = None,
        api_key: Optional[str] = None,
        deployment: Optional[str] = None,
        api_version: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.endpoint = endpoint if endpoint is not None else settings.AZURE_OPENAI_ENDPOINT
        self.api_key = api_key if api_key is not None else settings.AZURE_OPENAI_API_KEY
        self.model_name = deployment or settings.AZURE_OPENAI_DEPLOYMENT_NAME
        self.api_version = api_version or settings.AZURE_OPENAI_API_VERSION
        self.timeout = httpx.Timeout(timeout or settings.LLM_TIMEOUT, connect=10.0)
        self.max_tokens = settings.LLM_MAX_TOKENS
        self.temperature = settings.LLM_TEMPERATURE
        self.top_p = settings.LLM_TOP_P
        self._transport = transport

    @property
    def is_configured(self) -> bool:
        return bool(self.endpoint and self.api_key)

    @property
    def completions_url(self) -> str:
        return (
            f"{(self.endpoint or '').rstrip('/')}/openai/deployments/"
            f"{self.model_name}/chat/completions"
        )

    async def generate(self, system_prompt: str, user_prompt: str) -> str:
        if not self.is_configured:
            raise LanguageModelNotConfigured()

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                resp = await client.post(
                    self.completions_url,
                    params={"api-version": self.api_version},
                    headers={"api-key": self.api_key, "Content-Type": "application/json"},
                    json={
                        "messages": [
                            {"role": "system", "content": system_prompt},
                            {"role": "user", "content": user_prompt},
                        ],
                        "max_tokens": self.max_tokens,
                        "temperature": self.temperature,
                        "top_p": self.top_p,
                    },
                )
        except httpx.TimeoutException as exc:
            logger.error("generate: request timed out after %.0f s", self.timeout.read or 0)
            raise GenerationFailed("Failed to generate content: request timed out") from exc
        except httpx.HTTPError as exc:
            logger.error("generate: transport error %s", exc)
            raise GenerationFailed(f"Failed to generate content: {exc}") from exc

        if resp.status_code != 200:
            logger.error(
                "generate: Azure OpenAI returned HTTP %d: %s",
                resp.status_code,
                resp.text[:300],
            )
            raise GenerationFailed(
                f"Failed to generate content: upstream returned HTTP {resp.status_code}",
                details={"upstream_status": resp.status_code},
            )

        try:
            content = resp.json()["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            logger.error("generate: malformed completion payload: %s", resp.text[:300])
            raise GenerationFailed("Failed to generate content: malformed response") from exc

        logger.info("generate: %d characters from %s", len(content or ""), self.model_name)
        return content or ""
