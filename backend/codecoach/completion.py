"""Text-completion capability backing coaching replies and session summaries."""

from __future__ import annotations

import logging
from typing import Optional, Protocol

from openai import AsyncOpenAI, AuthenticationError, OpenAIError

from .config import Settings, get_settings
from .errors import AuthError, CompletionError

logger = logging.getLogger(__name__)


class CompletionClient(Protocol):
    async def complete(self, prompt: str) -> str:
        ...


class OpenAICompletionClient:
    """Single-shot completions over the OpenAI Responses API."""

    def __init__(
        self,
        *,
        model: str,
        temperature: float = 0.3,
        timeout: float = 60.0,
        client: Optional[AsyncOpenAI] = None,
    ) -> None:
        self._model = model
        self._temperature = temperature
        self._timeout = timeout
        self._client = client

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "OpenAICompletionClient":
        settings = settings or get_settings()
        return cls(model=settings.model, temperature=settings.temperature, timeout=settings.http_timeout * 2)

    def _openai(self) -> AsyncOpenAI:
        if self._client is None:
            try:
                self._client = AsyncOpenAI(timeout=self._timeout)
            except OpenAIError as exc:
                raise AuthError("No model API key set. Configure OPENAI_API_KEY and try again.") from exc
        return self._client

    async def complete(self, prompt: str) -> str:
        client = self._openai()
        try:
            response = await client.responses.create(
                model=self._model,
                input=prompt,
                temperature=self._temperature,
            )
        except AuthenticationError as exc:
            logger.error("Model provider rejected the configured API key: %s", exc)
            raise AuthError("CodeCoach is not authorized with the model provider. Update OPENAI_API_KEY and try again.") from exc
        except OpenAIError as exc:
            logger.error("Completion request failed: %s", exc)
            raise CompletionError(f"Upstream completion request failed: {exc}") from exc

        text = getattr(response, "output_text", None)
        if not isinstance(text, str) or not text.strip():
            raise CompletionError("Completion response contained no text.", retryable=False)
        return text.strip()


__all__ = ["CompletionClient", "OpenAICompletionClient"]
