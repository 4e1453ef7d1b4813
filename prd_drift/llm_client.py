"""Classification oracles: prompt text in, reply text out.

The drift reconciler only needs ``await oracle.complete(prompt) -> str``.
Two implementations are provided:

* ``AnthropicOracle`` -- Claude via the official ``anthropic`` SDK (default).
* ``OllamaClient``    -- a local model served by Ollama over its HTTP API.

Both raise ``UpstreamError`` with the provider's message when a completion
cannot be produced, so callers see one error type regardless of backend.

Typical usage::

    oracle = AnthropicOracle(api_key=os.environ["ANTHROPIC_API_KEY"])
    reply = await oracle.complete("Classify these requirements ...")
"""

from __future__ import annotations

from typing import Protocol

import anthropic
import httpx
from pydantic import BaseModel, Field


DEFAULT_ANTHROPIC_MODEL = "claude-3-haiku-20240307"
DEFAULT_OLLAMA_MODEL = "llama3.1:8b"


class UpstreamError(Exception):
    """Raised when the classification model cannot complete a request."""

    def __init__(self, message: str, provider: str = "") -> None:
        self.provider = provider
        super().__init__(message)


class CompletionOracle(Protocol):
    """Anything that can turn a prompt into a single text reply."""

    async def complete(self, prompt: str) -> str: ...


# ---------------------------------------------------------------------------
# Anthropic
# ---------------------------------------------------------------------------


class AnthropicOracle:
    """Single-turn, non-streaming completions from Claude.

    Sampling is pinned to ``temperature=0`` so repeated runs over the same
    repository produce comparable reports.
    """

    def __init__(
        self,
        api_key: str,
        model: str = DEFAULT_ANTHROPIC_MODEL,
        max_tokens: int = 4096,
        timeout: float = 120.0,
    ) -> None:
        self.model = model
        self.max_tokens = max_tokens
        self._client = anthropic.AsyncAnthropic(api_key=api_key, timeout=timeout)

    async def complete(self, prompt: str) -> str:
        try:
            message = await self._client.messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                temperature=0,
                messages=[{"role": "user", "content": prompt}],
            )
        except anthropic.APIStatusError as exc:
            raise UpstreamError(_anthropic_error_message(exc), provider="anthropic") from exc
        except anthropic.APIError as exc:
            raise UpstreamError(exc.message or str(exc), provider="anthropic") from exc

        if not message.content or message.content[0].type != "text":
            return ""
        return message.content[0].text

    async def aclose(self) -> None:
        """Close the underlying HTTP connection pool."""
        await self._client.close()


def _anthropic_error_message(exc: anthropic.APIStatusError) -> str:
    """Prefer the API's own error message over the SDK's wrapper text."""
    body = exc.body
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
    return exc.message or f"Anthropic API returned HTTP {exc.status_code}"


# ---------------------------------------------------------------------------
# Ollama
# ---------------------------------------------------------------------------


class OllamaResponse(BaseModel):
    """Structured response from an Ollama generation call."""

    text: str = Field(default="", description="Generated text")
    model: str = Field(default="", description="Model that produced the response")
    duration_ms: float = Field(default=0.0, description="Server-side generation time in ms")
    success: bool = Field(default=True, description="Whether the request succeeded")
    error: str | None = Field(default=None, description="Error message on failure")


class OllamaClient:
    """Async client for the Ollama REST API.

    ``generate`` never raises and reports failures in the returned
    ``OllamaResponse``; ``complete`` is the oracle entry point and raises
    ``UpstreamError`` instead.
    """

    def __init__(
        self,
        base_url: str = "http://localhost:11434",
        model: str = DEFAULT_OLLAMA_MODEL,
        timeout: int = 120,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.timeout = timeout

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _client(self) -> httpx.AsyncClient:
        """Return a fresh ``AsyncClient`` configured with our base URL and timeout."""
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(self.timeout, connect=10.0),
        )

    @staticmethod
    def _extract_text(data: dict) -> str:
        """Ollama's non-streaming response puts the full text in ``"response"``."""
        return data.get("response", "")

    @staticmethod
    def _extract_duration_ms(data: dict) -> float:
        """The API returns ``total_duration`` in **nanoseconds**."""
        ns = data.get("total_duration", 0)
        return ns / 1_000_000.0

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def generate(self, prompt: str, model: str | None = None) -> OllamaResponse:
        """Generate text from a prompt.

        Args:
            prompt: The user prompt.
            model: Ollama model tag; defaults to the client's model.

        Returns:
            An ``OllamaResponse`` with the generated text or an error.
        """
        model = model or self.model
        payload: dict = {
            "model": model,
            "prompt": prompt,
            "stream": False,
            "options": {"temperature": 0},
        }

        try:
            async with self._client() as client:
                response = await client.post("/api/generate", json=payload)
                response.raise_for_status()
                data = response.json()
                return OllamaResponse(
                    text=self._extract_text(data),
                    model=data.get("model", model),
                    duration_ms=self._extract_duration_ms(data),
                    success=True,
                )
        except httpx.ConnectError:
            return OllamaResponse(
                model=model,
                success=False,
                error=f"Cannot connect to Ollama at {self.base_url}. Is the server running?",
            )
        except httpx.TimeoutException:
            return OllamaResponse(
                model=model,
                success=False,
                error=f"Request to Ollama timed out after {self.timeout}s.",
            )
        except httpx.HTTPStatusError as exc:
            return OllamaResponse(
                model=model,
                success=False,
                error=f"Ollama returned HTTP {exc.response.status_code}: {exc.response.text[:500]}",
            )
        except (httpx.HTTPError, ValueError) as exc:
            return OllamaResponse(
                model=model,
                success=False,
                error=f"Unexpected error during Ollama generate: {exc}",
            )

    async def complete(self, prompt: str) -> str:
        result = await self.generate(prompt)
        if not result.success:
            raise UpstreamError(result.error or "Ollama generation failed", provider="ollama")
        return result.text

    async def is_available(self) -> bool:
        """Return ``True`` if the Ollama server responds to ``/api/tags``."""
        try:
            async with self._client() as client:
                response = await client.get("/api/tags")
                return response.status_code == 200
        except httpx.HTTPError:
            return False

    async def list_models(self) -> list[str]:
        """Return the sorted names of all locally-available models.

        Returns an empty list if the server is unreachable.
        """
        try:
            async with self._client() as client:
                response = await client.get("/api/tags")
                response.raise_for_status()
                data = response.json()
                models = data.get("models", [])
                return sorted(m.get("name", "") for m in models if m.get("name"))
        except (httpx.HTTPError, ValueError):
            return []
