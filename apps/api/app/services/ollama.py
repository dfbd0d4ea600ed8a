"""Ollama HTTP client and cached model catalog."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from typing import Any

import httpx
import structlog
from cachetools import TTLCache  # type: ignore[import-untyped]

from app.core.config import GenerationOptions
from app.core.exceptions import BackendResponseError, BackendUnavailableError

logger = structlog.get_logger(__name__)

_CONNECT_TIMEOUT = 10.0
_ERROR_BODY_PREVIEW = 300


def build_generate_payload(prompt: str, options: GenerationOptions) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "model": options.model,
        "prompt": prompt,
        "stream": True,
        "temperature": min(max(options.temperature, 0.0), 1.0),
        "max_tokens": options.max_tokens,
    }
    if options.system_prompt:
        payload["system"] = options.system_prompt
    return payload


class OllamaClient:
    """Thin wrapper over ``httpx.AsyncClient`` for /generate and /tags.

    Transport failures become ``BackendUnavailableError``; non-2xx replies
    become ``BackendResponseError`` with a message fit for end users.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 120.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(timeout, connect=_CONNECT_TIMEOUT),
            transport=transport,
        )

    async def stream_generate(
        self, prompt: str, options: GenerationOptions
    ) -> AsyncIterator[bytes]:
        """Yield raw NDJSON bytes from POST /generate as they arrive.

        Callers should wrap this in ``contextlib.aclosing`` so that cancelling
        the consumer also closes the upstream HTTP response.
        """
        payload = build_generate_payload(prompt, options)
        logger.info(
            "ollama.generate.start",
            model=options.model,
            prompt_length=len(prompt),
            temperature=payload["temperature"],
        )
        try:
            async with self._client.stream("POST", "/generate", json=payload) as response:
                if response.status_code >= 400:
                    body = (await response.aread()).decode("utf-8", errors="replace")
                    raise BackendResponseError(
                        self._describe_status(response.status_code, body, options.model),
                        status_code=response.status_code,
                    )
                async for chunk in response.aiter_bytes():
                    yield chunk
        except httpx.TimeoutException as exc:
            raise BackendUnavailableError(
                f"Timed out waiting for Ollama at {self.base_url}"
            ) from exc
        except httpx.RequestError as exc:
            raise BackendUnavailableError(
                f"Cannot reach Ollama at {self.base_url}: {exc.__class__.__name__}"
            ) from exc

    async def list_models(self) -> list[dict[str, Any]]:
        try:
            response = await self._client.get("/tags")
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise BackendResponseError(
                f"Ollama returned HTTP {exc.response.status_code} listing models",
                status_code=exc.response.status_code,
            ) from exc
        except httpx.RequestError as exc:
            raise BackendUnavailableError(
                f"Cannot reach Ollama at {self.base_url}: {exc.__class__.__name__}"
            ) from exc

        try:
            models = response.json().get("models") or []
        except ValueError as exc:
            raise BackendResponseError("Ollama returned a malformed model list") from exc
        return [
            {"name": m.get("name", ""), "size": m.get("size"), "modified_at": m.get("modified_at")}
            for m in models
            if isinstance(m, dict)
        ]

    async def aclose(self) -> None:
        await self._client.aclose()

    @staticmethod
    def _describe_status(status_code: int, body: str, model: str) -> str:
        if status_code == 404:
            return f"Model '{model}' is not available on the Ollama server"
        preview = body.strip()[:_ERROR_BODY_PREVIEW]
        return f"Ollama returned HTTP {status_code}" + (f": {preview}" if preview else "")


def model_matches(available: str, wanted: str) -> bool:
    """``llama3`` matches ``llama3:latest`` and ``llama3:8b``; exact names always match."""
    if available == wanted:
        return True
    base, _, tag = available.partition(":")
    wanted_base, _, wanted_tag = wanted.partition(":")
    if wanted_tag:
        return base == wanted_base and tag == wanted_tag
    return base == wanted_base


class ModelCatalog:
    """Model list from GET /tags, cached for ``ttl`` seconds.

    Lookups are single-flight: concurrent callers share one upstream request.
    """

    _KEY = "models"

    def __init__(self, client: OllamaClient, ttl: int):
        self._client = client
        self._cache: TTLCache = TTLCache(maxsize=1, ttl=ttl)
        self._lock = asyncio.Lock()

    async def models(self, refresh: bool = False) -> list[dict[str, Any]]:
        async with self._lock:
            if not refresh:
                cached = self._cache.get(self._KEY)
                if cached is not None:
                    return cached
            models = await self._client.list_models()
            self._cache[self._KEY] = models
            logger.info("ollama.models.refreshed", count=len(models))
            return models

    async def is_available(self, model: str) -> bool:
        return any(model_matches(m["name"], model) for m in await self.models())
