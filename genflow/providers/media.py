"""HTTP media provider: one model endpoint per unit kind, result downloaded from a URL."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx

from genflow.errors import (
    GenerationError,
    InvalidInput,
    ProviderRejected,
    ProviderTimeout,
    UnknownGenerationError,
)
from genflow.jobs.models import UnitKind
from genflow.providers.base import GeneratedAsset

logger = logging.getLogger(__name__)

_TIMEOUT_STATUSES = {408, 504}
_INVALID_STATUSES = {400, 422}
_REJECTED_STATUSES = {401, 403, 429}


def error_for_status(status_code: int, detail: str) -> GenerationError:
    """Map an HTTP status from the provider to the unit error taxonomy."""
    message = f"Provider returned {status_code}: {detail[:200]}"
    if status_code in _TIMEOUT_STATUSES:
        return ProviderTimeout(message)
    if status_code in _INVALID_STATUSES:
        return InvalidInput(message)
    if status_code in _REJECTED_STATUSES or status_code >= 500:
        return ProviderRejected(message)
    return UnknownGenerationError(message)


def _media_url(body: dict[str, Any]) -> str | None:
    """Pull the first media URL out of a provider response."""
    for key in ("images", "videos"):
        items = body.get(key)
        if isinstance(items, list) and items and isinstance(items[0], dict) and items[0].get("url"):
            return items[0]["url"]
    for key in ("image", "video"):
        item = body.get(key)
        if isinstance(item, dict) and item.get("url"):
            return item["url"]
    return None


class MediaProvider:
    """Generates images and videos through a fal-style HTTP API."""

    def __init__(
        self,
        base_url: str,
        api_key: str | None,
        models: dict[str, str],
        *,
        timeout: float = 120.0,
        download_attempts: int = 3,
        download_backoff_s: float = 1.0,
        client: httpx.AsyncClient | None = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._models = dict(models)
        self._timeout = timeout
        self._download_attempts = max(1, download_attempts)
        self._download_backoff_s = download_backoff_s
        self._client = client

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Key {self._api_key}"
        return headers

    def _request_body(self, kind: UnitKind, prompt: str, refs: list[str], options: dict[str, Any]) -> dict[str, Any]:
        body: dict[str, Any] = {"prompt": prompt}
        if kind == UnitKind.COVER_VIDEO:
            if not refs:
                raise InvalidInput("cover video needs a source image")
            body["image_url"] = refs[0]
        elif refs:
            body["image_urls"] = list(refs)
        if "width" in options and "height" in options:
            body["image_size"] = {"width": options["width"], "height": options["height"]}
        if "duration_s" in options:
            body["duration"] = str(options["duration_s"])
        return body

    async def generate(
        self,
        kind: UnitKind,
        prompt: str,
        refs: list[str],
        options: dict[str, Any] | None = None,
    ) -> GeneratedAsset:
        model = self._models.get(UnitKind(kind).value)
        if not model:
            raise InvalidInput(f"No media model configured for {UnitKind(kind).value}")
        body = self._request_body(kind, prompt, refs, options or {})

        if self._client is not None:
            return await self._generate_with(self._client, model, body, options or {})
        async with httpx.AsyncClient(follow_redirects=True, timeout=self._timeout) as client:
            return await self._generate_with(client, model, body, options or {})

    async def _generate_with(
        self,
        client: httpx.AsyncClient,
        model: str,
        body: dict[str, Any],
        options: dict[str, Any],
    ) -> GeneratedAsset:
        try:
            response = await client.post(f"{self._base_url}/{model}", json=body, headers=self._headers())
        except httpx.TimeoutException as e:
            raise ProviderTimeout(f"Provider request timed out: {e}") from e
        except httpx.HTTPError as e:
            raise UnknownGenerationError(f"Provider request failed: {e}") from e
        if response.status_code >= 400:
            raise error_for_status(response.status_code, response.text)

        try:
            payload = response.json()
        except ValueError as e:
            raise UnknownGenerationError(f"Provider returned non-JSON body: {e}") from e
        url = _media_url(payload) if isinstance(payload, dict) else None
        if not url:
            raise UnknownGenerationError("Provider response has no media URL")

        data, content_type = await self._download(client, url)
        return GeneratedAsset(
            data=data,
            content_type=content_type,
            width=options.get("width"),
            height=options.get("height"),
        )

    async def _download(self, client: httpx.AsyncClient, url: str) -> tuple[bytes, str]:
        """Fetch generated media, retrying with exponential backoff (2s, 4s, ...)."""
        last_error = ""
        for attempt in range(1, self._download_attempts + 1):
            logger.info("Download attempt %d/%d from %s", attempt, self._download_attempts, url[:60])
            try:
                response = await client.get(url)
                if response.status_code < 400 and response.content:
                    content_type = (response.headers.get("content-type") or "application/octet-stream")
                    return response.content, content_type.split(";")[0].strip().lower()
                last_error = f"HTTP {response.status_code}" if response.status_code >= 400 else "empty body"
            except httpx.HTTPError as e:
                last_error = str(e) or type(e).__name__
            logger.warning("Download attempt %d failed: %s", attempt, last_error)
            if attempt < self._download_attempts:
                await asyncio.sleep((2 ** attempt) * self._download_backoff_s)
        raise UnknownGenerationError(
            f"Failed to download after {self._download_attempts} attempts: {last_error}"
        )
