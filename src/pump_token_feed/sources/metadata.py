from __future__ import annotations

import logging
from typing import Any

import httpx

from pump_token_feed.core.models import TokenMetadata

logger = logging.getLogger(__name__)

_SOCIAL_KEYS = ("twitter", "telegram", "website")


def _text(value: Any) -> str | None:
    if isinstance(value, str) and value.strip():
        return value
    return None


def parse_token_metadata(payload: Any) -> TokenMetadata | None:
    if not isinstance(payload, dict):
        return None

    extensions = payload.get("extensions")
    if not isinstance(extensions, dict):
        extensions = {}

    socials = {key: _text(payload.get(key)) or _text(extensions.get(key)) for key in _SOCIAL_KEYS}
    return TokenMetadata(
        name=_text(payload.get("name")),
        symbol=_text(payload.get("symbol")),
        description=_text(payload.get("description")),
        image=_text(payload.get("image")),
        **socials,
    )


class TokenMetadataClient:
    """One-shot fetch of off-band token metadata JSON (arbitrary URIs)."""

    def __init__(
        self,
        timeout_seconds: float | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._client = httpx.AsyncClient(
            timeout=timeout_seconds,
            transport=transport,
            follow_redirects=True,
            headers={"Accept": "application/json"},
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def fetch_metadata(self, uri: str) -> TokenMetadata | None:
        """Resolved metadata, or `None` on any failure; never retried."""
        try:
            response = await self._client.get(uri)
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, httpx.InvalidURL, ValueError) as exc:
            logger.warning(
                "Token metadata fetch failed; using raw fields",
                extra={"uri": uri, "reason": f"{exc.__class__.__name__}: {exc}"},
            )
            return None

        metadata = parse_token_metadata(payload)
        if metadata is None:
            logger.warning("Token metadata is not a JSON object; using raw fields", extra={"uri": uri})
        return metadata
