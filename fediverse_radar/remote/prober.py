"""Existence probes against Bluesky's public API and Mastodon instance search."""
from __future__ import annotations

import asyncio
import logging
from typing import Dict, Optional

import httpx

from ..config import RadarConfig
from ..errors import RateLimitedError
from ..models import AccountIdentifier, ExistenceResult, ProbeState

LOGGER = logging.getLogger(__name__)

_RATE_LIMITED = 429

_BASE_DELAY = 0.5  # seconds; doubles each transient retry


def _retry_after_seconds(headers: httpx.Headers) -> Optional[float]:
    raw = headers.get("retry-after")
    if raw is None:
        return None
    try:
        return max(float(raw), 0.0)
    except ValueError:
        return None


def _describe(exc: Exception) -> str:
    return f"{type(exc).__name__}: {exc}"


def build_async_client(config: RadarConfig, **kwargs) -> httpx.AsyncClient:
    """Shared client: explicit per-request timeout, pooled connections sized to the concurrency."""

    limits = httpx.Limits(max_connections=max(config.concurrency, 1) * 2)
    return httpx.AsyncClient(
        timeout=httpx.Timeout(config.request_timeout_seconds),
        headers={"User-Agent": config.user_agent, "Accept": "application/json"},
        limits=limits,
        follow_redirects=True,
        **kwargs,
    )


class BlueskyProfileProber:
    """Resolve a Bluesky handle through ``app.bsky.actor.getProfile``.

    200 means the account exists. 400/404 mean it does not. Anything else
    (5xx, 429, timeouts, transport errors) is retried ``transient_retries``
    times and then reported as ERROR, so a flaky network never reads as a
    confirmed absence.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        config: RadarConfig,
        *,
        confirm_profile_page: bool = False,
    ) -> None:
        self._client = client
        self._config = config
        self._confirm_profile_page = confirm_profile_page
        self._endpoint = f"{config.bluesky_api_base.rstrip('/')}/xrpc/app.bsky.actor.getProfile"

    async def probe(self, identifier: AccountIdentifier, instance: Optional[str] = None) -> ExistenceResult:
        actor = identifier.raw.lstrip("@")
        attempts = max(self._config.transient_retries, 0) + 1
        detail = "no response"

        for attempt in range(1, attempts + 1):
            try:
                response = await self._client.get(self._endpoint, params={"actor": actor})
            except httpx.HTTPError as exc:
                detail = _describe(exc)
            else:
                if response.status_code == 200:
                    await self._pause()
                    if self._confirm_profile_page:
                        return await self._confirm(identifier, actor)
                    return ExistenceResult(identifier, ProbeState.EXISTS)
                if 400 <= response.status_code < 500 and response.status_code != _RATE_LIMITED:
                    await self._pause()
                    return ExistenceResult(
                        identifier,
                        ProbeState.ABSENT,
                        detail=f"HTTP {response.status_code}: {_error_message(response)}",
                    )
                detail = f"HTTP {response.status_code}"

            if attempt < attempts:
                delay = _BASE_DELAY * (2 ** (attempt - 1))
                LOGGER.debug(
                    "Probe attempt %d/%d for %s failed (%s); retrying in %.1fs",
                    attempt, attempts, actor, detail, delay,
                )
                await asyncio.sleep(delay)

        LOGGER.warning("Profile lookup for %s gave up after %d attempts: %s", actor, attempts, detail)
        await self._pause()
        return ExistenceResult(identifier, ProbeState.ERROR, detail=detail)

    async def _confirm(self, identifier: AccountIdentifier, actor: str) -> ExistenceResult:
        page = f"{self._config.bluesky_web_base.rstrip('/')}/profile/{actor}"
        try:
            response = await self._client.get(page)
        except httpx.HTTPError as exc:
            return ExistenceResult(identifier, ProbeState.ERROR, detail=_describe(exc))
        if response.status_code == 200:
            return ExistenceResult(identifier, ProbeState.EXISTS)
        return ExistenceResult(
            identifier, ProbeState.ABSENT, detail=f"profile page HTTP {response.status_code}"
        )

    async def _pause(self) -> None:
        if self._config.request_pause_seconds > 0:
            await asyncio.sleep(self._config.request_pause_seconds)


class MastodonSearchProber:
    """Search a Mastodon instance for a bridged ``handle@bsky.brid.gy`` account."""

    def __init__(self, client: httpx.AsyncClient, config: RadarConfig) -> None:
        self._client = client
        self._config = config

    async def probe(self, identifier: AccountIdentifier, instance: str) -> ExistenceResult:
        query = identifier.raw.lstrip("@")
        url = f"https://{instance}/api/v2/search"
        try:
            response = await self._client.get(url, params={"q": query, "type": "accounts"})
        except httpx.HTTPError as exc:
            LOGGER.error("Search on %s for %s failed: %s", instance, query, exc)
            return ExistenceResult(identifier, ProbeState.ERROR, detail=_describe(exc))
        finally:
            if self._config.request_pause_seconds > 0:
                await asyncio.sleep(self._config.request_pause_seconds)

        if response.status_code == _RATE_LIMITED:
            raise RateLimitedError(instance, _retry_after_seconds(response.headers))

        if response.status_code != 200:
            detail = f"HTTP {response.status_code} from {instance}: {_error_message(response)}"
            LOGGER.error("Search on %s for %s returned %s", instance, query, response.status_code)
            return ExistenceResult(identifier, ProbeState.ERROR, detail=detail)

        try:
            payload = response.json()
        except ValueError:
            return ExistenceResult(identifier, ProbeState.ERROR, detail=f"non-JSON search response from {instance}")

        accounts = payload.get("accounts") if isinstance(payload, dict) else None
        if isinstance(accounts, list) and accounts:
            LOGGER.debug("Found %s on %s", query, instance)
            return ExistenceResult(identifier, ProbeState.EXISTS, detail=instance)
        return ExistenceResult(identifier, ProbeState.ABSENT, detail=f"not found on {instance}")


def _error_message(response: httpx.Response) -> str:
    try:
        payload: Dict[str, object] = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(payload, dict):
        for key in ("message", "error", "detail"):
            value = payload.get(key)
            if value:
                return str(value)
    return response.text[:200]
