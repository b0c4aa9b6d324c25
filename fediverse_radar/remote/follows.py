"""Follow-list crawling for Bluesky (cursor pages) and Mastodon (Link-header pages)."""
from __future__ import annotations

import logging
import time
from typing import Callable, Dict, Iterable, List, Optional, Set

import requests

from ..config import RadarConfig
from ..models import AccountIdentifier, FollowSet, Namespace, normalize_handle

LOGGER = logging.getLogger(__name__)

BLUESKY_RELATIONS = {
    "follows": ("app.bsky.graph.getFollows", "follows"),
    "followers": ("app.bsky.graph.getFollowers", "followers"),
}

PAGE_SIZE = 100
MASTODON_PAGE_SIZE = 80
HANDLE_RESOLVE_PAUSE_SECONDS = 0.1


def build_session(config: RadarConfig) -> requests.Session:
    session = requests.Session()
    session.headers.update({"User-Agent": config.user_agent, "Accept": "application/json"})
    return session


class BlueskyFollowResolver:
    """Walk ``getFollows``/``getFollowers`` pages for one actor.

    Pages are fetched strictly in sequence because each cursor comes from the
    previous response. Any request error ends the crawl and the handles
    gathered so far are returned with ``complete=False``.
    """

    def __init__(
        self,
        session: requests.Session,
        config: RadarConfig,
        *,
        page_pause_seconds: Optional[float] = None,
        event_callback: Optional[Callable[[Dict[str, object]], None]] = None,
    ) -> None:
        self._session = session
        self._config = config
        self._base = config.bluesky_api_base.rstrip("/")
        self._timeout = config.request_timeout_seconds
        self._page_pause = config.request_pause_seconds if page_pause_seconds is None else page_pause_seconds
        self._event_callback = event_callback

    def _emit(self, event: Dict[str, object]) -> None:
        if self._event_callback is not None:
            self._event_callback(event)

    def resolve(
        self,
        owner: AccountIdentifier,
        *,
        relation: str = "follows",
        max_entries: Optional[int] = None,
    ) -> FollowSet:
        method, list_key = BLUESKY_RELATIONS[relation]
        endpoint = f"{self._base}/xrpc/{method}"
        actor = owner.raw.lstrip("@")
        gathered: Set[str] = set()
        seen_cursors: Set[str] = set()
        cursor: Optional[str] = None
        pages = 0
        complete = True

        while True:
            params: Dict[str, object] = {"actor": actor, "limit": PAGE_SIZE}
            if cursor:
                params["cursor"] = cursor
            try:
                response = self._session.get(endpoint, params=params, timeout=self._timeout)
            except requests.RequestException as exc:
                LOGGER.warning("%s for %s aborted after %d pages: %s", method, actor, pages, exc)
                self._emit({"event": "request_exception", "relation": relation, "detail": str(exc)})
                complete = False
                break

            if response.status_code != 200:
                LOGGER.warning(
                    "%s for %s returned HTTP %s after %d pages", method, actor, response.status_code, pages
                )
                self._emit({"event": "request_failed", "relation": relation, "status_code": response.status_code})
                complete = False
                break

            try:
                payload = response.json()
            except ValueError:
                payload = None
            if not isinstance(payload, dict):
                LOGGER.warning("%s for %s returned an unexpected body", method, actor)
                complete = False
                break

            for item in payload.get(list_key) or []:
                if max_entries is not None and len(gathered) >= max_entries:
                    break
                handle = normalize_handle(item.get("handle")) if isinstance(item, dict) else None
                if handle:
                    gathered.add(handle)
            pages += 1
            self._emit({"event": "page_complete", "relation": relation, "page_index": pages, "gathered_count": len(gathered)})

            if max_entries is not None and len(gathered) >= max_entries:
                break
            next_cursor = payload.get("cursor")
            if not next_cursor or next_cursor in seen_cursors:
                break
            seen_cursors.add(next_cursor)
            cursor = next_cursor
            if self._page_pause > 0:
                time.sleep(self._page_pause)

        LOGGER.info("Resolved %d %s for %s over %d pages", len(gathered), relation, actor, pages)
        return FollowSet.build(owner, gathered, complete=complete)

    def resolve_handle(self, actor: str) -> Optional[str]:
        """Turn a DID (or handle) into the account's current handle; None when unresolvable."""

        try:
            response = self._session.get(
                f"{self._base}/xrpc/app.bsky.actor.getProfile",
                params={"actor": actor},
                timeout=self._timeout,
            )
        except requests.RequestException as exc:
            LOGGER.warning("Error resolving handle for %s: %s", actor, exc)
            return None
        if response.status_code != 200:
            LOGGER.warning("Error resolving handle for %s: HTTP %s", actor, response.status_code)
            return None
        try:
            payload = response.json()
        except ValueError:
            return None
        handle = payload.get("handle") if isinstance(payload, dict) else None
        if not handle or handle == "handle.invalid":
            return None
        return handle

    def resolve_handles(
        self,
        actors: Iterable[str],
        *,
        pause_seconds: float = HANDLE_RESOLVE_PAUSE_SECONDS,
        progress: Optional[Callable[[int, int], None]] = None,
    ) -> List[str]:
        actors = list(actors)
        handles: List[str] = []
        for index, actor in enumerate(actors, start=1):
            if progress is not None:
                progress(index, len(actors))
            handle = self.resolve_handle(actor)
            if handle:
                handles.append(handle)
            if pause_seconds > 0:
                time.sleep(pause_seconds)
        return handles


class MastodonFollowResolver:
    """Crawl a Mastodon account's public following list.

    The account id comes from ``/api/v1/accounts/lookup``; pages follow the
    ``Link: <...>; rel="next"`` header. Members are lowercase ``acct`` values,
    with the owner's instance appended to local accounts so they compare
    against full addresses.
    """

    def __init__(self, session: requests.Session, config: RadarConfig) -> None:
        self._session = session
        self._config = config
        self._timeout = config.request_timeout_seconds

    def resolve(self, owner: AccountIdentifier) -> FollowSet:
        address = owner.raw.strip().lstrip("@")
        user, _, instance = address.partition("@")
        instance = instance or self._config.check_instance
        if not instance:
            raise ValueError(f"cannot tell which instance hosts {owner.raw!r}")

        account_id = self._lookup_account_id(instance, user)
        if account_id is None:
            return FollowSet.build(owner, [], complete=False)

        url: Optional[str] = f"https://{instance}/api/v1/accounts/{account_id}/following"
        params: Optional[Dict[str, object]] = {"limit": MASTODON_PAGE_SIZE}
        gathered: Set[str] = set()
        complete = True
        seen_urls: Set[str] = set()

        while url:
            try:
                response = self._session.get(url, params=params, timeout=self._timeout)
            except requests.RequestException as exc:
                LOGGER.warning("Following crawl for %s aborted: %s", address, exc)
                complete = False
                break
            if response.status_code != 200:
                LOGGER.warning("Following crawl for %s returned HTTP %s", address, response.status_code)
                complete = False
                break
            try:
                accounts = response.json()
            except ValueError:
                complete = False
                break
            for account in accounts if isinstance(accounts, list) else []:
                acct = normalize_handle(account.get("acct")) if isinstance(account, dict) else None
                if not acct:
                    continue
                gathered.add(acct if "@" in acct else f"{acct}@{instance}")

            seen_urls.add(url)
            next_url = response.links.get("next", {}).get("url")
            url = next_url if next_url and next_url not in seen_urls else None
            params = None
            if url and self._config.request_pause_seconds > 0:
                time.sleep(self._config.request_pause_seconds)

        LOGGER.info("Resolved %d following for %s", len(gathered), address)
        return FollowSet.build(owner, gathered, complete=complete)

    def _lookup_account_id(self, instance: str, user: str) -> Optional[str]:
        try:
            response = self._session.get(
                f"https://{instance}/api/v1/accounts/lookup",
                params={"acct": user},
                timeout=self._timeout,
            )
        except requests.RequestException as exc:
            LOGGER.warning("Account lookup for %s on %s failed: %s", user, instance, exc)
            return None
        if response.status_code != 200:
            LOGGER.warning("Account lookup for %s on %s returned HTTP %s", user, instance, response.status_code)
            return None
        try:
            payload = response.json()
        except ValueError:
            return None
        account_id = payload.get("id") if isinstance(payload, dict) else None
        return str(account_id) if account_id else None


def owner_identifier(raw: str, namespace: Namespace) -> AccountIdentifier:
    return AccountIdentifier(raw.strip().lstrip("@"), namespace)
