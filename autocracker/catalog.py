import asyncio
import difflib
import json
import logging
import re
from html import unescape
from typing import Any, Dict, List, Optional, Tuple

import aiohttp

from .errors import CatalogError, describe_error
from .models import Game

logger = logging.getLogger(__name__)

APP_LIST_URL = (
    "https://raw.githubusercontent.com/0xSovereign/steamapplist/refs/heads/main/data/apps.json"
)
STORE_PAGE_URL = "https://store.steampowered.com/app/{appid}/"
APPDETAILS_URL = "https://store.steampowered.com/api/appdetails?appids={appid}&l=english"

MAX_SEARCH_RESULTS = 5
MIN_QUERY_LENGTH = 2
NO_NOTICE_TEXT = "No third-party DRM notice"

# Store pages gate mature titles behind an age check.
AGE_GATE_COOKIES = {
    "birthtime": "283993201",
    "lastagecheckage": "1-0-1979",
    "mature_content": "1",
}

_DRM_NOTICE_RE = re.compile(
    r'<div class="DRM_notice">\s*(.*?)\s*</div>', re.IGNORECASE | re.DOTALL
)
_TAG_RE = re.compile(r"<[^>]+>")


def score_game(name: str, query: str) -> Optional[int]:
    """
    Relevance of name for query, or None if it should not be listed.

    Similarity from difflib is boosted for exact, prefix, whole word and
    substring matches, and shorter names win ties. Names that fail the
    similarity bar still qualify when every query word appears in them.
    """
    name_lower = name.lower()
    query_lower = query.lower()
    if not name_lower:
        return None

    similarity = difflib.SequenceMatcher(None, query_lower, name_lower).ratio()
    contains = query_lower in name_lower
    if similarity < 0.5 and not contains:
        words = query_lower.split()
        if words and all(word in name_lower for word in words):
            return 100 - len(name)
        return None

    fuzzy_score = int(similarity * 1000)
    bonus = 0
    if name_lower == query_lower:
        bonus += 10000
    elif name_lower.startswith(query_lower):
        bonus += 5000
    elif (
        f" {query_lower} " in name_lower
        or name_lower.startswith(f"{query_lower} ")
        or name_lower.endswith(f" {query_lower}")
    ):
        bonus += 2000
    elif contains:
        bonus += 1000

    bonus -= min(max(len(name) - len(query), 0), 500)
    bonus += int(fuzzy_score * 0.1)
    return fuzzy_score + bonus


def rank_games(
    apps: List[Dict[str, Any]], query: str, limit: int = MAX_SEARCH_RESULTS
) -> List[Game]:
    query = query.strip()
    if len(query) < MIN_QUERY_LENGTH:
        return []

    scored: List[Tuple[int, int, Dict[str, Any]]] = []
    for index, app in enumerate(apps):
        score = score_game(str(app.get("name", "")), query)
        if score is not None:
            scored.append((-score, index, app))
    scored.sort(key=lambda item: (item[0], item[1]))
    return [Game.from_payload(app) for _, _, app in scored[:limit]]


def extract_drm_notice(html: str) -> Optional[str]:
    match = _DRM_NOTICE_RE.search(html)
    if not match:
        return None
    text = unescape(_TAG_RE.sub(" ", match.group(1)))
    text = " ".join(text.split())
    return text or None


class SteamCatalog:
    """
    Backend for the catalog commands: search by title, name by id, the
    protection probe and the appdetails DRM-notice fallback.

    The app list is downloaded once and cached for the process lifetime.
    """

    def __init__(
        self,
        app_list_url: str = APP_LIST_URL,
        timeout: float = 30,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.app_list_url = app_list_url
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self._session = session
        self._owns_session = session is None
        self._apps: Optional[List[Dict[str, Any]]] = None
        self._apps_lock: Optional[asyncio.Lock] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._owns_session and self._session is not None:
            await self._session.close()
        self._session = None

    # --- App list ---

    async def get_app_list(self) -> List[Dict[str, Any]]:
        if self._apps is not None:
            return self._apps
        if self._apps_lock is None:
            self._apps_lock = asyncio.Lock()
        async with self._apps_lock:
            if self._apps is None:
                self._apps = await self._fetch_app_list()
                logger.info("Game list cached (%d games).", len(self._apps))
        return self._apps

    async def _fetch_app_list(self) -> List[Dict[str, Any]]:
        session = await self._get_session()
        try:
            async with session.get(self.app_list_url) as response:
                if response.status != 200:
                    raise CatalogError(
                        f"Failed to fetch game list (Status: {response.status})"
                    )
                data = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, json.JSONDecodeError) as e:
            raise CatalogError(f"Failed to fetch game list: {describe_error(e)}") from e

        if isinstance(data, dict):
            data = data.get("applist", {}).get("apps", [])
        if not isinstance(data, list):
            raise CatalogError("Unexpected game list format")
        return [app for app in data if isinstance(app, dict) and "appid" in app]

    def refresh(self) -> None:
        self._apps = None

    def cache_stats(self) -> Dict[str, Any]:
        return {
            "cached": self._apps is not None,
            "game_count": len(self._apps) if self._apps is not None else 0,
        }

    async def search(self, title: str, limit: int = MAX_SEARCH_RESULTS) -> List[Game]:
        """Up to limit games matching title. Never raises; errors give []."""
        try:
            apps = await self.get_app_list()
            results = rank_games(apps, title, limit)
        except Exception as e:
            logger.error("Error searching game '%s': %s", title, describe_error(e))
            return []
        logger.info("Found %d result(s) for '%s'", len(results), title.strip())
        return results

    async def get_app_name(self, catalog_id: str) -> Optional[str]:
        try:
            apps = await self.get_app_list()
        except Exception as e:
            logger.warning("Could not look up App ID %s: %s", catalog_id, describe_error(e))
            return None
        for app in apps:
            if str(app.get("appid")) == str(catalog_id):
                return app.get("name")
        return None

    # --- Protection ---

    async def probe_protection(self, catalog_id: str) -> str:
        """Free-text DRM status from the store page. Raises CatalogError."""
        session = await self._get_session()
        url = STORE_PAGE_URL.format(appid=catalog_id)
        try:
            async with session.get(url, cookies=AGE_GATE_COOKIES) as response:
                if response.status != 200:
                    raise CatalogError(
                        f"Failed to check DRM for App ID {catalog_id} (Status: {response.status})"
                    )
                html = await response.text()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise CatalogError(f"Failed to check DRM: {describe_error(e)}") from e
        return extract_drm_notice(html) or NO_NOTICE_TEXT

    async def fetch_drm_notice(self, catalog_id: str) -> Optional[str]:
        """The drm_notice field of the appdetails record, if there is one."""
        session = await self._get_session()
        url = APPDETAILS_URL.format(appid=catalog_id)
        try:
            async with session.get(url) as response:
                if response.status != 200:
                    raise CatalogError(
                        f"Failed to fetch details for App ID {catalog_id} (Status: {response.status})"
                    )
                data = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, json.JSONDecodeError) as e:
            raise CatalogError(
                f"Error fetching App ID {catalog_id} details: {describe_error(e)}"
            ) from e

        entry = (data or {}).get(str(catalog_id), {})
        if not entry.get("success"):
            return None
        return entry.get("data", {}).get("drm_notice") or None
