"""Utilities for communicating with the Steam Web API and storefront."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Iterable

import httpx

from ..config import Settings
from ..utils import coerce_title_id

logger = logging.getLogger(__name__)


class SteamAPIError(RuntimeError):
    """Raised when Steam cannot provide the requested data."""

    def __init__(self, message: str, *, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class SteamClient:
    """Thin wrapper around the Steam Web API and store endpoints."""

    def __init__(
        self,
        settings: Settings,
        http_client: httpx.AsyncClient,
        store_client: httpx.AsyncClient | None = None,
    ):
        self._settings = settings
        self._client = http_client
        self._store_client = store_client or http_client
        self._max_retries = 3

    async def _sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)

    def _require_key(self) -> str:
        key = self._settings.steam_api_key
        if not key:
            raise SteamAPIError("Steam API key is not configured", status_code=500)
        return key

    async def _get(
        self,
        client: httpx.AsyncClient,
        url: str,
        params: dict[str, Any],
        *,
        label: str,
    ) -> httpx.Response:
        """GET with retries on transport errors and 5xx responses."""

        attempt = 0
        while True:
            try:
                response = await client.get(url, params=params)
            except httpx.HTTPError as exc:
                attempt += 1
                if attempt <= self._max_retries:
                    backoff = min(2 ** (attempt - 1), 5) + (0.1 * attempt)
                    logger.info(
                        "Transient error talking to Steam %s (%s). Retrying in %.1fs",
                        label,
                        exc.__class__.__name__,
                        backoff,
                    )
                    await self._sleep(backoff)
                    continue
                logger.warning("Failed to fetch Steam %s: %s", label, exc)
                raise SteamAPIError(f"Unable to reach Steam ({label})") from exc

            if 500 <= response.status_code < 600:
                attempt += 1
                if attempt <= self._max_retries:
                    backoff = min(2 ** (attempt - 1), 5) + (0.1 * attempt)
                    logger.info(
                        "Steam 5xx during %s. Retrying in %.1fs", label, backoff
                    )
                    await self._sleep(backoff)
                    continue
                logger.warning("Failed to fetch Steam %s: %s", label, response.text)
                raise SteamAPIError(
                    f"Steam is unavailable ({label})", status_code=response.status_code
                )
            return response

    @staticmethod
    def _json(response: httpx.Response, *, label: str) -> dict[str, Any]:
        try:
            data = response.json()
        except ValueError as exc:
            logger.warning("Unexpected non-JSON Steam response for %s", label)
            raise SteamAPIError(f"Steam returned an unreadable {label} response") from exc
        if not isinstance(data, dict):
            logger.warning("Unexpected Steam response structure for %s", label)
            raise SteamAPIError(f"Steam returned an unexpected {label} response")
        return data

    async def fetch_owned_games(self, steam_id: str) -> dict[str, Any]:
        """Return the raw GetOwnedGames envelope for ``steam_id``."""

        params = {
            "key": self._require_key(),
            "steamid": steam_id,
            "include_appinfo": 1,
            "include_played_free_games": 1,
            "format": "json",
        }
        response = await self._get(
            self._client,
            "/IPlayerService/GetOwnedGames/v0001/",
            params,
            label="owned games",
        )
        if response.status_code in {401, 403}:
            raise SteamAPIError(
                "Steam refused the request. Check the API key and that the "
                "profile's Game Details are public.",
                status_code=response.status_code,
            )
        if response.status_code >= 400:
            raise SteamAPIError(
                "Failed to fetch owned games", status_code=response.status_code
            )
        return self._json(response, label="owned games")

    async def fetch_player_summary(self, steam_id: str) -> dict[str, Any] | None:
        """Return the public profile summary for ``steam_id`` if Steam has one."""

        params = {"key": self._require_key(), "steamids": steam_id}
        response = await self._get(
            self._client,
            "/ISteamUser/GetPlayerSummaries/v0002/",
            params,
            label="player summary",
        )
        if response.status_code >= 400:
            logger.warning(
                "Steam player summary for %s failed with %s",
                steam_id,
                response.status_code,
            )
            return None
        data = self._json(response, label="player summary")
        players = (data.get("response") or {}).get("players") or []
        for player in players:
            if isinstance(player, dict) and str(player.get("steamid")) == steam_id:
                return player
        return None

    async def resolve_vanity_url(self, vanity_name: str) -> str | None:
        """Map a custom profile name to its SteamID64."""

        params = {"key": self._require_key(), "vanityurl": vanity_name}
        response = await self._get(
            self._client,
            "/ISteamUser/ResolveVanityURL/v0001/",
            params,
            label="vanity lookup",
        )
        if response.status_code >= 400:
            raise SteamAPIError(
                "Failed to resolve that profile name", status_code=response.status_code
            )
        data = self._json(response, label="vanity lookup")
        result = data.get("response") or {}
        if result.get("success") != 1:
            return None
        steam_id = result.get("steamid")
        return str(steam_id) if steam_id else None

    async def fetch_app_details(self, appids: Iterable[object]) -> dict[str, dict[str, Any]]:
        """Fetch store details for up to the configured number of apps.

        Individual lookups that fail are skipped; the result only contains the
        apps Steam described.
        """

        cleaned: list[int] = []
        for raw in appids:
            appid = coerce_title_id(raw)
            if appid is not None and appid not in cleaned:
                cleaned.append(appid)
        limited = cleaned[: self._settings.appdetails_batch_limit]

        async def _lookup(appid: int) -> tuple[int, dict[str, Any] | None]:
            try:
                response = await self._store_client.get(
                    "/api/appdetails", params={"appids": appid}
                )
                payload = response.json()
            except (httpx.HTTPError, ValueError) as exc:
                logger.info("Skipping app details for %s: %s", appid, exc)
                return appid, None
            if not isinstance(payload, dict):
                return appid, None
            entry = payload.get(str(appid)) or {}
            data = entry.get("data") if isinstance(entry, dict) else None
            if not isinstance(data, dict):
                return appid, None
            return appid, {
                "name": data.get("name"),
                "genres": [
                    genre.get("description")
                    for genre in data.get("genres") or []
                    if isinstance(genre, dict) and genre.get("description")
                ],
                "header_image": data.get("header_image"),
            }

        results = await asyncio.gather(*(_lookup(appid) for appid in limited))
        return {str(appid): details for appid, details in results if details is not None}
