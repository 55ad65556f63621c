"""Tests for the Steam API client helpers."""

from __future__ import annotations

from typing import Any

import httpx
import pytest

from app.config import Settings
from app.services.steam import SteamAPIError, SteamClient


def build_settings(**overrides: Any) -> Settings:
    """Return a settings object with defaults suitable for tests."""

    base: dict[str, Any] = {"_env_file": None, "STEAM_API_KEY": "steam-key"}
    base.update(overrides)
    return Settings(**base)  # type: ignore[arg-type]


@pytest.fixture(autouse=True)
def _no_backoff(monkeypatch) -> None:
    async def _sleep(self, _: float) -> None:
        return None

    monkeypatch.setattr(SteamClient, "_sleep", _sleep)


@pytest.mark.anyio("asyncio")
async def test_fetch_owned_games_passes_expected_parameters() -> None:
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(
            200,
            json={"response": {"game_count": 1, "games": [{"appid": 620, "name": "Portal 2"}]}},
        )

    transport = httpx.MockTransport(handler)
    async with httpx.AsyncClient(transport=transport, base_url="https://api.example.com") as http_client:
        client = SteamClient(build_settings(), http_client)
        payload = await client.fetch_owned_games("76561197960287930")

    assert payload["response"]["games"][0]["appid"] == 620
    params = requests[0].url.params
    assert requests[0].url.path == "/IPlayerService/GetOwnedGames/v0001/"
    assert params["key"] == "steam-key"
    assert params["steamid"] == "76561197960287930"
    assert params["include_appinfo"] == "1"
    assert params["include_played_free_games"] == "1"


@pytest.mark.anyio("asyncio")
async def test_fetch_owned_games_retries_server_errors() -> None:
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        if calls < 3:
            return httpx.Response(503, text="busy")
        return httpx.Response(200, json={"response": {"games": []}})

    transport = httpx.MockTransport(handler)
    async with httpx.AsyncClient(transport=transport, base_url="https://api.example.com") as http_client:
        client = SteamClient(build_settings(), http_client)
        payload = await client.fetch_owned_games("1")

    assert calls == 3
    assert payload == {"response": {"games": []}}


@pytest.mark.anyio("asyncio")
async def test_fetch_owned_games_gives_up_after_retries() -> None:
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        return httpx.Response(502, text="bad gateway")

    transport = httpx.MockTransport(handler)
    async with httpx.AsyncClient(transport=transport, base_url="https://api.example.com") as http_client:
        client = SteamClient(build_settings(), http_client)
        with pytest.raises(SteamAPIError):
            await client.fetch_owned_games("1")

    assert calls == 4


@pytest.mark.anyio("asyncio")
async def test_forbidden_response_mentions_privacy() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(403, text="Forbidden")

    transport = httpx.MockTransport(handler)
    async with httpx.AsyncClient(transport=transport, base_url="https://api.example.com") as http_client:
        client = SteamClient(build_settings(), http_client)
        with pytest.raises(SteamAPIError) as excinfo:
            await client.fetch_owned_games("1")

    assert excinfo.value.status_code == 403
    assert "public" in str(excinfo.value)


@pytest.mark.anyio("asyncio")
async def test_missing_api_key_raises_before_any_request() -> None:
    def handler(request: httpx.Request) -> httpx.Response:  # pragma: no cover - not reached
        raise AssertionError("no request expected")

    transport = httpx.MockTransport(handler)
    async with httpx.AsyncClient(transport=transport, base_url="https://api.example.com") as http_client:
        client = SteamClient(build_settings(STEAM_API_KEY=""), http_client)
        with pytest.raises(SteamAPIError) as excinfo:
            await client.fetch_owned_games("1")

    assert excinfo.value.status_code == 500


@pytest.mark.anyio("asyncio")
async def test_resolve_vanity_url() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.params["vanityurl"] == "robin":
            return httpx.Response(
                200, json={"response": {"success": 1, "steamid": "76561197960287930"}}
            )
        return httpx.Response(200, json={"response": {"success": 42, "message": "No match"}})

    transport = httpx.MockTransport(handler)
    async with httpx.AsyncClient(transport=transport, base_url="https://api.example.com") as http_client:
        client = SteamClient(build_settings(), http_client)
        assert await client.resolve_vanity_url("robin") == "76561197960287930"
        assert await client.resolve_vanity_url("nobody") is None


@pytest.mark.anyio("asyncio")
async def test_fetch_player_summary_picks_matching_player() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json={
                "response": {
                    "players": [
                        {"steamid": "76561197960287930", "personaname": "Robin", "avatarfull": "a.jpg"}
                    ]
                }
            },
        )

    transport = httpx.MockTransport(handler)
    async with httpx.AsyncClient(transport=transport, base_url="https://api.example.com") as http_client:
        client = SteamClient(build_settings(), http_client)
        summary = await client.fetch_player_summary("76561197960287930")
        missing = await client.fetch_player_summary("1")

    assert summary is not None
    assert summary["personaname"] == "Robin"
    assert missing is None


@pytest.mark.anyio("asyncio")
async def test_fetch_app_details_skips_failures_and_caps_batch() -> None:
    requested: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        appid = request.url.params["appids"]
        requested.append(appid)
        if appid == "2":
            return httpx.Response(200, json={"2": {"success": False}})
        if appid == "3":
            return httpx.Response(500, text="not json")
        return httpx.Response(
            200,
            json={
                appid: {
                    "success": True,
                    "data": {
                        "name": f"Game {appid}",
                        "genres": [{"id": "1", "description": "Action"}],
                        "header_image": f"https://img/{appid}.jpg",
                    },
                }
            },
        )

    transport = httpx.MockTransport(handler)
    async with httpx.AsyncClient(transport=transport, base_url="https://store.example.com") as http_client:
        client = SteamClient(build_settings(APPDETAILS_BATCH_LIMIT=3), http_client)
        details = await client.fetch_app_details([1, "2", 3, 4, 1])

    assert sorted(requested) == ["1", "2", "3"]
    assert details == {
        "1": {
            "name": "Game 1",
            "genres": ["Action"],
            "header_image": "https://img/1.jpg",
        }
    }
