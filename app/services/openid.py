"""Steam sign-in via OpenID 2.0."""

from __future__ import annotations

import logging
import re
from typing import Mapping
from urllib.parse import urlencode

import httpx

logger = logging.getLogger(__name__)

OPENID_NS = "http://specs.openid.net/auth/2.0"
IDENTIFIER_SELECT = "http://specs.openid.net/auth/2.0/identifier_select"
CLAIMED_ID_RE = re.compile(r"^https?://steamcommunity\.com/openid/id/(\d{17})/?$")


class SteamOpenID:
    """Builds login redirects and verifies the assertions Steam sends back."""

    def __init__(self, login_url: str, http_client: httpx.AsyncClient):
        self._login_url = login_url
        self._client = http_client

    def build_login_url(self, *, return_to: str, realm: str) -> str:
        query = urlencode(
            {
                "openid.ns": OPENID_NS,
                "openid.mode": "checkid_setup",
                "openid.return_to": return_to,
                "openid.realm": realm,
                "openid.identity": IDENTIFIER_SELECT,
                "openid.claimed_id": IDENTIFIER_SELECT,
            }
        )
        return f"{self._login_url}?{query}"

    @staticmethod
    def steam_id_from_claimed_id(claimed_id: str | None) -> str | None:
        if not claimed_id:
            return None
        match = CLAIMED_ID_RE.match(claimed_id.strip())
        return match.group(1) if match else None

    async def verify(self, params: Mapping[str, str], *, return_to: str) -> str | None:
        """Return the SteamID64 asserted by ``params`` if Steam confirms it."""

        if params.get("openid.mode") != "id_res":
            return None
        received_return = (params.get("openid.return_to") or "").split("?", 1)[0]
        if received_return.rstrip("/") != return_to.rstrip("/"):
            logger.warning("OpenID return_to mismatch: %s", received_return)
            return None
        steam_id = self.steam_id_from_claimed_id(params.get("openid.claimed_id"))
        if steam_id is None:
            return None

        body = {
            key: value for key, value in params.items() if key.startswith("openid.")
        }
        body["openid.mode"] = "check_authentication"
        try:
            response = await self._client.post(self._login_url, data=body)
        except httpx.HTTPError as exc:
            logger.warning("Steam OpenID verification failed: %s", exc)
            return None
        if response.status_code >= 400:
            logger.warning(
                "Steam OpenID verification returned %s", response.status_code
            )
            return None

        fields = dict(
            line.split(":", 1) for line in response.text.splitlines() if ":" in line
        )
        if fields.get("is_valid", "").strip() != "true":
            logger.info("Steam rejected OpenID assertion for %s", steam_id)
            return None
        return steam_id
