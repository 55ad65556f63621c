"""Utility helpers for the SteamBubbles service."""

from __future__ import annotations

import re

STEAM_ID64_RE = re.compile(r"^\d{17}$")
PROFILE_URL_RE = re.compile(
    r"steamcommunity\.com/(?P<kind>id|profiles)/(?P<value>[^/?#]+)", re.IGNORECASE
)


def coerce_title_id(value: object) -> int | None:
    """Return a positive integer title id, or ``None`` for anything else."""

    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value > 0 else None
    if isinstance(value, float):
        if value.is_integer() and value > 0:
            return int(value)
        return None
    if isinstance(value, str):
        stripped = value.strip()
        if stripped.isdigit():
            parsed = int(stripped)
            return parsed if parsed > 0 else None
    return None


def parse_steam_identifier(raw: str) -> tuple[str, str] | None:
    """Classify user input as a SteamID64 or a vanity profile name.

    Returns ``("steamid", value)`` or ``("vanity", value)``. Full profile URLs
    are accepted and reduced to their identifying segment.
    """

    value = (raw or "").strip()
    if not value:
        return None

    match = PROFILE_URL_RE.search(value)
    if match:
        kind = match.group("kind").lower()
        segment = match.group("value")
        if kind == "profiles" and STEAM_ID64_RE.match(segment):
            return "steamid", segment
        return "vanity", segment

    if STEAM_ID64_RE.match(value):
        return "steamid", value
    return "vanity", value
