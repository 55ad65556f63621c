"""Pydantic models describing titles and feed payloads."""

from __future__ import annotations

import math
from typing import Any, Mapping

from pydantic import BaseModel, ConfigDict, Field

from .utils import coerce_title_id

STEAM_CDN_URL = "https://cdn.akamai.steamstatic.com/steam/apps"
STEAM_STORE_APP_URL = "https://store.steampowered.com/app"


class Title(BaseModel):
    """One owned catalog entry with its lifetime playtime."""

    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    minutes_played: float = Field(default=0.0, ge=0)
    image_ref: str | None = None
    store_ref: str | None = None

    @classmethod
    def from_owned_game(cls, data: Mapping[str, Any]) -> "Title | None":
        """Build a title from a GetOwnedGames record, or ``None`` if unusable."""

        appid = coerce_title_id(data.get("appid"))
        if appid is None:
            return None
        name = data.get("name")
        if not isinstance(name, str) or not name.strip():
            return None

        return cls(
            id=appid,
            name=name.strip(),
            minutes_played=_coerce_minutes(data.get("playtime_forever")),
            image_ref=f"{STEAM_CDN_URL}/{appid}/header.jpg",
            store_ref=f"{STEAM_STORE_APP_URL}/{appid}/",
        )

    @property
    def hours_played(self) -> float:
        return self.minutes_played / 60


class AggregatedTitle(BaseModel):
    """Playtime of a merge root summed over every title folded into it."""

    id: int
    display_id: int
    name: str
    minutes_played: float
    image_ref: str | None = None
    store_ref: str | None = None
    members: tuple[int, ...] = ()

    @property
    def hours_played(self) -> float:
        return self.minutes_played / 60

    def to_feed_entry(self) -> dict[str, object]:
        """Return the record handed to the bubble renderer."""

        return {
            "id": self.id,
            "name": self.name,
            "metricValue": self.hours_played,
            "minutesPlayed": self.minutes_played,
            "imageRef": self.image_ref,
            "storeRef": self.store_ref,
        }


def _coerce_minutes(value: object) -> float:
    if value is None or isinstance(value, bool):
        return 0.0
    try:
        minutes = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return 0.0
    if not math.isfinite(minutes) or minutes < 0:
        return 0.0
    return minutes
