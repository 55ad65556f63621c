"""Conversion of raw provider records into canonical titles."""

from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping

from .models import Title

logger = logging.getLogger(__name__)


def extract_owned_games(payload: object) -> list[dict[str, Any]]:
    """Return the ``response.games`` list from a GetOwnedGames envelope."""

    if not isinstance(payload, Mapping):
        return []
    response = payload.get("response")
    if not isinstance(response, Mapping):
        return []
    games = response.get("games")
    if not isinstance(games, list):
        return []
    return [game for game in games if isinstance(game, dict)]


def normalize_owned_games(records: Iterable[Mapping[str, Any]]) -> list[Title]:
    """Convert owned-game records into titles, skipping unusable rows.

    Rows without a numeric id or a name are dropped. Missing or bogus playtime
    counts as zero. When the provider repeats an id the first row wins.
    """

    titles: list[Title] = []
    seen: set[int] = set()
    skipped = 0
    for record in records:
        if not isinstance(record, Mapping):
            skipped += 1
            continue
        title = Title.from_owned_game(record)
        if title is None:
            skipped += 1
            continue
        if title.id in seen:
            logger.warning("Duplicate title id %s in provider payload, keeping first", title.id)
            continue
        seen.add(title.id)
        titles.append(title)

    if skipped:
        logger.info("Skipped %s provider records without an id or name", skipped)
    return titles
