"""Ordering and truncation of the visible feed."""

from __future__ import annotations

from typing import Final, Iterable, Sequence

from .models import AggregatedTitle, Title

ALL: Final = None
MIN_TOP_N: Final = 5


def rank_key(entry: AggregatedTitle) -> tuple[float, int]:
    """Most playtime first; equal playtime falls back to the lower id."""

    return (-entry.minutes_played, entry.id)


def effective_limit(limit: int | None, *, floor: int = MIN_TOP_N) -> int | None:
    if limit is ALL:
        return None
    return max(floor, int(limit))


def select(
    visible: Iterable[AggregatedTitle],
    limit: int | None = ALL,
    *,
    floor: int = MIN_TOP_N,
) -> list[AggregatedTitle]:
    """Return the top ``limit`` entries; ``ALL`` keeps every entry.

    A limit below ``floor`` is raised to ``floor`` so the feed never collapses
    to one or two bubbles.
    """

    ranked = sorted(visible, key=rank_key)
    cutoff = effective_limit(limit, floor=floor)
    if cutoff is None:
        return ranked
    return ranked[:cutoff]


def merge_candidates(titles: Sequence[Title]) -> list[Title]:
    """Raw titles in picker order: by name, case-insensitively, then id."""

    return sorted(titles, key=lambda title: (title.name.casefold(), title.id))
