"""Hidden-title bookkeeping for the visible feed."""

from __future__ import annotations

from typing import Iterable, Mapping

from .models import AggregatedTitle


class VisibilityManager:
    """Tracks which title ids the user has hidden from the feed.

    Hiding never affects aggregation: a hidden root still collects the
    playtime of everything merged into it, it just is not shown.
    """

    def __init__(self, hidden_ids: Iterable[int] = ()):
        self._hidden: set[int] = set(hidden_ids)

    @property
    def hidden(self) -> frozenset[int]:
        return frozenset(self._hidden)

    def __len__(self) -> int:
        return len(self._hidden)

    def is_hidden(self, title_id: int) -> bool:
        return title_id in self._hidden

    def toggle(self, title_id: int) -> bool:
        """Flip membership of ``title_id``; returns ``True`` when now hidden."""

        if title_id in self._hidden:
            self._hidden.discard(title_id)
            return False
        self._hidden.add(title_id)
        return True

    def clear_all(self) -> None:
        self._hidden.clear()

    def reset(self, hidden_ids: Iterable[int]) -> None:
        self._hidden = set(hidden_ids)

    def filter_visible(
        self, aggregated: Mapping[int, AggregatedTitle]
    ) -> list[AggregatedTitle]:
        return [entry for entry in aggregated.values() if entry.id not in self._hidden]

    def list_hidden(
        self, aggregated: Mapping[int, AggregatedTitle]
    ) -> list[AggregatedTitle]:
        """Hidden entries that exist in the current aggregate, sorted by name."""

        hidden = [entry for entry in aggregated.values() if entry.id in self._hidden]
        hidden.sort(key=lambda entry: (entry.name.casefold(), entry.id))
        return hidden
