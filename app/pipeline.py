"""Recompute-on-mutation pipeline from raw titles to the ranked feed."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Sequence

from .aggregation import aggregate
from .merge_forest import MergeForest
from .models import AggregatedTitle, Title
from .ranking import ALL, MIN_TOP_N, effective_limit, merge_candidates, select
from .visibility import VisibilityManager

logger = logging.getLogger(__name__)

EMPTY_LIBRARY_MESSAGE = (
    "No games returned. Your Steam 'Game Details' privacy must be Public."
)


@dataclass(slots=True)
class FeedViews:
    """Derived views, rebuilt together after every mutation."""

    aggregated: dict[int, AggregatedTitle]
    visible: list[AggregatedTitle]
    hidden: list[AggregatedTitle]
    ranked: list[AggregatedTitle]


class FeedPipeline:
    """Owns one profile's titles, merge forest and hidden set.

    Each mutating method applies its change and rebuilds aggregate, visible,
    hidden and ranked views before returning, so callers never observe a
    half-updated feed. Provider fetches are sequenced with tokens from
    :meth:`begin_fetch`; only the most recently issued fetch may commit.
    """

    def __init__(
        self,
        *,
        forest: MergeForest | None = None,
        hidden_ids: Iterable[int] = (),
        limit: int = 100,
        show_all: bool = False,
    ):
        self._titles: tuple[Title, ...] = ()
        self._forest = forest if forest is not None else MergeForest()
        self._visibility = VisibilityManager(hidden_ids)
        self._limit = max(MIN_TOP_N, int(limit))
        self._show_all = show_all
        self._search_term = ""
        self._error: str | None = None
        self._fetch_sequence = 0
        self._fetching = False
        self._views = FeedViews(aggregated={}, visible=[], hidden=[], ranked=[])
        self._recompute()

    # -- read side -----------------------------------------------------

    @property
    def titles(self) -> tuple[Title, ...]:
        return self._titles

    @property
    def edges(self) -> dict[int, int]:
        return self._forest.edges

    @property
    def forest_version(self) -> int:
        return self._forest.version

    @property
    def hidden_ids(self) -> frozenset[int]:
        return self._visibility.hidden

    @property
    def aggregated(self) -> dict[int, AggregatedTitle]:
        return dict(self._views.aggregated)

    @property
    def visible(self) -> list[AggregatedTitle]:
        return list(self._views.visible)

    @property
    def hidden_titles(self) -> list[AggregatedTitle]:
        return list(self._views.hidden)

    @property
    def ranked(self) -> list[AggregatedTitle]:
        return list(self._views.ranked)

    @property
    def limit(self) -> int:
        return self._limit

    @property
    def show_all(self) -> bool:
        return self._show_all

    @property
    def search_term(self) -> str:
        return self._search_term

    @property
    def error(self) -> str | None:
        return self._error

    @property
    def fetching(self) -> bool:
        return self._fetching

    # -- mutations -----------------------------------------------------

    def replace_titles(self, titles: Sequence[Title]) -> None:
        """Swap in a new raw set wholesale."""

        self._titles = tuple(titles)
        self._recompute()

    def add_merge(self, child: object, parent: object) -> None:
        """Add ``child -> parent``; :class:`MergeError` leaves everything as it was."""

        self._forest.add_edge(child, parent)
        self._recompute()

    def remove_merge(self, child: object) -> bool:
        removed = self._forest.remove_edge(child)
        if removed:
            self._recompute()
        return removed

    def clear_merges(self) -> None:
        self._forest.clear()
        self._recompute()

    def toggle_hidden(self, title_id: int) -> bool:
        hidden = self._visibility.toggle(title_id)
        self._recompute()
        return hidden

    def clear_hidden(self) -> None:
        self._visibility.clear_all()
        self._recompute()

    def restore_curation(
        self, edges: Mapping[int, int], hidden_ids: Iterable[int]
    ) -> None:
        """Put merges and hidden ids back to a previously captured state."""

        self._forest.reset(edges)
        self._visibility.reset(hidden_ids)
        self._recompute()

    def set_limit(self, limit: int) -> None:
        self._limit = max(MIN_TOP_N, int(limit))
        self._recompute()

    def set_show_all(self, show_all: bool) -> None:
        self._show_all = bool(show_all)
        self._recompute()

    def set_search_term(self, term: str | None) -> None:
        # Highlighting only; the feed is never filtered by the term.
        self._search_term = (term or "").strip()

    # -- provider fetch sequencing -------------------------------------

    def begin_fetch(self) -> int:
        """Start a fetch; returns the token its completion must present."""

        self._fetch_sequence += 1
        self._fetching = True
        self._error = None
        self._titles = ()
        self._recompute()
        return self._fetch_sequence

    def is_current(self, token: int) -> bool:
        return token == self._fetch_sequence

    def commit_fetch(self, token: int, titles: Sequence[Title]) -> bool:
        """Install fetched titles if ``token`` is still the latest fetch."""

        if not self.is_current(token):
            logger.debug(
                "Discarding stale fetch %s (latest is %s)", token, self._fetch_sequence
            )
            return False
        self._fetching = False
        if not titles:
            self._error = EMPTY_LIBRARY_MESSAGE
            self._titles = ()
        else:
            self._error = None
            self._titles = tuple(titles)
        self._recompute()
        return True

    def fail_fetch(self, token: int, message: str) -> bool:
        """Record a provider failure; the raw set is left empty."""

        if not self.is_current(token):
            logger.debug(
                "Discarding stale fetch failure %s (latest is %s)",
                token,
                self._fetch_sequence,
            )
            return False
        self._fetching = False
        self._error = message
        self._titles = ()
        self._recompute()
        return True

    # -- derived views -------------------------------------------------

    def _recompute(self) -> None:
        aggregated = aggregate(self._titles, self._forest)
        visible = self._visibility.filter_visible(aggregated)
        hidden = self._visibility.list_hidden(aggregated)
        limit = ALL if self._show_all else self._limit
        ranked = select(visible, limit)
        self._views = FeedViews(
            aggregated=aggregated, visible=visible, hidden=hidden, ranked=ranked
        )

    def snapshot(self) -> dict[str, Any]:
        """Return the payload consumed by the renderer and the control panel."""

        names = {title.id: title.name for title in self._titles}
        merges = [
            {
                "from": child,
                "to": parent,
                "fromName": names.get(child, str(child)),
                "toName": names.get(parent, str(parent)),
                "root": self._forest.resolve_root(child),
            }
            for child, parent in sorted(self._forest.edges.items())
        ]
        return {
            "entries": [entry.to_feed_entry() for entry in self._views.ranked],
            "hidden": [
                {"id": entry.id, "name": entry.name} for entry in self._views.hidden
            ],
            "hiddenIds": sorted(self._visibility.hidden),
            "merges": merges,
            "mergeCandidates": [
                {"id": title.id, "name": title.name}
                for title in merge_candidates(self._titles)
            ],
            "limit": self._limit,
            "effectiveLimit": None if self._show_all else effective_limit(self._limit),
            "showAll": self._show_all,
            "searchTerm": self._search_term,
            "error": self._error,
            "fetching": self._fetching,
            "titleCount": len(self._titles),
            "aggregatedCount": len(self._views.aggregated),
            "visibleCount": len(self._views.visible),
        }


def build_pipeline(
    edges: Mapping[int, int],
    hidden_ids: Iterable[int],
    *,
    limit: int = 100,
) -> FeedPipeline:
    return FeedPipeline(
        forest=MergeForest.from_mapping(edges), hidden_ids=hidden_ids, limit=limit
    )
