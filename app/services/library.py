"""High level orchestration of per-profile feed pipelines."""

from __future__ import annotations

import asyncio
import logging
from collections import OrderedDict
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Callable

from ..aggregation import total_minutes
from ..config import Settings
from ..normalizer import extract_owned_games, normalize_owned_games
from ..persistence import KeyValueStore, PersistenceAdapter
from ..pipeline import FeedPipeline, build_pipeline
from ..utils import parse_steam_identifier
from .steam import SteamAPIError, SteamClient

logger = logging.getLogger(__name__)

FETCH_FAILED_MESSAGE = "Failed to load games."
UNKNOWN_PROFILE_MESSAGE = "Could not find a Steam profile with that ID or name."


class LibraryService:
    """Coordinates Steam fetches, curated state and the ranked feed.

    Each profile gets one :class:`FeedPipeline`, created on first use from
    its persisted merges and hidden titles. Mutations for a profile run under
    that profile's lock and are written through to storage before the call
    returns; a failed write rolls the in-memory change back.

    At most ``profile_cache_size`` idle pipelines are kept. Evicted profiles
    are rebuilt from storage on their next request.
    """

    def __init__(
        self,
        settings: Settings,
        steam_client: SteamClient,
        store: KeyValueStore,
    ):
        self._settings = settings
        self._steam = steam_client
        self._store = store
        self._pipelines: OrderedDict[str, FeedPipeline] = OrderedDict()
        self._locks: dict[str, asyncio.Lock] = {}
        self._active: dict[str, int] = {}

    @property
    def cached_profiles(self) -> tuple[str, ...]:
        return tuple(self._pipelines)

    def _adapter(self, profile_id: str) -> PersistenceAdapter:
        return PersistenceAdapter(self._store, profile_id)

    @asynccontextmanager
    async def _profile(self, profile_id: str) -> AsyncIterator[FeedPipeline]:
        """Hold ``profile_id``'s lock and yield its pipeline."""

        self._active[profile_id] = self._active.get(profile_id, 0) + 1
        try:
            lock = self._locks.setdefault(profile_id, asyncio.Lock())
            async with lock:
                yield await self._load_pipeline(profile_id)
        finally:
            remaining = self._active[profile_id] - 1
            if remaining:
                self._active[profile_id] = remaining
            else:
                del self._active[profile_id]
                if profile_id not in self._pipelines:
                    self._locks.pop(profile_id, None)

    async def _load_pipeline(self, profile_id: str) -> FeedPipeline:
        pipeline = self._pipelines.get(profile_id)
        if pipeline is not None:
            self._pipelines.move_to_end(profile_id)
            return pipeline

        state = await self._adapter(profile_id).load()
        pipeline = build_pipeline(
            state.edges, state.hidden_ids, limit=self._settings.default_top_n
        )
        self._pipelines[profile_id] = pipeline
        logger.info(
            "Loaded profile %s with %s merges and %s hidden titles",
            profile_id,
            len(state.edges),
            len(state.hidden_ids),
        )
        self._evict_idle()
        return pipeline

    def _is_busy(self, profile_id: str) -> bool:
        if profile_id in self._active:
            return True
        pipeline = self._pipelines.get(profile_id)
        return pipeline is not None and pipeline.fetching

    def _evict_idle(self) -> None:
        """Drop least recently used idle profiles beyond the cache size."""

        excess = len(self._pipelines) - self._settings.profile_cache_size
        for profile_id in list(self._pipelines):
            if excess <= 0:
                break
            if self._is_busy(profile_id):
                continue
            del self._pipelines[profile_id]
            self._locks.pop(profile_id, None)
            excess -= 1
            logger.debug("Evicted idle profile %s", profile_id)

    def discard_profile(self, profile_id: str) -> bool:
        """Forget a cached profile unless a request or fetch is using it."""

        if profile_id not in self._pipelines or self._is_busy(profile_id):
            return False
        del self._pipelines[profile_id]
        self._locks.pop(profile_id, None)
        return True

    async def get_pipeline(self, profile_id: str) -> FeedPipeline:
        async with self._profile(profile_id) as pipeline:
            return pipeline

    async def snapshot(self, profile_id: str) -> dict[str, Any]:
        async with self._profile(profile_id) as pipeline:
            return pipeline.snapshot()

    async def load_library(self, profile_id: str, steam_id: str) -> dict[str, Any]:
        """Fetch ``steam_id``'s games and install them if no newer fetch started."""

        async with self._profile(profile_id) as pipeline:
            token = pipeline.begin_fetch()

        try:
            payload = await self._steam.fetch_owned_games(steam_id)
        except SteamAPIError as exc:
            logger.warning(
                "PROVIDER_FETCH_FAILED for profile %s (steam id %s): %s",
                profile_id,
                steam_id,
                exc,
            )
            async with self._profile(profile_id) as pipeline:
                pipeline.fail_fetch(token, str(exc) or FETCH_FAILED_MESSAGE)
                return pipeline.snapshot()

        titles = normalize_owned_games(extract_owned_games(payload))
        async with self._profile(profile_id) as pipeline:
            if pipeline.commit_fetch(token, titles):
                logger.info(
                    "Loaded %s titles (%.0f hours) for profile %s",
                    len(titles),
                    total_minutes(titles) / 60,
                    profile_id,
                )
            return pipeline.snapshot()

    async def load_library_by_input(
        self, profile_id: str, raw_identifier: str
    ) -> dict[str, Any]:
        """Load a library from a typed SteamID64, profile name or profile URL."""

        parsed = parse_steam_identifier(raw_identifier)
        if parsed is None:
            raise ValueError("Enter a SteamID64 or profile name")
        kind, value = parsed

        steam_id: str | None = value
        if kind == "vanity":
            try:
                steam_id = await self._steam.resolve_vanity_url(value)
            except SteamAPIError as exc:
                logger.warning("Vanity lookup for %s failed: %s", value, exc)
                steam_id = None
            if steam_id is None:
                async with self._profile(profile_id) as pipeline:
                    token = pipeline.begin_fetch()
                    pipeline.fail_fetch(token, UNKNOWN_PROFILE_MESSAGE)
                    return pipeline.snapshot()

        snapshot = await self.load_library(profile_id, steam_id)
        if snapshot.get("error") is None:
            await self._adapter(profile_id).save_manual_steam_id(raw_identifier)
        return snapshot

    async def manual_steam_id(self, profile_id: str) -> str | None:
        return await self._adapter(profile_id).load_manual_steam_id()

    async def _curate(
        self,
        profile_id: str,
        change: Callable[[FeedPipeline], object],
        *,
        edges: bool = False,
        hidden: bool = False,
    ) -> dict[str, Any]:
        """Apply ``change`` and persist what it touched, or undo it."""

        async with self._profile(profile_id) as pipeline:
            previous_edges = pipeline.edges
            previous_hidden = pipeline.hidden_ids
            change(pipeline)
            adapter = self._adapter(profile_id)
            try:
                if edges and pipeline.edges != previous_edges:
                    await adapter.save_edges(pipeline.edges)
                if hidden and pipeline.hidden_ids != previous_hidden:
                    await adapter.save_hidden(pipeline.hidden_ids)
            except BaseException:
                logger.warning("Rolling back unsaved change for profile %s", profile_id)
                pipeline.restore_curation(previous_edges, previous_hidden)
                raise
            return pipeline.snapshot()

    async def add_merge(
        self, profile_id: str, child: object, parent: object
    ) -> dict[str, Any]:
        return await self._curate(
            profile_id, lambda pipeline: pipeline.add_merge(child, parent), edges=True
        )

    async def remove_merge(self, profile_id: str, child: object) -> dict[str, Any]:
        return await self._curate(
            profile_id, lambda pipeline: pipeline.remove_merge(child), edges=True
        )

    async def clear_merges(self, profile_id: str) -> dict[str, Any]:
        return await self._curate(profile_id, FeedPipeline.clear_merges, edges=True)

    async def toggle_hidden(self, profile_id: str, title_id: int) -> dict[str, Any]:
        return await self._curate(
            profile_id, lambda pipeline: pipeline.toggle_hidden(title_id), hidden=True
        )

    async def clear_hidden(self, profile_id: str) -> dict[str, Any]:
        return await self._curate(profile_id, FeedPipeline.clear_hidden, hidden=True)

    async def update_view(
        self,
        profile_id: str,
        *,
        limit: int | None = None,
        show_all: bool | None = None,
        search_term: str | None = None,
    ) -> dict[str, Any]:
        """Adjust presentation settings; these are not persisted."""

        async with self._profile(profile_id) as pipeline:
            if limit is not None:
                pipeline.set_limit(limit)
            if show_all is not None:
                pipeline.set_show_all(show_all)
            if search_term is not None:
                pipeline.set_search_term(search_term)
            return pipeline.snapshot()
