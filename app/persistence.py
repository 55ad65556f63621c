"""Durable storage for the user-curated merge edges and hidden titles."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Protocol

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .db_models import StateEntry
from .utils import coerce_title_id

logger = logging.getLogger(__name__)

MERGE_MAP_KEY = "mergeMap"
HIDDEN_KEY = "hiddenAppids"
MANUAL_STEAM_ID_KEY = "manualSteamId"


class KeyValueStore(Protocol):
    async def get(self, namespace: str, key: str) -> str | None: ...

    async def set(self, namespace: str, key: str, value: str) -> None: ...

    async def delete(self, namespace: str, key: str) -> None: ...


class SqlKeyValueStore:
    """Key/value rows in the ``state_entries`` table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def get(self, namespace: str, key: str) -> str | None:
        async with self._session_factory() as session:
            entry = await session.get(StateEntry, (namespace, key))
            if entry is None:
                return None
            return entry.value

    async def set(self, namespace: str, key: str, value: str) -> None:
        async with self._session_factory() as session:
            entry = await session.get(StateEntry, (namespace, key))
            if entry is None:
                session.add(StateEntry(profile_id=namespace, key=key, value=value))
            else:
                entry.value = value
            await session.commit()

    async def delete(self, namespace: str, key: str) -> None:
        async with self._session_factory() as session:
            await session.execute(
                delete(StateEntry).where(
                    StateEntry.profile_id == namespace, StateEntry.key == key
                )
            )
            await session.commit()


@dataclass(slots=True)
class PersistedState:
    """Merge edges and hidden ids as last written."""

    edges: dict[int, int] = field(default_factory=dict)
    hidden_ids: set[int] = field(default_factory=set)


class PersistenceAdapter:
    """Reads and writes one profile's curated state.

    Loading never fails on bad data: a missing, unparsable or oddly shaped
    entry reads back as "nothing merged" / "nothing hidden".
    """

    def __init__(self, store: KeyValueStore, profile_id: str):
        self._store = store
        self._profile_id = profile_id

    @property
    def profile_id(self) -> str:
        return self._profile_id

    async def load(self) -> PersistedState:
        edges = await self._read(MERGE_MAP_KEY, _parse_edges, default=dict)
        hidden = await self._read(HIDDEN_KEY, _parse_hidden, default=set)
        return PersistedState(edges=edges, hidden_ids=hidden)

    async def save_edges(self, edges: Mapping[int, int]) -> None:
        if not edges:
            await self._store.delete(self._profile_id, MERGE_MAP_KEY)
            return
        payload = {str(child): parent for child, parent in sorted(edges.items())}
        await self._store.set(self._profile_id, MERGE_MAP_KEY, json.dumps(payload))

    async def save_hidden(self, hidden_ids: Iterable[int]) -> None:
        payload = sorted(set(hidden_ids))
        if not payload:
            await self._store.delete(self._profile_id, HIDDEN_KEY)
            return
        await self._store.set(self._profile_id, HIDDEN_KEY, json.dumps(payload))

    async def load_manual_steam_id(self) -> str | None:
        raw = await self._store.get(self._profile_id, MANUAL_STEAM_ID_KEY)
        if raw is None:
            return None
        value = raw.strip()
        return value or None

    async def save_manual_steam_id(self, steam_id: str) -> None:
        await self._store.set(self._profile_id, MANUAL_STEAM_ID_KEY, steam_id.strip())

    async def _read(self, key: str, parser, *, default) -> Any:
        raw = await self._store.get(self._profile_id, key)
        if raw is None:
            return default()
        try:
            return parser(json.loads(raw))
        except (ValueError, TypeError) as exc:
            logger.warning(
                "PERSISTENCE_CORRUPT: ignoring stored %s for profile %s (%s)",
                key,
                self._profile_id,
                exc,
            )
            return default()


def _parse_edges(data: object) -> dict[int, int]:
    if not isinstance(data, dict):
        raise ValueError("merge map must be a JSON object")
    edges: dict[int, int] = {}
    for raw_child, raw_parent in data.items():
        child = coerce_title_id(raw_child)
        if child is None:
            raise ValueError(f"invalid merge source {raw_child!r}")
        parent = None if isinstance(raw_parent, str) else coerce_title_id(raw_parent)
        if parent is None:
            raise ValueError(f"invalid merge target {raw_parent!r}")
        edges[child] = parent
    return edges


def _parse_hidden(data: object) -> set[int]:
    if not isinstance(data, list):
        raise ValueError("hidden ids must be a JSON array")
    hidden: set[int] = set()
    for raw in data:
        title_id = None if isinstance(raw, str) else coerce_title_id(raw)
        if title_id is None:
            raise ValueError(f"invalid hidden id {raw!r}")
        hidden.add(title_id)
    return hidden
