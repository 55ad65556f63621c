"""User-declared merges between titles, kept as an acyclic functional forest."""

from __future__ import annotations

from typing import Literal, Mapping

from .utils import coerce_title_id

MergeErrorCode = Literal["INVALID_EDGE", "FORMS_CYCLE"]

INVALID_EDGE: MergeErrorCode = "INVALID_EDGE"
FORMS_CYCLE: MergeErrorCode = "FORMS_CYCLE"


class MergeError(ValueError):
    """A merge edit that was rejected; the forest is left unchanged."""

    def __init__(self, code: MergeErrorCode, message: str):
        super().__init__(message)
        self.code = code
        self.message = message

    def to_payload(self) -> dict[str, str]:
        return {"error": self.code, "description": self.message}


class MergeForest:
    """Edges ``child -> parent`` over title ids, at most one per child.

    Every id follows its chain of edges to a root, the id with no outgoing
    edge. Edits go through :meth:`add_edge`, which refuses anything that would
    close a loop before touching the stored edges.
    """

    def __init__(self, edges: Mapping[int, int] | None = None):
        self._edges: dict[int, int] = dict(edges or {})
        self._version = 0

    @classmethod
    def from_mapping(cls, edges: Mapping[int, int]) -> "MergeForest":
        """Adopt a persisted mapping verbatim; resolution copes with damage."""

        return cls(edges)

    @property
    def edges(self) -> dict[int, int]:
        return dict(self._edges)

    @property
    def version(self) -> int:
        """Counter bumped by every committed change."""

        return self._version

    def __len__(self) -> int:
        return len(self._edges)

    def __contains__(self, child: object) -> bool:
        return child in self._edges

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, MergeForest):
            return NotImplemented
        return self._edges == other._edges

    def __repr__(self) -> str:
        return f"MergeForest({self._edges!r})"

    def parent_of(self, child: int) -> int | None:
        return self._edges.get(child)

    def resolve_root(self, title_id: int) -> int:
        return _resolve(self._edges, title_id)

    def add_edge(self, child: object, parent: object) -> None:
        """Fold ``child`` into ``parent``, replacing any earlier target of ``child``.

        Raises :class:`MergeError` with ``INVALID_EDGE`` for a missing endpoint
        or a self-merge and ``FORMS_CYCLE`` when ``parent`` already resolves
        back to ``child``.
        """

        child_id = coerce_title_id(child)
        parent_id = coerce_title_id(parent)
        if child_id is None or parent_id is None:
            raise MergeError(INVALID_EDGE, "Pick both a title to merge and a target.")
        if child_id == parent_id:
            raise MergeError(INVALID_EDGE, "A title cannot be merged into itself.")

        if _chain_contains(self._edges, parent_id, child_id):
            raise MergeError(FORMS_CYCLE, "That merge would create a loop.")

        self._edges[child_id] = parent_id
        self._version += 1

    def remove_edge(self, child: object) -> bool:
        """Drop the outgoing edge of ``child``; returns whether one existed."""

        child_id = coerce_title_id(child)
        if child_id is None or child_id not in self._edges:
            return False
        del self._edges[child_id]
        self._version += 1
        return True

    def clear(self) -> None:
        if self._edges:
            self._edges.clear()
            self._version += 1

    def reset(self, edges: Mapping[int, int]) -> None:
        """Replace every edge with ``edges`` as they were previously committed."""

        if dict(edges) != self._edges:
            self._edges = dict(edges)
            self._version += 1


def _resolve(edges: Mapping[int, int], start: int) -> int:
    """Follow edges from ``start``; a revisited node ends the walk."""

    seen: set[int] = set()
    current = start
    while current not in seen:
        parent = edges.get(current)
        if parent is None:
            return current
        seen.add(current)
        current = parent
    return current


def _chain_contains(edges: Mapping[int, int], start: int, target: int) -> bool:
    """Return whether walking from ``start`` passes through ``target``.

    With ``target -> start`` inserted, this is exactly the case where the
    walk from ``start`` would come back around to ``start``.
    """

    seen: set[int] = set()
    current: int | None = start
    while current is not None and current not in seen:
        if current == target:
            return True
        seen.add(current)
        current = edges.get(current)
    return False
