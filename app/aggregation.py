"""Fold title playtime into merge roots."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable

from .merge_forest import MergeForest
from .models import AggregatedTitle, Title


@dataclass(slots=True)
class _Bucket:
    minutes: float = 0.0
    contributors: list[Title] = field(default_factory=list)


def aggregate(titles: Iterable[Title], forest: MergeForest) -> dict[int, AggregatedTitle]:
    """Return aggregated titles keyed by root id, ordered by ascending root id.

    The display identity comes from the root's own title when it is part of
    ``titles``. A root that is not (the merge target is missing from this
    fetch) borrows the identity of its contributor with the smallest id.
    """

    by_id: dict[int, Title] = {}
    buckets: dict[int, _Bucket] = {}
    for title in titles:
        by_id.setdefault(title.id, title)
        root = forest.resolve_root(title.id)
        bucket = buckets.setdefault(root, _Bucket())
        bucket.minutes += title.minutes_played
        bucket.contributors.append(title)

    aggregated: dict[int, AggregatedTitle] = {}
    for root in sorted(buckets):
        bucket = buckets[root]
        members = sorted(contributor.id for contributor in bucket.contributors)
        source = by_id.get(root)
        if source is None:
            source = min(bucket.contributors, key=lambda contributor: contributor.id)
        aggregated[root] = AggregatedTitle(
            id=root,
            display_id=source.id,
            name=source.name,
            minutes_played=bucket.minutes,
            image_ref=source.image_ref,
            store_ref=source.store_ref,
            members=tuple(members),
        )
    return aggregated


def total_minutes(titles: Iterable[Title | AggregatedTitle]) -> float:
    return sum(title.minutes_played for title in titles)
