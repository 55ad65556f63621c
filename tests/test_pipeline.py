"""Tests for the recompute-on-mutation feed pipeline."""

from __future__ import annotations

import pytest

from app.merge_forest import FORMS_CYCLE, MergeError
from app.models import Title
from app.pipeline import EMPTY_LIBRARY_MESSAGE, FeedPipeline, build_pipeline

A, B, C, D = 1, 2, 3, 4


def _titles() -> list[Title]:
    return [
        Title(id=A, name="Alpha", minutes_played=600),
        Title(id=B, name="Alpha Playtest", minutes_played=300),
        Title(id=C, name="Gamma", minutes_played=120),
    ]


def _ranked(pipeline: FeedPipeline) -> list[tuple[int, float]]:
    return [(entry.id, entry.minutes_played) for entry in pipeline.ranked]


def test_merge_recomputes_feed_immediately() -> None:
    pipeline = FeedPipeline()
    pipeline.replace_titles(_titles())

    pipeline.add_merge(B, A)

    assert {entry.id: entry.minutes_played for entry in pipeline.aggregated.values()} == {
        A: 900,
        C: 120,
    }
    assert _ranked(pipeline) == [(A, 900), (C, 120)]


def test_rejected_merge_leaves_views_untouched() -> None:
    pipeline = FeedPipeline()
    pipeline.replace_titles(_titles())
    pipeline.add_merge(B, A)
    pipeline.add_merge(A, C)
    before = (pipeline.edges, pipeline.ranked, pipeline.forest_version)

    with pytest.raises(MergeError) as excinfo:
        pipeline.add_merge(C, B)

    assert excinfo.value.code == FORMS_CYCLE
    assert (pipeline.edges, pipeline.ranked, pipeline.forest_version) == before
    assert pipeline.edges == {B: A, A: C}


def test_toggle_hides_and_restores_entry() -> None:
    pipeline = FeedPipeline(show_all=True)
    pipeline.replace_titles(_titles())
    pipeline.add_merge(B, A)

    assert pipeline.toggle_hidden(C) is True
    assert _ranked(pipeline) == [(A, 900)]
    assert [entry.id for entry in pipeline.hidden_titles] == [C]

    assert pipeline.toggle_hidden(C) is False
    assert _ranked(pipeline) == [(A, 900), (C, 120)]
    assert pipeline.hidden_titles == []


def test_hidden_root_still_collects_merged_playtime() -> None:
    pipeline = FeedPipeline()
    pipeline.replace_titles(_titles())
    pipeline.toggle_hidden(A)
    pipeline.add_merge(B, A)

    assert pipeline.aggregated[A].minutes_played == 900
    assert [entry.id for entry in pipeline.ranked] == [C]


def test_limit_floor_applies_to_ranked_view() -> None:
    pipeline = FeedPipeline()
    pipeline.replace_titles(_titles() + [Title(id=D, name="Delta", minutes_played=60)])
    pipeline.add_merge(B, A)
    pipeline.set_limit(2)

    assert [entry.id for entry in pipeline.ranked] == [A, C, D]
    assert pipeline.limit == 5


def test_show_all_bypasses_limit() -> None:
    titles = [Title(id=index, name=f"T{index}", minutes_played=index) for index in range(1, 31)]
    pipeline = FeedPipeline(limit=10)
    pipeline.replace_titles(titles)

    assert len(pipeline.ranked) == 10
    pipeline.set_show_all(True)
    assert len(pipeline.ranked) == 30


def test_search_term_never_filters() -> None:
    pipeline = FeedPipeline()
    pipeline.replace_titles(_titles())
    pipeline.set_search_term("  gam ")

    assert pipeline.search_term == "gam"
    assert len(pipeline.ranked) == 3
    assert pipeline.snapshot()["searchTerm"] == "gam"


def test_clear_merges_and_hidden() -> None:
    pipeline = build_pipeline({B: A}, {C})
    pipeline.replace_titles(_titles())

    pipeline.clear_merges()
    pipeline.clear_hidden()

    assert pipeline.edges == {}
    assert pipeline.hidden_ids == frozenset()
    assert [entry.id for entry in pipeline.ranked] == [A, B, C]


def test_remove_merge_reports_whether_anything_changed() -> None:
    pipeline = build_pipeline({B: A}, ())
    pipeline.replace_titles(_titles())

    assert pipeline.remove_merge(C) is False
    assert pipeline.remove_merge(B) is True
    assert pipeline.aggregated[A].minutes_played == 600


def test_only_latest_fetch_commits() -> None:
    pipeline = FeedPipeline()
    first = pipeline.begin_fetch()
    second = pipeline.begin_fetch()

    assert pipeline.commit_fetch(second, _titles()) is True
    assert pipeline.commit_fetch(first, [Title(id=99, name="Old", minutes_played=1)]) is False

    assert sorted(title.id for title in pipeline.titles) == [A, B, C]
    assert pipeline.fetching is False


def test_stale_failure_is_ignored() -> None:
    pipeline = FeedPipeline()
    first = pipeline.begin_fetch()
    second = pipeline.begin_fetch()

    assert pipeline.fail_fetch(first, "boom") is False
    assert pipeline.error is None
    assert pipeline.commit_fetch(second, _titles()) is True


def test_failed_fetch_clears_titles_and_surfaces_message() -> None:
    pipeline = FeedPipeline()
    pipeline.replace_titles(_titles())

    token = pipeline.begin_fetch()
    assert pipeline.titles == ()
    pipeline.fail_fetch(token, "Steam is down")

    assert pipeline.titles == ()
    assert pipeline.ranked == []
    assert pipeline.snapshot()["error"] == "Steam is down"


def test_empty_library_reports_privacy_hint() -> None:
    pipeline = FeedPipeline()
    token = pipeline.begin_fetch()

    pipeline.commit_fetch(token, [])

    assert pipeline.error == EMPTY_LIBRARY_MESSAGE


def test_reload_keeps_curated_state() -> None:
    pipeline = FeedPipeline()
    pipeline.replace_titles(_titles())
    pipeline.add_merge(B, A)
    pipeline.toggle_hidden(C)

    token = pipeline.begin_fetch()
    pipeline.commit_fetch(token, _titles())

    assert pipeline.edges == {B: A}
    assert _ranked(pipeline) == [(A, 900)]


def test_snapshot_describes_merges_with_names() -> None:
    pipeline = build_pipeline({B: A, 77: A}, ())
    pipeline.replace_titles(_titles())

    snapshot = pipeline.snapshot()

    assert snapshot["merges"] == [
        {"from": B, "to": A, "fromName": "Alpha Playtest", "toName": "Alpha", "root": A},
        {"from": 77, "to": A, "fromName": "77", "toName": "Alpha", "root": A},
    ]
    assert [entry["id"] for entry in snapshot["entries"]] == [A, C]
    assert snapshot["entries"][0]["metricValue"] == 15
    assert [item["id"] for item in snapshot["mergeCandidates"]] == [A, B, C]
    assert snapshot["effectiveLimit"] == 100


def test_restore_curation_rebuilds_views() -> None:
    pipeline = FeedPipeline()
    pipeline.replace_titles(_titles())
    edges, hidden = pipeline.edges, pipeline.hidden_ids

    pipeline.add_merge(B, A)
    pipeline.toggle_hidden(C)
    pipeline.restore_curation(edges, hidden)

    assert pipeline.edges == {}
    assert pipeline.hidden_ids == frozenset()
    assert _ranked(pipeline) == [(A, 600), (B, 300), (C, 120)]
