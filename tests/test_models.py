from app.models import AggregatedTitle, Title
from app.normalizer import extract_owned_games, normalize_owned_games


def test_title_from_owned_game_builds_links():
    title = Title.from_owned_game(
        {"appid": 620, "name": "Portal 2", "playtime_forever": 1260}
    )

    assert title is not None
    assert title.id == 620
    assert title.minutes_played == 1260
    assert title.hours_played == 21
    assert title.image_ref == "https://cdn.akamai.steamstatic.com/steam/apps/620/header.jpg"
    assert title.store_ref == "https://store.steampowered.com/app/620/"


def test_title_treats_missing_or_bogus_playtime_as_zero():
    for playtime in (None, "", "abc", -5, float("nan"), float("inf")):
        title = Title.from_owned_game({"appid": 10, "name": "CS", "playtime_forever": playtime})
        assert title is not None
        assert title.minutes_played == 0

    title = Title.from_owned_game({"appid": 10, "name": "CS"})
    assert title is not None
    assert title.minutes_played == 0


def test_title_rejects_records_without_id_or_name():
    assert Title.from_owned_game({"name": "No id"}) is None
    assert Title.from_owned_game({"appid": 0, "name": "Zero"}) is None
    assert Title.from_owned_game({"appid": 5}) is None
    assert Title.from_owned_game({"appid": 5, "name": "   "}) is None


def test_normalize_owned_games_skips_bad_rows_and_duplicates():
    titles = normalize_owned_games(
        [
            {"appid": 1, "name": "One", "playtime_forever": 10},
            {"appid": 1, "name": "One again", "playtime_forever": 99},
            {"name": "Missing"},
            "not a record",
            {"appid": "2", "name": "Two"},
        ]
    )

    assert [(title.id, title.name, title.minutes_played) for title in titles] == [
        (1, "One", 10),
        (2, "Two", 0),
    ]


def test_extract_owned_games_handles_odd_payloads():
    assert extract_owned_games({"response": {"games": [{"appid": 1}]}}) == [{"appid": 1}]
    assert extract_owned_games({"response": {}}) == []
    assert extract_owned_games({"response": []}) == []
    assert extract_owned_games(None) == []


def test_aggregated_title_feed_entry_uses_hours_as_metric():
    entry = AggregatedTitle(
        id=7,
        display_id=7,
        name="Seven",
        minutes_played=90,
        image_ref="img",
        store_ref="store",
    )

    assert entry.to_feed_entry() == {
        "id": 7,
        "name": "Seven",
        "metricValue": 1.5,
        "minutesPlayed": 90,
        "imageRef": "img",
        "storeRef": "store",
    }
