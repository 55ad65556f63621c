from app.utils import coerce_title_id, parse_steam_identifier


def test_coerce_title_id_accepts_positive_integers():
    assert coerce_title_id(570) == 570
    assert coerce_title_id(" 570 ") == 570
    assert coerce_title_id(570.0) == 570


def test_coerce_title_id_rejects_everything_else():
    for value in (None, True, 0, -1, "", "x1", 1.5, [1]):
        assert coerce_title_id(value) is None


def test_parse_steam_identifier_variants():
    assert parse_steam_identifier("76561197960287930") == ("steamid", "76561197960287930")
    assert parse_steam_identifier("gabelogannewell") == ("vanity", "gabelogannewell")
    assert parse_steam_identifier(
        "https://steamcommunity.com/profiles/76561197960287930/"
    ) == ("steamid", "76561197960287930")
    assert parse_steam_identifier("https://steamcommunity.com/id/robin/") == (
        "vanity",
        "robin",
    )
    assert parse_steam_identifier("   ") is None
