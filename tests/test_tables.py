import json
import shutil
from pathlib import Path

import pytest

from gio.config import DATA_DIR
from gio.errors import ConfigurationError
from gio.tables import (
    load_incentive_config,
    load_rank_tables,
    parse_engagement_bonuses,
    parse_partner_tiers,
    parse_rank_table,
)


def test_shipped_tables_load():
    tables = load_rank_tables()
    assert len(tables.tables) == 8
    for scope in ("global", "country", "state", "city"):
        mock = tables.table(scope, "mock")
        live = tables.table(scope, "live")
        assert all(e.start <= e.end for e in mock + live)
        assert len({e.score for e in mock}) == len(mock)
        assert len({e.score for e in live}) == len(live)

    config = load_incentive_config()
    assert [t.name for t in config.tiers][0] == "Starter Partner"
    assert config.tiers[-1].max is None
    assert config.bonuses[-1].threshold == 0


def test_tables_are_read_only():
    tables = load_rank_tables()
    with pytest.raises(TypeError):
        tables.tables[("global", "mock")] = ()


def test_missing_table_is_fatal(tmp_path: Path):
    shutil.copytree(DATA_DIR, tmp_path / "data")
    (tmp_path / "data" / "rank_tables" / "city_live.json").unlink()
    with pytest.raises(ConfigurationError):
        load_rank_tables(tmp_path / "data")


def test_unreadable_table_is_fatal(tmp_path: Path):
    shutil.copytree(DATA_DIR, tmp_path / "data")
    (tmp_path / "data" / "rank_tables" / "state_mock.json").write_text("{not json", encoding="utf-8")
    with pytest.raises(ConfigurationError):
        load_rank_tables(tmp_path / "data")


def test_rank_table_rows_are_validated():
    good = [{"score": 10, "rankRange": "5 to 9", "category": "Bronze"}]
    entries = parse_rank_table(good, "t")
    assert entries[0].score == 10.0
    assert (entries[0].start, entries[0].end) == (5, 9)

    bad_tables = [
        [],
        {"score": 10},
        [{"score": 10, "rankRange": "9 to 5", "category": "Bronze"}],
        [{"score": 10, "rankRange": "5-9", "category": "Bronze"}],
        [{"score": 10, "category": "Bronze"}],
        [
            {"score": 10, "rankRange": "5 to 9", "category": "Bronze"},
            {"score": 10.0, "rankRange": "10 to 19", "category": "Bronze"},
        ],
    ]
    for rows in bad_tables:
        with pytest.raises(ConfigurationError):
            parse_rank_table(rows, "t")


def _tiers(*rows):
    return [{"name": n, "min": lo, "max": hi, "perStudentShare": share} for n, lo, hi, share in rows]


def test_partner_tiers_must_partition():
    ok = parse_partner_tiers(_tiers(("A", 1, 10, 5), ("B", 11, None, 6)))
    assert ok[1].contains(10_000)

    for rows in (
        _tiers(("A", 0, 10, 5), ("B", 11, None, 6)),
        _tiers(("A", 1, 10, 5), ("B", 12, None, 6)),
        _tiers(("A", 1, 10, 5), ("B", 11, 20, 6)),
        _tiers(("A", 1, None, 5), ("B", 11, None, 6)),
        [{"name": "A", "min": 1}],
    ):
        with pytest.raises(ConfigurationError):
            parse_partner_tiers(rows)


def test_engagement_bonuses_need_descending_with_fallback():
    ok = parse_engagement_bonuses([{"threshold": 5, "bonus": 5}, {"threshold": 0, "bonus": 0}])
    assert [b.threshold for b in ok] == [5, 0]

    for rows in (
        [{"threshold": 5, "bonus": 5}],
        [{"threshold": 0, "bonus": 0}, {"threshold": 5, "bonus": 5}],
        [{"threshold": 5, "bonus": 5}, {"threshold": 5, "bonus": 1}, {"threshold": 0, "bonus": 0}],
        json.loads('[{"threshold": "x", "bonus": 1}]'),
    ):
        with pytest.raises(ConfigurationError):
            parse_engagement_bonuses(rows)
