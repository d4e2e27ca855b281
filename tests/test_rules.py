import random

import pytest

from gio.errors import ValidationError
from gio.rules import (
    CoordinatorStanding,
    ParticipantScore,
    RankResolver,
    RankTableEntry,
    RosterStudent,
    coerce_number,
    compute_incentives,
    coordinator_leaderboard,
    determine_category,
    engagement_bonus,
    parse_rank_range,
    partner_rank,
    rank_coordinators,
    rank_participants,
    resolve_rank,
)
from gio.tables import load_incentive_config, load_rank_tables


CONFIG = load_incentive_config()


class LowestInBand:
    def __init__(self):
        self.calls = []

    def randint(self, a, b):
        self.calls.append((a, b))
        return a


def _entry(score, rank_range, category):
    start, end = parse_rank_range(rank_range)
    return RankTableEntry(score=score, rank_range=rank_range, category=category, start=start, end=end)


TABLE = (
    _entry(99.0, "2 to 10", "Gold"),
    _entry(50.0, "300 to 420", "Silver"),
    _entry(100.0, "900 to 950", "Bronze"),
)


def _standing(cid, earnings, status="approved"):
    return CoordinatorStanding(
        coordinator_id=cid,
        name=f"Coordinator {cid}",
        category="Starter Partner",
        total_incentives=earnings,
        bonus_amount=0,
        total_earnings=earnings,
        status=status,
    )


def test_perfect_score_overrides_table():
    rng = LowestInBand()
    result = resolve_rank(100, TABLE, 100, rng)
    assert result.rank == 1
    assert result.category == "Gold"
    assert rng.calls == []


def test_unknown_score_is_unranked():
    result = resolve_rank(37, TABLE, 100, LowestInBand())
    assert result.rank == "Unranked"
    assert result.category == "Unranked"


def test_rank_drawn_inside_band():
    rng = random.Random(7)
    for _ in range(200):
        result = resolve_rank(50, TABLE, 100, rng)
        assert 300 <= result.rank <= 420
        assert result.category == "Silver"


def test_numeric_string_matches_table_entry():
    rng = LowestInBand()
    result = resolve_rank(coerce_number("50", "Score"), TABLE, 100, rng)
    assert result.rank == 300
    assert rng.calls == [(300, 420)]


def test_coerce_number_rejects_garbage():
    assert coerce_number("85.5", "Score") == 85.5
    for bad in (None, "", "abc", True, float("nan")):
        with pytest.raises(ValidationError):
            coerce_number(bad, "Score")


def test_parse_rank_range():
    assert parse_rank_range("120 to 245") == (120, 245)
    assert parse_rank_range("7 to 7") == (7, 7)
    for bad in ("120-245", "245 to 120", "a to b", ""):
        with pytest.raises(ValueError):
            parse_rank_range(bad)


def test_resolver_covers_all_scopes():
    resolver = RankResolver(load_rank_tables(), LowestInBand())
    profile = resolver.resolve_profile(400, "live")
    assert set(profile) == {"global", "country", "state", "city"}
    assert all(r.rank == 1 and r.category == "Gold" for r in profile.values())

    mock = resolver.resolve_profile(100, "mock")
    assert all(r.rank == 1 for r in mock.values())


def test_resolver_rejects_unknown_type_and_scope():
    resolver = RankResolver(load_rank_tables(), LowestInBand())
    with pytest.raises(ValidationError):
        resolver.resolve(50, "final", "global")
    with pytest.raises(ValidationError):
        resolver.resolve(50, "mock", "district")


def test_determine_category_is_total():
    tiers = CONFIG.tiers
    assert determine_category(0, tiers).name == "Starter Partner"
    for n in range(1, 1000):
        matches = [t for t in tiers if t.contains(n)]
        assert len(matches) == 1
        assert determine_category(n, tiers) == matches[0]
    assert determine_category(100, tiers).name == "Starter Partner"
    assert determine_category(101, tiers).name == "Bronze Partner"
    assert determine_category(400, tiers).name == "Gold Partner"
    assert determine_category(5000, tiers).name == "Platinum Partner"


def test_engagement_bonus_levels():
    bonuses = CONFIG.bonuses
    assert engagement_bonus(0, bonuses) == 0
    assert engagement_bonus(4, bonuses) == 0
    assert engagement_bonus(5, bonuses) == 5
    assert engagement_bonus(19, bonuses) == 10
    assert engagement_bonus(20, bonuses) == 15
    assert engagement_bonus(50, bonuses) == 20
    assert engagement_bonus(120, bonuses) == 20


def test_incentives_for_bronze_partner():
    students = [RosterStudent(1, "paid_but_not_attempted") for _ in range(150)]
    summary = compute_incentives(1, students, CONFIG.tiers, CONFIG.bonuses)
    assert summary.category == "Bronze Partner"
    assert summary.total_paid_students == 150
    assert summary.base_incentive == 150 * 85
    assert summary.bonus_amount == 0
    assert summary.total_earnings == 12750


def test_incentives_count_only_own_paid_students():
    students = [
        RosterStudent(1, "paid_but_not_attempted", 25),
        RosterStudent(1, "paid_but_not_attempted", 6),
        RosterStudent(1, "unpaid", 60),
        RosterStudent(1, "paid_and_attempted", 60),
        RosterStudent(2, "paid_but_not_attempted", 60),
        RosterStudent(None, "paid_but_not_attempted", 60),
    ]
    summary = compute_incentives(1, students, CONFIG.tiers, CONFIG.bonuses)
    assert summary.total_paid_students == 2
    assert summary.category == "Starter Partner"
    assert summary.base_incentive == 150
    assert summary.bonus_amount == 15 + 5
    assert summary.total_earnings == 170

    again = compute_incentives(1, students, CONFIG.tiers, CONFIG.bonuses)
    assert again == summary


def test_incentives_with_no_students():
    summary = compute_incentives(1, [], CONFIG.tiers, CONFIG.bonuses)
    assert summary.total_paid_students == 0
    assert summary.category == "Starter Partner"
    assert summary.total_earnings == 0


def test_leaderboard_sort_is_stable():
    standings = [_standing(1, 50), _standing(2, 200), _standing(3, 200), _standing(4, 10)]
    ordered = rank_coordinators(standings)
    assert [s.total_earnings for s in ordered] == [200, 200, 50, 10]
    assert [s.coordinator_id for s in ordered] == [2, 3, 1, 4]


def test_leaderboard_filter_and_limit():
    standings = [_standing(i, i * 10, "approved" if i % 2 else "pending") for i in range(1, 15)]
    top = coordinator_leaderboard(standings, limit=10)
    assert len(top) == 10
    assert top[0].coordinator_id == 14

    approved = coordinator_leaderboard(standings, limit=3, approved_only=True)
    assert [s.coordinator_id for s in approved] == [13, 11, 9]
    assert coordinator_leaderboard([], limit=10) == []


def test_partner_rank_position():
    standings = [_standing(i, e) for i, e in enumerate([300, 250, 250, 100, 0], start=1)]
    assert partner_rank(standings, 4) == 4
    assert partner_rank(standings, 3) == 3
    assert partner_rank(standings, 99) == 0


def _participant(sid, score, country="India", state="KA", city="Bengaluru"):
    return ParticipantScore(
        student_id=sid, name=f"S{sid}", country=country, state=state, city=city, cumulative_score=score
    )


def test_participant_rankings_partition_by_scope():
    people = [
        _participant(1, 120),
        _participant(2, 300, city="Mysuru"),
        _participant(3, 250),
        _participant(4, 80, state="MH", city="Pune"),
    ]
    global_view = rank_participants(people, "global")
    assert list(global_view) == ["global"]
    assert [r["student_id"] for r in global_view["global"]] == [2, 3, 1, 4]
    assert [r["rank"] for r in global_view["global"]] == [1, 2, 3, 4]

    by_city = rank_participants(people, "city")
    assert [r["student_id"] for r in by_city["India/KA/Bengaluru"]] == [3, 1]
    assert by_city["India/KA/Mysuru"][0]["rank"] == 1

    by_state = rank_participants(people, "state")
    assert set(by_state) == {"India/KA", "India/MH"}


def test_participant_rank_cap_and_categories():
    people = [_participant(i, 1000 - i) for i in range(1, 151)]
    rows = rank_participants(people, "city")["India/KA/Bengaluru"]
    assert rows[0]["category"] == "Gold"
    assert rows[1]["category"] == "Silver"
    assert rows[4]["category"] == "Silver"
    assert rows[5]["category"] == "Bronze"
    assert rows[9]["category"] == "Bronze"
    assert rows[10]["category"] == "Unranked"
    assert rows[99]["rank"] == 100
    assert rows[-1]["rank"] == 100


def test_participant_rankings_empty_and_bad_scope():
    assert rank_participants([], "country") == {}
    with pytest.raises(ValidationError):
        rank_participants([], "district")
