from __future__ import annotations

import math
from collections import defaultdict
from dataclasses import dataclass
from typing import TYPE_CHECKING, Dict, Iterable, List, Optional, Protocol, Sequence, Tuple, Union

from gio.config import (
    MAX_SCORES,
    PAID_STATUS,
    PARTICIPANT_CATEGORY_PERCENTILES,
    PARTICIPANT_RANK_CAPS,
    PERFECT_SCORE_RESULT,
    SCOPES,
    TEST_TYPES,
    UNRANKED,
)
from gio.errors import ValidationError

if TYPE_CHECKING:
    from gio.tables import RankTables


Rank = Union[int, str]
RANK_RANGE_SEPARATOR = " to "


class RandomSource(Protocol):
    def randint(self, a: int, b: int) -> int:
        """Uniform integer in [a, b], both ends inclusive."""


@dataclass(frozen=True)
class RankTableEntry:
    score: float
    rank_range: str
    category: str
    start: int
    end: int


@dataclass(frozen=True)
class RankResult:
    rank: Rank
    category: str

    def as_dict(self) -> dict:
        return {"rank": self.rank, "category": self.category}


UNRANKED_RESULT = RankResult(rank=UNRANKED, category=UNRANKED)


@dataclass(frozen=True)
class CategoryTier:
    name: str
    min: int
    max: Optional[int]  # None = unbounded
    per_student_share: float

    def contains(self, count: int) -> bool:
        return count >= self.min and (self.max is None or count <= self.max)


@dataclass(frozen=True)
class EngagementBonusTier:
    threshold: int
    bonus: float


@dataclass(frozen=True)
class RosterStudent:
    coordinator_id: Optional[int]
    payment_status: str
    practice_tests_attempted: int = 0


@dataclass(frozen=True)
class IncentiveSummary:
    category: str
    total_paid_students: int
    base_incentive: float
    bonus_amount: float
    total_earnings: float


@dataclass(frozen=True)
class CoordinatorStanding:
    coordinator_id: int
    name: str
    category: str
    total_incentives: float
    bonus_amount: float
    total_earnings: float
    status: str = "pending"

    def as_dict(self) -> dict:
        return {
            "id": self.coordinator_id,
            "name": self.name,
            "category": self.category,
            "total_incentives": self.total_incentives,
            "bonus_amount": self.bonus_amount,
            "total_earnings": self.total_earnings,
        }


@dataclass(frozen=True)
class ParticipantScore:
    student_id: int
    name: str
    country: str
    state: str
    city: str
    cumulative_score: float


def parse_rank_range(text: str) -> Tuple[int, int]:
    """
    "120 to 245" -> (120, 245). Raises ValueError on anything else.
    """
    parts = str(text).split(RANK_RANGE_SEPARATOR)
    if len(parts) != 2:
        raise ValueError(f"Malformed rank range: {text!r}")
    start, end = (int(p.strip()) for p in parts)
    if start > end:
        raise ValueError(f"Rank range start is after end: {text!r}")
    return start, end


def max_score_for(test_type: str) -> int:
    if test_type not in MAX_SCORES:
        raise ValidationError(f"Test type must be one of: {', '.join(TEST_TYPES)}")
    return MAX_SCORES[test_type]


def coerce_number(value: object, label: str) -> float:
    if value is None or isinstance(value, bool):
        raise ValidationError(f"{label} is required and must be numeric")
    try:
        number = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        raise ValidationError(f"{label} must be numeric") from None
    if math.isnan(number) or math.isinf(number):
        raise ValidationError(f"{label} must be numeric")
    return number


def resolve_rank(
    score: float,
    table: Sequence[RankTableEntry],
    max_score: float,
    rng: RandomSource,
) -> RankResult:
    """
    Perfect score always ranks first. Otherwise the table entry for the exact
    score gives a rank band; the rank is drawn uniformly from that band, so
    repeated calls for the same score return different ranks inside it.
    """
    score = float(score)
    if score == float(max_score):
        rank, category = PERFECT_SCORE_RESULT
        return RankResult(rank=rank, category=category)

    entry = next((e for e in table if e.score == score), None)
    if entry is None:
        return UNRANKED_RESULT
    return RankResult(rank=rng.randint(entry.start, entry.end), category=entry.category)


class RankResolver:
    """Resolves a score against every scope table for one test type."""

    def __init__(self, tables: "RankTables", rng: RandomSource) -> None:
        self.tables = tables
        self.rng = rng

    def resolve(self, score: float, test_type: str, scope: str) -> RankResult:
        if scope not in SCOPES:
            raise ValidationError(f"Scope must be one of: {', '.join(SCOPES)}")
        max_score = max_score_for(test_type)
        return resolve_rank(score, self.tables.table(scope, test_type), max_score, self.rng)

    def resolve_profile(self, score: float, test_type: str) -> Dict[str, RankResult]:
        return {scope: self.resolve(score, test_type, scope) for scope in SCOPES}


def determine_category(total_paid_students: int, tiers: Sequence[CategoryTier]) -> CategoryTier:
    for tier in tiers:
        if tier.contains(total_paid_students):
            return tier
    # Zero paid students matches nothing; fall back to the entry tier.
    return tiers[0]


def engagement_bonus(practice_tests_attempted: int, bonuses: Sequence[EngagementBonusTier]) -> float:
    for level in bonuses:
        if practice_tests_attempted >= level.threshold:
            return level.bonus
    return 0


def compute_incentives(
    coordinator_id: int,
    students: Iterable[RosterStudent],
    tiers: Sequence[CategoryTier],
    bonuses: Sequence[EngagementBonusTier],
) -> IncentiveSummary:
    paid = [
        s
        for s in students
        if s.coordinator_id == coordinator_id and s.payment_status == PAID_STATUS
    ]
    total_paid = len(paid)
    category = determine_category(total_paid, tiers)
    base_incentive = category.per_student_share * total_paid
    bonus_total = sum(engagement_bonus(s.practice_tests_attempted, bonuses) for s in paid)
    return IncentiveSummary(
        category=category.name,
        total_paid_students=total_paid,
        base_incentive=base_incentive,
        bonus_amount=bonus_total,
        total_earnings=base_incentive + bonus_total,
    )


def rank_coordinators(standings: Iterable[CoordinatorStanding]) -> List[CoordinatorStanding]:
    # sorted() is stable: equal earnings keep their input order.
    return sorted(standings, key=lambda s: -s.total_earnings)


def coordinator_leaderboard(
    standings: Iterable[CoordinatorStanding],
    limit: Optional[int] = None,
    approved_only: bool = False,
) -> List[CoordinatorStanding]:
    ranked = rank_coordinators(standings)
    if approved_only:
        ranked = [s for s in ranked if s.status == "approved"]
    if limit is not None:
        ranked = ranked[:limit]
    return ranked


def partner_rank(standings: Iterable[CoordinatorStanding], coordinator_id: int) -> int:
    """1-based position in the full earnings order, 0 if absent."""
    for idx, standing in enumerate(rank_coordinators(standings), start=1):
        if standing.coordinator_id == coordinator_id:
            return idx
    return 0


def participant_category(rank: int, cap: int) -> str:
    for fraction, label in PARTICIPANT_CATEGORY_PERCENTILES:
        if rank <= cap * fraction:
            return label
    return UNRANKED


def _partition_key(participant: ParticipantScore, scope: str) -> str:
    if scope == "global":
        return "global"
    if scope == "country":
        return participant.country
    if scope == "state":
        return f"{participant.country}/{participant.state}"
    return f"{participant.country}/{participant.state}/{participant.city}"


def rank_participants(
    participants: Iterable[ParticipantScore], scope: str
) -> Dict[str, List[dict]]:
    """
    Rank students against each other by cumulative score inside each
    partition of the scope. Ranks stop growing at the scope cap.
    """
    if scope not in SCOPES:
        raise ValidationError(f"Scope must be one of: {', '.join(SCOPES)}")
    cap = PARTICIPANT_RANK_CAPS[scope]

    partitions: Dict[str, List[ParticipantScore]] = defaultdict(list)
    for participant in participants:
        partitions[_partition_key(participant, scope)].append(participant)

    result: Dict[str, List[dict]] = {}
    for key, members in partitions.items():
        members.sort(key=lambda p: -p.cumulative_score)
        rows = []
        for idx, p in enumerate(members, start=1):
            rank = min(idx, cap)
            rows.append(
                {
                    "student_id": p.student_id,
                    "name": p.name,
                    "cumulative_score": p.cumulative_score,
                    "rank": rank,
                    "category": participant_category(rank, cap),
                }
            )
        result[key] = rows
    return result
