"""
Static lookup data loaded once at startup.

Eight rank tables (scope x test type) plus the partner tiers and engagement
bonus tiers. Anything missing or malformed raises ConfigurationError; the
application refuses to start without a complete set.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Tuple

from gio.config import DATA_DIR, SCOPES, TEST_TYPES
from gio.errors import ConfigurationError
from gio.rules import CategoryTier, EngagementBonusTier, RankTableEntry, parse_rank_range


logger = logging.getLogger(__name__)

TableKey = Tuple[str, str]


@dataclass(frozen=True)
class RankTables:
    tables: Mapping[TableKey, Tuple[RankTableEntry, ...]]

    def table(self, scope: str, test_type: str) -> Tuple[RankTableEntry, ...]:
        return self.tables[(scope, test_type)]


@dataclass(frozen=True)
class IncentiveConfig:
    tiers: Tuple[CategoryTier, ...]
    bonuses: Tuple[EngagementBonusTier, ...]


def _read_json(path: Path) -> Any:
    if not path.is_file():
        raise ConfigurationError(f"Missing configuration file: {path}")
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise ConfigurationError(f"Unreadable configuration file {path}: {exc}") from exc


def parse_rank_table(rows: Any, label: str) -> Tuple[RankTableEntry, ...]:
    if not isinstance(rows, list) or not rows:
        raise ConfigurationError(f"Rank table {label} must be a non-empty list")

    entries: List[RankTableEntry] = []
    seen: set[float] = set()
    for idx, row in enumerate(rows):
        try:
            score = float(row["score"])
            start, end = parse_rank_range(row["rankRange"])
            category = str(row["category"])
        except (KeyError, TypeError, ValueError) as exc:
            raise ConfigurationError(f"Rank table {label}, row {idx}: {exc}") from exc
        if score in seen:
            raise ConfigurationError(f"Rank table {label} has duplicate score {score:g}")
        seen.add(score)
        entries.append(
            RankTableEntry(
                score=score,
                rank_range=row["rankRange"],
                category=category,
                start=start,
                end=end,
            )
        )
    return tuple(entries)


def load_rank_tables(data_dir: Path = DATA_DIR) -> RankTables:
    tables: Dict[TableKey, Tuple[RankTableEntry, ...]] = {}
    for scope in SCOPES:
        for test_type in TEST_TYPES:
            label = f"{scope}_{test_type}"
            rows = _read_json(Path(data_dir) / "rank_tables" / f"{label}.json")
            tables[(scope, test_type)] = parse_rank_table(rows, label)
    logger.info(
        "Loaded %d rank tables (%d entries)",
        len(tables),
        sum(len(t) for t in tables.values()),
    )
    return RankTables(tables=MappingProxyType(tables))


def parse_partner_tiers(rows: Any) -> Tuple[CategoryTier, ...]:
    if not isinstance(rows, list) or not rows:
        raise ConfigurationError("Partner tiers must be a non-empty list")
    try:
        tiers = tuple(
            CategoryTier(
                name=str(row["name"]),
                min=int(row["min"]),
                max=None if row["max"] is None else int(row["max"]),
                per_student_share=float(row["perStudentShare"]),
            )
            for row in rows
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise ConfigurationError(f"Malformed partner tier: {exc}") from exc

    if tiers[0].min != 1:
        raise ConfigurationError("First partner tier must start at 1")
    for prev, nxt in zip(tiers, tiers[1:]):
        if prev.max is None or nxt.min != prev.max + 1:
            raise ConfigurationError(f"Partner tiers are not contiguous at {prev.name!r}")
    for tier in tiers:
        if tier.max is not None and tier.max < tier.min:
            raise ConfigurationError(f"Partner tier {tier.name!r} has max below min")
    if tiers[-1].max is not None:
        raise ConfigurationError("Last partner tier must be unbounded")
    return tiers


def parse_engagement_bonuses(rows: Any) -> Tuple[EngagementBonusTier, ...]:
    if not isinstance(rows, list) or not rows:
        raise ConfigurationError("Engagement bonuses must be a non-empty list")
    try:
        bonuses = tuple(
            EngagementBonusTier(threshold=int(row["threshold"]), bonus=float(row["bonus"]))
            for row in rows
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise ConfigurationError(f"Malformed engagement bonus: {exc}") from exc

    thresholds = [b.threshold for b in bonuses]
    if any(a <= b for a, b in zip(thresholds, thresholds[1:])):
        raise ConfigurationError("Engagement bonus thresholds must be strictly descending")
    if thresholds[-1] != 0:
        raise ConfigurationError("Engagement bonuses need a zero-threshold fallback")
    return bonuses


def load_incentive_config(data_dir: Path = DATA_DIR) -> IncentiveConfig:
    tiers = parse_partner_tiers(_read_json(Path(data_dir) / "partner_tiers.json"))
    bonuses = parse_engagement_bonuses(_read_json(Path(data_dir) / "engagement_bonuses.json"))
    logger.info("Loaded %d partner tiers and %d engagement bonus tiers", len(tiers), len(bonuses))
    return IncentiveConfig(tiers=tiers, bonuses=bonuses)
