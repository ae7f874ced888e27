"""Deterministic choice of the featured fixture for a gameweek.

Two callers given the same fixture set must always pick the same match, so
the selection depends only on team identifiers and the explicit
``catalog_index`` of each fixture.  The cascade consults five tiers in order
and stops at the first tier with any candidates:

1. both teams are tier-one, ranked by the home team's priority;
2. tier-one home team against a tier-two visitor, ranked by home priority
   then away priority;
3. tier-one home team against anyone, ranked by home priority;
4. tier-one visitor against anyone, ranked by the visitor's position in the
   home priority list;
5. any fixture involving a tier-two team, in catalog order.

When nothing matches the first fixture in catalog order is featured.
"""

from __future__ import annotations

import dataclasses
import logging
import sys
from typing import Callable, Iterable, List, Sequence, Tuple

from .errors import InvalidInput
from .models import Fixture, sort_fixtures, validate_fixture

logger = logging.getLogger(__name__)

__all__ = [
    "UNRANKED",
    "FALLBACK_TIER",
    "PriorityRules",
    "DEFAULT_PRIORITY_RULES",
    "FeaturedSelection",
    "featured_selection",
    "select_featured_fixture",
    "valid_fixtures",
]

UNRANKED = sys.maxsize
FALLBACK_TIER = 0


@dataclasses.dataclass(slots=True, frozen=True)
class PriorityRules:
    """Team sets and orderings that drive the cascade."""

    tier_one: frozenset[int]
    tier_two: frozenset[int]
    home_order: Tuple[int, ...]
    away_order: Tuple[int, ...]

    def __post_init__(self) -> None:
        object.__setattr__(self, "tier_one", frozenset(self.tier_one))
        object.__setattr__(self, "tier_two", frozenset(self.tier_two))
        object.__setattr__(self, "home_order", tuple(self.home_order))
        object.__setattr__(self, "away_order", tuple(self.away_order))

    def home_rank(self, team_id: int | None) -> int:
        return _rank(self.home_order, team_id)

    def away_rank(self, team_id: int | None) -> int:
        return _rank(self.away_order, team_id)


def _rank(order: Sequence[int], team_id: int | None) -> int:
    try:
        return order.index(team_id)  # type: ignore[arg-type]
    except ValueError:
        return UNRANKED


DEFAULT_PRIORITY_RULES = PriorityRules(
    tier_one=frozenset({1, 7, 12, 13, 14, 18}),
    tier_two=frozenset({2, 15}),
    home_order=(13, 12, 1, 14, 7, 18),
    away_order=(15, 2),
)


@dataclasses.dataclass(slots=True, frozen=True)
class FeaturedSelection:
    """The featured fixture and the tier that produced it."""

    fixture: Fixture
    tier: int

    @property
    def is_fallback(self) -> bool:
        return self.tier == FALLBACK_TIER


_Tier = Tuple[Callable[[Fixture, PriorityRules], bool], Callable[[Fixture, PriorityRules], Tuple[int, ...]]]

_TIERS: Tuple[_Tier, ...] = (
    (
        lambda f, r: f.home_team_id in r.tier_one and f.away_team_id in r.tier_one,
        lambda f, r: (r.home_rank(f.home_team_id),),
    ),
    (
        lambda f, r: f.home_team_id in r.tier_one and f.away_team_id in r.tier_two,
        lambda f, r: (r.home_rank(f.home_team_id), r.away_rank(f.away_team_id)),
    ),
    (
        lambda f, r: f.home_team_id in r.tier_one,
        lambda f, r: (r.home_rank(f.home_team_id),),
    ),
    (
        lambda f, r: f.away_team_id in r.tier_one,
        lambda f, r: (r.home_rank(f.away_team_id),),
    ),
    (
        lambda f, r: f.home_team_id in r.tier_two or f.away_team_id in r.tier_two,
        lambda f, r: (),
    ),
)


def valid_fixtures(fixtures: Iterable[Fixture]) -> List[Fixture]:
    """Drop malformed fixtures one at a time and return the rest in catalog order."""

    valid: List[Fixture] = []
    rejected = 0
    for fixture in fixtures:
        try:
            valid.append(validate_fixture(fixture))
        except InvalidInput as exc:
            rejected += 1
            logger.warning("Skipping fixture %s: %s", fixture.fixture_id, exc)
    if rejected:
        logger.info("Rejected %d malformed fixtures", rejected)
    return sort_fixtures(valid)


def featured_selection(
    fixtures: Iterable[Fixture],
    rules: PriorityRules = DEFAULT_PRIORITY_RULES,
) -> FeaturedSelection | None:
    """Run the priority cascade and report which tier decided it."""

    candidates = valid_fixtures(fixtures)
    if not candidates:
        return None
    for tier, (matches, rank) in enumerate(_TIERS, start=1):
        survivors = [fixture for fixture in candidates if matches(fixture, rules)]
        if not survivors:
            continue
        chosen = min(
            survivors,
            key=lambda f: (*rank(f, rules), f.catalog_index, f.fixture_id),
        )
        logger.debug("Featured fixture %s chosen by tier %d", chosen.fixture_id, tier)
        return FeaturedSelection(chosen, tier)
    logger.debug("No prioritised fixture; falling back to %s", candidates[0].fixture_id)
    return FeaturedSelection(candidates[0], FALLBACK_TIER)


def select_featured_fixture(
    fixtures: Iterable[Fixture],
    rules: PriorityRules = DEFAULT_PRIORITY_RULES,
) -> Fixture | None:
    """Return the featured fixture, or ``None`` for an empty gameweek."""

    selection = featured_selection(fixtures, rules)
    return selection.fixture if selection else None
