"""Record types shared by the settlement engine.

Fixtures and entries are owned by external collaborators and only read here.
Winners, pot snapshots, payout structures and settlement records are produced
by the engine itself.  All records are immutable; state transitions build new
instances with :func:`dataclasses.replace`.
"""

from __future__ import annotations

import dataclasses
import datetime as dt
import enum
from decimal import Decimal
from typing import Mapping, Sequence, Tuple

from .errors import InvalidInput

__all__ = [
    "PlayerRef",
    "GoalEvent",
    "Fixture",
    "Entry",
    "EntryKey",
    "MatchResult",
    "Winner",
    "PotState",
    "PotSnapshot",
    "PayoutStructure",
    "SettlementRecord",
    "sort_fixtures",
    "validate_fixture",
]

EntryKey = Tuple[str, int, int]


@dataclasses.dataclass(slots=True, frozen=True)
class PlayerRef:
    """Structured reference to a goal scorer."""

    player_id: int
    surname: str
    team_id: int | None = None


@dataclasses.dataclass(slots=True, frozen=True)
class GoalEvent:
    team_id: int
    player_id: int


@dataclasses.dataclass(slots=True, frozen=True)
class Fixture:
    """A single match within a gameweek.

    ``catalog_index`` is the position of the fixture in the upstream catalog
    and is the only ordering the priority selector relies on.
    """

    fixture_id: int | None
    gameweek: int | None
    home_team_id: int | None
    away_team_id: int | None
    catalog_index: int = 0
    home_score: int | None = None
    away_score: int | None = None
    finished: bool = False
    kickoff_time: dt.datetime | None = None
    goal_events: Tuple[GoalEvent, ...] = ()

    @property
    def has_score(self) -> bool:
        return self.home_score is not None and self.away_score is not None

    def involves(self, team_id: int) -> bool:
        return team_id in (self.home_team_id, self.away_team_id)


def _is_identifier(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def validate_fixture(fixture: Fixture) -> Fixture:
    """Return ``fixture`` unchanged or raise :class:`InvalidInput`."""

    missing = [
        name
        for name in ("fixture_id", "gameweek", "home_team_id", "away_team_id")
        if not _is_identifier(getattr(fixture, name))
    ]
    if missing:
        raise InvalidInput(
            f"Fixture is missing identifiers: {', '.join(missing)}",
            details={"fixture_id": fixture.fixture_id, "missing": missing},
        )
    scores = (fixture.home_score, fixture.away_score)
    if not fixture.finished and any(score is not None for score in scores):
        raise InvalidInput(
            f"Fixture {fixture.fixture_id} carries a score but is not finished",
            details={"fixture_id": fixture.fixture_id},
        )
    if any(score is not None and score < 0 for score in scores):
        raise InvalidInput(
            f"Fixture {fixture.fixture_id} has a negative score",
            details={"fixture_id": fixture.fixture_id},
        )
    return fixture


@dataclasses.dataclass(slots=True, frozen=True)
class Entry:
    """One participant's prediction for a fixture."""

    participant_id: str
    fixture_id: int
    gameweek: int
    predicted_home_score: int
    predicted_away_score: int
    predicted_scorer_name: str = ""
    submitted_at: dt.datetime | None = None
    predicted_scorer_id: int | None = None

    @property
    def key(self) -> EntryKey:
        return (self.participant_id, self.fixture_id, self.gameweek)

    @property
    def predicts_goalless(self) -> bool:
        return self.predicted_home_score == 0 and self.predicted_away_score == 0


@dataclasses.dataclass(slots=True, frozen=True)
class MatchResult:
    """Final score of a fixture together with everyone who scored."""

    fixture_id: int
    gameweek: int
    home_score: int
    away_score: int
    scorers: Tuple[PlayerRef, ...] = ()

    @property
    def is_goalless(self) -> bool:
        return self.home_score == 0 and self.away_score == 0

    @classmethod
    def from_fixture(
        cls, fixture: Fixture, roster: Mapping[int, str] | None = None
    ) -> "MatchResult":
        """Build the result of a finished fixture.

        ``roster`` maps player ids to the names the feed uses for them.  Goal
        events for players missing from the roster keep an empty surname and
        can still be matched by id.
        """

        validate_fixture(fixture)
        if not fixture.finished or not fixture.has_score:
            raise InvalidInput(
                f"Fixture {fixture.fixture_id} has no final result yet",
                details={"fixture_id": fixture.fixture_id},
            )
        names = roster or {}
        scorers: list[PlayerRef] = []
        seen: set[int] = set()
        for event in fixture.goal_events:
            if event.player_id in seen:
                continue
            seen.add(event.player_id)
            scorers.append(
                PlayerRef(
                    player_id=event.player_id,
                    surname=names.get(event.player_id, ""),
                    team_id=event.team_id,
                )
            )
        assert fixture.fixture_id is not None and fixture.gameweek is not None
        assert fixture.home_score is not None and fixture.away_score is not None
        return cls(
            fixture_id=fixture.fixture_id,
            gameweek=fixture.gameweek,
            home_score=fixture.home_score,
            away_score=fixture.away_score,
            scorers=tuple(scorers),
        )


@dataclasses.dataclass(slots=True, frozen=True)
class Winner:
    gameweek: int
    fixture_id: int
    participant_id: str
    predicted_home_score: int
    predicted_away_score: int
    predicted_scorer_name: str = ""
    awarded_amount: Decimal | None = None

    @classmethod
    def from_entry(cls, entry: Entry) -> "Winner":
        return cls(
            gameweek=entry.gameweek,
            fixture_id=entry.fixture_id,
            participant_id=entry.participant_id,
            predicted_home_score=entry.predicted_home_score,
            predicted_away_score=entry.predicted_away_score,
            predicted_scorer_name=entry.predicted_scorer_name,
        )


class PotState(str, enum.Enum):
    """Lifecycle of one gameweek's pot."""

    SEEDED = "seeded"
    AWAITING_SETTLEMENT = "awaiting_settlement"
    SETTLED_WON = "settled_won"
    SETTLED_NO_WINNER = "settled_no_winner"

    @property
    def is_settled(self) -> bool:
        return self in (PotState.SETTLED_WON, PotState.SETTLED_NO_WINNER)


@dataclasses.dataclass(slots=True, frozen=True)
class PotSnapshot:
    """Value of a contest's pot for one gameweek."""

    contest_id: str
    gameweek: int
    current_amount: Decimal
    starting_amount: Decimal
    state: PotState = PotState.SEEDED
    active: bool = True
    winner_count: int | None = None

    @property
    def key(self) -> Tuple[str, int]:
        return (self.contest_id, self.gameweek)


@dataclasses.dataclass(slots=True, frozen=True)
class PayoutStructure:
    """Season prize distribution for one league.

    ``season_winners`` is ordered rank 1 first.  ``balancing_transfer`` is the
    part of the side-contest pool that was moved into the season schedule.
    """

    season_winners: Tuple[Decimal, ...]
    recurring_a_per_week: Decimal
    recurring_b_per_week: Decimal
    bonus_per_category: Mapping[str, Decimal]
    total_budget: Decimal
    weeks_a: int
    weeks_b: int
    entry_fee: Decimal = Decimal("0")
    participant_count: int = 0
    balancing_transfer: Decimal = Decimal("0")

    @property
    def paid_positions(self) -> int:
        return len(self.season_winners)

    def season_total(self) -> Decimal:
        return sum(self.season_winners, Decimal("0"))

    def side_total(self) -> Decimal:
        return (
            self.recurring_a_per_week * self.weeks_a
            + self.recurring_b_per_week * self.weeks_b
            + sum(self.bonus_per_category.values(), Decimal("0"))
        )

    def allocated_total(self) -> Decimal:
        return self.season_total() + self.side_total()

    def discrepancy(self) -> Decimal:
        """Signed difference between what is allocated and the budget."""

        return self.allocated_total() - self.total_budget


@dataclasses.dataclass(slots=True, frozen=True)
class SettlementRecord:
    """Persisted outcome of settling one (contest, gameweek)."""

    contest_id: str
    gameweek: int
    fixture_id: int
    pot_amount: Decimal
    winners: Tuple[Winner, ...]
    fingerprint: str
    settled_at: dt.datetime

    @property
    def winner_count(self) -> int:
        return len(self.winners)

    @property
    def awarded_total(self) -> Decimal:
        return sum(
            (winner.awarded_amount or Decimal("0") for winner in self.winners),
            Decimal("0"),
        )


def sort_fixtures(fixtures: Sequence[Fixture]) -> list[Fixture]:
    """Order fixtures by their catalog position."""

    return sorted(
        fixtures, key=lambda item: (item.catalog_index, item.fixture_id or 0)
    )
