"""Builders for fixtures and entries shared by the settlement tests."""

from __future__ import annotations

import datetime as dt
from typing import Iterable

from fplcontest.settlement.models import Entry, Fixture, GoalEvent

KICKOFF = dt.datetime(2024, 9, 21, 14, 0, tzinfo=dt.timezone.utc)
SETTLED_AT = dt.datetime(2024, 9, 21, 18, 0, tzinfo=dt.timezone.utc)

ROSTER = {
    328: "Salah",
    17: "Saka",
    401: "Haaland",
    402: "Foden",
}


def make_fixture(
    fixture_id: int,
    home: int,
    away: int,
    *,
    gameweek: int = 5,
    catalog_index: int | None = None,
    score: tuple[int, int] | None = None,
    scorers: Iterable[tuple[int, int]] = (),
    kickoff: dt.datetime | None = KICKOFF,
) -> Fixture:
    """Build a fixture; ``scorers`` holds ``(team_id, player_id)`` pairs."""

    return Fixture(
        fixture_id=fixture_id,
        gameweek=gameweek,
        home_team_id=home,
        away_team_id=away,
        catalog_index=fixture_id if catalog_index is None else catalog_index,
        home_score=score[0] if score else None,
        away_score=score[1] if score else None,
        finished=score is not None,
        kickoff_time=kickoff,
        goal_events=tuple(GoalEvent(team, player) for team, player in scorers),
    )


def make_entry(
    participant_id: str,
    home: int,
    away: int,
    scorer: str = "",
    *,
    fixture_id: int = 101,
    gameweek: int = 5,
    minutes_before: int = 60,
    scorer_id: int | None = None,
) -> Entry:
    return Entry(
        participant_id=participant_id,
        fixture_id=fixture_id,
        gameweek=gameweek,
        predicted_home_score=home,
        predicted_away_score=away,
        predicted_scorer_name=scorer,
        submitted_at=KICKOFF - dt.timedelta(minutes=minutes_before),
        predicted_scorer_id=scorer_id,
    )


