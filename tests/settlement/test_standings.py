"""Weekly-winner and chip-bonus side contests."""

from __future__ import annotations

from decimal import Decimal

import pytest

from fplcontest.settlement.errors import PreconditionViolation
from fplcontest.settlement.standings import (
    ChipPlay,
    StandingRow,
    chip_category,
    chip_display_name,
    chip_winners,
    split_prize,
    weekly_winners,
)


def test_weekly_winner_is_highest_event_total():
    rows = [
        StandingRow(1, "Ann", event_total=64, rank=3),
        StandingRow(2, "Bob", event_total=81, rank=7),
        StandingRow(3, "Cy", event_total=55, rank=1),
    ]
    assert [row.player_name for row in weekly_winners(rows)] == ["Bob"]


def test_weekly_tie_is_ordered_by_rank():
    rows = [
        StandingRow(9, "Ann", event_total=70, rank=4),
        StandingRow(4, "Bob", event_total=70, rank=2),
    ]
    assert [row.entry_id for row in weekly_winners(rows)] == [4, 9]
    assert weekly_winners([]) == []


@pytest.mark.parametrize(
    ("code", "gameweek", "display", "category"),
    [
        ("bboost", 3, "Bench Boost I", "BenchBoost I"),
        ("3xc", 19, "Triple Captain I", "TripleCaptain I"),
        ("freehit", 20, "Free Hit II", "FreeHit II"),
        ("wildcard", 38, "Wildcard II", "WildCard II"),
        ("manager", 25, "manager II", "manager II"),
    ],
)
def test_chip_labels(code, gameweek, display, category):
    assert chip_display_name(code, gameweek) == display
    assert chip_category(code, gameweek) == category


def test_chip_winners_per_category_and_gameweek():
    plays = [
        ChipPlay(1, "Ann", 4, "bboost", 30),
        ChipPlay(2, "Bob", 4, "bboost", 42),
        ChipPlay(3, "Cy", 6, "bboost", 42),
        ChipPlay(5, "Eve", 6, "bboost", 42),
        ChipPlay(4, "Dee", 25, "bboost", 12),
        ChipPlay(1, "Ann", 8, "3xc", 20),
    ]

    winners = chip_winners(plays)

    assert sorted(winners) == ["BenchBoost I", "BenchBoost II", "TripleCaptain I"]
    assert [(p.manager_id, p.gameweek) for p in winners["BenchBoost I"]] == [(2, 4), (3, 6), (5, 6)]
    assert [p.manager_name for p in winners["BenchBoost II"]] == ["Dee"]
    assert winners["TripleCaptain I"][0].chip_name == "Triple Captain I"


def test_split_prize_uses_remainder_rule():
    shares = split_prize(Decimal("10"), ["a", "b", "c"])
    assert shares == [("a", Decimal("3.34")), ("b", Decimal("3.33")), ("c", Decimal("3.33"))]
    assert split_prize(10, []) == []


def test_split_prize_rejects_negative_and_fractional_amounts():
    with pytest.raises(PreconditionViolation):
        split_prize(-1, ["a"])
    with pytest.raises(PreconditionViolation):
        split_prize(Decimal("1.5"), ["a"], minor_unit=1)
