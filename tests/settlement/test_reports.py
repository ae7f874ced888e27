"""Tabular report frames."""

from __future__ import annotations

from decimal import Decimal

import polars as pl

from fplcontest.settlement.models import PotSnapshot, PotState, SettlementRecord, Winner
from fplcontest.settlement.payouts import compute_payout_structure
from fplcontest.settlement.reports import (
    payout_frame,
    pot_history_frame,
    settlements_frame,
    winners_frame,
)

from .factories import SETTLED_AT


def test_payout_frame_totals_budget():
    structure = compute_payout_structure(50, 20, 38, 38, 3)
    frame = payout_frame(structure)

    assert frame.height == 4 + 2 + 3
    assert isinstance(frame["total"].dtype, pl.Decimal)
    assert frame["total"].dtype.scale == 2
    assert frame["total"].sum() == Decimal("1000")
    weekly = frame.filter(pl.col("category") == "weekly")
    assert weekly["count"].to_list() == [38, 38]
    assert frame.filter(pl.col("category") == "season")["label"].to_list()[0] == "Rank 1"


def test_pot_history_frame():
    frame = pot_history_frame(
        [
            PotSnapshot("c", 1, Decimal("100"), Decimal("100"), PotState.SETTLED_NO_WINNER, False, 0),
            PotSnapshot("c", 2, Decimal("200"), Decimal("100")),
        ]
    )
    assert frame["current_amount"].to_list() == [Decimal("100.00"), Decimal("200.00")]
    assert frame["state"].to_list() == ["settled_no_winner", "seeded"]
    assert frame["winner_count"].to_list() == [0, None]


def test_empty_frames_keep_schema():
    assert pot_history_frame([]).columns[:2] == ["contest_id", "gameweek"]
    assert winners_frame([]).height == 0
    empty = settlements_frame([])
    assert "contest_id" in empty.columns
    assert empty.height == 0


def test_settlements_frame_flattens_winners():
    winners = (
        Winner(5, 101, "ann", 2, 1, "Salah", Decimal("50.00")),
        Winner(5, 101, "bob", 2, 1, "Salah", Decimal("50.00")),
    )
    records = [
        SettlementRecord("c", 5, 101, Decimal("100"), winners, "x", SETTLED_AT),
        SettlementRecord("c", 6, 201, Decimal("100"), (), "y", SETTLED_AT),
    ]

    frame = settlements_frame(records)

    assert frame.height == 2
    assert frame["participant_id"].to_list() == ["ann", "bob"]
    assert frame["awarded_amount"].to_list() == [Decimal("50.00"), Decimal("50.00")]
    assert frame["awarded_amount"].sum() == Decimal("100")
    assert set(frame["contest_id"].to_list()) == {"c"}


def test_uneven_awards_stay_exact():
    winners = tuple(
        Winner(5, 101, name, 2, 1, "Salah", amount)
        for name, amount in (("ann", Decimal("33.34")), ("bob", Decimal("33.33")), ("cy", Decimal("33.33")))
    )

    frame = winners_frame(winners)

    assert frame["awarded_amount"].sum() == Decimal("100.00")
