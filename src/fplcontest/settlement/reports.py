"""Tabular views of settlement results."""

from __future__ import annotations

import dataclasses
from decimal import Decimal
from typing import Iterable, Sequence

import polars as pl

from .models import PayoutStructure, PotSnapshot, SettlementRecord, Winner

__all__ = ["payout_frame", "pot_history_frame", "winners_frame", "settlements_frame"]

MONEY = pl.Decimal(precision=None, scale=2)

_PAYOUT_SCHEMA = {
    "category": pl.Utf8,
    "label": pl.Utf8,
    "amount": MONEY,
    "count": pl.Int64,
    "total": MONEY,
}

_POT_SCHEMA = {
    "contest_id": pl.Utf8,
    "gameweek": pl.Int64,
    "current_amount": MONEY,
    "starting_amount": MONEY,
    "state": pl.Utf8,
    "active": pl.Boolean,
    "winner_count": pl.Int64,
}

_WINNER_SCHEMA = {
    "gameweek": pl.Int64,
    "fixture_id": pl.Int64,
    "participant_id": pl.Utf8,
    "predicted_home_score": pl.Int64,
    "predicted_away_score": pl.Int64,
    "predicted_scorer_name": pl.Utf8,
    "awarded_amount": MONEY,
}


def _cents(value: Decimal) -> Decimal:
    return value.quantize(Decimal("0.01"))


def payout_frame(structure: PayoutStructure) -> pl.DataFrame:
    """One row per payout line; the ``total`` column sums to the budget."""

    records = [
        {
            "category": "season",
            "label": f"Rank {rank}",
            "amount": _cents(amount),
            "count": 1,
            "total": _cents(amount),
        }
        for rank, amount in enumerate(structure.season_winners, start=1)
    ]
    for label, amount, count in (
        ("Weekly A", structure.recurring_a_per_week, structure.weeks_a),
        ("Weekly B", structure.recurring_b_per_week, structure.weeks_b),
    ):
        records.append(
            {
                "category": "weekly",
                "label": label,
                "amount": _cents(amount),
                "count": count,
                "total": _cents(amount * count),
            }
        )
    for name, amount in structure.bonus_per_category.items():
        records.append(
            {
                "category": "chip",
                "label": name,
                "amount": _cents(amount),
                "count": 1,
                "total": _cents(amount),
            }
        )
    return pl.DataFrame(records, schema=_PAYOUT_SCHEMA)


def pot_history_frame(snapshots: Iterable[PotSnapshot]) -> pl.DataFrame:
    records = [
        {
            "contest_id": pot.contest_id,
            "gameweek": pot.gameweek,
            "current_amount": _cents(pot.current_amount),
            "starting_amount": _cents(pot.starting_amount),
            "state": pot.state.value,
            "active": pot.active,
            "winner_count": pot.winner_count,
        }
        for pot in snapshots
    ]
    return pl.DataFrame(records, schema=_POT_SCHEMA)


def winners_frame(winners: Sequence[Winner]) -> pl.DataFrame:
    records = []
    for winner in winners:
        record = dataclasses.asdict(winner)
        amount = record["awarded_amount"]
        record["awarded_amount"] = None if amount is None else _cents(amount)
        records.append(record)
    return pl.DataFrame(records, schema=_WINNER_SCHEMA)


def settlements_frame(records: Iterable[SettlementRecord]) -> pl.DataFrame:
    """Every winner across several settlement runs, with the contest id."""

    rows = list(records)
    frames = [
        winners_frame(record.winners).with_columns(pl.lit(record.contest_id).alias("contest_id"))
        for record in rows
    ]
    if not frames:
        return pl.DataFrame(schema={**_WINNER_SCHEMA, "contest_id": pl.Utf8})
    return pl.concat(frames, how="vertical")
