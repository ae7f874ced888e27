"""Weekly-winner and chip-bonus contests driven by league standings."""

from __future__ import annotations

import dataclasses
from decimal import Decimal
from typing import Dict, Iterable, List, Sequence, Tuple, TypeVar

from .errors import PreconditionViolation
from .utils import MoneyValue, split_evenly, to_money

__all__ = [
    "CHIP_LABELS",
    "FIRST_HALF_LAST_GAMEWEEK",
    "StandingRow",
    "ChipPlay",
    "chip_category",
    "chip_display_name",
    "chip_winners",
    "split_prize",
    "weekly_winners",
]

T = TypeVar("T")

FIRST_HALF_LAST_GAMEWEEK = 19

# chip code -> (payout category stem, display name)
CHIP_LABELS: Dict[str, Tuple[str, str]] = {
    "bboost": ("BenchBoost", "Bench Boost"),
    "freehit": ("FreeHit", "Free Hit"),
    "wildcard": ("WildCard", "Wildcard"),
    "3xc": ("TripleCaptain", "Triple Captain"),
}


def _half(gameweek: int) -> str:
    return "I" if gameweek <= FIRST_HALF_LAST_GAMEWEEK else "II"


def chip_display_name(code: str, gameweek: int) -> str:
    """``"Bench Boost I"`` style label for a chip played in ``gameweek``."""

    base = CHIP_LABELS.get(code, (code, code))[1]
    return f"{base} {_half(gameweek)}"


def chip_category(code: str, gameweek: int) -> str:
    """Payout category (``"BenchBoost I"``) a chip play competes in."""

    stem = CHIP_LABELS.get(code, (code, code))[0]
    return f"{stem} {_half(gameweek)}"


@dataclasses.dataclass(slots=True, frozen=True)
class StandingRow:
    """One manager's line in a classic league table."""

    entry_id: int
    player_name: str
    entry_name: str = ""
    event_total: int = 0
    total: int = 0
    rank: int = 0


@dataclasses.dataclass(slots=True, frozen=True)
class ChipPlay:
    """A chip activated by a manager in a finished gameweek."""

    manager_id: int
    manager_name: str
    gameweek: int
    chip_type: str
    points: int

    @property
    def category(self) -> str:
        return chip_category(self.chip_type, self.gameweek)

    @property
    def chip_name(self) -> str:
        return chip_display_name(self.chip_type, self.gameweek)


def weekly_winners(standings: Iterable[StandingRow]) -> List[StandingRow]:
    """Managers with the highest gameweek score; ties share the prize."""

    rows = list(standings)
    if not rows:
        return []
    best = max(row.event_total for row in rows)
    return sorted(
        (row for row in rows if row.event_total == best),
        key=lambda row: (row.rank, row.entry_id),
    )


def chip_winners(plays: Iterable[ChipPlay]) -> Dict[str, List[ChipPlay]]:
    """Best score per chip category and gameweek, keyed by category.

    Winners of a category are listed by gameweek, then manager id.
    """

    grouped: Dict[Tuple[str, int], List[ChipPlay]] = {}
    for play in plays:
        grouped.setdefault((play.category, play.gameweek), []).append(play)
    winners: Dict[str, List[ChipPlay]] = {}
    for (category, _gameweek), group in sorted(grouped.items()):
        best = max(play.points for play in group)
        winners.setdefault(category, []).extend(
            sorted(
                (play for play in group if play.points == best),
                key=lambda play: play.manager_id,
            )
        )
    return winners


def split_prize(
    amount: MoneyValue,
    winners: Sequence[T],
    *,
    minor_unit: MoneyValue = Decimal("0.01"),
) -> List[Tuple[T, Decimal]]:
    """Share ``amount`` between ``winners`` with the weekly contest's remainder rule."""

    if not winners:
        return []
    total = to_money(amount)
    if total < 0:
        raise PreconditionViolation(f"Prize cannot be negative: {total}")
    try:
        shares = split_evenly(total, len(winners), minor_unit=minor_unit)
    except ValueError as exc:
        raise PreconditionViolation(str(exc)) from exc
    return list(zip(winners, shares))
