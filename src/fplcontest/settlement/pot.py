"""Rolling prize pot for the weekly contest.

Each gameweek gets one :class:`~fplcontest.settlement.models.PotSnapshot`.
A snapshot starts ``seeded``, moves to ``awaiting_settlement`` once the
gameweek opens, and ends either ``settled_won`` or ``settled_no_winner``.
Advancing to the next gameweek appends a new snapshot whose amount is reset
to the starting amount after a win, or grows by the starting amount after a
gameweek without winners.
"""

from __future__ import annotations

import dataclasses
import logging
from decimal import Decimal
from typing import List

from .errors import NotFound, PreconditionViolation
from .models import PotSnapshot, PotState
from .stores import PotStore
from .utils import MoneyValue, to_money

logger = logging.getLogger(__name__)

__all__ = ["next_pot_amount", "PotLedger"]


def next_pot_amount(previous: PotSnapshot | None, starting_amount: MoneyValue) -> Decimal:
    """Amount of the pot that follows ``previous``."""

    starting = to_money(starting_amount)
    if previous is None:
        return starting
    if previous.state == PotState.SETTLED_WON:
        return starting
    if previous.state == PotState.SETTLED_NO_WINNER:
        return previous.current_amount + starting
    raise PreconditionViolation(
        f"Gameweek {previous.gameweek} of {previous.contest_id} has not been settled",
        details={"contest_id": previous.contest_id, "gameweek": previous.gameweek},
    )


class PotLedger:
    """State machine over the pot snapshots held by a :class:`PotStore`."""

    def __init__(self, store: PotStore, audit_logger: logging.Logger | None = None) -> None:
        self._store = store
        self._audit_logger = audit_logger or logging.getLogger("fplcontest.settlement.audit")

    def current(self, contest_id: str) -> PotSnapshot:
        pot = self._store.current_pot(contest_id)
        if pot is None:
            raise NotFound(f"No pot exists for {contest_id}", details={"contest_id": contest_id})
        return pot

    def history(self, contest_id: str) -> List[PotSnapshot]:
        return self._store.pot_history(contest_id)

    def _current_for(self, contest_id: str, gameweek: int) -> PotSnapshot:
        pot = self.current(contest_id)
        if pot.gameweek != gameweek:
            raise PreconditionViolation(
                f"{contest_id} pot is on gameweek {pot.gameweek}, not {gameweek}",
                details={"contest_id": contest_id, "gameweek": gameweek, "current": pot.gameweek},
            )
        return pot

    def advance(
        self, contest_id: str, gameweek: int, starting_amount: MoneyValue
    ) -> PotSnapshot:
        """Move the contest's pot to ``gameweek``.

        The first call for a contest creates the pot.  Advancing to the
        gameweek the pot is already on returns it unchanged.
        """

        starting = to_money(starting_amount)
        if starting <= 0:
            raise PreconditionViolation(f"Starting amount must be positive, got {starting}")
        previous = self._store.current_pot(contest_id)
        if previous is not None:
            if previous.gameweek == gameweek:
                return previous
            if gameweek < previous.gameweek:
                raise PreconditionViolation(
                    f"Cannot move {contest_id} back from gameweek {previous.gameweek} to {gameweek}",
                    details={"contest_id": contest_id, "gameweek": gameweek},
                )
        amount = next_pot_amount(previous, starting)
        snapshot = PotSnapshot(
            contest_id=contest_id,
            gameweek=gameweek,
            current_amount=amount,
            starting_amount=starting,
            state=PotState.SEEDED,
            active=True,
        )
        self._store.save_pot(snapshot)
        self._audit_logger.info(
            "pot.advanced",
            extra={
                "contest_id": contest_id,
                "gameweek": gameweek,
                "amount": str(amount),
                "rolled_over": previous is not None
                and previous.state == PotState.SETTLED_NO_WINNER,
            },
        )
        logger.info("Pot for %s gameweek %d set to %s", contest_id, gameweek, amount)
        return snapshot

    def open_gameweek(self, contest_id: str, gameweek: int) -> PotSnapshot:
        """Mark the pot as in play; the amount does not change."""

        pot = self._current_for(contest_id, gameweek)
        if pot.state == PotState.AWAITING_SETTLEMENT:
            return pot
        if pot.state != PotState.SEEDED:
            raise PreconditionViolation(
                f"Gameweek {gameweek} of {contest_id} is already settled",
                details={"contest_id": contest_id, "gameweek": gameweek},
            )
        opened = dataclasses.replace(pot, state=PotState.AWAITING_SETTLEMENT)
        self._store.save_pot(opened)
        return opened

    def closing_snapshot(self, contest_id: str, gameweek: int, winner_count: int) -> PotSnapshot:
        """The settled snapshot for ``gameweek``, without storing it."""

        if winner_count < 0:
            raise PreconditionViolation("winner_count cannot be negative")
        pot = self._current_for(contest_id, gameweek)
        if pot.state.is_settled:
            raise PreconditionViolation(
                f"Gameweek {gameweek} of {contest_id} has already been settled",
                details={"contest_id": contest_id, "gameweek": gameweek},
            )
        state = PotState.SETTLED_WON if winner_count else PotState.SETTLED_NO_WINNER
        return dataclasses.replace(pot, state=state, winner_count=winner_count)

    def record_outcome(self, contest_id: str, gameweek: int, winner_count: int) -> PotSnapshot:
        """Close the gameweek as won or not won."""

        settled = self.closing_snapshot(contest_id, gameweek, winner_count)
        self._store.save_pot(settled)
        self.log_settled(settled)
        return settled

    def log_settled(self, pot: PotSnapshot) -> None:
        self._audit_logger.info(
            "pot.settled",
            extra={
                "contest_id": pot.contest_id,
                "gameweek": pot.gameweek,
                "amount": str(pot.current_amount),
                "winner_count": pot.winner_count,
            },
        )
