"""Orchestration of one contest's settlement runs.

:class:`SettlementService` wires the pure components to a record store.  It
serialises work per contest and gameweek so the pot is read, used for the
awards, and closed without another run interleaving, and it fingerprints the
inputs of every run so that settling the same gameweek twice returns the
stored outcome instead of paying out again.
"""

from __future__ import annotations

import contextlib
import dataclasses
import datetime as dt
import hashlib
import json
import logging
import random
import threading
from decimal import Decimal
from typing import Callable, Dict, Iterable, Iterator, List, Mapping, Sequence, Tuple

from .errors import NotFound, PreconditionViolation
from .fixture_priority import DEFAULT_PRIORITY_RULES, PriorityRules, featured_selection
from .models import Entry, Fixture, MatchResult, PayoutStructure, PotSnapshot, SettlementRecord
from .normalization import ScorerNormalizer
from .payouts import (
    DEFAULT_PAYOUT_RULES,
    PayoutRules,
    compute_payout_structure,
    recalculate_payout_structure,
    verify_payout_structure,
)
from .pot import PotLedger
from .stores import ContestStore, StoredPayouts
from .utils import MoneyValue, to_money
from .winners import award_winners, determine_winners, validate_entry

logger = logging.getLogger(__name__)

__all__ = ["SettlementService", "settlement_fingerprint"]


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def settlement_fingerprint(
    contest_id: str, result: MatchResult, entries: Iterable[Entry]
) -> str:
    """Stable digest of everything a settlement run depends on."""

    payload = {
        "contest_id": contest_id,
        "fixture_id": result.fixture_id,
        "gameweek": result.gameweek,
        "score": [result.home_score, result.away_score],
        "scorers": sorted(
            [scorer.player_id, scorer.surname, scorer.team_id] for scorer in result.scorers
        ),
        "entries": sorted(
            (
                [
                    entry.participant_id,
                    entry.fixture_id,
                    entry.gameweek,
                    entry.predicted_home_score,
                    entry.predicted_away_score,
                    entry.predicted_scorer_name,
                    entry.predicted_scorer_id,
                    entry.submitted_at.isoformat() if entry.submitted_at else None,
                ]
                for entry in entries
            ),
            key=lambda row: json.dumps(row, default=str),
        ),
    }
    encoded = json.dumps(payload, sort_keys=True, default=str)
    return hashlib.sha256(encoded.encode("utf-8")).hexdigest()


class SettlementService:
    """Run the weekly contest and manage its season payouts."""

    def __init__(
        self,
        store: ContestStore,
        *,
        priority_rules: PriorityRules = DEFAULT_PRIORITY_RULES,
        payout_rules: PayoutRules = DEFAULT_PAYOUT_RULES,
        normalizer: ScorerNormalizer | None = None,
        minor_unit: MoneyValue = Decimal("0.01"),
        clock: Callable[[], dt.datetime] = _utcnow,
        audit_logger: logging.Logger | None = None,
    ) -> None:
        self.store = store
        self.priority_rules = priority_rules
        self.payout_rules = payout_rules
        self.normalizer = normalizer
        self.minor_unit = to_money(minor_unit)
        self._clock = clock
        self._audit_logger = audit_logger or logging.getLogger("fplcontest.settlement.audit")
        self.ledger = PotLedger(store, audit_logger=self._audit_logger)
        self._locks: Dict[Tuple[str, int | None], threading.Lock] = {}
        self._locks_guard = threading.Lock()

    @contextlib.contextmanager
    def _locked(self, contest_id: str, gameweek: int | None = None) -> Iterator[None]:
        """Hold the lock of one gameweek, or of the contest's pot when ``gameweek`` is None."""

        with self._locks_guard:
            lock = self._locks.setdefault((contest_id, gameweek), threading.Lock())
        with lock:
            yield

    # Entries ---------------------------------------------------------------
    def submit_entry(self, entry: Entry, *, kickoff: dt.datetime | None = None) -> Entry:
        """Validate and store a prediction; later submissions replace earlier ones."""

        validate_entry(entry, kickoff=kickoff)
        self.store.upsert_entry(entry)
        logger.debug("Stored entry %s", entry.key)
        return entry

    # Fixtures --------------------------------------------------------------
    def featured_fixture(self, fixtures: Iterable[Fixture]) -> Fixture:
        selection = featured_selection(fixtures, self.priority_rules)
        if selection is None:
            raise NotFound("No fixture available to feature")
        logger.info(
            "Featured fixture %s (gameweek %s, tier %d)",
            selection.fixture.fixture_id,
            selection.fixture.gameweek,
            selection.tier,
        )
        return selection.fixture

    # Pot -------------------------------------------------------------------
    def starting_amount(self, league_id: str) -> Decimal:
        """Weekly contest amount from the league's payout structure."""

        return self.payouts(league_id).structure.recurring_a_per_week

    def advance(
        self,
        contest_id: str,
        gameweek: int,
        starting_amount: MoneyValue | None = None,
        *,
        league_id: str | None = None,
    ) -> PotSnapshot:
        """Move the contest's pot to ``gameweek`` and open it for play."""

        if starting_amount is None:
            if league_id is None:
                raise PreconditionViolation("Either starting_amount or league_id is required")
            starting_amount = self.starting_amount(league_id)
        with self._locked(contest_id):
            self.ledger.advance(contest_id, gameweek, starting_amount)
            return self.ledger.open_gameweek(contest_id, gameweek)

    def current_pot(self, contest_id: str) -> PotSnapshot:
        return self.ledger.current(contest_id)

    def pot_history(self, contest_id: str) -> List[PotSnapshot]:
        return self.ledger.history(contest_id)

    # Settlement ------------------------------------------------------------
    def settle(
        self,
        contest_id: str,
        fixture: Fixture,
        *,
        roster: Mapping[int, str] | None = None,
        kickoff: dt.datetime | None = None,
    ) -> SettlementRecord:
        """Decide and pay the winners of ``fixture`` from the current pot.

        Re-running with the same entries and result returns the stored
        record.  Running again after the inputs changed raises
        :class:`PreconditionViolation`; nothing is written in that case.
        """

        result = MatchResult.from_fixture(fixture, roster)
        gameweek = result.gameweek
        with self._locked(contest_id, gameweek):
            entries = self.store.entries_for(result.fixture_id, gameweek)
            fingerprint = settlement_fingerprint(contest_id, result, entries)
            existing = self.store.get_settlement(contest_id, gameweek)
            if existing is not None:
                if existing.fingerprint == fingerprint and existing.fixture_id == result.fixture_id:
                    self._finish_pot(existing)
                    logger.info(
                        "Gameweek %d of %s already settled; returning stored outcome",
                        gameweek,
                        contest_id,
                    )
                    return existing
                raise PreconditionViolation(
                    f"Gameweek {gameweek} of {contest_id} was already settled with different inputs",
                    details={"contest_id": contest_id, "gameweek": gameweek},
                )

            with self._locked(contest_id):
                pot = self.ledger.current(contest_id)
                if pot.gameweek != gameweek:
                    raise PreconditionViolation(
                        f"{contest_id} pot is on gameweek {pot.gameweek}, not {gameweek}",
                        details={"contest_id": contest_id, "gameweek": gameweek},
                    )
                cutoff = kickoff or fixture.kickoff_time
                winners = determine_winners(
                    entries, result, kickoff=cutoff, normalizer=self.normalizer
                )
                awarded = award_winners(winners, pot.current_amount, minor_unit=self.minor_unit)
                record = SettlementRecord(
                    contest_id=contest_id,
                    gameweek=gameweek,
                    fixture_id=result.fixture_id,
                    pot_amount=pot.current_amount,
                    winners=tuple(awarded),
                    fingerprint=fingerprint,
                    settled_at=self._clock(),
                )
                settled = self.ledger.closing_snapshot(contest_id, gameweek, record.winner_count)
                self.store.commit_settlement(settled, record)
            self.ledger.log_settled(settled)

        self._audit_logger.info(
            "settlement.completed",
            extra={
                "contest_id": contest_id,
                "gameweek": gameweek,
                "fixture_id": record.fixture_id,
                "pot_amount": str(record.pot_amount),
                "winners": [winner.participant_id for winner in record.winners],
            },
        )
        return record

    def _finish_pot(self, record: SettlementRecord) -> None:
        """Close the pot of a stored settlement whose pot was left open."""

        with self._locked(record.contest_id):
            pot = self.store.get_pot(record.contest_id, record.gameweek)
            if pot is not None and not pot.state.is_settled:
                logger.warning(
                    "Closing pot of %s gameweek %d from its stored settlement",
                    record.contest_id,
                    record.gameweek,
                )
                self.ledger.record_outcome(record.contest_id, record.gameweek, record.winner_count)

    def settlement(self, contest_id: str, gameweek: int) -> SettlementRecord:
        record = self.store.get_settlement(contest_id, gameweek)
        if record is None:
            raise NotFound(
                f"Gameweek {gameweek} of {contest_id} has not been settled",
                details={"contest_id": contest_id, "gameweek": gameweek},
            )
        return record

    # Payouts ---------------------------------------------------------------
    def payouts(self, league_id: str) -> StoredPayouts:
        stored = self.store.get_payouts(league_id)
        if stored is None:
            raise NotFound(
                f"No payout structure configured for league {league_id}",
                details={"league_id": league_id},
            )
        return stored

    def configure_payouts(
        self,
        league_id: str,
        entry_fee: MoneyValue,
        participant_count: int,
        side_weeks_a: int,
        side_weeks_b: int,
        chip_category_count: int,
        *,
        chip_names: Sequence[str] | None = None,
        randomize: bool = False,
        rng: random.Random | int | None = None,
    ) -> StoredPayouts:
        """Compute and store an unconfirmed payout structure.

        A confirmed structure is frozen and must be unfrozen first.
        """

        current = self.store.get_payouts(league_id)
        if current is not None and current.confirmed:
            raise PreconditionViolation(
                f"Payout structure for league {league_id} is confirmed; unfreeze it first",
                details={"league_id": league_id},
            )
        structure: PayoutStructure
        if randomize:
            structure = recalculate_payout_structure(
                entry_fee,
                participant_count,
                side_weeks_a,
                side_weeks_b,
                chip_category_count,
                rng=rng,
                chip_names=chip_names,
                rules=self.payout_rules,
            )
        else:
            structure = compute_payout_structure(
                entry_fee,
                participant_count,
                side_weeks_a,
                side_weeks_b,
                chip_category_count,
                chip_names=chip_names,
                rules=self.payout_rules,
            )
        stored = StoredPayouts(league_id, structure, confirmed=False, updated_at=self._clock())
        self.store.save_payouts(stored)
        self._audit_logger.info(
            "payouts.configured",
            extra={"league_id": league_id, "total_budget": str(structure.total_budget)},
        )
        return stored

    def confirm_payouts(self, league_id: str) -> StoredPayouts:
        """Re-verify the stored structure and freeze it."""

        stored = self.payouts(league_id)
        if stored.confirmed:
            return stored
        verify_payout_structure(stored.structure, self.payout_rules.tolerance)
        confirmed = dataclasses.replace(stored, confirmed=True, updated_at=self._clock())
        self.store.save_payouts(confirmed)
        self._audit_logger.info("payouts.confirmed", extra={"league_id": league_id})
        return confirmed

    def unfreeze_payouts(self, league_id: str) -> StoredPayouts:
        stored = self.payouts(league_id)
        if not stored.confirmed:
            return stored
        unfrozen = dataclasses.replace(stored, confirmed=False, updated_at=self._clock())
        self.store.save_payouts(unfrozen)
        self._audit_logger.warning("payouts.unfrozen", extra={"league_id": league_id})
        return unfrozen
