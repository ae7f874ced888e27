"""Winner determination for the weekly score and scorer contest."""

from __future__ import annotations

import dataclasses
import datetime as dt
import logging
from decimal import Decimal
from typing import Dict, Iterable, List, Sequence

from .errors import InvalidInput, PreconditionViolation
from .models import Entry, EntryKey, MatchResult, Winner
from .normalization import ScorerNormalizer, default_normalizer
from .utils import MoneyValue, split_evenly, to_money

logger = logging.getLogger(__name__)
audit_logger = logging.getLogger("fplcontest.settlement.audit")

__all__ = [
    "validate_entry",
    "latest_entries",
    "entry_qualifies",
    "determine_winners",
    "award_winners",
    "winner_sort_key",
]

_EPOCH = dt.datetime(1970, 1, 1, tzinfo=dt.timezone.utc)


def _as_utc(value: dt.datetime) -> dt.datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=dt.timezone.utc)
    return value.astimezone(dt.timezone.utc)


def _is_count(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value >= 0


def validate_entry(
    entry: Entry,
    *,
    fixture_id: int | None = None,
    gameweek: int | None = None,
    kickoff: dt.datetime | None = None,
) -> Entry:
    """Return ``entry`` unchanged or raise :class:`InvalidInput`."""

    if not isinstance(entry.participant_id, str) or not entry.participant_id.strip():
        raise InvalidInput("Entry is missing a participant id", details={"entry": entry.key})
    for name in ("fixture_id", "gameweek"):
        value = getattr(entry, name)
        if not isinstance(value, int) or isinstance(value, bool):
            raise InvalidInput(
                f"Entry from {entry.participant_id} is missing {name}",
                details={"participant_id": entry.participant_id},
            )
    if not (_is_count(entry.predicted_home_score) and _is_count(entry.predicted_away_score)):
        raise InvalidInput(
            f"Entry from {entry.participant_id} has an invalid predicted score",
            details={"participant_id": entry.participant_id},
        )
    if fixture_id is not None and entry.fixture_id != fixture_id:
        raise InvalidInput(
            f"Entry from {entry.participant_id} is for fixture {entry.fixture_id}, not {fixture_id}",
            details={"participant_id": entry.participant_id, "fixture_id": entry.fixture_id},
        )
    if gameweek is not None and entry.gameweek != gameweek:
        raise InvalidInput(
            f"Entry from {entry.participant_id} is for gameweek {entry.gameweek}, not {gameweek}",
            details={"participant_id": entry.participant_id, "gameweek": entry.gameweek},
        )
    if kickoff is not None and entry.submitted_at is not None:
        if _as_utc(entry.submitted_at) > _as_utc(kickoff):
            raise InvalidInput(
                f"Entry from {entry.participant_id} was submitted after kickoff",
                details={
                    "participant_id": entry.participant_id,
                    "submitted_at": entry.submitted_at.isoformat(),
                },
            )
    return entry


def latest_entries(entries: Iterable[Entry]) -> List[Entry]:
    """Collapse entries to one per key; the later submission wins.

    Entries without a timestamp count as submitted after the ones they follow.
    """

    latest: Dict[EntryKey, Entry] = {}
    for entry in entries:
        current = latest.get(entry.key)
        if (
            current is not None
            and current.submitted_at is not None
            and entry.submitted_at is not None
            and _as_utc(entry.submitted_at) < _as_utc(current.submitted_at)
        ):
            continue
        latest[entry.key] = entry
    return list(latest.values())


def entry_qualifies(
    entry: Entry,
    result: MatchResult,
    normalizer: ScorerNormalizer | None = None,
) -> bool:
    """Apply the score and scorer rules to a single entry."""

    if (
        entry.predicted_home_score != result.home_score
        or entry.predicted_away_score != result.away_score
    ):
        return False
    predicted_name = (entry.predicted_scorer_name or "").strip()
    if result.is_goalless:
        return not predicted_name and entry.predicted_scorer_id is None
    if entry.predicted_scorer_id is not None:
        return any(scorer.player_id == entry.predicted_scorer_id for scorer in result.scorers)
    if not predicted_name:
        return False
    active = normalizer or default_normalizer()
    return active.matches(predicted_name, (scorer.surname for scorer in result.scorers))


def winner_sort_key(entry: Entry) -> tuple[dt.datetime, str]:
    submitted = _as_utc(entry.submitted_at) if entry.submitted_at is not None else _EPOCH
    return (submitted, entry.participant_id)


def determine_winners(
    entries: Iterable[Entry],
    result: MatchResult,
    *,
    kickoff: dt.datetime | None = None,
    normalizer: ScorerNormalizer | None = None,
) -> List[Winner]:
    """Return every entry that predicted ``result`` correctly.

    Malformed entries, entries for another fixture and entries submitted
    after ``kickoff`` are rejected individually and logged.  Winners are
    ordered by submission time, then participant id.  An empty list is the
    ordinary no-winner outcome.
    """

    valid: List[Entry] = []
    rejected = 0
    for entry in entries:
        try:
            valid.append(
                validate_entry(
                    entry,
                    fixture_id=result.fixture_id,
                    gameweek=result.gameweek,
                    kickoff=kickoff,
                )
            )
        except InvalidInput as exc:
            rejected += 1
            audit_logger.warning(
                "settlement.entry_rejected",
                extra={
                    "fixture_id": result.fixture_id,
                    "gameweek": result.gameweek,
                    "reason": str(exc),
                    "details": exc.details,
                },
            )
    if rejected:
        logger.warning("Rejected %d entries for fixture %s", rejected, result.fixture_id)

    qualifying = [
        entry for entry in latest_entries(valid) if entry_qualifies(entry, result, normalizer)
    ]
    qualifying.sort(key=winner_sort_key)
    logger.info(
        "Fixture %s (%d-%d): %d of %d entries qualify",
        result.fixture_id,
        result.home_score,
        result.away_score,
        len(qualifying),
        len(valid),
    )
    return [Winner.from_entry(entry) for entry in qualifying]


def award_winners(
    winners: Sequence[Winner],
    pot_amount: MoneyValue,
    *,
    minor_unit: MoneyValue = Decimal("0.01"),
) -> List[Winner]:
    """Split ``pot_amount`` evenly across ``winners``.

    The pot is divided in whole ``minor_unit``s.  Any indivisible remainder is
    handed out one unit at a time from the first winner onwards, so the
    awarded amounts always add up to the pot exactly.
    """

    if not winners:
        return []
    amount = to_money(pot_amount)
    if amount < 0:
        raise PreconditionViolation(f"Pot amount cannot be negative: {amount}")
    try:
        shares = split_evenly(amount, len(winners), minor_unit=minor_unit)
    except ValueError as exc:
        raise PreconditionViolation(str(exc)) from exc
    return [
        dataclasses.replace(winner, awarded_amount=share)
        for winner, share in zip(winners, shares)
    ]
