"""End-to-end behaviour of the settlement service."""

from __future__ import annotations

import dataclasses
from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal

import pytest

from fplcontest.settlement.errors import InvalidInput, NotFound, PreconditionViolation
from fplcontest.settlement.models import MatchResult, PotState
from fplcontest.settlement.service import SettlementService, settlement_fingerprint
from fplcontest.settlement.stores import InMemoryContestStore

from .factories import ROSTER, SETTLED_AT, make_entry, make_fixture

CONTEST = "score-strike"


def _open(service: SettlementService, gameweek: int = 5, amount: str = "100") -> None:
    service.advance(CONTEST, gameweek, Decimal(amount))


def test_two_winners_share_the_pot(service, featured_fixture, audit_records):
    _open(service)
    for entry in (
        make_entry("ann", 2, 1, "Mohamed Salah - LIV MID", minutes_before=30),
        make_entry("bob", 2, 1, "M.Salah", minutes_before=90),
        make_entry("cy", 1, 1, "Salah"),
    ):
        service.submit_entry(entry)

    record = service.settle(CONTEST, featured_fixture, roster=ROSTER)

    assert [w.participant_id for w in record.winners] == ["bob", "ann"]
    assert [w.awarded_amount for w in record.winners] == [Decimal("50.00"), Decimal("50.00")]
    assert record.pot_amount == Decimal("100")
    assert record.awarded_total == Decimal("100")
    assert record.settled_at == SETTLED_AT
    assert service.current_pot(CONTEST).state is PotState.SETTLED_WON
    assert "settlement.completed" in audit_records.messages()


def test_rollover_then_win_resets(service):
    _open(service, 5)
    service.settle(CONTEST, make_fixture(101, 13, 1, score=(0, 0)), roster=ROSTER)
    assert service.current_pot(CONTEST).state is PotState.SETTLED_NO_WINNER

    _open(service, 6)
    assert service.current_pot(CONTEST).current_amount == Decimal("200")
    service.submit_entry(make_entry("ann", 1, 0, "Haaland", fixture_id=201, gameweek=6))
    record = service.settle(
        CONTEST,
        make_fixture(201, 12, 7, gameweek=6, score=(1, 0), scorers=[(12, 401)]),
        roster=ROSTER,
    )
    assert record.winners[0].awarded_amount == Decimal("200.00")

    _open(service, 7)
    assert service.current_pot(CONTEST).current_amount == Decimal("100")
    assert [pot.gameweek for pot in service.pot_history(CONTEST)] == [5, 6, 7]


def test_settle_is_idempotent(service, store, featured_fixture):
    _open(service)
    service.submit_entry(make_entry("ann", 2, 1, "Salah"))

    first = service.settle(CONTEST, featured_fixture, roster=ROSTER)
    second = service.settle(CONTEST, featured_fixture, roster=ROSTER)

    assert first == second
    assert store.settlements(CONTEST) == [first]
    assert service.settlement(CONTEST, 5) == first


def test_settle_with_changed_inputs_is_refused(service, featured_fixture):
    _open(service)
    service.submit_entry(make_entry("ann", 2, 1, "Salah"))
    service.settle(CONTEST, featured_fixture, roster=ROSTER)

    service.submit_entry(make_entry("bob", 2, 1, "Salah"))
    with pytest.raises(PreconditionViolation, match="different inputs"):
        service.settle(CONTEST, featured_fixture, roster=ROSTER)
    assert len(service.settlement(CONTEST, 5).winners) == 1


def test_concurrent_settlement_pays_once(service, store, featured_fixture):
    _open(service)
    service.submit_entry(make_entry("ann", 2, 1, "Salah"))

    with ThreadPoolExecutor(max_workers=8) as pool:
        records = list(
            pool.map(lambda _: service.settle(CONTEST, featured_fixture, roster=ROSTER), range(16))
        )

    assert all(record == records[0] for record in records)
    assert len(store.settlements(CONTEST)) == 1
    assert service.current_pot(CONTEST).winner_count == 1


def test_settle_requires_matching_gameweek(service, featured_fixture):
    _open(service, 4)
    with pytest.raises(PreconditionViolation, match="not 5"):
        service.settle(CONTEST, featured_fixture, roster=ROSTER)


def test_settle_without_pot(service, featured_fixture):
    with pytest.raises(NotFound):
        service.settle(CONTEST, featured_fixture, roster=ROSTER)


def test_settle_unfinished_fixture(service):
    _open(service)
    with pytest.raises(InvalidInput):
        service.settle(CONTEST, make_fixture(101, 13, 1))


def test_entries_after_kickoff_do_not_win(service, featured_fixture):
    _open(service)
    service.submit_entry(make_entry("late", 2, 1, "Salah", minutes_before=-1))
    record = service.settle(CONTEST, featured_fixture, roster=ROSTER)
    assert record.winners == ()
    assert service.current_pot(CONTEST).state is PotState.SETTLED_NO_WINNER


def test_submit_entry_validates(service):
    with pytest.raises(InvalidInput):
        service.submit_entry(make_entry("ann", -1, 0))


def test_featured_fixture(service):
    fixtures = [make_fixture(1, 3, 4), make_fixture(2, 13, 12)]
    assert service.featured_fixture(fixtures).fixture_id == 2
    with pytest.raises(NotFound):
        service.featured_fixture([])


def test_fingerprint_ignores_entry_order(featured_fixture):
    result = MatchResult.from_fixture(featured_fixture, ROSTER)
    entries = [make_entry("ann", 2, 1, "Salah"), make_entry("bob", 0, 0)]

    assert settlement_fingerprint(CONTEST, result, entries) == settlement_fingerprint(
        CONTEST, result, list(reversed(entries))
    )
    assert settlement_fingerprint(CONTEST, result, entries) != settlement_fingerprint(
        "other", result, entries
    )


def test_payout_lifecycle(service, audit_records):
    stored = service.configure_payouts("league", 50, 20, 38, 38, 3)
    assert not stored.confirmed
    assert stored.updated_at == SETTLED_AT
    assert service.starting_amount("league") == Decimal("5")

    confirmed = service.confirm_payouts("league")
    assert confirmed.confirmed
    assert service.confirm_payouts("league") == confirmed
    with pytest.raises(PreconditionViolation, match="unfreeze"):
        service.configure_payouts("league", 60, 20, 38, 38, 3)

    assert not service.unfreeze_payouts("league").confirmed
    updated = service.configure_payouts("league", 60, 20, 38, 38, 3)
    assert updated.structure.total_budget == Decimal("1200")
    messages = audit_records.messages()
    assert messages.count("payouts.configured") == 2
    assert "payouts.confirmed" in messages
    assert "payouts.unfrozen" in messages


def test_randomised_payouts_are_seeded(service):
    first = service.configure_payouts("league", 50, 40, 38, 38, 3, randomize=True, rng=11)
    second = service.configure_payouts("league", 50, 40, 38, 38, 3, randomize=True, rng=11)
    assert first.structure == second.structure


def test_payouts_not_configured(service):
    with pytest.raises(NotFound):
        service.payouts("missing")


def test_advance_takes_amount_from_payouts(service):
    service.configure_payouts("league", 50, 20, 38, 38, 3)
    pot = service.advance(CONTEST, 1, league_id="league")
    assert pot.current_amount == Decimal("5")
    assert pot.state is PotState.AWAITING_SETTLEMENT


def test_advance_needs_an_amount(service):
    with pytest.raises(PreconditionViolation):
        service.advance(CONTEST, 1)


class FailingOnceStore(InMemoryContestStore):
    """Raises on the first settlement write and behaves normally after that."""

    def __init__(self) -> None:
        super().__init__()
        self.failures = 1

    def save_settlement(self, record):
        if self.failures:
            self.failures -= 1
            raise OSError("disk full")
        super().save_settlement(record)


def test_failed_settlement_write_can_be_retried(featured_fixture):
    store = FailingOnceStore()
    service = SettlementService(store, clock=lambda: SETTLED_AT)
    _open(service)
    service.submit_entry(make_entry("ann", 2, 1, "Salah"))

    with pytest.raises(OSError):
        service.settle(CONTEST, featured_fixture, roster=ROSTER)
    assert service.current_pot(CONTEST).state is PotState.AWAITING_SETTLEMENT
    assert store.get_settlement(CONTEST, 5) is None

    record = service.settle(CONTEST, featured_fixture, roster=ROSTER)
    assert [w.participant_id for w in record.winners] == ["ann"]
    assert service.current_pot(CONTEST).state is PotState.SETTLED_WON


def test_rerun_closes_a_pot_left_open(service, store, featured_fixture):
    _open(service)
    service.submit_entry(make_entry("ann", 2, 1, "Salah"))
    record = service.settle(CONTEST, featured_fixture, roster=ROSTER)
    store.save_pot(
        dataclasses.replace(
            store.get_pot(CONTEST, 5), state=PotState.AWAITING_SETTLEMENT, winner_count=None
        )
    )

    assert service.settle(CONTEST, featured_fixture, roster=ROSTER) == record
    assert service.current_pot(CONTEST).state is PotState.SETTLED_WON
    assert service.current_pot(CONTEST).winner_count == 1
