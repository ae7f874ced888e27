"""Record stores used by the settlement orchestrator.

The engine only depends on the small protocols defined here.  Two
implementations are provided: a dictionary-backed store for tests and
one-off runs, and a SQLite store that keeps pot history and winner records
on disk.
"""

from __future__ import annotations

import contextlib
import dataclasses
import datetime as dt
import json
import logging
import os
import sqlite3
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Iterator, List, Mapping, Protocol, Tuple

from .models import (
    Entry,
    EntryKey,
    PayoutStructure,
    PotSnapshot,
    PotState,
    SettlementRecord,
    Winner,
)

logger = logging.getLogger(__name__)

__all__ = [
    "EntryStore",
    "PotStore",
    "SettlementStore",
    "PayoutStore",
    "ContestStore",
    "StoredPayouts",
    "InMemoryContestStore",
    "SQLiteContestStore",
    "payout_structure_to_dict",
    "payout_structure_from_dict",
]


class EntryStore(Protocol):
    def upsert_entry(self, entry: Entry) -> None: ...

    def get_entry(self, key: EntryKey) -> Entry | None: ...

    def entries_for(self, fixture_id: int, gameweek: int) -> List[Entry]: ...


class PotStore(Protocol):
    def current_pot(self, contest_id: str) -> PotSnapshot | None: ...

    def get_pot(self, contest_id: str, gameweek: int) -> PotSnapshot | None: ...

    def save_pot(self, snapshot: PotSnapshot) -> None: ...

    def pot_history(self, contest_id: str) -> List[PotSnapshot]: ...


class SettlementStore(Protocol):
    def get_settlement(self, contest_id: str, gameweek: int) -> SettlementRecord | None: ...

    def save_settlement(self, record: SettlementRecord) -> None: ...

    def commit_settlement(self, snapshot: PotSnapshot, record: SettlementRecord) -> None: ...

    def settlements(self, contest_id: str) -> List[SettlementRecord]: ...


@dataclasses.dataclass(slots=True, frozen=True)
class StoredPayouts:
    """A payout structure together with its confirmation flag."""

    league_id: str
    structure: PayoutStructure
    confirmed: bool = False
    updated_at: dt.datetime | None = None


class PayoutStore(Protocol):
    def get_payouts(self, league_id: str) -> StoredPayouts | None: ...

    def save_payouts(self, stored: StoredPayouts) -> None: ...


class ContestStore(EntryStore, PotStore, SettlementStore, PayoutStore, Protocol):
    """Everything the settlement service needs from persistence."""


def payout_structure_to_dict(structure: PayoutStructure) -> Dict[str, Any]:
    return {
        "season_winners": [str(amount) for amount in structure.season_winners],
        "recurring_a_per_week": str(structure.recurring_a_per_week),
        "recurring_b_per_week": str(structure.recurring_b_per_week),
        "bonus_per_category": {
            name: str(amount) for name, amount in structure.bonus_per_category.items()
        },
        "total_budget": str(structure.total_budget),
        "weeks_a": structure.weeks_a,
        "weeks_b": structure.weeks_b,
        "entry_fee": str(structure.entry_fee),
        "participant_count": structure.participant_count,
        "balancing_transfer": str(structure.balancing_transfer),
    }


def payout_structure_from_dict(payload: Mapping[str, Any]) -> PayoutStructure:
    bonuses = payload.get("bonus_per_category") or {}
    return PayoutStructure(
        season_winners=tuple(Decimal(str(amount)) for amount in payload["season_winners"]),
        recurring_a_per_week=Decimal(str(payload["recurring_a_per_week"])),
        recurring_b_per_week=Decimal(str(payload["recurring_b_per_week"])),
        bonus_per_category={str(k): Decimal(str(v)) for k, v in bonuses.items()},
        total_budget=Decimal(str(payload["total_budget"])),
        weeks_a=int(payload["weeks_a"]),
        weeks_b=int(payload["weeks_b"]),
        entry_fee=Decimal(str(payload.get("entry_fee", "0"))),
        participant_count=int(payload.get("participant_count", 0)),
        balancing_transfer=Decimal(str(payload.get("balancing_transfer", "0"))),
    )


class InMemoryContestStore:
    """Dictionary-backed implementation of :class:`ContestStore`."""

    def __init__(self) -> None:
        self._entries: Dict[EntryKey, Entry] = {}
        self._pots: Dict[Tuple[str, int], PotSnapshot] = {}
        self._settlements: Dict[Tuple[str, int], SettlementRecord] = {}
        self._payouts: Dict[str, StoredPayouts] = {}

    def upsert_entry(self, entry: Entry) -> None:
        self._entries[entry.key] = entry

    def get_entry(self, key: EntryKey) -> Entry | None:
        return self._entries.get(key)

    def entries_for(self, fixture_id: int, gameweek: int) -> List[Entry]:
        return [
            entry
            for entry in self._entries.values()
            if entry.fixture_id == fixture_id and entry.gameweek == gameweek
        ]

    def current_pot(self, contest_id: str) -> PotSnapshot | None:
        active = [
            pot for pot in self._pots.values() if pot.contest_id == contest_id and pot.active
        ]
        return max(active, key=lambda pot: pot.gameweek) if active else None

    def get_pot(self, contest_id: str, gameweek: int) -> PotSnapshot | None:
        return self._pots.get((contest_id, gameweek))

    def save_pot(self, snapshot: PotSnapshot) -> None:
        if snapshot.active:
            for key, pot in list(self._pots.items()):
                if pot.contest_id == snapshot.contest_id and pot.active and key != snapshot.key:
                    self._pots[key] = dataclasses.replace(pot, active=False)
        self._pots[snapshot.key] = snapshot

    def pot_history(self, contest_id: str) -> List[PotSnapshot]:
        return sorted(
            (pot for pot in self._pots.values() if pot.contest_id == contest_id),
            key=lambda pot: pot.gameweek,
        )

    def get_settlement(self, contest_id: str, gameweek: int) -> SettlementRecord | None:
        return self._settlements.get((contest_id, gameweek))

    def save_settlement(self, record: SettlementRecord) -> None:
        self._settlements[(record.contest_id, record.gameweek)] = record

    def commit_settlement(self, snapshot: PotSnapshot, record: SettlementRecord) -> None:
        self.save_settlement(record)
        self.save_pot(snapshot)

    def settlements(self, contest_id: str) -> List[SettlementRecord]:
        return sorted(
            (r for r in self._settlements.values() if r.contest_id == contest_id),
            key=lambda record: record.gameweek,
        )

    def get_payouts(self, league_id: str) -> StoredPayouts | None:
        return self._payouts.get(league_id)

    def save_payouts(self, stored: StoredPayouts) -> None:
        self._payouts[stored.league_id] = stored


def _iso(value: dt.datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _parse_iso(value: str | None) -> dt.datetime | None:
    return dt.datetime.fromisoformat(value) if value else None


class SQLiteContestStore:
    """SQLite implementation of :class:`ContestStore`.

    Entries keep their latest version in ``entries`` and every submission in
    ``entries_history``.  Pots are stored one row per (contest, gameweek)
    with an ``active`` flag marking the current snapshot.
    """

    def __init__(self, storage_path: str | os.PathLike[str] = "contest.sqlite3") -> None:
        self.storage_path = Path(storage_path)
        self.storage_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    @contextlib.contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        """One transaction on a fresh connection; rolled back if the block raises."""

        with contextlib.closing(sqlite3.connect(self.storage_path)) as conn:
            with conn:
                yield conn

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS entries (
                    participant_id TEXT NOT NULL,
                    fixture_id INTEGER NOT NULL,
                    gameweek INTEGER NOT NULL,
                    predicted_home_score INTEGER NOT NULL,
                    predicted_away_score INTEGER NOT NULL,
                    predicted_scorer_name TEXT NOT NULL,
                    predicted_scorer_id INTEGER,
                    submitted_at TEXT,
                    PRIMARY KEY (participant_id, fixture_id, gameweek)
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS entries_history (
                    row_id INTEGER PRIMARY KEY AUTOINCREMENT,
                    participant_id TEXT NOT NULL,
                    fixture_id INTEGER NOT NULL,
                    gameweek INTEGER NOT NULL,
                    predicted_home_score INTEGER NOT NULL,
                    predicted_away_score INTEGER NOT NULL,
                    predicted_scorer_name TEXT NOT NULL,
                    predicted_scorer_id INTEGER,
                    submitted_at TEXT
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS pots (
                    contest_id TEXT NOT NULL,
                    gameweek INTEGER NOT NULL,
                    current_amount TEXT NOT NULL,
                    starting_amount TEXT NOT NULL,
                    state TEXT NOT NULL,
                    active INTEGER NOT NULL,
                    winner_count INTEGER,
                    PRIMARY KEY (contest_id, gameweek)
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS settlements (
                    contest_id TEXT NOT NULL,
                    gameweek INTEGER NOT NULL,
                    fixture_id INTEGER NOT NULL,
                    pot_amount TEXT NOT NULL,
                    fingerprint TEXT NOT NULL,
                    settled_at TEXT NOT NULL,
                    PRIMARY KEY (contest_id, gameweek)
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS winners (
                    row_id INTEGER PRIMARY KEY AUTOINCREMENT,
                    contest_id TEXT NOT NULL,
                    gameweek INTEGER NOT NULL,
                    position INTEGER NOT NULL,
                    fixture_id INTEGER NOT NULL,
                    participant_id TEXT NOT NULL,
                    predicted_home_score INTEGER NOT NULL,
                    predicted_away_score INTEGER NOT NULL,
                    predicted_scorer_name TEXT NOT NULL,
                    awarded_amount TEXT
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS payout_structures (
                    league_id TEXT PRIMARY KEY,
                    payload TEXT NOT NULL,
                    confirmed INTEGER NOT NULL,
                    updated_at TEXT
                )
                """
            )

    # Entries -----------------------------------------------------------------
    def upsert_entry(self, entry: Entry) -> None:
        row = (
            entry.participant_id,
            entry.fixture_id,
            entry.gameweek,
            entry.predicted_home_score,
            entry.predicted_away_score,
            entry.predicted_scorer_name,
            entry.predicted_scorer_id,
            _iso(entry.submitted_at),
        )
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO entries(
                    participant_id,
                    fixture_id,
                    gameweek,
                    predicted_home_score,
                    predicted_away_score,
                    predicted_scorer_name,
                    predicted_scorer_id,
                    submitted_at
                ) VALUES(?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(participant_id, fixture_id, gameweek) DO UPDATE SET
                    predicted_home_score=excluded.predicted_home_score,
                    predicted_away_score=excluded.predicted_away_score,
                    predicted_scorer_name=excluded.predicted_scorer_name,
                    predicted_scorer_id=excluded.predicted_scorer_id,
                    submitted_at=excluded.submitted_at
                """,
                row,
            )
            conn.execute(
                """
                INSERT INTO entries_history(
                    participant_id,
                    fixture_id,
                    gameweek,
                    predicted_home_score,
                    predicted_away_score,
                    predicted_scorer_name,
                    predicted_scorer_id,
                    submitted_at
                ) VALUES(?, ?, ?, ?, ?, ?, ?, ?)
                """,
                row,
            )

    _ENTRY_COLUMNS = (
        "participant_id, fixture_id, gameweek, predicted_home_score, "
        "predicted_away_score, predicted_scorer_name, submitted_at, predicted_scorer_id"
    )

    @staticmethod
    def _entry_from_row(row: Tuple[Any, ...]) -> Entry:
        return Entry(
            participant_id=row[0],
            fixture_id=int(row[1]),
            gameweek=int(row[2]),
            predicted_home_score=int(row[3]),
            predicted_away_score=int(row[4]),
            predicted_scorer_name=row[5] or "",
            submitted_at=_parse_iso(row[6]),
            predicted_scorer_id=int(row[7]) if row[7] is not None else None,
        )

    def get_entry(self, key: EntryKey) -> Entry | None:
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT {self._ENTRY_COLUMNS} FROM entries "
                "WHERE participant_id = ? AND fixture_id = ? AND gameweek = ?",
                key,
            ).fetchone()
        return self._entry_from_row(row) if row else None

    def entries_for(self, fixture_id: int, gameweek: int) -> List[Entry]:
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT {self._ENTRY_COLUMNS} FROM entries "
                "WHERE fixture_id = ? AND gameweek = ? ORDER BY participant_id",
                (fixture_id, gameweek),
            ).fetchall()
        return [self._entry_from_row(row) for row in rows]

    def entry_history(self, participant_id: str | None = None) -> List[Entry]:
        """Every submission ever received, oldest first."""

        query = f"SELECT {self._ENTRY_COLUMNS} FROM entries_history"
        params: tuple[str, ...] = ()
        if participant_id:
            query += " WHERE participant_id = ?"
            params = (participant_id,)
        query += " ORDER BY row_id"
        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._entry_from_row(row) for row in rows]

    # Pots --------------------------------------------------------------------
    _POT_COLUMNS = (
        "contest_id, gameweek, current_amount, starting_amount, state, active, winner_count"
    )

    @staticmethod
    def _pot_from_row(row: Tuple[Any, ...]) -> PotSnapshot:
        return PotSnapshot(
            contest_id=row[0],
            gameweek=int(row[1]),
            current_amount=Decimal(row[2]),
            starting_amount=Decimal(row[3]),
            state=PotState(row[4]),
            active=bool(row[5]),
            winner_count=int(row[6]) if row[6] is not None else None,
        )

    def current_pot(self, contest_id: str) -> PotSnapshot | None:
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT {self._POT_COLUMNS} FROM pots "
                "WHERE contest_id = ? AND active = 1 ORDER BY gameweek DESC LIMIT 1",
                (contest_id,),
            ).fetchone()
        return self._pot_from_row(row) if row else None

    def get_pot(self, contest_id: str, gameweek: int) -> PotSnapshot | None:
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT {self._POT_COLUMNS} FROM pots WHERE contest_id = ? AND gameweek = ?",
                (contest_id, gameweek),
            ).fetchone()
        return self._pot_from_row(row) if row else None

    def save_pot(self, snapshot: PotSnapshot) -> None:
        with self._connect() as conn:
            self._write_pot(conn, snapshot)

    @staticmethod
    def _write_pot(conn: sqlite3.Connection, snapshot: PotSnapshot) -> None:
        if snapshot.active:
            conn.execute(
                "UPDATE pots SET active = 0 WHERE contest_id = ? AND gameweek != ?",
                (snapshot.contest_id, snapshot.gameweek),
            )
        conn.execute(
            """
            INSERT INTO pots(
                contest_id,
                gameweek,
                current_amount,
                starting_amount,
                state,
                active,
                winner_count
            ) VALUES(?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(contest_id, gameweek) DO UPDATE SET
                current_amount=excluded.current_amount,
                starting_amount=excluded.starting_amount,
                state=excluded.state,
                active=excluded.active,
                winner_count=excluded.winner_count
            """,
            (
                snapshot.contest_id,
                snapshot.gameweek,
                str(snapshot.current_amount),
                str(snapshot.starting_amount),
                snapshot.state.value,
                int(snapshot.active),
                snapshot.winner_count,
            ),
        )

    def pot_history(self, contest_id: str) -> List[PotSnapshot]:
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT {self._POT_COLUMNS} FROM pots WHERE contest_id = ? ORDER BY gameweek",
                (contest_id,),
            ).fetchall()
        return [self._pot_from_row(row) for row in rows]

    # Settlements -------------------------------------------------------------
    def _winners_for(
        self, conn: sqlite3.Connection, contest_id: str, gameweek: int
    ) -> Tuple[Winner, ...]:
        rows = conn.execute(
            """
            SELECT gameweek, fixture_id, participant_id, predicted_home_score,
                   predicted_away_score, predicted_scorer_name, awarded_amount
            FROM winners WHERE contest_id = ? AND gameweek = ? ORDER BY position
            """,
            (contest_id, gameweek),
        ).fetchall()
        return tuple(
            Winner(
                gameweek=int(row[0]),
                fixture_id=int(row[1]),
                participant_id=row[2],
                predicted_home_score=int(row[3]),
                predicted_away_score=int(row[4]),
                predicted_scorer_name=row[5] or "",
                awarded_amount=Decimal(row[6]) if row[6] is not None else None,
            )
            for row in rows
        )

    def _settlement_from_row(
        self, conn: sqlite3.Connection, row: Tuple[Any, ...]
    ) -> SettlementRecord:
        settled_at = _parse_iso(row[5])
        assert settled_at is not None
        return SettlementRecord(
            contest_id=row[0],
            gameweek=int(row[1]),
            fixture_id=int(row[2]),
            pot_amount=Decimal(row[3]),
            winners=self._winners_for(conn, row[0], int(row[1])),
            fingerprint=row[4],
            settled_at=settled_at,
        )

    def get_settlement(self, contest_id: str, gameweek: int) -> SettlementRecord | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT contest_id, gameweek, fixture_id, pot_amount, fingerprint, settled_at "
                "FROM settlements WHERE contest_id = ? AND gameweek = ?",
                (contest_id, gameweek),
            ).fetchone()
            return self._settlement_from_row(conn, row) if row else None

    def settlements(self, contest_id: str) -> List[SettlementRecord]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT contest_id, gameweek, fixture_id, pot_amount, fingerprint, settled_at "
                "FROM settlements WHERE contest_id = ? ORDER BY gameweek",
                (contest_id,),
            ).fetchall()
            return [self._settlement_from_row(conn, row) for row in rows]

    def save_settlement(self, record: SettlementRecord) -> None:
        with self._connect() as conn:
            self._write_settlement(conn, record)
        logger.debug(
            "Stored settlement for %s gameweek %d (%d winners)",
            record.contest_id,
            record.gameweek,
            record.winner_count,
        )

    def commit_settlement(self, snapshot: PotSnapshot, record: SettlementRecord) -> None:
        """Close the pot and store the winners in one transaction."""

        with self._connect() as conn:
            self._write_settlement(conn, record)
            self._write_pot(conn, snapshot)

    @staticmethod
    def _write_settlement(conn: sqlite3.Connection, record: SettlementRecord) -> None:
        conn.execute(
            """
            INSERT INTO settlements(
                contest_id, gameweek, fixture_id, pot_amount, fingerprint, settled_at
            ) VALUES(?, ?, ?, ?, ?, ?)
            ON CONFLICT(contest_id, gameweek) DO UPDATE SET
                fixture_id=excluded.fixture_id,
                pot_amount=excluded.pot_amount,
                fingerprint=excluded.fingerprint,
                settled_at=excluded.settled_at
            """,
            (
                record.contest_id,
                record.gameweek,
                record.fixture_id,
                str(record.pot_amount),
                record.fingerprint,
                record.settled_at.isoformat(),
            ),
        )
        conn.execute(
            "DELETE FROM winners WHERE contest_id = ? AND gameweek = ?",
            (record.contest_id, record.gameweek),
        )
        conn.executemany(
            """
            INSERT INTO winners(
                contest_id,
                gameweek,
                position,
                fixture_id,
                participant_id,
                predicted_home_score,
                predicted_away_score,
                predicted_scorer_name,
                awarded_amount
            ) VALUES(?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            [
                (
                    record.contest_id,
                    record.gameweek,
                    position,
                    winner.fixture_id,
                    winner.participant_id,
                    winner.predicted_home_score,
                    winner.predicted_away_score,
                    winner.predicted_scorer_name,
                    None if winner.awarded_amount is None else str(winner.awarded_amount),
                )
                for position, winner in enumerate(record.winners)
            ],
        )

    # Payout structures -------------------------------------------------------
    def get_payouts(self, league_id: str) -> StoredPayouts | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT league_id, payload, confirmed, updated_at "
                "FROM payout_structures WHERE league_id = ?",
                (league_id,),
            ).fetchone()
        if not row:
            return None
        return StoredPayouts(
            league_id=row[0],
            structure=payout_structure_from_dict(json.loads(row[1])),
            confirmed=bool(row[2]),
            updated_at=_parse_iso(row[3]),
        )

    def save_payouts(self, stored: StoredPayouts) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO payout_structures(league_id, payload, confirmed, updated_at)
                VALUES(?, ?, ?, ?)
                ON CONFLICT(league_id) DO UPDATE SET
                    payload=excluded.payload,
                    confirmed=excluded.confirmed,
                    updated_at=excluded.updated_at
                """,
                (
                    stored.league_id,
                    json.dumps(payout_structure_to_dict(stored.structure), sort_keys=True),
                    int(stored.confirmed),
                    _iso(stored.updated_at),
                ),
            )
