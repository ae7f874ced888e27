"""Settlement engine for the weekly score-and-scorer contest.

The pieces are deliberately small and pure: :mod:`.fixture_priority` picks
the featured fixture, :mod:`.winners` decides who predicted it, :mod:`.pot`
carries the pot between gameweeks and :mod:`.payouts` splits a league's
budget into season and side prizes.  :class:`SettlementService` binds them
to a record store and serialises runs per contest and gameweek.
"""

from .configuration import (
    ContestConfig,
    ConfigurationError,
    create_settlement_service,
    load_contest_config,
    validate_contest_config,
)
from .errors import (
    InvalidInput,
    NotFound,
    PreconditionViolation,
    ReconciliationFailure,
    SettlementError,
)
from .fixture_priority import (
    DEFAULT_PRIORITY_RULES,
    FeaturedSelection,
    PriorityRules,
    featured_selection,
    select_featured_fixture,
)
from .models import (
    Entry,
    Fixture,
    GoalEvent,
    MatchResult,
    PayoutStructure,
    PlayerRef,
    PotSnapshot,
    PotState,
    SettlementRecord,
    Winner,
)
from .normalization import ScorerNormalizer, canonical_scorer_name
from .payouts import (
    DEFAULT_PAYOUT_RULES,
    PayoutRules,
    compute_payout_structure,
    recalculate_payout_structure,
    verify_payout_structure,
)
from .pot import PotLedger, next_pot_amount
from .reports import payout_frame, pot_history_frame, settlements_frame, winners_frame
from .service import SettlementService, settlement_fingerprint
from .standings import ChipPlay, StandingRow, chip_winners, split_prize, weekly_winners
from .stores import InMemoryContestStore, SQLiteContestStore, StoredPayouts
from .winners import award_winners, determine_winners, validate_entry

__all__ = [
    "ChipPlay",
    "ConfigurationError",
    "ContestConfig",
    "DEFAULT_PAYOUT_RULES",
    "DEFAULT_PRIORITY_RULES",
    "Entry",
    "FeaturedSelection",
    "Fixture",
    "GoalEvent",
    "InMemoryContestStore",
    "InvalidInput",
    "MatchResult",
    "NotFound",
    "PayoutRules",
    "PayoutStructure",
    "PlayerRef",
    "PotLedger",
    "PotSnapshot",
    "PotState",
    "PreconditionViolation",
    "PriorityRules",
    "ReconciliationFailure",
    "SQLiteContestStore",
    "ScorerNormalizer",
    "SettlementError",
    "SettlementRecord",
    "SettlementService",
    "StandingRow",
    "StoredPayouts",
    "Winner",
    "award_winners",
    "canonical_scorer_name",
    "chip_winners",
    "compute_payout_structure",
    "create_settlement_service",
    "determine_winners",
    "featured_selection",
    "load_contest_config",
    "next_pot_amount",
    "payout_frame",
    "pot_history_frame",
    "recalculate_payout_structure",
    "select_featured_fixture",
    "settlement_fingerprint",
    "settlements_frame",
    "split_prize",
    "validate_contest_config",
    "validate_entry",
    "verify_payout_structure",
    "weekly_winners",
    "winners_frame",
]
