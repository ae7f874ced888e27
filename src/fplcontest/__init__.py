"""
fplcontest: settlement engine for fantasy football prediction contests.

The package picks each gameweek's featured fixture, decides the winners of
the weekly score-and-scorer contest, carries the pot over between gameweeks
and computes the league's season payout structure.
"""

from importlib.metadata import PackageNotFoundError, version

try:  # pragma: no cover - exercised in packaging workflows
    __version__ = version("fplcontest")
except PackageNotFoundError:  # pragma: no cover - local editable installs
    __version__ = "0.0.0"

_EXPORTS = {
    # Settlement engine
    "SettlementService": ".settlement.service",
    "compute_payout_structure": ".settlement.payouts",
    "recalculate_payout_structure": ".settlement.payouts",
    "select_featured_fixture": ".settlement.fixture_priority",
    "determine_winners": ".settlement.winners",
    "load_contest_config": ".settlement.configuration",
    "create_settlement_service": ".settlement.configuration",
    # Upstream data
    "FplClient": ".fpl_api",
    "FplFixtureCatalog": ".fpl_api",
    "ResponseCache": ".cache",
    # Configuration
    "get_config": ".config",
    "update_config": ".config",
    "reset_config": ".config",
}

__all__ = sorted(_EXPORTS)


def __getattr__(name: str) -> object:  # pragma: no cover - thin lazy importer
    from importlib import import_module

    target_module = _EXPORTS.get(name)
    if not target_module:
        raise AttributeError(f"module {__name__} has no attribute {name}")
    module = import_module(target_module, __name__)
    attr = getattr(module, name)
    globals()[name] = attr
    return attr


def __dir__() -> list[str]:  # pragma: no cover - trivial
    return sorted(list(globals().keys()) + __all__)
