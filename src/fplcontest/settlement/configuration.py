from __future__ import annotations

import json
import logging
import os
import re
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, MutableMapping, Sequence

import yaml
from pydantic import BaseModel, ConfigDict, Field

from .fixture_priority import DEFAULT_PRIORITY_RULES, PriorityRules
from .normalization import ScorerNormalizer
from .payouts import DEFAULT_PAYOUT_RULES, PayoutRules
from .service import SettlementService
from .stores import ContestStore, InMemoryContestStore, SQLiteContestStore

ENVIRONMENT_VARIABLE = "FPLCONTEST_SETTLEMENT_ENV"
EXTRA_CONFIG_VARIABLE = "FPLCONTEST_SETTLEMENT_CONFIG"
ENV_OVERRIDE_PREFIX = "FPLCONTEST_SETTLEMENT__"
DEFAULT_CONFIG_PATH = "config/contest.yaml"

STORAGE_BACKENDS = ("sqlite", "memory")


class ContestSection(BaseModel):
    """Identity of the weekly contest and the league it belongs to."""

    model_config = ConfigDict(coerce_numbers_to_str=True)

    contest_id: str = "score-strike"
    league_id: str = "default"
    minor_unit: Decimal = Decimal("0.01")
    starting_amount: Decimal | None = None


class PriorityConfig(BaseModel):
    """Team sets and orderings for the featured-fixture cascade."""

    tier_one: list[int] = Field(default_factory=lambda: sorted(DEFAULT_PRIORITY_RULES.tier_one))
    tier_two: list[int] = Field(default_factory=lambda: sorted(DEFAULT_PRIORITY_RULES.tier_two))
    home_order: list[int] = Field(default_factory=lambda: list(DEFAULT_PRIORITY_RULES.home_order))
    away_order: list[int] = Field(default_factory=lambda: list(DEFAULT_PRIORITY_RULES.away_order))


class PayoutRulesConfig(BaseModel):
    season_share: Decimal = DEFAULT_PAYOUT_RULES.season_share
    season_pool_step: Decimal = DEFAULT_PAYOUT_RULES.season_pool_step
    paid_fraction: Decimal = DEFAULT_PAYOUT_RULES.paid_fraction
    min_cash_fraction: Decimal = DEFAULT_PAYOUT_RULES.min_cash_fraction
    top_floor_multiplier: Decimal = DEFAULT_PAYOUT_RULES.top_floor_multiplier
    weekly_pool_share: Decimal = DEFAULT_PAYOUT_RULES.weekly_pool_share
    step: Decimal = DEFAULT_PAYOUT_RULES.step
    tolerance: Decimal = DEFAULT_PAYOUT_RULES.tolerance
    min_participants: int = DEFAULT_PAYOUT_RULES.min_participants


class PayoutsConfig(BaseModel):
    """Inputs of the season payout calculation."""

    entry_fee: Decimal | None = None
    participant_count: int | None = None
    weeks_a: int = 38
    weeks_b: int = 38
    chip_categories: int = 3
    chip_names: list[str] | None = None
    rules: PayoutRulesConfig = Field(default_factory=PayoutRulesConfig)


class StorageConfig(BaseModel):
    backend: str = "sqlite"
    path: str = "contest.sqlite3"


class NormalizationConfig(BaseModel):
    """Extra scorer spellings mapped to a canonical surname token."""

    scorer_aliases: Dict[str, str] = Field(default_factory=dict)


class ContestConfig(BaseModel):
    """Aggregate configuration for the settlement engine."""

    environment: str = "default"
    contest: ContestSection = Field(default_factory=ContestSection)
    priority: PriorityConfig = Field(default_factory=PriorityConfig)
    payouts: PayoutsConfig = Field(default_factory=PayoutsConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    normalization: NormalizationConfig = Field(default_factory=NormalizationConfig)


class ConfigurationError(ValueError):
    """Raised when contest configuration validation fails."""


_ENV_TOKEN = re.compile(r"\$\{([^}]+)\}")


def _read_layer(path: Path) -> Dict[str, Any]:
    if not path.exists():
        raise FileNotFoundError(path)
    with path.open("r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}
    if not isinstance(data, dict):
        raise TypeError(f"Configuration at {path} must be a mapping")
    return dict(data)


def _deep_merge(base: Mapping[str, Any], layer: Mapping[str, Any]) -> Dict[str, Any]:
    merged: Dict[str, Any] = dict(base)
    for key, value in layer.items():
        current = merged.get(key)
        if isinstance(current, Mapping) and isinstance(value, Mapping):
            merged[key] = _deep_merge(current, value)
        else:
            merged[key] = value
    return merged


def _substitute_env(value: Any) -> Any:
    if isinstance(value, str):
        return _ENV_TOKEN.sub(lambda match: os.getenv(match.group(1), ""), value)
    if isinstance(value, Mapping):
        return {key: _substitute_env(item) for key, item in value.items()}
    if isinstance(value, Sequence) and not isinstance(value, (str, bytes, bytearray)):
        return [_substitute_env(item) for item in value]
    return value


def _parse_override(raw: str) -> Any:
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        if raw.lower() in {"true", "false"}:
            return raw.lower() == "true"
        return raw


def _assign(mapping: MutableMapping[str, Any], path: Iterable[str], value: Any) -> None:
    head, *tail = list(path)
    key = head.lower().replace("-", "_")
    if not tail:
        mapping[key] = value
        return
    child = mapping.get(key)
    child = dict(child) if isinstance(child, MutableMapping) else {}
    mapping[key] = child
    _assign(child, tail, value)


def _environment_overrides(data: Dict[str, Any]) -> Dict[str, Any]:
    updated = dict(data)
    for key, raw_value in sorted(os.environ.items()):
        if not key.startswith(ENV_OVERRIDE_PREFIX):
            continue
        path = [segment for segment in key[len(ENV_OVERRIDE_PREFIX) :].split("__") if segment]
        if path:
            _assign(updated, path, _parse_override(raw_value))
    return updated


def load_contest_config(
    *,
    base_path: str | os.PathLike[str] | None = None,
    environment: str | None = None,
    extra_paths: Sequence[str | os.PathLike[str]] | None = None,
) -> ContestConfig:
    """Load layered settlement configuration.

    ``config/contest.yaml`` is merged with ``config/contest.<env>.yaml`` when
    it exists, then with any extra override files (``extra_paths`` followed by
    the ``FPLCONTEST_SETTLEMENT_CONFIG`` path list), then with
    ``FPLCONTEST_SETTLEMENT__section__key`` environment variables.  ``${VAR}``
    tokens in string values are replaced from the environment last.
    """

    config_path = Path(base_path or DEFAULT_CONFIG_PATH)
    data = _read_layer(config_path)

    env_name = environment or os.getenv(ENVIRONMENT_VARIABLE) or data.get("environment")
    if isinstance(env_name, str) and env_name:
        env_path = config_path.with_name(f"{config_path.stem}.{env_name}{config_path.suffix}")
        if env_path.exists():
            data = _deep_merge(data, _read_layer(env_path))
        data["environment"] = env_name

    sources = [Path(path) for path in extra_paths or ()]
    listed = os.getenv(EXTRA_CONFIG_VARIABLE)
    if listed:
        sources.extend(Path(token) for token in listed.split(os.pathsep) if token)
    for source in sources:
        if source.exists():
            data = _deep_merge(data, _read_layer(source))

    data = _substitute_env(_environment_overrides(data))
    return ContestConfig.model_validate(data)


def _duplicates(values: Sequence[int]) -> list[int]:
    seen: set[int] = set()
    repeated: list[int] = []
    for value in values:
        if value in seen and value not in repeated:
            repeated.append(value)
        seen.add(value)
    return repeated


def validate_contest_config(config: ContestConfig) -> list[str]:
    """Validate a :class:`ContestConfig`.

    Returns warning messages and raises :class:`ConfigurationError` listing
    every fatal problem at once.
    """

    errors: list[str] = []
    warnings: list[str] = []

    contest = config.contest
    if not contest.contest_id.strip():
        errors.append("contest.contest_id cannot be empty")
    if not contest.league_id.strip():
        errors.append("contest.league_id cannot be empty")
    if contest.minor_unit <= 0:
        errors.append("contest.minor_unit must be greater than zero")
    if contest.starting_amount is not None and contest.starting_amount <= 0:
        errors.append("contest.starting_amount must be greater than zero")

    priority = config.priority
    overlap = set(priority.tier_one) & set(priority.tier_two)
    if overlap:
        errors.append(f"priority tiers overlap on teams {sorted(overlap)}")
    for name in ("home_order", "away_order"):
        repeated = _duplicates(getattr(priority, name))
        if repeated:
            errors.append(f"priority.{name} lists teams more than once: {repeated}")
    unordered = sorted(set(priority.tier_one) - set(priority.home_order))
    if unordered:
        warnings.append(f"tier-one teams {unordered} are missing from priority.home_order and rank last")
    if not priority.tier_one:
        warnings.append("priority.tier_one is empty; only tier-two and fallback picks are possible")

    payouts = config.payouts
    rules = payouts.rules
    if payouts.entry_fee is not None and payouts.entry_fee <= 0:
        errors.append("payouts.entry_fee must be greater than zero")
    if payouts.participant_count is not None and payouts.participant_count < rules.min_participants:
        errors.append(f"payouts.participant_count must be at least {rules.min_participants}")
    if payouts.entry_fee is None or payouts.participant_count is None:
        warnings.append("payouts.entry_fee or payouts.participant_count is not set")
    if payouts.weeks_a < 1 or payouts.weeks_b < 1:
        errors.append("payouts.weeks_a and payouts.weeks_b must be at least 1")
    if max(payouts.weeks_a, payouts.weeks_b) > 38:
        warnings.append("weekly contests run for more than 38 gameweeks")
    if payouts.chip_categories < 1:
        errors.append("payouts.chip_categories must be at least 1")
    if payouts.chip_names is not None:
        if len(payouts.chip_names) != payouts.chip_categories:
            errors.append("payouts.chip_names must list one name per chip category")
        if len(set(payouts.chip_names)) != len(payouts.chip_names):
            errors.append("payouts.chip_names must be unique")
    if not 0 < rules.season_share <= 1:
        errors.append("payouts.rules.season_share must be within (0, 1]")
    if not 0 <= rules.weekly_pool_share <= Decimal("0.5"):
        errors.append("payouts.rules.weekly_pool_share must be within [0, 0.5]")
    for name in ("step", "season_pool_step"):
        if getattr(rules, name) <= 0:
            errors.append(f"payouts.rules.{name} must be greater than zero")
    if rules.tolerance < 0:
        errors.append("payouts.rules.tolerance must be non-negative")
    if rules.min_participants < 1:
        errors.append("payouts.rules.min_participants must be at least 1")

    storage = config.storage
    if storage.backend not in STORAGE_BACKENDS:
        errors.append(f"storage.backend must be one of {', '.join(STORAGE_BACKENDS)}")
    elif storage.backend == "sqlite" and not storage.path.strip():
        errors.append("storage.path cannot be empty")
    if storage.backend == "memory":
        warnings.append("storage.backend is memory; pot history is lost when the process exits")

    if errors:
        bullet_list = "\n".join(f"- {message}" for message in errors)
        raise ConfigurationError(f"Configuration validation failed:\n{bullet_list}")
    return warnings


def create_priority_rules(config: ContestConfig) -> PriorityRules:
    priority = config.priority
    return PriorityRules(
        tier_one=frozenset(priority.tier_one),
        tier_two=frozenset(priority.tier_two),
        home_order=tuple(priority.home_order),
        away_order=tuple(priority.away_order),
    )


def create_payout_rules(config: ContestConfig) -> PayoutRules:
    return PayoutRules(**config.payouts.rules.model_dump())


def create_normalizer(config: ContestConfig) -> ScorerNormalizer:
    return ScorerNormalizer(aliases=dict(config.normalization.scorer_aliases))


def create_store(
    config: ContestConfig,
    *,
    storage_path: str | os.PathLike[str] | None = None,
) -> ContestStore:
    """Build the record store named by ``storage.backend``."""

    if storage_path is None and config.storage.backend == "memory":
        return InMemoryContestStore()
    if config.storage.backend not in STORAGE_BACKENDS:
        raise ConfigurationError(f"Unknown storage backend: {config.storage.backend}")
    return SQLiteContestStore(storage_path or config.storage.path)


def create_settlement_service(
    config: ContestConfig,
    *,
    store: ContestStore | None = None,
    storage_path: str | os.PathLike[str] | None = None,
    audit_logger: logging.Logger | None = None,
) -> SettlementService:
    """Construct a :class:`SettlementService` with configuration defaults."""

    return SettlementService(
        store or create_store(config, storage_path=storage_path),
        priority_rules=create_priority_rules(config),
        payout_rules=create_payout_rules(config),
        normalizer=create_normalizer(config),
        minor_unit=config.contest.minor_unit,
        audit_logger=audit_logger,
    )


__all__ = [
    "ContestConfig",
    "ContestSection",
    "ConfigurationError",
    "NormalizationConfig",
    "PayoutRulesConfig",
    "PayoutsConfig",
    "PriorityConfig",
    "StorageConfig",
    "create_normalizer",
    "create_payout_rules",
    "create_priority_rules",
    "create_settlement_service",
    "create_store",
    "load_contest_config",
    "validate_contest_config",
]
