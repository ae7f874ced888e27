from __future__ import annotations

import logging
from decimal import Decimal
from pathlib import Path

import pytest

from fplcontest.settlement.configuration import (
    ConfigurationError,
    ContestConfig,
    create_normalizer,
    create_payout_rules,
    create_priority_rules,
    create_settlement_service,
    create_store,
    load_contest_config,
    validate_contest_config,
)
from fplcontest.settlement.fixture_priority import DEFAULT_PRIORITY_RULES
from fplcontest.settlement.payouts import DEFAULT_PAYOUT_RULES
from fplcontest.settlement.stores import InMemoryContestStore, SQLiteContestStore

DEFAULT_CONFIG = Path(__file__).resolve().parents[2] / "config" / "contest.yaml"


@pytest.fixture(autouse=True)
def _clean_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("FPLCONTEST_SETTLEMENT_ENV", "FPLCONTEST_SETTLEMENT_CONFIG"):
        monkeypatch.delenv(name, raising=False)


def test_default_configuration_loads(tmp_path: Path) -> None:
    config = load_contest_config(base_path=DEFAULT_CONFIG)

    assert isinstance(config, ContestConfig)
    assert validate_contest_config(config) == []
    assert create_priority_rules(config) == DEFAULT_PRIORITY_RULES
    assert create_payout_rules(config) == DEFAULT_PAYOUT_RULES
    assert config.payouts.entry_fee == Decimal("50")

    service = create_settlement_service(config, storage_path=tmp_path / "contest.sqlite3")
    assert isinstance(service.store, SQLiteContestStore)
    assert service.store.storage_path.exists()
    assert service.minor_unit == Decimal("0.01")


def test_configuration_layers_and_env_overrides(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    base = tmp_path / "contest.yaml"
    base.write_text(
        """
contest:
  contest_id: base
  league_id: "100"
payouts:
  entry_fee: 20
  participant_count: 12
storage:
  backend: memory
"""
    )
    (tmp_path / "contest.production.yaml").write_text(
        """
contest:
  contest_id: production
payouts:
  participant_count: 30
"""
    )
    extra = tmp_path / "override.yaml"
    extra.write_text(
        """
payouts:
  participant_count: 40
"""
    )

    monkeypatch.setenv("FPLCONTEST_SETTLEMENT_ENV", "production")
    monkeypatch.setenv("FPLCONTEST_SETTLEMENT_CONFIG", str(extra))
    monkeypatch.setenv("FPLCONTEST_SETTLEMENT__contest__league_id", "200")
    monkeypatch.setenv("FPLCONTEST_SETTLEMENT__payouts__weeks_b", "19")

    config = load_contest_config(base_path=base)

    assert config.environment == "production"
    assert config.contest.contest_id == "production"
    assert config.contest.league_id == "200"
    assert config.payouts.participant_count == 40
    assert config.payouts.weeks_b == 19
    assert config.payouts.entry_fee == Decimal("20")
    assert isinstance(create_store(config), InMemoryContestStore)


def test_environment_token_substitution(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    base = tmp_path / "contest.yaml"
    base.write_text("storage:\n  path: ${DATA_DIR}/contest.sqlite3\n")
    monkeypatch.setenv("DATA_DIR", str(tmp_path))

    config = load_contest_config(base_path=base)

    assert config.storage.path == f"{tmp_path}/contest.sqlite3"


def test_missing_configuration_file(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        load_contest_config(base_path=tmp_path / "absent.yaml")


def test_validation_reports_every_error() -> None:
    config = ContestConfig.model_validate(
        {
            "contest": {"contest_id": " ", "minor_unit": "0"},
            "priority": {"tier_one": [1, 2], "tier_two": [2], "home_order": [1, 1]},
            "payouts": {"entry_fee": "-5", "participant_count": 2, "chip_categories": 0},
            "storage": {"backend": "redis"},
        }
    )

    with pytest.raises(ConfigurationError) as excinfo:
        validate_contest_config(config)

    message = str(excinfo.value)
    for fragment in (
        "contest.contest_id cannot be empty",
        "contest.minor_unit must be greater than zero",
        "priority tiers overlap on teams [2]",
        "priority.home_order lists teams more than once: [1]",
        "payouts.entry_fee must be greater than zero",
        "payouts.participant_count must be at least 4",
        "payouts.chip_categories must be at least 1",
        "storage.backend must be one of sqlite, memory",
    ):
        assert f"- {fragment}" in message


def test_validation_warnings() -> None:
    config = ContestConfig.model_validate(
        {
            "priority": {"tier_one": [1, 99], "home_order": [1]},
            "storage": {"backend": "memory"},
        }
    )

    warnings = validate_contest_config(config)

    assert any("[99]" in warning for warning in warnings)
    assert any("entry_fee" in warning for warning in warnings)
    assert any("memory" in warning for warning in warnings)


def test_normalizer_uses_configured_aliases() -> None:
    config = ContestConfig.model_validate(
        {"normalization": {"scorer_aliases": {"Virgil van Dijk": "Virgil"}}}
    )
    assert create_normalizer(config).canonical("Virgil van Dijk") == "virgil"


def test_service_uses_configured_rules(caplog: pytest.LogCaptureFixture) -> None:
    config = ContestConfig.model_validate(
        {
            "contest": {"minor_unit": "1"},
            "payouts": {"rules": {"min_participants": 2}},
        }
    )
    service = create_settlement_service(config, store=InMemoryContestStore())

    assert service.minor_unit == Decimal("1")
    with caplog.at_level(logging.INFO, logger="fplcontest.settlement.audit"):
        stored = service.configure_payouts("league", 10, 2, 10, 10, 1)
    assert stored.structure.total_budget == Decimal("20")
    assert "payouts.configured" in caplog.messages
