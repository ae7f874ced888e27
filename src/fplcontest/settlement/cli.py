"""Command line interface for the contest settlement engine."""

from __future__ import annotations

import argparse
import dataclasses
import datetime as dt
import enum
import json
import sys
from decimal import Decimal
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Sequence

import polars as pl

from ..config import get_config
from ..fpl_api import (
    FplClient,
    parse_fixtures,
    parse_kickoff,
    roster_from_bootstrap,
    standings_from_payload,
)
from .configuration import (
    ContestConfig,
    ConfigurationError,
    create_payout_rules,
    create_priority_rules,
    create_settlement_service,
    load_contest_config,
    validate_contest_config,
)
from .errors import InvalidInput, SettlementError
from .fixture_priority import featured_selection
from .logging import configure_logging, get_audit_logger
from .models import Entry, Fixture
from .payouts import compute_payout_structure, recalculate_payout_structure
from .reports import payout_frame, pot_history_frame, winners_frame
from .service import SettlementService
from .utils import to_money
from .standings import split_prize, weekly_winners


class CommandContext:
    """Runtime objects shared across command handlers."""

    def __init__(self, config: ContestConfig, args: argparse.Namespace) -> None:
        self.config = config
        self.args = args
        self._service: SettlementService | None = None
        self._client: FplClient | None = None

    @property
    def service(self) -> SettlementService:
        if self._service is None:
            self._service = create_settlement_service(
                self.config,
                storage_path=self.args.storage,
                audit_logger=get_audit_logger(),
            )
        return self._service

    @property
    def client(self) -> FplClient:
        if self._client is None:
            self._client = FplClient()
        return self._client

    def close(self) -> None:
        if self._client is not None:
            self._client.close()


CommandHandler = Callable[[CommandContext, argparse.Namespace], None]


def _amount(value: str) -> Decimal:
    return to_money(value)


@dataclasses.dataclass(slots=True)
class Subcommand:
    """Container describing a CLI sub-command."""

    name: str
    help: str
    configure: Callable[[argparse.ArgumentParser], None]
    handler: CommandHandler
    validate: bool

    def add_to_parser(self, subparsers, parent: argparse.ArgumentParser) -> argparse.ArgumentParser:
        parser = subparsers.add_parser(self.name, parents=[parent], help=self.help)
        self.configure(parser)
        parser.set_defaults(handler=self.handler, command=self.name, validate=self.validate)
        return parser


class SubcommandApp:
    """Registry that wires handlers into an :class:`argparse` parser."""

    def __init__(self, description: str | None = None) -> None:
        self._commands: list[Subcommand] = []
        self._description = description

    def command(
        self,
        name: str,
        *,
        help: str,
        configure: Callable[[argparse.ArgumentParser], None] = lambda parser: None,
        validate: bool = True,
    ) -> Callable[[CommandHandler], CommandHandler]:
        """Register ``handler`` as a sub-command."""

        def _decorator(handler: CommandHandler) -> CommandHandler:
            self._commands.append(Subcommand(name, help, configure, handler, validate))
            return handler

        return _decorator

    @property
    def commands(self) -> Sequence[Subcommand]:
        return tuple(self._commands)

    def build_parser(self) -> argparse.ArgumentParser:
        parent = argparse.ArgumentParser(add_help=False)
        parent.add_argument("--config", dest="config_file")
        parent.add_argument("--environment", dest="config_environment")
        parent.add_argument("--storage")
        parent.add_argument("--log-level", default="WARNING")

        parser = argparse.ArgumentParser(description=self._description)
        subparsers = parser.add_subparsers(dest="command", required=True)
        for command in self._commands:
            command.add_to_parser(subparsers, parent)
        return parser


APP = SubcommandApp(description=__doc__)


def _jsonable(value: Any) -> Any:
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {field.name: _jsonable(getattr(value, field.name)) for field in dataclasses.fields(value)}
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (dt.datetime, dt.date)):
        return value.isoformat()
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, Mapping):
        return {str(key): _jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_jsonable(item) for item in value]
    return value


def _print_json(payload: Any) -> None:
    print(json.dumps(_jsonable(payload), indent=2, sort_keys=True))


def _write_report(args: argparse.Namespace, frame: pl.DataFrame) -> None:
    if args.csv:
        frame.write_csv(args.csv)
        print(f"Wrote {frame.height} rows to {args.csv}", file=sys.stderr)


def _read_json(path: str) -> Any:
    with Path(path).open("r", encoding="utf-8") as handle:
        return json.load(handle)


def _load_fixtures(context: CommandContext, args: argparse.Namespace) -> List[Fixture]:
    if args.fixtures:
        payload = _read_json(args.fixtures)
        fixtures = parse_fixtures(payload)
        if args.gameweek is not None:
            fixtures = [fixture for fixture in fixtures if fixture.gameweek == args.gameweek]
        return fixtures
    if args.gameweek is None:
        raise SystemExit("Either --fixtures or --gameweek is required")
    return parse_fixtures(context.client.fixtures(args.gameweek))


def _add_csv_option(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--csv", metavar="PATH", help="Also write the result as a CSV table")


def _add_fixture_source(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--fixtures", help="JSON file with fixtures in feed format")
    parser.add_argument("--gameweek", type=int)


def _configure_validate_parser(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--warnings-as-errors",
        action="store_true",
        help="Exit with status 2 when warnings are reported",
    )


@APP.command(
    "validate-config",
    help="Validate contest configuration",
    configure=_configure_validate_parser,
    validate=False,
)
def _cmd_validate_config(context: CommandContext, args: argparse.Namespace) -> None:
    try:
        warnings = validate_contest_config(context.config)
    except ConfigurationError as exc:
        print("Configuration invalid:")
        for line in str(exc).splitlines()[1:]:
            print(line)
        raise SystemExit(1) from exc

    print(f"Configuration '{context.config.environment}' is valid.")
    if warnings:
        print("Warnings:")
        for message in warnings:
            print(f"- {message}")
        if args.warnings_as_errors:
            raise SystemExit(2)


def _configure_payouts_parser(parser: argparse.ArgumentParser) -> None:
    _add_csv_option(parser)
    parser.add_argument("--entry-fee", type=_amount)
    parser.add_argument("--participants", type=int)
    parser.add_argument("--weeks-a", type=int)
    parser.add_argument("--weeks-b", type=int)
    parser.add_argument("--chips", type=int)
    parser.add_argument("--randomize", action="store_true", help="Jitter the weekly pools")
    parser.add_argument("--seed", type=int)
    parser.add_argument("--save", action="store_true", help="Store the structure for the league")
    parser.add_argument("--confirm", action="store_true", help="Freeze the stored structure")
    parser.add_argument("--unfreeze", action="store_true", help="Unfreeze the stored structure")


@APP.command("payouts", help="Compute the season payout structure", configure=_configure_payouts_parser)
def _cmd_payouts(context: CommandContext, args: argparse.Namespace) -> None:
    config = context.config
    league_id = config.contest.league_id
    if args.unfreeze:
        stored = context.service.unfreeze_payouts(league_id)
        _print_json(stored)
        _write_report(args, payout_frame(stored.structure))
        return
    if args.confirm and not args.save:
        stored = context.service.confirm_payouts(league_id)
        _print_json(stored)
        _write_report(args, payout_frame(stored.structure))
        return

    inputs = config.payouts
    entry_fee = args.entry_fee if args.entry_fee is not None else inputs.entry_fee
    participants = args.participants if args.participants is not None else inputs.participant_count
    if entry_fee is None or participants is None:
        raise SystemExit("An entry fee and participant count are required")
    parameters: Dict[str, Any] = {
        "entry_fee": entry_fee,
        "participant_count": participants,
        "side_weeks_a": inputs.weeks_a if args.weeks_a is None else args.weeks_a,
        "side_weeks_b": inputs.weeks_b if args.weeks_b is None else args.weeks_b,
        "chip_category_count": inputs.chip_categories if args.chips is None else args.chips,
        "chip_names": inputs.chip_names if args.chips is None else None,
    }
    if args.save:
        stored = context.service.configure_payouts(
            league_id, randomize=args.randomize, rng=args.seed, **parameters
        )
        if args.confirm:
            stored = context.service.confirm_payouts(league_id)
        _print_json(stored)
        _write_report(args, payout_frame(stored.structure))
        return
    rules = create_payout_rules(config)
    if args.randomize:
        structure = recalculate_payout_structure(rng=args.seed, rules=rules, **parameters)
    else:
        structure = compute_payout_structure(rules=rules, **parameters)
    _print_json(structure)
    _write_report(args, payout_frame(structure))


@APP.command(
    "featured",
    help="Show the featured fixture of a gameweek",
    configure=_add_fixture_source,
    validate=False,
)
def _cmd_featured(context: CommandContext, args: argparse.Namespace) -> None:
    selection = featured_selection(_load_fixtures(context, args), create_priority_rules(context.config))
    if selection is None:
        print("No fixtures available.")
        raise SystemExit(1)
    _print_json({"tier": selection.tier, "fixture": selection.fixture})


def _configure_entries_parser(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("file", help="JSON file with a list of entries")


def _entry_from_mapping(payload: Any) -> Entry:
    if not isinstance(payload, Mapping):
        raise InvalidInput(f"Entry must be a JSON object, got {type(payload).__name__}")
    scorer_id = payload.get("predicted_scorer_id")
    try:
        submitted_at = parse_kickoff(payload.get("submitted_at"))
        predicted_scorer_id = int(scorer_id) if scorer_id is not None else None
    except (AttributeError, TypeError, ValueError) as exc:
        raise InvalidInput(
            f"Malformed entry for {payload.get('participant_id')!r}: {exc}",
            details={"participant_id": payload.get("participant_id")},
        ) from exc
    return Entry(
        participant_id=str(payload.get("participant_id", "")),
        fixture_id=payload.get("fixture_id"),  # type: ignore[arg-type]
        gameweek=payload.get("gameweek"),  # type: ignore[arg-type]
        predicted_home_score=payload.get("predicted_home_score"),  # type: ignore[arg-type]
        predicted_away_score=payload.get("predicted_away_score"),  # type: ignore[arg-type]
        predicted_scorer_name=str(payload.get("predicted_scorer_name") or ""),
        submitted_at=submitted_at,
        predicted_scorer_id=predicted_scorer_id,
    )


@APP.command("entries", help="Import predictions into the entry store", configure=_configure_entries_parser)
def _cmd_entries(context: CommandContext, args: argparse.Namespace) -> None:
    stored = 0
    rejected = 0
    for payload in _read_json(args.file):
        try:
            context.service.submit_entry(_entry_from_mapping(payload))
            stored += 1
        except InvalidInput as exc:
            rejected += 1
            print(f"[rejected] {exc}", file=sys.stderr)
    print(f"Stored {stored} entries ({rejected} rejected)")


def _configure_settle_parser(parser: argparse.ArgumentParser) -> None:
    _add_csv_option(parser)
    _add_fixture_source(parser)
    parser.add_argument("--fixture-id", type=int, help="Defaults to the featured fixture")
    parser.add_argument("--bootstrap", help="JSON file with the bootstrap payload for scorer names")
    parser.add_argument("--contest")


@APP.command("settle", help="Settle a gameweek of the weekly contest", configure=_configure_settle_parser)
def _cmd_settle(context: CommandContext, args: argparse.Namespace) -> None:
    service = context.service
    fixtures = _load_fixtures(context, args)
    if args.fixture_id is not None:
        matches = [fixture for fixture in fixtures if fixture.fixture_id == args.fixture_id]
        if not matches:
            raise SystemExit(f"Fixture {args.fixture_id} not found")
        fixture = matches[0]
    else:
        fixture = service.featured_fixture(fixtures)
    bootstrap = _read_json(args.bootstrap) if args.bootstrap else context.client.bootstrap()
    record = service.settle(
        args.contest or context.config.contest.contest_id,
        fixture,
        roster=roster_from_bootstrap(bootstrap),
    )
    _print_json(record)
    _write_report(args, winners_frame(record.winners))


def _configure_pot_parser(parser: argparse.ArgumentParser) -> None:
    _add_csv_option(parser)
    parser.add_argument("--contest")
    parser.add_argument("--advance", type=int, metavar="GAMEWEEK")
    parser.add_argument("--starting-amount", type=_amount)


@APP.command("pot", help="Show or advance the weekly pot", configure=_configure_pot_parser)
def _cmd_pot(context: CommandContext, args: argparse.Namespace) -> None:
    service = context.service
    config = context.config
    contest_id = args.contest or config.contest.contest_id
    if args.advance is not None:
        starting = args.starting_amount
        if starting is None:
            starting = config.contest.starting_amount
        service.advance(
            contest_id,
            args.advance,
            starting,
            league_id=config.contest.league_id if starting is None else None,
        )
    history = service.pot_history(contest_id)
    _print_json({"current": service.current_pot(contest_id), "history": history})
    _write_report(args, pot_history_frame(history))


def _configure_weekly_parser(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--standings", help="JSON file with a classic league standings payload")
    parser.add_argument("--league", help="League id to fetch standings for")
    parser.add_argument("--prize", type=_amount, help="Prize shared between the winners")


def _standings_league(context: CommandContext, args: argparse.Namespace) -> str:
    """League to fetch: ``--league``, then ``FPLCONTEST_LEAGUE_ID``, then a numeric contest league."""

    if args.league:
        return str(args.league)
    configured = get_config().league_id
    if configured is not None:
        return str(configured)
    league_id = context.config.contest.league_id
    if league_id.isdigit():
        return league_id
    raise SystemExit("No league to fetch: pass --league or set FPLCONTEST_LEAGUE_ID")


@APP.command(
    "weekly-winners",
    help="Highest gameweek score in the league",
    configure=_configure_weekly_parser,
    validate=False,
)
def _cmd_weekly_winners(context: CommandContext, args: argparse.Namespace) -> None:
    if args.standings:
        payload = _read_json(args.standings)
    else:
        payload = context.client.league_standings(_standings_league(context, args))
    winners = weekly_winners(standings_from_payload(payload))
    if args.prize is None:
        _print_json(winners)
        return
    shares = split_prize(args.prize, winners, minor_unit=context.config.contest.minor_unit)
    _print_json([{"winner": row, "amount": amount} for row, amount in shares])


def _build_parser() -> argparse.ArgumentParser:
    return APP.build_parser()


def _dispatch(args: argparse.Namespace) -> None:
    config = load_contest_config(base_path=args.config_file, environment=args.config_environment)
    if args.validate:
        try:
            warnings = validate_contest_config(config)
        except ConfigurationError as exc:
            raise SystemExit(str(exc)) from exc
        for message in warnings:
            print(f"[config-warning] {message}", file=sys.stderr)

    context = CommandContext(config, args)
    handler: CommandHandler = args.handler
    try:
        handler(context, args)
    except SettlementError as exc:
        print(f"error: {exc}", file=sys.stderr)
        raise SystemExit(1) from exc
    finally:
        context.close()


def main(argv: Sequence[str] | None = None) -> None:
    parser = _build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.log_level)
    _dispatch(args)


__all__ = ["APP", "main"]


if __name__ == "__main__":  # pragma: no cover - CLI entrypoint
    main()
