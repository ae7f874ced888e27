"""Season payout structure calculator.

The league's total budget (entry fee times participants) is split into a
ranked season schedule and three side pools: two weekly contests paid per
gameweek and a chip bonus paid per chip category.  Amounts move in steps of
five currency units.  After rounding, the three side-pool units are clamped
to a common value and everything the side pools no longer spend is pushed
back into the season schedule from rank 1, so the structure always adds up
to the budget.
"""

from __future__ import annotations

import dataclasses
import logging
import random
from decimal import Decimal
from typing import List, Sequence, Tuple

from .errors import PreconditionViolation, ReconciliationFailure
from .models import PayoutStructure
from .utils import MoneyValue, ceil_to_step, floor_to_step, round_to_step, to_money

logger = logging.getLogger(__name__)
audit_logger = logging.getLogger("fplcontest.settlement.audit")

__all__ = [
    "DEFAULT_CHIP_ORDER",
    "PayoutRules",
    "DEFAULT_PAYOUT_RULES",
    "allocate_season_winners",
    "compute_payout_structure",
    "default_chip_names",
    "distribute_remainder",
    "paid_positions",
    "recalculate_payout_structure",
    "verify_payout_structure",
]

DEFAULT_CHIP_ORDER: Tuple[str, ...] = (
    "BenchBoost I",
    "FreeHit I",
    "TripleCaptain I",
    "BenchBoost II",
    "FreeHit II",
    "TripleCaptain II",
    "WildCard I",
    "WildCard II",
)

_ZERO = Decimal("0")


@dataclasses.dataclass(slots=True, frozen=True)
class PayoutRules:
    """Tunable constants of the payout calculation."""

    season_share: Decimal = Decimal("0.5")
    season_pool_step: Decimal = Decimal("10")
    paid_fraction: Decimal = Decimal("0.20")
    min_cash_fraction: Decimal = Decimal("0.20")
    top_floor_multiplier: Decimal = Decimal("1.30")
    weekly_pool_share: Decimal = Decimal("0.45")
    step: Decimal = Decimal("5")
    tolerance: Decimal = Decimal("1")
    min_participants: int = 4

    def __post_init__(self) -> None:
        for field in dataclasses.fields(self):
            if field.name == "min_participants":
                continue
            object.__setattr__(self, field.name, to_money(getattr(self, field.name)))
        if self.step <= 0 or self.season_pool_step <= 0:
            raise ValueError("Rounding steps must be positive")
        if not _ZERO < self.season_share <= 1:
            raise ValueError("season_share must be in (0, 1]")
        if self.weekly_pool_share < 0 or self.weekly_pool_share * 2 > 1:
            raise ValueError("weekly_pool_share must be between 0 and 0.5")
        if self.tolerance < 0:
            raise ValueError("tolerance must be non-negative")
        if self.min_participants < 1:
            raise ValueError("min_participants must be at least 1")


DEFAULT_PAYOUT_RULES = PayoutRules()


def default_chip_names(count: int) -> List[str]:
    """First ``count`` chip categories in the league's customary order."""

    if count < 0:
        raise ValueError("count must be non-negative")
    names = list(DEFAULT_CHIP_ORDER[:count])
    names.extend(f"Chip {index}" for index in range(len(names) + 1, count + 1))
    return names


def paid_positions(participant_count: int, rules: PayoutRules = DEFAULT_PAYOUT_RULES) -> int:
    """Number of ranked season places paid out; always at least one."""

    return max(1, int(floor_to_step(participant_count * rules.paid_fraction, 1)))


def allocate_season_winners(
    season_pool: MoneyValue,
    paid: int,
    entry_fee: MoneyValue,
    rules: PayoutRules = DEFAULT_PAYOUT_RULES,
) -> Tuple[Decimal, ...]:
    """Split the season pool into ``paid`` non-increasing ranked amounts.

    The bottom fifth of the paid places get their entry fee back.  The
    remaining places start from a floor of 130% of the fee and share what is
    left with linearly decreasing increments, each rounded down to the step;
    whatever rounding leaves over goes to rank 1.  The result sums exactly to
    ``season_pool``.
    """

    pool = to_money(season_pool)
    fee = to_money(entry_fee)
    if paid < 1:
        raise PreconditionViolation("At least one paid position is required")
    bottom = int(floor_to_step(paid * rules.min_cash_fraction, 1))
    top = paid - bottom
    remaining = pool - fee * bottom
    if remaining < fee * top:
        raise PreconditionViolation(
            f"Season pool {pool} cannot return the entry fee to {paid} places",
            details={"season_pool": str(pool), "paid_positions": paid},
        )

    floor_amount = max(round_to_step(fee * rules.top_floor_multiplier, rules.step), fee)
    if floor_amount * top > remaining:
        floor_amount = max(floor_to_step(remaining / top, rules.step), fee)
    extra = remaining - floor_amount * top

    weight_total = top * (top - 1) // 2
    shares: List[Decimal] = []
    for index in range(top):
        if weight_total == 0:
            shares.append(_ZERO)
            continue
        weight = top - 1 - index
        shares.append(floor_to_step(extra * weight / weight_total, rules.step))
    shares[0] += extra - sum(shares, _ZERO)

    amounts = [floor_amount + share for share in shares]
    amounts.extend(fee for _ in range(bottom))
    return tuple(amounts)


def distribute_remainder(
    amounts: Sequence[Decimal],
    remainder: MoneyValue,
    step: MoneyValue = 5,
) -> Tuple[Decimal, ...]:
    """Hand ``remainder`` out in ``step`` increments starting from rank 1.

    Increments go round-robin down the ranks until the remainder is used up,
    which keeps a non-increasing schedule non-increasing.  A final partial
    increment goes to the next rank in line.
    """

    amount = to_money(remainder)
    increment = to_money(step)
    if amount < 0:
        raise PreconditionViolation(f"Cannot distribute a negative remainder: {amount}")
    if amount == 0:
        return tuple(amounts)
    if not amounts:
        raise PreconditionViolation("No ranked amounts to distribute the remainder into")
    count = len(amounts)
    units, partial = divmod(amount, increment)
    full_rounds, extra_units = divmod(int(units), count)
    adjusted = [
        value + increment * full_rounds + (increment if index < extra_units else _ZERO)
        for index, value in enumerate(amounts)
    ]
    if partial:
        adjusted[extra_units] += partial
    return tuple(adjusted)


def verify_payout_structure(
    structure: PayoutStructure, tolerance: MoneyValue | None = None
) -> PayoutStructure:
    """Raise :class:`ReconciliationFailure` unless ``structure`` balances.

    The allocated total must match the budget within ``tolerance`` and the
    season schedule must be non-increasing with no negative amounts.
    """

    limit = DEFAULT_PAYOUT_RULES.tolerance if tolerance is None else to_money(tolerance)
    problems: List[str] = []
    discrepancy = structure.discrepancy()
    if abs(discrepancy) > limit:
        problems.append(
            f"allocated {structure.allocated_total()} against a budget of "
            f"{structure.total_budget} (off by {discrepancy})"
        )
    ranks = structure.season_winners
    for index in range(len(ranks) - 1):
        if ranks[index] < ranks[index + 1]:
            problems.append(
                f"rank {index + 1} pays {ranks[index]} but rank {index + 2} pays {ranks[index + 1]}"
            )
    amounts = list(ranks) + [structure.recurring_a_per_week, structure.recurring_b_per_week]
    amounts.extend(structure.bonus_per_category.values())
    if any(value < 0 for value in amounts):
        problems.append("negative amounts are not allowed")
    if problems:
        audit_logger.warning(
            "payouts.rejected",
            extra={"total_budget": str(structure.total_budget), "problems": problems},
        )
        raise ReconciliationFailure(
            "Payout structure does not reconcile: " + "; ".join(problems),
            details={"discrepancy": str(discrepancy), "problems": problems},
        )
    return structure


def _check_inputs(
    entry_fee: Decimal,
    participant_count: int,
    side_weeks_a: int,
    side_weeks_b: int,
    chip_category_count: int,
    chip_names: Sequence[str] | None,
    rules: PayoutRules,
) -> List[str]:
    if participant_count < rules.min_participants:
        raise PreconditionViolation(
            f"At least {rules.min_participants} participants are required, got {participant_count}",
            details={"participant_count": participant_count},
        )
    if entry_fee <= 0:
        raise PreconditionViolation(f"Entry fee must be positive, got {entry_fee}")
    if side_weeks_a < 1 or side_weeks_b < 1:
        raise PreconditionViolation("Both weekly contests need at least one week")
    if chip_category_count < 1:
        raise PreconditionViolation("At least one chip category is required")
    names = list(chip_names) if chip_names is not None else default_chip_names(chip_category_count)
    if len(names) != chip_category_count:
        raise PreconditionViolation(
            f"Expected {chip_category_count} chip names, got {len(names)}",
            details={"chip_names": names},
        )
    if len(set(names)) != len(names):
        raise PreconditionViolation("Chip names must be unique", details={"chip_names": names})
    return names


def _build_structure(
    entry_fee: MoneyValue,
    participant_count: int,
    side_weeks_a: int,
    side_weeks_b: int,
    chip_category_count: int,
    chip_names: Sequence[str] | None,
    rules: PayoutRules,
    weekly_scale: Tuple[Decimal, Decimal] = (Decimal("1"), Decimal("1")),
) -> PayoutStructure:
    fee = to_money(entry_fee)
    names = _check_inputs(
        fee,
        participant_count,
        side_weeks_a,
        side_weeks_b,
        chip_category_count,
        chip_names,
        rules,
    )
    total = fee * participant_count
    season_pool = min(ceil_to_step(total * rules.season_share, rules.season_pool_step), total)
    paid = paid_positions(participant_count, rules)
    season = allocate_season_winners(season_pool, paid, fee, rules)

    side_pool = total - season_pool
    pool_a = side_pool * rules.weekly_pool_share * weekly_scale[0]
    pool_b = side_pool * rules.weekly_pool_share * weekly_scale[1]
    unit_a = round_to_step(pool_a / side_weeks_a, rules.step)
    unit_b = round_to_step(pool_b / side_weeks_b, rules.step)
    chip_pool = side_pool - unit_a * side_weeks_a - unit_b * side_weeks_b
    unit_chip = round_to_step(chip_pool / chip_category_count, rules.step)

    unit = floor_to_step(max(_ZERO, min(unit_a, unit_b, unit_chip / 2)), rules.step)

    def side_cost(value: Decimal) -> Decimal:
        return value * (side_weeks_a + side_weeks_b) + value * 2 * chip_category_count

    while unit > 0 and side_cost(unit) > side_pool:
        unit -= rules.step
    transfer = side_pool - side_cost(unit)
    season = distribute_remainder(season, transfer, rules.step)

    structure = PayoutStructure(
        season_winners=season,
        recurring_a_per_week=unit,
        recurring_b_per_week=unit,
        bonus_per_category={name: unit * 2 for name in names},
        total_budget=total,
        weeks_a=side_weeks_a,
        weeks_b=side_weeks_b,
        entry_fee=fee,
        participant_count=participant_count,
        balancing_transfer=transfer,
    )
    logger.debug(
        "Side units before balancing: weekly A %s, weekly B %s, chip %s; clamped to %s",
        unit_a,
        unit_b,
        unit_chip,
        unit,
    )
    return verify_payout_structure(structure, rules.tolerance)


def compute_payout_structure(
    entry_fee: MoneyValue,
    participant_count: int,
    side_weeks_a: int,
    side_weeks_b: int,
    chip_category_count: int,
    *,
    chip_names: Sequence[str] | None = None,
    rules: PayoutRules = DEFAULT_PAYOUT_RULES,
) -> PayoutStructure:
    """Compute the season payout structure for a league.

    Deterministic for a given set of inputs.  Raises
    :class:`PreconditionViolation` for fewer than ``rules.min_participants``
    participants and :class:`ReconciliationFailure` if the result does not
    balance against the budget.
    """

    structure = _build_structure(
        entry_fee,
        participant_count,
        side_weeks_a,
        side_weeks_b,
        chip_category_count,
        chip_names,
        rules,
    )
    logger.info(
        "Payout structure for %d participants: budget %s, %d paid places, side unit %s",
        participant_count,
        structure.total_budget,
        structure.paid_positions,
        structure.recurring_a_per_week,
    )
    return structure


def recalculate_payout_structure(
    entry_fee: MoneyValue,
    participant_count: int,
    side_weeks_a: int,
    side_weeks_b: int,
    chip_category_count: int,
    *,
    rng: random.Random | int | None = None,
    variation: MoneyValue = Decimal("0.10"),
    chip_names: Sequence[str] | None = None,
    rules: PayoutRules = DEFAULT_PAYOUT_RULES,
) -> PayoutStructure:
    """Randomised variant of :func:`compute_payout_structure`.

    Each weekly pool is scaled by ``1 + (u - 0.5) * variation`` with ``u``
    drawn from ``rng`` before the usual rounding and balancing, so the result
    still reconciles.  Pass an integer seed for reproducible output.
    """

    spread = to_money(variation)
    if not _ZERO <= spread <= 1:
        raise PreconditionViolation(f"variation must be between 0 and 1, got {spread}")
    generator = rng if isinstance(rng, random.Random) else random.Random(rng)
    scale = tuple(
        Decimal("1") + (to_money(generator.random()) - Decimal("0.5")) * spread
        for _ in range(2)
    )
    return _build_structure(
        entry_fee,
        participant_count,
        side_weeks_a,
        side_weeks_b,
        chip_category_count,
        chip_names,
        rules,
        weekly_scale=(scale[0], scale[1]),
    )
