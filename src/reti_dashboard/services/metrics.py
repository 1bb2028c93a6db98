"""Pure calculations over assembled validator data."""

import re
from typing import Sequence

from ..core.types import (
    Constraints,
    Indicator,
    LocalPoolInfo,
    NodePoolAssignment,
    PoolData,
    Validator,
    ValidatorMetrics,
)

MICROALGOS_PER_ALGO = 1_000_000

# Rounds since the oldest pool payout at which health degrades
WATCH_ROUNDS = 21
WARNING_ROUNDS = 210
ERROR_ROUNDS = 1200


def calculate_validator_pool_metrics(
    pools_data: Sequence[PoolData], total_algo_staked: int, current_round: int
) -> ValidatorMetrics:
    """
    Combine per-pool balances and payouts into validator metrics.

    Rewards balance is what the pools hold beyond the staked total, rounded
    down to whole algos and never negative. Rounds since last payout is
    measured from the oldest non-zero payout across pools. APY is the mean
    of the pools reporting one.
    """
    total_balance = sum(pool.balance for pool in pools_data)
    rewards = total_balance - total_algo_staked
    rewards_balance = max(0, rewards // MICROALGOS_PER_ALGO * MICROALGOS_PER_ALGO)

    payouts = [pool.last_payout for pool in pools_data if pool.last_payout]
    oldest_payout = min(payouts) if payouts else None
    rounds_since_last_payout = current_round - oldest_payout if oldest_payout else None

    apys = [pool.apy_bps for pool in pools_data if pool.apy_bps]
    apy_bps = round(sum(apys) / len(apys)) if apys else 0

    return ValidatorMetrics(
        rewards_balance=rewards_balance,
        rounds_since_last_payout=rounds_since_last_payout,
        apy_bps=apy_bps,
    )


def calculate_validator_health(rounds_since_last_payout: int | None) -> Indicator:
    if rounds_since_last_payout is None or rounds_since_last_payout >= ERROR_ROUNDS:
        return Indicator.ERROR
    if rounds_since_last_payout >= WARNING_ROUNDS:
        return Indicator.WARNING
    if rounds_since_last_payout >= WATCH_ROUNDS:
        return Indicator.WATCH
    return Indicator.NORMAL


def node_num_for_pool_id(pool_app_id: int, assignment: NodePoolAssignment) -> int | None:
    """1-based node number hosting a pool application."""
    for index, pool_app_ids in enumerate(assignment.nodes):
        if pool_app_id in pool_app_ids:
            return index + 1
    return None


def validator_has_available_slots(assignment: NodePoolAssignment, pools_per_node: int) -> bool:
    """Whether any node still has room for another pool."""
    return any(
        len([app_id for app_id in pool_app_ids[:pools_per_node] if app_id]) < pools_per_node
        for pool_app_ids in assignment.nodes
    )


def effective_max_algo_per_pool(validator: Validator, constraints: Constraints) -> int:
    """
    Per-pool stake ceiling actually enforced.

    A configured limit of zero means the protocol's per-validator limit
    spread over the validator's pools, capped by the hard per-pool maximum.
    """
    configured = validator.config.max_algo_per_pool
    if configured:
        return configured
    num_pools = max(validator.state.num_pools, 1)
    return min(constraints.max_algo_per_validator // num_pools, constraints.max_algo_per_pool)


def calculate_max_stakers(validator: Validator, constraints: Constraints) -> int:
    return validator.state.num_pools * constraints.max_stakers_per_pool


def calculate_max_stake(validator: Validator, constraints: Constraints) -> int:
    """Most algo the validator can hold across its pools."""
    if validator.state.num_pools == 0:
        return 0
    per_pool = effective_max_algo_per_pool(validator, constraints)
    return min(per_pool * validator.state.num_pools, constraints.max_algo_per_validator)


def is_sunsetted(validator: Validator, now: float) -> bool:
    """Whether staking was closed at a sunset timestamp in the past."""
    sunsetting_on = validator.config.sunsetting_on
    return sunsetting_on > 0 and sunsetting_on <= now


def is_migration_set(validator: Validator) -> bool:
    return validator.config.sunsetting_to > 0


def pool_name(pool_index: int) -> str:
    """Display name of a pool from its 0-based index."""
    return f"Pool {pool_index + 1}"


def pool_index_from_name(name: str) -> int | None:
    match = re.fullmatch(r"Pool (\d+)", name)
    if not match or int(match.group(1)) < 1:
        return None
    return int(match.group(1)) - 1


def has_pools(pools: Sequence[LocalPoolInfo]) -> bool:
    return any(pool.pool_app_id for pool in pools)


def _version_parts(version: str) -> list[int]:
    parts = []
    for piece in version.strip().lstrip("v").split(".")[:3]:
        digits = re.match(r"\d+", piece)
        parts.append(int(digits.group()) if digits else 0)
    return parts + [0] * (3 - len(parts))


def is_newer_version(current: str, deployed: str) -> bool:
    """True when ``deployed`` is a later major.minor.patch than ``current``."""
    return _version_parts(deployed) > _version_parts(current)
