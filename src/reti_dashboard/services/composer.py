"""Simulate-then-commit composition of operation groups with unknown execution cost.

An action is first dry-run with placeholder fees so the node reports how
much opcode budget the group pulled in. That figure is converted to the
extra fee the group really needs, the sender's balance is checked against
the full cost, and only then is the group rebuilt with real signatures and
submitted.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable

from ..core.contracts import MIN_TXN_FEE, OPCODE_BUDGET_PER_FEE_UNIT, SIMULATE_STATIC_FEE
from ..core.errors import FeeAccountingError, SimulationFailed, UnreadableReturn
from ..data.algod import AlgodClient
from ..data.gateway import LedgerGateway, SendResult, Signer, Txn, TxnType, method_call
from .balance import BalanceChecker

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GasPadding:
    """
    Budget-only ``gas`` calls placed ahead of the real call.

    Each call pays the normal minimum fee and thereby buys opcode budget;
    ``credit`` is the part of the derived fee those normal fees already
    cover. ``simulate_fee`` is the static fee they carry in the dry run
    (``None`` keeps the normal fee).
    """

    calls: int
    credit: int
    simulate_fee: int | None = 0

    def build(self, sender: str, app_id: int, method: str, simulate: bool) -> list[Txn]:
        static_fee = self.simulate_fee if simulate else None
        return [
            method_call(sender, app_id, method, note=str(i + 1), static_fee=static_fee)
            for i in range(self.calls)
        ]

    def repeated(self, times: int) -> "GasPadding":
        return GasPadding(self.calls * times, self.credit * times, self.simulate_fee)


NO_PADDING = GasPadding(calls=0, credit=0)
# two gas calls at zero fee in the simulation, both credited
STANDARD_PADDING = GasPadding(calls=2, credit=2 * MIN_TXN_FEE, simulate_fee=0)
# add stake simulates its gas calls at their normal fee and credits one of them
STAKE_PADDING = GasPadding(calls=2, credit=MIN_TXN_FEE, simulate_fee=None)


def derive_extra_fee(app_budget_added: int, credit: int, fee_unit: int = MIN_TXN_FEE) -> int:
    """
    Extra fee needed to buy the budget a simulated group pulled in.

    ``ceil((budget + 699) / 700) * fee_unit - credit``. A negative result
    means the padding credit is wrong and is raised, never clamped.
    """
    per_unit = OPCODE_BUDGET_PER_FEE_UNIT
    fee_units = -(-(app_budget_added + per_unit - 1) // per_unit)
    extra_fee = fee_units * fee_unit - credit
    if extra_fee < 0:
        raise FeeAccountingError(
            f"derived extra fee {extra_fee} is negative "
            f"(budget {app_budget_added}, padding credit {credit})"
        )
    return extra_fee


def required_balance(group: list[Txn], sender: str, min_fee: int = MIN_TXN_FEE) -> int:
    """Payments the sender makes plus every fee of the group."""
    payments = sum(
        txn.amount for txn in group if txn.type == TxnType.PAYMENT and txn.sender == sender
    )
    fees = sum(txn.fee(min_fee) for txn in group)
    return payments + fees


class ActionPhase(str, Enum):
    BUILT = "built"
    SIMULATED = "simulated"
    FEE_DERIVED = "fee_derived"
    BALANCE_CHECKED = "balance_checked"
    COMMITTED = "committed"
    FAILED = "failed"


_TRANSITIONS = {
    ActionPhase.BUILT: {ActionPhase.SIMULATED, ActionPhase.BALANCE_CHECKED},
    ActionPhase.SIMULATED: {ActionPhase.FEE_DERIVED},
    ActionPhase.FEE_DERIVED: {ActionPhase.BALANCE_CHECKED},
    ActionPhase.BALANCE_CHECKED: {ActionPhase.COMMITTED},
    ActionPhase.COMMITTED: set(),
    ActionPhase.FAILED: set(),
}


@dataclass
class ActionRun:
    """Phase tracker for one invocation. Failed runs are not resumable."""

    label: str
    phase: ActionPhase = ActionPhase.BUILT
    history: list[ActionPhase] = field(default_factory=lambda: [ActionPhase.BUILT])

    def advance(self, phase: ActionPhase) -> None:
        if phase is not ActionPhase.FAILED and phase not in _TRANSITIONS[self.phase]:
            raise RuntimeError(f"{self.label}: cannot go from {self.phase.value} to {phase.value}")
        if phase is ActionPhase.FAILED and self.phase is ActionPhase.COMMITTED:
            raise RuntimeError(f"{self.label}: already committed")
        self.phase = phase
        self.history.append(phase)
        logger.info(f"{self.label}: {phase.value}")


@dataclass
class ActionPlan:
    """
    How to build one action's group.

    ``build(simulate, extra_fee)`` returns the group for either phase; in
    the simulate phase the main call should carry ``SIMULATE_STATIC_FEE``
    and padding its simulate fee, in the commit phase the main call carries
    ``extra_fee``. ``opt_in`` is appended identically to both groups.
    ``return_index`` selects the method return to hand back, ``parse``
    converts it.
    """

    label: str
    build: Callable[[bool, int], list[Txn]]
    padding: GasPadding = NO_PADDING
    opt_in: Txn | None = None
    return_index: int | None = None
    parse: Callable[[Any], Any] | None = None

    def group(self, simulate: bool, extra_fee: int = 0) -> list[Txn]:
        txns = list(self.build(simulate, extra_fee))
        if self.opt_in is not None:
            txns.append(self.opt_in)
        return txns


def main_call_fees(simulate: bool, extra_fee: int) -> dict[str, Any]:
    """Fee keyword arguments for an action's main method call."""
    if simulate:
        return {"static_fee": SIMULATE_STATIC_FEE}
    return {"extra_fee": extra_fee}


@dataclass
class ActionOutcome:
    label: str
    run: ActionRun
    extra_fee: int
    required_balance: int
    send_result: SendResult
    value: Any = None


class FeeSimulatingComposer:
    """Runs actions through simulate, fee derivation, balance check and commit."""

    def __init__(
        self,
        gateway: LedgerGateway,
        algod: AlgodClient,
        balance_checker: BalanceChecker | None = None,
    ):
        self.gateway = gateway
        self.algod = algod
        self.balance_checker = balance_checker or BalanceChecker(algod)

    async def execute(self, plan: ActionPlan, sender: str, signer: Signer) -> ActionOutcome:
        """Simulate, derive the fee, check the balance, then sign and submit."""
        run = ActionRun(plan.label)
        try:
            fee_params = await self.algod.get_suggested_fees()
            min_fee = fee_params.min_fee or MIN_TXN_FEE

            simulate_group = plan.group(simulate=True)
            simulation = await self.gateway.simulate(
                simulate_group, skip_signatures=True, allow_unnamed_resources=True
            )
            if simulation.failure_message:
                raise SimulationFailed(simulation.failure_message)
            run.advance(ActionPhase.SIMULATED)

            extra_fee = derive_extra_fee(simulation.app_budget_added, plan.padding.credit, min_fee)
            run.advance(ActionPhase.FEE_DERIVED)

            commit_group = plan.group(simulate=False, extra_fee=extra_fee)
            required = required_balance(commit_group, sender, min_fee)
            await self.balance_checker.check(sender, required, plan.label)
            run.advance(ActionPhase.BALANCE_CHECKED)

            result = await self.gateway.send(commit_group, signer, populate_resources=True)
            run.advance(ActionPhase.COMMITTED)
        except Exception:
            run.advance(ActionPhase.FAILED)
            raise

        return ActionOutcome(
            label=plan.label,
            run=run,
            extra_fee=extra_fee,
            required_balance=required,
            send_result=result,
            value=self._extract(plan, result),
        )

    async def execute_fixed(
        self,
        label: str,
        group: list[Txn],
        sender: str,
        signer: Signer,
        return_index: int | None = None,
    ) -> ActionOutcome:
        """Send a group whose fees are known up front, after the balance check."""
        run = ActionRun(label)
        try:
            required = required_balance(group, sender)
            await self.balance_checker.check(sender, required, label)
            run.advance(ActionPhase.BALANCE_CHECKED)

            result = await self.gateway.send(group, signer, populate_resources=True)
            run.advance(ActionPhase.COMMITTED)
        except Exception:
            run.advance(ActionPhase.FAILED)
            raise

        plan = ActionPlan(label=label, build=lambda *_: group, return_index=return_index)
        return ActionOutcome(
            label=label,
            run=run,
            extra_fee=sum(txn.extra_fee for txn in group),
            required_balance=required,
            send_result=result,
            value=self._extract(plan, result),
        )

    @staticmethod
    def _extract(plan: ActionPlan, result: SendResult) -> Any:
        if plan.return_index is None:
            return None
        if not 0 <= plan.return_index < len(result.returns):
            raise UnreadableReturn(
                plan.label,
                result,
                f"return {plan.return_index} is missing ({len(result.returns)} returned)",
            )
        value = result.returns[plan.return_index]
        if plan.parse is None:
            return value
        try:
            return plan.parse(value)
        except (LookupError, TypeError, ValueError) as e:
            raise UnreadableReturn(
                plan.label, result, f"return {value!r} is malformed: {e}"
            ) from e
