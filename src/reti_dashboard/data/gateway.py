"""Boundary to the ledger SDK: transaction intents and the gateway protocol.

Encoding, signing and wire submission live behind :class:`LedgerGateway`.
The engine only describes *what* goes into a group (:class:`Txn`) and reads
back what simulation or submission reports.
"""

from enum import Enum
from importlib import import_module
from typing import Any, Protocol, Sequence, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field

from ..core.contracts import MIN_TXN_FEE


class TxnType(str, Enum):
    PAYMENT = "pay"
    ASSET_TRANSFER = "axfer"
    APP_CALL = "appl"


class CallMode(str, Enum):
    SIMULATE = "simulate"
    SEND = "send"


class Txn(BaseModel):
    """One transaction in a group, before encoding.

    ``method`` names an ABI method; a plain application call leaves it unset
    and passes raw ``app_args`` instead. ``static_fee`` pins the fee exactly,
    otherwise the fee is the network minimum plus ``extra_fee``.
    """

    model_config = ConfigDict(frozen=True)

    type: TxnType
    sender: str
    receiver: str | None = None
    amount: int = 0
    asset_id: int | None = None
    app_id: int | None = None
    method: str | None = None
    args: dict[str, Any] = Field(default_factory=dict)
    app_args: list[bytes] = Field(default_factory=list)
    note: str | None = None
    static_fee: int | None = None
    extra_fee: int = 0
    validity_window: int | None = None

    def fee(self, min_fee: int = MIN_TXN_FEE) -> int:
        if self.static_fee is not None:
            return self.static_fee
        return min_fee + self.extra_fee


def payment(sender: str, receiver: str, amount: int, **kwargs: Any) -> Txn:
    return Txn(type=TxnType.PAYMENT, sender=sender, receiver=receiver, amount=amount, **kwargs)


def asset_opt_in(sender: str, asset_id: int, **kwargs: Any) -> Txn:
    """Zero-amount self transfer enabling receipt of an asset."""
    return Txn(
        type=TxnType.ASSET_TRANSFER,
        sender=sender,
        receiver=sender,
        amount=0,
        asset_id=asset_id,
        **kwargs,
    )


def method_call(sender: str, app_id: int, method: str, **kwargs: Any) -> Txn:
    return Txn(type=TxnType.APP_CALL, sender=sender, app_id=app_id, method=method, **kwargs)


class SimulateResult(BaseModel):
    """What the node reports for a simulated group."""

    failure_message: str | None = None
    app_budget_added: int = 0
    app_budget_consumed: int = 0
    returns: list[Any] = Field(default_factory=list)


class SendResult(BaseModel):
    """What the node reports once a group is confirmed."""

    tx_ids: list[str] = Field(default_factory=list)
    confirmed_round: int | None = None
    returns: list[Any] = Field(default_factory=list)


@runtime_checkable
class Signer(Protocol):
    """Wallet signing interface, opaque to the engine."""

    async def sign(self, group: Sequence[Any]) -> Sequence[bytes]: ...


class LedgerGateway(Protocol):
    """Program calls, group simulation and submission."""

    async def call_method(
        self,
        app_id: int,
        method: str,
        args: dict[str, Any] | None = None,
        mode: CallMode = CallMode.SIMULATE,
        sender: str | None = None,
        extra_fee: int = 0,
    ) -> Any:
        """Call one ABI method and return its decoded return value."""
        ...

    async def simulate(
        self,
        group: Sequence[Txn],
        *,
        skip_signatures: bool = True,
        allow_unnamed_resources: bool = True,
    ) -> SimulateResult: ...

    async def send(
        self,
        group: Sequence[Txn],
        signer: Signer,
        *,
        populate_resources: bool = True,
    ) -> SendResult: ...

    async def read_global_state(self, app_id: int) -> dict[str, Any]: ...

    async def read_box(self, app_id: int, name: str) -> Any: ...

    def app_address(self, app_id: int) -> str: ...


def load_gateway(path: str) -> LedgerGateway:
    """Instantiate a gateway from a ``"package.module:factory"`` path."""
    if not path or ":" not in path:
        raise ValueError(
            "RETI_LEDGER_GATEWAY must be set to 'package.module:factory'"
        )
    module_name, attr = path.split(":", 1)
    factory = getattr(import_module(module_name), attr)
    return factory()
