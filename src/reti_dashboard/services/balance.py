"""Pre-flight check that an account can pay for an operation group."""

import logging

from ..core.errors import InsufficientBalance
from ..data.algod import AlgodClient

logger = logging.getLogger(__name__)


class BalanceChecker:
    """Rejects operation groups the sender cannot afford."""

    def __init__(self, algod: AlgodClient):
        self.algod = algod

    async def check(self, address: str, required: int, label: str) -> None:
        """
        Raise InsufficientBalance when spendable balance < required.

        Spendable balance is the account total minus its minimum balance
        requirement, read fresh from the node (never from cache).
        """
        available = await self.algod.get_account_balance(address, available_balance=True)
        if available < required:
            logger.info(f"{label}: {address} has {available}, needs {required}")
            raise InsufficientBalance(required=required, available=available, label=label)
