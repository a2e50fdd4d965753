"""
Value-transfer side channel used for royalty deposits and payouts.

The ledger only does accounting; actual value moves through a
``ValueTransfer`` implementation supplied by the host.
"""

from typing import Dict, Protocol

from ..exceptions import InvalidArgumentError, InvariantViolationError
from ..logger import get_logger

logger = get_logger(__name__)


class ValueTransfer(Protocol):
    def receive(self, sender: str, amount: int) -> None: ...

    def send(self, recipient: str, amount: int) -> None: ...


class InMemoryVault:
    """
    Value holder that records deposits and payouts in memory.

    Sending more than the vault holds is refused, so a ledger bug that
    over-pays surfaces as an error instead of silently minting value.
    """

    def __init__(self):
        self._balance = 0
        self._deposited: Dict[str, int] = {}
        self._paid: Dict[str, int] = {}

    @property
    def balance(self) -> int:
        return self._balance

    def deposited_by(self, sender: str) -> int:
        return self._deposited.get(sender, 0)

    def paid_to(self, recipient: str) -> int:
        return self._paid.get(recipient, 0)

    def receive(self, sender: str, amount: int) -> None:
        if amount <= 0:
            raise InvalidArgumentError("Deposit amount must be positive")
        self._balance += amount
        self._deposited[sender] = self._deposited.get(sender, 0) + amount
        logger.debug(f"Vault received {amount} from {sender}")

    def send(self, recipient: str, amount: int) -> None:
        if amount <= 0:
            raise InvalidArgumentError("Payout amount must be positive")
        if amount > self._balance:
            raise InvariantViolationError(
                f"Vault balance {self._balance} < payout {amount}"
            )
        self._balance -= amount
        self._paid[recipient] = self._paid.get(recipient, 0) + amount
        logger.debug(f"Vault sent {amount} → {recipient}")

    def to_dict(self):
        return {
            "balance": self._balance,
            "deposited": dict(self._deposited),
            "paid": dict(self._paid),
        }

    def __repr__(self) -> str:
        return f"<InMemoryVault balance={self._balance}>"
