"""
Voting Power Aggregator

A holder's voting power is the sum of their position amounts, across
every asset, over positions that have not voted or exited.

The aggregate is maintained incrementally: the ledger publishes a signed
delta whenever a counted balance changes, so a query never scans the
asset set. ``recompute`` performs the full scan and is kept for
reconciliation.
"""

from typing import Dict

from ..logger import get_logger
from ..exceptions import InvariantViolationError
from ..fractions.ledger import FractionLedger

logger = get_logger(__name__)


class VotingPowerAggregator:
    """Per-holder voting power, kept in step with a FractionLedger."""

    def __init__(self, ledger: FractionLedger):
        self._ledger = ledger
        self._power: Dict[str, int] = {}
        # Seed from whatever the ledger already holds
        for holder in ledger.holders():
            self.recompute(holder)
        ledger.add_power_listener(self._apply_delta)

    def _apply_delta(self, holder: str, delta: int):
        updated = self._power.get(holder, 0) + delta
        if updated < 0:
            raise InvariantViolationError(
                f"Voting power of {holder} would go negative ({updated})"
            )
        self._power[holder] = updated

    def power_of(self, holder: str) -> int:
        """Cached voting power; no recomputation."""
        return self._power.get(holder, 0)

    def recompute(self, holder: str) -> int:
        """Rebuild *holder*'s power from the ledger positions and store it."""
        power = sum(
            pos.amount for pos in self._ledger.positions_of(holder)
            if not pos.has_acted
        )
        cached = self._power.get(holder)
        if cached is not None and cached != power:
            logger.warning(
                f"Voting power drift for {holder}: cached={cached} actual={power}"
            )
        self._power[holder] = power
        return power

    def total_power(self) -> int:
        return sum(self._power.values())

    def to_dict(self) -> Dict[str, int]:
        return {h: p for h, p in self._power.items() if p > 0}

    def __repr__(self) -> str:
        return f"<VotingPowerAggregator holders={len(self._power)}>"
