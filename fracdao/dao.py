"""
FractionalDAO: host-facing entry point.

Wires a FractionLedger, its VotingPowerAggregator and a GovernanceEngine
over one clock and one value vault, and exposes the hooks a host calls:

    on_asset_minted        creation hook, once per asset
    set_asset_eligibility  administrator-only governance toggle
    deposit_royalty / claim_royalty
    transfer / delegate / rage_quit
    propose / cast_vote / execute / cancel

plus read-only queries. The host authenticates callers and serializes
calls; each call here runs to completion or fails without effect.
"""

from typing import Any, Dict, List, Optional

from .logger import get_logger, set_log_level
from .clock import make_clock
from .config.loader import DAOConfig
from .fractions.ledger import AssetRecord, FractionLedger, FractionPosition
from .fractions.payments import InMemoryVault, ValueTransfer
from .governance.engine import GovernanceEngine, VoteRecord
from .governance.power import VotingPowerAggregator
from .governance.proposals import Proposal, ProposalState

logger = get_logger(__name__)


class FractionalDAO:
    """Fraction ledger plus proposal lifecycle behind one interface."""

    def __init__(
        self,
        admin: str,
        config: Optional[DAOConfig] = None,
        clock=None,
        vault: Optional[ValueTransfer] = None,
    ):
        self.config = config or DAOConfig()
        self.config.validate()
        set_log_level(self.config.logging.level)

        self.clock = clock if clock is not None else make_clock(
            self.config.clock.mode, self.config.clock.start
        )
        self.vault = vault if vault is not None else InMemoryVault()
        self.ledger = FractionLedger(clock=self.clock, vault=self.vault)
        self.power = VotingPowerAggregator(self.ledger)
        self.governance = GovernanceEngine(
            self.ledger,
            self.power,
            self.clock,
            admins=[admin],
            config=self.config.governance,
        )
        logger.info(
            f"FractionalDAO ready (admin={admin}, clock={self.clock!r}, "
            f"tally={self.config.governance.tally_mode})"
        )

    # ── Hooks ─────────────────────────────────────────────────────────

    def on_asset_minted(
        self,
        asset_id: int,
        holder: str,
        total_fractions: int,
        royalty_rate: int = 0,
        rage_quit_eligible: bool = False,
        *,
        name: str = "",
        description: str = "",
    ) -> AssetRecord:
        return self.ledger.create_asset(
            asset_id,
            holder,
            total_fractions,
            royalty_rate,
            rage_quit_eligible,
            name=name,
            description=description,
        )

    def set_asset_eligibility(self, caller: str, asset_id: int, eligible: bool):
        return self.governance.set_asset_eligibility(caller, asset_id, eligible)

    def grant_admin(self, caller: str, holder: str):
        self.governance.grant_admin(caller, holder)

    def revoke_admin(self, caller: str, holder: str):
        self.governance.revoke_admin(caller, holder)

    # ── Ledger operations ─────────────────────────────────────────────

    def transfer(self, asset_id: int, sender: str, recipient: str, amount: int):
        return self.ledger.transfer(asset_id, sender, recipient, amount)

    def delegate(self, asset_id: int, delegator: str, delegate: str, amount: int):
        return self.ledger.delegate(asset_id, delegator, delegate, amount)

    def rage_quit(self, holder: str) -> List[int]:
        return self.ledger.rage_quit(holder)

    def deposit_royalty(self, asset_id: int, amount: int, depositor: str = ""):
        return self.ledger.deposit_royalty(asset_id, amount, depositor)

    def claim_royalty(self, asset_id: int, holder: str) -> int:
        return self.ledger.claim_royalty(asset_id, holder)

    # ── Governance operations ─────────────────────────────────────────

    def propose(self, asset_id: int, proposer: str, description: str) -> Proposal:
        return self.governance.propose(asset_id, proposer, description)

    def cast_vote(self, proposal_id: int, support, asset_id: int, voter: str) -> VoteRecord:
        return self.governance.cast_vote(proposal_id, support, asset_id, voter)

    def execute(self, proposal_id: int):
        return self.governance.execute(proposal_id)

    def cancel(self, proposal_id: int, caller: str):
        return self.governance.cancel(proposal_id, caller)

    # ── Queries ───────────────────────────────────────────────────────

    def asset_info(self, asset_id: int) -> AssetRecord:
        return self.ledger.asset(asset_id)

    def position(self, asset_id: int, holder: str) -> FractionPosition:
        return self.ledger.position(asset_id, holder)

    def voting_power(self, holder: str) -> int:
        return self.power.power_of(holder)

    def proposal(self, proposal_id: int) -> Dict[str, Any]:
        return self.governance.proposal_details(proposal_id)

    def proposal_state(self, proposal_id: int) -> ProposalState:
        return self.governance.state(proposal_id)

    def has_voted(self, proposal_id: int, holder: str) -> bool:
        return self.governance.has_voted(proposal_id, holder)

    @property
    def proposal_count(self) -> int:
        return self.governance.proposal_count

    def to_dict(self) -> Dict[str, Any]:
        return {
            "config": self.config.to_dict(),
            "ledger": self.ledger.to_dict(),
            "votingPower": self.power.to_dict(),
            "governance": self.governance.to_dict(),
        }

    def __repr__(self) -> str:
        return f"<FractionalDAO {self.ledger!r} {self.governance!r}>"
