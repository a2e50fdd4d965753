"""
FracDAO Governance

Provides:
  - Proposal / ProposalState                      (proposals.py)
  - VotingPowerAggregator                         (power.py)
  - GovernanceEngine / Vote / VoteRecord          (engine.py)
"""

from .proposals import (
    AlreadyVotedError,
    AssetNotEligibleError,
    InsufficientVotingPowerError,
    Proposal,
    ProposalLifecycleError,
    ProposalNotFoundError,
    ProposalState,
    TERMINAL_STATES,
)
from .power import VotingPowerAggregator
from .engine import (
    EligibilityChangedEvent,
    GovernanceEngine,
    ProposalCanceledEvent,
    ProposalCreatedEvent,
    ProposalExecutedEvent,
    Vote,
    VoteRecord,
)

__all__ = [
    # Proposals
    "AlreadyVotedError",
    "AssetNotEligibleError",
    "InsufficientVotingPowerError",
    "Proposal",
    "ProposalLifecycleError",
    "ProposalNotFoundError",
    "ProposalState",
    "TERMINAL_STATES",
    # Voting power
    "VotingPowerAggregator",
    # Engine
    "EligibilityChangedEvent",
    "GovernanceEngine",
    "ProposalCanceledEvent",
    "ProposalCreatedEvent",
    "ProposalExecutedEvent",
    "Vote",
    "VoteRecord",
]
