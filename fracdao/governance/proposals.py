"""
Governance Proposals

Defines the proposal record and its lifecycle states. A proposal's state
is never stored: it is derived from its flags, its tally and the current
clock reading every time it is asked for.

    PENDING → ACTIVE → DEFEATED | SUCCEEDED → EXECUTED
    PENDING | ACTIVE → CANCELED
"""

import time
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Dict, Set

from ..exceptions import (
    AlreadyDoneError,
    InvariantViolationError,
    NotFoundError,
)


# ══════════════════════════════════════════════════════════════════════
#  EXCEPTIONS
# ══════════════════════════════════════════════════════════════════════

class ProposalNotFoundError(NotFoundError):
    """No proposal with that id."""


class ProposalLifecycleError(InvariantViolationError):
    """Operation not allowed in the proposal's current state."""


class AssetNotEligibleError(InvariantViolationError):
    """Asset is not enabled for governance."""


class InsufficientVotingPowerError(InvariantViolationError):
    """Voter or proposer has no voting power."""


class AlreadyVotedError(AlreadyDoneError):
    """Voter already cast a vote on this proposal."""


# ══════════════════════════════════════════════════════════════════════
#  STATES
# ══════════════════════════════════════════════════════════════════════

class ProposalState(IntEnum):
    """Lifecycle stage."""
    PENDING = 0     # Voting delay not yet elapsed
    ACTIVE = 1      # Voting window open
    CANCELED = 2    # Canceled by proposer or administrator
    DEFEATED = 3    # Window closed; lost, tied or missed quorum
    SUCCEEDED = 4   # Window closed; won with quorum
    EXECUTED = 5    # Succeeded and executed


TERMINAL_STATES = frozenset({
    ProposalState.CANCELED,
    ProposalState.DEFEATED,
    ProposalState.EXECUTED,
})


# ══════════════════════════════════════════════════════════════════════
#  PROPOSAL
# ══════════════════════════════════════════════════════════════════════

@dataclass
class Proposal:
    """
    Governance proposal.

    Fields:
        id:             Monotonic identifier, starting at 1
        proposer:       Holder that created the proposal
        asset_id:       Eligible asset the proposal was raised against
        description:    Free-form description
        start_time:     Creation time + voting delay (clock units)
        end_time:       start_time + voting period
        quorum:         Minimum for_votes needed, fixed at creation
        for_votes:      Accumulated voting power in favour
        against_votes:  Accumulated voting power against
        executed:       Execute has run
        canceled:       Cancel has run
        voters:         Holders that already voted on this proposal
    """
    id: int
    proposer: str
    asset_id: int
    description: str
    start_time: int
    end_time: int
    quorum: int
    for_votes: int = 0
    against_votes: int = 0
    executed: bool = False
    canceled: bool = False
    voters: Set[str] = field(default_factory=set)
    created_at: float = field(default_factory=time.time)

    def state_at(self, now: int) -> ProposalState:
        """Derive the lifecycle state at clock reading *now*."""
        if self.canceled:
            return ProposalState.CANCELED
        if self.executed:
            return ProposalState.EXECUTED
        if now <= self.start_time:
            return ProposalState.PENDING
        if now <= self.end_time:
            return ProposalState.ACTIVE
        # A tie is a defeat
        if self.for_votes <= self.against_votes or self.for_votes < self.quorum:
            return ProposalState.DEFEATED
        return ProposalState.SUCCEEDED

    def has_voted(self, holder: str) -> bool:
        return holder in self.voters

    def to_dict(self, now: int) -> Dict[str, Any]:
        return {
            "id": self.id,
            "proposer": self.proposer,
            "assetId": self.asset_id,
            "description": self.description,
            "startTime": self.start_time,
            "endTime": self.end_time,
            "quorum": self.quorum,
            "forVotes": self.for_votes,
            "againstVotes": self.against_votes,
            "executed": self.executed,
            "canceled": self.canceled,
            "voterCount": len(self.voters),
            "state": self.state_at(now).name,
            "createdAt": self.created_at,
        }

    def __repr__(self) -> str:
        return (
            f"<Proposal #{self.id} asset={self.asset_id} "
            f"for={self.for_votes} against={self.against_votes}>"
        )
