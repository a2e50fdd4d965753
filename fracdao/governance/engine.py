"""
Proposal Lifecycle Engine

Implements:
  - Administrator roles and the per-asset governance eligibility set
  - Proposal creation by holders with voting power
  - Time-boxed voting that spends one asset position per vote
  - Execution of succeeded proposals, cancellation of open ones

Tally weight depends on the configured tally mode:
  - aggregate: the voter's total voting power across every asset
  - asset:     only the balance of the asset position spent on the vote
"""

import time
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Iterable, List, Optional, Set

from ..logger import get_logger
from ..config.loader import GovernanceConfig
from ..constants import TALLY_ASSET, VOTE_AGAINST, VOTE_FOR
from ..exceptions import (
    InvalidArgumentError,
    InvariantViolationError,
    UnauthorizedError,
)
from ..fractions.ledger import FractionLedger, is_null_holder
from .power import VotingPowerAggregator
from .proposals import (
    AlreadyVotedError,
    AssetNotEligibleError,
    InsufficientVotingPowerError,
    Proposal,
    ProposalLifecycleError,
    ProposalNotFoundError,
    ProposalState,
)

logger = get_logger(__name__)


# ══════════════════════════════════════════════════════════════════════
#  VOTE DATA / EVENTS
# ══════════════════════════════════════════════════════════════════════

class Vote:
    """Vote support constants."""
    AGAINST = VOTE_AGAINST
    FOR = VOTE_FOR

    _NAMES = {VOTE_AGAINST: "AGAINST", VOTE_FOR: "FOR"}

    @classmethod
    def normalize(cls, support) -> int:
        if isinstance(support, bool):
            return cls.FOR if support else cls.AGAINST
        if isinstance(support, int) and support in cls._NAMES:
            return int(support)
        raise InvalidArgumentError(f"Invalid vote support: {support!r}")

    @classmethod
    def name(cls, support: int) -> str:
        return cls._NAMES.get(support, "UNKNOWN")


@dataclass(frozen=True)
class VoteRecord:
    """A vote cast on a proposal."""
    proposal_id: int
    voter: str
    asset_id: int
    support: int
    weight: int          # Added to the tally
    asset_votes: int     # Balance of the spent asset position
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "proposalId": self.proposal_id,
            "voter": self.voter,
            "assetId": self.asset_id,
            "support": Vote.name(self.support),
            "weight": self.weight,
            "assetVotes": self.asset_votes,
            "timestamp": self.timestamp,
        }


@dataclass(frozen=True)
class ProposalCreatedEvent:
    proposal_id: int
    proposer: str
    asset_id: int
    start_time: int
    end_time: int
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event": "ProposalCreated",
            "proposalId": self.proposal_id,
            "proposer": self.proposer,
            "assetId": self.asset_id,
            "startTime": self.start_time,
            "endTime": self.end_time,
            "timestamp": self.timestamp,
        }


@dataclass(frozen=True)
class ProposalExecutedEvent:
    proposal_id: int
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return {"event": "ProposalExecuted", "proposalId": self.proposal_id, "timestamp": self.timestamp}


@dataclass(frozen=True)
class ProposalCanceledEvent:
    proposal_id: int
    canceled_by: str
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event": "ProposalCanceled",
            "proposalId": self.proposal_id,
            "canceledBy": self.canceled_by,
            "timestamp": self.timestamp,
        }


@dataclass(frozen=True)
class EligibilityChangedEvent:
    asset_id: int
    eligible: bool
    changed_by: str
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event": "EligibilityChanged",
            "assetId": self.asset_id,
            "eligible": self.eligible,
            "changedBy": self.changed_by,
            "timestamp": self.timestamp,
        }


# ══════════════════════════════════════════════════════════════════════
#  GOVERNANCE ENGINE
# ══════════════════════════════════════════════════════════════════════

class GovernanceEngine:
    """
    Proposal lifecycle state machine over a fraction ledger.

    Responsibilities:
        - Administrator set and asset eligibility
        - Proposal creation and time-boxed voting
        - Execution and cancellation
        - Lazy state derivation from the clock
    """

    def __init__(
        self,
        ledger: FractionLedger,
        power: VotingPowerAggregator,
        clock,
        admins: Iterable[str],
        config: Optional[GovernanceConfig] = None,
    ):
        """
        Args:
            ledger: Fraction ledger holding the positions votes are spent from
            power:  Aggregator kept in step with *ledger*
            clock:  Object with ``now()``; units must match the config
            admins: Initial administrators
            config: Voting delay / period / quorum / tally mode
        """
        self._ledger = ledger
        self._power = power
        self._clock = clock
        self._config = config or GovernanceConfig()
        self._config.validate()

        self._admins: Set[str] = set()
        for admin in admins:
            if is_null_holder(admin):
                raise InvalidArgumentError("Administrator cannot be the null holder")
            self._admins.add(admin)
        if not self._admins:
            raise InvalidArgumentError("At least one administrator is required")

        self._eligible: Set[int] = set()
        self._proposals: Dict[int, Proposal] = {}
        self._votes: Dict[int, List[VoteRecord]] = {}
        self._events: List[Any] = []

    # ── Properties ────────────────────────────────────────────────────

    @property
    def config(self) -> GovernanceConfig:
        return self._config

    @property
    def events(self) -> List[Any]:
        return list(self._events)

    @property
    def proposal_count(self) -> int:
        return len(self._proposals)

    def now(self) -> int:
        return self._clock.now()

    # ── Administration ────────────────────────────────────────────────

    def is_admin(self, holder: str) -> bool:
        return holder in self._admins

    def admins(self) -> List[str]:
        return sorted(self._admins)

    def _require_admin(self, caller: str):
        if caller not in self._admins:
            raise UnauthorizedError(f"{caller} is not an administrator")

    def grant_admin(self, caller: str, holder: str):
        self._require_admin(caller)
        if is_null_holder(holder):
            raise InvalidArgumentError("Administrator cannot be the null holder")
        self._admins.add(holder)
        logger.warning(f"Administrator granted: {holder} (by {caller})")

    def revoke_admin(self, caller: str, holder: str):
        self._require_admin(caller)
        if holder not in self._admins:
            raise InvalidArgumentError(f"{holder} is not an administrator")
        if len(self._admins) == 1:
            raise InvariantViolationError("Cannot revoke the last administrator")
        self._admins.discard(holder)
        logger.warning(f"Administrator revoked: {holder} (by {caller})")

    # ── Eligibility ───────────────────────────────────────────────────

    def set_asset_eligibility(self, caller: str, asset_id: int, eligible: bool) -> EligibilityChangedEvent:
        """Enable or disable *asset_id* for governance use (administrators only)."""
        self._require_admin(caller)
        self._ledger.asset(asset_id)
        if eligible:
            self._eligible.add(asset_id)
        else:
            self._eligible.discard(asset_id)
        event = EligibilityChangedEvent(
            asset_id=asset_id, eligible=bool(eligible), changed_by=caller, timestamp=self.now(),
        )
        self._events.append(event)
        logger.info(f"asset #{asset_id} governance eligibility → {bool(eligible)}")
        return event

    def is_eligible(self, asset_id: int) -> bool:
        return asset_id in self._eligible

    def _require_eligible(self, asset_id: int):
        if asset_id not in self._eligible:
            raise AssetNotEligibleError(f"Asset #{asset_id} is not eligible for governance")

    # ── Lookup ────────────────────────────────────────────────────────

    def _require_proposal(self, proposal_id: int) -> Proposal:
        if not isinstance(proposal_id, int) or isinstance(proposal_id, bool) or proposal_id < 1:
            raise InvalidArgumentError(f"Proposal id out of range: {proposal_id!r}")
        proposal = self._proposals.get(proposal_id)
        if proposal is None:
            raise ProposalNotFoundError(f"Proposal #{proposal_id} does not exist")
        return proposal

    def proposal(self, proposal_id: int) -> Proposal:
        """Snapshot of a proposal (use ``state`` for its derived state)."""
        proposal = self._require_proposal(proposal_id)
        return replace(proposal, voters=set(proposal.voters))

    def state(self, proposal_id: int) -> ProposalState:
        return self._require_proposal(proposal_id).state_at(self.now())

    def has_voted(self, proposal_id: int, holder: str) -> bool:
        return self._require_proposal(proposal_id).has_voted(holder)

    def votes(self, proposal_id: int) -> List[VoteRecord]:
        self._require_proposal(proposal_id)
        return list(self._votes.get(proposal_id, []))

    def proposal_details(self, proposal_id: int) -> Dict[str, Any]:
        return self._require_proposal(proposal_id).to_dict(self.now())

    # ── Propose ───────────────────────────────────────────────────────

    def propose(self, asset_id: int, proposer: str, description: str) -> Proposal:
        """
        Open a proposal against an eligible asset.

        The proposer needs non-zero voting power. Voting opens after the
        configured delay and lasts for the configured period.
        """
        self._require_eligible(asset_id)
        if self._power.power_of(proposer) == 0:
            raise InsufficientVotingPowerError(f"{proposer} has no voting power")

        now = self.now()
        start = now + self._config.voting_delay
        proposal = Proposal(
            id=len(self._proposals) + 1,
            proposer=proposer,
            asset_id=asset_id,
            description=description,
            start_time=start,
            end_time=start + self._config.voting_period,
            quorum=self._config.quorum,
            created_at=now,
        )
        self._proposals[proposal.id] = proposal
        self._votes[proposal.id] = []

        self._events.append(ProposalCreatedEvent(
            proposal_id=proposal.id,
            proposer=proposer,
            asset_id=asset_id,
            start_time=proposal.start_time,
            end_time=proposal.end_time,
            timestamp=now,
        ))
        logger.info(
            f"proposal #{proposal.id} created by {proposer} on asset #{asset_id} "
            f"(voting {proposal.start_time}..{proposal.end_time})"
        )
        return self.proposal(proposal.id)

    # ── Cast vote ─────────────────────────────────────────────────────

    def cast_vote(self, proposal_id: int, support, asset_id: int, voter: str) -> VoteRecord:
        """
        Vote on an active proposal, spending *voter*'s position in *asset_id*.

        Every check runs before the position is marked, so a rejected vote
        leaves both the ledger and the tally untouched.
        """
        proposal = self._require_proposal(proposal_id)
        support = Vote.normalize(support)
        self._require_eligible(asset_id)
        state = proposal.state_at(self.now())
        if state != ProposalState.ACTIVE:
            raise ProposalLifecycleError(
                f"proposal #{proposal_id} is not active (state={state.name})"
            )
        if proposal.has_voted(voter):
            raise AlreadyVotedError(f"{voter} already voted on proposal #{proposal_id}")

        position = self._ledger.validate_vote_mark(asset_id, voter)
        # Read before the mark: the spent position still counts toward this vote
        if self._config.tally_mode == TALLY_ASSET:
            weight = position.amount
        else:
            weight = self._power.power_of(voter)
        if weight == 0:
            raise InsufficientVotingPowerError(f"{voter} has no voting power")

        asset_votes = self._ledger.mark_acted_for_vote(asset_id, voter)
        if support == Vote.FOR:
            proposal.for_votes += weight
        else:
            proposal.against_votes += weight
        proposal.voters.add(voter)

        record = VoteRecord(
            proposal_id=proposal_id,
            voter=voter,
            asset_id=asset_id,
            support=support,
            weight=weight,
            asset_votes=asset_votes,
            timestamp=self.now(),
        )
        self._votes[proposal_id].append(record)
        self._events.append(record)
        logger.debug(
            f"Vote: {voter} → {Vote.name(support)} on proposal #{proposal_id} "
            f"(weight={weight}, asset #{asset_id} votes={asset_votes})"
        )
        return record

    # ── Execute / cancel ──────────────────────────────────────────────

    def execute(self, proposal_id: int) -> ProposalExecutedEvent:
        """Mark a succeeded proposal as executed."""
        proposal = self._require_proposal(proposal_id)
        state = proposal.state_at(self.now())
        if state != ProposalState.SUCCEEDED:
            raise ProposalLifecycleError(
                f"proposal #{proposal_id} cannot be executed (state={state.name})"
            )
        proposal.executed = True
        event = ProposalExecutedEvent(proposal_id=proposal_id, timestamp=self.now())
        self._events.append(event)
        logger.info(
            f"proposal #{proposal_id} executed "
            f"(for={proposal.for_votes}, against={proposal.against_votes})"
        )
        return event

    def cancel(self, proposal_id: int, caller: str) -> ProposalCanceledEvent:
        """Cancel a pending or active proposal (proposer or administrator)."""
        proposal = self._require_proposal(proposal_id)
        state = proposal.state_at(self.now())
        if state not in (ProposalState.PENDING, ProposalState.ACTIVE):
            raise ProposalLifecycleError(
                f"proposal #{proposal_id} cannot be canceled (state={state.name})"
            )
        if caller != proposal.proposer and caller not in self._admins:
            raise UnauthorizedError(
                f"{caller} is neither the proposer nor an administrator"
            )
        proposal.canceled = True
        event = ProposalCanceledEvent(
            proposal_id=proposal_id, canceled_by=caller, timestamp=self.now(),
        )
        self._events.append(event)
        logger.info(f"proposal #{proposal_id} canceled by {caller} (was {state.name})")
        return event

    # ── Serialization ─────────────────────────────────────────────────

    def to_dict(self) -> Dict[str, Any]:
        now = self.now()
        return {
            "now": now,
            "admins": self.admins(),
            "eligibleAssets": sorted(self._eligible),
            "tallyMode": self._config.tally_mode,
            "proposals": {
                str(pid): p.to_dict(now) for pid, p in self._proposals.items()
            },
        }

    def __repr__(self) -> str:
        return f"<GovernanceEngine proposals={len(self._proposals)}>"
