"""
Fraction Ledger

Tracks, per fractionalized asset:
  - per-holder fraction positions (balance, delegation, vote/exit state)
  - one-shot, non-revocable delegation of balance to another holder
  - rage-quit burns across every rage-quit-eligible asset a holder owns
  - royalty accrual and proportional claims against the fixed supply

Every operation validates all of its preconditions before touching state,
so a failure leaves the ledger exactly as it was.
"""

import time
from dataclasses import dataclass, field, replace
from enum import IntEnum
from typing import Any, Callable, Dict, Iterator, List, Optional, Set

from ..logger import get_logger
from ..constants import BASIS_POINTS, NULL_HOLDER
from ..exceptions import (
    AlreadyDoneError,
    InvalidArgumentError,
    InvariantViolationError,
    NotFoundError,
)
from .payments import InMemoryVault, ValueTransfer

logger = get_logger(__name__)


# ══════════════════════════════════════════════════════════════════════
#  EXCEPTIONS
# ══════════════════════════════════════════════════════════════════════

class AssetNotFoundError(NotFoundError):
    """Referenced asset was never created."""


class AssetExistsError(InvariantViolationError):
    """Asset id already fractionalized."""


class InsufficientFractionsError(InvariantViolationError):
    """Position balance too low for the requested amount."""


class PositionFrozenError(InvariantViolationError):
    """Position already voted or exited."""


class DelegationExistsError(InvariantViolationError):
    """Position already delegated once."""


class AlreadyRageQuitError(AlreadyDoneError):
    """Holder already rage-quit."""


class NothingToClaimError(InvariantViolationError):
    """Empty position, empty royalty pool, or a share that rounds to zero."""


# ══════════════════════════════════════════════════════════════════════
#  RECORDS
# ══════════════════════════════════════════════════════════════════════

class PositionState(IntEnum):
    """What a position has been used for."""
    ACTIVE = 0   # Free to transfer, delegate or vote
    VOTED = 1    # Spent on a vote
    EXITED = 2   # Burned by rage-quit


@dataclass
class FractionPosition:
    """
    A holder's position in one asset.

    ``amount`` is the undelegated remainder plus everything delegated in.
    """
    asset_id: int
    owner: str
    amount: int = 0
    is_delegate_receiver: bool = False
    delegated_to: Optional[str] = None
    state: PositionState = PositionState.ACTIVE
    last_action_time: Optional[int] = None
    royalty_checkpoint: int = 0   # Asset royalty_index when last settled
    royalty_owed: int = 0         # Settled but unclaimed royalties

    @property
    def has_acted(self) -> bool:
        return self.state != PositionState.ACTIVE

    @property
    def has_voted(self) -> bool:
        return self.state == PositionState.VOTED

    @property
    def has_exited(self) -> bool:
        return self.state == PositionState.EXITED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "assetId": self.asset_id,
            "owner": self.owner,
            "amount": self.amount,
            "isDelegateReceiver": self.is_delegate_receiver,
            "delegatedTo": self.delegated_to,
            "hasActed": self.has_acted,
            "state": self.state.name,
            "lastActionTime": self.last_action_time,
            "royaltyCheckpoint": self.royalty_checkpoint,
            "royaltyOwed": self.royalty_owed,
        }


@dataclass
class AssetRecord:
    """Accounting record for one fractionalized asset."""
    asset_id: int
    total_fractions: int
    available_fractions: int
    royalty_rate: int = 0
    rage_quit_eligible: bool = False
    accumulated_royalties: int = 0
    royalty_index: int = 0        # Cumulative royalties ever deposited
    name: str = ""
    description: str = ""
    created_at: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "assetId": self.asset_id,
            "name": self.name,
            "description": self.description,
            "royaltyRate": self.royalty_rate,
            "totalFractions": self.total_fractions,
            "availableFractions": self.available_fractions,
            "accumulatedRoyalties": self.accumulated_royalties,
            "royaltyIndex": self.royalty_index,
            "rageQuitEligible": self.rage_quit_eligible,
            "createdAt": self.created_at,
        }


# ══════════════════════════════════════════════════════════════════════
#  EVENTS
# ══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class AssetCreatedEvent:
    asset_id: int
    holder: str
    total_fractions: int
    royalty_rate: int
    rage_quit_eligible: bool
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event": "AssetCreated",
            "assetId": self.asset_id,
            "holder": self.holder,
            "totalFractions": self.total_fractions,
            "royaltyRate": self.royalty_rate,
            "rageQuitEligible": self.rage_quit_eligible,
            "timestamp": self.timestamp,
        }


@dataclass(frozen=True)
class FractionTransferEvent:
    """Emitted on every successful transfer."""
    asset_id: int
    sender: str
    recipient: str
    amount: int
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event": "Transfer",
            "assetId": self.asset_id,
            "from": self.sender,
            "to": self.recipient,
            "amount": self.amount,
            "timestamp": self.timestamp,
        }


@dataclass(frozen=True)
class DelegationEvent:
    asset_id: int
    delegator: str
    delegate: str
    amount: int
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event": "Delegation",
            "assetId": self.asset_id,
            "delegator": self.delegator,
            "delegate": self.delegate,
            "amount": self.amount,
            "timestamp": self.timestamp,
        }


@dataclass(frozen=True)
class VoteMarkEvent:
    asset_id: int
    holder: str
    amount: int
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event": "VoteMark",
            "assetId": self.asset_id,
            "holder": self.holder,
            "amount": self.amount,
            "timestamp": self.timestamp,
        }


@dataclass(frozen=True)
class RageQuitEvent:
    holder: str
    burned: Dict[int, int]  # asset_id → fractions burned
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event": "RageQuit",
            "holder": self.holder,
            "burned": {str(k): v for k, v in self.burned.items()},
            "timestamp": self.timestamp,
        }


@dataclass(frozen=True)
class RoyaltyDepositEvent:
    asset_id: int
    depositor: str
    amount: int
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event": "RoyaltyDeposit",
            "assetId": self.asset_id,
            "depositor": self.depositor,
            "amount": self.amount,
            "timestamp": self.timestamp,
        }


@dataclass(frozen=True)
class RoyaltyClaimEvent:
    asset_id: int
    holder: str
    amount: int
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event": "RoyaltyClaim",
            "assetId": self.asset_id,
            "holder": self.holder,
            "amount": self.amount,
            "timestamp": self.timestamp,
        }


# ══════════════════════════════════════════════════════════════════════
#  VALIDATION HELPERS
# ══════════════════════════════════════════════════════════════════════

def is_null_holder(holder: Optional[str]) -> bool:
    return not holder or holder == NULL_HOLDER


def _require_holder(holder: Optional[str], role: str):
    if is_null_holder(holder):
        raise InvalidArgumentError(f"{role} cannot be the null holder")


def _require_amount(amount: int, what: str = "Amount"):
    if not isinstance(amount, int) or isinstance(amount, bool):
        raise InvalidArgumentError(f"{what} must be an integer, got {amount!r}")
    if amount <= 0:
        raise InvalidArgumentError(f"{what} must be positive")


# ══════════════════════════════════════════════════════════════════════
#  FRACTION LEDGER
# ══════════════════════════════════════════════════════════════════════

PowerListener = Callable[[str, int], None]


class FractionLedger:
    """
    Fraction Ledger: balances, delegation, rage-quit and royalties.

    Voting power is not stored here. Every change to a balance that counts
    toward voting power (a position that has not acted) is published as a
    ``(holder, delta)`` pair to the registered power listeners.
    """

    def __init__(self, clock=None, vault: Optional[ValueTransfer] = None):
        """
        Args:
            clock: Object with ``now()`` used for position timestamps
            vault: Value-transfer side channel for royalties
        """
        self._clock = clock
        self._vault = vault if vault is not None else InMemoryVault()

        self._assets: Dict[int, AssetRecord] = {}
        self._positions: Dict[int, Dict[str, FractionPosition]] = {}
        self._holdings: Dict[str, Set[int]] = {}  # holder → asset ids with a position
        self._rage_quitters: Set[str] = set()

        self._power_listeners: List[PowerListener] = []
        self._events: List[Any] = []

    # ── Wiring ────────────────────────────────────────────────────────

    def add_power_listener(self, listener: PowerListener):
        self._power_listeners.append(listener)

    def _publish_power(self, holder: str, delta: int):
        if delta == 0:
            return
        for listener in self._power_listeners:
            listener(holder, delta)

    def _now(self) -> Optional[int]:
        return self._clock.now() if self._clock is not None else int(time.time())

    # ── Read-only views ───────────────────────────────────────────────

    @property
    def vault(self) -> ValueTransfer:
        return self._vault

    @property
    def events(self) -> List[Any]:
        return list(self._events)

    def has_asset(self, asset_id: int) -> bool:
        return asset_id in self._assets

    def asset_ids(self) -> List[int]:
        return list(self._assets.keys())

    def asset(self, asset_id: int) -> AssetRecord:
        return replace(self._require_asset(asset_id))

    def position(self, asset_id: int, holder: str) -> FractionPosition:
        """Snapshot of a position; an untouched holder reads as an empty one."""
        self._require_asset(asset_id)
        pos = self._positions[asset_id].get(holder)
        if pos is None:
            return FractionPosition(asset_id=asset_id, owner=holder)
        return replace(pos)

    def balance_of(self, asset_id: int, holder: str) -> int:
        self._require_asset(asset_id)
        pos = self._positions[asset_id].get(holder)
        return pos.amount if pos is not None else 0

    def positions_of(self, holder: str) -> Iterator[FractionPosition]:
        for asset_id in sorted(self._holdings.get(holder, ())):
            yield replace(self._positions[asset_id][holder])

    def holders_of(self, asset_id: int) -> List[str]:
        self._require_asset(asset_id)
        return [h for h, p in self._positions[asset_id].items() if p.amount > 0]

    def holders(self) -> List[str]:
        return list(self._holdings.keys())

    def has_rage_quit(self, holder: str) -> bool:
        return holder in self._rage_quitters

    def royalty_for_sale(self, asset_id: int, sale_price: int) -> int:
        """Royalty owed on a secondary sale at *sale_price*."""
        asset = self._require_asset(asset_id)
        if sale_price < 0:
            raise InvalidArgumentError("Sale price cannot be negative")
        return sale_price * asset.royalty_rate // BASIS_POINTS

    # ── Internal helpers ──────────────────────────────────────────────

    def _require_asset(self, asset_id: int) -> AssetRecord:
        asset = self._assets.get(asset_id)
        if asset is None:
            raise AssetNotFoundError(f"Asset #{asset_id} does not exist")
        return asset

    def _get_or_create_position(self, asset_id: int, holder: str) -> FractionPosition:
        positions = self._positions[asset_id]
        pos = positions.get(holder)
        if pos is None:
            pos = FractionPosition(
                asset_id=asset_id,
                owner=holder,
                royalty_checkpoint=self._assets[asset_id].royalty_index,
            )
            positions[holder] = pos
            self._holdings.setdefault(holder, set()).add(asset_id)
        return pos

    def _credit(self, pos: FractionPosition, amount: int):
        pos.amount += amount
        if not pos.has_acted:
            self._publish_power(pos.owner, amount)

    def _debit(self, pos: FractionPosition, amount: int):
        pos.amount -= amount
        if not pos.has_acted:
            self._publish_power(pos.owner, -amount)

    def _set_state(self, pos: FractionPosition, state: PositionState):
        # Leaving ACTIVE removes the balance from voting power
        if not pos.has_acted and state != PositionState.ACTIVE:
            self._publish_power(pos.owner, -pos.amount)
        pos.state = state
        pos.last_action_time = self._now()

    def _pending_royalty(self, asset: AssetRecord, pos: FractionPosition) -> int:
        accrued = (asset.royalty_index - pos.royalty_checkpoint) * pos.amount
        return pos.royalty_owed + accrued // asset.total_fractions

    def _settle_royalty(self, asset: AssetRecord, pos: FractionPosition):
        # Must run before pos.amount changes
        pos.royalty_owed = self._pending_royalty(asset, pos)
        pos.royalty_checkpoint = asset.royalty_index

    def _require_transferable(self, pos: Optional[FractionPosition], holder: str, asset_id: int):
        if pos is None:
            return
        if pos.has_acted:
            raise PositionFrozenError(
                f"{holder} position in asset #{asset_id} is frozen "
                f"(state={pos.state.name})"
            )

    # ── Creation ──────────────────────────────────────────────────────

    def create_asset(
        self,
        asset_id: int,
        initial_holder: str,
        total_fractions: int,
        royalty_rate: int = 0,
        rage_quit_eligible: bool = False,
        *,
        name: str = "",
        description: str = "",
    ) -> AssetRecord:
        """
        Fractionalize *asset_id*, crediting every fraction to *initial_holder*.
        """
        if asset_id in self._assets:
            raise AssetExistsError(f"Asset #{asset_id} already exists")
        _require_holder(initial_holder, "Initial holder")
        _require_amount(total_fractions, "Total fractions")
        if not isinstance(royalty_rate, int) or not 0 <= royalty_rate <= BASIS_POINTS:
            raise InvalidArgumentError(
                f"Royalty rate must be 0-{BASIS_POINTS} basis points, got {royalty_rate!r}"
            )

        now = self._now()
        asset = AssetRecord(
            asset_id=asset_id,
            total_fractions=total_fractions,
            available_fractions=total_fractions,
            royalty_rate=royalty_rate,
            rage_quit_eligible=bool(rage_quit_eligible),
            name=name,
            description=description,
            created_at=now,
        )
        self._assets[asset_id] = asset
        self._positions[asset_id] = {}
        pos = self._get_or_create_position(asset_id, initial_holder)
        pos.last_action_time = now
        self._credit(pos, total_fractions)

        self._events.append(AssetCreatedEvent(
            asset_id=asset_id,
            holder=initial_holder,
            total_fractions=total_fractions,
            royalty_rate=royalty_rate,
            rage_quit_eligible=asset.rage_quit_eligible,
            timestamp=now,
        ))
        logger.info(
            f"Fractionalized asset #{asset_id}: {total_fractions} fractions → {initial_holder} "
            f"(royalty={royalty_rate}bp, rageQuit={asset.rage_quit_eligible})"
        )
        return replace(asset)

    # ── Transfer ──────────────────────────────────────────────────────

    def transfer(self, asset_id: int, sender: str, recipient: str, amount: int) -> FractionTransferEvent:
        """
        Move *amount* fractions of *asset_id* from *sender* to *recipient*.

        Positions that voted, exited or delegated cannot transfer.
        """
        asset = self._require_asset(asset_id)
        _require_amount(amount)
        _require_holder(recipient, "Recipient")

        src = self._positions[asset_id].get(sender)
        self._require_transferable(src, sender, asset_id)
        if src is not None and src.delegated_to is not None:
            raise DelegationExistsError(
                f"{sender} delegated asset #{asset_id} to {src.delegated_to}; "
                f"delegated positions cannot transfer"
            )
        bal = src.amount if src is not None else 0
        if bal < amount:
            raise InsufficientFractionsError(
                f"{sender} holds {bal} of asset #{asset_id} < transfer amount {amount}"
            )

        dst = self._get_or_create_position(asset_id, recipient)
        self._settle_royalty(asset, src)
        self._settle_royalty(asset, dst)
        self._debit(src, amount)
        self._credit(dst, amount)
        now = self._now()
        src.last_action_time = now
        dst.last_action_time = now

        event = FractionTransferEvent(
            asset_id=asset_id, sender=sender, recipient=recipient, amount=amount,
            timestamp=now,
        )
        self._events.append(event)
        logger.debug(f"Transfer: {sender} → {recipient} {amount} of asset #{asset_id}")
        return event

    # ── Delegation ────────────────────────────────────────────────────

    def delegate(self, asset_id: int, delegator: str, delegate: str, amount: int) -> DelegationEvent:
        """
        Delegate *amount* fractions to *delegate*.

        The balance moves into the delegate's position and merges with it.
        A position delegates at most once and cannot revoke.
        """
        asset = self._require_asset(asset_id)
        _require_holder(delegate, "Delegate")
        if delegate == delegator:
            raise InvalidArgumentError("Cannot delegate to self")
        _require_amount(amount)

        src = self._positions[asset_id].get(delegator)
        self._require_transferable(src, delegator, asset_id)
        if src is not None and src.delegated_to is not None:
            raise DelegationExistsError(
                f"{delegator} already delegated asset #{asset_id} to {src.delegated_to}"
            )
        bal = src.amount if src is not None else 0
        if bal < amount:
            raise InsufficientFractionsError(
                f"{delegator} holds {bal} of asset #{asset_id} < delegation amount {amount}"
            )

        dst = self._get_or_create_position(asset_id, delegate)
        self._settle_royalty(asset, src)
        self._settle_royalty(asset, dst)
        self._debit(src, amount)
        src.delegated_to = delegate
        dst.is_delegate_receiver = True
        self._credit(dst, amount)
        now = self._now()
        src.last_action_time = now
        dst.last_action_time = now

        event = DelegationEvent(
            asset_id=asset_id, delegator=delegator, delegate=delegate, amount=amount,
            timestamp=now,
        )
        self._events.append(event)
        logger.debug(f"Delegation: {delegator} → {delegate} {amount} of asset #{asset_id}")
        return event

    # ── Vote marking ──────────────────────────────────────────────────

    def validate_vote_mark(self, asset_id: int, holder: str) -> FractionPosition:
        """Raise if *holder* cannot vote with *asset_id*; no state change."""
        self._require_asset(asset_id)
        pos = self._positions[asset_id].get(holder)
        if pos is None or pos.amount == 0:
            raise InsufficientFractionsError(
                f"{holder} holds no fractions of asset #{asset_id}"
            )
        if pos.has_acted:
            raise PositionFrozenError(
                f"{holder} position in asset #{asset_id} already acted "
                f"(state={pos.state.name})"
            )
        return replace(pos)

    def mark_acted_for_vote(self, asset_id: int, holder: str) -> int:
        """
        Spend *holder*'s position in *asset_id* on a vote.

        Returns the position amount at the moment of marking.
        """
        self.validate_vote_mark(asset_id, holder)
        pos = self._positions[asset_id][holder]
        self._set_state(pos, PositionState.VOTED)
        self._events.append(VoteMarkEvent(
            asset_id=asset_id, holder=holder, amount=pos.amount, timestamp=pos.last_action_time,
        ))
        logger.debug(f"Vote mark: {holder} spent {pos.amount} of asset #{asset_id}")
        return pos.amount

    # ── Rage-quit ─────────────────────────────────────────────────────

    def rage_quit(self, holder: str) -> List[int]:
        """
        Burn every self-owned position *holder* has in a rage-quit-eligible asset.

        Positions holding delegated-in balance are skipped. A holder can
        rage-quit once.

        Returns:
            Ids of the assets whose fractions were burned.
        """
        if holder in self._rage_quitters:
            raise AlreadyRageQuitError(f"{holder} already rage-quit")

        targets: List[FractionPosition] = []
        for asset_id in sorted(self._holdings.get(holder, ())):
            pos = self._positions[asset_id][holder]
            if pos.amount == 0 or pos.is_delegate_receiver:
                continue
            if self._assets[asset_id].rage_quit_eligible:
                targets.append(pos)
        if not targets:
            raise InvariantViolationError(
                f"{holder} holds no rage-quit-eligible fractions"
            )

        burned: Dict[int, int] = {}
        for pos in targets:
            amount = pos.amount
            asset = self._assets[pos.asset_id]
            self._set_state(pos, PositionState.EXITED)
            pos.amount = 0
            # Unclaimed royalties are forfeited with the burned fractions
            pos.royalty_owed = 0
            pos.royalty_checkpoint = asset.royalty_index
            asset.available_fractions -= amount
            burned[pos.asset_id] = amount
        self._rage_quitters.add(holder)

        self._events.append(RageQuitEvent(holder=holder, burned=burned, timestamp=self._now()))
        logger.warning(
            f"Rage-quit: {holder} burned "
            + ", ".join(f"{amt} of asset #{aid}" for aid, amt in burned.items())
        )
        return list(burned.keys())

    # ── Royalties ─────────────────────────────────────────────────────

    def deposit_royalty(self, asset_id: int, amount: int, depositor: str = "") -> RoyaltyDepositEvent:
        """Accrue *amount* of royalties to *asset_id*'s pool."""
        asset = self._require_asset(asset_id)
        _require_amount(amount, "Royalty amount")

        self._vault.receive(depositor, amount)
        asset.accumulated_royalties += amount
        asset.royalty_index += amount

        event = RoyaltyDepositEvent(
            asset_id=asset_id, depositor=depositor, amount=amount, timestamp=self._now(),
        )
        self._events.append(event)
        logger.debug(
            f"Royalty deposit: {amount} → asset #{asset_id} "
            f"(pool={asset.accumulated_royalties})"
        )
        return event

    def claimable_royalty(self, asset_id: int, holder: str) -> int:
        """
        Royalties *holder* would receive if they claimed now.

        Each deposit accrues ``deposit * amount // total_fractions`` to a
        position from the moment it is made; claims and balance changes
        checkpoint the position so nothing is paid twice.
        """
        asset = self._require_asset(asset_id)
        pos = self._positions[asset_id].get(holder)
        if pos is None or pos.amount == 0:
            return 0
        # Fixed supply as denominator: burned fractions' share is never paid out
        return self._pending_royalty(asset, pos)

    def claim_royalty(self, asset_id: int, holder: str) -> int:
        """
        Pay *holder* the royalties accrued to their position since their
        last claim.

        The pool is debited and the position checkpointed before value
        leaves the vault, so a re-entrant claim during the payout finds
        nothing left to claim.
        """
        asset = self._require_asset(asset_id)
        pos = self._positions[asset_id].get(holder)
        if pos is None or pos.amount == 0:
            raise NothingToClaimError(f"{holder} holds no fractions of asset #{asset_id}")
        if asset.accumulated_royalties == 0:
            raise NothingToClaimError(f"Asset #{asset_id} has no accumulated royalties")
        share = self._pending_royalty(asset, pos)
        if share == 0:
            raise NothingToClaimError(
                f"{holder} share of asset #{asset_id} royalties since the last claim rounds to zero"
            )
        if share > asset.accumulated_royalties:
            raise InvariantViolationError(
                f"asset #{asset_id} pool {asset.accumulated_royalties} < accrued share {share}"
            )

        checkpoint, owed = pos.royalty_checkpoint, pos.royalty_owed
        pos.royalty_checkpoint = asset.royalty_index
        pos.royalty_owed = 0
        asset.accumulated_royalties -= share
        try:
            self._vault.send(holder, share)
        except Exception:
            asset.accumulated_royalties += share
            pos.royalty_checkpoint, pos.royalty_owed = checkpoint, owed
            raise

        self._events.append(RoyaltyClaimEvent(
            asset_id=asset_id, holder=holder, amount=share, timestamp=self._now(),
        ))
        logger.debug(
            f"Royalty claim: asset #{asset_id} {share} → {holder} "
            f"(pool={asset.accumulated_royalties})"
        )
        return share

    # ── Serialization ─────────────────────────────────────────────────

    def to_dict(self) -> Dict[str, Any]:
        return {
            "assets": {
                str(aid): {
                    **asset.to_dict(),
                    "positions": {
                        h: p.to_dict() for h, p in self._positions[aid].items()
                    },
                }
                for aid, asset in self._assets.items()
            },
            "rageQuitters": sorted(self._rage_quitters),
            "events": len(self._events),
        }

    def __repr__(self) -> str:
        return f"<FractionLedger assets={len(self._assets)} holders={len(self._holdings)}>"
