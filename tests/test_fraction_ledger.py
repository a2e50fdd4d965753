"""
Fraction Ledger Test Suite

Coverage:
  - Asset creation and validation
  - Transfers (frozen, delegated and insufficient positions)
  - One-shot delegation
  - Vote marking
  - Rage-quit burns
  - Royalty deposit / claim, including the fixed-supply denominator
  - Conservation of fractions across every mutation
"""

import os
import sys

import pytest

ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from fracdao.clock import BlockClock
from fracdao.constants import NULL_HOLDER
from fracdao.exceptions import (
    AlreadyDoneError,
    InvalidArgumentError,
    InvariantViolationError,
    NotFoundError,
)
from fracdao.fractions.ledger import (
    AlreadyRageQuitError,
    AssetExistsError,
    AssetNotFoundError,
    DelegationExistsError,
    FractionLedger,
    FractionTransferEvent,
    InsufficientFractionsError,
    NothingToClaimError,
    PositionFrozenError,
    PositionState,
    RageQuitEvent,
)
from fracdao.fractions.payments import InMemoryVault


# ══════════════════════════════════════════════════════════════════════
#  HELPERS
# ══════════════════════════════════════════════════════════════════════

ALICE = "0x" + "a1" * 20
BOB = "0x" + "b2" * 20
CAROL = "0x" + "c3" * 20
DAVE = "0x" + "d4" * 20
MARKET = "0x" + "ee" * 20


def make_ledger(**kwargs) -> FractionLedger:
    return FractionLedger(clock=BlockClock(100), **kwargs)


def conserved(ledger: FractionLedger, asset_id: int) -> bool:
    asset = ledger.asset(asset_id)
    total = sum(ledger.balance_of(asset_id, h) for h in ledger.holders())
    return total == asset.available_fractions


class RecordingListener:
    """Collects power deltas published by the ledger."""

    def __init__(self):
        self.deltas = []

    def __call__(self, holder, delta):
        self.deltas.append((holder, delta))

    def net(self, holder):
        return sum(d for h, d in self.deltas if h == holder)


# ══════════════════════════════════════════════════════════════════════
#  CREATION
# ══════════════════════════════════════════════════════════════════════


class TestCreateAsset:

    def test_create_basic(self):
        ledger = make_ledger()
        asset = ledger.create_asset(1, ALICE, 10, royalty_rate=250, rage_quit_eligible=True,
                                    name="Mona", description="Oil on poplar")
        assert asset.total_fractions == 10
        assert asset.available_fractions == 10
        assert asset.accumulated_royalties == 0
        assert asset.rage_quit_eligible is True
        assert asset.name == "Mona"
        assert ledger.balance_of(1, ALICE) == 10
        assert ledger.position(1, ALICE).last_action_time == 100

    def test_create_duplicate_raises(self):
        ledger = make_ledger()
        ledger.create_asset(1, ALICE, 10)
        with pytest.raises(AssetExistsError):
            ledger.create_asset(1, BOB, 5)
        assert ledger.balance_of(1, BOB) == 0

    def test_create_null_holder_raises(self):
        with pytest.raises(InvalidArgumentError):
            make_ledger().create_asset(1, NULL_HOLDER, 10)

    def test_create_zero_fractions_raises(self):
        with pytest.raises(InvalidArgumentError):
            make_ledger().create_asset(1, ALICE, 0)

    @pytest.mark.parametrize("rate", [-1, 10_001])
    def test_create_bad_royalty_rate_raises(self, rate):
        with pytest.raises(InvalidArgumentError, match="basis points"):
            make_ledger().create_asset(1, ALICE, 10, royalty_rate=rate)

    def test_create_publishes_power(self):
        ledger = make_ledger()
        listener = RecordingListener()
        ledger.add_power_listener(listener)
        ledger.create_asset(1, ALICE, 10)
        assert listener.deltas == [(ALICE, 10)]

    def test_unknown_asset_is_not_found(self):
        ledger = make_ledger()
        with pytest.raises(NotFoundError):
            ledger.asset(7)
        with pytest.raises(AssetNotFoundError):
            ledger.transfer(7, ALICE, BOB, 1)

    def test_royalty_for_sale(self):
        ledger = make_ledger()
        ledger.create_asset(1, ALICE, 10, royalty_rate=250)
        assert ledger.royalty_for_sale(1, 10_000) == 250
        assert ledger.royalty_for_sale(1, 39) == 0


# ══════════════════════════════════════════════════════════════════════
#  TRANSFER
# ══════════════════════════════════════════════════════════════════════


class TestTransfer:

    def test_transfer_moves_balance(self):
        ledger = make_ledger()
        ledger.create_asset(1, ALICE, 10)
        event = ledger.transfer(1, ALICE, BOB, 4)
        assert isinstance(event, FractionTransferEvent)
        assert ledger.balance_of(1, ALICE) == 6
        assert ledger.balance_of(1, BOB) == 4
        assert conserved(ledger, 1)
        assert event.to_dict()["event"] == "Transfer"

    def test_transfer_whole_balance_then_again_fails(self):
        ledger = make_ledger()
        ledger.create_asset(1, ALICE, 10)
        ledger.transfer(1, ALICE, BOB, 10)
        assert ledger.balance_of(1, ALICE) == 0
        assert ledger.balance_of(1, BOB) == 10
        with pytest.raises(InvariantViolationError):
            ledger.transfer(1, ALICE, BOB, 1)

    def test_transfer_zero_raises(self):
        ledger = make_ledger()
        ledger.create_asset(1, ALICE, 10)
        with pytest.raises(InvalidArgumentError):
            ledger.transfer(1, ALICE, BOB, 0)

    def test_transfer_to_null_raises(self):
        ledger = make_ledger()
        ledger.create_asset(1, ALICE, 10)
        with pytest.raises(InvalidArgumentError):
            ledger.transfer(1, ALICE, NULL_HOLDER, 1)
        with pytest.raises(InvalidArgumentError):
            ledger.transfer(1, ALICE, "", 1)

    def test_transfer_insufficient_raises(self):
        ledger = make_ledger()
        ledger.create_asset(1, ALICE, 10)
        with pytest.raises(InsufficientFractionsError):
            ledger.transfer(1, ALICE, BOB, 11)
        with pytest.raises(InsufficientFractionsError):
            ledger.transfer(1, CAROL, BOB, 1)
        assert ledger.balance_of(1, ALICE) == 10

    def test_transfer_after_vote_mark_frozen(self):
        ledger = make_ledger()
        ledger.create_asset(1, ALICE, 10)
        ledger.mark_acted_for_vote(1, ALICE)
        with pytest.raises(PositionFrozenError):
            ledger.transfer(1, ALICE, BOB, 1)

    def test_transfer_after_delegation_blocked(self):
        ledger = make_ledger()
        ledger.create_asset(1, ALICE, 10)
        ledger.delegate(1, ALICE, BOB, 3)
        with pytest.raises(DelegationExistsError):
            ledger.transfer(1, ALICE, CAROL, 1)
        assert ledger.balance_of(1, ALICE) == 7

    def test_transfer_into_voted_position_adds_no_power(self):
        ledger = make_ledger()
        ledger.create_asset(1, ALICE, 10)
        ledger.transfer(1, ALICE, BOB, 4)
        ledger.mark_acted_for_vote(1, BOB)
        listener = RecordingListener()
        ledger.add_power_listener(listener)
        ledger.transfer(1, ALICE, BOB, 2)
        assert listener.net(BOB) == 0
        assert listener.net(ALICE) == -2
        assert ledger.balance_of(1, BOB) == 6

    def test_self_transfer_is_neutral(self):
        ledger = make_ledger()
        ledger.create_asset(1, ALICE, 10)
        ledger.transfer(1, ALICE, ALICE, 5)
        assert ledger.balance_of(1, ALICE) == 10
        assert conserved(ledger, 1)


# ══════════════════════════════════════════════════════════════════════
#  DELEGATION
# ══════════════════════════════════════════════════════════════════════


class TestDelegate:

    def test_delegate_splits_balance(self):
        ledger = make_ledger()
        ledger.create_asset(1, ALICE, 10)
        ledger.delegate(1, ALICE, DAVE, 5)
        alice = ledger.position(1, ALICE)
        dave = ledger.position(1, DAVE)
        assert alice.amount == 5
        assert alice.delegated_to == DAVE
        assert dave.amount == 5
        assert dave.delegated_to is None
        assert dave.is_delegate_receiver is True
        assert conserved(ledger, 1)

    def test_delegate_twice_raises(self):
        ledger = make_ledger()
        ledger.create_asset(1, ALICE, 10)
        ledger.delegate(1, ALICE, DAVE, 2)
        with pytest.raises(DelegationExistsError):
            ledger.delegate(1, ALICE, DAVE, 2)
        with pytest.raises(DelegationExistsError):
            ledger.delegate(1, ALICE, BOB, 2)
        assert ledger.position(1, ALICE).delegated_to == DAVE

    def test_delegate_to_self_raises(self):
        ledger = make_ledger()
        ledger.create_asset(1, ALICE, 10)
        with pytest.raises(InvalidArgumentError, match="self"):
            ledger.delegate(1, ALICE, ALICE, 1)

    def test_delegate_to_null_raises(self):
        ledger = make_ledger()
        ledger.create_asset(1, ALICE, 10)
        with pytest.raises(InvalidArgumentError):
            ledger.delegate(1, ALICE, NULL_HOLDER, 1)

    def test_delegate_zero_raises(self):
        ledger = make_ledger()
        ledger.create_asset(1, ALICE, 10)
        with pytest.raises(InvalidArgumentError):
            ledger.delegate(1, ALICE, BOB, 0)

    def test_delegate_more_than_held_raises(self):
        ledger = make_ledger()
        ledger.create_asset(1, ALICE, 10)
        with pytest.raises(InsufficientFractionsError):
            ledger.delegate(1, ALICE, BOB, 11)
        assert ledger.position(1, ALICE).delegated_to is None

    def test_delegate_after_vote_raises(self):
        ledger = make_ledger()
        ledger.create_asset(1, ALICE, 10)
        ledger.mark_acted_for_vote(1, ALICE)
        with pytest.raises(PositionFrozenError):
            ledger.delegate(1, ALICE, BOB, 1)

    def test_receiver_accumulates_from_many(self):
        ledger = make_ledger()
        ledger.create_asset(1, ALICE, 10)
        ledger.transfer(1, ALICE, BOB, 4)
        ledger.transfer(1, ALICE, CAROL, 1)
        ledger.delegate(1, ALICE, CAROL, 2)
        ledger.delegate(1, BOB, CAROL, 4)
        assert ledger.balance_of(1, CAROL) == 7
        assert conserved(ledger, 1)


# ══════════════════════════════════════════════════════════════════════
#  VOTE MARKING
# ══════════════════════════════════════════════════════════════════════


class TestMarkActed:

    def test_mark_returns_amount(self):
        ledger = make_ledger()
        ledger.create_asset(1, ALICE, 10)
        assert ledger.mark_acted_for_vote(1, ALICE) == 10
        pos = ledger.position(1, ALICE)
        assert pos.state == PositionState.VOTED
        assert pos.has_acted and pos.has_voted and not pos.has_exited
        assert pos.amount == 10

    def test_mark_twice_raises(self):
        ledger = make_ledger()
        ledger.create_asset(1, ALICE, 10)
        ledger.mark_acted_for_vote(1, ALICE)
        with pytest.raises(PositionFrozenError):
            ledger.mark_acted_for_vote(1, ALICE)

    def test_mark_empty_position_raises(self):
        ledger = make_ledger()
        ledger.create_asset(1, ALICE, 10)
        with pytest.raises(InsufficientFractionsError):
            ledger.mark_acted_for_vote(1, BOB)

    def test_mark_removes_power(self):
        ledger = make_ledger()
        listener = RecordingListener()
        ledger.add_power_listener(listener)
        ledger.create_asset(1, ALICE, 10)
        ledger.mark_acted_for_vote(1, ALICE)
        assert listener.net(ALICE) == 0

    def test_validate_does_not_mutate(self):
        ledger = make_ledger()
        ledger.create_asset(1, ALICE, 10)
        ledger.validate_vote_mark(1, ALICE)
        assert ledger.position(1, ALICE).state == PositionState.ACTIVE


# ══════════════════════════════════════════════════════════════════════
#  RAGE-QUIT
# ══════════════════════════════════════════════════════════════════════


class TestRageQuit:

    def test_rage_quit_burns_eligible(self):
        ledger = make_ledger()
        ledger.create_asset(1, ALICE, 10, rage_quit_eligible=True)
        assert ledger.rage_quit(ALICE) == [1]
        pos = ledger.position(1, ALICE)
        assert pos.amount == 0
        assert pos.state == PositionState.EXITED
        assert ledger.asset(1).available_fractions == 0
        assert ledger.has_rage_quit(ALICE)
        assert isinstance(ledger.events[-1], RageQuitEvent)

    def test_rage_quit_skips_ineligible_assets(self):
        ledger = make_ledger()
        ledger.create_asset(1, ALICE, 10, rage_quit_eligible=True)
        ledger.create_asset(2, ALICE, 8, rage_quit_eligible=False)
        assert ledger.rage_quit(ALICE) == [1]
        assert ledger.balance_of(2, ALICE) == 8
        assert ledger.position(2, ALICE).state == PositionState.ACTIVE

    def test_rage_quit_partial_holding(self):
        ledger = make_ledger()
        ledger.create_asset(1, ALICE, 10, rage_quit_eligible=True)
        ledger.transfer(1, ALICE, BOB, 3)
        ledger.rage_quit(BOB)
        assert ledger.asset(1).available_fractions == 7
        assert ledger.asset(1).total_fractions == 10
        assert conserved(ledger, 1)

    def test_rage_quit_twice_raises(self):
        ledger = make_ledger()
        ledger.create_asset(1, ALICE, 10, rage_quit_eligible=True)
        ledger.create_asset(2, ALICE, 10, rage_quit_eligible=True)
        ledger.rage_quit(ALICE)
        with pytest.raises(AlreadyRageQuitError):
            ledger.rage_quit(ALICE)

    def test_rage_quit_repeat_is_already_done(self):
        ledger = make_ledger()
        ledger.create_asset(1, ALICE, 10, rage_quit_eligible=True)
        ledger.rage_quit(ALICE)
        with pytest.raises(AlreadyDoneError):
            ledger.rage_quit(ALICE)

    def test_rage_quit_nothing_eligible_raises(self):
        ledger = make_ledger()
        ledger.create_asset(1, ALICE, 10, rage_quit_eligible=False)
        with pytest.raises(InvariantViolationError):
            ledger.rage_quit(ALICE)
        assert not ledger.has_rage_quit(ALICE)

    def test_rage_quit_skips_delegate_receiver(self):
        ledger = make_ledger()
        ledger.create_asset(1, ALICE, 10, rage_quit_eligible=True)
        ledger.delegate(1, ALICE, BOB, 4)
        with pytest.raises(InvariantViolationError):
            ledger.rage_quit(BOB)
        assert ledger.balance_of(1, BOB) == 4

    def test_rage_quit_after_vote_burns_voted_position(self):
        ledger = make_ledger()
        listener = RecordingListener()
        ledger.add_power_listener(listener)
        ledger.create_asset(1, ALICE, 10, rage_quit_eligible=True)
        ledger.mark_acted_for_vote(1, ALICE)
        ledger.rage_quit(ALICE)
        assert ledger.position(1, ALICE).state == PositionState.EXITED
        assert listener.net(ALICE) == 0

    def test_exited_position_frozen(self):
        ledger = make_ledger()
        ledger.create_asset(1, ALICE, 10, rage_quit_eligible=True)
        ledger.rage_quit(ALICE)
        with pytest.raises(InvariantViolationError):
            ledger.mark_acted_for_vote(1, ALICE)


# ══════════════════════════════════════════════════════════════════════
#  ROYALTIES
# ══════════════════════════════════════════════════════════════════════


class FailingVault(InMemoryVault):
    def send(self, recipient, amount):
        raise RuntimeError("payout channel down")


class ReentrantVault(InMemoryVault):
    """Claims again from inside the payout, like a malicious receiver."""

    def __init__(self):
        super().__init__()
        self.ledger = None
        self.observed_pool = []
        self.nested_errors = []

    def send(self, recipient, amount):
        self.observed_pool.append(self.ledger.asset(1).accumulated_royalties)
        try:
            self.ledger.claim_royalty(1, recipient)
        except NothingToClaimError as e:
            self.nested_errors.append(e)
        super().send(recipient, amount)


class TestRoyalties:

    def test_deposit_and_claim(self):
        ledger = make_ledger()
        ledger.create_asset(1, ALICE, 10)
        ledger.transfer(1, ALICE, BOB, 4)
        ledger.deposit_royalty(1, 1000, MARKET)
        assert ledger.claim_royalty(1, BOB) == 400
        assert ledger.asset(1).accumulated_royalties == 600
        assert ledger.vault.paid_to(BOB) == 400
        assert ledger.vault.deposited_by(MARKET) == 1000

    def test_deposit_non_positive_raises(self):
        ledger = make_ledger()
        ledger.create_asset(1, ALICE, 10)
        with pytest.raises(InvalidArgumentError):
            ledger.deposit_royalty(1, 0)
        with pytest.raises(InvalidArgumentError):
            ledger.deposit_royalty(1, -5)

    def test_claim_without_fractions_raises(self):
        ledger = make_ledger()
        ledger.create_asset(1, ALICE, 10)
        ledger.deposit_royalty(1, 1000)
        with pytest.raises(NothingToClaimError):
            ledger.claim_royalty(1, BOB)

    def test_claim_empty_pool_raises(self):
        ledger = make_ledger()
        ledger.create_asset(1, ALICE, 10)
        with pytest.raises(NothingToClaimError):
            ledger.claim_royalty(1, ALICE)

    def test_claim_rounding_to_zero_raises(self):
        ledger = make_ledger()
        ledger.create_asset(1, ALICE, 100)
        ledger.transfer(1, ALICE, BOB, 1)
        ledger.deposit_royalty(1, 50)
        with pytest.raises(NothingToClaimError, match="rounds to zero"):
            ledger.claim_royalty(1, BOB)
        assert ledger.asset(1).accumulated_royalties == 50

    def test_second_claim_without_deposit_raises(self):
        ledger = make_ledger()
        ledger.create_asset(1, ALICE, 10)
        ledger.transfer(1, ALICE, BOB, 6)
        ledger.deposit_royalty(1, 1000)
        assert ledger.claim_royalty(1, ALICE) == 400
        for _ in range(3):
            with pytest.raises(NothingToClaimError):
                ledger.claim_royalty(1, ALICE)
        assert ledger.vault.paid_to(ALICE) == 400
        assert ledger.claim_royalty(1, BOB) == 600
        assert ledger.asset(1).accumulated_royalties == 0

    def test_each_deposit_pays_once(self):
        ledger = make_ledger()
        ledger.create_asset(1, ALICE, 10)
        ledger.transfer(1, ALICE, BOB, 3)
        ledger.deposit_royalty(1, 1000)
        assert ledger.claim_royalty(1, BOB) == 300
        ledger.deposit_royalty(1, 200)
        assert ledger.claimable_royalty(1, BOB) == 60
        assert ledger.claimable_royalty(1, ALICE) == 840
        assert ledger.claim_royalty(1, ALICE) == 840
        assert ledger.claim_royalty(1, BOB) == 60
        assert ledger.asset(1).accumulated_royalties == 0

    def test_transfer_checkpoints_both_sides(self):
        ledger = make_ledger()
        ledger.create_asset(1, ALICE, 10)
        ledger.deposit_royalty(1, 1000)
        ledger.transfer(1, ALICE, BOB, 5)
        # Royalties deposited before the transfer stay with the sender
        assert ledger.claimable_royalty(1, BOB) == 0
        assert ledger.claimable_royalty(1, ALICE) == 1000
        ledger.deposit_royalty(1, 100)
        assert ledger.claimable_royalty(1, BOB) == 50
        assert ledger.claim_royalty(1, ALICE) == 1050
        assert ledger.claim_royalty(1, BOB) == 50

    def test_delegation_checkpoints_both_sides(self):
        ledger = make_ledger()
        ledger.create_asset(1, ALICE, 10)
        ledger.deposit_royalty(1, 100)
        ledger.delegate(1, ALICE, DAVE, 4)
        assert ledger.claimable_royalty(1, DAVE) == 0
        ledger.deposit_royalty(1, 100)
        assert ledger.claimable_royalty(1, ALICE) == 160
        assert ledger.claimable_royalty(1, DAVE) == 40

    def test_failed_payout_restores_pool(self):
        ledger = make_ledger(vault=FailingVault())
        ledger.create_asset(1, ALICE, 10)
        ledger.deposit_royalty(1, 1000)
        with pytest.raises(RuntimeError):
            ledger.claim_royalty(1, ALICE)
        assert ledger.asset(1).accumulated_royalties == 1000
        assert ledger.claimable_royalty(1, ALICE) == 1000

    def test_reentrant_claim_finds_nothing(self):
        vault = ReentrantVault()
        ledger = make_ledger(vault=vault)
        vault.ledger = ledger
        ledger.create_asset(1, ALICE, 10)
        ledger.transfer(1, ALICE, BOB, 5)
        ledger.deposit_royalty(1, 1000)
        assert ledger.claim_royalty(1, BOB) == 500
        assert vault.observed_pool == [500]
        assert len(vault.nested_errors) == 1
        assert vault.paid_to(BOB) == 500

    def test_denominator_is_total_supply_after_burn(self):
        ledger = make_ledger()
        ledger.create_asset(1, ALICE, 10, rage_quit_eligible=True)
        ledger.transfer(1, ALICE, BOB, 6)
        ledger.rage_quit(ALICE)
        ledger.deposit_royalty(1, 1000)
        assert ledger.claim_royalty(1, BOB) == 600
        assert ledger.asset(1).accumulated_royalties == 400

    def test_rage_quit_forfeits_unclaimed(self):
        ledger = make_ledger()
        ledger.create_asset(1, ALICE, 10, rage_quit_eligible=True)
        ledger.transfer(1, ALICE, BOB, 4)
        ledger.deposit_royalty(1, 1000)
        ledger.rage_quit(ALICE)
        with pytest.raises(NothingToClaimError):
            ledger.claim_royalty(1, ALICE)
        assert ledger.position(1, ALICE).royalty_owed == 0
        assert ledger.claim_royalty(1, BOB) == 400
        assert ledger.asset(1).accumulated_royalties == 600

    def test_claim_round_trip_leaves_dust(self):
        ledger = make_ledger()
        ledger.create_asset(1, ALICE, 7)
        ledger.transfer(1, ALICE, BOB, 2)
        ledger.transfer(1, ALICE, CAROL, 2)
        ledger.deposit_royalty(1, 100)
        holders = {ALICE: 3, BOB: 2, CAROL: 2}
        for holder, amount in holders.items():
            assert ledger.claim_royalty(1, holder) == 100 * amount // 7
        remainder = ledger.asset(1).accumulated_royalties
        assert remainder == 100 - (42 + 28 + 28)
        assert 0 <= remainder <= 7 - 1
        assert ledger.vault.balance == remainder


# ══════════════════════════════════════════════════════════════════════
#  SERIALIZATION
# ══════════════════════════════════════════════════════════════════════


class TestLedgerSerialization:

    def test_to_dict(self):
        ledger = make_ledger()
        ledger.create_asset(1, ALICE, 10, rage_quit_eligible=True)
        ledger.delegate(1, ALICE, BOB, 2)
        d = ledger.to_dict()
        assert d["assets"]["1"]["availableFractions"] == 10
        assert d["assets"]["1"]["positions"][ALICE]["delegatedTo"] == BOB
        assert d["assets"]["1"]["positions"][BOB]["isDelegateReceiver"] is True

    def test_position_snapshot_is_detached(self):
        ledger = make_ledger()
        ledger.create_asset(1, ALICE, 10)
        snap = ledger.position(1, ALICE)
        snap.amount = 0
        assert ledger.balance_of(1, ALICE) == 10

    def test_events_use_ledger_clock(self):
        clock = BlockClock(100)
        ledger = FractionLedger(clock=clock)
        ledger.create_asset(1, ALICE, 10)
        clock.advance(5)
        event = ledger.transfer(1, ALICE, BOB, 1)
        assert event.timestamp == 105
        clock.advance(1)
        ledger.deposit_royalty(1, 100)
        assert [e.timestamp for e in ledger.events] == [100, 105, 106]
        assert ledger.to_dict()["assets"]["1"]["royaltyIndex"] == 100
