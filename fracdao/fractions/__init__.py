"""
FracDAO Fraction Ledger

Provides:
  - FractionLedger    : balances, delegation, rage-quit, royalties
  - AssetRecord / FractionPosition / PositionState
  - InMemoryVault     : value-transfer side channel for royalties
"""

from .ledger import (
    AlreadyRageQuitError,
    AssetCreatedEvent,
    AssetExistsError,
    AssetNotFoundError,
    AssetRecord,
    DelegationEvent,
    DelegationExistsError,
    FractionLedger,
    FractionPosition,
    FractionTransferEvent,
    InsufficientFractionsError,
    NothingToClaimError,
    PositionFrozenError,
    PositionState,
    RageQuitEvent,
    RoyaltyClaimEvent,
    RoyaltyDepositEvent,
    VoteMarkEvent,
)
from .payments import InMemoryVault, ValueTransfer

__all__ = [
    # Ledger
    "FractionLedger",
    "AssetRecord",
    "FractionPosition",
    "PositionState",
    # Events
    "AssetCreatedEvent",
    "DelegationEvent",
    "FractionTransferEvent",
    "RageQuitEvent",
    "RoyaltyClaimEvent",
    "RoyaltyDepositEvent",
    "VoteMarkEvent",
    # Errors
    "AlreadyRageQuitError",
    "AssetExistsError",
    "AssetNotFoundError",
    "DelegationExistsError",
    "InsufficientFractionsError",
    "NothingToClaimError",
    "PositionFrozenError",
    # Payments
    "InMemoryVault",
    "ValueTransfer",
]
