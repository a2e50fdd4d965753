"""
FracDAO Unified Configuration

Loads all sections of fracdao.toml.
Environment variables override TOML values.
"""

from .loader import (
    ClockConfig,
    DAOConfig,
    GovernanceConfig,
    LoggingConfig,
    load_config,
)

__all__ = [
    "ClockConfig",
    "DAOConfig",
    "GovernanceConfig",
    "LoggingConfig",
    "load_config",
]
