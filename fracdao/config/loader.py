"""
FracDAO TOML Configuration Loader

Loads every section of fracdao.toml with environment variable overrides.
Each section is a dataclass with from_dict / apply_env, composed into a
top-level DAOConfig.

Environment variable mapping:
    [governance] voting_delay  → FRACDAO_VOTING_DELAY
    [governance] voting_period → FRACDAO_VOTING_PERIOD
    [governance] quorum        → FRACDAO_QUORUM
    [governance] tally_mode    → FRACDAO_TALLY_MODE
    [clock] mode               → FRACDAO_CLOCK_MODE
    [logging] level            → FRACDAO_LOG_LEVEL
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

try:
    import tomllib as tomli  # Python 3.11+
except ImportError:
    import tomli  # type: ignore[no-redef]

from ..constants import (
    CLOCK_BLOCK,
    CLOCK_MODES,
    DEFAULT_QUORUM,
    DEFAULT_VOTING_DELAY,
    DEFAULT_VOTING_PERIOD,
    LOG_LEVEL,
    TALLY_AGGREGATE,
    TALLY_MODES,
)
from ..exceptions import ConfigurationError

logger = logging.getLogger(__name__)

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def _default_log_level() -> str:
    """The .env LOG_LEVEL, so the logger and the config agree by default."""
    level = str(LOG_LEVEL).upper()
    return level if level in _LOG_LEVELS else "INFO"


def _env_int(name: str) -> Optional[int]:
    v = os.environ.get(name)
    if v is None or v == "":
        return None
    try:
        return int(v)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {v!r}")


# ---------------------------------------------------------------------------
# Sections
# ---------------------------------------------------------------------------

@dataclass
class GovernanceConfig:
    """[governance] section."""
    voting_delay: int = DEFAULT_VOTING_DELAY
    voting_period: int = DEFAULT_VOTING_PERIOD
    quorum: int = DEFAULT_QUORUM
    tally_mode: str = TALLY_AGGREGATE

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GovernanceConfig":
        return cls(
            voting_delay=data.get("voting_delay", DEFAULT_VOTING_DELAY),
            voting_period=data.get("voting_period", DEFAULT_VOTING_PERIOD),
            quorum=data.get("quorum", DEFAULT_QUORUM),
            tally_mode=data.get("tally_mode", TALLY_AGGREGATE),
        )

    def apply_env(self) -> None:
        """Override from environment variables."""
        if (v := _env_int("FRACDAO_VOTING_DELAY")) is not None:
            self.voting_delay = v
        if (v := _env_int("FRACDAO_VOTING_PERIOD")) is not None:
            self.voting_period = v
        if (v := _env_int("FRACDAO_QUORUM")) is not None:
            self.quorum = v
        if v := os.environ.get("FRACDAO_TALLY_MODE"):
            self.tally_mode = v

    def validate(self) -> None:
        for name in ("voting_delay", "voting_period", "quorum"):
            value = getattr(self, name)
            if not isinstance(value, int) or isinstance(value, bool):
                raise ConfigurationError(f"governance.{name} must be an integer")
        if self.voting_delay < 0:
            raise ConfigurationError("governance.voting_delay must be >= 0")
        if self.voting_period < 1:
            raise ConfigurationError("governance.voting_period must be >= 1")
        if self.quorum < 0:
            raise ConfigurationError("governance.quorum must be >= 0")
        if self.tally_mode not in TALLY_MODES:
            raise ConfigurationError(
                f"Invalid governance.tally_mode: {self.tally_mode!r} "
                f"(expected one of {', '.join(TALLY_MODES)})"
            )


@dataclass
class ClockConfig:
    """[clock] section."""
    mode: str = CLOCK_BLOCK
    start: int = 0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ClockConfig":
        return cls(
            mode=data.get("mode", CLOCK_BLOCK),
            start=data.get("start", 0),
        )

    def apply_env(self) -> None:
        if v := os.environ.get("FRACDAO_CLOCK_MODE"):
            self.mode = v

    def validate(self) -> None:
        if self.mode not in CLOCK_MODES:
            raise ConfigurationError(
                f"Invalid clock.mode: {self.mode!r} (expected one of {', '.join(CLOCK_MODES)})"
            )
        if not isinstance(self.start, int) or self.start < 0:
            raise ConfigurationError("clock.start must be a non-negative integer")


@dataclass
class LoggingConfig:
    """[logging] section."""
    level: str = field(default_factory=_default_log_level)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LoggingConfig":
        if "level" not in data:
            return cls()
        return cls(level=str(data["level"]).upper())

    def apply_env(self) -> None:
        if v := os.environ.get("FRACDAO_LOG_LEVEL"):
            self.level = v.upper()

    def validate(self) -> None:
        if self.level not in _LOG_LEVELS:
            raise ConfigurationError(f"Invalid logging.level: {self.level}")


# ---------------------------------------------------------------------------
# Top-level config
# ---------------------------------------------------------------------------

@dataclass
class DAOConfig:
    """Complete fracdao.toml configuration."""
    governance: GovernanceConfig = field(default_factory=GovernanceConfig)
    clock: ClockConfig = field(default_factory=ClockConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DAOConfig":
        return cls(
            governance=GovernanceConfig.from_dict(data.get("governance", {})),
            clock=ClockConfig.from_dict(data.get("clock", {})),
            logging=LoggingConfig.from_dict(data.get("logging", {})),
        )

    @classmethod
    def from_file(cls, path: str) -> "DAOConfig":
        """
        Load from a TOML file, apply env overrides and validate.

        A missing file yields defaults (with env overrides).
        """
        p = Path(path)
        if not p.exists():
            logger.debug(f"Config file {path} not found, using defaults")
            cfg = cls()
        else:
            try:
                with open(p, "rb") as f:
                    raw = tomli.load(f)
            except tomli.TOMLDecodeError as e:
                raise ConfigurationError(f"Malformed config file {path}: {e}") from e
            cfg = cls.from_dict(raw)
        cfg.apply_env()
        cfg.validate()
        return cfg

    def apply_env(self) -> None:
        """Apply environment variable overrides to all sections."""
        self.governance.apply_env()
        self.clock.apply_env()
        self.logging.apply_env()

    def validate(self) -> bool:
        """
        Validate all configuration sections.

        Raises:
            ConfigurationError: on invalid config
        """
        self.governance.validate()
        self.clock.validate()
        self.logging.validate()
        return True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "governance": {
                "voting_delay": self.governance.voting_delay,
                "voting_period": self.governance.voting_period,
                "quorum": self.governance.quorum,
                "tally_mode": self.governance.tally_mode,
            },
            "clock": {
                "mode": self.clock.mode,
                "start": self.clock.start,
            },
            "logging": {
                "level": self.logging.level,
            },
        }


def load_config(path: Optional[str] = None) -> DAOConfig:
    """
    Load DAO configuration.

    Resolution order:
        1. Explicit *path* argument
        2. FRACDAO_CONFIG env var
        3. ./fracdao.toml in current directory
        4. Defaults (with env overrides)
    """
    if path is None:
        path = os.environ.get("FRACDAO_CONFIG", "fracdao.toml")
    return DAOConfig.from_file(path)
