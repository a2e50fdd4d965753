"""
FracDAO Exceptions

Error kinds shared by the fraction ledger and the governance engine.
Subsystems derive their specific errors from one of these kinds so a
caller can handle failures by kind without knowing the module.
"""


class FracDAOError(Exception):
    """Base exception for FracDAO."""
    kind = "Error"


class NotFoundError(FracDAOError):
    """Referenced asset or proposal does not exist."""
    kind = "NotFound"


class InvalidArgumentError(FracDAOError):
    """Zero amount, null target, self-delegation, out-of-range id."""
    kind = "InvalidArgument"


class UnauthorizedError(FracDAOError):
    """Caller lacks the required role."""
    kind = "Unauthorized"


class InvariantViolationError(FracDAOError):
    """Operation would break a ledger or lifecycle invariant."""
    kind = "InvariantViolation"


class AlreadyDoneError(InvariantViolationError):
    """Idempotent guard tripped (repeat rage-quit, repeat vote)."""
    kind = "AlreadyDone"


class ConfigurationError(FracDAOError):
    """Configuration error."""
    kind = "Configuration"
