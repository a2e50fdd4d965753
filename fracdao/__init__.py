"""
FracDAO Package

Collective ownership of unique assets through fungible fractions, with
delegated voting and a proposal lifecycle driven by fraction balances.

Core imports are lazily loaded so importing a submodule does not pull in
the whole package:

    from fracdao.dao import FractionalDAO
    from fracdao.fractions import FractionLedger
    from fracdao.governance import GovernanceEngine
"""

__version__ = "0.3.0"


def __getattr__(name):
    """Lazy module loading."""
    if name == 'FractionalDAO':
        from .dao import FractionalDAO
        return FractionalDAO
    elif name == 'load_config':
        from .config import load_config
        return load_config
    elif name == 'FracDAOError':
        from .exceptions import FracDAOError
        return FracDAOError
    raise AttributeError(f"module 'fracdao' has no attribute {name!r}")

__all__ = ['FractionalDAO', 'load_config', 'FracDAOError', '__version__']
