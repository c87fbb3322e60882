"""webjose: JSON Web Key, Signature and Encryption (RFC 7515-7518)."""

from webjose.core import *  # noqa: F401,F403
from webjose.core import __all__ as _core_all

__version__ = "0.1.0"

__all__ = [*_core_all, "__version__"]
