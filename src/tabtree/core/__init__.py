"""Core module - host-agnostic utilities"""

from .errors import HostError, TabNotFoundError, TabTreeError, TreeError
from .ids import IdentityRecord, is_stable_id, make_stable_id, short_id

__all__ = [
    "TabTreeError",
    "TreeError",
    "TabNotFoundError",
    "HostError",
    "IdentityRecord",
    "make_stable_id",
    "is_stable_id",
    "short_id",
]
