"""User profiles with engagement counters."""

from .schemas import COMMUNITY_COUNTER, COUNTER_FIELDS, UserCreate, UserProfile
from .service import UserStore

__all__ = [
    "COMMUNITY_COUNTER",
    "COUNTER_FIELDS",
    "UserCreate",
    "UserProfile",
    "UserStore",
]
