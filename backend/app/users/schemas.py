"""Pydantic schemas for user profiles."""
from datetime import datetime
from typing import Dict, List

from pydantic import BaseModel, Field

# Counter fields read by the badge evaluator. Only the community counter is
# maintained by the chat pipeline; the others default to zero.
COMMUNITY_COUNTER = "communityEngagementStreak"
COUNTER_FIELDS = (
    "moodStreak",
    "selfCareStreak",
    "journalStreak",
    COMMUNITY_COUNTER,
)


class UserCreate(BaseModel):
    """Input schema for registering a chat profile."""
    username: str = Field(
        ..., min_length=3, max_length=30, pattern=r"^[A-Za-z][A-Za-z0-9\-]*$"
    )
    fullname: str = Field(
        ..., min_length=3, max_length=30, pattern=r"^[A-Za-z][A-Za-z0-9\- .]*$"
    )


class UserProfile(BaseModel):
    """A user's profile with engagement counters and awarded badges.

    Attributes:
        id: 32-char hex user id.
        username: Unique handle.
        fullname: Display name.
        counters: Streak counters keyed by field name.
        badges: Awarded badge types, in award order.
        createdAt: Naive UTC registration time.
    """
    id: str
    username: str
    fullname: str
    counters: Dict[str, int] = Field(default_factory=dict)
    badges: List[str] = Field(default_factory=list)
    createdAt: datetime
