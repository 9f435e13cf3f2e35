"""Badge definitions and the engagement side effect run after chat events.

``evaluate_badges`` is a pure function over a user's counters.
``BadgeService.record_engagement`` is what the gateway calls: it persists the
counter change first and evaluates badges afterwards, so a failure while
awarding never rolls back or blocks the counter update.
"""
import logging
from dataclasses import dataclass
from typing import List, Mapping, Optional, Set

from app.chat.errors import ChatError, UserNotFoundError
from app.users.schemas import COMMUNITY_COUNTER
from app.users.service import UserStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BadgeDefinition:
    type: str
    counter: str
    threshold: int


BADGE_DEFINITIONS: List[BadgeDefinition] = [
    BadgeDefinition("STREAK_10", "moodStreak", 10),
    BadgeDefinition("STREAK_50", "moodStreak", 50),
    BadgeDefinition("STREAK_100", "moodStreak", 100),
    BadgeDefinition("SELF_CARE_5", "selfCareStreak", 5),
    BadgeDefinition("SELF_CARE_10", "selfCareStreak", 10),
    BadgeDefinition("SELF_CARE_30", "selfCareStreak", 30),
    BadgeDefinition("SELF_CARE_50", "selfCareStreak", 50),
    BadgeDefinition("SELF_CARE_75", "selfCareStreak", 75),
    BadgeDefinition("SELF_CARE_100", "selfCareStreak", 100),
    BadgeDefinition("JOURNALING_10", "journalStreak", 10),
    BadgeDefinition("JOURNALING_50", "journalStreak", 50),
    BadgeDefinition("COMMUNITY_ENGAGEMENT_50", COMMUNITY_COUNTER, 50),
    BadgeDefinition("COMMUNITY_ENGAGEMENT_100", COMMUNITY_COUNTER, 100),
]


def evaluate_badges(
    counters: Mapping[str, int],
    definitions: Optional[List[BadgeDefinition]] = None,
) -> Set[str]:
    """Return every badge type whose threshold the counters meet.

    Missing counters count as zero.
    """
    definitions = BADGE_DEFINITIONS if definitions is None else definitions
    return {
        d.type for d in definitions
        if counters.get(d.counter, 0) >= d.threshold
    }


class BadgeService:
    """Applies community-engagement changes and awards earned badges."""

    def __init__(self, users: UserStore) -> None:
        self._users = users

    def record_engagement(self, user_id: str, delta: int) -> Optional[List[str]]:
        """Adjust the user's community counter by ``delta`` and award badges.

        Badges are never revoked when the counter drops.

        Returns:
            Newly awarded badge types, ``[]`` if none or if awarding failed,
            or None when the user is unknown.
        """
        try:
            counters = self._users.adjust_counter(user_id, COMMUNITY_COUNTER, delta)
        except UserNotFoundError:
            logger.debug("[Badges] No profile for %s, engagement not recorded", user_id)
            return None

        try:
            earned = evaluate_badges(counters)
            return self._users.award_badges(user_id, sorted(earned))
        except ChatError as exc:
            logger.error("[Badges] Badge awarding failed for %s: %s", user_id, exc)
            return []
