"""
In-app notifications for engine results.
Delivery is best effort: callers log failures and never roll back engine state.
"""
import logging
from typing import Iterable

from sqlalchemy.orm import Session

from academy.notifications.models import Notification
from academy.progression.achievements import get_achievement

logger = logging.getLogger(__name__)


def notify_achievements(db: Session, user_id: int, achievement_ids: Iterable[str]) -> int:
    """One ACHIEVEMENT_EARNED notification per id. Returns how many were written."""
    count = 0
    for achievement_id in achievement_ids:
        definition = get_achievement(achievement_id)
        db.add(Notification(
            user_id=user_id,
            type="ACHIEVEMENT_EARNED",
            title=f"Achievement: {definition.label if definition else achievement_id}",
            message=definition.desc if definition else "You earned a new achievement!",
            link="/profile",
        ))
        count += 1
    if count:
        db.commit()
        logger.info("[NOTIFY] user=%s achievements=%s", user_id, count)
    return count


def notify_level_change(db: Session, user_id: int, previous_level: str, new_level: str) -> None:
    db.add(Notification(
        user_id=user_id,
        type="LEVEL_CHANGED",
        title=f"Level: {new_level.title()}",
        message=f"Your level changed from {previous_level.title()} to {new_level.title()}",
        link="/profile",
    ))
    db.commit()
