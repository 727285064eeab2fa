"""
Activity tracking and streaks.

record_activity() is called on user actions; it is the only writer of
users.current_streak. The progression engine just reads the streak.
"""
import logging
from datetime import date, datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from academy.activity.models import ActivityDay
from academy.users.models import User

logger = logging.getLogger(__name__)


def _today_utc() -> date:
    return datetime.now(timezone.utc).date()


def compute_streak(active_days, today: date) -> int:
    """
    Consecutive active days ending today, or ending yesterday if today has
    no activity yet (the streak is still alive until the day is over).
    """
    days = set(active_days)
    cursor = today if today in days else today - timedelta(days=1)
    streak = 0
    while cursor in days:
        streak += 1
        cursor -= timedelta(days=1)
    return streak


def _bump(db: Session, user_id: int, today: date) -> None:
    result = db.execute(
        update(ActivityDay)
        .where(ActivityDay.user_id == user_id, ActivityDay.date == today)
        .values(actions=ActivityDay.actions + 1)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount:
        return
    db.add(ActivityDay(user_id=user_id, date=today, actions=1))
    try:
        db.flush()
    except IntegrityError:
        # Another request created today's row first
        db.rollback()
        db.execute(
            update(ActivityDay)
            .where(ActivityDay.user_id == user_id, ActivityDay.date == today)
            .values(actions=ActivityDay.actions + 1)
            .execution_options(synchronize_session=False)
        )


def record_activity(db: Session, user_id: int, today: Optional[date] = None) -> int:
    """Count one action for today and refresh the user's streak. Returns the streak."""
    today = today or _today_utc()
    _bump(db, user_id, today)

    days = [
        row[0]
        for row in db.query(ActivityDay.date)
        .filter(ActivityDay.user_id == user_id, ActivityDay.date <= today)
        .order_by(ActivityDay.date.desc())
        .all()
    ]
    streak = compute_streak(days, today)
    db.execute(
        update(User)
        .where(User.id == user_id)
        .values(current_streak=streak)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    logger.info("[ACTIVITY] user=%s day=%s streak=%s", user_id, today, streak)
    return streak
