from datetime import date, timedelta

from academy.activity.models import ActivityDay
from academy.activity.tracker import compute_streak, record_activity
from academy.users.models import User

TODAY = date(2026, 10, 19)


def _days(*offsets):
    return [TODAY - timedelta(days=n) for n in offsets]


def test_streak_counts_consecutive_days_ending_today():
    assert compute_streak(_days(0, 1, 2, 4), TODAY) == 3


def test_streak_still_alive_until_today_is_over():
    assert compute_streak(_days(1, 2), TODAY) == 2


def test_streak_broken_by_a_missed_day():
    assert compute_streak(_days(2, 3, 4), TODAY) == 0
    assert compute_streak([], TODAY) == 0


def test_record_activity_updates_streak(db, make_user):
    user = make_user()
    for offset in (2, 1):
        record_activity(db, user.id, today=TODAY - timedelta(days=offset))

    assert record_activity(db, user.id, today=TODAY) == 3

    db.expire_all()
    assert db.query(User.current_streak).filter(User.id == user.id).scalar() == 3


def test_record_activity_counts_actions_per_day(db, make_user):
    user = make_user()
    record_activity(db, user.id, today=TODAY)
    record_activity(db, user.id, today=TODAY)

    rows = db.query(ActivityDay).filter(ActivityDay.user_id == user.id).all()
    assert len(rows) == 1
    assert rows[0].actions == 2


def test_backdated_activity_ignores_later_days(db, make_user):
    user = make_user()
    record_activity(db, user.id, today=TODAY)

    assert record_activity(db, user.id, today=TODAY - timedelta(days=10)) == 1
