"""
Stat snapshot: a read-only, point-in-time aggregation of one user's stats.

Achievement predicates are evaluated against this object only, so it must be
built from committed state in a fresh session (never inside the transaction
that credited XP or moved the level).
"""
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Dict, FrozenSet, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy import and_, func, or_
from sqlalchemy.orm import Session

from academy.activity.models import ActivityDay
from academy.core.config import DEFAULT_TIMEZONE, LEADERBOARD_ROLE
from academy.progression.errors import NotFoundError
from academy.progression.models import LevelStatus, ModuleProgress, ModuleStatus, SkillLevelState
from academy.submissions.models import QuestionAttempt, Review, Submission, SubmissionStatus
from academy.trails.models import Certificate, Module, ModuleType, TrailEnrollment
from academy.users.models import User

PERFECT_SCORE = 10


@dataclass(frozen=True)
class StatSnapshot:
    user_id: int = 0
    total_xp: int = 0
    modules_completed: int = 0
    current_streak: int = 0

    submission_counts: Dict[str, int] = field(default_factory=dict)
    submissions_total: int = 0
    approved_count: int = 0
    failed_or_revision_count: int = 0

    perfect_score_count: int = 0
    longest_perfect_run: int = 0

    certificates_count: int = 0
    trails_enrolled: int = 0
    rank: int = 0
    telegram_linked: bool = False

    # Local hour (0-23) of the latest module completion in the user's timezone
    last_completion_hour: Optional[int] = None

    project_modules_completed: int = 0
    correct_answers: int = 0
    first_try_correct: int = 0
    levels_passed: FrozenSet[str] = frozenset()

    modules_completed_last_7_days: int = 0
    modules_completed_last_30_days: int = 0
    has_same_day_completion: bool = False

    # Days between the two most recent active days (None with fewer than two)
    comeback_gap_days: Optional[int] = None


def _as_utc(ts: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes; everything is stored as UTC
    if ts is None:
        return None
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def _zone(name: Optional[str]):
    name = (name or DEFAULT_TIMEZONE).strip()
    if name.upper() == "UTC":
        return timezone.utc
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        return timezone.utc


def local_hour(ts: datetime, tz_name: Optional[str]) -> int:
    return _as_utc(ts).astimezone(_zone(tz_name)).hour


def longest_run(scores, target: int = PERFECT_SCORE) -> int:
    best = current = 0
    for score in scores:
        if score == target:
            current += 1
            best = max(best, current)
        else:
            current = 0
    return best


def leaderboard_rank(db: Session, user: User) -> int:
    """
    1-indexed position by total_xp desc; equal XP is ordered by id asc.
    0 for users outside the leaderboard role (staff are never ranked).
    """
    if user.role != LEADERBOARD_ROLE:
        return 0
    ahead = (
        db.query(func.count(User.id))
        .filter(
            User.role == LEADERBOARD_ROLE,
            User.id != user.id,
            or_(
                User.total_xp > user.total_xp,
                and_(User.total_xp == user.total_xp, User.id < user.id),
            ),
        )
        .scalar()
    ) or 0
    return ahead + 1


def build_snapshot(db: Session, user_id: int, now: Optional[datetime] = None) -> StatSnapshot:
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise NotFoundError("user", user_id)

    now = _as_utc(now) or datetime.now(timezone.utc)

    # ── Module completions ───────────────────────────────────────────────
    completed = (
        db.query(ModuleProgress.started_at, ModuleProgress.completed_at, Module.type)
        .outerjoin(Module, Module.id == ModuleProgress.module_id)
        .filter(
            ModuleProgress.user_id == user_id,
            ModuleProgress.status == ModuleStatus.COMPLETED,
        )
        .all()
    )
    completion_times = [_as_utc(c) for _s, c, _t in completed if c is not None]
    last_completion = max(completion_times) if completion_times else None
    same_day = any(
        s is not None and c is not None and _as_utc(c) - _as_utc(s) <= timedelta(days=1)
        for s, c, _t in completed
    )

    # ── Submissions and reviews ──────────────────────────────────────────
    counts = dict(
        db.query(Submission.status, func.count(Submission.id))
        .filter(Submission.user_id == user_id)
        .group_by(Submission.status)
        .all()
    )
    scores = [
        row[0]
        for row in db.query(Review.score)
        .join(Submission, Submission.id == Review.submission_id)
        .filter(Submission.user_id == user_id)
        .order_by(Review.created_at.asc(), Review.id.asc())
        .all()
    ]

    # ── Quiz answers ─────────────────────────────────────────────────────
    correct_answers = (
        db.query(func.count(QuestionAttempt.id))
        .filter(QuestionAttempt.user_id == user_id, QuestionAttempt.is_correct.is_(True))
        .scalar()
    ) or 0
    first_try = (
        db.query(func.count(QuestionAttempt.id))
        .filter(
            QuestionAttempt.user_id == user_id,
            QuestionAttempt.is_correct.is_(True),
            QuestionAttempt.attempts == 1,
        )
        .scalar()
    ) or 0

    # ── Skill levels passed on any trail ─────────────────────────────────
    levels_passed = set()
    for state in db.query(SkillLevelState).filter(SkillLevelState.user_id == user_id).all():
        if state.junior_status == LevelStatus.PASSED:
            levels_passed.add("JUNIOR")
        if state.middle_status == LevelStatus.PASSED:
            levels_passed.add("MIDDLE")
        if state.senior_status == LevelStatus.PASSED:
            levels_passed.add("SENIOR")

    # ── Activity gap (comeback) ──────────────────────────────────────────
    recent_days = [
        row[0]
        for row in db.query(ActivityDay.date)
        .filter(ActivityDay.user_id == user_id)
        .order_by(ActivityDay.date.desc())
        .limit(2)
        .all()
    ]
    gap = (recent_days[0] - recent_days[1]).days if len(recent_days) == 2 else None

    certificates = (
        db.query(func.count(Certificate.id)).filter(Certificate.user_id == user_id).scalar()
    ) or 0
    enrollments = (
        db.query(func.count(TrailEnrollment.id)).filter(TrailEnrollment.user_id == user_id).scalar()
    ) or 0

    return StatSnapshot(
        user_id=user.id,
        total_xp=user.total_xp or 0,
        modules_completed=len(completed),
        current_streak=user.current_streak or 0,
        submission_counts=counts,
        submissions_total=sum(counts.values()),
        approved_count=counts.get(SubmissionStatus.APPROVED, 0),
        failed_or_revision_count=(
            counts.get(SubmissionStatus.FAILED, 0) + counts.get(SubmissionStatus.REVISION, 0)
        ),
        perfect_score_count=sum(1 for s in scores if s == PERFECT_SCORE),
        longest_perfect_run=longest_run(scores),
        certificates_count=certificates,
        trails_enrolled=enrollments,
        rank=leaderboard_rank(db, user),
        telegram_linked=bool(user.telegram_chat_id),
        last_completion_hour=(
            local_hour(last_completion, user.timezone) if last_completion else None
        ),
        project_modules_completed=sum(1 for _s, _c, t in completed if t == ModuleType.PROJECT),
        correct_answers=correct_answers,
        first_try_correct=first_try,
        levels_passed=frozenset(levels_passed),
        modules_completed_last_7_days=sum(
            1 for c in completion_times if c >= now - timedelta(days=7)
        ),
        modules_completed_last_30_days=sum(
            1 for c in completion_times if c >= now - timedelta(days=30)
        ),
        has_same_day_completion=same_day,
        comeback_gap_days=gap,
    )
