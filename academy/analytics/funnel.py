"""
Student funnel for the admin analytics view.

The stage counts come from tables that are updated independently and
eventually (progress, submissions, certificates), so raw counts can be
momentarily non-monotonic. Every stage is capped by the stage before it.
"""
from dataclasses import dataclass
from typing import List, Sequence

from sqlalchemy import distinct, func
from sqlalchemy.orm import Session

from academy.core.config import LEADERBOARD_ROLE
from academy.progression.models import ModuleProgress, ModuleStatus
from academy.submissions.models import Submission
from academy.trails.models import Certificate, TrailEnrollment
from academy.users.models import User


@dataclass(frozen=True)
class FunnelStage:
    stage: str
    count: int
    percent: int


STAGES = [
    "Registered",
    "Enrolled in a trail",
    "Started a module",
    "Submitted work",
    "Completed a module",
    "Received a certificate",
]


def clamp_counts(counts: Sequence[int]) -> List[int]:
    """cappedCount = min(count, previous capped count)."""
    capped: List[int] = []
    for count in counts:
        count = max(0, int(count))
        capped.append(min(count, capped[-1]) if capped else count)
    return capped


def _students_with(db: Session, column, *criteria) -> int:
    return (
        db.query(func.count(distinct(column)))
        .select_from(column.class_)
        .join(User, User.id == column)
        .filter(User.role == LEADERBOARD_ROLE, *criteria)
        .scalar()
    ) or 0


def raw_counts(db: Session) -> List[int]:
    total = db.query(func.count(User.id)).filter(User.role == LEADERBOARD_ROLE).scalar() or 0
    return [
        total,
        _students_with(db, TrailEnrollment.user_id),
        _students_with(db, ModuleProgress.user_id),
        _students_with(db, Submission.user_id),
        _students_with(db, ModuleProgress.user_id, ModuleProgress.status == ModuleStatus.COMPLETED),
        _students_with(db, Certificate.user_id),
    ]


def build_funnel(db: Session) -> List[FunnelStage]:
    capped = clamp_counts(raw_counts(db))
    top = capped[0] if capped else 0
    return [
        FunnelStage(
            stage=name,
            count=count,
            percent=round(count / top * 100) if top else 0,
        )
        for name, count in zip(STAGES, capped)
    ]
