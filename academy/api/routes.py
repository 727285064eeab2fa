"""
HTTP adapters for the progression engine: reviews, staff skips,
achievements, activity and the student funnel.
"""
from dataclasses import asdict
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from academy.activity.tracker import record_activity
from academy.analytics.funnel import build_funnel
from academy.db.session import get_db
from academy.progression.achievements import get_user_achievements
from academy.progression.dispatcher import apply_review_outcome, apply_staff_skip, revert_staff_skip
from academy.progression.errors import (
    AlreadyCompletedError,
    ConcurrencyConflictError,
    NotFoundError,
    NotStaffSkippedError,
)
from academy.progression.tasks import AchievementQueue, default_queue
from academy.submissions.models import Review, Submission
from academy.trails.models import Module
from academy.users.models import User

router = APIRouter(tags=["progression"])


class ReviewIn(BaseModel):
    submission_id: int
    reviewer_id: int
    score: int = Field(ge=0, le=10)
    status: str = Field(pattern="^(APPROVED|REVISION|FAILED)$")
    strengths: Optional[str] = None
    improvements: Optional[str] = None
    comment: Optional[str] = None


class SkipIn(BaseModel):
    student_id: int
    module_id: int
    staff_id: Optional[int] = None


def get_achievement_queue() -> AchievementQueue:
    return default_queue()


def _engine_error(exc: Exception) -> HTTPException:
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, ConcurrencyConflictError):
        return HTTPException(status_code=409, detail="Concurrent update, please retry")
    if isinstance(exc, AlreadyCompletedError):
        return HTTPException(status_code=400, detail="Module already completed by student")
    if isinstance(exc, NotStaffSkippedError):
        return HTTPException(status_code=400, detail="Cannot revert - module was completed by student")
    return HTTPException(status_code=500, detail="Internal server error")


# ======================================================
# REVIEW A SUBMISSION
# ======================================================
@router.post("/reviews")
def create_review(
    body: ReviewIn,
    db: Session = Depends(get_db),
    queue: AchievementQueue = Depends(get_achievement_queue),
):
    submission = db.query(Submission).filter(Submission.id == body.submission_id).first()
    if not submission:
        raise HTTPException(status_code=404, detail="Submission not found")
    module = db.query(Module).filter(Module.id == submission.module_id).first()
    if not module:
        raise HTTPException(status_code=404, detail="Module not found")

    submission_id = submission.id

    def record_review(session: Session):
        # A retried review (e.g. after a 409) updates the stored one
        review = session.query(Review).filter(Review.submission_id == submission_id).first()
        if not review:
            review = Review(submission_id=submission_id)
            session.add(review)
        review.reviewer_id = body.reviewer_id
        review.score = body.score
        review.strengths = body.strengths
        review.improvements = body.improvements
        review.comment = body.comment
        session.query(Submission).filter(Submission.id == submission_id).update(
            {Submission.status: body.status}, synchronize_session=False
        )

    try:
        result = apply_review_outcome(
            db,
            user_id=submission.user_id,
            module_id=module.id,
            trail_id=module.trail_id,
            module_type=module.type,
            outcome=body.status,
            points=module.points,
            queue=queue,
            record=record_review,
        )
    except (NotFoundError, ConcurrencyConflictError) as exc:
        raise _engine_error(exc)
    review = db.query(Review).filter(Review.submission_id == submission_id).first()

    transition = result.transition
    return {
        "review_id": review.id,
        "submission_id": submission.id,
        "status": body.status,
        "credited": result.credited,
        "points": result.points,
        "total_xp": result.total_xp,
        "xp_level": result.xp_level_after,
        "level": {
            "previous": transition.previous_level,
            "current": transition.new_level,
            "statuses": transition.status_updates,
        } if transition else None,
    }


# ======================================================
# STAFF SKIP / REVERT
# ======================================================
@router.post("/staff/skip")
def skip_module(
    body: SkipIn,
    db: Session = Depends(get_db),
    queue: AchievementQueue = Depends(get_achievement_queue),
):
    try:
        result = apply_staff_skip(
            db, body.student_id, body.module_id, skipped_by=body.staff_id, queue=queue
        )
    except (NotFoundError, AlreadyCompletedError, ConcurrencyConflictError) as exc:
        raise _engine_error(exc)
    return {"success": True, "credited": result.credited, "total_xp": result.total_xp}


@router.delete("/staff/skip")
def revert_skip(
    student_id: int = Query(...),
    module_id: int = Query(...),
    db: Session = Depends(get_db),
):
    try:
        debited = revert_staff_skip(db, student_id, module_id)
    except (NotFoundError, NotStaffSkippedError, ConcurrencyConflictError) as exc:
        raise _engine_error(exc)
    if not debited:
        raise HTTPException(status_code=404, detail="Progress not found")
    return {"success": True}


# ======================================================
# READ MODELS
# ======================================================
@router.get("/achievements/{user_id}")
def list_achievements(user_id: int, db: Session = Depends(get_db)):
    if not db.query(User.id).filter(User.id == user_id).first():
        raise HTTPException(status_code=404, detail="User not found")
    items = get_user_achievements(db, user_id)
    earned = [a for a in items if a["earned"]]
    return {"achievements": items, "count": len(earned), "total": len(items)}


@router.get("/analytics/funnel")
def student_funnel(db: Session = Depends(get_db)):
    return {"funnel": [asdict(s) for s in build_funnel(db)]}


@router.post("/activity/{user_id}")
def track_activity(user_id: int, db: Session = Depends(get_db)):
    if not db.query(User.id).filter(User.id == user_id).first():
        raise HTTPException(status_code=404, detail="User not found")
    return {"user_id": user_id, "current_streak": record_activity(db, user_id)}
