"""
XP ledger: credit experience points exactly once per completed module.

`module_progress.has_earned_xp` is the guard. It is flipped with a single
conditional UPDATE (... WHERE has_earned_xp = false), and users.total_xp is
only touched when that UPDATE matched the row, so a retried or duplicated
request can never credit twice. total_xp itself is always changed with a
store-level arithmetic UPDATE, never read-modify-write.

Nothing here commits; the dispatcher owns the transaction. The bulk
statements do not synchronize the session: loaded User / ModuleProgress
objects are stale until the caller's commit expires them.
"""
import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import case, delete, update
from sqlalchemy.orm import Session

from academy.progression.errors import AlreadyCompletedError, NotStaffSkippedError
from academy.progression.models import ModuleProgress, ModuleStatus, ProgressState
from academy.users.models import User

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def get_or_create_progress(db: Session, user_id: int, module_id: int) -> ModuleProgress:
    """
    Existing progress row or a fresh NOT_STARTED one (flushed, not committed).
    A concurrent insert of the same pair fails with IntegrityError on flush.
    """
    progress = db.query(ModuleProgress).filter(
        ModuleProgress.user_id == user_id,
        ModuleProgress.module_id == module_id,
    ).first()
    if not progress:
        progress = ModuleProgress(
            user_id=user_id,
            module_id=module_id,
            status=ModuleStatus.NOT_STARTED,
            state=ProgressState.NOT_STARTED,
            has_earned_xp=False,
            skipped_by_teacher=False,
        )
        db.add(progress)
        db.flush()
    return progress


def _increment_xp(db: Session, user_id: int, points: int) -> None:
    if points:
        db.execute(
            update(User)
            .where(User.id == user_id)
            .values(total_xp=User.total_xp + points)
            .execution_options(synchronize_session=False)
        )


def _claim(db: Session, user_id: int, module_id: int, **values) -> bool:
    """Flip has_earned_xp false -> true together with `values`. True if this call won."""
    result = db.execute(
        update(ModuleProgress)
        .where(
            ModuleProgress.user_id == user_id,
            ModuleProgress.module_id == module_id,
            ModuleProgress.has_earned_xp.is_(False),
        )
        .values(has_earned_xp=True, status=ModuleStatus.COMPLETED, **values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def credit_module(db: Session, user_id: int, module_id: int, points: int) -> bool:
    """Mark the module completed by the student and credit `points` once. False if already credited."""
    if points < 0:
        raise ValueError("points must be non-negative")

    get_or_create_progress(db, user_id, module_id)
    if not _claim(
        db, user_id, module_id,
        state=ProgressState.COMPLETED_BY_STUDENT,
        completed_at=_now(),
    ):
        logger.info("[XP] user=%s module=%s already credited", user_id, module_id)
        return False

    _increment_xp(db, user_id, points)
    logger.info("[XP] user=%s module=%s +%s", user_id, module_id, points)
    return True


def credit_staff_skip(
    db: Session, user_id: int, module_id: int, points: int, skipped_by: Optional[int] = None
) -> bool:
    """
    Complete the module on behalf of the student (staff skip) and credit once.
    A module the student completed on their own cannot be skipped.
    """
    if points < 0:
        raise ValueError("points must be non-negative")

    progress = get_or_create_progress(db, user_id, module_id)
    if progress.state == ProgressState.COMPLETED_BY_STUDENT:
        raise AlreadyCompletedError(f"module {module_id} already completed by user {user_id}")

    now = _now()
    if not _claim(
        db, user_id, module_id,
        state=ProgressState.COMPLETED_BY_STAFF_SKIP,
        completed_at=now,
        skipped_by_teacher=True,
        skipped_at=now,
        skipped_by=skipped_by,
    ):
        logger.info("[XP] user=%s module=%s skip: already credited", user_id, module_id)
        return False

    _increment_xp(db, user_id, points)
    logger.info("[XP] user=%s module=%s +%s (staff skip by %s)", user_id, module_id, points, skipped_by)
    return True


def debit_module(db: Session, user_id: int, module_id: int, points: int) -> bool:
    """
    Undo a staff skip: delete the progress row and take the points back,
    never letting total_xp drop below zero. False if there is nothing to undo.
    """
    if points < 0:
        raise ValueError("points must be non-negative")

    result = db.execute(
        delete(ModuleProgress)
        .where(
            ModuleProgress.user_id == user_id,
            ModuleProgress.module_id == module_id,
            ModuleProgress.skipped_by_teacher.is_(True),
            ModuleProgress.has_earned_xp.is_(True),
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        exists = db.query(ModuleProgress.id).filter(
            ModuleProgress.user_id == user_id,
            ModuleProgress.module_id == module_id,
        ).first()
        if exists is None:
            return False
        raise NotStaffSkippedError(f"module {module_id} was not completed by a staff skip")

    if points:
        db.execute(
            update(User)
            .where(User.id == user_id)
            .values(total_xp=case((User.total_xp > points, User.total_xp - points), else_=0))
            .execution_options(synchronize_session=False)
        )
    logger.info("[XP] user=%s module=%s -%s (skip reverted)", user_id, module_id, points)
    return True
