"""
Entry points called by reviews, staff skips and their reverts.

Review / skip flow:
  0. reviews only: write the review itself (caller-supplied `record`)
  1. PROJECT modules only: apply the level transition
  2. APPROVED (or staff skip): credit XP once
  3. commit 0+1+2 together; conflicting writers are retried with backoff
  4. hand the user to the achievement queue (fire-and-forget)

A revert only debits; unlocked achievements are never taken back.
"""
import logging
import time
from concurrent.futures import Future
from dataclasses import dataclass
from typing import Callable, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from academy.core.config import LEVEL_LOCK_BACKOFF_SECONDS, LEVEL_LOCK_RETRIES
from academy.notifications.service import notify_level_change
from academy.progression.errors import ConcurrencyConflictError, NotFoundError
from academy.progression.levels import LevelTransition, ReviewOutcome, apply_level_transition
from academy.progression.tasks import AchievementQueue, default_queue
from academy.progression.xp import credit_module, credit_staff_skip, debit_module
from academy.progression.xp_levels import level_for_xp
from academy.trails.models import Module, ModuleType
from academy.users.models import User

logger = logging.getLogger(__name__)


@dataclass
class ReviewResult:
    user_id: int
    module_id: int
    outcome: str
    transition: Optional[LevelTransition] = None
    credited: bool = False
    points: int = 0
    total_xp: int = 0
    xp_level_before: int = 1
    xp_level_after: int = 1
    achievements: Optional[Future] = None


@dataclass
class SkipResult:
    user_id: int
    module_id: int
    credited: bool = False
    points: int = 0
    total_xp: int = 0
    achievements: Optional[Future] = None


def _load(db: Session, user_id: int, module_id: int):
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise NotFoundError("user", user_id)
    module = db.query(Module).filter(Module.id == module_id).first()
    if not module:
        raise NotFoundError("module", module_id)
    return user, module


def _run_atomic(db: Session, step, label: str):
    """
    Run `step(db)` and commit. On a conflicting concurrent write, roll back
    and run the whole step again; the XP guard makes the re-run safe.
    """
    attempts = max(1, LEVEL_LOCK_RETRIES)
    delay = LEVEL_LOCK_BACKOFF_SECONDS
    for attempt in range(1, attempts + 1):
        try:
            result = step(db)
            db.commit()
            return result
        except (StaleDataError, IntegrityError) as exc:
            db.rollback()
            logger.warning("[DISPATCH] %s conflict attempt=%s/%s: %s", label, attempt, attempts, exc)
            if attempt == attempts:
                raise ConcurrencyConflictError(f"{label}: gave up after {attempts} attempts") from exc
            time.sleep(delay)
            delay *= 2
        except Exception:
            db.rollback()
            raise


def _schedule(queue: Optional[AchievementQueue], user_id: int) -> Optional[Future]:
    try:
        return (queue or default_queue()).submit(user_id)
    except Exception:
        logger.exception("[DISPATCH] could not schedule achievement pass user=%s", user_id)
        return None


def _current_xp(db: Session, user_id: int) -> int:
    return db.query(User.total_xp).filter(User.id == user_id).scalar() or 0


def apply_review_outcome(
    db: Session,
    user_id: int,
    module_id: int,
    trail_id: Optional[int],
    module_type: str,
    outcome: str,
    points: Optional[int] = None,
    queue: Optional[AchievementQueue] = None,
    record: Optional[Callable[[Session], None]] = None,
) -> ReviewResult:
    """
    `record(session)` runs first inside the same transaction and is re-run on
    every retry, so the review write lands only together with its effects.
    """
    if outcome not in ReviewOutcome.ALL:
        raise ValueError(f"unknown review outcome: {outcome!r}")

    user, module = _load(db, user_id, module_id)
    if trail_id is None:
        trail_id = module.trail_id
    if points is None:
        points = module.points or 0
    xp_before = user.total_xp or 0

    def step(session: Session):
        if record is not None:
            record(session)
        transition = None
        if module_type == ModuleType.PROJECT:
            transition = apply_level_transition(session, user_id, trail_id, outcome)
        credited = False
        if outcome == ReviewOutcome.APPROVED:
            credited = credit_module(session, user_id, module_id, points)
        return transition, credited

    transition, credited = _run_atomic(db, step, f"review user={user_id} module={module_id}")
    total_xp = _current_xp(db, user_id)

    logger.info(
        "[DISPATCH] review user=%s module=%s type=%s outcome=%s credited=%s level=%s",
        user_id, module_id, module_type, outcome, credited,
        transition.new_level if transition else None,
    )

    if transition is not None and transition.level_changed:
        try:
            notify_level_change(db, user_id, transition.previous_level, transition.new_level)
        except Exception:
            db.rollback()
            logger.exception("[NOTIFY] level change delivery failed user=%s", user_id)

    return ReviewResult(
        user_id=user_id,
        module_id=module_id,
        outcome=outcome,
        transition=transition,
        credited=credited,
        points=points if credited else 0,
        total_xp=total_xp,
        xp_level_before=level_for_xp(xp_before).level,
        xp_level_after=level_for_xp(total_xp).level,
        achievements=_schedule(queue, user_id),
    )


def apply_staff_skip(
    db: Session,
    user_id: int,
    module_id: int,
    points: Optional[int] = None,
    skipped_by: Optional[int] = None,
    queue: Optional[AchievementQueue] = None,
) -> SkipResult:
    _user, module = _load(db, user_id, module_id)
    if points is None:
        points = module.points or 0

    credited = _run_atomic(
        db,
        lambda session: credit_staff_skip(session, user_id, module_id, points, skipped_by),
        f"skip user={user_id} module={module_id}",
    )
    return SkipResult(
        user_id=user_id,
        module_id=module_id,
        credited=credited,
        points=points if credited else 0,
        total_xp=_current_xp(db, user_id),
        achievements=_schedule(queue, user_id),
    )


def revert_staff_skip(
    db: Session, user_id: int, module_id: int, points: Optional[int] = None
) -> bool:
    """Undo a staff skip. Achievements are left as they are."""
    _user, module = _load(db, user_id, module_id)
    if points is None:
        points = module.points or 0

    debited = _run_atomic(
        db,
        lambda session: debit_module(session, user_id, module_id, points),
        f"revert user={user_id} module={module_id}",
    )
    logger.info("[DISPATCH] revert skip user=%s module=%s debited=%s", user_id, module_id, debited)
    return debited
