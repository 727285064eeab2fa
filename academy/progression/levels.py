"""
Skill-level state machine (per user, per trail).

Only PROJECT module reviews reach this module. Rules:
  - REVISION is a retry: no transition, the table is not consulted
  - APPROVED / FAILED move current_level and the per-level statuses
    according to TRANSITIONS (total over level x outcome)
  - no task_progress row for the trail => silent no-op
"""
import logging
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from sqlalchemy.orm import Session

from academy.progression.models import LevelStatus, SkillLevel, SkillLevelState

logger = logging.getLogger(__name__)


class ReviewOutcome:
    APPROVED = "APPROVED"
    REVISION = "REVISION"
    FAILED = "FAILED"

    ALL = (APPROVED, REVISION, FAILED)


_J, _M, _S = SkillLevel.JUNIOR, SkillLevel.MIDDLE, SkillLevel.SENIOR
_OK, _FAIL = ReviewOutcome.APPROVED, ReviewOutcome.FAILED

# (current_level, outcome) -> (new_level, status column updates)
TRANSITIONS: Dict[Tuple[str, str], Tuple[str, Dict[str, str]]] = {
    # Promotion out of JUNIOR is owned by the trail itself, not by this table
    (_J, _OK): (_J, {"junior_status": LevelStatus.PASSED}),
    (_J, _FAIL): (_J, {"junior_status": LevelStatus.FAILED}),
    (_M, _OK): (_S, {"middle_status": LevelStatus.PASSED, "senior_status": LevelStatus.PENDING}),
    (_M, _FAIL): (_J, {"middle_status": LevelStatus.FAILED, "junior_status": LevelStatus.PENDING}),
    (_S, _OK): (_S, {"senior_status": LevelStatus.PASSED}),
    (_S, _FAIL): (_M, {"senior_status": LevelStatus.FAILED, "middle_status": LevelStatus.PENDING}),
}


@dataclass(frozen=True)
class LevelTransition:
    user_id: int
    trail_id: int
    outcome: str
    previous_level: str
    new_level: str
    status_updates: Dict[str, str]

    @property
    def level_changed(self) -> bool:
        return self.previous_level != self.new_level


def next_state(level: str, outcome: str) -> Tuple[str, Dict[str, str]]:
    """Pure table lookup. REVISION has no entry and must be filtered by the caller."""
    key = (level, outcome)
    if key not in TRANSITIONS:
        raise ValueError(f"no level transition for level={level!r} outcome={outcome!r}")
    new_level, updates = TRANSITIONS[key]
    return new_level, dict(updates)


def apply_level_transition(
    db: Session, user_id: int, trail_id: int, outcome: str
) -> Optional[LevelTransition]:
    """
    Apply one review outcome to the (user, trail) level row inside the caller's
    transaction. Does not commit.

    The row is read FOR UPDATE where the backend supports it; the version
    column turns any remaining race into StaleDataError at flush time.
    """
    if outcome == ReviewOutcome.REVISION:
        return None
    if outcome not in ReviewOutcome.ALL:
        raise ValueError(f"unknown review outcome: {outcome!r}")

    state = (
        db.query(SkillLevelState)
        .filter(
            SkillLevelState.user_id == user_id,
            SkillLevelState.trail_id == trail_id,
        )
        .with_for_update()
        .first()
    )
    if not state:
        logger.info("[LEVEL] no level state user=%s trail=%s, skipping transition", user_id, trail_id)
        return None

    previous = state.current_level
    new_level, updates = next_state(previous, outcome)

    state.current_level = new_level
    for column, value in updates.items():
        setattr(state, column, value)
    db.flush()

    logger.info(
        "[LEVEL] user=%s trail=%s %s: %s -> %s %s",
        user_id, trail_id, outcome, previous, new_level, updates,
    )
    return LevelTransition(
        user_id=user_id,
        trail_id=trail_id,
        outcome=outcome,
        previous_level=previous,
        new_level=new_level,
        status_updates=updates,
    )
