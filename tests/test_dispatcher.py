import threading

import pytest
from sqlalchemy.orm.exc import StaleDataError

from academy.core.config import LEVEL_LOCK_RETRIES
from academy.notifications.models import Notification
from academy.progression import dispatcher, levels
from academy.progression.dispatcher import apply_review_outcome, apply_staff_skip, revert_staff_skip
from academy.progression.errors import ConcurrencyConflictError, NotFoundError
from academy.progression.levels import ReviewOutcome
from academy.progression.models import LevelStatus, ModuleProgress, ModuleStatus, SkillLevel, SkillLevelState
from academy.trails.models import ModuleType
from academy.users.models import User


def _xp(db, user_id):
    return db.query(User.total_xp).filter(User.id == user_id).scalar()


def _progress(db, user_id, module_id):
    db.expire_all()
    return db.query(ModuleProgress).filter(
        ModuleProgress.user_id == user_id,
        ModuleProgress.module_id == module_id,
    ).first()


def test_approved_project_promotes_and_credits(
    db, make_user, make_trail, make_module, make_level_state, recording_queue
):
    user, trail = make_user(), make_trail()
    module = make_module(trail=trail, type=ModuleType.PROJECT, points=100)
    state = make_level_state(user, trail, SkillLevel.MIDDLE)

    result = apply_review_outcome(
        db, user.id, module.id, trail.id, ModuleType.PROJECT, ReviewOutcome.APPROVED,
        points=100, queue=recording_queue,
    )

    assert result.credited is True
    assert result.total_xp == 100
    assert result.transition.new_level == SkillLevel.SENIOR

    db.refresh(state)
    assert state.current_level == SkillLevel.SENIOR
    assert state.middle_status == LevelStatus.PASSED
    assert state.senior_status == LevelStatus.PENDING
    assert _xp(db, user.id) == 100
    assert _progress(db, user.id, module.id).status == ModuleStatus.COMPLETED
    assert recording_queue.submitted == [user.id]


def test_failed_project_demotes_without_xp(
    db, make_user, make_trail, make_module, make_level_state, recording_queue
):
    user, trail = make_user(total_xp=100), make_trail()
    module = make_module(trail=trail, type=ModuleType.PROJECT, points=100)
    state = make_level_state(user, trail, SkillLevel.SENIOR)

    result = apply_review_outcome(
        db, user.id, module.id, trail.id, ModuleType.PROJECT, ReviewOutcome.FAILED,
        queue=recording_queue,
    )

    assert result.credited is False
    db.refresh(state)
    assert state.current_level == SkillLevel.MIDDLE
    assert state.senior_status == LevelStatus.FAILED
    assert state.middle_status == LevelStatus.PENDING
    assert _xp(db, user.id) == 100


def test_level_change_writes_a_notification(
    db, make_user, make_trail, make_module, make_level_state, recording_queue
):
    user, trail = make_user(), make_trail()
    module = make_module(trail=trail, type=ModuleType.PROJECT)
    make_level_state(user, trail, SkillLevel.SENIOR)

    apply_review_outcome(
        db, user.id, module.id, trail.id, ModuleType.PROJECT, ReviewOutcome.FAILED,
        queue=recording_queue,
    )

    note = db.query(Notification).filter(Notification.user_id == user.id).one()
    assert note.type == "LEVEL_CHANGED"


def test_revision_changes_nothing_but_still_schedules(
    db, make_user, make_trail, make_module, make_level_state, recording_queue
):
    user, trail = make_user(), make_trail()
    module = make_module(trail=trail, type=ModuleType.PROJECT)
    state = make_level_state(user, trail, SkillLevel.MIDDLE)

    result = apply_review_outcome(
        db, user.id, module.id, trail.id, ModuleType.PROJECT, ReviewOutcome.REVISION,
        queue=recording_queue,
    )

    assert result.transition is None
    assert result.credited is False
    db.refresh(state)
    assert state.current_level == SkillLevel.MIDDLE
    assert _progress(db, user.id, module.id) is None
    assert recording_queue.submitted == [user.id]


def test_non_project_module_never_moves_the_level(
    db, make_user, make_trail, make_module, make_level_state, recording_queue
):
    user, trail = make_user(), make_trail()
    module = make_module(trail=trail, type=ModuleType.PRACTICE, points=30)
    state = make_level_state(user, trail, SkillLevel.MIDDLE)

    result = apply_review_outcome(
        db, user.id, module.id, None, ModuleType.PRACTICE, ReviewOutcome.APPROVED,
        queue=recording_queue,
    )

    assert result.transition is None
    assert result.points == 30
    db.refresh(state)
    assert state.current_level == SkillLevel.MIDDLE
    assert state.version == 1


def test_repeated_approval_credits_once(db, make_user, make_module, recording_queue):
    user, module = make_user(), make_module(points=40)

    first = apply_review_outcome(
        db, user.id, module.id, None, module.type, ReviewOutcome.APPROVED, queue=recording_queue,
    )
    second = apply_review_outcome(
        db, user.id, module.id, None, module.type, ReviewOutcome.APPROVED, queue=recording_queue,
    )

    assert (first.credited, second.credited) == (True, False)
    assert second.points == 0
    assert _xp(db, user.id) == 40


def test_concurrent_approvals_of_one_module_credit_once(session_factory, make_user, make_module, recording_queue):
    user, module = make_user(), make_module(points=40)
    barrier = threading.Barrier(2)
    outcomes = []
    errors = []

    def worker():
        session = session_factory()
        try:
            barrier.wait()
            outcomes.append(apply_review_outcome(
                session, user.id, module.id, None, module.type, ReviewOutcome.APPROVED,
                queue=recording_queue,
            ).credited)
        except Exception as exc:  # surfaced through `errors`
            errors.append(exc)
        finally:
            session.close()

    threads = [threading.Thread(target=worker) for _ in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    assert sorted(outcomes) == [False, True]
    with session_factory() as check:
        assert _xp(check, user.id) == 40


def test_xp_level_reported_before_and_after(db, make_user, make_module, recording_queue):
    user, module = make_user(total_xp=90), make_module(points=20)

    result = apply_review_outcome(
        db, user.id, module.id, None, module.type, ReviewOutcome.APPROVED, queue=recording_queue,
    )

    assert (result.xp_level_before, result.xp_level_after) == (1, 2)


def test_unknown_user_or_module_mutates_nothing(db, make_user, make_module, recording_queue):
    user, module = make_user(), make_module()

    with pytest.raises(NotFoundError):
        apply_review_outcome(
            db, 999, module.id, None, module.type, ReviewOutcome.APPROVED, queue=recording_queue,
        )
    with pytest.raises(NotFoundError):
        apply_staff_skip(db, user.id, 999, queue=recording_queue)

    assert db.query(ModuleProgress).count() == 0
    assert recording_queue.submitted == []


def test_unknown_outcome_is_rejected(db, make_user, make_module, recording_queue):
    user, module = make_user(), make_module()
    with pytest.raises(ValueError):
        apply_review_outcome(db, user.id, module.id, None, module.type, "PASSED", queue=recording_queue)


def test_skip_then_revert_nets_zero(db, make_user, make_module, recording_queue):
    user, module = make_user(total_xp=10), make_module(points=50)

    skip = apply_staff_skip(db, user.id, module.id, queue=recording_queue)
    assert skip.credited is True
    assert skip.total_xp == 60

    assert revert_staff_skip(db, user.id, module.id) is True

    assert _xp(db, user.id) == 10
    assert _progress(db, user.id, module.id) is None
    # Only the skip scheduled an achievement pass
    assert recording_queue.submitted == [user.id]


def test_revert_without_skip_returns_false(db, make_user, make_module):
    user, module = make_user(), make_module()
    assert revert_staff_skip(db, user.id, module.id) is False


def test_skip_schedules_real_achievement_pass(db, make_user, make_module, achievement_queue):
    user, module = make_user(), make_module(points=100)

    skip = apply_staff_skip(db, user.id, module.id, queue=achievement_queue)
    unlocked = skip.achievements.result(timeout=30)

    assert "FIRST_MODULE" in unlocked
    assert "XP_100" in unlocked


def test_scheduling_failure_does_not_fail_the_review(db, make_user, make_module, caplog):
    class BrokenQueue:
        def submit(self, user_id):
            raise RuntimeError("executor is shut down")

    user, module = make_user(), make_module(points=10)

    result = apply_review_outcome(
        db, user.id, module.id, None, module.type, ReviewOutcome.APPROVED, queue=BrokenQueue(),
    )

    assert result.credited is True
    assert result.achievements is None
    assert any("could not schedule" in r.getMessage() for r in caplog.records)


def test_concurrent_failed_projects_on_one_level_row(
    session_factory, make_user, make_trail, make_module, make_level_state, recording_queue
):
    user, trail = make_user(), make_trail()
    module = make_module(trail=trail, type=ModuleType.PROJECT)
    make_level_state(user, trail, SkillLevel.MIDDLE)
    barrier = threading.Barrier(2)
    transitions = []
    errors = []

    def worker():
        session = session_factory()
        try:
            barrier.wait()
            result = apply_review_outcome(
                session, user.id, module.id, trail.id, ModuleType.PROJECT, ReviewOutcome.FAILED,
                queue=recording_queue,
            )
            transitions.append((result.transition.previous_level, result.transition.new_level))
        except Exception as exc:  # surfaced through `errors`
            errors.append(exc)
        finally:
            session.close()

    threads = [threading.Thread(target=worker) for _ in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    # The second writer sees the first one's demotion, never the stale MIDDLE row
    assert sorted(transitions) == [
        (SkillLevel.JUNIOR, SkillLevel.JUNIOR),
        (SkillLevel.MIDDLE, SkillLevel.JUNIOR),
    ]
    with session_factory() as check:
        state = check.query(SkillLevelState).filter(SkillLevelState.user_id == user.id).one()
        assert state.current_level == SkillLevel.JUNIOR
        assert state.middle_status == LevelStatus.FAILED
        assert state.junior_status == LevelStatus.FAILED
        assert state.version == 3


def test_persistent_stale_level_row_gives_up(
    db, monkeypatch, make_user, make_trail, make_module, make_level_state, recording_queue
):
    user, trail = make_user(), make_trail()
    module = make_module(trail=trail, type=ModuleType.PROJECT, points=100)
    state = make_level_state(user, trail, SkillLevel.MIDDLE)
    calls = []

    def always_stale(session, *args):
        calls.append(args)
        # Flush a real transition first so the rollback has something to undo
        levels.apply_level_transition(session, *args)
        raise StaleDataError("task_progress row changed underneath us")

    monkeypatch.setattr(dispatcher, "apply_level_transition", always_stale)
    monkeypatch.setattr(dispatcher, "LEVEL_LOCK_BACKOFF_SECONDS", 0)

    with pytest.raises(ConcurrencyConflictError):
        apply_review_outcome(
            db, user.id, module.id, trail.id, ModuleType.PROJECT, ReviewOutcome.APPROVED,
            queue=recording_queue,
        )

    assert len(calls) == LEVEL_LOCK_RETRIES
    db.refresh(state)
    assert state.current_level == SkillLevel.MIDDLE
    assert state.version == 1
    assert _xp(db, user.id) == 0
    assert _progress(db, user.id, module.id) is None
    assert recording_queue.submitted == []


def test_one_stale_attempt_is_retried(
    db, monkeypatch, make_user, make_trail, make_module, make_level_state, recording_queue
):
    user, trail = make_user(), make_trail()
    module = make_module(trail=trail, type=ModuleType.PROJECT, points=100)
    make_level_state(user, trail, SkillLevel.MIDDLE)
    calls = []

    def stale_once(session, *args):
        calls.append(args)
        if len(calls) == 1:
            raise StaleDataError("task_progress row changed underneath us")
        return levels.apply_level_transition(session, *args)

    monkeypatch.setattr(dispatcher, "apply_level_transition", stale_once)
    monkeypatch.setattr(dispatcher, "LEVEL_LOCK_BACKOFF_SECONDS", 0)

    result = apply_review_outcome(
        db, user.id, module.id, trail.id, ModuleType.PROJECT, ReviewOutcome.APPROVED,
        queue=recording_queue,
    )

    assert len(calls) == 2
    assert result.transition.new_level == SkillLevel.SENIOR
    assert result.credited is True
    assert _xp(db, user.id) == 100
