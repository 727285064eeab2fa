from academy.analytics.funnel import STAGES, build_funnel, clamp_counts
from academy.progression.models import ModuleProgress, ModuleStatus, ProgressState
from academy.trails.models import Certificate, TrailEnrollment


def test_clamp_caps_each_stage_by_the_previous_one():
    assert clamp_counts([10, 12, 8, 9, 3, 5]) == [10, 10, 8, 8, 3, 3]


def test_clamp_handles_negatives_and_empty():
    assert clamp_counts([]) == []
    assert clamp_counts([5, -1, 2]) == [5, 0, 0]


def test_empty_funnel(db):
    funnel = build_funnel(db)
    assert [s.stage for s in funnel] == STAGES
    assert all(s.count == 0 and s.percent == 0 for s in funnel)


def test_funnel_counts_students_only_and_is_monotonic(db, make_user, make_trail, make_module, make_submission):
    trail = make_trail()
    module = make_module(trail=trail)
    students = [make_user() for _ in range(4)]
    make_user(role="ADMIN")

    for student in students[:3]:
        db.add(TrailEnrollment(user_id=student.id, trail_id=trail.id))
    db.add(ModuleProgress(
        user_id=students[0].id,
        module_id=module.id,
        status=ModuleStatus.COMPLETED,
        state=ProgressState.COMPLETED_BY_STUDENT,
        has_earned_xp=True,
        skipped_by_teacher=False,
    ))
    # Certificates issued without tracked progress still cannot exceed the stage before
    db.add(Certificate(user_id=students[1].id, trail_id=trail.id, code="C-1"))
    db.add(Certificate(user_id=students[2].id, trail_id=trail.id, code="C-2"))
    db.commit()
    make_submission(students[0], module)
    make_submission(students[0], module)

    funnel = build_funnel(db)
    counts = [s.count for s in funnel]

    assert counts == [4, 3, 1, 1, 1, 1]
    assert [s.percent for s in funnel] == [100, 75, 25, 25, 25, 25]
    assert counts == sorted(counts, reverse=True)
