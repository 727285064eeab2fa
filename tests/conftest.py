"""
Pytest configuration and fixtures.

Every test gets its own SQLite file under tmp_path. A file (not :memory:)
is used so achievement passes running on worker threads, each with their
own connection, see what the test committed.
"""
import itertools
import os

import pytest
from sqlalchemy.orm import sessionmaker

# Keep the production engine away from the working directory
os.environ.setdefault("DATABASE_URL", "sqlite:///./test-academy.db")

from academy.db.base import Base, make_engine  # noqa: E402
from academy.users.models import User  # noqa: E402
from academy.trails.models import Trail, Module, ModuleType, TrailEnrollment, Certificate  # noqa: E402,F401
from academy.submissions.models import Submission, Review, QuestionAttempt  # noqa: E402,F401
from academy.progression.models import (  # noqa: E402,F401
    AchievementUnlock,
    LevelStatus,
    ModuleProgress,
    SkillLevel,
    SkillLevelState,
)
from academy.activity.models import ActivityDay  # noqa: E402,F401
from academy.notifications.models import Notification  # noqa: E402,F401
from academy.progression.tasks import AchievementQueue  # noqa: E402


@pytest.fixture
def engine(tmp_path):
    eng = make_engine(f"sqlite:///{tmp_path / 'academy-test.db'}")
    Base.metadata.create_all(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


class RecordingQueue:
    """Stands in for AchievementQueue when a test only cares what got scheduled."""

    def __init__(self):
        self.submitted = []

    def submit(self, user_id):
        self.submitted.append(user_id)
        return None


@pytest.fixture
def recording_queue():
    return RecordingQueue()


@pytest.fixture
def achievement_queue(session_factory):
    queue = AchievementQueue(session_factory=session_factory, max_workers=1)
    yield queue
    queue.shutdown(wait=True)


# ======================================================
# FACTORIES
# ======================================================
@pytest.fixture
def make_user(db):
    counter = itertools.count(1)

    def _make(**kwargs):
        n = next(counter)
        kwargs.setdefault("email", f"student{n}@example.com")
        kwargs.setdefault("username", f"student{n}")
        user = User(**kwargs)
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make


@pytest.fixture
def make_trail(db):
    counter = itertools.count(1)

    def _make(**kwargs):
        n = next(counter)
        kwargs.setdefault("slug", f"trail-{n}")
        kwargs.setdefault("title", f"Trail {n}")
        trail = Trail(**kwargs)
        db.add(trail)
        db.commit()
        db.refresh(trail)
        return trail

    return _make


@pytest.fixture
def make_module(db, make_trail):
    counter = itertools.count(1)

    def _make(trail=None, **kwargs):
        n = next(counter)
        trail = trail or make_trail()
        kwargs.setdefault("slug", f"module-{n}")
        kwargs.setdefault("title", f"Module {n}")
        kwargs.setdefault("type", ModuleType.THEORY)
        kwargs.setdefault("points", 50)
        kwargs.setdefault("order", n)
        module = Module(trail_id=trail.id, **kwargs)
        db.add(module)
        db.commit()
        db.refresh(module)
        return module

    return _make


@pytest.fixture
def make_level_state(db):
    def _make(user, trail, level=SkillLevel.JUNIOR, **statuses):
        state = SkillLevelState(
            user_id=user.id,
            trail_id=trail.id,
            current_level=level,
            junior_status=statuses.get("junior_status", LevelStatus.PENDING),
            middle_status=statuses.get("middle_status", LevelStatus.PENDING),
            senior_status=statuses.get("senior_status", LevelStatus.PENDING),
        )
        db.add(state)
        db.commit()
        db.refresh(state)
        return state

    return _make


@pytest.fixture
def make_submission(db):
    def _make(user, module, status="PENDING", score=None, reviewer=None):
        submission = Submission(user_id=user.id, module_id=module.id, status=status)
        db.add(submission)
        db.commit()
        db.refresh(submission)
        if score is not None:
            db.add(Review(
                submission_id=submission.id,
                reviewer_id=(reviewer or user).id,
                score=score,
            ))
            db.commit()
        return submission

    return _make
