"""
Engine-owned tables.

The uniqueness constraints here are what keep crediting, leveling and
unlocking correct under concurrent reviews:
  - module_progress   UNIQUE(user_id, module_id)
  - task_progress     UNIQUE(user_id, trail_id)  + version counter
  - user_achievements UNIQUE(user_id, achievement_id)
"""
from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.sql import func

from academy.db.base import Base


class ModuleStatus:
    NOT_STARTED = "NOT_STARTED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"


class ProgressState:
    """Explicit lifecycle of a ModuleProgress row."""
    NOT_STARTED = "NOT_STARTED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED_BY_STUDENT = "COMPLETED_BY_STUDENT"
    COMPLETED_BY_STAFF_SKIP = "COMPLETED_BY_STAFF_SKIP"

    COMPLETED = (COMPLETED_BY_STUDENT, COMPLETED_BY_STAFF_SKIP)


class SkillLevel:
    JUNIOR = "JUNIOR"
    MIDDLE = "MIDDLE"
    SENIOR = "SENIOR"

    ALL = (JUNIOR, MIDDLE, SENIOR)


class LevelStatus:
    PENDING = "PENDING"
    PASSED = "PASSED"
    FAILED = "FAILED"


class ModuleProgress(Base):
    __tablename__ = "module_progress"

    id = Column(Integer, primary_key=True, index=True)

    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    module_id = Column(Integer, ForeignKey("modules.id"), nullable=False)

    status = Column(String(16), nullable=False, default=ModuleStatus.NOT_STARTED)
    state = Column(String(32), nullable=False, default=ProgressState.NOT_STARTED)

    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    # Mirrors of `state` kept for read-side consumers; written together with it
    has_earned_xp = Column(Boolean, nullable=False, default=False)
    skipped_by_teacher = Column(Boolean, nullable=False, default=False)
    skipped_at = Column(DateTime(timezone=True), nullable=True)
    skipped_by = Column(Integer, ForeignKey("users.id"), nullable=True)

    __table_args__ = (
        UniqueConstraint("user_id", "module_id", name="uq_module_progress"),
    )


class SkillLevelState(Base):
    """
    Per (user, trail) skill level. Seeded by the trail leveling setup;
    the engine only mutates existing rows.
    """
    __tablename__ = "task_progress"

    id = Column(Integer, primary_key=True, index=True)

    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    trail_id = Column(Integer, ForeignKey("trails.id"), nullable=False)

    current_level = Column(String(16), nullable=False, default=SkillLevel.JUNIOR)
    junior_status = Column(String(16), nullable=False, default=LevelStatus.PENDING)
    middle_status = Column(String(16), nullable=False, default=LevelStatus.PENDING)
    senior_status = Column(String(16), nullable=False, default=LevelStatus.PENDING)

    version = Column(Integer, nullable=False, default=1)

    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("user_id", "trail_id", name="uq_task_progress"),
    )

    # Concurrent writers see StaleDataError instead of a lost update
    __mapper_args__ = {"version_id_col": version}


class AchievementUnlock(Base):
    __tablename__ = "user_achievements"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    achievement_id = Column(String(64), nullable=False)  # e.g. "FIRST_MODULE", "MODULES_10"
    earned_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint("user_id", "achievement_id", name="uq_user_achievement"),
    )
