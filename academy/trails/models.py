from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.sql import func

from academy.db.base import Base


class ModuleType:
    THEORY = "THEORY"
    PRACTICE = "PRACTICE"
    # Capstone module; the only type that moves the skill level
    PROJECT = "PROJECT"


class TrailStatus:
    NOT_ADMITTED = "NOT_ADMITTED"
    LEARNING = "LEARNING"
    ACCEPTED = "ACCEPTED"


class Trail(Base):
    __tablename__ = "trails"

    id = Column(Integer, primary_key=True, index=True)
    slug = Column(String(255), unique=True, nullable=False)
    title = Column(String(255), nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())


class Module(Base):
    __tablename__ = "modules"

    id = Column(Integer, primary_key=True, index=True)
    trail_id = Column(Integer, ForeignKey("trails.id"), nullable=False, index=True)

    slug = Column(String(255), nullable=False)
    title = Column(String(255), nullable=False)

    type = Column(String(16), nullable=False, default=ModuleType.THEORY)
    level = Column(String(16), nullable=True)  # "Junior" | "Middle" | "Senior" for project modules
    points = Column(Integer, nullable=False, default=0)
    order = Column(Integer, nullable=False, default=1)


class TrailEnrollment(Base):
    __tablename__ = "trail_enrollments"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    trail_id = Column(Integer, ForeignKey("trails.id"), nullable=False)

    trail_status = Column(String(16), nullable=False, default=TrailStatus.LEARNING)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint("user_id", "trail_id", name="uq_trail_enrollment"),
    )


class Certificate(Base):
    """Issued by the certificate collaborator; the engine only counts them."""
    __tablename__ = "certificates"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    trail_id = Column(Integer, ForeignKey("trails.id"), nullable=False)

    code = Column(String(64), unique=True, nullable=False)
    issued_at = Column(DateTime(timezone=True), server_default=func.now())
