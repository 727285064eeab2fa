from sqlalchemy import Column, Integer, String, Text, Boolean, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.sql import func

from academy.db.base import Base


class SubmissionStatus:
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REVISION = "REVISION"
    FAILED = "FAILED"


class Submission(Base):
    __tablename__ = "submissions"

    id = Column(Integer, primary_key=True, index=True)

    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    module_id = Column(Integer, ForeignKey("modules.id"), nullable=False)

    status = Column(String(16), nullable=False, default=SubmissionStatus.PENDING)

    created_at = Column(DateTime(timezone=True), server_default=func.now())


# ======================================================
# REVIEW (one per reviewed submission)
# ======================================================
class Review(Base):
    __tablename__ = "reviews"

    id = Column(Integer, primary_key=True, index=True)

    submission_id = Column(
        Integer,
        ForeignKey("submissions.id"),
        nullable=False,
        unique=True,
    )
    reviewer_id = Column(Integer, ForeignKey("users.id"), nullable=False)

    # 0..10, 10 counts as a perfect score
    score = Column(Integer, nullable=False)

    strengths = Column(Text, nullable=True)
    improvements = Column(Text, nullable=True)
    comment = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())


# ======================================================
# QUIZ ANSWERS (read by the quiz achievements)
# ======================================================
class QuestionAttempt(Base):
    __tablename__ = "question_attempts"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    question_id = Column(Integer, nullable=False)

    is_correct = Column(Boolean, nullable=False, default=False)
    attempts = Column(Integer, nullable=False, default=1)
    earned_score = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        UniqueConstraint("user_id", "question_id", name="uq_question_attempt"),
    )
