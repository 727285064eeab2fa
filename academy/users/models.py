from sqlalchemy import Column, Integer, String, DateTime
from sqlalchemy.sql import func

from academy.core.config import DEFAULT_TIMEZONE
from academy.db.base import Base


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)

    email = Column(String, unique=True, index=True, nullable=False)
    username = Column(String, unique=True, index=True, nullable=False)

    # "STUDENT" (default), "TEACHER", "ADMIN"
    role = Column(String, default="STUDENT", nullable=False)

    # Written only by the XP ledger, always as a store-level increment/decrement
    total_xp = Column(Integer, nullable=False, default=0, server_default="0")
    # Written only by the activity tracker
    current_streak = Column(Integer, nullable=False, default=0, server_default="0")

    telegram_chat_id = Column(String, nullable=True)
    timezone = Column(String, nullable=False, default=DEFAULT_TIMEZONE)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
