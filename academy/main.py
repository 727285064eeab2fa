import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from academy.core.config import LOG_LEVEL
from academy.db.base import Base, engine, log_diagnostics

# Import models so create_all picks them up
from academy.users.models import User  # noqa: F401
from academy.trails.models import Trail, Module, TrailEnrollment, Certificate  # noqa: F401
from academy.submissions.models import Submission, Review, QuestionAttempt  # noqa: F401
from academy.progression.models import ModuleProgress, SkillLevelState, AchievementUnlock  # noqa: F401
from academy.activity.models import ActivityDay  # noqa: F401
from academy.notifications.models import Notification  # noqa: F401

from academy.api.routes import router as progression_router
from academy.progression.tasks import shutdown_default_queue

logging.basicConfig(level=LOG_LEVEL, format="%(levelname)s: %(name)s %(message)s")


@asynccontextmanager
async def lifespan(_app: FastAPI):
    log_diagnostics()
    # Create database tables (still useful in dev; in production prefer Alembic)
    Base.metadata.create_all(bind=engine)
    yield
    # Pending achievement passes are dropped; the next event re-evaluates them
    shutdown_default_queue(wait=False)


app = FastAPI(title="Academy Progression", version="0.1.0", lifespan=lifespan)

app.include_router(progression_router)
