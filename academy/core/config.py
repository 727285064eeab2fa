"""
Configuration constants for the application.
"""
import os
from pathlib import Path

from dotenv import load_dotenv

# Load environment variables from .env file if it exists
env_path = Path(__file__).resolve().parent.parent.parent / '.env'
load_dotenv(dotenv_path=env_path)

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# Timezone used for users without their own (time-of-day achievements)
DEFAULT_TIMEZONE = os.getenv("DEFAULT_TIMEZONE", "UTC")

# Worker threads for the detached achievement pass
ACHIEVEMENT_WORKERS = int(os.getenv("ACHIEVEMENT_WORKERS", "2"))

# Retries for conflicting writes on the review/skip critical path
LEVEL_LOCK_RETRIES = int(os.getenv("LEVEL_LOCK_RETRIES", "3"))
LEVEL_LOCK_BACKOFF_SECONDS = float(os.getenv("LEVEL_LOCK_BACKOFF_SECONDS", "0.05"))

# Only users with this role take part in the leaderboard
LEADERBOARD_ROLE = "STUDENT"

# Time-of-day and activity-gap thresholds for achievements
NIGHT_OWL_HOUR = 23
EARLY_BIRD_HOUR = 7
COMEBACK_GAP_DAYS = 7
