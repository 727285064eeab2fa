"""
Achievement catalog and evaluator.

Each achievement is a plain value: id, display fields, rarity and a
predicate over StatSnapshot. The evaluator knows nothing about individual
achievements; it loads one snapshot, runs every predicate that is not yet
unlocked and inserts the winners.

At-most-once is enforced by UNIQUE(user_id, achievement_id) alone: a
duplicate insert from a concurrent pass is rolled back and skipped.
"""
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from academy.core.config import COMEBACK_GAP_DAYS, EARLY_BIRD_HOUR, NIGHT_OWL_HOUR
from academy.progression.models import AchievementUnlock
from academy.progression.snapshot import StatSnapshot, build_snapshot

logger = logging.getLogger(__name__)


class Rarity(str, Enum):
    COMMON = "common"
    UNCOMMON = "uncommon"
    RARE = "rare"
    EPIC = "epic"
    LEGENDARY = "legendary"


RARITY_ORDER = [r.value for r in Rarity]


@dataclass(frozen=True)
class Achievement:
    id: str
    icon: str
    label: str
    desc: str
    rarity: Rarity
    predicate: Callable[[StatSnapshot], bool]


def _at_least(attr: str, n: int) -> Callable[[StatSnapshot], bool]:
    return lambda s: getattr(s, attr) >= n


def _family(prefix, attr, icon, steps, label, desc) -> List[Achievement]:
    """Threshold family, e.g. MODULES_5 / MODULES_10 / ... from (n, rarity) pairs."""
    return [
        Achievement(
            id=f"{prefix}_{n}",
            icon=icon,
            label=label.format(n=n),
            desc=desc.format(n=n),
            rarity=rarity,
            predicate=_at_least(attr, n),
        )
        for n, rarity in steps
    ]


C, U, R, E, L = Rarity.COMMON, Rarity.UNCOMMON, Rarity.RARE, Rarity.EPIC, Rarity.LEGENDARY


def _night_owl(s: StatSnapshot) -> bool:
    return s.last_completion_hour is not None and s.last_completion_hour >= NIGHT_OWL_HOUR


def _early_bird(s: StatSnapshot) -> bool:
    return s.last_completion_hour is not None and s.last_completion_hour < EARLY_BIRD_HOUR


def _comeback(s: StatSnapshot) -> bool:
    return s.comeback_gap_days is not None and s.comeback_gap_days >= COMEBACK_GAP_DAYS


def _top(n: int) -> Callable[[StatSnapshot], bool]:
    return lambda s: 0 < s.rank <= n


def _level(name: str) -> Callable[[StatSnapshot], bool]:
    return lambda s: name in s.levels_passed


CATALOG: List[Achievement] = [
    # Getting started
    Achievement("FIRST_MODULE", "🎯", "First Step", "Complete your first module", C, _at_least("modules_completed", 1)),
    Achievement("FIRST_TRAIL", "🚀", "First Trail", "Enroll in your first trail", C, _at_least("trails_enrolled", 1)),
    Achievement("FIRST_SUBMISSION", "📝", "First Work", "Send your first work for review", C, _at_least("submissions_total", 1)),
    Achievement("FIRST_APPROVED", "✅", "First Success", "Get your first work approved", C, _at_least("approved_count", 1)),
    Achievement("FIRST_CERTIFICATE", "📜", "Certified", "Receive your first certificate", R, _at_least("certificates_count", 1)),
    Achievement("PROJECT_FIRST", "🛠️", "First Project", "Complete your first project module", U, _at_least("project_modules_completed", 1)),
]

CATALOG += _family(
    "MODULES", "modules_completed", "📚",
    [(5, C), (10, U), (15, U), (20, U), (25, R), (50, R), (75, E), (100, E), (150, L)],
    "{n} Modules", "Complete {n} modules",
)
CATALOG += _family(
    "XP", "total_xp", "⭐",
    [(100, C), (200, C), (250, C), (500, U), (750, U), (1000, R),
     (2000, R), (3000, E), (5000, E), (7500, E), (10000, L), (15000, L)],
    "{n} XP", "Earn {n} XP",
)
CATALOG += _family(
    "STREAK", "current_streak", "🔥",
    [(3, C), (5, C), (7, U), (14, U), (21, R), (30, R), (45, E), (90, E), (100, E), (180, L), (365, L)],
    "{n}-Day Streak", "Stay active {n} days in a row",
)

CATALOG += [
    Achievement("PERFECT_10", "💎", "Perfectionist", "Get a 10/10 score", U, _at_least("perfect_score_count", 1)),
    Achievement("PERFECT_STREAK_3", "💠", "Perfect Series", "Get three 10/10 scores in a row", E, _at_least("longest_perfect_run", 3)),
]
CATALOG += _family(
    "PERFECT", "perfect_score_count", "💎",
    [(3, R), (5, R), (20, E), (25, L)],
    "{n} Perfect Scores", "Get {n} scores of 10/10",
)
CATALOG += _family(
    "CERTIFICATES", "certificates_count", "📜",
    [(2, R), (3, E), (5, L)],
    "{n} Certificates", "Receive {n} certificates",
)

CATALOG += [
    Achievement("TOP_10", "🏅", "Top 10", "Reach the leaderboard top 10", R, _top(10)),
    Achievement("TOP_5", "🥉", "Top 5", "Reach the leaderboard top 5", R, _top(5)),
    Achievement("TOP_3", "🥈", "Podium", "Reach the leaderboard top 3", E, _top(3)),
    Achievement("TOP_1", "🥇", "Champion", "Take first place on the leaderboard", L, _top(1)),
]

CATALOG += _family(
    "TRAILS", "trails_enrolled", "🧭",
    [(2, C), (3, U), (5, R)],
    "{n} Trails", "Enroll in {n} trails",
)
CATALOG += _family(
    "SUBMISSIONS", "submissions_total", "📤",
    [(5, C), (10, C), (25, U), (50, R), (100, E)],
    "{n} Submissions", "Send {n} works for review",
)
CATALOG += _family(
    "APPROVED", "approved_count", "👍",
    [(5, C), (10, U), (25, R), (50, E), (100, L)],
    "{n} Approved", "Get {n} works approved",
)
CATALOG += _family(
    "PROJECTS", "project_modules_completed", "🛠️",
    [(3, R), (5, E), (10, L)],
    "{n} Projects", "Complete {n} project modules",
)

CATALOG += [
    Achievement("TELEGRAM_CONNECTED", "📨", "Connected", "Link your Telegram account", C, lambda s: s.telegram_linked),
    # Quiz
    Achievement("QUIZ_MASTER", "🧠", "Quiz Master", "Answer 50 questions correctly", U, _at_least("correct_answers", 50)),
    Achievement("QUIZ_CHAMPION", "🏆", "Quiz Champion", "Answer 100 questions correctly", R, _at_least("correct_answers", 100)),
    Achievement("FIRST_TRY", "🎯", "Sharpshooter", "Answer 10 questions right on the first try", U, _at_least("first_try_correct", 10)),
    # Skill levels
    Achievement("LEVEL_JUNIOR", "🥚", "Junior", "Pass the Junior level on a trail", U, _level("JUNIOR")),
    Achievement("LEVEL_MIDDLE", "🐣", "Middle", "Pass the Middle level on a trail", R, _level("MIDDLE")),
    Achievement("LEVEL_SENIOR", "🦅", "Senior", "Pass the Senior level on a trail", L, _level("SENIOR")),
    # Timing
    Achievement("NIGHT_OWL", "🦉", "Night Owl", "Complete a module after 23:00", U, _night_owl),
    Achievement("EARLY_BIRD", "🐦", "Early Bird", "Complete a module before 07:00", U, _early_bird),
    Achievement("SPEED_DEMON", "⏱️", "Speedster", "Complete a module within a day of starting it", U, lambda s: s.has_same_day_completion),
    Achievement("SPEED_WEEK", "⚡", "Sprint Week", "Complete 5 modules in 7 days", R, _at_least("modules_completed_last_7_days", 5)),
    Achievement("SPEED_MARATHON", "🏃", "Marathon", "Complete 10 modules in 30 days", R, _at_least("modules_completed_last_30_days", 10)),
    # Behaviour
    Achievement("COMEBACK", "🔄", "Comeback", "Return after a week or more away", U, _comeback),
    Achievement("PERSISTENT", "🧗", "Persistent", "Keep going after 3 returned works", U, _at_least("failed_or_revision_count", 3)),
]

_BY_ID: Dict[str, Achievement] = {a.id: a for a in CATALOG}


def get_achievement(achievement_id: str) -> Optional[Achievement]:
    return _BY_ID.get(achievement_id)


def eligible(snapshot: StatSnapshot, catalog: Iterable[Achievement] = CATALOG) -> List[str]:
    """Ids whose predicate holds for the snapshot, in catalog order."""
    return [a.id for a in catalog if a.predicate(snapshot)]


def _unlock(db: Session, user_id: int, achievement_id: str) -> bool:
    """Insert one unlock. True if newly unlocked, False if it already existed."""
    db.add(AchievementUnlock(user_id=user_id, achievement_id=achievement_id))
    try:
        db.commit()
    except IntegrityError:
        # Lost the race to a concurrent pass: the unlock exists, which is all we need
        db.rollback()
        return False
    logger.info("[ACHIEVEMENT] user=%s earned '%s'", user_id, achievement_id)
    return True


def evaluate(db: Session, user_id: int, catalog: Iterable[Achievement] = CATALOG) -> List[str]:
    """
    Unlock every achievement the user now qualifies for.
    Returns only the ids this call inserted.
    """
    snapshot = build_snapshot(db, user_id)
    earned = {
        row[0]
        for row in db.query(AchievementUnlock.achievement_id)
        .filter(AchievementUnlock.user_id == user_id)
        .all()
    }
    # End the read transaction so each insert starts from current state
    db.rollback()

    newly: List[str] = []
    for achievement in catalog:
        if achievement.id in earned:
            continue
        if not achievement.predicate(snapshot):
            continue
        if _unlock(db, user_id, achievement.id):
            newly.append(achievement.id)
    return newly


def get_user_achievements(db: Session, user_id: int) -> List[dict]:
    """Catalog with earned flags, for display."""
    rows = db.query(AchievementUnlock).filter(AchievementUnlock.user_id == user_id).all()
    earned_at = {r.achievement_id: r.earned_at for r in rows}
    result = []
    for a in CATALOG:
        item = {
            "id": a.id,
            "icon": a.icon,
            "label": a.label,
            "desc": a.desc,
            "rarity": a.rarity.value,
            "earned": a.id in earned_at,
        }
        if a.id in earned_at:
            item["earned_at"] = str(earned_at[a.id]) if earned_at[a.id] else None
        result.append(item)
    return result
