"""
XP level ladder shown next to a user's total XP.
Single source of truth for "which level is N XP".
"""
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class XPLevel:
    level: int
    name: str
    min_xp: int
    max_xp: Optional[int]  # None = top level
    icon: str


# Add new levels at the end; thresholds must stay increasing
LEVELS = [
    XPLevel(1, "Newcomer", 0, 100, "🌱"),
    XPLevel(2, "Learner", 100, 250, "📖"),
    XPLevel(3, "Practitioner", 250, 500, "💪"),
    XPLevel(4, "Specialist", 500, 1000, "⭐"),
    XPLevel(5, "Expert", 1000, 2000, "🏆"),
    XPLevel(6, "Master", 2000, 3500, "👑"),
    XPLevel(7, "Guru", 3500, 5000, "🔥"),
    XPLevel(8, "Legend", 5000, None, "🌟"),
]


def level_for_xp(xp: int) -> XPLevel:
    current = LEVELS[0]
    for level in LEVELS:
        if xp >= level.min_xp:
            current = level
    return current


def xp_to_next_level(xp: int) -> int:
    """XP still missing for the next level (0 at the top level)."""
    current = level_for_xp(xp)
    if current.max_xp is None:
        return 0
    return current.max_xp - xp
