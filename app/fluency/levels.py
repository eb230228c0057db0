"""
CEFR fluency levels and their ordering.

Levels form a closed, totally ordered set A1 < A2 < B1 < B2 < C1.
Free-form codes are turned into a Level once, at the edge (parse_level);
everything past that point works with Level members only.
"""
from enum import Enum
from typing import Optional


class Level(str, Enum):
    A1 = "A1"
    A2 = "A2"
    B1 = "B1"
    B2 = "B2"
    C1 = "C1"

    @property
    def ordinal(self) -> int:
        return LEVEL_ORDER.index(self)

    @property
    def metadata(self) -> dict:
        return LEVEL_METADATA[self]


LEVEL_ORDER: tuple[Level, ...] = (Level.A1, Level.A2, Level.B1, Level.B2, Level.C1)

MIN_LEVEL = LEVEL_ORDER[0]
MAX_LEVEL = LEVEL_ORDER[-1]
DEFAULT_LEVEL = MIN_LEVEL

LEVEL_METADATA = {
    Level.A1: {"code": "A1", "name": "Beginner", "description": "Can understand and use familiar everyday expressions", "color": "#10b981", "icon": "🌱"},
    Level.A2: {"code": "A2", "name": "Elementary", "description": "Can communicate in simple and routine tasks", "color": "#3b82f6", "icon": "🌿"},
    Level.B1: {"code": "B1", "name": "Intermediate", "description": "Can deal with most situations while traveling", "color": "#8b5cf6", "icon": "🌳"},
    Level.B2: {"code": "B2", "name": "Upper Intermediate", "description": "Can interact with a degree of fluency and spontaneity", "color": "#f59e0b", "icon": "🏆"},
    Level.C1: {"code": "C1", "name": "Advanced", "description": "Can express ideas fluently and spontaneously", "color": "#ef4444", "icon": "👑"},
}


def is_valid_level(code) -> bool:
    return isinstance(code, str) and code in Level.__members__


def parse_level(code) -> Optional[Level]:
    """Level for *code*, or None if it is not one of the known codes."""
    if isinstance(code, Level):
        return code
    if not is_valid_level(code):
        return None
    return Level(code)


def index(level: Level) -> int:
    return level.ordinal


def next_level(level: Level) -> Optional[Level]:
    i = level.ordinal
    return LEVEL_ORDER[i + 1] if i + 1 < len(LEVEL_ORDER) else None


def previous_level(level: Level) -> Optional[Level]:
    i = level.ordinal
    return LEVEL_ORDER[i - 1] if i > 0 else None


def compare_levels(a: Level, b: Level) -> int:
    """-1 if a < b, 0 if equal, 1 if a > b."""
    return (a.ordinal > b.ordinal) - (a.ordinal < b.ordinal)


def format_level(level: Level, include_description: bool = False) -> str:
    meta = level.metadata
    if include_description:
        return f"{meta['code']} - {meta['name']}: {meta['description']}"
    return f"{meta['code']} - {meta['name']}"


def all_levels() -> list[dict]:
    return [dict(LEVEL_METADATA[lvl], index=lvl.ordinal) for lvl in LEVEL_ORDER]
