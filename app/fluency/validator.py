"""
Transition rules: one step at a time, in either direction.
"""
from enum import Enum

from app.fluency.errors import InvalidTransition, UNKNOWN_LEVEL, NO_OP_TRANSITION, SKIPPED_LEVEL
from app.fluency.levels import parse_level


class Direction(str, Enum):
    UPGRADE = "upgrade"
    DOWNGRADE = "downgrade"


def validate(current_level, requested_level) -> Direction:
    """
    Return the direction of a legal transition, or raise InvalidTransition.

    Rules are checked in order: unknown code, same level, more than one step.
    """
    current = parse_level(current_level)
    requested = parse_level(requested_level)
    if current is None or requested is None:
        raise InvalidTransition(UNKNOWN_LEVEL)

    if requested == current:
        raise InvalidTransition(NO_OP_TRANSITION)

    step = requested.ordinal - current.ordinal
    if abs(step) != 1:
        raise InvalidTransition(SKIPPED_LEVEL)

    return Direction.UPGRADE if step > 0 else Direction.DOWNGRADE
