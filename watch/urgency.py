from __future__ import annotations

from enum import Enum
from typing import Optional

from watch.numbers import parse_int


class UrgencyTier(str, Enum):
    PASSED = "passed"
    IMMINENT = "imminent"
    NEAR = "near"
    APPROACHING = "approaching"
    FAR = "far"


def ticket_distance(user_ticket_number: object, current_visit_seq: object) -> Optional[int]:
    """user ticket - current number, or None when either side is not a number."""
    target = parse_int(user_ticket_number)
    current = parse_int(current_visit_seq)
    if target is None or current is None:
        return None
    return target - current


def classify_distance(distance: Optional[int]) -> UrgencyTier:
    if distance is None:
        return UrgencyTier.FAR
    if distance <= 0:
        return UrgencyTier.PASSED
    if distance <= 2:
        return UrgencyTier.IMMINENT
    if distance <= 5:
        return UrgencyTier.NEAR
    if distance <= 10:
        return UrgencyTier.APPROACHING
    return UrgencyTier.FAR
