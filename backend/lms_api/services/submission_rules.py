"""Rules shared by assignment and quiz submissions."""

import math
from datetime import datetime, timedelta
from typing import Optional

from fastapi import HTTPException, status


def late_days_for(
    due_date: Optional[datetime],
    allow_late: bool,
    now: datetime,
    kind: str,
    grace_minutes: int = 0,
) -> Optional[int]:
    """Whole days past the deadline (rounded up), or ``None`` when on time.

    Raises 400 when the deadline passed and late work is not accepted.
    """
    if due_date is None:
        return None
    deadline = due_date + timedelta(minutes=grace_minutes or 0)
    if now <= deadline:
        return None
    if not allow_late:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Late submissions are not allowed for this {kind}",
        )
    return math.ceil((now - deadline).total_seconds() / 86400)


def ensure_attempts_left(used_attempts: int, max_attempts: Optional[int]) -> None:
    if max_attempts and max_attempts > 0 and used_attempts >= max_attempts:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Maximum submission attempts ({max_attempts}) exceeded",
        )


def final_score_for(raw_score: float, late_days: Optional[int], late_penalty: Optional[float]) -> float:
    """Apply ``late_penalty`` percent per late day to ``raw_score``, never below zero."""
    if not late_days or not late_penalty:
        return round(raw_score, 2)
    deduction = raw_score * min(1.0, late_days * late_penalty / 100)
    return round(max(0.0, raw_score - deduction), 2)


def letter_grade(score: float) -> str:
    if score >= 90:
        return "A"
    if score >= 80:
        return "B"
    if score >= 70:
        return "C"
    if score >= 60:
        return "D"
    return "F"
