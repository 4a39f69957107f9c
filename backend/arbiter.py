"""
Buzz lock arbiter.

``locked_by`` on the match row is the one mutual-exclusion point of a match:
whoever sets it may answer the current question.  It is only ever taken with a
single conditional UPDATE (``... WHERE locked_by IS NULL``) so that, of N
simultaneous buzzers on any number of server processes, exactly one sees a
row count of 1.  Reading the row first and writing afterwards would let two
callers both observe NULL.
"""

from __future__ import annotations

from typing import Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from db import Match, utcnow


def try_acquire(session: Session, match_id: str, player_id: str, index: Optional[int] = None) -> bool:
    """Take the buzz lock for ``player_id``.  True only for the single winner.

    With ``index`` the lock is only taken while that question is current, so a
    caller that read the match before another player's answer advanced it
    cannot lock the next question by accident.
    """
    conditions = [
        Match.id == match_id,
        Match.state == "in_progress",
        Match.locked_by.is_(None),
    ]
    if index is not None:
        conditions.append(Match.current_index == index)

    result = session.execute(
        update(Match)
        .where(*conditions)
        .values(locked_by=player_id, buzzed_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1
