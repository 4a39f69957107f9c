"""
Match store: row-level reads and writes for matches, rosters and question
sequences.

Every function takes an open ``Session`` and never commits; the caller owns
the transaction.  Writes that decide a race (start, advance) are single
conditional UPDATEs whose row count says whether this caller won.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from db import Match, MatchPlayer, MatchQuestion, new_id


def get_match(session: Session, match_id: str, *, for_update: bool = False) -> Optional[Match]:
    # populate_existing: conditional UPDATEs bypass the identity map
    stmt = select(Match).where(Match.id == match_id).execution_options(populate_existing=True)
    if for_update:
        stmt = stmt.with_for_update()
    return session.scalars(stmt).first()


def find_match_by_code(session: Session, join_code: str, *, for_update: bool = False) -> Optional[Match]:
    """Most recent match carrying ``join_code`` (codes are only unique while waiting)."""
    stmt = (
        select(Match)
        .where(Match.join_code == join_code.strip().upper())
        .order_by(Match.created_at.desc())
        .limit(1)
    )
    if for_update:
        stmt = stmt.with_for_update()
    return session.scalars(stmt).first()


def insert_match(
    session: Session,
    *,
    join_code: str,
    category: str,
    difficulty: str,
    question_ids: list[str],
    host_name: str,
    host_token: str,
) -> tuple[Match, MatchPlayer]:
    """Stage a waiting match, its host and its full question sequence."""
    match = Match(
        id=new_id(),
        join_code=join_code,
        category=category,
        difficulty=difficulty,
        question_count=len(question_ids),
        state="waiting",
        current_index=0,
    )
    session.add(match)
    session.flush()

    host = MatchPlayer(
        id=new_id(),
        match_id=match.id,
        name=host_name,
        token=host_token,
        is_host=True,
        score=0,
    )
    session.add(host)
    session.add_all(
        MatchQuestion(match_id=match.id, order_no=i, question_id=qid)
        for i, qid in enumerate(question_ids)
    )
    session.flush()
    return match, host


def add_player(session: Session, match_id: str, name: str, token: str) -> MatchPlayer:
    player = MatchPlayer(id=new_id(), match_id=match_id, name=name, token=token, is_host=False, score=0)
    session.add(player)
    session.flush()
    return player


def list_players(session: Session, match_id: str) -> list[MatchPlayer]:
    stmt = (
        select(MatchPlayer)
        .where(MatchPlayer.match_id == match_id)
        .order_by(MatchPlayer.joined_at, MatchPlayer.id)
    )
    return list(session.scalars(stmt))


def find_player_by_token(session: Session, match_id: str, token: str) -> Optional[MatchPlayer]:
    stmt = select(MatchPlayer).where(MatchPlayer.match_id == match_id, MatchPlayer.token == token)
    return session.scalars(stmt).first()


def question_id_at(session: Session, match_id: str, order_no: int) -> Optional[str]:
    stmt = select(MatchQuestion.question_id).where(
        MatchQuestion.match_id == match_id, MatchQuestion.order_no == order_no
    )
    return session.scalars(stmt).first()


def question_sequence(session: Session, match_id: str) -> list[str]:
    stmt = (
        select(MatchQuestion.question_id)
        .where(MatchQuestion.match_id == match_id)
        .order_by(MatchQuestion.order_no)
    )
    return list(session.scalars(stmt))


def start_match(session: Session, match_id: str) -> bool:
    """waiting -> in_progress at index 0.  False if the match already left waiting."""
    result = session.execute(
        update(Match)
        .where(Match.id == match_id, Match.state == "waiting")
        .values(state="in_progress", current_index=0, locked_by=None, buzzed_at=None)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def advance(session: Session, match_id: str, player_id: str, index: int, *, finish: bool) -> bool:
    """Move past question ``index`` and release the lock, as the lock holder.

    The index moves in the same statement that clears ``locked_by``, so no
    other player can ever hold the lock on the answered question.  False when
    ``player_id`` does not hold the lock on ``index``.
    """
    values: dict = {"locked_by": None, "buzzed_at": None}
    if finish:
        values["state"] = "finished"
    else:
        values["current_index"] = index + 1

    result = session.execute(
        update(Match)
        .where(
            Match.id == match_id,
            Match.state == "in_progress",
            Match.current_index == index,
            Match.locked_by == player_id,
        )
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def increment_score(session: Session, player_id: str, points: int = 1) -> None:
    # Single UPDATE so concurrent increments on the same row never lose writes
    session.execute(
        update(MatchPlayer)
        .where(MatchPlayer.id == player_id)
        .values(score=MatchPlayer.score + points)
        .execution_options(synchronize_session=False)
    )


def isoformat(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None
