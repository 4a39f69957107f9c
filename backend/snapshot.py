"""
Poll snapshot assembly.

``assemble_state`` is what every client calls about once a second.  It only
reads, and the question it returns never carries the answer key while the
match can still be played.  Once a match is finished the full question
history (with answers and explanations) is attached instead.
"""

from __future__ import annotations

from typing import Optional

from sqlalchemy.orm import sessionmaker

from errors import Internal, NotFound
from models import (
    HistoryItem,
    LastAnswer,
    MatchSnapshot,
    MatchView,
    PlayerView,
    PublicQuestion,
)
from question_bank import QuestionBank
import events
import store


def assemble_state(
    sessions: sessionmaker,
    bank: QuestionBank,
    match_id: str,
    *,
    poll_interval_ms: int = 1000,
) -> MatchSnapshot:
    # Store reads first, bank reads after the session is closed
    with sessions() as session:
        match = store.get_match(session, match_id)
        if match is None:
            raise NotFound("Match not found")
        players = store.list_players(session, match_id)
        last = events.latest_answer(session, match_id)

        current_qid: Optional[str] = None
        sequence: list[str] = []
        if match.state == "in_progress":
            current_qid = store.question_id_at(session, match_id, match.current_index)
        elif match.state == "finished":
            sequence = store.question_sequence(session, match_id)

        match_view = MatchView(
            id=match.id,
            join_code=match.join_code,
            state=match.state,
            category=match.category,
            difficulty=match.difficulty,
            question_count=match.question_count,
            current_index=None if match.state == "waiting" else match.current_index,
            locked_by=match.locked_by,
            buzzed_at=store.isoformat(match.buzzed_at),
        )
        player_views = [
            PlayerView(id=p.id, name=p.name, score=p.score, is_host=p.is_host)
            for p in players
        ]
        last_answer = _last_answer(last)

    question: Optional[PublicQuestion] = None
    if current_qid is not None:
        q = bank.get_question(current_qid)
        if q is None:
            raise Internal("Question unavailable")
        question = q.public()

    history: list[HistoryItem] = []
    for index, qid in enumerate(sequence):
        q = bank.get_question(qid)
        if q is None:
            continue
        history.append(HistoryItem(
            index=index,
            id=q.id,
            prompt=q.prompt,
            choices=list(q.choices),
            answerIndex=q.answerIndex,
            explanation=q.explanation,
        ))

    return MatchSnapshot(
        match=match_view,
        players=player_views,
        question=question,
        lastAnswer=last_answer,
        history=history,
        pollIntervalMs=poll_interval_ms,
    )


def _last_answer(event) -> Optional[LastAnswer]:
    if event is None:
        return None
    payload = event.payload or {}
    return LastAnswer(
        player_id=payload.get("player_id"),
        correct=bool(payload.get("correct")),
        answerIndex=payload.get("answerIndex"),
        index=payload.get("index"),
        created_at=event.created_at.isoformat(),
        event_id=event.id,
    )
