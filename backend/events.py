"""
Append-only match event log.

Polling clients learn what happened between two polls only through these
rows.  Rows are never updated or deleted; ``id`` grows with commit order
inside a match and doubles as the dedupe key for overlapping polls.
"""

from __future__ import annotations

from typing import Any, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from db import EVENT_TYPES, MatchEvent
from models import EventView, Question

# Keys that would leak the answer key into a live event
_ANSWER_KEY_FIELDS = ("answerIndex", "answer_index", "correct_index")


def append_event(session: Session, match_id: str, event_type: str, payload: Optional[dict[str, Any]] = None) -> MatchEvent:
    if event_type not in EVENT_TYPES:
        raise ValueError(f"Unknown event type: {event_type}")
    payload = dict(payload or {})
    if event_type == "question":
        for key in _ANSWER_KEY_FIELDS:
            payload.pop(key, None)
    event = MatchEvent(match_id=match_id, type=event_type, payload=payload)
    session.add(event)
    session.flush()
    return event


def question_payload(index: int, question: Question) -> dict[str, Any]:
    """Payload of a ``question`` event: what players see, never the answer key."""
    return {
        "index": index,
        "id": question.id,
        "prompt": question.prompt,
        "choices": list(question.choices),
    }


def latest_answer(session: Session, match_id: str) -> Optional[MatchEvent]:
    stmt = (
        select(MatchEvent)
        .where(MatchEvent.match_id == match_id, MatchEvent.type == "answer")
        .order_by(MatchEvent.created_at.desc(), MatchEvent.id.desc())
        .limit(1)
    )
    return session.scalars(stmt).first()


def events_since(session: Session, match_id: str, since_id: int = 0, limit: int = 100) -> list[MatchEvent]:
    stmt = (
        select(MatchEvent)
        .where(MatchEvent.match_id == match_id, MatchEvent.id > since_id)
        .order_by(MatchEvent.id)
        .limit(limit)
    )
    return list(session.scalars(stmt))


def count_events(session: Session, match_id: str, event_type: str) -> int:
    stmt = (
        select(func.count())
        .select_from(MatchEvent)
        .where(MatchEvent.match_id == match_id, MatchEvent.type == event_type)
    )
    return session.scalar(stmt) or 0


def to_view(event: MatchEvent) -> EventView:
    return EventView(
        id=event.id,
        type=event.type,
        payload=dict(event.payload or {}),
        created_at=event.created_at.isoformat(),
    )
