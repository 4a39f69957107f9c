"""
Question Bank: the read interface the match engine consumes.

The engine only ever calls ``list_question_ids`` and ``get_question`` (plus the
catalog listings for the create-match form).  Generation, moderation and
dedup live elsewhere and write to the ``questions`` table directly.
"""

from __future__ import annotations

from typing import Iterable, Optional

from sqlalchemy import select
from sqlalchemy.orm import sessionmaker

from db import Category, Difficulty, QuestionRow
from models import CategoryItem, DifficultyItem, Question


DEFAULT_DIFFICULTIES = [
    DifficultyItem(key="easy", label="Easy", order_no=0),
    DifficultyItem(key="normal", label="Normal", order_no=1),
    DifficultyItem(key="hard", label="Hard", order_no=2),
]


class QuestionBank:
    """Read-only question source."""

    def list_question_ids(self, category: str, difficulty: str, limit: int) -> list[str]:
        raise NotImplementedError

    def get_question(self, question_id: str) -> Optional[Question]:
        raise NotImplementedError

    def list_categories(self) -> list[CategoryItem]:
        return []

    def list_difficulties(self) -> list[DifficultyItem]:
        return list(DEFAULT_DIFFICULTIES)


class SqlQuestionBank(QuestionBank):
    """Question Bank backed by the ``questions`` / ``categories`` / ``difficulties`` tables.

    Every call opens and closes its own session, so callers must not hold a
    write transaction open on the same SQLite database while calling in.
    """

    def __init__(self, session_factory: sessionmaker):
        self._sessions = session_factory

    def list_question_ids(self, category: str, difficulty: str, limit: int) -> list[str]:
        stmt = (
            select(QuestionRow.id)
            .where(QuestionRow.category == category, QuestionRow.difficulty == difficulty)
            .order_by(QuestionRow.created_at, QuestionRow.id)
            .limit(limit)
        )
        with self._sessions() as session:
            return list(session.scalars(stmt))

    def get_question(self, question_id: str) -> Optional[Question]:
        with self._sessions() as session:
            row = session.get(QuestionRow, question_id)
            if row is None:
                return None
            return _to_question(row)

    def list_categories(self) -> list[CategoryItem]:
        with self._sessions() as session:
            rows = session.scalars(select(Category).order_by(Category.label))
            return [CategoryItem(slug=r.slug, label=r.label) for r in rows]

    def list_difficulties(self) -> list[DifficultyItem]:
        with self._sessions() as session:
            rows = list(session.scalars(select(Difficulty).order_by(Difficulty.order_no)))
        if not rows:
            return list(DEFAULT_DIFFICULTIES)
        return [DifficultyItem(key=r.key, label=r.label, order_no=r.order_no) for r in rows]

    def add_questions(self, questions: Iterable[Question]) -> int:
        """Insert questions (used by seeding scripts and tests, never by the engine)."""
        count = 0
        with self._sessions.begin() as session:
            for q in questions:
                session.add(QuestionRow(
                    id=q.id,
                    category=q.category or "general",
                    difficulty=q.difficulty or "normal",
                    prompt=q.prompt,
                    choices=list(q.choices),
                    answer_index=q.answerIndex,
                    explanation=q.explanation,
                ))
                count += 1
        return count

    def add_category(self, slug: str, label: str) -> None:
        with self._sessions.begin() as session:
            session.merge(Category(slug=slug, label=label))


class InMemoryQuestionBank(QuestionBank):
    """Question Bank over a fixed list, handy for tests and local demos."""

    def __init__(self, questions: Iterable[Question] = (), categories: Iterable[CategoryItem] = ()):
        self._questions: dict[str, Question] = {}
        for q in questions:
            self._questions[q.id] = q
        self._categories = list(categories)

    def list_question_ids(self, category: str, difficulty: str, limit: int) -> list[str]:
        ids = [
            q.id for q in self._questions.values()
            if q.category == category and q.difficulty == difficulty
        ]
        return ids[:limit]

    def get_question(self, question_id: str) -> Optional[Question]:
        return self._questions.get(question_id)

    def list_categories(self) -> list[CategoryItem]:
        if self._categories:
            return list(self._categories)
        slugs = sorted({q.category for q in self._questions.values() if q.category})
        return [CategoryItem(slug=s, label=s) for s in slugs]


def _to_question(row: QuestionRow) -> Question:
    return Question(
        id=row.id,
        prompt=row.prompt,
        choices=list(row.choices or []),
        answerIndex=row.answer_index,
        explanation=row.explanation,
        category=row.category,
        difficulty=row.difficulty,
    )
