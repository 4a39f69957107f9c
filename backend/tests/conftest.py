"""pytest configuration and fixtures."""

import os
import tempfile

# Point the default app and the log directory somewhere disposable before any
# backend module reads its configuration.
_TMP_DIR = tempfile.mkdtemp(prefix="buzzer-tests-")
os.environ.setdefault("DATABASE_URL", f"sqlite:///{os.path.join(_TMP_DIR, 'default.db')}")
os.environ.setdefault("LOG_DIR", os.path.join(_TMP_DIR, "logs"))

import random  # noqa: E402
from types import SimpleNamespace  # noqa: E402

import pytest  # noqa: E402

from db import create_db_engine, create_session_factory, init_db  # noqa: E402
from engine import MatchEngine  # noqa: E402
from models import Question  # noqa: E402
from question_bank import SqlQuestionBank  # noqa: E402


def make_question(n: int, category: str = "science", difficulty: str = "normal") -> Question:
    return Question(
        id=f"{category}-{difficulty}-{n}",
        prompt=f"{category.title()} question {n}?",
        choices=[f"Option {c}" for c in "ABCD"],
        answerIndex=n % 4,
        explanation=f"Because {n % 4}.",
        category=category,
        difficulty=difficulty,
    )


@pytest.fixture
def sessions(tmp_path):
    db_engine = create_db_engine(f"sqlite:///{tmp_path / 'buzzer.db'}", echo=False)
    init_db(db_engine)
    yield create_session_factory(db_engine)
    db_engine.dispose()


@pytest.fixture
def bank(sessions):
    bank = SqlQuestionBank(sessions)
    bank.add_questions(make_question(n) for n in range(5))
    bank.add_questions(make_question(n, category="history", difficulty="easy") for n in range(1))
    bank.add_category("science", "Science")
    bank.add_category("history", "History")
    return bank


@pytest.fixture
def engine(sessions, bank):
    return MatchEngine(sessions, bank, rng=random.Random(1234))


def correct_choice(engine: MatchEngine, bank: SqlQuestionBank, match_id: str) -> int:
    """Answer key of the question currently shown for ``match_id``."""
    state = engine.get_state(match_id)
    return bank.get_question(state.question.id).answerIndex


@pytest.fixture
def answer_key(engine, bank):
    return lambda match_id: correct_choice(engine, bank, match_id)


@pytest.fixture
def wrong_answer(engine, bank):
    return lambda match_id: (correct_choice(engine, bank, match_id) + 1) % 4


@pytest.fixture
def waiting_match(engine):
    """A 3-question science match with host + two joined players, not started."""
    created = engine.create_match(category="science", difficulty="normal", question_count=3, host_name="Host")
    alice = engine.join(name="Alice", join_code=created.joinCode)
    bob = engine.join(name="Bob", match_id=created.matchId)
    return SimpleNamespace(
        match_id=created.matchId,
        join_code=created.joinCode,
        host_token=created.hostToken,
        host_id=created.hostPlayerId,
        alice=alice,
        bob=bob,
    )


@pytest.fixture
def started_match(engine, waiting_match):
    engine.start(waiting_match.match_id, waiting_match.host_token)
    return waiting_match
