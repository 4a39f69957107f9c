"""
Database schema and engine/session management for the match store.

Tables:
  - categories / difficulties / questions   Question Bank content (read-only to the engine)
  - matches                                 one row per match, holds the buzz lock
  - match_players                           roster + per-player secret tokens
  - match_questions                         the fixed question sequence of a match
  - match_events                            append-only event log read by pollers
"""

from datetime import datetime, timezone
from typing import Optional
import uuid

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    PrimaryKeyConstraint,
    String,
    Text,
    UniqueConstraint,
    create_engine,
    event,
    text,
)
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker

from config import config

Base = declarative_base()

MATCH_STATES = ("waiting", "in_progress", "finished")
EVENT_TYPES = ("created", "join", "question", "buzz", "answer", "finish")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return uuid.uuid4().hex


# --- Question Bank ---

class Category(Base):
    __tablename__ = "categories"

    slug = Column(String(64), primary_key=True)
    label = Column(String(100), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class Difficulty(Base):
    __tablename__ = "difficulties"

    key = Column(String(16), primary_key=True)
    label = Column(String(100), nullable=False)
    order_no = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class QuestionRow(Base):
    __tablename__ = "questions"

    id = Column(String(64), primary_key=True, default=new_id)
    category = Column(String(64), nullable=False)
    difficulty = Column(String(16), nullable=False)
    prompt = Column(Text, nullable=False)
    choices = Column(JSON, nullable=False)
    answer_index = Column(Integer, nullable=False)
    explanation = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        Index("ix_questions_category_difficulty", "category", "difficulty"),
    )


# --- Match store ---

class Match(Base):
    __tablename__ = "matches"

    id = Column(String(32), primary_key=True, default=new_id)
    join_code = Column(String(12), nullable=False)
    category = Column(String(64), nullable=False)
    difficulty = Column(String(16), nullable=False)
    question_count = Column(Integer, nullable=False)
    state = Column(String(16), nullable=False, default="waiting")
    current_index = Column(Integer, nullable=False, default=0)
    # No FK: players reference matches, and the engine only ever writes a
    # player id it resolved for this match.
    locked_by = Column(String(32), nullable=True)
    buzzed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        # A code only has to be unique while the match can still be joined
        Index(
            "uq_matches_join_code_waiting",
            "join_code",
            unique=True,
            sqlite_where=text("state = 'waiting'"),
            postgresql_where=text("state = 'waiting'"),
        ),
        Index("ix_matches_join_code", "join_code"),
    )


class MatchPlayer(Base):
    __tablename__ = "match_players"

    id = Column(String(32), primary_key=True, default=new_id)
    match_id = Column(String(32), ForeignKey("matches.id", ondelete="CASCADE"), nullable=False)
    name = Column(String(32), nullable=False)
    token = Column(String(128), nullable=False)
    is_host = Column(Boolean, nullable=False, default=False)
    score = Column(Integer, nullable=False, default=0)
    joined_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint("token", name="uq_match_players_token"),
        Index("ix_match_players_match_token", "match_id", "token"),
        Index("ix_match_players_match_joined", "match_id", "joined_at"),
    )


class MatchQuestion(Base):
    __tablename__ = "match_questions"

    match_id = Column(String(32), ForeignKey("matches.id", ondelete="CASCADE"), nullable=False)
    order_no = Column(Integer, nullable=False)
    question_id = Column(String(64), nullable=False)

    __table_args__ = (
        PrimaryKeyConstraint("match_id", "order_no", name="pk_match_questions"),
    )


class MatchEvent(Base):
    __tablename__ = "match_events"

    # Integer on SQLite so the column aliases ROWID and autoincrements
    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    match_id = Column(String(32), ForeignKey("matches.id", ondelete="CASCADE"), nullable=False)
    type = Column(String(16), nullable=False)
    payload = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        Index("ix_match_events_match_id", "match_id", "id"),
        Index("ix_match_events_match_type", "match_id", "type", "created_at"),
    )


# --- Engine / sessions ---

def _is_sqlite(url: str) -> bool:
    return url.startswith("sqlite")


def create_db_engine(url: Optional[str] = None, *, echo: Optional[bool] = None) -> Engine:
    """Create an engine for ``url`` (defaults to DATABASE_URL).

    SQLite gets ``BEGIN IMMEDIATE`` on every transaction: the buzz lock relies
    on writers serializing, and pysqlite's deferred BEGIN lets two readers
    deadlock when both try to upgrade to a write.
    """
    url = url or config.DATABASE_URL
    echo = config.SQL_ECHO if echo is None else echo

    if _is_sqlite(url):
        engine = create_engine(
            url,
            echo=echo,
            connect_args={"check_same_thread": False, "timeout": 30},
        )

        @event.listens_for(engine, "connect")
        def _sqlite_connect(dbapi_connection, connection_record):
            # Let SQLAlchemy's "begin" event own transaction start
            dbapi_connection.isolation_level = None
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        @event.listens_for(engine, "begin")
        def _sqlite_begin(conn):
            conn.exec_driver_sql("BEGIN IMMEDIATE")

        return engine

    return create_engine(
        url,
        echo=echo,
        pool_pre_ping=True,
        pool_size=config.DB_POOL_SIZE,
        max_overflow=config.DB_MAX_OVERFLOW,
    )


def create_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, expire_on_commit=False, autoflush=False)


def init_db(engine: Engine) -> None:
    Base.metadata.create_all(engine)
