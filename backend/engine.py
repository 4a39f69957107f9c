"""
Buzzer match engine.

Server-authoritative state machine for a match:

    waiting --start--> in_progress --answer(last question)--> finished

Handlers are stateless: every operation is a short sequence of transactions
against the shared store, so any number of server processes may serve the
same match.  The only mutual-exclusion point is the ``locked_by`` column,
taken through ``arbiter.try_acquire``.

Question Bank reads always happen between transactions, never inside one.
"""

from __future__ import annotations

from contextlib import contextmanager
from functools import wraps
import inspect
import random
from typing import Iterator, Optional

from pydantic import BaseModel, ValidationError
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from config import config
from db import Match
from errors import Conflict, Forbidden, Internal, Invalid, MatchError, NotFound
from logger import get_logger, log_game_event
from models import (
    AnswerRequest,
    AnswerResponse,
    BuzzRequest,
    CategoryItem,
    CreateMatchRequest,
    CreateMatchResponse,
    DifficultyItem,
    EventFeed,
    JoinRequest,
    JoinResponse,
    MatchSnapshot,
    OkResponse,
    Question,
    StartRequest,
    generate_join_code,
    generate_token,
)
from question_bank import QuestionBank
import arbiter
import auth
import events
import snapshot
import store

logger = get_logger("buzzer.engine")


def _audited(operation: str):
    """Record rejected calls in the game-event log, then re-raise."""

    def decorator(func):
        signature = inspect.signature(func)

        @wraps(func)
        def wrapper(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            except MatchError as e:
                bound = signature.bind_partial(*args, **kwargs)
                log_game_event("call_rejected", match_id=bound.arguments.get("match_id"), data={
                    "operation": operation,
                    "kind": e.kind,
                    "detail": e.detail,
                })
                logger.info(f"🚫 {operation} rejected: {e.kind} – {e.detail}")
                raise

        return wrapper

    return decorator


def _validated(model: type[BaseModel], **fields) -> BaseModel:
    try:
        return model(**fields)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'request'}: {err['msg']}"
            for err in e.errors()
        )
        raise Invalid(f"Invalid request: {problems}") from e


def _check_answerable(match: Match, player_id: str, question_index: Optional[int]) -> None:
    if match.state != "in_progress":
        raise Conflict("Not in progress")
    if question_index is not None and question_index != match.current_index:
        # Already adjudicated (typically a retry of our own answer)
        raise Forbidden("Question already answered")
    if match.locked_by is not None and match.locked_by != player_id:
        raise Forbidden("Not your turn")


class MatchEngine:
    def __init__(
        self,
        session_factory: sessionmaker,
        question_bank: QuestionBank,
        *,
        pool_limit: Optional[int] = None,
        join_code_length: Optional[int] = None,
        join_code_attempts: Optional[int] = None,
        poll_interval_ms: Optional[int] = None,
        max_events_per_poll: Optional[int] = None,
        rng: Optional[random.Random] = None,
    ):
        self._sessions = session_factory
        self._bank = question_bank
        self.pool_limit = pool_limit or config.QUESTION_POOL_LIMIT
        self.join_code_length = join_code_length or config.JOIN_CODE_LENGTH
        self.join_code_attempts = join_code_attempts or config.JOIN_CODE_ATTEMPTS
        self.poll_interval_ms = poll_interval_ms or config.POLL_INTERVAL_MS
        self.max_events_per_poll = max_events_per_poll or config.MAX_EVENTS_PER_POLL
        self._rng = rng or random.SystemRandom()

    # --- transactions ---

    @contextmanager
    def _unit_of_work(self, operation: str) -> Iterator[Session]:
        """One committed transaction; any exception rolls the whole unit back."""
        try:
            with self._sessions.begin() as session:
                yield session
        except SQLAlchemyError as e:
            logger.error(f"❌ Storage failure during {operation}: {e}", exc_info=True)
            raise Internal("Storage failure") from e

    @contextmanager
    def _reading(self, operation: str) -> Iterator[Session]:
        try:
            with self._sessions() as session:
                yield session
        except SQLAlchemyError as e:
            logger.error(f"❌ Storage failure during {operation}: {e}", exc_info=True)
            raise Internal("Storage failure") from e

    def _require_question(self, question_id: Optional[str]) -> Question:
        question = self._bank.get_question(question_id) if question_id else None
        if question is None:
            logger.error(f"❌ Question {question_id!r} missing from the question bank")
            raise NotFound("Question not found")
        return question

    # --- lifecycle ---

    @_audited("create_match")
    def create_match(
        self,
        category: str,
        difficulty: str = "normal",
        question_count: int = 8,
        host_name: str = "",
    ) -> CreateMatchResponse:
        """Create a waiting match with its host and its whole question sequence."""
        req = _validated(
            CreateMatchRequest,
            category=category,
            difficulty=difficulty,
            questionCount=question_count,
            hostName=host_name,
        )

        pool = list(self._bank.list_question_ids(req.category, req.difficulty, self.pool_limit))
        if not pool:
            raise NotFound("No questions for given settings")
        self._rng.shuffle(pool)
        if len(pool) < req.questionCount:
            raise NotFound(
                f"Not enough questions for given settings ({len(pool)} available, {req.questionCount} requested)"
            )
        selected = pool[:req.questionCount]
        host_token = generate_token()

        for attempt in range(1, self.join_code_attempts + 1):
            join_code = generate_join_code(self.join_code_length)
            try:
                # Match, host, sequence and 'created' event commit together or not at all
                with self._sessions.begin() as session:
                    match, host = store.insert_match(
                        session,
                        join_code=join_code,
                        category=req.category,
                        difficulty=req.difficulty,
                        question_ids=selected,
                        host_name=req.hostName,
                        host_token=host_token,
                    )
                    events.append_event(session, match.id, "created", {"join_code": join_code})
                    match_id, host_id = match.id, host.id
            except IntegrityError:
                logger.warning(
                    f"⚠️  Join code collision on {join_code} (attempt {attempt}/{self.join_code_attempts})"
                )
                continue
            except SQLAlchemyError as e:
                logger.error(f"❌ Storage failure during create_match: {e}", exc_info=True)
                raise Internal("Storage failure") from e
            break
        else:
            raise Internal("Could not allocate a join code")

        logger.info(f"🆕 Match created: {match_id} code={join_code} ({req.category}/{req.difficulty}, {req.questionCount} questions)")
        log_game_event("match_created", match_id=match_id, player_id=host_id, data={
            "join_code": join_code,
            "category": req.category,
            "difficulty": req.difficulty,
            "question_count": req.questionCount,
            "pool_size": len(pool),
        })
        return CreateMatchResponse(matchId=match_id, joinCode=join_code, hostToken=host_token, hostPlayerId=host_id)

    @_audited("join")
    def join(self, name: str, match_id: Optional[str] = None, join_code: Optional[str] = None) -> JoinResponse:
        """Add a player to a waiting match.  The roster closes when play starts."""
        req = _validated(JoinRequest, matchId=match_id, joinCode=join_code, name=name)
        token = generate_token()

        with self._unit_of_work("join") as session:
            # Row lock so start() cannot commit between the state check and the insert
            if req.matchId:
                match = store.get_match(session, req.matchId, for_update=True)
            else:
                match = store.find_match_by_code(session, req.joinCode, for_update=True)
            if match is None:
                raise NotFound("Match not found")
            if match.state != "waiting":
                raise Conflict("Match already started")

            player = store.add_player(session, match.id, req.name, token)
            events.append_event(session, match.id, "join", {"player_id": player.id, "name": player.name})
            resolved_id, player_id = match.id, player.id

        logger.info(f"👤 Player joined: {req.name} -> match {resolved_id}")
        log_game_event("player_joined", match_id=resolved_id, player_id=player_id, data={"name": req.name})
        return JoinResponse(matchId=resolved_id, playerId=player_id, token=token)

    @_audited("start")
    def start(self, match_id: str, token: str) -> OkResponse:
        """Start the match (host only) and publish the first question."""
        req = _validated(StartRequest, matchId=match_id, token=token)

        with self._reading("start") as session:
            host = auth.resolve_host(session, req.matchId, req.token)
            match = store.get_match(session, req.matchId)
            if match is None:
                raise NotFound("Match not found")
            if match.state != "waiting":
                raise Conflict("Already started")
            first_qid = store.question_id_at(session, req.matchId, 0)
            host_id, question_count = host.id, match.question_count

        if first_qid is None:
            raise NotFound("No questions")
        question = self._require_question(first_qid)

        with self._unit_of_work("start") as session:
            if not store.start_match(session, req.matchId):
                raise Conflict("Already started")
            events.append_event(session, req.matchId, "question", events.question_payload(0, question))

        logger.info(f"🚀 Match started: {req.matchId}, {question_count} questions")
        log_game_event("match_started", match_id=req.matchId, player_id=host_id, data={
            "question_count": question_count,
        })
        return OkResponse()

    # --- buzz lock ---

    @_audited("buzz")
    def buzz(self, match_id: str, token: str) -> OkResponse:
        """Claim the right to answer the current question."""
        req = _validated(BuzzRequest, matchId=match_id, token=token)

        with self._unit_of_work("buzz") as session:
            player = auth.resolve_player(session, req.matchId, req.token)
            match = store.get_match(session, req.matchId)
            if match is None:
                raise NotFound("Match not found")
            if match.state != "in_progress":
                raise Conflict("Not accepting buzz")
            if match.locked_by is not None:
                raise Conflict("Locked by another")

            index = match.current_index
            if not arbiter.try_acquire(session, req.matchId, player.id, index):
                current = store.get_match(session, req.matchId)
                if current is None or current.state != "in_progress":
                    raise Conflict("Not accepting buzz")
                raise Conflict("Locked by another")

            events.append_event(session, req.matchId, "buzz", {"player_id": player.id, "index": index})
            player_id = player.id

        logger.info(f"🔔 Buzz: player {player_id} holds match {req.matchId} Q{index + 1}")
        log_game_event("buzz_won", match_id=req.matchId, player_id=player_id, data={"question_index": index})
        return OkResponse()

    @_audited("answer")
    def answer(
        self,
        match_id: str,
        token: str,
        answer_index: int,
        question_index: Optional[int] = None,
    ) -> AnswerResponse:
        """Adjudicate an answer from the lock holder and advance the match.

        If nobody has buzzed yet the call buzzes implicitly.  Taking the lock,
        scoring and advancing commit as one transaction, so nobody else can
        take the lock in between and a loser of the race is rejected with
        Forbidden instead of being adjudicated.
        """
        req = _validated(
            AnswerRequest,
            matchId=match_id,
            token=token,
            answerIndex=answer_index,
            questionIndex=question_index,
        )

        with self._reading("answer") as session:
            player = auth.resolve_player(session, req.matchId, req.token)
            match = store.get_match(session, req.matchId)
            if match is None:
                raise NotFound("Match not found")
            _check_answerable(match, player.id, req.questionIndex)

            player_id = player.id
            index, total = match.current_index, match.question_count
            qid = store.question_id_at(session, req.matchId, index)
            next_qid = store.question_id_at(session, req.matchId, index + 1) if index + 1 < total else None

        question = self._require_question(qid)
        finished = index + 1 >= total
        next_question = None if finished else self._require_question(next_qid)
        correct = req.answerIndex == question.answerIndex

        with self._unit_of_work("answer") as session:
            # Implicit buzz; a no-op when the caller already holds the lock
            arbiter.try_acquire(session, req.matchId, player_id, index)
            if not store.advance(session, req.matchId, player_id, index, finish=finished):
                raise Forbidden("Not your turn")

            if correct:
                store.increment_score(session, player_id)
            events.append_event(session, req.matchId, "answer", {
                "player_id": player_id,
                "correct": correct,
                "answerIndex": req.answerIndex,
                "index": index,
            })
            if finished:
                events.append_event(session, req.matchId, "finish", {})
            else:
                events.append_event(session, req.matchId, "question", events.question_payload(index + 1, next_question))

        logger.info(
            f"{'✅' if correct else '❌'} Answer: player {player_id} on match {req.matchId} "
            f"Q{index + 1}/{total} choice={req.answerIndex}"
        )
        log_game_event("answer_submitted", match_id=req.matchId, player_id=player_id, data={
            "question_index": index,
            "choice": req.answerIndex,
            "correct": correct,
        })

        if finished:
            logger.info(f"🏁 Match finished: {req.matchId}")
            log_game_event("match_finished", match_id=req.matchId, data={"question_count": total})
            return AnswerResponse(correct=correct, finished=True)
        return AnswerResponse(correct=correct, finished=False, nextIndex=index + 1)

    # --- polling ---

    @_audited("get_state")
    def get_state(self, match_id: str) -> MatchSnapshot:
        try:
            return snapshot.assemble_state(
                self._sessions, self._bank, match_id, poll_interval_ms=self.poll_interval_ms
            )
        except SQLAlchemyError as e:
            logger.error(f"❌ Storage failure during get_state: {e}", exc_info=True)
            raise Internal("Storage failure") from e

    @_audited("list_events")
    def list_events(self, match_id: str, since_id: int = 0, limit: Optional[int] = None) -> EventFeed:
        """Events after ``since_id`` in commit order, for incremental polling."""
        limit = min(limit or self.max_events_per_poll, self.max_events_per_poll)
        with self._reading("list_events") as session:
            if store.get_match(session, match_id) is None:
                raise NotFound("Match not found")
            rows = events.events_since(session, match_id, max(since_id, 0), limit)
            views = [events.to_view(e) for e in rows]
        return EventFeed(events=views, lastEventId=views[-1].id if views else max(since_id, 0))

    # --- catalog ---

    def list_categories(self) -> list[CategoryItem]:
        return self._bank.list_categories()

    def list_difficulties(self) -> list[DifficultyItem]:
        return self._bank.list_difficulties()
