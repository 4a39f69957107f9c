from pydantic import BaseModel, Field, model_validator
from typing import Any, Literal, Optional
import secrets
import string


Difficulty = Literal["easy", "normal", "hard"]
MatchStateName = Literal["waiting", "in_progress", "finished"]


# --- Question Bank ---

class Question(BaseModel):
    id: str
    prompt: str
    choices: list[str]
    answerIndex: int  # 0-indexed, never leaves the server while a match is live
    explanation: Optional[str] = None
    category: Optional[str] = None
    difficulty: Optional[str] = None

    def public(self) -> "PublicQuestion":
        """Client-facing view of the question (no answer key)"""
        return PublicQuestion(id=self.id, prompt=self.prompt, choices=list(self.choices))


class PublicQuestion(BaseModel):
    id: str
    prompt: str
    choices: list[str]


class CategoryItem(BaseModel):
    slug: str
    label: str


class DifficultyItem(BaseModel):
    key: str
    label: str
    order_no: int = 0


# --- Requests ---

class CreateMatchRequest(BaseModel):
    category: str = Field(min_length=1, max_length=64)
    difficulty: Difficulty = "normal"
    questionCount: int = Field(default=8, ge=1, le=20)
    hostName: str = Field(min_length=1, max_length=32)


class JoinRequest(BaseModel):
    matchId: Optional[str] = Field(default=None, min_length=1, max_length=64)
    joinCode: Optional[str] = Field(default=None, min_length=4, max_length=12)
    name: str = Field(min_length=1, max_length=32)

    @model_validator(mode="after")
    def _require_target(self) -> "JoinRequest":
        if not self.matchId and not self.joinCode:
            raise ValueError("matchId or joinCode required")
        return self


class TokenRequest(BaseModel):
    matchId: str = Field(min_length=1, max_length=64)
    token: str = Field(min_length=8, max_length=128)


class StartRequest(TokenRequest):
    pass


class BuzzRequest(TokenRequest):
    pass


class AnswerRequest(TokenRequest):
    answerIndex: int = Field(ge=0, le=3)
    questionIndex: Optional[int] = Field(default=None, ge=0)  # guards retries against the next question


# --- Responses ---

class CreateMatchResponse(BaseModel):
    matchId: str
    joinCode: str
    hostToken: str
    hostPlayerId: str


class JoinResponse(BaseModel):
    matchId: str
    playerId: str
    token: str


class OkResponse(BaseModel):
    ok: bool = True


class AnswerResponse(BaseModel):
    correct: bool
    finished: bool
    nextIndex: Optional[int] = None


# --- Snapshot (poll) ---

class MatchView(BaseModel):
    id: str
    join_code: str
    state: MatchStateName
    category: str
    difficulty: str
    question_count: int
    current_index: Optional[int] = None  # None while waiting
    locked_by: Optional[str] = None
    buzzed_at: Optional[str] = None


class PlayerView(BaseModel):
    id: str
    name: str
    score: int = 0
    is_host: bool = False


class LastAnswer(BaseModel):
    player_id: Optional[str] = None
    correct: bool
    answerIndex: Optional[int] = None
    index: Optional[int] = None
    created_at: Optional[str] = None
    event_id: Optional[int] = None


class HistoryItem(BaseModel):
    index: int
    id: str
    prompt: str
    choices: list[str]
    answerIndex: int
    explanation: Optional[str] = None


class MatchSnapshot(BaseModel):
    match: MatchView
    players: list[PlayerView]
    question: Optional[PublicQuestion] = None
    lastAnswer: Optional[LastAnswer] = None
    history: list[HistoryItem] = []
    pollIntervalMs: int = 1000


class EventView(BaseModel):
    id: int
    type: str
    payload: dict[str, Any]
    created_at: str


class EventFeed(BaseModel):
    events: list[EventView]
    lastEventId: int


def generate_join_code(length: int = 6) -> str:
    """Generate a random join code"""
    chars = string.ascii_uppercase + string.digits
    # Remove confusing characters
    chars = chars.replace('O', '').replace('0', '').replace('I', '').replace('1', '')
    return ''.join(secrets.choice(chars) for _ in range(length))


def generate_token() -> str:
    """Generate a secure random token"""
    return secrets.token_urlsafe(32)
