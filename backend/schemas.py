from typing import Literal

from pydantic import BaseModel, Field, field_validator


class EnsureUserRequest(BaseModel):
    name: str = Field(min_length=1)
    email: str = Field(min_length=3)

    @field_validator("name", "email")
    @classmethod
    def strip_value(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Value cannot be empty.")
        return value


class UserOut(BaseModel):
    id: str
    name: str
    email: str
    codeforcesHandle: str | None = None
    isVerified: bool
    rating: int
    solvedCount: int
    gamesPlayed: int
    gamesWon: int
    currentGame: str | None = None
    preferredLanguage: str


class VerifyHandleRequest(BaseModel):
    handle: str = Field(min_length=1)


class VerifyHandleOut(BaseModel):
    success: bool = True
    message: str
    rating: int
    solvedCount: int


class PreferencesUpdate(BaseModel):
    language: str = Field(min_length=1)


class LeaderboardEntry(BaseModel):
    id: str
    name: str
    codeforcesHandle: str | None = None
    rating: int
    gamesPlayed: int
    gamesWon: int


class UserStatsOut(BaseModel):
    name: str
    handle: str | None = None
    rating: int
    solvedCount: int
    gamesPlayed: int
    gamesWon: int
    winRate: float


class PlayerBrief(BaseModel):
    id: str
    name: str
    handle: str | None = None
    rating: int = 0


class SubmissionOut(BaseModel):
    user: str
    code: str
    language: str
    verdict: str
    submittedAt: int
    executionTime: int | None = None
    memoryUsed: int | None = None


class GameProblemOut(BaseModel):
    contestId: int
    index: str
    name: str
    rating: int | None = None
    tags: list[str] = Field(default_factory=list)
    url: str
    solvedBy: str | None = None
    solvedAt: int | None = None
    submissions: list[SubmissionOut] = Field(default_factory=list)


class GameOut(BaseModel):
    id: str
    player1: PlayerBrief
    player2: PlayerBrief | None = None
    mode: Literal["online", "friend"]
    status: Literal["waiting", "active", "completed", "cancelled"]
    problems: list[GameProblemOut] = Field(default_factory=list)
    currentProblemIndex: int = 0
    winner: str | None = None
    startTime: int | None = None
    endTime: int | None = None
    duration: int | None = None
    createdAt: int


class FindOnlineOut(BaseModel):
    success: bool = True
    game: GameOut
    waiting: bool = False
    opponent: PlayerBrief | None = None


class FriendGameRequest(BaseModel):
    friendHandle: str = Field(min_length=1)


class FriendGameOut(BaseModel):
    success: bool = True
    game: GameOut
    opponent: PlayerBrief


class CurrentGameOut(BaseModel):
    game: GameOut | None = None


class SubmitRequest(BaseModel):
    problemIndex: int
    code: str
    language: str = Field(min_length=1)


class JudgeResultOut(BaseModel):
    verdict: str
    executionTime: int
    memoryUsed: int


class SubmitOut(BaseModel):
    success: bool = True
    result: JudgeResultOut
    game: GameOut


class CancelAllOut(BaseModel):
    success: bool = True
    cancelled: list[str] = Field(default_factory=list)


class ForceCancelRequest(BaseModel):
    friendHandle: str = Field(min_length=1)
    secret: str


class SuccessOut(BaseModel):
    success: bool = True
