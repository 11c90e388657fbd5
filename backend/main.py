import json
import logging
import time
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Header, HTTPException, Request, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import select
from sqlalchemy.orm import Session

import config
import lifecycle
from codeforces import CodeforcesClient, CodeforcesError
from database import Base, SessionLocal, engine, parse_json_field
from errors import GameError, HandleTaken, InvalidHandle, UserNotFound
from judge import StubJudge
from models import Game, User
from notifications import hub
from schemas import (
    CancelAllOut,
    CurrentGameOut,
    EnsureUserRequest,
    FindOnlineOut,
    ForceCancelRequest,
    FriendGameOut,
    FriendGameRequest,
    GameOut,
    GameProblemOut,
    JudgeResultOut,
    LeaderboardEntry,
    PlayerBrief,
    PreferencesUpdate,
    SubmissionOut,
    SubmitOut,
    SubmitRequest,
    SuccessOut,
    UserOut,
    UserStatsOut,
    VerifyHandleOut,
    VerifyHandleRequest,
)


logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

codeforces_client = CodeforcesClient()
default_judge = StubJudge()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_codeforces():
    return codeforces_client


def get_judge():
    return default_judge


def get_notifier():
    return hub


def get_current_user(x_user_id: str | None = Header(default=None), db: Session = Depends(get_db)) -> User:
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Not authenticated")
    try:
        user_id = int(x_user_id)
    except ValueError:
        raise HTTPException(status_code=401, detail="Not authenticated")
    user = db.get(User, user_id)
    if not user:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return user


def user_to_out(user: User) -> UserOut:
    return UserOut(
        id=str(user.id),
        name=user.name,
        email=user.email,
        codeforcesHandle=user.codeforces_handle,
        isVerified=bool(user.is_verified),
        rating=user.rating or 0,
        solvedCount=len(parse_json_field(user.solved_problems, [])),
        gamesPlayed=user.games_played or 0,
        gamesWon=user.games_won or 0,
        currentGame=str(user.current_game_id) if user.current_game_id is not None else None,
        preferredLanguage=user.preferred_language or "cpp",
    )


def player_brief(user: User | None) -> PlayerBrief | None:
    summary = lifecycle.player_summary(user)
    return PlayerBrief(**summary) if summary else None


def optional_id(value) -> str | None:
    return str(value) if value is not None else None


def problem_to_out(problem: dict) -> GameProblemOut:
    return GameProblemOut(
        contestId=problem["contestId"],
        index=problem["index"],
        name=problem.get("name", ""),
        rating=problem.get("rating"),
        tags=problem.get("tags", []),
        url=f"https://codeforces.com/problemset/problem/{problem['contestId']}/{problem['index']}",
        solvedBy=optional_id(problem.get("solvedBy")),
        solvedAt=problem.get("solvedAt"),
        submissions=[
            SubmissionOut(
                user=str(submission["user"]),
                code=submission.get("code", ""),
                language=submission.get("language", ""),
                verdict=submission.get("verdict", ""),
                submittedAt=submission.get("submittedAt", 0),
                executionTime=submission.get("executionTime"),
                memoryUsed=submission.get("memoryUsed"),
            )
            for submission in problem.get("submissions", [])
        ],
    )


def game_to_out(db: Session, game: Game) -> GameOut:
    player1 = db.get(User, game.player1_id)
    player2 = db.get(User, game.player2_id) if game.player2_id is not None else None
    return GameOut(
        id=str(game.id),
        player1=player_brief(player1) or PlayerBrief(id=str(game.player1_id), name="unknown"),
        player2=player_brief(player2),
        mode=game.mode,
        status=game.status,
        problems=[problem_to_out(problem) for problem in lifecycle.load_problems(game)],
        currentProblemIndex=game.current_problem_index or 0,
        winner=optional_id(game.winner_id),
        startTime=game.start_time,
        endTime=game.end_time,
        duration=game.duration,
        createdAt=game.created_at,
    )


@asynccontextmanager
async def lifespan(_: FastAPI):
    Base.metadata.create_all(bind=engine)
    yield


app = FastAPI(title="Codeduel API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(GameError)
async def handle_game_error(_: Request, exc: GameError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


@app.get("/api/health")
def healthcheck():
    return {"ok": True}


@app.post("/api/users", response_model=UserOut)
def ensure_user(payload: EnsureUserRequest, db: Session = Depends(get_db)):
    user = db.execute(select(User).where(User.email == payload.email)).scalars().first()
    if not user:
        user = User(name=payload.name, email=payload.email, created_at=int(time.time() * 1000))
        db.add(user)
        db.commit()
        db.refresh(user)
    return user_to_out(user)


@app.get("/api/users/me", response_model=UserOut)
def get_profile(user: User = Depends(get_current_user)):
    return user_to_out(user)


@app.post("/api/users/verify-handle", response_model=VerifyHandleOut)
def verify_handle(
    payload: VerifyHandleRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    codeforces=Depends(get_codeforces),
):
    handle = payload.handle.strip()
    if not handle:
        raise HTTPException(status_code=400, detail="Handle is required")

    try:
        info = codeforces.fetch_user_info(handle)
    except CodeforcesError as exc:
        logger.info("Handle %s could not be verified: %s", handle, exc)
        raise InvalidHandle("Could not verify handle. Please check if it exists.")
    handle = info.handle

    existing = db.execute(select(User).where(User.codeforces_handle == handle)).scalars().first()
    if existing and existing.id != user.id:
        raise HandleTaken()

    try:
        solved = codeforces.fetch_solved_problems(handle)
    except CodeforcesError as exc:
        logger.warning("Solved problems for %s unavailable: %s", handle, exc)
        solved = []

    user.codeforces_handle = handle
    user.is_verified = True
    user.rating = info.rating
    user.solved_problems = json.dumps(solved)
    db.commit()
    logger.info("User %s verified as %s", user.id, handle)

    return VerifyHandleOut(
        message="Handle verified successfully",
        rating=info.rating,
        solvedCount=len(solved),
    )


@app.put("/api/users/preferences", response_model=UserOut)
def update_preferences(
    payload: PreferencesUpdate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    user.preferred_language = payload.language.strip()
    db.commit()
    db.refresh(user)
    return user_to_out(user)


@app.get("/api/users/leaderboard", response_model=list[LeaderboardEntry])
def get_leaderboard(db: Session = Depends(get_db)):
    users = db.execute(
        select(User)
        .where(User.is_verified.is_(True))
        .order_by(User.rating.desc(), User.games_won.desc())
        .limit(50)
    ).scalars().all()
    return [
        LeaderboardEntry(
            id=str(u.id),
            name=u.name,
            codeforcesHandle=u.codeforces_handle,
            rating=u.rating or 0,
            gamesPlayed=u.games_played or 0,
            gamesWon=u.games_won or 0,
        )
        for u in users
    ]


@app.get("/api/users/{user_id}/stats", response_model=UserStatsOut)
def get_user_stats(user_id: int, db: Session = Depends(get_db)):
    user = db.get(User, user_id)
    if not user:
        raise UserNotFound()
    played = user.games_played or 0
    won = user.games_won or 0
    return UserStatsOut(
        name=user.name,
        handle=user.codeforces_handle,
        rating=user.rating or 0,
        solvedCount=len(parse_json_field(user.solved_problems, [])),
        gamesPlayed=played,
        gamesWon=won,
        winRate=round(won / played * 100, 1) if played else 0.0,
    )


@app.post("/api/games/find-online", response_model=FindOnlineOut)
def find_online(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    codeforces=Depends(get_codeforces),
    notifier=Depends(get_notifier),
):
    game, opponent = lifecycle.find_online_game(db, user, codeforces, notifier)
    if opponent is None:
        return FindOnlineOut(game=game_to_out(db, game), waiting=True)
    return FindOnlineOut(game=game_to_out(db, game), opponent=player_brief(opponent))


@app.post("/api/games/create-friend", response_model=FriendGameOut)
def create_friend(
    payload: FriendGameRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    codeforces=Depends(get_codeforces),
    notifier=Depends(get_notifier),
):
    game, friend = lifecycle.create_friend_game(db, user, payload.friendHandle, codeforces, notifier)
    return FriendGameOut(game=game_to_out(db, game), opponent=player_brief(friend))


@app.get("/api/games/current", response_model=CurrentGameOut)
def get_current(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    notifier=Depends(get_notifier),
):
    game = lifecycle.get_current_game(db, user, notifier)
    if game is None:
        return CurrentGameOut(game=None)
    return CurrentGameOut(game=game_to_out(db, game))


@app.post("/api/games/submit", response_model=SubmitOut)
def submit(
    payload: SubmitRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    judge=Depends(get_judge),
    notifier=Depends(get_notifier),
):
    game, result = lifecycle.submit_solution(
        db, user, payload.problemIndex, payload.code, payload.language, judge, notifier
    )
    return SubmitOut(
        result=JudgeResultOut(
            verdict=result.verdict,
            executionTime=result.execution_time_ms,
            memoryUsed=result.memory_used_kb,
        ),
        game=game_to_out(db, game),
    )


@app.post("/api/games/leave", response_model=SuccessOut)
def leave(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    notifier=Depends(get_notifier),
):
    lifecycle.leave_game(db, user, notifier)
    return SuccessOut()


@app.post("/api/games/cancel", response_model=SuccessOut)
def cancel(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    notifier=Depends(get_notifier),
):
    lifecycle.cancel_game(db, user, notifier)
    return SuccessOut()


@app.post("/api/games/cancel-all", response_model=CancelAllOut)
def cancel_all(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    notifier=Depends(get_notifier),
):
    cancelled = lifecycle.cancel_all_games(db, user, notifier)
    return CancelAllOut(cancelled=[str(game_id) for game_id in cancelled])


@app.post("/api/games/force-cancel", response_model=CancelAllOut)
def force_cancel(
    payload: ForceCancelRequest,
    db: Session = Depends(get_db),
    notifier=Depends(get_notifier),
):
    if not config.FORCE_CANCEL_SECRET or payload.secret != config.FORCE_CANCEL_SECRET:
        raise HTTPException(status_code=403, detail="Forbidden")
    cancelled = lifecycle.force_cancel_for_handle(db, payload.friendHandle, notifier)
    return CancelAllOut(cancelled=[str(game_id) for game_id in cancelled])


@app.get("/api/games/history", response_model=list[GameOut])
def get_history(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return [game_to_out(db, game) for game in lifecycle.game_history(db, user)]


@app.websocket("/ws")
async def relay(websocket: WebSocket, user_id: str):
    await hub.serve(websocket, user_id)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=config.PORT)
