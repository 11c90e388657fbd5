"""Game lifecycle: matchmaking, submissions, forfeits, cancellation and timeouts.

Every state change runs through ``_transact``. ``games`` and ``users`` rows are
versioned, so a writer that lost a race gets ``StaleDataError`` at commit; the
whole attempt, precondition checks included, is then re-run on fresh rows.
A second waiting online game violates a partial unique index, and that
``IntegrityError`` is retried the same way so the loser joins the winner's game.
Notifications are sent only after a successful commit.
"""

import json
import logging
import time

from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

import config
from database import parse_json_field
from errors import (
    AlreadyInGame,
    ConcurrentUpdateError,
    FriendNotFound,
    GameNotActive,
    GameNotFound,
    InvalidProblemIndex,
    NoActiveGame,
    NotVerified,
    PlayerBusy,
    ProblemAlreadySolved,
    ProblemPoolUnavailable,
    SelfInvite,
    UserNotFound,
)
from judge import JudgeResult
from models import Game, GameMode, GameStatus, User
from notifications import game_room, user_room
from problem_selector import generate_problems, solved_keys


logger = logging.getLogger(__name__)

HISTORY_LIMIT = 20


def now_ms() -> int:
    return int(time.time() * 1000)


def load_problems(game: Game) -> list[dict]:
    return parse_json_field(game.problems, [])


def store_problems(game: Game, problems: list[dict]) -> None:
    game.problems = json.dumps(problems)


def player_summary(user: User | None) -> dict | None:
    if user is None:
        return None
    return {
        "id": str(user.id),
        "name": user.name,
        "handle": user.codeforces_handle,
        "rating": user.rating or 0,
    }


def solve_counts(game: Game, problems: list[dict]) -> dict:
    counts = {game.player1_id: 0}
    if game.player2_id is not None:
        counts[game.player2_id] = 0
    for problem in problems:
        solver = problem.get("solvedBy")
        if solver in counts:
            counts[solver] += 1
    return counts


def _transact(db: Session, attempt):
    for attempt_number in range(1, config.MAX_UPDATE_RETRIES + 1):
        try:
            result = attempt()
            db.commit()
            return result
        except (StaleDataError, IntegrityError):
            db.rollback()
            logger.info("Concurrent update detected, retrying (attempt %d)", attempt_number)
        except Exception:
            db.rollback()
            raise
    raise ConcurrentUpdateError()


def _notify(notifier, room: str, event: str, payload: dict) -> None:
    if notifier is None:
        return
    try:
        notifier.publish(room, event, payload)
    except Exception as exc:
        logger.warning("Notification %s to %s failed: %s", event, room, exc)


def _announce_end(notifier, game: Game, reason: str) -> None:
    winner = str(game.winner_id) if game.winner_id is not None else None
    _notify(notifier, game_room(game.id), "game-ended", {"gameId": str(game.id), "winner": winner, "reason": reason})


def _announce_cancel(notifier, game_id: int) -> None:
    _notify(notifier, game_room(game_id), "game-cancelled", {"gameId": str(game_id)})


def _require_verified(user: User) -> None:
    if not user.is_verified:
        raise NotVerified()


def _duration_minutes(game: Game, end: int) -> int:
    start = game.start_time if game.start_time is not None else game.created_at
    return max(0, (end - start) // 60000)


def _players(db: Session, game: Game) -> list[User]:
    players = []
    for player_id in (game.player1_id, game.player2_id):
        if player_id is None:
            continue
        player = db.get(User, player_id)
        if player is not None:
            players.append(player)
    return players


def _release(player: User, game: Game) -> None:
    if player.current_game_id == game.id:
        player.current_game_id = None


def _complete(db: Session, game: Game, winner_id: int | None, now: int) -> None:
    game.status = GameStatus.COMPLETED
    game.winner_id = winner_id
    game.end_time = now
    game.duration = _duration_minutes(game, now)
    for player in _players(db, game):
        player.games_played = (player.games_played or 0) + 1
        if winner_id is not None and player.id == winner_id:
            player.games_won = (player.games_won or 0) + 1
        _release(player, game)
    logger.info("Game %s completed, winner %s", game.id, winner_id)


def _cancel(db: Session, game: Game, now: int) -> None:
    game.status = GameStatus.CANCELLED
    game.end_time = now
    game.duration = _duration_minutes(game, now)
    for player in _players(db, game):
        _release(player, game)
    logger.info("Game %s cancelled", game.id)


def _opponent_id(game: Game, user_id: int) -> int | None:
    return game.player2_id if game.player1_id == user_id else game.player1_id


def _is_overdue(game: Game, now: int) -> bool:
    limit = config.MATCH_TIME_LIMIT_MINUTES
    if limit <= 0 or game.status != GameStatus.ACTIVE or game.start_time is None:
        return False
    return now - game.start_time >= limit * 60000


def _expire(db: Session, game: Game, now: int) -> None:
    """Complete an overdue game: most solves wins, equal solves is a tie."""
    counts = solve_counts(game, load_problems(game))
    first = counts.get(game.player1_id, 0)
    second = counts.get(game.player2_id, 0)
    if first > second:
        winner_id = game.player1_id
    elif second > first:
        winner_id = game.player2_id
    else:
        winner_id = None
    _complete(db, game, winner_id, now)


def _selected_problems(pool, first: User, second: User, rng) -> list[dict]:
    problems = generate_problems(
        pool,
        solved_keys(parse_json_field(first.solved_problems, [])),
        solved_keys(parse_json_field(second.solved_problems, [])),
        rng=rng,
    )
    if not problems:
        raise ProblemPoolUnavailable()
    return problems


def get_current_game(db: Session, user: User, notifier=None) -> Game | None:
    """The game ``user`` is in, or ``None``. Overdue games are completed first."""

    def attempt():
        if user.current_game_id is None:
            return None, False
        game = db.get(Game, user.current_game_id)
        if game is None:
            return None, False
        now = now_ms()
        if _is_overdue(game, now):
            _expire(db, game, now)
            return game, True
        return game, False

    game, expired = _transact(db, attempt)
    if expired:
        _announce_end(notifier, game, "timeout")
    return game


def find_online_game(db: Session, user: User, pool, notifier=None, rng=None) -> tuple[Game, User | None]:
    """Join the oldest waiting online game, or open a new one.

    Returns the game and the opponent; the opponent is ``None`` while waiting.
    """

    def attempt():
        _require_verified(user)
        if user.current_game_id is not None:
            raise AlreadyInGame()

        now = now_ms()
        game = db.execute(
            select(Game)
            .where(
                Game.status == GameStatus.WAITING,
                Game.mode == GameMode.ONLINE,
                Game.player1_id != user.id,
            )
            .order_by(Game.created_at.asc(), Game.id.asc())
            .limit(1)
        ).scalars().first()

        if game is None:
            game = Game(
                player1_id=user.id,
                mode=GameMode.ONLINE,
                status=GameStatus.WAITING,
                problems="[]",
                current_problem_index=0,
                created_at=now,
            )
            db.add(game)
            db.flush()
            user.current_game_id = game.id
            return game, None

        opponent = db.get(User, game.player1_id)
        problems = _selected_problems(pool, opponent, user, rng)
        game.player2_id = user.id
        game.status = GameStatus.ACTIVE
        game.start_time = now
        store_problems(game, problems)
        user.current_game_id = game.id
        opponent.current_game_id = game.id
        return game, opponent

    game, opponent = _transact(db, attempt)
    if opponent is None:
        logger.info("User %s is waiting in game %s", user.id, game.id)
    else:
        logger.info("User %s joined game %s against %s", user.id, game.id, opponent.id)
        payload = {"gameId": str(game.id), "opponent": player_summary(user)}
        _notify(notifier, game_room(game.id), "opponent-joined", payload)
        _notify(notifier, user_room(opponent.id), "opponent-joined", payload)
    return game, opponent


def create_friend_game(db: Session, user: User, friend_handle: str, pool, notifier=None, rng=None) -> tuple[Game, User]:
    handle = friend_handle.strip()

    def attempt():
        _require_verified(user)
        friend = db.execute(
            select(User).where(User.codeforces_handle == handle, User.is_verified.is_(True))
        ).scalars().first()
        if friend is None:
            raise FriendNotFound()
        if friend.id == user.id:
            raise SelfInvite()
        if user.current_game_id is not None or friend.current_game_id is not None:
            raise PlayerBusy()

        problems = _selected_problems(pool, user, friend, rng)
        now = now_ms()
        game = Game(
            player1_id=user.id,
            player2_id=friend.id,
            mode=GameMode.FRIEND,
            status=GameStatus.ACTIVE,
            problems=json.dumps(problems),
            current_problem_index=0,
            start_time=now,
            created_at=now,
        )
        db.add(game)
        db.flush()
        user.current_game_id = game.id
        friend.current_game_id = game.id
        return game, friend

    game, friend = _transact(db, attempt)
    logger.info("User %s started friend game %s with %s", user.id, game.id, friend.id)
    _notify(
        notifier,
        user_room(friend.id),
        "game-request",
        {"gameId": str(game.id), "senderId": str(user.id), "senderName": user.name},
    )
    return game, friend


def _load_active(db: Session, user: User) -> Game:
    if user.current_game_id is None:
        raise NoActiveGame()
    game = db.get(Game, user.current_game_id)
    if game is None or game.status != GameStatus.ACTIVE:
        raise GameNotActive()
    return game


def _check_open_problem(problems: list[dict], problem_index: int) -> dict:
    if problem_index < 0 or problem_index >= len(problems):
        raise InvalidProblemIndex()
    problem = problems[problem_index]
    if problem.get("solvedBy") is not None:
        raise ProblemAlreadySolved()
    return problem


def submit_solution(
    db: Session,
    user: User,
    problem_index: int,
    code: str,
    language: str,
    judge,
    notifier=None,
) -> tuple[Game, JudgeResult]:
    """Judge a solution and record it against the user's active game.

    The first accepted submission for a problem claims it; the first player to
    reach ``WIN_THRESHOLD`` claimed problems wins the game.
    """
    # completes the game first if it ran out of time
    get_current_game(db, user, notifier)
    game = _load_active(db, user)
    problem = dict(_check_open_problem(load_problems(game), problem_index))
    # end the read transaction; the judge call may take a while
    db.rollback()

    result = judge.submit(code, language, problem)

    def attempt():
        game = _load_active(db, user)
        problems = load_problems(game)
        entry = _check_open_problem(problems, problem_index)
        now = now_ms()
        entry.setdefault("submissions", []).append(
            {
                "user": user.id,
                "code": code,
                "language": language,
                "verdict": result.verdict,
                "submittedAt": now,
                "executionTime": result.execution_time_ms,
                "memoryUsed": result.memory_used_kb,
            }
        )

        winner_id = None
        if result.accepted:
            entry["solvedBy"] = user.id
            entry["solvedAt"] = now
            game.current_problem_index = max(game.current_problem_index or 0, problem_index + 1)
            counts = solve_counts(game, problems)
            for player_id in (game.player1_id, game.player2_id):
                if counts.get(player_id, 0) >= config.WIN_THRESHOLD:
                    winner_id = player_id
                    break

        store_problems(game, problems)
        if winner_id is not None:
            _complete(db, game, winner_id, now)
        return game, entry.get("name"), winner_id

    game, problem_name, winner_id = _transact(db, attempt)
    logger.info("User %s submitted problem %d in game %s: %s", user.id, problem_index, game.id, result.verdict)

    room = game_room(game.id)
    _notify(
        notifier,
        room,
        "opponent-submitted",
        {"userId": str(user.id), "problemIndex": problem_index, "language": language, "verdict": result.verdict},
    )
    if result.accepted:
        _notify(
            notifier,
            room,
            "problem-solved",
            {"problemIndex": problem_index, "problemName": problem_name, "solvedBy": str(user.id)},
        )
    if winner_id is not None:
        _announce_end(notifier, game, "solved")
    return game, result


def _abandon(db: Session, user: User, notifier, missing_ok: bool, no_game_detail: str | None = None) -> None:
    """Shared body of leave and cancel.

    An active game is forfeited to the opponent, a waiting game is cancelled.
    """

    def attempt():
        if user.current_game_id is None:
            raise NoActiveGame(no_game_detail)
        game = db.get(Game, user.current_game_id)
        if game is None:
            if not missing_ok:
                raise GameNotFound()
            user.current_game_id = None
            return None, None

        now = now_ms()
        if _is_overdue(game, now):
            _expire(db, game, now)
            return game, "timeout"
        if game.status == GameStatus.ACTIVE:
            _complete(db, game, _opponent_id(game, user.id), now)
            return game, "forfeit"
        if game.status == GameStatus.WAITING:
            _cancel(db, game, now)
            return game, "cancelled"
        # pointer left behind on a finished game
        user.current_game_id = None
        return game, None

    game, outcome = _transact(db, attempt)
    if outcome == "cancelled":
        _announce_cancel(notifier, game.id)
    elif outcome is not None:
        _announce_end(notifier, game, outcome)


def leave_game(db: Session, user: User, notifier=None) -> None:
    _abandon(db, user, notifier, missing_ok=False)


def cancel_game(db: Session, user: User, notifier=None) -> None:
    _abandon(db, user, notifier, missing_ok=True, no_game_detail="No active game to cancel")


def cancel_all_games(db: Session, user: User, notifier=None) -> list[int]:
    """Cancel every open game ``user`` takes part in, without forfeits."""

    def attempt():
        now = now_ms()
        user.current_game_id = None
        games = db.execute(
            select(Game).where(
                or_(Game.player1_id == user.id, Game.player2_id == user.id),
                Game.status.in_(GameStatus.OPEN),
            )
        ).scalars().all()
        for game in games:
            _cancel(db, game, now)
        return [game.id for game in games]

    cancelled = _transact(db, attempt)
    for game_id in cancelled:
        _announce_cancel(notifier, game_id)
    return cancelled


def force_cancel_for_handle(db: Session, handle: str, notifier=None) -> list[int]:
    target = db.execute(select(User).where(User.codeforces_handle == handle.strip())).scalars().first()
    if target is None:
        raise UserNotFound()
    logger.info("Force-cancelling games of %s", handle)
    return cancel_all_games(db, target, notifier)


def game_history(db: Session, user: User, limit: int = HISTORY_LIMIT) -> list[Game]:
    return list(
        db.execute(
            select(Game)
            .where(
                or_(Game.player1_id == user.id, Game.player2_id == user.id),
                Game.status == GameStatus.COMPLETED,
            )
            .order_by(Game.created_at.desc(), Game.id.desc())
            .limit(limit)
        ).scalars().all()
    )
