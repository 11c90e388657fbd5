"""Rejections raised by the game lifecycle.

Every error carries the HTTP status it is reported with and a user-facing
``detail`` message. None of them leave a game half-transitioned.
"""


class GameError(Exception):
    status_code = 400
    detail = "Bad request"

    def __init__(self, detail: str | None = None):
        if detail is not None:
            self.detail = detail
        super().__init__(self.detail)


class NotVerified(GameError):
    detail = "Please verify your Codeforces handle first"


class AlreadyInGame(GameError):
    detail = "You are already in a game"


class PlayerBusy(GameError):
    detail = "One of the players is already in a game"


class FriendNotFound(GameError):
    status_code = 404
    detail = "Friend not found or not verified"


class SelfInvite(GameError):
    detail = "Cannot play against yourself"


class NoActiveGame(GameError):
    detail = "No active game"


class GameNotFound(GameError):
    status_code = 404
    detail = "Game not found"


class GameNotActive(GameError):
    detail = "Game not found or not active"


class InvalidProblemIndex(GameError):
    detail = "Invalid problem index"


class ProblemAlreadySolved(GameError):
    detail = "Problem already solved"


class UserNotFound(GameError):
    status_code = 404
    detail = "User not found"


class HandleTaken(GameError):
    detail = "Handle already taken"


class InvalidHandle(GameError):
    detail = "Invalid Codeforces handle"


class ProblemPoolUnavailable(GameError):
    status_code = 503
    detail = "Could not generate problems for this game, please try again"


class JudgeUnavailable(GameError):
    status_code = 502
    detail = "Judge is unavailable, please resubmit"


class ConcurrentUpdateError(GameError):
    status_code = 409
    detail = "Game was updated concurrently, please retry"
