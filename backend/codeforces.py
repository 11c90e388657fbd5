"""HTTP client for the Codeforces public API."""

import logging
from dataclasses import dataclass, field
from typing import Optional

import requests

import config


logger = logging.getLogger(__name__)


class CodeforcesError(Exception):
    """Raised when the API is unreachable or answers with an unexpected payload."""


@dataclass(frozen=True)
class PoolProblem:
    """A rated problem from the problemset."""

    contest_id: int
    index: str
    name: str
    rating: Optional[int] = None
    tags: tuple = field(default_factory=tuple)

    @property
    def key(self) -> tuple:
        return problem_key(self.contest_id, self.index)


@dataclass
class HandleInfo:
    handle: str
    rating: int = 0
    max_rating: int = 0
    rank: str = "unrated"
    avatar: Optional[str] = None


def problem_key(contest_id, index) -> tuple:
    return (int(contest_id), str(index))


class CodeforcesClient:
    """Read-only access to problems and user data."""

    def __init__(self, base_url: Optional[str] = None, timeout: Optional[float] = None):
        self.base_url = (base_url or config.CODEFORCES_API_URL).rstrip("/")
        self.timeout = timeout if timeout is not None else config.CODEFORCES_TIMEOUT_SECONDS
        self.session = requests.Session()

    def _get(self, method: str, **params):
        """Call an API method and return its ``result`` field."""
        url = f"{self.base_url}/{method}"
        try:
            response = self.session.get(url, params=params, timeout=self.timeout)
            response.raise_for_status()
            payload = response.json()
        except (requests.RequestException, ValueError) as exc:
            raise CodeforcesError(f"{method} failed: {exc}") from exc

        if not isinstance(payload, dict) or payload.get("status") != "OK":
            comment = payload.get("comment") if isinstance(payload, dict) else None
            raise CodeforcesError(f"{method} returned an error: {comment or 'malformed response'}")
        return payload.get("result")

    def fetch_problems(self) -> list[PoolProblem]:
        result = self._get("problemset.problems")
        try:
            raw_problems = result["problems"]
            return [
                PoolProblem(
                    contest_id=int(item["contestId"]),
                    index=str(item["index"]),
                    name=item.get("name", ""),
                    rating=item.get("rating"),
                    tags=tuple(item.get("tags", ())),
                )
                for item in raw_problems
                if "contestId" in item
            ]
        except (KeyError, TypeError, ValueError) as exc:
            raise CodeforcesError(f"problemset.problems payload is malformed: {exc}") from exc

    def fetch_user_info(self, handle: str) -> HandleInfo:
        result = self._get("user.info", handles=handle)
        if not result:
            raise CodeforcesError(f"user.info returned no user for {handle}")
        info = result[0]
        return HandleInfo(
            handle=info.get("handle", handle),
            rating=info.get("rating", 0) or 0,
            max_rating=info.get("maxRating", 0) or 0,
            rank=info.get("rank", "unrated"),
            avatar=info.get("avatar"),
        )

    def fetch_solved_problems(self, handle: str, count: int = 1000) -> list[dict]:
        """Distinct accepted problems of ``handle``, newest first."""
        submissions = self._get("user.status", handle=handle, count=count)
        solved = []
        seen = set()
        for submission in submissions or []:
            if submission.get("verdict") != "OK":
                continue
            problem = submission.get("problem") or {}
            if "contestId" not in problem or "index" not in problem:
                continue
            key = problem_key(problem["contestId"], problem["index"])
            if key in seen:
                continue
            seen.add(key)
            solved.append(
                {
                    "contestId": key[0],
                    "index": key[1],
                    "name": problem.get("name", ""),
                    "rating": problem.get("rating", 0) or 0,
                    "solvedAt": int(submission.get("creationTimeSeconds", 0)) * 1000,
                }
            )
        logger.info("Fetched %d solved problems for %s", len(solved), handle)
        return solved
