import logging
import random
from typing import Iterable, Optional

import config
from codeforces import CodeforcesError, PoolProblem, problem_key


logger = logging.getLogger(__name__)


def solved_keys(solved_problems: Iterable[dict]) -> set:
    keys = set()
    for item in solved_problems:
        try:
            keys.add(problem_key(item["contestId"], item["index"]))
        except (KeyError, TypeError, ValueError):
            continue
    return keys


def to_game_problem(problem: PoolProblem) -> dict:
    return {
        "contestId": problem.contest_id,
        "index": problem.index,
        "name": problem.name,
        "rating": problem.rating,
        "tags": list(problem.tags),
        "solvedBy": None,
        "solvedAt": None,
        "submissions": [],
    }


def select_problems(
    solved_a: set,
    solved_b: set,
    pool: Iterable[PoolProblem],
    rng: Optional[random.Random] = None,
    ratings: Iterable[int] = config.PROBLEM_RATINGS,
    count: int = config.PROBLEMS_PER_GAME,
) -> list[dict]:
    """Pick ``count`` problems neither player has solved.

    One problem per rating tier first; tiers without a candidate are backfilled
    with random unsolved problems of any rating.
    """
    rng = rng or random.Random()

    available = []
    seen = set()
    for problem in pool:
        key = problem.key
        if not problem.rating or key in seen or key in solved_a or key in solved_b:
            continue
        seen.add(key)
        available.append(problem)

    selected = []
    for rating in ratings:
        if len(selected) >= count:
            break
        candidates = [p for p in available if p.rating == rating]
        if candidates:
            selected.append(rng.choice(candidates))

    if len(selected) < count:
        used = {p.key for p in selected}
        remaining = [p for p in available if p.key not in used]
        while len(selected) < count and remaining:
            selected.append(remaining.pop(rng.randrange(len(remaining))))

    return [to_game_problem(p) for p in selected]


def generate_problems(client, solved_a: set, solved_b: set, rng: Optional[random.Random] = None) -> list[dict]:
    """Fetch the pool and select problems; an unreachable pool yields ``[]``."""
    try:
        pool = client.fetch_problems()
    except CodeforcesError as exc:
        logger.warning("Problem pool unavailable: %s", exc)
        return []
    return select_problems(solved_a, solved_b, pool, rng=rng)
