import json
import os

os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import main
from codeforces import CodeforcesError, HandleInfo, PoolProblem
from database import Base
from judge import JudgeResult
from models import User


TIERS = (800, 1200, 1400, 1600, 1800)


def make_pool(ratings=(800, 1000, 1200, 1400, 1600, 1800, 2000), per_rating=3):
    return [
        PoolProblem(contest_id=rating * 10 + i, index="A", name=f"Problem {rating}-{i}", rating=rating)
        for rating in ratings
        for i in range(per_rating)
    ]


class FakeCodeforces:
    def __init__(self, problems=None, error=None):
        self.problems = problems if problems is not None else make_pool()
        self.error = error
        self.handles = {}
        self.solved = {}
        self.fetches = 0

    def fetch_problems(self):
        self.fetches += 1
        if self.error:
            raise CodeforcesError(self.error)
        return list(self.problems)

    def fetch_user_info(self, handle):
        # Codeforces matches handles case-insensitively and answers with the canonical spelling.
        for known, rating in self.handles.items():
            if known.lower() == handle.lower():
                return HandleInfo(handle=known, rating=rating)
        raise CodeforcesError(f"handles: User with handle {handle} not found")

    def fetch_solved_problems(self, handle, count=1000):
        return list(self.solved.get(handle, []))


class ScriptedJudge:
    def __init__(self, default="Accepted"):
        self.default = default
        self.verdicts = []
        self.calls = []

    def submit(self, code, language, problem):
        self.calls.append((code, language, problem["contestId"], problem["index"]))
        verdict = self.verdicts.pop(0) if self.verdicts else self.default
        return JudgeResult(verdict=verdict, execution_time_ms=31, memory_used_kb=1024)


class RecordingNotifier:
    def __init__(self):
        self.events = []

    def publish(self, room, event, payload=None, exclude=None):
        self.events.append((room, event, payload or {}))

    def names(self, room=None):
        return [event for r, event, _ in self.events if room is None or r == room]


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def codeforces():
    return FakeCodeforces()


@pytest.fixture
def judge():
    return ScriptedJudge()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def make_user(db):
    def factory(name, verified=True, solved=(), handle=None):
        user = User(
            name=name,
            email=f"{name}@example.com",
            codeforces_handle=(handle or name) if verified else handle,
            is_verified=verified,
            rating=1500,
            solved_problems=json.dumps(list(solved)),
            created_at=0,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return factory


@pytest.fixture
def client(session_factory, codeforces, judge, notifier):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    main.app.dependency_overrides[main.get_db] = override_get_db
    main.app.dependency_overrides[main.get_codeforces] = lambda: codeforces
    main.app.dependency_overrides[main.get_judge] = lambda: judge
    main.app.dependency_overrides[main.get_notifier] = lambda: notifier
    yield TestClient(main.app)
    main.app.dependency_overrides.clear()


def auth(user):
    return {"X-User-Id": str(user.id)}
