from sqlalchemy import BigInteger, Boolean, Column, ForeignKey, Index, Integer, String, Text, text

from database import Base


class GameStatus:
    WAITING = "waiting"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    OPEN = (WAITING, ACTIVE)


class GameMode:
    ONLINE = "online"
    FRIEND = "friend"


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True, index=True)
    name = Column(String, nullable=False)
    email = Column(String, nullable=False, unique=True)
    codeforces_handle = Column(String, nullable=True, unique=True)
    is_verified = Column(Boolean, nullable=False, default=False)
    rating = Column(Integer, nullable=False, default=0)
    solved_problems = Column(Text, nullable=False, default="[]")
    games_played = Column(Integer, nullable=False, default=0)
    games_won = Column(Integer, nullable=False, default=0)
    # Session pointer; no FK since games.player*_id already reference users
    current_game_id = Column(Integer, nullable=True, index=True)
    preferred_language = Column(String, nullable=False, default="cpp")
    created_at = Column(BigInteger, nullable=False)
    version = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}


class Game(Base):
    __tablename__ = "games"

    id = Column(Integer, primary_key=True, autoincrement=True, index=True)
    player1_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    player2_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    mode = Column(String, nullable=False)
    status = Column(String, nullable=False, default=GameStatus.WAITING, index=True)
    problems = Column(Text, nullable=False, default="[]")
    current_problem_index = Column(Integer, nullable=False, default=0)
    winner_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    start_time = Column(BigInteger, nullable=True)
    end_time = Column(BigInteger, nullable=True)
    duration = Column(Integer, nullable=True)
    created_at = Column(BigInteger, nullable=False, index=True)
    version = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}
    # At most one online game may wait for an opponent at a time.
    __table_args__ = (
        Index(
            "uq_games_one_waiting_online",
            "mode",
            unique=True,
            sqlite_where=text("status = 'waiting' AND mode = 'online'"),
            postgresql_where=text("status = 'waiting' AND mode = 'online'"),
        ),
    )
