"""
SQLAlchemy ORM models for the Pickleball ELO system.
"""

from typing import List, Optional
import enum
from sqlalchemy import (
    Column,
    Integer,
    String,
    Text,
    Boolean,
    DateTime,
    Enum,
    ForeignKey,
    UniqueConstraint,
    CheckConstraint,
    Index,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from pickleball_elo.database.db import Base
from pickleball_elo.utils.constants import INITIAL_RATING, K_FACTOR, MIN_GAMES_FOR_RANKING
from pickleball_elo.utils.datetime_utils import utcnow


class ReplayJobStatus(str, enum.Enum):
    """Season replay job status enum."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class Player(Base):
    """Player profiles."""

    __tablename__ = "players"

    id = Column(Integer, primary_key=True, autoincrement=True)
    full_name = Column(String, nullable=False)
    nickname = Column(String, nullable=True)
    phone_number = Column(String, nullable=True, unique=True)
    rating = Column(Integer, default=INITIAL_RATING, nullable=False)  # Synced from the active season
    wins = Column(Integer, default=0, nullable=False)  # Lifetime
    losses = Column(Integer, default=0, nullable=False)  # Lifetime
    is_admin = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Relationships
    season_ratings = relationship("PlayerSeasonRating", back_populates="player")

    __table_args__ = (
        Index("idx_players_name", "full_name"),
    )


class Season(Base):
    """Rating seasons. Each season carries its own ELO configuration."""

    __tablename__ = "seasons"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False)
    start_date = Column(DateTime(timezone=True), nullable=False)
    end_date = Column(DateTime(timezone=True), nullable=False)  # Exclusive
    is_active = Column(Boolean, default=False, nullable=False)
    initial_rating = Column(Integer, default=INITIAL_RATING, nullable=False)
    k_factor = Column(Integer, default=K_FACTOR, nullable=False)
    min_games_for_ranking = Column(Integer, default=MIN_GAMES_FOR_RANKING, nullable=False)
    ratings_version = Column(
        Integer, default=0, nullable=False
    )  # Bumped by every committed replay (optimistic concurrency token)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Relationships
    games = relationship("Game", back_populates="season")
    player_ratings = relationship(
        "PlayerSeasonRating", back_populates="season", cascade="all, delete-orphan"
    )

    __table_args__ = (
        CheckConstraint("start_date < end_date", name="check_season_window"),
        Index("idx_seasons_active", "is_active"),
    )


class Game(Base):
    """Doubles game results."""

    __tablename__ = "games"

    id = Column(Integer, primary_key=True, autoincrement=True)
    season_id = Column(Integer, ForeignKey("seasons.id", ondelete="CASCADE"), nullable=False)
    team1_player1_id = Column(Integer, ForeignKey("players.id"), nullable=False)
    team1_player2_id = Column(Integer, ForeignKey("players.id"), nullable=False)
    team2_player1_id = Column(Integer, ForeignKey("players.id"), nullable=False)
    team2_player2_id = Column(Integer, ForeignKey("players.id"), nullable=False)
    team1_score = Column(Integer, nullable=False)
    team2_score = Column(Integer, nullable=False)
    elo_change = Column(
        Integer, default=0, nullable=False
    )  # Magnitude only; + for the winners, - for the losers. Replay value is authoritative.
    game_time = Column(DateTime(timezone=True), default=utcnow, nullable=False)  # Replay ordering key
    created_at = Column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )  # Submission time, used only for duplicate detection
    recorded_by = Column(
        Integer, ForeignKey("players.id"), nullable=True
    )  # Player who submitted the game
    recorded_by_name = Column(String, nullable=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Relationships
    season = relationship("Season", back_populates="games")
    team1_player1 = relationship("Player", foreign_keys=[team1_player1_id], lazy="select")
    team1_player2 = relationship("Player", foreign_keys=[team1_player2_id], lazy="select")
    team2_player1 = relationship("Player", foreign_keys=[team2_player1_id], lazy="select")
    team2_player2 = relationship("Player", foreign_keys=[team2_player2_id], lazy="select")
    recorder = relationship("Player", foreign_keys=[recorded_by])

    @property
    def player_ids(self) -> List[List[Optional[int]]]:
        """Get player IDs as list of teams (for the replay engine)."""
        return [
            [self.team1_player1_id, self.team1_player2_id],
            [self.team2_player1_id, self.team2_player2_id],
        ]

    @property
    def scores(self) -> List[int]:
        """Get scores as [team1, team2]."""
        return [self.team1_score, self.team2_score]

    __table_args__ = (
        CheckConstraint("elo_change >= 0", name="check_elo_change_magnitude"),
        Index("idx_games_season_time", "season_id", "game_time", "id"),
        Index("idx_games_created_at", "created_at"),
        Index("idx_games_team1_p1", "team1_player1_id"),
        Index("idx_games_team1_p2", "team1_player2_id"),
        Index("idx_games_team2_p1", "team2_player1_id"),
        Index("idx_games_team2_p2", "team2_player2_id"),
    )


class PlayerSeasonRating(Base):
    """Per-season rating snapshot. Written only by the season replay."""

    __tablename__ = "player_season_ratings"

    id = Column(Integer, primary_key=True, autoincrement=True)
    season_id = Column(Integer, ForeignKey("seasons.id", ondelete="CASCADE"), nullable=False)
    player_id = Column(Integer, ForeignKey("players.id"), nullable=False)
    rating = Column(Integer, nullable=False)
    wins = Column(Integer, default=0, nullable=False)
    losses = Column(Integer, default=0, nullable=False)
    highest_rating = Column(Integer, nullable=False)
    lowest_rating = Column(Integer, nullable=False)
    current_streak = Column(Integer, default=0, nullable=False)  # Consecutive wins, 0 after a loss
    longest_win_streak = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Relationships
    player = relationship("Player", back_populates="season_ratings")
    season = relationship("Season", back_populates="player_ratings")

    @property
    def games_played(self) -> int:
        return self.wins + self.losses

    __table_args__ = (
        UniqueConstraint("season_id", "player_id"),
        Index("idx_player_season_ratings_season", "season_id"),
        Index("idx_player_season_ratings_player", "player_id"),
    )


class Setting(Base):
    """Application configuration."""

    __tablename__ = "settings"

    key = Column(String, primary_key=True)
    value = Column(Text, nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class ReplayJob(Base):
    """Queue for season replay jobs."""

    __tablename__ = "replay_jobs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    season_id = Column(Integer, ForeignKey("seasons.id", ondelete="CASCADE"), nullable=False)
    status = Column(Enum(ReplayJobStatus), default=ReplayJobStatus.PENDING, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    game_count = Column(Integer, nullable=True)
    player_count = Column(Integer, nullable=True)
    skipped_game_ids = Column(Text, nullable=True)  # JSON list of games skipped as malformed
    error_message = Column(Text, nullable=True)

    # Relationships
    season = relationship("Season", foreign_keys=[season_id])

    __table_args__ = (
        Index("idx_replay_jobs_status", "status"),
        Index("idx_replay_jobs_season", "season_id"),
        Index("idx_replay_jobs_created_at", "created_at"),
    )
