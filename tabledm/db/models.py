"""SQLAlchemy database models for TableDM."""

import uuid
from datetime import datetime

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship

from ..enums import SessionStatus

Base = declarative_base()


def _new_id() -> str:
    return str(uuid.uuid4())


class GameSession(Base):
    """A multiplayer play session hosted by one user."""

    __tablename__ = "game_sessions"

    id = Column(String(36), primary_key=True, default=_new_id)
    session_code = Column(String(7), nullable=False, unique=True)  # e.g. "ABC-DEF"
    campaign_name = Column(String(255), nullable=False)
    host_id = Column(String(100), nullable=False)
    max_players = Column(Integer, default=6)
    dm_language = Column(String(50), default="english")
    status = Column(String(20), default=SessionStatus.LOBBY)

    created_at = Column(DateTime, default=datetime.utcnow)
    started_at = Column(DateTime, nullable=True)
    ended_at = Column(DateTime, nullable=True)

    # Relationships
    characters = relationship(
        "SessionCharacter", back_populates="session", cascade="all, delete-orphan",
        order_by="SessionCharacter.id",
    )
    game_state = relationship("GameState", back_populates="session", uselist=False, cascade="all, delete-orphan")


class SessionCharacter(Base):
    """A character on a session's roster.

    Carries the character-sheet snapshot combat needs (name, AC, max HP)
    plus the session-scoped current HP, which survives between encounters.
    """

    __tablename__ = "session_characters"
    __table_args__ = (UniqueConstraint("session_id", "character_id", name="uq_session_character"),)

    id = Column(Integer, primary_key=True)
    session_id = Column(String(36), ForeignKey("game_sessions.id"), nullable=False)
    character_id = Column(String(100), nullable=False)
    name = Column(String(255), nullable=False)
    armor_class = Column(Integer, default=10)
    max_hp = Column(Integer, nullable=False)
    current_hp = Column(Integer, nullable=True)  # NULL = full HP
    added_by = Column(String(100), nullable=True)
    added_at = Column(DateTime, default=datetime.utcnow)

    session = relationship("GameSession", back_populates="characters")


class GameState(Base):
    """Per-session mutable state.

    combat_state shares this row with unrelated fields (scene_summary),
    so combat writers only ever touch combat_state and combat_version.
    """

    __tablename__ = "game_states"

    id = Column(Integer, primary_key=True)
    session_id = Column(String(36), ForeignKey("game_sessions.id"), nullable=False, unique=True)

    combat_state = Column(JSON, nullable=True)
    combat_version = Column(Integer, nullable=False, default=0)  # compare-and-swap token

    scene_summary = Column(Text, nullable=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    session = relationship("GameSession", back_populates="game_state")
