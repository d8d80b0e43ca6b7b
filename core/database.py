# ABOUTME: SQLModel tables for users, goals, milestones, tasks, agent sessions, chat and goal previews.
# ABOUTME: get_session yields a SQLite session; init_db creates the schema. Rows carry a version for CAS writes.

import os
from contextlib import contextmanager
from datetime import date as date_type, datetime, timezone
from typing import Any, Optional
from uuid import UUID, uuid4

from sqlalchemy import JSON, Column
from sqlmodel import Field, Session, SQLModel, create_engine

from core.config import DEFAULT_AVAILABLE_HOURS_PER_WEEK, DEFAULT_TIMEZONE

_db_path = os.environ.get("GOALS_DB_PATH", "goals.db")

GOAL_STATUSES = ("active", "completed", "paused", "archived")
MILESTONE_STATUSES = ("blocked", "in_progress", "finished")
SESSION_STATES = ("plan_generated", "plan_iteration", "finalized")
CHAT_SENDERS = ("user", "agent")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class User(SQLModel, table=True):
    """Account created on first Google sign-in. Email never changes after creation."""

    __tablename__ = "users"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    email: str = Field(unique=True, index=True)
    name: str = ""
    profile_image_url: Optional[str] = None
    timezone: str = DEFAULT_TIMEZONE
    available_hours_per_week: float = DEFAULT_AVAILABLE_HOURS_PER_WEEK
    google_sub: str = ""
    version: int = 0
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Goal(SQLModel, table=True):
    """A user's goal. Active goals reserve min_hours_per_week of the user's weekly budget."""

    __tablename__ = "goals"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    user_id: UUID = Field(foreign_key="users.id", index=True)
    title: str
    description: Optional[str] = None
    status: str = Field(default="active", index=True)
    min_hours_per_week: float = 0
    priority: int = 0
    color: Optional[int] = None
    version: int = 0
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Milestone(SQLModel, table=True):
    __tablename__ = "milestones"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    goal_id: UUID = Field(foreign_key="goals.id", index=True)
    parent_milestone_id: Optional[UUID] = Field(default=None, foreign_key="milestones.id")
    title: str
    description: Optional[str] = None
    status: str = "in_progress"
    version: int = 0
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Task(SQLModel, table=True):
    """A dated unit of work under a milestone; goal_id and user_id are denormalized for queries."""

    __tablename__ = "tasks"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    goal_id: UUID = Field(foreign_key="goals.id", index=True)
    milestone_id: UUID = Field(foreign_key="milestones.id", index=True)
    user_id: UUID = Field(foreign_key="users.id", index=True)
    title: str
    description: Optional[str] = None
    date: date_type = Field(index=True)
    estimated_hours: float = 0
    done: bool = False
    version: int = 0
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Chat(SQLModel, table=True):
    """Transcript container created together with each agent session."""

    __tablename__ = "chats"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    user_id: UUID = Field(foreign_key="users.id", index=True)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class SessionState(SQLModel, table=True):
    """Planning conversation state driven by agent turns. Inactive sessions never reopen."""

    __tablename__ = "session_states"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    user_id: UUID = Field(foreign_key="users.id", index=True)
    chat_id: UUID = Field(foreign_key="chats.id")
    state: str = "plan_generated"
    iteration: int = 0
    goal_preview_id: Optional[str] = None
    session_active: bool = Field(default=True, index=True)
    context: dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    version: int = 0
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow, index=True)


class ChatMessage(SQLModel, table=True):
    """Append-only transcript line. position is the 0-based append index within the session."""

    __tablename__ = "chat_messages"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    chat_id: UUID = Field(foreign_key="chats.id", index=True)
    session_id: UUID = Field(foreign_key="session_states.id", index=True)
    sender: str
    message: str
    position: int = 0
    created_at: datetime = Field(default_factory=utcnow)


class GoalPreview(SQLModel, table=True):
    """Draft plan produced by the agent. Ids may be chosen by the agent, so they are plain strings."""

    __tablename__ = "goal_previews"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    user_id: UUID = Field(foreign_key="users.id", index=True)
    session_id: UUID = Field(foreign_key="session_states.id", index=True)
    data: dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


_engine = create_engine(
    f"sqlite:///{_db_path}",
    connect_args={"check_same_thread": False},
)


def init_db() -> None:
    """Create all tables if they do not exist."""
    SQLModel.metadata.create_all(_engine)


@contextmanager
def get_session():
    """Yield an SQLite session for the default engine."""
    init_db()
    with Session(_engine) as session:
        yield session


def get_db():
    """FastAPI dependency wrapping get_session so routes and tests can override one callable."""
    with get_session() as session:
        yield session
