# ABOUTME: Pytest hooks and shared fixtures. Sets SECRET_KEY and agent config before app/config load.
# ABOUTME: Provides an in-memory SQLite engine, a TestClient wired to it, record factories, and a scripted fake agent.

import os
from datetime import date

try:
    from dotenv import load_dotenv
    load_dotenv()
except ImportError:
    pass

# Required by core.config before any test imports api.main.
os.environ.setdefault("SECRET_KEY", "test-secret-for-pytest")
os.environ.setdefault("GOOGLE_CLIENT_ID", "test-client-id.apps.googleusercontent.com")
os.environ["AGENT_BACKEND"] = "http"

import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session, SQLModel, create_engine
from sqlmodel.pool import StaticPool

from api.main import app
from core.auth import create_access_token
from core.database import Goal, Milestone, Task, User, get_db
from core.schemas import AgentResponse
from planner.gateway import get_agent_client


class FakeAgent:
    """Scripted AgentClient. Queued items are response dicts, exceptions to raise, or callables of the request."""

    backend = "fake"

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []

    def run(self, request):
        self.requests.append(request)
        item = self.responses.pop(0)
        if callable(item):
            item = item(request)
        if isinstance(item, Exception):
            raise item
        return AgentResponse.model_validate(item)


@pytest.fixture
def in_memory_engine():
    """Engine for in-memory SQLite; one DB per test."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    return engine


@pytest.fixture
def db(in_memory_engine):
    """Yield a session that uses the in-memory engine."""
    with Session(in_memory_engine) as session:
        yield session


@pytest.fixture
def client(db):
    """TestClient whose get_db dependency yields the test's in-memory session."""
    app.dependency_overrides[get_db] = lambda: db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def make_agent():
    return FakeAgent


@pytest.fixture
def use_agent():
    """Install a FakeAgent scripted with the given responses as the app's agent client."""

    def _install(*responses) -> FakeAgent:
        agent = FakeAgent(*responses)
        app.dependency_overrides[get_agent_client] = lambda: agent
        return agent

    return _install


@pytest.fixture
def make_user(db):
    def _make(email="ada@example.com", available_hours_per_week=20, **kwargs) -> User:
        user = User(email=email, name=kwargs.pop("name", "Ada"), available_hours_per_week=available_hours_per_week, **kwargs)
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make


@pytest.fixture
def make_goal(db):
    def _make(user: User, title="Learn piano", min_hours_per_week=5, status="active", **kwargs) -> Goal:
        goal = Goal(user_id=user.id, title=title, min_hours_per_week=min_hours_per_week, status=status, **kwargs)
        db.add(goal)
        db.commit()
        db.refresh(goal)
        return goal

    return _make


@pytest.fixture
def make_milestone(db):
    def _make(goal: Goal, title="Scales", **kwargs) -> Milestone:
        milestone = Milestone(goal_id=goal.id, title=title, **kwargs)
        db.add(milestone)
        db.commit()
        db.refresh(milestone)
        return milestone

    return _make


@pytest.fixture
def make_task(db):
    def _make(milestone: Milestone, user: User, day: date, title="Practice", estimated_hours=1, **kwargs) -> Task:
        task = Task(
            goal_id=milestone.goal_id,
            milestone_id=milestone.id,
            user_id=user.id,
            title=title,
            date=day,
            estimated_hours=estimated_hours,
            **kwargs,
        )
        db.add(task)
        db.commit()
        db.refresh(task)
        return task

    return _make


@pytest.fixture
def auth_headers():
    """Return Authorization headers carrying a valid token for the given user."""

    def _headers(user: User) -> dict:
        return {"Authorization": f"Bearer {create_access_token(user.id, user.email)}"}

    return _headers
