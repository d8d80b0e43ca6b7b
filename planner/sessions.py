# ABOUTME: Session manager: agent session lifecycle, append-only chat transcript, and the message turn pipeline.
# ABOUTME: handle_message records the user message, calls the agent, then commits reply + preview + state together.

import logging
from dataclasses import dataclass
from typing import Any
from uuid import UUID

from sqlalchemy import func, update
from sqlmodel import Session, select

from core.database import Chat, ChatMessage, SessionState, User, utcnow
from core.errors import ConflictError, UnauthorizedError, ValidationError, ensure
from core.schemas import AgentResponse
from planner.context import build_user_context
from planner.gateway import (
    AgentClient,
    SessionUpdate,
    apply_agent_response,
    build_agent_request,
    invoke_agent,
)
from planner.repositories import compare_and_set, parse_id


@dataclass
class TurnResult:
    session: SessionState
    response: AgentResponse


def serialize_session(session: SessionState) -> dict:
    return {
        "sessionId": str(session.id),
        "chatId": str(session.chat_id),
        "state": session.state,
        "iteration": session.iteration,
        "sessionActive": session.session_active,
        "goalPreviewId": session.goal_preview_id,
        "context": session.context or {},
        "createdAt": session.created_at.isoformat(),
        "updatedAt": session.updated_at.isoformat(),
    }


def serialize_chat_message(message: ChatMessage) -> dict:
    return {
        "id": str(message.id),
        "chatId": str(message.chat_id),
        "sessionId": str(message.session_id),
        "sender": message.sender,
        "message": message.message,
        "createdAt": message.created_at.isoformat(),
    }


def get_session_state(db: Session, session_id: Any) -> SessionState | None:
    sid = parse_id(session_id)
    return db.get(SessionState, sid) if sid else None


def find_latest_active_session(db: Session, user_id: UUID) -> SessionState | None:
    """Most recently updated active session of the user, if any."""
    stmt = (
        select(SessionState)
        .where(SessionState.user_id == user_id, SessionState.session_active == True)  # noqa: E712
        .order_by(SessionState.updated_at.desc())
        .limit(1)
    )
    return db.exec(stmt).first()


def create_session(db: Session, user_id: UUID, context: dict[str, Any]) -> SessionState:
    """Create a chat and a fresh session (plan_generated, iteration 0, active, no preview)."""
    chat = Chat(user_id=user_id)
    db.add(chat)
    db.flush()
    session = SessionState(user_id=user_id, chat_id=chat.id, context=context)
    db.add(session)
    db.commit()
    db.refresh(session)
    logging.info("Created agent session %s for user %s", session.id, user_id)
    return session


def get_or_create_latest_session(db: Session, user: User) -> tuple[SessionState, bool]:
    """Return (session, created). A new session is seeded with the user's scheduling context."""
    session = find_latest_active_session(db, user.id)
    if session is not None:
        return session, False
    return create_session(db, user.id, build_user_context(db, user)), True


def append_chat_message(
    db: Session, session: SessionState, sender: str, message: str, commit: bool = True
) -> ChatMessage:
    """Append one immutable transcript line and touch the chat and session timestamps."""
    position = db.exec(
        select(func.count()).select_from(ChatMessage).where(ChatMessage.session_id == session.id)
    ).one()
    now = utcnow()
    record = ChatMessage(
        chat_id=session.chat_id,
        session_id=session.id,
        sender=sender,
        message=message,
        position=position,
        created_at=now,
    )
    db.add(record)
    db.exec(update(Chat).where(Chat.id == session.chat_id).values(updated_at=now))
    db.exec(update(SessionState).where(SessionState.id == session.id).values(updated_at=now))
    if commit:
        db.commit()
    return record


def list_chat_messages(db: Session, session_id: UUID) -> list[ChatMessage]:
    stmt = (
        select(ChatMessage)
        .where(ChatMessage.session_id == session_id)
        .order_by(ChatMessage.created_at, ChatMessage.position)
    )
    return list(db.exec(stmt))


def update_session(
    db: Session, session: SessionState, changes: SessionUpdate, expected_version: int
) -> None:
    """CAS write of the session fields. Does not commit."""
    compare_and_set(
        db,
        SessionState,
        session.id,
        expected_version,
        state=changes.state,
        iteration=changes.iteration,
        goal_preview_id=changes.goal_preview_id,
        session_active=changes.session_active,
        context=changes.context,
    )


def handle_message(
    db: Session,
    *,
    user_id: UUID,
    session_id: str,
    message: str,
    context_override: Any,
    agent: AgentClient,
) -> TurnResult:
    """Run one agent turn for session_id on behalf of user_id.

    The user message is committed before the agent call, so a failed call still records it and
    leaves the session untouched. Reply, preview and new state then commit in one transaction,
    guarded by the session version read at the start of the turn.
    """
    session = get_session_state(db, session_id)
    ensure(session, ValidationError(f"Session '{session_id}' not found."))
    ensure(session.user_id == user_id, UnauthorizedError("Unauthorized."))
    ensure(
        session.session_active,
        ConflictError(f"Session '{session_id}' is finalized and cannot accept new messages."),
    )
    expected_version = session.version
    context = context_override if isinstance(context_override, dict) else (session.context or {})

    append_chat_message(db, session, "user", message)
    request = build_agent_request(session, str(user_id), message, context)
    response = invoke_agent(agent, request)

    changes = apply_agent_response(db, session, user_id, response, context)
    append_chat_message(db, session, "agent", response.reply, commit=False)
    update_session(db, session, changes, expected_version)
    db.commit()
    db.refresh(session)
    if not session.session_active:
        logging.info("Agent session %s closed at iteration %s", session.id, session.iteration)
    return TurnResult(session=session, response=response)
