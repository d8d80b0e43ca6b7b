# ABOUTME: Agent session routes: latest session (create on demand), transcript, and the message turn.
# ABOUTME: POST session:message returns 400 unknown session, 401 not owner, 409 finalized, 503 agent unreachable.

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from sqlmodel import Session

from core.auth import get_current_user
from core.database import User, get_db
from core.errors import NotFoundError, UnauthorizedError, ensure
from core.schemas import SessionMessageRequest
from planner.gateway import AgentClient, get_agent_client
from planner.sessions import (
    get_or_create_latest_session,
    get_session_state,
    handle_message,
    list_chat_messages,
    serialize_chat_message,
    serialize_session,
)

router = APIRouter(prefix="/v1/agent/goal", tags=["agent"])


@router.get("/session:latest")
def get_latest_session(current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """Return the user's latest active session (200), or create one seeded with fresh context (201)."""
    session, created = get_or_create_latest_session(db, current_user)
    return JSONResponse(
        status_code=201 if created else 200,
        content={"data": serialize_session(session)},
    )


@router.get("/session:messages")
def get_session_messages(
    session_id: str = Query(..., alias="sessionId"),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Transcript of one of the user's sessions, oldest first."""
    session = get_session_state(db, session_id)
    ensure(session, NotFoundError(f"Session '{session_id}' not found."))
    ensure(session.user_id == current_user.id, UnauthorizedError("Unauthorized."))
    return {"data": [serialize_chat_message(m) for m in list_chat_messages(db, session.id)]}


@router.post("/session:message")
def post_session_message(
    req: SessionMessageRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    agent: AgentClient = Depends(get_agent_client),
):
    """Send a user message to the planning agent and return its reply with the updated session state."""
    if req.user_id is not None:
        ensure(req.user_id == str(current_user.id), UnauthorizedError("Unauthorized."))
    result = handle_message(
        db,
        user_id=current_user.id,
        session_id=req.session_id,
        message=req.message,
        context_override=req.context,
        agent=agent,
    )
    session = result.session
    return {
        "sessionId": str(session.id),
        "reply": result.response.reply,
        "action": result.response.action.model_dump(by_alias=True),
        "state": {
            "state": session.state,
            "iteration": session.iteration,
            "sessionActive": session.session_active,
            "goalPreviewId": session.goal_preview_id,
        },
        "context": session.context or {},
    }
