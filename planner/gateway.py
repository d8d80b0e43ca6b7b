# ABOUTME: Agent gateway: AgentClient interface, HTTP client for the external agent, and response mapping.
# ABOUTME: Agent failures surface as UpstreamUnavailableError (503); apply_agent_response derives the next session state.

import logging
import time
from dataclasses import dataclass
from typing import Any, Protocol

import requests
from pydantic import ValidationError as PydanticValidationError
from sqlmodel import Session

from core.config import (
    AGENT_BACKEND,
    AGENT_SERVICE_AUTH_TOKEN,
    AGENT_SERVICE_URL,
    AGENT_TIMEOUT_SECONDS,
)
from core.database import SessionState
from core.errors import ApiError, UpstreamUnavailableError
from core.schemas import AgentRequest, AgentResponse, AgentSessionState
from core.telemetry import log_agent_call
from planner.repositories import upsert_goal_preview

AGENT_UNAVAILABLE_MESSAGE = "Agent service unavailable. Please try again later."


class AgentClient(Protocol):
    """Capability interface for the planning agent: one request in, one response out."""

    backend: str

    def run(self, request: AgentRequest) -> AgentResponse: ...


class HttpAgentClient:
    """Calls the external agent service at POST {base_url}/agent/run."""

    backend = "http"

    def __init__(
        self,
        base_url: str = AGENT_SERVICE_URL,
        auth_token: str = AGENT_SERVICE_AUTH_TOKEN,
        timeout: float = AGENT_TIMEOUT_SECONDS,
        http: requests.Session | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.auth_token = auth_token
        self.timeout = timeout
        self.http = http or requests.Session()

    def run(self, request: AgentRequest) -> AgentResponse:
        if not self.base_url:
            raise ApiError("Agent service URL not configured.")
        headers = {"Content-Type": "application/json"}
        if self.auth_token:
            headers["Authorization"] = f"Bearer {self.auth_token}"

        start = time.perf_counter()
        response: AgentResponse | None = None
        try:
            r = self.http.post(
                f"{self.base_url}/agent/run",
                json=request.model_dump(by_alias=True),
                headers=headers,
                timeout=self.timeout,
            )
            if not r.ok:
                logging.warning(
                    "Agent service returned %s for session %s: %s",
                    r.status_code,
                    request.session_id,
                    r.text[:500],
                )
                raise UpstreamUnavailableError(AGENT_UNAVAILABLE_MESSAGE)
            response = AgentResponse.model_validate(r.json())
            return response
        except requests.RequestException:
            logging.exception("Agent service request failed")
            raise UpstreamUnavailableError(AGENT_UNAVAILABLE_MESSAGE)
        except (ValueError, PydanticValidationError):
            logging.exception("Agent service returned an invalid response body")
            raise UpstreamUnavailableError(AGENT_UNAVAILABLE_MESSAGE)
        finally:
            log_agent_call(
                backend=self.backend,
                session_id=request.session_id,
                latency_ms=(time.perf_counter() - start) * 1000,
                action_type=response.action.type if response else None,
                success=response is not None,
            )


def get_agent_client() -> AgentClient:
    """FastAPI dependency returning the configured agent backend."""
    if AGENT_BACKEND == "adk":
        from plan_coach.agent import AdkPlanningAgent

        return AdkPlanningAgent()
    return HttpAgentClient()


def build_agent_request(
    session: SessionState, user_id: str, message: str, context: dict[str, Any]
) -> AgentRequest:
    return AgentRequest(
        session_id=str(session.id),
        user_id=user_id,
        message=message,
        context=context,
        state=AgentSessionState(
            state=session.state,
            iteration=session.iteration,
            session_active=session.session_active,
            goal_preview_id=session.goal_preview_id,
        ),
    )


def invoke_agent(agent: AgentClient, request: AgentRequest) -> AgentResponse:
    """Run the agent. Typed API errors pass through; anything else becomes a 503."""
    try:
        return agent.run(request)
    except ApiError:
        raise
    except Exception:
        logging.exception("Agent backend %s failed", getattr(agent, "backend", "unknown"))
        raise UpstreamUnavailableError(AGENT_UNAVAILABLE_MESSAGE)


@dataclass
class SessionUpdate:
    state: str
    iteration: int
    goal_preview_id: str | None
    session_active: bool
    context: dict[str, Any]


def extract_preview(payload: dict[str, Any]) -> tuple[str | None, dict[str, Any]]:
    """Plan data is payload["goalPreview"] when that is an object, else the payload itself; id is data["id"]."""
    nested = payload.get("goalPreview")
    data = nested if isinstance(nested, dict) else payload
    preview_id = data.get("id")
    return (preview_id if isinstance(preview_id, str) and preview_id else None), data


def apply_agent_response(
    db: Session,
    session: SessionState,
    user_id: Any,
    response: AgentResponse,
    context: dict[str, Any],
) -> SessionUpdate:
    """Write the preview for save_preview (flushed, not committed) and compute the next session fields.

    Fields the agent omits keep the session's values; iteration defaults to previous + 1 and never
    goes backwards. finalize_goal (or a finalized state) always closes the session.
    """
    action = response.action
    goal_preview_id = session.goal_preview_id
    if action.type == "save_preview":
        preview_id, data = extract_preview(action.payload or {})
        preview = upsert_goal_preview(
            db,
            preview_id=preview_id,
            user_id=user_id,
            session_id=session.id,
            data=data,
            commit=False,
        )
        goal_preview_id = preview.id
    elif not action.is_known:
        logging.warning("Ignoring unknown agent action type %r", action.type)

    agent_state = response.state or AgentSessionState()
    state = agent_state.state if agent_state.state is not None else session.state
    if agent_state.iteration is not None:
        iteration = max(agent_state.iteration, session.iteration)
    else:
        iteration = session.iteration + 1
    if agent_state.goal_preview_id is not None:
        goal_preview_id = agent_state.goal_preview_id
    session_active = (
        agent_state.session_active
        if agent_state.session_active is not None
        else session.session_active
    )
    if action.type == "finalize_goal" or state == "finalized":
        session_active = False

    return SessionUpdate(
        state=state,
        iteration=iteration,
        goal_preview_id=goal_preview_id,
        session_active=session_active,
        context=response.context if response.context is not None else context,
    )
