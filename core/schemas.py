# ABOUTME: Pydantic models for the agent JSON contract and the API request bodies.
# ABOUTME: Wire names are camelCase (alias generator); Python attributes stay snake_case.

from datetime import date as date_type, datetime
from typing import Annotated, Any, ClassVar, Literal, Optional

from pydantic import (
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from core.config import MAX_AVAILABLE_HOURS_PER_WEEK

ACTION_TYPES = ("save_preview", "finalize_goal", "none")


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# Agent contract


class AgentSessionState(CamelModel):
    """Session fields sent to the agent and (partially) returned by it. Omitted fields are None."""

    state: Optional[str] = None
    iteration: Optional[int] = Field(default=None, ge=0)
    session_active: Optional[bool] = None
    goal_preview_id: Optional[str] = None


class AgentAction(CamelModel):
    """Action tagged by type. Unknown types are kept as-is and treated like "none" by the gateway."""

    type: str = "none"
    payload: Optional[dict[str, Any]] = None

    @model_validator(mode="after")
    def _check_payload_for_type(self):
        if self.type == "save_preview" and self.payload is None:
            raise ValueError("save_preview action requires an object payload")
        return self

    @property
    def is_known(self) -> bool:
        return self.type in ACTION_TYPES


class AgentRequest(CamelModel):
    session_id: str
    user_id: str
    message: str
    context: dict[str, Any] = Field(default_factory=dict)
    state: AgentSessionState


class AgentResponse(CamelModel):
    reply: str
    action: AgentAction = Field(default_factory=AgentAction)
    state: Optional[AgentSessionState] = None
    context: Optional[dict[str, Any]] = None

    @field_validator("action", mode="before")
    @classmethod
    def _null_action_is_none(cls, value):
        return {"type": "none"} if value is None else value


# API request bodies


def _parse_day(value: Any) -> Any:
    """Accept YYYY-MM-DD or a full ISO timestamp and keep only the calendar day."""
    if isinstance(value, str):
        raw = value.strip()
        if not raw:
            raise ValueError("date is required.")
        try:
            return date_type.fromisoformat(raw)
        except ValueError:
            pass
        try:
            return datetime.fromisoformat(raw.replace("Z", "+00:00")).date()
        except ValueError:
            raise ValueError("Invalid date format.")
    return value


Day = Annotated[date_type, BeforeValidator(_parse_day)]


class UpdateModel(CamelModel):
    """PATCH body: only fields the client sent are applied; listed fields may not be sent as null."""

    non_nullable: ClassVar[tuple[str, ...]] = ()

    @model_validator(mode="after")
    def _reject_explicit_nulls(self):
        for name in self.non_nullable:
            if name in self.model_fields_set and getattr(self, name) is None:
                raise ValueError(f"{to_camel(name)} cannot be null.")
        return self

    def changes(self) -> dict[str, Any]:
        return self.model_dump(exclude_unset=True)


class GoogleSignInRequest(CamelModel):
    id_token: str = Field(min_length=1)


class UserUpdateRequest(UpdateModel):
    non_nullable: ClassVar[tuple[str, ...]] = ("name", "timezone", "available_hours_per_week")

    name: Optional[str] = Field(default=None, min_length=1)
    timezone: Optional[str] = Field(default=None, min_length=1)
    profile_image_url: Optional[str] = None
    available_hours_per_week: Optional[float] = Field(
        default=None, ge=0, le=MAX_AVAILABLE_HOURS_PER_WEEK
    )


class GoalCreateRequest(CamelModel):
    title: str = Field(min_length=1)
    description: Optional[str] = None
    min_hours_per_week: float = Field(ge=0)
    priority: int
    color: Optional[int] = None


class GoalUpdateRequest(UpdateModel):
    non_nullable: ClassVar[tuple[str, ...]] = ("title", "status", "min_hours_per_week", "priority")

    title: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    status: Optional[Literal["active", "completed", "paused", "archived"]] = None
    min_hours_per_week: Optional[float] = Field(default=None, ge=0)
    priority: Optional[int] = None
    color: Optional[int] = None


class MilestoneCreateRequest(CamelModel):
    title: str = Field(min_length=1)
    description: Optional[str] = None
    parent_milestone_id: Optional[str] = None


class MilestoneUpdateRequest(UpdateModel):
    non_nullable: ClassVar[tuple[str, ...]] = ("title", "status")

    title: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    status: Optional[Literal["blocked", "in_progress", "finished"]] = None


class TaskCreateRequest(CamelModel):
    title: str = Field(min_length=1)
    description: Optional[str] = None
    date: Day
    estimated_hours: float = Field(ge=0)


class TaskUpdateRequest(UpdateModel):
    non_nullable: ClassVar[tuple[str, ...]] = ("title", "date", "estimated_hours", "done")

    title: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    date: Optional[Day] = None
    estimated_hours: Optional[float] = Field(default=None, ge=0)
    done: Optional[bool] = None


class SessionMessageRequest(CamelModel):
    session_id: str = Field(min_length=1)
    message: str = Field(min_length=1)
    context: Optional[dict[str, Any]] = None
    user_id: Optional[str] = None

    @field_validator("session_id", "message")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be blank")
        return value
