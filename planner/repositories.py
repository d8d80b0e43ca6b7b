# ABOUTME: CRUD accessors for users, goals, milestones, tasks and goal previews over the SQLModel session.
# ABOUTME: Guarded writes bump a row version with compare-and-set; a stale version raises ConflictError.

import logging
from datetime import date
from typing import Any, Iterable
from uuid import UUID

from sqlalchemy import func, update
from sqlmodel import Session, SQLModel, select

from core.config import DEFAULT_AVAILABLE_HOURS_PER_WEEK, DEFAULT_TIMEZONE
from core.database import Goal, GoalPreview, Milestone, Task, User, utcnow
from core.errors import ConflictError, ForbiddenError, NotFoundError, ValidationError, ensure


def parse_id(raw: Any) -> UUID | None:
    """Return raw as a UUID, or None when it is not a valid id."""
    if isinstance(raw, UUID):
        return raw
    try:
        return UUID(str(raw))
    except (TypeError, ValueError):
        return None


def compare_and_set(
    db: Session,
    model: type[SQLModel],
    row_id: UUID,
    expected_version: int,
    *,
    touch: bool = True,
    **values: Any,
) -> None:
    """UPDATE model SET values, version+1 WHERE id and version match. Does not commit.

    touch=False bumps only the version, for rows used as a lock whose own fields do not change.
    """
    if touch:
        values["updated_at"] = utcnow()
    result = db.exec(
        update(model)
        .where(model.id == row_id, model.version == expected_version)
        .values(version=expected_version + 1, **values)
    )
    if result.rowcount != 1:
        db.rollback()
        raise ConflictError(
            f"{model.__name__} was modified concurrently. Reload and retry.",
            details={"id": str(row_id), "expectedVersion": expected_version},
        )


def _clean_title(title: str) -> str:
    cleaned = title.strip()
    ensure(cleaned, ValidationError("title is required."))
    return cleaned


# Users


def get_user(db: Session, user_id: Any) -> User | None:
    uid = parse_id(user_id)
    return db.get(User, uid) if uid else None


def find_user_by_email(db: Session, email: str) -> User | None:
    return db.exec(select(User).where(User.email == email)).first()


def create_user(
    db: Session,
    *,
    email: str,
    name: str | None,
    profile_image_url: str | None,
    google_sub: str,
    timezone: str = DEFAULT_TIMEZONE,
    available_hours_per_week: float = DEFAULT_AVAILABLE_HOURS_PER_WEEK,
) -> User:
    user = User(
        email=email,
        name=name or "",
        profile_image_url=profile_image_url,
        google_sub=google_sub,
        timezone=timezone,
        available_hours_per_week=available_hours_per_week,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def update_user(db: Session, user: User, changes: dict[str, Any]) -> User:
    """Apply changes to the user row. Email is immutable and ignored here."""
    changes = {k: v for k, v in changes.items() if k != "email"}
    for key in ("name", "timezone"):
        if key in changes:
            ensure(changes[key].strip(), ValidationError(f"Invalid {key}."))
    compare_and_set(db, User, user.id, user.version, **changes)
    db.commit()
    db.refresh(user)
    return user


# Goals


def get_goal(db: Session, goal_id: Any) -> Goal | None:
    gid = parse_id(goal_id)
    return db.get(Goal, gid) if gid else None


def get_owned_goal(db: Session, goal_id: Any, user_id: UUID) -> Goal:
    goal = get_goal(db, goal_id)
    ensure(goal, NotFoundError("Goal not found."))
    ensure(goal.user_id == user_id, ForbiddenError("Forbidden."))
    return goal


def list_goals(db: Session, user_id: UUID, status: str = "all") -> list[Goal]:
    stmt = select(Goal).where(Goal.user_id == user_id)
    if status != "all":
        stmt = stmt.where(Goal.status == status)
    return list(db.exec(stmt.order_by(Goal.priority, Goal.created_at)))


def list_active_goals(
    db: Session, user_id: UUID, exclude_goal_id: UUID | None = None
) -> list[Goal]:
    goals = list_goals(db, user_id, status="active")
    return [g for g in goals if g.id != exclude_goal_id]


def sum_active_goal_hours(
    db: Session, user_id: UUID, exclude_goal_id: UUID | None = None
) -> float:
    stmt = select(func.coalesce(func.sum(Goal.min_hours_per_week), 0)).where(
        Goal.user_id == user_id, Goal.status == "active"
    )
    if exclude_goal_id is not None:
        stmt = stmt.where(Goal.id != exclude_goal_id)
    return float(db.exec(stmt).one())


def create_goal(
    db: Session,
    user: User,
    *,
    title: str,
    description: str | None,
    min_hours_per_week: float,
    priority: int,
    color: int | None,
) -> Goal:
    """Insert an active goal and bump the owner's version so concurrent budget checks cannot both pass."""
    goal = Goal(
        user_id=user.id,
        title=_clean_title(title),
        description=description,
        min_hours_per_week=min_hours_per_week,
        priority=priority,
        color=color,
    )
    db.add(goal)
    compare_and_set(db, User, user.id, user.version, touch=False)
    db.commit()
    db.refresh(goal)
    return goal


def update_goal(
    db: Session, goal: Goal, changes: dict[str, Any], guard_user: User | None = None
) -> Goal:
    """Apply changes with CAS on the goal; when guard_user is given its version is bumped too."""
    if "title" in changes:
        changes = {**changes, "title": _clean_title(changes["title"])}
    compare_and_set(db, Goal, goal.id, goal.version, **changes)
    if guard_user is not None:
        compare_and_set(db, User, guard_user.id, guard_user.version, touch=False)
    db.commit()
    db.refresh(goal)
    return goal


# Milestones


def get_milestone(db: Session, milestone_id: Any) -> Milestone | None:
    mid = parse_id(milestone_id)
    return db.get(Milestone, mid) if mid else None


def get_owned_milestone(db: Session, milestone_id: Any, user_id: UUID) -> Milestone:
    milestone = get_milestone(db, milestone_id)
    ensure(milestone, NotFoundError("Milestone not found."))
    get_owned_goal(db, milestone.goal_id, user_id)
    return milestone


def list_milestones_by_goal(db: Session, goal_id: UUID) -> list[Milestone]:
    stmt = select(Milestone).where(Milestone.goal_id == goal_id).order_by(Milestone.created_at)
    return list(db.exec(stmt))


def create_milestone(
    db: Session,
    goal: Goal,
    *,
    title: str,
    description: str | None,
    parent_milestone_id: UUID | None,
) -> Milestone:
    milestone = Milestone(
        goal_id=goal.id,
        title=_clean_title(title),
        description=description,
        parent_milestone_id=parent_milestone_id,
    )
    db.add(milestone)
    db.commit()
    db.refresh(milestone)
    return milestone


def update_milestone(db: Session, milestone: Milestone, changes: dict[str, Any]) -> Milestone:
    if "title" in changes:
        changes = {**changes, "title": _clean_title(changes["title"])}
    compare_and_set(db, Milestone, milestone.id, milestone.version, **changes)
    db.commit()
    db.refresh(milestone)
    return milestone


# Tasks


def get_task(db: Session, task_id: Any) -> Task | None:
    tid = parse_id(task_id)
    return db.get(Task, tid) if tid else None


def get_owned_task(db: Session, task_id: Any, user_id: UUID) -> tuple[Task, Milestone]:
    task = get_task(db, task_id)
    ensure(task, NotFoundError("Task not found."))
    milestone = get_owned_milestone(db, task.milestone_id, user_id)
    return task, milestone


def list_tasks_by_milestone(db: Session, milestone_id: UUID) -> list[Task]:
    stmt = select(Task).where(Task.milestone_id == milestone_id).order_by(Task.date, Task.created_at)
    return list(db.exec(stmt))


def list_tasks_by_goal(db: Session, goal_id: UUID) -> list[Task]:
    stmt = select(Task).where(Task.goal_id == goal_id).order_by(Task.date, Task.created_at)
    return list(db.exec(stmt))


def list_tasks_by_date_range(db: Session, user_id: UUID, start: date, end: date) -> list[Task]:
    """Tasks of the user with start <= date < end, ordered by date then creation."""
    stmt = (
        select(Task)
        .where(Task.user_id == user_id, Task.date >= start, Task.date < end)
        .order_by(Task.date, Task.created_at)
    )
    return list(db.exec(stmt))


def create_task(
    db: Session,
    milestone: Milestone,
    user_id: UUID,
    *,
    title: str,
    description: str | None,
    day: date,
    estimated_hours: float,
) -> Task:
    """Insert a task and bump the milestone version so a concurrent same-day insert fails its CAS."""
    task = Task(
        goal_id=milestone.goal_id,
        milestone_id=milestone.id,
        user_id=user_id,
        title=_clean_title(title),
        description=description,
        date=day,
        estimated_hours=estimated_hours,
    )
    db.add(task)
    compare_and_set(db, Milestone, milestone.id, milestone.version, touch=False)
    db.commit()
    db.refresh(task)
    return task


def update_task(
    db: Session, task: Task, changes: dict[str, Any], guard_milestone: Milestone | None = None
) -> Task:
    if "title" in changes:
        changes = {**changes, "title": _clean_title(changes["title"])}
    compare_and_set(db, Task, task.id, task.version, **changes)
    if guard_milestone is not None:
        compare_and_set(db, Milestone, guard_milestone.id, guard_milestone.version, touch=False)
    db.commit()
    db.refresh(task)
    return task


def set_task_done(db: Session, task: Task, done: bool) -> Task:
    return update_task(db, task, {"done": done})


def summarize_task_hours(tasks: Iterable[Task]) -> dict[str, float]:
    """Total and completed estimated hours across tasks."""
    total = 0.0
    done = 0.0
    for task in tasks:
        hours = float(task.estimated_hours or 0)
        total += hours
        if task.done:
            done += hours
    return {"totalTaskHours": total, "doneTaskHours": done}


# Goal previews


def get_goal_preview(db: Session, preview_id: str) -> GoalPreview | None:
    return db.get(GoalPreview, preview_id)


def upsert_goal_preview(
    db: Session,
    *,
    preview_id: str | None,
    user_id: UUID,
    session_id: UUID,
    data: dict[str, Any],
    commit: bool = True,
) -> GoalPreview:
    """Update the preview in place when preview_id names a row of this session; otherwise insert a new one.

    An id that belongs to another session is never reused: the plan is saved under a fresh id instead.
    """
    preview = db.get(GoalPreview, preview_id) if preview_id else None
    if preview is not None and (preview.session_id != session_id or preview.user_id != user_id):
        logging.warning("Preview id %s belongs to another session; saving under a new id", preview_id)
        preview = GoalPreview(user_id=user_id, session_id=session_id, data=data)
        if "id" in data:
            preview.data = {**data, "id": preview.id}
    elif preview is not None:
        preview.data = data
        preview.updated_at = utcnow()
    else:
        preview = GoalPreview(user_id=user_id, session_id=session_id, data=data)
        if preview_id:
            preview.id = preview_id
    db.add(preview)
    if commit:
        db.commit()
        db.refresh(preview)
    else:
        db.flush()
    return preview
