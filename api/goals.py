# ABOUTME: Goal, milestone and task routes under /v1, scoped to the authenticated user.
# ABOUTME: Goal writes run the weekly-hour budget check; task create/date changes run the per-milestone date check.

import re
from datetime import date, timedelta

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from sqlmodel import Session

from core.auth import get_current_user
from core.database import GOAL_STATUSES, Goal, Milestone, Task, User, get_db
from core.errors import ValidationError, ensure
from core.schemas import (
    GoalCreateRequest,
    GoalUpdateRequest,
    MilestoneCreateRequest,
    MilestoneUpdateRequest,
    TaskCreateRequest,
    TaskUpdateRequest,
)
from planner.repositories import (
    create_goal,
    create_milestone,
    create_task,
    get_owned_goal,
    get_owned_milestone,
    get_owned_task,
    list_goals,
    list_milestones_by_goal,
    list_tasks_by_date_range,
    list_tasks_by_goal,
    list_tasks_by_milestone,
    set_task_done,
    summarize_task_hours,
    update_goal,
    update_milestone,
    update_task,
)
from planner.validation import ensure_goal_fits_budget, ensure_no_task_conflict

router = APIRouter(prefix="/v1", tags=["planning"])

_DAY_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def _goal_to_json(goal: Goal) -> dict:
    return {
        "id": str(goal.id),
        "userId": str(goal.user_id),
        "title": goal.title,
        "description": goal.description,
        "status": goal.status,
        "color": goal.color,
        "minHoursPerWeek": goal.min_hours_per_week,
        "priority": goal.priority,
        "createdAt": goal.created_at.isoformat(),
        "updatedAt": goal.updated_at.isoformat(),
    }


def _milestone_to_json(milestone: Milestone) -> dict:
    return {
        "id": str(milestone.id),
        "goalId": str(milestone.goal_id),
        "parentMilestoneId": str(milestone.parent_milestone_id) if milestone.parent_milestone_id else None,
        "title": milestone.title,
        "description": milestone.description,
        "status": milestone.status,
        "createdAt": milestone.created_at.isoformat(),
        "updatedAt": milestone.updated_at.isoformat(),
    }


def _task_status(task: Task) -> str:
    return "done" if task.done else "not_yet_done"


def _task_to_json(task: Task) -> dict:
    return {
        "id": str(task.id),
        "goalId": str(task.goal_id),
        "milestoneId": str(task.milestone_id),
        "title": task.title,
        "description": task.description,
        "date": task.date.isoformat(),
        "estimatedHours": task.estimated_hours,
        "done": task.done,
        "status": _task_status(task),
        "createdAt": task.created_at.isoformat(),
        "updatedAt": task.updated_at.isoformat(),
    }


# Goals


@router.post("/goals", status_code=201)
def post_goal(
    req: GoalCreateRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Create an active goal if its hours fit in what the user's other active goals leave free."""
    ensure_goal_fits_budget(db, current_user, req.min_hours_per_week)
    goal = create_goal(
        db,
        current_user,
        title=req.title,
        description=req.description,
        min_hours_per_week=req.min_hours_per_week,
        priority=req.priority,
        color=req.color,
    )
    return {"data": _goal_to_json(goal)}


@router.get("/goals")
def get_goals(
    status: str = Query("all"),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """List the user's goals with task-hour totals. status is "all" or one goal status."""
    ensure(status == "all" or status in GOAL_STATUSES, ValidationError("Invalid status filter."))
    payload = []
    for goal in list_goals(db, current_user.id, status):
        metrics = summarize_task_hours(list_tasks_by_goal(db, goal.id))
        payload.append({**_goal_to_json(goal), **metrics})
    return {"data": payload}


@router.get("/goals/{goal_id}")
def get_goal(goal_id: str, current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return {"data": _goal_to_json(get_owned_goal(db, goal_id, current_user.id))}


@router.patch("/goals/{goal_id}")
def patch_goal(
    goal_id: str,
    req: GoalUpdateRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Update a goal. If it is (or becomes) active, its hours must fit the weekly budget."""
    goal = get_owned_goal(db, goal_id, current_user.id)
    changes = req.changes()
    ensure(changes, ValidationError("No updatable fields provided."))

    next_status = changes.get("status", goal.status)
    next_hours = changes.get("min_hours_per_week", goal.min_hours_per_week)
    guard_user = None
    if next_status == "active":
        ensure_goal_fits_budget(db, current_user, next_hours, goal=goal)
        guard_user = current_user
    goal = update_goal(db, goal, changes, guard_user=guard_user)
    return {"data": _goal_to_json(goal)}


@router.get("/goals/{goal_id}/metrics")
def get_goal_metrics(goal_id: str, current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    goal = get_owned_goal(db, goal_id, current_user.id)
    return {"data": {"goalId": str(goal.id), **summarize_task_hours(list_tasks_by_goal(db, goal.id))}}


# Milestones


@router.get("/goals/{goal_id}/milestones")
def get_goal_milestones(goal_id: str, current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    goal = get_owned_goal(db, goal_id, current_user.id)
    return {"data": [_milestone_to_json(m) for m in list_milestones_by_goal(db, goal.id)]}


@router.post("/goals/{goal_id}/milestones", status_code=201)
def post_milestone(
    goal_id: str,
    req: MilestoneCreateRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Create a milestone; an optional parent must be a milestone of the same goal."""
    goal = get_owned_goal(db, goal_id, current_user.id)
    parent_id = None
    if req.parent_milestone_id is not None:
        ensure(req.parent_milestone_id.strip(), ValidationError("parentMilestoneId must be a string."))
        parent = get_owned_milestone(db, req.parent_milestone_id, current_user.id)
        ensure(parent.goal_id == goal.id, ValidationError("parentMilestoneId must belong to the same goal."))
        parent_id = parent.id
    milestone = create_milestone(
        db, goal, title=req.title, description=req.description, parent_milestone_id=parent_id
    )
    return {"data": _milestone_to_json(milestone)}


@router.get("/milestones/{milestone_id}")
def get_milestone(milestone_id: str, current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return {"data": _milestone_to_json(get_owned_milestone(db, milestone_id, current_user.id))}


@router.patch("/milestones/{milestone_id}")
def patch_milestone(
    milestone_id: str,
    req: MilestoneUpdateRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    milestone = get_owned_milestone(db, milestone_id, current_user.id)
    changes = req.changes()
    ensure(changes, ValidationError("No updatable fields provided."))
    return {"data": _milestone_to_json(update_milestone(db, milestone, changes))}


@router.get("/milestones/{milestone_id}/metrics")
def get_milestone_metrics(milestone_id: str, current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    milestone = get_owned_milestone(db, milestone_id, current_user.id)
    metrics = summarize_task_hours(list_tasks_by_milestone(db, milestone.id))
    return {"data": {"milestoneId": str(milestone.id), **metrics}}


# Tasks


@router.post("/milestones/{milestone_id}/tasks", status_code=201)
def post_task(
    milestone_id: str,
    req: TaskCreateRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Schedule a task. Another task of this milestone on the same day is a 409."""
    milestone = get_owned_milestone(db, milestone_id, current_user.id)
    ensure_no_task_conflict(db, milestone.id, current_user.id, req.date)
    task = create_task(
        db,
        milestone,
        current_user.id,
        title=req.title,
        description=req.description,
        day=req.date,
        estimated_hours=req.estimated_hours,
    )
    return {"data": _task_to_json(task)}


@router.get("/tasks:query")
def query_tasks(
    day: str = Query(""),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Pending tasks of the user on one day (YYYY-MM-DD)."""
    ensure(day, ValidationError("day query parameter is required."))
    ensure(_DAY_PATTERN.match(day), ValidationError("Invalid day format. Use YYYY-MM-DD."))
    try:
        start = date.fromisoformat(day)
    except ValueError:
        raise ValidationError("Invalid day format. Use YYYY-MM-DD.")
    tasks = list_tasks_by_date_range(db, current_user.id, start, start + timedelta(days=1))
    return {"data": [_task_to_json(t) for t in tasks if not t.done]}


@router.get("/tasks/{task_id}")
def get_task(task_id: str, current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    task, _ = get_owned_task(db, task_id, current_user.id)
    return {"data": _task_to_json(task)}


@router.patch("/tasks/{task_id}")
def patch_task(
    task_id: str,
    req: TaskUpdateRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Update a task. Moving it to another day re-runs the date-conflict check, excluding itself."""
    task, milestone = get_owned_task(db, task_id, current_user.id)
    changes = req.changes()
    ensure(changes, ValidationError("No updatable fields provided."))
    guard = None
    if "date" in changes:
        ensure_no_task_conflict(db, milestone.id, current_user.id, changes["date"], exclude_task_id=task.id)
        guard = milestone
    return {"data": _task_to_json(update_task(db, task, changes, guard_milestone=guard))}


def _done_response(task: Task) -> JSONResponse:
    return JSONResponse(
        content={
            "data": {
                "id": str(task.id),
                "status": _task_status(task),
                "updatedAt": task.updated_at.isoformat(),
            }
        }
    )


@router.post("/tasks/{task_id}/done")
def post_task_done(task_id: str, current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    task, _ = get_owned_task(db, task_id, current_user.id)
    return _done_response(set_task_done(db, task, True))


@router.post("/tasks/{task_id}/undone")
def post_task_undone(task_id: str, current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    task, _ = get_owned_task(db, task_id, current_user.id)
    return _done_response(set_task_done(db, task, False))
