# ABOUTME: Hour-budget and task date-conflict checks run before goal, user and task writes commit.
# ABOUTME: Pure helpers compute the verdict; the ensure_* wrappers read the store and raise ConflictError (409).

from datetime import date
from typing import Iterable
from uuid import UUID

from sqlmodel import Session

from core.database import Goal, Task, User
from core.errors import ConflictError
from planner.repositories import list_active_goals, list_tasks_by_milestone


def _hours(value: float) -> str:
    return f"{value:g}"


def goal_summary(goal: Goal, weekly_hours: float | None = None) -> dict:
    return {
        "goalId": str(goal.id),
        "title": goal.title,
        "weeklyHours": goal.min_hours_per_week if weekly_hours is None else weekly_hours,
    }


def exceeds_budget(available_hours: float, committed_hours: Iterable[float], candidate_hours: float) -> tuple[bool, float]:
    """Return (over_budget, required_total) for adding candidate_hours to the committed goal hours."""
    total = sum(committed_hours) + candidate_hours
    return total > available_hours, total


def conflicting_task_ids(
    tasks: Iterable[Task], user_id: UUID, day: date, exclude_task_id: UUID | None = None
) -> list[str]:
    """Ids of tasks (already scoped to one milestone) owned by user_id that fall on day."""
    return [
        str(t.id)
        for t in tasks
        if t.id != exclude_task_id and t.user_id == user_id and t.date == day
    ]


def ensure_goal_fits_budget(
    db: Session, user: User, hours: float, goal: Goal | None = None
) -> None:
    """Reject an active goal (new, or goal being updated) whose hours overflow the user's weekly budget.

    Other active goals are summed with the candidate hours. When updating, the goal itself is left
    out of the sum and listed last in conflictingGoals with its candidate hours.
    """
    others = list_active_goals(db, user.id, exclude_goal_id=goal.id if goal else None)
    over, total = exceeds_budget(
        user.available_hours_per_week, (g.min_hours_per_week for g in others), hours
    )
    if not over:
        return
    conflicts = [goal_summary(g) for g in others]
    if goal is None:
        message = (
            f"Available hours ({_hours(user.available_hours_per_week)}h/week) are insufficient for "
            f"current active goals ({_hours(total)}h/week with new goal)."
        )
    else:
        conflicts.append(goal_summary(goal, hours))
        message = (
            f"Available hours ({_hours(user.available_hours_per_week)}h/week) are insufficient for "
            f"current active goals ({_hours(total)}h/week required)."
        )
    raise ConflictError(
        message,
        details={
            "availableHoursPerWeek": user.available_hours_per_week,
            "requiredHoursPerWeek": total,
            "conflictingGoals": conflicts,
        },
    )


def ensure_hours_cover_active_goals(db: Session, user: User, available_hours: float) -> None:
    """Reject lowering the user's weekly hours below what their active goals already reserve."""
    active = list_active_goals(db, user.id)
    over, required = exceeds_budget(available_hours, (g.min_hours_per_week for g in active), 0)
    if not over:
        return
    raise ConflictError(
        f"Available hours ({_hours(available_hours)}h/week) are insufficient for current "
        f"active goals ({_hours(required)}h/week required).",
        details={
            "availableHoursPerWeek": available_hours,
            "requiredHoursPerWeek": required,
            "conflictingGoals": [goal_summary(g) for g in active],
        },
    )


def ensure_no_task_conflict(
    db: Session,
    milestone_id: UUID,
    user_id: UUID,
    day: date,
    exclude_task_id: UUID | None = None,
) -> None:
    """One task per day per milestone for a user. Tasks in other milestones are not considered."""
    ids = conflicting_task_ids(
        list_tasks_by_milestone(db, milestone_id), user_id, day, exclude_task_id
    )
    if ids:
        raise ConflictError(
            "Task date conflicts with an existing scheduled task.",
            details={"conflictingTaskIds": ids},
        )
