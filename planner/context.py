# ABOUTME: Builds the scheduling context handed to the planning agent for a user.
# ABOUTME: {availableHoursLeft, upcomingTasks}: unreserved weekly hours and pending tasks of the next 7 days.

from datetime import date, datetime, timedelta, timezone

from sqlmodel import Session

from core.config import UPCOMING_DAYS
from core.database import Task, User
from planner.repositories import list_tasks_by_date_range, sum_active_goal_hours


def _upcoming_task(task: Task) -> dict:
    return {
        "id": str(task.id),
        "title": task.title,
        "goalId": str(task.goal_id),
        "milestoneId": str(task.milestone_id),
        "date": task.date.isoformat(),
        "estimatedHours": task.estimated_hours,
        "done": task.done,
    }


def available_hours_left(available_hours_per_week: float, active_goal_hours: float) -> float:
    return max(0, available_hours_per_week - active_goal_hours)


def build_user_context(db: Session, user: User, today: date | None = None) -> dict:
    """Read-only; store errors propagate. today defaults to the current UTC day."""
    start = today or datetime.now(timezone.utc).date()
    end = start + timedelta(days=UPCOMING_DAYS)
    tasks = list_tasks_by_date_range(db, user.id, start, end)
    upcoming = sorted(
        (_upcoming_task(t) for t in tasks if not t.done), key=lambda t: t["date"]
    )
    active_hours = sum_active_goal_hours(db, user.id)
    return {
        "availableHoursLeft": available_hours_left(user.available_hours_per_week, active_hours),
        "upcomingTasks": upcoming,
    }
