# ABOUTME: Tests for the weekly-hour budget and per-milestone task date checks.
# ABOUTME: Pure helpers are tested directly; ensure_* wrappers run against the in-memory DB.

from datetime import date

import pytest

from core.errors import ConflictError
from planner.validation import (
    conflicting_task_ids,
    ensure_goal_fits_budget,
    ensure_hours_cover_active_goals,
    ensure_no_task_conflict,
    exceeds_budget,
)

DAY = date(2025, 11, 17)


def test_exceeds_budget_allows_exact_fit():
    """Required hours equal to the budget are allowed; the limit is strict greater-than."""
    assert exceeds_budget(20, [10], 10) == (False, 20)
    assert exceeds_budget(20, [10], 10.5) == (True, 20.5)


def test_exceeds_budget_with_no_committed_goals():
    assert exceeds_budget(20, [], 25) == (True, 25)


def test_new_goal_over_budget_for_fresh_user(db, make_user):
    """No goals and 20h available: a 25h goal is rejected with requiredHoursPerWeek=25."""
    user = make_user(available_hours_per_week=20)

    with pytest.raises(ConflictError) as exc_info:
        ensure_goal_fits_budget(db, user, 25)

    err = exc_info.value
    assert err.status_code == 409
    assert err.details["requiredHoursPerWeek"] == 25
    assert err.details["availableHoursPerWeek"] == 20
    assert err.details["conflictingGoals"] == []
    assert "(25h/week with new goal)" in err.message


def test_second_goal_over_budget_lists_existing_goal(db, make_user, make_goal):
    """One active 10h goal, 20h available: a new 15h goal needs 25h and names the first goal."""
    user = make_user(available_hours_per_week=20)
    first = make_goal(user, title="Learn piano", min_hours_per_week=10)

    with pytest.raises(ConflictError) as exc_info:
        ensure_goal_fits_budget(db, user, 15)

    details = exc_info.value.details
    assert details["requiredHoursPerWeek"] == 25
    assert details["conflictingGoals"] == [
        {"goalId": str(first.id), "title": "Learn piano", "weeklyHours": 10}
    ]


def test_inactive_goals_do_not_count(db, make_user, make_goal):
    user = make_user(available_hours_per_week=20)
    make_goal(user, min_hours_per_week=15, status="paused")
    make_goal(user, min_hours_per_week=15, status="completed")

    ensure_goal_fits_budget(db, user, 20)


def test_other_users_goals_do_not_count(db, make_user, make_goal):
    user = make_user(email="ada@example.com", available_hours_per_week=20)
    other = make_user(email="bob@example.com")
    make_goal(other, min_hours_per_week=20)

    ensure_goal_fits_budget(db, user, 20)


def test_update_excludes_goal_itself_from_sum(db, make_user, make_goal):
    """Raising a goal from 10h to 20h with 20h available fits; its old hours are not double counted."""
    user = make_user(available_hours_per_week=20)
    goal = make_goal(user, min_hours_per_week=10)

    ensure_goal_fits_budget(db, user, 20, goal=goal)


def test_update_over_budget_lists_goal_last_with_candidate_hours(db, make_user, make_goal):
    user = make_user(available_hours_per_week=20)
    other = make_goal(user, title="Learn piano", min_hours_per_week=10)
    goal = make_goal(user, title="Run a 10k", min_hours_per_week=5)

    with pytest.raises(ConflictError) as exc_info:
        ensure_goal_fits_budget(db, user, 12, goal=goal)

    err = exc_info.value
    assert err.details["requiredHoursPerWeek"] == 22
    assert err.details["conflictingGoals"] == [
        {"goalId": str(other.id), "title": "Learn piano", "weeklyHours": 10},
        {"goalId": str(goal.id), "title": "Run a 10k", "weeklyHours": 12},
    ]
    assert "(22h/week required)" in err.message


def test_lowering_available_hours_below_active_goals_rejected(db, make_user, make_goal):
    user = make_user(available_hours_per_week=20)
    make_goal(user, min_hours_per_week=10)
    make_goal(user, min_hours_per_week=5)

    ensure_hours_cover_active_goals(db, user, 15)
    with pytest.raises(ConflictError) as exc_info:
        ensure_hours_cover_active_goals(db, user, 14)

    details = exc_info.value.details
    assert details["availableHoursPerWeek"] == 14
    assert details["requiredHoursPerWeek"] == 15
    assert len(details["conflictingGoals"]) == 2


def test_conflicting_task_ids_filters_day_user_and_excluded(make_user, make_goal, make_milestone, make_task):
    user = make_user()
    milestone = make_milestone(make_goal(user))
    same_day = make_task(milestone, user, DAY)
    other_day = make_task(milestone, user, date(2025, 11, 18))

    assert conflicting_task_ids([same_day, other_day], user.id, DAY) == [str(same_day.id)]
    assert conflicting_task_ids([same_day, other_day], user.id, DAY, exclude_task_id=same_day.id) == []


def test_second_task_same_milestone_same_day_rejected(db, make_user, make_goal, make_milestone, make_task):
    """A milestone with a task on 2025-11-17 rejects another task that day, naming the first."""
    user = make_user()
    milestone = make_milestone(make_goal(user))
    first = make_task(milestone, user, DAY)

    with pytest.raises(ConflictError) as exc_info:
        ensure_no_task_conflict(db, milestone.id, user.id, DAY)

    assert exc_info.value.details == {"conflictingTaskIds": [str(first.id)]}
    assert exc_info.value.message == "Task date conflicts with an existing scheduled task."


def test_same_day_in_other_milestone_is_allowed(db, make_user, make_goal, make_milestone, make_task):
    user = make_user()
    goal = make_goal(user)
    scales = make_milestone(goal, title="Scales")
    chords = make_milestone(goal, title="Chords")
    make_task(scales, user, DAY)

    ensure_no_task_conflict(db, chords.id, user.id, DAY)


def test_moving_task_excludes_itself(db, make_user, make_goal, make_milestone, make_task):
    user = make_user()
    milestone = make_milestone(make_goal(user))
    task = make_task(milestone, user, DAY)

    ensure_no_task_conflict(db, milestone.id, user.id, DAY, exclude_task_id=task.id)
