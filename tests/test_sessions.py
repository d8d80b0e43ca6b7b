# ABOUTME: Tests for the session manager: latest-session lookup, transcript order, and the message turn.
# ABOUTME: Agents are scripted test doubles; a stale session version must surface as a 409 conflict.

from datetime import timedelta

import pytest
from sqlalchemy import update
from sqlmodel import select

from core.database import ChatMessage, GoalPreview, SessionState
from core.errors import ConflictError, UnauthorizedError, UpstreamUnavailableError, ValidationError
from planner.sessions import (
    append_chat_message,
    create_session,
    find_latest_active_session,
    get_or_create_latest_session,
    handle_message,
    list_chat_messages,
)


def _turn(db, session, agent, message="Plan piano practice", user_id=None, context=None):
    return handle_message(
        db,
        user_id=user_id or session.user_id,
        session_id=str(session.id),
        message=message,
        context_override=context,
        agent=agent,
    )


def test_get_or_create_latest_session_creates_with_context(db, make_user, make_goal):
    user = make_user(available_hours_per_week=20)
    make_goal(user, min_hours_per_week=8)

    session, created = get_or_create_latest_session(db, user)

    assert created is True
    assert session.state == "plan_generated"
    assert session.iteration == 0
    assert session.session_active is True
    assert session.goal_preview_id is None
    assert session.context == {"availableHoursLeft": 12, "upcomingTasks": []}


def test_get_or_create_latest_session_reuses_active_session(db, make_user):
    user = make_user()
    first, _ = get_or_create_latest_session(db, user)

    again, created = get_or_create_latest_session(db, user)

    assert created is False
    assert again.id == first.id


def test_latest_session_skips_inactive_and_picks_most_recent(db, make_user):
    user = make_user()
    older = create_session(db, user.id, {})
    newer = create_session(db, user.id, {})
    closed = create_session(db, user.id, {})
    older.updated_at = newer.updated_at - timedelta(hours=1)
    closed.session_active = False
    closed.updated_at = newer.updated_at + timedelta(hours=1)
    db.add(older)
    db.add(closed)
    db.commit()

    assert find_latest_active_session(db, user.id).id == newer.id


def test_transcript_is_returned_in_append_order(db, make_user):
    user = make_user()
    session = create_session(db, user.id, {})
    for i, sender in enumerate(["user", "agent", "user", "agent"]):
        append_chat_message(db, session, sender, f"m{i}")

    messages = list_chat_messages(db, session.id)

    assert [m.message for m in messages] == ["m0", "m1", "m2", "m3"]
    assert [m.position for m in messages] == [0, 1, 2, 3]


def test_save_preview_turn_increments_iteration_and_links_preview(db, make_user, make_agent):
    """plan_generated at iteration 0 + save_preview without iteration -> iteration 1, new preview linked."""
    user = make_user()
    session = create_session(db, user.id, {"availableHoursLeft": 20, "upcomingTasks": []})
    agent = make_agent(
        {
            "reply": "Here is a first plan.",
            "action": {"type": "save_preview", "payload": {"goalPreview": {"title": "Learn piano"}}},
            "state": {"state": "plan_generated"},
        }
    )

    result = _turn(db, session, agent)

    assert result.response.reply == "Here is a first plan."
    assert result.session.iteration == 1
    assert result.session.state == "plan_generated"
    preview = db.get(GoalPreview, result.session.goal_preview_id)
    assert preview.data == {"title": "Learn piano"}
    assert [(m.sender, m.message) for m in list_chat_messages(db, session.id)] == [
        ("user", "Plan piano practice"),
        ("agent", "Here is a first plan."),
    ]


def test_agent_receives_session_state_and_stored_context(db, make_user, make_agent):
    user = make_user()
    session = create_session(db, user.id, {"availableHoursLeft": 7, "upcomingTasks": []})
    agent = make_agent({"reply": "ok"})

    _turn(db, session, agent, message="hello")

    request = agent.requests[0]
    assert request.session_id == str(session.id)
    assert request.user_id == str(user.id)
    assert request.message == "hello"
    assert request.context == {"availableHoursLeft": 7, "upcomingTasks": []}
    assert request.state.state == "plan_generated"
    assert request.state.iteration == 0


def test_context_override_replaces_stored_context(db, make_user, make_agent):
    user = make_user()
    session = create_session(db, user.id, {"availableHoursLeft": 7})
    agent = make_agent({"reply": "ok"})

    result = _turn(db, session, agent, context={"availableHoursLeft": 1})

    assert agent.requests[0].context == {"availableHoursLeft": 1}
    assert result.session.context == {"availableHoursLeft": 1}


def test_finalize_goal_closes_session_despite_session_active_true(db, make_user, make_agent):
    user = make_user()
    session = create_session(db, user.id, {})
    agent = make_agent(
        {
            "reply": "Great, your goal is saved.",
            "action": {"type": "finalize_goal"},
            "state": {"state": "finalized", "sessionActive": True},
        }
    )

    result = _turn(db, session, agent)

    assert result.session.session_active is False
    assert result.session.state == "finalized"
    assert find_latest_active_session(db, user.id) is None


def test_finalized_session_rejects_new_messages(db, make_user, make_agent):
    user = make_user()
    session = create_session(db, user.id, {})
    _turn(db, session, make_agent({"reply": "bye", "action": {"type": "finalize_goal"}}))
    agent = make_agent({"reply": "never"})

    with pytest.raises(ConflictError) as exc_info:
        _turn(db, session, agent, message="one more thing")

    assert exc_info.value.message == f"Session '{session.id}' is finalized and cannot accept new messages."
    assert agent.requests == []
    assert len(list_chat_messages(db, session.id)) == 2


def test_unknown_session_is_validation_error(db, make_user, make_agent):
    user = make_user()
    with pytest.raises(ValidationError) as exc_info:
        handle_message(
            db,
            user_id=user.id,
            session_id="no-such-session",
            message="hi",
            context_override=None,
            agent=make_agent(),
        )
    assert exc_info.value.message == "Session 'no-such-session' not found."


def test_other_users_session_is_unauthorized(db, make_user, make_agent):
    owner = make_user(email="ada@example.com")
    intruder = make_user(email="eve@example.com")
    session = create_session(db, owner.id, {})

    with pytest.raises(UnauthorizedError):
        _turn(db, session, make_agent({"reply": "no"}), user_id=intruder.id)

    assert list_chat_messages(db, session.id) == []


def test_agent_failure_keeps_user_message_and_leaves_session_unchanged(db, make_user, make_agent):
    user = make_user()
    session = create_session(db, user.id, {})
    session_id = session.id
    agent = make_agent(UpstreamUnavailableError("Agent service unavailable. Please try again later."))

    with pytest.raises(UpstreamUnavailableError):
        _turn(db, session, agent, message="are you there?")

    db.expire_all()
    reloaded = db.get(SessionState, session_id)
    assert reloaded.iteration == 0
    assert reloaded.version == 0
    assert reloaded.state == "plan_generated"
    messages = list_chat_messages(db, session_id)
    assert [(m.sender, m.message) for m in messages] == [("user", "are you there?")]


def test_second_save_preview_with_same_id_updates_preview(db, make_user, make_agent):
    user = make_user()
    session = create_session(db, user.id, {})
    first = _turn(
        db,
        session,
        make_agent({"reply": "v1", "action": {"type": "save_preview", "payload": {"goalPreview": {"title": "v1"}}}}),
    )
    preview_id = first.session.goal_preview_id
    preview = db.get(GoalPreview, preview_id)
    stale = preview.updated_at.replace(tzinfo=None) - timedelta(hours=1)
    preview.updated_at = stale
    db.commit()

    second = _turn(
        db,
        session,
        make_agent(
            {
                "reply": "v2",
                "action": {"type": "save_preview", "payload": {"goalPreview": {"id": preview_id, "title": "v2"}}},
                "state": {"state": "plan_iteration"},
            }
        ),
        message="make it shorter",
    )

    assert second.session.goal_preview_id == preview_id
    assert second.session.iteration == 2
    assert second.session.state == "plan_iteration"
    previews = db.exec(select(GoalPreview)).all()
    assert len(previews) == 1
    assert previews[0].data["title"] == "v2"
    assert previews[0].updated_at.replace(tzinfo=None) > stale


def test_save_preview_without_id_creates_new_preview_each_turn(db, make_user, make_agent):
    user = make_user()
    session = create_session(db, user.id, {})
    save = {"type": "save_preview", "payload": {"goalPreview": {"title": "draft"}}}

    first = _turn(db, session, make_agent({"reply": "one", "action": save}))
    second = _turn(db, session, make_agent({"reply": "two", "action": save}), message="another one")

    assert first.session.goal_preview_id != second.session.goal_preview_id
    previews = db.exec(select(GoalPreview)).all()
    assert len(previews) == 2
    assert {p.id for p in previews} == {first.session.goal_preview_id, second.session.goal_preview_id}


def test_save_preview_with_another_sessions_id_leaves_that_preview_untouched(db, make_user, make_agent):
    owner = make_user(email="owner@example.com")
    owner_session = create_session(db, owner.id, {})
    owned = _turn(
        db,
        owner_session,
        make_agent({"reply": "ok", "action": {"type": "save_preview", "payload": {"goalPreview": {"title": "mine"}}}}),
    )
    owned_id = owned.session.goal_preview_id

    other = make_user(email="other@example.com")
    other_session = create_session(db, other.id, {})
    result = _turn(
        db,
        other_session,
        make_agent(
            {
                "reply": "ok",
                "action": {"type": "save_preview", "payload": {"goalPreview": {"id": owned_id, "title": "replaced"}}},
            }
        ),
    )

    assert db.get(GoalPreview, owned_id).data == {"title": "mine"}
    new_id = result.session.goal_preview_id
    assert new_id != owned_id
    created = db.get(GoalPreview, new_id)
    assert created.session_id == other_session.id
    assert created.user_id == other.id
    assert created.data == {"id": new_id, "title": "replaced"}


def test_stale_session_version_is_conflict(db, make_user, make_agent):
    """A write that lands between reading the session and committing the turn wins; the turn gets 409."""
    user = make_user()
    session = create_session(db, user.id, {})
    session_id = session.id

    def concurrent_write(_request):
        db.exec(
            update(SessionState)
            .where(SessionState.id == session_id)
            .values(version=SessionState.version + 1)
        )
        db.commit()
        return {"reply": "plan", "action": {"type": "save_preview", "payload": {"title": "Piano"}}}

    with pytest.raises(ConflictError):
        _turn(db, session, make_agent(concurrent_write))

    db.expire_all()
    assert db.exec(select(GoalPreview)).all() == []
    senders = [m.sender for m in db.exec(select(ChatMessage).where(ChatMessage.session_id == session_id))]
    assert senders == ["user"]
    assert db.get(SessionState, session_id).iteration == 0
