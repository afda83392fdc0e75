"""
Checkpoint LMS - API Tests
"""
import uuid

import pytest
from fastapi import WebSocketException
from httpx import AsyncClient
from sqlalchemy import event

from app.api.deps import get_ws_context
from app.core.change_feed import ChangeFeed, change_feed
from app.core.security import create_access_token
from app.models.curriculum import UnitType
from app.models.dialogue import TicketStatus
from app.models.user import UserRole
from app.services.dialogue import DialogueService
from app.services.ticket_watch import TicketWatcher
from app.services.tickets import TicketService


@pytest.mark.asyncio
async def test_health_check(client: AsyncClient):
    """Test the health check endpoint."""
    response = await client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"


@pytest.mark.asyncio
async def test_requests_without_token_are_rejected(client: AsyncClient):
    """Test that requests without a token are rejected."""
    response = await client.get("/api/v1/dialogue/pending")
    assert response.status_code in (401, 403)


@pytest.mark.asyncio
async def test_invalid_token_is_rejected(client: AsyncClient):
    """Invalid token is rejected."""
    response = await client.get(
        "/api/v1/dialogue/pending",
        headers={"Authorization": "Bearer not-a-token"},
    )
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_token_for_unknown_user_is_rejected(client: AsyncClient):
    """Token for unknown user is rejected."""
    token = create_access_token(uuid.uuid4())
    response = await client.get(
        "/api/v1/dialogue/pending",
        headers={"Authorization": f"Bearer {token}"},
    )
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_roles_gate_endpoints(client: AsyncClient, make_user, auth_headers):
    """Test that each role only reaches its own endpoints."""
    student = await make_user()
    instructor = await make_user(UserRole.INSTRUCTOR)

    response = await client.get("/api/v1/tickets/waiting", headers=auth_headers(student))
    assert response.status_code == 403

    response = await client.post(
        "/api/v1/lessons/sessions",
        json={"unit_id": str(uuid.uuid4())},
        headers=auth_headers(instructor),
    )
    assert response.status_code == 403

    response = await client.post(
        f"/api/v1/quizzes/units/{uuid.uuid4()}/import",
        json={"topics": [{"label": "x", "questions": []}]},
        headers=auth_headers(instructor),
    )
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_lesson_flow_over_http(
    client: AsyncClient, make_user, make_unit, answer_key, auth_headers
):
    """Test a full quiz lesson over HTTP."""
    student = await make_user()
    unit = await make_unit(topics=[1, 1])
    headers = auth_headers(student)

    response = await client.post(
        "/api/v1/lessons/sessions", json={"unit_id": str(unit.id)}, headers=headers
    )
    assert response.status_code == 201
    data = response.json()
    session_id = data["session"]["id"]
    question = data["question"]
    assert question["total_topics"] == 2
    assert "is_correct" not in question["choices"][0]

    submissions = 0
    while question is not None:
        key = await answer_key(uuid.UUID(question["question_id"]))
        response = await client.post(
            f"/api/v1/lessons/sessions/{session_id}/answers",
            json={"position": question["position"], "choice_id": str(key["right"])},
            headers=headers,
        )
        assert response.status_code == 200
        assert response.json()["is_correct"]
        submissions += 1

        response = await client.post(
            f"/api/v1/lessons/sessions/{session_id}/advance", headers=headers
        )
        assert response.status_code == 200
        question = response.json()["question"]

    assert submissions == 2
    assert response.json()["session"]["is_completed"]

    response = await client.get(f"/api/v1/lessons/units/{unit.id}/score", headers=headers)
    assert response.status_code == 200
    assert response.json()["progress_rate"] == 1.0


@pytest.mark.asyncio
async def test_stale_answer_position_is_unprocessable(
    client: AsyncClient, make_user, make_unit, answer_key, auth_headers
):
    """Stale answer position is unprocessable."""
    student = await make_user()
    unit = await make_unit(topics=[1, 1])
    headers = auth_headers(student)

    response = await client.post(
        "/api/v1/lessons/sessions", json={"unit_id": str(unit.id)}, headers=headers
    )
    session_id = response.json()["session"]["id"]
    question = response.json()["question"]
    key = await answer_key(uuid.UUID(question["question_id"]))

    response = await client.post(
        f"/api/v1/lessons/sessions/{session_id}/answers",
        json={"position": 1, "choice_id": str(key["right"])},
        headers=headers,
    )
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_test_score_out_of_range(client: AsyncClient, make_user, make_unit, auth_headers):
    """Test that a score above the unit maximum is rejected."""
    student = await make_user()
    unit = await make_unit(unit_type=UnitType.TEST, max_score=10)

    response = await client.post(
        "/api/v1/lessons/tests",
        json={"unit_id": str(unit.id), "score": 11, "duration_seconds": 60},
        headers=auth_headers(student),
    )
    assert response.status_code == 422

    response = await client.post(
        "/api/v1/lessons/tests",
        json={"unit_id": str(unit.id), "score": 7, "duration_seconds": 60},
        headers=auth_headers(student),
    )
    assert response.status_code == 201
    assert response.json()["raw_score"] == 7


@pytest.mark.asyncio
async def test_dialogue_ticket_round_trip(
    client: AsyncClient, make_user, make_unit, auth_headers
):
    """Test the whole dialogue ticket lifecycle over HTTP."""
    student = await make_user(name="Sam")
    instructor = await make_user(UserRole.INSTRUCTOR)
    other_instructor = await make_user(UserRole.INSTRUCTOR)
    unit = await make_unit(name="Fractions", checkpoint=True)
    student_headers = auth_headers(student)
    instructor_headers = auth_headers(instructor)

    for user, room in ((instructor, "room-a"), (other_instructor, "room-b")):
        response = await client.put(
            "/api/v1/tickets/instructors/me",
            json={"assigned_room_name": room},
            headers=auth_headers(user),
        )
        assert response.status_code == 200
        assert response.json()["status"] == "idle"

    response = await client.post(
        "/api/v1/dialogue/unit-completions",
        json={"unit_id": str(unit.id)},
        headers=student_headers,
    )
    assert response.status_code == 200
    assert response.json() == {
        "action": "prompt_dialogue",
        "pending_unit_ids": [str(unit.id)],
        "pending_unit_names": ["Fractions"],
    }

    response = await client.post(
        "/api/v1/tickets", json={"unit_ids": [str(unit.id)]}, headers=student_headers
    )
    assert response.status_code == 201
    ticket_id = response.json()["ticket_id"]

    response = await client.post(
        "/api/v1/tickets", json={"unit_ids": [str(unit.id)]}, headers=student_headers
    )
    assert response.status_code == 409

    response = await client.get("/api/v1/tickets/waiting", headers=instructor_headers)
    assert [t["id"] for t in response.json()] == [ticket_id]
    assert response.json()[0]["unit_names"] == ["Fractions"]

    response = await client.post(f"/api/v1/tickets/{ticket_id}/claim", headers=instructor_headers)
    assert response.status_code == 200
    assert response.json()["room_name"] == "room-a"

    response = await client.post(
        f"/api/v1/tickets/{ticket_id}/claim", headers=auth_headers(other_instructor)
    )
    assert response.status_code == 409

    response = await client.get("/api/v1/tickets/mine", headers=student_headers)
    assert response.json()["status"] == "assigned"
    assert response.json()["room_name"] == "room-a"

    response = await client.post(
        f"/api/v1/tickets/{ticket_id}/complete",
        json={"evaluation_note": "Good explanation"},
        headers=auth_headers(other_instructor),
    )
    assert response.status_code == 409

    response = await client.post(
        f"/api/v1/tickets/{ticket_id}/complete",
        json={"evaluation_note": "Good explanation"},
        headers=instructor_headers,
    )
    assert response.status_code == 200
    assert response.json()["status"] == "completed"

    response = await client.get("/api/v1/dialogue/pending", headers=student_headers)
    assert response.json() == []

    response = await client.get("/api/v1/tickets/mine", headers=student_headers)
    assert response.json() is None


@pytest.mark.asyncio
async def test_committed_changes_reach_the_change_feed(
    client: AsyncClient, make_user, make_unit, auth_headers
):
    """Committed changes reach the change feed."""
    student = await make_user()
    unit = await make_unit(checkpoint=True)
    await client.post(
        "/api/v1/dialogue/unit-completions",
        json={"unit_id": str(unit.id)},
        headers=auth_headers(student),
    )

    received = []

    async def on_ticket(event):
        received.append(event)

    subscription = change_feed.subscribe("support_tickets", {"student_id": str(student.id)}, on_ticket)
    try:
        response = await client.post(
            "/api/v1/tickets", json={"unit_ids": [str(unit.id)]}, headers=auth_headers(student)
        )
        assert response.status_code == 201
        ticket_id = response.json()["ticket_id"]

        # A rejected request publishes nothing
        response = await client.post(
            "/api/v1/tickets", json={"unit_ids": [str(unit.id)]}, headers=auth_headers(student)
        )
        assert response.status_code == 409
    finally:
        subscription.unsubscribe()

    assert [e.row_id for e in received] == [ticket_id]


@pytest.mark.asyncio
async def test_quiz_import_over_http(
    client: AsyncClient, make_user, make_unit, auth_headers, quiz_payload
):
    """Test quiz import over HTTP."""
    admin = await make_user(UserRole.ADMIN)
    unit = await make_unit()

    response = await client.post(
        f"/api/v1/quizzes/units/{unit.id}/import",
        json=quiz_payload,
        headers=auth_headers(admin),
    )
    assert response.status_code == 201
    assert response.json()["questions_created"] == 3

    response = await client.get(
        f"/api/v1/quizzes/units/{unit.id}/topics", headers=auth_headers(admin)
    )
    assert response.status_code == 200
    assert len(response.json()) == 2


@pytest.mark.asyncio
async def test_heartbeat_and_dashboard(client: AsyncClient, make_user, make_unit, auth_headers):
    """Test that a heartbeat shows up on the staff dashboard."""
    student = await make_user(name="Ada")
    instructor = await make_user(UserRole.INSTRUCTOR)
    unit = await make_unit(name="Fractions")

    response = await client.post(
        "/api/v1/presence/heartbeat",
        json={"unit_id": str(unit.id), "activity": "video"},
        headers=auth_headers(student),
    )
    assert response.status_code == 204

    response = await client.get("/api/v1/presence/students", headers=auth_headers(instructor))
    assert response.status_code == 200
    row = next(r for r in response.json() if r["student_id"] == str(student.id))
    assert row["is_online"]
    assert row["current_activity"] == "video"
    assert row["current_unit_name"] == "Fractions"


@pytest.fixture
def open_connections(engine):
    """Number of pooled connections currently checked out of the test engine."""
    counter = {"open": 0}

    def on_checkout(dbapi_connection, connection_record, connection_proxy):
        counter["open"] += 1

    def on_checkin(dbapi_connection, connection_record):
        counter["open"] -= 1

    event.listen(engine.sync_engine, "checkout", on_checkout)
    event.listen(engine.sync_engine, "checkin", on_checkin)
    yield lambda: counter["open"]
    event.remove(engine.sync_engine, "checkout", on_checkout)
    event.remove(engine.sync_engine, "checkin", on_checkin)


@pytest.mark.asyncio
async def test_idle_ticket_watch_holds_no_connection(
    open_connections, db_session, session_factory, make_user, make_unit, ctx_for
):
    """Test that a watch socket waiting for changes keeps no connection checked out."""
    student = await make_user()
    unit = await make_unit(checkpoint=True)
    await DialogueService(db_session).handle_unit_completion(ctx_for(student), unit.id)
    ticket = await TicketService(db_session).create_ticket(ctx_for(student), [unit.id])
    await db_session.commit()
    change_feed.discard_staged(db_session)
    assert open_connections() == 0

    # Same steps as the watch route: resolve the caller, then stream snapshots
    ctx = await get_ws_context(session_factory, token=create_access_token(student.id))
    assert ctx.user_id == student.id
    assert open_connections() == 0

    feed = ChangeFeed()
    updates = TicketWatcher(ctx, ticket.id, session_factory, feed=feed).updates()
    first = await anext(updates)
    assert first.status == TicketStatus.WAITING.value
    assert open_connections() == 0

    await updates.aclose()
    assert feed.subscriber_count("support_tickets") == 0


@pytest.mark.asyncio
async def test_ticket_watch_rejects_bad_tokens(open_connections, session_factory):
    """Test that the watch socket refuses missing or unknown tokens."""
    for token in (None, "not-a-token", create_access_token(uuid.uuid4())):
        with pytest.raises(WebSocketException):
            await get_ws_context(session_factory, token=token)
    assert open_connections() == 0
