"""
Tests for the tryout session endpoints.
"""
import asyncio
import json
from unittest.mock import patch

from tryout.api.v1._dependencies import get_countdown_sleep
from tryout.core.engine.controller import SessionController
from tryout.core.exceptions import PersistenceFailure
from tryout.main import app
from tryout.models import TimerCheckpoint
from tryout.services.session_store import SessionStore

from conftest import TEST_USER_ID

SESSIONS = "/v1/sessions"


def start(client, headers, package_id):
    response = client.post(f"{SESSIONS}/start", json={"package_id": package_id}, headers=headers)
    assert response.status_code == 200
    return response.json()


class TestStartSession:
    """Tests for POST /v1/sessions/start."""

    def test_start(self, client, auth_headers, package):
        data = start(client, auth_headers, package.id)

        assert data["status"] == "in_progress"
        assert data["total_questions"] == 5
        assert data["resumed"] is False
        assert data["timer"]["remaining_seconds"] == 1800.0
        assert data["timer"]["display"] == "30:00"
        assert data["timer"]["urgency"] == "normal"
        assert [s["name"] for s in data["sections"]] == ["Verbal", "Quantitative"]

    def test_start_twice_resumes(self, client, auth_headers, package, clock):
        first = start(client, auth_headers, package.id)
        clock.advance(90)
        second = start(client, auth_headers, package.id)

        assert second["id"] == first["id"]
        assert second["resumed"] is True
        assert second["timer"]["remaining_seconds"] == 1710.0

    def test_requires_authentication(self, client, package):
        response = client.post(f"{SESSIONS}/start", json={"package_id": package.id})
        assert response.status_code in (401, 403)

    def test_invalid_token(self, client, package):
        response = client.post(
            f"{SESSIONS}/start",
            json={"package_id": package.id},
            headers={"Authorization": "Bearer not-a-token"},
        )
        assert response.status_code == 401

    def test_unknown_package(self, client, auth_headers):
        response = client.post(
            f"{SESSIONS}/start", json={"package_id": 999}, headers=auth_headers
        )
        assert response.status_code == 404
        assert response.json()["detail"] == "Tryout package not found."

    def test_validation_error(self, client, auth_headers):
        response = client.post(f"{SESSIONS}/start", json={"package_id": 0}, headers=auth_headers)
        assert response.status_code == 422


class TestActiveSession:
    """Tests for GET /v1/sessions/active."""

    def test_none_when_no_session(self, client, auth_headers, package):
        response = client.get(
            f"{SESSIONS}/active", params={"package_id": package.id}, headers=auth_headers
        )
        assert response.status_code == 200
        assert response.json() is None

    def test_returns_live_session(self, client, auth_headers, package):
        started = start(client, auth_headers, package.id)
        response = client.get(
            f"{SESSIONS}/active", params={"package_id": package.id}, headers=auth_headers
        )
        assert response.json()["id"] == started["id"]


class TestAnswersAndNavigation:
    """Tests for answer, flag and navigation endpoints."""

    def test_select_answer(self, client, auth_headers, package, question_ids):
        session = start(client, auth_headers, package.id)
        response = client.put(
            f"{SESSIONS}/{session['id']}/answers/{question_ids[0]}",
            json={"option_key": "B"},
            headers=auth_headers,
        )

        assert response.status_code == 200
        assert response.json()["option_key"] == "B"

        detail = client.get(f"{SESSIONS}/{session['id']}", headers=auth_headers).json()
        assert detail["answered_count"] == 1

    def test_invalid_option(self, client, auth_headers, package, question_ids):
        session = start(client, auth_headers, package.id)
        response = client.put(
            f"{SESSIONS}/{session['id']}/answers/{question_ids[0]}",
            json={"option_key": "Q"},
            headers=auth_headers,
        )
        assert response.status_code == 400

    def test_clear_and_flag(self, client, auth_headers, package, question_ids):
        session = start(client, auth_headers, package.id)
        url = f"{SESSIONS}/{session['id']}/answers/{question_ids[1]}"
        client.put(url, json={"option_key": "A"}, headers=auth_headers)

        flagged = client.post(f"{url}/flag", headers=auth_headers).json()
        cleared = client.delete(url, headers=auth_headers).json()

        assert flagged["flagged"] is True
        assert cleared["option_key"] is None
        assert cleared["flagged"] is True

    def test_other_user_forbidden(
        self, client, auth_headers, other_auth_headers, package, question_ids
    ):
        session = start(client, auth_headers, package.id)
        response = client.put(
            f"{SESSIONS}/{session['id']}/answers/{question_ids[0]}",
            json={"option_key": "A"},
            headers=other_auth_headers,
        )
        assert response.status_code == 403

    def test_navigate(self, client, auth_headers, package):
        session = start(client, auth_headers, package.id)
        response = client.post(
            f"{SESSIONS}/{session['id']}/navigate", json={"index": 4}, headers=auth_headers
        )

        assert response.status_code == 200
        data = response.json()
        assert data["current_index"] == 4
        assert data["section"]["name"] == "Quantitative"

    def test_navigate_out_of_range(self, client, auth_headers, package):
        session = start(client, auth_headers, package.id)
        response = client.post(
            f"{SESSIONS}/{session['id']}/navigate", json={"index": 5}, headers=auth_headers
        )
        assert response.status_code == 400
        assert "out of range" in response.json()["detail"]

    def test_answer_after_time_up(self, client, auth_headers, make_package, clock):
        package = make_package(duration_minutes=10)
        session = start(client, auth_headers, package.id)
        clock.advance(601)

        response = client.put(
            f"{SESSIONS}/{session['id']}/answers/{session['question_ids'][0]}",
            json={"option_key": "A"},
            headers=auth_headers,
        )

        assert response.status_code == 409

    def test_unknown_session(self, client, auth_headers):
        response = client.get(f"{SESSIONS}/4242", headers=auth_headers)
        assert response.status_code == 404


class TestHeartbeatAndCountdown:
    """Tests for timer endpoints."""

    def test_heartbeat(self, client, auth_headers, package, clock):
        session = start(client, auth_headers, package.id)
        clock.advance(1650)

        response = client.post(f"{SESSIONS}/{session['id']}/heartbeat", headers=auth_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["remaining_seconds"] == 150.0
        assert data["urgency"] == "critical"
        assert data["running"] is True

    def test_countdown_for_expired_session(self, client, auth_headers, make_package, clock):
        """Opening the stream after the deadline submits and sends one expired event."""
        package = make_package(duration_minutes=10)
        session = start(client, auth_headers, package.id)
        clock.advance(700)

        response = client.get(f"{SESSIONS}/{session['id']}/countdown", headers=auth_headers)

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        events = [
            json.loads(line[len("data: "):])
            for line in response.text.splitlines()
            if line.startswith("data: ")
        ]
        assert len(events) == 1
        assert events[0]["expired"] is True
        assert events[0]["remaining_seconds"] == 0.0
        assert events[0]["display"] == "00:00"

        detail = client.get(f"{SESSIONS}/{session['id']}", headers=auth_headers).json()
        assert detail["status"] == "completed"
        assert detail["submit_trigger"] == "timer"


def read_events(response):
    return [
        json.loads(line[len("data: "):])
        for line in response.text.splitlines()
        if line.startswith("data: ")
    ]


class TestLiveCountdown:
    """Tests for a countdown stream opened on a running session."""

    def use_sleep(self, on_tick=None, clock=None):
        """Replace the pause between ticks with a fake-clock advance."""
        ticks = []

        async def fake_sleep(seconds):
            clock.advance(seconds)
            ticks.append(seconds)
            if on_tick is not None:
                on_tick(len(ticks))
            await asyncio.sleep(0)

        app.dependency_overrides[get_countdown_sleep] = lambda: fake_sleep
        return ticks

    def test_stream_runs_to_expiry(self, client, auth_headers, make_package, clock, db_session):
        """A one-minute session streamed to the end is submitted by the timer."""
        package = make_package(duration_minutes=1)
        session = start(client, auth_headers, package.id)
        self.use_sleep(clock=clock)

        response = client.get(f"{SESSIONS}/{session['id']}/countdown", headers=auth_headers)

        events = read_events(response)
        assert len(events) == 61
        assert events[0]["remaining_seconds"] == 60.0
        assert events[-1]["expired"] is True
        assert events[-1]["display"] == "00:00"
        assert not any(event["expired"] for event in events[:-1])

        detail = client.get(f"{SESSIONS}/{session['id']}", headers=auth_headers).json()
        assert detail["status"] == "completed"
        assert detail["submit_trigger"] == "timer"
        assert detail["timer"]["remaining_seconds"] == 0.0

        # Background checkpoints were written while the stream ticked
        checkpoints = (
            db_session.query(TimerCheckpoint)
            .filter(TimerCheckpoint.session_id == session["id"])
            .count()
        )
        assert checkpoints > 2

    def test_stream_open_across_manual_submit(
        self, client, auth_headers, package, clock, session_factory
    ):
        """Submitting while a stream is open leaves the completed session untouched."""
        session = start(client, auth_headers, package.id)
        session_id = session["id"]
        frozen = {}

        def submit_on_third_tick(tick):
            if tick != 3:
                return
            db = session_factory()
            try:
                SessionController(db, clock=clock).submit(session_id, TEST_USER_ID)
                frozen["checkpoints"] = (
                    db.query(TimerCheckpoint)
                    .filter(TimerCheckpoint.session_id == session_id)
                    .count()
                )
            finally:
                db.close()

        self.use_sleep(on_tick=submit_on_third_tick, clock=clock)

        response = client.get(f"{SESSIONS}/{session_id}/countdown", headers=auth_headers)

        events = read_events(response)
        assert events[-1]["expired"] is False
        assert events[-1]["remaining_seconds"] == 1797.0

        detail = client.get(f"{SESSIONS}/{session_id}", headers=auth_headers).json()
        assert detail["status"] == "completed"
        assert detail["submit_trigger"] == "manual"
        assert detail["timer"]["remaining_seconds"] == 1797.0
        assert detail["timer"]["expired"] is False

        db = session_factory()
        try:
            checkpoints = (
                db.query(TimerCheckpoint)
                .filter(TimerCheckpoint.session_id == session_id)
                .count()
            )
        finally:
            db.close()
        assert checkpoints == frozen["checkpoints"]


class TestSubmitAndResult:
    """Tests for submission and result endpoints."""

    def test_submit_and_result(self, client, auth_headers, package, question_ids):
        session = start(client, auth_headers, package.id)
        for qid in question_ids[:4]:
            client.put(
                f"{SESSIONS}/{session['id']}/answers/{qid}",
                json={"option_key": "A"},
                headers=auth_headers,
            )

        response = client.post(f"{SESSIONS}/{session['id']}/submit", headers=auth_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "completed"
        assert data["submit_trigger"] == "manual"
        assert data["already_submitted"] is False
        assert data["result"]["correct_count"] == 4
        assert data["result"]["passed"] is True
        assert [s["name"] for s in data["result"]["section_results"]] == [
            "Verbal",
            "Quantitative",
        ]

        result = client.get(f"{SESSIONS}/{session['id']}/result", headers=auth_headers)
        assert result.status_code == 200
        assert result.json()["total_score"] == 4.0

    def test_duplicate_submit(self, client, auth_headers, package):
        session = start(client, auth_headers, package.id)
        client.post(f"{SESSIONS}/{session['id']}/submit", headers=auth_headers)

        again = client.post(f"{SESSIONS}/{session['id']}/submit", headers=auth_headers)

        assert again.status_code == 200
        assert again.json()["already_submitted"] is True

    def test_result_before_submit(self, client, auth_headers, package):
        session = start(client, auth_headers, package.id)
        response = client.get(f"{SESSIONS}/{session['id']}/result", headers=auth_headers)
        assert response.status_code == 404

    def test_submit_after_abandon(self, client, auth_headers, package):
        session = start(client, auth_headers, package.id)
        abandoned = client.post(f"{SESSIONS}/{session['id']}/abandon", headers=auth_headers)
        assert abandoned.json()["status"] == "abandoned"

        response = client.post(f"{SESSIONS}/{session['id']}/submit", headers=auth_headers)
        assert response.status_code == 409

    def test_persistence_failure_is_retryable(self, client, auth_headers, package):
        session = start(client, auth_headers, package.id)
        with patch.object(
            SessionStore,
            "save_score_result",
            side_effect=PersistenceFailure("persist score result"),
        ), patch("tryout.core.retry.time.sleep"), patch(
            "tryout.main.capture_error"
        ):
            response = client.post(f"{SESSIONS}/{session['id']}/submit", headers=auth_headers)

        assert response.status_code == 503
        assert response.json()["retryable"] is True

        detail = client.get(f"{SESSIONS}/{session['id']}", headers=auth_headers).json()
        assert detail["status"] == "submitting"

        retried = client.post(f"{SESSIONS}/{session['id']}/submit", headers=auth_headers)
        assert retried.status_code == 200
        assert retried.json()["status"] == "completed"
