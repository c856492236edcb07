"""
Tests for the package leaderboard endpoints.
"""
import pytest

from conftest import OTHER_USER_ID, TEST_USER_ID


@pytest.fixture
def completed(controller, package):
    """Two completed sessions: the test user scores 5, the other user 2."""
    for user_id, correct in ((TEST_USER_ID, 5), (OTHER_USER_ID, 2)):
        view = controller.start_session(user_id, package.id)
        for qid in view.question_ids[:correct]:
            controller.select_answer(view.session_id, user_id, qid, "A")
        controller.submit(view.session_id, user_id)


class TestRankingsApi:
    """Tests for /v1/packages/{package_id}/rankings."""

    def test_list_rankings(self, client, auth_headers, package, completed):
        response = client.get(f"/v1/packages/{package.id}/rankings", headers=auth_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["total_participants"] == 2
        assert [(e["user_id"], e["rank_position"]) for e in data["entries"]] == [
            (TEST_USER_ID, 1),
            (OTHER_USER_ID, 2),
        ]
        assert data["entries"][1]["percentile"] == 50.0

    def test_pagination(self, client, auth_headers, package, completed):
        response = client.get(
            f"/v1/packages/{package.id}/rankings",
            params={"limit": 1, "offset": 1},
            headers=auth_headers,
        )

        data = response.json()
        assert data["limit"] == 1
        assert [e["rank_position"] for e in data["entries"]] == [2]

    def test_limit_above_maximum_rejected(self, client, auth_headers, package):
        response = client.get(
            f"/v1/packages/{package.id}/rankings",
            params={"limit": 100000},
            headers=auth_headers,
        )
        assert response.status_code == 422

    def test_my_rank(self, client, other_auth_headers, package, completed):
        response = client.get(
            f"/v1/packages/{package.id}/rankings/me", headers=other_auth_headers
        )

        assert response.status_code == 200
        assert response.json()["rank_position"] == 2

    def test_my_rank_without_result(self, client, auth_headers, package):
        response = client.get(f"/v1/packages/{package.id}/rankings/me", headers=auth_headers)
        assert response.status_code == 404

    def test_recompute(self, client, auth_headers, package, completed):
        response = client.post(
            f"/v1/packages/{package.id}/rankings/recompute", headers=auth_headers
        )

        assert response.status_code == 200
        assert response.json()["total_participants"] == 2

    def test_unknown_package(self, client, auth_headers):
        response = client.get("/v1/packages/999/rankings", headers=auth_headers)
        assert response.status_code == 404
