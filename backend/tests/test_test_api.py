"""
Tests for the test session endpoints.
"""
from helpers import answer_all, backdate_session, start_practice


class TestStartTest:
    """Tests for POST /api/test/start."""

    async def test_start_anonymous(self, async_client, seed_questions):
        """A session can be started without any token."""
        data = await start_practice(async_client)

        session = data["session"]
        assert session["status"] == "started"
        assert session["testType"] == "practice"
        assert session["userId"] is None
        assert session["totalQuestions"] == 10
        assert session["currentIndex"] == 0
        assert session["timeLimit"] is None
        assert data["progress"] == {"current": 1, "total": 10, "percentage": 10}
        assert data["message"] == "Test session started"

    async def test_question_hides_answer(self, async_client, seed_questions):
        data = await start_practice(async_client)

        question = data["currentQuestion"]
        assert question["id"] == seed_questions[0].id
        assert question["questionType"] == "numerical_sequence"
        assert question["content"]["question"] == "Question 0"
        assert "correctAnswer" not in question
        assert "explanation" not in question

    async def test_start_with_token_sets_owner(self, async_client, seed_questions, auth_headers, test_user):
        data = await start_practice(async_client, headers=auth_headers)
        assert data["session"]["userId"] == test_user.id

    async def test_start_without_body_uses_default_type(self, async_client, seed_questions):
        """The default full_iq preset draws from every category."""
        response = await async_client.post("/api/test/start")

        assert response.status_code == 201
        data = response.json()
        assert data["session"]["testType"] == "full_iq"
        assert data["session"]["totalQuestions"] == 12

    async def test_snake_case_input_accepted(self, async_client, seed_questions):
        response = await async_client.post(
            "/api/test/start", json={"test_type": "practice", "time_limit": 900}
        )

        assert response.status_code == 201
        assert response.json()["session"]["timeLimit"] == 900

    async def test_unknown_test_type(self, async_client, seed_questions):
        response = await async_client.post("/api/test/start", json={"testType": "bogus"})

        assert response.status_code == 400
        body = response.json()
        assert body["error"] == "Bad Request"
        assert body["message"] == "Unknown test type: bogus"
        assert "timestamp" in body

    async def test_time_limit_out_of_range(self, async_client, seed_questions):
        response = await async_client.post(
            "/api/test/start", json={"testType": "practice", "timeLimit": 60}
        )

        assert response.status_code == 400
        assert "Time limit must be between" in response.json()["message"]

    async def test_no_questions(self, async_client):
        response = await async_client.post("/api/test/start", json={"testType": "practice"})

        assert response.status_code == 404
        assert response.json()["message"] == "No questions available for this test type"


class TestGetQuestion:
    """Tests for GET /api/test/{session_id}/question."""

    async def test_current_question(self, async_client, seed_questions):
        data = await start_practice(async_client, timeLimit=600)
        session_id = data["session"]["id"]

        response = await async_client.get(f"/api/test/{session_id}/question")

        assert response.status_code == 200
        body = response.json()
        assert body["question"]["id"] == seed_questions[0].id
        assert body["progress"]["current"] == 1
        assert 590 <= body["timeRemaining"] <= 600

    async def test_unknown_session(self, async_client):
        response = await async_client.get("/api/test/does-not-exist/question")

        assert response.status_code == 404
        assert response.json() == {
            "error": "Not Found",
            "message": "Test session not found",
            "timestamp": response.json()["timestamp"],
        }

    async def test_owned_session_requires_owner(
        self, async_client, seed_questions, auth_headers, other_auth_headers
    ):
        data = await start_practice(async_client, headers=auth_headers)
        session_id = data["session"]["id"]

        anonymous = await async_client.get(f"/api/test/{session_id}/question")
        other = await async_client.get(
            f"/api/test/{session_id}/question", headers=other_auth_headers
        )
        owner = await async_client.get(f"/api/test/{session_id}/question", headers=auth_headers)

        assert anonymous.status_code == 401
        assert anonymous.json()["message"] == "Access denied to this test session"
        assert other.status_code == 401
        assert owner.status_code == 200

    async def test_expired_session(self, async_client, database, session_cache, seed_questions):
        data = await start_practice(async_client, timeLimit=300)
        session_id = data["session"]["id"]
        await backdate_session(database, session_cache, session_id, 400)

        response = await async_client.get(f"/api/test/{session_id}/question")

        assert response.status_code == 400
        assert response.json()["message"] == "Test session has expired"
        status = await async_client.get(f"/api/test/{session_id}/status")
        assert status.json()["session"]["status"] == "completed"


class TestSubmitResponse:
    """Tests for POST /api/test/{session_id}/response."""

    async def test_submit_and_advance(self, async_client, seed_questions):
        data = await start_practice(async_client)
        session_id = data["session"]["id"]
        first = seed_questions[0]

        response = await async_client.post(
            f"/api/test/{session_id}/response",
            json={"questionId": first.id, "answer": first.correct_answer, "responseTime": 2500},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["isCorrect"] is True
        assert body["completed"] is False
        assert body["nextQuestion"]["id"] == seed_questions[1].id
        assert "correctAnswer" not in body["nextQuestion"]
        assert body["progress"] == {"current": 2, "total": 10, "percentage": 20}
        assert body["resultId"] is None

    async def test_full_flow(self, async_client, seed_questions):
        """Scenario B: five of ten correct completes with an IQ of 100."""
        data = await start_practice(async_client)
        session_id = data["session"]["id"]

        last = await answer_all(async_client, session_id, seed_questions, correct=5)

        assert last["completed"] is True
        assert last["nextQuestion"] is None
        assert last["resultId"] is not None

        result = await async_client.get(f"/api/results/session/{session_id}")
        assert result.status_code == 200
        assert result.json()["result"]["iqScore"] == 100
        assert result.json()["result"]["percentile"] == 50.0

    async def test_all_wrong(self, async_client, seed_questions):
        """Scenario C: zero correct gives 85."""
        data = await start_practice(async_client)
        session_id = data["session"]["id"]
        await answer_all(async_client, session_id, seed_questions, correct=0)

        result = await async_client.get(f"/api/results/session/{session_id}")
        assert result.json()["result"]["iqScore"] == 85

    async def test_out_of_sequence(self, async_client, seed_questions):
        data = await start_practice(async_client)
        session_id = data["session"]["id"]

        response = await async_client.post(
            f"/api/test/{session_id}/response",
            json={"questionId": seed_questions[3].id, "answer": "x", "responseTime": 100},
        )

        assert response.status_code == 400
        assert response.json()["message"] == (
            "Question is not the current question for this session"
        )
        status = await async_client.get(f"/api/test/{session_id}/status")
        assert status.json()["session"]["progress"]["current"] == 1

    async def test_duplicate_is_conflict(self, async_client, seed_questions):
        data = await start_practice(async_client)
        session_id = data["session"]["id"]
        payload = {"questionId": seed_questions[0].id, "answer": "x", "responseTime": 100}

        first = await async_client.post(f"/api/test/{session_id}/response", json=payload)
        second = await async_client.post(f"/api/test/{session_id}/response", json=payload)

        assert first.status_code == 200
        assert second.status_code == 409
        assert second.json()["error"] == "Conflict"

    async def test_negative_response_time(self, async_client, seed_questions):
        data = await start_practice(async_client)
        session_id = data["session"]["id"]

        response = await async_client.post(
            f"/api/test/{session_id}/response",
            json={"questionId": seed_questions[0].id, "answer": "x", "responseTime": -5},
        )

        assert response.status_code == 400
        assert response.json()["message"].startswith("responseTime:")

    async def test_missing_fields(self, async_client, seed_questions):
        data = await start_practice(async_client)
        session_id = data["session"]["id"]

        response = await async_client.post(
            f"/api/test/{session_id}/response", json={"answer": "x"}
        )

        assert response.status_code == 400
        assert response.json()["error"] == "Bad Request"

    async def test_answer_too_long(self, async_client, seed_questions):
        data = await start_practice(async_client)
        session_id = data["session"]["id"]

        response = await async_client.post(
            f"/api/test/{session_id}/response",
            json={"questionId": seed_questions[0].id, "answer": "x" * 501, "responseTime": 1},
        )

        assert response.status_code == 400


class TestStatusAndAbandon:
    """Tests for the status and abandon endpoints."""

    async def test_status(self, async_client, seed_questions):
        data = await start_practice(async_client, timeLimit=1800)
        session_id = data["session"]["id"]

        response = await async_client.get(f"/api/test/{session_id}/status")

        assert response.status_code == 200
        session = response.json()["session"]
        assert session["id"] == session_id
        assert session["status"] == "started"
        assert session["testType"] == "practice"
        assert session["endedAt"] is None
        assert session["timing"]["timeLimit"] == 1800
        assert session["timing"]["timeRemaining"] <= 1800

    async def test_abandon(self, async_client, seed_questions):
        data = await start_practice(async_client)
        session_id = data["session"]["id"]

        response = await async_client.post(f"/api/test/{session_id}/abandon")

        assert response.status_code == 200
        assert response.json() == {"message": "Test session abandoned"}
        status = await async_client.get(f"/api/test/{session_id}/status")
        assert status.json()["session"]["status"] == "abandoned"

    async def test_abandon_twice(self, async_client, seed_questions):
        data = await start_practice(async_client)
        session_id = data["session"]["id"]

        await async_client.post(f"/api/test/{session_id}/abandon")
        response = await async_client.post(f"/api/test/{session_id}/abandon")

        assert response.status_code == 200

    async def test_question_after_abandon(self, async_client, seed_questions):
        data = await start_practice(async_client)
        session_id = data["session"]["id"]
        await async_client.post(f"/api/test/{session_id}/abandon")

        response = await async_client.get(f"/api/test/{session_id}/question")

        assert response.status_code == 400
        assert response.json()["message"] == "Test session has ended"
