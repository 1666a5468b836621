from __future__ import annotations

import tempfile
from datetime import datetime
from unittest import TestCase, mock

from fastapi.testclient import TestClient

from . import main
from .db import Settings
from .errors import InternalError
from .leaderboard import MAX_SCORE, Leaderboard
from .main import build_services, create_app

ADMIN_HEADERS = {"X-Admin-Key": "secret-admin"}


class ApiTests(TestCase):
    def setUp(self) -> None:
        self.settings = Settings(ADMIN_KEY="secret-admin", OPENAI_API_KEY=None, LEADERBOARD_BACKEND="memory")
        self.services = build_services(self.settings)
        self.app = create_app(self.settings, self.services)
        self.client = TestClient(self.app)

    def test_health(self):
        res = self.client.get("/api/health")

        self.assertEqual(res.status_code, 200)
        body = res.json()
        self.assertEqual(body["status"], "ok")
        datetime.fromisoformat(body["timestamp"])

    def test_question_hides_answer(self):
        for topic in ("general", "math", "science", "nonsense", ""):
            with self.subTest(topic=topic):
                res = self.client.get("/api/question", params={"topic": topic})
                self.assertEqual(res.status_code, 200)
                self.assertEqual(set(res.json()), {"id", "question", "options"})

    def test_question_without_topic_uses_default(self):
        res = self.client.get("/api/question")

        general_ids = {q.id for q in self.services.questions.questions("general")}
        self.assertIn(res.json()["id"], general_ids)

    def test_question_for_empty_topic_is_404(self):
        with tempfile.TemporaryDirectory() as empty_dir:
            settings = Settings(QUESTIONS_DIR=empty_dir, OPENAI_API_KEY=None)
            client = TestClient(create_app(settings, build_services(settings)))
            res = client.get("/api/question", params={"topic": "math"})

        self.assertEqual(res.status_code, 404)
        self.assertIn("error", res.json())

    def test_check_answer_correct(self):
        res = self.client.post("/api/check-answer", json={"questionId": 3, "selectedAnswer": 1})

        self.assertEqual(res.status_code, 200)
        body = res.json()
        self.assertEqual(body["correct"], True)
        self.assertEqual(body["correctAnswer"], 1)
        self.assertTrue(body["explanation"])

    def test_check_answer_timeout_sentinel(self):
        res = self.client.post("/api/check-answer", json={"questionId": "2", "selectedAnswer": -1, "topic": "math"})

        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.json()["correct"], False)
        self.assertEqual(res.json()["correctAnswer"], 2)

    def test_check_answer_malformed(self):
        bodies = [
            {"selectedAnswer": 1},
            {"questionId": 3},
            {"questionId": 3, "selectedAnswer": "first"},
            {"questionId": 3, "selectedAnswer": -3},
            [1, 2],
        ]
        for body in bodies:
            with self.subTest(body=body):
                res = self.client.post("/api/check-answer", json=body)
                self.assertEqual(res.status_code, 400)
                self.assertIn("error", res.json())

    def test_check_answer_invalid_json(self):
        res = self.client.post(
            "/api/check-answer", content=b"{not json", headers={"Content-Type": "application/json"}
        )

        self.assertEqual(res.status_code, 400)

    def test_check_answer_unknown_question(self):
        res = self.client.post("/api/check-answer", json={"questionId": 99, "selectedAnswer": 0})

        self.assertEqual(res.status_code, 404)
        self.assertIn("error", res.json())

    def test_explain_endpoint_reports_source(self):
        res = self.client.get("/api/explain/3")

        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.json(), {
            "explanation": "Mars looks red because of iron oxide on its surface.",
            "source": "cached",
        })
        self.assertEqual(self.client.get("/api/explain/77").status_code, 404)

    def test_submit_and_rank_scores(self):
        self.assertEqual(self.client.post("/api/leaderboard", json={"name": "  Alice  ", "score": 42.9}).json(),
                         {"success": True})
        self.client.post("/api/leaderboard", json={"name": "Bob", "score": 50})
        self.client.post("/api/leaderboard", json={"name": "Cara", "score": 42})

        rows = self.client.get("/api/leaderboard").json()

        self.assertEqual([(r["rank"], r["name"], r["score"]) for r in rows],
                         [(1, "Bob", 50), (2, "Alice", 42), (3, "Cara", 42)])
        for row in rows:
            datetime.fromisoformat(row["timestamp"])

    def test_leaderboard_limit(self):
        for i in range(5):
            self.client.post("/api/leaderboard", json={"name": f"p{i}", "score": i})

        self.assertEqual(len(self.client.get("/api/leaderboard", params={"limit": 2}).json()), 2)
        self.assertEqual(self.client.get("/api/leaderboard", params={"limit": "lots"}).status_code, 400)
        self.assertEqual(self.client.get("/api/leaderboard", params={"limit": -1}).status_code, 400)

    def test_invalid_scores_rejected(self):
        bodies = [
            {"name": "", "score": 1},
            {"name": "   ", "score": 1},
            {"name": "x" * 51, "score": 1},
            {"name": "Dan", "score": -4},
            {"name": "Dan", "score": "12"},
            {"name": "Dan"},
            {"score": 10},
        ]
        for body in bodies:
            with self.subTest(body=body):
                res = self.client.post("/api/leaderboard", json=body)
                self.assertEqual(res.status_code, 400)
                self.assertIn("error", res.json())

        self.assertEqual(self.client.get("/api/leaderboard/count").json(), {"count": 0})

    def test_oversized_score_is_400(self):
        for score in (10**400, MAX_SCORE + 1):
            with self.subTest(score=score):
                res = self.client.post("/api/leaderboard", json={"name": "Zed", "score": score})
                self.assertEqual(res.status_code, 400)
                self.assertIn("error", res.json())

        self.assertEqual(self.client.get("/api/leaderboard/count").json(), {"count": 0})

    def test_admin_clear_requires_key(self):
        self.client.post("/api/leaderboard", json={"name": "Eve", "score": 3})

        self.assertEqual(self.client.delete("/api/admin/leaderboard").status_code, 401)
        self.assertEqual(self.client.get("/api/leaderboard/count").json(), {"count": 1})

        res = self.client.delete("/api/admin/leaderboard", headers=ADMIN_HEADERS)
        self.assertEqual(res.json(), {"ok": True})
        self.assertEqual(self.client.get("/api/leaderboard/count").json(), {"count": 0})

    def test_unexpected_errors_are_generic(self):
        client = TestClient(self.app, raise_server_exceptions=False)

        with mock.patch.object(
            self.services.questions, "get_random_question", side_effect=RuntimeError("db password leaked")
        ):
            res = client.get("/api/question")

        self.assertEqual(res.status_code, 500)
        self.assertEqual(res.json(), {"error": "Internal server error"})

    def test_internal_errors_hide_detail(self):
        with mock.patch.object(
            self.services.questions, "get_random_question", side_effect=InternalError("bad file /etc/x")
        ):
            res = self.client.get("/api/question")

        self.assertEqual(res.status_code, 500)
        self.assertEqual(res.json(), {"error": "Internal server error"})


class LifespanTests(TestCase):
    def setUp(self) -> None:
        self.settings = Settings(OPENAI_API_KEY=None, LEADERBOARD_BACKEND="memory")

    def test_create_app_builds_nothing_until_startup(self):
        with mock.patch.object(main, "build_services") as build:
            app = create_app(self.settings)

        build.assert_not_called()
        self.assertIsNone(app.state.services)

    def test_startup_builds_services_and_shutdown_closes_them(self):
        app = create_app(self.settings)

        with mock.patch.object(Leaderboard, "close", new_callable=mock.AsyncMock) as close:
            with TestClient(app) as client:
                self.assertIsNotNone(app.state.services)
                self.assertEqual(client.get("/api/question").status_code, 200)
                close.assert_not_awaited()

        close.assert_awaited_once()
        self.assertIsNone(app.state.services)

    def test_supplied_services_are_left_open(self):
        services = build_services(self.settings)
        app = create_app(self.settings, services)

        with mock.patch.object(services.leaderboard, "close", new_callable=mock.AsyncMock) as close:
            with TestClient(app) as client:
                self.assertEqual(client.get("/api/health").status_code, 200)

        close.assert_not_awaited()
        self.assertIs(app.state.services, services)
