import uuid
from unittest import TestCase

from fastapi.testclient import TestClient

from .config import settings
from .main import app, registry


class ApiTestCase(TestCase):
    def setUp(self):
        self.client = TestClient(app)
        self.client.__enter__()
        self.addCleanup(self.client.__exit__, None, None, None)
        self.session_id = f"plateau-{uuid.uuid4().hex[:8]}"
        self.admin = {"X-Admin-Key": settings.ADMIN_KEY}
        self.client.post("/api/session", json={"session_id": self.session_id})
        self.addCleanup(self._reset)

    def _reset(self):
        # cancels pending round timers on the client's event loop
        self.client.post("/api/admin/reset", json={"session_id": self.session_id}, headers=self.admin)
        self.assertIsNotNone(registry.get(self.session_id))

    def command(self, name: str):
        return self.client.post(
            "/api/admin/command", json={"session_id": self.session_id, "command": name}, headers=self.admin
        )


class SessionApiTests(ApiTestCase):
    def test_new_session_is_idle_with_default_bank(self):
        res = self.client.get(f"/api/session/{self.session_id}")
        self.assertEqual(res.status_code, 200)
        body = res.json()
        self.assertEqual(body["state"], "idle")
        self.assertEqual(body["total_questions"], 4)
        self.assertEqual(body["players"], [])

    def test_unknown_session(self):
        self.assertEqual(self.client.get("/api/session/nope").status_code, 404)
        res = self.client.post("/api/answer", json={"session_id": "nope", "player_id": "a", "text": "x"})
        self.assertEqual(res.status_code, 404)

    def test_events_start_with_reset_marker(self):
        res = self.client.get(f"/api/session/{self.session_id}/events")
        events = res.json()["events"]
        self.assertEqual(events[0]["payload"]["type"], "session_reset")

    def test_join_disambiguates_names(self):
        first = self.client.post("/api/join", json={"session_id": self.session_id, "username": "Alice"})
        second = self.client.post("/api/join", json={"session_id": self.session_id, "username": "alice"})
        self.assertEqual(first.json()["player"]["id"], "alice")
        self.assertEqual(second.json()["player"]["id"], "alice-2")


class AdminApiTests(ApiTestCase):
    def test_admin_key_required(self):
        self.assertEqual(self.client.get("/api/admin/verify").status_code, 401)
        self.assertEqual(self.client.get("/api/admin/verify", headers=self.admin).status_code, 200)
        res = self.client.post("/api/admin/command", json={"session_id": self.session_id, "command": "start"})
        self.assertEqual(res.status_code, 401)

    def test_start_without_players_is_reported(self):
        res = self.command("!start")
        self.assertEqual(res.status_code, 400)
        self.assertIn("no eligible player", res.json()["detail"])
        self.assertEqual(self.client.get(f"/api/session/{self.session_id}").json()["state"], "idle")

    def test_start_with_players_enters_countdown(self):
        self.client.post("/api/join", json={"session_id": self.session_id, "username": "Alice"})

        res = self.command("start")
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.json(), {"ok": True, "state": "countdown"})

        answer = self.client.post(
            "/api/answer", json={"session_id": self.session_id, "player_id": "alice", "text": "Paris"}
        )
        self.assertEqual(answer.json(), {"accepted": False})

        late = self.client.post("/api/join", json={"session_id": self.session_id, "username": "Bob"})
        self.assertEqual(late.status_code, 400)

    def test_unknown_command_is_ignored(self):
        res = self.command("!dance")
        self.assertEqual(res.status_code, 200)
        self.assertFalse(res.json()["ok"])

    def test_resolve_and_next_need_a_running_round(self):
        body = {"session_id": self.session_id}
        self.assertEqual(
            self.client.post("/api/admin/resolve-buzz", json={**body, "correct": True}, headers=self.admin).status_code,
            400,
        )
        self.assertEqual(self.client.post("/api/admin/next", json=body, headers=self.admin).status_code, 400)

    def test_question_upload_validates_bank(self):
        url = "/api/admin/questions"
        bad_choice = {
            "session_id": self.session_id,
            "questions": [{"id": "q", "kind": "multiple_choice", "prompt": "?", "correct_answer": "x"}],
        }
        self.assertEqual(self.client.post(url, json=bad_choice, headers=self.admin).status_code, 422)

        duplicate = {
            "session_id": self.session_id,
            "questions": [
                {"id": "q", "prompt": "?", "correct_answer": "x"},
                {"id": "q", "prompt": "!", "correct_answer": "y"},
            ],
        }
        self.assertEqual(self.client.post(url, json=duplicate, headers=self.admin).status_code, 400)

        good = {"session_id": self.session_id, "questions": [{"id": "q", "label": "?", "response": "x"}]}
        res = self.client.post(url, json=good, headers=self.admin)
        self.assertEqual(res.json(), {"ok": True, "count": 1})
        self.assertEqual(self.client.get(f"/api/session/{self.session_id}").json()["total_questions"], 1)

    def test_reset_returns_to_idle(self):
        self.client.post("/api/join", json={"session_id": self.session_id, "username": "Alice"})
        self.command("start")

        res = self.client.post("/api/admin/reset", json={"session_id": self.session_id}, headers=self.admin)
        self.assertEqual(res.status_code, 200)
        body = self.client.get(f"/api/session/{self.session_id}").json()
        self.assertEqual(body["state"], "idle")
        self.assertEqual(body["players"], [])

    def test_media_upload_requires_storage(self):
        res = self.client.post(
            "/api/admin/question-media",
            data={"session_id": self.session_id, "question_id": "q4"},
            files={"file": ("clip.mp3", b"data", "audio/mpeg")},
            headers=self.admin,
        )
        self.assertEqual(res.status_code, 500)


class LeaderboardApiTests(ApiTestCase):
    def test_leaderboard_lists_entries(self):
        res = self.client.get("/api/leaderboard", params={"limit": 5})
        self.assertEqual(res.status_code, 200)
        self.assertIsInstance(res.json()["leaderboard"], list)
