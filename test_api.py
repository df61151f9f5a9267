import json
import sys
import os
import tempfile
import unittest
from unittest.mock import AsyncMock, patch

from fastapi.testclient import TestClient

# Add the project root to sys.path
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '.')))

from backend import orchestrator
from backend.main import app
from test_orchestrator import fake_stream


def parse_frames(body):
    return [json.loads(frame[len("data: "):]) for frame in body.split("\n\n") if frame.startswith("data: ")]


class TestAskApi(unittest.TestCase):

    def setUp(self):
        self.client = TestClient(app)
        self.tmp = tempfile.TemporaryDirectory()
        self.data_dir_patch = patch("backend.storage.DATA_DIR", self.tmp.name)
        self.data_dir_patch.start()

    def tearDown(self):
        self.data_dir_patch.stop()
        self.tmp.cleanup()

    def test_models_listing(self):
        response = self.client.get("/api/models")
        self.assertEqual(response.status_code, 200)
        data = response.json()
        self.assertEqual(data["default_models"], ["gemini-3-pro", "gpt-5.2", "claude-sonnet-4-6"])
        self.assertIn("deep", data["reasoning_tiers"])
        self.assertTrue(all("provider" in model for model in data["available_models"]))

    def test_ask_requires_content_and_models(self):
        response = self.client.post("/api/ask", json={"question": "", "models": ["gpt-5.2"]})
        self.assertEqual(response.status_code, 400)
        response = self.client.post("/api/ask", json={"question": "What is 2+2?", "models": []})
        self.assertEqual(response.status_code, 400)

    def test_ask_rejects_unknown_language(self):
        response = self.client.post("/api/ask", json={"question": "q", "models": ["gpt-5.2"], "language": "Klingon"})
        self.assertEqual(response.status_code, 422)

    def test_ask_streams_envelopes(self):
        streams = {"openai": fake_stream({"type": "answer_delta", "content": "4"})}
        with patch.dict(orchestrator.PROVIDER_STREAMS, streams):
            response = self.client.post("/api/ask", json={
                "question": "What is 2+2?",
                "models": ["gpt-5.2", "mystery-model"],
                "language": "English",
            })

        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.headers["content-type"].startswith("text/event-stream"))
        self.assertIn("x-request-id", response.headers)

        envelopes = parse_frames(response.text)
        self.assertEqual(envelopes[-1], {"type": "complete"})
        self.assertIn({"type": "chunk", "modelId": "gpt-5.2", "content": "4"}, envelopes)
        self.assertIn({"type": "error", "modelId": "mystery-model", "error": "Model not found"}, envelopes)

    def test_image_only_question_is_accepted(self):
        streams = {"claude": fake_stream({"type": "answer_delta", "content": "x = 2"})}
        with patch.dict(orchestrator.PROVIDER_STREAMS, streams):
            response = self.client.post("/api/ask", json={
                "images": ["data:image/png;base64,iVBORw0KGgo="],
                "models": ["claude-opus-4-6"],
            })
        self.assertEqual(response.status_code, 200)
        conversation = streams["claude"].calls[0]["conversation"]
        self.assertEqual(conversation[-1]["content"][1]["type"], "image")

    def test_session_turns_feed_history(self):
        session = self.client.post("/api/sessions", json={}).json()
        stream = fake_stream({"type": "answer_delta", "content": "4"})

        with patch.dict(orchestrator.PROVIDER_STREAMS, {"openai": stream}):
            self.client.post("/api/ask", json={
                "question": "What is 2+2?", "models": ["gpt-5.2"], "sessionId": session["id"],
            })
            self.client.post("/api/ask", json={
                "question": "And doubled?", "models": ["gpt-5.2"], "sessionId": session["id"],
            })

        stored = self.client.get(f"/api/sessions/{session['id']}").json()
        self.assertEqual(len(stored["turns"]), 2)
        self.assertEqual(stored["turns"][0]["userText"], "What is 2+2?")
        self.assertEqual(stored["turns"][0]["modelAnswers"], {"gpt-5.2": "4"})

        second_conversation = stream.calls[1]["conversation"]
        self.assertEqual([m["role"] for m in second_conversation], ["user", "assistant", "user"])
        self.assertEqual(second_conversation[1]["content"], "4")

    def test_failed_models_are_not_stored(self):
        session = self.client.post("/api/sessions", json={}).json()
        streams = {"openai": fake_stream({"type": "answer_delta", "content": "half"}, error=RuntimeError("boom"))}
        with patch.dict(orchestrator.PROVIDER_STREAMS, streams):
            self.client.post("/api/ask", json={"question": "q", "models": ["gpt-5.2"], "sessionId": session["id"]})

        stored = self.client.get(f"/api/sessions/{session['id']}").json()
        self.assertEqual(stored["turns"], [])

    def test_cancel_unknown_stream(self):
        response = self.client.post("/api/ask/not-a-stream/cancel")
        self.assertEqual(response.status_code, 404)


class TestSessionsAndTitles(unittest.TestCase):

    def setUp(self):
        self.client = TestClient(app)
        self.tmp = tempfile.TemporaryDirectory()
        self.data_dir_patch = patch("backend.storage.DATA_DIR", self.tmp.name)
        self.data_dir_patch.start()

    def tearDown(self):
        self.data_dir_patch.stop()
        self.tmp.cleanup()

    def test_session_crud(self):
        session = self.client.post("/api/sessions", json={}).json()
        self.assertEqual(session["title"], "New Session")

        listing = self.client.get("/api/sessions").json()
        self.assertEqual([s["id"] for s in listing], [session["id"]])
        self.assertEqual(listing[0]["turn_count"], 0)

        self.assertEqual(self.client.delete(f"/api/sessions/{session['id']}").status_code, 200)
        self.assertEqual(self.client.get(f"/api/sessions/{session['id']}").status_code, 404)
        self.assertEqual(self.client.delete(f"/api/sessions/{session['id']}").status_code, 404)

    @patch("backend.main.generate_session_title", new_callable=AsyncMock)
    def test_generate_title_updates_session(self, mock_title):
        mock_title.return_value = "Quadratic Equations"
        session = self.client.post("/api/sessions", json={}).json()

        response = self.client.post("/api/generate-title", json={
            "question": "Solve x^2 - 4 = 0", "sessionId": session["id"],
        })

        self.assertEqual(response.json(), {"title": "Quadratic Equations"})
        mock_title.assert_called_once_with("Solve x^2 - 4 = 0")
        self.assertEqual(self.client.get(f"/api/sessions/{session['id']}").json()["title"], "Quadratic Equations")

    @patch("backend.main.generate_session_title", new_callable=AsyncMock)
    def test_generate_title_errors(self, mock_title):
        self.assertEqual(self.client.post("/api/generate-title", json={"question": "  "}).status_code, 400)

        mock_title.side_effect = RuntimeError("OPENAI_API_KEY is not set")
        response = self.client.post("/api/generate-title", json={"question": "q"})
        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.json()["detail"], "OPENAI_API_KEY is not set")


if __name__ == '__main__':
    unittest.main()
