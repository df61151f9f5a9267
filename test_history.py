import sys
import os
import unittest

# Add the project root to sys.path
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '.')))

from backend.config import MAX_CHARS_PER_TURN, MAX_HISTORY_TURNS
from backend.history import (
    ATTACHMENT_ONLY_PROMPTS,
    build_claude_messages,
    build_conversation,
    build_gemini_contents,
    build_openai_messages,
    sanitize_history,
    split_data_uri,
)

PNG_URI = "data:image/png;base64,iVBORw0KGgo="
PDF_URI = "data:application/pdf;base64,JVBERi0xLjQ="


class TestSanitizeHistory(unittest.TestCase):

    def test_keeps_only_recent_turns(self):
        history = [{"userText": f"q{i}", "modelAnswers": {}} for i in range(MAX_HISTORY_TURNS + 2)]
        sanitized = sanitize_history(history)
        self.assertEqual(len(sanitized), MAX_HISTORY_TURNS)
        self.assertEqual(sanitized[0]["user_text"], "q2")

    def test_clips_and_drops_bad_values(self):
        history = [
            "not a turn",
            {"userText": 42},
            {"userText": "   ", "userImages": []},
            {
                "userText": "x" * (MAX_CHARS_PER_TURN + 10),
                "userImages": [" ", PNG_URI, 7],
                "modelAnswers": {"gpt-5.2": "answer", "claude-opus-4-6": "  ", "gemini-3-pro": None},
            },
        ]
        sanitized = sanitize_history(history)
        self.assertEqual(len(sanitized), 1)
        turn = sanitized[0]
        self.assertEqual(len(turn["user_text"]), MAX_CHARS_PER_TURN)
        self.assertEqual(turn["user_images"], [PNG_URI])
        self.assertEqual(turn["model_answers"], {"gpt-5.2": "answer"})

    def test_image_only_turn_is_kept(self):
        sanitized = sanitize_history([{"user_text": "", "user_images": [PNG_URI]}])
        self.assertEqual(len(sanitized), 1)

    def test_non_list_history(self):
        self.assertEqual(sanitize_history({"userText": "q"}), [])


class TestConversationBuilders(unittest.TestCase):

    def setUp(self):
        self.history = sanitize_history([
            {"userText": "What is 2+2?", "userImages": [], "modelAnswers": {"gpt-5.2": "4", "gemini-3-pro": "4"}},
        ])

    def test_split_data_uri(self):
        self.assertEqual(split_data_uri(PNG_URI), ("image/png", "iVBORw0KGgo="))
        self.assertEqual(split_data_uri("AAAA"), ("image/jpeg", "AAAA"))

    def test_turn_without_answer_adds_no_assistant_message(self):
        history = sanitize_history([{"userText": "Hello", "modelAnswers": {}}])
        for provider in ("openai", "gemini", "claude"):
            conversation = build_conversation(provider, "next", [], [], history, "gpt-5.2", "English")
            roles = [message["role"] for message in conversation]
            self.assertEqual(roles, ["user", "user"], provider)

    def test_openai_messages(self):
        messages = build_openai_messages("Solve it", [PNG_URI], [PDF_URI], self.history, "gpt-5.2", "English")
        self.assertEqual([m["role"] for m in messages], ["user", "assistant", "user"])
        self.assertEqual(messages[1]["content"], "4")

        current = messages[-1]["content"]
        self.assertEqual(current[0]["type"], "input_file")
        self.assertEqual(current[0]["file_data"], PDF_URI)
        self.assertEqual(current[1], {"type": "text", "text": "Solve it"})
        self.assertEqual(current[2]["image_url"], {"url": PNG_URI, "detail": "high"})

    def test_openai_answer_is_per_model(self):
        messages = build_openai_messages("next", [], [], self.history, "gpt-5.2-pro", "English")
        self.assertEqual([m["role"] for m in messages], ["user", "user"])

    def test_gemini_contents(self):
        contents = build_gemini_contents("Solve it", ["AAAA"], [PDF_URI], self.history, "gemini-3-pro", "English")
        self.assertEqual([c["role"] for c in contents], ["user", "model", "user"])
        self.assertEqual(contents[0]["parts"][0]["text"], "Question:What is 2+2?")

        parts = contents[-1]["parts"]
        self.assertEqual(parts[0], {"inlineData": {"mimeType": "application/pdf", "data": "JVBERi0xLjQ="}})
        self.assertEqual(parts[1], {"text": "Question:Solve it"})
        self.assertEqual(parts[2], {"inlineData": {"mimeType": "image/jpeg", "data": "AAAA"}})

    def test_claude_attachment_only_question(self):
        messages = build_claude_messages("", [PNG_URI], [], [], "claude-opus-4-6", "English")
        content = messages[0]["content"]
        self.assertEqual(content[0], {"type": "text", "text": ATTACHMENT_ONLY_PROMPTS["English"]})
        self.assertEqual(content[1]["source"], {"type": "base64", "media_type": "image/png", "data": "iVBORw0KGgo="})

    def test_claude_pdf_part(self):
        messages = build_claude_messages("Read this", [], [PDF_URI], [], "claude-opus-4-6", "Chinese")
        self.assertEqual(messages[0]["content"][0]["type"], "document")
        self.assertEqual(messages[0]["content"][0]["source"]["data"], "JVBERi0xLjQ=")

    def test_unknown_provider(self):
        with self.assertRaises(ValueError):
            build_conversation("mistral", "q", [], [], [], "m", "English")


if __name__ == '__main__':
    unittest.main()
