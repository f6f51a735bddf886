from __future__ import annotations

import base64
import unittest
from pathlib import Path
from types import SimpleNamespace
from typing import Any

from app_config import AppConfig
from generative_client import (
    GeminiGenerativeClient,
    GenerativeClientError,
    OpenAIGenerativeClient,
    build_generative_client,
)
from image_inputs import InlineImage

_IMAGE = InlineImage(data=b"\x89PNG-bytes", mime_type="image/png", name="a.png")


class _FakeOpenAI:
    def __init__(self, output_text: str) -> None:
        self.kwargs: dict[str, Any] = {}
        self.responses = SimpleNamespace(create=self._create)
        self._output_text = output_text

    def _create(self, **kwargs: Any) -> Any:
        self.kwargs = kwargs
        return SimpleNamespace(output_text=self._output_text)


class _FakeGenai:
    def __init__(self, text: str) -> None:
        self.kwargs: dict[str, Any] = {}
        self.models = SimpleNamespace(generate_content=self._generate)
        self._text = text

    def _generate(self, **kwargs: Any) -> Any:
        self.kwargs = kwargs
        return SimpleNamespace(text=self._text)


class TestOpenAIGenerativeClient(unittest.TestCase):
    def test_request_shape(self) -> None:
        fake = _FakeOpenAI(' {"ok": true} ')
        client = OpenAIGenerativeClient(api_key="sk", model="gpt-5-mini", client=fake)  # type: ignore[arg-type]

        text = client.complete("describe", [_IMAGE], "be brief", web_search=True)
        self.assertEqual(text, '{"ok": true}')
        self.assertEqual(fake.kwargs["model"], "gpt-5-mini")
        self.assertEqual(fake.kwargs["instructions"], "be brief")
        self.assertEqual(fake.kwargs["tools"], [{"type": "web_search"}])
        self.assertNotIn("text", fake.kwargs)

        content = fake.kwargs["input"][0]["content"]
        self.assertEqual(content[0], {"type": "input_text", "text": "describe"})
        expected_url = "data:image/png;base64," + base64.b64encode(_IMAGE.data).decode("ascii")
        self.assertEqual(content[1], {"type": "input_image", "image_url": expected_url})

    def test_json_mode(self) -> None:
        fake = _FakeOpenAI("{}")
        OpenAIGenerativeClient(api_key="sk", model="m", client=fake).complete("p", [], "JSON only", json_mode=True)  # type: ignore[arg-type]
        self.assertEqual(fake.kwargs["text"], {"format": {"type": "json_object"}})
        self.assertNotIn("tools", fake.kwargs)

    def test_empty_output_raises(self) -> None:
        client = OpenAIGenerativeClient(api_key="sk", model="m", client=_FakeOpenAI("  "))  # type: ignore[arg-type]
        with self.assertRaises(GenerativeClientError):
            client.complete("p", [], "s")


class TestGeminiGenerativeClient(unittest.TestCase):
    def test_request_shape(self) -> None:
        fake = _FakeGenai("answer")
        client = GeminiGenerativeClient(api_key="g", model="gemini-2.5-flash", client=fake)  # type: ignore[arg-type]

        self.assertEqual(client.complete("describe", [_IMAGE], "be brief", web_search=True, json_mode=True), "answer")
        self.assertEqual(fake.kwargs["model"], "gemini-2.5-flash")
        contents = fake.kwargs["contents"]
        self.assertEqual(contents[0], "describe")
        self.assertEqual(len(contents), 2)
        self.assertEqual(contents[1].inline_data.data, _IMAGE.data)
        self.assertEqual(contents[1].inline_data.mime_type, "image/png")

        config = fake.kwargs["config"]
        self.assertEqual(config.system_instruction, "be brief")
        self.assertEqual(config.response_mime_type, "application/json")
        self.assertIsNotNone(config.tools[0].google_search)

    def test_empty_output_raises(self) -> None:
        client = GeminiGenerativeClient(api_key="g", model="m", client=_FakeGenai(""))  # type: ignore[arg-type]
        with self.assertRaises(GenerativeClientError):
            client.complete("p", [], "s")


class TestBuildGenerativeClient(unittest.TestCase):
    def test_selects_backend_by_provider(self) -> None:
        openai_client = build_generative_client(AppConfig("openai", "sk-test", "gpt-5-mini", Path("data")))
        self.assertIsInstance(openai_client, OpenAIGenerativeClient)
        gemini_client = build_generative_client(AppConfig("gemini", "g-test", "gemini-2.5-flash", Path("data")))
        self.assertIsInstance(gemini_client, GeminiGenerativeClient)

    def test_unknown_provider(self) -> None:
        with self.assertRaises(ValueError):
            build_generative_client(AppConfig("other", "k", "m", Path("data")))


if __name__ == "__main__":
    unittest.main()
