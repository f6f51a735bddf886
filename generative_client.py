from __future__ import annotations

import base64
import logging
import time
from typing import Protocol, Sequence

from google import genai
from google.genai import types
from openai import OpenAI

from app_config import PROVIDER_GEMINI, PROVIDER_OPENAI, AppConfig
from image_inputs import InlineImage

logger = logging.getLogger(__name__)


class GenerativeClientError(RuntimeError):
    pass


class GenerativeClient(Protocol):
    """
    One request/response exchange with a hosted model.

    `web_search` lets the model ground prices on live results; `json_mode` asks the backend for
    strict JSON output. Implementations return the model's text and let upstream errors propagate.
    """

    def complete(
        self,
        prompt: str,
        images: Sequence[InlineImage],
        system_instruction: str,
        *,
        web_search: bool = False,
        json_mode: bool = False,
    ) -> str: ...


def _data_url(image: InlineImage) -> str:
    return f"data:{image.mime_type};base64,{base64.b64encode(image.data).decode('ascii')}"


class OpenAIGenerativeClient:
    def __init__(self, *, api_key: str, model: str, client: OpenAI | None = None) -> None:
        self.model = model
        self._client = client or OpenAI(api_key=api_key)

    def complete(
        self,
        prompt: str,
        images: Sequence[InlineImage],
        system_instruction: str,
        *,
        web_search: bool = False,
        json_mode: bool = False,
    ) -> str:
        content: list[dict[str, str]] = [{"type": "input_text", "text": prompt}]
        content.extend({"type": "input_image", "image_url": _data_url(img)} for img in images)

        kwargs: dict[str, object] = {
            "model": self.model,
            "instructions": system_instruction,
            "input": [{"role": "user", "content": content}],
        }
        if web_search:
            kwargs["tools"] = [{"type": "web_search"}]
        if json_mode:
            kwargs["text"] = {"format": {"type": "json_object"}}

        started = time.monotonic()
        resp = self._client.responses.create(**kwargs)
        text = (getattr(resp, "output_text", "") or "").strip()
        logger.info(
            "openai call model=%s images=%d web_search=%s json_mode=%s took=%.1fs chars=%d",
            self.model,
            len(images),
            web_search,
            json_mode,
            time.monotonic() - started,
            len(text),
        )
        if not text:
            raise GenerativeClientError(f"{self.model} returned an empty response.")
        return text


class GeminiGenerativeClient:
    def __init__(self, *, api_key: str, model: str, client: genai.Client | None = None) -> None:
        self.model = model
        self._client = client or genai.Client(api_key=api_key)

    def complete(
        self,
        prompt: str,
        images: Sequence[InlineImage],
        system_instruction: str,
        *,
        web_search: bool = False,
        json_mode: bool = False,
    ) -> str:
        contents: list[object] = [prompt]
        contents.extend(types.Part.from_bytes(data=img.data, mime_type=img.mime_type) for img in images)

        config = types.GenerateContentConfig(system_instruction=system_instruction)
        if web_search:
            config.tools = [types.Tool(google_search=types.GoogleSearch())]
        if json_mode:
            config.response_mime_type = "application/json"

        started = time.monotonic()
        response = self._client.models.generate_content(model=self.model, contents=contents, config=config)
        text = (getattr(response, "text", "") or "").strip()
        logger.info(
            "gemini call model=%s images=%d web_search=%s json_mode=%s took=%.1fs chars=%d",
            self.model,
            len(images),
            web_search,
            json_mode,
            time.monotonic() - started,
            len(text),
        )
        if not text:
            raise GenerativeClientError(f"{self.model} returned an empty response.")
        return text


def build_generative_client(config: AppConfig) -> GenerativeClient:
    if config.provider == PROVIDER_GEMINI:
        return GeminiGenerativeClient(api_key=config.api_key, model=config.model)
    if config.provider == PROVIDER_OPENAI:
        return OpenAIGenerativeClient(api_key=config.api_key, model=config.model)
    raise ValueError(f"unknown provider: {config.provider!r}")
