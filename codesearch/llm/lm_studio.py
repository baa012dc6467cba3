import json
import logging
import threading
from typing import Optional

import requests

from .base import InferenceService, TextCallback

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = "You are a helpful coding assistant."


class LMStudioInferenceService(InferenceService):
    """Streams completions from an OpenAI-compatible server such as LM Studio."""

    def __init__(self, base_url: str, model: str, **kwargs):
        super().__init__(**kwargs)
        self.base_url = base_url.rstrip("/")
        self.model = model

    @property
    def display_name(self) -> str:
        return f"LM Studio ({self.model})"

    def is_ready(self) -> bool:
        try:
            response = requests.get(f"{self.base_url}/models", timeout=2)
            return response.status_code == 200
        except requests.exceptions.RequestException:
            return False

    def _stream(self, prompt: str, on_text: TextCallback,
                cancel_event: Optional[threading.Event]) -> str:
        logger.debug("[LM Studio] Prompt:\n%s", prompt)

        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            "temperature": 0.2,
            "stream": True,
        }
        headers = {"Content-Type": "application/json"}
        content_parts: list[str] = []

        response = requests.post(f"{self.base_url}/chat/completions", headers=headers,
                                 json=payload, stream=True, timeout=(10, self.timeout))
        try:
            response.raise_for_status()
            for line in response.iter_lines(decode_unicode=True):
                if cancel_event is not None and cancel_event.is_set():
                    logger.info("[LM Studio] Generation cancelled")
                    break
                if not line or not line.startswith("data:"):
                    continue
                data = line[len("data:"):].strip()
                if data == "[DONE]":
                    break
                try:
                    chunk = json.loads(data)
                    delta = chunk["choices"][0].get("delta", {})
                except (json.JSONDecodeError, KeyError, IndexError):
                    continue
                token = delta.get("content") or ""
                if token:
                    content_parts.append(token)
                    on_text(token)
        finally:
            response.close()

        result = "".join(content_parts)
        logger.debug("[LM Studio] Response:\n%s", result)
        return result
