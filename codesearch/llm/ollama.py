import json
import logging
import threading
from typing import Optional

import requests

from .base import InferenceService, TextCallback

logger = logging.getLogger(__name__)


class OllamaInferenceService(InferenceService):
    """Streams completions from a local Ollama server (``/api/generate``)."""

    def __init__(self, base_url: str, model: str, **kwargs):
        super().__init__(**kwargs)
        # Accept either the server root or the full generate endpoint
        if "/api/" in base_url:
            self._api_root = base_url.rsplit("/api/", 1)[0]
        else:
            self._api_root = base_url.rstrip("/")
        self.model = model

    @property
    def display_name(self) -> str:
        return f"Ollama ({self.model})"

    @property
    def generate_url(self) -> str:
        return f"{self._api_root}/api/generate"

    def is_ready(self) -> bool:
        try:
            response = requests.get(f"{self._api_root}/api/tags", timeout=2)
            return response.status_code == 200
        except requests.exceptions.RequestException:
            return False

    def _stream(self, prompt: str, on_text: TextCallback,
                cancel_event: Optional[threading.Event]) -> str:
        est_tokens = int(len(prompt.split()) * 1.3)
        logger.debug("[Ollama] Streaming ~%d est. tokens", est_tokens)

        payload = {
            "model": self.model,
            "prompt": prompt,
            "stream": True,
        }
        content_parts: list[str] = []

        response = requests.post(self.generate_url, json=payload,
                                 stream=True, timeout=(10, self.timeout))
        try:
            response.raise_for_status()
            for line in response.iter_lines(decode_unicode=True):
                if cancel_event is not None and cancel_event.is_set():
                    logger.info("[Ollama] Generation cancelled")
                    break
                if not line:
                    continue
                try:
                    chunk = json.loads(line)
                except json.JSONDecodeError:
                    continue
                token = chunk.get("response", "")
                if token:
                    content_parts.append(token)
                    on_text(token)
                if chunk.get("done", False):
                    logger.debug("[Ollama] Usage: prompt=%s completion=%s",
                                 chunk.get("prompt_eval_count"), chunk.get("eval_count"))
                    break
        finally:
            response.close()

        result = "".join(content_parts)
        logger.debug("[Ollama] Response:\n%s", result)
        return result
