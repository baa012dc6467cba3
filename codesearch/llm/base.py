import logging
import random
import threading
import time
from abc import ABC, abstractmethod
from typing import Callable, Optional

logger = logging.getLogger(__name__)

TextCallback = Callable[[str], None]


class LLMError(Exception):
    """Raised when inference fails after all retries."""


class InferenceService(ABC):
    """Streaming text-generation backend used by the retrieval pipeline."""

    def __init__(self, max_retries: int = 3, retry_delay: float = 2.0,
                 timeout: float = 120.0):
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.timeout = timeout

    @property
    @abstractmethod
    def display_name(self) -> str:
        """Human-readable backend name, e.g. ``"Ollama (llama3)"``."""

    @abstractmethod
    def is_ready(self) -> bool:
        """Return True if the backend answers a short health probe."""

    # ── Public entry point ──

    def start_inference(self, prompt: str,
                        on_text_chunk: Optional[TextCallback] = None,
                        cancel_event: Optional[threading.Event] = None) -> str:
        """Generate a completion for *prompt*, streaming text as it arrives.

        Each streamed piece is passed to *on_text_chunk*.  Setting
        *cancel_event* stops reading the stream; the text received so far
        is returned.  Connection failures are retried with jittered
        exponential backoff until the first chunk has been relayed.

        Raises :class:`LLMError` when every attempt fails.
        """
        last_error: Exception | None = None

        for attempt in range(1, self.max_retries + 1):
            emitted: list[str] = []

            def _relay(text: str) -> None:
                emitted.append(text)
                if on_text_chunk is not None:
                    on_text_chunk(text)

            try:
                return self._stream(prompt, _relay, cancel_event)
            except LLMError:
                raise
            except Exception as e:
                last_error = e
                logger.warning("[%s] Error on attempt %d/%d: %s",
                               self.display_name, attempt, self.max_retries, e)
                if emitted:
                    # Text already reached the caller; a retry would repeat it.
                    break
                if cancel_event is not None and cancel_event.is_set():
                    break
                if attempt < self.max_retries:
                    wait = self.retry_delay * (2 ** (attempt - 1))
                    jitter = wait * 0.1 * random.random()
                    time.sleep(wait + jitter)

        raise LLMError(f"{self.display_name} inference failed: {last_error}")

    # ── Subclass hooks ──

    @abstractmethod
    def _stream(self, prompt: str, on_text: TextCallback,
                cancel_event: Optional[threading.Event]) -> str:
        """Run one streaming request; return the full generated text."""
