from typing import Optional

from .base import InferenceService, LLMError
from .ollama import OllamaInferenceService
from .lm_studio import LMStudioInferenceService


def create_inference_service(config) -> Optional[InferenceService]:
    """Build the inference backend named by ``config.PROVIDER``.

    Returns None when the provider is ``"none"`` (retrieval only).
    """
    provider = config.PROVIDER
    if provider == "none":
        return None
    if provider == "ollama":
        return OllamaInferenceService(config.OLLAMA_BASE_URL, config.MODEL,
                                      timeout=config.LLM_TIMEOUT)
    if provider in ("lm_studio", "lmstudio"):
        return LMStudioInferenceService(config.LM_STUDIO_BASE_URL, config.MODEL,
                                        timeout=config.LLM_TIMEOUT)
    raise ValueError(f"Unknown provider: {provider!r} (expected ollama, lm_studio or none)")
