"""LLM backends: Gemini (google-genai), OpenAI (Responses API) and Ollama"""
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, Type

import ollama
from google import genai
from openai import AsyncOpenAI

from .config import Settings
from .errors import ConfigurationError, ModelCallError
from .pdf_parser import DocumentContent

logger = logging.getLogger(__name__)


def _status_of(error: Exception) -> Optional[int]:
    """HTTP status carried by SDK errors (``status_code`` or ``code``)"""
    for attr in ("status_code", "code"):
        value = getattr(error, attr, None)
        if isinstance(value, int):
            return value
    return None


class ModelBackend(ABC):
    """One remote text-generation service.

    ``generate`` returns the SDK's native response object untouched; turning
    it into text is the job of ``responses.resolve_response_text``.
    """

    name = "base"
    accepts_images = False

    def __init__(self, settings: Settings):
        self.settings = settings

    @property
    @abstractmethod
    def model(self) -> str:
        ...

    def check_configuration(self) -> None:
        """Raise ConfigurationError when credentials are missing"""

    @abstractmethod
    async def _generate(self, prompt: str, document: DocumentContent) -> Any:
        ...

    async def generate(self, prompt: str, document: DocumentContent) -> Any:
        self.check_configuration()
        logger.info("Calling %s model %s", self.name, self.model)
        try:
            return await self._generate(prompt, document)
        except Exception as e:
            status = _status_of(e)
            detail = f" (status {status})" if status is not None else ""
            raise ModelCallError(f"{self.name} call failed{detail}: {e}", status_code=status) from e


class GeminiBackend(ModelBackend):
    name = "gemini"

    @property
    def model(self) -> str:
        return self.settings.gemini_model

    def check_configuration(self) -> None:
        if not self.settings.gemini_api_key:
            raise ConfigurationError("GENAI_API_KEY environment variable not set")

    async def _generate(self, prompt: str, document: DocumentContent) -> Any:
        client = genai.Client(api_key=self.settings.gemini_api_key)
        return await client.aio.models.generate_content(model=self.model, contents=prompt)


class OpenAIBackend(ModelBackend):
    name = "openai"

    @property
    def model(self) -> str:
        return self.settings.openai_model

    def check_configuration(self) -> None:
        if not self.settings.openai_api_key:
            raise ConfigurationError("OPENAI_API_KEY environment variable not set")

    async def _generate(self, prompt: str, document: DocumentContent) -> Any:
        async with AsyncOpenAI(api_key=self.settings.openai_api_key) as client:
            return await client.responses.create(model=self.model, input=prompt)


class OllamaBackend(ModelBackend):
    """Self-hosted vision model; page images go in the ``images`` field"""

    name = "ollama"
    accepts_images = True

    @property
    def model(self) -> str:
        return self.settings.ollama_model

    async def _generate(self, prompt: str, document: DocumentContent) -> Any:
        message: Dict[str, Any] = {"role": "user", "content": prompt}
        if document.images:
            message["images"] = document.images
        async with ollama.AsyncClient(host=self.settings.ollama_host) as client:
            return await client.chat(model=self.model, messages=[message])


BACKENDS: Dict[str, Type[ModelBackend]] = {
    "gemini": GeminiBackend,
    "openai": OpenAIBackend,
    "ollama": OllamaBackend,
}


def create_model_backend(settings: Settings) -> ModelBackend:
    """Instantiate the backend named by ``settings.llm_provider``"""
    try:
        backend_class = BACKENDS[settings.llm_provider]
    except KeyError as e:
        available = ", ".join(BACKENDS)
        raise ConfigurationError(
            f"Unknown LLM provider: '{settings.llm_provider}'. Available providers: {available}"
        ) from e
    return backend_class(settings)
