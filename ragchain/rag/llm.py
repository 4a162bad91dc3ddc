from __future__ import annotations

"""Generator backends and the prompt-bound generation chain."""

from dataclasses import dataclass, field
import asyncio
import logging
from typing import Any, Protocol

import httpx

from ragchain.rag.errors import GenerationError
from ragchain.rag.prompts import PromptTemplate
from ragchain.rag.types import ChainValues

logger = logging.getLogger(__name__)


class Generator(Protocol):
    """Capability that turns a filled prompt into generated text."""

    async def generate(self, prompt: str) -> str:
        ...


async def _post_json(
    url: str,
    payload: dict[str, Any],
    *,
    timeout: float,
    headers: dict[str, str] | None = None,
    client: httpx.AsyncClient | None = None,
) -> dict[str, Any]:
    """POST a JSON payload and decode the JSON response."""
    owns_client = client is None
    if owns_client:
        client = httpx.AsyncClient(timeout=timeout)
    try:
        response = await client.post(url, json=payload, headers=headers)
        response.raise_for_status()
        data = response.json()
    except httpx.HTTPError as exc:
        raise GenerationError(str(exc)) from exc
    except ValueError as exc:
        raise GenerationError("LLM response is not valid JSON") from exc
    finally:
        if owns_client:
            await client.aclose()
    if not isinstance(data, dict):
        raise GenerationError("Invalid LLM response")
    return data


@dataclass(frozen=True)
class OllamaGenerator:
    """Generator backed by the Ollama chat API."""
    base_url: str
    model: str
    temperature: float
    max_tokens: int
    timeout: float
    client: httpx.AsyncClient | None = field(default=None, compare=False, repr=False)

    async def generate(self, prompt: str) -> str:
        """Generate a completion using Ollama."""
        payload = {
            "model": self.model,
            "messages": [{"role": "user", "content": prompt}],
            "stream": False,
            "options": {
                "temperature": self.temperature,
                "num_predict": self.max_tokens,
            },
        }
        data = await _post_json(
            f"{self.base_url}/api/chat",
            payload,
            timeout=self.timeout,
            client=self.client,
        )
        message = data.get("message") or {}
        content = message.get("content")
        if not isinstance(content, str):
            raise GenerationError("Invalid LLM response")
        return content


@dataclass(frozen=True)
class OpenAIGenerator:
    """Generator backed by OpenAI-compatible chat completions."""
    api_key: str
    base_url: str
    model: str
    temperature: float
    max_tokens: int
    timeout: float
    client: httpx.AsyncClient | None = field(default=None, compare=False, repr=False)

    async def generate(self, prompt: str) -> str:
        """Generate a completion using OpenAI chat completions."""
        payload = {
            "model": self.model,
            "messages": [{"role": "user", "content": prompt}],
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
        }
        headers = {"Authorization": f"Bearer {self.api_key}"}
        data = await _post_json(
            f"{self.base_url}/chat/completions",
            payload,
            timeout=self.timeout,
            headers=headers,
            client=self.client,
        )
        choices = data.get("choices") or []
        if not choices:
            raise GenerationError("Invalid OpenAI response")
        message = choices[0].get("message") or {}
        content = message.get("content")
        if not isinstance(content, str):
            raise GenerationError("Invalid OpenAI response content")
        return content


@dataclass(frozen=True)
class GeminiGenerator:
    """Generator backed by Gemini generative models."""
    api_key: str
    model: str
    temperature: float
    max_tokens: int
    timeout: float

    async def generate(self, prompt: str) -> str:
        """Generate a completion using Gemini."""
        try:
            import google.generativeai as genai
        except ImportError as exc:
            raise GenerationError("google-generativeai is required for GeminiGenerator") from exc

        def _run() -> str:
            genai.configure(api_key=self.api_key)
            model = genai.GenerativeModel(self.model)
            response = model.generate_content(
                prompt,
                generation_config={
                    "temperature": self.temperature,
                    "max_output_tokens": self.max_tokens,
                },
            )
            return getattr(response, "text", "") or ""

        try:
            return await asyncio.wait_for(asyncio.to_thread(_run), timeout=self.timeout)
        except Exception as exc:
            raise GenerationError(str(exc)) from exc


def build_generator(
    provider: str,
    *,
    api_key_openai: str | None,
    api_key_gemini: str | None,
    openai_base_url: str,
    openai_model: str | None,
    gemini_model: str | None,
    ollama_base_url: str,
    ollama_model: str,
    temperature: float,
    max_tokens: int,
    timeout: float,
) -> OllamaGenerator | OpenAIGenerator | GeminiGenerator:
    """Factory for generators based on provider."""
    normalized = provider.strip().lower()
    if normalized in {"openai"}:
        if not api_key_openai:
            raise GenerationError("OPENAI_API_KEY is required for OpenAI provider")
        if not openai_model:
            raise GenerationError("OPENAI_CHAT_MODEL is required for OpenAI provider")
        return OpenAIGenerator(
            api_key=api_key_openai,
            base_url=openai_base_url.rstrip("/"),
            model=openai_model,
            temperature=temperature,
            max_tokens=max_tokens,
            timeout=timeout,
        )
    if normalized in {"gemini", "google"}:
        if not api_key_gemini:
            raise GenerationError("GEMINI_API_KEY is required for Gemini provider")
        if not gemini_model:
            raise GenerationError("GEMINI_CHAT_MODEL is required for Gemini provider")
        return GeminiGenerator(
            api_key=api_key_gemini,
            model=gemini_model,
            temperature=temperature,
            max_tokens=max_tokens,
            timeout=timeout,
        )
    return OllamaGenerator(
        base_url=ollama_base_url.rstrip("/"),
        model=ollama_model,
        temperature=temperature,
        max_tokens=max_tokens,
        timeout=timeout,
    )


@dataclass(frozen=True)
class LLMChain:
    """A prompt bound to a generator, producing a single named output."""
    prompt: PromptTemplate
    generator: Generator
    output_key: str = "text"

    @property
    def input_keys(self) -> list[str]:
        return list(self.prompt.input_variables)

    @property
    def output_keys(self) -> list[str]:
        return [self.output_key]

    async def call(self, values: ChainValues) -> ChainValues:
        """Format the prompt from ``values`` and run one generation call."""
        prompt_text = self.prompt.format(**values)
        try:
            text = await self.generator.generate(prompt_text)
        except GenerationError:
            logger.error(
                "generation_failed",
                extra={"prompt_chars": len(prompt_text)},
            )
            raise
        return {self.output_key: text}

    async def predict(self, **values: Any) -> str:
        """Run the chain and return its single output."""
        result = await self.call(values)
        return result[self.output_key]
