"""Chat providers behind the irregularity classifier.

A provider sends one system/user prompt pair and returns the JSON object
found in the reply, as text. SDKs are imported when a provider is built, so
the service runs without them while the classifier is switched off.
"""
from __future__ import annotations
import os
import re
from typing import Dict, Optional, Type

_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


def extract_json(reply: Optional[str]) -> str:
    """Cut the outermost {...} out of a model reply, dropping code fences."""
    text = _FENCE.sub("", (reply or "").strip())
    start, end = text.find("{"), text.rfind("}")
    if start == -1 or end <= start:
        return text
    return text[start:end + 1]


class BaseLLMProvider:
    default_model = ""
    model_env = ""

    def __init__(self, model: Optional[str] = None, temperature: float = 0.0, max_tokens: int = 400):
        self.model = model or os.getenv(self.model_env) or self.default_model
        self.temperature = temperature
        self.max_tokens = max_tokens

    def complete(self, system: str, user: str) -> str:
        """Raw reply text for one exchange."""
        raise NotImplementedError

    def generate_json(self, system: str, user: str) -> str:
        return extract_json(self.complete(system, user))


class OpenAIProvider(BaseLLMProvider):
    default_model = "gpt-4o-mini"
    model_env = "OPENAI_MODEL"

    def __init__(self, model: Optional[str] = None, temperature: float = 0.0, max_tokens: int = 400):
        super().__init__(model, temperature, max_tokens)
        try:
            from openai import OpenAI  # type: ignore
        except ImportError as e:
            raise RuntimeError("OpenAIProvider needs the openai package: pip install 'spendguard[llm]'") from e
        self._client = OpenAI()

    def complete(self, system: str, user: str) -> str:
        resp = self._client.chat.completions.create(
            model=self.model,
            temperature=self.temperature,
            max_tokens=self.max_tokens,
            response_format={"type": "json_object"},
            messages=[
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
        )
        return resp.choices[0].message.content or ""


class AnthropicProvider(BaseLLMProvider):
    default_model = "claude-3-5-haiku-latest"
    model_env = "ANTHROPIC_MODEL"

    def __init__(self, model: Optional[str] = None, temperature: float = 0.0, max_tokens: int = 400):
        super().__init__(model, temperature, max_tokens)
        try:
            from anthropic import Anthropic  # type: ignore
        except ImportError as e:
            raise RuntimeError("AnthropicProvider needs the anthropic package: pip install 'spendguard[llm]'") from e
        self._client = Anthropic()

    def complete(self, system: str, user: str) -> str:
        resp = self._client.messages.create(
            model=self.model,
            max_tokens=self.max_tokens,
            temperature=self.temperature,
            system=system,
            messages=[{"role": "user", "content": user}],
        )
        return "".join(block.text for block in resp.content if block.type == "text")


PROVIDERS: Dict[str, Type[BaseLLMProvider]] = {
    "gpt": OpenAIProvider,
    "openai": OpenAIProvider,
    "claude": AnthropicProvider,
    "anthropic": AnthropicProvider,
}


def make_provider(provider_name: str = "gpt", model: Optional[str] = None,
                  temperature: float = 0.0, max_tokens: int = 400) -> BaseLLMProvider:
    provider_class = PROVIDERS.get((provider_name or "gpt").lower())
    if provider_class is None:
        raise ValueError(f"Unknown provider: {provider_name}")
    return provider_class(model=model, temperature=temperature, max_tokens=max_tokens)
