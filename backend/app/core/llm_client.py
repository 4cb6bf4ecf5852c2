"""
Text model client used by the route classifier.

Speaks either the Ollama generate API or an OpenAI-compatible chat
completions API, selected by `classifier_provider`.
"""
from typing import List, Dict, Optional

from app.core.base_client import BaseAIClient
from app.core.logging import get_logger

logger = get_logger("core.llm_client")

PROVIDERS = ("ollama", "openai")


class LLMClient(BaseAIClient):
    """Chat-style access to the configured classifier model."""

    def __init__(self, provider: Optional[str] = None, **kwargs):
        super().__init__(**kwargs)
        self.provider = (provider or self.settings.classifier_provider).lower()
        if self.provider not in PROVIDERS:
            raise ValueError(f"Unsupported classifier provider: {self.provider}")

    async def chat(
        self,
        messages: List[Dict[str, str]],
        temperature: float = 0.1,
        system: Optional[str] = None
    ) -> str:
        """
        Send the conversation and return the model's reply text.

        Raises:
            httpx.HTTPError: On transport failures.
            KeyError, IndexError: If the reply lacks the expected fields.
        """
        if self.provider == "openai":
            return await self._chat_openai(messages, temperature, system)
        return await self._chat_ollama(messages, temperature, system)

    async def _chat_ollama(self, messages, temperature, system) -> str:
        # The generate endpoint takes one prompt, so flatten the turns
        lines = []
        for msg in messages:
            speaker = "Assistant" if msg.get("role") == "assistant" else "User"
            lines.append(f"{speaker}: {msg.get('content', '')}")

        payload = {
            "model": self.model,
            "prompt": "\n\n".join(lines),
            "stream": False,
            "format": "json",
            "options": {"temperature": temperature},
        }
        if system:
            payload["system"] = system

        body = await self._make_request("/api/generate", payload, log_prefix="LLM Client")
        return body["response"]

    async def _chat_openai(self, messages, temperature, system) -> str:
        turns = [{"role": "system", "content": system}] if system else []
        turns.extend({"role": m.get("role", "user"), "content": m.get("content", "")} for m in messages)

        payload = {
            "model": self.model,
            "messages": turns,
            "temperature": temperature,
            "response_format": {"type": "json_object"},
        }

        body = await self._make_request("/v1/chat/completions", payload, log_prefix="LLM Client")
        return body["choices"][0]["message"]["content"]


# Global instance
_llm_client: Optional[LLMClient] = None


def get_llm_client() -> LLMClient:
    """Get or create global LLM client instance."""
    global _llm_client
    if _llm_client is None:
        _llm_client = LLMClient()
    return _llm_client
