"""Ollama (local model server) client implementation."""

import logging
from typing import Optional, List

import requests

from .base_client import BaseLLMClient, Message, LLMResponse

logger = logging.getLogger(__name__)


class OllamaClient(BaseLLMClient):
    """Client for the Ollama ``/api/chat`` endpoint."""

    DEFAULT_MODEL = "qwen3:8b"
    DEFAULT_BASE_URL = "http://localhost:11434"

    def __init__(
        self,
        model: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: int = 300,
        keep_alive: Optional[str] = None
    ):
        """
        Initialize Ollama client.

        Args:
            model: Model tag (default: qwen3:8b)
            base_url: Server URL (default: http://localhost:11434)
            timeout: Request timeout in seconds
            keep_alive: How long the server keeps the model loaded, e.g. "5m"
        """
        self.model = model or self.DEFAULT_MODEL
        self.base_url = (base_url or self.DEFAULT_BASE_URL).rstrip('/')
        self.timeout = timeout
        self.keep_alive = keep_alive

    def chat(
        self,
        messages: List[Message],
        temperature: float = 0.7,
        max_tokens: int = 4000
    ) -> LLMResponse:
        """Send a non-streaming chat request to Ollama."""
        payload = {
            "model": self.model,
            "messages": [{"role": msg.role, "content": msg.content} for msg in messages],
            "stream": False,
            "options": {
                "temperature": temperature,
                "num_predict": max_tokens,
            },
        }
        if self.keep_alive:
            payload["keep_alive"] = self.keep_alive

        url = f"{self.base_url}/api/chat"
        try:
            response = requests.post(url, json=payload, timeout=self.timeout)
        except requests.exceptions.Timeout:
            logger.error(f"Ollama request timed out after {self.timeout}s")
            raise
        except requests.exceptions.ConnectionError as e:
            logger.error(f"Cannot reach Ollama at {self.base_url}: {e}")
            raise

        if response.status_code != 200:
            logger.error(f"Ollama API error: {response.status_code} {response.text}")
            raise RuntimeError(f"Ollama returned status {response.status_code}: {response.text}")

        data = response.json()
        prompt_tokens = int(data.get("prompt_eval_count") or 0)
        completion_tokens = int(data.get("eval_count") or 0)

        return LLMResponse(
            content=(data.get("message") or {}).get("content", ""),
            usage={
                "prompt_tokens": prompt_tokens,
                "completion_tokens": completion_tokens,
                "total_tokens": prompt_tokens + completion_tokens,
            },
            finish_reason=data.get("done_reason"),
            # Ollama reports durations in nanoseconds
            total_duration_ms=(data.get("total_duration") or 0) / 1e6,
            load_duration_ms=(data.get("load_duration") or 0) / 1e6,
        )

    def get_provider_name(self) -> str:
        """Get the provider name."""
        return "ollama"

    def get_model_name(self) -> str:
        """Get the model name."""
        return self.model
