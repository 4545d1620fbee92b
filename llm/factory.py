"""LLM client factory."""

from enum import Enum
from typing import Optional

from .base_client import BaseLLMClient
from .openai_client import OpenAIClient
from .anthropic_client import AnthropicClient
from .ollama_client import OllamaClient


class LLMProvider(str, Enum):
    """Supported LLM providers."""
    OLLAMA = "ollama"
    OPENAI = "openai"
    ANTHROPIC = "anthropic"


def create_llm_client(
    provider: LLMProvider,
    api_key: Optional[str] = None,
    model: Optional[str] = None,
    base_url: Optional[str] = None,
    timeout: int = 300,
    keep_alive: Optional[str] = None
) -> BaseLLMClient:
    """
    Create an LLM client for the specified provider.

    Args:
        provider: LLM provider (ollama, openai or anthropic)
        api_key: API key for hosted providers
        model: Optional model override
        base_url: Endpoint for Ollama or an OpenAI-compatible server
        timeout: Request timeout in seconds
        keep_alive: Ollama keep-alive duration

    Returns:
        Configured LLM client

    Raises:
        ValueError: If provider is not supported
    """
    if provider == LLMProvider.OLLAMA:
        return OllamaClient(model=model, base_url=base_url, timeout=timeout, keep_alive=keep_alive)
    elif provider == LLMProvider.OPENAI:
        return OpenAIClient(api_key=api_key, model=model, base_url=base_url, timeout=timeout)
    elif provider == LLMProvider.ANTHROPIC:
        return AnthropicClient(api_key=api_key, model=model, timeout=timeout)
    else:
        raise ValueError(f"Unsupported LLM provider: {provider}")
