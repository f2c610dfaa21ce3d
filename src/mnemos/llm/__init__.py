"""LLM client interfaces and provider implementations."""

from mnemos.config import LLMConfig
from mnemos.llm.chat import ChatResponse, Message
from mnemos.llm.client import ChatLLMClient
from mnemos.llm.providers import AnthropicBackend, ChatBackend, OllamaBackend, OpenAIBackend


def create_chat_backend(config: LLMConfig | None = None) -> ChatBackend:
    cfg = config or LLMConfig()
    kwargs = {
        "model": cfg.model,
        "base_url": cfg.base_url,
        "timeout": cfg.timeout,
        "temperature": cfg.temperature,
        "max_tokens": cfg.max_tokens,
    }
    p = (cfg.provider or "openai").strip().lower()
    if p in {"openai", "default"}:
        return OpenAIBackend(**kwargs)
    if p in {"anthropic"}:
        return AnthropicBackend(**kwargs)
    if p in {"ollama", "local"}:
        return OllamaBackend(**kwargs)
    raise ValueError(f"Unsupported provider: {cfg.provider}")


__all__ = [
    "ChatBackend",
    "ChatLLMClient",
    "OpenAIBackend",
    "AnthropicBackend",
    "OllamaBackend",
    "Message",
    "ChatResponse",
    "create_chat_backend",
]
