"""LLM provider adapters."""

from ragindex.providers.llm.ollama_provider import OllamaLLMProvider
from ragindex.providers.llm.openai_provider import OpenAILLMProvider

__all__ = ["OllamaLLMProvider", "OpenAILLMProvider"]
