"""Abstract base class for LLM service providers.

Defines the contract for the text-generation backend used by semantic
chunking and keyword extraction.  Implementations may wrap OpenAI, any
OpenAI-compatible endpoint, or a local Ollama server; call sites never
import a vendor SDK.
"""

from __future__ import annotations

from abc import ABC, abstractmethod


# Concrete implementations: OpenAILLMProvider, OllamaLLMProvider
# Located in: ragindex/providers/llm/
class ILLMProvider(ABC):
    """Contract for LLM services used by the ingestion pipeline."""

    @abstractmethod
    async def generate(
        self,
        prompt: str,
        temperature: float = 0.3,
        max_tokens: int = 4000,
    ) -> str:
        """Generate a text completion for a single prompt.

        Parameters
        ----------
        prompt:
            The full instruction plus data to process.
        temperature:
            Sampling temperature (0.0 = deterministic, 1.0 = creative).
        max_tokens:
            Upper bound on the number of tokens in the response.

        Returns
        -------
        str
            The model's text response.

        Raises
        ------
        ragindex.utils.errors.RateLimitError
            If the provider rejected the call for exceeding its rate limit.
        ragindex.utils.errors.ExternalApiError
            If the API call fails or returns an empty response.
        ragindex.utils.errors.OperationTimeoutError
            If the call exceeded the configured timeout.
        """

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a human-readable identifier for this LLM provider.

        Example return values: ``"openai"``, ``"ollama"``.
        """
