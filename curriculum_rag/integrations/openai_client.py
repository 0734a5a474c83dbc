"""
OpenAI-backed embedding and completion providers.
"""

from typing import Dict, List, Optional

import openai
from openai import AsyncOpenAI
import structlog

from ..config.settings import Settings
from ..rag.embedder import ProviderEmbedding
from ..rag.exceptions import ContextTooLong, ProviderTimeout, ProviderUnavailable, RateLimited

logger = structlog.get_logger(__name__)


def _translate_error(error: openai.OpenAIError) -> Exception:
    """Map an OpenAI SDK error onto the provider error taxonomy"""
    if isinstance(error, openai.RateLimitError):
        return RateLimited(str(error))
    if isinstance(error, openai.APITimeoutError):
        return ProviderTimeout(str(error))
    if isinstance(error, openai.BadRequestError):
        code = getattr(error, "code", None)
        if code == "context_length_exceeded" or "context_length_exceeded" in str(error):
            return ContextTooLong(str(error))
    return ProviderUnavailable(str(error))


def _build_client(settings: Settings) -> AsyncOpenAI:
    return AsyncOpenAI(
        api_key=settings.openai_api_key or None,
        base_url=settings.openai_base_url or None,
        timeout=settings.openai_timeout,
        max_retries=0,
    )


class OpenAIEmbeddingProvider:
    """Embedding provider using the OpenAI embeddings endpoint."""

    def __init__(self, client: AsyncOpenAI, model: str = "text-embedding-3-small",
                 dimensions: Optional[int] = None):
        self.client = client
        self.model = model
        self.dimensions = dimensions

    @classmethod
    def from_settings(cls, settings: Settings) -> 'OpenAIEmbeddingProvider':
        return cls(_build_client(settings), settings.openai_embedding_model,
                   settings.embedding_dimensions)

    async def embed(self, texts: List[str]) -> List[ProviderEmbedding]:
        kwargs = {"input": texts, "model": self.model}
        if self.dimensions:
            kwargs["dimensions"] = self.dimensions

        try:
            response = await self.client.embeddings.create(**kwargs)
        except openai.OpenAIError as e:
            raise _translate_error(e) from e

        # usage is reported per request; spread it across the inputs
        total_tokens = response.usage.total_tokens if response.usage else 0
        per_text = total_tokens // len(texts) if texts else 0

        ordered = sorted(response.data, key=lambda item: item.index)
        logger.debug("Generated embeddings", count=len(ordered), model=self.model, tokens=total_tokens)
        return [ProviderEmbedding(vector=item.embedding, token_count=per_text) for item in ordered]


class OpenAICompletionProvider:
    """Chat completion provider using the OpenAI chat completions endpoint."""

    def __init__(self, client: AsyncOpenAI, model: str = "gpt-4o-mini"):
        self.client = client
        self.model = model

    @classmethod
    def from_settings(cls, settings: Settings) -> 'OpenAICompletionProvider':
        return cls(_build_client(settings), settings.openai_model)

    async def complete(self, messages: List[Dict[str, str]], *, temperature: float,
                       max_tokens: int) -> str:
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=messages,
                temperature=temperature,
                max_tokens=max_tokens,
            )
        except openai.OpenAIError as e:
            raise _translate_error(e) from e

        content = response.choices[0].message.content or ""
        logger.info("Generated completion", model=self.model,
                    prompt_tokens=response.usage.prompt_tokens if response.usage else None,
                    completion_tokens=response.usage.completion_tokens if response.usage else None)
        return content
