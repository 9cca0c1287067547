"""
Nexus Scheduling Agent - OpenAI-Compatible AI Client
Chat completions and embeddings against OpenAI or any OpenAI-compatible endpoint.
"""

import logging
from typing import List, Dict, Optional

from openai import AsyncOpenAI, APIConnectionError, APIStatusError, APITimeoutError, RateLimitError

from config import get_ai_config, AIConfig
from errors import ProviderConnectionError, ProviderError
from retry import retry_async

logger = logging.getLogger(__name__)

TRANSIENT_ERRORS = (RateLimitError, APIConnectionError, APITimeoutError)


class AIClient:
    """
    OpenAI-compatible AI client.

    Implements both the completion and the embedding service. Rate limits and
    connection errors are retried with exponential backoff; other API errors
    (invalid model, auth) are raised at once as ProviderError.

    Usage:
        client = AIClient()  # Uses config from .env
        reply = await client.complete(system_prompt, history, "Move my gym session")

        # With custom config
        client = AIClient(base_url="http://localhost:11434/v1", model="llama3")
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        config: Optional[AIConfig] = None
    ):
        cfg = config or get_ai_config()

        self.base_url = base_url or cfg.api_base_url
        self.api_key = api_key or cfg.api_key
        self.model = model or cfg.model_name
        self.embedding_model = cfg.embedding_model
        self.default_temperature = cfg.temperature
        self.default_max_tokens = cfg.max_tokens

        # Retries are handled by retry_async so the policy comes from config
        self._client = AsyncOpenAI(
            base_url=self.base_url,
            api_key=self.api_key or "dummy-key",  # Some local LLMs don't require keys
            timeout=cfg.timeout_seconds,
            max_retries=0,
        )
        retry = retry_async(max_retries=cfg.max_retries, delay=cfg.retry_delay, retry_on=TRANSIENT_ERRORS)
        self._create_completion = retry(self._client.chat.completions.create)
        self._create_embedding = retry(self._client.embeddings.create)

        logger.info(f"AIClient initialized: base_url={self.base_url}, model={self.model}")

    async def complete(
        self,
        system_prompt: str,
        history: List[Dict[str, str]],
        user_message: str,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> str:
        """
        Send a chat completion request.

        Args:
            system_prompt: Instructions and grounding context
            history: Earlier turns as role/content dicts
            user_message: The new user turn
        """
        messages = [{"role": "system", "content": system_prompt}]
        messages.extend(history)
        messages.append({"role": "user", "content": user_message})

        try:
            response = await self._create_completion(
                model=self.model,
                messages=messages,
                temperature=self.default_temperature if temperature is None else temperature,
                max_tokens=max_tokens or self.default_max_tokens,
            )
        except TRANSIENT_ERRORS as e:
            logger.error(f"Chat completion failed: {e}")
            raise ProviderConnectionError("the AI service", str(e)) from e
        except APIStatusError as e:
            logger.error(f"Chat completion rejected: {e}")
            raise ProviderError("AI service", e.status_code, e.message) from e

        content = response.choices[0].message.content or ""
        if response.usage:
            logger.debug(f"Completion used {response.usage.total_tokens} tokens")
        return content.strip()

    async def embed(self, text: str) -> List[float]:
        """Embedding vector for ``text`` (dimension fixed by the model)."""
        try:
            response = await self._create_embedding(model=self.embedding_model, input=text)
        except TRANSIENT_ERRORS as e:
            logger.error(f"Embedding request failed: {e}")
            raise ProviderConnectionError("the embedding service", str(e)) from e
        except APIStatusError as e:
            logger.error(f"Embedding request rejected: {e}")
            raise ProviderError("Embedding service", e.status_code, e.message) from e
        return list(response.data[0].embedding)

    async def test_connection(self) -> Dict[str, object]:
        """Test the connection to the AI provider."""
        try:
            reply = await self.complete("Reply with the single word OK.", [], "ping", max_tokens=5)
            return {"success": True, "model": self.model, "response": reply}
        except (ProviderConnectionError, ProviderError) as e:
            return {"success": False, "model": self.model, "error": str(e)}

    async def close(self) -> None:
        await self._client.close()
