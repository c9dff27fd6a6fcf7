"""LLM completion client."""

import logging
import time
from pathlib import Path
from typing import Any, Dict, Optional

import openai
from langchain_core.globals import set_llm_cache
from langchain_community.cache import SQLiteCache
from langchain_community.callbacks.manager import get_openai_callback
from langchain_openai import ChatOpenAI
from pydantic import BaseModel

from .config import LLMConfig
from .errors import CompletionError, UnexpectedShapeError
from .prompts import Prompt

logger = logging.getLogger(__name__)


class Completion(BaseModel):
    """The top completion with usage metadata."""
    content: str
    model: str
    tokens_used: int = 0
    cost_estimate: float = 0.0
    response_time: float = 0.0


class CompletionClient:
    """Sends a prompt to the completion endpoint and returns the generated text.

    Calls are not retried here; a failed run is retried by the caller.
    """

    def __init__(self, config: LLMConfig, llm: Optional[Any] = None):
        self.config = config
        self.total_tokens = 0
        self.total_cost = 0.0
        self.api_calls = 0

        if config.cache_path:
            Path(config.cache_path).parent.mkdir(parents=True, exist_ok=True)
            set_llm_cache(SQLiteCache(database_path=config.cache_path))

        self.llm = llm if llm is not None else self._initialize_llm()

    def _initialize_llm(self):
        """Initialize the chat model."""
        return ChatOpenAI(
            model=self.config.model,
            temperature=self.config.temperature,
            max_tokens=self.config.max_tokens,
            api_key=self.config.api_key,
            base_url=self.config.base_url,
            timeout=self.config.timeout,
            max_retries=0,
        )

    def complete(self, prompt: Prompt) -> Completion:
        """Return the full text of the top completion for ``prompt``.

        Raises:
            CompletionError: on a non-success upstream status or transport failure.
            UnexpectedShapeError: if the response envelope carries no usable text.
        """
        start_time = time.time()
        try:
            with get_openai_callback() as cb:
                response = self.llm.invoke(prompt.to_messages())
                tokens_used = cb.total_tokens
                cost = cb.total_cost
        except openai.APIStatusError as e:
            logger.error(f"Completion endpoint returned HTTP {e.status_code}: {e.message}")
            raise CompletionError(
                f"AI processing failed (HTTP {e.status_code})",
                status=e.status_code,
                detail=e.message,
            ) from e
        except openai.APIError as e:
            logger.error(f"Completion request failed: {e}")
            raise CompletionError("AI processing failed", detail=str(e)) from e

        content = getattr(response, "content", None)
        if not isinstance(content, str):
            raise UnexpectedShapeError(
                "AI response had no text content",
                detail=f"content type {type(content).__name__}",
            )
        if not content.strip():
            raise UnexpectedShapeError("AI response was empty")

        self.api_calls += 1
        self.total_tokens += tokens_used
        self.total_cost += cost

        response_time = time.time() - start_time
        logger.info(f"Completion received: {len(content)} chars, {tokens_used} tokens, {response_time:.1f}s")

        return Completion(
            content=content,
            model=self.config.model,
            tokens_used=tokens_used,
            cost_estimate=cost,
            response_time=response_time,
        )

    def get_stats(self) -> Dict[str, Any]:
        """Get usage statistics."""
        return {
            "total_tokens": self.total_tokens,
            "total_cost": self.total_cost,
            "api_calls": self.api_calls,
        }
