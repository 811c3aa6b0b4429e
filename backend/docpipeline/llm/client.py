"""
Chat LLM client used by the scoring engine.

Thin wrapper over a LangChain chat model: one system + one human message in,
plain text out. Every call is bounded by a wall-clock timeout and provider
exceptions are mapped onto LLMError / LLMCredentialsError / LLMQuotaError so
the scoring engine can decide which failures abort the pass.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable, Optional, Protocol

from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import HumanMessage, SystemMessage

from docpipeline.core.exceptions import (
    LLMCredentialsError,
    LLMError,
    LLMQuotaError,
    StageTimeoutError,
)

logger = logging.getLogger(__name__)


class LLMClient(Protocol):
    async def complete(self, system: str, prompt: str) -> str: ...


def classify_llm_error(exc: Exception) -> LLMError:
    if isinstance(exc, LLMError):
        return exc
    name = type(exc).__name__
    message = str(exc)
    lowered = message.lower()
    if name in ("AuthenticationError", "PermissionDeniedError") or "api key" in lowered:
        return LLMCredentialsError(message)
    if getattr(exc, "code", None) == "insufficient_quota" or "quota" in lowered:
        return LLMQuotaError(message)
    return LLMError(f"{name}: {message}")


class ChatModelClient:
    """
    Usage:
        llm  = ChatModelClient.from_settings(settings)
        text = await llm.complete(system_prompt, user_prompt)

    from_settings() defers building the chat model to the first completion,
    so a worker that only ingests never needs LLM credentials.
    """

    def __init__(
        self,
        model: Optional[BaseChatModel] = None,
        timeout: float = 45.0,
        model_factory: Optional[Callable[[], BaseChatModel]] = None,
    ) -> None:
        if model is None and model_factory is None:
            raise ValueError("ChatModelClient needs a model or a model_factory")
        self._model = model
        self._model_factory = model_factory
        self._timeout = timeout

    @classmethod
    def from_settings(cls, settings) -> "ChatModelClient":
        def _build() -> BaseChatModel:
            if not settings.openai_api_key:
                raise LLMCredentialsError("OPENAI_API_KEY is not set")

            from langchain_openai import ChatOpenAI
            return ChatOpenAI(
                model=settings.llm_model,
                api_key=settings.openai_api_key,
                temperature=settings.llm_temperature,
                max_tokens=settings.llm_max_tokens,
                max_retries=0,
            )

        return cls(timeout=settings.llm_timeout_seconds, model_factory=_build)

    def _get_model(self) -> BaseChatModel:
        if self._model is None:
            self._model = self._model_factory()
        return self._model

    async def complete(self, system: str, prompt: str) -> str:
        model = self._get_model()
        messages = [SystemMessage(content=system), HumanMessage(content=prompt)]
        t0 = time.monotonic()
        try:
            result = await asyncio.wait_for(model.ainvoke(messages), timeout=self._timeout)
        except asyncio.TimeoutError as exc:
            raise StageTimeoutError("llm completion", self._timeout) from exc
        except Exception as exc:
            raise classify_llm_error(exc) from exc

        logger.debug("LLM completion | latency_ms=%.0f", (time.monotonic() - t0) * 1000)
        content = result.content
        if isinstance(content, list):
            # Content blocks (multimodal responses): keep the text parts
            content = "".join(
                block.get("text", "") if isinstance(block, dict) else str(block)
                for block in content
            )
        return content
