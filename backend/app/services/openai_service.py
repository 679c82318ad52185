# backend/app/services/openai_service.py
"""
LLM collaborator used by the coaching engine.

The engine only needs one operation, a chat completion that returns text:

    complete_chat(system_prompt, user_prompt, temperature=..., max_tokens=...)

Every failure (missing API key, timeout, API error, empty answer) surfaces
as CollaboratorError so that callers can degrade to a neutral result.
"""
from __future__ import annotations

import asyncio
import time
from typing import Any, Optional

from openai import AsyncOpenAI

from app.config import settings
from app.services.errors import CollaboratorError
from app.utils.logger import logger


class OpenAIService:
    # Class-level async OpenAI client shared by all instances
    _async_client: Optional[Any] = None

    def __init__(self, model: Optional[str] = None, timeout_s: Optional[float] = None):
        self.model = (model or getattr(settings, "OPENAI_MODEL", None) or "gpt-4o-mini").strip()
        self.timeout_s = float(timeout_s or getattr(settings, "LLM_TIMEOUT_SECONDS", 12.0))

    @classmethod
    def get_async_client(cls) -> Optional[Any]:
        """Get or create async OpenAI client."""
        if cls._async_client is None:
            api_key = getattr(settings, "OPENAI_API_KEY", None)
            if api_key:
                cls._async_client = AsyncOpenAI(api_key=api_key)
        return cls._async_client

    @classmethod
    async def close_client(cls) -> None:
        if cls._async_client is not None:
            await cls._async_client.close()
            cls._async_client = None

    def is_configured(self) -> bool:
        return bool(getattr(settings, "OPENAI_API_KEY", None))

    async def complete_chat(
        self,
        system_prompt: str,
        user_prompt: str,
        temperature: float = 0.3,
        max_tokens: int = 300,
        timeout_s: Optional[float] = None,
    ) -> str:
        """
        Run one chat completion and return the stripped text.

        Raises:
            CollaboratorError: client missing, timeout, API failure or empty text.
        """
        client = self.get_async_client()
        if client is None:
            raise CollaboratorError("OPENAI_API_KEY not configured")

        timeout_s = timeout_s or self.timeout_s
        llm_start = time.time()

        try:
            resp = await asyncio.wait_for(
                client.chat.completions.create(
                    model=self.model,
                    temperature=temperature,
                    max_tokens=max_tokens,
                    messages=[
                        {"role": "system", "content": system_prompt},
                        {"role": "user", "content": user_prompt},
                    ],
                ),
                timeout=timeout_s,
            )
        except asyncio.TimeoutError:
            elapsed = (time.time() - llm_start) * 1000
            logger.warning(f"[LLM] Completion timed out after {elapsed:.2f}ms")
            raise CollaboratorError(f"completion timed out after {timeout_s}s") from None
        except asyncio.CancelledError:
            raise
        except Exception as e:
            elapsed = (time.time() - llm_start) * 1000
            logger.error(f"[LLM] Completion error after {elapsed:.2f}ms: {e}")
            raise CollaboratorError(str(e)) from e

        elapsed = (time.time() - llm_start) * 1000
        logger.debug(f"[LLM] Completion: {elapsed:.2f}ms (model={self.model})")

        text = ""
        if resp.choices:
            text = (resp.choices[0].message.content or "").strip()
        if not text:
            raise CollaboratorError("empty completion")
        return text
