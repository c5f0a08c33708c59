"""OpenAI-compatible adapters (OpenAI, vLLM, llama.cpp server, ...).

- OpenAIChatAdapter: LLMPort over chat completions
- OpenAILogProbAdapter: LogProbPort over the completions endpoint with
  ``echo=True`` so the prompt's own tokens come back with log-probabilities

The ``openai`` package is imported on first use. SDK exceptions are mapped
onto the domain error taxonomy; nothing raises past the adapter.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from importlib import import_module
from typing import Any

from boundary_engine.application.ports.llm_port import ChatMessage, LLMPort, LLMResponse
from boundary_engine.application.ports.logprob_port import LogProbPort
from boundary_engine.domain.errors import (
    DomainError,
    MalformedResponse,
    ProviderError,
    ProviderTimeout,
    ProviderUnavailable,
    RateLimited,
)
from boundary_engine.domain.models import TokenLogProb
from boundary_engine.domain.types import Result

logger = logging.getLogger(__name__)


def _retry_after(ex: Exception) -> float | None:
    response = getattr(ex, "response", None)
    headers = getattr(response, "headers", None) or {}
    value = headers.get("retry-after") if hasattr(headers, "get") else None
    try:
        return float(value) if value is not None else None
    except (TypeError, ValueError):
        return None


def map_openai_error(module: Any, ex: Exception, provider: str) -> ProviderError:
    """Translate an ``openai`` SDK exception into a domain error."""

    def is_(name: str) -> bool:
        cls = getattr(module, name, None)
        return isinstance(cls, type) and isinstance(ex, cls)

    # APITimeoutError subclasses APIConnectionError; check it first
    if is_("APITimeoutError"):
        return ProviderTimeout(str(ex) or "request timed out", provider=provider)
    if is_("RateLimitError"):
        return RateLimited(str(ex), provider=provider, retry_after_s=_retry_after(ex))
    if is_("APIConnectionError") or is_("AuthenticationError") or is_("PermissionDeniedError"):
        return ProviderUnavailable(str(ex), provider=provider)
    return ProviderUnavailable(f"{type(ex).__name__}: {ex}", provider=provider)


@dataclass
class _OpenAIClient:
    base_url: str | None = None  # e.g. "http://localhost:8000/v1" for vLLM
    api_key: str = "EMPTY"
    model: str = "gpt-4o-mini"
    timeout_s: float = 30.0
    provider: str = "openai"
    _client: Any | None = field(default=None, repr=False)
    _module: Any | None = field(default=None, repr=False)

    def _ensure_client(self) -> Any:
        if self._client is None:
            module = import_module("openai")
            self._module = module
            # retries are handled by the engine's own policy
            self._client = module.AsyncOpenAI(
                base_url=self.base_url,
                api_key=self.api_key,
                timeout=self.timeout_s,
                max_retries=0,
            )
        return self._client


@dataclass
class OpenAIChatAdapter(_OpenAIClient, LLMPort):
    async def chat(
        self,
        messages: Sequence[ChatMessage],
        temperature: float = 0.0,
        max_tokens: int = 256,
    ) -> Result[LLMResponse, DomainError]:
        try:
            client = self._ensure_client()
            resp: Any = await client.chat.completions.create(
                model=self.model,
                messages=[{"role": m.role, "content": m.content} for m in messages],
                temperature=temperature,
                max_tokens=max_tokens,
            )
        except ImportError as ex:
            return Result.failure(
                ProviderUnavailable(f"openai not installed: {ex}", provider=self.provider)
            )
        except Exception as ex:  # noqa: BLE001
            return Result.failure(map_openai_error(self._module, ex, self.provider))

        if not getattr(resp, "choices", None):
            return Result.failure(
                MalformedResponse("response has no choices", provider=self.provider)
            )
        choice = resp.choices[0]
        usage = getattr(resp, "usage", None)
        return Result.success(
            LLMResponse(
                text=choice.message.content or "",
                finish_reason=choice.finish_reason or "stop",
                usage_tokens=getattr(usage, "total_tokens", None),
            )
        )


@dataclass
class OpenAILogProbAdapter(_OpenAIClient, LogProbPort):
    """Log-probabilities of ``text`` given ``context`` via prompt echo.

    Needs a server that honours ``echo`` with ``logprobs`` on the completions
    endpoint (vLLM and most self-hosted servers do).
    """

    model: str = "meta-llama/Meta-Llama-3.1-8B"

    async def score_tokens(
        self, text: str, context: str = ""
    ) -> Result[list[TokenLogProb], DomainError]:
        separator = " " if context and not context[-1].isspace() and not text[:1].isspace() else ""
        prefix = context + separator
        try:
            client = self._ensure_client()
            resp: Any = await client.completions.create(
                model=self.model,
                prompt=prefix + text,
                max_tokens=0,
                echo=True,
                logprobs=0,
                temperature=0.0,
            )
        except ImportError as ex:
            return Result.failure(
                ProviderUnavailable(f"openai not installed: {ex}", provider=self.provider)
            )
        except Exception as ex:  # noqa: BLE001
            return Result.failure(map_openai_error(self._module, ex, self.provider))

        try:
            lp = resp.choices[0].logprobs
            tokens = list(lp.tokens)
            values = list(lp.token_logprobs)
            offsets = list(lp.text_offset)
        except (AttributeError, IndexError, TypeError) as ex:
            return Result.failure(
                MalformedResponse(f"completion carries no logprobs: {ex}", provider=self.provider)
            )
        if not (len(tokens) == len(values) == len(offsets)):
            return Result.failure(
                MalformedResponse("logprob arrays differ in length", provider=self.provider)
            )

        out: list[TokenLogProb] = []
        for tok, value, offset in zip(tokens, values, offsets, strict=True):
            # context tokens end inside the prefix; the first prompt token has no logprob
            if offset + len(tok) <= len(prefix) or value is None:
                continue
            out.append(TokenLogProb(token=tok, logprob=float(value), position=len(out)))
        logger.debug("scored %d tokens (context %d chars)", len(out), len(prefix))
        return Result.success(out)
