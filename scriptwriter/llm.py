"""Completion service interface and the OpenAI-compatible implementation.

The engine only needs:

    complete(messages, *, temperature, max_tokens, model=None) -> str

raising CompletionNotReadyError when the service is unconfigured/rejected
and CompletionTransportError on network, timeout or API failures. No
structured-output compliance is assumed.

OpenAICompletionService supports native OpenAI, Azure OpenAI and custom
OpenAI-compatible base URLs (see env.normalize_base_url_from_env).
"""
from __future__ import annotations

import os
import random
import time
from typing import Callable, Dict, List, Optional, Protocol, TypeVar

import openai
from openai import AzureOpenAI, OpenAI

from .context import CompletionNotReadyError, CompletionTransportError
from .env import env_float, env_int, env_str, get_default_model, normalize_base_url_from_env
from .logging import breadcrumb as _breadcrumb, log_run as _log_run
from .tokenizer import chars_per_token, count_chat_tokens as _count_chat_tokens

T = TypeVar("T")

Messages = List[Dict[str, str]]


class CompletionService(Protocol):
    def complete(self, messages: Messages, *, temperature: float, max_tokens: int, model: Optional[str] = None) -> str: ...


def with_backoff(fn: Callable[[], T], *, retries: int = 3, base_delay: float = 1.0, jitter: float = 0.2) -> T:
    """Call fn up to `retries` times, sleeping exponentially between transport failures."""
    retries = max(1, retries)
    i = 0
    while True:
        try:
            return fn()
        except CompletionTransportError as e:
            _breadcrumb(f"llm:backoff attempt={i + 1}/{retries} err={type(e.__cause__).__name__ if e.__cause__ else 'n/a'}")
            if i + 1 >= retries:
                raise
            time.sleep(base_delay * (2 ** i) + random.random() * jitter)
        i += 1


def build_messages(system: str, user: str) -> Messages:
    return [
        {"role": "system", "content": system or "You are a helpful writing assistant."},
        {"role": "user", "content": user},
    ]


class OpenAICompletionService:
    def __init__(self, client, *, default_model: Optional[str] = None, retries: int = 1, info: str = "") -> None:
        self.client = client
        self.default_model = default_model or get_default_model()
        self.retries = retries
        self.info = info

    @classmethod
    def from_env(cls) -> "OpenAICompletionService":
        """Build a client from OPENAI_* / AZURE_OPENAI_* variables.

        Without an API key the service is created unready; complete() then
        raises CompletionNotReadyError.
        """
        api_key = env_str("OPENAI_API_KEY") or env_str("AZURE_OPENAI_API_KEY")
        retries = env_int("SW_LLM_RETRIES", 1)
        timeout = env_float("SW_LLM_TIMEOUT", 120.0)
        if not api_key:
            _breadcrumb("openai:client-unready reason=no-api-key")
            return cls(None, retries=retries, info="unready")
        info = normalize_base_url_from_env()
        if "azure_endpoint" in info:
            client = AzureOpenAI(
                azure_endpoint=info["azure_endpoint"],
                api_version=info["azure_api_version"],
                api_key=env_str("AZURE_OPENAI_API_KEY") or api_key,
                timeout=timeout,
                max_retries=0,
            )
            desc = f"azure:{info['azure_endpoint']}|v={info['azure_api_version']}"
        elif "base_url" in info:
            client = OpenAI(base_url=info["base_url"], api_key=api_key, timeout=timeout, max_retries=0)
            desc = f"base_url:{info['base_url']}"
        else:
            client = OpenAI(api_key=api_key, timeout=timeout, max_retries=0)
            desc = "default"
        _breadcrumb(f"openai:client-initialized {desc}")
        return cls(client, retries=retries, info=desc)

    def is_ready(self) -> bool:
        return self.client is not None

    def complete(self, messages: Messages, *, temperature: float, max_tokens: int, model: Optional[str] = None) -> str:
        if self.client is None:
            raise CompletionNotReadyError("completion service is not configured (OPENAI_API_KEY is unset)")
        model_name = model or self.default_model
        token_param = (os.getenv("SW_TOKENS_PARAM", "max_tokens") or "max_tokens").strip() or "max_tokens"
        kwargs = {
            "model": model_name,
            "messages": messages,
            "temperature": temperature,
            token_param: int(max_tokens),
        }
        ptoks = _count_chat_tokens(messages, model_name)
        chars = sum(len(str(m.get("content", ""))) for m in messages)
        _log_run(
            f"LLM request | model={model_name} temp={temperature} param={token_param} "
            f"prompt_tokens={ptoks} chars={chars} cpt={chars_per_token()} limit={max_tokens} endpoint={self.info}"
        )
        return with_backoff(lambda: self._create(kwargs), retries=self.retries)

    def _create(self, kwargs: Dict) -> str:
        _breadcrumb(f"llm:chat.create:before model={kwargs.get('model')}")
        try:
            resp = self.client.chat.completions.create(**kwargs)
        except openai.BadRequestError as e:
            msg = str(e)
            if "Unsupported parameter" in msg and "max_tokens" in kwargs:
                _breadcrumb("llm:param-fallback:max_completion_tokens")
                kwargs["max_completion_tokens"] = kwargs.pop("max_tokens")
                return self._create(kwargs)
            if ("Unsupported value" in msg or "unsupported_value" in msg) and "temperature" in msg and "temperature" in kwargs:
                _breadcrumb("llm:param-fallback:temperature-default")
                kwargs.pop("temperature", None)
                return self._create(kwargs)
            raise CompletionTransportError(f"completion request rejected: {msg}") from e
        except (openai.AuthenticationError, openai.PermissionDeniedError) as e:
            raise CompletionNotReadyError(f"completion service rejected credentials: {e}") from e
        except openai.APIError as e:
            raise CompletionTransportError(f"completion call failed: {e}") from e
        _breadcrumb("llm:chat.create:after")
        out = ""
        finish = None
        if resp.choices:
            out = resp.choices[0].message.content or ""
            finish = resp.choices[0].finish_reason
        usage = getattr(resp, "usage", None)
        if usage:
            _log_run(
                f"LLM response | usage prompt={usage.prompt_tokens} completion={usage.completion_tokens} "
                f"total={usage.total_tokens} finish_reason={finish}"
            )
        return out
