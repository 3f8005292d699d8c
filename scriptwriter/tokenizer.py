"""Token counting helpers using tiktoken.

- count_chat_tokens(messages: list[dict], model: str) -> int
- estimate_tokens(text: str) -> int   (chars-per-token heuristic, SW_CHARS_PER_TOKEN)

Unknown models fall back to o200k_base, then cl100k_base; if no encoding can
be loaded (e.g. offline without a cache) the heuristic is used.
"""
from __future__ import annotations

import functools
import os
from typing import Dict, List, Optional

import tiktoken


def chars_per_token() -> float:
    try:
        cpt = float(os.getenv("SW_CHARS_PER_TOKEN", "4") or "4")
    except ValueError:
        return 4.0
    return cpt if cpt > 0 else 4.0


def estimate_tokens(text: str) -> int:
    return int((len(text or "") / chars_per_token()) + 0.5)


@functools.lru_cache(maxsize=16)
def _encoding_for_model(model: str) -> Optional["tiktoken.Encoding"]:
    try:
        return tiktoken.encoding_for_model(model)
    except KeyError:
        pass
    except (OSError, ValueError):
        return None
    for name in ("o200k_base", "cl100k_base"):
        try:
            return tiktoken.get_encoding(name)
        except (OSError, ValueError):
            continue
    return None


def count_chat_tokens(messages: List[Dict[str, str]], model: str) -> int:
    """Approximate prompt tokens with ChatML overheads.

    3 tokens per message, 1 per name, plus 3 for assistant priming.
    """
    enc = _encoding_for_model(model)
    if enc is None:
        total = sum(estimate_tokens(str(m.get("role", ""))) + estimate_tokens(str(m.get("content", ""))) for m in messages)
        return total + 6
    total = 0
    for m in messages:
        total += 3
        total += len(enc.encode(str(m.get("role", "")), disallowed_special=()))
        total += len(enc.encode(str(m.get("content", "")), disallowed_special=()))
        if m.get("name"):
            total += 1 + len(enc.encode(str(m.get("name")), disallowed_special=()))
    return total + 3
