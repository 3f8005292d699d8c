"""Environment helpers for scriptwriter.

Centralizes reading environment variables, resolving per-step model/token
settings, masking secrets for logging, normalizing base URLs, and capturing a
program environment snapshot for diagnostics.
"""
from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from dotenv import load_dotenv


def load_env() -> None:
    """Load environment variables from a local .env file if present.

    override=True so the local .env takes precedence over shell state during
    development.
    """
    load_dotenv(override=True)


def env_str(name: str) -> Optional[str]:
    val = os.getenv(name)
    if val is None or str(val).strip() == "":
        return None
    return val


def env_int(name: str, default: int) -> int:
    try:
        v = int(os.getenv(name, str(default)))
        if v <= 0:
            return default
        return v
    except ValueError:
        return default


def env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except ValueError:
        return default


def env_flag(name: str) -> bool:
    return (os.getenv(name, "0") or "0").strip().lower() in ("1", "true", "yes", "on")


def resolve_temp(step_key: str, default_temp: float) -> float:
    """Resolve temperature with precedence: SW_TEMP_{STEP} -> SW_TEMP_DEFAULT -> default_temp."""
    for name in (f"SW_TEMP_{step_key}", "SW_TEMP_DEFAULT"):
        val = env_str(name)
        if val is None:
            continue
        try:
            return float(val)
        except ValueError:
            continue
    return float(default_temp)


def resolve_max_tokens(step_key: str, default_max_tokens: int) -> int:
    """Resolve max tokens with precedence: SW_MAX_TOKENS_{STEP} -> SW_MAX_TOKENS_DEFAULT -> default."""
    for name in (f"SW_MAX_TOKENS_{step_key}", "SW_MAX_TOKENS_DEFAULT"):
        val = env_str(name)
        if val is None:
            continue
        try:
            v = int(val)
        except ValueError:
            continue
        return v if v > 0 else int(default_max_tokens)
    return int(default_max_tokens)


def env_for(step_key: str, *, default_temp: float = 0.7, default_max_tokens: int = 1200) -> Tuple[Optional[str], float, int]:
    """Resolve (model, temperature, max_tokens) for a logical step.

    Precedence:
    - SW_MODEL_{STEP}, SW_TEMP_{STEP}, SW_MAX_TOKENS_{STEP}
    - SW_TEMP_DEFAULT, SW_MAX_TOKENS_DEFAULT
    - Provided defaults
    """
    model = env_str(f"SW_MODEL_{step_key}")
    temp = resolve_temp(step_key, default_temp)
    max_tokens = resolve_max_tokens(step_key, default_max_tokens)
    return model, float(temp), int(max_tokens)


def get_default_model() -> str:
    # Prefer SW_MODEL_DEFAULT; fall back to OPENAI_MODEL
    return env_str("SW_MODEL_DEFAULT") or os.getenv("OPENAI_MODEL", "gpt-4o-mini")


# ---------------------------
# Paths
# ---------------------------

def get_data_dir() -> Path:
    """Resolve the root directory of the project store.

    Env: SW_DATA_DIR (relative paths resolve against the cwd)
    Default: ./data
    """
    base = env_str("SW_DATA_DIR")
    if base:
        p = Path(base)
        return p if p.is_absolute() else (Path.cwd() / p)
    return Path("data")


# ---------------------------
# Diagnostics
# ---------------------------

def mask_env_value(k: str, v: Optional[str]) -> str:
    """Mask secrets in environment values while retaining a minimal suffix for debugging."""
    if v is None:
        return ""
    kl = (k or "").lower()
    if any(s in kl for s in ("key", "secret", "token", "password")):
        s = str(v)
        if len(s) <= 8:
            return "***"
        return ("*" * (len(s) - 4)) + s[-4:]
    return str(v)


def normalize_base_url(base_url: Optional[str]) -> Optional[str]:
    """Append '/v1' to non-Azure base URLs that lack a version suffix."""
    if not base_url or not base_url.strip():
        return None
    bu = base_url.strip()
    lower = bu.lower()
    is_azure = ("azure.com" in lower) or ("openai.azure" in lower)
    if (not is_azure) and not re.search(r"/v\d+/?$", bu):
        bu = bu.rstrip("/") + "/v1"
    return bu


def normalize_base_url_from_env() -> Dict[str, str]:
    """Infer the effective base URL or Azure endpoint from environment without creating a client."""
    info: Dict[str, str] = {}
    azure_endpoint = env_str("AZURE_OPENAI_ENDPOINT") or env_str("AZURE_OPENAI_API_BASE")
    if azure_endpoint:
        info["azure_endpoint"] = azure_endpoint.strip()
        info["azure_api_version"] = os.getenv("AZURE_OPENAI_API_VERSION", "2024-02-01")
        return info
    bu = normalize_base_url(env_str("OPENAI_BASE_URL") or env_str("OPENAI_API_BASE"))
    if bu:
        info["base_url"] = bu
    return info


def collect_program_env_snapshot() -> Dict[str, Any]:
    """Collect SW_*, OPENAI_* and AZURE_OPENAI_* settings with secrets masked."""
    prefixes = ("SW_", "OPENAI_", "AZURE_OPENAI_")
    env_items: List[Tuple[str, str]] = []
    for k, v in os.environ.items():
        if any(k.startswith(p) for p in prefixes):
            env_items.append((k, mask_env_value(k, v)))
    env_items.sort(key=lambda kv: kv[0])
    derived: Dict[str, Any] = dict(normalize_base_url_from_env())
    derived["model_default"] = get_default_model()
    derived["tokens_param_selected"] = (os.getenv("SW_TOKENS_PARAM", "max_tokens").strip() or "max_tokens")
    derived["data_dir"] = str(get_data_dir())
    return {
        "env": {k: v for k, v in env_items},
        "derived": derived,
    }
