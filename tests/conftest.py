import json
import re
from pathlib import Path

import pytest
from dotenv import load_dotenv

from scriptwriter.config import Settings
from scriptwriter.engine import ScriptEngine
from scriptwriter.store import FileBlobStore

# Load a test-specific environment file so pytest runs are consistent locally and in VS Code
_root = Path(__file__).resolve().parents[1]
_env_test = _root / ".env.test"
if _env_test.exists():
    load_dotenv(dotenv_path=_env_test, override=True)


_CLEARED_ENV = (
    "OPENAI_API_KEY",
    "OPENAI_BASE_URL",
    "OPENAI_API_BASE",
    "AZURE_OPENAI_ENDPOINT",
    "AZURE_OPENAI_API_KEY",
    "AZURE_OPENAI_API_VERSION",
    "AZURE_OPENAI_API_BASE",
    "SW_PROMPTS_DIR",
    "SW_LOG_LLM",
    "SW_CRASH_TRACE_FILE",
    "SW_OUTLINE_ACCEPT_RATIO",
    "SW_OUTLINE_MAX_ATTEMPTS",
    "SW_OUTLINE_CONTEXT_WINDOW",
    "SW_TEMP_DEFAULT",
    "SW_MAX_TOKENS_DEFAULT",
    "SW_TOKENS_PARAM",
    "SW_LLM_RETRIES",
) + tuple(
    f"SW_{kind}_{step}"
    for kind in ("MODEL", "TEMP", "MAX_TOKENS")
    for step in ("OUTLINE", "SCENE_BEATS", "COMMAND", "EXPAND_SCENE")
)


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path):
    # Every test gets its own data dir and never sees real credentials
    data_dir = tmp_path / "data"
    monkeypatch.setenv("SW_DATA_DIR", str(data_dir))
    for k in _CLEARED_ENV:
        monkeypatch.delenv(k, raising=False)
    yield data_dir


@pytest.fixture()
def store(isolated_env: Path) -> FileBlobStore:
    return FileBlobStore(isolated_env)


_RANGE_RE = re.compile(r"ONLY chapters (\d+)-(\d+) \(total (\d+) chapters\)")


def outline_doc(start: int, end: int, skip=()) -> str:
    """A valid outline reply for chapters start..end (indices in `skip` left out)."""
    chapters = [
        {
            "index": i,
            "title": f"Title {i}",
            "summary": f"Summary of chapter {i}.",
            "outline": f"- beat {i}a\n- beat {i}b",
        }
        for i in range(start, end + 1)
        if i not in skip
    ]
    return json.dumps({"version": "v1", "chapters": chapters}, ensure_ascii=False)


def requested_range(messages):
    """(start, end, total) parsed from an outline-range prompt, or None."""
    m = _RANGE_RE.search(messages[-1]["content"])
    if not m:
        return None
    return int(m.group(1)), int(m.group(2)), int(m.group(3))


def full_batch_responder(messages) -> str:
    """Answer any outline-range prompt with a fully populated batch."""
    rng = requested_range(messages)
    if rng is None:
        return "- beat one\n- beat two"
    return outline_doc(rng[0], rng[1])


class ScriptedCompletion:
    """Completion stub: replies are consumed in order.

    A reply may be a string, an exception instance (raised), or a callable
    taking the messages. With `default`, an exhausted script keeps answering.
    """

    def __init__(self, replies=None, default=None, ready: bool = True):
        self.replies = list(replies or [])
        self.default = default
        self.ready = ready
        self.calls = []

    def is_ready(self) -> bool:
        return self.ready

    def complete(self, messages, *, temperature, max_tokens, model=None):
        self.calls.append({"messages": messages, "temperature": temperature, "max_tokens": max_tokens, "model": model})
        if self.replies:
            reply = self.replies.pop(0)
        elif self.default is not None:
            reply = self.default
        else:
            raise AssertionError("unexpected completion call")
        if isinstance(reply, BaseException):
            raise reply
        if callable(reply):
            return reply(messages)
        return reply

    @property
    def user_prompts(self):
        return [c["messages"][-1]["content"] for c in self.calls]


@pytest.fixture()
def scripted():
    return ScriptedCompletion


@pytest.fixture()
def make_engine(store: FileBlobStore):
    def _make(completion=None, **settings):
        return ScriptEngine(completion or ScriptedCompletion(), store=store, settings=Settings(**settings))
    return _make
