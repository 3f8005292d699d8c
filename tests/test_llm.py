from types import SimpleNamespace

import httpx
import openai
import pytest

from scriptwriter import llm as llm_mod
from scriptwriter.context import CompletionNotReadyError, CompletionTransportError
from scriptwriter.env import normalize_base_url
from scriptwriter.llm import OpenAICompletionService, build_messages, with_backoff

_REQ = httpx.Request("POST", "https://api.example.test/v1/chat/completions")


def _response(text="ok", finish="stop"):
    return SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=text), finish_reason=finish)],
        usage=SimpleNamespace(prompt_tokens=10, completion_tokens=5, total_tokens=15),
    )


class FakeClient:
    """Stands in for openai.OpenAI: records create() kwargs, replays outcomes."""

    def __init__(self, outcomes):
        self.outcomes = list(outcomes)
        self.requests = []
        self.chat = SimpleNamespace(completions=SimpleNamespace(create=self._create))

    def _create(self, **kwargs):
        self.requests.append(dict(kwargs))
        out = self.outcomes.pop(0)
        if isinstance(out, BaseException):
            raise out
        return out


@pytest.fixture(autouse=True)
def no_token_counting(monkeypatch: pytest.MonkeyPatch):
    # Token counting may need to download encodings; not under test here
    monkeypatch.setattr(llm_mod, "_count_chat_tokens", lambda messages, model: 0)
    monkeypatch.setattr(llm_mod.time, "sleep", lambda s: None)


def _service(outcomes, **kw):
    client = FakeClient(outcomes)
    return OpenAICompletionService(client, default_model="gpt-test", **kw), client


def test_complete_sends_messages_and_returns_text():
    svc, client = _service([_response("Hello there")])
    out = svc.complete(build_messages("sys", "user"), temperature=0.3, max_tokens=99)
    assert out == "Hello there"
    req = client.requests[0]
    assert req["model"] == "gpt-test"
    assert req["max_tokens"] == 99
    assert req["messages"][0] == {"role": "system", "content": "sys"}


def test_model_override_and_tokens_param(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("SW_TOKENS_PARAM", "max_completion_tokens")
    svc, client = _service([_response()])
    svc.complete(build_messages("s", "u"), temperature=0.5, max_tokens=10, model="gpt-other")
    assert client.requests[0]["model"] == "gpt-other"
    assert client.requests[0]["max_completion_tokens"] == 10
    assert "max_tokens" not in client.requests[0]


def test_unsupported_max_tokens_falls_back_to_max_completion_tokens():
    err = openai.BadRequestError(
        "Unsupported parameter: 'max_tokens'",
        response=httpx.Response(400, request=_REQ),
        body=None,
    )
    svc, client = _service([err, _response("retried")])
    assert svc.complete(build_messages("s", "u"), temperature=0.5, max_tokens=10) == "retried"
    assert client.requests[1]["max_completion_tokens"] == 10


def test_connection_error_maps_to_transport_error_and_retries():
    svc, client = _service([openai.APIConnectionError(request=_REQ), _response("second")], retries=2)
    assert svc.complete(build_messages("s", "u"), temperature=0.5, max_tokens=10) == "second"
    assert len(client.requests) == 2

    svc, _ = _service([openai.APIConnectionError(request=_REQ)])
    with pytest.raises(CompletionTransportError):
        svc.complete(build_messages("s", "u"), temperature=0.5, max_tokens=10)


def test_auth_error_maps_to_not_ready():
    err = openai.AuthenticationError("bad key", response=httpx.Response(401, request=_REQ), body=None)
    svc, _ = _service([err])
    with pytest.raises(CompletionNotReadyError):
        svc.complete(build_messages("s", "u"), temperature=0.5, max_tokens=10)


def test_from_env_without_key_is_unready():
    svc = OpenAICompletionService.from_env()
    assert not svc.is_ready()
    with pytest.raises(CompletionNotReadyError):
        svc.complete(build_messages("s", "u"), temperature=0.5, max_tokens=10)


def test_from_env_with_key_and_base_url(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test-123456")
    monkeypatch.setenv("OPENAI_BASE_URL", "http://localhost:8000")
    monkeypatch.setenv("SW_LLM_RETRIES", "3")
    svc = OpenAICompletionService.from_env()
    assert svc.is_ready()
    assert svc.retries == 3
    assert svc.info == "base_url:http://localhost:8000/v1"


def test_normalize_base_url():
    assert normalize_base_url("https://host/api/") == "https://host/api/v1"
    assert normalize_base_url("https://host/v2") == "https://host/v2"
    assert normalize_base_url("https://x.openai.azure.com") == "https://x.openai.azure.com"
    assert normalize_base_url("  ") is None


def test_with_backoff_only_retries_transport_errors():
    calls = []

    def flaky():
        calls.append(1)
        if len(calls) < 3:
            raise CompletionTransportError("blip")
        return "done"

    assert with_backoff(flaky, retries=3) == "done"
    assert len(calls) == 3

    def broken():
        raise CompletionNotReadyError("nope")

    with pytest.raises(CompletionNotReadyError):
        with_backoff(broken, retries=3)


@pytest.mark.parametrize(
    "env",
    [
        {"OPENAI_API_KEY": "sk-test-123456"},
        {"OPENAI_API_KEY": "sk-test-123456", "OPENAI_BASE_URL": "http://localhost:8000"},
        {"AZURE_OPENAI_API_KEY": "az-test-123456", "AZURE_OPENAI_ENDPOINT": "https://x.openai.azure.com"},
    ],
)
def test_sdk_client_does_not_retry_on_its_own(monkeypatch: pytest.MonkeyPatch, env):
    for k, v in env.items():
        monkeypatch.setenv(k, v)
    svc = OpenAICompletionService.from_env()
    assert svc.is_ready()
    assert svc.client.max_retries == 0


def test_with_backoff_raises_last_transport_error():
    errors = [CompletionTransportError("first"), CompletionTransportError("second")]

    def failing():
        raise errors.pop(0)

    with pytest.raises(CompletionTransportError, match="second"):
        with_backoff(failing, retries=2, base_delay=0)
    assert errors == []
