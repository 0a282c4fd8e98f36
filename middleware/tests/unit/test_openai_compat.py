import json

import pytest

from mclang_flow.providers.base import ProviderError
from mclang_flow.providers.openai_compat import (
    OpenAICompatProvider,
    _RpmLimiter,
    _build_url,
    _normalize_base_url,
)
from mclang_flow.providers.retry import RetryableTransport, RetryPolicy
from mclang_flow.utils.cancellation import CancellationToken


class _Resp:
    status_code = 200
    url = "https://api.test/v1/chat/completions"
    headers = {}

    def __init__(self, payload):
        self.text = payload if isinstance(payload, str) else json.dumps(payload)

    def json(self):
        return json.loads(self.text)


def _provider(**overrides):
    profile = {
        "api_key": "sk-test",
        "base_url": "https://api.test/v1",
        "model": "gpt-test",
        "headers": {},
        "params": {},
    }
    profile.update(overrides)
    return OpenAICompatProvider(profile)


@pytest.mark.unit
@pytest.mark.parametrize(
    "raw,expected",
    [
        ("https://api.openai.com", "https://api.openai.com/v1"),
        ("https://api.openai.com/", "https://api.openai.com/v1"),
        ("https://api.test/v1/", "https://api.test/v1"),
        ("https://api.test/v1/chat/completions", "https://api.test/v1"),
        ("https://open.bigmodel.cn/api/paas/v4", "https://open.bigmodel.cn/api/paas/v4"),
        ("", ""),
    ],
)
def test_normalize_base_url(raw, expected):
    assert _normalize_base_url(raw) == expected


@pytest.mark.unit
def test_build_url_joins_endpoint():
    assert _build_url("https://api.test", "/models") == "https://api.test/v1/models"
    assert _build_url("", "models") == ""


@pytest.mark.unit
def test_build_request_payload_and_headers():
    provider = _provider(params={"top_p": 0.9}, headers={"X-Trace": "1"})
    messages = [{"role": "user", "content": "[\"Hello\"]"}]
    request = provider.build_request(messages, {})

    assert request.method == "POST"
    assert request.url == "https://api.test/v1/chat/completions"
    assert request.headers["Authorization"] == "Bearer sk-test"
    assert request.headers["X-Trace"] == "1"
    body = json.loads(request.data.decode("utf-8"))
    assert body["model"] == "gpt-test"
    assert body["messages"] == messages
    assert body["temperature"] == pytest.approx(0.1)
    assert body["top_p"] == pytest.approx(0.9)


@pytest.mark.unit
def test_build_request_without_api_key_omits_authorization():
    request = _provider(api_key="").build_request([], {})
    assert "Authorization" not in request.headers


@pytest.mark.unit
def test_build_request_requires_base_url_and_model():
    with pytest.raises(ProviderError) as excinfo:
        _provider(base_url="").build_request([], {})
    assert excinfo.value.error_type == "invalid_config"

    with pytest.raises(ProviderError) as excinfo:
        _provider(model="").build_request([], {})
    assert excinfo.value.error_type == "invalid_config"


@pytest.mark.unit
def test_extract_text_reads_first_choice():
    provider = _provider()
    response = _Resp({"choices": [{"message": {"content": "[\"你好\"]"}}]})
    assert provider.extract_text(response) == "[\"你好\"]"


@pytest.mark.unit
def test_extract_text_rejects_non_json_body():
    with pytest.raises(ProviderError) as excinfo:
        _provider().extract_text(_Resp("<html>gateway</html>"))
    assert excinfo.value.error_type == "invalid_json"
    assert "gateway" in excinfo.value.response_text


@pytest.mark.unit
@pytest.mark.parametrize(
    "payload",
    [
        {},
        {"choices": []},
        {"choices": [{"message": {}}]},
        {"choices": [{"message": {"content": None}}]},
    ],
)
def test_extract_text_rejects_missing_content(payload):
    with pytest.raises(ProviderError) as excinfo:
        _provider().extract_text(_Resp(payload))
    assert excinfo.value.error_type == "invalid_response"


@pytest.mark.unit
def test_fetch_models_returns_sorted_ids():
    sent = []

    class _Session:
        def send(self, prepared, timeout=None):
            sent.append(prepared)
            return _Resp({"data": [{"id": "zeta"}, {"id": "alpha"}, {"object": "x"}]})

    transport = RetryableTransport(RetryPolicy(max_retries=0), session=_Session())
    try:
        models = _provider().fetch_models(transport, CancellationToken())
    finally:
        transport.close()
    assert models == ["alpha", "zeta"]
    assert sent[0].method == "GET"
    assert sent[0].url == "https://api.test/v1/models"


@pytest.mark.unit
def test_rpm_limiter_schedules_fixed_intervals(monkeypatch):
    import mclang_flow.providers.openai_compat as provider_module

    limiter = _RpmLimiter(60)
    clock = {"now": 100.0}
    sleeps = []

    monkeypatch.setattr(provider_module.time, "monotonic", lambda: clock["now"])

    def _sleep(seconds):
        sleeps.append(seconds)
        clock["now"] += seconds

    monkeypatch.setattr(provider_module.time, "sleep", _sleep)

    limiter.acquire()
    limiter.acquire()
    limiter.acquire()

    assert len(sleeps) == 2
    assert sleeps[0] == pytest.approx(1.0, rel=1e-6)
    assert sleeps[1] == pytest.approx(1.0, rel=1e-6)


@pytest.mark.unit
def test_rate_limiter_only_created_for_positive_rpm():
    assert _provider(rpm=0).rate_limiter is None
    assert _provider(rpm="30").rate_limiter.rpm == 30
