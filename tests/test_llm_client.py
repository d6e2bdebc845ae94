import http.client
import io
import json
from urllib.error import HTTPError

import pytest

from thriphti.errors import UpstreamServiceError
from thriphti.llm import client
from thriphti.llm.client import chat_completion, parse_json_content, strip_code_fences


class _FakeResponse:
    def __init__(self, payload):
        self._raw = json.dumps(payload).encode("utf-8")

    def read(self):
        return self._raw

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False


def test_strip_code_fences():
    assert strip_code_fences('```json\n[{"a": 1}]\n```') == '[{"a": 1}]'
    assert strip_code_fences("```\n{}\n```") == "{}"
    assert strip_code_fences('  [{"a": 1}]  ') == '[{"a": 1}]'


def test_parse_json_content_validates_schema():
    schema = {"type": "array", "items": {"type": "object", "required": ["title"]}}
    assert parse_json_content('```json\n[{"title": "x"}]\n```', schema) == [{"title": "x"}]
    with pytest.raises(UpstreamServiceError):
        parse_json_content('[{"name": "x"}]', schema)
    with pytest.raises(UpstreamServiceError):
        parse_json_content("Sorry, I cannot help with that.", schema)


def test_chat_completion_requires_api_key(config):
    with pytest.raises(UpstreamServiceError) as excinfo:
        chat_completion(config.llm, [{"role": "user", "content": "hi"}])
    assert "THRIPHTI_TEST_OPENAI_KEY" in str(excinfo.value)


def test_chat_completion_posts_openai_payload(config, monkeypatch):
    monkeypatch.setenv("THRIPHTI_TEST_OPENAI_KEY", "sk-test")
    seen = {}

    def fake_urlopen(request, timeout):
        seen["url"] = request.full_url
        seen["auth"] = request.get_header("Authorization")
        seen["body"] = json.loads(request.data.decode("utf-8"))
        return _FakeResponse({"choices": [{"message": {"content": "[]"}}]})

    monkeypatch.setattr(client.urllib.request, "urlopen", fake_urlopen)
    content = chat_completion(config.llm, [{"role": "user", "content": "hi"}])

    assert content == "[]"
    assert seen["url"] == "https://api.openai.com/v1/chat/completions"
    assert seen["auth"] == "Bearer sk-test"
    assert seen["body"]["model"] == "gpt-4o-mini"
    assert seen["body"]["temperature"] == 0.2
    assert seen["body"]["max_tokens"] == 2000


def test_chat_completion_maps_http_errors(config, monkeypatch):
    monkeypatch.setenv("THRIPHTI_TEST_OPENAI_KEY", "sk-test")

    def fake_urlopen(request, timeout):
        raise HTTPError(request.full_url, 429, "Too Many Requests", {}, io.BytesIO(b"slow down"))

    monkeypatch.setattr(client.urllib.request, "urlopen", fake_urlopen)
    with pytest.raises(UpstreamServiceError) as excinfo:
        chat_completion(config.llm, [{"role": "user", "content": "hi"}])
    assert excinfo.value.status_code == 429


def test_chat_completion_requires_choices(config, monkeypatch):
    monkeypatch.setenv("THRIPHTI_TEST_OPENAI_KEY", "sk-test")
    monkeypatch.setattr(
        client.urllib.request, "urlopen", lambda request, timeout: _FakeResponse({"choices": []})
    )
    with pytest.raises(UpstreamServiceError):
        chat_completion(config.llm, [{"role": "user", "content": "hi"}])


@pytest.mark.parametrize(
    "failure",
    [
        http.client.RemoteDisconnected("Remote end closed connection without response"),
        http.client.IncompleteRead(b"{\"choi"),
        ConnectionResetError(104, "Connection reset by peer"),
    ],
)
def test_chat_completion_wraps_connection_failures(config, monkeypatch, failure):
    monkeypatch.setenv("THRIPHTI_TEST_OPENAI_KEY", "sk-test")

    def fake_urlopen(request, timeout):
        raise failure

    monkeypatch.setattr(client.urllib.request, "urlopen", fake_urlopen)
    with pytest.raises(UpstreamServiceError) as excinfo:
        chat_completion(config.llm, [{"role": "user", "content": "hi"}])
    assert str(excinfo.value).startswith("llm connection_error")
