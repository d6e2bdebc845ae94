from __future__ import annotations

import http.client
import json
import re
import socket
import urllib.error
import urllib.request
from typing import Any

import jsonschema

from ..config import LlmConfig
from ..errors import UpstreamServiceError

_FENCE_RE = re.compile(r"^```[a-zA-Z0-9_-]*\s*\n?(.*?)\n?```\s*$", re.DOTALL)


def chat_completion(
    llm_config: LlmConfig,
    messages: list[dict[str, str]],
    temperature: float | None = None,
) -> str:
    """Send an OpenAI-compatible chat completion and return the message content.

    Any transport failure, non-2xx status or response without choices raises
    UpstreamServiceError.
    """
    api_key = llm_config.api_key
    if not llm_config.enabled:
        raise UpstreamServiceError("llm disabled")
    if not api_key:
        raise UpstreamServiceError(f"llm api key missing ({llm_config.api_key_env})")
    payload = {
        "model": llm_config.model,
        "messages": messages,
        "temperature": llm_config.temperature if temperature is None else temperature,
        "max_tokens": llm_config.max_tokens,
    }
    headers = {"Authorization": f"Bearer {api_key}"}
    url = join_url(llm_config.base_url, "/chat/completions")
    response = http_json_request(
        "POST", url, headers, payload, llm_config.timeout_seconds, "llm"
    )
    return _read_openai(response)


def http_json_request(
    method: str,
    url: str,
    headers: dict[str, str],
    payload: dict[str, Any] | None,
    timeout: int,
    service: str,
) -> dict[str, Any]:
    data = json.dumps(payload).encode("utf-8") if payload is not None else None
    request = urllib.request.Request(url, data=data, method=method)
    request.add_header("Content-Type", "application/json")
    for key, value in headers.items():
        request.add_header(key, value)
    try:
        with urllib.request.urlopen(request, timeout=timeout) as response:
            raw = response.read().decode("utf-8", errors="replace")
    except urllib.error.HTTPError as exc:
        body = exc.read().decode("utf-8", errors="ignore")
        raise UpstreamServiceError(
            f"{service} http_error {exc.code}: {body[:500]}", status_code=exc.code
        ) from exc
    except urllib.error.URLError as exc:
        raise UpstreamServiceError(f"{service} network_error: {exc.reason}") from exc
    except (socket.timeout, TimeoutError) as exc:
        raise UpstreamServiceError(f"{service} timeout after {timeout}s") from exc
    except (http.client.HTTPException, OSError) as exc:
        raise UpstreamServiceError(f"{service} connection_error: {exc}") from exc
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise UpstreamServiceError(f"{service} returned non-JSON body") from exc
    if not isinstance(parsed, dict):
        raise UpstreamServiceError(f"{service} returned unexpected payload")
    return parsed


def strip_code_fences(text: str) -> str:
    cleaned = text.strip()
    match = _FENCE_RE.match(cleaned)
    if match:
        return match.group(1).strip()
    return cleaned


def parse_json_content(raw: str, schema: dict[str, Any] | None = None) -> Any:
    try:
        parsed = json.loads(strip_code_fences(raw))
    except json.JSONDecodeError as exc:
        raise UpstreamServiceError(f"llm returned malformed JSON: {exc.msg}") from exc
    if schema is not None:
        try:
            jsonschema.validate(parsed, schema)
        except jsonschema.ValidationError as exc:
            raise UpstreamServiceError(f"llm output failed schema: {exc.message}") from exc
    return parsed


def _read_openai(response: dict[str, Any]) -> str:
    choices = response.get("choices") or []
    if not choices:
        raise UpstreamServiceError("llm response missing choices")
    message = choices[0].get("message") or {}
    content = message.get("content")
    if not isinstance(content, str):
        raise UpstreamServiceError("llm response missing content")
    return content


def join_url(base: str, path: str) -> str:
    return base.rstrip("/") + path
