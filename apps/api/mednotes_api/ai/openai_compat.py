from __future__ import annotations

from dataclasses import asdict

import httpx

from mednotes_api.domain.exceptions import ExternalAIError

from .providers import ChatResponse, Message


def _join_base(base_url: str, path: str) -> str:
    return base_url.rstrip("/") + "/" + path.lstrip("/")


async def openai_chat_completion(
    *,
    base_url: str,
    api_key: str,
    model: str,
    messages: list[Message],
    temperature: float = 0.2,
    max_tokens: int | None = None,
    timeout_s: float = 60.0,
) -> ChatResponse:
    url = _join_base(base_url, "/v1/chat/completions")
    payload: dict = {
        "model": model,
        "messages": [asdict(m) for m in messages],
        "temperature": temperature,
    }
    if max_tokens is not None:
        payload["max_tokens"] = max_tokens
    headers = {"Authorization": f"Bearer {api_key}", "Content-Type": "application/json"}
    try:
        async with httpx.AsyncClient(timeout=timeout_s) as client:
            resp = await client.post(url, headers=headers, json=payload)
    except Exception as e:
        raise ExternalAIError("external_request_failed") from e

    if resp.status_code >= 400:
        raise ExternalAIError(f"external_http_{resp.status_code}")

    try:
        data = resp.json()
        content = data["choices"][0]["message"]["content"]
        if not isinstance(content, str):
            raise ExternalAIError("external_bad_response")
        return ChatResponse(provider=f"external:openai:{model}", content=content, raw=data)
    except Exception as e:
        if isinstance(e, ExternalAIError):
            raise
        raise ExternalAIError("external_bad_response") from e
