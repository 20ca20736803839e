from __future__ import annotations

import time
from typing import Any, Dict, Optional, Tuple

from openai import OpenAI as _OpenAI

from modules.common.utils import log_llm_usage


def _extract_usage(response: Any) -> Tuple[int, int]:
    usage = getattr(response, "usage", None)
    if usage is None:
        return 0, 0
    if isinstance(usage, dict):
        prompt = usage.get("input_tokens") or usage.get("prompt_tokens") or 0
        completion = usage.get("output_tokens") or usage.get("completion_tokens") or 0
        return int(prompt), int(completion)
    prompt = getattr(usage, "input_tokens", None)
    completion = getattr(usage, "output_tokens", None)
    if prompt is None:
        prompt = getattr(usage, "prompt_tokens", 0)
    if completion is None:
        completion = getattr(usage, "completion_tokens", 0)
    return int(prompt or 0), int(completion or 0)


def _requested_image_size(kwargs: Dict[str, Any]) -> Optional[str]:
    for tool in kwargs.get("tools") or []:
        if isinstance(tool, dict) and tool.get("type") == "image_generation":
            return tool.get("size")
    return None


class _ResponsesProxy:
    def __init__(self, client: Any, on_response):
        self._client = client
        self._on_response = on_response

    def create(self, **kwargs):
        started = time.monotonic()
        response = self._client.responses.create(**kwargs)
        elapsed_ms = (time.monotonic() - started) * 1000.0
        self._on_response(response, kwargs.get("model"), elapsed_ms, _requested_image_size(kwargs))
        return response


class OpenAI:
    """
    OpenAI client wrapper that records usage of every Responses call to the
    instrumentation sink. Only `client.responses.create` is exposed; that is
    all the colorizer uses.

    SDK-level retries are off unless max_retries is passed explicitly; the
    colorizer runs its own backoff and records every delay.
    """

    def __init__(self, *args, **kwargs):
        kwargs.setdefault("max_retries", 0)
        self._client = _OpenAI(*args, **kwargs)
        self.responses = _ResponsesProxy(self._client, self._log_usage)

    def _log_usage(self, response: Any, model: Optional[str], elapsed_ms: Optional[float] = None,
                   image_size: Optional[str] = None):
        prompt_tokens, completion_tokens = _extract_usage(response)
        log_llm_usage(
            model=model or getattr(response, "model", None) or "unknown",
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            provider="openai",
            request_ms=elapsed_ms,
            request_id=getattr(response, "id", None),
            image_size=image_size,
        )
