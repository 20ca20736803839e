import base64
import io
from types import SimpleNamespace

import httpx
import openai
import pytest
from PIL import Image

from modules.common.colorize_client import (
    BASE_PROMPT,
    ColorizeError,
    ColorizeResponseError,
    ContentRejectedError,
    OpenAIColorizer,
    TransientServiceError,
    backoff_delay,
    build_prompt,
    classify_openai_error,
    colorize_with_retry,
    extract_image,
)

URL = "https://api.openai.com/v1/responses"


def _response(status):
    return httpx.Response(status, request=httpx.Request("POST", URL))


def _b64_png(size=(8, 8), color=(200, 10, 10, 255)):
    buf = io.BytesIO()
    Image.new("RGBA", size, color).save(buf, format="PNG")
    return base64.b64encode(buf.getvalue()).decode("utf-8")


class ScriptedColorizer:
    def __init__(self, script):
        self.script = list(script)
        self.calls = 0

    def colorize(self, canvas, prompt, size):
        self.calls += 1
        item = self.script.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


class FakeResponses:
    def __init__(self, result=None, exc=None):
        self.result = result
        self.exc = exc
        self.kwargs = None

    def create(self, **kwargs):
        self.kwargs = kwargs
        if self.exc is not None:
            raise self.exc
        return self.result


CANVAS = Image.new("RGBA", (16, 16), (0, 0, 0, 255))


def test_two_failures_then_success():
    ok = Image.new("RGBA", (16, 16))
    colorizer = ScriptedColorizer([TransientServiceError("429"), TransientServiceError("503"), ok])
    sleeps = []
    retries = []

    outcome = colorize_with_retry(colorizer, CANVAS, "p", (16, 16), sleep=sleeps.append,
                                  on_retry=lambda attempt, delay, exc: retries.append((attempt, delay)))

    assert outcome.image is ok
    assert not outcome.fell_back
    assert outcome.attempts == 3
    assert outcome.delays == [2.0, 4.0]
    assert sleeps == [2.0, 4.0]
    assert retries == [(1, 2.0), (2, 4.0)]


def test_exhausted_retries_fall_back_without_trailing_sleep():
    colorizer = ScriptedColorizer([TransientServiceError("boom")] * 3)
    sleeps = []

    outcome = colorize_with_retry(colorizer, CANVAS, "p", (16, 16), sleep=sleeps.append)

    assert outcome.fell_back
    assert outcome.attempts == 3
    assert colorizer.calls == 3
    assert sleeps == [2.0, 4.0]
    assert "TransientServiceError" in outcome.error


def test_content_rejection_is_retried():
    ok = Image.new("RGBA", (16, 16))
    colorizer = ScriptedColorizer([ContentRejectedError("moderation_blocked"), ok])
    outcome = colorize_with_retry(colorizer, CANVAS, "p", (16, 16), sleep=lambda d: None)
    assert outcome.image is ok
    assert outcome.attempts == 2


def test_non_retryable_error_propagates_immediately():
    colorizer = ScriptedColorizer([ColorizeResponseError("no image")])
    sleeps = []
    with pytest.raises(ColorizeResponseError):
        colorize_with_retry(colorizer, CANVAS, "p", (16, 16), sleep=sleeps.append)
    assert colorizer.calls == 1
    assert sleeps == []


def test_backoff_doubles_and_caps():
    assert [backoff_delay(a) for a in (1, 2, 3, 4)] == [2.0, 4.0, 8.0, 16.0]
    assert backoff_delay(10, base_delay=2.0, max_delay=30.0) == 30.0


def test_openai_errors_map_onto_taxonomy():
    rate = openai.RateLimitError("slow down", response=_response(429), body=None)
    server = openai.InternalServerError("oops", response=_response(500), body=None)
    gateway = openai.APIStatusError("bad gateway", response=_response(502), body=None)
    conn = openai.APIConnectionError(request=httpx.Request("POST", URL))
    timeout = openai.APITimeoutError(request=httpx.Request("POST", URL))
    blocked = openai.BadRequestError("rejected", response=_response(400),
                                     body={"code": "moderation_blocked", "message": "rejected"})
    bad = openai.BadRequestError("invalid size", response=_response(400), body={"code": "invalid_value"})
    auth = openai.AuthenticationError("no key", response=_response(401), body=None)

    for exc in (rate, server, gateway, conn, timeout):
        assert isinstance(classify_openai_error(exc), TransientServiceError)
    assert isinstance(classify_openai_error(blocked), ContentRejectedError)
    for exc in (bad, auth):
        mapped = classify_openai_error(exc)
        assert type(mapped) is ColorizeError


def test_openai_colorizer_sends_edit_request():
    result = SimpleNamespace(output=[
        SimpleNamespace(type="reasoning", result=None),
        SimpleNamespace(type="image_generation_call", result=_b64_png()),
    ])
    responses = FakeResponses(result=result)
    colorizer = OpenAIColorizer(SimpleNamespace(responses=responses), model="gpt-4.1")

    image = colorizer.colorize(CANVAS, "colorize it", (1024, 1536))

    assert image.mode == "RGBA"
    assert image.getpixel((0, 0)) == (200, 10, 10, 255)
    kwargs = responses.kwargs
    assert kwargs["model"] == "gpt-4.1"
    tool = kwargs["tools"][0]
    assert tool == {"type": "image_generation", "action": "edit", "input_fidelity": "high", "size": "1024x1536"}
    content = kwargs["input"][0]["content"]
    assert content[0]["image_url"].startswith("data:image/png;base64,")
    assert content[1] == {"type": "input_text", "text": "colorize it"}


def test_openai_colorizer_translates_sdk_errors():
    exc = openai.RateLimitError("slow down", response=_response(429), body=None)
    colorizer = OpenAIColorizer(SimpleNamespace(responses=FakeResponses(exc=exc)))
    with pytest.raises(TransientServiceError):
        colorizer.colorize(CANVAS, "p", (1024, 1024))


def test_response_without_image_raises():
    with pytest.raises(ColorizeResponseError, match="message"):
        extract_image(SimpleNamespace(output=[SimpleNamespace(type="message", result=None)]))
    with pytest.raises(ColorizeResponseError):
        extract_image(SimpleNamespace(output=None))


def test_build_prompt_appends_hints_and_memory():
    assert build_prompt() == BASE_PROMPT
    prompt = build_prompt("Mina has red hair.", "Colors already used: #a01010")
    assert prompt.startswith(BASE_PROMPT)
    assert "CONSISTENCY:\nMina has red hair." in prompt
    assert prompt.endswith("Colors already used: #a01010")


@pytest.mark.parametrize("payload", [
    "not base64 at all!!",
    base64.b64encode(b"these bytes are not an image").decode("utf-8"),
])
def test_undecodable_image_payload_raises_response_error(payload):
    response = SimpleNamespace(output=[SimpleNamespace(type="image_generation_call", result=payload)])
    with pytest.raises(ColorizeResponseError, match="Undecodable"):
        extract_image(response)
