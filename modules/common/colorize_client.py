"""
Boundary to the external colorization service.

Error taxonomy used by the pipeline:
- RetryableError (TransientServiceError, ContentRejectedError): retried with
  exponential backoff, then the segment falls back to its original bitmap.
- ColorizeResponseError and any other ColorizeError: not retried, aborts the run.
"""
import base64
import io
import time
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional, Tuple

import openai
from PIL import Image

DEFAULT_MODEL = "gpt-4.1"
MAX_ATTEMPTS = 3
BASE_DELAY = 2.0
MAX_DELAY = 30.0

BASE_PROMPT = """Colorize this black-and-white webtoon/manga panel.

CRITICAL RULES:
- Do not change the drawing in any way. Do not redraw or "complete" missing parts.
- Do not change any outlines, screentones, or textures.
- Do not move, resize, or warp any elements.
- Do not add hair, heads, arms, or objects beyond what is already drawn.
- Do not alter any text, speech bubbles, or SFX lettering.
- The output must match the input panel in geometry and composition. ONLY add color.
- Leave the solid black padding on the right and bottom edges black.

STYLE:
- Clean vibrant webtoon/anime coloring with shading.
- Preserve screentone texture; do not paint over it.
- Keep blacks clean (avoid gray wash over line art)."""

_SAFETY_CODES = {"moderation_blocked", "content_policy_violation", "content_filter"}


class ColorizeError(Exception):
    pass


class RetryableError(ColorizeError):
    pass


class TransientServiceError(RetryableError):
    """Rate limiting, server error, timeout or dropped connection."""


class ContentRejectedError(RetryableError):
    """Content-safety rejection; retried because rejections are often flaky."""


class ColorizeResponseError(ColorizeError):
    """The service answered but the answer carries no usable image."""


def build_prompt(hints: Optional[str] = None, memory_hint: Optional[str] = None) -> str:
    prompt = BASE_PROMPT
    if hints:
        prompt += "\n\nCONSISTENCY:\n" + hints.strip()
    if memory_hint:
        prompt += "\n\n" + memory_hint.strip()
    return prompt


def image_to_data_url(image: Image.Image) -> str:
    buf = io.BytesIO()
    image.save(buf, format="PNG")
    return "data:image/png;base64," + base64.b64encode(buf.getvalue()).decode("utf-8")


def _is_safety_rejection(exc: Exception) -> bool:
    code = getattr(exc, "code", None)
    if code in _SAFETY_CODES:
        return True
    text = str(exc).lower()
    return "safety" in text or "moderation" in text


def classify_openai_error(exc: Exception) -> ColorizeError:
    """Map an openai SDK exception onto the pipeline's error taxonomy."""
    if isinstance(exc, (openai.RateLimitError, openai.APIConnectionError, openai.InternalServerError)):
        return TransientServiceError(str(exc))
    if isinstance(exc, openai.BadRequestError) and _is_safety_rejection(exc):
        return ContentRejectedError(str(exc))
    if isinstance(exc, openai.APIStatusError) and getattr(exc, "status_code", 0) >= 500:
        return TransientServiceError(str(exc))
    return ColorizeError(str(exc))


def extract_image(response: Any) -> Image.Image:
    outputs = getattr(response, "output", None) or []
    for item in outputs:
        if getattr(item, "type", None) == "image_generation_call" and getattr(item, "result", None):
            try:
                data = base64.b64decode(item.result, validate=True)
                with Image.open(io.BytesIO(data)) as img:
                    return img.convert("RGBA")
            except (ValueError, OSError) as exc:
                # binascii.Error and PIL.UnidentifiedImageError land here
                raise ColorizeResponseError(f"Undecodable image payload: {exc}") from exc
    types = ", ".join(str(getattr(o, "type", "?")) for o in outputs) or "none"
    raise ColorizeResponseError(f"No image in response. Output types: {types}")


class OpenAIColorizer:
    """Edit-mode image generation through the Responses API."""

    def __init__(self, client: Any, model: str = DEFAULT_MODEL, input_fidelity: str = "high"):
        self.client = client
        self.model = model
        self.input_fidelity = input_fidelity

    def colorize(self, canvas: Image.Image, prompt: str, size: Tuple[int, int]) -> Image.Image:
        content = [
            {"type": "input_image", "image_url": image_to_data_url(canvas), "detail": "high"},
            {"type": "input_text", "text": prompt},
        ]
        try:
            response = self.client.responses.create(
                model=self.model,
                input=[{"role": "user", "content": content}],
                tools=[{
                    "type": "image_generation",
                    "action": "edit",
                    "input_fidelity": self.input_fidelity,
                    "size": f"{size[0]}x{size[1]}",
                }],
            )
        except openai.OpenAIError as exc:
            raise classify_openai_error(exc) from exc
        return extract_image(response)


@dataclass
class RetryOutcome:
    image: Optional[Image.Image]
    attempts: int
    delays: List[float] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def fell_back(self) -> bool:
        return self.image is None


def backoff_delay(attempt: int, base_delay: float = BASE_DELAY, max_delay: float = MAX_DELAY) -> float:
    """Delay after the given 1-based failed attempt."""
    return min(max_delay, base_delay * (2 ** (attempt - 1)))


def colorize_with_retry(colorizer: Any, canvas: Image.Image, prompt: str, size: Tuple[int, int],
                        max_attempts: int = MAX_ATTEMPTS, base_delay: float = BASE_DELAY,
                        max_delay: float = MAX_DELAY,
                        sleep: Callable[[float], None] = time.sleep,
                        on_retry: Optional[Callable[[int, float, Exception], None]] = None) -> RetryOutcome:
    """
    Call colorizer.colorize with backoff on retryable errors.

    Returns image=None once max_attempts retryable failures have happened; any
    other error propagates from the failing attempt.
    """
    delays: List[float] = []
    last_error: Optional[Exception] = None
    for attempt in range(1, max_attempts + 1):
        try:
            image = colorizer.colorize(canvas, prompt, size)
            return RetryOutcome(image=image, attempts=attempt, delays=delays)
        except RetryableError as exc:
            last_error = exc
            if attempt == max_attempts:
                break
            delay = backoff_delay(attempt, base_delay, max_delay)
            if on_retry is not None:
                on_retry(attempt, delay, exc)
            delays.append(delay)
            sleep(delay)
    return RetryOutcome(image=None, attempts=max_attempts, delays=delays,
                        error=f"{type(last_error).__name__}: {last_error}")
