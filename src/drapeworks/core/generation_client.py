"""Image generation service adapter.

The generation service is a black box: it takes an ordered list of parts
(instruction text, then the model photo, then zero or more fabric images) and
answers with an ordered list of text and image parts plus optional token
usage.  This module defines that contract in plain Python types, implements
it on top of the ``google-genai`` SDK, and holds the two rules the rest of the
application relies on:

- :func:`extract_generated_image` picks the output image from a response.
  Parts flagged as intermediate "thought" artifacts are skipped and the first
  remaining image wins.  When no image came back the original photo is
  returned with a ``no-image-generated`` quality flag.
- :func:`classify_generation_error` maps any failure raised while calling the
  service to a :class:`GenerationError` with a user-facing message and the
  HTTP status the API layer should answer with.

The SDK client is created lazily so the module can be imported (and the
contract used with fakes) without credentials.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Protocol

from drapeworks.core.files import UploadedFile
from drapeworks.core.models import SEVERITY_ERROR, SEVERITY_WARNING, QualityFlag

if TYPE_CHECKING:
    from drapeworks.core.config import DrapeworksConfig

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gemini-3-pro-image-preview"
NO_IMAGE_FLAG = "no-image-generated"
MODEL_RESPONSE_FLAG = "model-response"
DIAGNOSTIC_TEXT_LIMIT = 200


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class GenerationErrorKind(str, Enum):
    MISSING_CREDENTIALS = "missing-credentials"
    INVALID_CREDENTIALS = "invalid-credentials"
    SAFETY = "safety"
    RATE_LIMIT = "rate-limit"
    FAILED = "failed"


_STATUS_CODES = {
    GenerationErrorKind.MISSING_CREDENTIALS: 500,
    GenerationErrorKind.INVALID_CREDENTIALS: 401,
    GenerationErrorKind.SAFETY: 422,
    GenerationErrorKind.RATE_LIMIT: 429,
    GenerationErrorKind.FAILED: 500,
}


class GenerationError(Exception):
    """A classified generation failure.

    Attributes:
        kind: Failure category.
        message: Message safe to show to the operator.
        detail: Raw detail from the underlying exception, for logs.
    """

    def __init__(self, kind: GenerationErrorKind, message: str, detail: str = ""):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.detail = detail

    @property
    def status_code(self) -> int:
        return _STATUS_CODES[self.kind]


def classify_generation_error(exc: BaseException) -> GenerationError:
    """Map an exception raised by the service call to a :class:`GenerationError`.

    Classification matches substrings of the error detail, in order:
    ``API_KEY`` (bad credentials), ``SAFETY`` (content blocked),
    ``RATE_LIMIT`` or ``429`` (throttled).  Anything else is a generic
    failure carrying the original detail.
    """
    if isinstance(exc, GenerationError):
        return exc

    detail = str(exc) or exc.__class__.__name__

    if "API_KEY" in detail:
        return GenerationError(
            GenerationErrorKind.INVALID_CREDENTIALS,
            "Invalid API key. Check the GOOGLE_API_KEY configuration.",
            detail,
        )
    if "SAFETY" in detail:
        return GenerationError(
            GenerationErrorKind.SAFETY,
            "Image was blocked by safety filters. Try adjusting your prompt "
            "or using a different image.",
            detail,
        )
    if "RATE_LIMIT" in detail or "429" in detail:
        return GenerationError(
            GenerationErrorKind.RATE_LIMIT,
            "Rate limit reached. Please wait a moment and try again.",
            detail,
        )
    return GenerationError(GenerationErrorKind.FAILED, f"Generation failed: {detail}", detail)


# ---------------------------------------------------------------------------
# Service contract
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class GenerationPart:
    """One part of a service response; exactly one of text/image is set."""

    text: str | None = None
    image: UploadedFile | None = None
    thought: bool = False


@dataclass(frozen=True)
class GenerationResponse:
    """Service response: ordered parts plus token usage (0 when unreported)."""

    parts: tuple[GenerationPart, ...] = ()
    prompt_token_count: int = 0
    candidates_token_count: int = 0


class GenerationService(Protocol):
    """Anything that can turn an instruction and images into a response."""

    model: str

    def generate(
        self,
        instruction: str,
        base_image: UploadedFile,
        fabric_images: Sequence[UploadedFile],
    ) -> GenerationResponse: ...


@dataclass(frozen=True)
class ExtractedImage:
    """The image chosen from a response, with diagnostics.

    Attributes:
        image: Generated image, or the base photo when none came back.
        generated: ``True`` only if the service produced an image.
        text: Concatenated non-thought text parts.
        quality_flags: Flags describing a missing or suspect output.
    """

    image: UploadedFile
    generated: bool
    text: str = ""
    quality_flags: tuple[QualityFlag, ...] = ()


def extract_generated_image(
    response: GenerationResponse, base_image: UploadedFile
) -> ExtractedImage:
    """Select the output image from *response*.

    Thought parts are ignored entirely.  The first non-thought image part is
    the result; later image parts are dropped.  Without any image part the
    base photo is returned together with an error-severity
    ``no-image-generated`` flag and a warning carrying the service's text
    (truncated to 200 characters) for diagnosis.
    """
    image: UploadedFile | None = None
    text_chunks: list[str] = []

    for part in response.parts:
        if part.thought:
            continue
        if part.text:
            text_chunks.append(part.text)
        elif part.image is not None and image is None:
            image = part.image

    text = "".join(text_chunks)

    if image is not None:
        return ExtractedImage(image=image, generated=True, text=text)

    logger.warning("Generation response contained no image; returning the base photo")
    diagnostic = (
        f"Model response: {text[:DIAGNOSTIC_TEXT_LIMIT]}" if text else "No response from model"
    )
    return ExtractedImage(
        image=base_image,
        generated=False,
        text=text,
        quality_flags=(
            QualityFlag(
                code=NO_IMAGE_FLAG,
                message="The service did not return an edited image; showing the original photo.",
                severity=SEVERITY_ERROR,
            ),
            QualityFlag(code=MODEL_RESPONSE_FLAG, message=diagnostic, severity=SEVERITY_WARNING),
        ),
    )


# ---------------------------------------------------------------------------
# google-genai implementation
# ---------------------------------------------------------------------------


class GeminiGenerationClient:
    """Generation service backed by the Gemini image models.

    Attributes:
        model (str): Model identifier sent with each request.
        aspect_ratio (str): Requested output aspect ratio.
        image_size (str): Requested output resolution.
    """

    def __init__(
        self,
        api_key: str | None,
        model: str = DEFAULT_MODEL,
        *,
        aspect_ratio: str = "4:5",
        image_size: str = "2K",
        client: Any | None = None,
    ) -> None:
        self._api_key = api_key
        self.model = model
        self.aspect_ratio = aspect_ratio
        self.image_size = image_size
        self._client = client

    @classmethod
    def from_config(cls, config: DrapeworksConfig) -> GeminiGenerationClient:
        return cls(
            config.google_api_key,
            config.generation_model,
            aspect_ratio=config.aspect_ratio,
            image_size=config.image_size,
        )

    def _get_client(self) -> Any:
        if self._client is None:
            if not self._api_key:
                raise GenerationError(
                    GenerationErrorKind.MISSING_CREDENTIALS,
                    "GOOGLE_API_KEY not configured. Set it as an environment variable.",
                )
            from google import genai

            self._client = genai.Client(api_key=self._api_key)
        return self._client

    def generate(
        self,
        instruction: str,
        base_image: UploadedFile,
        fabric_images: Sequence[UploadedFile],
    ) -> GenerationResponse:
        """Send one edit request; raises whatever the SDK raises."""
        from google.genai import types

        client = self._get_client()

        contents: list[Any] = [instruction]
        contents.append(types.Part.from_bytes(data=base_image.data, mime_type=base_image.mime_type))
        for fabric in fabric_images:
            contents.append(types.Part.from_bytes(data=fabric.data, mime_type=fabric.mime_type))

        logger.info(
            f"Calling {self.model} with {len(contents)} content parts "
            f"({len(fabric_images)} fabric image(s), instruction {len(instruction)} chars)"
        )

        response = client.models.generate_content(
            model=self.model,
            contents=contents,
            config=types.GenerateContentConfig(
                response_modalities=["TEXT", "IMAGE"],
                image_config=types.ImageConfig(
                    aspect_ratio=self.aspect_ratio,
                    image_size=self.image_size,
                ),
            ),
        )
        return convert_sdk_response(response)


def convert_sdk_response(response: Any) -> GenerationResponse:
    """Convert a ``google-genai`` response into a :class:`GenerationResponse`.

    Only the first candidate is considered.  Missing usage metadata counts as
    zero tokens.
    """
    parts: list[GenerationPart] = []

    candidates = getattr(response, "candidates", None) or []
    content = getattr(candidates[0], "content", None) if candidates else None
    for part in getattr(content, "parts", None) or []:
        thought = bool(getattr(part, "thought", False))
        inline = getattr(part, "inline_data", None)
        if getattr(part, "text", None):
            parts.append(GenerationPart(text=part.text, thought=thought))
        elif inline is not None and inline.data:
            image = UploadedFile(
                data=inline.data,
                mime_type=inline.mime_type or "image/png",
                name="generated",
            )
            parts.append(GenerationPart(image=image, thought=thought))

    usage = getattr(response, "usage_metadata", None)
    prompt_tokens = getattr(usage, "prompt_token_count", None) or 0
    candidate_tokens = getattr(usage, "candidates_token_count", None) or 0

    logger.info(
        f"Generation response received: {len(candidates)} candidate(s), "
        f"{len(parts)} part(s), tokens {prompt_tokens}/{candidate_tokens}"
    )
    return GenerationResponse(
        parts=tuple(parts),
        prompt_token_count=prompt_tokens,
        candidates_token_count=candidate_tokens,
    )
