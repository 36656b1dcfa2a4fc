"""Drapeworks Fabric Try-On — FastAPI Application.

This module is the single entry point for the web service.  It defines the
FastAPI ``app`` instance, all REST API routes, and the ``main()`` CLI
function that launches the uvicorn server.

Architecture
------------
The service is stateless per request.  The step-by-step workflow state lives
with the client; the server compiles instructions, screens free text,
formats design numbers, and runs generations.

- **Configuration** comes from :data:`~drapeworks.core.config.config`
  (``DRAPEWORKS_*`` environment variables and ``.env``).
- **Image generation** is performed by a
  :class:`~drapeworks.core.generation_client.GenerationService` created at
  startup and stored on ``app.state``.
- **Usage accounting** uses one process-wide
  :class:`~drapeworks.core.usage_ledger.UsageLedger`, also on ``app.state``.
  Every generate call leaves a record, successful or not.

Endpoints
---------
========  ============================  ====================================
Method    Path                          Purpose
========  ============================  ====================================
GET       ``/api/config``               Garments, formats, pricing, model
POST      ``/api/prompt/compile``       Preview the compiled instruction
POST      ``/api/prompt/check``         Screen custom text for risky words
POST      ``/api/design-number/format`` Validate and format a design number
POST      ``/api/generate``             Run one try-on generation
GET       ``/api/usage``                Usage and cost statistics
DELETE    ``/api/usage``                Reset usage statistics
========  ============================  ====================================

Usage
-----
CLI (installed entry point)::

    drapeworks

Direct invocation::

    python -m drapeworks.api.main
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, File, Form, HTTPException, Request, UploadFile
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from drapeworks import __version__
from drapeworks.api.models import CompilePromptRequest, DesignNumberRequest, PromptCheckRequest
from drapeworks.core.config import config
from drapeworks.core.design_number import DesignNumberFormat, format_number
from drapeworks.core.files import UploadedFile
from drapeworks.core.generation_client import GeminiGenerationClient, GenerationError
from drapeworks.core.ledger_store import create_ledger_store
from drapeworks.core.models import (
    GARMENT_ORDER,
    DesignNumberPosition,
    DesignNumberSize,
    DesignNumberStyle,
)
from drapeworks.core.prompt_builder import build_instruction, estimate_duration
from drapeworks.core.usage_ledger import UsageLedger
from drapeworks.core.validation import (
    ValidationError,
    check_custom_text,
    check_design_number_text,
    check_image_file,
    check_prompt_for_risk,
    require_valid,
    sanitize_free_text,
)
from drapeworks.workflow.generation import execute_generation

logger = logging.getLogger(__name__)

PROMPT_ECHO_LIMIT = 200
MODEL_RESPONSE_LIMIT = 500

# ---------------------------------------------------------------------------
# Application lifecycle — ledger and generation service setup.
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Create the process-wide ledger and generation service.

    The generation client does not contact the service until the first
    ``POST /api/generate``; a missing API key surfaces there as a 500.

    Args:
        app: The FastAPI application instance.

    Yields:
        Control back to the application for the duration of its lifetime.
    """
    store = create_ledger_store(config.ledger_backend, config.ledger_path)
    app.state.ledger = UsageLedger(
        store,
        config.pricing,
        recent_limit=config.recent_records_limit,
    )
    app.state.generation_service = GeminiGenerationClient.from_config(config)
    logger.info(
        f"Drapeworks started: model={config.generation_model}, "
        f"ledger={config.ledger_backend}:{config.ledger_path}, "
        f"API key present={bool(config.google_api_key)}"
    )

    yield  # Application runs here.

    logger.info("Drapeworks shutting down.")


# ---------------------------------------------------------------------------
# FastAPI application instance.
# ---------------------------------------------------------------------------
app = FastAPI(
    title="Drapeworks Fabric Try-On",
    description="Fabric re-texturing of garments on model photos.",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError) -> JSONResponse:
    """Report a rejected input as 400 with the user-facing message."""
    return JSONResponse(status_code=400, content={"detail": str(exc)})


# ---------------------------------------------------------------------------
# Upload helpers.
# ---------------------------------------------------------------------------


async def _read_image(upload: UploadFile, label: str) -> UploadedFile:
    """Read an uploaded image and apply the image file checks.

    Raises:
        ValidationError: The file type or size is not accepted.  The message
            names the upload.
    """
    data = await upload.read()
    file = UploadedFile(
        data=data,
        mime_type=upload.content_type or "image/jpeg",
        name=upload.filename or label,
    )
    try:
        require_valid(check_image_file(file))
    except ValidationError as e:
        logger.warning(f"Rejected {label} upload {file.name!r}: {e}")
        raise ValidationError(f"{label}: {e}") from e
    return file


# ---------------------------------------------------------------------------
# API routes.
# ---------------------------------------------------------------------------


@app.get("/api/config")
async def get_config() -> dict:
    """Return the option lists and pricing the frontend needs."""
    pricing = config.pricing
    return {
        "version": __version__,
        "model": config.generation_model,
        "garments": [kind.value for kind in GARMENT_ORDER],
        "design_number": {
            "formats": [f.value for f in DesignNumberFormat],
            "positions": [p.value for p in DesignNumberPosition],
            "styles": [s.value for s in DesignNumberStyle],
            "sizes": [s.value for s in DesignNumberSize],
        },
        "pricing": {
            "input_text_per_million": pricing.input_text_per_token * 1_000_000,
            "output_text_per_million": pricing.output_text_per_token * 1_000_000,
            "input_image": pricing.input_image,
            "output_image": pricing.output_image,
        },
        "max_custom_prompt_length": config.max_custom_prompt_length,
    }


@app.post("/api/prompt/compile")
async def compile_prompt(req: CompilePromptRequest) -> dict:
    """Preview the instruction that would be sent for a selection.

    Returns:
        Dictionary with ``compiled_prompt`` and ``estimated_duration``.

    Raises:
        ValidationError: The custom text is too long (400).
    """
    require_valid(check_custom_text(req.custom_prompt, config.max_custom_prompt_length))

    selection = req.selection()
    compiled = build_instruction(selection, req.fabric_sources(), req.custom_prompt)
    return {
        "compiled_prompt": compiled,
        "estimated_duration": estimate_duration(selection),
    }


@app.post("/api/prompt/check")
async def check_prompt(req: PromptCheckRequest) -> dict:
    """Screen custom text for words that imply geometry changes.

    The result is advisory; nothing here blocks a generation.
    """
    risks = check_prompt_for_risk(req.text)
    check = check_custom_text(req.text, config.max_custom_prompt_length)
    return {
        "risks": [
            {"keyword": r.keyword, "message": r.message, "severity": r.severity} for r in risks
        ],
        "sanitized": sanitize_free_text(req.text, config.max_custom_prompt_length),
        "valid": check.valid,
        "error": check.error,
    }


@app.post("/api/design-number/format")
async def format_design_number(req: DesignNumberRequest) -> dict:
    """Validate a raw design number and return its formatted text.

    Raises:
        ValidationError: The number is malformed (400).
    """
    require_valid(check_design_number_text(req.number))
    return {"design_number": format_number(req.number, req.format, req.custom_prefix)}


@app.post("/api/generate")
async def generate(
    request: Request,
    prompt: str = Form(default=""),
    model_image: UploadFile | None = File(default=None, alias="modelImage"),
    fabric_top: UploadFile | None = File(default=None),
    fabric_bottom: UploadFile | None = File(default=None),
    fabric_chunni: UploadFile | None = File(default=None),
) -> dict:
    """Run one try-on generation.

    This endpoint:

    1. Checks the compiled prompt and the model photo are present.
    2. Validates every uploaded image (type and size).
    3. Calls the generation service with the prompt, the model photo and
       the fabric images in top, bottom, chunni order.
    4. Records usage whatever the outcome.

    Returns:
        Dictionary with ``image_url`` (base64 data URL), ``prompt``,
        ``quality_flags``, ``usage`` and ``metadata``.

    Raises:
        ValidationError: An uploaded image is not accepted (400).
        HTTPException: 400 for missing inputs; 401, 422, 429 or
            500 for classified service failures.
    """
    if not prompt:
        raise HTTPException(status_code=400, detail="No prompt provided")
    if model_image is None:
        raise HTTPException(status_code=400, detail="No model image provided")

    base_image = await _read_image(model_image, "Model image")
    fabric_images: list[UploadedFile] = []
    for kind, upload in zip(GARMENT_ORDER, (fabric_top, fabric_bottom, fabric_chunni)):
        if upload is not None:
            fabric_images.append(await _read_image(upload, f"{kind.value} fabric"))

    logger.info(
        f"Generate request: prompt {len(prompt)} chars, model image {base_image.name} "
        f"({base_image.size} bytes), {len(fabric_images)} fabric image(s)"
    )

    service = request.app.state.generation_service
    ledger: UsageLedger = request.app.state.ledger
    try:
        outcome = await run_in_threadpool(
            execute_generation, service, ledger, prompt, base_image, fabric_images
        )
    except GenerationError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message) from e

    extracted = outcome.extracted
    record = outcome.record
    prompt_echo = prompt[:PROMPT_ECHO_LIMIT] + ("..." if len(prompt) > PROMPT_ECHO_LIMIT else "")

    return {
        "image_url": extracted.image.to_data_url(),
        "prompt": prompt_echo,
        "quality_flags": [
            {"code": f.code, "message": f.message, "severity": f.severity}
            for f in extracted.quality_flags
        ],
        "usage": {
            "input_tokens": record.input_tokens,
            "output_tokens": record.output_tokens,
            "total_tokens": record.input_tokens + record.output_tokens,
            "cost": record.total_cost,
        },
        "metadata": {
            "fabric_count": len(fabric_images),
            "generated_at": datetime.fromtimestamp(record.timestamp, tz=timezone.utc).isoformat(),
            "model": record.model,
            "model_response": extracted.text[:MODEL_RESPONSE_LIMIT] or None,
        },
    }


@app.get("/api/usage")
async def get_usage(request: Request) -> dict:
    """Return aggregate usage and cost statistics."""
    ledger: UsageLedger = request.app.state.ledger
    return ledger.get_stats().model_dump()


@app.delete("/api/usage")
async def reset_usage(request: Request) -> dict:
    """Reset the usage ledger, including the session start."""
    ledger: UsageLedger = request.app.state.ledger
    ledger.reset()
    return {"message": "Usage stats reset"}


# ---------------------------------------------------------------------------
# CLI entry point.
# ---------------------------------------------------------------------------


def main() -> None:
    """Launch the uvicorn ASGI server.

    Reads host and port from :data:`~drapeworks.core.config.config` (which
    loads from ``DRAPEWORKS_SERVER_HOST`` and ``DRAPEWORKS_SERVER_PORT``
    environment variables).  Defaults to ``0.0.0.0:7860``.

    This function is registered as the ``drapeworks`` console script in
    ``pyproject.toml``.
    """
    import uvicorn

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    uvicorn.run(
        "drapeworks.api.main:app",
        host=config.server_host,
        port=config.server_port,
        reload=False,
    )


if __name__ == "__main__":
    main()
