"""Generate orchestration: review -> generating -> result (or back to review).

:func:`execute_generation` is the single place where the generation service
is called.  It always leaves a usage record behind, whether the call
succeeded, returned no image, or raised.  :func:`generate_design` wraps it
with the session bookkeeping used by the step-by-step workflow; the HTTP
generate endpoint calls :func:`execute_generation` directly.
"""

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass

from drapeworks.core.files import UploadedFile
from drapeworks.core.generation_client import (
    ExtractedImage,
    GenerationError,
    GenerationService,
    classify_generation_error,
    extract_generated_image,
)
from drapeworks.core.imaging import add_design_number_overlay
from drapeworks.core.models import GenerationResult, WorkflowStep
from drapeworks.core.prompt_builder import build_instruction
from drapeworks.core.usage_ledger import UsageLedger, UsageRecord
from drapeworks.workflow.session import WorkflowSession

logger = logging.getLogger(__name__)

OverlayFunc = Callable[..., UploadedFile]


class WorkflowError(Exception):
    """Raised when a session is asked to generate before it is ready."""

    pass


@dataclass(frozen=True)
class GenerationOutcome:
    """Extracted image plus the usage record written for the call."""

    extracted: ExtractedImage
    record: UsageRecord


def execute_generation(
    service: GenerationService,
    ledger: UsageLedger,
    instruction: str,
    base_image: UploadedFile,
    fabric_images: Sequence[UploadedFile],
) -> GenerationOutcome:
    """Call *service* once and record its usage.

    A failed call is recorded with zero tokens and zero output images; the
    input image count (model photo plus fabrics) is still reported.

    Raises:
        GenerationError: The classified failure, after it has been recorded.
    """
    input_images = 1 + len(fabric_images)

    try:
        response = service.generate(instruction, base_image, fabric_images)
    except Exception as e:
        error = classify_generation_error(e)
        logger.error(f"Generation failed ({error.kind.value}): {error.detail or error.message}")
        ledger.record_generation(
            input_tokens=0,
            output_tokens=0,
            input_images=input_images,
            output_images=0,
            model=service.model,
            success=False,
        )
        if error is e:
            raise
        raise error from e

    extracted = extract_generated_image(response, base_image)
    record = ledger.record_generation(
        input_tokens=response.prompt_token_count,
        output_tokens=response.candidates_token_count,
        input_images=input_images,
        output_images=1 if extracted.generated else 0,
        model=service.model,
        success=extracted.generated,
    )
    return GenerationOutcome(extracted=extracted, record=record)


def generate_design(
    session: WorkflowSession,
    service: GenerationService,
    ledger: UsageLedger,
    *,
    overlay: OverlayFunc = add_design_number_overlay,
) -> GenerationResult:
    """Run the generate action of the review step.

    The design number is resolved once, before the call, from the current
    auto counter; the stored result carries exactly the text stamped on the
    image, so the result screen never recomputes it.

    Raises:
        WorkflowError: The session cannot reach review yet.
        ValidationError: The custom instruction or design number is invalid.
            Nothing is sent and the session is unchanged.
        GenerationError: The service call failed.  The session is back on
            review with ``last_error`` set.
    """
    if not session.can_reach_review():
        raise WorkflowError("Complete the model image, garment and fabric steps first.")
    session.validate_advanced_options()

    selection = session.garment_selection
    fabrics = session.fabric_selections
    options = session.advanced_options

    session.start_generation()
    instruction = build_instruction(selection, fabrics, options.custom_prompt)
    design_number = session.resolve_design_number()
    fabric_images = [fabrics[kind].payload() for kind in selection.ordered()]

    logger.info(
        f"Generating {selection.key} with {len(fabric_images)} fabric image(s), "
        f"design number {design_number or 'disabled'}"
    )

    try:
        outcome = execute_generation(
            service, ledger, instruction, session.model_image, fabric_images
        )
    except GenerationError as e:
        # go_to_step clears last_error, so the error is set afterwards.
        session.go_to_step(WorkflowStep.REVIEW)
        session.set_error(e.message)
        raise

    image = outcome.extracted.image
    image_with_number = None
    if design_number is not None:
        settings = options.design_number
        try:
            image_with_number = overlay(
                image,
                design_number,
                position=settings.position,
                style=settings.style,
                size=settings.size,
            )
        except Exception as e:
            logger.error(f"Design number overlay failed, keeping unnumbered image: {e}")
            design_number = None

    result = GenerationResult(
        image=image,
        image_with_number=image_with_number,
        design_number=design_number,
        quality_flags=outcome.extracted.quality_flags,
    )
    session.set_generation_result(result)
    return result
