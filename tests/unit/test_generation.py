"""Unit tests for the generate orchestration."""

from unittest.mock import MagicMock

import pytest

from drapeworks.core.generation_client import GenerationError, GenerationErrorKind, GenerationResponse
from drapeworks.core.models import (
    AdvancedOptions,
    DesignNumberConfig,
    DesignNumberPosition,
    GarmentKind,
    WorkflowStep,
)
from drapeworks.core.prompt_builder import NEGATIVE_SUFFIX
from drapeworks.core.validation import ValidationError
from drapeworks.workflow.generation import WorkflowError, execute_generation, generate_design


class TestExecuteGeneration:
    def test_success_records_usage(self, fake_service, ledger, model_image, png_factory):
        fabrics = [png_factory(), png_factory()]
        outcome = execute_generation(fake_service, ledger, "instr", model_image, fabrics)

        assert outcome.extracted.generated
        record = outcome.record
        assert record.success
        assert (record.input_tokens, record.output_tokens) == (1200, 1290)
        assert (record.input_images, record.output_images) == (3, 1)
        assert record.model == "fake-image-model"
        assert ledger.records == (record,)

    def test_no_image_recorded_as_failure(self, fake_service, ledger, model_image):
        fake_service.response = GenerationResponse(prompt_token_count=900)
        outcome = execute_generation(fake_service, ledger, "instr", model_image, [])

        assert not outcome.extracted.generated
        assert outcome.record.success is False
        assert outcome.record.output_images == 0
        assert outcome.record.input_tokens == 900

    def test_exception_recorded_then_raised(self, fake_service, ledger, model_image, png_factory):
        fake_service.error = RuntimeError("SAFETY block")

        with pytest.raises(GenerationError) as excinfo:
            execute_generation(fake_service, ledger, "instr", model_image, [png_factory()])

        assert excinfo.value.kind is GenerationErrorKind.SAFETY
        assert isinstance(excinfo.value.__cause__, RuntimeError)
        (record,) = ledger.records
        assert record.success is False
        assert (record.input_tokens, record.output_tokens) == (0, 0)
        assert (record.input_images, record.output_images) == (2, 0)
        assert record.total_cost == pytest.approx(2 * 0.0032)

    def test_missing_credentials_recorded(self, fake_service, ledger, model_image):
        fake_service.error = GenerationError(GenerationErrorKind.MISSING_CREDENTIALS, "no key")
        with pytest.raises(GenerationError) as excinfo:
            execute_generation(fake_service, ledger, "instr", model_image, [])
        assert excinfo.value is fake_service.error
        assert ledger.get_stats().failed_generations == 1


class TestGenerateDesign:
    def test_refuses_incomplete_session(self, session, fake_service, ledger):
        with pytest.raises(WorkflowError):
            generate_design(session, fake_service, ledger)
        assert fake_service.calls == []
        assert ledger.records == ()

    def test_successful_generation(self, ready_session, fake_service, ledger, generated_image):
        result = generate_design(ready_session, fake_service, ledger)

        assert result.image == generated_image
        assert result.image_with_number is None
        assert result.design_number is None
        assert ready_session.generation_result is result
        assert ready_session.current_step is WorkflowStep.RESULT
        assert not ready_session.is_generating
        assert ready_session.auto_design_counter == 2
        assert ledger.get_stats().successful_generations == 1

    def test_request_contents(self, ready_session, fake_service, ledger, model_image, top_fabric, chunni_fabric):
        generate_design(ready_session, fake_service, ledger)

        ((instruction, base_image, fabric_images),) = fake_service.calls
        assert base_image is model_image
        # Garment order; the chunni page contributes its crop.
        assert fabric_images == [top_fabric.image, chunni_fabric.cropped_image]
        assert "TOP fabric source: Direct image: kurti.png" in instruction
        assert "CHUNNI fabric source: PDF: catalogue.pdf (Page 3) [cropped]" in instruction
        assert "BOTTOM fabric source" not in instruction
        assert instruction.endswith(NEGATIVE_SUFFIX)

    def test_custom_prompt_included(self, ready_session, fake_service, ledger):
        ready_session.set_advanced_options(custom_prompt="warmer tones")
        generate_design(ready_session, fake_service, ledger)
        assert "Additional instructions:\nwarmer tones" in fake_service.calls[0][0]

    def test_failure_returns_to_review_with_error(self, ready_session, fake_service, ledger):
        fake_service.error = RuntimeError("RATE_LIMIT exceeded")

        with pytest.raises(GenerationError):
            generate_design(ready_session, fake_service, ledger)

        assert ready_session.current_step is WorkflowStep.REVIEW
        assert ready_session.last_error == "Rate limit reached. Please wait a moment and try again."
        assert not ready_session.is_generating
        assert ready_session.generation_result is None
        assert ready_session.auto_design_counter == 1
        assert ledger.get_stats().failed_generations == 1

    def test_no_image_still_produces_result_with_flags(self, ready_session, fake_service, ledger, model_image):
        fake_service.response = GenerationResponse()
        result = generate_design(ready_session, fake_service, ledger)
        assert result.image is model_image
        assert result.quality_flags[0].code == "no-image-generated"
        assert ledger.get_stats().failed_generations == 1


class TestDesignNumbering:
    def test_auto_numbers_are_sequential(self, ready_session, fake_service, ledger):
        ready_session.set_advanced_options(design_number={"enabled": True})

        first = generate_design(ready_session, fake_service, ledger)
        ready_session.reset_to_step(WorkflowStep.REVIEW)
        second = generate_design(ready_session, fake_service, ledger)

        assert first.design_number == "DES-0001"
        assert second.design_number == "DES-0002"
        assert ready_session.auto_design_counter == 3

    def test_stored_number_matches_stamped_number(self, ready_session, fake_service, ledger):
        """The result keeps the number drawn on the image after the counter moves on."""
        ready_session.set_advanced_options(
            design_number={"enabled": True, "position": "bottom-left"}
        )
        overlay = MagicMock(side_effect=lambda image, text, **kwargs: image)

        result = generate_design(ready_session, fake_service, ledger, overlay=overlay)

        stamped_text = overlay.call_args.args[1]
        assert stamped_text == "DES-0001"
        assert result.design_number == stamped_text
        assert ready_session.resolve_design_number() == "DES-0002"
        assert ready_session.generation_result.design_number == "DES-0001"
        assert overlay.call_args.kwargs["position"] is DesignNumberPosition.BOTTOM_LEFT

    def test_explicit_number_used(self, ready_session, fake_service, ledger):
        ready_session.set_advanced_options(
            design_number={"enabled": True, "number": "AB 12", "format": "D-XXXX"}
        )
        result = generate_design(ready_session, fake_service, ledger)
        assert result.design_number == "D-AB-12"
        assert result.image_with_number is not None
        assert result.display_image is result.image_with_number

    def test_overlay_failure_keeps_unnumbered_image(self, ready_session, fake_service, ledger, caplog):
        ready_session.set_advanced_options(design_number={"enabled": True})
        overlay = MagicMock(side_effect=OSError("cannot decode"))

        result = generate_design(ready_session, fake_service, ledger, overlay=overlay)

        assert result.image_with_number is None
        assert result.design_number is None
        assert result.display_image is result.image
        assert "overlay failed" in caplog.text

    def test_deselected_garment_not_sent(self, ready_session, fake_service, ledger, top_fabric):
        ready_session.toggle_garment(GarmentKind.CHUNNI)
        generate_design(ready_session, fake_service, ledger)
        assert fake_service.calls[0][2] == [top_fabric.image]


class TestOptionChecks:
    """Invalid advanced options stop a generation before anything is sent."""

    def test_malformed_design_number_not_stamped(self, ready_session, fake_service, ledger):
        ready_session.advanced_options = AdvancedOptions(
            design_number=DesignNumberConfig(enabled=True, number="<AB#1>{x}/...")
        )

        with pytest.raises(ValidationError):
            generate_design(ready_session, fake_service, ledger)

        assert fake_service.calls == []
        assert ledger.records == ()
        assert ready_session.current_step is WorkflowStep.REVIEW
        assert not ready_session.is_generating
        assert ready_session.auto_design_counter == 1

    def test_overlong_custom_prompt_not_truncated(self, ready_session, fake_service, ledger):
        ready_session.advanced_options = AdvancedOptions(custom_prompt="warm " * 200)

        with pytest.raises(ValidationError, match="too long"):
            generate_design(ready_session, fake_service, ledger)

        assert fake_service.calls == []
        assert ready_session.generation_result is None
