"""Workflow state machine for one try-on session.

A session walks through five navigable steps (model photo, garment choice,
fabrics, advanced options, review) and then through ``generating`` to
``result``.  The state machine records what the operator has collected and
answers whether each step is complete; it never blocks a jump itself.
Callers gate forward navigation with :meth:`WorkflowSession.can_proceed`.

One session exists per operator.  Sessions are not thread-safe and are never
shared between users; the usage ledger is the only process-wide state.

Invariant: a garment kind that is not selected has no bound fabric source.
:meth:`WorkflowSession.toggle_garment` removes the binding in the same call
that deselects the kind.
"""

import dataclasses
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from drapeworks.core.design_number import auto_number, format_number
from drapeworks.core.files import UploadedFile
from drapeworks.core.models import (
    NAVIGABLE_STEPS,
    STEP_TITLES,
    AdvancedOptions,
    DesignNumberConfig,
    FabricSource,
    GarmentKind,
    GarmentSelection,
    GenerationResult,
    WorkflowStep,
)
from drapeworks.core.validation import check_custom_text, check_design_number_text, require_valid

logger = logging.getLogger(__name__)


@dataclass
class WorkflowSession:
    """Mutable state of one try-on session.

    Attributes:
        current_step: Step currently shown to the operator.
        model_image: The uploaded model photo, if any.
        model_preview_ref: Displayable reference for the model photo.
        garment_selection: Garment kinds chosen for re-texturing.
        fabric_selections: Fabric source bound to each garment kind.
        advanced_options: Custom instruction and design-number settings.
        generation_result: Outcome of the last successful generation.
        is_generating: ``True`` between :meth:`start_generation` and the
            matching :meth:`set_generation_result` or :meth:`set_error`.
        last_error: Message of the last failure, cleared on navigation.
        auto_design_counter: Next auto-assigned design number.
    """

    current_step: WorkflowStep = WorkflowStep.UPLOAD_MODEL
    model_image: UploadedFile | None = None
    model_preview_ref: str | None = None
    garment_selection: GarmentSelection = field(default_factory=GarmentSelection)
    fabric_selections: dict[GarmentKind, FabricSource] = field(default_factory=dict)
    advanced_options: AdvancedOptions = field(default_factory=AdvancedOptions)
    generation_result: GenerationResult | None = None
    is_generating: bool = False
    last_error: str | None = None
    auto_design_counter: int = 1

    @property
    def step_title(self) -> str:
        return STEP_TITLES[self.current_step]

    # -- Navigation ---------------------------------------------------------

    def go_to_step(self, step: WorkflowStep | str) -> None:
        """Jump to *step* unconditionally and clear the last error."""
        self.current_step = WorkflowStep(step)
        self.last_error = None
        logger.debug(f"Moved to step {self.current_step.value}")

    def can_proceed(self, step: WorkflowStep | str) -> bool:
        """Whether *step* has everything it needs to move on."""
        step = WorkflowStep(step)
        if step == WorkflowStep.UPLOAD_MODEL:
            return self.model_image is not None
        if step == WorkflowStep.SELECT_GARMENTS:
            return not self.garment_selection.is_empty()
        if step == WorkflowStep.UPLOAD_FABRICS:
            return all(self.is_garment_ready(kind) for kind in self.garment_selection.ordered())
        # Advanced options and review are optional.
        return True

    def can_reach_review(self) -> bool:
        """Whether every step before review is complete."""
        return all(
            self.can_proceed(step)
            for step in (
                WorkflowStep.UPLOAD_MODEL,
                WorkflowStep.SELECT_GARMENTS,
                WorkflowStep.UPLOAD_FABRICS,
            )
        )

    def next_step(self) -> WorkflowStep | None:
        """The navigable step after the current one, or ``None`` at review."""
        if self.current_step not in NAVIGABLE_STEPS:
            return None
        index = NAVIGABLE_STEPS.index(self.current_step)
        if index + 1 < len(NAVIGABLE_STEPS):
            return NAVIGABLE_STEPS[index + 1]
        return None

    def previous_step(self) -> WorkflowStep | None:
        """The navigable step before the current one, or ``None`` at the start."""
        if self.current_step not in NAVIGABLE_STEPS:
            return None
        index = NAVIGABLE_STEPS.index(self.current_step)
        return NAVIGABLE_STEPS[index - 1] if index > 0 else None

    def advance(self) -> bool:
        """Move to the next step if the current one is complete.

        Returns:
            ``True`` if the session moved forward.
        """
        target = self.next_step()
        if target is None or not self.can_proceed(self.current_step):
            return False
        self.go_to_step(target)
        return True

    def go_back(self) -> bool:
        target = self.previous_step()
        if target is None:
            return False
        self.go_to_step(target)
        return True

    # -- Inputs -------------------------------------------------------------

    def set_model_image(self, file: UploadedFile, preview_ref: str | None = None) -> None:
        self.model_image = file
        self.model_preview_ref = preview_ref
        logger.debug(f"Model image set: {file.name} ({file.size} bytes)")

    def clear_model_image(self) -> None:
        """Unbind the model photo; later steps keep their state."""
        self.model_image = None
        self.model_preview_ref = None

    def toggle_garment(self, kind: GarmentKind | str) -> None:
        """Flip *kind*'s selection; deselecting also drops its fabric."""
        kind = GarmentKind(kind)
        self.garment_selection = self.garment_selection.toggled(kind)
        if kind not in self.garment_selection:
            self.fabric_selections.pop(kind, None)
        logger.debug(f"Garment selection is now {self.garment_selection.key or '(none)'}")

    def set_fabric(self, kind: GarmentKind | str, source: FabricSource) -> None:
        """Bind *source* to *kind*.  The kind need not be selected."""
        self.fabric_selections[GarmentKind(kind)] = source

    def clear_fabric(self, kind: GarmentKind | str) -> None:
        self.fabric_selections.pop(GarmentKind(kind), None)

    def is_garment_ready(self, kind: GarmentKind | str) -> bool:
        """Whether *kind* has a bound fabric source."""
        return GarmentKind(kind) in self.fabric_selections

    def set_advanced_options(
        self,
        *,
        custom_prompt: str | None = None,
        design_number: DesignNumberConfig | Mapping[str, Any] | None = None,
    ) -> None:
        """Merge a partial update into the advanced options.

        Args:
            custom_prompt: Replacement custom instruction, if given.
            design_number: Either a complete :class:`DesignNumberConfig` or a
                mapping of the fields to change; unnamed fields keep their
                current values.

        Raises:
            ValidationError: The custom instruction is too long or the design
                number is malformed.  The current options are left unchanged.
        """
        options = self.advanced_options
        number_config = options.design_number
        if isinstance(design_number, DesignNumberConfig):
            number_config = design_number
        elif design_number:
            number_config = dataclasses.replace(number_config, **dict(design_number))

        updated = AdvancedOptions(
            custom_prompt=options.custom_prompt if custom_prompt is None else custom_prompt,
            design_number=number_config,
        )
        self.validate_advanced_options(updated)
        self.advanced_options = updated

    def validate_advanced_options(self, options: AdvancedOptions | None = None) -> None:
        """Check the custom instruction length and any operator design number.

        A blank design number is valid; the auto counter fills it in.

        Raises:
            ValidationError: With the message to show next to the input.
        """
        if options is None:
            options = self.advanced_options
        require_valid(check_custom_text(options.custom_prompt))
        number = options.design_number.number
        if number.strip():
            require_valid(check_design_number_text(number))

    def resolve_design_number(self) -> str | None:
        """Formatted design number for the next generation.

        Uses the operator's number, or the auto counter when it is blank.
        Returns ``None`` when numbering is disabled.
        """
        settings = self.advanced_options.design_number
        if not settings.enabled:
            return None
        raw = settings.number.strip() or auto_number(self.auto_design_counter)
        return format_number(raw, settings.format, settings.custom_prefix)

    # -- Generation lifecycle -------------------------------------------------

    def start_generation(self) -> None:
        """Mark a generation as in flight; the caller performs the call."""
        self.is_generating = True
        self.current_step = WorkflowStep.GENERATING
        self.last_error = None

    def set_generation_result(self, result: GenerationResult) -> None:
        self.is_generating = False
        self.generation_result = result
        self.current_step = WorkflowStep.RESULT
        self.auto_design_counter += 1
        logger.info(
            f"Generation stored (design number {result.design_number or 'none'}), "
            f"next auto number {self.auto_design_counter}"
        )

    def set_error(self, message: str) -> None:
        """Record a failure.  The current step is left to the caller."""
        self.is_generating = False
        self.last_error = message
        logger.warning(f"Workflow error: {message}")

    def reset_to_step(self, step: WorkflowStep | str) -> None:
        """Drop the result and any error and return to *step* (regenerate)."""
        self.generation_result = None
        self.is_generating = False
        self.last_error = None
        self.current_step = WorkflowStep(step)

    def reset_workflow(self) -> None:
        """Return every field to its initial value (start over)."""
        fresh = WorkflowSession()
        for f in dataclasses.fields(self):
            setattr(self, f.name, getattr(fresh, f.name))
        logger.info("Workflow reset")
