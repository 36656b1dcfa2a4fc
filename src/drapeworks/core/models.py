"""Data models for the try-on workflow.

These dataclasses describe everything a session collects on its way to a
generation request: the garment kinds to re-texture, the fabric bound to each
kind, the optional custom instruction and design-number settings, and the
immutable result that comes back.
"""

import time
from dataclasses import dataclass, field
from enum import Enum

from drapeworks.core.design_number import DesignNumberFormat
from drapeworks.core.files import UploadedFile


class WorkflowStep(str, Enum):
    """Workflow steps in their fixed total order."""

    UPLOAD_MODEL = "upload-model"
    SELECT_GARMENTS = "select-garments"
    UPLOAD_FABRICS = "upload-fabrics"
    ADVANCED_OPTIONS = "advanced-options"
    REVIEW = "review"
    GENERATING = "generating"
    RESULT = "result"


# Steps reachable by forward/back navigation.  GENERATING and RESULT are only
# entered through the review step's generate action.
NAVIGABLE_STEPS = (
    WorkflowStep.UPLOAD_MODEL,
    WorkflowStep.SELECT_GARMENTS,
    WorkflowStep.UPLOAD_FABRICS,
    WorkflowStep.ADVANCED_OPTIONS,
    WorkflowStep.REVIEW,
)

STEP_TITLES = {
    WorkflowStep.UPLOAD_MODEL: "Step 1: Upload Model Image",
    WorkflowStep.SELECT_GARMENTS: "Step 2: Select Garments to Replace",
    WorkflowStep.UPLOAD_FABRICS: "Step 3: Choose Fabric Designs",
    WorkflowStep.ADVANCED_OPTIONS: "Step 4: Advanced Options",
    WorkflowStep.REVIEW: "Step 5: Review & Generate",
    WorkflowStep.GENERATING: "Generating...",
    WorkflowStep.RESULT: "Your Result",
}


class GarmentKind(str, Enum):
    """Replacement targets on the model photo."""

    TOP = "top"  # kurti
    BOTTOM = "bottom"  # salwar
    CHUNNI = "chunni"  # dupatta / drape


GARMENT_ORDER = (GarmentKind.TOP, GarmentKind.BOTTOM, GarmentKind.CHUNNI)


@dataclass(frozen=True)
class GarmentSelection:
    """Set of garment kinds chosen for re-texturing.

    Order of selection is irrelevant; :meth:`ordered` always yields kinds in
    top, bottom, chunni order.  The empty selection is valid but cannot
    proceed past the garment step.
    """

    kinds: frozenset[GarmentKind] = frozenset()

    @classmethod
    def of(cls, *kinds: GarmentKind | str) -> "GarmentSelection":
        """Build a selection from kinds or their string values."""
        return cls(frozenset(GarmentKind(k) for k in kinds))

    def __contains__(self, kind: object) -> bool:
        return kind in self.kinds

    def __len__(self) -> int:
        return len(self.kinds)

    def is_empty(self) -> bool:
        return not self.kinds

    def ordered(self) -> tuple[GarmentKind, ...]:
        """Selected kinds in canonical garment order."""
        return tuple(kind for kind in GARMENT_ORDER if kind in self.kinds)

    def toggled(self, kind: GarmentKind) -> "GarmentSelection":
        """Return a copy with *kind*'s membership flipped."""
        return GarmentSelection(self.kinds ^ {kind})

    @property
    def key(self) -> str:
        """Combination key such as ``"top+chunni"``."""
        return "+".join(kind.value for kind in self.ordered())


@dataclass(frozen=True)
class ImageFabric:
    """Fabric supplied directly as an image file."""

    image: UploadedFile
    file_name: str
    preview_ref: str = ""

    source_type = "image"

    def describe(self) -> str:
        return f"Direct image: {self.file_name}"

    def payload(self) -> UploadedFile:
        """Image sent to the generation service for this fabric."""
        return self.image


@dataclass(frozen=True)
class DocumentPageFabric:
    """Fabric taken from one page of a multi-page document.

    Attributes:
        document_name: Display name of the source document.
        page: Chosen page, 1-based.
        total_pages: Page count of the document.
        page_image: Rendered image of the chosen page.
        cropped_image: Optional region cut from ``page_image``; when present
            it replaces the full page in the generation request.
        document: The original document bytes, if retained.
        preview_ref: Reference to a displayable preview of the page.
    """

    document_name: str
    page: int
    total_pages: int
    page_image: UploadedFile
    cropped_image: UploadedFile | None = None
    document: UploadedFile | None = None
    preview_ref: str = ""

    source_type = "document-page"

    def __post_init__(self) -> None:
        if self.total_pages < 1:
            raise ValueError(f"Document must have at least one page, got {self.total_pages}")
        if self.page < 1 or self.page > self.total_pages:
            raise ValueError(f"Page must be 1-{self.total_pages}, got {self.page}")

    @property
    def is_cropped(self) -> bool:
        return self.cropped_image is not None

    def describe(self) -> str:
        cropped = " [cropped]" if self.is_cropped else ""
        return f"PDF: {self.document_name} (Page {self.page}){cropped}"

    def payload(self) -> UploadedFile:
        """Image sent to the generation service for this fabric."""
        return self.cropped_image if self.cropped_image is not None else self.page_image


FabricSource = ImageFabric | DocumentPageFabric


class DesignNumberPosition(str, Enum):
    TOP_RIGHT = "top-right"
    TOP_LEFT = "top-left"
    BOTTOM_RIGHT = "bottom-right"
    BOTTOM_LEFT = "bottom-left"


class DesignNumberStyle(str, Enum):
    WHITE_ON_DARK = "white-on-dark"
    BLACK_ON_LIGHT = "black-on-light"


class DesignNumberSize(str, Enum):
    SMALL = "small"
    MEDIUM = "medium"
    LARGE = "large"


@dataclass
class DesignNumberConfig:
    """Settings for the design number stamped on the result image.

    An empty ``number`` means "use the session's auto-design counter".
    """

    enabled: bool = False
    number: str = ""
    format: DesignNumberFormat = DesignNumberFormat.DES
    custom_prefix: str = ""
    position: DesignNumberPosition = DesignNumberPosition.TOP_RIGHT
    style: DesignNumberStyle = DesignNumberStyle.WHITE_ON_DARK
    size: DesignNumberSize = DesignNumberSize.SMALL

    def __post_init__(self) -> None:
        # Accept plain strings from partial updates and request payloads.
        self.format = DesignNumberFormat(self.format)
        self.position = DesignNumberPosition(self.position)
        self.style = DesignNumberStyle(self.style)
        self.size = DesignNumberSize(self.size)


@dataclass
class AdvancedOptions:
    """Optional settings collected on the advanced-options step."""

    custom_prompt: str = ""
    design_number: DesignNumberConfig = field(default_factory=DesignNumberConfig)


SEVERITY_WARNING = "warning"
SEVERITY_ERROR = "error"


@dataclass(frozen=True)
class QualityFlag:
    """Annotation raised when the service may not have applied the edit faithfully.

    Attributes:
        code: Machine-readable flag, e.g. ``"no-image-generated"``.
        message: Human-readable explanation.
        severity: ``"warning"`` or ``"error"``.
    """

    code: str
    message: str
    severity: str = SEVERITY_WARNING


@dataclass(frozen=True)
class GenerationResult:
    """Immutable outcome of one generation.

    ``design_number`` is the exact text stamped on ``image_with_number``;
    it is computed once, at generation time.
    """

    image: UploadedFile
    image_with_number: UploadedFile | None = None
    design_number: str | None = None
    created_at: float = field(default_factory=time.time)
    quality_flags: tuple[QualityFlag, ...] = ()

    @property
    def display_image(self) -> UploadedFile:
        """Numbered variant when one exists, otherwise the base output."""
        return self.image_with_number if self.image_with_number is not None else self.image
