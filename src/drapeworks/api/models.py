"""Pydantic request and response models for the Drapeworks API.

These models define the JSON schema for the JSON endpoints.  FastAPI uses
them for automatic request validation, serialisation, and OpenAPI
documentation generation.  ``POST /api/generate`` takes multipart form data
and is not described here.

Models
------
FabricDescriptor
    Description of one fabric binding, enough to render its source line.
CompilePromptRequest
    Payload for ``POST /api/prompt/compile``.
PromptCheckRequest
    Payload for ``POST /api/prompt/check``.
DesignNumberRequest
    Payload for ``POST /api/design-number/format``.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field, model_validator

from drapeworks.core.design_number import DesignNumberFormat
from drapeworks.core.files import UploadedFile
from drapeworks.core.models import (
    DocumentPageFabric,
    FabricSource,
    GarmentKind,
    GarmentSelection,
    ImageFabric,
)

# Descriptors carry names only; the payload is never sent anywhere.
_NO_PAYLOAD = UploadedFile(data=b"", mime_type="image/png")


class FabricDescriptor(BaseModel):
    """A fabric binding as described by the client.

    Attributes:
        garment: Garment kind the fabric is bound to.
        source_type: ``"image"`` for a direct image, ``"document-page"`` for
            a page taken from a PDF.
        file_name: Image file name or document name.
        page: Chosen page (document pages only).
        total_pages: Page count of the document (document pages only).
        cropped: Whether a crop of the page replaces the full page.
    """

    garment: GarmentKind = Field(..., description="Garment kind: 'top', 'bottom' or 'chunni'.")
    source_type: Literal["image", "document-page"] = Field(
        default="image",
        description="'image' for a direct image, 'document-page' for a PDF page.",
    )
    file_name: str = Field(..., min_length=1, description="Image file name or document name.")
    page: int | None = Field(default=None, ge=1, description="1-based page number.")
    total_pages: int | None = Field(default=None, ge=1, description="Document page count.")
    cropped: bool = Field(default=False, description="True if a crop overrides the page.")

    @model_validator(mode="after")
    def _check_page(self) -> FabricDescriptor:
        if self.source_type == "document-page":
            if self.page is None:
                raise ValueError("page is required for document-page fabrics")
            total = self.total_pages if self.total_pages is not None else self.page
            if self.page > total:
                raise ValueError(f"page must be 1-{total}")
        return self

    def to_source(self) -> FabricSource:
        """Build the equivalent fabric source (without image payloads)."""
        if self.source_type == "image":
            return ImageFabric(image=_NO_PAYLOAD, file_name=self.file_name)
        return DocumentPageFabric(
            document_name=self.file_name,
            page=self.page,
            total_pages=self.total_pages if self.total_pages is not None else self.page,
            page_image=_NO_PAYLOAD,
            cropped_image=_NO_PAYLOAD if self.cropped else None,
        )


class CompilePromptRequest(BaseModel):
    """Request body for ``POST /api/prompt/compile``.

    Attributes:
        garments: Selected garment kinds (order and duplicates are ignored).
        fabrics: Fabric bindings; bindings for unselected kinds are ignored.
        custom_prompt: Optional operator instruction, sanitized before use.
    """

    garments: list[GarmentKind] = Field(..., min_length=1, description="Selected garment kinds.")
    fabrics: list[FabricDescriptor] = Field(default_factory=list)
    custom_prompt: str = Field(default="", description="Additional operator instruction.")

    def selection(self) -> GarmentSelection:
        return GarmentSelection.of(*self.garments)

    def fabric_sources(self) -> dict[GarmentKind, FabricSource]:
        return {fabric.garment: fabric.to_source() for fabric in self.fabrics}


class PromptCheckRequest(BaseModel):
    """Request body for ``POST /api/prompt/check``."""

    text: str = Field(default="", description="Custom instruction to screen.")


class DesignNumberRequest(BaseModel):
    """Request body for ``POST /api/design-number/format``.

    Attributes:
        number: Raw design number typed by the operator.
        format: Prefix format.
        custom_prefix: Prefix used with the ``custom`` format.
    """

    number: str = Field(..., description="Raw design number, max 15 characters.")
    format: DesignNumberFormat = Field(default=DesignNumberFormat.DES)
    custom_prefix: str = Field(default="", description="Prefix for the custom format.")
