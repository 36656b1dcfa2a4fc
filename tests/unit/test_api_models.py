"""Tests for drapeworks.api.models — Pydantic request models.

Tests cover:
- Fabric descriptor validation and conversion to fabric sources.
- Required fields and defaults on request bodies.
"""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from drapeworks.api.models import (
    CompilePromptRequest,
    DesignNumberRequest,
    FabricDescriptor,
    PromptCheckRequest,
)
from drapeworks.core.design_number import DesignNumberFormat
from drapeworks.core.models import DocumentPageFabric, GarmentKind, ImageFabric


class TestFabricDescriptor:
    def test_image_descriptor(self):
        source = FabricDescriptor(garment="top", file_name="kurti.png").to_source()
        assert isinstance(source, ImageFabric)
        assert source.describe() == "Direct image: kurti.png"

    def test_document_page_descriptor(self):
        descriptor = FabricDescriptor(
            garment="chunni",
            source_type="document-page",
            file_name="catalogue.pdf",
            page=3,
            total_pages=5,
            cropped=True,
        )
        source = descriptor.to_source()
        assert isinstance(source, DocumentPageFabric)
        assert source.describe() == "PDF: catalogue.pdf (Page 3) [cropped]"

    def test_document_page_requires_page(self):
        with pytest.raises(ValidationError):
            FabricDescriptor(garment="top", source_type="document-page", file_name="a.pdf")

    def test_page_beyond_total_rejected(self):
        with pytest.raises(ValidationError):
            FabricDescriptor(
                garment="top", source_type="document-page", file_name="a.pdf", page=6, total_pages=5
            )

    def test_unknown_garment_rejected(self):
        with pytest.raises(ValidationError):
            FabricDescriptor(garment="sleeve", file_name="a.png")

    def test_empty_file_name_rejected(self):
        with pytest.raises(ValidationError):
            FabricDescriptor(garment="top", file_name="")


class TestCompilePromptRequest:
    def test_garments_required(self):
        with pytest.raises(ValidationError):
            CompilePromptRequest(garments=[])

    def test_selection_and_sources(self):
        req = CompilePromptRequest(
            garments=["chunni", "top", "top"],
            fabrics=[{"garment": "top", "file_name": "kurti.png"}],
        )
        assert req.selection().key == "top+chunni"
        assert set(req.fabric_sources()) == {GarmentKind.TOP}
        assert req.custom_prompt == ""


class TestSmallRequests:
    def test_prompt_check_default(self):
        assert PromptCheckRequest().text == ""

    def test_design_number_defaults(self):
        req = DesignNumberRequest(number="12")
        assert req.format is DesignNumberFormat.DES
        assert req.custom_prefix == ""

    def test_design_number_format_values(self):
        assert DesignNumberRequest(number="1", format="custom").format is DesignNumberFormat.CUSTOM
        with pytest.raises(ValidationError):
            DesignNumberRequest(number="1", format="??")
