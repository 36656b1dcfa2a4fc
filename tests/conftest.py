"""Shared pytest fixtures for Drapeworks tests."""

import io
import shutil
import tempfile
from collections.abc import Sequence
from pathlib import Path
from typing import Generator

import pytest
from PIL import Image

from drapeworks.core.config import DrapeworksConfig
from drapeworks.core.files import UploadedFile
from drapeworks.core.generation_client import GenerationPart, GenerationResponse
from drapeworks.core.ledger_store import MemoryLedgerStore
from drapeworks.core.models import DocumentPageFabric, GarmentKind, ImageFabric
from drapeworks.core.usage_ledger import UsageLedger
from drapeworks.workflow.session import WorkflowSession


def make_png(width: int = 64, height: int = 80, color=(200, 30, 60), name: str = "image.png"):
    """Encode a solid-colour PNG as an :class:`UploadedFile`."""
    buffer = io.BytesIO()
    Image.new("RGB", (width, height), color).save(buffer, format="PNG")
    return UploadedFile(data=buffer.getvalue(), mime_type="image/png", name=name)


class FakeGenerationService:
    """In-process stand-in for the generation service.

    Returns ``response`` (or raises ``error``) and records every call.
    """

    def __init__(self, response: GenerationResponse | None = None, error: Exception | None = None):
        self.model = "fake-image-model"
        self.response = response
        self.error = error
        self.calls: list[tuple[str, UploadedFile, list[UploadedFile]]] = []

    def generate(
        self,
        instruction: str,
        base_image: UploadedFile,
        fabric_images: Sequence[UploadedFile],
    ) -> GenerationResponse:
        self.calls.append((instruction, base_image, list(fabric_images)))
        if self.error is not None:
            raise self.error
        return self.response


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files.

    Yields:
        Path to temporary directory

    Cleanup:
        Directory is removed after test completes
    """
    temp_path = Path(tempfile.mkdtemp())
    try:
        yield temp_path
    finally:
        shutil.rmtree(temp_path, ignore_errors=True)


@pytest.fixture
def test_config(temp_dir: Path) -> DrapeworksConfig:
    """Create a test configuration writing under a temporary directory.

    Args:
        temp_dir: Temporary directory from fixture

    Returns:
        DrapeworksConfig instance for testing
    """
    return DrapeworksConfig(
        google_api_key=None,
        data_dir=temp_dir / "data",
        ledger_backend="json",
    )


@pytest.fixture
def model_image() -> UploadedFile:
    return make_png(color=(240, 220, 200), name="model.png")


@pytest.fixture
def generated_image() -> UploadedFile:
    return make_png(color=(20, 120, 40), name="generated.png")


@pytest.fixture
def top_fabric() -> ImageFabric:
    return ImageFabric(image=make_png(color=(0, 0, 255), name="kurti.png"), file_name="kurti.png")


@pytest.fixture
def chunni_fabric() -> DocumentPageFabric:
    """Page 3 of a catalogue, with a crop override."""
    return DocumentPageFabric(
        document_name="catalogue.pdf",
        page=3,
        total_pages=5,
        page_image=make_png(width=200, height=300, name="page-3.png"),
        cropped_image=make_png(width=50, height=50, name="crop.png"),
    )


@pytest.fixture
def image_response(generated_image: UploadedFile) -> GenerationResponse:
    """A response with one generated image and token usage."""
    return GenerationResponse(
        parts=(
            GenerationPart(text="Applied fabrics."),
            GenerationPart(image=generated_image),
        ),
        prompt_token_count=1200,
        candidates_token_count=1290,
    )


@pytest.fixture
def fake_service(image_response: GenerationResponse) -> FakeGenerationService:
    return FakeGenerationService(response=image_response)


@pytest.fixture
def memory_store() -> MemoryLedgerStore:
    return MemoryLedgerStore()


@pytest.fixture
def ledger(memory_store: MemoryLedgerStore) -> UsageLedger:
    """Usage ledger backed by memory with a fixed clock."""
    return UsageLedger(memory_store, clock=lambda: 1_700_000_000.0)


@pytest.fixture
def session() -> WorkflowSession:
    """Fresh workflow session."""
    return WorkflowSession()


@pytest.fixture
def ready_session(
    model_image: UploadedFile,
    top_fabric: ImageFabric,
    chunni_fabric: DocumentPageFabric,
) -> WorkflowSession:
    """Session on the review step with top and chunni fabrics bound."""
    session = WorkflowSession()
    session.set_model_image(model_image, "preview://model")
    session.toggle_garment(GarmentKind.TOP)
    session.toggle_garment(GarmentKind.CHUNNI)
    session.set_fabric(GarmentKind.TOP, top_fabric)
    session.set_fabric(GarmentKind.CHUNNI, chunni_fabric)
    session.go_to_step("review")
    return session


@pytest.fixture
def png_factory():
    """The :func:`make_png` helper, for tests that need custom images."""
    return make_png
