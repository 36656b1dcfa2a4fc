"""Binary file payloads passed between the workflow and its collaborators."""

from __future__ import annotations

import base64
from dataclasses import dataclass


@dataclass(frozen=True)
class UploadedFile:
    """An uploaded or rendered file held in memory.

    Attributes:
        data: Raw file bytes.
        mime_type: Declared MIME type (``image/png``, ``application/pdf``...).
        name: Display name, usually the original file name.
    """

    data: bytes
    mime_type: str
    name: str = ""

    @property
    def size(self) -> int:
        """Payload size in bytes."""
        return len(self.data)

    def to_data_url(self) -> str:
        """Encode the payload as a ``data:`` URL for JSON responses."""
        encoded = base64.b64encode(self.data).decode("ascii")
        return f"data:{self.mime_type};base64,{encoded}"
