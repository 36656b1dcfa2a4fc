"""Instruction assembly for fabric texture replacement.

The generation service receives one natural-language instruction followed by
the model photo and the fabric images.  The instruction is composed from four
sections separated by blank lines:

::

    [Base template for the selected garment combination]

    Fabric sources:
    TOP fabric source: Direct image: kurti.png
    CHUNNI fabric source: PDF: catalogue.pdf (Page 3) [cropped]

    Additional instructions:
    [Sanitized custom text, only when provided]

    [Fixed hard-lock / negative suffix]

Base Templates
--------------
There is one template per non-empty subset of {top, bottom, chunni}, keyed by
the selected kinds joined with ``+`` in canonical order.  Every template
treats the uploaded photo as fixed structure: only the texture of the named
garments changes, and geometry, folds, shadows, pose and background must be
preserved for everything else.

Usage
-----
::

    instruction = build_instruction(
        GarmentSelection.of("top", "chunni"),
        {GarmentKind.TOP: top_fabric, GarmentKind.CHUNNI: chunni_fabric},
        custom_text="slightly warmer tones",
    )
"""

from __future__ import annotations

from collections.abc import Mapping

from drapeworks.core.models import FabricSource, GarmentKind, GarmentSelection
from drapeworks.core.validation import sanitize_free_text

# ---------------------------------------------------------------------------
# Base templates, one per garment combination.
# ---------------------------------------------------------------------------

_PRESERVE_SINGLE = (
    "Preserve exactly:\n"
    "– All garment geometry, seams, folds, drape direction\n"
    "– Existing shadow placement and lighting\n"
    "– All other garments remain 100% unchanged\n"
    "– Model pose, background, accessories untouched"
)

_FIXED_BASE = "Use the uploaded model image as the fixed base image."

BASE_TEMPLATES: dict[str, str] = {
    "top": (
        f"{_FIXED_BASE}\n"
        "Perform texture replacement ONLY on the kurti/top garment.\n"
        "Apply the provided fabric design strictly to the existing top garment pixels.\n\n"
        f"{_PRESERVE_SINGLE}"
    ),
    "bottom": (
        f"{_FIXED_BASE}\n"
        "Perform texture replacement ONLY on the salwar/bottom garment.\n"
        "Apply the provided fabric design strictly to the existing bottom garment pixels.\n\n"
        f"{_PRESERVE_SINGLE}"
    ),
    "chunni": (
        f"{_FIXED_BASE}\n"
        "Perform texture replacement ONLY on the chunni/dupatta.\n"
        "Apply the provided fabric design strictly to the existing chunni pixels.\n\n"
        "Preserve exactly:\n"
        "– All garment geometry including border placement and transparency\n"
        "– Existing shadow placement and drape behavior\n"
        "– All other garments remain 100% unchanged\n"
        "– Model pose, background, accessories untouched\n\n"
        "CRITICAL: Chunni border position must remain exactly as in the original."
    ),
    "top+bottom": (
        f"{_FIXED_BASE}\n"
        "Perform texture replacement on:\n"
        "– Kurti/top → TOP fabric\n"
        "– Bottom/salwar → BOTTOM fabric\n\n"
        "Apply each fabric strictly to its corresponding existing garment pixels.\n\n"
        "Preserve exactly:\n"
        "– All garment geometry, folds, drape, seams, shadows\n"
        "– Chunni/dupatta remains 100% unchanged\n"
        "– Model pose, background, accessories untouched"
    ),
    "top+chunni": (
        f"{_FIXED_BASE}\n"
        "Perform texture replacement on:\n"
        "– Kurti/top → TOP fabric\n"
        "– Chunni/dupatta → CHUNNI fabric\n\n"
        "Apply each fabric strictly to its corresponding existing garment pixels.\n\n"
        "Preserve exactly:\n"
        "– All garment geometry, folds, drape, seams, shadows\n"
        "– Bottom/salwar remains 100% unchanged\n"
        "– Chunni border placement and transparency preserved\n"
        "– Model pose, background, accessories untouched"
    ),
    "bottom+chunni": (
        f"{_FIXED_BASE}\n"
        "Perform texture replacement on:\n"
        "– Bottom/salwar → BOTTOM fabric\n"
        "– Chunni/dupatta → CHUNNI fabric\n\n"
        "Apply each fabric strictly to its corresponding existing garment pixels.\n\n"
        "Preserve exactly:\n"
        "– All garment geometry, folds, drape, seams, shadows\n"
        "– Kurti/top remains 100% unchanged\n"
        "– Chunni border placement and transparency preserved\n"
        "– Model pose, background, accessories untouched"
    ),
    "top+bottom+chunni": (
        f"{_FIXED_BASE}\n"
        "Perform texture replacement on:\n"
        "– Kurti/top → TOP fabric\n"
        "– Bottom/salwar → BOTTOM fabric\n"
        "– Chunni/dupatta → CHUNNI fabric\n\n"
        "Apply each fabric strictly to its corresponding existing garment pixels.\n\n"
        "Preserve exactly:\n"
        "– All garment geometry\n"
        "– Folds, drape, seams, shadows\n"
        "– Chunni border placement and transparency\n\n"
        "CRITICAL: Each fabric must only affect its designated garment area."
    ),
}

FALLBACK_KEY = "top+bottom+chunni"

# ---------------------------------------------------------------------------
# Fixed hard-lock suffix appended to every instruction.
# ---------------------------------------------------------------------------

NEGATIVE_SUFFIX = (
    "Hard locks:\n"
    "– Do NOT change pose, model, background, inset, lighting, accessories\n"
    "– No fabric mixing or redesign\n"
    "– No garment bleeding across boundaries\n\n"
    "Negative:\n"
    "No silhouette change, no stiffness, no pasted look, no redesign, no pasted texture, "
    "no fabric bleeding, no geometry modification, no shape alteration\n\n"
    "Enforcement:\n"
    "If any garment geometry changes, regenerate and apply textures strictly to "
    "existing pixels only."
)

_DURATIONS = {1: "30-45 seconds", 2: "45-60 seconds"}
_LONGEST_DURATION = "60-90 seconds"


def base_template(selection: GarmentSelection) -> str:
    """Return the base template for *selection*, falling back to the triple."""
    return BASE_TEMPLATES.get(selection.key, BASE_TEMPLATES[FALLBACK_KEY])


def fabric_source_lines(
    selection: GarmentSelection,
    fabrics: Mapping[GarmentKind, FabricSource],
) -> list[str]:
    """Describe the fabric bound to each selected kind, in garment order.

    Kinds that are bound but not selected are ignored, as are selected kinds
    with no binding yet.
    """
    lines = []
    for kind in selection.ordered():
        source = fabrics.get(kind)
        if source is not None:
            lines.append(f"{kind.value.upper()} fabric source: {source.describe()}")
    return lines


def build_instruction(
    selection: GarmentSelection,
    fabrics: Mapping[GarmentKind, FabricSource],
    custom_text: str = "",
) -> str:
    """Compile the full instruction sent to the generation service.

    Args:
        selection: Garment kinds to re-texture.
        fabrics: Fabric source bound to each kind.
        custom_text: Raw operator text.  It is sanitized here; blank text
            omits the "Additional instructions" section entirely.

    Returns:
        The instruction with sections separated by double newlines.
    """
    parts: list[str] = [base_template(selection)]

    lines = fabric_source_lines(selection, fabrics)
    if lines:
        parts.append("Fabric sources:\n" + "\n".join(lines))

    if custom_text and custom_text.strip():
        sanitized = sanitize_free_text(custom_text)
        if sanitized:
            parts.append(f"Additional instructions:\n{sanitized}")

    parts.append(NEGATIVE_SUFFIX)

    return "\n\n".join(parts)


def estimate_duration(selection: GarmentSelection) -> str:
    """Human-readable generation time range by number of selected garments.

    Purely illustrative; the ranges are not measured.
    """
    return _DURATIONS.get(len(selection), _LONGEST_DURATION)
