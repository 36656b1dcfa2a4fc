"""Pixel operations on fabric pages and result images.

Two small Pillow helpers:

- :func:`crop_region` cuts a rectangle out of a rendered document page.  The
  rectangle is given in preview coordinates (what the operator drew on) and
  scaled to the full-resolution render.
- :func:`add_design_number_overlay` stamps a design number in one corner of
  a result image on a translucent rounded label.

Both return new PNG payloads and never modify their inputs.
"""

from __future__ import annotations

import io
import logging
from dataclasses import dataclass

from PIL import Image, ImageDraw, ImageFont

from drapeworks.core.files import UploadedFile
from drapeworks.core.models import DesignNumberPosition, DesignNumberSize, DesignNumberStyle

logger = logging.getLogger(__name__)

_SIZE_MULTIPLIERS = {
    DesignNumberSize.SMALL: 1.0,
    DesignNumberSize.MEDIUM: 1.5,
    DesignNumberSize.LARGE: 2.0,
}

# (label background RGBA, text RGB)
_STYLE_COLOURS = {
    DesignNumberStyle.WHITE_ON_DARK: ((0, 0, 0, 153), (255, 255, 255)),
    DesignNumberStyle.BLACK_ON_LIGHT: ((255, 255, 255, 204), (0, 0, 0)),
}

MIN_FONT_SIZE = 12


@dataclass(frozen=True)
class CropRegion:
    """Rectangle in preview pixel coordinates."""

    x: float
    y: float
    width: float
    height: float

    def __post_init__(self) -> None:
        if self.width <= 0 or self.height <= 0:
            raise ValueError(f"Crop region must have positive size, got {self.width}x{self.height}")
        if self.x < 0 or self.y < 0:
            raise ValueError(f"Crop region origin must be non-negative, got ({self.x}, {self.y})")


def _open(file: UploadedFile) -> Image.Image:
    image = Image.open(io.BytesIO(file.data))
    image.load()
    return image


def _to_png(image: Image.Image, name: str) -> UploadedFile:
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return UploadedFile(data=buffer.getvalue(), mime_type="image/png", name=name)


def crop_region(
    page_image: UploadedFile,
    region: CropRegion,
    preview_width: float,
    preview_height: float,
) -> UploadedFile:
    """Crop *region* from *page_image*.

    Args:
        page_image: Full-resolution page render.
        region: Rectangle drawn on the preview.
        preview_width: Width of the preview the region was drawn on.
        preview_height: Height of the preview the region was drawn on.

    Returns:
        The cropped area as a PNG payload.
    """
    image = _open(page_image)
    scale_x = image.width / preview_width
    scale_y = image.height / preview_height

    left = round(region.x * scale_x)
    top = round(region.y * scale_y)
    right = min(image.width, round((region.x + region.width) * scale_x))
    bottom = min(image.height, round((region.y + region.height) * scale_y))
    if right <= left or bottom <= top:
        raise ValueError("Crop region lies outside the page")

    cropped = image.crop((left, top, right, bottom))
    logger.debug(f"Cropped page region {left},{top}-{right},{bottom} from {image.size}")
    return _to_png(cropped, f"cropped-{page_image.name or 'page'}.png")


def add_design_number_overlay(
    image_file: UploadedFile,
    text: str,
    position: DesignNumberPosition = DesignNumberPosition.TOP_RIGHT,
    style: DesignNumberStyle = DesignNumberStyle.WHITE_ON_DARK,
    size: DesignNumberSize = DesignNumberSize.SMALL,
) -> UploadedFile:
    """Stamp *text* on a corner of *image_file*.

    The font size is 2.5% of the image width scaled by the size option
    (x1, x1.5, x2) with a 12 px floor; the label padding is half the font
    size.

    Returns:
        A PNG payload of the numbered image.
    """
    base = _open(image_file).convert("RGBA")
    font_size = max(MIN_FONT_SIZE, round(base.width * 0.025 * _SIZE_MULTIPLIERS[size]))
    font = ImageFont.load_default(size=font_size)
    padding = font_size * 0.5

    overlay = Image.new("RGBA", base.size, (0, 0, 0, 0))
    draw = ImageDraw.Draw(overlay)
    left, top, right, bottom = draw.textbbox((0, 0), text, font=font)
    text_width = right - left
    text_height = font_size

    box_width = text_width + padding * 2
    box_height = text_height + padding
    if position in (DesignNumberPosition.TOP_RIGHT, DesignNumberPosition.BOTTOM_RIGHT):
        x = base.width - text_width - padding * 2
    else:
        x = padding
    if position in (DesignNumberPosition.TOP_RIGHT, DesignNumberPosition.TOP_LEFT):
        y = padding
    else:
        y = base.height - text_height - padding * 2

    background, foreground = _STYLE_COLOURS[style]
    draw.rounded_rectangle((x, y, x + box_width, y + box_height), radius=4, fill=background)
    draw.text((x + padding, y + padding / 2), text, font=font, fill=foreground)

    stamped = Image.alpha_composite(base, overlay)
    return _to_png(stamped, f"numbered-{image_file.name or 'result'}.png")
