"""Fit a rendered page onto a fixed-size canvas."""
import logging
from typing import Tuple

from PIL import Image

logger = logging.getLogger("converter.resize")

DEFAULT_FILL = (255, 255, 255)


def fit_on_canvas(
    img: Image.Image,
    canvas_width: int,
    canvas_height: int,
    fill_color: Tuple[int, int, int] = DEFAULT_FILL,
) -> Image.Image:
    """
    Produce an RGB image of exactly (canvas_width, canvas_height).
    The source is scaled to fit inside the canvas keeping its aspect ratio,
    centred, and the remainder filled with fill_color.
    """
    if img.mode != "RGB":
        img = img.convert("RGB")
    w, h = img.size
    cw, ch = canvas_width, canvas_height
    out = Image.new("RGB", (cw, ch), fill_color)
    if w <= 0 or h <= 0:
        logger.warning("Empty source image, returning blank canvas")
        return out
    if w == cw and h == ch:
        return img.copy()

    scale = min(cw / w, ch / h)
    new_w = max(1, int(round(w * scale)))
    new_h = max(1, int(round(h * scale)))
    resized = img.resize((new_w, new_h), Image.Resampling.LANCZOS)
    out.paste(resized, ((cw - new_w) // 2, (ch - new_h) // 2))
    return out


def hex_to_rgb(hex_color: str) -> Tuple[int, int, int]:
    """Parse #RRGGBB to (r,g,b). Default white if invalid."""
    hex_color = hex_color.strip().lstrip("#")
    if len(hex_color) == 6:
        try:
            return (int(hex_color[0:2], 16), int(hex_color[2:4], 16), int(hex_color[4:6], 16))
        except ValueError:
            pass
    return DEFAULT_FILL
