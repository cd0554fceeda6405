"""Resize images to exact target dimensions."""
import logging
from typing import Optional, Tuple

from PIL import Image

logger = logging.getLogger("mediabatch.resize")


def target_size(
    size: Tuple[int, int],
    target_width: Optional[int] = None,
    target_height: Optional[int] = None,
) -> Tuple[int, int]:
    """
    Final (width, height) for a resize request.
    If only one dimension is set, the other is computed from the image ratio.
    """
    w, h = size
    if target_width is not None and target_height is not None:
        return target_width, target_height
    if target_width is not None:
        return target_width, max(1, int(round(h * target_width / w)))
    if target_height is not None:
        return max(1, int(round(w * target_height / h))), target_height
    return w, h


def resize_exact(
    img: Image.Image,
    target_width: Optional[int] = None,
    target_height: Optional[int] = None,
) -> Image.Image:
    """
    Produce an image of exactly the requested size, stretching if needed.
    Aspect ratio is only kept when a single dimension is given.
    """
    tw, th = target_size(img.size, target_width, target_height)
    if (tw, th) == img.size:
        return img.copy()
    return img.resize((tw, th), Image.Resampling.LANCZOS)


def scale_to_width(img: Image.Image, width: int) -> Image.Image:
    """Scale down to width, keeping aspect ratio. Images already narrower are copied."""
    if img.width <= width:
        return img.copy()
    return resize_exact(img, target_width=width)
