"""Alpha compositing helpers for the still-image export.

Vision mixer key inputs usually expect premultiplied alpha while browser
captures are straight alpha. `premultiply` must always be fed the straight
capture: premultiplying an already premultiplied frame darkens soft edges.
"""

from __future__ import annotations

import io
from functools import lru_cache

import numpy as np
from PIL import Image


def premultiply(image: Image.Image) -> Image.Image:
    """Return a premultiplied-alpha copy of a straight-alpha RGBA image.

    Opaque pixels are unchanged, fully transparent pixels become (0, 0, 0, 0)
    and every other channel becomes round(c * a / 255).
    """
    rgba = np.asarray(image.convert("RGBA"), dtype=np.uint16)
    alpha = rgba[..., 3:4]
    # c * a is an integer, so c * a / 255 never lands on .5 and adding 127
    # before the integer division is exact rounding.
    rgb = (rgba[..., :3] * alpha + 127) // 255
    out = np.concatenate([rgb, alpha], axis=-1).astype(np.uint8)
    return Image.fromarray(out)


def transparent(width: int, height: int) -> Image.Image:
    return Image.new("RGBA", (width, height), (0, 0, 0, 0))


def encode_png(image: Image.Image) -> bytes:
    buf = io.BytesIO()
    image.save(buf, format="PNG")
    return buf.getvalue()


def decode_png(data: bytes) -> Image.Image:
    with Image.open(io.BytesIO(data)) as img:
        return img.convert("RGBA")


@lru_cache(maxsize=8)
def transparent_png(width: int, height: int) -> bytes:
    """Encoded fully transparent frame, cached per dimension."""
    return encode_png(transparent(width, height))
