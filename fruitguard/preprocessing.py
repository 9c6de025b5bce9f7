# ======================================================
# fruitguard/preprocessing.py - image bytes -> normalized tensor
# ======================================================

import io
from typing import Sequence

import numpy as np
from PIL import Image, ImageOps, UnidentifiedImageError

from fruitguard.config import IMG_SIZE
from fruitguard.errors import DecodeError

# Same filter at train and inference time.
RESAMPLE = Image.Resampling.NEAREST


def load_image_exif_safe(image_bytes: bytes) -> Image.Image:
    """Decode bytes and apply EXIF rotation if present (mobile-safe)."""
    if not image_bytes:
        raise DecodeError("Empty image payload")
    try:
        img = Image.open(io.BytesIO(image_bytes))
        img.load()
        img = ImageOps.exif_transpose(img)
        return img.convert("RGB")
    except (UnidentifiedImageError, OSError, ValueError, SyntaxError, Image.DecompressionBombError) as e:
        raise DecodeError(f"Cannot decode image: {e}") from e


def to_tensor(img: Image.Image, size=IMG_SIZE) -> np.ndarray:
    """Resize a decoded RGB image to ``size`` (height, width) and scale to [0, 1]."""
    height, width = size
    img = img.resize((width, height), resample=RESAMPLE)
    return np.asarray(img, dtype=np.float32) / 255.0


def preprocess(image_bytes: bytes, size=IMG_SIZE) -> np.ndarray:
    """
    Decode ``image_bytes`` into a float32 tensor of shape (height, width, 3)
    with channel values in [0, 1].

    ``size`` is (height, width). Raises DecodeError for unusable input.
    """
    return to_tensor(load_image_exif_safe(image_bytes), size)


def preprocess_batch(images: Sequence[bytes], size=IMG_SIZE) -> np.ndarray:
    """Stack several images into a (n, height, width, 3) batch."""
    return np.stack([preprocess(b, size) for b in images], axis=0)
