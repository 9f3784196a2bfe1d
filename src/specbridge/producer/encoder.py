"""
Image Encoder
=============

Compresses raw capture buffers into JPEG bytes.

Design Rules:
    - This is the ONLY place in the codebase that encodes images
    - Validates shape and dtype before encoding
    - Fails fast on unusable buffers
    - CPU-bound: callers run it off the event loop
"""

import logging

import cv2
import numpy as np


logger = logging.getLogger(__name__)


class ImageEncodeError(Exception):
    """Raised when a capture buffer cannot be encoded."""
    pass


def encode_jpeg(image: np.ndarray, quality: int = 60) -> bytes:
    """
    Encode a raw capture buffer to JPEG.

    Args:
        image: BGR (H, W, 3) or grayscale (H, W) array, dtype=uint8
        quality: JPEG quality 1-100

    Returns:
        JPEG bytes

    Raises:
        ImageEncodeError: If the buffer is invalid or encoding fails
    """
    if not isinstance(image, np.ndarray):
        raise ImageEncodeError(f"Expected numpy array, got {type(image).__name__}")

    if image.size == 0:
        raise ImageEncodeError("Empty capture buffer")

    if image.ndim not in (2, 3) or (image.ndim == 3 and image.shape[2] not in (1, 3)):
        raise ImageEncodeError(f"Invalid image shape: {image.shape}")

    if image.dtype != np.uint8:
        raise ImageEncodeError(f"Invalid dtype: {image.dtype}")

    quality = max(1, min(100, int(quality)))

    try:
        ok, buffer = cv2.imencode(".jpg", image, [cv2.IMWRITE_JPEG_QUALITY, quality])
    except cv2.error as e:
        raise ImageEncodeError(f"cv2.imencode failed: {e}")

    if not ok:
        raise ImageEncodeError("cv2.imencode returned failure")

    return buffer.tobytes()
