"""
Perceptual image hashing for near-duplicate detection.

The pHash keeps only the coarse visual layout of an image: the image is
resampled to a 32x32 luminance grid, transformed with an orthonormal 2D DCT,
and the 63 lowest non-DC coefficients are thresholded against their median.
Re-encoding or mild resizing flips few bits; unrelated images differ in many.
"""

import io
import math
from typing import Callable, Optional, Union

import cv2
import numpy as np
import structlog
from PIL import Image, UnidentifiedImageError

from imprint import config
from imprint.core.errors import MalformedInput

logger = structlog.get_logger()

SAMPLE_SIZE = 32
HASH_SIZE = 8
PERCEPTUAL_HASH_LENGTH = 16

# Rec. 601 luma weights
LUMA_WEIGHTS = (0.299, 0.587, 0.114)

IMAGE_TYPES = [
    "image/jpeg",
    "image/png",
    "image/gif",
    "image/webp",
    "image/bmp",
    "image/tiff",
    "image/svg+xml",
    "image/avif",
]

Decoder = Callable[[bytes, int], np.ndarray]


def is_image_type(content_type: Optional[str]) -> bool:
    if not content_type:
        return False
    return content_type.split(";", 1)[0].strip().lower() in IMAGE_TYPES


def _has_alpha(image: Image.Image) -> bool:
    return image.mode in ("RGBA", "LA", "PA") or "transparency" in image.info


def decode_and_resample(data: bytes, size: int = SAMPLE_SIZE) -> np.ndarray:
    """
    Decode image bytes and return a size x size float64 luminance matrix.

    Raises:
        MalformedInput: If the bytes cannot be decoded as a raster image
    """
    try:
        with Image.open(io.BytesIO(data)) as image:
            if _has_alpha(image):
                # resized premultiplied; fully transparent pixels read as black
                image = image.convert("RGBA").resize((size, size), Image.Resampling.LANCZOS)
                rgba = np.asarray(image, dtype=np.float64)
                pixels = rgba[:, :, :3] * (rgba[:, :, 3:] > 0)
            else:
                image = image.convert("RGB").resize((size, size), Image.Resampling.LANCZOS)
                pixels = np.asarray(image, dtype=np.float64)
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as e:
        logger.warning("Failed to decode image", size=len(data), error=str(e))
        raise MalformedInput("file", "unsupported or undecodable image") from e

    r, g, b = LUMA_WEIGHTS
    return pixels[:, :, 0] * r + pixels[:, :, 1] * g + pixels[:, :, 2] * b


def dct_2d(matrix: np.ndarray) -> np.ndarray:
    """Orthonormal 2D DCT-II, rows then columns."""
    return cv2.dct(np.asarray(matrix, dtype=np.float64))


def hash_from_luminance(luminance: np.ndarray) -> str:
    """pHash of an already-resampled square luminance grid."""
    if luminance.ndim != 2 or luminance.shape[0] != luminance.shape[1] or luminance.shape[0] < HASH_SIZE:
        raise MalformedInput("image", f"expected a square luminance grid of at least {HASH_SIZE}x{HASH_SIZE}")

    coefficients = dct_2d(luminance)
    # drop the DC term
    low = coefficients[:HASH_SIZE, :HASH_SIZE].flatten()[1:]
    median = np.median(low)

    bits = "".join("1" if value > median else "0" for value in low) + "0"
    return format(int(bits, 2), f"0{PERCEPTUAL_HASH_LENGTH}x")


def perceptual_hash(data: bytes, decoder: Decoder = decode_and_resample) -> str:
    """
    Compute the 64-bit perceptual hash of an image as 16 lowercase hex characters.

    Args:
        data: Encoded image bytes
        decoder: Capability turning bytes into a SAMPLE_SIZE x SAMPLE_SIZE luminance matrix
    """
    luminance = decoder(data, SAMPLE_SIZE)
    digest = hash_from_luminance(np.asarray(luminance, dtype=np.float64))
    logger.debug("Generated pHash", size=len(data), phash=digest)
    return digest


def optional_perceptual_hash(
    data: bytes,
    content_type: Optional[str],
    decoder: Decoder = decode_and_resample,
) -> Optional[str]:
    """
    pHash for image content types, or None.

    A perceptual hash is an optional lead, so an image that cannot be decoded
    (e.g. SVG) yields None instead of failing the caller's exact-hash flow.
    """
    if not is_image_type(content_type):
        return None
    try:
        return perceptual_hash(data, decoder=decoder)
    except MalformedInput as e:
        logger.warning("Perceptual hash skipped", content_type=content_type, size=len(data), error=e.message)
        return None


def perceptual_hash_file(file_path: str, decoder: Decoder = decode_and_resample) -> str:
    try:
        with open(file_path, "rb") as f:
            data = f.read()
    except OSError as e:
        logger.error("Failed to read image", file_path=file_path, error=str(e))
        raise
    return perceptual_hash(data, decoder=decoder)


def hamming_distance(hash1: str, hash2: str) -> Union[int, float]:
    """Count of differing bits; math.inf when the digests are not comparable."""
    if not isinstance(hash1, str) or not isinstance(hash2, str) or len(hash1) != len(hash2):
        return math.inf
    try:
        return sum(bin(int(a, 16) ^ int(b, 16)).count("1") for a, b in zip(hash1, hash2))
    except ValueError:
        return math.inf


def is_similar(hash1: str, hash2: str, threshold: Optional[int] = None) -> bool:
    threshold = config.SIMILARITY_THRESHOLD if threshold is None else threshold
    return hamming_distance(hash1, hash2) <= threshold
