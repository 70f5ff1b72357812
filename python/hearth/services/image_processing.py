"""Image transcoding for uploaded photos.

Decodes an upload once, applies EXIF orientation, and renders every
(size, format) variant the platform can encode:

- Sizes: thumb 400x400 q75, medium 1024x1024 q85, large 2048x2048 q90
- Formats: jpeg always; webp and avif when Pillow was built with them

The large JPEG is the primary rendition. Its dimensions are the ones
stored on the MediaRecord, and failing to encode it fails the whole job.
Any other variant that fails to encode is logged and left out.
"""

import io
from dataclasses import dataclass, field

from PIL import Image, ImageOps, features

from hearth.logging import get_logger

logger = get_logger(__name__)

# =============================================================================
# Configuration Constants
# =============================================================================


@dataclass(frozen=True)
class SizeSpec:
    """Bounding box and JPEG quality for one size bucket."""

    name: str
    max_width: int
    max_height: int
    quality: int


SIZES: tuple[SizeSpec, ...] = (
    SizeSpec("thumb", 400, 400, 75),
    SizeSpec("medium", 1024, 1024, 85),
    SizeSpec("large", 2048, 2048, 90),
)

OUTPUT_FORMATS: tuple[str, ...] = ("jpeg", "webp", "avif")

PRIMARY_VARIANT = "large_jpeg"

FORMAT_EXTENSIONS = {
    "jpeg": ".jpg",
    "webp": ".webp",
    "avif": ".avif",
    "png": ".png",
}

FORMAT_MIME_TYPES = {
    "jpeg": "image/jpeg",
    "webp": "image/webp",
    "avif": "image/avif",
    "png": "image/png",
}

# Decompression bomb limit (~100 megapixels)
MAX_IMAGE_PIXELS = 10_000 * 10_000


class DecodeError(Exception):
    """The input bytes are not a recognized image."""


class EncodeError(Exception):
    """A required variant could not be encoded."""


@dataclass
class TranscodeResult:
    """Output of process_image.

    Attributes:
        width: Width of the primary rendition.
        height: Height of the primary rendition.
        variants: "<size>_<format>" -> encoded bytes.
    """

    width: int
    height: int
    variants: dict[str, bytes] = field(default_factory=dict)


# =============================================================================
# Helpers
# =============================================================================


def available_formats() -> list[str]:
    """Output formats this Pillow build can encode, jpeg first."""
    formats = ["jpeg"]
    for fmt in OUTPUT_FORMATS[1:]:
        if features.check(fmt):
            formats.append(fmt)
    return formats


def calculate_dimensions(
    width: int, height: int, max_width: int, max_height: int
) -> tuple[int, int]:
    """Fit (width, height) into the box, preserving aspect ratio.

    Images already inside the box keep their size. Otherwise the image is
    scaled down until it fits, rounding each side to the nearest pixel.
    """
    if width <= max_width and height <= max_height:
        return width, height

    scale = min(max_width / width, max_height / height)
    new_width = max(1, int(width * scale + 0.5))
    new_height = max(1, int(height * scale + 0.5))
    return new_width, new_height


def extension_for_format(fmt: str) -> str:
    """File extension for an output format (falls back to .jpg)."""
    return FORMAT_EXTENSIONS.get(fmt, ".jpg")


def image_mime_type(fmt: str) -> str:
    """MIME type for an output format."""
    return FORMAT_MIME_TYPES.get(fmt, "image/jpeg")


def optimal_image_format(accept_header: str | None) -> str:
    """Pick the best variant format a client advertises in its Accept header."""
    accept = (accept_header or "").lower()
    supported = available_formats()
    if "image/avif" in accept and "avif" in supported:
        return "avif"
    if "image/webp" in accept and "webp" in supported:
        return "webp"
    return "jpeg"


def decode_image(data: bytes) -> Image.Image:
    """Decode bytes into an upright Pillow image.

    Raises:
        DecodeError: If Pillow cannot decode the data.
    """
    Image.MAX_IMAGE_PIXELS = MAX_IMAGE_PIXELS
    try:
        img = Image.open(io.BytesIO(data))
        img.load()
        img = ImageOps.exif_transpose(img)
    except Image.DecompressionBombError as e:
        raise DecodeError("Image exceeds dimension limits") from e
    except Exception as e:
        raise DecodeError(f"Content is not a valid image: {e}") from e

    if img.mode not in ("RGB", "RGBA"):
        has_alpha = img.mode in ("LA", "PA") or "transparency" in img.info
        img = img.convert("RGBA" if has_alpha else "RGB")
    return img


def _encode(img: Image.Image, fmt: str, quality: int) -> bytes:
    buffer = io.BytesIO()
    if fmt == "jpeg":
        if img.mode != "RGB":
            img = img.convert("RGB")
        img.save(buffer, format="JPEG", quality=quality, optimize=True)
    elif fmt == "webp":
        img.save(buffer, format="WEBP", quality=quality, method=4)
    elif fmt == "avif":
        img.save(buffer, format="AVIF", quality=quality)
    else:
        raise EncodeError(f"Unsupported output format: {fmt}")
    return buffer.getvalue()


# =============================================================================
# Transcoding
# =============================================================================


def process_image(data: bytes, mime_type: str) -> TranscodeResult:
    """Render every size and format variant of an uploaded image.

    Args:
        data: Uploaded image bytes.
        mime_type: Declared MIME type of the upload (used for logging only;
            the decoder sniffs the real format).

    Returns:
        TranscodeResult with primary dimensions and encoded variants.

    Raises:
        DecodeError: If the input is not a recognized image.
        EncodeError: If the primary rendition (large jpeg) cannot be encoded.
    """
    source = decode_image(data)
    src_width, src_height = source.size
    formats = available_formats()

    result = TranscodeResult(width=0, height=0)

    for size in SIZES:
        dims = calculate_dimensions(src_width, src_height, size.max_width, size.max_height)
        resized = source if dims == source.size else source.resize(dims, Image.Resampling.LANCZOS)

        for fmt in formats:
            key = f"{size.name}_{fmt}"
            try:
                result.variants[key] = _encode(resized, fmt, size.quality)
            except Exception as e:
                if key == PRIMARY_VARIANT:
                    raise EncodeError(f"Failed to encode primary rendition: {e}") from e
                logger.warning("variant_encode_failed", variant=key, error=str(e))
                continue

            if key == PRIMARY_VARIANT:
                result.width, result.height = dims

    logger.debug(
        "image_transcoded",
        mime_type=mime_type,
        source_width=src_width,
        source_height=src_height,
        variant_count=len(result.variants),
    )
    return result
