"""Photo path building utilities.

This module is the single point of logic for naming photo files. Every
upload, variant and archived original path goes through these functions.

Path Invariant (relative to the static root):
    photos/{base}{ext}             large variant (and the record's file_path)
    photos/{base}_{size}{ext}      thumb / medium variants
    photos/{base}_original{src}    archived upload bytes

Rules:
    - {base} is a random 16-byte hex string chosen at upload time
    - No leading slash
    - No user identifiers in paths
"""

import mimetypes
import secrets
from pathlib import PurePosixPath

from hearth.services.image_processing import extension_for_format

PHOTOS_DIR = "photos"

MIME_EXTENSIONS = {
    "image/jpeg": ".jpg",
    "image/jpg": ".jpg",
    "image/png": ".png",
    "image/gif": ".gif",
    "image/webp": ".webp",
    "image/avif": ".avif",
    "image/heic": ".heic",
    "image/heif": ".heif",
    "image/bmp": ".bmp",
    "image/tiff": ".tiff",
}


def generate_base_name() -> str:
    """Return a random 16-byte hex base filename."""
    return secrets.token_hex(16)


def source_extension(mime_type: str, filename: str | None = None) -> str:
    """Pick the extension for archived upload bytes.

    The original filename's suffix wins; otherwise it is derived from the
    declared MIME type.
    """
    if filename:
        suffix = PurePosixPath(filename).suffix.lower()
        if suffix:
            return suffix
    ext = MIME_EXTENSIONS.get(mime_type.lower())
    if ext:
        return ext
    return mimetypes.guess_extension(mime_type) or ".bin"


def build_photo_path(base: str) -> str:
    """Relative path stored on the MediaRecord (the large JPEG)."""
    return f"{PHOTOS_DIR}/{base}{extension_for_format('jpeg')}"


def base_name(file_path: str) -> str:
    """Base filename of a stored photo path, without directory or extension."""
    return PurePosixPath(file_path).stem


def variant_filename(base: str, size: str, fmt: str) -> str:
    """Filename of one variant: large uses the bare base, others get a suffix."""
    ext = extension_for_format(fmt)
    if size == "large":
        return f"{base}{ext}"
    return f"{base}_{size}{ext}"


def original_filename(base: str, src_ext: str) -> str:
    """Filename of the archived original upload."""
    return f"{base}_original{src_ext}"
