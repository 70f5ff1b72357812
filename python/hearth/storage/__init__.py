"""Local photo storage.

Provides:
- Path building for photos, variants and archived originals
- Atomic file publishing (temp file + rename)
- Archived original lookup and photo file removal
"""

from hearth.storage.files import atomic_write_bytes, find_original, remove_photo_files
from hearth.storage.paths import (
    base_name,
    build_photo_path,
    generate_base_name,
    original_filename,
    source_extension,
    variant_filename,
)

__all__ = [
    "atomic_write_bytes",
    "find_original",
    "remove_photo_files",
    "base_name",
    "build_photo_path",
    "generate_base_name",
    "original_filename",
    "source_extension",
    "variant_filename",
]
