"""Local filesystem helpers for published photo files.

- atomic_write_bytes: publish bytes with a temp file + rename
- find_original: locate the archived upload of a record
- remove_photo_files: delete every variant and the archived original
"""

import os
import tempfile
from pathlib import Path

from hearth.db.records import MediaRecord
from hearth.logging import get_logger
from hearth.services.image_processing import OUTPUT_FORMATS, SIZES
from hearth.storage.paths import base_name, original_filename, source_extension, variant_filename

logger = get_logger(__name__)

# Readable by the serving process and others; writable by owner
PUBLISHED_FILE_MODE = 0o644
def atomic_write_bytes(path: Path, data: bytes, mode: int = PUBLISHED_FILE_MODE) -> None:
    """Write data to path so readers see either the old file or the new one.

    The bytes go to a temp file in the same directory, which is then
    renamed over the destination.

    Raises:
        OSError: If the write or rename fails. The temp file is removed.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as tmp:
            tmp.write(data)
            tmp.flush()
            os.fsync(tmp.fileno())
        os.chmod(tmp_name, mode)
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        raise


def find_original(static_dir: Path, record: MediaRecord) -> Path | None:
    """Locate the archived upload for a record, if one was kept."""
    directory = static_dir / Path(record.file_path).parent
    base = base_name(record.file_path)
    src_ext = source_extension(record.mime_type, record.original_filename)
    candidate = directory / original_filename(base, src_ext)
    if candidate.exists():
        return candidate
    # The extension may have been derived differently when the file was written
    matches = sorted(directory.glob(f"{base}_original.*"))
    return matches[0] if matches else None


def remove_photo_files(static_dir: Path, record: MediaRecord) -> int:
    """Delete every size/format variant and the archived original.

    Missing files are skipped. A file that cannot be removed is logged and
    the rest are still attempted.

    Returns:
        Number of files removed.
    """
    directory = static_dir / Path(record.file_path).parent
    base = base_name(record.file_path)
    paths = [
        directory / variant_filename(base, size.name, fmt)
        for size in SIZES
        for fmt in OUTPUT_FORMATS
    ]
    paths.extend(directory.glob(f"{base}_original.*"))

    removed = 0
    for path in paths:
        try:
            path.unlink()
        except FileNotFoundError:
            continue
        except OSError as e:
            logger.warning("photo_file_remove_failed", path=str(path), error=str(e))
            continue
        removed += 1
    return removed
