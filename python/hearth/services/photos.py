"""Photo uploads and lookups.

An upload is accepted in two steps:
1. create_pending_photo: validate, archive the original bytes on disk as
   photos/<base>_original<ext>, and commit a Pending MediaRecord indexed by
   family and person.
2. upload_photo: submit the media job that renders the variants.

A full media queue does not fail the upload. The record stays Pending and
the boot sweeper picks it up from the archived original.

Serving checks status before touching files: Pending photos get a
processing placeholder, Failed photos are not found, and Active photos are
served in the best format the client accepts, falling back to the large
JPEG and then the archived original.
"""

from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from hearth.auth.middleware import Viewer
from hearth.db.records import IMAGE_BY_FAMILY, IMAGE_BY_PERSON, IMAGES, MediaRecord, MediaStatus
from hearth.db.store import Store, Window
from hearth.errors import ApiErrorCode, InvalidRequestError, NotFoundError, QueueFullError
from hearth.logging import get_logger
from hearth.services.image_processing import image_mime_type, optimal_image_format
from hearth.storage.files import atomic_write_bytes, find_original, remove_photo_files
from hearth.storage.paths import (
    base_name,
    build_photo_path,
    generate_base_name,
    original_filename,
    source_extension,
    variant_filename,
)
from hearth.workers.media_queue import MediaJob, MediaJobQueue

logger = get_logger(__name__)

MAX_TITLE_LENGTH = 200
MAX_DESCRIPTION_LENGTH = 2000
DEFAULT_LIST_LIMIT = 50
MAX_LIST_LIMIT = 200

SERVABLE_SIZES = ("thumb", "medium", "large", "original")

PROCESSING_PLACEHOLDER_SVG = (
    '<svg width="400" height="300" xmlns="http://www.w3.org/2000/svg">'
    '<rect width="100%" height="100%" fill="#f0f0f0"/>'
    '<circle cx="200" cy="120" r="30" fill="#d0d0d0"/>'
    '<text x="200" y="180" font-family="sans-serif" font-size="16" '
    'text-anchor="middle" fill="#666">Processing image...</text>'
    "</svg>"
)


@dataclass
class PhotoUpload:
    """Validated upload request."""

    data: bytes
    filename: str
    mime_type: str
    person_id: int = 0
    title: str = ""
    description: str = ""
    photo_date: datetime | None = None


@dataclass
class UploadResult:
    """A created photo and whether its processing job was queued."""

    record: MediaRecord
    queued: bool


@dataclass
class PhotoFile:
    """What to send for a photo request. path is None while processing."""

    path: Path | None
    media_type: str


def validate_upload(upload: PhotoUpload, max_bytes: int) -> None:
    """Check type, size and text fields of an upload.

    Raises:
        InvalidRequestError: E_INVALID_FILE_TYPE, E_FILE_TOO_LARGE or
            E_INVALID_REQUEST.
    """
    mime = (upload.mime_type or "").lower()
    if not mime.startswith("image/") or mime == "image/svg+xml":
        raise InvalidRequestError(ApiErrorCode.E_INVALID_FILE_TYPE, "Only image files are allowed")
    if not upload.data:
        raise InvalidRequestError(message="Uploaded file is empty")
    if len(upload.data) > max_bytes:
        raise InvalidRequestError(
            ApiErrorCode.E_FILE_TOO_LARGE, f"File exceeds the {max_bytes // (1024 * 1024)} MB limit"
        )
    if upload.person_id < 0:
        raise InvalidRequestError(message="Invalid person id")
    if len(upload.title) > MAX_TITLE_LENGTH:
        raise InvalidRequestError(message="Title is too long")
    if len(upload.description) > MAX_DESCRIPTION_LENGTH:
        raise InvalidRequestError(message="Description is too long")


def create_pending_photo(
    store: Store, static_dir: str | Path, viewer: Viewer, upload: PhotoUpload, max_bytes: int
) -> MediaRecord:
    """Archive the upload and commit a Pending record for it."""
    validate_upload(upload, max_bytes)

    base = generate_base_name()
    file_path = build_photo_path(base)
    src_ext = source_extension(upload.mime_type, upload.filename)
    original = Path(static_dir) / Path(file_path).parent / original_filename(base, src_ext)
    atomic_write_bytes(original, upload.data)

    with store.write_tx() as tx:
        record = MediaRecord(
            id=tx.next_int_id(IMAGES),
            family_id=viewer.family_id,
            person_id=upload.person_id,
            owner_user_id=viewer.user_id,
            original_filename=upload.filename,
            mime_type=upload.mime_type,
            file_size=len(upload.data),
            file_path=file_path,
            title=upload.title.strip(),
            description=upload.description.strip(),
            photo_date=upload.photo_date,
            status=MediaStatus.PENDING,
        )
        tx.write(IMAGES, record.id, record)
        tx.set_target_single_term(IMAGE_BY_FAMILY, record.id, record.family_id)
        if record.person_id:
            tx.set_target_single_term(IMAGE_BY_PERSON, record.id, record.person_id)
        tx.commit()

    logger.info(
        "photo_created",
        image_id=record.id,
        family_id=record.family_id,
        file_size=record.file_size,
        mime_type=record.mime_type,
    )
    return record


def upload_photo(
    store: Store,
    media_queue: MediaJobQueue,
    static_dir: str | Path,
    viewer: Viewer,
    upload: PhotoUpload,
    max_bytes: int,
) -> UploadResult:
    """Create a Pending photo and queue it for processing."""
    record = create_pending_photo(store, static_dir, viewer, upload, max_bytes)
    try:
        media_queue.submit(
            MediaJob(image_id=record.id, data=upload.data, mime_type=upload.mime_type)
        )
    except QueueFullError:
        logger.warning("photo_job_not_queued", image_id=record.id)
        return UploadResult(record=record, queued=False)
    return UploadResult(record=record, queued=True)


def get_photo(store: Store, viewer: Viewer, image_id: int) -> MediaRecord:
    """Load a photo in the viewer's family.

    Raises:
        NotFoundError: If missing or in another family.
    """
    with store.read_tx() as tx:
        record = tx.read(IMAGES, image_id)
    if record is None or record.family_id != viewer.family_id:
        raise NotFoundError(ApiErrorCode.E_PHOTO_NOT_FOUND, "Photo not found")
    return record


def get_photo_status(store: Store, viewer: Viewer, image_id: int) -> dict:
    """Processing status of a photo, for clients polling after upload."""
    record = get_photo(store, viewer, image_id)
    return {
        "id": record.id,
        "status": record.status.name.lower(),
        "width": record.width,
        "height": record.height,
        "file_path": record.file_path if record.status == MediaStatus.ACTIVE else None,
    }


def list_family_photos(
    store: Store, viewer: Viewer, limit: int | None = None, offset: int = 0
) -> list[MediaRecord]:
    """The family's photos, newest first."""
    if limit is None or limit <= 0 or limit > MAX_LIST_LIMIT:
        limit = DEFAULT_LIST_LIMIT
    with store.read_tx() as tx:
        ids = tx.read_term_targets(
            IMAGE_BY_FAMILY,
            viewer.family_id,
            Window(limit=limit, offset=max(offset, 0), reverse=True),
        )
        return [r for r in (tx.read(IMAGES, i) for i in ids) if r is not None]


def resolve_photo_file(
    store: Store,
    static_dir: str | Path,
    viewer: Viewer,
    image_id: int,
    size: str = "large",
    accept: str | None = None,
) -> PhotoFile:
    """Pick the file to serve for one size of a photo.

    Raises:
        NotFoundError: Unknown size, missing or foreign photo, Failed photo,
            or no file left on disk.
    """
    if size not in SERVABLE_SIZES:
        raise NotFoundError(ApiErrorCode.E_PHOTO_NOT_FOUND, "Photo not found")

    record = get_photo(store, viewer, image_id)
    if record.status == MediaStatus.PENDING:
        return PhotoFile(path=None, media_type="image/svg+xml")
    if record.status == MediaStatus.FAILED:
        raise NotFoundError(ApiErrorCode.E_PHOTO_NOT_FOUND, "Photo not found")

    static_root = Path(static_dir)
    if size != "original":
        directory = static_root / Path(record.file_path).parent
        base = base_name(record.file_path)
        for fmt in dict.fromkeys((optimal_image_format(accept), "jpeg")):
            path = directory / variant_filename(base, size, fmt)
            if path.is_file():
                return PhotoFile(path=path, media_type=image_mime_type(fmt))

        large = static_root / record.file_path
        if large.is_file():
            return PhotoFile(path=large, media_type="image/jpeg")

    original = find_original(static_root, record)
    if original is None:
        logger.warning("photo_files_missing", image_id=record.id, size=size)
        raise NotFoundError(ApiErrorCode.E_PHOTO_NOT_FOUND, "Photo not found")
    return PhotoFile(path=original, media_type=record.mime_type)


def delete_photo(store: Store, static_dir: str | Path, viewer: Viewer, image_id: int) -> None:
    """Remove a family photo, its index entries and every file on disk.

    Files are removed after the commit; no write transaction is held
    across file I/O.

    Raises:
        NotFoundError: If missing or in another family.
    """
    with store.write_tx() as tx:
        record = tx.read(IMAGES, image_id)
        if record is None or record.family_id != viewer.family_id:
            raise NotFoundError(ApiErrorCode.E_PHOTO_NOT_FOUND, "Photo not found")
        tx.set_target_single_term(IMAGE_BY_FAMILY, image_id, None)
        tx.set_target_single_term(IMAGE_BY_PERSON, image_id, None)
        tx.delete(IMAGES, image_id)
        tx.commit()

    removed = remove_photo_files(Path(static_dir), record)
    logger.info(
        "photo_deleted",
        image_id=image_id,
        family_id=viewer.family_id,
        user_id=viewer.user_id,
        files_removed=removed,
    )
