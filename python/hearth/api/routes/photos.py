"""Photo routes.

Uploads are multipart; the route reads the file and hands the bytes to the
photos service, which archives them, writes a Pending record and queues the
media job. Clients poll /api/photos/{id}/status until the record leaves
pending, then fetch /api/photos/{id}/file?size=thumb|medium|large|original.
"""

from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, Depends, File, Form, Header, Query, Response, UploadFile
from fastapi.responses import FileResponse

from hearth.api.deps import get_media_queue, get_settings_from_app, get_store
from hearth.auth.middleware import Viewer, get_viewer
from hearth.config import Settings
from hearth.db.store import Store
from hearth.responses import success_response
from hearth.services import photos as photos_service
from hearth.workers.media_queue import MediaJobQueue

router = APIRouter(prefix="/api/photos")


@router.post("", status_code=202)
def upload_photo(
    viewer: Annotated[Viewer, Depends(get_viewer)],
    store: Annotated[Store, Depends(get_store)],
    media_queue: Annotated[MediaJobQueue, Depends(get_media_queue)],
    settings: Annotated[Settings, Depends(get_settings_from_app)],
    file: Annotated[UploadFile, File()],
    person_id: Annotated[int, Form()] = 0,
    title: Annotated[str, Form()] = "",
    description: Annotated[str, Form()] = "",
    photo_date: Annotated[datetime | None, Form()] = None,
) -> dict:
    """Upload a photo for background processing.

    Returns the Pending record plus whether its processing job was queued.
    """
    # One byte past the limit is enough to reject an oversized upload
    data = file.file.read(settings.max_upload_bytes + 1)
    upload = photos_service.PhotoUpload(
        data=data,
        filename=file.filename or "",
        mime_type=file.content_type or "",
        person_id=person_id,
        title=title,
        description=description,
        photo_date=photo_date,
    )
    result = photos_service.upload_photo(
        store,
        media_queue,
        settings.static_dir,
        viewer,
        upload,
        max_bytes=settings.max_upload_bytes,
    )
    return success_response({"photo": result.record.to_dict(), "queued": result.queued})


@router.get("")
def list_photos(
    viewer: Annotated[Viewer, Depends(get_viewer)],
    store: Annotated[Store, Depends(get_store)],
    limit: Annotated[int, Query()] = photos_service.DEFAULT_LIST_LIMIT,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> dict:
    """The family's photos, newest first."""
    records = photos_service.list_family_photos(store, viewer, limit=limit, offset=offset)
    return success_response([r.to_dict() for r in records])


@router.get("/{image_id}")
def get_photo(
    image_id: int,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    store: Annotated[Store, Depends(get_store)],
) -> dict:
    """Photo metadata. 404 if missing or in another family."""
    return success_response(photos_service.get_photo(store, viewer, image_id).to_dict())


@router.get("/{image_id}/status")
def get_photo_status(
    image_id: int,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    store: Annotated[Store, Depends(get_store)],
) -> dict:
    return success_response(photos_service.get_photo_status(store, viewer, image_id))


@router.get("/{image_id}/file")
def get_photo_file(
    image_id: int,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    store: Annotated[Store, Depends(get_store)],
    settings: Annotated[Settings, Depends(get_settings_from_app)],
    size: Annotated[str, Query()] = "large",
    accept: str | None = Header(None, alias="Accept"),
) -> Response:
    """Photo bytes in the best format the client accepts.

    A photo still processing returns an uncached SVG placeholder.
    """
    photo = photos_service.resolve_photo_file(
        store, settings.static_dir, viewer, image_id, size=size, accept=accept
    )
    if photo.path is None:
        return Response(
            content=photos_service.PROCESSING_PLACEHOLDER_SVG,
            media_type=photo.media_type,
            headers={"Cache-Control": "no-cache, no-store, must-revalidate"},
        )
    return FileResponse(
        photo.path,
        media_type=photo.media_type,
        headers={"Cache-Control": "private, max-age=31536000", "Vary": "Accept"},
    )


@router.delete("/{image_id}", status_code=204)
def delete_photo(
    image_id: int,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    store: Annotated[Store, Depends(get_store)],
    settings: Annotated[Settings, Depends(get_settings_from_app)],
) -> Response:
    """Delete a family photo and all of its files."""
    photos_service.delete_photo(store, settings.static_dir, viewer, image_id)
    return Response(status_code=204)
