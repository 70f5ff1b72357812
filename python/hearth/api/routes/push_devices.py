"""Push device token routes.

Registration is accepted even when APNs is not configured, so tokens are
already on file when push delivery is switched on.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Response

from hearth.api.deps import get_settings_from_app, get_store
from hearth.auth.middleware import Viewer, get_viewer
from hearth.config import Settings
from hearth.db.store import Store
from hearth.logging import get_logger
from hearth.responses import success_response
from hearth.schemas.push import RegisterDeviceRequest, UnregisterDeviceRequest
from hearth.services import device_tokens

logger = get_logger(__name__)

router = APIRouter(prefix="/api/push")


@router.post("/devices")
def register_device(
    body: RegisterDeviceRequest,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    store: Annotated[Store, Depends(get_store)],
    settings: Annotated[Settings, Depends(get_settings_from_app)],
) -> dict:
    """Register (or refresh) the viewer's device token.

    A token already held by another user moves to the viewer unless
    PUSH_ALLOW_TOKEN_TRANSFER is off, in which case this returns 403.
    """
    with store.write_tx() as tx:
        registration = device_tokens.register_device(
            tx,
            viewer.user_id,
            body.token,
            body.platform,
            body.environment,
            body.bundle_id,
            allow_transfer=settings.push_allow_token_transfer,
        )
        tx.commit()

    logger.info(
        "device_registered",
        device_id=registration.device.id,
        platform=registration.device.platform,
        created=registration.created,
        transferred=registration.transferred,
    )
    return success_response(
        {
            "device": registration.device.to_dict(),
            "created": registration.created,
            "transferred": registration.transferred,
        }
    )


@router.delete("/devices", status_code=204)
def unregister_device(
    body: UnregisterDeviceRequest,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    store: Annotated[Store, Depends(get_store)],
) -> Response:
    """Deactivate one of the viewer's device tokens (e.g. on sign-out)."""
    with store.write_tx() as tx:
        device = device_tokens.deactivate(tx, body.token, user_id=viewer.user_id)
        tx.commit()
    logger.info("device_unregistered", device_id=device.id)
    return Response(status_code=204)
