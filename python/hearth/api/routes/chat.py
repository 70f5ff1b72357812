"""Family chat routes.

Routes are transport-only:
- Take the viewer from request.state
- Call exactly one service function
- Return success_response(...) or raise ApiError

Handlers are plain `def` so FastAPI runs them in its threadpool; store
transactions block and the registry broadcast is thread-safe.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Query, Response

from hearth.api.deps import get_push_queue, get_registry, get_store
from hearth.auth.middleware import Viewer, get_viewer
from hearth.db.store import Store
from hearth.realtime.registry import ConnectionRegistry
from hearth.responses import success_response
from hearth.schemas.chat import SendMessageRequest
from hearth.services import chat as chat_service
from hearth.workers.push_queue import PushDeliveryQueue

router = APIRouter(prefix="/api/chat")


@router.post("/messages", status_code=201)
def send_message(
    body: SendMessageRequest,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    store: Annotated[Store, Depends(get_store)],
    registry: Annotated[ConnectionRegistry, Depends(get_registry)],
    push_queue: Annotated[PushDeliveryQueue, Depends(get_push_queue)],
) -> dict:
    """Post a message to the viewer's family.

    Live family members receive a new_message frame; offline members with
    registered iOS devices get a push notification.
    """
    message = chat_service.submit_message(
        store,
        registry,
        push_queue,
        viewer,
        body.content,
        client_message_id=body.client_message_id or "",
    )
    return success_response(message.to_dict())


@router.get("/messages")
def list_messages(
    viewer: Annotated[Viewer, Depends(get_viewer)],
    store: Annotated[Store, Depends(get_store)],
    limit: Annotated[int, Query()] = chat_service.DEFAULT_LIST_LIMIT,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> dict:
    """Recent family messages in chronological order."""
    messages = chat_service.list_messages(store, viewer, limit=limit, offset=offset)
    return success_response([m.to_dict() for m in messages])


@router.delete("/messages/{message_id}", status_code=204)
def delete_message(
    message_id: int,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    store: Annotated[Store, Depends(get_store)],
    registry: Annotated[ConnectionRegistry, Depends(get_registry)],
) -> Response:
    """Delete one of the viewer's own messages.

    Returns 404 for messages in other families and 403 for messages
    written by someone else.
    """
    chat_service.delete_message(store, registry, viewer, message_id)
    return Response(status_code=204)
