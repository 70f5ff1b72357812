"""Health check endpoint."""

from fastapi import APIRouter, Request

from hearth.responses import success_response

router = APIRouter()


@router.get("/health")
async def health_check(request: Request) -> dict:
    """Liveness check.

    Returns 200 while the process is running, with worker queue and live
    connection counts. Does not touch the store.
    """
    state = request.app.state
    data: dict = {"status": "ok"}
    media_queue = getattr(state, "media_queue", None)
    if media_queue is not None:
        data["media_queue"] = media_queue.stats()
    push_queue = getattr(state, "push_queue", None)
    if push_queue is not None:
        data["push_queue"] = push_queue.stats()
    registry = getattr(state, "registry", None)
    if registry is not None:
        data["connections"] = registry.stats()
    return success_response(data)
