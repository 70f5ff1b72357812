"""Family chat: message ingress, deletion and history.

Sending a message:
1. Validate content (trimmed, 1..1000 characters)
2. Persist it and index it by family and author in one write transaction
3. Broadcast a new_message frame to the family's live connections
4. Work out which family members are offline (not the sender, no live
   connection) and queue one push job for them

Push is best effort: a disabled or saturated push queue is logged and the
send still succeeds, since the message is already committed.
"""

from hearth.auth.middleware import Viewer
from hearth.db.records import (
    CHAT_MESSAGES,
    CHAT_MESSAGES_BY_FAMILY,
    CHAT_MESSAGES_BY_USER,
    ChatMessage,
    utcnow,
)
from hearth.db.store import Store, Tx, Window
from hearth.errors import (
    ApiErrorCode,
    ForbiddenError,
    InvalidRequestError,
    NotFoundError,
    PushNotEnabledError,
    QueueFullError,
)
from hearth.logging import get_logger
from hearth.realtime.frames import delete_message_frame, new_message_frame
from hearth.realtime.registry import ConnectionRegistry
from hearth.services.users import family_member_ids
from hearth.workers.push_queue import PushDeliveryQueue, PushJob

logger = get_logger(__name__)

MAX_CONTENT_LENGTH = 1000
MAX_CLIENT_MESSAGE_ID_LENGTH = 128
DEFAULT_LIST_LIMIT = 100
MAX_LIST_LIMIT = 200


def validate_content(content: str) -> str:
    """Return the trimmed content.

    Raises:
        InvalidRequestError: If the content is empty or too long.
    """
    trimmed = (content or "").strip()
    if not trimmed:
        raise InvalidRequestError(message="Message content cannot be empty")
    if len(trimmed) > MAX_CONTENT_LENGTH:
        raise InvalidRequestError(
            message=f"Message content cannot exceed {MAX_CONTENT_LENGTH} characters"
        )
    return trimmed


def get_message(tx: Tx, message_id: int, family_id: int) -> ChatMessage:
    """Load a message visible to a family.

    Raises:
        NotFoundError: If it does not exist or belongs to another family.
    """
    message = tx.read(CHAT_MESSAGES, message_id)
    if message is None or message.family_id != family_id:
        raise NotFoundError(ApiErrorCode.E_MESSAGE_NOT_FOUND, "Message not found")
    return message


def offline_recipients(
    store: Store, registry: ConnectionRegistry, family_id: int, sender_id: int
) -> list[int]:
    """Family members who should get a push: not the sender, not online."""
    with store.read_tx() as tx:
        members = family_member_ids(tx, family_id)
    online = registry.online_users(family_id)
    return [user_id for user_id in members if user_id != sender_id and user_id not in online]


def queue_push_notifications(
    push_queue: PushDeliveryQueue | None,
    store: Store,
    registry: ConnectionRegistry,
    message: ChatMessage,
) -> PushJob | None:
    """Queue a push job for the message's offline recipients, if any.

    Returns:
        The queued job, or None if nothing was queued.
    """
    if push_queue is None or not push_queue.enabled:
        return None

    recipients = offline_recipients(store, registry, message.family_id, message.user_id)
    if not recipients:
        return None

    job = PushJob(
        message_id=message.id,
        family_id=message.family_id,
        sender_id=message.user_id,
        sender_name=message.user_name,
        content=message.content,
        recipient_user_ids=recipients,
    )
    try:
        push_queue.enqueue(job)
    except (QueueFullError, PushNotEnabledError) as e:
        logger.warning("chat_push_not_queued", message_id=message.id, error=str(e))
        return None
    return job


def submit_message(
    store: Store,
    registry: ConnectionRegistry,
    push_queue: PushDeliveryQueue | None,
    viewer: Viewer,
    content: str,
    client_message_id: str = "",
) -> ChatMessage:
    """Persist a chat message and fan it out.

    Raises:
        InvalidRequestError: If the content or client id is invalid.
    """
    trimmed = validate_content(content)
    client_message_id = (client_message_id or "").strip()
    if len(client_message_id) > MAX_CLIENT_MESSAGE_ID_LENGTH:
        raise InvalidRequestError(message="Client message id is too long")

    with store.write_tx() as tx:
        message = ChatMessage(
            id=tx.next_int_id(CHAT_MESSAGES),
            family_id=viewer.family_id,
            user_id=viewer.user_id,
            user_name=viewer.name,
            content=trimmed,
            created_at=utcnow(),
            client_message_id=client_message_id,
        )
        tx.write(CHAT_MESSAGES, message.id, message)
        tx.set_target_single_term(CHAT_MESSAGES_BY_FAMILY, message.id, message.family_id)
        tx.set_target_single_term(CHAT_MESSAGES_BY_USER, message.id, message.user_id)
        tx.commit()

    delivered = registry.broadcast(message.family_id, new_message_frame(message))
    queue_push_notifications(push_queue, store, registry, message)

    logger.info(
        "chat_message_sent",
        message_id=message.id,
        family_id=message.family_id,
        user_id=message.user_id,
        length=len(message.content),
        live_deliveries=delivered,
    )
    return message


def delete_message(
    store: Store, registry: ConnectionRegistry, viewer: Viewer, message_id: int
) -> None:
    """Delete one of the viewer's own messages and announce it.

    Raises:
        NotFoundError: If the message is missing or in another family.
        ForbiddenError: If the viewer did not write it.
    """
    with store.write_tx() as tx:
        message = get_message(tx, message_id, viewer.family_id)
        if message.user_id != viewer.user_id:
            raise ForbiddenError(message="You can only delete your own messages")

        tx.set_target_single_term(CHAT_MESSAGES_BY_FAMILY, message_id, None)
        tx.set_target_single_term(CHAT_MESSAGES_BY_USER, message_id, None)
        tx.delete(CHAT_MESSAGES, message_id)
        tx.commit()

    registry.broadcast(viewer.family_id, delete_message_frame(message_id, viewer.user_id))
    logger.info(
        "chat_message_deleted",
        message_id=message_id,
        family_id=viewer.family_id,
        user_id=viewer.user_id,
    )


def list_messages(
    store: Store, viewer: Viewer, limit: int | None = None, offset: int = 0
) -> list[ChatMessage]:
    """The family's most recent messages, oldest first.

    Out-of-range limits fall back to the default of 100 (maximum 200).
    """
    if limit is None or limit <= 0 or limit > MAX_LIST_LIMIT:
        limit = DEFAULT_LIST_LIMIT
    offset = max(offset, 0)

    with store.read_tx() as tx:
        ids = tx.read_term_targets(
            CHAT_MESSAGES_BY_FAMILY,
            viewer.family_id,
            Window(limit=limit, offset=offset, reverse=True),
        )
        messages = [m for m in (tx.read(CHAT_MESSAGES, i) for i in ids) if m is not None]

    messages.reverse()
    return messages
