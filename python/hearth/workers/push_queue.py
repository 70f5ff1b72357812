"""Bounded push notification queue with a single background worker.

For each job the worker loads the recipients' active device tokens in one
read transaction, then POSTs to APNs per device. Rejected tokens are
deactivated in their own short write transaction; no transaction is held
across an HTTP call. Failed deliveries are not retried within a job.

When APNs is not configured the queue is disabled and enqueue() raises
PushNotEnabledError, which callers treat as a no-op.
"""

import queue
import threading
from dataclasses import dataclass, field

from hearth.db.records import DeviceToken
from hearth.db.store import Store
from hearth.errors import PushNotEnabledError, QueueFullError
from hearth.logging import clear_job_context, configure_job_logging, get_logger
from hearth.services import device_tokens
from hearth.services.apns import (
    ApnsClient,
    PushMessage,
    TokenRejectedError,
    TransientNetworkError,
)

logger = get_logger(__name__)

DEFAULT_CAPACITY = 100
POLL_INTERVAL_S = 0.2

# Platforms delivered through APNs
APNS_PLATFORMS = frozenset({"ios"})


@dataclass
class PushJob:
    """Notify a message's offline recipients.

    recipient_user_ids never contains the sender or users who were online
    when the message was sent.
    """

    message_id: int
    family_id: int
    sender_id: int
    sender_name: str
    content: str
    recipient_user_ids: list[int] = field(default_factory=list)


@dataclass
class PushJobResult:
    """Per-job delivery counts."""

    sent: int = 0
    deactivated: int = 0
    failed: int = 0
    skipped: int = 0


class PushDeliveryQueue:
    """FIFO of push jobs drained by exactly one worker thread.

    Args:
        store: KV store holding device tokens.
        client: APNs client, or None to disable push.
        capacity: Maximum queued jobs before enqueue() raises QueueFullError.
    """

    def __init__(self, store: Store, client: ApnsClient | None, capacity: int = DEFAULT_CAPACITY):
        self.store = store
        self.client = client
        self.capacity = capacity
        self._queue: queue.Queue[PushJob] = queue.Queue(maxsize=capacity)
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def enabled(self) -> bool:
        return self.client is not None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start the worker thread if push is enabled (idempotent)."""
        if not self.enabled:
            logger.info("push_worker_disabled")
            return
        if self.is_running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="push-worker", daemon=True)
        self._thread.start()
        logger.info("push_worker_started", capacity=self.capacity)

    def stop(self, timeout: float | None = 5.0) -> None:
        """Signal shutdown, wait for the worker, and close the APNs client."""
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
        if self.client is not None:
            self.client.close()
        logger.info("push_worker_stopped", dropped=self._queue.qsize())

    def enqueue(self, job: PushJob) -> None:
        """Queue a job without blocking.

        Raises:
            PushNotEnabledError: If APNs is not configured.
            QueueFullError: If the queue is at capacity.
        """
        if not self.enabled:
            raise PushNotEnabledError("push notifications are not configured")
        try:
            self._queue.put_nowait(job)
        except queue.Full:
            raise QueueFullError("push", self.capacity) from None
        logger.info(
            "push_job_queued",
            message_id=job.message_id,
            recipients=len(job.recipient_user_ids),
            queue_length=self._queue.qsize(),
        )

    def join(self) -> None:
        """Block until every queued job has been processed."""
        self._queue.join()

    def __len__(self) -> int:
        return self._queue.qsize()

    def stats(self) -> dict:
        return {
            "enabled": self.enabled,
            "queue_length": self._queue.qsize(),
            "is_running": self.is_running,
        }

    def _run(self) -> None:
        while not self._stop.is_set():
            try:
                job = self._queue.get(timeout=POLL_INTERVAL_S)
            except queue.Empty:
                continue
            try:
                self.process_job(job)
            except Exception:
                logger.exception("push_job_crashed", message_id=job.message_id)
            finally:
                self._queue.task_done()

    # =========================================================================
    # Job processing
    # =========================================================================

    def _load_devices(self, user_ids: list[int]) -> list[DeviceToken]:
        with self.store.read_tx() as tx:
            devices: list[DeviceToken] = []
            for user_id in user_ids:
                devices.extend(device_tokens.tokens_for_user(tx, user_id))
        return devices

    def process_job(self, job: PushJob) -> PushJobResult:
        """Deliver one job synchronously."""
        configure_job_logging(job_name="push_deliver", job_id=str(job.message_id))
        result = PushJobResult()
        try:
            devices = self._load_devices(job.recipient_user_ids)
            if not devices:
                logger.info("push_no_devices", recipients=len(job.recipient_user_ids))
                return result

            message = PushMessage(
                message_id=job.message_id,
                sender_id=job.sender_id,
                sender_name=job.sender_name,
                content=job.content,
            )
            for device in devices:
                self._deliver(device, message, result)

            logger.info(
                "push_job_completed",
                sent=result.sent,
                deactivated=result.deactivated,
                failed=result.failed,
                skipped=result.skipped,
            )
            return result
        finally:
            clear_job_context()

    def _deliver(self, device: DeviceToken, message: PushMessage, result: PushJobResult) -> None:
        if device.platform not in APNS_PLATFORMS:
            logger.debug("push_platform_skipped", device_id=device.id, platform=device.platform)
            result.skipped += 1
            return

        try:
            self.client.send(device, message)  # type: ignore[union-attr]
        except TokenRejectedError as e:
            logger.info("push_token_rejected", device_id=device.id, reason=e.reason)
            self._deactivate(device.id)
            result.deactivated += 1
            return
        except TransientNetworkError as e:
            logger.warning(
                "push_delivery_failed",
                device_id=device.id,
                status_code=e.status_code,
                reason=e.reason,
                error=str(e),
            )
            result.failed += 1
            return

        logger.info("push_delivered", device_id=device.id)
        result.sent += 1

    def _deactivate(self, device_id: int) -> None:
        try:
            with self.store.write_tx() as tx:
                device_tokens.deactivate_by_id(tx, device_id)
                tx.commit()
        except Exception:
            logger.exception("push_token_deactivate_failed", device_id=device_id)
