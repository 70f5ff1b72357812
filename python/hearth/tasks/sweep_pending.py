"""Pending image sweeper.

Runs once at boot, before the API accepts uploads:
- Scan the images bucket for records still in status Pending
- If the archived original (<base>_original<ext>) exists, re-submit it to
  the media queue
- Otherwise the upload bytes are gone: mark the record Failed
- Log counts

Jobs queued before a restart are lost with the process, so without this pass
their records would stay Pending forever.
"""

from dataclasses import dataclass
from pathlib import Path

from hearth.db.records import IMAGES, MediaStatus
from hearth.db.store import Store
from hearth.errors import QueueFullError
from hearth.logging import get_logger
from hearth.storage.files import find_original
from hearth.workers.media_queue import MediaJob, MediaJobQueue

logger = get_logger(__name__)


@dataclass
class SweepResult:
    requeued: int = 0
    failed: int = 0
    deferred: int = 0


def sweep_pending_images(
    store: Store, media_queue: MediaJobQueue, static_dir: str | Path
) -> SweepResult:
    """Re-queue or fail every Pending image record.

    Records that cannot be queued because the queue is full stay Pending and
    are counted as deferred; the next boot picks them up.

    Returns:
        Counts of requeued, failed and deferred records.
    """
    static_dir = Path(static_dir)
    result = SweepResult()

    with store.read_tx() as tx:
        pending = [record for _, record in tx.scan(IMAGES) if record.status == MediaStatus.PENDING]

    if not pending:
        return result

    for record in pending:
        original = find_original(static_dir, record)
        if original is None:
            _fail(store, record.id)
            result.failed += 1
            logger.info("sweeper_failed_missing_original", image_id=record.id)
            continue

        try:
            data = original.read_bytes()
        except OSError as e:
            logger.error("sweeper_read_error", image_id=record.id, error=str(e))
            _fail(store, record.id)
            result.failed += 1
            continue

        try:
            media_queue.submit(MediaJob(image_id=record.id, data=data, mime_type=record.mime_type))
        except QueueFullError:
            result.deferred += 1
            continue
        result.requeued += 1

    logger.info(
        "sweeper_complete",
        total_pending=len(pending),
        requeued=result.requeued,
        failed=result.failed,
        deferred=result.deferred,
    )
    return result


def _fail(store: Store, image_id: int) -> None:
    # Conditional update: only finalize if still pending
    with store.write_tx() as tx:
        record = tx.read(IMAGES, image_id)
        if record is None or record.status != MediaStatus.PENDING:
            return
        record.status = MediaStatus.FAILED
        tx.write(IMAGES, image_id, record)
        tx.commit()
