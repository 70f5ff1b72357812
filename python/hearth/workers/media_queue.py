"""Bounded media job queue with a single background worker.

Each job turns an uploaded image into its size/format variants:

1. Check the target record is still Pending (missing or finished records
   abandon the job).
2. Transcode the upload.
3. Decode or primary-encode failure marks the record Failed.
4. Write every variant next to the record's file path (temp file + rename).
5. Archive the original upload as <base>_original<ext> if not already there.
6. Re-read the record, store the primary dimensions, mark it Active.
7. Any I/O or store failure during 4-6 marks the record Failed.

No write transaction is held across transcoding or file I/O.
"""

import queue
import threading
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from hearth.db.records import IMAGES, MediaRecord, MediaStatus
from hearth.db.store import Store
from hearth.errors import QueueFullError
from hearth.logging import clear_job_context, configure_job_logging, get_logger
from hearth.services.image_processing import (
    DecodeError,
    EncodeError,
    TranscodeResult,
    process_image,
)
from hearth.storage.files import atomic_write_bytes
from hearth.storage.paths import base_name, original_filename, source_extension, variant_filename

logger = get_logger(__name__)

DEFAULT_CAPACITY = 100

# How often an idle worker re-checks the stop flag
POLL_INTERVAL_S = 0.2


@dataclass
class MediaJob:
    """One pending image to process.

    Attributes:
        image_id: Target MediaRecord id.
        data: Uploaded bytes.
        mime_type: Declared MIME type of the upload.
    """

    image_id: int
    data: bytes
    mime_type: str


class MediaJobQueue:
    """FIFO of media jobs drained by exactly one worker thread.

    Args:
        store: KV store holding the image records.
        static_dir: Root directory that record file paths are relative to.
        capacity: Maximum queued jobs before submit() raises QueueFullError.
        transcoder: Function producing variants (defaults to process_image).
        archive_original: Whether to keep the upload as <base>_original<ext>.
    """

    def __init__(
        self,
        store: Store,
        static_dir: str | Path,
        capacity: int = DEFAULT_CAPACITY,
        transcoder: Callable[[bytes, str], TranscodeResult] = process_image,
        archive_original: bool = True,
    ):
        self.store = store
        self.static_dir = Path(static_dir)
        self.capacity = capacity
        self.transcoder = transcoder
        self.archive_original = archive_original
        self._queue: queue.Queue[MediaJob] = queue.Queue(maxsize=capacity)
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def start(self) -> None:
        """Start the worker thread (idempotent)."""
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="media-worker", daemon=True)
        self._thread.start()
        logger.info("media_worker_started", capacity=self.capacity)

    def stop(self, timeout: float | None = 5.0) -> None:
        """Signal shutdown and wait for the worker to exit.

        The job in progress finishes; queued jobs are dropped.
        """
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
        dropped = self._queue.qsize()
        if dropped:
            logger.warning("media_worker_stopped_with_pending_jobs", dropped=dropped)
        else:
            logger.info("media_worker_stopped")

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def submit(self, job: MediaJob) -> None:
        """Enqueue a job without blocking.

        Raises:
            QueueFullError: If the queue is at capacity. The queue is unchanged.
        """
        try:
            self._queue.put_nowait(job)
        except queue.Full:
            logger.warning("media_queue_full", image_id=job.image_id, capacity=self.capacity)
            raise QueueFullError("media", self.capacity) from None
        logger.info("media_job_queued", image_id=job.image_id, queue_length=self._queue.qsize())

    def join(self) -> None:
        """Block until every submitted job has been processed."""
        self._queue.join()

    def __len__(self) -> int:
        return self._queue.qsize()

    def stats(self) -> dict:
        """Queue length and worker liveness."""
        return {"queue_length": self._queue.qsize(), "is_running": self.is_running}

    def _run(self) -> None:
        while not self._stop.is_set():
            try:
                job = self._queue.get(timeout=POLL_INTERVAL_S)
            except queue.Empty:
                continue
            try:
                self.process_job(job)
            except Exception:
                logger.exception("media_job_crashed", image_id=job.image_id)
            finally:
                self._queue.task_done()

    # =========================================================================
    # Job processing
    # =========================================================================

    def process_job(self, job: MediaJob) -> MediaStatus | None:
        """Process one job synchronously.

        Returns:
            The status the record ended in, or None if the job was abandoned.
        """
        configure_job_logging(job_name="media_process", job_id=str(job.image_id))
        try:
            record = self._load_pending(job.image_id)
            if record is None:
                return None

            try:
                result = self.transcoder(job.data, job.mime_type)
            except (DecodeError, EncodeError) as e:
                logger.warning("media_transcode_failed", error=str(e), error_type=type(e).__name__)
                self._mark_failed(job.image_id)
                return MediaStatus.FAILED

            try:
                written = self._publish_files(record, result, job)
                self._mark_active(job.image_id, result)
            except Exception as e:
                logger.exception("media_publish_failed", error=str(e))
                self._mark_failed(job.image_id)
                return MediaStatus.FAILED

            logger.info(
                "media_job_completed",
                width=result.width,
                height=result.height,
                files_written=written,
            )
            return MediaStatus.ACTIVE
        finally:
            clear_job_context()

    def _load_pending(self, image_id: int) -> MediaRecord | None:
        with self.store.read_tx() as tx:
            record = tx.read(IMAGES, image_id)

        if record is None:
            logger.warning("media_record_missing")
            return None
        if record.status != MediaStatus.PENDING:
            # Finished records never go back to Pending
            logger.warning("media_record_not_pending", status=record.status.name)
            return None
        return record

    def _publish_files(self, record: MediaRecord, result: TranscodeResult, job: MediaJob) -> int:
        target = self.static_dir / record.file_path
        directory = target.parent
        base = base_name(record.file_path)
        written = 0

        for key, data in result.variants.items():
            if not data:
                continue
            size, fmt = key.split("_", 1)
            atomic_write_bytes(directory / variant_filename(base, size, fmt), data)
            written += 1

        if self.archive_original:
            src_ext = source_extension(job.mime_type, record.original_filename)
            original = directory / original_filename(base, src_ext)
            if not original.exists():
                atomic_write_bytes(original, job.data)
                written += 1

        return written

    def _mark_active(self, image_id: int, result: TranscodeResult) -> None:
        with self.store.write_tx() as tx:
            record = tx.read(IMAGES, image_id)
            if record is None:
                raise LookupError(f"image {image_id} disappeared during processing")
            record.width = result.width
            record.height = result.height
            record.status = MediaStatus.ACTIVE
            tx.write(IMAGES, image_id, record)
            tx.commit()

    def _mark_failed(self, image_id: int) -> None:
        try:
            with self.store.write_tx() as tx:
                record = tx.read(IMAGES, image_id)
                if record is None:
                    logger.warning("media_record_missing_on_fail")
                    return
                record.status = MediaStatus.FAILED
                tx.write(IMAGES, image_id, record)
                tx.commit()
        except Exception:
            logger.exception("media_mark_failed_error")
