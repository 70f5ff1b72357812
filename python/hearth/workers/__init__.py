"""In-process background workers.

Each worker drains a bounded queue on its own thread. Submissions never
block: a full queue raises QueueFullError to the caller.
"""

from hearth.workers.media_queue import MediaJob, MediaJobQueue
from hearth.workers.push_queue import PushDeliveryQueue, PushJob

__all__ = ["MediaJob", "MediaJobQueue", "PushDeliveryQueue", "PushJob"]
