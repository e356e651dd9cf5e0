import logging
from prometheus_client import Histogram

from netfarm.utils import LockWithMetrics
from netfarm.ledger.base import Ledger, Subject

log = logging.getLogger(__name__)

HISTOGRAM_BUCKETS = (
    .0005, .001, .005, .01, .025, .05, .1, .25, .5, 1.0, float('inf')
)


class ScalarLedger(Ledger):
    """
    A single process-wide counter. There is no subject key: every subject,
    including none at all, refers to the same counter, and it always exists.
    """

    ledger_type = 'memory'

    acquire_lock_metric = Histogram(
        'lock_acquired', 'Time to acquire the points lock', namespace="netfarm_memory_ledger",
        buckets=HISTOGRAM_BUCKETS
    )
    held_lock_metric = Histogram(
        'lock_held', 'Length of time the points lock is held for', namespace="netfarm_memory_ledger",
        buckets=HISTOGRAM_BUCKETS
    )

    def __init__(self, points: int = 0):
        self.check_points(points)
        self._points = points
        self._lock = LockWithMetrics(self.acquire_lock_metric, self.held_lock_metric)

    async def ensure_subject(self, subject: Subject = None):
        pass

    async def get(self, subject: Subject = None) -> int:
        return self._points

    async def add_points(self, subject: Subject, points: int) -> int:
        self.check_points(points)
        async with self._lock:
            self._points += points
            return self._points
