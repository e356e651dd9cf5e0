import math
import typing
import asyncio
import logging
from fractions import Fraction
from dataclasses import dataclass

from prometheus_client import Counter, Gauge

from netfarm.conf import Config
from netfarm.error import SamplingUnavailableError, LedgerError
from netfarm.ledger import Ledger
from netfarm.ledger.base import Subject
from netfarm.sampler import TrafficSampler, NetworkSnapshot

log = logging.getLogger(__name__)

TICK_INTERVAL = 30.0
POINTS_DIVISOR = Fraction(3, 2)
MAX_POINTS_PER_TICK = 10

IDLE = "idle"
ACCRUING = "accruing"


def calculate_points(unused_bandwidth: int, threshold: int) -> int:
    if unused_bandwidth <= threshold:
        return 0
    return min(math.floor((unused_bandwidth - threshold) / POINTS_DIVISOR), MAX_POINTS_PER_TICK)


@dataclass(frozen=True)
class TickResult:
    unused_bandwidth: int
    threshold: int
    earned: int = 0
    total: typing.Optional[int] = None
    error: typing.Optional[str] = None

    @property
    def awarded(self) -> bool:
        return self.total is not None


class AccrualEngine:
    ticks_metric = Counter(
        "ticks", "Number of completed accrual ticks", namespace="netfarm_accrual"
    )
    points_metric = Counter(
        "points_awarded", "Points added to the ledger", namespace="netfarm_accrual"
    )
    ledger_failures_metric = Counter(
        "ledger_failures", "Ticks whose ledger update failed", namespace="netfarm_accrual"
    )
    sampling_failures_metric = Counter(
        "sampling_failures", "Ticks where the interface counters could not be read", namespace="netfarm_accrual"
    )
    unused_bandwidth_metric = Gauge(
        "unused_bandwidth_bytes", "Unused bandwidth observed during the last tick", namespace="netfarm_accrual"
    )

    def __init__(self, sampler: TrafficSampler, ledger: Ledger, conf: Config,
                 subject: Subject = None, interval: typing.Optional[float] = None):
        self.sampler = sampler
        self.ledger = ledger
        self.conf = conf
        self.subject = subject
        self.interval = conf.tick_interval if interval is None else interval
        self.state = IDLE
        self.last_result: typing.Optional[TickResult] = None
        self._task: typing.Optional[asyncio.Task] = None
        self._stopping = False
        # the first tick measures traffic since construction, not since boot
        self.previous = self._sample_or_zero()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done() and not self._stopping

    def _sample_or_zero(self) -> NetworkSnapshot:
        try:
            return self.sampler.sample()
        except SamplingUnavailableError as err:
            log.warning("%s, starting from zero", err)
            return NetworkSnapshot(0, 0)

    async def tick(self) -> TickResult:
        self.state = ACCRUING
        try:
            return await self._tick()
        finally:
            self.ticks_metric.inc()
            self.state = IDLE

    async def _tick(self) -> TickResult:
        threshold = self.conf.threshold
        try:
            current = self.sampler.sample()
        except SamplingUnavailableError as err:
            self.sampling_failures_metric.inc()
            log.warning("%s, counting this tick as no traffic", err)
            self.last_result = TickResult(0, threshold, error=str(err))
            return self.last_result

        unused_bandwidth = current.unused_bandwidth(self.previous)
        self.previous = current
        self.unused_bandwidth_metric.set(unused_bandwidth)

        if unused_bandwidth <= threshold:
            log.info("Unused bandwidth: %i, Threshold: %i, Not enough traffic to earn points.",
                     unused_bandwidth, threshold)
            self.last_result = TickResult(unused_bandwidth, threshold)
            return self.last_result

        earned = calculate_points(unused_bandwidth, threshold)
        try:
            total = await self.ledger.add_points(self.subject, earned)
        except LedgerError as err:
            self.ledger_failures_metric.inc()
            log.error("Unused bandwidth: %i, Threshold: %i, failed to add %i points: %s",
                      unused_bandwidth, threshold, earned, err)
            self.last_result = TickResult(unused_bandwidth, threshold, earned, error=str(err))
            return self.last_result
        self.points_metric.inc(earned)
        log.info("Unused bandwidth: %i, Threshold: %i, Earned points: %i, Total points: %i",
                 unused_bandwidth, threshold, earned, total)
        self.last_result = TickResult(unused_bandwidth, threshold, earned, total)
        return self.last_result

    async def _run(self):
        while not self._stopping:
            await asyncio.sleep(self.interval)
            try:
                await self.tick()
            except Exception:
                log.exception("unexpected error during accrual tick")

    def start(self):
        # a stopping loop has to be awaited with wait_stopped before it can be restarted
        if self._task is not None and not self._task.done():
            return
        self._stopping = False
        log.info("accruing points every %ss above %i bytes of unused bandwidth", self.interval, self.conf.threshold)
        self._task = asyncio.get_running_loop().create_task(self._run())

    def stop(self):
        """
        Ends the background loop at a tick boundary: a sleeping loop is cancelled
        right away, a running tick finishes its ledger update first.
        """
        self._stopping = True
        if self._task is not None and self.state == IDLE:
            self._task.cancel()

    async def wait_stopped(self):
        if self._task is not None:
            await asyncio.wait([self._task])
            self._task = None
