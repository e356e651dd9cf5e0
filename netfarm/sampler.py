import typing
import logging
from dataclasses import dataclass

import psutil

from netfarm.error import SamplingUnavailableError

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class NetworkSnapshot:
    sent: int
    received: int

    @property
    def total(self) -> int:
        return self.sent + self.received

    def unused_bandwidth(self, previous: 'NetworkSnapshot') -> int:
        """
        Bytes moved since `previous`. Counters that went backwards (interface
        restart or reset) count as no traffic.
        """
        return max(0, self.total - previous.total)


class TrafficSampler:
    """
    Sums the cumulative byte counters of every network interface the OS reports,
    loopback and virtual interfaces included.
    """

    def __init__(self):
        self._counters: typing.Dict[str, typing.Any] = {}

    @property
    def interfaces(self) -> typing.List[str]:
        return sorted(self._counters)

    def refresh(self):
        try:
            self._counters = psutil.net_io_counters(pernic=True) or {}
        except (OSError, RuntimeError) as err:
            self._counters = {}
            raise SamplingUnavailableError(err) from err

    def sample(self) -> NetworkSnapshot:
        # the counters are cached per refresh, reading without one returns stale totals
        self.refresh()
        if not self._counters:
            log.debug("no network interfaces reported")
            return NetworkSnapshot(0, 0)
        sent = received = 0
        for counters in self._counters.values():
            sent += counters.bytes_sent
            received += counters.bytes_recv
        return NetworkSnapshot(sent, received)
