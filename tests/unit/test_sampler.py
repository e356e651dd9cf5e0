import unittest
from unittest import mock
from collections import namedtuple

from netfarm.error import SamplingUnavailableError
from netfarm.sampler import TrafficSampler, NetworkSnapshot

snetio = namedtuple('snetio', ['bytes_sent', 'bytes_recv', 'packets_sent', 'packets_recv'])


class TestNetworkSnapshot(unittest.TestCase):

    def test_total(self):
        self.assertEqual(NetworkSnapshot(sent=1000, received=500).total, 1500)

    def test_unused_bandwidth(self):
        previous = NetworkSnapshot(1000, 1000)
        self.assertEqual(NetworkSnapshot(3000, 3000).unused_bandwidth(previous), 4000)
        self.assertEqual(NetworkSnapshot(1500, 1500).unused_bandwidth(previous), 1000)
        self.assertEqual(NetworkSnapshot(1000, 1000).unused_bandwidth(previous), 0)

    def test_counter_reset_is_not_negative(self):
        previous = NetworkSnapshot(2 ** 63, 2 ** 63)
        self.assertEqual(NetworkSnapshot(10, 10).unused_bandwidth(previous), 0)
        self.assertEqual(NetworkSnapshot(0, 0).unused_bandwidth(previous), 0)

    def test_snapshots_are_immutable(self):
        snapshot = NetworkSnapshot(1, 2)
        with self.assertRaises(AttributeError):
            snapshot.sent = 5


class TestTrafficSampler(unittest.TestCase):

    def test_sums_every_interface(self):
        counters = {
            'lo': snetio(100, 100, 1, 1),
            'eth0': snetio(2000, 5000, 10, 20),
            'docker0': snetio(30, 40, 1, 1),
        }
        with mock.patch('psutil.net_io_counters', return_value=counters) as net_io_counters:
            sampler = TrafficSampler()
            self.assertEqual(sampler.sample(), NetworkSnapshot(sent=2130, received=5140))
            net_io_counters.assert_called_once_with(pernic=True)
        self.assertEqual(sampler.interfaces, ['docker0', 'eth0', 'lo'])

    def test_refreshes_before_every_sample(self):
        first = {'eth0': snetio(10, 10, 1, 1)}
        second = {'eth0': snetio(50, 70, 2, 2)}
        with mock.patch('psutil.net_io_counters', side_effect=[first, second]) as net_io_counters:
            sampler = TrafficSampler()
            self.assertEqual(sampler.sample(), NetworkSnapshot(10, 10))
            self.assertEqual(sampler.sample(), NetworkSnapshot(50, 70))
            self.assertEqual(net_io_counters.call_count, 2)

    def test_no_interfaces(self):
        with mock.patch('psutil.net_io_counters', return_value={}):
            sampler = TrafficSampler()
            self.assertEqual(sampler.sample(), NetworkSnapshot(0, 0))
            self.assertEqual(sampler.interfaces, [])

    def test_counters_unavailable(self):
        with mock.patch('psutil.net_io_counters', side_effect=OSError("permission denied")):
            sampler = TrafficSampler()
            with self.assertRaises(SamplingUnavailableError) as err:
                sampler.sample()
        self.assertIn("permission denied", str(err.exception))
        self.assertEqual(sampler.interfaces, [])
