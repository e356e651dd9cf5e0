import os
from unittest import mock

from aiohttp.test_utils import TestServer, TestClient

from netfarm.testcase import DataDirTestCase
from netfarm.daemon import Daemon
from netfarm.ledger import ScalarLedger, UsersLedger, GlobalLedger
from tests.mocks import FakeSampler, UnavailableLedger


class DaemonTestCase(DataDirTestCase):

    ledger_type = 'memory'

    async def asyncSetUp(self):
        self.conf.ledger = self.ledger_type
        self.sampler = FakeSampler((1000, 1000), (3000, 3000))
        self.daemon = self.make_daemon()
        await self.daemon.initialize()
        self.addAsyncCleanup(self.daemon.ledger.close)
        self.addCleanup(self.daemon.engine.stop)
        self.client = TestClient(TestServer(self.daemon.app))
        await self.client.start_server()
        self.addAsyncCleanup(self.client.close)

    def make_daemon(self):
        return Daemon(self.conf, sampler=self.sampler)

    async def get_json(self, path, status=200, **kwargs):
        response = await self.client.get(path, **kwargs)
        self.assertEqual(response.status, status)
        self.assertEqual(response.content_type, 'application/json')
        return await response.json()


class TestMemoryStatus(DaemonTestCase):

    async def test_status_before_any_points(self):
        self.assertIsInstance(self.daemon.ledger, ScalarLedger)
        self.assertEqual(await self.get_json('/stats'), {
            'threshold': 1024,
            'unused_bandwidth': 0,
            'earned_points': 0,
            'total_points': 0,
        })

    async def test_earned_points_is_half_the_total(self):
        await self.daemon.ledger.add_points(None, 7)
        status = await self.get_json('/stats')
        self.assertEqual(status['total_points'], 7)
        self.assertEqual(status['earned_points'], 3)

    async def test_status_after_tick(self):
        await self.daemon.engine.tick()
        self.assertEqual(await self.get_json('/stats'), {
            'threshold': 1024,
            'unused_bandwidth': 4000,
            'earned_points': 5,
            'total_points': 10,
        })

    async def test_threshold_follows_config(self):
        self.conf.threshold = 2048
        self.assertEqual((await self.get_json('/stats'))['threshold'], 2048)

    async def test_no_user_routes(self):
        response = await self.client.get('/stats/alice')
        self.assertEqual(response.status, 404)

    async def test_index(self):
        response = await self.client.get('/')
        self.assertEqual(response.status, 200)
        self.assertEqual(response.content_type, 'text/html')
        self.assertIn('/stats', await response.text())

    async def test_origin(self):
        response = await self.client.get('/stats', headers={'Origin': 'hackers.com'})
        self.assertEqual(response.status, 403)
        self.conf.allowed_origin = 'hackers.com'
        response = await self.client.get('/stats', headers={'Origin': 'hackers.com'})
        self.assertEqual(response.status, 200)
        self.assertEqual(response.headers['Access-Control-Allow-Origin'], 'hackers.com')


class TestUsersStatus(DaemonTestCase):

    ledger_type = 'users'

    async def test_configured_user_is_created(self):
        self.assertIsInstance(self.daemon.ledger, UsersLedger)
        self.assertEqual(self.daemon.subject, 'testuser')
        self.assertEqual(await self.get_json('/stats'), {
            'threshold': 1024,
            'unused_bandwidth': 0,
            'earned_points': 0,
            'total_points': 0,
            'username': 'testuser',
        })
        self.assertTrue(os.path.isfile(os.path.join(self.data_dir, 'netfarm.db')))

    async def test_points_credited_to_configured_user(self):
        await self.daemon.engine.tick()
        status = await self.get_json('/stats/testuser')
        self.assertEqual(status['total_points'], 10)
        self.assertEqual(status['username'], 'testuser')

    async def test_other_users(self):
        await self.daemon.ledger.ensure_subject('alice')
        await self.daemon.ledger.add_points('alice', 4)
        self.assertEqual(await self.get_json('/stats/alice'), {
            'threshold': 1024,
            'unused_bandwidth': 0,
            'earned_points': 2,
            'total_points': 4,
            'username': 'alice',
        })

    async def test_unknown_user(self):
        error = await self.get_json('/stats/nobody', status=404)
        self.assertIn("'nobody'", error['error'])


class TestGlobalStatus(DaemonTestCase):

    ledger_type = 'global'

    async def test_global_row(self):
        self.assertIsInstance(self.daemon.ledger, GlobalLedger)
        await self.daemon.engine.tick()
        status = await self.get_json('/stats')
        self.assertEqual(status['total_points'], 10)
        self.assertNotIn('username', status)


class TestUnavailableStatus(DaemonTestCase):

    def make_daemon(self):
        return Daemon(self.conf, ledger=UnavailableLedger(), sampler=self.sampler)

    async def test_service_unavailable(self):
        with self.assertLogs('netfarm.daemon', 'WARNING'):
            error = await self.get_json('/stats', status=503)
        self.assertIn('connection refused', error['error'])


class TestDaemonStartup(DataDirTestCase):

    async def test_unreachable_database_is_fatal(self):
        self.conf.ledger = 'users'
        self.conf.database = os.path.join(self.data_dir, 'missing', 'points.db')
        daemon = Daemon(self.conf, sampler=FakeSampler())
        with mock.patch('netfarm.daemon.get_platform', return_value={}):
            with self.assertRaises(SystemExit):
                await daemon.start()
        self.assertIsNone(daemon.engine)
        await daemon.stop()

    async def test_start_and_stop(self):
        self.conf.api = 'localhost:0'
        daemon = Daemon(self.conf, sampler=FakeSampler((0, 0)))
        with mock.patch('netfarm.daemon.get_platform', return_value={}):
            await daemon.start()
        self.assertTrue(daemon.engine.running)
        await daemon.stop()
        self.assertFalse(daemon.engine.running)
