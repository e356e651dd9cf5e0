import json
import typing
import asyncio
import logging

from aiohttp import web
from prometheus_client import generate_latest as prom_generate_latest, Counter, Histogram

from netfarm.conf import Config
from netfarm.error import LedgerError, UnknownSubjectError, LedgerUnavailableError
from netfarm.ledger import Ledger, get_ledger, GLOBAL_SUBJECT
from netfarm.ledger.base import Subject
from netfarm.sampler import TrafficSampler
from netfarm.accrual import AccrualEngine
from netfarm.security import ensure_request_allowed
from netfarm.system_info import get_platform
from netfarm.utils import json_dumps_pretty

log = logging.getLogger(__name__)

HISTOGRAM_BUCKETS = (
    .005, .01, .025, .05, .075, .1, .25, .5, .75, 1.0, 2.5, 5.0, 7.5, 10.0, float('inf')
)

INDEX_PAGE = """<!DOCTYPE html>
<html>
<head>
  <meta charset="utf-8">
  <title>Network Farming</title>
</head>
<body>
  <h1>Network Farming</h1>
  <p>Points are earned from unused network bandwidth.</p>
  <pre id="stats">loading...</pre>
  <script>
    fetch("/stats").then(r => r.json()).then(s => {
      document.getElementById("stats").textContent = JSON.stringify(s, null, 2);
    });
  </script>
</body>
</html>
"""


class Daemon:
    """
    Serves the points ledger over HTTP while the accrual engine adds to it in
    the background.
    """

    requests_count_metric = Counter(
        "requests_count", "Number of status requests received", namespace="netfarm_api",
        labelnames=("status",)
    )
    response_time_metric = Histogram(
        "response_time", "Status response times", namespace="netfarm_api", buckets=HISTOGRAM_BUCKETS
    )

    def __init__(self, conf: Config, ledger: typing.Optional[Ledger] = None,
                 sampler: typing.Optional[TrafficSampler] = None):
        self.conf = conf
        self.ledger = ledger or get_ledger(conf)
        self.sampler = sampler or TrafficSampler()
        self.engine: typing.Optional[AccrualEngine] = None

        logging.getLogger('aiohttp.access').setLevel(logging.WARN)
        app = web.Application()
        app.router.add_get('/', self.handle_index)
        app.router.add_get('/stats', self.handle_stats)
        app.router.add_get('/stats/{username}', self.handle_stats)
        self.app = app
        self.runner = web.AppRunner(app)

        prom_app = web.Application()
        prom_app.router.add_get('/metrics', self.handle_metrics_get_request)
        self.metrics_runner = web.AppRunner(prom_app)

    @property
    def subject(self) -> Subject:
        if self.ledger.requires_subject:
            return self.conf.subject
        if self.ledger.ledger_type == 'global':
            return GLOBAL_SUBJECT
        return None

    async def start(self):
        log.info("Starting netfarm daemon")
        log.debug("Settings: %s", json.dumps(self.conf.settings_dict, indent=2))
        log.info("Platform: %s", json.dumps(get_platform(), indent=2))

        await self.runner.setup()
        await self.metrics_runner.setup()

        try:
            await self.initialize()
        except asyncio.CancelledError:
            log.info("shutting down before finished starting")
            raise
        except LedgerError as err:
            log.error("Failed to open the %s ledger: %s", self.ledger.ledger_type, err)
            raise SystemExit(1)

        try:
            site = web.TCPSite(self.runner, self.conf.api_host, self.conf.api_port)
            await site.start()
            log.info('status server listening on TCP %s:%i', *site._server.sockets[0].getsockname()[:2])
        except OSError:
            log.error('status server failed to bind TCP %s:%i', self.conf.api_host, self.conf.api_port)
            raise SystemExit(1)

        if self.conf.prometheus_port:
            try:
                prom_site = web.TCPSite(self.metrics_runner, "0.0.0.0", self.conf.prometheus_port)
                await prom_site.start()
                log.info('metrics server listening on TCP %s:%i', *prom_site._server.sockets[0].getsockname()[:2])
            except OSError:
                log.error('metrics server failed to bind TCP :%i', self.conf.prometheus_port)
                raise SystemExit(1)

    async def initialize(self):
        await self.ledger.open()
        await self.ledger.ensure_subject(self.subject)
        self.engine = AccrualEngine(self.sampler, self.ledger, self.conf, self.subject)
        self.engine.start()

    async def stop(self):
        if self.engine is not None:
            self.engine.stop()
            await self.engine.wait_stopped()
        log.info("stopped accrual")
        await self.runner.cleanup()
        await self.metrics_runner.cleanup()
        log.info("stopped api server")
        await self.ledger.close()
        log.info("finished shutting down")

    async def get_status(self, subject: Subject) -> dict:
        total = await self.ledger.get(subject)
        last = self.engine.last_result if self.engine else None
        status = {
            'threshold': self.conf.threshold,
            'unused_bandwidth': last.unused_bandwidth if last else 0,
            'earned_points': total // 2,
            'total_points': total,
        }
        if self.ledger.requires_subject:
            status['username'] = subject
        return status

    def _json_response(self, data: dict, status: int = 200) -> web.Response:
        headers = {}
        if self.conf.allowed_origin:
            headers['Access-Control-Allow-Origin'] = self.conf.allowed_origin
        return web.Response(
            text=json_dumps_pretty(data), status=status, headers=headers, content_type='application/json'
        )

    async def handle_index(self, request: web.Request):
        return web.Response(text=INDEX_PAGE, content_type='text/html')

    async def handle_stats(self, request: web.Request):
        ensure_request_allowed(request, self.conf)
        subject = self.subject
        if 'username' in request.match_info:
            if not self.ledger.requires_subject:
                raise web.HTTPNotFound()
            subject = request.match_info['username']
        with self.response_time_metric.time():
            try:
                status = await self.get_status(subject)
            except UnknownSubjectError as err:
                self.requests_count_metric.labels(status="not_found").inc()
                return self._json_response({'error': str(err)}, status=404)
            except LedgerUnavailableError as err:
                self.requests_count_metric.labels(status="unavailable").inc()
                log.warning("status request failed: %s", err)
                return self._json_response({'error': str(err)}, status=503)
        self.requests_count_metric.labels(status="ok").inc()
        return self._json_response(status)

    async def handle_metrics_get_request(self, request: web.Request):
        try:
            return web.Response(
                text=prom_generate_latest().decode(),
                content_type='text/plain; version=0.0.4'
            )
        except Exception:
            log.exception('could not generate prometheus data')
            raise
