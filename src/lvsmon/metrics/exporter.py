"""Prometheus-compatible Metrics Exporter for the LVS health monitor.

This module implements an async HTTP server that exposes backend membership
and loss metrics in Prometheus format on the /metrics endpoint. It only reads
from the membership state machine and never changes pool membership.
"""

import time
from typing import Optional

from aiohttp import web
import logging

from lvsmon.health.membership import MembershipStateMachine

# Configure logging
logger = logging.getLogger(__name__)


class MetricsExporter:
    """Async Prometheus-compatible metrics exporter.

    Renders the current snapshot of a MembershipStateMachine on every scrape.
    """

    def __init__(self, membership: MembershipStateMachine,
                 host: str = '127.0.0.1', port: int = 9105):
        """Initialize the metrics exporter.

        Args:
            membership: State machine whose state is exported
            host: Host address to bind the metrics server (default: '127.0.0.1')
            port: Port number for the metrics endpoint (default: 9105)
        """
        self.membership = membership
        self.host = host
        self.port = port
        self.app = web.Application()
        self.runner: Optional[web.AppRunner] = None
        self.site: Optional[web.TCPSite] = None
        self._start_time = time.time()

        self._setup_routes()

        logger.info(f"MetricsExporter initialized on {host}:{port}")

    def _setup_routes(self):
        """Configure HTTP routes for the metrics server."""
        self.app.router.add_get('/metrics', self.handle_metrics)
        self.app.router.add_get('/health', self.handle_health)

    def render(self) -> str:
        """Build the Prometheus text exposition of the current state."""
        snapshot = self.membership.snapshot()
        stats = self.membership.get_stats()
        out = []

        uptime = time.time() - self._start_time
        out.append("# HELP lvsmon_uptime_seconds Monitor uptime in seconds")
        out.append("# TYPE lvsmon_uptime_seconds gauge")
        out.append(f"lvsmon_uptime_seconds {uptime:.2f}\n")

        out.append("# HELP lvsmon_backend_up Backend pool membership (1=up, 0=down or unknown)")
        out.append("# TYPE lvsmon_backend_up gauge")
        for backend, info in snapshot.items():
            value = 1 if info["state"] == "up" else 0
            out.append(f'lvsmon_backend_up{{backend="{backend}",state="{info["state"]}"}} {value}')
        out.append("")

        out.append("# HELP lvsmon_backend_loss_average_percent Average packet loss over the window")
        out.append("# TYPE lvsmon_backend_loss_average_percent gauge")
        for backend, info in snapshot.items():
            out.append(f'lvsmon_backend_loss_average_percent{{backend="{backend}"}} {info["average_loss"]}')
        out.append("")

        out.append("# HELP lvsmon_backend_last_loss_percent Packet loss of the latest probe round")
        out.append("# TYPE lvsmon_backend_last_loss_percent gauge")
        for backend, info in snapshot.items():
            if info["last_loss"] is not None:
                out.append(f'lvsmon_backend_last_loss_percent{{backend="{backend}"}} {info["last_loss"]}')
        out.append("")

        counters = (
            ("evaluations", "Loss samples evaluated"),
            ("transitions", "Committed membership transitions"),
            ("control_plane_failures", "Failed control-plane operations"),
            ("services_created", "Virtual services created"),
        )
        for name, help_text in counters:
            out.append(f"# HELP lvsmon_{name}_total {help_text}")
            out.append(f"# TYPE lvsmon_{name}_total counter")
            out.append(f"lvsmon_{name}_total {stats[name]}\n")

        return "\n".join(out)

    async def handle_metrics(self, request: web.Request) -> web.Response:
        """Handle GET requests to /metrics endpoint."""
        return web.Response(
            text=self.render(),
            content_type='text/plain',
            charset='utf-8',
        )

    async def handle_health(self, request: web.Request) -> web.Response:
        """Handle GET requests to /health endpoint.

        Provides a simple health check endpoint for the monitor itself.
        """
        stats = self.membership.get_stats()
        return web.json_response({
            "status": "healthy",
            "uptime": time.time() - self._start_time,
            "backends": stats["backends"],
            "backends_up": stats["backends_up"],
        })

    async def start(self):
        """Start the metrics exporter HTTP server."""
        try:
            self.runner = web.AppRunner(self.app)
            await self.runner.setup()

            self.site = web.TCPSite(self.runner, self.host, self.port)
            await self.site.start()

            logger.info(f"Metrics exporter started at http://{self.host}:{self.port}/metrics")

        except Exception as e:
            logger.error(f"Failed to start metrics exporter: {e}")
            raise

    async def stop(self):
        """Stop the metrics exporter HTTP server."""
        if self.site:
            await self.site.stop()
            self.site = None
        if self.runner:
            await self.runner.cleanup()
            self.runner = None
        logger.info("Metrics exporter stopped")

    async def __aenter__(self):
        """Async context manager entry."""
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.stop()
