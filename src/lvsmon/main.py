"""
LVS Health Monitor: async entry point.
Wires configuration, prober, control plane and scheduler, and runs the loop
until SIGINT/SIGTERM.
"""
import asyncio
import logging
import signal

from lvsmon.config import MonitorConfig
from lvsmon.control.ipvs import DryRunControlPlane, IpvsadmControlPlane
from lvsmon.core.scheduler import Scheduler
from lvsmon.health.membership import MembershipStateMachine
from lvsmon.health.prober import PingProber
from lvsmon.metrics.exporter import MetricsExporter

logger = logging.getLogger(__name__)


def build_scheduler(config: MonitorConfig, dry_run: bool = False, prober=None) -> Scheduler:
    if dry_run:
        control_plane = DryRunControlPlane()
    else:
        control_plane = IpvsadmControlPlane(
            ipvsadm_path=config.ipvsadm_path,
            forwarding_method=config.forwarding_method,
            command_timeout=config.command_timeout,
        )
    membership = MembershipStateMachine(
        backends=config.backends,
        virtual_address=config.virtual_address,
        ports=config.ports,
        control_plane=control_plane,
        loss_threshold=config.loss_threshold,
        window_size=config.window_size,
        scheduling_policy=config.scheduling_policy,
        commit_on_failure=config.commit_on_failure,
    )
    if prober is None:
        prober = PingProber(count=config.ping_count, ping_path=config.ping_path)
    return Scheduler(
        membership,
        prober,
        interval=config.probe_interval,
        probe_timeout=config.probe_timeout,
        strategy=config.scheduling_strategy,
    )


async def main(config: MonitorConfig, dry_run: bool = False):
    scheduler = build_scheduler(config, dry_run=dry_run)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, scheduler.stop)
        except NotImplementedError:
            # add_signal_handler is unavailable on Windows event loops
            pass

    exporter = None
    if config.metrics.enabled:
        exporter = MetricsExporter(scheduler.membership, config.metrics.host, config.metrics.port)
        await exporter.start()

    logger.info(
        f"[START] LVS Health Monitor on {config.virtual_address} "
        f"({len(config.ports.tcp)} TCP / {len(config.ports.udp)} UDP services)"
    )
    try:
        await scheduler.run()
    finally:
        if exporter is not None:
            await exporter.stop()
    return scheduler
