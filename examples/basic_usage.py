import asyncio
import logging

from lvsmon.control.ipvs import DryRunControlPlane
from lvsmon.core.ports import ServicePorts
from lvsmon.core.scheduler import Scheduler, SchedulingStrategy
from lvsmon.health.membership import MembershipStateMachine
from lvsmon.health.prober import PingProber
from lvsmon.metrics.exporter import MetricsExporter


async def main():
    membership = MembershipStateMachine(
        backends=["10.1.1.2", "10.1.1.3"],
        virtual_address="192.0.2.10",
        ports=ServicePorts.from_specs(["80", "443"], ["53"]),
        control_plane=DryRunControlPlane(),
        loss_threshold=5,
        window_size=60,
    )
    scheduler = Scheduler(
        membership,
        PingProber(count=1),
        interval=1.0,
        probe_timeout=1.0,
        strategy=SchedulingStrategy.CONCURRENT,
    )

    # Metrics exporter
    async with MetricsExporter(membership, port=9105):
        print("Monitoring. Metrics on :9105/metrics. Press Ctrl+C to stop.")
        try:
            await scheduler.run()
        except asyncio.CancelledError:
            scheduler.stop()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    asyncio.run(main())
