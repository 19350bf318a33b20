"""Probe scheduler.

Drives one probe-evaluate cycle per backend per interval. Two strategies are
available and give the same outcome:

- CONCURRENT: one asyncio task per backend. Probes run in parallel and only
  the evaluation is serialized by the membership lock, so a slow backend
  never delays the others.
- SEQUENTIAL: a single loop probes every backend in turn and sleeps only the
  remainder of the interval to hold a steady cadence.

Author: LVS Monitor Team
Version: 1.0.0
"""

import asyncio
import logging
import time
from enum import Enum
from typing import Dict, List, Optional

from lvsmon.health.membership import MembershipStateMachine, Transition
from lvsmon.health.prober import Prober

logger = logging.getLogger(__name__)


class SchedulingStrategy(Enum):
    """How backends are driven within a cycle."""
    CONCURRENT = "concurrent"
    SEQUENTIAL = "sequential"


class Scheduler:
    """Runs the closed loop between probing and pool membership."""

    def __init__(self, membership: MembershipStateMachine, prober: Prober,
                 interval: float = 1.0, probe_timeout: float = 1.0,
                 strategy: SchedulingStrategy = SchedulingStrategy.CONCURRENT,
                 clock=time.monotonic):
        """Initialize the scheduler.

        Args:
            membership: State machine owning histories and states
            prober: Reachability prober
            interval: Seconds between two cycles of the same backend
            probe_timeout: Timeout handed to every probe
            strategy: Concurrency strategy
            clock: Monotonic clock used to compensate for cycle drift
        """
        if interval <= 0:
            raise ValueError(f"interval must be positive, got {interval}")
        self.membership = membership
        self.prober = prober
        self.interval = interval
        self.probe_timeout = probe_timeout
        self.strategy = SchedulingStrategy(strategy)
        self.clock = clock

        self._stop_event = asyncio.Event()
        self._cycles: Dict[str, int] = {b: 0 for b in membership.backends}
        self.running = False

    @property
    def backends(self):
        return self.membership.backends

    def stop(self) -> None:
        """Ask every worker to exit after its in-flight cycle."""
        self._stop_event.set()

    @property
    def stopping(self) -> bool:
        return self._stop_event.is_set()

    async def _sleep(self, seconds: float) -> None:
        """Sleep, waking up early when a stop is requested."""
        if seconds <= 0:
            return
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    async def check_backend(self, backend: str) -> Optional[Transition]:
        """One probe-evaluate step for a single backend.

        The probe runs outside the membership lock.
        """
        loss = await self.prober.probe(backend, self.probe_timeout)
        transition = await self.membership.evaluate(backend, loss)
        self._cycles[backend] += 1
        return transition

    async def run_cycle(self) -> List[Transition]:
        """Probe every backend once, in order."""
        transitions = []
        for backend in self.backends:
            transition = await self.check_backend(backend)
            if transition is not None:
                transitions.append(transition)
        return transitions

    async def _run_sequential(self, max_cycles: Optional[int]) -> None:
        done = 0
        while not self.stopping:
            started = self.clock()
            await self.run_cycle()
            done += 1
            if max_cycles is not None and done >= max_cycles:
                break
            elapsed = self.clock() - started
            await self._sleep(max(0.0, self.interval - elapsed))

    async def _worker(self, backend: str, max_cycles: Optional[int]) -> None:
        done = 0
        while not self.stopping:
            started = self.clock()
            await self.check_backend(backend)
            done += 1
            if max_cycles is not None and done >= max_cycles:
                break
            elapsed = self.clock() - started
            await self._sleep(max(0.0, self.interval - elapsed))

    async def _run_concurrent(self, max_cycles: Optional[int]) -> None:
        workers = [
            asyncio.create_task(self._worker(b, max_cycles), name=f"probe-{b}")
            for b in self.backends
        ]
        try:
            await asyncio.gather(*workers)
        finally:
            for task in workers:
                if not task.done():
                    task.cancel()

    async def run(self, max_cycles: Optional[int] = None) -> None:
        """Run until stop() is called or max_cycles cycles have completed.

        Args:
            max_cycles: Optional number of cycles per backend
        """
        if self.running:
            raise RuntimeError("Scheduler is already running")
        self.running = True
        logger.info(
            f"Monitoring {len(self.backends)} backends every {self.interval}s "
            f"({self.strategy.value})"
        )
        try:
            if self.strategy == SchedulingStrategy.CONCURRENT:
                await self._run_concurrent(max_cycles)
            else:
                await self._run_sequential(max_cycles)
        finally:
            self.running = False
            logger.info("Scheduler stopped")

    def get_stats(self) -> Dict:
        return {
            "strategy": self.strategy.value,
            "interval": self.interval,
            "running": self.running,
            "cycles": dict(self._cycles),
        }
