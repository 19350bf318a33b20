"""
PingProber for the LVS health monitor.
Measures backend packet loss with the system ping utility.
"""
import asyncio
import logging
import math
import re
from typing import Optional, Protocol

from lvsmon.health.loss_estimator import MAX_LOSS, clamp_loss

logger = logging.getLogger(__name__)

LOSS_PATTERN = re.compile(r"(\d+(?:\.\d+)?)%\s*packet loss")


class Prober(Protocol):
    async def probe(self, address: str, timeout: float) -> int: ...  # pragma: no cover


def parse_loss(output: str) -> int:
    """Extract the loss percentage from ping output; 100 if there is none."""
    match = LOSS_PATTERN.search(output or "")
    if not match:
        return MAX_LOSS
    return clamp_loss(int(float(match.group(1))))


class PingProber:
    def __init__(self, count=1, ping_path="ping", grace=0.5):
        """
        count: Echo requests sent per probe round.
        ping_path: Name or path of the ping binary.
        grace: Extra seconds allowed for ping to print its summary.
        """
        self.count = count
        self.ping_path = ping_path
        self.grace = grace

    @staticmethod
    def echo_wait(timeout: float) -> int:
        """Whole seconds handed to ping -W, at least 1."""
        return max(1, math.ceil(timeout))

    def deadline(self, timeout: float) -> float:
        """Seconds a full round may take: the last reply wait plus one second
        between consecutive echoes."""
        return self.echo_wait(timeout) + (self.count - 1) + self.grace

    async def probe(self, address: str, timeout: float) -> int:
        """Probe one backend. Unreachability is data: never raises, returns 100."""
        wait = self.echo_wait(timeout)
        proc: Optional[asyncio.subprocess.Process] = None
        try:
            proc = await asyncio.create_subprocess_exec(
                self.ping_path, "-c", str(self.count), "-W", str(wait), address,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
            stdout, _ = await asyncio.wait_for(
                proc.communicate(), timeout=self.deadline(timeout)
            )
        except asyncio.TimeoutError:
            logger.debug(f"Ping to {address} timed out")
            if proc is not None and proc.returncode is None:
                proc.kill()
                await proc.wait()
            return MAX_LOSS
        except OSError as e:
            logger.error(f"Cannot run {self.ping_path} for {address}: {e}")
            return MAX_LOSS
        return parse_loss(stdout.decode(errors="replace") if stdout else "")
