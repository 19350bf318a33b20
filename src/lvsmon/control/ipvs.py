"""LVS control plane.

Thin async wrappers around the ipvsadm tool. Every operation returns a
CommandResult instead of raising, so the membership state machine can decide
what a failed mutation means.

Author: LVS Monitor Team
Version: 1.0.0
"""

import asyncio
import logging
import re
from dataclasses import dataclass, field
from typing import List, Optional, Protocol, Sequence, Tuple

from lvsmon.core.ports import ServiceProtocol

logger = logging.getLogger(__name__)

# ipvsadm switches for the packet forwarding method of a real server
FORWARDING_METHODS = {
    "masq": "-m",
    "gatewaying": "-g",
    "ipip": "-i",
}


@dataclass
class CommandResult:
    """Outcome of one control-plane operation."""
    success: bool
    returncode: Optional[int] = None
    output: str = ""
    command: Tuple[str, ...] = ()


class ControlPlane(Protocol):
    """Operations the monitor needs from the load balancer."""

    async def service_exists(self, protocol: ServiceProtocol,
                             virtual_address: str, port: int) -> bool: ...  # pragma: no cover

    async def create_service(self, protocol: ServiceProtocol, virtual_address: str,
                             port: int, scheduling_policy: str) -> CommandResult: ...  # pragma: no cover

    async def add_destination(self, protocol: ServiceProtocol, virtual_address: str,
                              port: int, backend: str, backend_port: int) -> CommandResult: ...  # pragma: no cover

    async def remove_destination(self, protocol: ServiceProtocol, virtual_address: str,
                                 port: int, backend: str, backend_port: int) -> CommandResult: ...  # pragma: no cover


def _endpoint(address: str, port: int) -> str:
    return f"{address}:{port}"


class IpvsadmControlPlane:
    """Control plane backed by the ipvsadm command line tool."""

    def __init__(self, ipvsadm_path: str = "ipvsadm", forwarding_method: str = "masq",
                 command_timeout: float = 5.0):
        """Initialize the control plane.

        Args:
            ipvsadm_path: Name or path of the ipvsadm binary
            forwarding_method: One of "masq", "gatewaying" or "ipip"
            command_timeout: Seconds before a hung ipvsadm call is killed

        Raises:
            ValueError: If the forwarding method is unknown
        """
        if forwarding_method not in FORWARDING_METHODS:
            raise ValueError(f"Unknown forwarding method: {forwarding_method}")
        self.ipvsadm_path = ipvsadm_path
        self.forwarding_method = forwarding_method
        self.command_timeout = command_timeout

    async def _run(self, *args: str) -> CommandResult:
        command = (self.ipvsadm_path, *args)
        try:
            proc = await asyncio.create_subprocess_exec(
                *command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
        except OSError as e:
            logger.error(f"Cannot run {self.ipvsadm_path}: {e}")
            return CommandResult(success=False, output=str(e), command=command)

        try:
            stdout, _ = await asyncio.wait_for(proc.communicate(), timeout=self.command_timeout)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            logger.error(f"Command timed out after {self.command_timeout}s: {' '.join(command)}")
            return CommandResult(success=False, output="timeout", command=command)

        output = stdout.decode(errors="replace").strip() if stdout else ""
        return CommandResult(
            success=proc.returncode == 0,
            returncode=proc.returncode,
            output=output,
            command=command,
        )

    async def service_exists(self, protocol: ServiceProtocol,
                             virtual_address: str, port: int) -> bool:
        """Check the live IPVS table for a virtual service."""
        result = await self._run("-Ln")
        if not result.success:
            return False
        pattern = re.compile(
            rf"^{protocol.label}\s+{re.escape(_endpoint(virtual_address, port))}\s",
            re.MULTILINE,
        )
        return bool(pattern.search(result.output + "\n"))

    async def create_service(self, protocol: ServiceProtocol, virtual_address: str,
                             port: int, scheduling_policy: str) -> CommandResult:
        return await self._run(
            "-A", protocol.flag, _endpoint(virtual_address, port),
            "-s", scheduling_policy,
        )

    async def add_destination(self, protocol: ServiceProtocol, virtual_address: str,
                              port: int, backend: str, backend_port: int) -> CommandResult:
        return await self._run(
            "-a", protocol.flag, _endpoint(virtual_address, port),
            "-r", _endpoint(backend, backend_port),
            FORWARDING_METHODS[self.forwarding_method],
        )

    async def remove_destination(self, protocol: ServiceProtocol, virtual_address: str,
                                 port: int, backend: str, backend_port: int) -> CommandResult:
        return await self._run(
            "-d", protocol.flag, _endpoint(virtual_address, port),
            "-r", _endpoint(backend, backend_port),
        )


@dataclass
class DryRunControlPlane:
    """Control plane that only logs and records what it would do."""
    existing_services: Sequence[Tuple[ServiceProtocol, int]] = ()
    calls: List[Tuple] = field(default_factory=list)

    async def service_exists(self, protocol: ServiceProtocol,
                             virtual_address: str, port: int) -> bool:
        return (protocol, port) in self.existing_services

    async def create_service(self, protocol: ServiceProtocol, virtual_address: str,
                             port: int, scheduling_policy: str) -> CommandResult:
        self.calls.append(("create", protocol, virtual_address, port, scheduling_policy))
        logger.info(f"[DRY-RUN] create {protocol.label} {_endpoint(virtual_address, port)} -s {scheduling_policy}")
        return CommandResult(success=True, returncode=0)

    async def add_destination(self, protocol: ServiceProtocol, virtual_address: str,
                              port: int, backend: str, backend_port: int) -> CommandResult:
        self.calls.append(("add", protocol, virtual_address, port, backend, backend_port))
        logger.debug(f"[DRY-RUN] add {_endpoint(backend, backend_port)} to {protocol.label} {_endpoint(virtual_address, port)}")
        return CommandResult(success=True, returncode=0)

    async def remove_destination(self, protocol: ServiceProtocol, virtual_address: str,
                                 port: int, backend: str, backend_port: int) -> CommandResult:
        self.calls.append(("remove", protocol, virtual_address, port, backend, backend_port))
        logger.debug(f"[DRY-RUN] remove {_endpoint(backend, backend_port)} from {protocol.label} {_endpoint(virtual_address, port)}")
        return CommandResult(success=True, returncode=0)
