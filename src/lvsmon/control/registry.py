"""Idempotency guard for virtual service creation."""

import logging
from typing import FrozenSet, Set

from lvsmon.control.ipvs import ControlPlane
from lvsmon.core.ports import ServiceKey, ServiceProtocol

logger = logging.getLogger(__name__)


class ServiceRegistry:
    """Remembers which virtual services are known to exist.

    Issues at most one create call per (protocol, port) for the lifetime of
    the process. The check-then-act in ensure_service_exists is not locked
    here; callers must hold the membership lock, which also serializes every
    other control-plane mutation.
    """

    def __init__(self, control_plane: ControlPlane, virtual_address: str,
                 scheduling_policy: str = "rr"):
        self.control_plane = control_plane
        self.virtual_address = virtual_address
        self.scheduling_policy = scheduling_policy
        self._known: Set[ServiceKey] = set()
        self.stats = {
            "services_created": 0,
            "services_adopted": 0,
            "create_failures": 0,
        }

    async def ensure_service_exists(self, protocol: ServiceProtocol, port: int) -> bool:
        """Create the virtual service unless it is already known.

        Args:
            protocol: Protocol family of the service
            port: Virtual service port

        Returns:
            True if a create call was issued
        """
        key = ServiceKey(protocol, port)
        if key in self._known:
            return False

        if await self.control_plane.service_exists(protocol, self.virtual_address, port):
            self._known.add(key)
            self.stats["services_adopted"] += 1
            logger.debug(f"Service {protocol.label} {self.virtual_address}:{port} already present")
            return False

        result = await self.control_plane.create_service(
            protocol, self.virtual_address, port, self.scheduling_policy
        )
        # Recorded even on failure: a failed create is not retried for this key.
        self._known.add(key)
        if result.success:
            self.stats["services_created"] += 1
            logger.info(f"Created {protocol.label} {self.virtual_address}:{port}")
        else:
            self.stats["create_failures"] += 1
            logger.warning(
                f"Creating {protocol.label} {self.virtual_address}:{port} failed "
                f"(rc={result.returncode}): {result.output}"
            )
        return True

    def known_services(self) -> FrozenSet[ServiceKey]:
        return frozenset(self._known)

    def __contains__(self, key: ServiceKey) -> bool:
        return key in self._known

    def __len__(self) -> int:
        return len(self._known)
