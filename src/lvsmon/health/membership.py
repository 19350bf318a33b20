"""Backend membership state machine.

Turns smoothed packet loss into LVS pool membership. A backend is removed
from every virtual service once its average loss reaches the threshold and
added back once it drops below. The control plane is only called when the
state actually changes, never once per probe.

Author: LVS Monitor Team
Version: 1.0.0
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, List, Optional

from lvsmon.control.ipvs import CommandResult, ControlPlane
from lvsmon.control.registry import ServiceRegistry
from lvsmon.core.ports import ServicePorts
from lvsmon.health.loss_estimator import LossEstimator

logger = logging.getLogger(__name__)


class BackendState(Enum):
    """Pool membership state of a backend."""
    UNKNOWN = "unknown"  # before the first evaluation
    UP = "up"  # in every virtual service
    DOWN = "down"  # removed from every virtual service


@dataclass
class Transition:
    """A state change applied to one backend."""
    backend: str
    previous: BackendState
    current: BackendState
    average: int
    failed_operations: int = 0
    committed: bool = True
    timestamp: float = field(default_factory=time.time)


def decide_transition(state: BackendState, average: int,
                      threshold: int) -> Optional[BackendState]:
    """Return the state a backend must move to, or None if it stays."""
    if average >= threshold and state != BackendState.DOWN:
        return BackendState.DOWN
    if average < threshold and state != BackendState.UP:
        return BackendState.UP
    return None


class MembershipStateMachine:
    """Owns loss histories, backend states and the service registry.

    Every mutation, control-plane calls included, runs under a single
    asyncio lock so concurrent workers never interleave add/remove/create
    calls for the same virtual service.
    """

    def __init__(self, backends: Iterable[str], virtual_address: str,
                 ports: ServicePorts, control_plane: ControlPlane,
                 loss_threshold: int = 5, window_size: int = 60,
                 scheduling_policy: str = "rr", commit_on_failure: bool = True):
        """Initialize the state machine.

        Args:
            backends: Addresses of the managed backends (fixed for the process)
            virtual_address: Virtual IP the LVS services listen on
            ports: Expanded TCP/UDP ports of the virtual services
            control_plane: Load balancer control plane
            loss_threshold: Average loss percent at which a backend goes DOWN
            window_size: Number of samples in the sliding window
            scheduling_policy: Scheduler name for newly created services
            commit_on_failure: Commit the new state even if a control-plane
                call failed. When False the state is kept and the mutation is
                attempted again on the next evaluation.
        """
        self.backends = tuple(backends)
        if not self.backends:
            raise ValueError("At least one backend is required")
        self.virtual_address = virtual_address
        self.ports = ports
        self.control_plane = control_plane
        self.loss_threshold = loss_threshold
        self.commit_on_failure = commit_on_failure

        self.estimator = LossEstimator(window_size)
        self.registry = ServiceRegistry(control_plane, virtual_address, scheduling_policy)
        self._states: Dict[str, BackendState] = {b: BackendState.UNKNOWN for b in self.backends}
        self.lock = asyncio.Lock()

        self.stats = {
            "evaluations": 0,
            "transitions": 0,
            "control_plane_failures": 0,
            "uncommitted_transitions": 0,
        }

    def _check_backend(self, backend: str) -> None:
        if backend not in self._states:
            raise KeyError(f"Unknown backend: {backend}")

    async def evaluate(self, backend: str, sample: int) -> Optional[Transition]:
        """Record a loss sample and apply the resulting transition, if any.

        Args:
            backend: Backend address
            sample: Loss percentage of the latest probe round

        Returns:
            The applied transition, or None when the state did not change

        Raises:
            KeyError: If the backend is not managed by this state machine
        """
        self._check_backend(backend)
        async with self.lock:
            self.stats["evaluations"] += 1
            self.estimator.record(backend, sample)
            average = self.estimator.average(backend)
            logger.debug(
                f"[CHECK] {backend} | Latest={sample}% | "
                f"Avg({self.estimator.window_size})={average}%"
            )

            previous = self._states[backend]
            target = decide_transition(previous, average, self.loss_threshold)
            if target is None:
                return None

            if target == BackendState.DOWN:
                failures = await self._remove_backend(backend)
            else:
                failures = await self._add_backend(backend)

            committed = not failures or self.commit_on_failure
            if committed:
                self._states[backend] = target
                self.stats["transitions"] += 1
            else:
                self.stats["uncommitted_transitions"] += 1
                logger.warning(
                    f"Keeping {backend} {previous.value}: {len(failures)} control-plane "
                    f"operations failed, will retry on next evaluation"
                )

            return Transition(
                backend=backend,
                previous=previous,
                current=target if committed else previous,
                average=average,
                failed_operations=len(failures),
                committed=committed,
            )

    async def _add_backend(self, backend: str) -> List[CommandResult]:
        failures = []
        for key in self.ports.service_keys():
            await self.registry.ensure_service_exists(key.protocol, key.port)
            result = await self.control_plane.add_destination(
                key.protocol, self.virtual_address, key.port, backend, key.port
            )
            if not result.success:
                failures.append(result)
                self._report_failure("add", backend, key, result)
        logger.info(f"Added {backend} back to LVS ({len(self.ports)} services)")
        return failures

    async def _remove_backend(self, backend: str) -> List[CommandResult]:
        failures = []
        for key in self.ports.service_keys():
            result = await self.control_plane.remove_destination(
                key.protocol, self.virtual_address, key.port, backend, key.port
            )
            if not result.success:
                failures.append(result)
                self._report_failure("remove", backend, key, result)
        logger.warning(f"Removed {backend} from LVS ({len(self.ports)} services)")
        return failures

    def _report_failure(self, operation: str, backend: str, key, result: CommandResult) -> None:
        self.stats["control_plane_failures"] += 1
        logger.warning(
            f"Control plane {operation} of {backend} on {key} failed "
            f"(rc={result.returncode}): {result.output}"
        )

    def get_state(self, backend: str) -> BackendState:
        self._check_backend(backend)
        return self._states[backend]

    def average(self, backend: str) -> int:
        self._check_backend(backend)
        return self.estimator.average(backend)

    def states(self) -> Dict[str, BackendState]:
        return dict(self._states)

    def snapshot(self) -> Dict[str, Dict]:
        """Per-backend view used by the CLI and the metrics exporter."""
        return {
            backend: {
                "state": state.value,
                "average_loss": self.estimator.average(backend),
                "last_loss": self.estimator.latest(backend),
                "samples": len(self.estimator.history(backend)),
            }
            for backend, state in self._states.items()
        }

    def get_stats(self) -> Dict:
        """Get state machine statistics.

        Returns:
            Dictionary of statistics
        """
        up = sum(1 for s in self._states.values() if s == BackendState.UP)
        return {
            "backends": len(self.backends),
            "backends_up": up,
            "loss_threshold": self.loss_threshold,
            "window_size": self.estimator.window_size,
            "evaluations": self.stats["evaluations"],
            "transitions": self.stats["transitions"],
            "uncommitted_transitions": self.stats["uncommitted_transitions"],
            "control_plane_failures": self.stats["control_plane_failures"],
            "services_known": len(self.registry),
            "services_created": self.registry.stats["services_created"],
        }
