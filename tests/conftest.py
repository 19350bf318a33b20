import pytest

from lvsmon.control.ipvs import CommandResult, DryRunControlPlane
from lvsmon.core.ports import ServicePorts
from lvsmon.health.membership import MembershipStateMachine

VIP = "192.0.2.10"


class FailingControlPlane(DryRunControlPlane):
    """Records calls like the dry run, but every mutation fails."""

    async def create_service(self, *args):
        await super().create_service(*args)
        return CommandResult(success=False, returncode=2, output="Memory allocation problem")

    async def add_destination(self, *args):
        await super().add_destination(*args)
        return CommandResult(success=False, returncode=2, output="No such service")

    async def remove_destination(self, *args):
        await super().remove_destination(*args)
        return CommandResult(success=False, returncode=2, output="No such destination")


def call_kinds(control_plane):
    return [call[0] for call in control_plane.calls]


@pytest.fixture
def control_plane():
    return DryRunControlPlane()


@pytest.fixture
def make_membership(control_plane):
    def factory(backends=("10.1.1.2",), tcp=("80",), udp=(), plane=None, **kwargs):
        return MembershipStateMachine(
            backends=backends,
            virtual_address=VIP,
            ports=ServicePorts.from_specs(tcp, udp),
            control_plane=plane or control_plane,
            **kwargs,
        )
    return factory
