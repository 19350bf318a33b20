import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from lvsmon.control.ipvs import DryRunControlPlane, IpvsadmControlPlane
from lvsmon.core.ports import ServiceProtocol

VIP = "192.0.2.10"

IPVSADM_LIST = b"""IP Virtual Server version 1.2.1 (size=4096)
Prot LocalAddress:Port Scheduler Flags
  -> RemoteAddress:Port           Forward Weight ActiveConn InActConn
TCP  192.0.2.10:80 rr
  -> 10.1.1.2:80                  Masq    1      0          0
UDP  192.0.2.10:53 rr"""


def make_process(stdout=b"", returncode=0):
    proc = MagicMock()
    proc.returncode = returncode
    proc.communicate = AsyncMock(return_value=(stdout, None))
    proc.wait = AsyncMock(return_value=returncode)
    return proc


@pytest.mark.asyncio
async def test_create_service_command():
    with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=make_process())) as spawn:
        result = await IpvsadmControlPlane().create_service(ServiceProtocol.UDP, VIP, 442, "wrr")

    assert result.success
    assert spawn.await_args.args == ("ipvsadm", "-A", "-u", "192.0.2.10:442", "-s", "wrr")


@pytest.mark.asyncio
async def test_add_destination_uses_forwarding_method():
    plane = IpvsadmControlPlane(ipvsadm_path="/sbin/ipvsadm", forwarding_method="gatewaying")
    with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=make_process())) as spawn:
        await plane.add_destination(ServiceProtocol.TCP, VIP, 80, "10.1.1.2", 80)

    assert spawn.await_args.args == (
        "/sbin/ipvsadm", "-a", "-t", "192.0.2.10:80", "-r", "10.1.1.2:80", "-g",
    )


@pytest.mark.asyncio
async def test_remove_destination_failure_is_reported():
    proc = make_process(b"Memory allocation problem", returncode=2)
    with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=proc)) as spawn:
        result = await IpvsadmControlPlane().remove_destination(ServiceProtocol.TCP, VIP, 80, "10.1.1.2", 80)

    assert spawn.await_args.args == ("ipvsadm", "-d", "-t", "192.0.2.10:80", "-r", "10.1.1.2:80")
    assert result.success is False
    assert result.returncode == 2
    assert result.output == "Memory allocation problem"


@pytest.mark.asyncio
async def test_missing_binary_is_a_failed_result():
    with patch("asyncio.create_subprocess_exec", AsyncMock(side_effect=FileNotFoundError("ipvsadm"))):
        result = await IpvsadmControlPlane().add_destination(ServiceProtocol.TCP, VIP, 80, "10.1.1.2", 80)

    assert result.success is False
    assert result.returncode is None


@pytest.mark.asyncio
async def test_hung_command_is_killed():
    proc = make_process(returncode=None)

    async def hang():
        await asyncio.sleep(10)

    proc.communicate = hang
    with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=proc)):
        result = await IpvsadmControlPlane(command_timeout=0.05).create_service(ServiceProtocol.TCP, VIP, 80, "rr")

    assert result.success is False
    assert result.output == "timeout"
    proc.kill.assert_called_once()


@pytest.mark.asyncio
@pytest.mark.parametrize("protocol,port,expected", [
    (ServiceProtocol.TCP, 80, True),
    (ServiceProtocol.UDP, 53, True),
    (ServiceProtocol.TCP, 8080, False),
    (ServiceProtocol.UDP, 80, False),
    (ServiceProtocol.TCP, 53, False),
])
async def test_service_exists(protocol, port, expected):
    proc = make_process(IPVSADM_LIST)
    with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=proc)) as spawn:
        assert await IpvsadmControlPlane().service_exists(protocol, VIP, port) is expected

    assert spawn.await_args.args == ("ipvsadm", "-Ln")


def test_unknown_forwarding_method():
    with pytest.raises(ValueError):
        IpvsadmControlPlane(forwarding_method="nat")


@pytest.mark.asyncio
async def test_dry_run_records_calls():
    plane = DryRunControlPlane()

    await plane.create_service(ServiceProtocol.TCP, VIP, 80, "rr")
    result = await plane.add_destination(ServiceProtocol.TCP, VIP, 80, "10.1.1.2", 80)

    assert result.success
    assert [c[0] for c in plane.calls] == ["create", "add"]
