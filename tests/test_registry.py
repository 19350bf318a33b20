import pytest

from lvsmon.control.ipvs import DryRunControlPlane
from lvsmon.control.registry import ServiceRegistry
from lvsmon.core.ports import ServiceKey, ServiceProtocol

from conftest import VIP, FailingControlPlane, call_kinds


@pytest.mark.asyncio
async def test_service_created_at_most_once(control_plane):
    registry = ServiceRegistry(control_plane, VIP, scheduling_policy="wrr")

    assert await registry.ensure_service_exists(ServiceProtocol.TCP, 80) is True
    assert await registry.ensure_service_exists(ServiceProtocol.TCP, 80) is False

    assert control_plane.calls == [("create", ServiceProtocol.TCP, VIP, 80, "wrr")]
    assert ServiceKey(ServiceProtocol.TCP, 80) in registry
    assert registry.stats["services_created"] == 1


@pytest.mark.asyncio
async def test_protocols_are_distinct_keys(control_plane):
    registry = ServiceRegistry(control_plane, VIP)

    await registry.ensure_service_exists(ServiceProtocol.TCP, 53)
    await registry.ensure_service_exists(ServiceProtocol.UDP, 53)

    assert call_kinds(control_plane) == ["create", "create"]
    assert len(registry) == 2


@pytest.mark.asyncio
async def test_existing_service_is_adopted():
    plane = DryRunControlPlane(existing_services=[(ServiceProtocol.TCP, 80)])
    registry = ServiceRegistry(plane, VIP)

    assert await registry.ensure_service_exists(ServiceProtocol.TCP, 80) is False
    assert plane.calls == []
    assert registry.known_services() == frozenset({ServiceKey(ServiceProtocol.TCP, 80)})
    assert registry.stats["services_adopted"] == 1


@pytest.mark.asyncio
async def test_failed_create_is_not_repeated():
    plane = FailingControlPlane()
    registry = ServiceRegistry(plane, VIP)

    await registry.ensure_service_exists(ServiceProtocol.UDP, 442)
    await registry.ensure_service_exists(ServiceProtocol.UDP, 442)

    assert call_kinds(plane) == ["create"]
    assert registry.stats["create_failures"] == 1
