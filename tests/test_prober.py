import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from lvsmon.health.prober import PingProber, parse_loss

PING_OK = b"""PING 10.1.1.2 (10.1.1.2) 56(84) bytes of data.
64 bytes from 10.1.1.2: icmp_seq=1 ttl=64 time=0.045 ms

--- 10.1.1.2 ping statistics ---
1 packets transmitted, 1 received, 0% packet loss, time 0ms
"""

PING_LOST = b"""--- 10.1.1.9 ping statistics ---
1 packets transmitted, 0 received, 100% packet loss, time 0ms
"""


def make_process(stdout=b"", returncode=0):
    proc = MagicMock()
    proc.returncode = returncode
    proc.communicate = AsyncMock(return_value=(stdout, None))
    proc.wait = AsyncMock(return_value=returncode)
    return proc


@pytest.mark.parametrize("output,expected", [
    ("1 packets transmitted, 1 received, 0% packet loss", 0),
    ("3 packets transmitted, 2 received, 33.3333% packet loss", 33),
    ("4 packets transmitted, 0 received, +4 errors, 100% packet loss", 100),
    ("ping: unknown host backend", 100),
    ("", 100),
])
def test_parse_loss(output, expected):
    assert parse_loss(output) == expected


@pytest.mark.asyncio
async def test_probe_reachable_backend():
    proc = make_process(PING_OK)
    with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=proc)) as spawn:
        loss = await PingProber(count=1).probe("10.1.1.2", timeout=1.0)

    assert loss == 0
    assert spawn.await_args.args == ("ping", "-c", "1", "-W", "1", "10.1.1.2")


@pytest.mark.asyncio
async def test_probe_unreachable_backend():
    proc = make_process(PING_LOST, returncode=1)
    with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=proc)):
        loss = await PingProber().probe("10.1.1.9", timeout=1.0)

    assert loss == 100


@pytest.mark.asyncio
async def test_probe_missing_binary_counts_as_lost():
    with patch("asyncio.create_subprocess_exec", AsyncMock(side_effect=FileNotFoundError("ping"))):
        loss = await PingProber(ping_path="/nonexistent/ping").probe("10.1.1.2", timeout=1.0)

    assert loss == 100


@pytest.mark.asyncio
async def test_probe_timeout_kills_process():
    proc = make_process(returncode=None)

    async def hang():
        await asyncio.sleep(10)

    proc.communicate = hang
    with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=proc)):
        loss = await PingProber(grace=0.0).probe("10.1.1.2", timeout=0.05)

    assert loss == 100
    proc.kill.assert_called_once()


def test_deadline_allows_gap_between_echoes():
    prober = PingProber(count=3, grace=0.5)

    assert PingProber.echo_wait(0.5) == 1
    assert PingProber.echo_wait(1.2) == 2
    assert prober.deadline(0.5) == pytest.approx(3.5)


@pytest.mark.asyncio
async def test_multi_echo_round_to_healthy_host_is_not_lost():
    proc = make_process(returncode=0)

    async def reply_after_echo_gap():
        await asyncio.sleep(0.5)
        return b"3 packets transmitted, 3 received, 0% packet loss, time 2003ms\n", None

    proc.communicate = reply_after_echo_gap
    with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=proc)) as spawn:
        loss = await PingProber(count=3, grace=0.0).probe("10.1.1.2", timeout=0.1)

    assert loss == 0
    assert spawn.await_args.args == ("ping", "-c", "3", "-W", "1", "10.1.1.2")
    proc.kill.assert_not_called()
