from __future__ import annotations

import random
import socket

import pytest
from fakes import FakeProbe

from aioroomcast.config import PortRange
from aioroomcast.errors import PortAllocationError, RebuildFailed
from aioroomcast.server.ports import PortAllocator, PortPair, probe_udp_port


@pytest.mark.asyncio
async def test_allocates_even_rtp_and_next_odd_rtcp() -> None:
    allocator = PortAllocator("127.0.0.1", probe=FakeProbe(), rng=random.Random(1))
    port_range = PortRange(20000, 30000)

    for _ in range(20):
        pair = await allocator.allocate(port_range)
        assert pair.rtp % 2 == 0
        assert pair.rtcp == pair.rtp + 1
        assert pair.rtp in port_range
        assert pair.rtcp in port_range


@pytest.mark.asyncio
async def test_skips_pairs_with_a_busy_port() -> None:
    probe = FakeProbe()
    probe.busy = {20000, 20003}
    allocator = PortAllocator("127.0.0.1", probe=probe)

    assert await allocator.allocate(PortRange(20000, 20005)) == PortPair(20004, 20005)


@pytest.mark.asyncio
async def test_odd_range_start_rounds_up_to_even() -> None:
    allocator = PortAllocator("127.0.0.1", probe=FakeProbe())

    assert await allocator.allocate(PortRange(20001, 20004)) == PortPair(20002, 20003)


@pytest.mark.asyncio
async def test_excluded_ports_are_not_handed_out() -> None:
    allocator = PortAllocator("127.0.0.1", probe=FakeProbe())

    pair = await allocator.allocate(PortRange(20000, 20003), exclude={20000, 20001})

    assert pair == PortPair(20002, 20003)


@pytest.mark.asyncio
async def test_exhausted_range_raises() -> None:
    probe = FakeProbe()
    probe.busy = {20001, 20003}
    allocator = PortAllocator("127.0.0.1", probe=probe)

    with pytest.raises(PortAllocationError) as exc_info:
        await allocator.allocate(PortRange(20000, 20003))
    assert isinstance(exc_info.value, RebuildFailed)


@pytest.mark.asyncio
async def test_range_without_room_for_a_pair_raises() -> None:
    allocator = PortAllocator("127.0.0.1", probe=FakeProbe())

    with pytest.raises(PortAllocationError):
        await allocator.allocate(PortRange(20000, 20000))


def test_probe_detects_bound_port() -> None:
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
        sock.bind(("127.0.0.1", 0))
        port = sock.getsockname()[1]
        assert probe_udp_port("127.0.0.1", port) is False


def test_port_range_validation() -> None:
    with pytest.raises(ValueError):
        PortRange(30000, 20000)
    assert PortRange(20000, 30000).overlaps(PortRange(30000, 40000))
    assert not PortRange(20000, 30000).overlaps(PortRange(30001, 40000))
