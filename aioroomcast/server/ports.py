"""Allocation of RTP/RTCP port pairs for the transcoder inputs."""

from __future__ import annotations

import asyncio
import logging
import random
import socket
from collections.abc import Callable, Collection
from typing import NamedTuple

from aioroomcast.config import PortRange
from aioroomcast.errors import PortAllocationError

logger = logging.getLogger(__name__)


class PortPair(NamedTuple):
    """An even RTP port and the odd RTCP port right above it."""

    rtp: int
    rtcp: int


def probe_udp_port(host: str, port: int) -> bool:
    """Return True if the OS lets us bind a UDP socket to host:port right now."""
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
        try:
            sock.bind((host, port))
        except OSError:
            return False
    return True


class PortAllocator:
    """
    Finds free port pairs by probing the OS.

    Nothing is reserved between the probe and the moment the transcoder binds
    the port, so two rooms rebuilding at the same time may race for the same
    pair. Ports handed out within one rebuild are excluded explicitly.
    """

    def __init__(
        self,
        host: str,
        *,
        probe: Callable[[str, int], bool] = probe_udp_port,
        rng: random.Random | None = None,
    ) -> None:
        """
        Initialize the allocator.

        Args:
            host: Address the ports are probed on (the transcoder's listen address).
            probe: Function returning True if a port is free, replaceable for tests.
            rng: Random source used to pick probe order.
        """
        self._host = host
        self._probe = probe
        self._rng = rng or random.Random()

    async def allocate(self, port_range: PortRange, exclude: Collection[int] = ()) -> PortPair:
        """
        Return a free pair of an even RTP port and the next odd RTCP port.

        Candidates are probed in random order so that concurrent rooms are less
        likely to collide, yielding to the event loop between probes.

        Raises:
            PortAllocationError: If no free pair is left in the range.
        """
        first_even = port_range.start + (port_range.start % 2)
        candidates = list(range(first_even, port_range.stop, 2))
        self._rng.shuffle(candidates)
        for rtp_port in candidates:
            rtcp_port = rtp_port + 1
            if rtp_port in exclude or rtcp_port in exclude:
                continue
            if self._probe(self._host, rtp_port) and self._probe(self._host, rtcp_port):
                logger.debug("Allocated port pair %d/%d", rtp_port, rtcp_port)
                return PortPair(rtp_port, rtcp_port)
            await asyncio.sleep(0)
        raise PortAllocationError(
            f"No free port pair in range {port_range.start}-{port_range.stop}"
        )
