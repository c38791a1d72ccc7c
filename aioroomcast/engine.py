"""
Interfaces of the media-routing engine.

The orchestrator never forwards RTP itself. It drives an external engine
(mediasoup-like: workers own routers, routers own transports, transports own
producers and consumers) through the structural types below. Any binding that
provides these methods can be plugged into the server.

Closing an engine object is synchronous and idempotent, all other operations
are awaitable.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any, Protocol

from aioroomcast.models.types import MediaKind


class Producer(Protocol):
    """An inbound media track published over a transport."""

    @property
    def id(self) -> str:
        """Unique identifier of the producer."""
        ...

    @property
    def kind(self) -> MediaKind:
        """Media kind of the track."""
        ...

    @property
    def closed(self) -> bool:
        """Whether the producer was closed."""
        ...

    def close(self) -> None:
        """Close the producer; consumers of it are closed by the engine."""
        ...

    def add_close_listener(self, callback: Callable[[], None]) -> Callable[[], None]:
        """
        Register a callback invoked once when the producer closes for any reason.

        Returns a function to remove the listener.
        """
        ...


class Consumer(Protocol):
    """An outbound subscription to one producer."""

    @property
    def id(self) -> str:
        """Unique identifier of the consumer."""
        ...

    @property
    def producer_id(self) -> str:
        """Id of the consumed producer."""
        ...

    @property
    def kind(self) -> MediaKind:
        """Media kind of the consumed track."""
        ...

    @property
    def rtp_parameters(self) -> dict[str, Any]:
        """Negotiated RTP parameters of the consumer."""
        ...

    @property
    def closed(self) -> bool:
        """Whether the consumer was closed."""
        ...

    async def request_key_frame(self) -> None:
        """
        Ask the producer side for a keyframe.

        Completing only means the request was accepted for forwarding, not that a
        keyframe was delivered.
        """
        ...

    def close(self) -> None:
        """Close the consumer."""
        ...


class Transport(Protocol):
    """Base interface shared by all transports."""

    @property
    def id(self) -> str:
        """Unique identifier of the transport."""
        ...

    @property
    def closed(self) -> bool:
        """Whether the transport was closed."""
        ...

    async def produce(self, *, kind: MediaKind, rtp_parameters: dict[str, Any]) -> Producer:
        """Create a producer receiving media over this transport."""
        ...

    async def consume(
        self,
        *,
        producer_id: str,
        rtp_capabilities: dict[str, Any],
        paused: bool = False,
    ) -> Consumer:
        """Create a consumer sending the media of a producer over this transport."""
        ...

    def close(self) -> None:
        """Close the transport including all its producers and consumers."""
        ...


class WebRtcTransport(Transport, Protocol):
    """Participant-facing transport negotiated over ICE/DTLS."""

    @property
    def ice_parameters(self) -> dict[str, Any]:
        """Local ICE parameters."""
        ...

    @property
    def ice_candidates(self) -> list[dict[str, Any]]:
        """Local ICE candidates."""
        ...

    @property
    def dtls_parameters(self) -> dict[str, Any]:
        """Local DTLS parameters."""
        ...

    async def connect(self, *, dtls_parameters: dict[str, Any]) -> None:
        """Provide the remote DTLS parameters; raises if the engine rejects them."""
        ...


class PlainTransport(Transport, Protocol):
    """Plain RTP transport used to feed the transcoder."""

    async def connect(self, *, ip: str, port: int, rtcp_port: int | None = None) -> None:
        """Send RTP to ``ip:port`` (and RTCP to ``rtcp_port`` when not multiplexed)."""
        ...


class Router(Protocol):
    """Routing context scoping all transports of one room."""

    @property
    def id(self) -> str:
        """Unique identifier of the router."""
        ...

    @property
    def rtp_capabilities(self) -> dict[str, Any]:
        """RTP capabilities of the router (``{"codecs": [...], ...}``)."""
        ...

    def can_consume(self, *, producer_id: str, rtp_capabilities: dict[str, Any]) -> bool:
        """Return True if a device with the given capabilities can decode the producer."""
        ...

    async def create_webrtc_transport(self, **options: Any) -> WebRtcTransport:
        """Create a participant-facing transport."""
        ...

    async def create_plain_transport(
        self, *, listen_ip: str, rtcp_mux: bool, comedia: bool
    ) -> PlainTransport:
        """Create an unconnected plain RTP transport."""
        ...

    def close(self) -> None:
        """Close the router and everything created on it."""
        ...


class Worker(Protocol):
    """A media engine worker process hosting routers."""

    @property
    def pid(self) -> int:
        """Process id of the worker."""
        ...

    async def create_router(self, *, media_codecs: list[dict[str, Any]]) -> Router:
        """Create a router supporting the given codecs."""
        ...

    def add_died_listener(
        self, callback: Callable[[BaseException | None], None]
    ) -> Callable[[], None]:
        """
        Register a callback invoked when the worker process dies unexpectedly.

        Returns a function to remove the listener.
        """
        ...
