"""Participant-facing transports, producers and consumers of sessions."""

from __future__ import annotations

import logging
from functools import partial
from typing import Any

from aioroomcast.engine import Consumer, Producer, WebRtcTransport
from aioroomcast.errors import (
    ConnectFailed,
    IncompatibleCapabilities,
    ProducerCreateFailed,
    ProducerNotFound,
    RoomNotFound,
    TransportNotFound,
)
from aioroomcast.models.core import (
    NewProducerMessage,
    ProducerInfo,
    ProducerListPayload,
    RoomProducersChangedMessage,
)
from aioroomcast.models.types import MediaKind, TransportKind
from aioroomcast.util import release

from .room import Room, RoomRegistry, Session

logger = logging.getLogger(__name__)


class TransportLifecycleManager:
    """
    Keeps the transports, producers and consumers of sessions consistent.

    Every change of a room's producer set is broadcast to the room and
    triggers an HLS rebuild.
    """

    def __init__(self, registry: RoomRegistry, webrtc_options: dict[str, Any]) -> None:
        """
        Initialize the manager.

        Args:
            registry: Registry the rooms of sessions are looked up in.
            webrtc_options: Keyword arguments for Router.create_webrtc_transport().
        """
        self._registry = registry
        self._webrtc_options = webrtc_options

    def _room(self, session: Session) -> Room:
        if session.room_id is None:
            raise RoomNotFound(f"Session {session.session_id} has not joined a room")
        return self._registry.get_room(session.room_id)

    def _transport(self, room: Room, session: Session, kind: TransportKind) -> WebRtcTransport:
        transport = room.transports.get((session.session_id, kind))
        if transport is None or transport.closed:
            raise TransportNotFound(f"No {kind.value} transport created for this session")
        return transport

    async def create_transport(self, session: Session, kind: TransportKind) -> WebRtcTransport:
        """Return the transport of a session for a kind, creating it on first use."""
        room = self._room(session)
        key = (session.session_id, kind)
        existing = room.transports.get(key)
        if existing is not None and not existing.closed:
            return existing

        transport = await room.router.create_webrtc_transport(**self._webrtc_options)
        if room.closed:
            release(f"transport {transport.id}", transport.close, logger)
            raise RoomNotFound(f"Room {room.room_id} was destroyed")
        existing = room.transports.get(key)
        if existing is not None and not existing.closed:
            # A concurrent request of the same session won
            release(f"transport {transport.id}", transport.close, logger)
            return existing
        room.transports[key] = transport
        logger.debug(
            "Created %s transport %s for session %s", kind.value, transport.id, session.session_id
        )
        return transport

    async def connect_transport(
        self, session: Session, kind: TransportKind, dtls_parameters: dict[str, Any]
    ) -> None:
        """Connect a transport of a session with the remote DTLS parameters."""
        room = self._room(session)
        transport = self._transport(room, session, kind)
        try:
            await transport.connect(dtls_parameters=dtls_parameters)
        except Exception as err:
            raise ConnectFailed(f"Connecting {kind.value} transport failed: {err}") from err

    async def produce(
        self, session: Session, kind: MediaKind, rtp_parameters: dict[str, Any]
    ) -> Producer:
        """
        Publish a track of a session.

        An open producer of the same kind is closed before the new one is
        registered, so a session never has two tracks of one kind.
        """
        room = self._room(session)
        transport = self._transport(room, session, TransportKind.PRODUCER)
        session_id = session.session_id

        previous = self._remove_producer(room, session_id, kind)
        if previous is not None:
            logger.info(
                "Session %s replaces its %s producer %s", session_id, kind.value, previous.id
            )
            release(f"producer {previous.id}", previous.close, logger)

        try:
            producer = await transport.produce(kind=kind, rtp_parameters=rtp_parameters)
        except Exception as err:
            if previous is not None:
                self._producers_changed(room)
            raise ProducerCreateFailed(f"Creating {kind.value} producer failed: {err}") from err

        if room.closed:
            release(f"producer {producer.id}", producer.close, logger)
            raise RoomNotFound(f"Room {room.room_id} was destroyed")

        room.producers.setdefault(session_id, {})[kind] = producer
        producer.add_close_listener(partial(self._on_producer_closed, room, session_id, producer))
        logger.info("Session %s produces %s (producer %s)", session_id, kind.value, producer.id)

        info = ProducerInfo(user_id=session_id, producer_id=producer.id, kind=kind)
        room.broadcast(NewProducerMessage(payload=info), exclude=session_id)
        self._producers_changed(room)
        return producer

    def stop_producing(self, session: Session, kind: MediaKind | None = None) -> None:
        """Close the producer of the given kind, or every producer of the session."""
        room = self._room(session)
        kinds = [kind] if kind is not None else list(MediaKind)
        stopped = [
            producer
            for media_kind in kinds
            if (producer := self._remove_producer(room, session.session_id, media_kind))
            is not None
        ]
        for producer in stopped:
            release(f"producer {producer.id}", producer.close, logger)
        if stopped:
            logger.info("Session %s stopped %d producer(s)", session.session_id, len(stopped))
            self._producers_changed(room)

    def list_producers(self, session: Session) -> list[ProducerInfo]:
        """List all open producers of the session's room."""
        return self._room(session).producer_infos()

    def get_router_rtp_capabilities(self, session: Session) -> dict[str, Any]:
        """Return the RTP capabilities of the session's room router."""
        return self._room(session).router.rtp_capabilities

    async def consume(
        self, session: Session, producer_id: str, rtp_capabilities: dict[str, Any]
    ) -> Consumer:
        """Subscribe a session to a producer of its room."""
        room = self._room(session)
        if room.find_producer(producer_id) is None:
            raise ProducerNotFound(f"Producer {producer_id} not found in room {room.room_id}")
        if not room.router.can_consume(producer_id=producer_id, rtp_capabilities=rtp_capabilities):
            raise IncompatibleCapabilities(f"Cannot consume producer {producer_id}")
        transport = self._transport(room, session, TransportKind.CONSUMER)

        consumer = await transport.consume(
            producer_id=producer_id, rtp_capabilities=rtp_capabilities, paused=False
        )
        if room.closed:
            release(f"consumer {consumer.id}", consumer.close, logger)
            raise RoomNotFound(f"Room {room.room_id} was destroyed")
        # Consumers closed by the engine along with their producer are dropped here
        kept = [c for c in room.consumers.get(session.session_id, []) if not c.closed]
        room.consumers[session.session_id] = [*kept, consumer]
        logger.debug(
            "Session %s consumes producer %s (consumer %s)",
            session.session_id,
            producer_id,
            consumer.id,
        )
        return consumer

    async def teardown_session(self, session: Session) -> None:
        """
        Release everything a session owns and remove it from its room.

        Safe to call more than once.
        """
        if session.room_id is None:
            return
        try:
            room = self._registry.get_room(session.room_id)
        except RoomNotFound:
            session.room_id = None
            return
        session_id = session.session_id

        for consumer in room.consumers.pop(session_id, []):
            release(f"consumer {consumer.id}", consumer.close, logger)
        producers = room.producers.pop(session_id, {})
        for producer in producers.values():
            release(f"producer {producer.id}", producer.close, logger)
        for kind in TransportKind:
            transport = room.transports.pop((session_id, kind), None)
            if transport is not None:
                release(f"{kind.value} transport {transport.id}", transport.close, logger)

        if producers:
            room.broadcast(
                RoomProducersChangedMessage(payload=ProducerListPayload(room.producer_infos())),
                exclude=session_id,
            )
        room.scheduler.trigger()
        logger.info("Session %s torn down", session_id)

        await self._registry.leave_room(session)

    def _remove_producer(self, room: Room, session_id: str, kind: MediaKind) -> Producer | None:
        """Unregister the producer of a session for a kind and return it."""
        kinds = room.producers.get(session_id)
        if kinds is None:
            return None
        producer = kinds.pop(kind, None)
        if not kinds:
            del room.producers[session_id]
        return producer

    def _producers_changed(self, room: Room) -> None:
        payload = ProducerListPayload(room.producer_infos())
        room.broadcast(RoomProducersChangedMessage(payload=payload))
        room.scheduler.trigger()

    def _on_producer_closed(self, room: Room, session_id: str, producer: Producer) -> None:
        """Handle a producer closed by the engine, e.g. because its transport went away."""
        if room.closed or room.producers.get(session_id, {}).get(producer.kind) is not producer:
            return
        self._remove_producer(room, session_id, producer.kind)
        logger.info("Producer %s of session %s closed", producer.id, session_id)
        self._producers_changed(room)
