"""Events emitted by the server."""

from __future__ import annotations

from dataclasses import dataclass


class RoomcastEvent:
    """Base event type used by RoomcastServer.add_event_listener()."""


class RoomEvent(RoomcastEvent):
    """Base event type for room lifecycle changes."""


@dataclass
class RoomCreatedEvent(RoomEvent):
    """A new room was created."""

    room_id: str


@dataclass
class RoomDestroyedEvent(RoomEvent):
    """The last participant left and the room was destroyed."""

    room_id: str


@dataclass
class SessionConnectedEvent(RoomcastEvent):
    """A signaling session connected."""

    session_id: str


@dataclass
class SessionDisconnectedEvent(RoomcastEvent):
    """A signaling session disconnected and was torn down."""

    session_id: str
