"""Errors raised by the room orchestrator."""

from __future__ import annotations

from aioroomcast.models.types import ErrorCode


class RoomcastError(Exception):
    """Base class for errors that are reported back to the requesting session."""

    code: ErrorCode = ErrorCode.INTERNAL_ERROR


class RoomNotFound(RoomcastError):
    """The referenced room does not exist (anymore)."""

    code = ErrorCode.ROOM_NOT_FOUND


class TransportNotFound(RoomcastError):
    """The session has not created the requested transport."""

    code = ErrorCode.TRANSPORT_NOT_FOUND


class ProducerNotFound(RoomcastError):
    """No participant of the room publishes the requested producer."""

    code = ErrorCode.PRODUCER_NOT_FOUND


class ProducerCreateFailed(RoomcastError):
    """The media engine refused to create the producer."""

    code = ErrorCode.PRODUCER_CREATE_FAILED


class ConnectFailed(RoomcastError):
    """The media engine rejected the transport connect parameters."""

    code = ErrorCode.CONNECT_FAILED


class IncompatibleCapabilities(RoomcastError):
    """The subscriber cannot decode the format of the producer."""

    code = ErrorCode.INCOMPATIBLE_CAPABILITIES


class RebuildFailed(Exception):
    """
    An HLS pipeline rebuild did not complete.

    Internal only: logged by the rebuild scheduler, never sent to sessions.
    """


class PortAllocationError(RebuildFailed):
    """No free even/odd port pair is left in the configured range."""
