"""Models for the room signaling protocol."""

from __future__ import annotations

__all__ = [
    "ClientMessage",
    "ErrorCode",
    "MediaKind",
    "ServerMessage",
    "TransportKind",
    "core",
    "types",
]

from . import core, types
from .types import ClientMessage, ErrorCode, MediaKind, ServerMessage, TransportKind
