"""Public interface for the Roomcast server package."""

from .events import (
    RoomCreatedEvent,
    RoomcastEvent,
    RoomDestroyedEvent,
    RoomEvent,
    SessionConnectedEvent,
    SessionDisconnectedEvent,
)
from .hls import HlsPipelineOrchestrator
from .room import Room, RoomRegistry, Session, WorkerPool
from .scheduler import RebuildScheduler, RebuildState
from .server import RoomcastServer
from .transcoder import FfmpegLauncher, TranscoderLauncher
from .transport import TransportLifecycleManager

__all__ = [
    "FfmpegLauncher",
    "HlsPipelineOrchestrator",
    "RebuildScheduler",
    "RebuildState",
    "Room",
    "RoomCreatedEvent",
    "RoomDestroyedEvent",
    "RoomEvent",
    "RoomRegistry",
    "RoomcastEvent",
    "RoomcastServer",
    "Session",
    "SessionConnectedEvent",
    "SessionDisconnectedEvent",
    "TranscoderLauncher",
    "TransportLifecycleManager",
    "WorkerPool",
]
