"""Signaling orchestrator for media rooms with HLS republishing."""

from .config import RoomcastConfig, load_config
from .errors import RebuildFailed, RoomcastError

__all__ = [
    "RebuildFailed",
    "RoomcastConfig",
    "RoomcastError",
    "load_config",
]
