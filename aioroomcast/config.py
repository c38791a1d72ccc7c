"""Configuration of the room orchestrator."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from mashumaro.config import BaseConfig
from mashumaro.mixins.orjson import DataClassORJSONMixin

logger = logging.getLogger(__name__)


def _default_media_codecs() -> list[dict[str, Any]]:
    return [
        {"kind": "audio", "mimeType": "audio/opus", "clockRate": 48000, "channels": 2},
        {"kind": "video", "mimeType": "video/VP8", "clockRate": 90000},
    ]


@dataclass(frozen=True)
class PortRange(DataClassORJSONMixin):
    """Inclusive range of UDP ports."""

    start: int
    stop: int

    def __post_init__(self) -> None:
        """Validate field values."""
        if not 0 < self.start <= self.stop <= 65535:
            raise ValueError(f"invalid port range {self.start}-{self.stop}")

    def __contains__(self, port: object) -> bool:
        """Return True if the port lies within the range."""
        return isinstance(port, int) and self.start <= port <= self.stop

    def overlaps(self, other: PortRange) -> bool:
        """Return True if both ranges share at least one port."""
        return self.start <= other.stop and other.start <= self.stop


@dataclass
class WebRtcTransportSettings(DataClassORJSONMixin):
    """Options for participant-facing WebRTC transports."""

    listen_ip: str = "0.0.0.0"
    announced_ip: str | None = None
    """Public address announced in ICE candidates, if different from listen_ip."""
    enable_udp: bool = True
    enable_tcp: bool = True
    prefer_udp: bool = True

    class Config(BaseConfig):
        """Config for parsing json."""

        omit_none = True

    def to_options(self) -> dict[str, Any]:
        """Return the keyword arguments for Router.create_webrtc_transport()."""
        listen_ip: dict[str, Any] = {"ip": self.listen_ip}
        if self.announced_ip is not None:
            listen_ip["announced_ip"] = self.announced_ip
        return {
            "listen_ips": [listen_ip],
            "enable_udp": self.enable_udp,
            "enable_tcp": self.enable_tcp,
            "prefer_udp": self.prefer_udp,
        }


@dataclass
class TranscoderSettings(DataClassORJSONMixin):
    """Settings of the ffmpeg process producing the HLS output."""

    ffmpeg_path: str = "ffmpeg"
    frame_rate: int = 15
    tile_width: int = 320
    """Width of one participant's video in the output."""
    tile_height: int = 240
    """Height of one participant's video in the output."""
    video_preset: str = "slow"
    hls_time: int = 4
    """Target segment duration in seconds."""
    hls_list_size: int = 5
    hls_flags: str = "delete_segments+append_list"


@dataclass
class RoomcastConfig(DataClassORJSONMixin):
    """Top level configuration."""

    media_codecs: list[dict[str, Any]] = field(default_factory=_default_media_codecs)
    """Codecs every router is created with."""
    webrtc_transport: WebRtcTransportSettings = field(default_factory=WebRtcTransportSettings)
    egress_ip: str = "127.0.0.1"
    """Address the transcoder listens on for egress RTP."""
    audio_ports: PortRange = field(default_factory=lambda: PortRange(20000, 30000))
    video_ports: PortRange = field(default_factory=lambda: PortRange(30001, 40000))
    keyframe_attempts: int = 3
    """Keyframe requests issued on every new egress video consumer."""
    keyframe_interval: float = 0.5
    """Seconds between two keyframe requests."""
    hls_root: str = "hls"
    """Directory holding one output directory per room."""
    transcoder: TranscoderSettings = field(default_factory=TranscoderSettings)
    worker_died_exit_delay: float = 2.0
    """Seconds to wait before exiting the process after a media worker died."""
    unjoined_room_timeout: float = 30.0
    """Seconds a created room may stay without participants before it is destroyed."""

    def __post_init__(self) -> None:
        """Validate field values."""
        if self.audio_ports.overlaps(self.video_ports):
            raise ValueError("audio_ports and video_ports must not overlap")
        if self.keyframe_attempts < 0:
            raise ValueError(
                f"keyframe_attempts must not be negative, got {self.keyframe_attempts}"
            )
        if self.keyframe_interval < 0:
            raise ValueError(
                f"keyframe_interval must not be negative, got {self.keyframe_interval}"
            )
        if self.unjoined_room_timeout < 0:
            raise ValueError(
                f"unjoined_room_timeout must not be negative, got {self.unjoined_room_timeout}"
            )

    @property
    def hls_root_path(self) -> Path:
        """Output root as an absolute path."""
        return Path(self.hls_root).resolve()


def load_config(path: str | Path) -> RoomcastConfig:
    """Load the configuration from a JSON file, missing keys fall back to defaults."""
    config = RoomcastConfig.from_json(Path(path).read_bytes())
    logger.debug("Loaded configuration from %s", path)
    return config
