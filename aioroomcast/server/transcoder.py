"""Session descriptions and the ffmpeg process producing the HLS output."""

from __future__ import annotations

import asyncio
import logging
import math
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

from aioroomcast.config import TranscoderSettings
from aioroomcast.models.types import MediaKind

from .ports import PortPair

logger = logging.getLogger(__name__)

PLAYLIST_NAME = "index.m3u8"


@dataclass(frozen=True)
class CodecInfo:
    """Codec of one egress stream as it appears in the session description."""

    name: str
    """Encoding name, e.g. ``opus`` or ``VP8``."""
    payload_type: int
    clock_rate: int
    channels: int | None = None


DEFAULT_AUDIO_CODEC = CodecInfo(name="opus", payload_type=100, clock_rate=48000, channels=2)
DEFAULT_VIDEO_CODEC = CodecInfo(name="VP8", payload_type=101, clock_rate=90000)


def resolve_codec(rtp_capabilities: dict[str, Any], kind: MediaKind) -> CodecInfo:
    """
    Pick the codec egress consumers of ``kind`` will be created with.

    Consumers created with the router's own capabilities use the router's
    preferred payload types, so the first non-RTX codec of the kind is used.
    Falls back to opus/VP8 when the router does not report one.
    """
    for codec in rtp_capabilities.get("codecs", []):
        mime_type: str = codec.get("mimeType", "")
        if codec.get("kind") != kind.value or mime_type.lower().endswith("/rtx"):
            continue
        payload_type = codec.get("preferredPayloadType")
        clock_rate = codec.get("clockRate")
        if payload_type is None or clock_rate is None:
            continue
        return CodecInfo(
            name=mime_type.split("/", 1)[-1],
            payload_type=payload_type,
            clock_rate=clock_rate,
            channels=codec.get("channels") if kind is MediaKind.AUDIO else None,
        )
    return DEFAULT_AUDIO_CODEC if kind is MediaKind.AUDIO else DEFAULT_VIDEO_CODEC


@dataclass(frozen=True)
class EgressEndpoint:
    """Address the transcoder listens on for one egress stream."""

    kind: MediaKind
    address: str
    ports: PortPair
    codec: CodecInfo


def build_sdp(session_name: str, address: str, endpoints: Sequence[EgressEndpoint]) -> str:
    """
    Build the SDP describing every egress endpoint, in the given order.

    The output only depends on the arguments.
    """
    lines = [
        "v=0",
        f"o=- 0 0 IN IP4 {address}",
        f"s={session_name}",
        f"c=IN IP4 {address}",
        "t=0 0",
    ]
    for endpoint in endpoints:
        codec = endpoint.codec
        rtpmap = f"{codec.name}/{codec.clock_rate}"
        if codec.channels is not None:
            rtpmap += f"/{codec.channels}"
        lines.extend(
            [
                f"m={endpoint.kind.value} {endpoint.ports.rtp} RTP/AVP {codec.payload_type}",
                f"c=IN IP4 {endpoint.address}",
                f"a=rtpmap:{codec.payload_type} {rtpmap}",
                f"a=rtcp:{endpoint.ports.rtcp}",
                "a=recvonly",
            ]
        )
    return "\n".join(lines) + "\n"


@dataclass(frozen=True)
class TranscodeJob:
    """Everything needed to start one transcoder generation for a room."""

    room_id: str
    generation: int
    sdp_path: Path
    output_dir: Path
    participant_count: int

    @property
    def playlist_path(self) -> Path:
        """Location of the HLS playlist."""
        return self.output_dir / PLAYLIST_NAME


def _grid_layout(count: int, width: int, height: int) -> str:
    """Return an xstack layout tiling ``count`` inputs in a square-ish grid."""
    columns = math.ceil(math.sqrt(count))
    positions = []
    for index in range(count):
        column, row = index % columns, index // columns
        positions.append(f"{column * width}_{row * height}")
    return "|".join(positions)


def build_ffmpeg_args(job: TranscodeJob, settings: TranscoderSettings) -> list[str]:
    """Build the ffmpeg command line (without the executable) for a job."""
    scale = f"fps={settings.frame_rate},scale={settings.tile_width}:{settings.tile_height}"
    args = ["-hide_banner", "-protocol_whitelist", "file,udp,rtp", "-i", str(job.sdp_path)]

    count = job.participant_count
    if count <= 1:
        args += ["-vf", scale]
    else:
        filters = [f"[0:v:{i}]{scale},setsar=1[v{i}]" for i in range(count)]
        video_inputs = "".join(f"[v{i}]" for i in range(count))
        layout = _grid_layout(count, settings.tile_width, settings.tile_height)
        filters.append(f"{video_inputs}xstack=inputs={count}:layout={layout}:fill=black[vout]")
        audio_inputs = "".join(f"[0:a:{i}]" for i in range(count))
        filters.append(f"{audio_inputs}amix=inputs={count}[aout]")
        args += ["-filter_complex", ";".join(filters), "-map", "[vout]", "-map", "[aout]"]

    args += [
        "-c:v", "libx264",
        "-preset", settings.video_preset,
        "-tune", "zerolatency",
        "-c:a", "aac",
        "-f", "hls",
        "-hls_time", str(settings.hls_time),
        "-hls_list_size", str(settings.hls_list_size),
        "-hls_flags", settings.hls_flags,
        # Segment names carry the generation so a restart never overwrites
        # segments still referenced by the playlist.
        "-hls_segment_filename", str(job.output_dir / f"g{job.generation}_%05d.ts"),
        str(job.playlist_path),
    ]  # fmt: skip
    return args


class TranscoderHandle(Protocol):
    """A running transcoder generation."""

    @property
    def pid(self) -> int | None:
        """Process id, if known."""
        ...

    @property
    def running(self) -> bool:
        """Whether the process has not exited yet."""
        ...

    def kill(self) -> None:
        """Request termination without waiting for the exit."""
        ...


class TranscoderLauncher(Protocol):
    """Starts transcoder processes."""

    async def start(self, job: TranscodeJob) -> TranscoderHandle:
        """Spawn the transcoder for a job."""
        ...


class TranscoderProcess:
    """An ffmpeg child process whose exit is observed in the background."""

    _process: asyncio.subprocess.Process
    _exit_task: asyncio.Task[int]

    def __init__(self, process: asyncio.subprocess.Process, job: TranscodeJob) -> None:
        """Wrap a freshly spawned process."""
        self._process = process
        self._logger = logger.getChild(job.room_id)
        self._generation = job.generation
        self._exit_task = asyncio.get_running_loop().create_task(self._observe_exit())

    @property
    def pid(self) -> int | None:
        """Process id of ffmpeg."""
        return self._process.pid

    @property
    def running(self) -> bool:
        """Whether ffmpeg has not exited yet."""
        return self._process.returncode is None

    def kill(self) -> None:
        """
        Send SIGKILL without awaiting the exit.

        The exit is picked up by the background observer, callers continue
        immediately.
        """
        if self._process.returncode is None:
            self._logger.debug("Killing ffmpeg pid=%s", self._process.pid)
            self._process.kill()

    async def wait(self) -> int:
        """Wait for the process to exit and return its exit code."""
        return await asyncio.shield(self._exit_task)

    async def _observe_exit(self) -> int:
        """Forward ffmpeg's stderr to the debug log and log the exit."""
        stderr = self._process.stderr
        if stderr is not None:
            async for line in stderr:
                self._logger.debug("[ffmpeg] %s", line.decode(errors="replace").rstrip())
        returncode = await self._process.wait()
        self._logger.info(
            "ffmpeg generation %d (pid=%s) exited with code %s",
            self._generation,
            self._process.pid,
            returncode,
        )
        return returncode


class FfmpegLauncher:
    """Launches ffmpeg reading the egress RTP streams and writing HLS."""

    def __init__(self, settings: TranscoderSettings) -> None:
        """Initialize the launcher with the transcoder settings."""
        self._settings = settings

    async def start(self, job: TranscodeJob) -> TranscoderProcess:
        """Spawn ffmpeg for a job; raises OSError if the executable cannot be started."""
        args = build_ffmpeg_args(job, self._settings)
        process = await asyncio.create_subprocess_exec(
            self._settings.ffmpeg_path,
            *args,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.PIPE,
        )
        logger.info(
            "Started ffmpeg pid=%s for room %s (generation %d, %d participant(s))",
            process.pid,
            job.room_id,
            job.generation,
            job.participant_count,
        )
        return TranscoderProcess(process, job)
