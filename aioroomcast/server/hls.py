"""HLS republishing of a room: the pipeline rebuild protocol."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from functools import partial
from pathlib import Path

from aioroomcast.config import RoomcastConfig
from aioroomcast.engine import Consumer, PlainTransport
from aioroomcast.errors import RebuildFailed
from aioroomcast.models.types import MediaKind
from aioroomcast.util import release

from .keyframe import retry_keyframe
from .ports import PortAllocator, PortPair
from .room import EgressPair, HlsState, Room, compute_fingerprint
from .transcoder import (
    EgressEndpoint,
    FfmpegLauncher,
    TranscodeJob,
    TranscoderHandle,
    TranscoderLauncher,
    build_sdp,
    resolve_codec,
)

logger = logging.getLogger(__name__)


@dataclass
class _Attempt:
    """Resources created by one rebuild attempt, released if it fails."""

    transports: list[PlainTransport] = field(default_factory=list)
    consumers: list[Consumer] = field(default_factory=list)
    process: TranscoderHandle | None = None
    sdp_path: Path | None = None

    def release(self, log: logging.Logger) -> None:
        if self.process is not None:
            release(f"transcoder pid={self.process.pid}", self.process.kill, log)
        for consumer in self.consumers:
            release(f"egress consumer {consumer.id}", consumer.close, log)
        for transport in self.transports:
            release(f"egress transport {transport.id}", transport.close, log)
        if self.sdp_path is not None:
            unlink = partial(self.sdp_path.unlink, missing_ok=True)
            release(str(self.sdp_path), unlink, log)


class HlsPipelineOrchestrator:
    """Rebuilds the transcoding pipeline of a room from its current producers."""

    def __init__(
        self,
        config: RoomcastConfig,
        *,
        port_allocator: PortAllocator | None = None,
        launcher: TranscoderLauncher | None = None,
    ) -> None:
        """
        Initialize the orchestrator.

        Args:
            config: Server configuration.
            port_allocator: Allocator for the egress ports, probes on the egress address by default.
            launcher: Starts transcoder processes, ffmpeg by default.
        """
        self._config = config
        self._ports = port_allocator or PortAllocator(config.egress_ip)
        self._launcher: TranscoderLauncher = launcher or FfmpegLauncher(config.transcoder)

    def output_dir(self, room_id: str) -> Path:
        """Directory the HLS output of a room is written to."""
        return self._config.hls_root_path / room_id

    async def rebuild(self, room: Room) -> None:
        """
        Bring the pipeline of a room in line with its current producers.

        Must only be called through the room's RebuildScheduler.

        Raises:
            RebuildFailed: If any step failed. Everything this call created was
                released and the prior fingerprint stays in place.
        """
        log = logger.getChild(room.room_id)
        candidates = room.candidates()

        if not candidates:
            if room.hls is not None:
                self.teardown(room)
                log.info("No participant publishes audio and video, HLS pipeline stopped")
            return

        fingerprint = compute_fingerprint(candidates)
        if room.hls is not None and room.hls.live and room.hls.fingerprint == fingerprint:
            log.debug("Producer set unchanged, keeping HLS generation %d", room.hls.generation)
            return

        output_dir = self.output_dir(room.room_id)
        if room.hls is not None:
            self._release_pipeline(room.hls, log)

        generation = room.next_generation()
        log.info(
            "Rebuilding HLS pipeline (generation %d) for %d participant(s)",
            generation,
            len(candidates),
        )
        config = self._config
        attempt = _Attempt()
        try:
            audio_ports: list[PortPair] = []
            video_ports: list[PortPair] = []
            allocated: set[int] = set()
            for _ in candidates:
                audio = await self._ports.allocate(config.audio_ports, allocated)
                allocated.update(audio)
                video = await self._ports.allocate(config.video_ports, allocated)
                allocated.update(video)
                audio_ports.append(audio)
                video_ports.append(video)

            audio_transports: list[PlainTransport] = []
            video_transports: list[PlainTransport] = []
            for _ in candidates:
                for transports in (audio_transports, video_transports):
                    transport = await room.router.create_plain_transport(
                        listen_ip=config.egress_ip, rtcp_mux=False, comedia=False
                    )
                    attempt.transports.append(transport)
                    transports.append(transport)

            capabilities = room.router.rtp_capabilities
            audio_codec = resolve_codec(capabilities, MediaKind.AUDIO)
            video_codec = resolve_codec(capabilities, MediaKind.VIDEO)
            endpoints: list[EgressEndpoint] = []
            for audio, video in zip(audio_ports, video_ports, strict=True):
                endpoints.append(
                    EgressEndpoint(MediaKind.AUDIO, config.egress_ip, audio, audio_codec)
                )
                endpoints.append(
                    EgressEndpoint(MediaKind.VIDEO, config.egress_ip, video, video_codec)
                )
            output_dir.mkdir(parents=True, exist_ok=True)
            sdp_path = output_dir / f"input-{generation}.sdp"
            attempt.sdp_path = sdp_path
            sdp_path.write_text(build_sdp(f"room-{room.room_id}", config.egress_ip, endpoints))

            job = TranscodeJob(
                room_id=room.room_id,
                generation=generation,
                sdp_path=sdp_path,
                output_dir=output_dir,
                participant_count=len(candidates),
            )
            attempt.process = await self._launcher.start(job)

            for transport, ports in zip(
                audio_transports + video_transports, audio_ports + video_ports, strict=True
            ):
                await transport.connect(ip=config.egress_ip, port=ports.rtp, rtcp_port=ports.rtcp)

            egress: list[EgressPair] = []
            for index, candidate in enumerate(candidates):
                audio_consumer = await audio_transports[index].consume(
                    producer_id=candidate.audio.id, rtp_capabilities=capabilities
                )
                attempt.consumers.append(audio_consumer)
                video_consumer = await video_transports[index].consume(
                    producer_id=candidate.video.id, rtp_capabilities=capabilities
                )
                attempt.consumers.append(video_consumer)
                egress.append(
                    EgressPair(
                        session_id=candidate.session_id,
                        audio_transport=audio_transports[index],
                        video_transport=video_transports[index],
                        audio_ports=audio_ports[index],
                        video_ports=video_ports[index],
                        audio_consumer=audio_consumer,
                        video_consumer=video_consumer,
                    )
                )
            await asyncio.gather(
                *(
                    retry_keyframe(
                        pair.video_consumer, config.keyframe_attempts, config.keyframe_interval
                    )
                    for pair in egress
                )
            )
        except (RebuildFailed, asyncio.CancelledError):
            attempt.release(log)
            raise
        except Exception as err:
            attempt.release(log)
            raise RebuildFailed(f"Generation {generation} of room {room.room_id}: {err}") from err

        room.hls = HlsState(
            output_dir=output_dir,
            fingerprint=fingerprint,
            generation=generation,
            egress=egress,
            process=attempt.process,
            sdp_path=sdp_path,
        )
        log.info(
            "HLS pipeline generation %d live at %s (ffmpeg pid=%s)",
            generation,
            job.playlist_path,
            attempt.process.pid,
        )

    def teardown(self, room: Room) -> None:
        """Tear down the pipeline of a room and forget its state, including the fingerprint."""
        if room.hls is None:
            return
        self._release_pipeline(room.hls, logger.getChild(room.room_id))
        room.hls = None

    def _release_pipeline(self, hls: HlsState, log: logging.Logger) -> None:
        """
        Release the resources of a pipeline in place.

        The process goes first so the ports it listens on are free before the
        transports feeding them are closed. Fingerprint and generation are kept.
        """
        if hls.process is not None:
            release(f"transcoder pid={hls.process.pid}", hls.process.kill, log)
            hls.process = None
        for pair in hls.egress:
            release(f"egress consumer {pair.audio_consumer.id}", pair.audio_consumer.close, log)
            release(f"egress consumer {pair.video_consumer.id}", pair.video_consumer.close, log)
        for pair in hls.egress:
            release(f"egress transport {pair.audio_transport.id}", pair.audio_transport.close, log)
            release(f"egress transport {pair.video_transport.id}", pair.video_transport.close, log)
        hls.egress = []
        if hls.sdp_path is not None:
            release(str(hls.sdp_path), partial(hls.sdp_path.unlink, missing_ok=True), log)
            hls.sdp_path = None
        log.debug("Released HLS pipeline generation %d", hls.generation)
