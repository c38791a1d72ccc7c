from __future__ import annotations

import sys
from pathlib import Path

import pytest
from fakes import ROUTER_CAPABILITIES

from aioroomcast.config import TranscoderSettings
from aioroomcast.models.types import MediaKind
from aioroomcast.server.ports import PortPair
from aioroomcast.server.transcoder import (
    DEFAULT_AUDIO_CODEC,
    DEFAULT_VIDEO_CODEC,
    CodecInfo,
    EgressEndpoint,
    FfmpegLauncher,
    TranscodeJob,
    build_ffmpeg_args,
    build_sdp,
    resolve_codec,
)


def _job(tmp_path: Path, participant_count: int) -> TranscodeJob:
    return TranscodeJob(
        room_id="room-1",
        generation=3,
        sdp_path=tmp_path / "input-3.sdp",
        output_dir=tmp_path,
        participant_count=participant_count,
    )


def test_sdp_lists_every_endpoint() -> None:
    sdp = build_sdp(
        "room-1",
        "127.0.0.1",
        [
            EgressEndpoint(
                MediaKind.AUDIO, "127.0.0.1", PortPair(20000, 20001), DEFAULT_AUDIO_CODEC
            ),
            EgressEndpoint(
                MediaKind.VIDEO, "127.0.0.1", PortPair(30002, 30003), DEFAULT_VIDEO_CODEC
            ),
        ],
    )

    assert sdp == (
        "v=0\n"
        "o=- 0 0 IN IP4 127.0.0.1\n"
        "s=room-1\n"
        "c=IN IP4 127.0.0.1\n"
        "t=0 0\n"
        "m=audio 20000 RTP/AVP 100\n"
        "c=IN IP4 127.0.0.1\n"
        "a=rtpmap:100 opus/48000/2\n"
        "a=rtcp:20001\n"
        "a=recvonly\n"
        "m=video 30002 RTP/AVP 101\n"
        "c=IN IP4 127.0.0.1\n"
        "a=rtpmap:101 VP8/90000\n"
        "a=rtcp:30003\n"
        "a=recvonly\n"
    )


def test_resolve_codec_uses_router_payload_types() -> None:
    capabilities = {
        "codecs": [
            {
                "kind": "video",
                "mimeType": "video/rtx",
                "preferredPayloadType": 97,
                "clockRate": 90000,
            },
            {
                "kind": "video",
                "mimeType": "video/H264",
                "preferredPayloadType": 96,
                "clockRate": 90000,
            },
            {
                "kind": "audio",
                "mimeType": "audio/opus",
                "preferredPayloadType": 111,
                "clockRate": 48000,
                "channels": 2,
            },
        ]
    }

    assert resolve_codec(capabilities, MediaKind.VIDEO) == CodecInfo("H264", 96, 90000)
    assert resolve_codec(capabilities, MediaKind.AUDIO) == CodecInfo("opus", 111, 48000, 2)


def test_resolve_codec_falls_back_to_defaults() -> None:
    assert resolve_codec({}, MediaKind.AUDIO) == DEFAULT_AUDIO_CODEC
    assert resolve_codec({}, MediaKind.VIDEO) == DEFAULT_VIDEO_CODEC
    assert resolve_codec(ROUTER_CAPABILITIES, MediaKind.VIDEO) == DEFAULT_VIDEO_CODEC


def test_single_participant_is_mapped_directly(tmp_path: Path) -> None:
    args = build_ffmpeg_args(_job(tmp_path, 1), TranscoderSettings())

    assert args[args.index("-i") + 1] == str(tmp_path / "input-3.sdp")
    assert args[args.index("-protocol_whitelist") + 1] == "file,udp,rtp"
    assert args[args.index("-vf") + 1] == "fps=15,scale=320:240"
    assert "-filter_complex" not in args
    assert args[args.index("-hls_flags") + 1] == "delete_segments+append_list"
    assert args[args.index("-hls_segment_filename") + 1] == str(tmp_path / "g3_%05d.ts")
    assert args[-1] == str(tmp_path / "index.m3u8")


def test_several_participants_are_tiled_and_mixed(tmp_path: Path) -> None:
    args = build_ffmpeg_args(_job(tmp_path, 3), TranscoderSettings())

    graph = args[args.index("-filter_complex") + 1]
    assert "[0:v:2]fps=15,scale=320:240,setsar=1[v2]" in graph
    assert "[v0][v1][v2]xstack=inputs=3:layout=0_0|320_0|0_240:fill=black[vout]" in graph
    assert "[0:a:0][0:a:1][0:a:2]amix=inputs=3[aout]" in graph
    assert "-vf" not in args
    assert args.count("-map") == 2


@pytest.mark.asyncio
async def test_process_exit_is_observed(tmp_path: Path) -> None:
    # The interpreter does not understand the ffmpeg options and exits right away
    launcher = FfmpegLauncher(TranscoderSettings(ffmpeg_path=sys.executable))

    process = await launcher.start(_job(tmp_path, 1))
    returncode = await process.wait()

    assert isinstance(returncode, int)
    assert not process.running
    process.kill()
