from __future__ import annotations

import random
from pathlib import Path

import pytest
from fakes import FakeLauncher, FakeProbe, FakeWorker

from aioroomcast.config import PortRange, RoomcastConfig
from aioroomcast.server.events import RoomEvent
from aioroomcast.server.hls import HlsPipelineOrchestrator
from aioroomcast.server.ports import PortAllocator
from aioroomcast.server.room import RoomRegistry, WorkerPool
from aioroomcast.server.transport import TransportLifecycleManager


@pytest.fixture
def journal() -> list[str]:
    return []


@pytest.fixture
def config(tmp_path: Path) -> RoomcastConfig:
    return RoomcastConfig(
        hls_root=str(tmp_path / "hls"),
        audio_ports=PortRange(20000, 20099),
        video_ports=PortRange(30000, 30099),
        keyframe_interval=0,
    )


@pytest.fixture
def worker(journal: list[str]) -> FakeWorker:
    return FakeWorker(pid=4242, journal=journal)


@pytest.fixture
def launcher(journal: list[str]) -> FakeLauncher:
    return FakeLauncher(journal)


@pytest.fixture
def probe() -> FakeProbe:
    return FakeProbe()


@pytest.fixture
def orchestrator(
    config: RoomcastConfig, launcher: FakeLauncher, probe: FakeProbe
) -> HlsPipelineOrchestrator:
    allocator = PortAllocator(config.egress_ip, probe=probe, rng=random.Random(7))
    return HlsPipelineOrchestrator(config, port_allocator=allocator, launcher=launcher)


@pytest.fixture
def fatal_calls() -> list[None]:
    return []


@pytest.fixture
def room_events() -> list[RoomEvent]:
    return []


@pytest.fixture
def registry(
    config: RoomcastConfig,
    worker: FakeWorker,
    orchestrator: HlsPipelineOrchestrator,
    fatal_calls: list[None],
    room_events: list[RoomEvent],
) -> RoomRegistry:
    pool = WorkerPool([worker], exit_delay=0.01, on_fatal=lambda: fatal_calls.append(None))
    return RoomRegistry(pool, orchestrator, config.media_codecs, signal_event=room_events.append)


@pytest.fixture
def manager(registry: RoomRegistry, config: RoomcastConfig) -> TransportLifecycleManager:
    return TransportLifecycleManager(registry, config.webrtc_transport.to_options())
