from __future__ import annotations

import asyncio
import logging
import socket
from pathlib import Path
from typing import Any

import pytest
from fakes import FakeLauncher, FakeWorker
from zeroconf import InterfaceChoice, NonUniqueNameException
from zeroconf.asyncio import AsyncServiceInfo

from aioroomcast.config import RoomcastConfig
from aioroomcast.server import discovery
from aioroomcast.server.discovery import SERVICE_TYPE, MdnsAdvertiser
from aioroomcast.server.server import RoomcastServer


class _RecordingZeroconf:
    """Stands in for AsyncZeroconf, recording what is registered."""

    def __init__(self, **kwargs: Any) -> None:
        self.kwargs = kwargs
        self.registered: list[AsyncServiceInfo] = []
        self.unregistered: list[AsyncServiceInfo] = []
        self.closed = False
        self.name_taken = False

    async def async_register_service(self, info: AsyncServiceInfo) -> None:
        if self.name_taken:
            raise NonUniqueNameException
        self.registered.append(info)

    async def async_unregister_service(self, info: AsyncServiceInfo) -> None:
        self.unregistered.append(info)

    async def async_close(self) -> None:
        self.closed = True


@pytest.fixture
def responders(monkeypatch: pytest.MonkeyPatch) -> list[_RecordingZeroconf]:
    created: list[_RecordingZeroconf] = []

    def _create(**kwargs: Any) -> _RecordingZeroconf:
        zc = _RecordingZeroconf(**kwargs)
        created.append(zc)
        return zc

    monkeypatch.setattr(discovery, "AsyncZeroconf", _create)
    return created


@pytest.mark.asyncio
async def test_advertise_and_withdraw(responders: list[_RecordingZeroconf]) -> None:
    advertiser = MdnsAdvertiser("server-1", {"path": "/ws", "hls": "/hls", "name": "Living"})

    await advertiser.start(3000, addresses=["192.168.1.20"], interface="192.168.1.20")

    [zc] = responders
    assert zc.kwargs["interfaces"] == ["192.168.1.20"]
    [info] = zc.registered
    assert info is advertiser.service
    assert info.type == SERVICE_TYPE
    assert info.name == f"server-1.{SERVICE_TYPE}"
    assert info.server == "server-1.local."
    assert info.port == 3000
    assert info.parsed_addresses() == ["192.168.1.20"]
    assert info.properties == {b"path": b"/ws", b"hls": b"/hls", b"name": b"Living"}

    await advertiser.stop()

    assert zc.unregistered == [info]
    assert zc.closed
    assert advertiser.service is None

    # Stopping twice is harmless
    await advertiser.stop()
    assert len(zc.unregistered) == 1


@pytest.mark.asyncio
async def test_restart_replaces_the_record(responders: list[_RecordingZeroconf]) -> None:
    advertiser = MdnsAdvertiser("server-1", {"name": "Living"})

    await advertiser.start(3000, addresses=["10.0.0.2"])
    first = advertiser.service
    await advertiser.start(3001, addresses=["10.0.0.2"])

    [zc] = responders
    assert zc.kwargs["interfaces"] is InterfaceChoice.Default
    assert zc.unregistered == [first]
    assert advertiser.service is not None
    assert advertiser.service.port == 3001


@pytest.mark.asyncio
async def test_no_address_skips_advertising(
    responders: list[_RecordingZeroconf],
    monkeypatch: pytest.MonkeyPatch,
    caplog: pytest.LogCaptureFixture,
) -> None:
    monkeypatch.setattr(discovery, "get_local_ip", lambda: None)
    advertiser = MdnsAdvertiser("server-1", {})

    with caplog.at_level(logging.WARNING):
        await advertiser.start(3000)

    assert responders == []
    assert advertiser.service is None
    assert "mDNS advertising skipped" in caplog.text
    await advertiser.stop()


@pytest.mark.asyncio
async def test_detected_local_address_is_advertised(
    responders: list[_RecordingZeroconf], monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setattr(discovery, "get_local_ip", lambda: "172.16.0.9")
    advertiser = MdnsAdvertiser("server-1", {})

    await advertiser.start(3000)

    assert advertiser.service is not None
    assert advertiser.service.parsed_addresses() == ["172.16.0.9"]


@pytest.mark.asyncio
async def test_name_conflict_is_logged(
    monkeypatch: pytest.MonkeyPatch, caplog: pytest.LogCaptureFixture
) -> None:
    zc = _RecordingZeroconf()
    zc.name_taken = True
    monkeypatch.setattr(discovery, "AsyncZeroconf", lambda **_: zc)
    advertiser = MdnsAdvertiser("server-1", {})

    with caplog.at_level(logging.ERROR):
        await advertiser.start(3000, addresses=["10.0.0.2"])

    assert advertiser.service is None
    assert "identical name" in caplog.text

    await advertiser.stop()
    assert zc.unregistered == []
    assert zc.closed


@pytest.mark.asyncio
async def test_server_advertises_while_running(
    responders: list[_RecordingZeroconf], tmp_path: Path
) -> None:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        port = sock.getsockname()[1]
    server = RoomcastServer(
        asyncio.get_running_loop(),
        server_id="server-3",
        server_name="Kitchen",
        workers=[FakeWorker(pid=79)],
        config=RoomcastConfig(hls_root=str(tmp_path / "hls")),
        launcher=FakeLauncher([]),
        on_fatal=lambda: None,
    )

    await server.start_server(port=port, host="127.0.0.1", advertise_addresses=["127.0.0.1"])
    try:
        [zc] = responders
        [info] = zc.registered
        assert info.port == port
        assert info.properties == {
            b"path": RoomcastServer.API_PATH.encode(),
            b"hls": RoomcastServer.HLS_PATH.encode(),
            b"name": b"Kitchen",
        }
        assert server.advertiser.service is info
    finally:
        await server.close()

    assert zc.unregistered == [info]
    assert zc.closed
