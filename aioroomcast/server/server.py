"""Roomcast Server implementation accepting signaling sessions and serving HLS output."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Sequence
from contextlib import suppress

from aiohttp import web

from aioroomcast.config import RoomcastConfig
from aioroomcast.engine import Worker
from .client import SignalingClient
from .discovery import MdnsAdvertiser
from .events import RoomcastEvent, SessionConnectedEvent, SessionDisconnectedEvent
from .hls import HlsPipelineOrchestrator
from .ports import PortAllocator
from .room import RoomRegistry, WorkerPool
from .transcoder import TranscoderLauncher
from .transport import TransportLifecycleManager

logger = logging.getLogger(__name__)


class RoomcastServer:
    """Signaling server for media rooms that republishes every room as HLS."""

    API_PATH = "/ws"
    HLS_PATH = "/hls"

    _sessions: set[SignalingClient]
    """All sessions with an established WebSocket."""
    _loop: asyncio.AbstractEventLoop
    _event_cbs: list[Callable[[RoomcastServer, RoomcastEvent], None]]
    _id: str
    _name: str
    _config: RoomcastConfig
    _registry: RoomRegistry
    _transports: TransportLifecycleManager
    _orchestrator: HlsPipelineOrchestrator
    _app: web.Application | None
    """Web application handling signaling sessions and the HLS route."""
    _app_runner: web.AppRunner | None
    """App runner for the web application."""
    _tcp_site: web.TCPSite | None
    """TCP site for the web application."""
    _advertiser: MdnsAdvertiser
    """Publishes the _roomcast._tcp record while the server runs."""

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop,
        server_id: str,
        server_name: str,
        workers: Sequence[Worker],
        config: RoomcastConfig | None = None,
        *,
        launcher: TranscoderLauncher | None = None,
        port_allocator: PortAllocator | None = None,
        on_fatal: Callable[[], None] | None = None,
    ) -> None:
        """
        Initialize a new Roomcast Server.

        Args:
            loop: Event loop sessions and rebuilds run on.
            server_id: Identifier of this server, used for mDNS.
            server_name: Name advertised via mDNS.
            workers: Media engine workers rooms are spread over.
            config: Server configuration, defaults are used if None.
            launcher: Starts the transcoder, ffmpeg if None.
            port_allocator: Allocates transcoder ports, probes the egress address if None.
            on_fatal: Called after a media worker died, exits the process if None.
        """
        self._sessions = set()
        self._loop = loop
        self._event_cbs = []
        self._id = server_id
        self._name = server_name
        self._config = config or RoomcastConfig()
        if on_fatal is None:
            pool = WorkerPool(workers, exit_delay=self._config.worker_died_exit_delay)
        else:
            pool = WorkerPool(
                workers, exit_delay=self._config.worker_died_exit_delay, on_fatal=on_fatal
            )
        self._orchestrator = HlsPipelineOrchestrator(
            self._config, port_allocator=port_allocator, launcher=launcher
        )
        self._registry = RoomRegistry(
            pool,
            self._orchestrator,
            self._config.media_codecs,
            signal_event=self._signal_event,
            unjoined_room_timeout=self._config.unjoined_room_timeout,
        )
        self._transports = TransportLifecycleManager(
            self._registry, self._config.webrtc_transport.to_options()
        )
        self._app = None
        self._app_runner = None
        self._tcp_site = None
        self._advertiser = MdnsAdvertiser(
            server_id, {"path": self.API_PATH, "hls": self.HLS_PATH, "name": server_name}
        )
        logger.debug("RoomcastServer initialized: id=%s, name=%s", server_id, server_name)

    def _create_web_application(self) -> web.Application:
        """
        Create the web application serving signaling and HLS output.

        Returns:
            Application with the WebSocket route and the static HLS route.
        """
        hls_root = self._config.hls_root_path
        hls_root.mkdir(parents=True, exist_ok=True)
        app = web.Application()
        app.router.add_get(self.API_PATH, self.on_client_connect)
        app.router.add_static(self.HLS_PATH, hls_root)
        app.on_response_prepare.append(self._on_response_prepare)
        return app

    async def _on_response_prepare(
        self, request: web.Request, response: web.StreamResponse
    ) -> None:
        """Allow players on other origins to fetch the HLS output."""
        if request.path.startswith(f"{self.HLS_PATH}/"):
            response.headers["Access-Control-Allow-Origin"] = "*"

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        """Event loop the server and its rebuild tasks run on."""
        return self._loop

    @property
    def config(self) -> RoomcastConfig:
        """The configuration of this server."""
        return self._config

    @property
    def registry(self) -> RoomRegistry:
        """The registry owning all rooms."""
        return self._registry

    @property
    def transports(self) -> TransportLifecycleManager:
        """The manager of session transports, producers and consumers."""
        return self._transports

    @property
    def orchestrator(self) -> HlsPipelineOrchestrator:
        """The HLS pipeline orchestrator."""
        return self._orchestrator

    @property
    def advertiser(self) -> MdnsAdvertiser:
        """The mDNS advertiser of this server."""
        return self._advertiser

    @property
    def sessions(self) -> set[SignalingClient]:
        """Sessions with an established WebSocket."""
        return self._sessions

    @property
    def id(self) -> str:
        """Server id, also used as the mDNS instance name."""
        return self._id

    @property
    def name(self) -> str:
        """Human-readable server name advertised via mDNS."""
        return self._name

    async def on_client_connect(self, request: web.Request) -> web.StreamResponse:
        """Handle an incoming WebSocket connection of a signaling session."""
        logger.debug("Incoming session connection from %s", request.remote)

        client = SignalingClient(self, request, handle_disconnect=self._handle_session_disconnect)
        await client._handle_session()  # noqa: SLF001  # pyright: ignore[reportPrivateUsage]
        return client.websocket_connection

    def add_event_listener(
        self, callback: Callable[[RoomcastServer, RoomcastEvent], None]
    ) -> Callable[[], None]:
        """
        Register a callback to listen for state changes of the server.

        State changes include:
        - A session connected or disconnected
        - A room was created or destroyed

        Returns a function to remove the listener.
        """
        self._event_cbs.append(callback)

        def _remove() -> None:
            with suppress(ValueError):
                self._event_cbs.remove(callback)

        return _remove

    def _signal_event(self, event: RoomcastEvent) -> None:
        """Pass an event to every listener, logging listener failures."""
        for cb in self._event_cbs:
            try:
                cb(self, event)
            except Exception:
                logger.exception("Error in event listener")

    def _handle_session_connect(self, client: SignalingClient) -> None:
        """Register the session to the server."""
        if client in self._sessions:
            return
        logger.debug("Adding session %s to server", client.session_id)
        self._sessions.add(client)
        self._signal_event(SessionConnectedEvent(client.session_id))

    async def _handle_session_disconnect(self, client: SignalingClient) -> None:
        """Tear down everything the session owned and unregister it."""
        try:
            await self._transports.teardown_session(client.session)
        except Exception:
            logger.exception("Error tearing down session %s", client.session_id)
        if client not in self._sessions:
            return
        logger.debug("Removing session %s from server", client.session_id)
        self._sessions.remove(client)
        self._signal_event(SessionDisconnectedEvent(client.session_id))

    async def start_server(
        self,
        port: int = 3000,
        host: str = "0.0.0.0",
        advertise_addresses: list[str] | None = None,
        *,
        advertise: bool = True,
    ) -> None:
        """
        Start the Roomcast Server.

        :param port: TCP port serving /ws and /hls.
        :param host: Listen address, "0.0.0.0" listens on every interface.
        :param advertise_addresses: Addresses put in the mDNS record. The local
            IP address is detected if None.
        :param advertise: Whether to advertise the server via mDNS as _roomcast._tcp.
        """
        if self._app is not None:
            logger.warning("Server is already running")
            return

        logger.info("Starting Roomcast server on port %d", port)
        self._app = self._create_web_application()
        self._app_runner = web.AppRunner(self._app)
        await self._app_runner.setup()

        try:
            self._tcp_site = web.TCPSite(
                self._app_runner,
                host=host if host != "0.0.0.0" else None,
                port=port,
            )
            await self._tcp_site.start()
            logger.info("Roomcast server started successfully on %s:%d", host, port)
            if not advertise:
                return

            await self._advertiser.start(
                port,
                addresses=advertise_addresses,
                interface=host if host != "0.0.0.0" else None,
            )
        except OSError as e:
            logger.error("Failed to start server on %s:%d: %s", host, port, e)
            await self._advertiser.stop()
            if self._app_runner:
                await self._app_runner.cleanup()
                self._app_runner = None
            if self._app:
                await self._app.shutdown()
                self._app = None
            raise

    async def stop_server(self) -> None:
        """Stop mDNS advertising and the web application."""
        await self._advertiser.stop()

        if self._tcp_site:
            await self._tcp_site.stop()
            self._tcp_site = None
            logger.debug("TCP site stopped")

        if self._app_runner:
            await self._app_runner.cleanup()
            self._app_runner = None
            logger.debug("App runner cleaned up")

        if self._app:
            await self._app.shutdown()
            self._app = None

    async def close(self) -> None:
        """Disconnect all sessions, destroy all rooms and stop the server."""
        sessions = list(self._sessions)
        results = await asyncio.gather(
            *(client.disconnect() for client in sessions), return_exceptions=True
        )
        for client, result in zip(sessions, results, strict=True):
            if isinstance(result, Exception):
                logger.warning("Error disconnecting session %s: %s", client.session_id, result)

        # Rooms that were created but never joined
        for room in self._registry.rooms:
            room.participants.clear()
            await self._registry.destroy_room(room)

        await self.stop_server()

