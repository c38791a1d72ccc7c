"""Represents a single signaling session connected to the server."""

import asyncio
import logging
import uuid
from collections.abc import Callable, Coroutine
from contextlib import suppress
from typing import TYPE_CHECKING, Any, cast

from aiohttp import WSMsgType, web

from aioroomcast.errors import RoomcastError
from aioroomcast.models.core import (
    ConnectConsumerTransportRequest,
    ConnectedPayload,
    ConnectProducerTransportRequest,
    ConsumeRequest,
    ConsumerPayload,
    CreateConsumerTransportRequest,
    CreateProducerTransportRequest,
    CreateRoomRequest,
    ErrorMessage,
    ErrorPayload,
    GetRouterRtpCapabilitiesRequest,
    JoinRoomRequest,
    ListProducersRequest,
    ProducedPayload,
    ProduceRequest,
    ProducerListPayload,
    ResponseMessage,
    RoomPayload,
    RtpCapabilitiesPayload,
    StoppedPayload,
    StopProducingRequest,
    TransportCreatedPayload,
)
from aioroomcast.models.types import ClientMessage, ErrorCode, ServerMessage, TransportKind

from .room import Session

MAX_PENDING_MSG = 4096


logger = logging.getLogger(__name__)

# The cyclic import is not an issue during runtime, so hide it
# pyright: reportImportCycles=none
if TYPE_CHECKING:
    from .server import RoomcastServer
    from .transport import TransportLifecycleManager


class SignalingClient:
    """
    A signaling session connected to a RoomcastServer over a WebSocket.

    Requests are handled one after another in the order they arrive. Every
    request is answered with either a response or an error message carrying
    the request id.
    """

    _server: "RoomcastServer"
    _request: web.Request
    _wsock: web.WebSocketResponse
    _to_write: asyncio.Queue[ServerMessage]
    _writer_task: asyncio.Task[None] | None
    _message_loop_task: asyncio.Task[None] | None
    _handle_disconnect: Callable[["SignalingClient"], Coroutine[Any, Any, None]]
    _closing: bool

    def __init__(
        self,
        server: "RoomcastServer",
        request: web.Request,
        handle_disconnect: Callable[["SignalingClient"], Coroutine[Any, Any, None]],
    ) -> None:
        """
        DO NOT CALL THIS CONSTRUCTOR. INTERNAL USE ONLY.

        Sessions are created by RoomcastServer.on_client_connect.

        Args:
            server: The RoomcastServer instance this session belongs to.
            request: The web request upgraded to the WebSocket.
            handle_disconnect: Called once the session disconnected.
        """
        self._server = server
        self._request = request
        self._handle_disconnect = handle_disconnect
        self._wsock = web.WebSocketResponse(heartbeat=55)
        self.session = Session(session_id=uuid.uuid4().hex, send=self.send_message)
        self._logger = logger.getChild(self.session.session_id)
        self._to_write = asyncio.Queue(maxsize=MAX_PENDING_MSG)
        self._writer_task = None
        self._message_loop_task = None
        self._closing = False
        self._logger.debug("Session initialized for %s", request.remote)

    @property
    def session_id(self) -> str:
        """The unique identifier of this session."""
        return self.session.session_id

    @property
    def websocket_connection(self) -> web.WebSocketResponse:
        """Returns the WebSocket connection of this session."""
        return self._wsock

    @property
    def closing(self) -> bool:
        """Whether this session is in the process of disconnecting."""
        return self._closing

    @property
    def _transports(self) -> "TransportLifecycleManager":
        return self._server.transports

    async def disconnect(self) -> None:
        """Disconnect this session and release everything it owns."""
        if self._closing:
            return
        self._closing = True
        self._logger.debug("Disconnecting session")

        if self._writer_task and not self._writer_task.done():
            self._logger.debug("Cancelling writer task")
            self._writer_task.cancel()
            with suppress(asyncio.CancelledError):
                await self._writer_task
        if self._message_loop_task and not self._message_loop_task.done():
            self._logger.debug("Cancelling message loop task")
            self._message_loop_task.cancel()
            with suppress(asyncio.CancelledError):
                await self._message_loop_task

        if not self._wsock.closed:
            await self._wsock.close()

        await self._handle_disconnect(self)
        self._logger.info("Session disconnected")

    async def _setup_connection(self) -> None:
        """Establish WebSocket connection."""
        try:
            async with asyncio.timeout(10):
                await self._wsock.prepare(self._request)
        except TimeoutError:
            self._logger.warning("Timeout preparing request")
            raise

        self._logger.info("Connection established")
        self._writer_task = self._server.loop.create_task(self._writer())

    async def _run_message_loop(self) -> None:
        """Run the main message processing loop."""
        try:
            async for msg in self._wsock:
                if msg.type in (WSMsgType.CLOSE, WSMsgType.CLOSING, WSMsgType.CLOSED):
                    break
                if msg.type != WSMsgType.TEXT:
                    self._logger.warning("Ignoring non-text message of type %s", msg.type)
                    continue

                try:
                    message = ClientMessage.from_json(cast("str", msg.data))
                except Exception as err:  # noqa: BLE001
                    self._logger.warning("Invalid message: %s", err)
                    self.send_message(
                        ErrorMessage(
                            request_id=None,
                            payload=ErrorPayload(
                                code=ErrorCode.INVALID_REQUEST, message=f"Invalid message: {err}"
                            ),
                        )
                    )
                    continue
                await self._handle_message(message)

            self._logger.debug("wsock was closed")
        except asyncio.CancelledError:
            self._logger.debug("Message loop cancelled")
        except Exception:
            self._logger.exception("Unexpected error inside websocket API")
        finally:
            if self._writer_task and not self._writer_task.done():
                self._logger.debug("Message loop finished, cancelling writer")
                self._writer_task.cancel()

    async def _handle_session(self) -> None:
        """
        Handle the complete websocket connection lifecycle.

        This method is private and should only be called by RoomcastServer
        during session connection handling.
        """
        try:
            await self._setup_connection()
            self._server._handle_session_connect(self)  # noqa: SLF001
            self._message_loop_task = self._server.loop.create_task(self._run_message_loop())
            try:
                await self._message_loop_task
            except asyncio.CancelledError:
                self._logger.debug("Message loop task was cancelled")
        finally:
            await self.disconnect()

    async def _handle_message(self, message: ClientMessage) -> None:
        """Handle one request and answer it."""
        request_id: int = getattr(message, "request_id")  # noqa: B009
        try:
            response = await self._dispatch(message)
        except RoomcastError as err:
            self._logger.warning("%s failed: %s", message.type, err)
            self.send_message(
                ErrorMessage(
                    request_id=request_id,
                    payload=ErrorPayload(code=err.code, message=str(err)),
                )
            )
        except Exception:
            self._logger.exception("Error handling %s", message.type)
            self.send_message(
                ErrorMessage(
                    request_id=request_id,
                    payload=ErrorPayload(
                        code=ErrorCode.INTERNAL_ERROR, message="Internal server error"
                    ),
                )
            )
        else:
            self.send_message(response)

    async def _dispatch(self, message: ClientMessage) -> ResponseMessage:  # noqa: PLR0911
        session = self.session
        transports = self._transports
        match message:
            case CreateRoomRequest(request_id=request_id):
                room = await self._server.registry.create_room()
                return ResponseMessage.for_request(request_id, RoomPayload(room_id=room.room_id))
            case JoinRoomRequest(request_id=request_id, payload=payload):
                self._server.registry.get_room(payload.room_id)
                if session.room_id is not None and session.room_id != payload.room_id:
                    # Switching rooms releases everything held in the previous one
                    await transports.teardown_session(session)
                room = self._server.registry.join_room(payload.room_id, session)
                return ResponseMessage.for_request(request_id, RoomPayload(room_id=room.room_id))
            case GetRouterRtpCapabilitiesRequest(request_id=request_id):
                capabilities = transports.get_router_rtp_capabilities(session)
                return ResponseMessage.for_request(
                    request_id, RtpCapabilitiesPayload(rtp_capabilities=capabilities)
                )
            case CreateProducerTransportRequest(request_id=request_id):
                return await self._create_transport(request_id, TransportKind.PRODUCER)
            case CreateConsumerTransportRequest(request_id=request_id):
                return await self._create_transport(request_id, TransportKind.CONSUMER)
            case ConnectProducerTransportRequest(request_id=request_id, payload=payload):
                await transports.connect_transport(
                    session, TransportKind.PRODUCER, payload.dtls_parameters
                )
                return ResponseMessage.for_request(request_id, ConnectedPayload())
            case ConnectConsumerTransportRequest(request_id=request_id, payload=payload):
                await transports.connect_transport(
                    session, TransportKind.CONSUMER, payload.dtls_parameters
                )
                return ResponseMessage.for_request(request_id, ConnectedPayload())
            case ProduceRequest(request_id=request_id, payload=payload):
                producer = await transports.produce(session, payload.kind, payload.rtp_parameters)
                return ResponseMessage.for_request(request_id, ProducedPayload(id=producer.id))
            case StopProducingRequest(request_id=request_id, payload=payload):
                transports.stop_producing(session, payload.kind)
                return ResponseMessage.for_request(request_id, StoppedPayload())
            case ListProducersRequest(request_id=request_id):
                producers = transports.list_producers(session)
                return ResponseMessage.for_request(
                    request_id, ProducerListPayload(producers=producers)
                )
            case ConsumeRequest(request_id=request_id, payload=payload):
                consumer = await transports.consume(
                    session, payload.producer_id, payload.rtp_capabilities
                )
                return ResponseMessage.for_request(
                    request_id,
                    ConsumerPayload(
                        id=consumer.id,
                        producer_id=consumer.producer_id,
                        kind=consumer.kind,
                        rtp_parameters=consumer.rtp_parameters,
                    ),
                )
        raise ValueError(f"Unhandled message type {message.type}")

    async def _create_transport(self, request_id: int, kind: TransportKind) -> ResponseMessage:
        transport = await self._transports.create_transport(self.session, kind)
        return ResponseMessage.for_request(
            request_id,
            TransportCreatedPayload(
                id=transport.id,
                ice_parameters=transport.ice_parameters,
                ice_candidates=transport.ice_candidates,
                dtls_parameters=transport.dtls_parameters,
            ),
        )

    async def _writer(self) -> None:
        """Write outgoing messages from the queue."""
        try:
            while not self._wsock.closed:
                item = await self._to_write.get()
                try:
                    await self._wsock.send_str(item.to_json())
                except ConnectionError:
                    self._logger.warning("Connection error sending JSON data, ending writer task")
                    break
            self._logger.debug("WebSocket connection was closed, ending writer task")
        except asyncio.CancelledError:
            raise
        except Exception:
            self._logger.exception("Error in writer task for session")
        finally:
            if self._message_loop_task and not self._message_loop_task.done():
                self._logger.debug("Writer finished, cancelling message loop")
                self._message_loop_task.cancel()

    def send_message(self, message: ServerMessage) -> None:
        """Enqueue a message to be sent to the remote peer."""
        try:
            self._to_write.put_nowait(message)
        except asyncio.QueueFull:
            if not self._closing:
                self._logger.error("Message queue full, session too slow - disconnecting")
                task = self._server.loop.create_task(self.disconnect())
                task.add_done_callback(lambda t: t.exception() if not t.cancelled() else None)
            return
        self._logger.debug("Enqueueing message: %s", type(message).__name__)
