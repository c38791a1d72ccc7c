"""
Core messages for the room signaling protocol.

Every client message is a request carrying a ``request_id``. The server answers
each request with exactly one ``response`` or ``error`` frame echoing that id,
and pushes ``roomProducersChanged`` and ``newProducer`` frames on its own.

Payload field names on the wire follow the protocol (``roomId``,
``iceParameters``, ...), the Python attributes use snake_case.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Annotated, Any, Literal

from mashumaro.config import BaseConfig
from mashumaro.mixins.orjson import DataClassORJSONMixin
from mashumaro.types import Alias

from .types import ClientMessage, ErrorCode, MediaKind, ServerMessage


@dataclass
class _Payload(DataClassORJSONMixin):
    """Base for payloads using protocol field names on the wire."""

    class Config(BaseConfig):
        """Config for parsing json messages."""

        serialize_by_alias = True
        omit_none = True


# Client -> Server payloads


@dataclass
class EmptyPayload(_Payload):
    """Payload for requests without arguments."""


@dataclass
class JoinRoomPayload(_Payload):
    """Payload of joinRoom."""

    room_id: Annotated[str, Alias("roomId")]
    """Room to join, as returned by createRoom."""


@dataclass
class ConnectTransportPayload(_Payload):
    """Payload of connectProducerTransport / connectConsumerTransport."""

    dtls_parameters: Annotated[dict[str, Any], Alias("dtlsParameters")]
    """Remote DTLS parameters, passed to the media engine untouched."""


@dataclass
class ProducePayload(_Payload):
    """Payload of produce."""

    kind: MediaKind
    rtp_parameters: Annotated[dict[str, Any], Alias("rtpParameters")]


@dataclass
class StopProducingPayload(_Payload):
    """Payload of stopProducing."""

    kind: MediaKind | None = None
    """Kind to stop; all producers of the session are stopped if omitted."""


@dataclass
class ConsumePayload(_Payload):
    """Payload of consume."""

    producer_id: Annotated[str, Alias("producerId")]
    rtp_capabilities: Annotated[dict[str, Any], Alias("rtpCapabilities")]
    """Receive capabilities of the subscribing device."""


# Client -> Server requests


@dataclass
class CreateRoomRequest(ClientMessage):
    """Create a new room and return its id."""

    request_id: int
    payload: EmptyPayload = field(default_factory=EmptyPayload)
    type: Literal["createRoom"] = "createRoom"


@dataclass
class JoinRoomRequest(ClientMessage):
    """Join an existing room."""

    request_id: int
    payload: JoinRoomPayload
    type: Literal["joinRoom"] = "joinRoom"


@dataclass
class GetRouterRtpCapabilitiesRequest(ClientMessage):
    """Return the RTP capabilities of the room's router."""

    request_id: int
    payload: EmptyPayload = field(default_factory=EmptyPayload)
    type: Literal["getRouterRtpCapabilities"] = "getRouterRtpCapabilities"


@dataclass
class CreateProducerTransportRequest(ClientMessage):
    """Create (or return) the sending transport of the session."""

    request_id: int
    payload: EmptyPayload = field(default_factory=EmptyPayload)
    type: Literal["createProducerTransport"] = "createProducerTransport"


@dataclass
class CreateConsumerTransportRequest(ClientMessage):
    """Create (or return) the receiving transport of the session."""

    request_id: int
    payload: EmptyPayload = field(default_factory=EmptyPayload)
    type: Literal["createConsumerTransport"] = "createConsumerTransport"


@dataclass
class ConnectProducerTransportRequest(ClientMessage):
    """Connect the sending transport with the remote DTLS parameters."""

    request_id: int
    payload: ConnectTransportPayload
    type: Literal["connectProducerTransport"] = "connectProducerTransport"


@dataclass
class ConnectConsumerTransportRequest(ClientMessage):
    """Connect the receiving transport with the remote DTLS parameters."""

    request_id: int
    payload: ConnectTransportPayload
    type: Literal["connectConsumerTransport"] = "connectConsumerTransport"


@dataclass
class ProduceRequest(ClientMessage):
    """Publish a track on the sending transport."""

    request_id: int
    payload: ProducePayload
    type: Literal["produce"] = "produce"


@dataclass
class StopProducingRequest(ClientMessage):
    """Stop publishing one or all tracks."""

    request_id: int
    payload: StopProducingPayload = field(default_factory=StopProducingPayload)
    type: Literal["stopProducing"] = "stopProducing"


@dataclass
class ListProducersRequest(ClientMessage):
    """List all open producers of the room."""

    request_id: int
    payload: EmptyPayload = field(default_factory=EmptyPayload)
    type: Literal["listProducers"] = "listProducers"


@dataclass
class ConsumeRequest(ClientMessage):
    """Subscribe to a producer of another participant."""

    request_id: int
    payload: ConsumePayload
    type: Literal["consume"] = "consume"


# Server -> Client payloads


@dataclass
class RoomPayload(_Payload):
    """Response of createRoom and joinRoom."""

    room_id: Annotated[str, Alias("roomId")]


@dataclass
class RtpCapabilitiesPayload(_Payload):
    """Response of getRouterRtpCapabilities."""

    rtp_capabilities: Annotated[dict[str, Any], Alias("rtpCapabilities")]


@dataclass
class TransportCreatedPayload(_Payload):
    """Response of createProducerTransport / createConsumerTransport."""

    id: str
    ice_parameters: Annotated[dict[str, Any], Alias("iceParameters")]
    ice_candidates: Annotated[list[dict[str, Any]], Alias("iceCandidates")]
    dtls_parameters: Annotated[dict[str, Any], Alias("dtlsParameters")]


@dataclass
class ConnectedPayload(_Payload):
    """Response of connectProducerTransport / connectConsumerTransport."""

    connected: bool = True


@dataclass
class ProducedPayload(_Payload):
    """Response of produce."""

    id: str
    """Id of the new producer."""


@dataclass
class StoppedPayload(_Payload):
    """Response of stopProducing."""

    stopped: bool = True


@dataclass
class ProducerInfo(_Payload):
    """A producer published in the room."""

    user_id: Annotated[str, Alias("userId")]
    """Session id of the publishing participant."""
    producer_id: Annotated[str, Alias("producerId")]
    kind: MediaKind


@dataclass
class ProducerListPayload(_Payload):
    """Response of listProducers and payload of roomProducersChanged."""

    producers: list[ProducerInfo]


@dataclass
class ConsumerPayload(_Payload):
    """Response of consume."""

    id: str
    producer_id: Annotated[str, Alias("producerId")]
    kind: MediaKind
    rtp_parameters: Annotated[dict[str, Any], Alias("rtpParameters")]


@dataclass
class ErrorPayload(_Payload):
    """Details of a failed request."""

    code: ErrorCode
    message: str


# Server -> Client messages


@dataclass
class ResponseMessage(ServerMessage):
    """Successful answer to a request."""

    request_id: int
    data: dict[str, Any]
    type: Literal["response"] = "response"

    @classmethod
    def for_request(cls, request_id: int, payload: _Payload) -> ResponseMessage:
        """Build a response carrying the serialized payload."""
        return cls(request_id=request_id, data=payload.to_dict())


@dataclass
class ErrorMessage(ServerMessage):
    """Failed answer to a request, sent only to the requesting session."""

    request_id: int | None
    payload: ErrorPayload
    type: Literal["error"] = "error"


@dataclass
class RoomProducersChangedMessage(ServerMessage):
    """Pushed to every participant whenever the producer set of the room changes."""

    payload: ProducerListPayload
    type: Literal["roomProducersChanged"] = "roomProducersChanged"


@dataclass
class NewProducerMessage(ServerMessage):
    """Pushed to the other participants when a session publishes a track."""

    payload: ProducerInfo
    type: Literal["newProducer"] = "newProducer"
