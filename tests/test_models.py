from __future__ import annotations

import orjson
import pytest

from aioroomcast.models.core import (
    ConsumeRequest,
    ConsumerPayload,
    CreateRoomRequest,
    EmptyPayload,
    ErrorMessage,
    ErrorPayload,
    JoinRoomRequest,
    NewProducerMessage,
    ProducePayload,
    ProduceRequest,
    ProducerInfo,
    ResponseMessage,
    RoomPayload,
    StopProducingRequest,
    TransportCreatedPayload,
)
from aioroomcast.models.types import ClientMessage, ErrorCode, MediaKind, ServerMessage


def test_client_requests_are_dispatched_by_type() -> None:
    join = ClientMessage.from_json(
        orjson.dumps({"type": "joinRoom", "request_id": 3, "payload": {"roomId": "r1"}})
    )
    assert isinstance(join, JoinRoomRequest)
    assert join.request_id == 3
    assert join.payload.room_id == "r1"

    create = ClientMessage.from_json(orjson.dumps({"type": "createRoom", "request_id": 1}))
    assert isinstance(create, CreateRoomRequest)
    assert create.payload == EmptyPayload()

    consume = ClientMessage.from_json(
        orjson.dumps(
            {
                "type": "consume",
                "request_id": 9,
                "payload": {"producerId": "p1", "rtpCapabilities": {"codecs": []}},
            }
        )
    )
    assert isinstance(consume, ConsumeRequest)
    assert consume.payload.producer_id == "p1"
    assert consume.payload.rtp_capabilities == {"codecs": []}


def test_produce_request_parses_kind() -> None:
    message = ClientMessage.from_json(
        orjson.dumps(
            {
                "type": "produce",
                "request_id": 4,
                "payload": {"kind": "video", "rtpParameters": {"codecs": []}},
            }
        )
    )
    assert message == ProduceRequest(
        request_id=4, payload=ProducePayload(kind=MediaKind.VIDEO, rtp_parameters={"codecs": []})
    )


def test_stop_producing_kind_is_optional() -> None:
    stop_all = ClientMessage.from_json(orjson.dumps({"type": "stopProducing", "request_id": 5}))
    assert isinstance(stop_all, StopProducingRequest)
    assert stop_all.payload.kind is None

    stop_audio = ClientMessage.from_json(
        orjson.dumps({"type": "stopProducing", "request_id": 6, "payload": {"kind": "audio"}})
    )
    assert isinstance(stop_audio, StopProducingRequest)
    assert stop_audio.payload.kind is MediaKind.AUDIO


def test_unknown_or_malformed_requests_are_rejected() -> None:
    with pytest.raises(ValueError):
        ClientMessage.from_json(orjson.dumps({"type": "explode", "request_id": 1}))
    with pytest.raises(ValueError):
        ClientMessage.from_json(
            orjson.dumps(
                {
                    "type": "produce",
                    "request_id": 1,
                    "payload": {"kind": "smell", "rtpParameters": {}},
                }
            )
        )


def test_response_uses_protocol_field_names() -> None:
    transport = TransportCreatedPayload(
        id="t1",
        ice_parameters={"usernameFragment": "u"},
        ice_candidates=[],
        dtls_parameters={"role": "auto"},
    )
    message = ResponseMessage.for_request(7, transport)

    assert orjson.loads(message.to_json()) == {
        "type": "response",
        "request_id": 7,
        "data": {
            "id": "t1",
            "iceParameters": {"usernameFragment": "u"},
            "iceCandidates": [],
            "dtlsParameters": {"role": "auto"},
        },
    }
    assert ResponseMessage.for_request(1, RoomPayload(room_id="r1")).data == {"roomId": "r1"}

    consumer = ConsumerPayload(
        id="c1", producer_id="p1", kind=MediaKind.AUDIO, rtp_parameters={}
    )
    assert consumer.to_dict() == {
        "id": "c1",
        "producerId": "p1",
        "kind": "audio",
        "rtpParameters": {},
    }


def test_error_frame() -> None:
    message = ErrorMessage(
        request_id=None,
        payload=ErrorPayload(code=ErrorCode.INVALID_REQUEST, message="Invalid message"),
    )

    assert orjson.loads(message.to_json()) == {
        "type": "error",
        "request_id": None,
        "payload": {"code": "invalid_request", "message": "Invalid message"},
    }


def test_server_pushes_roundtrip_through_discriminator() -> None:
    push = NewProducerMessage(
        payload=ProducerInfo(user_id="s1", producer_id="p1", kind=MediaKind.VIDEO)
    )

    raw = orjson.loads(push.to_json())
    assert raw["payload"] == {"userId": "s1", "producerId": "p1", "kind": "video"}
    assert ServerMessage.from_json(push.to_json()) == push
