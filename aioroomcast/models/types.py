"""Models for enum types used by the room signaling protocol."""

from dataclasses import dataclass
from enum import Enum

from mashumaro.config import BaseConfig
from mashumaro.mixins.orjson import DataClassORJSONMixin
from mashumaro.types import Discriminator


# Base message classes
@dataclass
class ClientMessage(DataClassORJSONMixin):
    """Base class for client requests."""

    class Config(BaseConfig):
        """Config for parsing json messages."""

        discriminator = Discriminator(field="type", include_subtypes=True)


@dataclass
class ServerMessage(DataClassORJSONMixin):
    """Base class for server responses and pushes."""

    class Config(BaseConfig):
        """Config for parsing json messages."""

        discriminator = Discriminator(field="type", include_subtypes=True)


# Enums


class MediaKind(Enum):
    """Kind of a media track."""

    AUDIO = "audio"
    VIDEO = "video"


class TransportKind(Enum):
    """Direction of a participant-facing transport."""

    PRODUCER = "producer"
    """Carries media published by the session."""
    CONSUMER = "consumer"
    """Carries media the session subscribed to."""


class ErrorCode(Enum):
    """Error codes returned to the requesting session."""

    ROOM_NOT_FOUND = "room_not_found"
    TRANSPORT_NOT_FOUND = "transport_not_found"
    PRODUCER_NOT_FOUND = "producer_not_found"
    PRODUCER_CREATE_FAILED = "producer_create_failed"
    CONNECT_FAILED = "connect_failed"
    INCOMPATIBLE_CAPABILITIES = "incompatible_capabilities"
    INVALID_REQUEST = "invalid_request"
    """The message could not be parsed."""
    INTERNAL_ERROR = "internal_error"
