"""Rooms, their participants and the registry owning them."""

from __future__ import annotations

import asyncio
import logging
import os
import uuid
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from functools import partial
from pathlib import Path
from typing import TYPE_CHECKING, Any, NamedTuple

from aioroomcast.engine import Consumer, PlainTransport, Producer, Router, WebRtcTransport, Worker
from aioroomcast.errors import RoomNotFound
from aioroomcast.models.core import ProducerInfo
from aioroomcast.models.types import MediaKind, ServerMessage, TransportKind
from aioroomcast.util import release

from .events import RoomCreatedEvent, RoomDestroyedEvent, RoomEvent
from .ports import PortPair
from .scheduler import RebuildScheduler

# The cyclic import is not an issue during runtime, so hide it
# pyright: reportImportCycles=none
if TYPE_CHECKING:
    from .hls import HlsPipelineOrchestrator
    from .transcoder import TranscoderHandle

logger = logging.getLogger(__name__)


@dataclass
class Session:
    """A connected signaling peer."""

    session_id: str
    send: Callable[[ServerMessage], None]
    """Enqueue a message for the remote peer."""
    room_id: str | None = None
    """Room the session joined, None before joinRoom."""


class Candidate(NamedTuple):
    """A participant publishing both audio and video."""

    session_id: str
    audio: Producer
    video: Producer


@dataclass
class EgressPair:
    """Audio and video egress of one participant into the transcoder."""

    session_id: str
    audio_transport: PlainTransport
    video_transport: PlainTransport
    audio_ports: PortPair
    video_ports: PortPair
    audio_consumer: Consumer
    video_consumer: Consumer


@dataclass
class HlsState:
    """State of the HLS pipeline of a room."""

    output_dir: Path
    fingerprint: str | None
    """Canonical encoding of the producer pairs the pipeline was built for."""
    generation: int = 0
    """Number of the rebuild that produced this state."""
    egress: list[EgressPair] = field(default_factory=list)
    process: TranscoderHandle | None = None
    sdp_path: Path | None = None

    @property
    def live(self) -> bool:
        """Whether the transcoder of this state is still running."""
        return self.process is not None and self.process.running


class Room:
    """
    Aggregate of everything belonging to one room.

    The router is assigned once at creation and never replaced.
    """

    room_id: str
    router: Router
    participants: dict[str, Session]
    """Session id -> session of every participant."""
    transports: dict[tuple[str, TransportKind], WebRtcTransport]
    """Participant-facing transports keyed by (session id, kind)."""
    producers: dict[str, dict[MediaKind, Producer]]
    """Session id -> open producers of that session, at most one per kind."""
    consumers: dict[str, list[Consumer]]
    """Session id -> participant-facing consumers created for that session."""
    hls: HlsState | None
    scheduler: RebuildScheduler
    closed: bool

    def __init__(
        self,
        room_id: str,
        router: Router,
        rebuild: Callable[[Room], Awaitable[None]],
    ) -> None:
        """
        Initialize a room.

        Args:
            room_id: Identifier of the room.
            router: Routing context of the room.
            rebuild: Coroutine function running one HLS pipeline rebuild for a room.
        """
        self.room_id = room_id
        self.router = router
        self.participants = {}
        self.transports = {}
        self.producers = {}
        self.consumers = {}
        self.hls = None
        self.closed = False
        self._generation = 0
        self.scheduler = RebuildScheduler(room_id, partial(rebuild, self))

    def next_generation(self) -> int:
        """Return the number of the next pipeline generation."""
        self._generation += 1
        return self._generation

    def get_producer(self, session_id: str, kind: MediaKind) -> Producer | None:
        """Return the open producer of a session for a kind."""
        producer = self.producers.get(session_id, {}).get(kind)
        if producer is None or producer.closed:
            return None
        return producer

    def find_producer(self, producer_id: str) -> tuple[str, Producer] | None:
        """Find an open producer by id across all participants."""
        for session_id, kinds in self.producers.items():
            for producer in kinds.values():
                if producer.id == producer_id and not producer.closed:
                    return session_id, producer
        return None

    def producer_infos(self) -> list[ProducerInfo]:
        """List all open producers of the room."""
        return [
            ProducerInfo(user_id=session_id, producer_id=producer.id, kind=kind)
            for session_id, kinds in self.producers.items()
            for kind, producer in kinds.items()
            if not producer.closed
        ]

    def candidates(self) -> list[Candidate]:
        """Return every session with an open audio and video producer, ordered by producer ids."""
        result = []
        for session_id in self.producers:
            audio = self.get_producer(session_id, MediaKind.AUDIO)
            video = self.get_producer(session_id, MediaKind.VIDEO)
            if audio is not None and video is not None:
                result.append(Candidate(session_id, audio, video))
        result.sort(key=lambda candidate: (candidate.audio.id, candidate.video.id))
        return result

    def broadcast(self, message: ServerMessage, *, exclude: str | None = None) -> None:
        """Send a message to all participants, optionally skipping one session."""
        for session_id, session in self.participants.items():
            if session_id != exclude:
                session.send(message)


def compute_fingerprint(candidates: Sequence[Candidate]) -> str:
    """Encode the producer pairs of the candidates as a canonical string."""
    pairs = sorted((c.audio.id, c.video.id) for c in candidates)
    return "|".join(f"{audio_id},{video_id}" for audio_id, video_id in pairs)


def _exit_process() -> None:
    os._exit(1)


class WorkerPool:
    """Hands out media engine workers round-robin."""

    def __init__(
        self,
        workers: Sequence[Worker],
        *,
        exit_delay: float = 2.0,
        on_fatal: Callable[[], None] = _exit_process,
    ) -> None:
        """
        Initialize the pool.

        A dying worker takes every router on it down with no way to recover the
        rooms, so the whole process is terminated ``exit_delay`` seconds later
        by calling ``on_fatal``.
        """
        if not workers:
            raise ValueError("At least one media worker is required")
        self._workers = list(workers)
        self._next_index = 0
        self._exit_delay = exit_delay
        self._on_fatal = on_fatal
        for worker in self._workers:
            worker.add_died_listener(partial(self._on_worker_died, worker))
        logger.info("Worker pool initialized with %d media worker(s)", len(self._workers))

    def __len__(self) -> int:
        """Return the number of workers."""
        return len(self._workers)

    def next_worker(self) -> Worker:
        """Return the next worker in round-robin order."""
        worker = self._workers[self._next_index]
        self._next_index = (self._next_index + 1) % len(self._workers)
        return worker

    def _on_worker_died(self, worker: Worker, error: BaseException | None) -> None:
        logger.critical(
            "Media worker died [pid:%s], exiting in %.1f seconds: %s",
            worker.pid,
            self._exit_delay,
            error,
        )
        asyncio.get_running_loop().call_later(self._exit_delay, self._on_fatal)


class RoomRegistry:
    """Owns all rooms, keyed by room id."""

    _rooms: dict[str, Room]
    _expiry_timers: dict[str, asyncio.TimerHandle]
    """Room id -> timer destroying the room if nobody joins it."""
    _expiry_tasks: set[asyncio.Task[None]]

    def __init__(
        self,
        pool: WorkerPool,
        orchestrator: HlsPipelineOrchestrator,
        media_codecs: list[dict[str, Any]],
        signal_event: Callable[[RoomEvent], None] | None = None,
        *,
        unjoined_room_timeout: float = 30.0,
    ) -> None:
        """
        Initialize the registry.

        Args:
            pool: Workers to create room routers on.
            orchestrator: HLS pipeline orchestrator, used to rebuild and tear down pipelines.
            media_codecs: Codecs every router is created with.
            signal_event: Called with room created/destroyed events.
            unjoined_room_timeout: Seconds a new room may stay without any
                participant before it is destroyed.
        """
        self._rooms = {}
        self._pool = pool
        self._orchestrator = orchestrator
        self._media_codecs = media_codecs
        self._signal_event = signal_event
        self._unjoined_room_timeout = unjoined_room_timeout
        self._expiry_timers = {}
        self._expiry_tasks = set()

    @property
    def rooms(self) -> list[Room]:
        """All live rooms."""
        return list(self._rooms.values())

    async def create_room(self) -> Room:
        """Create a room with a router on the next worker of the pool."""
        worker = self._pool.next_worker()
        router = await worker.create_router(media_codecs=self._media_codecs)
        room_id = uuid.uuid4().hex
        room = Room(room_id, router, self._orchestrator.rebuild)
        self._rooms[room_id] = room
        logger.info("Room %s created on worker pid=%s", room_id, worker.pid)
        self._expiry_timers[room_id] = asyncio.get_running_loop().call_later(
            self._unjoined_room_timeout, self._expire_unjoined_room, room
        )
        self._emit(RoomCreatedEvent(room_id))
        return room

    def get_room(self, room_id: str) -> Room:
        """Return a room or raise RoomNotFound."""
        room = self._rooms.get(room_id)
        if room is None:
            raise RoomNotFound(f"Room {room_id} does not exist")
        return room

    def join_room(self, room_id: str, session: Session) -> Room:
        """Add a session to a room."""
        room = self.get_room(room_id)
        self._cancel_expiry(room_id)
        room.participants[session.session_id] = session
        session.room_id = room_id
        logger.info(
            "Session %s joined room %s. Room has %d participant(s)",
            session.session_id,
            room_id,
            len(room.participants),
        )
        return room

    async def leave_room(self, session: Session) -> None:
        """Remove a session from its room, destroying the room once it is empty."""
        room_id = session.room_id
        session.room_id = None
        room = self._rooms.get(room_id) if room_id is not None else None
        if room is None or room.participants.pop(session.session_id, None) is None:
            return

        if room.participants:
            logger.info(
                "Session %s left room %s. Room has %d participant(s)",
                session.session_id,
                room.room_id,
                len(room.participants),
            )
            return
        await self.destroy_room(room)

    async def destroy_room(self, room: Room) -> None:
        """
        Destroy a room that has no participants left.

        Any in-flight rebuild is cancelled and the HLS pipeline is torn down
        before the remaining engine objects and finally the router are released.
        """
        if room.participants:
            raise RuntimeError(f"Room {room.room_id} still has participants")
        if self._rooms.get(room.room_id) is not room:
            return
        del self._rooms[room.room_id]
        room.closed = True
        self._cancel_expiry(room.room_id)

        await room.scheduler.close()
        self._orchestrator.teardown(room)

        # Close listeners may still touch the maps, iterate over copies
        for session_id, consumers in list(room.consumers.items()):
            for consumer in list(consumers):
                release(f"consumer {consumer.id} of {session_id}", consumer.close, logger)
        for kinds in list(room.producers.values()):
            for producer in list(kinds.values()):
                release(f"producer {producer.id}", producer.close, logger)
        for (session_id, kind), transport in list(room.transports.items()):
            release(f"{kind.value} transport of {session_id}", transport.close, logger)
        room.consumers.clear()
        room.producers.clear()
        room.transports.clear()
        release(f"router of room {room.room_id}", room.router.close, logger)

        logger.info("Room %s destroyed (empty)", room.room_id)
        self._emit(RoomDestroyedEvent(room.room_id))

    def _emit(self, event: RoomEvent) -> None:
        if self._signal_event is not None:
            self._signal_event(event)

    def _cancel_expiry(self, room_id: str) -> None:
        if (timer := self._expiry_timers.pop(room_id, None)) is not None:
            timer.cancel()

    def _expire_unjoined_room(self, room: Room) -> None:
        """Destroy a room nobody joined since it was created."""
        self._expiry_timers.pop(room.room_id, None)
        if room.closed or room.participants:
            return
        logger.info(
            "Room %s was not joined within %.1f seconds, destroying it",
            room.room_id,
            self._unjoined_room_timeout,
        )
        task = asyncio.get_running_loop().create_task(self.destroy_room(room))
        self._expiry_tasks.add(task)
        task.add_done_callback(self._expiry_tasks.discard)
