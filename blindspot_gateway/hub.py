"""
Broadcast hub for real-time client sessions.

Handles:
- Session registration with an initial full snapshot
- Fan-out of fine-grained state events to every connected session
- Per-session ordered delivery through a dedicated sender task
- Dropping sessions whose transport fails or falls too far behind
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Set

from fastapi import status

from .state import StateStore

logger = logging.getLogger(__name__)

SYSTEM_STATE_EVENT = "system-state"


class HubClosedError(RuntimeError):
    """Raised when a session tries to join a hub that is shutting down."""


@dataclass(eq=False)
class ClientSession:
    """One connected real-time client."""
    session_id: str
    websocket: Any
    queue: "asyncio.Queue[Dict[str, Any]]"
    connected_at: float = field(default_factory=time.time)
    events_sent: int = 0
    sender: Optional[asyncio.Task] = None


def make_event(event: str, data: Any = None) -> Dict[str, Any]:
    """Build a wire frame."""
    return {"event": event, "data": data}


class BroadcastHub:
    """
    Tracks connected sessions and pushes events to them.

    Every session owns a bounded outbound queue drained by its own sender
    task. Events are enqueued synchronously, so the order in which
    ``broadcast`` is called is the order every session receives them, and a
    slow client never stalls the others.
    """

    def __init__(self, store: StateStore, queue_size: int = 256):
        """
        Initialize broadcast hub.

        Args:
            store: Canonical state store, read for snapshots
            queue_size: Pending events allowed per session before it is dropped
        """
        self._store = store
        self._queue_size = queue_size

        self._sessions: Dict[str, ClientSession] = {}
        self._session_counter = 0
        self._closed = False
        self._closing: Set[asyncio.Task] = set()

        # Statistics
        self._total_broadcasts = 0
        self._dropped_sessions = 0

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def session_count(self) -> int:
        return len(self._sessions)

    def connect(self, websocket: Any) -> ClientSession:
        """
        Register an accepted WebSocket as a new session.

        The snapshot is queued before the session joins the broadcast set,
        so it is always the first event the client sees.

        Raises:
            HubClosedError: If the hub is shutting down
        """
        if self._closed:
            raise HubClosedError("hub is closed")

        self._session_counter += 1
        session = ClientSession(
            session_id=f"client_{self._session_counter}",
            websocket=websocket,
            queue=asyncio.Queue(maxsize=self._queue_size),
        )
        session.queue.put_nowait(
            make_event(SYSTEM_STATE_EVENT, self._store.get().to_dict())
        )
        self._sessions[session.session_id] = session
        session.sender = asyncio.create_task(self._send_loop(session))

        logger.info(f"Session {session.session_id} registered ({len(self._sessions)} connected)")
        return session

    async def disconnect(self, session: ClientSession) -> None:
        """Stop tracking a session. Events still queued for it are discarded."""
        if self._sessions.pop(session.session_id, None) is not None:
            logger.info(f"Session {session.session_id} removed ({len(self._sessions)} connected)")
        await self._stop_sender(session)

    def broadcast(self, event: str, data: Any = None) -> int:
        """
        Queue one event for every connected session.

        Returns:
            Number of sessions the event was queued for
        """
        message = make_event(event, data)
        self._total_broadcasts += 1

        delivered = 0
        for session in list(self._sessions.values()):
            if self._enqueue(session, message):
                delivered += 1

        logger.debug(f"Broadcast {event}={data!r} to {delivered} session(s)")
        return delivered

    def send(self, session: ClientSession, event: str, data: Any = None) -> bool:
        """Queue one event for a single session."""
        if session.session_id not in self._sessions:
            return False
        return self._enqueue(session, make_event(event, data))

    def send_snapshot(self, session: ClientSession) -> bool:
        return self.send(session, SYSTEM_STATE_EVENT, self._store.get().to_dict())

    async def close(self) -> None:
        """Refuse new sessions and close the existing ones."""
        if self._closed:
            return
        self._closed = True

        sessions = list(self._sessions.values())
        self._sessions.clear()
        for session in sessions:
            await self._stop_sender(session)
            await self._close_transport(session, status.WS_1001_GOING_AWAY)

        if self._closing:
            await asyncio.gather(*self._closing, return_exceptions=True)

        logger.info(f"Broadcast hub closed ({len(sessions)} session(s) dropped)")

    def _enqueue(self, session: ClientSession, message: Dict[str, Any]) -> bool:
        try:
            session.queue.put_nowait(message)
            return True
        except asyncio.QueueFull:
            logger.warning(
                f"Session {session.session_id} has {session.queue.qsize()} pending events, dropping it"
            )
            self._drop(session, status.WS_1008_POLICY_VIOLATION)
            return False

    def _drop(self, session: ClientSession, code: int) -> None:
        self._sessions.pop(session.session_id, None)
        self._dropped_sessions += 1
        if session.sender is not None:
            session.sender.cancel()
        task = asyncio.create_task(self._close_transport(session, code))
        self._closing.add(task)
        task.add_done_callback(self._closing.discard)

    async def _send_loop(self, session: ClientSession) -> None:
        """Drain a session's queue onto its transport, in order."""
        while True:
            message = await session.queue.get()
            try:
                await session.websocket.send_json(message)
            except Exception as e:
                logger.warning(f"Send to {session.session_id} failed, dropping session: {e}")
                self._sessions.pop(session.session_id, None)
                self._dropped_sessions += 1
                return
            finally:
                session.queue.task_done()
            session.events_sent += 1

    async def _stop_sender(self, session: ClientSession) -> None:
        sender = session.sender
        if sender is None or sender is asyncio.current_task():
            return
        sender.cancel()
        try:
            await sender
        except asyncio.CancelledError:
            pass

    async def _close_transport(self, session: ClientSession, code: int) -> None:
        try:
            await session.websocket.close(code=code)
        except Exception as e:
            logger.debug(f"Closing {session.session_id} failed: {e}")

    def get_stats(self) -> dict:
        """Get hub statistics."""
        return {
            "connected_sessions": len(self._sessions),
            "total_broadcasts": self._total_broadcasts,
            "dropped_sessions": self._dropped_sessions,
        }
