"""
Ingress path from MQTT to the system state.

Handles:
- Decoding inbound MQTT payloads according to the topic table
- Applying the result to the state store
- Broadcasting exactly one fine-grained event per mutation
- A single inbound channel, fed from the MQTT thread, consumed in order
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Optional, Tuple

from .hub import BroadcastHub
from .state import StateStore, SystemState, utc_now
from .topics import TopicBinding, TopicTable, payload_text

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Mutation:
    """A decoded inbound message, ready to be applied."""
    binding: TopicBinding
    value: Any


class IngressNormalizer:
    """
    Turns inbound MQTT messages into state mutations.

    The normalizer is the only writer of the state store.
    """

    def __init__(self, store: StateStore, hub: BroadcastHub, topics: TopicTable):
        self._store = store
        self._hub = hub
        self._bindings = topics.by_topic()

        # Statistics
        self._applied = 0
        self._decode_errors = 0
        self._unknown_topics = 0

    def normalize(self, topic: str, payload: bytes) -> Optional[Mutation]:
        """
        Decode one message without touching the store.

        Returns:
            The mutation to apply, or None if the topic is not bound
        """
        binding = self._bindings.get(topic)
        if binding is None:
            self._unknown_topics += 1
            logger.warning(f"Unknown topic: {topic}")
            return None

        try:
            value = binding.decode(payload)
        except (ValueError, RecursionError) as e:
            self._decode_errors += 1
            logger.warning(
                f"Failed to decode {binding.name} payload {payload_text(payload)[:200]!r}: {e}"
            )
            value = None

        return Mutation(binding=binding, value=value)

    def handle(self, topic: str, payload: bytes) -> Optional[SystemState]:
        """
        Apply one message and broadcast the changed field.

        Returns:
            The new snapshot, or None if the message was discarded
        """
        mutation = self.normalize(topic, payload)
        if mutation is None:
            return None

        binding = mutation.binding
        state = self._store.apply(binding.field, mutation.value, utc_now())
        self._applied += 1
        self._hub.broadcast(binding.event, mutation.value)

        logger.debug(f"{binding.name} -> {mutation.value!r}")
        return state

    def get_stats(self) -> dict:
        return {
            "applied": self._applied,
            "decode_errors": self._decode_errors,
            "unknown_topics": self._unknown_topics,
        }


class MessageDispatcher:
    """
    Single consumer of inbound ``(topic, payload)`` messages.

    ``submit`` is safe to call from any thread (the paho network thread in
    production). Messages are handled one at a time on the event loop, in
    arrival order.
    """

    def __init__(self, normalizer: IngressNormalizer):
        self._normalizer = normalizer
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._queue: Optional["asyncio.Queue[Optional[Tuple[str, bytes]]]"] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        """Bind to the running loop and start consuming."""
        if self.running:
            return
        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue()
        self._task = asyncio.create_task(self._run())
        logger.info("Message dispatcher started")

    async def stop(self) -> None:
        """Stop after the messages already queued have been handled."""
        if not self.running:
            return
        self._queue.put_nowait(None)
        await self._task
        self._task = None
        self._loop = None
        logger.info("Message dispatcher stopped")

    def submit(self, topic: str, payload: bytes) -> None:
        """Queue an inbound message. Thread-safe."""
        if self._loop is None or self._loop.is_closed():
            logger.warning(f"Dispatcher not running, dropping message on {topic}")
            return
        self._loop.call_soon_threadsafe(self._queue.put_nowait, (topic, payload))

    async def join(self) -> None:
        """Wait until every queued message has been handled."""
        if self._queue is not None:
            await self._queue.join()

    async def _run(self) -> None:
        while True:
            item = await self._queue.get()
            try:
                if item is None:
                    return
                topic, payload = item
                self._normalizer.handle(topic, payload)
            except Exception as e:
                logger.error(f"Error handling message: {e}")
            finally:
                self._queue.task_done()
