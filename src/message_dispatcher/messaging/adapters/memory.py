# Copyright 2026 Firefly Software Solutions Inc.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
"""In-memory AMQP-style broker for testing and single-process applications.

Emulates the parts of a broker the dispatcher relies on: exchanges of every
supported kind, durable/exclusive queues, bindings, the default exchange,
mandatory returns, prefetch-bounded consumers and dead-lettering through
queue arguments. Declared objects survive stop()/start() like they would on
a real broker, so restarting against the same instance exercises idempotent
declaration.
"""

from __future__ import annotations

import asyncio
import uuid
import zlib
from collections import deque
from collections.abc import AsyncIterator, Mapping
from dataclasses import dataclass, field
from typing import Any

import structlog

from message_dispatcher.kernel.exceptions import (
    BrokerException,
    PublishException,
    TopologyDeclarationException,
)
from message_dispatcher.messaging.ports.outbound import EnvelopeCallback
from message_dispatcher.messaging.types import Envelope, ExchangeType

logger = structlog.get_logger("message_dispatcher.broker.memory")

DEFAULT_EXCHANGE = ""


def topic_matches(pattern: str, routing_key: str) -> bool:
    """AMQP topic matching: ``*`` is exactly one word, ``#`` zero or more."""

    def _match(p: list[str], k: list[str]) -> bool:
        if not p:
            return not k
        head = p[0]
        if head == "#":
            return any(_match(p[1:], k[i:]) for i in range(len(k) + 1))
        if not k:
            return False
        return (head == "*" or head == k[0]) and _match(p[1:], k[1:])

    return _match(pattern.split("."), routing_key.split("."))


def headers_match(binding_arguments: Mapping[str, Any], headers: Mapping[str, Any]) -> bool:
    mode = str(binding_arguments.get("x-match", "all")).lower()
    expected = {k: v for k, v in binding_arguments.items() if not k.startswith("x-")}
    if not expected:
        return True
    hits = [k in headers and str(headers[k]) == str(v) for k, v in expected.items()]
    return any(hits) if mode.startswith("any") else all(hits)


@dataclass(frozen=True)
class _Binding:
    queue: str
    routing_key: str
    arguments: tuple[tuple[str, Any], ...] = ()


@dataclass
class _Exchange:
    name: str
    exchange_type: ExchangeType
    durable: bool
    arguments: dict[str, Any]
    bindings: list[_Binding] = field(default_factory=list)


class _Queue:
    def __init__(
        self,
        name: str,
        durable: bool,
        exclusive: bool,
        auto_delete: bool,
        arguments: dict[str, Any],
    ) -> None:
        self.name = name
        self.durable = durable
        self.exclusive = exclusive
        self.auto_delete = auto_delete
        self.arguments = arguments
        self.messages: deque[Envelope] = deque()
        self.condition = asyncio.Condition()

    def same_as(self, durable: bool, exclusive: bool, auto_delete: bool, arguments: dict[str, Any]) -> bool:
        return (self.durable, self.exclusive, self.auto_delete, self.arguments) == (
            durable,
            exclusive,
            auto_delete,
            arguments,
        )

    async def put(self, envelope: Envelope, *, front: bool = False) -> None:
        async with self.condition:
            if front:
                self.messages.appendleft(envelope)
            else:
                self.messages.append(envelope)
            self.condition.notify_all()


class InMemoryDelivery:
    """A message taken from an in-memory queue, awaiting ack or reject."""

    def __init__(self, envelope: Envelope, queue: _Queue, stream: InMemoryDeliveryStream) -> None:
        self._envelope = envelope
        self._queue = queue
        self._stream = stream
        self._settled = False

    @property
    def envelope(self) -> Envelope:
        return self._envelope

    @property
    def settled(self) -> bool:
        return self._settled

    async def ack(self) -> None:
        if self._settle():
            self._stream.broker.acked.append(self._envelope)

    async def reject(self, requeue: bool = False) -> None:
        if not self._settle():
            return
        if requeue:
            await self._queue.put(self._envelope, front=True)
        else:
            await self._stream.broker.dead_letter_from_queue(self._queue, self._envelope)

    def _settle(self) -> bool:
        if self._stream.closed:
            raise BrokerException("Channel closed before the delivery was settled", code="CHANNEL_CLOSED")
        if self._settled:
            return False
        self._settled = True
        self._stream.mark_settled(self)
        return True

    async def requeue_unsettled(self) -> None:
        if not self._settled:
            self._settled = True
            await self._queue.put(self._envelope, front=True)


class InMemoryDeliveryStream:
    """Competing consumer on one queue with at most ``prefetch_count`` unacked deliveries."""

    def __init__(self, broker: InMemoryBroker, queue: _Queue, prefetch_count: int) -> None:
        self.broker = broker
        self._queue = queue
        self._credits = asyncio.Semaphore(prefetch_count)
        self._unsettled: dict[InMemoryDelivery, None] = {}
        self._cancelled = False
        self._closed = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def closed(self) -> bool:
        return self._closed

    def mark_settled(self, delivery: InMemoryDelivery) -> None:
        self._unsettled.pop(delivery, None)
        self._credits.release()

    def __aiter__(self) -> AsyncIterator[InMemoryDelivery]:
        return self

    async def __anext__(self) -> InMemoryDelivery:
        await self._credits.acquire()
        async with self._queue.condition:
            while not self._queue.messages and not self._cancelled:
                await self._queue.condition.wait()
            if self._cancelled:
                self._credits.release()
                raise StopAsyncIteration
            envelope = self._queue.messages.popleft()
        delivery = InMemoryDelivery(envelope, self._queue, self)
        self._unsettled[delivery] = None
        return delivery

    async def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        async with self._queue.condition:
            self._queue.condition.notify_all()

    async def close(self) -> None:
        """Cancel, then close the channel: unsettled deliveries go back to the queue."""
        await self.cancel()
        if self._closed:
            return
        self._closed = True
        for delivery in reversed(list(self._unsettled)):
            await delivery.requeue_unsettled()
        self._unsettled.clear()
        self.broker.streams.discard(self)


class InMemoryBroker:
    """BrokerPort implementation holding all state in process memory."""

    def __init__(self) -> None:
        self._exchanges: dict[str, _Exchange] = {}
        self._queues: dict[str, _Queue] = {}
        self._running = False
        self.streams: set[InMemoryDeliveryStream] = set()
        self._listeners: set[asyncio.Task[None]] = set()
        self.published: list[tuple[str, str, Envelope]] = []
        self.acked: list[Envelope] = []

    # ── lifecycle ──────────────────────────────────────────────

    async def start(self) -> None:
        self._running = True

    async def stop(self) -> None:
        self._running = False
        for stream in list(self.streams):
            await stream.close()
        for task in list(self._listeners):
            task.cancel()
        if self._listeners:
            await asyncio.gather(*self._listeners, return_exceptions=True)
        self._listeners.clear()
        for name in [q.name for q in self._queues.values() if q.exclusive or q.auto_delete]:
            self._delete_queue(name)

    @property
    def running(self) -> bool:
        return self._running

    # ── topology ───────────────────────────────────────────────

    async def declare_exchange(
        self,
        name: str,
        exchange_type: ExchangeType,
        *,
        durable: bool = True,
        arguments: Mapping[str, Any] | None = None,
    ) -> None:
        args = dict(arguments or {})
        existing = self._exchanges.get(name)
        if existing is not None:
            if (existing.exchange_type, existing.durable, existing.arguments) != (exchange_type, durable, args):
                raise TopologyDeclarationException(
                    f"Exchange '{name}' already exists with different properties",
                    code="PRECONDITION_FAILED",
                    context={
                        "exchange": name,
                        "existing": {"type": existing.exchange_type.value, "durable": existing.durable},
                        "requested": {"type": exchange_type.value, "durable": durable},
                    },
                )
            return
        self._exchanges[name] = _Exchange(name, exchange_type, durable, args)

    async def declare_queue(
        self,
        name: str = "",
        *,
        durable: bool = True,
        exclusive: bool = False,
        auto_delete: bool = False,
        arguments: Mapping[str, Any] | None = None,
    ) -> str:
        args = dict(arguments or {})
        queue_name = name or f"amq.gen-{uuid.uuid4().hex}"
        existing = self._queues.get(queue_name)
        if existing is not None:
            if not existing.same_as(durable, exclusive, auto_delete, args):
                raise TopologyDeclarationException(
                    f"Queue '{queue_name}' already exists with different properties",
                    code="PRECONDITION_FAILED",
                    context={"queue": queue_name},
                )
            return queue_name
        self._queues[queue_name] = _Queue(queue_name, durable, exclusive, auto_delete, args)
        return queue_name

    async def bind_queue(
        self,
        queue: str,
        exchange: str,
        routing_key: str,
        arguments: Mapping[str, Any] | None = None,
    ) -> None:
        target = self._exchanges.get(exchange)
        if target is None:
            raise TopologyDeclarationException(f"Cannot bind to unknown exchange '{exchange}'", code="NOT_FOUND")
        if queue not in self._queues:
            raise TopologyDeclarationException(f"Cannot bind unknown queue '{queue}'", code="NOT_FOUND")
        binding = _Binding(queue, routing_key, tuple(sorted((arguments or {}).items())))
        if binding not in target.bindings:
            target.bindings.append(binding)

    def _delete_queue(self, name: str) -> None:
        self._queues.pop(name, None)
        for exchange in self._exchanges.values():
            exchange.bindings = [b for b in exchange.bindings if b.queue != name]

    # ── introspection ──────────────────────────────────────────

    def has_exchange(self, name: str) -> bool:
        return name in self._exchanges

    def has_queue(self, name: str) -> bool:
        return name in self._queues

    def exchange_type(self, name: str) -> ExchangeType:
        return self._exchanges[name].exchange_type

    def queue_arguments(self, name: str) -> dict[str, Any]:
        return dict(self._queues[name].arguments)

    def bindings(self, exchange: str) -> list[tuple[str, str]]:
        return [(b.queue, b.routing_key) for b in self._exchanges[exchange].bindings]

    def messages(self, queue: str) -> list[Envelope]:
        """Snapshot of messages waiting on a queue."""
        return list(self._queues[queue].messages)

    async def queue_depth(self, queue: str) -> int:
        target = self._queues.get(queue)
        return 0 if target is None else len(target.messages)

    # ── publish ────────────────────────────────────────────────

    def _route(self, exchange: _Exchange, routing_key: str, headers: Mapping[str, Any]) -> list[str]:
        kind = exchange.exchange_type
        if kind is ExchangeType.FANOUT:
            return [b.queue for b in exchange.bindings]
        if kind is ExchangeType.DIRECT:
            return [b.queue for b in exchange.bindings if b.routing_key == routing_key]
        if kind is ExchangeType.TOPIC:
            return [b.queue for b in exchange.bindings if topic_matches(b.routing_key, routing_key)]
        if kind is ExchangeType.HEADERS:
            return [b.queue for b in exchange.bindings if headers_match(dict(b.arguments), headers)]
        # consistent hash: binding keys are integer weights
        if not exchange.bindings:
            return []
        hash_header = exchange.arguments.get("hash-header")
        source = str(headers.get(hash_header, "")) if hash_header else routing_key
        weights = [
            int(b.routing_key) if b.routing_key.isdigit() and int(b.routing_key) > 0 else 1 for b in exchange.bindings
        ]
        point = zlib.crc32(source.encode()) % sum(weights)
        for binding, weight in zip(exchange.bindings, weights, strict=True):
            if point < weight:
                return [binding.queue]
            point -= weight
        return [exchange.bindings[-1].queue]

    async def publish(
        self,
        exchange: str,
        routing_key: str,
        envelope: Envelope,
        *,
        mandatory: bool = True,
    ) -> None:
        if not self._running:
            raise BrokerException("Broker is not running", code="BROKER_STOPPED")

        if exchange == DEFAULT_EXCHANGE:
            targets = [routing_key] if routing_key in self._queues else []
        else:
            target = self._exchanges.get(exchange)
            if target is None:
                raise PublishException(f"Exchange '{exchange}' does not exist", code="NOT_FOUND")
            targets = list(dict.fromkeys(self._route(target, routing_key, envelope.headers)))

        if not targets:
            if mandatory:
                raise PublishException(
                    f"Message returned as unroutable: exchange='{exchange}' routing_key='{routing_key}'",
                    code="NO_ROUTE",
                    context={"exchange": exchange, "routing_key": routing_key},
                )
            logger.debug("message_dropped", exchange=exchange, routing_key=routing_key)
            return

        self.published.append((exchange, routing_key, envelope))
        for queue_name in targets:
            await self._queues[queue_name].put(envelope.copy(exchange=exchange, routing_key=routing_key))

    async def dead_letter_from_queue(self, queue: _Queue, envelope: Envelope) -> None:
        """Broker-side dead-lettering of a rejected message via the queue's arguments."""
        dlx = queue.arguments.get("x-dead-letter-exchange")
        if dlx is None:
            logger.debug("rejected_message_discarded", queue=queue.name)
            return
        routing_key = queue.arguments.get("x-dead-letter-routing-key", envelope.routing_key or "")
        dead = envelope.copy()
        deaths = list(dead.headers.get("x-death", []))
        deaths.insert(
            0,
            {
                "queue": queue.name,
                "reason": "rejected",
                "count": 1,
                "exchange": envelope.exchange or "",
                "routing-keys": [envelope.routing_key or ""],
            },
        )
        dead.headers["x-death"] = deaths
        await self.publish(dlx, routing_key, dead, mandatory=False)

    # ── consume ────────────────────────────────────────────────

    async def consume(self, queue: str, *, prefetch_count: int = 10) -> InMemoryDeliveryStream:
        target = self._queues.get(queue)
        if target is None:
            raise BrokerException(f"Cannot consume from unknown queue '{queue}'", code="NOT_FOUND")
        stream = InMemoryDeliveryStream(self, target, prefetch_count)
        self.streams.add(stream)
        return stream

    async def listen(self, queue: str, callback: EnvelopeCallback) -> None:
        stream = await self.consume(queue, prefetch_count=100)

        async def _pump() -> None:
            async for delivery in stream:
                try:
                    await callback(delivery.envelope)
                except Exception:
                    logger.exception("listener_failed", queue=queue)
                finally:
                    await delivery.ack()

        task = asyncio.create_task(_pump(), name=f"memory-listener-{queue}")
        self._listeners.add(task)
        task.add_done_callback(self._listeners.discard)
