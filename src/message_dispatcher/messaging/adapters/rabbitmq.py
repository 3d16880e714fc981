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
"""RabbitMQ broker adapter — wraps aio-pika.

Requires aio-pika to be installed (pip install message-dispatcher[rabbitmq]).
Publishing goes through one channel with publisher confirms enabled and
returns raised as errors; every consumer stream opens its own channel with
its own prefetch.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Mapping
from typing import Any

import structlog

from message_dispatcher.kernel.exceptions import (
    BrokerException,
    PublishException,
    TopologyDeclarationException,
)
from message_dispatcher.messaging.ports.outbound import EnvelopeCallback
from message_dispatcher.messaging.types import Envelope, ExchangeType

logger = structlog.get_logger("message_dispatcher.broker.rabbitmq")

_CLOSED = object()


def _header_value(value: Any) -> Any:
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    if isinstance(value, list):
        return [_header_value(v) for v in value]
    if isinstance(value, dict):
        return {k: _header_value(v) for k, v in value.items()}
    return value


def envelope_from_message(message: Any) -> Envelope:
    """Build an Envelope from an aio_pika IncomingMessage."""
    return Envelope(
        body=message.body,
        headers={k: _header_value(v) for k, v in (message.headers or {}).items()},
        content_type=message.content_type,
        reply_to=message.reply_to,
        correlation_id=message.correlation_id,
        message_id=message.message_id,
        exchange=message.exchange,
        routing_key=message.routing_key,
    )


def message_from_envelope(envelope: Envelope) -> Any:
    import aio_pika

    return aio_pika.Message(
        body=envelope.body,
        headers=dict(envelope.headers),
        content_type=envelope.content_type,
        reply_to=envelope.reply_to,
        correlation_id=envelope.correlation_id,
        message_id=envelope.message_id,
        delivery_mode=aio_pika.DeliveryMode.PERSISTENT,
    )


class RabbitMQDelivery:
    def __init__(self, message: Any) -> None:
        self._message = message
        self._envelope = envelope_from_message(message)

    @property
    def envelope(self) -> Envelope:
        return self._envelope

    async def ack(self) -> None:
        await self._message.ack()

    async def reject(self, requeue: bool = False) -> None:
        await self._message.reject(requeue=requeue)


class RabbitMQDeliveryStream:
    """Consumer on a dedicated channel; deliveries are buffered until pulled."""

    def __init__(self, channel: Any, queue: Any) -> None:
        self._channel = channel
        self._queue = queue
        self._buffer: asyncio.Queue[Any] = asyncio.Queue()
        self._consumer_tag: str | None = None
        self._cancelled = False
        self._closed = False

    async def open(self) -> None:
        self._consumer_tag = await self._queue.consume(self._buffer.put, no_ack=False)

    def __aiter__(self) -> AsyncIterator[RabbitMQDelivery]:
        return self

    async def __anext__(self) -> RabbitMQDelivery:
        if self._cancelled:
            raise StopAsyncIteration
        message = await self._buffer.get()
        if message is _CLOSED:
            raise StopAsyncIteration
        return RabbitMQDelivery(message)

    async def cancel(self) -> None:
        """Cancel the consumer and requeue buffered messages; the channel stays open."""
        if self._cancelled:
            return
        self._cancelled = True
        if self._consumer_tag is not None:
            await self._queue.cancel(self._consumer_tag)
        while not self._buffer.empty():
            leftover = self._buffer.get_nowait()
            if leftover is not _CLOSED:
                await leftover.nack(requeue=True)
        self._buffer.put_nowait(_CLOSED)

    async def close(self) -> None:
        await self.cancel()
        if self._closed:
            return
        self._closed = True
        await self._channel.close()


class RabbitMQBrokerAdapter:
    """BrokerPort implementation backed by RabbitMQ via aio-pika."""

    def __init__(
        self,
        host: str = "localhost",
        port: int = 5672,
        username: str = "guest",
        password: str = "guest",
        virtual_host: str = "/",
    ) -> None:
        self._host = host
        self._port = port
        self._username = username
        self._password = password
        self._virtual_host = virtual_host
        self._connection: Any = None
        self._channel: Any = None
        self._streams: set[RabbitMQDeliveryStream] = set()

    @classmethod
    def from_properties(cls, properties: Any) -> RabbitMQBrokerAdapter:
        return cls(
            host=properties.host,
            port=properties.port,
            username=properties.username,
            password=properties.password,
            virtual_host=properties.virtual_host,
        )

    # ── lifecycle ──────────────────────────────────────────────

    async def start(self) -> None:
        import aio_pika

        try:
            self._connection = await aio_pika.connect_robust(
                host=self._host,
                port=self._port,
                login=self._username,
                password=self._password,
                virtualhost=self._virtual_host,
            )
        except (OSError, aio_pika.exceptions.AMQPConnectionError) as exc:
            raise BrokerException(
                f"Cannot connect to RabbitMQ at {self._host}:{self._port}{self._virtual_host}: {exc}",
                code="BROKER_CONNECTION",
            ) from exc
        self._channel = await self._connection.channel(publisher_confirms=True, on_return_raises=True)
        logger.info("rabbitmq_connected", host=self._host, port=self._port, virtual_host=self._virtual_host)

    async def stop(self) -> None:
        for stream in list(self._streams):
            await stream.close()
        self._streams.clear()
        if self._connection is not None:
            await self._connection.close()
            self._connection = None
            self._channel = None

    def _require_channel(self) -> Any:
        if self._channel is None:
            raise BrokerException("RabbitMQ adapter is not started", code="BROKER_STOPPED")
        return self._channel

    # ── topology ───────────────────────────────────────────────

    async def declare_exchange(
        self,
        name: str,
        exchange_type: ExchangeType,
        *,
        durable: bool = True,
        arguments: Mapping[str, Any] | None = None,
    ) -> None:
        import aio_pika

        channel = await self._connection.channel()
        try:
            await channel.declare_exchange(
                name,
                type=exchange_type.value,
                durable=durable,
                arguments=dict(arguments or {}),
            )
        except aio_pika.exceptions.ChannelPreconditionFailed as exc:
            raise TopologyDeclarationException(
                f"Exchange '{name}' already exists with different properties",
                code="PRECONDITION_FAILED",
                context={"exchange": name},
            ) from exc
        finally:
            if not channel.is_closed:
                await channel.close()

    async def declare_queue(
        self,
        name: str = "",
        *,
        durable: bool = True,
        exclusive: bool = False,
        auto_delete: bool = False,
        arguments: Mapping[str, Any] | None = None,
    ) -> str:
        import aio_pika

        channel = self._require_channel() if exclusive else await self._connection.channel()
        try:
            queue = await channel.declare_queue(
                name or None,
                durable=durable,
                exclusive=exclusive,
                auto_delete=auto_delete,
                arguments=dict(arguments or {}),
            )
        except aio_pika.exceptions.ChannelPreconditionFailed as exc:
            raise TopologyDeclarationException(
                f"Queue '{name}' already exists with different properties",
                code="PRECONDITION_FAILED",
                context={"queue": name},
            ) from exc
        finally:
            if not exclusive and not channel.is_closed:
                await channel.close()
        return str(queue.name)

    async def bind_queue(
        self,
        queue: str,
        exchange: str,
        routing_key: str,
        arguments: Mapping[str, Any] | None = None,
    ) -> None:
        channel = self._require_channel()
        target = await channel.get_queue(queue, ensure=False)
        await target.bind(exchange, routing_key=routing_key, arguments=dict(arguments or {}))

    async def queue_depth(self, queue: str) -> int:
        import aio_pika

        channel = await self._connection.channel()
        try:
            declared = await channel.declare_queue(queue, passive=True)
        except aio_pika.exceptions.ChannelNotFoundEntity:
            return 0
        finally:
            if not channel.is_closed:
                await channel.close()
        return int(declared.declaration_result.message_count or 0)

    # ── publish ────────────────────────────────────────────────

    async def publish(
        self,
        exchange: str,
        routing_key: str,
        envelope: Envelope,
        *,
        mandatory: bool = True,
    ) -> None:
        import aio_pika

        channel = self._require_channel()
        target = channel.default_exchange if exchange == "" else await channel.get_exchange(exchange, ensure=False)
        try:
            await target.publish(message_from_envelope(envelope), routing_key=routing_key, mandatory=mandatory)
        except (aio_pika.exceptions.DeliveryError, aio_pika.exceptions.PublishError) as exc:
            raise PublishException(
                f"Publish to exchange='{exchange}' routing_key='{routing_key}' failed",
                code="PUBLISH_FAILED",
                context={"exchange": exchange, "routing_key": routing_key},
            ) from exc

    # ── consume ────────────────────────────────────────────────

    async def consume(self, queue: str, *, prefetch_count: int = 10) -> RabbitMQDeliveryStream:
        if self._connection is None:
            raise BrokerException("RabbitMQ adapter is not started", code="BROKER_STOPPED")
        channel = await self._connection.channel()
        await channel.set_qos(prefetch_count=prefetch_count)
        target = await channel.get_queue(queue, ensure=False)
        stream = RabbitMQDeliveryStream(channel, target)
        await stream.open()
        self._streams.add(stream)
        return stream

    async def listen(self, queue: str, callback: EnvelopeCallback) -> None:
        channel = self._require_channel()
        target = await channel.get_queue(queue, ensure=False)

        async def on_message(message: Any) -> None:
            try:
                await callback(envelope_from_message(message))
            except Exception:
                logger.exception("listener_failed", queue=queue)

        await target.consume(on_message, no_ack=True)
