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
"""Outbound publisher: fire-and-forget sends and correlated request-reply.

Every publish is stamped with the reserved headers (handler type, body type,
timestamp, producing service), carries the configured mapped headers of the
delivery being handled (if any), and goes out with the mandatory flag so
unroutable messages fail the send instead of vanishing.

Request-reply uses one exclusive, server-named reply queue per publisher.
Each request gets a correlation id and a one-shot future; a reply completes
the future exactly once and a late reply, after the timeout discarded the
slot, is dropped.
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import Mapping
from typing import Any

import structlog

from message_dispatcher.config.properties import MessageDispatcherProperties
from message_dispatcher.kernel.exceptions import BrokerException, RemoteResultException, ReplyTimeoutException
from message_dispatcher.messaging.codec import JsonCodec
from message_dispatcher.messaging.context import InboundContext
from message_dispatcher.messaging.ports.outbound import BrokerPort, Codec
from message_dispatcher.messaging.retry import utc_now_iso
from message_dispatcher.messaging.types import Envelope, HandlerType, Headers, RemoteInvocationResult

logger = structlog.get_logger("message_dispatcher.publisher")


class PendingReplies:
    """Correlation id -> one-shot future, touched only from the event loop thread."""

    def __init__(self) -> None:
        self._slots: dict[str, asyncio.Future[Envelope]] = {}

    def allocate(self, correlation_id: str) -> asyncio.Future[Envelope]:
        future: asyncio.Future[Envelope] = asyncio.get_running_loop().create_future()
        self._slots[correlation_id] = future
        return future

    def complete(self, correlation_id: str, envelope: Envelope) -> bool:
        """Resolve the slot; False when it is unknown, expired or already resolved."""
        future = self._slots.pop(correlation_id, None)
        if future is None or future.done():
            return False
        future.set_result(envelope)
        return True

    def discard(self, correlation_id: str) -> None:
        future = self._slots.pop(correlation_id, None)
        if future is not None and not future.done():
            future.cancel()

    def fail_all(self, exc: BaseException) -> None:
        for future in self._slots.values():
            if not future.done():
                future.set_exception(exc)
        self._slots.clear()

    def __len__(self) -> int:
        return len(self._slots)

    def __contains__(self, correlation_id: object) -> bool:
        return correlation_id in self._slots


class MessagePublisher:
    """Public API for sending events, commands, notifications and queries."""

    def __init__(
        self,
        broker: BrokerPort,
        properties: MessageDispatcherProperties,
        codec: Codec | None = None,
    ) -> None:
        self._broker = broker
        self._properties = properties
        self._codec: Codec = codec or JsonCodec()
        self._pending = PendingReplies()
        self._reply_queue: str | None = None
        self._reply_lock = asyncio.Lock()

    @property
    def pending_replies(self) -> PendingReplies:
        return self._pending

    @property
    def reply_queue(self) -> str | None:
        return self._reply_queue

    async def start(self) -> None:
        """Nothing to open eagerly; the reply queue is declared on first request."""

    async def stop(self) -> None:
        self._pending.fail_all(BrokerException("Publisher stopped while awaiting reply", code="PUBLISHER_STOPPED"))
        self._reply_queue = None

    # ── fire-and-forget ────────────────────────────────────────

    async def send_event(
        self,
        body: Any,
        routing_key: str | None = None,
        exchange: str | None = None,
        *,
        body_type: str | None = None,
        headers: Mapping[str, Any] | None = None,
    ) -> None:
        await self._send(HandlerType.EVENT, body, routing_key, exchange, body_type, headers)

    async def send_command(
        self,
        body: Any,
        routing_key: str | None = None,
        exchange: str | None = None,
        *,
        body_type: str | None = None,
        headers: Mapping[str, Any] | None = None,
    ) -> None:
        await self._send(HandlerType.COMMAND, body, routing_key, exchange, body_type, headers)

    async def send_notification(
        self,
        body: Any,
        routing_key: str | None = None,
        exchange: str | None = None,
        *,
        body_type: str | None = None,
        headers: Mapping[str, Any] | None = None,
    ) -> None:
        await self._send(HandlerType.NOTIFICATION, body, routing_key, exchange, body_type, headers)

    # ── request-reply ──────────────────────────────────────────

    async def do_command(
        self,
        body: Any,
        response_type: Any = None,
        routing_key: str | None = None,
        exchange: str | None = None,
        *,
        body_type: str | None = None,
        headers: Mapping[str, Any] | None = None,
    ) -> Any:
        return await self._request(HandlerType.COMMAND, body, response_type, routing_key, exchange, body_type, headers)

    async def do_query(
        self,
        body: Any,
        response_type: Any = None,
        routing_key: str | None = None,
        exchange: str | None = None,
        *,
        body_type: str | None = None,
        headers: Mapping[str, Any] | None = None,
    ) -> Any:
        return await self._request(HandlerType.QUERY, body, response_type, routing_key, exchange, body_type, headers)

    # ── internals ──────────────────────────────────────────────

    def build_envelope(
        self,
        handler_type: HandlerType,
        body: Any,
        *,
        body_type: str | None = None,
        headers: Mapping[str, Any] | None = None,
    ) -> Envelope:
        """Encode the body and stamp the outbound headers."""
        outbound: dict[str, Any] = dict(headers or {})
        InboundContext.copy_mapped_headers_into(outbound, self._properties.mapped_headers)
        outbound[Headers.HANDLER_TYPE] = handler_type.value
        outbound[Headers.BODY_TYPE] = body_type or self._codec.type_name(body)
        outbound[Headers.TIMESTAMP] = utc_now_iso()
        outbound[Headers.REMOTE_SERVICE] = self._properties.application_name
        for name in self._codec.discriminator_headers:
            outbound.pop(name, None)
        return Envelope(
            body=self._codec.encode(body),
            headers=outbound,
            content_type=self._codec.content_type,
            message_id=uuid.uuid4().hex,
        )

    async def _send(
        self,
        handler_type: HandlerType,
        body: Any,
        routing_key: str | None,
        exchange: str | None,
        body_type: str | None,
        headers: Mapping[str, Any] | None,
        *,
        reply_to: str | None = None,
        correlation_id: str | None = None,
    ) -> Envelope:
        envelope = self.build_envelope(handler_type, body, body_type=body_type, headers=headers)
        envelope.reply_to = reply_to
        envelope.correlation_id = correlation_id
        target_exchange = self._properties.exchange_name if exchange is None else exchange
        target_key = str(self._properties.routing_key) if routing_key is None else routing_key

        await self._broker.publish(target_exchange, target_key, envelope, mandatory=True)
        logger.debug(
            "message_published",
            handler_type=handler_type.value,
            body_type=envelope.headers[Headers.BODY_TYPE],
            exchange=target_exchange,
            routing_key=target_key,
            correlation_id=correlation_id,
        )
        return envelope

    async def _ensure_reply_queue(self) -> str:
        async with self._reply_lock:
            if self._reply_queue is None:
                queue = await self._broker.declare_queue("", durable=False, exclusive=True, auto_delete=True)
                await self._broker.listen(queue, self._on_reply)
                self._reply_queue = queue
                logger.debug("reply_queue_declared", queue=queue)
            return self._reply_queue

    async def _on_reply(self, envelope: Envelope) -> None:
        if not envelope.correlation_id:
            logger.warning("reply_without_correlation_id", headers=dict(envelope.headers))
            return
        if not self._pending.complete(envelope.correlation_id, envelope):
            logger.debug("late_reply_dropped", correlation_id=envelope.correlation_id)

    async def _request(
        self,
        handler_type: HandlerType,
        body: Any,
        response_type: Any,
        routing_key: str | None,
        exchange: str | None,
        body_type: str | None,
        headers: Mapping[str, Any] | None,
    ) -> Any:
        reply_queue = await self._ensure_reply_queue()
        correlation_id = uuid.uuid4().hex
        timeout = self._properties.reply_timeout_seconds
        slot = self._pending.allocate(correlation_id)
        try:
            await self._send(
                handler_type,
                body,
                routing_key,
                exchange,
                body_type,
                headers,
                reply_to=reply_queue,
                correlation_id=correlation_id,
            )
            try:
                reply = await asyncio.wait_for(slot, timeout=timeout)
            except TimeoutError:
                logger.warning("reply_timeout", correlation_id=correlation_id, timeout=timeout)
                raise ReplyTimeoutException(correlation_id, timeout) from None
        finally:
            self._pending.discard(correlation_id)

        result = self._codec.decode(reply.body, RemoteInvocationResult)
        if result.has_exception:
            raise RemoteResultException(result.exception_type, result.exception, result.remote_service)
        return self._codec.convert(result.value, response_type)
