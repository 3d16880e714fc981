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
"""Outbound ports: the broker transport and the payload codec."""

from __future__ import annotations

from collections.abc import AsyncIterator, Awaitable, Callable, Mapping
from typing import Any, Protocol, runtime_checkable

from message_dispatcher.messaging.types import Envelope, ExchangeType

EnvelopeCallback = Callable[[Envelope], Awaitable[None]]


@runtime_checkable
class Delivery(Protocol):
    """One unacknowledged message handed to a consumer."""

    @property
    def envelope(self) -> Envelope: ...

    async def ack(self) -> None: ...

    async def reject(self, requeue: bool = False) -> None: ...


@runtime_checkable
class DeliveryStream(Protocol):
    """Deliveries from one queue on one channel, at most ``prefetch_count`` unacked.

    ``cancel()`` stops new deliveries and ends iteration while deliveries
    already handed out can still be settled; ``close()`` also releases the
    channel, after which settling fails.
    """

    def __aiter__(self) -> AsyncIterator[Delivery]: ...

    async def cancel(self) -> None: ...

    async def close(self) -> None: ...


@runtime_checkable
class BrokerPort(Protocol):
    """AMQP-style broker operations used by the dispatcher.

    Declarations are idempotent: re-declaring an identical object is a no-op
    and a conflicting one raises TopologyDeclarationException.
    """

    async def start(self) -> None: ...

    async def stop(self) -> None: ...

    async def declare_exchange(
        self,
        name: str,
        exchange_type: ExchangeType,
        *,
        durable: bool = True,
        arguments: Mapping[str, Any] | None = None,
    ) -> None: ...

    async def declare_queue(
        self,
        name: str = "",
        *,
        durable: bool = True,
        exclusive: bool = False,
        auto_delete: bool = False,
        arguments: Mapping[str, Any] | None = None,
    ) -> str: ...

    async def bind_queue(
        self,
        queue: str,
        exchange: str,
        routing_key: str,
        arguments: Mapping[str, Any] | None = None,
    ) -> None: ...

    async def publish(
        self,
        exchange: str,
        routing_key: str,
        envelope: Envelope,
        *,
        mandatory: bool = True,
    ) -> None: ...

    async def consume(self, queue: str, *, prefetch_count: int = 10) -> DeliveryStream: ...

    async def listen(self, queue: str, callback: EnvelopeCallback) -> None: ...

    async def queue_depth(self, queue: str) -> int: ...


@runtime_checkable
class Codec(Protocol):
    """Payload serialization contract."""

    content_type: str
    discriminator_headers: frozenset[str]

    def encode(self, payload: Any) -> bytes: ...

    def decode(self, body: bytes, target: Any = ...) -> Any: ...

    def convert(self, value: Any, target: Any = ...) -> Any: ...

    def type_name(self, payload_or_type: Any) -> str: ...
