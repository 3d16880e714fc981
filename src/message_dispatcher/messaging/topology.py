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
"""Broker topology: primary and dead-letter exchanges, queues and bindings."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

import structlog

from message_dispatcher.config.properties import EntityEventsProperties, MessageDispatcherProperties
from message_dispatcher.messaging.ports.outbound import BrokerPort
from message_dispatcher.messaging.types import ExchangeType, check_exchange_arguments

logger = structlog.get_logger("message_dispatcher.topology")

DEAD_LETTER_EXCHANGE_ARG = "x-dead-letter-exchange"
DEAD_LETTER_ROUTING_KEY_ARG = "x-dead-letter-routing-key"


@dataclass(frozen=True)
class ExchangeDeclaration:
    name: str
    exchange_type: ExchangeType
    durable: bool = True
    arguments: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class QueueDeclaration:
    name: str
    durable: bool = True
    arguments: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class BindingDeclaration:
    queue: str
    exchange: str
    routing_key: str


@dataclass(frozen=True)
class Declarables:
    """One exchange, one queue and the binding between them."""

    exchange: ExchangeDeclaration
    queue: QueueDeclaration
    binding: BindingDeclaration


def build_exchange(
    name: str,
    durable: bool,
    exchange_type: ExchangeType | str,
    arguments: Mapping[str, Any] | None = None,
) -> ExchangeDeclaration:
    """Build an exchange declaration, enforcing the kind/arguments contract."""
    kind = ExchangeType.parse(exchange_type)
    args = dict(arguments or {})
    check_exchange_arguments(name, kind, args)
    return ExchangeDeclaration(name=name, exchange_type=kind, durable=durable, arguments=args)


class TopologyBuilder:
    """Derives the dispatcher's declarables from properties and declares them."""

    def __init__(self, broker: BrokerPort, properties: MessageDispatcherProperties) -> None:
        self._broker = broker
        self._properties = properties

    def primary(self) -> Declarables:
        p = self._properties
        exchange = build_exchange(
            p.exchange_name, p.exchange_durable, p.exchange_type, p.exchange_consistent_hash_arguments
        )
        queue = QueueDeclaration(
            name=str(p.queue_name),
            durable=p.queue_durable,
            arguments={
                DEAD_LETTER_EXCHANGE_ARG: p.dead_letter_exchange_name,
                DEAD_LETTER_ROUTING_KEY_ARG: p.dead_letter_routing_key,
            },
        )
        return Declarables(exchange, queue, BindingDeclaration(queue.name, exchange.name, str(p.routing_key)))

    def dead_letter(self) -> Declarables:
        p = self._properties
        exchange = build_exchange(
            str(p.dead_letter_exchange_name),
            p.dead_letter_exchange_durable,
            p.dead_letter_exchange_type,
            p.dead_letter_exchange_consistent_hash_arguments,
        )
        queue = QueueDeclaration(name=str(p.dead_letter_queue_name), durable=True)
        return Declarables(
            exchange, queue, BindingDeclaration(queue.name, exchange.name, str(p.dead_letter_routing_key))
        )

    def entity_events(self, events: EntityEventsProperties | None = None) -> ExchangeDeclaration:
        events = events or self._properties.entity_events
        return build_exchange(str(events.exchange), True, events.exchange_type)

    async def declare_exchange(self, exchange: ExchangeDeclaration) -> None:
        await self._broker.declare_exchange(
            exchange.name,
            exchange.exchange_type,
            durable=exchange.durable,
            arguments=exchange.arguments,
        )
        logger.debug("exchange_declared", exchange=exchange.name, type=exchange.exchange_type.value)

    async def _declare(self, declarables: Declarables) -> None:
        await self.declare_exchange(declarables.exchange)
        await self._broker.declare_queue(
            declarables.queue.name,
            durable=declarables.queue.durable,
            arguments=declarables.queue.arguments,
        )
        await self._broker.bind_queue(
            declarables.binding.queue,
            declarables.binding.exchange,
            declarables.binding.routing_key,
        )

    async def declare(self) -> tuple[Declarables, Declarables]:
        """Declare dead-letter then primary objects. Safe to repeat."""
        dead_letter = self.dead_letter()
        primary = self.primary()
        await self._declare(dead_letter)
        await self._declare(primary)
        logger.info(
            "topology_declared",
            exchange=primary.exchange.name,
            exchange_type=primary.exchange.exchange_type.value,
            queue=primary.queue.name,
            routing_key=primary.binding.routing_key,
            dead_letter_exchange=dead_letter.exchange.name,
            dead_letter_queue=dead_letter.queue.name,
        )
        return primary, dead_letter
