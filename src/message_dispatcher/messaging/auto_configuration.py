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
"""Dispatcher runtime: wires broker, registry, topology, consumer and publisher."""

from __future__ import annotations

import asyncio
import importlib.util
from collections.abc import Iterable
from types import TracebackType
from typing import Any

import structlog

from message_dispatcher.config.properties import MessageDispatcherProperties
from message_dispatcher.core.config import Config
from message_dispatcher.kernel.lifecycle import Lifecycle
from message_dispatcher.messaging.codec import JsonCodec
from message_dispatcher.messaging.consumer import ConsumerLoop, Sleep
from message_dispatcher.messaging.ports.outbound import BrokerPort, Codec
from message_dispatcher.messaging.publisher import MessagePublisher
from message_dispatcher.messaging.registry import HandlerRegistry
from message_dispatcher.messaging.router import MessageRouter
from message_dispatcher.messaging.topology import TopologyBuilder
from message_dispatcher.messaging.types import HandlerType

logger = structlog.get_logger("message_dispatcher.runtime")


def detect_provider() -> str:
    """Pick RabbitMQ when aio-pika is importable, else the in-memory broker."""
    if importlib.util.find_spec("aio_pika") is not None:
        return "rabbitmq"
    return "memory"


def create_broker(properties: MessageDispatcherProperties) -> BrokerPort:
    provider = properties.provider if properties.provider != "auto" else detect_provider()

    if provider == "rabbitmq":
        from message_dispatcher.messaging.adapters.rabbitmq import RabbitMQBrokerAdapter

        return RabbitMQBrokerAdapter.from_properties(properties)

    from message_dispatcher.messaging.adapters.memory import InMemoryBroker

    return InMemoryBroker()


class MessageDispatcher:
    """The installed dispatcher runtime.

    Startup order: broker, handler registry (discover and freeze), topology,
    consumer (when the default listener is enabled), publisher, entity-event
    bridge (when enabled). Shutdown runs in reverse. A failure during startup
    stops whatever already started and re-raises.
    """

    def __init__(
        self,
        properties: MessageDispatcherProperties | None = None,
        *,
        config: Config | None = None,
        broker: BrokerPort | None = None,
        codec: Codec | None = None,
        listeners: Iterable[Any] = (),
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        if properties is None:
            properties = MessageDispatcherProperties.from_config(config or Config.defaults())
        self.properties = properties
        self.broker: BrokerPort = broker or create_broker(properties)
        self.codec: Codec = codec or JsonCodec()
        self.registry = HandlerRegistry()
        self._listeners: list[Any] = list(listeners)

        self.router = MessageRouter(
            self.registry,
            self.codec,
            log_messages=properties.logging.message_router.enabled,
        )
        self.topology = TopologyBuilder(self.broker, properties)
        self.publisher = MessagePublisher(self.broker, properties, self.codec)
        self.consumer: ConsumerLoop | None = None
        if properties.default_listener_enabled:
            self.consumer = ConsumerLoop(self.broker, self.router, properties, codec=self.codec, sleep=sleep)

        self.entity_events: Any = None
        if properties.entity_events.enabled:
            from message_dispatcher.data.entity_events import EntityEventBridge

            self.entity_events = EntityEventBridge(self.publisher, properties.entity_events)

        self._started: list[Lifecycle] = []

    @property
    def running(self) -> bool:
        return bool(self._started)

    # ── handler registration ───────────────────────────────────

    def add_listener(self, listener: Any) -> None:
        """Add a ``@message_listener`` object; discovered at start()."""
        self._listeners.append(listener)

    def register(self, handler_type: HandlerType | str, func: Any, payload_type: type | str | None = None) -> None:
        """Register a plain function handler before start()."""
        self.registry.register(handler_type, func, payload_type)

    # ── lifecycle ──────────────────────────────────────────────

    async def start(self) -> None:
        if self._started:
            return
        try:
            await self.broker.start()
            self._started.append(self.broker)

            if not self.registry.frozen:
                discovered = self.registry.discover(self._listeners)
                self.registry.freeze()
                logger.info("handlers_registered", discovered=discovered, total=self.registry.handler_count)

            await self.topology.declare()

            if self.consumer is not None:
                await self.consumer.start()
                self._started.append(self.consumer)
            else:
                logger.info("default_listener_disabled", queue=self.properties.queue_name)

            await self.publisher.start()
            self._started.append(self.publisher)

            if self.entity_events is not None:
                await self.topology.declare_exchange(self.topology.entity_events())
                self.entity_events.register()

            if self.properties.logging.message_router.enabled:
                logger.warning("message_router_logging_enabled", detail="every routed message is logged at debug")
        except Exception:
            logger.error("message_dispatcher_start_failed", app=self.properties.application_name)
            await self.stop()
            raise

        logger.info(
            "message_dispatcher_started",
            app=self.properties.application_name,
            exchange=self.properties.exchange_name,
            queue=self.properties.queue_name,
            handlers=self.registry.handler_count,
        )

    async def stop(self) -> None:
        if self.entity_events is not None:
            self.entity_events.unregister()
            await self.entity_events.drain()
        while self._started:
            component = self._started.pop()
            try:
                await component.stop()
            except Exception:
                logger.exception("component_stop_failed", component=type(component).__name__)
        logger.info("message_dispatcher_stopped", app=self.properties.application_name)

    async def __aenter__(self) -> MessageDispatcher:
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.stop()
