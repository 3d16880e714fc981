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
"""Messaging — typed dispatching of commands, queries, notifications and events."""

from message_dispatcher.messaging.adapters.memory import InMemoryBroker
from message_dispatcher.messaging.auto_configuration import MessageDispatcher, create_broker
from message_dispatcher.messaging.codec import JsonCodec
from message_dispatcher.messaging.consumer import ConsumerLoop, DeliveryOutcome
from message_dispatcher.messaging.context import InboundContext
from message_dispatcher.messaging.decorators import (
    command,
    entity_events_publish,
    event,
    message_handler,
    message_listener,
    notification,
    query,
)
from message_dispatcher.messaging.ports.outbound import BrokerPort, Codec, Delivery, DeliveryStream
from message_dispatcher.messaging.publisher import MessagePublisher, PendingReplies
from message_dispatcher.messaging.registry import HandlerMethod, HandlerRegistry
from message_dispatcher.messaging.retry import DeadLetterPublisher, RetryPolicy
from message_dispatcher.messaging.router import MessageRouter
from message_dispatcher.messaging.topology import TopologyBuilder, build_exchange
from message_dispatcher.messaging.types import (
    Envelope,
    ExchangeType,
    HandlerType,
    Headers,
    RemoteInvocationResult,
)

__all__ = [
    "BrokerPort",
    "Codec",
    "ConsumerLoop",
    "DeadLetterPublisher",
    "Delivery",
    "DeliveryOutcome",
    "DeliveryStream",
    "Envelope",
    "ExchangeType",
    "HandlerMethod",
    "HandlerRegistry",
    "HandlerType",
    "Headers",
    "InMemoryBroker",
    "InboundContext",
    "JsonCodec",
    "MessageDispatcher",
    "MessagePublisher",
    "MessageRouter",
    "PendingReplies",
    "RemoteInvocationResult",
    "RetryPolicy",
    "TopologyBuilder",
    "build_exchange",
    "command",
    "create_broker",
    "entity_events_publish",
    "event",
    "message_handler",
    "message_listener",
    "notification",
    "query",
]
