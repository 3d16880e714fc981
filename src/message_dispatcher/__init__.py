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
"""message-dispatcher — typed command, query, notification and event dispatching over AMQP.

Quick start::

    from message_dispatcher import MessageDispatcher, command, message_listener

    @message_listener
    class Billing:
        @command
        async def charge(self, request: Charge) -> Receipt: ...

    async with MessageDispatcher(properties, listeners=[Billing()]) as dispatcher:
        receipt = await dispatcher.publisher.do_command(Charge(amount=10), Receipt)
"""

from message_dispatcher.config.properties import EntityEventsProperties, MessageDispatcherProperties
from message_dispatcher.core.application import MessageDispatcherApplication, enable_message_dispatcher
from message_dispatcher.core.config import Config, config_properties
from message_dispatcher.kernel.exceptions import (
    ConfigResolutionException,
    DecodingException,
    HandlerNotFoundException,
    HandlerRegistrationException,
    MessageDispatcherException,
    MissingHeaderException,
    NonRetryableException,
    PublishException,
    RemoteResultException,
    ReplyTimeoutException,
    RetryableException,
    TopologyDeclarationException,
)
from message_dispatcher.messaging import (
    Envelope,
    ExchangeType,
    HandlerType,
    Headers,
    InboundContext,
    InMemoryBroker,
    MessageDispatcher,
    MessagePublisher,
    RemoteInvocationResult,
    command,
    entity_events_publish,
    event,
    message_handler,
    message_listener,
    notification,
    query,
)

__version__ = "0.1.0"

__all__ = [
    "Config",
    "ConfigResolutionException",
    "DecodingException",
    "EntityEventsProperties",
    "Envelope",
    "ExchangeType",
    "HandlerNotFoundException",
    "HandlerRegistrationException",
    "HandlerType",
    "Headers",
    "InMemoryBroker",
    "InboundContext",
    "MessageDispatcher",
    "MessageDispatcherApplication",
    "MessageDispatcherException",
    "MessageDispatcherProperties",
    "MessagePublisher",
    "MissingHeaderException",
    "NonRetryableException",
    "PublishException",
    "RemoteInvocationResult",
    "RemoteResultException",
    "ReplyTimeoutException",
    "RetryableException",
    "TopologyDeclarationException",
    "__version__",
    "command",
    "config_properties",
    "entity_events_publish",
    "enable_message_dispatcher",
    "event",
    "message_handler",
    "message_listener",
    "notification",
    "query",
]
