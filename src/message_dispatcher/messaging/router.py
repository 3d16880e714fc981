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
"""Inbound router: headers -> handler -> decoded payload -> invocation."""

from __future__ import annotations

from typing import Any

import structlog

from message_dispatcher.kernel.exceptions import HandlerNotFoundException, MissingHeaderException
from message_dispatcher.messaging.codec import JsonCodec
from message_dispatcher.messaging.context import InboundContext
from message_dispatcher.messaging.ports.outbound import Codec
from message_dispatcher.messaging.registry import HandlerRegistry
from message_dispatcher.messaging.types import Envelope, HandlerType, Headers

logger = structlog.get_logger("message_dispatcher.router")


def _header_str(value: Any) -> str:
    return value.decode() if isinstance(value, bytes) else str(value)


class MessageRouter:
    """Routes one envelope to its handler and returns the handler's value.

    Routing failures raise :class:`MissingHeaderException`,
    :class:`HandlerNotFoundException` or :class:`DecodingException` before
    any user code runs. Handler exceptions propagate unchanged.
    """

    def __init__(
        self,
        registry: HandlerRegistry,
        codec: Codec | None = None,
        *,
        log_messages: bool = False,
    ) -> None:
        self._registry = registry
        self._codec: Codec = codec or JsonCodec()
        self._log_messages = log_messages

    async def route(self, envelope: Envelope) -> Any:
        with InboundContext.scope(envelope.headers):
            for name in (Headers.BODY_TYPE, Headers.HANDLER_TYPE):
                if envelope.headers.get(name) in (None, ""):
                    raise MissingHeaderException(name)

            raw_kind = _header_str(envelope.headers[Headers.HANDLER_TYPE])
            body_type = _header_str(envelope.headers[Headers.BODY_TYPE])
            kind = HandlerType.parse(raw_kind)
            if kind is None:
                raise HandlerNotFoundException(raw_kind, body_type)

            handler = self._registry.get_handler(kind, body_type)
            payload = self._codec.decode(envelope.body, handler.payload_type)

            if self._log_messages:
                logger.debug(
                    "routing_message",
                    handler=handler.name,
                    handler_type=kind.value,
                    body_type=body_type,
                    exchange=envelope.exchange,
                    routing_key=envelope.routing_key,
                    correlation_id=envelope.correlation_id,
                    headers=dict(envelope.headers),
                    body=envelope.body.decode("utf-8", errors="replace"),
                )

            return await handler.invoke(payload)
