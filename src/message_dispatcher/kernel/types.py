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
"""Closed enumerations shared by configuration and messaging.

This module depends on nothing but the kernel exceptions, so configuration
models can use the enums without importing the messaging runtime.
"""

from __future__ import annotations

from collections.abc import Mapping
from enum import Enum
from typing import Any

from message_dispatcher.kernel.exceptions import ConfigResolutionException


class HandlerType(str, Enum):
    """Semantic kind of a message.

    Commands mutate state and may reply. Queries are read-only and always
    reply. Notifications and events are fire-and-forget.
    """

    COMMAND = "COMMAND"
    QUERY = "QUERY"
    NOTIFICATION = "NOTIFICATION"
    EVENT = "EVENT"

    @property
    def expects_reply(self) -> bool:
        return self in (HandlerType.COMMAND, HandlerType.QUERY)

    @classmethod
    def parse(cls, value: Any) -> HandlerType | None:
        """Parse a header value, returning None for unknown kinds."""
        if isinstance(value, HandlerType):
            return value
        if isinstance(value, bytes):
            value = value.decode()
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            return None


class ExchangeType(str, Enum):
    """Exchange kinds understood by the broker, by their broker type string."""

    TOPIC = "topic"
    DIRECT = "direct"
    FANOUT = "fanout"
    HEADERS = "headers"
    CONSISTENT_HASH = "x-consistent-hash"

    @property
    def requires_arguments(self) -> bool:
        return self is ExchangeType.CONSISTENT_HASH

    @classmethod
    def parse(cls, value: Any) -> ExchangeType:
        """Accept a member, a member name (any case, - or _) or a broker type string."""
        if isinstance(value, ExchangeType):
            return value
        text = str(value).strip()
        for member in cls:
            if text == member.value:
                return member
        normalized = text.upper().replace("-", "_")
        if normalized in cls.__members__:
            return cls.__members__[normalized]
        raise ConfigResolutionException(
            f"Unknown exchange type '{value}'",
            code="EXCHANGE_TYPE",
            context={"value": value, "supported": [m.value for m in cls]},
        )


def check_exchange_arguments(name: str, exchange_type: ExchangeType, arguments: Mapping[str, Any] | None) -> None:
    """Consistent-hash exchanges need arguments; every other kind must not carry any."""
    if exchange_type.requires_arguments and not arguments:
        raise ConfigResolutionException(
            f"Exchange '{name}' of type {exchange_type.value} requires non-empty arguments",
            code="EXCHANGE_ARGUMENTS",
            context={"exchange": name, "type": exchange_type.value},
        )
    if not exchange_type.requires_arguments and arguments:
        raise ConfigResolutionException(
            f"Exchange '{name}' of type {exchange_type.value} does not accept arguments",
            code="EXCHANGE_ARGUMENTS",
            context={"exchange": name, "type": exchange_type.value},
        )
