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
"""Messaging data types: reserved headers, envelopes and reply payloads."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from message_dispatcher.kernel.types import ExchangeType, HandlerType, check_exchange_arguments

__all__ = [
    "Envelope",
    "ExchangeType",
    "HandlerType",
    "Headers",
    "RemoteInvocationResult",
    "check_exchange_arguments",
]


class Headers:
    """Reserved header names, all under a single prefix."""

    PREFIX = "x-message-dispatcher-"

    HANDLER_TYPE = PREFIX + "handler-type"
    BODY_TYPE = PREFIX + "body-type"
    TIMESTAMP = PREFIX + "timestamp"
    REMOTE_SERVICE = PREFIX + "remoteService"
    RESPONSE_FROM = PREFIX + "response-from"
    RESPONSE_TIMESTAMP = PREFIX + "response-timestamp"
    EXCEPTION_MESSAGE = PREFIX + "exception-message"
    EXCEPTION_ROOT_CAUSE = PREFIX + "exception-root-cause"
    FAILED_AT = PREFIX + "failed-at"
    RETRY_COUNT = PREFIX + "retry-count"


@dataclass
class Envelope:
    """A message as it travels through the broker: body bytes, headers and transport properties."""

    body: bytes
    headers: dict[str, Any] = field(default_factory=dict)
    content_type: str | None = None
    reply_to: str | None = None
    correlation_id: str | None = None
    message_id: str | None = None
    exchange: str | None = None
    routing_key: str | None = None

    @property
    def handler_type(self) -> HandlerType | None:
        value = self.headers.get(Headers.HANDLER_TYPE)
        return None if value is None else HandlerType.parse(value)

    def copy(self, **changes: Any) -> Envelope:
        """Copy with a fresh headers dict so mutations never leak back."""
        changes.setdefault("headers", dict(self.headers))
        return replace(self, **changes)


class RemoteInvocationResult(BaseModel):
    """Reply payload for request-reply: either a value or a remote failure."""

    model_config = ConfigDict(populate_by_name=True)

    value: Any = None
    exception: str | None = None
    exception_type: str | None = Field(default=None, alias="exceptionType")
    remote_service: str | None = Field(default=None, alias="remoteService")

    @property
    def has_exception(self) -> bool:
        return self.exception is not None or self.exception_type is not None

    @classmethod
    def of_value(cls, value: Any, remote_service: str | None = None) -> RemoteInvocationResult:
        return cls(value=value, remote_service=remote_service)

    @classmethod
    def of_exception(cls, exc: BaseException, remote_service: str | None = None) -> RemoteInvocationResult:
        return cls(
            exception=str(exc) or type(exc).__name__,
            exception_type=type(exc).__name__,
            remote_service=remote_service,
        )
