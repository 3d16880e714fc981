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
"""Unified exception hierarchy for the message dispatcher.

All dispatcher exceptions inherit from MessageDispatcherException so that
callers can catch one type for every failure raised by the library, or a
specific subclass for targeted handling.

Categories:
- Startup failures: configuration, topology and handler registration errors.
  These are fatal and stop the runtime from starting.
- Routing failures: raised while turning an inbound delivery into a handler
  call. They are never retried and always end on the dead-letter queue.
- Handler failures: user code may raise RetryableException or
  NonRetryableException to control the retry path explicitly.
- Outbound failures: publish, reply timeout and remote result errors raised
  to the caller of the publisher.
"""

from __future__ import annotations

from typing import Any

# =============================================================================
# Base Exception
# =============================================================================


class MessageDispatcherException(Exception):
    """Base exception for all dispatcher errors.

    Args:
        message: Human-readable error description.
        code: Machine-readable error code (e.g. "ROUTING_001").
        context: Arbitrary key-value pairs for error context and debugging.
    """

    def __init__(
        self,
        message: str,
        code: str | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.context: dict[str, Any] = context if context is not None else {}


# =============================================================================
# Retry classification
# =============================================================================


class RetryableException(MessageDispatcherException):
    """Marks a handler failure as explicitly retryable.

    A reply-capable delivery that fails with this exception goes through the
    retry loop instead of being answered with the failure straight away.
    """


class NonRetryableException(MessageDispatcherException):
    """Marks a failure as terminal: no retry, straight to the dead-letter queue."""


# =============================================================================
# Startup Exceptions
# =============================================================================


class ConfigResolutionException(MessageDispatcherException):
    """Configuration could not be resolved (bad exchange type, missing arguments...)."""


class TopologyDeclarationException(MessageDispatcherException):
    """An exchange, queue or binding conflicts with an existing broker object."""


class HandlerRegistrationException(MessageDispatcherException):
    """A handler method could not be registered."""

    def __init__(self, message: str, handler: str | None = None) -> None:
        super().__init__(message, code="HANDLER_REGISTRATION", context={"handler": handler})
        self.handler = handler


class HandlerNoInputParameterException(HandlerRegistrationException):
    """A handler method declares no payload parameter."""

    def __init__(self, handler: str) -> None:
        super().__init__(f"Handler {handler} must declare exactly one payload parameter, found none", handler)


class HandlerMultipleInputParametersException(HandlerRegistrationException):
    """A handler method declares more than one payload parameter."""

    def __init__(self, handler: str, count: int) -> None:
        super().__init__(
            f"Handler {handler} must declare exactly one payload parameter, found {count}",
            handler,
        )
        self.count = count


class HandlerDuplicatedInputParameterException(HandlerRegistrationException):
    """Two handlers were registered for the same (handler type, body type) key."""

    def __init__(self, handler: str, handler_type: str, body_type: str, existing: str) -> None:
        super().__init__(
            f"Handler {handler} duplicates {handler_type}/{body_type} already handled by {existing}",
            handler,
        )
        self.handler_type = handler_type
        self.body_type = body_type
        self.existing = existing


# =============================================================================
# Routing Exceptions
# =============================================================================


class RoutingException(NonRetryableException):
    """An inbound delivery could not be turned into a handler invocation."""


class MissingHeaderException(RoutingException):
    """A reserved header required for routing is absent."""

    def __init__(self, header: str) -> None:
        super().__init__(f"Missing required header '{header}'", code="MISSING_HEADER", context={"header": header})
        self.header = header


class HandlerNotFoundException(RoutingException):
    """No handler is registered for the (handler type, body type) key."""

    def __init__(self, handler_type: str, body_type: str) -> None:
        super().__init__(
            f"No handler registered for {handler_type}/{body_type}",
            code="HANDLER_NOT_FOUND",
            context={"handler_type": handler_type, "body_type": body_type},
        )
        self.handler_type = handler_type
        self.body_type = body_type


class DecodingException(RoutingException):
    """A message body could not be decoded into the handler's payload type."""


class EncodingException(MessageDispatcherException):
    """A payload could not be encoded into a message body."""


# =============================================================================
# Outbound Exceptions
# =============================================================================


class BrokerException(MessageDispatcherException):
    """The broker connection is unavailable or failed."""


class PublishException(MessageDispatcherException):
    """A message was returned as unroutable or negatively confirmed."""


class ReplyTimeoutException(MessageDispatcherException):
    """No reply arrived within the configured reply timeout."""

    def __init__(self, correlation_id: str, timeout: float) -> None:
        super().__init__(
            f"No reply for correlation id {correlation_id} within {timeout:.3f}s",
            code="REPLY_TIMEOUT",
            context={"correlation_id": correlation_id, "timeout": timeout},
        )
        self.correlation_id = correlation_id
        self.timeout = timeout


class RemoteResultException(MessageDispatcherException):
    """The remote handler failed; carries the remote failure taxonomy."""

    def __init__(self, exception_type: str | None, message: str | None, remote_service: str | None) -> None:
        super().__init__(
            f"{exception_type}: {message} (remote service: {remote_service})",
            code="REMOTE_RESULT",
            context={
                "exception_type": exception_type,
                "remote_service": remote_service,
            },
        )
        self.exception_type = exception_type
        self.remote_message = message
        self.remote_service = remote_service
