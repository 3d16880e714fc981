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
"""Retry policy and dead-lettering for failed deliveries."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

import structlog

from message_dispatcher.config.properties import MessageDispatcherProperties
from message_dispatcher.kernel.exceptions import NonRetryableException
from message_dispatcher.messaging.ports.outbound import BrokerPort
from message_dispatcher.messaging.types import Envelope, Headers

logger = structlog.get_logger("message_dispatcher.retry")


def utc_now_iso() -> str:
    return datetime.now(UTC).isoformat()


@dataclass(frozen=True)
class RetryPolicy:
    """Stateless exponential backoff.

    Attempts are 1-based. The wait after failed attempt ``n`` is
    ``min(initial_interval * multiplier ** (n - 1), max_interval)`` seconds.
    """

    max_attempts: int = 3
    initial_interval: float = 2.0
    multiplier: float = 2.0
    max_interval: float = 10.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.initial_interval < 0 or self.max_interval < 0:
            raise ValueError("intervals must be >= 0")
        if self.multiplier < 1:
            raise ValueError("multiplier must be >= 1")

    def backoff(self, attempt: int) -> float:
        return min(self.initial_interval * self.multiplier ** (attempt - 1), self.max_interval)

    def can_retry(self, attempt: int) -> bool:
        return attempt < self.max_attempts

    @classmethod
    def from_properties(cls, properties: MessageDispatcherProperties) -> RetryPolicy:
        return cls(
            max_attempts=properties.max_retry_attempts,
            initial_interval=properties.initial_interval / 1000,
            multiplier=properties.multiplier,
            max_interval=properties.max_interval / 1000,
        )


def root_cause(exc: BaseException) -> BaseException:
    """Follow the explicit (then implicit) cause chain to the innermost exception."""
    current = exc
    seen = {id(current)}
    while True:
        nxt = current.__cause__ or (None if current.__suppress_context__ else current.__context__)
        if nxt is None or id(nxt) in seen:
            return current
        seen.add(id(nxt))
        current = nxt


def is_retryable(exc: BaseException) -> bool:
    return not isinstance(exc, NonRetryableException)


def retry_count(headers: dict[str, Any]) -> int:
    value = headers.get(Headers.RETRY_COUNT)
    if value is None:
        return 0
    try:
        return int(value.decode() if isinstance(value, bytes) else value)
    except (TypeError, ValueError):
        return 0


def increment_retry_count(headers: dict[str, Any]) -> int:
    """Bump the retry-count header in place (1 when absent) and return the new value."""
    count = retry_count(headers) + 1
    headers[Headers.RETRY_COUNT] = count
    return count


class DeadLetterPublisher:
    """Republishes failed envelopes to the dead-letter exchange with failure headers."""

    def __init__(self, broker: BrokerPort, exchange: str, routing_key: str) -> None:
        self._broker = broker
        self._exchange = exchange
        self._routing_key = routing_key

    @classmethod
    def from_properties(cls, broker: BrokerPort, properties: MessageDispatcherProperties) -> DeadLetterPublisher:
        return cls(broker, str(properties.dead_letter_exchange_name), str(properties.dead_letter_routing_key))

    async def recover(self, envelope: Envelope, exc: BaseException) -> Envelope:
        """Publish a copy of ``envelope`` to the dead-letter exchange and return it.

        ``exception-root-cause`` carries the class name of the innermost
        exception in the ``__cause__``/``__context__`` chain: a missing routing
        header records ``MissingHeaderException`` and a body the payload model
        rejects records ``ValidationError``. ``exception-message`` carries its
        text.
        """
        cause = root_cause(exc)
        dead = envelope.copy(exchange=self._exchange, routing_key=self._routing_key)
        dead.headers[Headers.EXCEPTION_ROOT_CAUSE] = type(cause).__name__
        dead.headers[Headers.EXCEPTION_MESSAGE] = str(cause)
        dead.headers[Headers.FAILED_AT] = utc_now_iso()
        if retry_count(dead.headers) < 1:
            dead.headers[Headers.RETRY_COUNT] = 1

        await self._broker.publish(self._exchange, self._routing_key, dead, mandatory=True)
        logger.warning(
            "message_dead_lettered",
            exchange=self._exchange,
            routing_key=self._routing_key,
            root_cause=type(cause).__name__,
            error=str(cause),
            retry_count=dead.headers[Headers.RETRY_COUNT],
            correlation_id=envelope.correlation_id,
        )
        return dead
