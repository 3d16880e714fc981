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
"""Dispatcher configuration properties (message.dispatcher.*).

Keys are kebab-case in YAML/TOML and snake_case in Python; both spellings are
accepted when building the models directly. Derived defaults (queue name,
routing key, dead-letter names, entity-events exchange) are filled in after
validation so that overriding one key moves every key derived from it.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from message_dispatcher.core.config import Config, config_properties
from message_dispatcher.kernel.exceptions import ConfigResolutionException
from message_dispatcher.kernel.types import ExchangeType, check_exchange_arguments


def _kebab(name: str) -> str:
    return name.replace("_", "-")


class _KebabModel(BaseModel):
    model_config = ConfigDict(alias_generator=_kebab, populate_by_name=True, extra="ignore")


def parse_concurrency(value: Any) -> tuple[int, int]:
    """Parse a consumer concurrency setting: ``"min-max"`` or a single ``"n"``."""
    text = str(value).strip()
    try:
        if "-" in text:
            low, high = (int(part) for part in text.split("-", 1))
        else:
            low = high = int(text)
    except ValueError:
        raise ConfigResolutionException(
            f"Invalid concurrency '{value}', expected 'min-max' or a single number",
            code="CONCURRENCY",
        ) from None
    if low < 1 or high < low:
        raise ConfigResolutionException(
            f"Invalid concurrency '{value}', expected 1 <= min <= max",
            code="CONCURRENCY",
        )
    return low, high


class MappedHeadersProperties(_KebabModel):
    headers: list[str] = Field(default_factory=list)

    @field_validator("headers", mode="before")
    @classmethod
    def _split(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, str):
            return [part.strip() for part in value.split(",") if part.strip()]
        return value


class EntityEventsProperties(_KebabModel):
    """Exchange and routing key used for entity created/updated events."""

    enabled: bool = False
    exchange: str | None = None
    routing_key: str = "#"
    exchange_type: ExchangeType = ExchangeType.TOPIC

    @field_validator("exchange_type", mode="before")
    @classmethod
    def _parse_type(cls, value: Any) -> ExchangeType:
        return ExchangeType.parse(value)


class MessageRouterLoggingProperties(_KebabModel):
    enabled: bool = False


class LoggingProperties(_KebabModel):
    level: dict[str, str] = Field(default_factory=lambda: {"root": "INFO"})
    format: Literal["console", "json"] = "console"
    message_router: MessageRouterLoggingProperties = Field(default_factory=MessageRouterLoggingProperties)


@config_properties(prefix="message.dispatcher")
class MessageDispatcherProperties(_KebabModel):
    """Everything the dispatcher runtime needs, bound from ``message.dispatcher.*``.

    Durations are configured in milliseconds; the ``*_seconds`` properties
    convert them for asyncio.
    """

    application_name: str = "message-dispatcher"
    provider: Literal["auto", "rabbitmq", "memory"] = "auto"

    # connection
    host: str = "localhost"
    port: int = Field(default=5672, ge=1, le=65535)
    username: str = "guest"
    password: str = "guest"
    virtual_host: str = "/"

    # primary topology
    exchange_name: str = "message.dispatcher.ex"
    exchange_type: ExchangeType = ExchangeType.TOPIC
    exchange_durable: bool = True
    exchange_consistent_hash_arguments: dict[str, Any] = Field(default_factory=dict)
    queue_name: str | None = None
    queue_durable: bool = True
    routing_key: str | None = None
    concurrency: str = "1-10"
    prefetch_count: int = Field(default=10, ge=1, le=100)

    # dead-letter topology
    dead_letter_exchange_name: str | None = None
    dead_letter_exchange_type: ExchangeType = ExchangeType.TOPIC
    dead_letter_exchange_durable: bool = True
    dead_letter_exchange_consistent_hash_arguments: dict[str, Any] = Field(default_factory=dict)
    dead_letter_queue_name: str | None = None
    dead_letter_routing_key: str | None = None

    # retry
    max_retry_attempts: int = Field(default=3, ge=1)
    initial_interval: int = Field(default=2000, ge=0)
    multiplier: float = Field(default=2.0, ge=1.0)
    max_interval: int = Field(default=10000, ge=0)

    # request-reply
    reply_timeout: int = Field(default=15000, gt=0)
    return_exceptions: bool = True

    mapped: MappedHeadersProperties = Field(default_factory=MappedHeadersProperties)
    default_listener_enabled: bool = True
    shutdown_timeout: int = Field(default=30000, ge=0)
    monitor_interval: int = Field(default=1000, gt=0)

    entity_events: EntityEventsProperties = Field(default_factory=EntityEventsProperties)
    logging: LoggingProperties = Field(default_factory=LoggingProperties)

    @field_validator("exchange_type", "dead_letter_exchange_type", mode="before")
    @classmethod
    def _parse_exchange_type(cls, value: Any) -> ExchangeType:
        return ExchangeType.parse(value)

    @field_validator("concurrency", mode="before")
    @classmethod
    def _check_concurrency(cls, value: Any) -> str:
        parse_concurrency(value)
        return str(value).strip()

    @model_validator(mode="after")
    def _derive_defaults(self) -> MessageDispatcherProperties:
        if not self.queue_name:
            self.queue_name = self.application_name
        if not self.routing_key:
            self.routing_key = self.queue_name
        if not self.dead_letter_exchange_name:
            if self.exchange_name.endswith(".ex"):
                self.dead_letter_exchange_name = self.exchange_name[: -len(".ex")] + ".dlx"
            else:
                self.dead_letter_exchange_name = self.exchange_name + ".dlx"
        if not self.dead_letter_queue_name:
            self.dead_letter_queue_name = self.queue_name + ".dlq"
        if not self.dead_letter_routing_key:
            self.dead_letter_routing_key = self.dead_letter_queue_name
        if not self.entity_events.exchange:
            self.entity_events.exchange = f"{self.application_name}-entity-events"

        check_exchange_arguments(self.exchange_name, self.exchange_type, self.exchange_consistent_hash_arguments)
        check_exchange_arguments(
            self.dead_letter_exchange_name,
            self.dead_letter_exchange_type,
            self.dead_letter_exchange_consistent_hash_arguments,
        )
        return self

    # ── derived values ─────────────────────────────────────────

    @property
    def concurrency_range(self) -> tuple[int, int]:
        return parse_concurrency(self.concurrency)

    @property
    def mapped_headers(self) -> list[str]:
        return list(self.mapped.headers)

    @property
    def reply_timeout_seconds(self) -> float:
        return self.reply_timeout / 1000

    @property
    def shutdown_timeout_seconds(self) -> float:
        return self.shutdown_timeout / 1000

    @property
    def monitor_interval_seconds(self) -> float:
        return self.monitor_interval / 1000

    @classmethod
    def from_config(cls, config: Config) -> MessageDispatcherProperties:
        """Bind from a Config, turning validation failures into ConfigResolutionException."""
        try:
            return config.bind(cls)
        except ValueError as exc:
            raise ConfigResolutionException(str(exc), code="CONFIG_VALIDATION") from exc
