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
"""Tests for HandlerRegistry registration, lookup and discovery."""

import logging
from typing import Any

import pytest
from pydantic import BaseModel

from message_dispatcher.kernel.exceptions import (
    HandlerDuplicatedInputParameterException,
    HandlerMultipleInputParametersException,
    HandlerNoInputParameterException,
    HandlerNotFoundException,
    HandlerRegistrationException,
)
from message_dispatcher.messaging.decorators import command, event, message_listener, query
from message_dispatcher.messaging.registry import HandlerRegistry
from message_dispatcher.messaging.types import HandlerType


class CreateOrder(BaseModel):
    order_id: str


class GetOrder(BaseModel):
    order_id: str


class OrderPlaced(BaseModel):
    order_id: str


@message_listener
class OrderListener:
    def __init__(self) -> None:
        self.placed: list[str] = []

    @command
    def create(self, payload: CreateOrder) -> str:
        return payload.order_id

    @query
    async def get(self, payload: GetOrder) -> dict:
        return {"order_id": payload.order_id}

    @event
    def on_placed(self, payload: OrderPlaced) -> None:
        self.placed.append(payload.order_id)

    def helper(self, value: int) -> int:
        return value


class AuditedOrderListener(OrderListener):
    @command
    def create(self, payload: CreateOrder) -> str:
        return "audited-" + payload.order_id


class NotAListener:
    @command
    def create(self, payload: CreateOrder) -> str:
        return payload.order_id


class TestRegister:
    def test_key_from_annotation(self):
        registry = HandlerRegistry()

        def handle(payload: CreateOrder) -> str:
            return payload.order_id

        method = registry.register(HandlerType.COMMAND, handle)
        assert method.body_type == "CreateOrder"
        assert method.payload_type is CreateOrder
        assert registry.get_handler(HandlerType.COMMAND, "CreateOrder") is method

    def test_handler_type_as_string(self):
        registry = HandlerRegistry()

        def handle(payload: OrderPlaced) -> None: ...

        registry.register("event", handle)
        assert registry.has_handler(HandlerType.EVENT, "OrderPlaced")

    def test_explicit_payload_name(self):
        registry = HandlerRegistry()

        def handle(payload: CreateOrder) -> str:
            return payload.order_id

        method = registry.register(HandlerType.COMMAND, handle, payload_type="CreateOrderV2")
        assert method.body_type == "CreateOrderV2"
        assert method.payload_type is CreateOrder

    def test_explicit_payload_type(self):
        registry = HandlerRegistry()

        def handle(payload: Any) -> None: ...

        method = registry.register(HandlerType.EVENT, handle, payload_type=OrderPlaced)
        assert method.body_type == "OrderPlaced"
        assert method.payload_type is OrderPlaced

    def test_missing_annotation_raises(self):
        registry = HandlerRegistry()

        def handle(payload):
            return payload

        with pytest.raises(HandlerRegistrationException, match="no payload type annotation"):
            registry.register(HandlerType.COMMAND, handle)

    def test_unresolvable_annotation_decodes_untyped(self, caplog: pytest.LogCaptureFixture):
        registry = HandlerRegistry()

        def handle(payload: "module.RemoteOnlyType") -> None: ...  # noqa: F821

        with caplog.at_level(logging.WARNING, logger="message_dispatcher.messaging.registry"):
            method = registry.register(HandlerType.EVENT, handle)
        assert method.body_type == "RemoteOnlyType"
        assert method.payload_type is Any
        assert "Cannot resolve payload annotation" in caplog.text

    def test_no_parameter(self):
        registry = HandlerRegistry()

        def handle() -> None: ...

        with pytest.raises(HandlerNoInputParameterException):
            registry.register(HandlerType.EVENT, handle)

    def test_multiple_parameters(self):
        registry = HandlerRegistry()

        def handle(payload: CreateOrder, tenant: str) -> None: ...

        with pytest.raises(HandlerMultipleInputParametersException) as exc_info:
            registry.register(HandlerType.COMMAND, handle)
        assert exc_info.value.count == 2

    def test_variadic_parameters_ignored(self):
        registry = HandlerRegistry()

        def handle(payload: CreateOrder, *args: Any, **kwargs: Any) -> None: ...

        assert registry.register(HandlerType.COMMAND, handle).body_type == "CreateOrder"

    def test_duplicate_key(self):
        registry = HandlerRegistry()

        def first(payload: GetOrder) -> dict:
            return {}

        def second(payload: GetOrder) -> dict:
            return {}

        registry.register(HandlerType.QUERY, first)
        with pytest.raises(HandlerDuplicatedInputParameterException) as exc_info:
            registry.register(HandlerType.QUERY, second)
        assert exc_info.value.existing.endswith("first")

    def test_same_payload_different_kind_is_allowed(self):
        registry = HandlerRegistry()

        def as_command(payload: CreateOrder) -> None: ...

        def as_event(payload: CreateOrder) -> None: ...

        registry.register(HandlerType.COMMAND, as_command)
        registry.register(HandlerType.EVENT, as_event)
        assert registry.handler_count == 2

    def test_void_query_warns(self, caplog: pytest.LogCaptureFixture):
        registry = HandlerRegistry()

        def handle(payload: GetOrder) -> None: ...

        with caplog.at_level(logging.WARNING, logger="message_dispatcher.messaging.registry"):
            registry.register(HandlerType.QUERY, handle)
        assert "returns None" in caplog.text

    def test_frozen_registry_rejects_registration(self):
        registry = HandlerRegistry()
        registry.freeze()

        def handle(payload: CreateOrder) -> None: ...

        assert registry.frozen
        with pytest.raises(HandlerRegistrationException, match="frozen"):
            registry.register(HandlerType.COMMAND, handle)


class TestLookup:
    def test_not_found(self):
        with pytest.raises(HandlerNotFoundException) as exc_info:
            HandlerRegistry().get_handler(HandlerType.COMMAND, "CreateOrder")
        assert exc_info.value.body_type == "CreateOrder"

    async def test_invoke_sync_and_async(self):
        registry = HandlerRegistry()
        registry.discover([OrderListener()])
        created = await registry.get_handler(HandlerType.COMMAND, "CreateOrder").invoke(CreateOrder(order_id="o-1"))
        fetched = await registry.get_handler(HandlerType.QUERY, "GetOrder").invoke(GetOrder(order_id="o-2"))
        assert created == "o-1"
        assert fetched == {"order_id": "o-2"}


class TestDiscover:
    def test_registers_marked_methods(self):
        registry = HandlerRegistry()
        assert registry.discover([OrderListener()]) == 3
        assert registry.registered_handlers() == {
            (HandlerType.COMMAND, "CreateOrder"): "OrderListener.create",
            (HandlerType.QUERY, "GetOrder"): "OrderListener.get",
            (HandlerType.EVENT, "OrderPlaced"): "OrderListener.on_placed",
        }

    async def test_subclass_override_wins(self):
        registry = HandlerRegistry()
        assert registry.discover([AuditedOrderListener()]) == 3
        handler = registry.get_handler(HandlerType.COMMAND, "CreateOrder")
        assert await handler.invoke(CreateOrder(order_id="o-1")) == "audited-o-1"

    def test_unmarked_listener_skipped(self, caplog: pytest.LogCaptureFixture):
        registry = HandlerRegistry()
        with caplog.at_level(logging.WARNING, logger="message_dispatcher.messaging.registry"):
            assert registry.discover([NotAListener()]) == 0
        assert "not decorated with @message_listener" in caplog.text

    async def test_bound_to_listener_instance(self):
        listener = OrderListener()
        registry = HandlerRegistry()
        registry.discover([listener])
        await registry.get_handler(HandlerType.EVENT, "OrderPlaced").invoke(OrderPlaced(order_id="o-9"))
        assert listener.placed == ["o-9"]

    def test_two_listeners_with_same_key(self):
        registry = HandlerRegistry()
        with pytest.raises(HandlerDuplicatedInputParameterException):
            registry.discover([OrderListener(), AuditedOrderListener()])
