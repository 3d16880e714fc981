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
"""Tests for MessageRouter."""

import logging

import pytest
from pydantic import BaseModel

from message_dispatcher.kernel.exceptions import DecodingException, HandlerNotFoundException, MissingHeaderException
from message_dispatcher.messaging.context import InboundContext
from message_dispatcher.messaging.registry import HandlerRegistry
from message_dispatcher.messaging.router import MessageRouter
from message_dispatcher.messaging.types import Envelope, HandlerType, Headers


class ChargeCard(BaseModel):
    card: str
    amount: int


class CardDeclined(Exception):
    pass


def _envelope(body: bytes = b'{"card":"4111","amount":10}', **headers: str) -> Envelope:
    base = {Headers.HANDLER_TYPE: "COMMAND", Headers.BODY_TYPE: "ChargeCard"}
    base.update(headers)
    return Envelope(body=body, headers={k: v for k, v in base.items() if v is not None})


def _router(handler, *, log_messages: bool = False) -> MessageRouter:
    registry = HandlerRegistry()
    registry.register(HandlerType.COMMAND, handler)
    registry.freeze()
    return MessageRouter(registry, log_messages=log_messages)


class TestRoute:
    async def test_routes_decoded_payload(self):
        received: list[ChargeCard] = []

        async def charge(payload: ChargeCard) -> str:
            received.append(payload)
            return "receipt-1"

        assert await _router(charge).route(_envelope()) == "receipt-1"
        assert received == [ChargeCard(card="4111", amount=10)]

    async def test_missing_handler_type(self):
        def charge(payload: ChargeCard) -> None: ...

        envelope = _envelope()
        del envelope.headers[Headers.HANDLER_TYPE]
        with pytest.raises(MissingHeaderException) as exc_info:
            await _router(charge).route(envelope)
        assert exc_info.value.header == Headers.HANDLER_TYPE

    async def test_missing_body_type(self):
        def charge(payload: ChargeCard) -> None: ...

        envelope = _envelope()
        envelope.headers[Headers.BODY_TYPE] = ""
        with pytest.raises(MissingHeaderException) as exc_info:
            await _router(charge).route(envelope)
        assert exc_info.value.header == Headers.BODY_TYPE

    async def test_unknown_handler_kind(self):
        def charge(payload: ChargeCard) -> None: ...

        envelope = _envelope()
        envelope.headers[Headers.HANDLER_TYPE] = "BROADCAST"
        with pytest.raises(HandlerNotFoundException):
            await _router(charge).route(envelope)

    async def test_unregistered_body_type(self):
        def charge(payload: ChargeCard) -> None: ...

        envelope = _envelope()
        envelope.headers[Headers.BODY_TYPE] = "RefundCard"
        with pytest.raises(HandlerNotFoundException):
            await _router(charge).route(envelope)

    async def test_bytes_headers(self):
        def charge(payload: ChargeCard) -> int:
            return payload.amount

        envelope = _envelope()
        envelope.headers[Headers.HANDLER_TYPE] = b"command"
        envelope.headers[Headers.BODY_TYPE] = b"ChargeCard"
        assert await _router(charge).route(envelope) == 10

    async def test_undecodable_body(self):
        called = False

        def charge(payload: ChargeCard) -> None:
            nonlocal called
            called = True

        with pytest.raises(DecodingException):
            await _router(charge).route(_envelope(body=b'{"card":"4111"}'))
        assert not called

    async def test_handler_exception_propagates_unchanged(self):
        def charge(payload: ChargeCard) -> None:
            raise CardDeclined("insufficient funds")

        with pytest.raises(CardDeclined, match="insufficient funds"):
            await _router(charge).route(_envelope())


class TestInboundContextDuringRouting:
    async def test_headers_visible_to_handler(self):
        seen: list[str] = []

        def charge(payload: ChargeCard) -> None:
            seen.append(InboundContext.get_header("X-Tenant"))

        await _router(charge).route(_envelope(**{"X-Tenant": "t1"}))
        assert seen == ["t1"]
        assert InboundContext.current() is None

    async def test_context_cleared_after_failure(self):
        def charge(payload: ChargeCard) -> None:
            raise CardDeclined("declined")

        with pytest.raises(CardDeclined):
            await _router(charge).route(_envelope(**{"X-Tenant": "t1"}))
        assert InboundContext.current() is None


class TestMessageLogging:
    async def test_routes_with_message_logging_enabled(self, caplog: pytest.LogCaptureFixture):
        def charge(payload: ChargeCard) -> int:
            return payload.amount

        with caplog.at_level(logging.DEBUG):
            assert await _router(charge, log_messages=True).route(_envelope()) == 10
