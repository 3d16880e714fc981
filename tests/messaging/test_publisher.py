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
"""Tests for MessagePublisher and PendingReplies."""

from __future__ import annotations

import asyncio

import pytest
from pydantic import BaseModel

from message_dispatcher.config.properties import MessageDispatcherProperties
from message_dispatcher.kernel.exceptions import (
    BrokerException,
    PublishException,
    RemoteResultException,
    ReplyTimeoutException,
)
from message_dispatcher.messaging.adapters.memory import InMemoryBroker
from message_dispatcher.messaging.codec import JsonCodec
from message_dispatcher.messaging.context import InboundContext
from message_dispatcher.messaging.publisher import MessagePublisher, PendingReplies
from message_dispatcher.messaging.topology import TopologyBuilder
from message_dispatcher.messaging.types import Envelope, Headers, RemoteInvocationResult


class CreateUser(BaseModel):
    name: str


class GetUser(BaseModel):
    user_id: str


class User(BaseModel):
    user_id: str
    name: str


def _properties(**overrides) -> MessageDispatcherProperties:
    values = {"application_name": "svc-A", "exchange_name": "app.ex", "queue_name": "app.inbox"}
    values.update(overrides)
    return MessageDispatcherProperties(**values)


async def _setup(**overrides) -> tuple[InMemoryBroker, MessagePublisher]:
    properties = _properties(**overrides)
    broker = InMemoryBroker()
    await broker.start()
    await TopologyBuilder(broker, properties).declare()
    return broker, MessagePublisher(broker, properties)


async def _respond_once(broker: InMemoryBroker, result: RemoteInvocationResult) -> Envelope:
    """Answer the next request on app.inbox the way a remote dispatcher would."""
    stream = await broker.consume("app.inbox", prefetch_count=1)
    delivery = await stream.__anext__()
    await delivery.ack()
    request = delivery.envelope
    reply = Envelope(
        body=JsonCodec().encode(result),
        headers={Headers.RESPONSE_FROM: "svc-B"},
        correlation_id=request.correlation_id,
    )
    await broker.publish("", str(request.reply_to), reply, mandatory=False)
    await stream.close()
    return request


class TestPendingReplies:
    async def test_complete_once(self):
        pending = PendingReplies()
        future = pending.allocate("c1")
        reply = Envelope(body=b"{}")
        assert pending.complete("c1", reply)
        assert not pending.complete("c1", reply)
        assert future.result() is reply
        assert len(pending) == 0

    async def test_complete_unknown(self):
        assert not PendingReplies().complete("nope", Envelope(body=b"{}"))

    async def test_discard_cancels(self):
        pending = PendingReplies()
        future = pending.allocate("c1")
        pending.discard("c1")
        assert future.cancelled()
        assert "c1" not in pending
        assert not pending.complete("c1", Envelope(body=b"{}"))

    async def test_fail_all(self):
        pending = PendingReplies()
        futures = [pending.allocate("c1"), pending.allocate("c2")]
        pending.fail_all(BrokerException("stopped"))
        assert len(pending) == 0
        for future in futures:
            with pytest.raises(BrokerException):
                future.result()


class TestFireAndForget:
    async def test_send_command_uses_configured_destination(self):
        broker, publisher = await _setup()
        await publisher.send_command(CreateUser(name="ada"))

        [message] = broker.messages("app.inbox")
        assert message.exchange == "app.ex"
        assert message.routing_key == "app.inbox"
        assert message.body == b'{"name":"ada"}'
        assert message.content_type == "application/json"
        assert message.headers[Headers.HANDLER_TYPE] == "COMMAND"
        assert message.headers[Headers.BODY_TYPE] == "CreateUser"
        assert message.headers[Headers.REMOTE_SERVICE] == "svc-A"
        assert Headers.TIMESTAMP in message.headers
        assert message.message_id
        assert message.reply_to is None
        assert message.correlation_id is None

    async def test_send_event_with_explicit_destination(self):
        broker, publisher = await _setup()
        await broker.declare_queue("audit")
        await broker.bind_queue("audit", "app.ex", "audit.#")

        await publisher.send_event({"user_id": "u-1"}, "audit.users", body_type="UserCreated")

        [message] = broker.messages("audit")
        assert message.headers[Headers.HANDLER_TYPE] == "EVENT"
        assert message.headers[Headers.BODY_TYPE] == "UserCreated"
        assert broker.messages("app.inbox") == []

    async def test_send_notification_to_default_exchange(self):
        broker, publisher = await _setup()
        await publisher.send_notification(CreateUser(name="ada"), "app.inbox", "")
        [message] = broker.messages("app.inbox")
        assert message.headers[Headers.HANDLER_TYPE] == "NOTIFICATION"
        assert message.exchange == ""

    async def test_custom_headers_kept_and_discriminators_stripped(self):
        broker, publisher = await _setup()
        await publisher.send_command(
            CreateUser(name="ada"),
            headers={"X-Priority": "high", "__TypeId__": "com.acme.CreateUser", Headers.BODY_TYPE: "Spoofed"},
        )
        [message] = broker.messages("app.inbox")
        assert message.headers["X-Priority"] == "high"
        assert "__TypeId__" not in message.headers
        assert message.headers[Headers.BODY_TYPE] == "CreateUser"

    async def test_unroutable_send_fails(self):
        _, publisher = await _setup()
        with pytest.raises(PublishException):
            await publisher.send_event({"a": 1}, "nobody.listens")

    async def test_mapped_headers_follow_inbound_context(self):
        broker, publisher = await _setup(mapped={"headers": ["X-Tenant"]})
        with InboundContext.scope({"X-Tenant": "t1", "X-Secret": "s"}):
            await publisher.send_command(CreateUser(name="ada"))
        await publisher.send_command(CreateUser(name="bob"))

        first, second = broker.messages("app.inbox")
        assert first.headers["X-Tenant"] == "t1"
        assert "X-Secret" not in first.headers
        assert "X-Tenant" not in second.headers


class TestRequestReply:
    async def test_do_query_converts_response(self):
        broker, publisher = await _setup()
        responder = asyncio.create_task(
            _respond_once(broker, RemoteInvocationResult.of_value({"user_id": "u-1", "name": "ada"}, "svc-B"))
        )
        user = await publisher.do_query(GetUser(user_id="u-1"), User)
        request = await responder

        assert user == User(user_id="u-1", name="ada")
        assert request.headers[Headers.HANDLER_TYPE] == "QUERY"
        assert request.reply_to == publisher.reply_queue
        assert request.correlation_id
        assert len(publisher.pending_replies) == 0

    async def test_do_command_without_response_type(self):
        broker, publisher = await _setup()
        responder = asyncio.create_task(_respond_once(broker, RemoteInvocationResult.of_value("ok", "svc-B")))
        assert await publisher.do_command(CreateUser(name="ada")) == "ok"
        await responder

    async def test_remote_failure_raises(self):
        broker, publisher = await _setup()
        failure = RemoteInvocationResult(exception="bad id", exception_type="InvalidArgumentError", remote_service="svc-B")
        responder = asyncio.create_task(_respond_once(broker, failure))
        with pytest.raises(RemoteResultException) as exc_info:
            await publisher.do_query(GetUser(user_id="??"), User)
        await responder
        assert exc_info.value.exception_type == "InvalidArgumentError"
        assert exc_info.value.remote_message == "bad id"
        assert exc_info.value.remote_service == "svc-B"

    async def test_timeout(self):
        broker, publisher = await _setup(reply_timeout=50)
        with pytest.raises(ReplyTimeoutException) as exc_info:
            await publisher.do_query(GetUser(user_id="u-1"), User)
        assert exc_info.value.timeout == 0.05
        assert len(publisher.pending_replies) == 0
        assert len(broker.messages("app.inbox")) == 1

    async def test_late_reply_is_dropped(self):
        _, publisher = await _setup(reply_timeout=20)
        with pytest.raises(ReplyTimeoutException) as exc_info:
            await publisher.do_query(GetUser(user_id="u-1"))
        late = Envelope(body=b"{}", correlation_id=exc_info.value.correlation_id)
        await publisher._on_reply(late)
        assert len(publisher.pending_replies) == 0

    async def test_reply_queue_declared_once(self):
        broker, publisher = await _setup(reply_timeout=20)
        for _ in range(2):
            with pytest.raises(ReplyTimeoutException):
                await publisher.do_query(GetUser(user_id="u-1"))
        queue = publisher.reply_queue
        assert queue is not None and queue.startswith("amq.gen-")
        requests = broker.messages("app.inbox")
        assert {r.reply_to for r in requests} == {queue}
        assert len({r.correlation_id for r in requests}) == 2

    async def test_unroutable_request_releases_slot(self):
        _, publisher = await _setup()
        with pytest.raises(PublishException):
            await publisher.do_query(GetUser(user_id="u-1"), routing_key="nobody.listens")
        assert len(publisher.pending_replies) == 0

    async def test_stop_fails_waiting_callers(self):
        _, publisher = await _setup()
        waiting = asyncio.create_task(publisher.do_query(GetUser(user_id="u-1")))
        for _ in range(100):
            if len(publisher.pending_replies):
                break
            await asyncio.sleep(0.01)
        await publisher.stop()
        with pytest.raises(BrokerException):
            await waiting
