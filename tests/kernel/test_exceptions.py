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
"""Tests for the dispatcher exception hierarchy."""

import pytest

from message_dispatcher.kernel.exceptions import (
    BrokerException,
    ConfigResolutionException,
    DecodingException,
    EncodingException,
    HandlerDuplicatedInputParameterException,
    HandlerMultipleInputParametersException,
    HandlerNoInputParameterException,
    HandlerNotFoundException,
    HandlerRegistrationException,
    MessageDispatcherException,
    MissingHeaderException,
    NonRetryableException,
    PublishException,
    RemoteResultException,
    ReplyTimeoutException,
    RetryableException,
    RoutingException,
    TopologyDeclarationException,
)


class TestMessageDispatcherException:
    def test_basic_creation(self):
        exc = MessageDispatcherException("something went wrong")
        assert str(exc) == "something went wrong"
        assert exc.code is None
        assert exc.context == {}

    def test_with_code_and_context(self):
        exc = MessageDispatcherException("bad topology", code="TOPOLOGY", context={"exchange": "app.ex"})
        assert exc.code == "TOPOLOGY"
        assert exc.context["exchange"] == "app.ex"

    def test_context_not_shared_between_instances(self):
        exc = MessageDispatcherException("test")
        exc.context["key"] = "value"
        assert MessageDispatcherException("test2").context == {}


class TestExceptionHierarchy:
    def test_routing_failures_are_non_retryable(self):
        for cls in (MissingHeaderException, HandlerNotFoundException, DecodingException):
            assert issubclass(cls, RoutingException)
            assert issubclass(cls, NonRetryableException)

    def test_retryable_is_not_non_retryable(self):
        assert not issubclass(RetryableException, NonRetryableException)

    def test_registration_failures(self):
        for cls in (
            HandlerNoInputParameterException,
            HandlerMultipleInputParametersException,
            HandlerDuplicatedInputParameterException,
        ):
            assert issubclass(cls, HandlerRegistrationException)

    def test_catch_all_dispatcher_exceptions(self):
        exceptions = [
            ConfigResolutionException("bad config"),
            TopologyDeclarationException("mismatch"),
            EncodingException("cannot encode"),
            BrokerException("down"),
            PublishException("unroutable"),
            ReplyTimeoutException("abc", 0.5),
            RemoteResultException("ValueError", "bad id", "svc-B"),
            MissingHeaderException("x-message-dispatcher-handler-type"),
        ]
        for exc in exceptions:
            with pytest.raises(MessageDispatcherException):
                raise exc


class TestSpecificExceptions:
    def test_missing_header_names_header(self):
        exc = MissingHeaderException("x-message-dispatcher-body-type")
        assert exc.header == "x-message-dispatcher-body-type"
        assert exc.code == "MISSING_HEADER"
        assert "x-message-dispatcher-body-type" in str(exc)

    def test_handler_not_found_carries_key(self):
        exc = HandlerNotFoundException("COMMAND", "CreateOrder")
        assert exc.handler_type == "COMMAND"
        assert exc.body_type == "CreateOrder"
        assert exc.context == {"handler_type": "COMMAND", "body_type": "CreateOrder"}

    def test_duplicated_handler_names_both_handlers(self):
        exc = HandlerDuplicatedInputParameterException("B.handle", "QUERY", "GetUser", "A.handle")
        assert exc.handler == "B.handle"
        assert exc.existing == "A.handle"
        assert "A.handle" in str(exc)

    def test_multiple_parameters_count(self):
        exc = HandlerMultipleInputParametersException("Billing.charge", 2)
        assert exc.count == 2
        assert "found 2" in str(exc)

    def test_reply_timeout(self):
        exc = ReplyTimeoutException("abc123", 0.5)
        assert exc.correlation_id == "abc123"
        assert exc.timeout == 0.5
        assert exc.code == "REPLY_TIMEOUT"

    def test_remote_result_carries_taxonomy(self):
        exc = RemoteResultException("InvalidArgumentError", "bad id", "svc-B")
        assert exc.exception_type == "InvalidArgumentError"
        assert exc.remote_message == "bad id"
        assert exc.remote_service == "svc-B"
        assert str(exc) == "InvalidArgumentError: bad id (remote service: svc-B)"
