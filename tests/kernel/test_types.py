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
"""Tests for HandlerType, ExchangeType and the exchange arguments contract."""

import pytest

from message_dispatcher.kernel.exceptions import ConfigResolutionException
from message_dispatcher.kernel.types import ExchangeType, HandlerType, check_exchange_arguments


class TestHandlerType:
    def test_reply_kinds(self):
        assert HandlerType.COMMAND.expects_reply
        assert HandlerType.QUERY.expects_reply
        assert not HandlerType.EVENT.expects_reply
        assert not HandlerType.NOTIFICATION.expects_reply

    @pytest.mark.parametrize("raw", ["COMMAND", "command", " Command ", b"COMMAND"])
    def test_parse_header_values(self, raw):
        assert HandlerType.parse(raw) is HandlerType.COMMAND

    def test_parse_unknown_returns_none(self):
        assert HandlerType.parse("BROADCAST") is None

    def test_is_a_string(self):
        assert HandlerType.EVENT == "EVENT"


class TestExchangeType:
    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("topic", ExchangeType.TOPIC),
            ("DIRECT", ExchangeType.DIRECT),
            ("fanout", ExchangeType.FANOUT),
            ("headers", ExchangeType.HEADERS),
            ("x-consistent-hash", ExchangeType.CONSISTENT_HASH),
            ("consistent_hash", ExchangeType.CONSISTENT_HASH),
            ("consistent-hash", ExchangeType.CONSISTENT_HASH),
            (ExchangeType.TOPIC, ExchangeType.TOPIC),
        ],
    )
    def test_parse(self, raw, expected):
        assert ExchangeType.parse(raw) is expected

    def test_parse_unknown_raises(self):
        with pytest.raises(ConfigResolutionException) as exc_info:
            ExchangeType.parse("bogus")
        assert exc_info.value.code == "EXCHANGE_TYPE"
        assert "x-consistent-hash" in exc_info.value.context["supported"]

    def test_only_consistent_hash_requires_arguments(self):
        assert [t for t in ExchangeType if t.requires_arguments] == [ExchangeType.CONSISTENT_HASH]


class TestCheckExchangeArguments:
    def test_consistent_hash_without_arguments(self):
        with pytest.raises(ConfigResolutionException, match="requires non-empty arguments"):
            check_exchange_arguments("app.ex", ExchangeType.CONSISTENT_HASH, {})

    def test_consistent_hash_with_arguments(self):
        check_exchange_arguments("app.ex", ExchangeType.CONSISTENT_HASH, {"hash-header": "x-tenant"})

    def test_arguments_on_topic_rejected(self):
        with pytest.raises(ConfigResolutionException, match="does not accept arguments"):
            check_exchange_arguments("app.ex", ExchangeType.TOPIC, {"hash-header": "x-tenant"})

    def test_plain_topic(self):
        check_exchange_arguments("app.ex", ExchangeType.TOPIC, None)
