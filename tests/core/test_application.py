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
"""Tests for dispatcher application bootstrap."""

from __future__ import annotations

import pytest
from pydantic import BaseModel

from message_dispatcher.core.application import (
    PROFILES_ENV,
    MessageDispatcherApplication,
    enable_message_dispatcher,
)
from message_dispatcher.kernel.exceptions import ConfigResolutionException
from message_dispatcher.logging.stdlib_adapter import StdlibLoggingAdapter
from message_dispatcher.messaging.adapters.memory import InMemoryBroker
from message_dispatcher.messaging.decorators import command, message_listener


class Ping(BaseModel):
    n: int


@message_listener
class PingListener:
    created = 0

    def __init__(self) -> None:
        PingListener.created += 1

    @command
    def ping(self, payload: Ping) -> int:
        return payload.n + 1


@enable_message_dispatcher(name="billing-app", version="2.1.0", listeners=[PingListener])
class BillingApp:
    pass


class PlainApp:
    pass


def _write(path, text: str) -> None:
    path.write_text(text)


class TestEnableMessageDispatcher:
    def test_metadata(self):
        assert BillingApp.__message_dispatcher_app_name__ == "billing-app"
        assert BillingApp.__message_dispatcher_app_version__ == "2.1.0"
        assert BillingApp.__message_dispatcher_listeners__ == [PingListener]


class TestConfiguration:
    def test_decorator_name_used_by_default(self):
        app = MessageDispatcherApplication(BillingApp, broker=InMemoryBroker())
        assert app.name == "billing-app"
        assert app.properties.queue_name == "billing-app"
        assert app.properties.dead_letter_queue_name == "billing-app.dlq"

    def test_undecorated_class_keeps_default_name(self):
        app = MessageDispatcherApplication(PlainApp, broker=InMemoryBroker())
        assert app.name == "message-dispatcher"

    def test_configured_name_wins(self, tmp_path):
        _write(
            tmp_path / "message-dispatcher.yaml",
            "message:\n  dispatcher:\n    application-name: invoicing\n    prefetch-count: 5\n",
        )
        app = MessageDispatcherApplication(BillingApp, config_path=tmp_path, broker=InMemoryBroker())
        assert app.name == "invoicing"
        assert app.properties.prefetch_count == 5
        assert any("message-dispatcher.yaml" in source for source in app.config.loaded_sources)

    def test_config_file_path_accepted(self, tmp_path):
        config_file = tmp_path / "message-dispatcher.yaml"
        _write(config_file, "message:\n  dispatcher:\n    exchange-name: billing.ex\n")
        app = MessageDispatcherApplication(BillingApp, config_path=config_file, broker=InMemoryBroker())
        assert app.properties.exchange_name == "billing.ex"
        assert app.properties.dead_letter_exchange_name == "billing.dlx"

    def test_profile_from_env(self, tmp_path, monkeypatch: pytest.MonkeyPatch):
        _write(tmp_path / "message-dispatcher.yaml", "message:\n  dispatcher:\n    prefetch-count: 5\n")
        _write(tmp_path / "message-dispatcher-dev.yaml", "message:\n  dispatcher:\n    prefetch-count: 1\n")
        monkeypatch.setenv(PROFILES_ENV, "dev")

        app = MessageDispatcherApplication(BillingApp, config_path=tmp_path, broker=InMemoryBroker())
        assert app.properties.prefetch_count == 1

    def test_profile_from_config_file(self, tmp_path, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.delenv(PROFILES_ENV, raising=False)
        config_dir = tmp_path / "config"
        config_dir.mkdir()
        _write(
            config_dir / "message-dispatcher.yaml",
            "message:\n  dispatcher:\n    profiles:\n      active: prod\n    max-retry-attempts: 2\n",
        )
        _write(config_dir / "message-dispatcher-prod.yaml", "message:\n  dispatcher:\n    max-retry-attempts: 7\n")

        app = MessageDispatcherApplication(BillingApp, config_path=tmp_path, broker=InMemoryBroker())
        assert app.properties.max_retry_attempts == 7

    def test_env_override(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("MESSAGE_DISPATCHER_REPLY_TIMEOUT", "2500")
        app = MessageDispatcherApplication(BillingApp, broker=InMemoryBroker())
        assert app.properties.reply_timeout_seconds == 2.5

    def test_invalid_configuration_rejected(self, tmp_path):
        _write(tmp_path / "message-dispatcher.yaml", "message:\n  dispatcher:\n    concurrency: ten\n")
        with pytest.raises(ConfigResolutionException):
            MessageDispatcherApplication(BillingApp, config_path=tmp_path, broker=InMemoryBroker())

    def test_custom_logging_adapter(self):
        app = MessageDispatcherApplication(BillingApp, broker=InMemoryBroker(), logging_adapter=StdlibLoggingAdapter())
        assert app.name == "billing-app"


class TestLifecycle:
    async def test_startup_and_shutdown(self):
        broker = InMemoryBroker()
        app = MessageDispatcherApplication(BillingApp, broker=broker)
        await app.startup()
        assert broker.running
        assert app.dispatcher.registry.handler_count == 1
        assert app.startup_time_seconds > 0

        await app.shutdown()
        assert not broker.running

    async def test_listener_classes_instantiated(self):
        before = PingListener.created
        MessageDispatcherApplication(BillingApp, broker=InMemoryBroker())
        assert PingListener.created == before + 1

    async def test_extra_listener_instances(self):
        app = MessageDispatcherApplication(PlainApp, broker=InMemoryBroker(), listeners=[PingListener()])
        async with app:
            assert app.dispatcher.registry.handler_count == 1

    async def test_request_reply_round_trip(self):
        async with MessageDispatcherApplication(BillingApp, broker=InMemoryBroker()) as app:
            assert await app.publisher.do_command(Ping(n=41), int) == 42
