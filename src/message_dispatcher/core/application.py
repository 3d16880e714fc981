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
"""Application bootstrap — the entry point for dispatcher applications."""

from __future__ import annotations

import os
import platform
import time
from collections.abc import Iterable
from pathlib import Path
from types import TracebackType
from typing import Any, TypeVar

from message_dispatcher.config.properties import MessageDispatcherProperties
from message_dispatcher.core.config import CONFIG_FILE_STEM, Config
from message_dispatcher.logging.port import LoggingPort
from message_dispatcher.logging.structlog_adapter import StructlogAdapter
from message_dispatcher.messaging.auto_configuration import MessageDispatcher
from message_dispatcher.messaging.ports.outbound import BrokerPort

T = TypeVar("T")

PROFILES_KEY = "message.dispatcher.profiles.active"
PROFILES_ENV = Config.env_key(PROFILES_KEY)
DEFAULT_APPLICATION_NAME = "message-dispatcher"


def enable_message_dispatcher(
    name: str | None = None,
    version: str = "0.1.0",
    listeners: Iterable[Any] = (),
) -> Any:
    """Mark a class as a dispatcher application and install the runtime.

    ``name`` becomes the application name (producer id, default queue name)
    unless configuration sets one. ``listeners`` are ``@message_listener``
    objects, or classes instantiated without arguments at bootstrap.
    """

    def decorator(cls: type[T]) -> type[T]:
        cls.__message_dispatcher_app_name__ = name  # type: ignore[attr-defined]
        cls.__message_dispatcher_app_version__ = version  # type: ignore[attr-defined]
        cls.__message_dispatcher_listeners__ = list(listeners)  # type: ignore[attr-defined]
        return cls

    return decorator


class MessageDispatcherApplication:
    """Bootstraps a dispatcher application.

    Startup sequence:
    1. Load configuration (packaged defaults, message-dispatcher.yaml/toml,
       profile overlays, env vars)
    2. Configure logging from message.dispatcher.logging
    3. Bind and validate MessageDispatcherProperties
    4. Start the dispatcher runtime (broker, handlers, topology, consumer,
       publisher, entity events)
    """

    def __init__(
        self,
        app_class: type,
        config_path: str | Path | None = None,
        *,
        broker: BrokerPort | None = None,
        listeners: Iterable[Any] = (),
        logging_adapter: LoggingPort | None = None,
    ) -> None:
        self._app_class = app_class
        self._name: str | None = getattr(app_class, "__message_dispatcher_app_name__", None)
        self._version: str = getattr(app_class, "__message_dispatcher_app_version__", "0.1.0")
        self._startup_time: float = 0.0

        config_dir = self._find_config_dir(config_path)
        self._active_profiles = self._resolve_profiles_early(config_dir)
        if config_dir:
            config = Config.from_sources(config_dir, active_profiles=self._active_profiles)
        else:
            config = Config.defaults()
        if self._name and config.get("message.dispatcher.application-name") == DEFAULT_APPLICATION_NAME:
            config = config.with_overrides({"message": {"dispatcher": {"application-name": self._name}}})
        self.config = config

        self._logging: LoggingPort = logging_adapter or StructlogAdapter()
        self._logging.configure(self.config)
        self._logger = self._logging.get_logger("message_dispatcher.core")

        self.properties = MessageDispatcherProperties.from_config(self.config)

        declared = [*getattr(app_class, "__message_dispatcher_listeners__", []), *listeners]
        self.dispatcher = MessageDispatcher(
            self.properties,
            broker=broker,
            listeners=[item() if isinstance(item, type) else item for item in declared],
        )

    @property
    def name(self) -> str:
        return self.properties.application_name

    @property
    def publisher(self) -> Any:
        return self.dispatcher.publisher

    @property
    def startup_time_seconds(self) -> float:
        return self._startup_time

    async def startup(self) -> None:
        start = time.perf_counter()
        self._logger.info(
            "starting_application",
            app=self.name,
            version=self._version,
            python=platform.python_version(),
            pid=os.getpid(),
        )
        if self._active_profiles:
            self._logger.info("active_profiles", profiles=self._active_profiles)
        else:
            self._logger.info("no_active_profiles", message="No active profiles set, falling back to default")
        for source in self.config.loaded_sources:
            self._logger.info("loaded_config", source=source)

        await self.dispatcher.start()

        self._startup_time = time.perf_counter() - start
        self._logger.info(
            "application_started",
            app=self.name,
            startup_time_s=round(self._startup_time, 3),
            handlers=self.dispatcher.registry.handler_count,
        )

    async def shutdown(self) -> None:
        self._logger.info("shutting_down", app=self.name)
        await self.dispatcher.stop()

    async def __aenter__(self) -> MessageDispatcherApplication:
        await self.startup()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.shutdown()

    @staticmethod
    def _find_config_dir(config_path: str | Path | None) -> Path | None:
        """Project directory holding message-dispatcher.yaml/.toml, if any."""
        if config_path:
            path = Path(config_path)
            return path.parent if path.is_file() else path
        cwd = Path(".")
        names = [f"{CONFIG_FILE_STEM}{ext}" for ext in (".yaml", ".toml")]
        if any((cwd / name).exists() or (cwd / "config" / name).exists() for name in names):
            return cwd
        return None

    @staticmethod
    def _resolve_profiles_early(config_dir: Path | None) -> list[str]:
        """Active profiles, read from the base files and env before overlays are merged."""
        base = Config.from_sources(config_dir, load_defaults=False) if config_dir else Config()
        active = base.get(PROFILES_KEY) or ""
        if isinstance(active, list):
            active = ",".join(str(item) for item in active)
        return [p.strip() for p in str(active).split(",") if p.strip()]
