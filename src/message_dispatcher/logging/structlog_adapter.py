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
"""StructlogAdapter — default LoggingPort implementation using structlog."""

from __future__ import annotations

import logging
import sys
from typing import Any

import structlog

from message_dispatcher.core.config import Config
from message_dispatcher.logging.port import LogSettings, level_number

_SHARED_PROCESSORS: list[structlog.types.Processor] = [
    structlog.contextvars.merge_contextvars,
    structlog.stdlib.add_logger_name,
    structlog.stdlib.add_log_level,
    structlog.processors.TimeStamper(fmt="iso"),
    structlog.processors.StackInfoRenderer(),
    structlog.processors.format_exc_info,
    structlog.processors.UnicodeDecoder(),
]


class StructlogAdapter:
    """Default logging adapter backed by structlog.

    Runtime components log events (``logger.info("consumer_started", queue=...)``);
    structlog renders them for the console or as JSON lines, written through
    a single stdout handler on the root stdlib logger.
    """

    def __init__(self) -> None:
        self.settings = LogSettings()

    def configure(self, config: Config) -> None:
        """Configure structlog from the message.dispatcher.logging section."""
        self.settings = LogSettings.from_config(config)
        renderer: structlog.types.Processor = (
            structlog.processors.JSONRenderer() if self.settings.json else structlog.dev.ConsoleRenderer()
        )
        structlog.configure(
            processors=[*_SHARED_PROCESSORS, renderer],
            logger_factory=structlog.stdlib.LoggerFactory(),
            wrapper_class=structlog.stdlib.BoundLogger,
            cache_logger_on_first_use=True,
        )
        logging.basicConfig(
            format="%(message)s",
            stream=sys.stdout,
            level=level_number(self.settings.root_level),
            force=True,
        )
        self.settings.apply_module_levels()

    def get_logger(self, name: str) -> Any:
        return structlog.get_logger(name)

    def set_level(self, name: str, level: str) -> None:
        logging.getLogger(name).setLevel(level_number(level))
