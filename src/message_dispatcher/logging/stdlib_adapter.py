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
"""StdlibLoggingAdapter — LoggingPort on plain stdlib logging."""

from __future__ import annotations

import logging
import sys
from typing import Any

from message_dispatcher.core.config import Config
from message_dispatcher.logging.port import LogSettings, level_number

_CONSOLE_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
_JSON_FORMAT = '{"timestamp":"%(asctime)s","level":"%(levelname)s","logger":"%(name)s","message":"%(message)s"}'


class _EventLogger:
    """Accepts structlog-style calls (``logger.info(event, **kw)``) on a stdlib Logger."""

    __slots__ = ("_logger",)

    def __init__(self, logger: logging.Logger) -> None:
        self._logger = logger

    def _emit(self, level: int, event: str, kwargs: dict[str, Any], exc_info: bool = False) -> None:
        if not self._logger.isEnabledFor(level):
            return
        message = event
        if kwargs:
            message += " | " + " ".join(f"{k}={v}" for k, v in kwargs.items())
        self._logger.log(level, message, exc_info=exc_info, stacklevel=3)

    def debug(self, event: str, **kwargs: Any) -> None:
        self._emit(logging.DEBUG, event, kwargs)

    def info(self, event: str, **kwargs: Any) -> None:
        self._emit(logging.INFO, event, kwargs)

    def warning(self, event: str, **kwargs: Any) -> None:
        self._emit(logging.WARNING, event, kwargs)

    def error(self, event: str, **kwargs: Any) -> None:
        self._emit(logging.ERROR, event, kwargs)

    def exception(self, event: str, **kwargs: Any) -> None:
        self._emit(logging.ERROR, event, kwargs, exc_info=True)


class StdlibLoggingAdapter:
    """LoggingPort writing ``event | key=value`` lines through the standard library.

    For applications that route every log record through their own stdlib
    handlers and do not want structlog rendering.
    """

    def __init__(self) -> None:
        self.settings = LogSettings()

    def configure(self, config: Config) -> None:
        self.settings = LogSettings.from_config(config)
        logging.basicConfig(
            format=_JSON_FORMAT if self.settings.json else _CONSOLE_FORMAT,
            stream=sys.stdout,
            level=level_number(self.settings.root_level),
            force=True,
        )
        self.settings.apply_module_levels()

    def get_logger(self, name: str) -> Any:
        return _EventLogger(logging.getLogger(name))

    def set_level(self, name: str, level: str) -> None:
        logging.getLogger(name).setLevel(level_number(level))
