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
"""LoggingPort — the hexagonal port for dispatcher logging."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from message_dispatcher.core.config import Config

LOGGING_PREFIX = "message.dispatcher.logging"


def level_number(level: str) -> int:
    """Numeric stdlib level for a name such as ``"debug"``; unknown names map to INFO."""
    value = logging.getLevelName(str(level).upper())
    return value if isinstance(value, int) else logging.INFO


@dataclass(frozen=True)
class LogSettings:
    """The ``message.dispatcher.logging`` section as adapters consume it."""

    root_level: str = "INFO"
    format: str = "console"
    module_levels: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_config(cls, config: Config) -> LogSettings:
        levels = config.resolved_section(f"{LOGGING_PREFIX}.level")
        root = levels.pop("root", "INFO")
        return cls(
            root_level=str(root).upper(),
            format=str(config.get(f"{LOGGING_PREFIX}.format", "console")).lower(),
            module_levels={name: str(level).upper() for name, level in levels.items()},
        )

    @property
    def json(self) -> bool:
        return self.format == "json"

    def apply_module_levels(self) -> None:
        for name, level in self.module_levels.items():
            logging.getLogger(name).setLevel(level_number(level))


@runtime_checkable
class LoggingPort(Protocol):
    """Port defining the logging contract."""

    def configure(self, config: Config) -> None: ...
    def get_logger(self, name: str) -> Any: ...
    def set_level(self, name: str, level: str) -> None: ...
