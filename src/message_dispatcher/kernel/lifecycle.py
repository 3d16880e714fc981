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
"""Unified lifecycle protocol for broker adapters and runtime components.

Components that own connections, channels or background tasks implement this
protocol. The dispatcher runtime calls start() in wiring order during startup
and stop() in reverse order during shutdown.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class Lifecycle(Protocol):
    """Standard lifecycle for infrastructure components."""

    async def start(self) -> None:
        """Open connections and spawn background work.

        A failure here is fatal: the runtime aborts startup and stops whatever
        was already started.
        """
        ...

    async def stop(self) -> None:
        """Release connections and background work. Safe to call twice."""
        ...
