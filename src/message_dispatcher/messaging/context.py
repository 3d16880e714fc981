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
"""Inbound message context backed by contextvars.

While a delivery is being routed, its headers are visible to the handler and
to any publish the handler performs, so selected headers (tenant, trace...)
flow from inbound to outbound messages without being passed around.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping, MutableMapping
from contextlib import contextmanager
from contextvars import ContextVar
from types import MappingProxyType
from typing import Any

_inbound_context_var: ContextVar[InboundContext | None] = ContextVar(
    "message_dispatcher_inbound_context", default=None
)


class InboundContext:
    """Read-only view of the headers of the delivery currently being handled.

    Use ``InboundContext.scope(headers)`` to install a context for the
    current async task and ``InboundContext.current()`` to retrieve it.
    """

    __slots__ = ("_headers",)

    def __init__(self, headers: Mapping[str, Any]) -> None:
        self._headers: Mapping[str, Any] = MappingProxyType(dict(headers))

    @property
    def headers(self) -> Mapping[str, Any]:
        return self._headers

    def get(self, name: str, default: Any = None) -> Any:
        return self._headers.get(name, default)

    def __contains__(self, name: object) -> bool:
        return name in self._headers

    @classmethod
    @contextmanager
    def scope(cls, headers: Mapping[str, Any]) -> Iterator[InboundContext]:
        """Install a context for the duration of the block; always restores the previous one."""
        ctx = cls(headers)
        token = _inbound_context_var.set(ctx)
        try:
            yield ctx
        finally:
            _inbound_context_var.reset(token)

    @classmethod
    def current(cls) -> InboundContext | None:
        """Get the InboundContext for the current async task, or None."""
        return _inbound_context_var.get()

    @classmethod
    def get_header(cls, name: str, default: Any = None) -> Any:
        ctx = _inbound_context_var.get()
        return default if ctx is None else ctx.get(name, default)

    @classmethod
    def copy_mapped_headers_into(
        cls,
        outbound: MutableMapping[str, Any],
        mapped_headers: Iterable[str],
    ) -> MutableMapping[str, Any]:
        """Copy every mapped header present in the current context into outbound."""
        ctx = _inbound_context_var.get()
        if ctx is None:
            return outbound
        for name in mapped_headers:
            if name in ctx:
                outbound[name] = ctx.get(name)
        return outbound
