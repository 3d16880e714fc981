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
"""Handler registry keyed by ``(handler type, payload type name)``.

Handlers are registered explicitly with :meth:`HandlerRegistry.register` or
discovered from listener objects carrying the markers set by
``@message_listener`` and ``@command`` / ``@query`` / ``@notification`` /
``@event``. Registration validates each handler's signature; once frozen the
registry only serves lookups.
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Any, get_type_hints

from message_dispatcher.kernel.exceptions import (
    HandlerDuplicatedInputParameterException,
    HandlerMultipleInputParametersException,
    HandlerNoInputParameterException,
    HandlerNotFoundException,
    HandlerRegistrationException,
)
from message_dispatcher.messaging.codec import JsonCodec
from message_dispatcher.messaging.decorators import handler_marker, is_message_listener
from message_dispatcher.messaging.types import HandlerType

_logger = logging.getLogger(__name__)

HandlerKey = tuple[HandlerType, str]


@dataclass(frozen=True)
class HandlerMethod:
    """A registered handler: the bound callable plus its payload type."""

    handler_type: HandlerType
    body_type: str
    func: Callable[..., Any]
    payload_type: Any
    name: str

    async def invoke(self, payload: Any) -> Any:
        result = self.func(payload)
        if inspect.isawaitable(result):
            result = await result
        return result


def _qualified_name(func: Callable[..., Any]) -> str:
    owner = getattr(func, "__self__", None)
    name = getattr(func, "__name__", repr(func))
    if owner is not None:
        return f"{type(owner).__name__}.{name}"
    return getattr(func, "__qualname__", name)


def _payload_parameter(func: Callable[..., Any], name: str) -> inspect.Parameter:
    """Return the single payload parameter of a (bound) callable."""
    try:
        signature = inspect.signature(func)
    except (TypeError, ValueError) as exc:
        raise HandlerRegistrationException(f"Cannot inspect signature of handler {name}: {exc}", name) from exc

    params = [
        p
        for p in signature.parameters.values()
        if p.kind not in (inspect.Parameter.VAR_POSITIONAL, inspect.Parameter.VAR_KEYWORD)
    ]
    if not params:
        raise HandlerNoInputParameterException(name)
    if len(params) > 1:
        raise HandlerMultipleInputParametersException(name, len(params))
    return params[0]


def _resolve_hints(func: Callable[..., Any]) -> dict[str, Any]:
    target = inspect.unwrap(getattr(func, "__func__", func))
    try:
        return get_type_hints(target)
    except (NameError, TypeError):
        return dict(getattr(target, "__annotations__", {}))


class HandlerRegistry:
    """Registry of message handlers.

    Lookups after :meth:`freeze` never mutate state, so concurrent workers
    read it without locking.
    """

    def __init__(self) -> None:
        self._handlers: dict[HandlerKey, HandlerMethod] = {}
        self._frozen = False

    # ── registration ───────────────────────────────────────────

    def register(
        self,
        handler_type: HandlerType | str,
        func: Callable[..., Any],
        payload_type: type | str | None = None,
    ) -> HandlerMethod:
        """Register ``func`` as the handler for ``handler_type`` messages.

        The payload type name comes from ``payload_type`` when given, else
        from the annotation of the callable's single parameter.
        """
        if self._frozen:
            raise HandlerRegistrationException(
                f"Registry is frozen; cannot register {_qualified_name(func)}", _qualified_name(func)
            )
        kind = handler_type if isinstance(handler_type, HandlerType) else HandlerType(str(handler_type).upper())
        name = _qualified_name(func)
        param = _payload_parameter(func, name)
        hints = _resolve_hints(func)

        annotated = hints.get(param.name, param.annotation)
        if annotated is inspect.Parameter.empty:
            annotated = Any

        if isinstance(payload_type, str):
            body_type = payload_type
            decode_as = annotated
        elif payload_type is not None:
            body_type = JsonCodec.type_name(payload_type)
            decode_as = payload_type
        elif annotated is Any:
            raise HandlerRegistrationException(
                f"Handler {name} has no payload type annotation and no explicit payload_type", name
            )
        elif isinstance(annotated, str):
            # unresolvable forward reference: keep the name, decode as plain JSON
            _logger.warning("Cannot resolve payload annotation %r of %s; decoding as plain JSON", annotated, name)
            body_type = annotated.rsplit(".", 1)[-1]
            decode_as = Any
        else:
            body_type = JsonCodec.type_name(annotated)
            decode_as = annotated

        if kind is HandlerType.QUERY and "return" in hints and hints["return"] in (None, type(None)):
            _logger.warning("Query handler %s returns None; callers awaiting a reply will receive null", name)

        key = (kind, body_type)
        existing = self._handlers.get(key)
        if existing is not None:
            raise HandlerDuplicatedInputParameterException(name, kind.value, body_type, existing.name)

        method = HandlerMethod(handler_type=kind, body_type=body_type, func=func, payload_type=decode_as, name=name)
        self._handlers[key] = method
        _logger.debug("Registered %s handler %s for %s", kind.value, name, body_type)
        return method

    def freeze(self) -> None:
        self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    # ── lookup ─────────────────────────────────────────────────

    def get_handler(self, handler_type: HandlerType, body_type: str) -> HandlerMethod:
        handler = self._handlers.get((handler_type, body_type))
        if handler is None:
            raise HandlerNotFoundException(handler_type.value, body_type)
        return handler

    def has_handler(self, handler_type: HandlerType, body_type: str) -> bool:
        return (handler_type, body_type) in self._handlers

    # ── introspection ──────────────────────────────────────────

    @property
    def handler_count(self) -> int:
        return len(self._handlers)

    def registered_handlers(self) -> dict[HandlerKey, str]:
        return {key: method.name for key, method in self._handlers.items()}

    # ── auto-discovery ─────────────────────────────────────────

    def discover(self, listeners: Iterable[Any]) -> int:
        """Register every marked method of each ``@message_listener`` object.

        Returns the number of handlers registered.
        """
        count = 0
        for listener in listeners:
            if not is_message_listener(listener):
                _logger.warning("Skipping %s: not decorated with @message_listener", type(listener).__name__)
                continue
            seen: set[str] = set()
            for klass in type(listener).__mro__:
                for attr_name, attr in vars(klass).items():
                    if attr_name in seen:
                        continue
                    seen.add(attr_name)
                    marker = handler_marker(attr)
                    if marker is None:
                        continue
                    kind, payload_type = marker
                    self.register(kind, getattr(listener, attr_name), payload_type)
                    count += 1
        return count
