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
"""Declarative markers for listeners, handlers and entity events.

Mark listener classes with ``@message_listener`` and their handler methods
with ``@command`` / ``@query`` / ``@notification`` / ``@event`` (or the
generic ``@message_handler``) for discovery by the
:class:`~message_dispatcher.messaging.registry.HandlerRegistry`.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any, TypeVar, overload

from message_dispatcher.messaging.types import HandlerType

T = TypeVar("T", bound=type)
F = TypeVar("F", bound=Callable[..., Any])

LISTENER_ATTR = "__message_dispatcher_listener__"
HANDLER_TYPE_ATTR = "__message_dispatcher_handler_type__"
PAYLOAD_TYPE_ATTR = "__message_dispatcher_payload_type__"
PUBLISH_CREATE_ATTR = "__message_dispatcher_publish_create__"
PUBLISH_UPDATE_ATTR = "__message_dispatcher_publish_update__"


# ── message_listener ───────────────────────────────────────────


@overload
def message_listener(cls: T) -> T: ...


@overload
def message_listener() -> Callable[[T], T]: ...


def message_listener(cls: T | None = None) -> T | Callable[[T], T]:
    """Mark a class whose methods carry handler markers.

    Can be used bare or called:

        @message_listener
        class Billing: ...
    """

    def _apply(klass: T) -> T:
        setattr(klass, LISTENER_ATTR, True)
        return klass

    if cls is not None:
        return _apply(cls)
    return _apply


def is_message_listener(obj: Any) -> bool:
    return bool(getattr(type(obj), LISTENER_ATTR, False))


# ── handler markers ────────────────────────────────────────────


def message_handler(handler_type: HandlerType | str, payload_type: type | str | None = None) -> Callable[[F], F]:
    """Mark a method as the handler for ``(handler_type, payload type name)``.

    ``payload_type`` overrides the name taken from the method's single
    parameter annotation; pass a type or its stable short name.
    """
    kind = handler_type if isinstance(handler_type, HandlerType) else HandlerType(str(handler_type).upper())

    def decorator(func: F) -> F:
        setattr(func, HANDLER_TYPE_ATTR, kind)
        setattr(func, PAYLOAD_TYPE_ATTR, payload_type)
        return func

    return decorator


def _kind_marker(kind: HandlerType) -> Any:
    def marker(func: F | None = None, *, payload_type: type | str | None = None) -> F | Callable[[F], F]:
        if func is not None:
            return message_handler(kind)(func)
        return message_handler(kind, payload_type)

    marker.__name__ = kind.value.lower()
    marker.__doc__ = f"Mark a method as a {kind.value} handler. Use bare or with ``payload_type=``."
    return marker


command = _kind_marker(HandlerType.COMMAND)
query = _kind_marker(HandlerType.QUERY)
notification = _kind_marker(HandlerType.NOTIFICATION)
event = _kind_marker(HandlerType.EVENT)


def handler_marker(func: Any) -> tuple[HandlerType, type | str | None] | None:
    """Return ``(handler_type, payload_type)`` for a marked function, else None."""
    target = getattr(func, "__func__", func)
    kind = getattr(target, HANDLER_TYPE_ATTR, None)
    if kind is None:
        return None
    return kind, getattr(target, PAYLOAD_TYPE_ATTR, None)


# ── entity_events_publish ──────────────────────────────────────


@overload
def entity_events_publish(cls: T) -> T: ...


@overload
def entity_events_publish(*, publish_create: bool = True, publish_update: bool = True) -> Callable[[T], T]: ...


def entity_events_publish(
    cls: T | None = None,
    *,
    publish_create: bool = True,
    publish_update: bool = True,
) -> T | Callable[[T], T]:
    """Mark a persistent entity class whose committed inserts/updates become events.

        @entity_events_publish(publish_update=False)
        class Account(Base): ...
    """

    def _apply(klass: T) -> T:
        setattr(klass, PUBLISH_CREATE_ATTR, publish_create)
        setattr(klass, PUBLISH_UPDATE_ATTR, publish_update)
        return klass

    if cls is not None:
        return _apply(cls)
    return _apply


def entity_publish_flags(entity_or_type: Any) -> tuple[bool, bool] | None:
    """Return ``(publish_create, publish_update)`` for a marked entity, else None."""
    klass = entity_or_type if isinstance(entity_or_type, type) else type(entity_or_type)
    if not hasattr(klass, PUBLISH_CREATE_ATTR):
        return None
    return bool(getattr(klass, PUBLISH_CREATE_ATTR)), bool(getattr(klass, PUBLISH_UPDATE_ATTR))
