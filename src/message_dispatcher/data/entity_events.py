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
"""Entity events — forwards committed inserts/updates through the publisher.

Registers SQLAlchemy session listeners. ``after_flush`` snapshots every new
or modified instance whose class carries ``@entity_events_publish`` (with
the matching flag on); ``after_commit`` publishes the snapshots as events
once the transaction has committed; ``after_rollback`` drops them. Nothing
is published for a transaction that did not commit.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import logging
from collections.abc import Coroutine
from typing import Any

from message_dispatcher.config.properties import EntityEventsProperties
from message_dispatcher.messaging.decorators import entity_publish_flags
from message_dispatcher.messaging.publisher import MessagePublisher

logger = logging.getLogger(__name__)

_SESSION_INFO_KEY = "message_dispatcher.entity_events"

CREATED = "CREATED"
UPDATED = "UPDATED"


def entity_snapshot(entity: Any) -> dict[str, Any]:
    """Column values of a mapped instance, keyed by attribute name."""
    from sqlalchemy import inspect

    mapper = inspect(entity).mapper
    return {attr.key: getattr(entity, attr.key) for attr in mapper.column_attrs}


class EntityEventBridge:
    """Publishes entity created/updated events after the owning transaction commits.

    Call :meth:`register` once at startup, from the event loop the publisher
    runs on. Sessions used on that loop's thread (including ``AsyncSession``)
    schedule publishing as tasks; sessions used from other threads hand the
    publish over to the loop.
    """

    def __init__(
        self,
        publisher: MessagePublisher,
        properties: EntityEventsProperties,
        *,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        self._publisher = publisher
        self._properties = properties
        self._loop = loop
        self._target: Any = None
        self._tasks: set[asyncio.Task[None]] = set()
        self._futures: set[concurrent.futures.Future[None]] = set()

    @property
    def registered(self) -> bool:
        return self._target is not None

    def register(self, target: Any = None) -> None:
        """Attach session listeners to ``target`` (default: every Session)."""
        from sqlalchemy import event
        from sqlalchemy.orm import Session

        if self._target is not None:
            return
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        self._target = target if target is not None else Session
        event.listen(self._target, "after_flush", self._after_flush)
        event.listen(self._target, "after_commit", self._after_commit)
        event.listen(self._target, "after_rollback", self._after_rollback)
        logger.info(
            "Registered entity event listeners (exchange=%s, routing_key=%s)",
            self._properties.exchange,
            self._properties.routing_key,
        )

    def unregister(self) -> None:
        from sqlalchemy import event

        if self._target is None:
            return
        event.remove(self._target, "after_flush", self._after_flush)
        event.remove(self._target, "after_commit", self._after_commit)
        event.remove(self._target, "after_rollback", self._after_rollback)
        self._target = None

    async def drain(self) -> None:
        """Wait for every scheduled publish to finish."""
        pending = [*self._tasks, *(asyncio.wrap_future(f) for f in self._futures)]
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    # ── session listeners ──────────────────────────────────────

    def _after_flush(self, session: Any, flush_context: Any) -> None:
        # snapshot now: attributes are expired by the time after_commit runs
        changes: dict[int, tuple[str, str, dict[str, Any]]] = session.info.setdefault(_SESSION_INFO_KEY, {})
        for entity in session.new:
            flags = entity_publish_flags(entity)
            if flags is not None and flags[0]:
                changes[id(entity)] = (CREATED, type(entity).__name__, entity_snapshot(entity))
        for entity in session.dirty:
            flags = entity_publish_flags(entity)
            if flags is None or not session.is_modified(entity, include_collections=False):
                continue
            previous = changes.get(id(entity))
            if previous is not None:
                changes[id(entity)] = (previous[0], previous[1], entity_snapshot(entity))
            elif flags[1]:
                changes[id(entity)] = (UPDATED, type(entity).__name__, entity_snapshot(entity))

    def _after_commit(self, session: Any) -> None:
        changes: dict[int, tuple[str, str, dict[str, Any]]] = session.info.pop(_SESSION_INFO_KEY, {})
        for change, entity_type, snapshot in changes.values():
            self._schedule(self._publish(change, entity_type, snapshot))

    def _after_rollback(self, session: Any) -> None:
        changes = session.info.pop(_SESSION_INFO_KEY, {})
        if changes:
            logger.warning("Transaction rolled back; dropped %d entity event(s)", len(changes))

    # ── publishing ─────────────────────────────────────────────

    async def _publish(self, change: str, entity_type: str, snapshot: dict[str, Any]) -> None:
        await self._publisher.send_event(
            snapshot,
            routing_key=self._properties.routing_key,
            exchange=self._properties.exchange,
            body_type=entity_type,
        )
        logger.debug("Published %s event for %s", change, entity_type)

    def _schedule(self, coro: Coroutine[Any, Any, None]) -> None:
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        if self._loop is not None and running is self._loop:
            task = self._loop.create_task(coro)
            self._tasks.add(task)
            task.add_done_callback(self._on_task_done)
        elif self._loop is not None and self._loop.is_running():
            future = asyncio.run_coroutine_threadsafe(coro, self._loop)
            self._futures.add(future)
            future.add_done_callback(self._on_future_done)
        else:
            coro.close()
            logger.error("No running event loop to publish entity event on; event dropped")

    def _on_task_done(self, task: asyncio.Task[None]) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            self._log_failure(task.exception())

    def _on_future_done(self, future: concurrent.futures.Future[None]) -> None:
        self._futures.discard(future)
        if not future.cancelled() and future.exception() is not None:
            self._log_failure(future.exception())

    @staticmethod
    def _log_failure(exc: BaseException | None) -> None:
        logger.error("Failed to publish entity event: %s", exc, exc_info=exc)
