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
"""Consumer loop: concurrent workers driving router, retry and reply.

Each worker owns one delivery stream (one channel) on the primary queue and
processes one delivery at a time. A monitor task adds workers up to the
configured maximum while the queue has a backlog and every worker is busy,
and retires idle workers down to the minimum once the backlog is gone.

Per delivery:

- routing failures (missing header, unknown handler, undecodable body) are
  dead-lettered straight away and never answered;
- a failed command/query with a reply queue is answered with the failure at
  once, unless the failure is explicitly retryable;
- other retryable failures are retried with exponential backoff, then
  dead-lettered (and answered, for a command/query awaiting a reply);
- a successful delivery with a reply queue is answered with the value.
"""

from __future__ import annotations

import asyncio
import itertools
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Any

import structlog

from message_dispatcher.config.properties import MessageDispatcherProperties
from message_dispatcher.kernel.exceptions import EncodingException, RetryableException, RoutingException
from message_dispatcher.messaging.codec import JsonCodec
from message_dispatcher.messaging.ports.outbound import BrokerPort, Codec, Delivery, DeliveryStream
from message_dispatcher.messaging.retry import (
    DeadLetterPublisher,
    RetryPolicy,
    increment_retry_count,
    is_retryable,
    root_cause,
    utc_now_iso,
)
from message_dispatcher.messaging.router import MessageRouter
from message_dispatcher.messaging.types import Envelope, Headers, RemoteInvocationResult

logger = structlog.get_logger("message_dispatcher.consumer")

Sleep = Callable[[float], Awaitable[Any]]


class DeliveryOutcome(str, Enum):
    HANDLED = "handled"
    REPLIED_WITH_EXCEPTION = "replied_with_exception"
    DEAD_LETTERED = "dead_lettered"


class _Worker:
    def __init__(self, worker_id: int, stream: DeliveryStream) -> None:
        self.worker_id = worker_id
        self.stream = stream
        self.busy = False
        self.retiring = False
        self.task: asyncio.Task[None] | None = None


class ConsumerLoop:
    """Drives ``[min, max]`` workers over the primary queue."""

    def __init__(
        self,
        broker: BrokerPort,
        router: MessageRouter,
        properties: MessageDispatcherProperties,
        *,
        codec: Codec | None = None,
        retry_policy: RetryPolicy | None = None,
        dead_letterer: DeadLetterPublisher | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._broker = broker
        self._router = router
        self._properties = properties
        self._codec: Codec = codec or JsonCodec()
        self._retry_policy = retry_policy or RetryPolicy.from_properties(properties)
        self._dead_letterer = dead_letterer or DeadLetterPublisher.from_properties(broker, properties)
        self._sleep = sleep
        self._queue = str(properties.queue_name)
        self._min_workers, self._max_workers = properties.concurrency_range
        self._workers: dict[int, _Worker] = {}
        self._ids = itertools.count(1)
        self._monitor: asyncio.Task[None] | None = None
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    @property
    def worker_count(self) -> int:
        return sum(1 for w in self._workers.values() if not w.retiring)

    @property
    def busy_count(self) -> int:
        return sum(1 for w in self._workers.values() if w.busy)

    # ── lifecycle ──────────────────────────────────────────────

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        for _ in range(self._min_workers):
            await self._spawn_worker()
        self._monitor = asyncio.create_task(self._monitor_loop(), name=f"consumer-monitor-{self._queue}")
        logger.info(
            "consumer_started",
            queue=self._queue,
            workers=self._min_workers,
            max_workers=self._max_workers,
            prefetch=self._properties.prefetch_count,
        )

    async def stop(self) -> None:
        """Stop accepting deliveries, drain in-flight ones, cancel stragglers, close channels."""
        if not self._running:
            return
        self._running = False
        if self._monitor is not None:
            self._monitor.cancel()
            await asyncio.gather(self._monitor, return_exceptions=True)
            self._monitor = None

        workers = list(self._workers.values())
        for worker in workers:
            await worker.stream.cancel()

        tasks = [w.task for w in workers if w.task is not None]
        if tasks:
            _, pending = await asyncio.wait(tasks, timeout=self._properties.shutdown_timeout_seconds)
            if pending:
                logger.warning("consumer_drain_timeout", queue=self._queue, cancelled=len(pending))
                for task in pending:
                    task.cancel()
                await asyncio.gather(*pending, return_exceptions=True)

        # channels close only once every in-flight delivery has been settled
        for worker in workers:
            await self._close_stream(worker)
        self._workers.clear()
        logger.info("consumer_stopped", queue=self._queue)

    # ── workers ────────────────────────────────────────────────

    async def _spawn_worker(self) -> _Worker:
        stream = await self._broker.consume(self._queue, prefetch_count=self._properties.prefetch_count)
        worker = _Worker(next(self._ids), stream)
        worker.task = asyncio.create_task(self._run(worker), name=f"consumer-{self._queue}-{worker.worker_id}")
        self._workers[worker.worker_id] = worker
        return worker

    async def _run(self, worker: _Worker) -> None:
        try:
            async for delivery in worker.stream:
                worker.busy = True
                try:
                    await self._handle(delivery)
                finally:
                    worker.busy = False
                if worker.retiring:
                    break
        except Exception:
            logger.exception("consumer_worker_failed", queue=self._queue, worker=worker.worker_id)
        # a worker that exits while the loop runs leaves the pool; the monitor refills it
        if self._running:
            worker.retiring = True
            self._workers.pop(worker.worker_id, None)
            await self._close_stream(worker)

    async def _close_stream(self, worker: _Worker) -> None:
        try:
            await worker.stream.close()
        except Exception:
            logger.warning("consumer_stream_close_failed", queue=self._queue, worker=worker.worker_id, exc_info=True)

    async def _handle(self, delivery: Delivery) -> None:
        try:
            outcome = await self.process(delivery.envelope)
        except asyncio.CancelledError:
            await delivery.reject(requeue=True)
            raise
        except Exception:
            logger.exception(
                "delivery_processing_failed",
                queue=self._queue,
                correlation_id=delivery.envelope.correlation_id,
            )
            await delivery.reject(requeue=False)
            return
        await delivery.ack()
        logger.debug("delivery_acked", queue=self._queue, outcome=outcome.value)

    async def _monitor_loop(self) -> None:
        interval = self._properties.monitor_interval_seconds
        while self._running:
            await asyncio.sleep(interval)
            try:
                await self.rebalance()
            except Exception:
                logger.exception("consumer_rebalance_failed", queue=self._queue)

    async def rebalance(self) -> None:
        """Scale workers toward the backlog, within ``[min, max]``."""
        if not self._running:
            return
        active = [w for w in self._workers.values() if not w.retiring]
        if len(active) < self._min_workers:
            for _ in range(self._min_workers - len(active)):
                await self._spawn_worker()
            logger.info("consumer_workers_replaced", queue=self._queue, workers=self._min_workers)
            return
        depth = await self._broker.queue_depth(self._queue)
        if depth > 0 and len(active) < self._max_workers and all(w.busy for w in active):
            await self._spawn_worker()
            logger.debug("consumer_scaled_up", queue=self._queue, workers=len(active) + 1, backlog=depth)
        elif depth == 0 and len(active) > self._min_workers:
            idle = next((w for w in reversed(active) if not w.busy), None)
            if idle is not None:
                idle.retiring = True
                await idle.stream.cancel()
                logger.debug("consumer_scaled_down", queue=self._queue, workers=len(active) - 1)

    # ── per-delivery pipeline ──────────────────────────────────

    def _reply_capable(self, envelope: Envelope) -> bool:
        kind = envelope.handler_type
        return bool(
            envelope.reply_to
            and kind is not None
            and kind.expects_reply
            and self._properties.return_exceptions
        )

    async def process(self, envelope: Envelope) -> DeliveryOutcome:
        """Route one delivery under the retry policy and settle replies/dead-lettering."""
        envelope = envelope.copy()
        attempt = 0
        while True:
            attempt += 1
            try:
                value = await self._router.route(envelope)
            except RoutingException as exc:
                increment_retry_count(envelope.headers)
                await self._dead_letterer.recover(envelope, exc)
                return DeliveryOutcome.DEAD_LETTERED
            except Exception as exc:
                increment_retry_count(envelope.headers)
                cause = root_cause(exc)
                explicit_retry = isinstance(exc, RetryableException) or isinstance(cause, RetryableException)
                reply_capable = self._reply_capable(envelope)

                if reply_capable and not explicit_retry:
                    await self._reply(envelope, RemoteInvocationResult.of_exception(cause, self._service))
                    if not is_retryable(exc):
                        await self._dead_letterer.recover(envelope, exc)
                    logger.info(
                        "handler_failed_replied",
                        error_type=type(cause).__name__,
                        error=str(cause),
                        correlation_id=envelope.correlation_id,
                    )
                    return DeliveryOutcome.REPLIED_WITH_EXCEPTION

                if is_retryable(exc) and self._retry_policy.can_retry(attempt):
                    delay = self._retry_policy.backoff(attempt)
                    logger.warning(
                        "handler_failed_retrying",
                        attempt=attempt,
                        max_attempts=self._retry_policy.max_attempts,
                        delay=delay,
                        error_type=type(cause).__name__,
                        error=str(cause),
                    )
                    await self._sleep(delay)
                    continue

                await self._dead_letterer.recover(envelope, exc)
                if reply_capable:
                    await self._reply(envelope, RemoteInvocationResult.of_exception(cause, self._service))
                return DeliveryOutcome.DEAD_LETTERED
            else:
                if envelope.reply_to:
                    await self._reply(envelope, RemoteInvocationResult.of_value(value, self._service))
                return DeliveryOutcome.HANDLED

    @property
    def _service(self) -> str:
        return self._properties.application_name

    async def _reply(self, request: Envelope, result: RemoteInvocationResult) -> None:
        try:
            body = self._codec.encode(result)
        except EncodingException as exc:
            logger.error("reply_encoding_failed", error=str(exc), correlation_id=request.correlation_id)
            body = self._codec.encode(RemoteInvocationResult.of_exception(exc, self._service))

        reply = Envelope(
            body=body,
            headers={
                Headers.RESPONSE_FROM: self._service,
                Headers.RESPONSE_TIMESTAMP: utc_now_iso(),
            },
            content_type=self._codec.content_type,
            correlation_id=request.correlation_id,
        )
        # the requester may be gone; an unroutable reply is dropped, not an error
        await self._broker.publish("", str(request.reply_to), reply, mandatory=False)
        logger.debug("reply_sent", reply_to=request.reply_to, correlation_id=request.correlation_id)
