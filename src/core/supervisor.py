"""Transcription channel supervision with capped exponential backoff."""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from src.config import Settings, get_settings
from src.core.events import (
    ChannelEvent,
    ChannelReconnected,
    ChannelReconnecting,
    SessionEvent,
)
from src.core.models import ChannelHealth
from src.logging_config import get_logger
from src.observability.metrics import CHANNEL_RECONNECTS
from src.services.stt.exceptions import ChannelOpenError, ChannelUnrecoverable
from src.services.stt.protocol import ChannelConfig, ChannelFactory, TranscriptionChannel

logger: Any = get_logger(__name__)

Sleep = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class ReconnectPolicy:
    """Capped exponential backoff.

    Attempt ``n`` (1-based) waits ``min(base * 2**(n-1), max)`` seconds.
    """

    base_delay_seconds: float = 1.0
    max_delay_seconds: float = 8.0
    max_attempts: int = 5

    def delay_for(self, attempt: int) -> float:
        if attempt < 1:
            return 0.0
        return min(self.base_delay_seconds * 2 ** (attempt - 1), self.max_delay_seconds)

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> ReconnectPolicy:
        s = settings or get_settings()
        return cls(
            base_delay_seconds=s.reconnect_base_delay_seconds,
            max_delay_seconds=s.reconnect_max_delay_seconds,
            max_attempts=s.reconnect_max_attempts,
        )


class ReconnectSupervisor:
    """Owns the live transcription channel and replaces it when it fails.

    Every channel gets a generation number. Events are routed to
    ``on_event`` tagged with it, so the owner can ignore anything a
    replaced channel still delivers. The previous channel is always
    closed before its replacement is created. Transcript and turn state
    are never touched here; ``on_replaced`` lets the owner drop interim
    text heard on the dead channel.

    One ``ChannelHealth`` spans every channel of the call: each failed open
    or reported failure adds to ``consecutive_failures``, which picks the
    next backoff delay, and only a successful open resets it.
    """

    def __init__(
        self,
        factory: ChannelFactory,
        config: ChannelConfig,
        *,
        on_event: Callable[[int, ChannelEvent], None],
        policy: ReconnectPolicy | None = None,
        emit: Callable[[SessionEvent], None] | None = None,
        on_replaced: Callable[[], None] | None = None,
        on_unrecoverable: Callable[[ChannelUnrecoverable], Awaitable[None]] | None = None,
        sleep: Sleep = asyncio.sleep,
        name: str = "call",
    ) -> None:
        self._factory = factory
        self._config = config
        self._on_event = on_event
        self._policy = policy or ReconnectPolicy()
        self._emit = emit
        self._on_replaced = on_replaced
        self._on_unrecoverable = on_unrecoverable
        self._sleep = sleep
        self._name = name

        self._channel: TranscriptionChannel | None = None
        self._generation = 0
        self._reconnect_task: asyncio.Task[None] | None = None
        # Failed channel not yet closed by the reconnect task
        self._retiring: TranscriptionChannel | None = None
        self._stopped = False
        # Survives channel replacement; failures reset only on a successful open
        self._health = ChannelHealth()
        self.reconnects = 0

    @property
    def policy(self) -> ReconnectPolicy:
        return self._policy

    @property
    def channel(self) -> TranscriptionChannel | None:
        """The live channel, or None while reconnecting or after stop."""
        return self._channel

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def health(self) -> ChannelHealth:
        return self._health

    @property
    def reconnecting(self) -> bool:
        return self._reconnect_task is not None and not self._reconnect_task.done()

    @property
    def stopped(self) -> bool:
        return self._stopped

    def is_current(self, generation: int) -> bool:
        return generation == self._generation and self._channel is not None

    async def connect(self) -> TranscriptionChannel:
        """Open the first channel, retrying per policy.

        Raises:
            ChannelUnrecoverable: Every attempt failed
        """
        return await self._open_with_retries(cause="", immediate_first=True)

    def report_failure(self, generation: int, cause: str) -> None:
        """Replace the channel of ``generation`` after an error or unexpected close.

        Ignored for stale generations, while a replacement is already in
        progress, and after stop().
        """
        if self._stopped or not self.is_current(generation) or self.reconnecting:
            return
        failed, self._channel = self._channel, None
        self._retiring = failed
        self._health.mark_errored()
        logger.warning(f"[{self._name}] Transcription channel failed: {cause}")
        self._reconnect_task = asyncio.create_task(
            self._reconnect(failed, cause),
            name=f"reconnect-{self._name}",
        )

    async def wait_reconnected(self) -> None:
        """Wait for an in-flight replacement to finish (or give up)."""
        task = self._reconnect_task
        if task is not None and task is not asyncio.current_task():
            with contextlib.suppress(asyncio.CancelledError):
                await task

    async def stop(self) -> None:
        """Cancel reconnection and close the current channel. Idempotent."""
        if self._stopped:
            return
        self._stopped = True

        task, self._reconnect_task = self._reconnect_task, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

        channels = (self._retiring, self._channel)
        self._retiring = self._channel = None
        for channel in channels:
            if channel is not None:
                await self._close_quietly(channel)
        self._health.mark_closed()

    # =========================================================================
    # Internals
    # =========================================================================

    async def _reconnect(self, failed: TranscriptionChannel | None, cause: str) -> None:
        self._retiring = None
        if failed is not None:
            await self._close_quietly(failed)
        if self._on_replaced is not None:
            self._on_replaced()

        try:
            await self._open_with_retries(cause=cause, immediate_first=False)
        except ChannelUnrecoverable as e:
            if self._stopped:
                return
            CHANNEL_RECONNECTS.labels(result="exhausted").inc()
            logger.error(f"[{self._name}] {e}")
            if self._on_unrecoverable is not None:
                await self._on_unrecoverable(e)
            return
        self.reconnects += 1

    async def _open_with_retries(self, *, cause: str, immediate_first: bool) -> TranscriptionChannel:
        max_attempts = self._policy.max_attempts
        last_error = cause

        for attempt in range(1, max_attempts + 1):
            retry = attempt - 1 if immediate_first else attempt
            if retry > 0:
                delay = self._policy.delay_for(self._health.consecutive_failures)
                self._publish(ChannelReconnecting(
                    attempt=attempt,
                    max_attempts=max_attempts,
                    delay_seconds=delay,
                    cause=last_error,
                ))
                logger.info(
                    f"[{self._name}] Reopening channel in {delay:.1f}s "
                    f"(attempt {attempt}/{max_attempts})"
                )
                await self._sleep(delay)

            if self._stopped:
                raise ChannelUnrecoverable("Call ended while connecting", attempts=attempt - 1)

            try:
                channel = await self._open_channel()
            except ChannelOpenError as e:
                if self._stopped:
                    raise ChannelUnrecoverable("Call ended while connecting", attempts=attempt) from e
                last_error = str(e)
                if retry > 0:
                    CHANNEL_RECONNECTS.labels(result="failure").inc()
                logger.warning(f"[{self._name}] Channel open failed (attempt {attempt}): {e}")
                continue

            if retry > 0:
                CHANNEL_RECONNECTS.labels(result="success").inc()
                self._publish(ChannelReconnected(attempt=attempt))
                logger.info(f"[{self._name}] Channel reopened on attempt {attempt}")
            return channel

        raise ChannelUnrecoverable(
            f"Transcription channel failed after {max_attempts} attempts: {last_error}",
            attempts=max_attempts,
        )

    async def _open_channel(self) -> TranscriptionChannel:
        self._generation += 1
        generation = self._generation

        def sink(event: ChannelEvent) -> None:
            if generation == self._generation:
                self._health.touch()
            self._on_event(generation, event)

        channel = self._factory(sink)
        self._channel = channel
        self._health.mark_connecting()
        try:
            await channel.open(self._config)
        except Exception as e:
            if self._channel is channel:
                self._channel = None
            self._health.mark_errored()
            await self._close_quietly(channel)
            if isinstance(e, ChannelOpenError):
                raise
            raise ChannelOpenError(str(e) or type(e).__name__) from e

        if self._stopped:
            # stop() ran while the open was in flight
            if self._channel is channel:
                self._channel = None
            await self._close_quietly(channel)
            raise ChannelUnrecoverable("Call ended while connecting", attempts=0)
        self._health.mark_open()
        return channel

    async def _close_quietly(self, channel: TranscriptionChannel) -> None:
        try:
            await channel.close()
        except Exception as e:
            logger.warning(f"[{self._name}] Error closing channel: {e}")

    def _publish(self, event: SessionEvent) -> None:
        if self._emit is not None:
            self._emit(event)
