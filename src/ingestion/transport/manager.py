"""
Transport manager: owns the single active acquisition channel.

The manager runs on one asyncio event loop. Every activation (start or
reconfigure) gets a fresh ``CancellationToken``; timers, fetches and stream
readers belonging to an older activation check their token after each
suspension point and become no-ops once it is cancelled. Teardown cancels the
token, the tasks and the open channel synchronously, before returning.

State machine::

    IDLE ──start/reconfigure──> POLLING | STREAMING
    POLLING | STREAMING ──failure (retries left)──> BACKING_OFF
    BACKING_OFF ──retry timer fires──> POLLING | STREAMING | FALLEN_BACK
    STREAMING ──retries exhausted──> FALLEN_BACK (polling, use_streaming=False)
    any ──paused/stop──> IDLE
"""

import asyncio
from collections.abc import Callable
from datetime import datetime
from enum import Enum

import structlog

from ..errors import ParseError, TransportError
from ..models import (
    ConnectionState,
    ConnectionStatus,
    IngestionConfig,
    PollingConfig,
    parse_event,
    utc_now,
)
from ..store import MetricsStore
from .client import MetricsAPIClient
from .streams import StreamChannel, get_stream

logger = structlog.get_logger(__name__)


class TransportState(Enum):
    """States of the transport manager"""

    IDLE = "idle"
    POLLING = "polling"
    STREAMING = "streaming"
    BACKING_OFF = "backing_off"
    FALLEN_BACK = "fallen_back"


class CancellationToken:
    """Flag shared by every callback of one transport activation"""

    __slots__ = ("_cancelled",)

    def __init__(self):
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        self._cancelled = True


def retry_delay_ms(attempt: int, base_ms: int = 1000, cap_ms: int = 30000) -> int:
    """Exponential backoff: ``min(base * 2**attempt, cap)``"""
    return min(base_ms * (2 ** max(0, attempt)), cap_ms)


class TransportManager:
    """Keeps exactly one poll loop or stream running, consistent with the polling config"""

    def __init__(
        self,
        store: MetricsStore,
        client: MetricsAPIClient,
        config: IngestionConfig | None = None,
        stream_factory: Callable[[], StreamChannel] | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.client = client
        self.config = config or store.config
        self.clock = clock
        self._stream_factory = stream_factory or (
            lambda: get_stream(self.config.stream_backend, self.config, self.client)
        )

        self.state = TransportState.IDLE
        self.retry_count = 0
        self.visible = True

        self._mode = TransportState.IDLE
        self._active: PollingConfig | None = None
        self._token: CancellationToken | None = None
        self._cursor: datetime | None = None
        self._falling_back = False
        self._unsubscribe: Callable[[], None] | None = None

        self._ticker: asyncio.Task | None = None
        self._retry: asyncio.Task | None = None
        self._fetch: asyncio.Task | None = None
        self._stream: asyncio.Task | None = None
        self._channel: StreamChannel | None = None

        self.stats = {
            "polls": 0,
            "poll_errors": 0,
            "stream_messages": 0,
            "stream_errors": 0,
            "parse_errors": 0,
            "events_ingested": 0,
            "fallbacks": 0,
        }

    @property
    def cursor(self) -> datetime | None:
        """Timestamp sent as ``since`` on the next poll"""
        return self._cursor

    # Lifecycle

    def start(self, config: PollingConfig | None = None) -> None:
        """Activate the transport described by ``config`` (default: the store's config)

        Must be called from within the running event loop.
        """
        if self._unsubscribe is None:
            self._unsubscribe = self.store.subscribe_config(self.reconfigure)
        self.reconfigure(config or self.store.polling_config)

    def reconfigure(self, config: PollingConfig) -> None:
        """Tear down the current transport completely, then activate ``config``

        Retries are gated on ``config`` until the next reconfigure, even when it
        differs from the store's current config.
        """
        self._teardown()
        self.retry_count = 0
        self._activate(config)

    def stop(self) -> None:
        """Tear down and stop following config changes"""
        self._teardown()
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self._active = None
        self._mode = TransportState.IDLE
        self._transition(TransportState.IDLE, reason="stopped")
        self._set_status(ConnectionState.DISCONNECTED)
        logger.info("Transport stopped", **self.stats)

    def set_visible(self, visible: bool) -> None:
        """Suspend or resume the repeating poll tick when the viewer is hidden/shown"""
        if visible == self.visible:
            return
        self.visible = visible

        if not self._polling_active():
            return

        if not visible:
            self._cancel_task(self._ticker)
            self._ticker = None
            logger.info("Polling suspended while hidden")
        else:
            logger.info("Polling resumed", interval_ms=self._active.interval_ms)
            self._spawn_fetch(self._token)
            self._start_ticker(self._token)

    def _activate(self, config: PollingConfig) -> None:
        token = CancellationToken()
        self._token = token
        self._active = config

        if config.is_paused:
            self._mode = TransportState.IDLE
            self._falling_back = False
            self._transition(TransportState.IDLE, reason="paused")
            self._set_status(ConnectionState.DISCONNECTED)
            return

        if config.use_streaming:
            self._mode = TransportState.STREAMING
            self._falling_back = False
            self._transition(TransportState.STREAMING, reason="streaming requested")
            self._open_stream(token)
            return

        self._mode = TransportState.FALLEN_BACK if self._falling_back else TransportState.POLLING
        self._falling_back = False
        self._transition(self._mode, reason="polling requested")
        self._set_status(ConnectionState.CONNECTING)
        self._spawn_fetch(token)
        if self.visible:
            self._start_ticker(token)

    def _teardown(self) -> None:
        if self._token is not None:
            self._token.cancel()
            self._token = None

        for task in (self._ticker, self._retry, self._fetch, self._stream):
            self._cancel_task(task)
        self._ticker = self._retry = self._fetch = self._stream = None

        if self._channel is not None:
            self._channel.close()
            self._channel = None

    # Polling

    def _start_ticker(self, token: CancellationToken) -> None:
        self._cancel_task(self._ticker)
        self._ticker = asyncio.create_task(self._tick(token, self._active.interval_seconds))

    async def _tick(self, token: CancellationToken, interval_seconds: float) -> None:
        while not token.cancelled:
            await asyncio.sleep(interval_seconds)
            if token.cancelled:
                return
            self._spawn_fetch(token)

    def _spawn_fetch(self, token: CancellationToken) -> None:
        if self._fetch is not None and not self._fetch.done():
            logger.debug("Poll already in flight, skipping")
            return
        self._fetch = asyncio.create_task(self._poll_once(token))

    async def _poll_once(self, token: CancellationToken) -> None:
        since = self._cursor
        self.stats["polls"] += 1
        try:
            response = await asyncio.to_thread(self.client.fetch_metrics, since)
        except TransportError as e:
            if not token.cancelled:
                self._on_poll_failure(token, e)
            return
        except Exception as e:
            logger.error("Unexpected poll failure", error=str(e), exc_info=True)
            if not token.cancelled:
                self._on_poll_failure(token, TransportError(str(e)))
            return

        if token.cancelled:
            return

        if response.metrics:
            self.store.append(response.metrics)
            self.stats["events_ingested"] += len(response.metrics)
            latest = response.metrics[-1].timestamp
            if self._cursor is None or latest > self._cursor:
                self._cursor = latest

        logger.debug(
            "Poll completed",
            events=len(response.metrics),
            dropped=response.dropped,
            since=since.isoformat() if since else None,
        )
        self._on_success()

    def _on_poll_failure(self, token: CancellationToken, error: TransportError) -> None:
        self.retry_count += 1
        self.stats["poll_errors"] += 1
        self._set_status(ConnectionState.ERROR, error_message=str(error))

        if self.retry_count < self.config.max_retries and self._polling_requested():
            delay = self._next_delay()
            logger.warning(
                "Polling failed, retrying",
                error=str(error),
                attempt=self.retry_count,
                max_retries=self.config.max_retries,
                delay_ms=delay,
            )
            self._schedule_retry(token, delay, self._retry_poll)
        else:
            logger.error(
                "Polling failed, no retry scheduled",
                error=str(error),
                attempt=self.retry_count,
            )

    def _retry_poll(self, token: CancellationToken) -> None:
        if self._polling_requested():
            self._spawn_fetch(token)

    # Streaming

    def _open_stream(self, token: CancellationToken) -> None:
        self._set_status(ConnectionState.CONNECTING)
        self._stream = asyncio.create_task(self._run_stream(token))

    async def _run_stream(self, token: CancellationToken) -> None:
        channel: StreamChannel | None = None
        try:
            channel = self._stream_factory()
            self._channel = channel
            await channel.open()
            if token.cancelled:
                return
            logger.info("Stream connected", backend=channel.name)
            self._on_success()

            async for payload in channel.messages():
                if token.cancelled:
                    return
                self._on_stream_message(payload)

            raise TransportError("Stream closed by server")

        except TransportError as e:
            if not token.cancelled:
                self._on_stream_failure(token, e)
        except Exception as e:
            logger.error("Unexpected stream failure", error=str(e), exc_info=True)
            if not token.cancelled:
                self._on_stream_failure(token, TransportError(str(e)))
        finally:
            if channel is not None:
                channel.close()
                if self._channel is channel:
                    self._channel = None

    def _on_stream_message(self, payload: str | bytes) -> None:
        try:
            event = parse_event(payload)
        except ParseError as e:
            self.stats["parse_errors"] += 1
            logger.warning("Dropped malformed stream message", error=str(e))
            return

        self.stats["stream_messages"] += 1
        self.stats["events_ingested"] += 1
        self.store.append([event])
        self._on_success()

    def _on_stream_failure(self, token: CancellationToken, error: TransportError) -> None:
        self.retry_count += 1
        self.stats["stream_errors"] += 1
        self._set_status(ConnectionState.ERROR, error_message=f"Stream connection failed: {error}")

        if self.retry_count < self.config.max_retries and self._streaming_requested():
            delay = self._next_delay()
            logger.warning(
                "Stream failed, reconnecting",
                error=str(error),
                attempt=self.retry_count,
                max_retries=self.config.max_retries,
                delay_ms=delay,
            )
            self._schedule_retry(token, delay, self._retry_stream)
        elif self.retry_count >= self.config.max_retries:
            self._fall_back(token)

    def _retry_stream(self, token: CancellationToken) -> None:
        if self._streaming_requested():
            self._open_stream(token)

    def _fall_back(self, token: CancellationToken) -> None:
        """Demote the shared config to polling after exhausting stream retries"""
        logger.warning(
            "Max stream retries reached, falling back to polling",
            attempts=self.retry_count,
        )
        self.stats["fallbacks"] += 1
        self._falling_back = True
        self.store.set_polling_config(use_streaming=False)

        # Listener did not fire (config already said polling): rebuild directly
        if self._token is token:
            self.reconfigure(self.store.polling_config)

    # Shared helpers

    def _schedule_retry(
        self,
        token: CancellationToken,
        delay_ms: int,
        action: Callable[[CancellationToken], None],
    ) -> None:
        self._cancel_task(self._retry)
        self._transition(TransportState.BACKING_OFF, reason="retry scheduled")
        self._retry = asyncio.create_task(self._retry_after(token, delay_ms, action))

    async def _retry_after(
        self,
        token: CancellationToken,
        delay_ms: int,
        action: Callable[[CancellationToken], None],
    ) -> None:
        await asyncio.sleep(delay_ms / 1000)
        if token.cancelled:
            return
        self._retry = None
        self._transition(self._mode, reason="retry timer fired")
        action(token)

    def _on_success(self) -> None:
        self.retry_count = 0
        if self._retry is not None:
            # A tick succeeded while a retry was pending
            self._cancel_task(self._retry)
            self._retry = None
            self._transition(self._mode, reason="recovered")
        self._set_status(ConnectionState.CONNECTED, last_update=self.clock())

    def _next_delay(self) -> int:
        return retry_delay_ms(
            self.retry_count,
            base_ms=self.config.retry_base_delay_ms,
            cap_ms=self.config.retry_max_delay_ms,
        )

    def _polling_requested(self) -> bool:
        current = self._active
        return current is not None and not current.is_paused and not current.use_streaming

    def _streaming_requested(self) -> bool:
        current = self._active
        return current is not None and not current.is_paused and current.use_streaming

    def _polling_active(self) -> bool:
        return (
            self._token is not None
            and self._mode in (TransportState.POLLING, TransportState.FALLEN_BACK)
        )

    def _set_status(
        self,
        state: ConnectionState,
        last_update: datetime | None = None,
        error_message: str | None = None,
    ) -> None:
        previous = self.store.connection_status
        self.store.set_connection_status(
            ConnectionStatus(
                status=state,
                last_update=last_update or previous.last_update,
                error_message=error_message,
            )
        )

    def _transition(self, new_state: TransportState, reason: str) -> None:
        if new_state is self.state:
            return
        logger.info(
            "Transport state changed",
            previous=self.state.value,
            state=new_state.value,
            reason=reason,
        )
        self.state = new_state

    @staticmethod
    def _cancel_task(task: asyncio.Task | None) -> None:
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
