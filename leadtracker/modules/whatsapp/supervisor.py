"""
Connection Supervisor: owns the WhatsApp automation client.

Creates the client, attaches the event dispatcher, initializes it under a time
budget and destroys/recreates it after authentication failures, disconnects
and client errors. At most one connection attempt is in flight and at most one
retry is armed at any time. The HTTP layer reads the status snapshot and asks
for reconnects through the command methods.
"""

import asyncio
import contextlib
import functools
import logging
from typing import Awaitable, Callable, Protocol, TypeVar

from leadtracker.config import Settings, get_settings
from leadtracker.models.connection import ConnectionState, ConnectionStatus
from leadtracker.modules.whatsapp.client import (
    AuthFailure,
    ClientError,
    ClientEvent,
    Contact,
    ContactChanged,
    Disconnected,
    GroupUpdated,
    IncomingMessage,
    MessageReceived,
    QrReceived,
    Ready,
    WhatsAppClient,
    is_target_closed,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ClientNotReadyError(RuntimeError):
    """The WhatsApp session is not usable right now."""


class MessageSink(Protocol):
    async def handle_message(self, message: IncomingMessage) -> object:
        ...

    async def handle_contact_changed(self, contact: Contact) -> object:
        ...

    async def handle_group_updated(self, chat_id: str) -> object:
        ...


class ConnectionSupervisor:
    def __init__(
        self,
        client_factory: Callable[[], WhatsAppClient],
        settings: Settings | None = None,
    ):
        self.settings = settings or get_settings()
        self._client_factory = client_factory
        self._client: WhatsAppClient | None = None
        self._status = ConnectionStatus()
        self._sink: MessageSink | None = None

        self._attempt_task: asyncio.Task | None = None
        self._retry_task: asyncio.Task | None = None
        self._retry_recreate = False
        # Failure reported by an event while an attempt was in flight
        self._pending_retry: tuple[float, bool] | None = None

        self._handlers = {
            QrReceived: self._on_qr,
            Ready: self._on_ready,
            AuthFailure: self._on_auth_failure,
            Disconnected: self._on_disconnected,
            ClientError: self._on_client_error,
            MessageReceived: self._on_message,
            ContactChanged: self._on_contact_changed,
            GroupUpdated: self._on_group_updated,
        }

    # --- Queries ---

    def status(self) -> ConnectionStatus:
        return self._status.model_copy()

    @property
    def is_ready(self) -> bool:
        return self._status.ready and self._client is not None

    @property
    def client(self) -> WhatsAppClient | None:
        return self._client

    def ready_client(self) -> WhatsAppClient:
        if not self.is_ready:
            raise ClientNotReadyError("WhatsApp client is not ready")
        return self._client

    def set_message_handler(self, sink: MessageSink) -> None:
        self._sink = sink

    # --- Commands ---

    def connect(self) -> bool:
        """Start the session, creating the client when there is none."""
        return self._launch(recreate=self._client is None)

    def reconnect(self) -> bool:
        """Re-initialize the current client. False while an attempt is in flight."""
        return self._launch(recreate=False)

    def recreate(self) -> bool:
        """Destroy the client and build a new one. False while an attempt is in flight."""
        return self._launch(recreate=True)

    async def join(self) -> None:
        """Wait for the attempt in flight, if any."""
        if self._attempt_task is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await self._attempt_task

    async def shutdown(self) -> None:
        self._cancel_retry()
        if self._attempt_task is not None and not self._attempt_task.done():
            self._attempt_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._attempt_task
        await self._destroy_client()
        self._status = ConnectionStatus()
        logger.info("WhatsApp supervisor shut down")

    async def safe_call(
        self,
        operation: Callable[[WhatsAppClient], Awaitable[T]],
        fallback: T,
    ) -> T:
        """Run an operation against the ready client, returning fallback on any failure."""
        client = self._client
        if client is None or not self._status.ready:
            logger.warning("WhatsApp client not ready, using fallback result")
            return fallback
        try:
            return await operation(client)
        except Exception as e:
            logger.warning("WhatsApp operation failed: %s", e)
            if is_target_closed(e):
                self.handle_fatal_error(e)
            return fallback

    def handle_fatal_error(self, error: BaseException) -> None:
        """Entry point for uncaught errors. Only the target-closed signature triggers a recreate."""
        if not is_target_closed(error):
            return
        self._fail(f"Browser target closed: {error}", self.settings.error_retry_delay, recreate=True)

    # --- Attempt lifecycle ---

    def _launch(self, recreate: bool) -> bool:
        if self._status.connecting:
            logger.info("WhatsApp connection attempt already in flight")
            return False
        self._cancel_retry()
        self._status.connecting = True
        self._status.state = ConnectionState.CONNECTING
        self._attempt_task = asyncio.create_task(self._run_attempt(recreate))
        return True

    async def _run_attempt(self, recreate: bool) -> None:
        self._pending_retry = None
        timeout = self.settings.init_timeout_seconds
        try:
            if recreate or self._client is None:
                await self._destroy_client()
                self._client = self._create_client()
            logger.info("Initializing WhatsApp client (recreate=%s)", recreate)
            await asyncio.wait_for(self._client.initialize(), timeout=timeout)
        except asyncio.TimeoutError:
            self._mark_failed(f"Initialization timed out after {timeout:.0f}s")
            self._pending_retry = (self.settings.exception_retry_delay, True)
        except Exception as e:
            logger.exception("WhatsApp initialization failed")
            self._mark_failed(str(e))
            self._pending_retry = (self.settings.exception_retry_delay, True)
        finally:
            self._status.connecting = False

        if self._status.state == ConnectionState.CONNECTING:
            self._mark_failed("Initialization finished without a ready signal")
            self._pending_retry = (self.settings.exception_retry_delay, True)

        if self._pending_retry is not None and not self._status.ready:
            delay, retry_recreate = self._pending_retry
            self._pending_retry = None
            self._schedule_retry(delay, retry_recreate)

    def _create_client(self) -> WhatsAppClient:
        client = self._client_factory()
        client.add_listener(functools.partial(self._dispatch, client))
        return client

    async def _destroy_client(self) -> None:
        client, self._client = self._client, None
        if client is None:
            return
        client.remove_all_listeners()
        try:
            await client.destroy()
        except Exception as e:
            logger.warning("Error destroying WhatsApp client: %s", e)

    # --- Failures and retries ---

    def _mark_failed(self, error: str) -> None:
        self._status.ready = False
        self._status.qr_code = None
        self._status.last_error = error
        self._status.state = ConnectionState.FAILED
        logger.warning("WhatsApp connection failed: %s", error)

    def _fail(self, error: str, delay: float, recreate: bool) -> None:
        self._mark_failed(error)
        if self._status.connecting:
            # the attempt in flight schedules the retry when it finishes
            if self._pending_retry is not None:
                recreate = recreate or self._pending_retry[1]
            self._pending_retry = (delay, recreate)
            return
        self._schedule_retry(delay, recreate)

    def _schedule_retry(self, delay: float, recreate: bool) -> None:
        if self._retry_task is not None and not self._retry_task.done():
            self._retry_recreate = self._retry_recreate or recreate
            logger.debug("Retry already scheduled, ignoring duplicate")
            return
        self._retry_recreate = recreate
        logger.info("Retrying WhatsApp connection in %.0fs (recreate=%s)", delay, recreate)
        self._retry_task = asyncio.create_task(self._retry_after(delay))

    async def _retry_after(self, delay: float) -> None:
        await asyncio.sleep(delay)
        self._retry_task = None
        try:
            self._launch(recreate=self._retry_recreate)
        except Exception:
            logger.exception("Scheduled WhatsApp retry failed")
            self._schedule_retry(self.settings.exception_retry_delay, True)

    def _cancel_retry(self) -> None:
        if self._retry_task is not None and not self._retry_task.done():
            self._retry_task.cancel()
        self._retry_task = None

    # --- Event dispatch ---

    async def _dispatch(self, client: WhatsAppClient, event: ClientEvent) -> None:
        if client is not self._client:
            logger.debug("Dropping %s from a discarded client", type(event).__name__)
            return
        handler = self._handlers.get(type(event))
        if handler is None:
            logger.warning("Unhandled WhatsApp event: %s", type(event).__name__)
            return
        await handler(event)

    async def _on_qr(self, event: QrReceived) -> None:
        logger.info("New QR code received, waiting for scan")
        self._status.qr_code = event.qr

    async def _on_ready(self, event: Ready) -> None:
        logger.info("WhatsApp client ready")
        self._cancel_retry()
        self._pending_retry = None
        self._status.ready = True
        self._status.qr_code = None
        self._status.last_error = None
        self._status.state = ConnectionState.READY

    async def _on_auth_failure(self, event: AuthFailure) -> None:
        self._fail(f"Authentication failed: {event.message}", self.settings.auth_retry_delay, recreate=True)

    async def _on_disconnected(self, event: Disconnected) -> None:
        self._fail(f"Disconnected: {event.reason}", self.settings.auth_retry_delay, recreate=True)

    async def _on_client_error(self, event: ClientError) -> None:
        self._fail(
            f"Client error: {event.error}",
            self.settings.error_retry_delay,
            recreate=is_target_closed(event.error),
        )

    async def _on_message(self, event: MessageReceived) -> None:
        if self._sink is None:
            return
        try:
            await self._sink.handle_message(event.message)
        except Exception:
            logger.exception("Error processing message %s", event.message.message_id)

    async def _on_contact_changed(self, event: ContactChanged) -> None:
        if self._sink is None:
            return
        try:
            await self._sink.handle_contact_changed(event.contact)
        except Exception:
            logger.exception("Error processing contact update for %s", event.contact.number)

    async def _on_group_updated(self, event: GroupUpdated) -> None:
        if self._sink is None:
            return
        try:
            await self._sink.handle_group_updated(event.chat_id)
        except Exception:
            logger.exception("Error processing group update for %s", event.chat_id)
