"""Tests for the WhatsApp connection supervisor."""

from __future__ import annotations

import asyncio

import pytest

from conftest import ClientFactory, settle
from leadtracker.models.connection import ConnectionState
from leadtracker.modules.whatsapp.client import (
    AuthFailure,
    ClientError,
    Disconnected,
    QrReceived,
    Ready,
)
from leadtracker.modules.whatsapp.supervisor import ClientNotReadyError, ConnectionSupervisor


async def _connected(supervisor: ConnectionSupervisor) -> None:
    assert supervisor.connect() is True
    await supervisor.join()


# ── Startup ─────────────────────────────────────────────────────────


class TestStartup:
    def test_initial_status_is_blank(self, settings, factory) -> None:
        supervisor = ConnectionSupervisor(factory, settings)
        status = supervisor.status()
        assert status.ready is False
        assert status.connecting is False
        assert status.qr_code is None
        assert status.last_error is None
        assert status.state == ConnectionState.UNINITIALIZED
        assert supervisor.client is None

    async def test_connect_reaches_ready(self, supervisor, factory) -> None:
        await _connected(supervisor)

        status = supervisor.status()
        assert status.ready is True
        assert status.connecting is False
        assert status.state == ConnectionState.READY
        assert len(factory.clients) == 1
        assert supervisor.ready_client() is factory.current

    async def test_connecting_flag_while_initializing(self, supervisor, factory) -> None:
        gate = asyncio.Event()
        factory.options = {"gate": gate}

        supervisor.connect()
        await asyncio.sleep(0)
        assert supervisor.status().connecting is True
        assert supervisor.status().state == ConnectionState.CONNECTING

        gate.set()
        await supervisor.join()
        assert supervisor.status().connecting is False
        assert supervisor.status().ready is True

    async def test_qr_code_reported_then_cleared(self, supervisor, factory) -> None:
        factory.options = {"auto_ready": False, "gate": asyncio.Event()}
        supervisor.connect()
        await asyncio.sleep(0)

        client = factory.current
        await client.emit(QrReceived(qr="2@abc,def"))
        assert supervisor.status().qr_code == "2@abc,def"

        await client.emit(Ready())
        assert supervisor.status().qr_code is None
        assert supervisor.status().ready is True
        client.gate.set()
        await supervisor.join()

    def test_ready_client_raises_when_not_ready(self, settings, factory) -> None:
        supervisor = ConnectionSupervisor(factory, settings)
        with pytest.raises(ClientNotReadyError):
            supervisor.ready_client()


# ── Failures and retries ────────────────────────────────────────────


class TestFailureRecovery:
    async def test_auth_failure_recreates_client(self, supervisor, factory) -> None:
        await _connected(supervisor)
        first = factory.current

        await first.emit(AuthFailure(message="bad session"))
        status = supervisor.status()
        assert status.ready is False
        assert status.state == ConnectionState.FAILED
        assert "Authentication failed" in status.last_error

        await settle(supervisor)
        assert len(factory.clients) == 2
        assert first.destroyed is True
        assert first.listeners == []
        assert supervisor.status().ready is True

    async def test_auth_failure_clears_expired_qr(self, supervisor, factory) -> None:
        factory.options = {"auto_ready": False, "gate": asyncio.Event()}
        supervisor.connect()
        await asyncio.sleep(0)

        client = factory.current
        await client.emit(QrReceived(qr="2@abc,def"))
        await client.emit(AuthFailure(message="QR code was not scanned in time"))
        status = supervisor.status()
        assert status.qr_code is None
        assert "Authentication failed" in status.last_error

        factory.options = {}
        client.gate.set()
        await settle(supervisor)
        assert supervisor.status().ready is True

    async def test_back_to_back_failures_schedule_one_retry(self, supervisor, factory) -> None:
        await _connected(supervisor)
        first = factory.current
        gate = asyncio.Event()
        factory.options = {"gate": gate}

        await first.emit(AuthFailure(message="one"))
        await first.emit(AuthFailure(message="two"))

        await asyncio.sleep(0.05)
        assert supervisor.status().connecting is True
        assert len(factory.clients) == 2

        gate.set()
        await settle(supervisor)
        assert len(factory.clients) == 2
        assert supervisor.status().ready is True

    async def test_failures_during_attempt_schedule_one_retry(self, supervisor, factory) -> None:
        gate = asyncio.Event()
        factory.options = {"gate": gate, "auto_ready": False}
        supervisor.connect()
        await asyncio.sleep(0)
        first = factory.current

        await first.emit(Disconnected(reason="one"))
        await first.emit(AuthFailure(message="two"))
        assert supervisor.status().connecting is True
        assert len(factory.clients) == 1

        factory.options = {}
        gate.set()
        await settle(supervisor)
        assert len(factory.clients) == 2
        assert supervisor.status().ready is True

    async def test_disconnect_recreates_client(self, supervisor, factory) -> None:
        await _connected(supervisor)
        await factory.current.emit(Disconnected(reason="NAVIGATION"))
        assert "Disconnected: NAVIGATION" in supervisor.status().last_error

        await settle(supervisor)
        assert len(factory.clients) == 2

    async def test_generic_client_error_reinitializes_same_client(self, supervisor, factory) -> None:
        await _connected(supervisor)
        client = factory.current

        await client.emit(ClientError(error=RuntimeError("evaluation failed")))
        await settle(supervisor)

        assert len(factory.clients) == 1
        assert client.initialize_calls == 2
        assert supervisor.status().ready is True

    async def test_target_closed_error_recreates_client(self, supervisor, factory) -> None:
        await _connected(supervisor)
        first = factory.current

        await first.emit(ClientError(error=RuntimeError("Protocol error: Target closed.")))
        await settle(supervisor)

        assert len(factory.clients) == 2
        assert first.destroyed is True

    async def test_initialization_timeout(self, settings, factory) -> None:
        settings = settings.model_copy(update={"init_timeout_seconds": 0.05, "exception_retry_delay": 10})
        supervisor = ConnectionSupervisor(factory, settings)
        factory.options = {"gate": asyncio.Event()}

        await _connected(supervisor)
        status = supervisor.status()
        assert status.ready is False
        assert status.connecting is False
        assert "timed out" in status.last_error
        await supervisor.shutdown()

    async def test_initialization_exception_retries(self, supervisor, factory) -> None:
        factory.options = {"init_error": RuntimeError("browser failed to launch")}
        await _connected(supervisor)
        assert supervisor.status().last_error == "browser failed to launch"

        factory.options = {}
        await settle(supervisor)
        assert len(factory.clients) == 2
        assert supervisor.status().ready is True

    async def test_events_from_discarded_client_are_ignored(self, supervisor, factory) -> None:
        await _connected(supervisor)
        old = factory.current
        assert supervisor.recreate() is True
        await supervisor.join()

        await old.emit(AuthFailure(message="stale"))
        assert supervisor.status().ready is True


# ── Operator commands ───────────────────────────────────────────────


class TestCommands:
    async def test_requests_rejected_while_connecting(self, supervisor, factory) -> None:
        gate = asyncio.Event()
        factory.options = {"gate": gate}
        supervisor.connect()
        await asyncio.sleep(0)

        assert supervisor.reconnect() is False
        assert supervisor.recreate() is False

        gate.set()
        await supervisor.join()
        assert len(factory.clients) == 1

    async def test_reconnect_reuses_client(self, supervisor, factory) -> None:
        await _connected(supervisor)
        assert supervisor.reconnect() is True
        await supervisor.join()

        assert len(factory.clients) == 1
        assert factory.current.initialize_calls == 2

    async def test_recreate_tears_down_old_client(self, supervisor, factory) -> None:
        await _connected(supervisor)
        old = factory.current

        assert supervisor.recreate() is True
        await supervisor.join()

        assert len(factory.clients) == 2
        assert old.destroyed is True
        assert old.listeners == []
        assert len(factory.current.listeners) == 1

    async def test_manual_request_cancels_pending_retry(self, settings) -> None:
        factory = ClientFactory()
        settings = settings.model_copy(update={"auth_retry_delay": 0.2})
        supervisor = ConnectionSupervisor(factory, settings)
        await _connected(supervisor)

        await factory.current.emit(AuthFailure(message="expired"))
        assert supervisor.recreate() is True
        await supervisor.join()
        await asyncio.sleep(0.3)

        assert len(factory.clients) == 2
        await supervisor.shutdown()

    async def test_shutdown_cancels_retry_and_resets_status(self, settings) -> None:
        factory = ClientFactory()
        settings = settings.model_copy(update={"auth_retry_delay": 0.1})
        supervisor = ConnectionSupervisor(factory, settings)
        await _connected(supervisor)
        client = factory.current

        await client.emit(AuthFailure(message="expired"))
        await supervisor.shutdown()
        await asyncio.sleep(0.2)

        assert len(factory.clients) == 1
        assert client.destroyed is True
        assert supervisor.client is None
        assert supervisor.status().state == ConnectionState.UNINITIALIZED


# ── Safe operations ─────────────────────────────────────────────────


class TestSafeCall:
    async def test_fallback_when_not_ready(self, supervisor) -> None:
        async def operation(client):
            raise AssertionError("must not run")

        assert await supervisor.safe_call(operation, "fallback") == "fallback"

    async def test_returns_operation_result(self, supervisor) -> None:
        await _connected(supervisor)

        async def operation(client):
            return "value"

        assert await supervisor.safe_call(operation, None) == "value"

    async def test_swallows_errors(self, supervisor, factory) -> None:
        await _connected(supervisor)

        async def operation(client):
            raise RuntimeError("evaluation failed")

        assert await supervisor.safe_call(operation, []) == []
        assert supervisor.status().ready is True

    async def test_target_closed_triggers_recreate(self, supervisor, factory) -> None:
        await _connected(supervisor)

        async def operation(client):
            raise RuntimeError("Target page, context or browser has been closed")

        assert await supervisor.safe_call(operation, []) == []
        assert supervisor.status().ready is False

        await settle(supervisor)
        assert len(factory.clients) == 2

    async def test_fatal_error_without_signature_is_ignored(self, supervisor, factory) -> None:
        await _connected(supervisor)
        supervisor.handle_fatal_error(ValueError("boom"))
        assert supervisor.status().ready is True
