"""Shared fixtures: an in-memory WhatsApp client and isolated settings."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path

import pytest

from leadtracker.config import Settings
from leadtracker.modules.leads.store import LeadStore
from leadtracker.modules.whatsapp.client import Chat, ClientEvent, Contact, Label, Ready
from leadtracker.modules.whatsapp.supervisor import ConnectionSupervisor

PRODUCTS = {
    "products": [
        {"name": "Café Especial 250g", "variations": ["cafe especial"]},
        {"name": "Cápsulas Espresso", "variations": ["capsula", "espresso"]},
    ]
}


class FakeClient:
    """Automation client double. initialize() emits Ready unless told otherwise."""

    def __init__(
        self,
        contacts: dict[str, Contact] | None = None,
        chats: dict[str, Chat] | None = None,
        labels: list[Label] | None = None,
        groups: dict[str, list[str]] | None = None,
        auto_ready: bool = True,
        gate: asyncio.Event | None = None,
        init_error: Exception | None = None,
    ):
        self.listeners = []
        self.contacts = contacts or {}
        self.chats = chats or {}
        self.labels = labels or []
        self.groups = groups or {}
        self.auto_ready = auto_ready
        self.gate = gate
        self.init_error = init_error
        self.initialize_calls = 0
        self.destroyed = False

    def add_listener(self, listener) -> None:
        self.listeners.append(listener)

    def remove_all_listeners(self) -> None:
        self.listeners.clear()

    async def emit(self, event: ClientEvent) -> None:
        for listener in list(self.listeners):
            await listener(event)

    async def initialize(self) -> None:
        self.initialize_calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.init_error is not None:
            raise self.init_error
        if self.auto_ready:
            await self.emit(Ready())

    async def destroy(self) -> None:
        self.destroyed = True

    async def get_contact_by_id(self, contact_id: str) -> Contact | None:
        return self.contacts.get(contact_id)

    async def get_chat_by_id(self, chat_id: str) -> Chat | None:
        return self.chats.get(chat_id)

    async def get_group_participants(self, chat_id: str) -> list[str]:
        return self.groups.get(chat_id, [])

    async def get_labels(self) -> list[Label]:
        return self.labels


class ClientFactory:
    """Builds FakeClients with the current options and remembers each one."""

    def __init__(self, **options):
        self.options = options
        self.clients: list[FakeClient] = []

    def __call__(self) -> FakeClient:
        client = FakeClient(**self.options)
        self.clients.append(client)
        return client

    @property
    def current(self) -> FakeClient:
        return self.clients[-1]


@pytest.fixture
def products_file(tmp_path: Path) -> Path:
    path = tmp_path / "products.json"
    path.write_text(json.dumps(PRODUCTS, ensure_ascii=False), encoding="utf-8")
    return path


@pytest.fixture
def settings(tmp_path: Path, products_file: Path) -> Settings:
    return Settings(
        _env_file=None,
        leads_file=str(tmp_path / "leads.json"),
        products_file=str(products_file),
        session_dir=str(tmp_path / "session"),
        whatsapp_autostart=False,
        init_timeout_seconds=1.0,
        auth_retry_delay=0.01,
        error_retry_delay=0.01,
        exception_retry_delay=0.01,
    )


@pytest.fixture
def store(settings: Settings) -> LeadStore:
    return LeadStore(settings.leads_file)


@pytest.fixture
def factory() -> ClientFactory:
    return ClientFactory()


@pytest.fixture
async def supervisor(settings: Settings, factory: ClientFactory):
    sup = ConnectionSupervisor(factory, settings)
    yield sup
    await sup.shutdown()


async def settle(supervisor: ConnectionSupervisor, delay: float = 0.05) -> None:
    """Let scheduled retries fire and the resulting attempt finish."""
    await asyncio.sleep(delay)
    await supervisor.join()
