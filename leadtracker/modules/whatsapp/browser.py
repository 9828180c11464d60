"""
WhatsApp Web client driven by Playwright.

Keeps a persistent browser profile so the session survives restarts, reports
the login QR payload and readiness as events, and polls unread chats for new
inbound messages and group notifications. Contact, chat, label and group
member lookups read WhatsApp Web's in-page Store when it is exposed; without
it they return empty results.
"""

import asyncio
import contextlib
import logging
from pathlib import Path
from typing import Any

from leadtracker.config import Settings, get_settings
from leadtracker.modules.whatsapp.client import (
    GROUP_SUFFIX,
    AuthFailure,
    Chat,
    ClientError,
    ClientEvent,
    Contact,
    Disconnected,
    EventListener,
    GroupUpdated,
    IncomingMessage,
    Label,
    MessageReceived,
    QrReceived,
    Ready,
    is_target_closed,
    normalize_number,
)

logger = logging.getLogger(__name__)

WHATSAPP_WEB_URL = "https://web.whatsapp.com"

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/133.0.0.0 Safari/537.36"
)

BROWSER_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-accelerated-2d-canvas",
    "--no-first-run",
    "--no-zygote",
    "--disable-gpu",
    "--disable-blink-features=AutomationControlled",
]

SELECTORS = {
    "qr_code": "div[data-ref]",
    "chat_list": 'div[data-testid="chat-list"], div[aria-label="Chat list"], #pane-side',
    "phone_disconnected": 'div[data-testid="alert-phone"], div[data-testid="alert-banner"]',
    "loading": 'div[data-testid="startup"]',
    "unread_row": (
        'div[role="listitem"]:has(span[aria-label*="unread"]), '
        'div[data-testid="cell-frame-container"]:has(span[data-testid="icon-unread-count"])'
    ),
    "inbound_message": '#main div[data-id^="false_"]',
    "message_text": "span.selectable-text",
    # system notifications (members added/removed, subject changes) carry no selectable text
    "group_notification": '#main div[data-id^="false_"][data-id*="@g.us_"]:not(:has(span.selectable-text))',
}

CONTACT_JS = """
(id) => {
    const store = window.Store;
    if (!store || !store.Contact) return null;
    const c = store.Contact.get(id);
    if (!c) return null;
    return {
        id: c.id._serialized,
        number: c.id.user,
        name: c.name || null,
        pushname: c.pushname || null,
        labels: c.labels || [],
    };
}
"""

CHAT_JS = """
(id) => {
    const store = window.Store;
    if (!store || !store.Chat) return null;
    const chat = store.Chat.get(id);
    if (!chat) return null;
    const names = (chat.labels || [])
        .map(labelId => store.Label && store.Label.get(labelId))
        .filter(label => label && label.name)
        .map(label => label.name);
    return {id: chat.id._serialized, name: chat.name || null, isGroup: !!chat.isGroup, labels: names};
}
"""

GROUP_PARTICIPANTS_JS = """
(id) => {
    const store = window.Store;
    if (!store || !store.GroupMetadata) return [];
    const meta = store.GroupMetadata.get(id);
    if (!meta || !meta.participants) return [];
    return meta.participants.getModelsArray().map(p => p.id._serialized);
}
"""

LABELS_JS = """
() => {
    const store = window.Store;
    if (!store || !store.Label) return [];
    return store.Label.getModelsArray().map(label => ({id: String(label.id), name: label.name}));
}
"""


def _parse_message_id(data_id: str) -> tuple[str, str] | None:
    """Split a WhatsApp Web data-id (fromMe_chatId_msgId[_author]) into (chat_id, msg_id)."""
    parts = data_id.split("_")
    if len(parts) < 3:
        return None
    return parts[1], parts[2]


class BrowserWhatsAppClient:
    """
    seen_ids holds the data-ids already reported. Pass the same set to every
    client built for one app so a recreated client does not replay messages
    still on screen.
    """

    def __init__(self, settings: Settings | None = None, seen_ids: set[str] | None = None):
        self.settings = settings or get_settings()
        self.session_path = Path(self.settings.resolved_session_dir)
        self._listeners: list[EventListener] = []
        self._playwright = None
        self._context = None
        self._page = None
        self._poll_task: asyncio.Task | None = None
        self._seen_ids: set[str] = seen_ids if seen_ids is not None else set()
        self._closing = False

    # ── Listeners ──────────────────────────────────────────────────

    def add_listener(self, listener: EventListener) -> None:
        self._listeners.append(listener)

    def remove_all_listeners(self) -> None:
        self._listeners.clear()

    async def _emit(self, event: ClientEvent) -> None:
        for listener in list(self._listeners):
            await listener(event)

    # ── Session lifecycle ──────────────────────────────────────────

    async def initialize(self) -> None:
        # a re-initialize must release the profile lock held by the previous browser
        await self._close_browser()
        self._closing = False
        await self._launch_browser()
        assert self._page is not None

        logger.debug("Navigating to %s", WHATSAPP_WEB_URL)
        await self._page.goto(WHATSAPP_WEB_URL, wait_until="domcontentloaded", timeout=60000)
        await self._wait_for_login()

    async def destroy(self) -> None:
        await self._close_browser()

    async def _close_browser(self) -> None:
        self._closing = True
        await self._stop_polling()
        if self._context:
            try:
                await self._context.close()
            except Exception as e:
                logger.warning("Error closing browser context: %s", e)
            self._context = None
            self._page = None
        if self._playwright:
            await self._playwright.stop()
            self._playwright = None

    async def _stop_polling(self) -> None:
        if self._poll_task is None:
            return
        self._poll_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._poll_task
        self._poll_task = None

    async def _launch_browser(self) -> None:
        from playwright.async_api import async_playwright

        self._playwright = await async_playwright().start()
        self.session_path.mkdir(parents=True, exist_ok=True)

        self._context = await self._playwright.chromium.launch_persistent_context(
            user_data_dir=str(self.session_path),
            headless=self.settings.headless,
            executable_path=self.settings.resolved_browser_executable,
            user_agent=USER_AGENT,
            args=BROWSER_ARGS,
        )
        self._page = self._context.pages[0] if self._context.pages else await self._context.new_page()
        await self._page.set_viewport_size({"width": 1280, "height": 720})
        self._page.on("close", self._on_page_close)
        self._page.on("crash", self._on_page_crash)

    async def _on_page_close(self, page: Any) -> None:
        if not self._closing:
            await self._emit(Disconnected(reason="browser page closed"))

    async def _on_page_crash(self, page: Any) -> None:
        await self._emit(ClientError(error=RuntimeError("Target closed: page crashed")))

    async def _session_state(self) -> str:
        """One of: "ready", "qr_code", "phone_disconnected", "loading", "unknown"."""
        assert self._page is not None
        if await self._page.query_selector(SELECTORS["chat_list"]):
            if await self._page.query_selector(SELECTORS["phone_disconnected"]):
                return "phone_disconnected"
            return "ready"
        if await self._page.query_selector(SELECTORS["qr_code"]):
            return "qr_code"
        if await self._page.query_selector(SELECTORS["loading"]):
            return "loading"
        return "unknown"

    async def _wait_for_login(self) -> None:
        """Report QR payloads until the chat list shows up or the QR budget runs out."""
        assert self._page is not None
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.settings.qr_timeout_seconds
        last_qr = None

        while True:
            state = await self._session_state()
            if state == "ready":
                await self._emit(Ready())
                await self._stop_polling()
                self._poll_task = asyncio.create_task(self._poll_loop())
                return

            if state == "qr_code":
                element = await self._page.query_selector(SELECTORS["qr_code"])
                qr = await element.get_attribute("data-ref") if element else None
                if qr and qr != last_qr:
                    last_qr = qr
                    await self._emit(QrReceived(qr=qr))
            elif state == "phone_disconnected":
                await self._emit(Disconnected(reason="phone not connected"))
                return

            if loop.time() >= deadline:
                await self._emit(AuthFailure(message="QR code was not scanned in time"))
                return
            await asyncio.sleep(1)

    # ── Inbound messages ───────────────────────────────────────────

    async def _poll_loop(self) -> None:
        while True:
            try:
                state = await self._session_state()
                if state in ("qr_code", "phone_disconnected"):
                    await self._emit(Disconnected(reason=state))
                    return
                if state == "ready":
                    await self._scan_unread_chats()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                if is_target_closed(e):
                    await self._emit(ClientError(error=e))
                    return
                logger.warning("Error scanning WhatsApp chats: %s", e)
            await asyncio.sleep(self.settings.poll_interval_seconds)

    async def _scan_unread_chats(self) -> None:
        assert self._page is not None
        rows = await self._page.query_selector_all(SELECTORS["unread_row"])
        for row in rows:
            await row.click()
            try:
                await self._page.wait_for_selector("#main", timeout=5000)
            except Exception:
                logger.debug("Conversation panel did not open")
                continue
            for chat_id in await self._read_group_notifications():
                await self._emit(GroupUpdated(chat_id=chat_id))
            for message in await self._read_inbound_messages():
                await self._emit(MessageReceived(message=message))

    async def _read_group_notifications(self) -> list[str]:
        """Ids of group chats showing a system notification not reported yet."""
        assert self._page is not None
        chat_ids: list[str] = []
        for element in await self._page.query_selector_all(SELECTORS["group_notification"]):
            data_id = await element.get_attribute("data-id") or ""
            parsed = _parse_message_id(data_id)
            if parsed is None or data_id in self._seen_ids or not parsed[0].endswith(GROUP_SUFFIX):
                continue
            self._seen_ids.add(data_id)
            if parsed[0] not in chat_ids:
                chat_ids.append(parsed[0])
        return chat_ids

    async def _read_inbound_messages(self) -> list[IncomingMessage]:
        assert self._page is not None
        messages = []
        for element in await self._page.query_selector_all(SELECTORS["inbound_message"]):
            data_id = await element.get_attribute("data-id") or ""
            parsed = _parse_message_id(data_id)
            if parsed is None or data_id in self._seen_ids:
                continue
            self._seen_ids.add(data_id)

            chat_id, message_id = parsed
            text_el = await element.query_selector(SELECTORS["message_text"])
            body = (await text_el.inner_text()).strip() if text_el else ""
            if not body:
                continue
            messages.append(IncomingMessage(
                message_id=message_id,
                sender_id=chat_id,
                body=body,
                is_group=chat_id.endswith(GROUP_SUFFIX),
            ))
        return messages

    # ── Lookups ────────────────────────────────────────────────────

    async def get_contact_by_id(self, contact_id: str) -> Contact | None:
        assert self._page is not None
        data = await self._page.evaluate(CONTACT_JS, contact_id)
        if not data:
            return Contact(id=contact_id, number=normalize_number(contact_id))
        return Contact(
            id=data["id"],
            number=data["number"],
            name=data.get("name"),
            pushname=data.get("pushname"),
            labels=[str(label) for label in data.get("labels", [])],
        )

    async def get_chat_by_id(self, chat_id: str) -> Chat | None:
        assert self._page is not None
        data = await self._page.evaluate(CHAT_JS, chat_id)
        if not data:
            return None
        return Chat(id=data["id"], name=data.get("name"), is_group=data["isGroup"], labels=data["labels"])

    async def get_labels(self) -> list[Label]:
        assert self._page is not None
        return [Label(id=item["id"], name=item["name"]) for item in await self._page.evaluate(LABELS_JS)]

    async def get_group_participants(self, chat_id: str) -> list[str]:
        assert self._page is not None
        return list(await self._page.evaluate(GROUP_PARTICIPANTS_JS, chat_id))
