"""
Message Handler: turns inbound WhatsApp messages into lead records.
Resolves the sender contact and its labels, detects product mentions and
records the interaction in the lead store.
"""

import logging

from leadtracker.config import Settings, get_settings
from leadtracker.models.lead import DEFAULT_NAME, Lead
from leadtracker.modules.leads.forms import is_form_submission
from leadtracker.modules.leads.products import detect_products, load_products
from leadtracker.modules.leads.store import LeadStore
from leadtracker.modules.whatsapp.client import Contact, IncomingMessage, normalize_number
from leadtracker.modules.whatsapp.supervisor import ConnectionSupervisor
from leadtracker.modules.whatsapp.tags import resolve_tags

logger = logging.getLogger(__name__)


class MessageHandler:
    def __init__(
        self,
        store: LeadStore,
        supervisor: ConnectionSupervisor,
        settings: Settings | None = None,
    ):
        self.store = store
        self.supervisor = supervisor
        self.settings = settings or get_settings()

    async def resolve_contact(self, sender_id: str) -> Contact:
        """Sender contact from the client, or a bare contact built from the id."""
        fallback = Contact(id=sender_id, number=normalize_number(sender_id))
        contact = await self.supervisor.safe_call(
            lambda client: client.get_contact_by_id(sender_id), None
        )
        return contact or fallback

    async def resolve_tags(self, contact: Contact) -> list[str]:
        # dereference the current client at call time, it may have been recreated
        return await self.supervisor.safe_call(lambda client: resolve_tags(client, contact), [])

    async def handle_message(self, message: IncomingMessage) -> Lead | None:
        if message.is_group:
            return None

        contact = await self.resolve_contact(message.sender_id)
        number = normalize_number(contact.number or message.sender_id)
        name = contact.display_name or DEFAULT_NAME
        text = message.body or ""

        tags = await self.resolve_tags(contact)
        products = detect_products(text, load_products(self.settings.products_file))
        logger.info("Message from %s (%s): %s", name, number, text[:80])

        if is_form_submission(text):
            return await self.store.mark_form_submitted(number, name, text, products, tags)
        return await self.store.record_message(number, name, text, products, tags)

    async def handle_contact_changed(self, contact: Contact) -> Lead | None:
        """Merge fresh labels into an existing lead. Unknown contacts are ignored."""
        number = normalize_number(contact.number or contact.id)
        if await self.store.get(number) is None:
            return None
        tags = await self.resolve_tags(contact)
        if not tags:
            return None
        logger.info("Contact %s updated, merging tags %s", number, tags)
        return await self.store.merge_tags(number, tags)

    async def handle_group_updated(self, chat_id: str) -> list[Lead]:
        """Refresh tags of every group member that is already a lead."""
        participants = await self.supervisor.safe_call(
            lambda client: client.get_group_participants(chat_id), []
        )
        updated = []
        for participant in participants:
            contact = await self.supervisor.safe_call(
                lambda client: client.get_contact_by_id(participant), None
            )
            if contact is None:
                continue
            lead = await self.handle_contact_changed(contact)
            if lead is not None:
                updated.append(lead)
        logger.info("Group %s updated, refreshed tags of %d leads", chat_id, len(updated))
        return updated
