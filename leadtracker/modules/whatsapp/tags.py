"""
Tag Resolver: turns WhatsApp Business labels on a contact (or its chat) into a
flat, de-duplicated tag list. Never raises.
"""

import logging

from leadtracker.models.lead import merge_unique
from leadtracker.modules.whatsapp.client import Contact, WhatsAppClient

logger = logging.getLogger(__name__)


async def _labels_from_catalog(client: WhatsAppClient, contact: Contact) -> list[str]:
    if not contact.labels:
        return []
    catalog = {label.id: label.name for label in await client.get_labels()}
    return [catalog[label_id] for label_id in contact.labels if catalog.get(label_id)]


async def _labels_from_chat(client: WhatsAppClient, contact: Contact) -> list[str]:
    chat = await client.get_chat_by_id(contact.id)
    if chat is None:
        return []
    return list(chat.labels)


async def resolve_tags(client: WhatsAppClient | None, contact: Contact) -> list[str]:
    """Contact labels mapped through the label catalog, falling back to chat labels."""
    if client is None:
        logger.warning("WhatsApp client not available, no tags for %s", contact.number)
        return []

    for source in (_labels_from_catalog, _labels_from_chat):
        try:
            tags = merge_unique([], await source(client, contact))
        except Exception as e:
            logger.warning("Tag lookup via %s failed for %s: %s", source.__name__, contact.number, e)
            continue
        if tags:
            return tags
    return []
