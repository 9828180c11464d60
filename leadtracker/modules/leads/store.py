"""
Lead Store: a single JSON document mapping phone number -> lead record.

All mutations go through one asyncio.Lock so concurrent message events and API
edits serialize their read-modify-write cycles. Writes land in a temp file that
is renamed over the document.
"""

import asyncio
import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, TypeVar

from pydantic import ValidationError

from leadtracker.models.lead import (
    FORM_FIELDS,
    FormStatus,
    Lead,
    LeadUpdate,
    merge_unique,
)
from leadtracker.modules.whatsapp.client import normalize_number

logger = logging.getLogger(__name__)

T = TypeVar("T")


class LeadStoreError(IOError):
    """The lead document exists but cannot be read or parsed."""


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class LeadStore:
    def __init__(self, path: str | Path):
        self.path = Path(path)
        self._lock = asyncio.Lock()

    # --- Whole-document access ---

    async def get_all(self) -> dict[str, Lead]:
        async with self._lock:
            return self._read()

    async def save(self, leads: dict[str, Lead]) -> None:
        async with self._lock:
            self._write(leads)

    async def get(self, number: str) -> Lead | None:
        leads = await self.get_all()
        return leads.get(normalize_number(number))

    # --- Mutations ---

    async def record_message(
        self,
        number: str,
        name: str,
        text: str,
        products: list[str],
        tags: list[str],
    ) -> Lead:
        """Create the lead on first contact, otherwise append the interaction.

        A lead whose form was sent (em_andamento) is flipped to completo by
        any further inbound message.
        """
        key = normalize_number(number)

        def apply(leads: dict[str, Lead]) -> Lead:
            lead = leads.get(key)
            if lead is None:
                lead = _new_lead(name, text, products, tags)
                leads[key] = lead
                logger.info("New lead captured: %s (%s)", name, key)
                return lead

            if lead.form_status == FormStatus.IN_PROGRESS:
                lead.form_status = FormStatus.COMPLETE
            _append_interaction(lead, text, products, tags)
            logger.info("Message received from: %s (%s)", lead.name, key)
            return lead

        return await self._mutate(apply)

    async def mark_form_submitted(
        self,
        number: str,
        name: str,
        text: str,
        products: list[str],
        tags: list[str],
    ) -> Lead:
        """Register a form message: create the lead if needed and move it to em_andamento."""
        key = normalize_number(number)

        def apply(leads: dict[str, Lead]) -> Lead:
            lead = leads.get(key)
            if lead is None:
                lead = _new_lead(name, text, products, tags)
                leads[key] = lead
            lead.form_status = FormStatus.IN_PROGRESS
            logger.info("Form sent to %s, status em_andamento", key)
            return lead

        return await self._mutate(apply)

    async def merge_tags(self, number: str, tags: list[str]) -> Lead | None:
        key = normalize_number(number)

        def apply(leads: dict[str, Lead]) -> Lead | None:
            lead = leads.get(key)
            if lead is None:
                return None
            lead.tags = merge_unique(lead.tags, tags)
            return lead

        return await self._mutate(apply)

    async def update(self, number: str, changes: LeadUpdate) -> Lead | None:
        """Apply a manual edit of name, status and form fields."""
        key = normalize_number(number)

        def apply(leads: dict[str, Lead]) -> Lead | None:
            lead = leads.get(key)
            if lead is None:
                return None
            if changes.name:
                lead.name = changes.name
            if changes.status:
                lead.status = changes.status
            if changes.form_data:
                form = lead.form_data.model_dump()
                form.update({k: v for k, v in changes.form_data.items() if k in FORM_FIELDS})
                lead.form_data = lead.form_data.model_validate(form)
            return lead

        return await self._mutate(apply)

    async def update_form_field(self, number: str, field: str, value: str) -> Lead | None:
        if field not in FORM_FIELDS:
            raise ValueError(f"Unknown form field: {field}")
        key = normalize_number(number)

        def apply(leads: dict[str, Lead]) -> Lead | None:
            lead = leads.get(key)
            if lead is None:
                return None
            setattr(lead.form_data, field, value)
            lead.form_status = (
                FormStatus.COMPLETE if lead.form_data.is_complete() else FormStatus.IN_PROGRESS
            )
            return lead

        return await self._mutate(apply)

    async def delete(self, number: str) -> bool:
        key = normalize_number(number)
        async with self._lock:
            leads = self._read()
            if key not in leads:
                return False
            del leads[key]
            self._write(leads)
        logger.info("Lead %s deleted", key)
        return True

    # --- Internals ---

    async def _mutate(self, fn: Callable[[dict[str, Lead]], T]) -> T:
        async with self._lock:
            leads = self._read()
            result = fn(leads)
            if result is not None:
                self._write(leads)
            return result

    def _read(self) -> dict[str, Lead]:
        if not self.path.exists():
            self._write({})
            return {}

        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise LeadStoreError(f"Cannot read leads from {self.path}: {e}") from e

        if not isinstance(raw, dict):
            raise LeadStoreError(f"{self.path} does not hold a JSON object")
        try:
            return {number: Lead.model_validate(data) for number, data in raw.items()}
        except ValidationError as e:
            raise LeadStoreError(f"Malformed lead record in {self.path}: {e}") from e

    def _write(self, leads: dict[str, Lead]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = {number: lead.to_json() for number, lead in leads.items()}
        tmp = self.path.with_name(self.path.name + ".tmp")
        tmp.write_text(json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8")
        os.replace(tmp, self.path)


def _new_lead(name: str, text: str, products: list[str], tags: list[str]) -> Lead:
    return Lead(
        name=name,
        timestamp=now_iso(),
        interactions=1,
        messages=[text],
        products=merge_unique([], products),
        tags=merge_unique([], tags),
    )


def _append_interaction(lead: Lead, text: str, products: list[str], tags: list[str]) -> None:
    lead.interactions += 1
    lead.messages.append(text)
    lead.products = merge_unique(lead.products, products)
    lead.tags = merge_unique(lead.tags, tags)
