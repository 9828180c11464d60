"""
Leads API: lead CRUD, manual tag refresh, lead metrics and product mention stats.
"""

import logging

from fastapi import APIRouter, Depends, Response
from fastapi.responses import JSONResponse

from leadtracker.api.deps import get_app_settings, get_store, get_supervisor
from leadtracker.config import Settings
from leadtracker.models.lead import FORM_FIELDS, FormFieldUpdate, LeadUpdate
from leadtracker.modules.leads.metrics import calculate_metrics
from leadtracker.modules.leads.products import load_products, product_stats
from leadtracker.modules.leads.store import LeadStore, LeadStoreError
from leadtracker.modules.whatsapp.client import to_chat_id
from leadtracker.modules.whatsapp.supervisor import ClientNotReadyError, ConnectionSupervisor
from leadtracker.modules.whatsapp.tags import resolve_tags

logger = logging.getLogger(__name__)

router = APIRouter()

LEAD_NOT_FOUND = "Lead não encontrado"


def _error(status_code: int, error: str, details: str | None = None, **extra) -> JSONResponse:
    content = {"error": error, **extra}
    if details is not None:
        content["details"] = details
    return JSONResponse(status_code=status_code, content=content)


@router.get("/leads")
async def list_leads(store: LeadStore = Depends(get_store)):
    try:
        leads = await store.get_all()
    except LeadStoreError as e:
        logger.error("Failed to read leads: %s", e)
        return _error(500, "Erro ao ler leads", str(e))
    return {number: lead.to_json() for number, lead in leads.items()}


@router.get("/leads/{number}")
async def get_lead(number: str, store: LeadStore = Depends(get_store)):
    try:
        lead = await store.get(number)
    except LeadStoreError as e:
        return _error(500, "Erro ao ler lead", str(e))
    if lead is None:
        return _error(404, LEAD_NOT_FOUND)
    return lead.to_json()


@router.put("/leads/{number}")
async def update_lead(number: str, changes: LeadUpdate, store: LeadStore = Depends(get_store)):
    """Patch name, status and form fields. Tags and creation time are kept.

    Body: any of {"name": "...", "status": "...", "formData": {"email": "..."}}
    """
    try:
        lead = await store.update(number, changes)
    except LeadStoreError as e:
        return _error(500, "Erro ao atualizar lead", str(e))
    if lead is None:
        return _error(404, LEAD_NOT_FOUND)
    return lead.to_json()


@router.put("/leads/{number}/form-data/{field}")
async def update_form_field(
    number: str,
    field: str,
    body: FormFieldUpdate,
    store: LeadStore = Depends(get_store),
):
    """Set one form field. The form is completo once every field is filled."""
    if field not in FORM_FIELDS:
        return _error(400, "Campo inválido", f"Allowed: {', '.join(FORM_FIELDS)}")
    try:
        lead = await store.update_form_field(number, field, body.value)
    except LeadStoreError as e:
        return _error(500, "Erro ao atualizar formulário", str(e))
    if lead is None:
        return _error(404, LEAD_NOT_FOUND)
    return lead.to_json()


@router.delete("/leads/{number}", status_code=204)
async def delete_lead(number: str, store: LeadStore = Depends(get_store)):
    try:
        removed = await store.delete(number)
    except LeadStoreError as e:
        return _error(500, "Erro ao excluir lead", str(e))
    if not removed:
        return _error(404, LEAD_NOT_FOUND, searchedNumber=number)
    return Response(status_code=204)


@router.post("/leads/{number}/update-tags")
async def update_lead_tags(
    number: str,
    store: LeadStore = Depends(get_store),
    supervisor: ConnectionSupervisor = Depends(get_supervisor),
):
    """Re-resolve WhatsApp labels for a lead and merge them into its tags."""
    try:
        if await store.get(number) is None:
            return _error(404, LEAD_NOT_FOUND, "Não foi possível encontrar o lead no arquivo", success=False)

        try:
            client = supervisor.ready_client()
        except ClientNotReadyError as e:
            return _error(503, "WhatsApp não está pronto", str(e), success=False)

        contact = await client.get_contact_by_id(to_chat_id(number))
        if contact is None:
            return _error(
                404, "Contato não encontrado", "Não foi possível encontrar o contato no WhatsApp", success=False
            )

        tags = await resolve_tags(client, contact)
        lead = await store.merge_tags(number, tags)
        if lead is None:
            return _error(404, LEAD_NOT_FOUND, success=False)
    except Exception as e:
        logger.exception("Failed to update tags for %s", number)
        return _error(500, "Erro ao atualizar tags", str(e), success=False)

    logger.info("Tags for %s updated: %s", number, lead.tags)
    return {"success": True, "tags": lead.tags, "message": "Tags atualizadas com sucesso"}


@router.get("/metrics")
async def metrics(store: LeadStore = Depends(get_store)):
    return calculate_metrics(await store.get_all())


@router.get("/products/stats")
async def products_stats(
    store: LeadStore = Depends(get_store),
    settings: Settings = Depends(get_app_settings),
):
    """Mention stats per product, most mentioned first. Errors yield an empty list."""
    try:
        leads = await store.get_all()
        stats = product_stats(leads, load_products(settings.products_file))
    except Exception as e:
        logger.error("Failed to compute product stats: %s", e)
        return []
    return [s.model_dump(mode="json", by_alias=True) for s in stats]
