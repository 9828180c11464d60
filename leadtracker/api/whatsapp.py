"""
WhatsApp API: connection status and operator-triggered reconnects.
"""

import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from leadtracker.api.deps import get_supervisor
from leadtracker.modules.whatsapp.supervisor import ConnectionSupervisor

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/whatsapp-status")
async def whatsapp_status(supervisor: ConnectionSupervisor = Depends(get_supervisor)):
    return supervisor.status().to_json()


@router.post("/whatsapp-reconnect")
async def whatsapp_reconnect(supervisor: ConnectionSupervisor = Depends(get_supervisor)):
    """Re-initialize the current client."""
    try:
        started = supervisor.reconnect()
    except Exception as e:
        logger.exception("Reconnect request failed")
        return JSONResponse(
            status_code=500,
            content={"success": False, "error": "Erro ao reconectar", "details": str(e)},
        )
    if not started:
        return {"success": False, "message": "Conexão já em andamento"}
    return {"success": True, "message": "Reconexão iniciada"}


@router.post("/whatsapp-recreate")
async def whatsapp_recreate(supervisor: ConnectionSupervisor = Depends(get_supervisor)):
    """Destroy the client and start a fresh session."""
    try:
        started = supervisor.recreate()
    except Exception as e:
        logger.exception("Recreate request failed")
        return JSONResponse(
            status_code=500,
            content={"success": False, "error": "Erro ao recriar cliente", "details": str(e)},
        )
    if not started:
        return {"success": False, "message": "Conexão já em andamento"}
    return {"success": True, "message": "Recriação do cliente iniciada"}
