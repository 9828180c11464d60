"""
Server-rendered pages. Everything but /login and /analytics needs a ready
WhatsApp session; otherwise the visitor is sent to the login page.
"""

from pathlib import Path

from fastapi import APIRouter, Depends, Request
from fastapi.responses import RedirectResponse
from fastapi.templating import Jinja2Templates

from leadtracker.api.deps import get_supervisor
from leadtracker.modules.whatsapp.supervisor import ConnectionSupervisor

router = APIRouter()

templates = Jinja2Templates(directory=str(Path(__file__).resolve().parent.parent / "templates"))

GATED_PAGES = {
    "/": "index.html",
    "/products": "products.html",
    "/campaigns": "campaigns.html",
    "/settings": "settings.html",
}


def _render(request: Request, template: str, supervisor: ConnectionSupervisor):
    return templates.TemplateResponse(request, template, {"status": supervisor.status()})


def _gated_page(template: str):
    async def page(request: Request, supervisor: ConnectionSupervisor = Depends(get_supervisor)):
        if not supervisor.is_ready:
            return RedirectResponse("/login", status_code=302)
        return _render(request, template, supervisor)

    return page


for path, template in GATED_PAGES.items():
    router.add_api_route(path, _gated_page(template), methods=["GET"], include_in_schema=False)


@router.get("/login", include_in_schema=False)
async def login(request: Request, supervisor: ConnectionSupervisor = Depends(get_supervisor)):
    if supervisor.is_ready:
        return RedirectResponse("/", status_code=302)
    return _render(request, "login.html", supervisor)


@router.get("/analytics", include_in_schema=False)
async def analytics(request: Request, supervisor: ConnectionSupervisor = Depends(get_supervisor)):
    return _render(request, "analytics.html", supervisor)
