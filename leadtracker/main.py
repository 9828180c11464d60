import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Callable

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from leadtracker.config import Settings, get_settings
from leadtracker.modules.leads.store import LeadStore
from leadtracker.modules.whatsapp.browser import BrowserWhatsAppClient
from leadtracker.modules.whatsapp.client import WhatsAppClient
from leadtracker.modules.whatsapp.handler import MessageHandler
from leadtracker.modules.whatsapp.supervisor import ConnectionSupervisor
from leadtracker.api.leads import router as leads_router
from leadtracker.api.pages import router as pages_router
from leadtracker.api.whatsapp import router as whatsapp_router

logger = logging.getLogger(__name__)


def _install_loop_exception_handler(supervisor: ConnectionSupervisor) -> None:
    """Log stray task failures; a closed browser target triggers a client recreate."""
    loop = asyncio.get_running_loop()

    def handle(loop: asyncio.AbstractEventLoop, context: dict) -> None:
        error = context.get("exception")
        logger.error("Uncaught error: %s", context.get("message"), exc_info=error)
        if error is not None:
            supervisor.handle_fatal_error(error)

    loop.set_exception_handler(handle)


def create_app(
    settings: Settings | None = None,
    client_factory: Callable[[], WhatsAppClient] | None = None,
) -> FastAPI:
    settings = settings or get_settings()
    if client_factory is None:
        seen_ids: set[str] = set()
        client_factory = lambda: BrowserWhatsAppClient(settings, seen_ids)  # noqa: E731

    store = LeadStore(settings.leads_file)
    supervisor = ConnectionSupervisor(client_factory, settings)
    message_handler = MessageHandler(store, supervisor, settings)
    supervisor.set_message_handler(message_handler)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting lead tracker (environment=%s)", settings.environment)
        _install_loop_exception_handler(supervisor)
        if settings.whatsapp_autostart:
            supervisor.connect()
        yield
        await supervisor.shutdown()

    app = FastAPI(
        title="WhatsApp Lead Tracker",
        description="Captures WhatsApp leads, tags and product interest",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.store = store
    app.state.supervisor = supervisor
    app.state.message_handler = message_handler

    app.include_router(whatsapp_router, prefix="/api", tags=["whatsapp"])
    app.include_router(leads_router, prefix="/api", tags=["leads"])
    app.include_router(pages_router, tags=["pages"])

    @app.get("/health", response_class=PlainTextResponse)
    async def health():
        return "OK"

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404:
            return JSONResponse(status_code=404, content={"error": "Rota não encontrada"})
        return JSONResponse(status_code=exc.status_code, content={"error": str(exc.detail)})

    @app.exception_handler(Exception)
    async def unexpected_error(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=500,
            content={"error": "Erro interno do servidor", "details": str(exc)},
        )

    return app


settings = get_settings()
logging.basicConfig(level=settings.log_level)

app = create_app(settings)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=settings.port)
