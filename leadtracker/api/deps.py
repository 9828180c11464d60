"""Request-scoped access to the services owned by the application."""

from fastapi import Request

from leadtracker.config import Settings
from leadtracker.modules.leads.store import LeadStore
from leadtracker.modules.whatsapp.handler import MessageHandler
from leadtracker.modules.whatsapp.supervisor import ConnectionSupervisor


def get_store(request: Request) -> LeadStore:
    return request.app.state.store


def get_supervisor(request: Request) -> ConnectionSupervisor:
    return request.app.state.supervisor


def get_message_handler(request: Request) -> MessageHandler:
    return request.app.state.message_handler


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings
